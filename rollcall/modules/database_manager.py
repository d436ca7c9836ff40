"""
Database Manager Module - QR Rollcall Attendance System

This module handles all database operations for the attendance system.
It manages SQLite connections, creates the subjects, sessions and attendance
tables, and provides query helpers plus transaction support. The attendance
table carries the uniqueness constraint that backs duplicate-submission
prevention.

Features:
- Thread-local SQLite connection management
- Idempotent schema creation
- Query and update helpers
- Deferred and write-locked (IMMEDIATE) transactions
"""

import sqlite3
import logging
from contextlib import contextmanager
import threading
import os


class DatabaseManager:
    """
    Database management class for the attendance core.
    Handles connection management, schema creation and data manipulation
    with error logging and transaction support.
    """

    def __init__(self, db_path):
        """
        Initialize the database manager with the specified database path.

        Args:
            db_path (str): Path to the SQLite database file
        """
        self.db_path = str(db_path)
        self.logger = logging.getLogger(__name__)
        self._local = threading.local()
        # Owning thread -> connection, so connections of finished threads can be closed
        self._connections = {}
        self._connections_lock = threading.Lock()

        # Ensure database directory exists
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        self.initialize_database()

    @contextmanager
    def get_connection(self):
        """
        Context manager for database connections.
        Provides thread-local connections for thread safety.

        Yields:
            sqlite3.Connection: Database connection object
        """
        if not hasattr(self._local, 'connection'):
            connection = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                timeout=30.0
            )
            connection.row_factory = sqlite3.Row
            connection.execute("PRAGMA foreign_keys = ON")
            self._local.connection = connection
            with self._connections_lock:
                self._close_finished_threads()
                self._connections[threading.current_thread()] = connection

        try:
            yield self._local.connection
        except Exception as e:
            self._local.connection.rollback()
            self.logger.error(f"Database operation failed: {str(e)}")
            raise

    def initialize_database(self):
        """
        Create all tables used by the attendance core.
        This method is idempotent and can be called multiple times safely.
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS subjects (
                        id VARCHAR(32) PRIMARY KEY,
                        name VARCHAR(200) NOT NULL,
                        crn_number VARCHAR(50) NOT NULL,
                        day_time VARCHAR(100),
                        teacher_id VARCHAR(100) NOT NULL,
                        created_at TIMESTAMP NOT NULL
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS sessions (
                        id VARCHAR(32) PRIMARY KEY,
                        subject_id VARCHAR(32) NOT NULL,
                        teacher_id VARCHAR(100) NOT NULL,
                        current_token VARCHAR(64) NOT NULL,
                        rotation_count INTEGER NOT NULL DEFAULT 0,
                        status VARCHAR(20) NOT NULL DEFAULT 'active',
                        started_at TIMESTAMP NOT NULL,
                        stopped_at TIMESTAMP,
                        CHECK (status IN ('active', 'stopped'))
                    )
                """)

                # The UNIQUE constraint is the authority for duplicate rejection
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS attendance (
                        id VARCHAR(32) PRIMARY KEY,
                        session_id VARCHAR(32) NOT NULL,
                        first_name VARCHAR(100) NOT NULL,
                        last_name VARCHAR(100) NOT NULL,
                        crn VARCHAR(50) NOT NULL,
                        token_used VARCHAR(64) NOT NULL,
                        submitted_at TIMESTAMP NOT NULL,
                        FOREIGN KEY (session_id) REFERENCES sessions(id),
                        UNIQUE(session_id, first_name, last_name, crn)
                    )
                """)

                cursor.execute("CREATE INDEX IF NOT EXISTS idx_sessions_subject ON sessions(subject_id)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_attendance_session ON attendance(session_id, submitted_at)")

                conn.commit()
                self.logger.info("Database initialized successfully")

        except Exception as e:
            self.logger.error(f"Failed to initialize database: {str(e)}")
            raise

    def execute_query(self, query, params=None, fetch_all=True):
        """
        Execute a SELECT query and return results.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters
            fetch_all (bool): Whether to fetch all results or just one

        Returns:
            list or dict: Query results
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(query, params or ())

                if fetch_all:
                    return [dict(row) for row in cursor.fetchall()]
                result = cursor.fetchone()
                return dict(result) if result else None

        except Exception as e:
            self.logger.error(f"Query execution failed: {str(e)}")
            raise

    def execute_update(self, query, params=None):
        """
        Execute an INSERT, UPDATE, or DELETE query.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters

        Returns:
            int: Number of affected rows or last inserted row ID
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(query, params or ())
                conn.commit()

                if query.strip().upper().startswith('INSERT'):
                    return cursor.lastrowid
                return cursor.rowcount

        except Exception as e:
            self.logger.error(f"Update execution failed: {str(e)}")
            raise

    @contextmanager
    def transaction(self, immediate=False):
        """
        Context manager for database transactions with automatic rollback on error.

        Args:
            immediate (bool): Take the database write lock up front so that
                reads inside the transaction see the latest committed state
                and no other writer can commit until this one finishes.

        Yields:
            sqlite3.Connection: Database connection within transaction
        """
        with self.get_connection() as conn:
            try:
                if immediate:
                    conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.commit()
            except Exception as e:
                conn.rollback()
                self.logger.error(f"Transaction rolled back: {str(e)}")
                raise

    def _close_connection(self, connection):
        try:
            connection.close()
        except sqlite3.Error as e:
            self.logger.error(f"Error closing connection: {str(e)}")

    def _close_finished_threads(self):
        # Caller holds _connections_lock
        finished = [thread for thread in self._connections if not thread.is_alive()]
        for thread in finished:
            self._close_connection(self._connections.pop(thread))

    def open_connection_count(self):
        """Number of connections currently held open by this manager."""
        with self._connections_lock:
            return len(self._connections)

    def release_thread_connection(self):
        """
        Close the calling thread's connection, if it has one.
        The next database call from the thread opens a fresh connection.
        """
        connection = getattr(self._local, 'connection', None)
        if connection is None:
            return

        del self._local.connection
        with self._connections_lock:
            self._connections.pop(threading.current_thread(), None)
        self._close_connection(connection)

    def close_all_connections(self):
        """Close every connection opened by this manager."""
        with self._connections_lock:
            connections, self._connections = list(self._connections.values()), {}
        for connection in connections:
            self._close_connection(connection)
        self._local = threading.local()
