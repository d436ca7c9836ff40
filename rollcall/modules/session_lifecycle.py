"""
Session Lifecycle Module - QR Rollcall Attendance System

This module owns the attendance session state machine and its rotation
timer. A session is created ``active`` with an initial token, has its token
replaced on a fixed cadence while active, and becomes immutable once
``stopped``. Stopped is terminal.

Features:
- Session start, rotation and stop
- Conditional updates so that no rotation is persisted after stop commits
- Per-session serialization of rotate and stop
- Rotation scheduling where each rotation arms the next one
- Token listeners for the QR renderer
"""

from dataclasses import dataclass, asdict
from datetime import datetime, timezone
import logging
import sqlite3
import threading
import uuid
from typing import Callable, Dict, List, Optional

from rollcall.modules.exceptions import (
    EntropyUnavailable,
    InvalidState,
    PersistenceError,
)
from rollcall.modules.token_generator import TokenGenerator

STATUS_ACTIVE = 'active'
STATUS_STOPPED = 'stopped'

DEFAULT_ROTATION_INTERVAL = 10  # seconds


def utc_now() -> str:
    """Current time as a timezone-aware ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Session:
    """Data class for an attendance session."""
    id: str
    subject_id: str
    teacher_id: str
    current_token: str
    rotation_count: int
    status: str
    started_at: str
    stopped_at: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_ACTIVE

    @classmethod
    def from_row(cls, row: dict) -> 'Session':
        return cls(
            id=row['id'],
            subject_id=row['subject_id'],
            teacher_id=row['teacher_id'],
            current_token=row['current_token'],
            rotation_count=row['rotation_count'],
            status=row['status'],
            started_at=row['started_at'],
            stopped_at=row['stopped_at'],
        )

    def to_dict(self, include_token: bool = False) -> dict:
        data = asdict(self)
        if not include_token:
            data.pop('current_token')
        return data


class RotationScheduler:
    """
    Drives token rotation for active sessions.

    Every session gets its own timer. When a timer fires, the session is
    rotated and the next timer is armed, so the interval is measured from
    the previous rotation rather than from session start.
    """

    def __init__(self, rotate_callback: Callable[[str], Session],
                 interval_seconds: int = DEFAULT_ROTATION_INTERVAL,
                 timer_factory=threading.Timer,
                 release_callback: Optional[Callable[[], None]] = None):
        """
        Args:
            rotate_callback: Rotates a session given its ID
            interval_seconds (int): Seconds between rotations
            timer_factory: ``threading.Timer`` compatible factory
            release_callback: Called on the timer thread after every fire,
                used to close the thread's database connection
        """
        if isinstance(interval_seconds, bool) or not isinstance(interval_seconds, int) or interval_seconds <= 0:
            raise ValueError("Rotation interval must be a positive integer number of seconds")

        self.rotate_callback = rotate_callback
        self.interval_seconds = interval_seconds
        self.timer_factory = timer_factory
        self.release_callback = release_callback
        self.logger = logging.getLogger(__name__)

        self._timers = {}
        self._lock = threading.Lock()

    def schedule(self, session_id: str) -> None:
        """Arm the next rotation for a session, replacing any pending one."""
        with self._lock:
            previous = self._arm(session_id)

        if previous:
            previous.cancel()

    def _arm(self, session_id: str):
        # Caller holds _lock; returns the replaced timer, if any
        ticket = object()
        timer = self.timer_factory(self.interval_seconds, self._fire, args=(session_id, ticket))
        timer.daemon = True

        previous = self._timers.get(session_id)
        self._timers[session_id] = (ticket, timer)
        timer.start()
        return previous[1] if previous else None

    def cancel(self, session_id: str) -> bool:
        """
        Cancel the pending rotation of a session.

        Returns:
            bool: True if a timer was pending
        """
        with self._lock:
            entry = self._timers.pop(session_id, None)

        if entry is None:
            return False

        entry[1].cancel()
        self.logger.debug(f"Rotation timer cancelled for session {session_id}")
        return True

    def is_scheduled(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._timers

    def _is_current(self, session_id: str, ticket) -> bool:
        with self._lock:
            entry = self._timers.get(session_id)
            return entry is not None and entry[0] is ticket

    def _retire(self, session_id: str, ticket) -> None:
        with self._lock:
            entry = self._timers.get(session_id)
            if entry is not None and entry[0] is ticket:
                del self._timers[session_id]

    def _fire(self, session_id: str, ticket) -> None:
        if not self._is_current(session_id, ticket):
            return

        try:
            self._rotate_and_rearm(session_id, ticket)
        finally:
            if self.release_callback:
                self.release_callback()

    def _rotate_and_rearm(self, session_id: str, ticket) -> None:
        try:
            self.rotate_callback(session_id)
        except InvalidState as e:
            self.logger.info(f"Rotation timer retired for session {session_id}: {e.message}")
            self._retire(session_id, ticket)
            return
        except EntropyUnavailable as e:
            self.logger.critical(f"Rotation aborted for session {session_id}: {e.message}")
            self._retire(session_id, ticket)
            return
        except PersistenceError as e:
            self.logger.error(f"Scheduled rotation failed for session {session_id}: {e.message}")

        # Stop may have cancelled the timer while the rotation was in flight
        with self._lock:
            entry = self._timers.get(session_id)
            if entry is not None and entry[0] is ticket:
                self._arm(session_id)

    def shutdown(self) -> None:
        """Cancel every pending rotation."""
        with self._lock:
            entries, self._timers = list(self._timers.values()), {}
        for _, timer in entries:
            timer.cancel()
        self.logger.info("Rotation scheduler shut down")


class SessionLifecycle:
    """
    Owns attendance sessions from start to stop.
    Rotation and stop are serialized per session; submissions read the
    stored session state directly and are never blocked by these locks.
    """

    def __init__(self, database_manager, token_generator: Optional[TokenGenerator] = None,
                 rotation_interval: Optional[int] = None, timer_factory=threading.Timer,
                 token_listeners: Optional[List[Callable[[str, str], None]]] = None):
        """
        Args:
            database_manager: Database manager instance
            token_generator: Source of session tokens
            rotation_interval (int): Seconds between automatic rotations;
                ``None`` disables the rotation timer
            timer_factory: ``threading.Timer`` compatible factory
            token_listeners: Callables receiving ``(session_id, token)``
                whenever a new token is issued
        """
        self.db = database_manager
        self.token_generator = token_generator or TokenGenerator()
        self.token_listeners = list(token_listeners or [])
        self.logger = logging.getLogger(__name__)

        self.scheduler = None
        if rotation_interval is not None:
            self.scheduler = RotationScheduler(
                self._rotate_by_id,
                rotation_interval,
                timer_factory,
                release_callback=self.db.release_thread_connection
            )

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, session_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(session_id, threading.Lock())

    def add_token_listener(self, listener: Callable[[str, str], None]) -> None:
        self.token_listeners.append(listener)

    def _emit_token(self, session: Session) -> None:
        for listener in self.token_listeners:
            try:
                listener(session.id, session.current_token)
            except Exception as e:
                self.logger.error(f"Token listener failed for session {session.id}: {str(e)}")

    def start(self, subject_id: str, teacher_id: str) -> Session:
        """
        Start a new attendance session.

        Args:
            subject_id (str): Subject the session belongs to
            teacher_id (str): Identity of the session owner

        Returns:
            Session: The persisted active session

        Raises:
            EntropyUnavailable: If no token could be generated
            PersistenceError: If the session could not be stored
        """
        session = Session(
            id=uuid.uuid4().hex,
            subject_id=subject_id,
            teacher_id=teacher_id,
            current_token=self.token_generator.generate(),
            rotation_count=0,
            status=STATUS_ACTIVE,
            started_at=utc_now(),
        )

        try:
            self.db.execute_update("""
                INSERT INTO sessions (id, subject_id, teacher_id, current_token,
                                      rotation_count, status, started_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (session.id, session.subject_id, session.teacher_id, session.current_token,
                  session.rotation_count, session.status, session.started_at))
        except sqlite3.Error as e:
            self.logger.error(f"Failed to start session for subject {subject_id}: {str(e)}")
            raise PersistenceError(f"Failed to start session: {e}") from e

        self.logger.info(f"Session {session.id} started for subject {subject_id} by {teacher_id}")
        self._emit_token(session)

        if self.scheduler:
            self.scheduler.schedule(session.id)

        return session

    def rotate(self, session: Session) -> Session:
        """
        Replace the token of an active session.

        Args:
            session (Session): Session to rotate

        Returns:
            Session: The updated session

        Raises:
            InvalidState: If the session is stopped or does not exist
            EntropyUnavailable: If no token could be generated
            PersistenceError: If the update could not be stored
        """
        if not session.is_active:
            raise InvalidState(f"Cannot rotate stopped session {session.id}")

        with self._lock_for(session.id):
            token = self.token_generator.generate()

            try:
                updated = self.db.execute_update("""
                    UPDATE sessions
                    SET current_token = ?, rotation_count = rotation_count + 1
                    WHERE id = ? AND status = ?
                """, (token, session.id, STATUS_ACTIVE))
            except sqlite3.Error as e:
                self.logger.error(f"Failed to rotate session {session.id}: {str(e)}")
                raise PersistenceError(f"Failed to rotate session: {e}") from e

            if not updated:
                if self.get_session(session.id) is None:
                    raise InvalidState(f"Session {session.id} does not exist")
                raise InvalidState(f"Cannot rotate stopped session {session.id}")

            rotated = self.get_session(session.id)
            self.logger.debug(f"Session {session.id} rotated (rotation {rotated.rotation_count})")
            # Emitted under the lock so listeners see tokens in rotation order
            self._emit_token(rotated)

        return rotated

    def _rotate_by_id(self, session_id: str) -> Session:
        session = self.get_session(session_id)
        if session is None:
            raise InvalidState(f"Session {session_id} does not exist")
        return self.rotate(session)

    def stop(self, session: Session) -> Session:
        """
        Stop a session, freezing its token. Stopping a stopped session
        returns the stored record unchanged.

        Args:
            session (Session): Session to stop

        Returns:
            Session: The stopped session

        Raises:
            InvalidState: If the session does not exist
            PersistenceError: If the update could not be stored
        """
        if self.scheduler:
            self.scheduler.cancel(session.id)

        with self._lock_for(session.id):
            try:
                updated = self.db.execute_update("""
                    UPDATE sessions SET status = ?, stopped_at = ?
                    WHERE id = ? AND status = ?
                """, (STATUS_STOPPED, utc_now(), session.id, STATUS_ACTIVE))
            except sqlite3.Error as e:
                self.logger.error(f"Failed to stop session {session.id}: {str(e)}")
                raise PersistenceError(f"Failed to stop session: {e}") from e

            stopped = self.get_session(session.id)

        with self._locks_guard:
            self._locks.pop(session.id, None)

        if stopped is None:
            raise InvalidState(f"Session {session.id} does not exist")

        if updated:
            self.logger.info(f"Session {session.id} stopped after {stopped.rotation_count} rotations")
        return stopped

    def get_session(self, session_id: str) -> Optional[Session]:
        """
        Load a session by ID.

        Args:
            session_id (str): Session ID

        Returns:
            Optional[Session]: The stored session, or None if it does not exist

        Raises:
            PersistenceError: If the session could not be read
        """
        try:
            row = self.db.execute_query(
                "SELECT * FROM sessions WHERE id = ?",
                (session_id,),
                fetch_all=False
            )
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to load session: {e}") from e
        return Session.from_row(row) if row else None

    def list_sessions(self, subject_id: str) -> List[Session]:
        """
        List all sessions of a subject, active and stopped.

        Args:
            subject_id (str): Subject ID

        Returns:
            List[Session]: Sessions ordered newest first

        Raises:
            PersistenceError: If the sessions could not be read
        """
        try:
            rows = self.db.execute_query(
                "SELECT * FROM sessions WHERE subject_id = ? ORDER BY started_at DESC",
                (subject_id,)
            )
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to list sessions: {e}") from e
        return [Session.from_row(row) for row in rows]

    def active_sessions(self, subject_id: str) -> List[Session]:
        """
        Sessions of a subject that are still accepting attendance.

        Args:
            subject_id (str): Subject ID

        Returns:
            List[Session]: Active sessions, newest first
        """
        return [session for session in self.list_sessions(subject_id) if session.is_active]

    def shutdown(self) -> None:
        """Cancel pending rotations and drop the per-session locks."""
        if self.scheduler:
            self.scheduler.shutdown()
        with self._locks_guard:
            self._locks.clear()
