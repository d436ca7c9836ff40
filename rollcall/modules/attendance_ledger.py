"""
Attendance Ledger Module - QR Rollcall Attendance System

Append-only record of accepted attendance submissions. The ledger is the
source of truth for the live attendance display: it offers point-in-time
snapshots ordered by submission time and a live feed that combines a
snapshot with records pushed by the notification system.
"""

from dataclasses import dataclass
import logging
import queue
from typing import Dict, Iterable, List, Optional

FIRST_NAME_MAX_LENGTH = 100
LAST_NAME_MAX_LENGTH = 100
CRN_MAX_LENGTH = 50


@dataclass(frozen=True)
class StudentKey:
    """Identity tuple used only to deduplicate submissions."""
    first_name: str
    last_name: str
    crn: str

    @classmethod
    def from_fields(cls, first_name, last_name, crn) -> 'StudentKey':
        """
        Build a key from raw form input.

        Raises:
            ValueError: If a field is missing, blank or too long
        """
        limits = (
            ('First name', first_name, FIRST_NAME_MAX_LENGTH),
            ('Last name', last_name, LAST_NAME_MAX_LENGTH),
            ('CRN number', crn, CRN_MAX_LENGTH),
        )
        cleaned = []
        for label, value, max_length in limits:
            value = '' if value is None else str(value).strip()
            if not value:
                raise ValueError(f"{label} is required")
            if len(value) > max_length:
                raise ValueError(f"{label} must be at most {max_length} characters")
            cleaned.append(value)
        return cls(*cleaned)

    def __str__(self):
        return f"{self.first_name}/{self.last_name}/{self.crn}"


@dataclass(frozen=True)
class AttendanceRecord:
    """Data class for an accepted attendance submission."""
    id: str
    session_id: str
    student_key: StudentKey
    token_used: str
    submitted_at: str

    @classmethod
    def from_row(cls, row: dict) -> 'AttendanceRecord':
        return cls(
            id=row['id'],
            session_id=row['session_id'],
            student_key=StudentKey(row['first_name'], row['last_name'], row['crn']),
            token_used=row['token_used'],
            submitted_at=row['submitted_at'],
        )

    def to_dict(self, include_token: bool = False) -> dict:
        data = {
            'id': self.id,
            'session_id': self.session_id,
            'first_name': self.student_key.first_name,
            'last_name': self.student_key.last_name,
            'crn': self.student_key.crn,
            'submitted_at': self.submitted_at,
        }
        if include_token:
            data['token_used'] = self.token_used
        return data


class AttendanceLedger:
    """
    Persistence-facing accessor for attendance records.
    The admission controller is the only writer.
    """

    def __init__(self, database_manager, notification_system=None):
        """
        Args:
            database_manager: Database manager instance
            notification_system: Source of pushed records for live feeds
        """
        self.db = database_manager
        self.notification_system = notification_system
        self.logger = logging.getLogger(__name__)

    def append(self, record: AttendanceRecord, conn=None) -> None:
        """
        Insert a record. When ``conn`` is given the insert joins the
        caller's transaction, otherwise it is committed on its own.

        Raises:
            sqlite3.IntegrityError: If the student already has a record
                for the session
        """
        query = """
            INSERT INTO attendance (id, session_id, first_name, last_name, crn,
                                    token_used, submitted_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """
        params = (record.id, record.session_id, record.student_key.first_name,
                  record.student_key.last_name, record.student_key.crn,
                  record.token_used, record.submitted_at)

        if conn is not None:
            conn.execute(query, params)
        else:
            self.db.execute_update(query, params)

    def exists(self, session_id: str, student_key: StudentKey, conn=None) -> bool:
        query = """
            SELECT 1 FROM attendance
            WHERE session_id = ? AND first_name = ? AND last_name = ? AND crn = ?
        """
        params = (session_id, student_key.first_name, student_key.last_name, student_key.crn)

        if conn is not None:
            return conn.execute(query, params).fetchone() is not None
        return self.db.execute_query(query, params, fetch_all=False) is not None

    def list_by_session(self, session_id: str) -> List[AttendanceRecord]:
        """Snapshot of a session's attendance ordered by submission time."""
        rows = self.db.execute_query(
            "SELECT * FROM attendance WHERE session_id = ? ORDER BY submitted_at, rowid",
            (session_id,)
        )
        return [AttendanceRecord.from_row(row) for row in rows]

    def list_by_sessions(self, session_ids: Iterable[str]) -> Dict[str, List[AttendanceRecord]]:
        """Attendance of several sessions grouped by session id."""
        session_ids = list(session_ids)
        grouped = {session_id: [] for session_id in session_ids}
        if not session_ids:
            return grouped

        placeholders = ', '.join('?' for _ in session_ids)
        rows = self.db.execute_query(
            f"SELECT * FROM attendance WHERE session_id IN ({placeholders}) ORDER BY submitted_at, rowid",
            tuple(session_ids)
        )
        for row in rows:
            grouped[row['session_id']].append(AttendanceRecord.from_row(row))
        return grouped

    def count(self, session_id: str) -> int:
        result = self.db.execute_query(
            "SELECT COUNT(*) AS total FROM attendance WHERE session_id = ?",
            (session_id,),
            fetch_all=False
        )
        return result['total'] if result else 0

    def follow(self, session_id: str) -> 'LiveFeed':
        """
        Open a live feed for a session. The subscription is taken before the
        snapshot is read so that no record falls between the two.
        """
        if self.notification_system is None:
            raise RuntimeError("Live feeds need a notification system")
        subscription = self.notification_system.subscribe(session_id)
        return LiveFeed(self, subscription)


class LiveFeed:
    """Snapshot followed by pushed records, without repeats."""

    def __init__(self, ledger: AttendanceLedger, subscription):
        self.ledger = ledger
        self.subscription = subscription
        self._seen = set()

    def snapshot(self) -> List[AttendanceRecord]:
        records = self.ledger.list_by_session(self.subscription.session_id)
        self._seen.update(record.id for record in records)
        return records

    def poll(self, timeout: Optional[float] = None) -> Optional[AttendanceRecord]:
        """Next unseen record, or None once ``timeout`` elapses."""
        while True:
            try:
                record = self.subscription.get(timeout=timeout)
            except queue.Empty:
                return None
            if record.id not in self._seen:
                self._seen.add(record.id)
                return record

    def close(self) -> None:
        self.ledger.notification_system.unsubscribe(self.subscription)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
