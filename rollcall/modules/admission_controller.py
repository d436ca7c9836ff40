"""
Admission Controller Module - QR Rollcall Attendance System

This module decides whether an attendance claim is accepted. A claim names
a session, the token read from the displayed QR code and the student's
identity fields. Checks run in a fixed order and the first failure wins:

1. the session exists and is active
2. the presented token is the session's current token
3. the student has not already submitted for the session

The checks and the insert run in one write-locked transaction, so they see
the latest committed rotation, and the attendance table's uniqueness
constraint is the final authority on duplicates.

Features:
- Ordered claim validation with typed rejections
- Atomic check-and-insert against the latest session state
- Best-effort notification of accepted submissions
- Result dictionaries for the attendance form and QR scan endpoint
"""

import hmac
import logging
import sqlite3
import uuid
from typing import Any, Dict, Optional

from rollcall.modules.attendance_ledger import AttendanceRecord, StudentKey
from rollcall.modules.exceptions import (
    AdmissionRejected,
    DuplicateSubmission,
    PersistenceError,
    SessionClosed,
    SessionNotFound,
    TokenExpiredOrInvalid,
)
from rollcall.modules.qr_generator import parse_attend_url
from rollcall.modules.session_lifecycle import STATUS_ACTIVE, utc_now


def _tokens_match(presented: Optional[str], current: str) -> bool:
    if not presented:
        return False
    return hmac.compare_digest(presented.encode('utf-8'), current.encode('utf-8'))


class AdmissionController:
    """
    Validates inbound attendance claims and records accepted ones.
    """

    def __init__(self, database_manager, attendance_ledger, notification_system=None):
        """
        Args:
            database_manager: Database manager instance
            attendance_ledger: Ledger receiving accepted records
            notification_system: Notifier told about accepted records
        """
        self.db = database_manager
        self.ledger = attendance_ledger
        self.notification_system = notification_system
        self.logger = logging.getLogger(__name__)

    def _check_claim(self, conn, session_id: str, presented_token: str,
                     student_key: StudentKey) -> Optional[AdmissionRejected]:
        row = conn.execute(
            "SELECT status, current_token FROM sessions WHERE id = ?",
            (session_id,)
        ).fetchone()

        if row is None:
            return SessionNotFound()
        if row['status'] != STATUS_ACTIVE:
            return SessionClosed()
        if not _tokens_match(presented_token, row['current_token']):
            return TokenExpiredOrInvalid()
        if self.ledger.exists(session_id, student_key, conn):
            return DuplicateSubmission()
        return None

    def submit(self, session_id: str, presented_token: str, student_key: StudentKey) -> AttendanceRecord:
        """
        Admit an attendance claim.

        Args:
            session_id (str): Session named by the scanned link
            presented_token (str): Token named by the scanned link
            student_key (StudentKey): Submitted identity fields

        Returns:
            AttendanceRecord: The committed record

        Raises:
            SessionNotFound, SessionClosed, TokenExpiredOrInvalid,
            DuplicateSubmission: The claim was rejected
            PersistenceError: The store could not be read or written
        """
        record = None
        try:
            with self.db.transaction(immediate=True) as conn:
                rejection = self._check_claim(conn, session_id, presented_token, student_key)
                if rejection is None:
                    record = AttendanceRecord(
                        id=uuid.uuid4().hex,
                        session_id=session_id,
                        student_key=student_key,
                        token_used=presented_token,
                        submitted_at=utc_now(),
                    )
                    self.ledger.append(record, conn)

        except sqlite3.IntegrityError as e:
            self.logger.info(f"Duplicate submission caught by constraint: session {session_id}, student {student_key}")
            raise DuplicateSubmission() from e
        except sqlite3.Error as e:
            self.logger.error(f"Failed to record attendance for session {session_id}: {str(e)}")
            raise PersistenceError(f"Failed to record attendance: {e}") from e

        if rejection is not None:
            self.logger.info(f"Attendance rejected ({rejection.error_type}): session {session_id}, student {student_key}")
            raise rejection

        self.logger.info(f"Attendance recorded: session {session_id}, student {student_key}")
        self._notify(record)
        return record

    def _notify(self, record: AttendanceRecord) -> None:
        if self.notification_system is None:
            return
        try:
            self.notification_system.notify(record.session_id, record)
        except Exception as e:
            self.logger.error(f"Attendance notification failed for record {record.id}: {str(e)}")

    def process_claim(self, session_id: str, token: str, first_name: str,
                      last_name: str, crn: str) -> Dict[str, Any]:
        """
        Process an attendance form submission.

        Returns:
            Dict[str, Any]: ``success``, ``message``, ``error_type`` and,
            on success, ``record``
        """
        try:
            student_key = StudentKey.from_fields(first_name, last_name, crn)
        except ValueError as e:
            return {
                'success': False,
                'message': str(e),
                'error_type': 'invalid_input'
            }

        try:
            record = self.submit(session_id, token, student_key)
        except AdmissionRejected as e:
            return {
                'success': False,
                'message': e.message,
                'error_type': e.error_type
            }

        return {
            'success': True,
            'message': f"Attendance recorded for {student_key.first_name} {student_key.last_name}",
            'error_type': None,
            'record': record.to_dict()
        }

    def process_scan(self, qr_payload: str, first_name: str, last_name: str, crn: str) -> Dict[str, Any]:
        """
        Process a claim carrying the raw text decoded from a QR code.
        """
        try:
            session_id, token = parse_attend_url(qr_payload)
        except ValueError as e:
            return {
                'success': False,
                'message': f"Invalid QR code: {e}",
                'error_type': 'invalid_qr_code'
            }
        return self.process_claim(session_id, token, first_name, last_name, crn)

    def validate_link(self, session_id: str, token: str) -> Dict[str, Any]:
        """
        Check whether an attendance link still points at the active token,
        without recording anything. Used before showing the attendance form.
        """
        try:
            row = self.db.execute_query(
                "SELECT subject_id, status, current_token FROM sessions WHERE id = ?",
                (session_id,),
                fetch_all=False
            )
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to load session: {e}") from e

        if row is None:
            rejection = SessionNotFound()
        elif row['status'] != STATUS_ACTIVE:
            rejection = SessionClosed()
        elif not _tokens_match(token, row['current_token']):
            rejection = TokenExpiredOrInvalid()
        else:
            return {
                'valid': True,
                'session_id': session_id,
                'subject_id': row['subject_id']
            }

        return {
            'valid': False,
            'message': rejection.message,
            'error_type': rejection.error_type
        }
