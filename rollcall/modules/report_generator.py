"""
Report Generator Module - QR Rollcall Attendance System

This module builds the session history of a subject and exports a session's
attendance as CSV.

Features:
- Session history with per-session attendance
- CSV export of a session's attendance
"""

import io
import logging
from typing import Any, Dict, List

import pandas as pd

EXPORT_COLUMNS = ['first_name', 'last_name', 'crn', 'submitted_at']


class ReportGenerator:
    """
    Report generation for attendance sessions.
    """

    def __init__(self, session_lifecycle, attendance_ledger):
        """
        Args:
            session_lifecycle: Session lifecycle instance
            attendance_ledger: Attendance ledger instance
        """
        self.sessions = session_lifecycle
        self.ledger = attendance_ledger
        self.logger = logging.getLogger(__name__)

    def session_history(self, subject_id: str) -> List[Dict[str, Any]]:
        """
        Sessions of a subject, newest first, each with its attendance.

        Args:
            subject_id (str): Subject ID

        Returns:
            List[Dict[str, Any]]: Session dictionaries with ``attendance``
            and ``attendance_count``
        """
        sessions = self.sessions.list_sessions(subject_id)
        attendance = self.ledger.list_by_sessions(session.id for session in sessions)

        history = []
        for session in sessions:
            records = attendance.get(session.id, [])
            entry = session.to_dict()
            entry['attendance'] = [record.to_dict() for record in records]
            entry['attendance_count'] = len(records)
            history.append(entry)
        return history

    def export_session_csv(self, session_id: str) -> str:
        """
        Export a session's attendance as CSV text.

        Args:
            session_id (str): Session ID

        Returns:
            str: CSV with a header row, ordered by submission time
        """
        records = [record.to_dict() for record in self.ledger.list_by_session(session_id)]
        df = pd.DataFrame(records, columns=EXPORT_COLUMNS)

        stream = io.StringIO()
        df.to_csv(stream, index=False)

        self.logger.info(f"Exported {len(records)} attendance records for session {session_id}")
        return stream.getvalue()
