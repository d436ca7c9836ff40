"""
Subject Manager Module - QR Rollcall Attendance System

Minimal persistence for the classes ("subjects") that attendance sessions
belong to.
"""

from datetime import datetime, timezone
import logging
import uuid
from typing import Any, Dict, List, Optional


class SubjectManager:
    """Stores and lists subjects owned by teachers."""

    def __init__(self, database_manager):
        self.db = database_manager
        self.logger = logging.getLogger(__name__)

    def create_subject(self, name: str, crn_number: str, day_time: str, teacher_id: str) -> Dict[str, Any]:
        """
        Create a subject.

        Raises:
            ValueError: If the name or CRN number is blank
        """
        name = (name or '').strip()
        crn_number = (crn_number or '').strip()
        if not name:
            raise ValueError("Subject name is required")
        if not crn_number:
            raise ValueError("CRN number is required")

        subject = {
            'id': uuid.uuid4().hex,
            'name': name,
            'crn_number': crn_number,
            'day_time': (day_time or '').strip(),
            'teacher_id': teacher_id,
            'created_at': datetime.now(timezone.utc).isoformat()
        }

        self.db.execute_update("""
            INSERT INTO subjects (id, name, crn_number, day_time, teacher_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (subject['id'], subject['name'], subject['crn_number'], subject['day_time'],
              subject['teacher_id'], subject['created_at']))

        self.logger.info(f"Subject {subject['name']} created by {teacher_id}")
        return subject

    def get_subject(self, subject_id: str) -> Optional[Dict[str, Any]]:
        """
        Get a subject by ID.

        Args:
            subject_id (str): Subject ID

        Returns:
            Optional[Dict[str, Any]]: Subject data or None if not found
        """
        return self.db.execute_query(
            "SELECT * FROM subjects WHERE id = ?",
            (subject_id,),
            fetch_all=False
        )

    def list_subjects(self, teacher_id: str) -> List[Dict[str, Any]]:
        """
        List the subjects a teacher owns.

        Args:
            teacher_id (str): Teacher identity

        Returns:
            List[Dict[str, Any]]: Subjects ordered newest first
        """
        return self.db.execute_query(
            "SELECT * FROM subjects WHERE teacher_id = ? ORDER BY created_at DESC",
            (teacher_id,)
        )

    def delete_subject(self, subject_id: str, teacher_id: str) -> bool:
        """Delete a subject owned by ``teacher_id``; sessions are kept."""
        deleted = self.db.execute_update(
            "DELETE FROM subjects WHERE id = ? AND teacher_id = ?",
            (subject_id, teacher_id)
        )
        if deleted:
            self.logger.info(f"Subject {subject_id} deleted by {teacher_id}")
        return bool(deleted)
