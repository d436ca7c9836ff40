# QR Rollcall - App Package
"""
Main application package for the QR Rollcall attendance system.
Contains the session token lifecycle and attendance admission control.
"""

__version__ = "1.0.0"
__description__ = "Rotating QR code attendance sessions with one submission per student"

from .modules.database_manager import DatabaseManager
from .modules.token_generator import TokenGenerator
from .modules.session_lifecycle import SessionLifecycle, RotationScheduler, Session
from .modules.attendance_ledger import AttendanceLedger, AttendanceRecord, StudentKey
from .modules.admission_controller import AdmissionController
from .modules.notification_system import NotificationSystem
from .modules.qr_generator import QRRenderer
from .modules.subject_manager import SubjectManager
from .modules.report_generator import ReportGenerator

__all__ = [
    'DatabaseManager',
    'TokenGenerator',
    'SessionLifecycle',
    'RotationScheduler',
    'Session',
    'AttendanceLedger',
    'AttendanceRecord',
    'StudentKey',
    'AdmissionController',
    'NotificationSystem',
    'QRRenderer',
    'SubjectManager',
    'ReportGenerator'
]
