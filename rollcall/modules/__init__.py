# QR Rollcall - Modules Package
"""
Core modules for the QR Rollcall attendance system.
"""

MODULES = {
    'database_manager': 'SQLite schema, queries and transactions',
    'token_generator': 'Secure session token generation',
    'session_lifecycle': 'Session state machine and token rotation',
    'attendance_ledger': 'Append-only attendance records and live feeds',
    'admission_controller': 'Attendance claim validation',
    'notification_system': 'Best-effort push of accepted submissions',
    'qr_generator': 'Attendance links and QR rendering',
    'subject_manager': 'Subject persistence',
    'report_generator': 'Session history and CSV export',
    'exceptions': 'Typed error taxonomy'
}


def get_module_info():
    """Get information about available modules"""
    return MODULES
