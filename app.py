"""
Flask QR Rollcall Attendance System - Main Application

This module serves as the main entry point for the rotating QR code
attendance system. It wires the attendance core together and exposes it
over HTTP: teachers start and stop sessions and watch attendance arrive,
students open the link carried by the displayed QR code and submit their
name and CRN number once per session.

Features:
- Session start/stop with automatic token rotation
- Rotating QR code display
- Attendance form and raw QR scan submission
- Live attendance feed (server-sent events)
- Session history and CSV export
"""

from flask import Blueprint, Flask, Response, current_app, jsonify, request, session, stream_with_context
from functools import wraps
import json
import logging

from config import get_config, validate_config
from rollcall.modules.admission_controller import AdmissionController
from rollcall.modules.attendance_ledger import AttendanceLedger
from rollcall.modules.database_manager import DatabaseManager
from rollcall.modules.exceptions import RollcallError
from rollcall.modules.notification_system import NotificationSystem
from rollcall.modules.qr_generator import QRRenderer
from rollcall.modules.report_generator import ReportGenerator
from rollcall.modules.session_lifecycle import SessionLifecycle
from rollcall.modules.subject_manager import SubjectManager
from rollcall.modules.token_generator import TokenGenerator

logger = logging.getLogger(__name__)

# HTTP status for each rejection a claim can receive
STATUS_CODES = {
    'invalid_input': 400,
    'invalid_qr_code': 400,
    'token_expired': 403,
    'session_not_found': 404,
    'duplicate_submission': 409,
    'session_closed': 410,
}

bp = Blueprint('rollcall', __name__)


class Components:
    """Attendance core instances shared by the routes."""

    def __init__(self, config_class, database_path=None, token_generator=None):
        self.db = DatabaseManager(database_path or config_class.DATABASE_PATH)
        self.notification_system = NotificationSystem(
            history_size=config_class.NOTIFICATIONS_HISTORY_SIZE,
            subscriber_queue_size=config_class.NOTIFICATIONS_SUBSCRIBER_QUEUE_SIZE
        )
        self.qr_renderer = QRRenderer(config_class.PUBLIC_ORIGIN, {
            'box_size': config_class.QR_CODE_BOX_SIZE,
            'border': config_class.QR_CODE_BORDER,
            'fill_color': config_class.QR_CODE_FILL_COLOR,
            'back_color': config_class.QR_CODE_BACK_COLOR
        })
        self.session_lifecycle = SessionLifecycle(
            self.db,
            token_generator or TokenGenerator(),
            rotation_interval=config_class.QR_ROTATION_INTERVAL_SECONDS,
            token_listeners=[self.qr_renderer.on_token]
        )
        self.attendance_ledger = AttendanceLedger(self.db, self.notification_system)
        self.admission_controller = AdmissionController(
            self.db, self.attendance_ledger, self.notification_system
        )
        self.subject_manager = SubjectManager(self.db)
        self.report_generator = ReportGenerator(self.session_lifecycle, self.attendance_ledger)
        self.heartbeat_seconds = config_class.LIVE_FEED_HEARTBEAT_SECONDS

    def shutdown(self):
        self.session_lifecycle.shutdown()
        self.notification_system.shutdown()
        self.db.close_all_connections()


def components() -> Components:
    return current_app.extensions['rollcall']


def login_required(f):
    """Decorator to require a teacher identity for protected routes"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if 'user_id' not in session:
            return jsonify({
                'success': False,
                'message': 'Please log in to access this page.'
            }), 401
        return f(*args, **kwargs)
    return decorated_function


def error_response(message, error_type, status_code):
    return jsonify({
        'success': False,
        'message': message,
        'error_type': error_type
    }), status_code


def _owned_session(session_id):
    """Load a session the logged-in teacher owns, or an error response."""
    found = components().session_lifecycle.get_session(session_id)
    if found is None or found.teacher_id != session['user_id']:
        return None, error_response('Attendance session not found', 'session_not_found', 404)
    return found, None


def _owned_subject(subject_id):
    subject = components().subject_manager.get_subject(subject_id)
    if subject is None or subject['teacher_id'] != session['user_id']:
        return None, error_response('Subject not found', 'subject_not_found', 404)
    return subject, None


def _claim_response(result):
    if result['success']:
        return jsonify(result)
    return jsonify(result), STATUS_CODES.get(result['error_type'], 400)


@bp.errorhandler(RollcallError)
def handle_core_error(e):
    logger.error(f"Attendance core error ({e.error_type}): {e.message}")
    return error_response('An error occurred while processing the request', e.error_type, 500)


@bp.route('/api/subjects', methods=['GET'])
@login_required
def list_subjects():
    subjects = components().subject_manager.list_subjects(session['user_id'])
    return jsonify({'success': True, 'subjects': subjects})


@bp.route('/api/subjects', methods=['POST'])
@login_required
def create_subject():
    data = request.get_json(silent=True) or {}
    try:
        subject = components().subject_manager.create_subject(
            data.get('name'),
            data.get('crn_number'),
            data.get('day_time'),
            session['user_id']
        )
    except ValueError as e:
        return error_response(str(e), 'invalid_input', 400)
    return jsonify({'success': True, 'subject': subject}), 201


@bp.route('/api/subjects/<subject_id>', methods=['DELETE'])
@login_required
def delete_subject(subject_id):
    if not components().subject_manager.delete_subject(subject_id, session['user_id']):
        return error_response('Subject not found', 'subject_not_found', 404)
    return jsonify({'success': True})


@bp.route('/api/subjects/<subject_id>/sessions', methods=['POST'])
@login_required
def start_session(subject_id):
    """Start an attendance session, closing any still-active one for the subject"""
    subject, error = _owned_subject(subject_id)
    if error:
        return error

    core = components()
    for previous in core.session_lifecycle.active_sessions(subject_id):
        core.session_lifecycle.stop(previous)
        core.qr_renderer.forget(previous.id)
        logger.info(f"Closed previous session {previous.id} of subject {subject_id}")

    started = core.session_lifecycle.start(subject_id, session['user_id'])
    return jsonify({
        'success': True,
        'session': started.to_dict(),
        'subject': subject,
        'qr': core.qr_renderer.latest(started.id),
        'rotation_interval': core.session_lifecycle.scheduler.interval_seconds
        if core.session_lifecycle.scheduler else None
    }), 201


@bp.route('/api/sessions/<session_id>', methods=['GET'])
@login_required
def get_session(session_id):
    found, error = _owned_session(session_id)
    if error:
        return error
    return jsonify({
        'success': True,
        'session': found.to_dict(),
        'attendance_count': components().attendance_ledger.count(session_id)
    })


@bp.route('/api/sessions/<session_id>/stop', methods=['POST'])
@login_required
def stop_session(session_id):
    found, error = _owned_session(session_id)
    if error:
        return error

    core = components()
    stopped = core.session_lifecycle.stop(found)
    core.qr_renderer.forget(session_id)
    return jsonify({'success': True, 'session': stopped.to_dict()})


@bp.route('/api/sessions/<session_id>/qr', methods=['GET'])
@login_required
def session_qr(session_id):
    found, error = _owned_session(session_id)
    if error:
        return error
    if not found.is_active:
        return error_response('This attendance session has been closed', 'session_closed', 410)

    core = components()
    qr = core.qr_renderer.latest(session_id)
    if qr is None:
        qr = core.qr_renderer.render(found.id, found.current_token)
    return jsonify({'success': True, 'qr': qr, 'rotation_count': found.rotation_count})


@bp.route('/api/sessions/<session_id>/attendance', methods=['GET'])
@login_required
def session_attendance(session_id):
    _, error = _owned_session(session_id)
    if error:
        return error
    records = components().attendance_ledger.list_by_session(session_id)
    return jsonify({
        'success': True,
        'attendance': [record.to_dict() for record in records]
    })


@bp.route('/api/sessions/<session_id>/stream', methods=['GET'])
@login_required
def session_stream(session_id):
    """Live attendance feed as server-sent events"""
    _, error = _owned_session(session_id)
    if error:
        return error

    core = components()
    feed = core.attendance_ledger.follow(session_id)

    def generate():
        with feed:
            for record in feed.snapshot():
                yield f"event: attendance\ndata: {json.dumps(record.to_dict())}\n\n"

            while True:
                current = core.session_lifecycle.get_session(session_id)
                if current is None or not current.is_active:
                    yield "event: closed\ndata: {}\n\n"
                    return

                record = feed.poll(timeout=core.heartbeat_seconds)
                if record is None:
                    yield ": keepalive\n\n"
                else:
                    yield f"event: attendance\ndata: {json.dumps(record.to_dict())}\n\n"

    return Response(stream_with_context(generate()), mimetype='text/event-stream',
                    headers={'Cache-Control': 'no-cache'})


@bp.route('/api/sessions/<session_id>/export', methods=['GET'])
@login_required
def export_session(session_id):
    _, error = _owned_session(session_id)
    if error:
        return error
    csv_data = components().report_generator.export_session_csv(session_id)
    return Response(csv_data, mimetype='text/csv', headers={
        'Content-Disposition': f'attachment; filename=attendance_{session_id}.csv'
    })


@bp.route('/api/subjects/<subject_id>/history', methods=['GET'])
@login_required
def subject_history(subject_id):
    subject, error = _owned_subject(subject_id)
    if error:
        return error
    history = components().report_generator.session_history(subject_id)
    return jsonify({'success': True, 'subject': subject, 'sessions': history})


@bp.route('/api/notifications', methods=['GET'])
@login_required
def recent_notifications():
    limit = request.args.get('limit', 10, type=int)
    notifications = components().notification_system.get_recent_notifications(
        limit=limit, session_id=request.args.get('session_id')
    )
    return jsonify({'success': True, 'notifications': notifications})


@bp.route('/attend/<session_id>/<token>', methods=['GET'])
def attend_link(session_id, token):
    """Check the scanned link before the attendance form is shown"""
    core = components()
    result = core.admission_controller.validate_link(session_id, token)
    if not result['valid']:
        return jsonify(result), STATUS_CODES.get(result['error_type'], 400)

    subject = core.subject_manager.get_subject(result['subject_id'])
    result['subject'] = {
        'name': subject['name'],
        'day_time': subject['day_time']
    } if subject else None
    return jsonify(result)


@bp.route('/attend/<session_id>/<token>', methods=['POST'])
def attend_submit(session_id, token):
    """Record attendance from the form reached through the QR code"""
    data = request.get_json(silent=True) or request.form
    result = components().admission_controller.process_claim(
        session_id,
        token,
        data.get('first_name'),
        data.get('last_name'),
        data.get('crn')
    )
    return _claim_response(result)


@bp.route('/api/scan', methods=['POST'])
def process_scan():
    """Record attendance from the raw text of a decoded QR code"""
    data = request.get_json(silent=True) or {}
    qr_code = (data.get('qr_code') or '').strip()
    if not qr_code:
        return error_response('No QR code data provided', 'invalid_qr_code', 400)

    result = components().admission_controller.process_scan(
        qr_code,
        data.get('first_name'),
        data.get('last_name'),
        data.get('crn')
    )
    return _claim_response(result)


def create_app(config_name=None, database_path=None, token_generator=None):
    """
    Create the Flask application.

    Args:
        config_name (str): Key of the configuration to use
        database_path (str): Overrides the configured database path
        token_generator: Overrides the session token generator
    """
    config_class = get_config(config_name)

    errors = validate_config(config_class)
    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        raise RuntimeError("Configuration validation failed")

    logging.basicConfig(
        level=getattr(logging, str(config_class.LOG_LEVEL).upper(), logging.INFO),
        format='%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
    )

    app = Flask(__name__)
    config_class.init_app(app)

    app.extensions['rollcall'] = Components(config_class, database_path, token_generator)
    app.register_blueprint(bp)

    @app.teardown_appcontext
    def release_db_connection(exception=None):
        # Request threads of the threaded server do not outlive the request
        app.extensions['rollcall'].db.release_thread_connection()

    logger.info("QR Rollcall application created")
    return app


if __name__ == '__main__':
    app = create_app()
    try:
        app.run(debug=app.debug, host='0.0.0.0', port=5000, threaded=True, use_reloader=False)
    finally:
        app.extensions['rollcall'].shutdown()
