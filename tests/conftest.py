import pytest

from app import create_app
from rollcall.modules.admission_controller import AdmissionController
from rollcall.modules.attendance_ledger import AttendanceLedger, StudentKey
from rollcall.modules.database_manager import DatabaseManager
from rollcall.modules.notification_system import NotificationSystem
from rollcall.modules.session_lifecycle import SessionLifecycle
from rollcall.modules.token_generator import TokenGenerator


class FakeTimer:
    """Stands in for threading.Timer; fired by hand."""

    def __init__(self, interval, function, args=()):
        self.interval = interval
        self.function = function
        self.args = args
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function(*self.args)


@pytest.fixture
def timers():
    created = []

    def factory(interval, function, args=()):
        timer = FakeTimer(interval, function, args)
        created.append(timer)
        return timer

    factory.created = created
    return factory


@pytest.fixture
def db(tmp_path):
    manager = DatabaseManager(tmp_path / "attendance.db")
    yield manager
    manager.close_all_connections()


@pytest.fixture
def lifecycle(db):
    return SessionLifecycle(db, TokenGenerator())


@pytest.fixture
def notifier():
    system = NotificationSystem()
    yield system
    system.shutdown()


@pytest.fixture
def ledger(db, notifier):
    return AttendanceLedger(db, notifier)


@pytest.fixture
def controller(db, ledger, notifier):
    return AdmissionController(db, ledger, notifier)


@pytest.fixture
def ana():
    return StudentKey("Ana", "Lee", "CRN123")


@pytest.fixture
def app(tmp_path):
    application = create_app("testing", database_path=tmp_path / "app.db")
    yield application
    application.extensions["rollcall"].shutdown()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def teacher_client(client):
    with client.session_transaction() as sess:
        sess["user_id"] = "teacher-1"
    return client
