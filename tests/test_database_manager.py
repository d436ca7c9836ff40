import threading

from rollcall.modules.database_manager import DatabaseManager
from rollcall.modules.session_lifecycle import SessionLifecycle
from rollcall.modules.token_generator import TokenGenerator


def run_in_thread(target, *args):
    thread = threading.Thread(target=target, args=args)
    thread.start()
    thread.join(timeout=30)


def test_schema_is_created_idempotently(tmp_path):
    first = DatabaseManager(tmp_path / "attendance.db")
    second = DatabaseManager(tmp_path / "attendance.db")
    try:
        tables = second.execute_query("SELECT name FROM sqlite_master WHERE type = 'table'")
        assert {"subjects", "sessions", "attendance"} <= {row["name"] for row in tables}
    finally:
        first.close_all_connections()
        second.close_all_connections()


def test_connections_of_finished_threads_are_closed(lifecycle, db):
    session = lifecycle.start("subject-1", "teacher-1")

    for _ in range(200):
        run_in_thread(lifecycle._rotate_by_id, session.id)

    assert db.open_connection_count() <= 2
    assert lifecycle.get_session(session.id).rotation_count == 200


def test_release_thread_connection_reopens_on_next_use(db):
    db.execute_query("SELECT 1")
    assert db.open_connection_count() == 1

    db.release_thread_connection()
    assert db.open_connection_count() == 0

    assert db.execute_query("SELECT 1 AS one", fetch_all=False) == {"one": 1}
    assert db.open_connection_count() == 1


def test_release_without_connection_is_noop(db):
    db.close_all_connections()
    db.release_thread_connection()
    assert db.open_connection_count() == 0


def test_scheduled_rotation_closes_timer_thread_connection(db, timers):
    lifecycle = SessionLifecycle(db, TokenGenerator(), rotation_interval=10, timer_factory=timers)
    session = lifecycle.start("subject-1", "teacher-1")
    assert db.open_connection_count() == 1

    # Timers fire on their own thread
    run_in_thread(timers.created[0].fire)

    assert lifecycle.get_session(session.id).rotation_count == 1
    assert db.open_connection_count() == 1
    assert lifecycle.scheduler.is_scheduled(session.id)
