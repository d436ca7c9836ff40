import sqlite3
from dataclasses import replace
from unittest.mock import MagicMock

import pytest

from rollcall.modules.exceptions import EntropyUnavailable, InvalidState, PersistenceError
from rollcall.modules.session_lifecycle import (
    STATUS_ACTIVE,
    STATUS_STOPPED,
    RotationScheduler,
    SessionLifecycle,
)
from rollcall.modules.token_generator import TokenGenerator


def test_start_persists_active_session(lifecycle):
    session = lifecycle.start("subject-1", "teacher-1")

    stored = lifecycle.get_session(session.id)
    assert stored == session
    assert stored.status == STATUS_ACTIVE
    assert stored.rotation_count == 0
    assert stored.stopped_at is None
    assert len(stored.current_token) == 32


def test_rotation_count_tracks_rotations_and_tokens_never_repeat(lifecycle):
    session = lifecycle.start("subject-1", "teacher-1")
    tokens = [session.current_token]

    for _ in range(25):
        session = lifecycle.rotate(session)
        tokens.append(session.current_token)

    assert session.rotation_count == 25
    assert lifecycle.get_session(session.id).rotation_count == 25
    assert len(set(tokens)) == len(tokens)


def test_rotate_after_stop_is_rejected_and_token_is_frozen(lifecycle):
    session = lifecycle.start("subject-1", "teacher-1")
    session = lifecycle.rotate(session)
    stopped = lifecycle.stop(session)

    with pytest.raises(InvalidState):
        lifecycle.rotate(stopped)
    # A stale handle still claiming to be active is refused by the store
    with pytest.raises(InvalidState):
        lifecycle.rotate(session)

    stored = lifecycle.get_session(session.id)
    assert stored.status == STATUS_STOPPED
    assert stored.current_token == session.current_token
    assert stored.rotation_count == 1


def test_stop_is_idempotent(lifecycle):
    session = lifecycle.start("subject-1", "teacher-1")

    first = lifecycle.stop(session)
    second = lifecycle.stop(session)

    assert first.status == STATUS_STOPPED
    assert first.stopped_at is not None
    assert second == first


def test_stop_unknown_session_is_invalid(lifecycle):
    session = lifecycle.start("subject-1", "teacher-1")
    ghost = replace(session, id="missing")

    with pytest.raises(InvalidState):
        lifecycle.stop(ghost)


def test_start_failure_surfaces_persistence_error():
    db = MagicMock()
    db.execute_update.side_effect = sqlite3.OperationalError("disk I/O error")
    lifecycle = SessionLifecycle(db, TokenGenerator())

    with pytest.raises(PersistenceError):
        lifecycle.start("subject-1", "teacher-1")


def test_start_without_entropy_stores_nothing(db):
    generator = MagicMock()
    generator.generate.side_effect = EntropyUnavailable()
    lifecycle = SessionLifecycle(db, generator)

    with pytest.raises(EntropyUnavailable):
        lifecycle.start("subject-1", "teacher-1")

    assert lifecycle.list_sessions("subject-1") == []


def test_token_listeners_receive_every_token(db):
    seen = []
    lifecycle = SessionLifecycle(db, TokenGenerator(), token_listeners=[lambda sid, token: seen.append((sid, token))])

    session = lifecycle.start("subject-1", "teacher-1")
    rotated = lifecycle.rotate(session)

    assert seen == [(session.id, session.current_token), (rotated.id, rotated.current_token)]


def test_failing_listener_does_not_break_rotation(db, caplog):
    def broken(session_id, token):
        raise RuntimeError("renderer offline")

    lifecycle = SessionLifecycle(db, TokenGenerator(), token_listeners=[broken])

    session = lifecycle.start("subject-1", "teacher-1")
    rotated = lifecycle.rotate(session)

    assert rotated.rotation_count == 1
    assert "renderer offline" in caplog.text


def test_list_and_active_sessions(lifecycle):
    first = lifecycle.start("subject-1", "teacher-1")
    second = lifecycle.start("subject-1", "teacher-1")
    lifecycle.start("subject-2", "teacher-1")
    lifecycle.stop(first)

    listed = lifecycle.list_sessions("subject-1")

    assert {session.id for session in listed} == {first.id, second.id}
    assert [session.id for session in lifecycle.active_sessions("subject-1")] == [second.id]


def test_to_dict_hides_token_unless_asked(lifecycle):
    session = lifecycle.start("subject-1", "teacher-1")

    assert "current_token" not in session.to_dict()
    assert session.to_dict(include_token=True)["current_token"] == session.current_token


def test_start_arms_rotation_timer(db, timers):
    lifecycle = SessionLifecycle(db, TokenGenerator(), rotation_interval=10, timer_factory=timers)

    session = lifecycle.start("subject-1", "teacher-1")

    assert len(timers.created) == 1
    assert timers.created[0].interval == 10
    assert timers.created[0].started
    assert timers.created[0].daemon
    assert lifecycle.scheduler.is_scheduled(session.id)


def test_each_rotation_schedules_the_next(db, timers):
    lifecycle = SessionLifecycle(db, TokenGenerator(), rotation_interval=10, timer_factory=timers)
    session = lifecycle.start("subject-1", "teacher-1")

    timers.created[0].fire()
    timers.created[1].fire()

    assert lifecycle.get_session(session.id).rotation_count == 2
    assert len(timers.created) == 3
    assert timers.created[2].started


def test_stop_cancels_pending_rotation(db, timers):
    lifecycle = SessionLifecycle(db, TokenGenerator(), rotation_interval=10, timer_factory=timers)
    session = lifecycle.start("subject-1", "teacher-1")

    lifecycle.stop(session)
    timers.created[0].fire()

    assert timers.created[0].cancelled
    assert not lifecycle.scheduler.is_scheduled(session.id)
    stored = lifecycle.get_session(session.id)
    assert stored.rotation_count == 0
    assert stored.current_token == session.current_token
    assert len(timers.created) == 1


def test_timer_retires_when_session_already_stopped(db, timers):
    lifecycle = SessionLifecycle(db, TokenGenerator(), rotation_interval=10, timer_factory=timers)
    session = lifecycle.start("subject-1", "teacher-1")
    db.execute_update("UPDATE sessions SET status = 'stopped' WHERE id = ?", (session.id,))

    timers.created[0].fire()

    assert not lifecycle.scheduler.is_scheduled(session.id)
    assert len(timers.created) == 1
    assert lifecycle.get_session(session.id).current_token == session.current_token


def test_persistence_failure_keeps_rotation_schedule(timers, caplog):
    rotate = MagicMock(side_effect=PersistenceError("database is locked"))
    scheduler = RotationScheduler(rotate, 5, timer_factory=timers)

    scheduler.schedule("session-1")
    timers.created[0].fire()

    rotate.assert_called_once_with("session-1")
    assert len(timers.created) == 2
    assert scheduler.is_scheduled("session-1")
    assert "database is locked" in caplog.text


def test_entropy_failure_retires_rotation_schedule(timers):
    rotate = MagicMock(side_effect=EntropyUnavailable())
    scheduler = RotationScheduler(rotate, 5, timer_factory=timers)

    scheduler.schedule("session-1")
    timers.created[0].fire()

    assert not scheduler.is_scheduled("session-1")
    assert len(timers.created) == 1


def test_shutdown_cancels_all_timers(timers):
    scheduler = RotationScheduler(MagicMock(), 5, timer_factory=timers)
    scheduler.schedule("a")
    scheduler.schedule("b")

    scheduler.shutdown()

    assert all(timer.cancelled for timer in timers.created)
    assert not scheduler.is_scheduled("a")


@pytest.mark.parametrize("interval", [0, -3, 1.5, "10", True])
def test_rotation_interval_must_be_positive_integer(interval):
    with pytest.raises(ValueError):
        RotationScheduler(MagicMock(), interval)


def test_stop_during_scheduled_rotation_leaves_no_timer(timers):
    scheduler = RotationScheduler(MagicMock(), 5, timer_factory=timers)
    # Stop lands while the rotation is in flight
    scheduler.rotate_callback.side_effect = lambda session_id: scheduler.cancel(session_id)

    scheduler.schedule("session-1")
    timers.created[0].fire()

    assert not scheduler.is_scheduled("session-1")
    assert len(timers.created) == 1


def test_scheduler_releases_after_every_fire(timers):
    release = MagicMock()
    rotate = MagicMock(side_effect=[None, InvalidState("stopped")])
    scheduler = RotationScheduler(rotate, 5, timer_factory=timers, release_callback=release)

    scheduler.schedule("session-1")
    timers.created[0].fire()
    timers.created[1].fire()

    assert release.call_count == 2
    assert not scheduler.is_scheduled("session-1")


def test_shutdown_drops_session_locks(lifecycle):
    session = lifecycle.start("subject-1", "teacher-1")
    lifecycle.rotate(session)
    assert session.id in lifecycle._locks

    lifecycle.shutdown()

    assert lifecycle._locks == {}
