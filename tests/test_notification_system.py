import logging

from rollcall.modules.attendance_ledger import AttendanceRecord, StudentKey
from rollcall.modules.notification_system import NotificationSystem


def make_record(session_id="s1", record_id="r1"):
    return AttendanceRecord(
        id=record_id,
        session_id=session_id,
        student_key=StudentKey("Ana", "Lee", "CRN123"),
        token_used="a" * 32,
        submitted_at="2026-10-19T09:00:01+00:00",
    )


def test_subscribers_only_receive_their_session(notifier):
    mine = notifier.subscribe("s1")
    theirs = notifier.subscribe("s2")
    record = make_record("s1")

    assert notifier.notify("s1", record) is True
    notifier.wait_until_idle()

    assert mine.get(timeout=1) == record
    assert theirs.queue.empty()


def test_failing_observer_is_logged_and_others_still_served(notifier, caplog):
    delivered = []

    def broken(session_id, record):
        raise RuntimeError("socket closed")

    notifier.add_observer(broken)
    notifier.add_observer(lambda session_id, record: delivered.append(record.id))

    with caplog.at_level(logging.ERROR):
        notifier.notify("s1", make_record())
        notifier.wait_until_idle()

    assert delivered == ["r1"]
    assert "socket closed" in caplog.text


def test_unrenderable_record_is_dropped_without_raising(notifier, caplog):
    assert notifier.notify("s1", object()) is False
    assert "Failed to queue attendance notification" in caplog.text


def test_recent_notifications_newest_first(notifier):
    notifier.notify("s1", make_record("s1", "r1"))
    notifier.notify("s2", make_record("s2", "r2"))
    notifier.wait_until_idle()

    recent = notifier.get_recent_notifications()
    only_s1 = notifier.get_recent_notifications(session_id="s1")

    assert [n["data"]["id"] for n in recent] == ["r2", "r1"]
    assert [n["data"]["id"] for n in only_s1] == ["r1"]
    assert recent[0]["message"].startswith("Ana Lee (CRN CRN123) checked in at")
    assert "record" not in recent[0]


def test_full_subscriber_queue_drops_updates(caplog):
    system = NotificationSystem(subscriber_queue_size=1)
    try:
        subscription = system.subscribe("s1")
        system.notify("s1", make_record(record_id="r1"))
        system.notify("s1", make_record(record_id="r2"))
        system.wait_until_idle()

        assert subscription.get(timeout=1).id == "r1"
        assert subscription.queue.empty()
        assert "dropping update" in caplog.text
    finally:
        system.shutdown()
