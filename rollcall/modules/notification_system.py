"""
Notification System Module - QR Rollcall Attendance System

This module pushes newly accepted attendance submissions to observers such
as the live attendance dashboard. Delivery is best-effort: notifications are
queued and fanned out by a background thread, so admission never waits on
an observer and a failing observer never affects a committed record.

Features:
- Background notification dispatcher
- Per-session subscriptions for live feeds
- Observer callbacks
- Templated notification messages
- Bounded notification history
"""

from collections import deque
from datetime import datetime, timezone
from dataclasses import dataclass, field, asdict
import logging
import queue
import threading
import uuid
from typing import Any, Callable, Dict, List, Optional

from jinja2 import Template

ATTENDANCE_SUBMITTED = 'attendance_submitted'


@dataclass
class NotificationData:
    """Data structure for notification information."""
    id: str
    type: str
    session_id: str
    title: str
    message: str
    data: Dict[str, Any]
    created_at: str
    record: Any = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop('record')
        return data


class Subscription:
    """Queue of records pushed for one session."""

    def __init__(self, session_id: str, max_size: int = 0):
        self.session_id = session_id
        self.queue = queue.Queue(maxsize=max_size)

    def get(self, timeout: Optional[float] = None):
        return self.queue.get(timeout=timeout)


class NotificationSystem:
    """
    Best-effort notifier for accepted attendance submissions.
    """

    def __init__(self, history_size: int = 100, subscriber_queue_size: int = 1000):
        """
        Args:
            history_size (int): Number of recent notifications kept in memory
            subscriber_queue_size (int): Pending records kept per subscriber
                before new ones are dropped
        """
        self.logger = logging.getLogger(__name__)
        self.subscriber_queue_size = subscriber_queue_size

        self.notification_queue = queue.Queue()
        self.history = deque(maxlen=history_size)

        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._observers: List[Callable[[str, Any], None]] = []
        self._lock = threading.Lock()

        self.template = Template(
            "{{ first_name }} {{ last_name }} (CRN {{ crn }}) checked in at {{ submitted_at }}"
        )

        self.notification_processor = threading.Thread(
            target=self._process_notifications,
            name='rollcall-notifications',
            daemon=True
        )
        self.notification_processor.start()

        self.logger.info("Notification system initialized")

    def notify(self, session_id: str, record) -> bool:
        """
        Queue an accepted attendance record for delivery. Never raises.

        Args:
            session_id (str): Session the record belongs to
            record: The committed attendance record

        Returns:
            bool: Whether the notification was queued
        """
        try:
            data = record.to_dict()
            notification = NotificationData(
                id=uuid.uuid4().hex,
                type=ATTENDANCE_SUBMITTED,
                session_id=session_id,
                title=f"Attendance Recorded - {data['first_name']} {data['last_name']}",
                message=self.template.render(**data),
                data=data,
                created_at=datetime.now(timezone.utc).isoformat(),
                record=record,
            )
            self.notification_queue.put_nowait(notification)
            return True

        except Exception as e:
            self.logger.error(f"Failed to queue attendance notification: {str(e)}")
            return False

    def subscribe(self, session_id: str) -> Subscription:
        subscription = Subscription(session_id, self.subscriber_queue_size)
        with self._lock:
            self._subscriptions.setdefault(session_id, []).append(subscription)
        self.logger.debug(f"Subscriber added for session {session_id}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscriptions.get(subscription.session_id, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscriptions.pop(subscription.session_id, None)
        self.logger.debug(f"Subscriber removed for session {subscription.session_id}")

    def add_observer(self, observer: Callable[[str, Any], None]) -> None:
        """Register a callable receiving ``(session_id, record)`` for every delivery."""
        with self._lock:
            self._observers.append(observer)

    def _process_notifications(self) -> None:
        """Background loop delivering queued notifications."""
        while True:
            notification = self.notification_queue.get()
            if notification is None:
                self.notification_queue.task_done()
                break
            try:
                self._handle_notification(notification)
            except Exception as e:
                self.logger.error(f"Error processing notification: {str(e)}")
            finally:
                self.notification_queue.task_done()

    def _handle_notification(self, notification: NotificationData) -> None:
        self.history.append(notification)

        with self._lock:
            subscribers = list(self._subscriptions.get(notification.session_id, []))
            observers = list(self._observers)

        for subscription in subscribers:
            try:
                subscription.queue.put_nowait(notification.record)
            except queue.Full:
                self.logger.warning(f"Subscriber queue full for session {notification.session_id}, dropping update")

        for observer in observers:
            try:
                observer(notification.session_id, notification.record)
            except Exception as e:
                self.logger.error(f"Attendance observer failed: {str(e)}")

        self.logger.info(f"Delivered notification: {notification.title}")

    def get_recent_notifications(self, limit: int = 10, session_id: str = None) -> List[Dict[str, Any]]:
        """
        Get recent notifications, newest first.

        Args:
            limit (int): Maximum number of notifications to return
            session_id (str): Only notifications of this session

        Returns:
            List[Dict[str, Any]]: Notification dictionaries
        """
        notifications = list(self.history)
        if session_id:
            notifications = [n for n in notifications if n.session_id == session_id]
        notifications.reverse()
        return [notification.to_dict() for notification in notifications[:limit]]

    def wait_until_idle(self) -> None:
        """Block until every queued notification has been delivered."""
        self.notification_queue.join()

    def shutdown(self) -> None:
        """Stop the background dispatcher."""
        if self.notification_processor.is_alive():
            self.notification_queue.put(None)
            self.notification_processor.join(timeout=5)
        self.logger.info("Notification system shut down")
