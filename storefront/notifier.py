"""Notification records and the in-process publish channel.

A notification is written (together with its outbox row) in a unit of work of
its own, then broadcast as ``new_notification``. Nothing here ever raises into
the operation that triggered it: failures are logged and dropped.
"""

import asyncio
import itertools
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Optional

import structlog
from sqlalchemy.orm import sessionmaker

from .database import session_scope
from .errors import NotificationError
from .models import EventOutbox, Notification, NotificationType

logger = structlog.get_logger(__name__)

NEW_NOTIFICATION = "new_notification"
OUTBOX_EVENT_TYPE = "notification.created"

Subscriber = Callable[[str, dict], None]


def serialize_notification(row: Notification) -> dict:
    return {
        "id": row.id,
        "type": row.type,
        "reference_id": row.reference_id,
        "message": row.message,
        "is_read": bool(row.is_read),
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


class Broadcaster:
    """Fan-out publish channel. Subscribers are called on the publisher's thread
    and must not block; see ``QueueSubscriber`` for the websocket side."""

    def __init__(self):
        self._subscribers: Dict[int, Subscriber] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> int:
        with self._lock:
            token = next(self._ids)
            self._subscribers[token] = callback
        return token

    def unsubscribe(self, token: int) -> None:
        with self._lock:
            self._subscribers.pop(token, None)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event_name: str, payload: dict) -> None:
        with self._lock:
            targets = list(self._subscribers.items())
        for token, callback in targets:
            try:
                callback(event_name, payload)
            except Exception:
                logger.exception("subscriber_failed", event_name=event_name, subscriber=token)

    def close(self) -> None:
        with self._lock:
            self._subscribers.clear()


class QueueSubscriber:
    """Bridges publisher threads into an asyncio queue. Events are dropped when
    the queue is full or its loop is gone."""

    def __init__(self, loop: asyncio.AbstractEventLoop, maxsize: int = 100):
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def __call__(self, event_name: str, payload: dict) -> None:
        try:
            self.loop.call_soon_threadsafe(self._offer, {"event": event_name, "data": payload})
        except RuntimeError:
            self.dropped += 1

    def _offer(self, message: dict) -> None:
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("subscriber_queue_full", dropped=self.dropped)


class Notifier:
    def __init__(self, session_factory: sessionmaker, channel, workers: int = 0):
        self._session_factory = session_factory
        self._channel = channel
        self._closed = False
        self._executor: Optional[ThreadPoolExecutor] = None
        if workers > 0:
            self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="notifier")

    def notify(self, type: NotificationType, reference_id: int, message: str) -> None:
        """Emit after the caller's commit; hands off to the worker pool when there is one."""
        if self._closed:
            logger.warning("notifier_closed", type=type.value, reference_id=reference_id)
            return
        if self._executor is None:
            self.deliver(type, reference_id, message)
            return
        try:
            self._executor.submit(self.deliver, type, reference_id, message)
        except RuntimeError:
            logger.warning("notifier_closed", type=type.value, reference_id=reference_id)

    def notify_low_stock(self, product_id: int, name: str) -> None:
        self.notify(NotificationType.LOW_STOCK, product_id, f"Product '{name}' is low on supplies!")

    def deliver(self, type: NotificationType, reference_id: int, message: str) -> Optional[dict]:
        try:
            payload = self._record(type, reference_id, message)
        except NotificationError as e:
            logger.warning("notification_dropped", type=type.value, reference_id=reference_id, error=e.message)
            return None
        try:
            self._publish(payload)
        except NotificationError as e:
            logger.warning("notification_publish_failed", notification_id=payload["id"], error=e.message)
        logger.info("notification_sent", notification_id=payload["id"], type=type.value, reference_id=reference_id)
        return payload

    def _record(self, type: NotificationType, reference_id: int, message: str) -> dict:
        try:
            with session_scope(self._session_factory) as db:
                row = Notification(type=type.value, reference_id=reference_id, message=message, is_read=False)
                db.add(row)
                db.flush()
                db.refresh(row)
                payload = serialize_notification(row)
                db.add(EventOutbox(event_type=OUTBOX_EVENT_TYPE, payload=payload))
            return payload
        except Exception as e:
            raise NotificationError(str(e)) from e

    def _publish(self, payload: dict) -> None:
        try:
            self._channel.publish(NEW_NOTIFICATION, payload)
        except Exception as e:
            raise NotificationError(str(e)) from e

    def close(self) -> None:
        self._closed = True
        if self._executor is not None:
            self._executor.shutdown(wait=True)
