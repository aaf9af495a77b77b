"""Relays committed notification events from ``event_outbox`` to RabbitMQ.

Run as ``storefront-outbox`` next to the API. Rows are claimed with
``FOR UPDATE SKIP LOCKED`` so several relays can share one table.
"""

import json
import threading
from datetime import datetime, timezone
from typing import Optional

import pika
import structlog
from pika.exceptions import AMQPError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .config import Settings
from .database import init_db, make_engine, make_session_factory, session_scope
from .errors import StorageError
from .logging_config import configure_logging
from .models import EventOutbox

logger = structlog.get_logger(__name__)

EXCHANGE = "storefront.events"


def ensure_exchange(ch):
    ch.exchange_declare(exchange=EXCHANGE, exchange_type="direct", durable=True)


def connect_rabbitmq_with_retry(url: str, max_wait_sec: int = 60, stop: Optional[threading.Event] = None):
    stop = stop or threading.Event()
    attempt = 0
    while True:
        try:
            params = pika.URLParameters(url)
            params.heartbeat = 30
            params.blocked_connection_timeout = 300
            conn = pika.BlockingConnection(params)
            ch = conn.channel()
            ensure_exchange(ch)
            return conn, ch
        except AMQPError as e:
            attempt += 1
            sleep = min(2 ** attempt, max_wait_sec)
            logger.warning("rabbitmq_connect_failed", error=str(e), retry_in=sleep)
            if stop.wait(sleep):
                raise


def _close_quietly(resource) -> None:
    if resource is None:
        return
    try:
        resource.close()
    except AMQPError as e:
        logger.debug("rabbitmq_close_failed", error=str(e))


class OutboxRelay:
    def __init__(self, session_factory: sessionmaker, batch_size: int = 100):
        self._session_factory = session_factory
        self._batch_size = batch_size

    def relay_once(self, channel) -> int:
        """Publish one batch of NEW rows. Returns how many were published.

        A broker error rolls the whole batch back to NEW, so delivery is at
        least once; consumers dedupe on message_id. A payload that cannot be
        encoded is marked FAILED.
        """
        published = 0
        with session_scope(self._session_factory) as db:
            rows = db.execute(
                select(EventOutbox)
                .where(EventOutbox.status == "NEW")
                .order_by(EventOutbox.id)
                .limit(self._batch_size)
                .with_for_update(skip_locked=True)
            ).scalars().all()
            for row in rows:
                try:
                    body = json.dumps(row.payload).encode("utf-8")
                except (TypeError, ValueError) as e:
                    logger.error("outbox_payload_invalid", outbox_id=row.id, error=str(e))
                    row.status = "FAILED"
                    continue
                channel.basic_publish(
                    exchange=EXCHANGE,
                    routing_key=row.event_type,
                    body=body,
                    properties=pika.BasicProperties(
                        content_type="application/json",
                        delivery_mode=2,  # persistent
                        message_id=row.event_id,
                    ),
                )
                row.status = "PUBLISHED"
                row.published_at = datetime.now(timezone.utc)
                published += 1
        if published:
            logger.info("outbox_batch_published", count=published)
        return published


def run(settings: Settings, stop: Optional[threading.Event] = None) -> None:
    stop = stop or threading.Event()
    engine = make_engine(settings.database_url)
    init_db(engine)
    relay = OutboxRelay(make_session_factory(engine), settings.outbox_batch_size)

    conn, channel = connect_rabbitmq_with_retry(settings.rabbitmq_url, stop=stop)
    logger.info("outbox_relay_started", exchange=EXCHANGE)
    try:
        while not stop.is_set():
            try:
                relay.relay_once(channel)
            except AMQPError as e:
                logger.warning("outbox_publish_failed", error=str(e))
                _close_quietly(channel)
                _close_quietly(conn)
                conn, channel = connect_rabbitmq_with_retry(settings.rabbitmq_url, stop=stop)
            except (StorageError, SQLAlchemyError) as e:
                logger.error("outbox_db_error", error=str(e))
            stop.wait(settings.outbox_poll_sec)
    finally:
        _close_quietly(channel)
        _close_quietly(conn)
        engine.dispose()
        logger.info("outbox_relay_stopped")


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level, settings.log_json)
    try:
        run(settings)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
