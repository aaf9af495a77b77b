import enum
from dataclasses import dataclass
from typing import Optional, Union

import structlog
from sqlalchemy.orm import sessionmaker

from .database import session_scope
from .errors import NotFoundError, ValidationError
from .models import STATUS_LENGTH, NotificationType, Order
from .notifier import Notifier

logger = structlog.get_logger(__name__)


class OrderStatus(str, enum.Enum):
    PENDING = "Pending"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled/Returned"


# Checked in order; the first hit wins. "pending" outranks "delivered", which
# outranks "cancelled"/"returned", so "returned, now pending" is Pending.
_KEYWORDS = (
    (("pending",), OrderStatus.PENDING),
    (("delivered",), OrderStatus.DELIVERED),
    (("cancelled", "returned"), OrderStatus.CANCELLED),
)


def normalize_status(raw: str) -> Union[OrderStatus, str]:
    """Map free-form input onto a canonical status.

    Matching is a case-insensitive substring test. Input that names none of the
    keywords is kept as typed, minus surrounding whitespace.
    """
    trimmed = raw.strip()
    lowered = trimmed.lower()
    for keywords, status in _KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return status
    return trimmed


def status_message(order_id: int, customer_name: str, status: str) -> Optional[str]:
    lowered = (status or "").lower()
    if "delivered" in lowered:
        return f"Order #{order_id} for {customer_name} has been delivered!"
    if "cancelled" in lowered or "returned" in lowered:
        return f"Order #{order_id} for {customer_name} has been cancelled/returned!"
    return None


@dataclass(frozen=True)
class StatusUpdate:
    order_id: int
    status: str


class StatusTransitionHandler:
    """Applies status changes. Transitions are free-form (a delivered order may go
    back to Pending) and a repeated status notifies again every time."""

    def __init__(self, session_factory: sessionmaker, notifier: Notifier):
        self._session_factory = session_factory
        self._notifier = notifier

    def update_status(self, order_id: int, requested_status: Optional[str]) -> StatusUpdate:
        if not isinstance(requested_status, str) or not requested_status.strip():
            raise ValidationError("Status is required")
        normalized = normalize_status(requested_status)
        value = normalized.value if isinstance(normalized, OrderStatus) else normalized
        if len(value) > STATUS_LENGTH:
            raise ValidationError(f"Status must be at most {STATUS_LENGTH} characters")

        with session_scope(self._session_factory) as db:
            order = db.get(Order, order_id)
            if order is None:
                raise NotFoundError("Order", order_id)
            previous = order.status
            order.status = value
        logger.info("order_status_updated", order_id=order_id, previous=previous, status=value)

        with session_scope(self._session_factory) as db:
            order = db.get(Order, order_id)
            current = None if order is None else (order.id, order.customer_name, order.status)

        if current is not None:
            message = status_message(*current)
            if message:
                self._notifier.notify(NotificationType.STATUS_CHANGE, current[0], message)
            else:
                logger.debug("no_status_notification", order_id=order_id, status=current[2])
        return StatusUpdate(order_id=order_id, status=value)
