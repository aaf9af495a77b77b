from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Mapping

import structlog
from sqlalchemy.orm import sessionmaker

from .database import session_scope
from .errors import ValidationError
from .models import Order, OrderItem
from .notifier import Notifier
from .status import OrderStatus
from .stock import CommittedLine, LineRequest, StockLedger, is_low_stock

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PlacedOrder:
    order_id: int
    total: Decimal


def _required_text(value, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    return value.strip()


def _field(item, name):
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def _parse_items(items) -> List[LineRequest]:
    if not isinstance(items, (list, tuple)) or not items:
        raise ValidationError("Missing required fields or items")
    lines = []
    for index, item in enumerate(items):
        product_id = _field(item, "product_id")
        quantity = _field(item, "quantity")
        if not isinstance(product_id, int) or isinstance(product_id, bool):
            raise ValidationError(f"items[{index}].product_id must be an integer")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise ValidationError(f"items[{index}].quantity must be a positive integer")
        lines.append(LineRequest(product_id=product_id, quantity=quantity))
    return lines


class OrderCoordinator:
    def __init__(self, session_factory: sessionmaker, ledger: StockLedger, notifier: Notifier):
        self._session_factory = session_factory
        self._ledger = ledger
        self._notifier = notifier

    def place_order(self, customer_name: str, payment_mode: str, items: Iterable) -> PlacedOrder:
        """
        Single transaction:
        - check and decrement stock for every line
        - insert the order (Pending) and its item snapshots
        Low-stock alerts go out only after the commit.
        """
        customer_name = _required_text(customer_name, "customer_name")
        payment_mode = _required_text(payment_mode, "payment_mode")
        lines = _parse_items(items)

        with session_scope(self._session_factory) as db:
            committed = self._ledger.reserve_and_decrement(db, lines)
            total = sum((line.total for line in committed), Decimal("0.00"))
            order = Order(
                customer_name=customer_name,
                total=total,
                payment_mode=payment_mode,
                status=OrderStatus.PENDING.value,
            )
            order.items = [
                OrderItem(
                    product_id=line.product_id,
                    product_name=line.product_name,
                    quantity=line.quantity,
                    price=line.price,
                    total=line.total,
                )
                for line in committed
            ]
            db.add(order)
            db.flush()
            order_id = order.id

        logger.info("order_placed", order_id=order_id, total=str(total), lines=len(committed))
        self._alert_low_stock(committed)
        return PlacedOrder(order_id=order_id, total=total)

    def _alert_low_stock(self, committed: List[CommittedLine]) -> None:
        seen = set()
        for line in committed:
            if line.product_id in seen:
                continue
            seen.add(line.product_id)
            if is_low_stock(line.remaining_stock):
                self._notifier.notify_low_stock(line.product_id, line.product_name)
