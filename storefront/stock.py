from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Sequence

import structlog
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .errors import InsufficientStock, ProductNotFound, ValidationError
from .models import Product

logger = structlog.get_logger(__name__)

LOW_STOCK_THRESHOLD = 20
CENTS = Decimal("0.01")
# largest value an Integer column holds on every backend
MAX_INT = 2**31 - 1


def is_low_stock(stock: int) -> bool:
    return stock < LOW_STOCK_THRESHOLD


@dataclass(frozen=True)
class LineRequest:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class CommittedLine:
    product_id: int
    product_name: str
    price: Decimal
    quantity: int
    total: Decimal
    remaining_stock: int


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


class StockLedger:
    """Owns stock quantities. The caller owns the session and its commit."""

    def reserve_and_decrement(self, db: Session, lines: Sequence[LineRequest]) -> List[CommittedLine]:
        if not lines:
            raise ValidationError("At least one line item is required")
        for line in lines:
            if not _is_positive_int(line.quantity):
                raise ValidationError(f"Quantity for product {line.product_id} must be a positive integer")

        requested: Dict[int, int] = {}
        for line in lines:
            requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

        # ascending id order keeps concurrent batches from deadlocking on row locks
        ids = sorted(requested)
        # ids the column cannot hold name no product
        lookup = [product_id for product_id in ids if 0 < product_id <= MAX_INT]
        rows = db.execute(
            select(Product).where(Product.id.in_(lookup)).order_by(Product.id).with_for_update()
        ).scalars().all()
        products = {p.id: p for p in rows}

        for line in lines:
            if line.product_id not in products:
                logger.info("order_line_rejected", product_id=line.product_id, reason="not_found")
                raise ProductNotFound(line.product_id)

        for product_id, quantity in requested.items():
            product = products[product_id]
            if quantity > product.stock:
                logger.info(
                    "order_line_rejected",
                    product_id=product_id,
                    reason="insufficient_stock",
                    available=product.stock,
                    requested=quantity,
                )
                raise InsufficientStock(product_id, product.stock, quantity, product.name)

        for product_id in ids:
            product = products[product_id]
            quantity = requested[product_id]
            result = db.execute(
                update(Product)
                .where(Product.id == product_id, Product.stock >= quantity)
                .values(stock=Product.stock - quantity)
                .execution_options(synchronize_session=False)
            )
            db.expire(product, ["stock"])
            if result.rowcount != 1:
                raise InsufficientStock(product_id, product.stock, quantity, product.name)

        remaining = {product_id: products[product_id].stock for product_id in ids}
        committed = []
        for line in lines:
            product = products[line.product_id]
            price = Decimal(product.price)
            committed.append(
                CommittedLine(
                    product_id=product.id,
                    product_name=product.name,
                    price=price,
                    quantity=line.quantity,
                    total=(price * line.quantity).quantize(CENTS),
                    remaining_stock=remaining[line.product_id],
                )
            )
        return committed
