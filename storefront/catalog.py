"""Product mutations and the low-stock alerts they trigger.

Create alerts whenever the new product starts below the threshold. Update
alerts only when the edit moves stock from at-or-above the threshold to below
it, so repeated edits of an already-low product stay quiet.
"""

import math
from decimal import Decimal, InvalidOperation
from typing import Optional

import structlog
from sqlalchemy.orm import sessionmaker

from .blobs import BlobStore, ImageUpload
from .database import session_scope
from .errors import NotFoundError, ValidationError
from .models import Product
from .notifier import Notifier
from .stock import CENTS, LOW_STOCK_THRESHOLD, MAX_INT, is_low_stock

logger = structlog.get_logger(__name__)

# Numeric(12, 2) holds ten integer digits
MAX_PRICE = Decimal(10) ** 10


def parse_price(value) -> Decimal:
    if isinstance(value, bool) or value is None or value == "":
        raise ValidationError("price must be a number")
    try:
        price = Decimal(str(value).strip())
        if not price.is_finite() or price < 0:
            raise ValidationError("price must be a non-negative number")
        if price < MAX_PRICE:
            price = price.quantize(CENTS)
        if price >= MAX_PRICE:
            raise ValidationError("price is too large")
        return price
    except InvalidOperation:
        raise ValidationError("price must be a number")


def parse_stock(value) -> int:
    if isinstance(value, bool) or value is None:
        raise ValidationError("stock must be an integer")
    if isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            raise ValidationError("stock must be an integer")
        value = int(value)
    try:
        stock = int(str(value).strip())
    except ValueError:
        raise ValidationError("stock must be an integer")
    if stock < 0:
        raise ValidationError("stock must not be negative")
    if stock > MAX_INT:
        raise ValidationError("stock is too large")
    return stock


def _required_name(value) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("name is required")
    return value.strip()


class Catalog:
    def __init__(self, session_factory: sessionmaker, blobs: BlobStore, notifier: Notifier):
        self._session_factory = session_factory
        self._blobs = blobs
        self._notifier = notifier

    def create_product(
        self,
        name: str,
        price,
        stock,
        category: Optional[str] = None,
        description: Optional[str] = None,
        image: Optional[ImageUpload] = None,
    ) -> int:
        name = _required_name(name)
        price = parse_price(price)
        stock = parse_stock(stock)

        image_url = self._blobs.save(image) if image is not None else None
        try:
            with session_scope(self._session_factory) as db:
                product = Product(
                    name=name,
                    price=price,
                    stock=stock,
                    category=category,
                    description=description,
                    image_url=image_url,
                )
                db.add(product)
                db.flush()
                product_id = product.id
        except Exception:
            self._discard_blob(image_url)
            raise

        logger.info("product_created", product_id=product_id, stock=stock)
        if is_low_stock(stock):
            self._notifier.notify_low_stock(product_id, name)
        return product_id

    def update_product(
        self,
        product_id: int,
        *,
        name: Optional[str] = None,
        price=None,
        stock=None,
        category: Optional[str] = None,
        description: Optional[str] = None,
        image: Optional[ImageUpload] = None,
    ) -> None:
        changes = {}
        if name is not None:
            changes["name"] = _required_name(name)
        if price is not None:
            changes["price"] = parse_price(price)
        if stock is not None:
            changes["stock"] = parse_stock(stock)
        if category is not None:
            changes["category"] = category
        if description is not None:
            changes["description"] = description

        new_url = self._blobs.save(image) if image is not None else None
        try:
            with session_scope(self._session_factory) as db:
                product = db.get(Product, product_id)
                if product is None:
                    raise NotFoundError("Product", product_id)
                previous_stock = product.stock
                old_url = product.image_url
                for key, value in changes.items():
                    setattr(product, key, value)
                if new_url:
                    product.image_url = new_url
                current_name, current_stock = product.name, product.stock
        except Exception:
            self._discard_blob(new_url)
            raise

        logger.info("product_updated", product_id=product_id, fields=sorted(changes), image=bool(new_url))
        if new_url and old_url:
            self._discard_blob(old_url)
        if previous_stock >= LOW_STOCK_THRESHOLD and is_low_stock(current_stock):
            self._notifier.notify_low_stock(product_id, current_name)

    def delete_product(self, product_id: int) -> None:
        with session_scope(self._session_factory) as db:
            product = db.get(Product, product_id)
            if product is None:
                raise NotFoundError("Product", product_id)
            image_url = product.image_url
            db.delete(product)
        logger.info("product_deleted", product_id=product_id)
        self._discard_blob(image_url)

    def _discard_blob(self, url: Optional[str]) -> None:
        if not url:
            return
        try:
            self._blobs.delete(url)
        except OSError as e:
            logger.warning("blob_delete_failed", url=url, error=str(e))
