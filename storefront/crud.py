from typing import List

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from . import models
from .errors import NotFoundError


def list_products(db: Session) -> List[models.Product]:
    return db.execute(select(models.Product).order_by(models.Product.id)).scalars().all()


def get_product(db: Session, product_id: int) -> models.Product:
    product = db.get(models.Product, product_id)
    if product is None:
        raise NotFoundError("Product", product_id)
    return product


def list_orders(db: Session) -> List[models.Order]:
    stmt = (
        select(models.Order)
        .options(selectinload(models.Order.items))
        .order_by(models.Order.created_at.desc(), models.Order.id.desc())
    )
    return db.execute(stmt).scalars().all()


def get_order(db: Session, order_id: int) -> models.Order:
    order = db.get(models.Order, order_id, options=[selectinload(models.Order.items)])
    if order is None:
        raise NotFoundError("Order", order_id)
    return order


def sales_by_category(db: Session) -> List[dict]:
    """Item totals grouped by the live product's category. Items whose product
    has since been deleted drop out of the join."""
    total_sales = func.sum(models.OrderItem.total).label("total_sales")
    stmt = (
        select(models.Product.category, total_sales)
        .select_from(models.OrderItem)
        .join(models.Product, models.Product.id == models.OrderItem.product_id)
        .group_by(models.Product.category)
        .order_by(total_sales.desc())
    )
    return [{"category": row.category, "total_sales": row.total_sales} for row in db.execute(stmt)]


def list_notifications(db: Session, limit: int = 20) -> List[models.Notification]:
    stmt = select(models.Notification).order_by(models.Notification.id.desc()).limit(limit)
    return db.execute(stmt).scalars().all()


def mark_notification_read(db: Session, notification_id: int) -> models.Notification:
    notification = db.get(models.Notification, notification_id)
    if notification is None:
        raise NotFoundError("Notification", notification_id)
    notification.is_read = True
    return notification


def delete_notification(db: Session, notification_id: int) -> None:
    notification = db.get(models.Notification, notification_id)
    if notification is None:
        raise NotFoundError("Notification", notification_id)
    db.delete(notification)
