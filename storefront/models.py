import enum
import uuid

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import relationship

from .database import Base

STATUS_LENGTH = 100


class NotificationType(str, enum.Enum):
    LOW_STOCK = "low_stock"
    STATUS_CHANGE = "status_change"


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    stock = Column(Integer, nullable=False, server_default="0")
    category = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    image_url = Column(String(500), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())


class Order(Base):
    __tablename__ = "orders"
    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_name = Column(String(200), nullable=False)
    total = Column(Numeric(12, 2), nullable=False)
    payment_mode = Column(String(50), nullable=False)
    status = Column(String(STATUS_LENGTH), nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )


class OrderItem(Base):
    __tablename__ = "order_items"
    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    # snapshot only: no FK so deleting a product leaves history intact
    product_id = Column(Integer, nullable=False, index=True)
    product_name = Column(String(200), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    total = Column(Numeric(12, 2), nullable=False)
    order = relationship("Order", back_populates="items")


class Notification(Base):
    __tablename__ = "notifications"
    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String(32), nullable=False)
    reference_id = Column(Integer, nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())


class EventOutbox(Base):
    __tablename__ = "event_outbox"
    id = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(String, nullable=False)
    event_id = Column(String(36), nullable=False, default=lambda: str(uuid.uuid4()))
    occurred_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    version = Column(Integer, nullable=False, server_default="1")
    payload = Column(JSON, nullable=False)
    published_at = Column(TIMESTAMP(timezone=True), nullable=True)
    status = Column(String, nullable=False, server_default="NEW")
