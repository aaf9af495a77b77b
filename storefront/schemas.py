from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class OrderItemCreate(BaseModel):
    product_id: int
    quantity: int


class OrderCreate(BaseModel):
    customer_name: Optional[str] = None
    payment_mode: Optional[str] = None
    items: List[OrderItemCreate] = []


class StatusUpdateRequest(BaseModel):
    status: Optional[str] = None


class MessageResponse(BaseModel):
    message: str


class ProductCreatedResponse(MessageResponse):
    id: int


class OrderPlacedResponse(MessageResponse):
    order_id: int
    total: Decimal


class StatusUpdatedResponse(MessageResponse):
    status: str


class ProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    price: Decimal
    stock: int
    category: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    created_at: Optional[datetime] = None


class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    product_name: str
    quantity: int
    price: Decimal
    total: Decimal


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    customer_name: str
    total: Decimal
    payment_mode: str
    status: str
    created_at: Optional[datetime] = None
    items: List[OrderItemOut] = []


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    reference_id: int
    message: str
    is_read: bool
    created_at: Optional[datetime] = None


class CategorySales(BaseModel):
    category: Optional[str] = None
    total_sales: Decimal
