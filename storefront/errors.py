"""Error types raised by the service layer.

Business and validation errors carry enough context for the caller to act on
them. ``StorageError`` deliberately hides the underlying driver message when
rendered for clients.
"""


class StorefrontError(Exception):
    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message}


class ValidationError(StorefrontError):
    code = "validation_error"


class NotFoundError(StorefrontError):
    code = "not_found"

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class StockError(StorefrontError):
    code = "stock_error"

    def __init__(self, message: str, product_id: int):
        super().__init__(message)
        self.product_id = product_id

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["product_id"] = self.product_id
        return body


class ProductNotFound(StockError):
    code = "product_not_found"

    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} not found", product_id)


class InsufficientStock(StockError):
    code = "insufficient_stock"

    def __init__(self, product_id: int, available: int, requested: int, name: str = None):
        label = name or f"product {product_id}"
        super().__init__(
            f"Not enough stock for {label}: available={available} requested={requested}",
            product_id,
        )
        self.available = available
        self.requested = requested

    def to_dict(self) -> dict:
        body = super().to_dict()
        body.update(available=self.available, requested=self.requested)
        return body


class StorageError(StorefrontError):
    code = "storage_error"

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": "Internal storage failure"}


class NotificationError(StorefrontError):
    code = "notification_error"
