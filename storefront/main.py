import asyncio
from contextlib import asynccontextmanager
from typing import List, Optional

import structlog
from fastapi import Depends, FastAPI, File, Form, Request, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles

from . import crud, schemas
from .blobs import BlobStore, ImageUpload
from .config import Settings
from .context import AppContext
from .database import check_connection
from .errors import (
    InsufficientStock,
    NotFoundError,
    ProductNotFound,
    StorageError,
    StorefrontError,
    ValidationError,
)
from .logging_config import configure_logging
from .notifier import QueueSubscriber

logger = structlog.get_logger(__name__)

_STATUS_CODES = (
    (ValidationError, 400),
    (ProductNotFound, 404),
    (NotFoundError, 404),
    (InsufficientStock, 409),
    (StorageError, 500),
)


def _status_for(exc: StorefrontError) -> int:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 500


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def _upload(image: Optional[UploadFile]) -> Optional[ImageUpload]:
    if image is None or not image.filename:
        return None
    return ImageUpload(
        filename=image.filename,
        content=image.file.read(),
        content_type=image.content_type or "",
    )


def create_app(settings: Optional[Settings] = None, blobs: Optional[BlobStore] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level, settings.log_json)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        context = AppContext(settings, blobs=blobs)
        app.state.context = context
        try:
            yield
        finally:
            context.close()

    app = FastAPI(title="Storefront API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )
    app.mount(settings.uploads_url_prefix, StaticFiles(directory=settings.uploads_dir, check_dir=False), name="uploads")

    @app.exception_handler(StorefrontError)
    async def storefront_error_handler(request: Request, exc: StorefrontError):
        status_code = _status_for(exc)
        if status_code >= 500:
            logger.error("request_failed", path=request.url.path, error=exc.code)
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": ValidationError.code, "detail": "Invalid request", "errors": jsonable_encoder(exc.errors())},
        )

    @app.get("/", response_class=PlainTextResponse)
    def root():
        return "Welcome to the storefront!"

    @app.get("/health")
    def health(ctx: AppContext = Depends(get_context)):
        if not check_connection(ctx.engine):
            return JSONResponse(status_code=503, content={"status": "unavailable"})
        return {"status": "ok"}

    # products

    @app.get("/products", response_model=List[schemas.ProductOut])
    def list_products(ctx: AppContext = Depends(get_context)):
        with ctx.session() as db:
            return [schemas.ProductOut.model_validate(p) for p in crud.list_products(db)]

    @app.get("/products/{product_id}", response_model=schemas.ProductOut)
    def get_product(product_id: int, ctx: AppContext = Depends(get_context)):
        with ctx.session() as db:
            return schemas.ProductOut.model_validate(crud.get_product(db, product_id))

    @app.post("/products", response_model=schemas.ProductCreatedResponse)
    def create_product(
        name: Optional[str] = Form(None),
        price: Optional[str] = Form(None),
        stock: Optional[str] = Form(None),
        category: Optional[str] = Form(None),
        description: Optional[str] = Form(None),
        image: Optional[UploadFile] = File(None),
        ctx: AppContext = Depends(get_context),
    ):
        product_id = ctx.catalog.create_product(
            name=name,
            price=price,
            stock=stock,
            category=category,
            description=description,
            image=_upload(image),
        )
        return schemas.ProductCreatedResponse(message="Product added!", id=product_id)

    @app.put("/products/{product_id}", response_model=schemas.MessageResponse)
    def update_product(
        product_id: int,
        name: Optional[str] = Form(None),
        price: Optional[str] = Form(None),
        stock: Optional[str] = Form(None),
        category: Optional[str] = Form(None),
        description: Optional[str] = Form(None),
        image: Optional[UploadFile] = File(None),
        ctx: AppContext = Depends(get_context),
    ):
        ctx.catalog.update_product(
            product_id,
            name=name,
            price=price,
            stock=stock,
            category=category,
            description=description,
            image=_upload(image),
        )
        return schemas.MessageResponse(message="Product updated!")

    @app.delete("/products/{product_id}", response_model=schemas.MessageResponse)
    def delete_product(product_id: int, ctx: AppContext = Depends(get_context)):
        ctx.catalog.delete_product(product_id)
        return schemas.MessageResponse(message="Product deleted!")

    # orders

    @app.get("/orders", response_model=List[schemas.OrderOut])
    def list_orders(ctx: AppContext = Depends(get_context)):
        with ctx.session() as db:
            return [schemas.OrderOut.model_validate(o) for o in crud.list_orders(db)]

    @app.get("/orders/{order_id}", response_model=schemas.OrderOut)
    def get_order(order_id: int, ctx: AppContext = Depends(get_context)):
        with ctx.session() as db:
            return schemas.OrderOut.model_validate(crud.get_order(db, order_id))

    @app.post("/orders", response_model=schemas.OrderPlacedResponse)
    def create_order(order: schemas.OrderCreate, ctx: AppContext = Depends(get_context)):
        placed = ctx.orders.place_order(order.customer_name, order.payment_mode, order.items)
        return schemas.OrderPlacedResponse(message="Order placed!", order_id=placed.order_id, total=placed.total)

    @app.put("/orders/{order_id}/status", response_model=schemas.StatusUpdatedResponse)
    def update_order_status(
        order_id: int,
        body: schemas.StatusUpdateRequest,
        ctx: AppContext = Depends(get_context),
    ):
        result = ctx.statuses.update_status(order_id, body.status)
        return schemas.StatusUpdatedResponse(message="Status updated!", status=result.status)

    @app.get("/sales-by-category", response_model=List[schemas.CategorySales])
    def sales_by_category(ctx: AppContext = Depends(get_context)):
        with ctx.session() as db:
            return [schemas.CategorySales(**row) for row in crud.sales_by_category(db)]

    # notifications

    @app.get("/notifications", response_model=List[schemas.NotificationOut])
    def list_notifications(ctx: AppContext = Depends(get_context)):
        with ctx.session() as db:
            rows = crud.list_notifications(db, limit=ctx.settings.notification_limit)
            return [schemas.NotificationOut.model_validate(n) for n in rows]

    @app.put("/notifications/{notification_id}/read", response_model=schemas.MessageResponse)
    def mark_notification_read(notification_id: int, ctx: AppContext = Depends(get_context)):
        with ctx.session() as db:
            crud.mark_notification_read(db, notification_id)
        return schemas.MessageResponse(message="Notification marked as read!")

    @app.delete("/notifications/{notification_id}", response_model=schemas.MessageResponse)
    def delete_notification(notification_id: int, ctx: AppContext = Depends(get_context)):
        with ctx.session() as db:
            crud.delete_notification(db, notification_id)
        return schemas.MessageResponse(message="Notification deleted!")

    @app.websocket("/ws/notifications")
    async def notifications_feed(websocket: WebSocket):
        ctx: AppContext = websocket.app.state.context
        subscriber = QueueSubscriber(asyncio.get_running_loop())
        # subscribe before accepting so nothing published after the handshake is missed
        token = ctx.broadcaster.subscribe(subscriber)

        async def forward():
            while True:
                await websocket.send_json(await subscriber.queue.get())

        async def watch_close():
            while True:
                await websocket.receive_text()

        tasks = []
        try:
            await websocket.accept()
            logger.info("feed_connected", subscriber=token)
            tasks = [asyncio.ensure_future(forward()), asyncio.ensure_future(watch_close())]
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                exc = task.exception()
                if exc is not None and not isinstance(exc, WebSocketDisconnect):
                    logger.warning("feed_error", subscriber=token, error=str(exc))
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            ctx.broadcaster.unsubscribe(token)
            logger.info("feed_disconnected", subscriber=token, dropped=subscriber.dropped)

    return app


app = create_app()
