import pytest
from fastapi.testclient import TestClient

from storefront import crud
from storefront.config import Settings
from storefront.context import AppContext
from storefront.main import create_app


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'storefront.db'}",
        uploads_dir=str(tmp_path / "uploads"),
        notifier_workers=0,
    )


@pytest.fixture()
def ctx(settings):
    context = AppContext(settings)
    yield context
    context.close()


@pytest.fixture()
def published(ctx):
    """Everything broadcast on the publish channel during the test."""
    received = []
    ctx.broadcaster.subscribe(lambda event, payload: received.append((event, payload)))
    return received


@pytest.fixture()
def make_product(ctx):
    def _make(name="Rose bouquet", price="12.50", stock=30, **extra):
        return ctx.catalog.create_product(name=name, price=price, stock=stock, **extra)

    return _make


@pytest.fixture()
def notifications(ctx):
    """Returns all stored notifications, oldest first, optionally filtered by type."""

    def _list(type=None):
        with ctx.session() as db:
            rows = crud.list_notifications(db, limit=1000)
            result = [
                {"type": n.type, "reference_id": n.reference_id, "message": n.message, "is_read": n.is_read}
                for n in reversed(rows)
            ]
        if type is not None:
            result = [n for n in result if n["type"] == type.value]
        return result

    return _list


@pytest.fixture()
def client(settings):
    with TestClient(create_app(settings)) as test_client:
        yield test_client
