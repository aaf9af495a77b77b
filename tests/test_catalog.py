"""Product create/update/delete and the low-stock alerts they raise."""

from decimal import Decimal

import pytest

from storefront.blobs import ImageUpload
from storefront.errors import NotFoundError, ValidationError
from storefront.models import NotificationType, Product


def _product(ctx, product_id):
    with ctx.session() as db:
        return db.get(Product, product_id)


def _png(name="rose.png"):
    return ImageUpload(filename=name, content=b"\x89PNG fake", content_type="image/png")


class TestCreateProduct:
    def test_creates_with_optional_fields(self, ctx):
        product_id = ctx.catalog.create_product(
            name="Sunflower", price="4.5", stock="40", category="Flowers", description="Tall and yellow"
        )

        product = _product(ctx, product_id)
        assert product.name == "Sunflower"
        assert product.price == Decimal("4.50")
        assert product.stock == 40
        assert product.category == "Flowers"
        assert product.description == "Tall and yellow"
        assert product.image_url is None
        assert product.created_at is not None

    def test_low_stock_on_create_alerts_once(self, ctx, notifications, published):
        product_id = ctx.catalog.create_product(name="Orchid", price="20", stock=5)

        alerts = notifications(NotificationType.LOW_STOCK)
        assert [(a["reference_id"], a["message"]) for a in alerts] == [
            (product_id, "Product 'Orchid' is low on supplies!")
        ]
        assert [event for event, _ in published] == ["new_notification"]
        assert published[0][1]["reference_id"] == product_id

    def test_no_alert_at_threshold(self, ctx, notifications):
        ctx.catalog.create_product(name="Orchid", price="20", stock=20)

        assert notifications() == []

    @pytest.mark.parametrize(
        "fields",
        [
            {"name": "", "price": "1", "stock": 1},
            {"name": None, "price": "1", "stock": 1},
            {"name": "Rose", "price": "abc", "stock": 1},
            {"name": "Rose", "price": None, "stock": 1},
            {"name": "Rose", "price": "-1", "stock": 1},
            {"name": "Rose", "price": "NaN", "stock": 1},
            {"name": "Rose", "price": "1e30", "stock": 1},
            {"name": "Rose", "price": "10000000000", "stock": 1},
            {"name": "Rose", "price": "9999999999.999", "stock": 1},
            {"name": "Rose", "price": "1", "stock": "many"},
            {"name": "Rose", "price": "1", "stock": "2.5"},
            {"name": "Rose", "price": "1", "stock": -3},
            {"name": "Rose", "price": "1", "stock": 10**20},
            {"name": "Rose", "price": "1", "stock": str(2**31)},
            {"name": "Rose", "price": "1", "stock": None},
        ],
    )
    def test_rejects_invalid_fields(self, ctx, fields):
        with pytest.raises(ValidationError):
            ctx.catalog.create_product(**fields)

        with ctx.session() as db:
            assert db.query(Product).count() == 0

    def test_accepts_largest_storable_values(self, ctx):
        product_id = ctx.catalog.create_product(name="Rose", price="9999999999.99", stock=2**31 - 1)

        product = _product(ctx, product_id)
        assert product.price == Decimal("9999999999.99")
        assert product.stock == 2**31 - 1

    def test_stores_image(self, ctx, settings):
        product_id = ctx.catalog.create_product(name="Rose", price="3", stock=30, image=_png())

        url = _product(ctx, product_id).image_url
        assert url.startswith("/uploads/")
        assert url.endswith("-rose.png")
        stored = ctx.blobs.directory / url.rsplit("/", 1)[1]
        assert stored.read_bytes() == b"\x89PNG fake"

    def test_rejects_non_image_upload(self, ctx):
        upload = ImageUpload(filename="notes.txt", content=b"hi", content_type="text/plain")

        with pytest.raises(ValidationError):
            ctx.catalog.create_product(name="Rose", price="3", stock=30, image=upload)

        with ctx.session() as db:
            assert db.query(Product).count() == 0


class TestUpdateProduct:
    def test_partial_update_keeps_other_fields(self, ctx, make_product):
        product_id = make_product(name="Rose", price="12.50", stock=30, category="Flowers")

        ctx.catalog.update_product(product_id, price="11.00")

        product = _product(ctx, product_id)
        assert product.price == Decimal("11.00")
        assert product.name == "Rose"
        assert product.stock == 30
        assert product.category == "Flowers"

    @pytest.mark.parametrize("fields", [{"price": "1e30"}, {"stock": 10**20}])
    def test_out_of_range_update_is_rejected(self, ctx, make_product, fields):
        product_id = make_product(price="12.50", stock=30)

        with pytest.raises(ValidationError):
            ctx.catalog.update_product(product_id, **fields)

        product = _product(ctx, product_id)
        assert (product.price, product.stock) == (Decimal("12.50"), 30)

    def test_already_low_product_does_not_alert_again(self, ctx, make_product, notifications):
        product_id = make_product(name="Orchid", stock=5)
        assert len(notifications(NotificationType.LOW_STOCK)) == 1

        ctx.catalog.update_product(product_id, stock=3)

        assert _product(ctx, product_id).stock == 3
        assert len(notifications(NotificationType.LOW_STOCK)) == 1

    def test_crossing_below_threshold_alerts_once(self, ctx, make_product, notifications):
        product_id = make_product(name="Orchid", stock=25)
        assert notifications() == []

        ctx.catalog.update_product(product_id, stock=15)

        alerts = notifications(NotificationType.LOW_STOCK)
        assert [(a["reference_id"], a["message"]) for a in alerts] == [
            (product_id, "Product 'Orchid' is low on supplies!")
        ]

    def test_rename_and_cross_uses_new_name(self, ctx, make_product, notifications):
        product_id = make_product(name="Orchid", stock=25)

        ctx.catalog.update_product(product_id, name="White Orchid", stock=10)

        assert notifications(NotificationType.LOW_STOCK)[0]["message"] == "Product 'White Orchid' is low on supplies!"

    def test_restock_then_drop_alerts_again(self, ctx, make_product, notifications):
        product_id = make_product(name="Orchid", stock=5)

        ctx.catalog.update_product(product_id, stock=50)
        ctx.catalog.update_product(product_id, stock=10)

        assert len(notifications(NotificationType.LOW_STOCK)) == 2

    def test_unknown_product(self, ctx):
        with pytest.raises(NotFoundError):
            ctx.catalog.update_product(12345, stock=3)

    def test_invalid_stock_is_rejected(self, ctx, make_product):
        product_id = make_product(stock=30)

        with pytest.raises(ValidationError):
            ctx.catalog.update_product(product_id, stock=-1)

        assert _product(ctx, product_id).stock == 30

    def test_new_image_replaces_old_blob(self, ctx, make_product):
        product_id = make_product(image=_png("old.png"))
        old_url = _product(ctx, product_id).image_url

        ctx.catalog.update_product(product_id, image=_png("new.png"))

        new_url = _product(ctx, product_id).image_url
        assert new_url.endswith("-new.png")
        assert not (ctx.blobs.directory / old_url.rsplit("/", 1)[1]).exists()
        assert (ctx.blobs.directory / new_url.rsplit("/", 1)[1]).exists()

    def test_unknown_product_discards_uploaded_image(self, ctx):
        with pytest.raises(NotFoundError):
            ctx.catalog.update_product(12345, image=_png())

        assert list(ctx.blobs.directory.iterdir()) == []


class TestDeleteProduct:
    def test_removes_row_and_image(self, ctx, make_product):
        product_id = make_product(image=_png())
        url = _product(ctx, product_id).image_url

        ctx.catalog.delete_product(product_id)

        assert _product(ctx, product_id) is None
        assert not (ctx.blobs.directory / url.rsplit("/", 1)[1]).exists()

    def test_unknown_product(self, ctx):
        with pytest.raises(NotFoundError):
            ctx.catalog.delete_product(777)
