import pytest

from storefront.errors import NotFoundError, ValidationError
from storefront.models import NotificationType, Order
from storefront.status import OrderStatus, normalize_status, status_message


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("CANCELLED by customer", OrderStatus.CANCELLED),
        ("returned", OrderStatus.CANCELLED),
        ("Item Returned to shop", OrderStatus.CANCELLED),
        ("delivered", OrderStatus.DELIVERED),
        ("  Delivered to front desk ", OrderStatus.DELIVERED),
        ("PENDING", OrderStatus.PENDING),
        ("returned, back to pending", OrderStatus.PENDING),
        ("delivered then cancelled", OrderStatus.DELIVERED),
        ("  Out for delivery  ", "Out for delivery"),
        ("shipped", "shipped"),
    ],
)
def test_normalize_status(raw, expected):
    assert normalize_status(raw) == expected


def test_canonical_values():
    assert [s.value for s in OrderStatus] == ["Pending", "Delivered", "Cancelled/Returned"]


def test_status_message_only_for_delivered_and_cancelled():
    assert status_message(7, "Maria", "Delivered") == "Order #7 for Maria has been delivered!"
    assert status_message(7, "Maria", "Cancelled/Returned") == "Order #7 for Maria has been cancelled/returned!"
    assert status_message(7, "Maria", "Pending") is None
    assert status_message(7, "Maria", "Out for delivery") is None


@pytest.fixture()
def order_id(ctx, make_product):
    rose = make_product(stock=30)
    return ctx.orders.place_order("Maria", "cash", [{"product_id": rose, "quantity": 1}]).order_id


def _status(ctx, order_id):
    with ctx.session() as db:
        return db.get(Order, order_id).status


class TestUpdateStatus:
    def test_cancelled_by_customer_notifies_once(self, ctx, order_id, notifications):
        result = ctx.statuses.update_status(order_id, "CANCELLED by customer")

        assert result.status == "Cancelled/Returned"
        assert _status(ctx, order_id) == "Cancelled/Returned"
        alerts = notifications(NotificationType.STATUS_CHANGE)
        assert alerts == [
            {
                "type": "status_change",
                "reference_id": order_id,
                "message": f"Order #{order_id} for Maria has been cancelled/returned!",
                "is_read": False,
            }
        ]

    def test_reapplying_a_status_notifies_again(self, ctx, order_id, notifications):
        ctx.statuses.update_status(order_id, "delivered")
        ctx.statuses.update_status(order_id, "Delivered")

        assert _status(ctx, order_id) == "Delivered"
        assert len(notifications(NotificationType.STATUS_CHANGE)) == 2

    def test_pending_and_free_form_statuses_do_not_notify(self, ctx, order_id, notifications):
        ctx.statuses.update_status(order_id, "  Out for delivery ")
        assert _status(ctx, order_id) == "Out for delivery"

        ctx.statuses.update_status(order_id, "pending")
        assert _status(ctx, order_id) == "Pending"

        assert notifications(NotificationType.STATUS_CHANGE) == []

    def test_delivered_order_can_go_back_to_pending(self, ctx, order_id):
        ctx.statuses.update_status(order_id, "Delivered")
        ctx.statuses.update_status(order_id, "Pending")

        assert _status(ctx, order_id) == "Pending"

    def test_order_total_is_not_recomputed(self, ctx, order_id):
        with ctx.session() as db:
            before = db.get(Order, order_id).total

        ctx.statuses.update_status(order_id, "Delivered")

        with ctx.session() as db:
            assert db.get(Order, order_id).total == before

    def test_overlong_status_is_rejected(self, ctx, order_id, notifications):
        with pytest.raises(ValidationError):
            ctx.statuses.update_status(order_id, "x" * 101)

        assert _status(ctx, order_id) == "Pending"
        assert notifications(NotificationType.STATUS_CHANGE) == []

    def test_long_input_that_normalizes_is_accepted(self, ctx, order_id):
        result = ctx.statuses.update_status(order_id, "delivered " + "x" * 200)

        assert result.status == "Delivered"
        assert _status(ctx, order_id) == "Delivered"

    def test_unknown_order(self, ctx, notifications):
        with pytest.raises(NotFoundError):
            ctx.statuses.update_status(999, "Delivered")
        assert notifications(NotificationType.STATUS_CHANGE) == []

    @pytest.mark.parametrize("status", [None, "", "   "])
    def test_missing_status(self, ctx, order_id, status):
        with pytest.raises(ValidationError):
            ctx.statuses.update_status(order_id, status)
        assert _status(ctx, order_id) == "Pending"
