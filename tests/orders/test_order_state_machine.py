from decimal import Decimal

import pytest

from domain.common.exceptions import DomainValidationException
from domain.order.entity import Order, OrderItem, OrderStatus, ProductKind, ProductRef


def _order(status=OrderStatus.PENDING):
    item = OrderItem(
        id=1,
        order_id="O1",
        product_ref=ProductRef(ProductKind.COURSE, "C1"),
        title="Intro",
        price_at_purchase=Decimal("29.00"),
    )
    return Order(id="O1", user_id="U1", status=status, total_amount=Decimal("29.00"), items=[item])


@pytest.mark.parametrize(
    "current, target",
    [
        (OrderStatus.PENDING, OrderStatus.PROCESSING),
        (OrderStatus.PENDING, OrderStatus.COMPLETED),
        (OrderStatus.PROCESSING, OrderStatus.COMPLETED),
        (OrderStatus.PENDING, OrderStatus.FAILED),
        (OrderStatus.PROCESSING, OrderStatus.FAILED),
        (OrderStatus.COMPLETED, OrderStatus.REFUNDED),
    ],
)
def test_legal_transitions(current, target):
    assert _order(current).can_transition_to(target)


@pytest.mark.parametrize(
    "current, target",
    [
        (OrderStatus.COMPLETED, OrderStatus.FAILED),
        (OrderStatus.FAILED, OrderStatus.COMPLETED),
        (OrderStatus.REFUNDED, OrderStatus.COMPLETED),
        (OrderStatus.PENDING, OrderStatus.REFUNDED),
        (OrderStatus.COMPLETED, OrderStatus.COMPLETED),
    ],
)
def test_illegal_transitions(current, target):
    assert not _order(current).can_transition_to(target)


def test_completion_records_reference_and_finalizes_items():
    order = _order()
    order.mark_completed("pi_123")

    assert order.status is OrderStatus.COMPLETED
    assert order.payment_reference == "pi_123"
    assert order.completed_at is not None
    assert all(item.is_finalized for item in order.items)


def test_refund_of_pending_order_is_rejected():
    with pytest.raises(DomainValidationException):
        _order().mark_refunded()


def test_negative_amounts_are_rejected():
    with pytest.raises(DomainValidationException):
        Order(id="O1", user_id="U1", status=OrderStatus.PENDING, total_amount=Decimal("-1"))
