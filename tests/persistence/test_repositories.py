from decimal import Decimal

import pytest

from domain.notification.entity import NotificationJob, NotificationKind
from domain.order.entity import OrderStatus, ProductKind, ProductRef
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


def _uow(session_factory, **kwargs):
    return SQLAlchemyUnitOfWork(session_factory=session_factory, **kwargs)


@pytest.mark.asyncio
async def test_order_maps_to_entity_with_items(session_factory, seed_order):
    await seed_order(items=(("course", "C1", "29.00"), ("digital_product", "D1", "4.50")))

    async with _uow(session_factory, readonly=True) as uow:
        order = await uow.order_repository.get_by_id("O1")
        missing = await uow.order_repository.get_by_id("O404")

    assert missing is None
    assert order.status is OrderStatus.PENDING
    assert order.total_amount == Decimal("33.50")
    assert [str(i.product_ref) for i in order.items] == ["course:C1", "digital_product:D1"]


@pytest.mark.asyncio
async def test_compare_and_set_only_applies_from_expected_status(session_factory, seed_order):
    await seed_order()

    async with _uow(session_factory) as uow:
        order = await uow.order_repository.get_for_update("O1")
        order.mark_completed("pi_1")
        assert await uow.order_repository.compare_and_set_status(order, (OrderStatus.PENDING,))

    async with _uow(session_factory) as uow:
        stale = await uow.order_repository.get_by_id("O1")
        stale.status = OrderStatus.FAILED
        assert not await uow.order_repository.compare_and_set_status(stale, (OrderStatus.PENDING,))

    async with _uow(session_factory, readonly=True) as uow:
        assert (await uow.order_repository.get_by_id("O1")).status is OrderStatus.COMPLETED


@pytest.mark.asyncio
async def test_finalize_items_leaves_finalized_rows_alone(session_factory, seed_order):
    await seed_order()

    async with _uow(session_factory) as uow:
        order = await uow.order_repository.get_for_update("O1")
        order.mark_completed("pi_1")
        assert await uow.order_repository.finalize_items(order) == 1
        assert await uow.order_repository.finalize_items(order) == 0


@pytest.mark.asyncio
async def test_grant_is_idempotent_and_revocable(session_factory, seed_order):
    await seed_order()
    ref = ProductRef(ProductKind.COURSE, "C1")

    async with _uow(session_factory) as uow:
        assert await uow.access_grant_repository.grant("U1", ref, "O1") is True
        assert await uow.access_grant_repository.grant("U1", ref, "O1") is False

    async with _uow(session_factory) as uow:
        assert await uow.access_grant_repository.revoke_for_order("O1") == 1
        assert await uow.access_grant_repository.revoke_for_order("O1") == 0

    async with _uow(session_factory, readonly=True) as uow:
        grants = await uow.access_grant_repository.list_for_order("O1")
    assert len(grants) == 1
    assert grants[0].is_active is False


@pytest.mark.asyncio
async def test_cart_clear_only_touches_that_user(session_factory, seed_order):
    await seed_order()
    await seed_order(order_id="O2", user_id="U2", cart=(("event", "E1", "10.00"),))

    async with _uow(session_factory) as uow:
        assert await uow.cart_repository.clear("U1") == 2

    async with _uow(session_factory, readonly=True) as uow:
        assert await uow.cart_repository.count("U1") == 0
        assert await uow.cart_repository.count("U2") == 1


@pytest.mark.asyncio
async def test_bookings_confirm_then_cancel(session_factory, seed_order):
    await seed_order(bookings=("E1", "E2"))

    async with _uow(session_factory) as uow:
        assert await uow.booking_repository.confirm_for_order("O1") == 2
        assert await uow.booking_repository.confirm_for_order("O1") == 0
        assert await uow.booking_repository.cancel_for_order("O1") == 2


@pytest.mark.asyncio
async def test_notification_jobs_listed_per_order(session_factory):
    async with _uow(session_factory) as uow:
        for kind in (NotificationKind.CONFIRMATION, NotificationKind.OPERATOR_ALERT):
            await uow.notification_repository.add(
                NotificationJob(id=None, order_id="O1", kind=kind, dedupe_key="evt_1")
            )
        duplicate = await uow.notification_repository.add(
            NotificationJob(id=None, order_id="O1", kind=NotificationKind.CONFIRMATION, dedupe_key="evt_1")
        )

    assert duplicate is None
    async with _uow(session_factory, readonly=True) as uow:
        jobs = await uow.notification_repository.list_for_order("O1")
    assert [j.kind for j in jobs] == [NotificationKind.CONFIRMATION, NotificationKind.OPERATOR_ALERT]


@pytest.mark.asyncio
async def test_uow_rolls_back_on_error(session_factory, seed_order):
    await seed_order()

    with pytest.raises(RuntimeError):
        async with _uow(session_factory) as uow:
            await uow.cart_repository.clear("U1")
            raise RuntimeError("boom")

    async with _uow(session_factory, readonly=True) as uow:
        assert await uow.cart_repository.count("U1") == 2
