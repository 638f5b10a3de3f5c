"""Pytest bootstrap configuration.

Ensure environment variables are set before test collection and module
imports that depend on application settings.
"""
import json
import os
import time
from decimal import Decimal

os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///./test_bootstrap.db")
os.environ.setdefault("WEBHOOK__SIGNING_SECRET", "whsec_test_current")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
import pytest_asyncio

from application.services.signature_verifier import WebhookSignatureVerifier
from core.settings import WebhookSettings
from infrastructure.database import build_engine, build_session_factory, create_tables
from infrastructure.models import (
    CartItemModel,
    EventBookingModel,
    OrderItemModel,
    OrderModel,
)
from infrastructure.wiring import LocalStores, build_webhook_components

SIGNING_SECRET = "whsec_test_current"


class RecordingQueue:
    """Notification queue that only remembers submitted job ids."""

    def __init__(self):
        self.submitted = []

    def submit(self, job_id: int) -> None:
        self.submitted.append(job_id)


class RecordingScheduler:

    def __init__(self):
        self.scheduled = []

    def schedule(self, event_id: str, delay_seconds: int) -> None:
        self.scheduled.append((event_id, delay_seconds))


@pytest_asyncio.fixture
async def engine(tmp_path):
    db_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'fulfillment.db'}", echo=False)
    await create_tables(db_engine)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def queue():
    return RecordingQueue()


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def webhook_settings():
    return WebhookSettings(
        signing_secret=SIGNING_SECRET,
        deferral_max_attempts=3,
        deferral_base_delay_seconds=30,
        deferral_max_delay_seconds=900,
    )


@pytest.fixture
def local_stores():
    return LocalStores.create()


@pytest.fixture
def components(session_factory, queue, scheduler, local_stores, webhook_settings):
    return build_webhook_components(
        session_factory=session_factory,
        queue=queue,
        scheduler=scheduler,
        local_stores=local_stores,
        webhook_settings=webhook_settings,
    )


@pytest.fixture
def seed_order(session_factory):
    """Insert an order with items, the buyer's cart and any event bookings."""

    async def _seed(
        order_id: str = "O1",
        user_id: str = "U1",
        status: str = "pending",
        items=(("course", "C1", "29.00"),),
        cart=(("course", "C1", "29.00"), ("digital_product", "D9", "5.00")),
        bookings=(),
    ):
        async with session_factory() as session:
            async with session.begin():
                total = sum((Decimal(price) for _, _, price in items), Decimal("0"))
                session.add(OrderModel(id=order_id, user_id=user_id, status=status, total_amount=total, currency="USD"))
                await session.flush()
                for kind, product_id, price in items:
                    session.add(OrderItemModel(
                        order_id=order_id,
                        product_kind=kind,
                        product_id=product_id,
                        title=f"{kind} {product_id}",
                        price_at_purchase=Decimal(price),
                    ))
                for kind, product_id, price in cart:
                    session.add(CartItemModel(
                        user_id=user_id,
                        product_kind=kind,
                        product_id=product_id,
                        unit_price=Decimal(price),
                    ))
                for event_id in bookings:
                    session.add(EventBookingModel(order_id=order_id, user_id=user_id, event_id=event_id))
        return order_id

    return _seed


@pytest.fixture
def make_event():
    """Gateway event payload as the gateway would post it."""

    def _make(event_id: str, event_type: str, order_id="O1", **object_fields) -> dict:
        obj = {
            "id": object_fields.pop("object_id", f"cs_{event_id}"),
            "client_reference_id": order_id,
            "payment_intent": "pi_123",
            "amount_total": 2900,
            "currency": "usd",
            "metadata": {},
        }
        obj.update(object_fields)
        return {
            "id": event_id,
            "type": event_type,
            "created": int(time.time()),
            "data": {"object": obj},
        }

    return _make


@pytest.fixture
def sign():
    """Serialize a payload and build a valid signature header for it."""

    def _sign(payload: dict, timestamp=None, secret: str = SIGNING_SECRET):
        body = json.dumps(payload).encode()
        ts = int(time.time()) if timestamp is None else timestamp
        return body, WebhookSignatureVerifier.build_header(body, ts, secret)

    return _sign
