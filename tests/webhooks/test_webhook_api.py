"""HTTP contract of POST /webhooks/payment through the FastAPI app."""
import time

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.exc import OperationalError

from api.dependencies import get_webhook_components
from core.settings import WebhookSettings
from infrastructure.repositories.access_grant_repository import SQLAlchemyAccessGrantRepository
from infrastructure.wiring import build_webhook_components
from main import app

URL = "/webhooks/payment"
SIGNATURE_HEADER = "Stripe-Signature"


@pytest_asyncio.fixture
async def client(components):
    app.dependency_overrides[get_webhook_components] = lambda: components
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http
    app.dependency_overrides.clear()


def _post(client, body, header):
    headers = {"Content-Type": "application/json"}
    if header is not None:
        headers[SIGNATURE_HEADER] = header
    return client.post(URL, content=body, headers=headers)


@pytest.mark.asyncio
async def test_valid_completion_returns_processed(client, seed_order, make_event, sign):
    await seed_order()
    body, header = sign(make_event("evt_1", "checkout.session.completed"))

    resp = await _post(client, body, header)

    assert resp.status_code == 200
    payload = resp.json()
    assert payload["code"] == 0
    assert payload["data"]["received"] is True
    assert payload["data"]["outcome"] == "processed"
    assert payload["data"]["order_id"] == "O1"
    assert payload["data"]["duplicate"] is False
    assert "X-Request-ID" in resp.headers


@pytest.mark.asyncio
async def test_replay_returns_200_duplicate(client, seed_order, make_event, sign):
    await seed_order()
    body, header = sign(make_event("evt_1", "checkout.session.completed"))

    await _post(client, body, header)
    resp = await _post(client, body, header)

    assert resp.status_code == 200
    assert resp.json()["data"]["duplicate"] is True


@pytest.mark.asyncio
async def test_versioned_prefix_is_mounted(client, seed_order, make_event, sign):
    await seed_order()
    body, header = sign(make_event("evt_1", "payment_intent.created"))

    resp = await client.post(f"/api/v1{URL}", content=body, headers={SIGNATURE_HEADER: header})

    assert resp.status_code == 200
    assert resp.json()["data"]["outcome"] == "ignored"


@pytest.mark.asyncio
async def test_bad_signature_is_400(client, make_event, sign):
    body, header = sign(make_event("evt_1", "checkout.session.completed"), secret="whsec_attacker")

    resp = await _post(client, body, header)

    assert resp.status_code == 400
    assert resp.json()["error"]["type"] == "SignatureError"


@pytest.mark.asyncio
async def test_missing_signature_is_400(client, make_event, sign):
    body, _ = sign(make_event("evt_1", "checkout.session.completed"))
    resp = await _post(client, body, None)
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_stale_event_is_400(client, make_event, sign):
    body, header = sign(make_event("evt_1", "checkout.session.completed"), timestamp=int(time.time()) - 600)

    resp = await _post(client, body, header)

    assert resp.status_code == 400
    assert resp.json()["error"]["type"] == "StaleEventError"


@pytest.mark.asyncio
async def test_malformed_payload_is_400(client, make_event, sign):
    body, header = sign(make_event("evt_1", "checkout.session.completed", order_id=None))

    resp = await _post(client, body, header)

    assert resp.status_code == 400
    assert resp.json()["message"] == "correlation id missing"


@pytest.mark.asyncio
async def test_unknown_order_is_404(client, make_event, sign):
    body, header = sign(make_event("evt_1", "checkout.session.completed", order_id="NOPE"))

    resp = await _post(client, body, header)

    assert resp.status_code == 404
    assert resp.json()["error"]["details"] == {"order_id": "NOPE"}


@pytest.mark.asyncio
async def test_transaction_failure_is_500_so_gateway_retries(client, seed_order, make_event, sign, monkeypatch):
    await seed_order()

    async def _broken_grant(self, user_id, product_ref, order_id):
        raise OperationalError("INSERT INTO access_grants", {}, Exception("database is locked"))

    monkeypatch.setattr(SQLAlchemyAccessGrantRepository, "grant", _broken_grant)
    body, header = sign(make_event("evt_1", "checkout.session.completed"))

    resp = await _post(client, body, header)

    assert resp.status_code == 500
    assert resp.json()["error"]["type"] == "TransactionError"


@pytest.mark.asyncio
async def test_rate_limited_source_gets_429_with_retry_after(
    session_factory, queue, scheduler, local_stores, seed_order, make_event, sign
):
    components = build_webhook_components(
        session_factory=session_factory,
        queue=queue,
        scheduler=scheduler,
        local_stores=local_stores,
        webhook_settings=WebhookSettings(
            signing_secret="whsec_test_current",
            rate_limit_requests=2,
            rate_limit_window_seconds=60,
        ),
    )
    app.dependency_overrides[get_webhook_components] = lambda: components
    await seed_order()
    try:
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            statuses = []
            for n in range(3):
                body, header = sign(make_event(f"evt_{n}", "payment_intent.created"))
                resp = await _post(client, body, header)
                statuses.append(resp.status_code)
    finally:
        app.dependency_overrides.clear()

    assert statuses == [200, 200, 429]
    assert 1 <= int(resp.headers["Retry-After"]) <= 60
    assert resp.json()["error"]["type"] == "RateLimitExceeded"


@pytest.mark.asyncio
async def test_unexpected_error_is_500(client, make_event, sign, monkeypatch, components):
    async def _explode(body, signature_header, source):
        raise RuntimeError("boom")

    monkeypatch.setattr(components.service, "handle", _explode)
    body, header = sign(make_event("evt_1", "checkout.session.completed"))

    resp = await _post(client, body, header)

    assert resp.status_code == 500
    assert resp.json()["error"]["type"] == "SystemError"


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "healthy"


@pytest.mark.asyncio
async def test_forwarded_headers_only_trusted_when_enabled():
    from starlette.requests import Request

    from api.middleware import resolve_client_ip

    scope = {
        "type": "http",
        "method": "POST",
        "path": URL,
        "headers": [(b"x-forwarded-for", b"198.51.100.9, 10.0.0.1")],
        "client": ("10.0.0.1", 5000),
    }
    request = Request(scope)

    assert resolve_client_ip(request, trust_forwarded=False) == "10.0.0.1"
    assert resolve_client_ip(request, trust_forwarded=True) == "198.51.100.9"
