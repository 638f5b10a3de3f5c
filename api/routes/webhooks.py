"""
Payment webhook endpoint.

Thin by design: read the raw body (the signature covers exact bytes), hand
it to the pipeline and wrap the acknowledgement in the unified envelope.
Errors are rendered by the global exception handlers.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.dependencies import get_webhook_service
from application.dtos.webhooks import WebhookResult
from application.services.webhook_service import PaymentWebhookService
from core.response import Response, success_response
from core.settings import payment_settings


router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/payment", response_model=Response[WebhookResult])
async def payment_webhook(
    request: Request,
    service: PaymentWebhookService = Depends(get_webhook_service),
):
    body = await request.body()
    signature = request.headers.get(payment_settings.webhook.signature_header)
    source = getattr(request.state, "client_ip", None) or (request.client.host if request.client else "unknown")

    result = await service.handle(body, signature, source)
    return success_response(data=result, message="Webhook received")
