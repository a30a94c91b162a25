"""
FastAPI application.

    app = create_app(orchestrator, reconciler, initiator)

    POST /checkout             200 on success, else the error's http_status
    POST /payments             200 with the QR / payment link, else the error's http_status
    POST /webhooks/payments    200 when processed (or duplicate), else 500 so the provider retries
"""

from __future__ import annotations

import json
import logging

import fastapi
from kungfu import Ok, Error

from splitcart.checkout import CheckoutOrchestrator
from splitcart.webhooks import PaymentInitiator, WebhookReconciler
from splitcart.wire._models import CheckoutIn, CheckoutOut, PaymentIn, PaymentOut, WebhookOut

log = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"


def create_app(
    orchestrator: CheckoutOrchestrator,
    reconciler: WebhookReconciler,
    initiator: PaymentInitiator | None = None,
) -> fastapi.FastAPI:
    app = fastapi.FastAPI(title="splitcart")

    @app.post("/checkout", response_model=CheckoutOut)
    async def checkout(req: CheckoutIn, response: fastapi.Response) -> CheckoutOut:
        result = await orchestrator.checkout(req.to_domain())
        match result:
            case Error(e):
                response.status_code = e.http_status
            case Ok(_):
                pass
        return CheckoutOut.from_domain(result)

    if initiator is not None:

        @app.post("/payments", response_model=PaymentOut)
        async def open_payment(req: PaymentIn, response: fastapi.Response) -> PaymentOut:
            result = await initiator.create(req.to_domain())
            match result:
                case Error(e):
                    response.status_code = e.http_status
                case Ok(_):
                    pass
            return PaymentOut.from_domain(result)

    @app.post("/webhooks/payments", response_model=WebhookOut)
    async def payment_webhook(request: fastapi.Request, response: fastapi.Response) -> WebhookOut:
        raw_body = await request.body()
        try:
            payload = json.loads(raw_body or b"{}")
        except ValueError:
            log.warning("webhook body is not JSON")
            response.status_code = 400
            return WebhookOut(success=False, message="Body is not valid JSON")
        if not isinstance(payload, dict):
            response.status_code = 400
            return WebhookOut(success=False, message="Body must be a JSON object")

        handled = await reconciler.handle(
            payload,
            signature=request.headers.get(SIGNATURE_HEADER),
            raw_body=raw_body,
        )
        if not handled.success:
            response.status_code = 500
        return WebhookOut.from_domain(handled)

    return app


__all__ = ("SIGNATURE_HEADER", "create_app")
