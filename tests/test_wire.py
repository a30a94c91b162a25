import json
from decimal import Decimal

import httpx
import pytest

from conftest import PRODUCT_A, PRODUCT_C, WEBHOOK_SECRET
from splitcart.domain import LineRequest, PaymentRecord, PaymentStatus
from splitcart.payments import sign
from splitcart.wire import SIGNATURE_HEADER, create_app


@pytest.fixture
async def client(orchestrator, reconciler, initiator):
    transport = httpx.ASGITransport(app=create_app(orchestrator, reconciler, initiator))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def checkout_body(**overrides) -> dict:
    body = {
        "buyer_id": 7,
        "payment": {"card_token": "tok_visa"},
        "shipping_address": {"city": "Quito"},
        "items": [{"product_id": PRODUCT_A, "quantity": 1, "price": "1080.00"}],
    }
    body.update(overrides)
    return body


# ═══════════════════════════════════════════════════════════════════════════════
# /checkout
# ═══════════════════════════════════════════════════════════════════════════════


async def test_checkout_ok(client):
    response = await client.post("/checkout", json=checkout_body())

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["status"] == "paid"
    assert data["transaction_id"] == "TX-0001"
    assert Decimal(data["totals"]["final_total"]) == Decimal("1242.00")
    assert len(data["seller_orders"]) == 1


async def test_checkout_insufficient_stock_is_409(client):
    body = checkout_body(items=[{"product_id": PRODUCT_C, "quantity": 6, "price": "108"}])
    response = await client.post("/checkout", json=body)

    assert response.status_code == 409
    assert response.json()["error_code"] == "INSUFFICIENT_STOCK"


async def test_checkout_tampering_is_400(client):
    body = checkout_body(items=[{"product_id": PRODUCT_A, "quantity": 1, "price": "1.00"}])
    response = await client.post("/checkout", json=body)

    assert response.status_code == 400
    assert response.json()["error_code"] == "PRICE_TAMPERING"


async def test_checkout_body_validation(client):
    response = await client.post("/checkout", json={"items": []})
    assert response.status_code == 422


# ═══════════════════════════════════════════════════════════════════════════════
# /payments
# ═══════════════════════════════════════════════════════════════════════════════


def payment_body(**overrides) -> dict:
    body = {
        "buyer_id": 7,
        "reference": "web-42",
        "items": [{"product_id": PRODUCT_A, "quantity": 1}],
        "customer": {"name": "Ana Torres", "email": "ana@example.com"},
    }
    body.update(overrides)
    return body


async def test_open_payment_returns_qr(client):
    response = await client.post("/payments", json=payment_body())

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["payment_id"] == "PAY-0001"
    assert data["status"] == "created"
    assert Decimal(data["amount"]) == Decimal("1242.00")
    assert data["qr_code"] == "qr:PAY-0001"
    assert data["reused"] is False


async def test_open_payment_then_webhook_creates_order(client, uow):
    opened = (await client.post("/payments", json=payment_body())).json()

    body = json.dumps(
        {"idTransaction": opened["payment_id"], "status": "SUCCESS", "amount": opened["amount"]}
    ).encode()
    response = await client.post(
        "/webhooks/payments",
        content=body,
        headers={"content-type": "application/json", SIGNATURE_HEADER: sign(body, WEBHOOK_SECRET)},
    )

    assert response.status_code == 200
    assert response.json()["order_id"] is not None
    async with uow.begin() as tx:
        assert await tx.orders.find_by_payment_id(opened["payment_id"]) is not None


async def test_open_payment_bad_customer_is_422(client):
    response = await client.post("/payments", json=payment_body(customer={"name": "Ana"}))

    assert response.status_code == 422
    assert response.json()["error_code"] == "VALIDATION_ERROR"


async def test_open_payment_without_items_is_422(client):
    response = await client.post("/payments", json=payment_body(items=[]))
    assert response.status_code == 422


# ═══════════════════════════════════════════════════════════════════════════════
# /webhooks/payments
# ═══════════════════════════════════════════════════════════════════════════════


async def test_signed_webhook_creates_order(client, uow):
    async with uow.begin() as tx:
        await tx.payments.create(
            PaymentRecord(
                payment_id="PAY-9",
                buyer_id=7,
                amount=Decimal("1242.00"),
                currency="USD",
                status=PaymentStatus.CREATED,
                items=(LineRequest(PRODUCT_A, 1),),
            )
        )
        await tx.commit()

    body = json.dumps({"idTransaction": "PAY-9", "status": "SUCCESS", "amount": "1242.00"}).encode()
    response = await client.post(
        "/webhooks/payments",
        content=body,
        headers={"content-type": "application/json", SIGNATURE_HEADER: sign(body, WEBHOOK_SECRET)},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["status"] == "completed"
    assert data["order_id"] is not None


async def test_webhook_for_unknown_payment_is_500(client):
    response = await client.post(
        "/webhooks/payments", json={"idTransaction": "NOPE", "status": "SUCCESS", "amount": "1"}
    )
    assert response.status_code == 500
    assert response.json()["success"] is False


async def test_webhook_rejects_non_json(client):
    response = await client.post("/webhooks/payments", content=b"not json")
    assert response.status_code == 400


async def test_webhook_rejects_non_object(client):
    response = await client.post("/webhooks/payments", json=[1, 2])
    assert response.status_code == 400
