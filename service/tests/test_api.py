"""End-to-end tests through the HTTP API."""

import pytest
from httpx import AsyncClient

from paylater_service.services.events import PaymentConfirmed, RefundApproved, RefundRejected


def _intent_body(unit_amount: str = "50.00", quantity: int = 2) -> dict:
    return {
        "items": [{"name": "Widget", "unit_amount": unit_amount, "quantity": quantity}],
        "currency": "USD",
        "metadata": {"reference_id": "order-42", "email": "customer@example.com"},
    }


def _confirm_body(status: str = "success", **metadata) -> dict:
    return {
        "status": status,
        "payment_method": "card",
        "metadata": {"reference_id": "order-42", **metadata},
    }


async def _paid_intent(client: AsyncClient, headers: dict) -> tuple[dict, dict]:
    response = await client.post("/v1/payment_intents", headers=headers, json=_intent_body())
    assert response.status_code == 200
    intent = response.json()

    response = await client.post(
        f"/v1/payment_intents/{intent['id']}/confirm", headers=headers, json=_confirm_body()
    )
    assert response.status_code == 200

    response = await client.get(
        "/v1/transactions", headers=headers, params={"payment_intent_id": intent["id"]}
    )
    assert response.status_code == 200
    return response.json()["items"][0], intent


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_payment_and_refund_flow(client: AsyncClient, auth_headers, publisher):
    merchant = auth_headers("merchant")
    admin = auth_headers("admin")

    response = await client.post("/v1/payment_intents", headers=merchant, json=_intent_body())
    assert response.status_code == 200
    intent = response.json()
    assert intent["amount"] == "100.0000"
    assert intent["refunded_amount"] == "0.0000"
    assert intent["status"] == "pending"
    assert intent["metadata"]["reference_id"] == "order-42"

    response = await client.post(
        f"/v1/payment_intents/{intent['id']}/confirm", headers=merchant, json=_confirm_body()
    )
    assert response.status_code == 200
    assert response.json()["status"] == "completed"

    response = await client.get(
        "/v1/transactions", headers=merchant, params={"payment_intent_id": intent["id"]}
    )
    page = response.json()
    assert page["total"] == 1
    transaction = page["items"][0]
    assert transaction["status"] == "success"
    assert transaction["amount"] == "100.0000"

    response = await client.post(
        f"/v1/transactions/{transaction['id']}/refunds",
        headers=merchant,
        json={"amount": "40.00", "reason": "Damaged item"},
    )
    assert response.status_code == 200
    refund = response.json()
    assert refund["status"] == "pending"
    assert refund["amount"] == "40.0000"

    response = await client.post(f"/v1/refunds/{refund['id']}/approve", headers=admin)
    assert response.status_code == 200
    assert response.json()["status"] == "approved"

    response = await client.get(f"/v1/payment_intents/{intent['id']}", headers=merchant)
    intent = response.json()
    assert intent["status"] == "partially_refunded"
    assert intent["refunded_amount"] == "40.0000"

    response = await client.get(
        "/v1/transactions",
        headers=admin,
        params={"payment_intent_id": intent["id"], "status": "refunded"},
    )
    refund_tx = response.json()["items"][0]
    assert refund_tx["parent_transaction_id"] == transaction["id"]
    assert refund_tx["metadata"]["refund_reason"] == "Damaged item"

    assert len(publisher.of_type(PaymentConfirmed)) == 1
    assert len(publisher.of_type(RefundApproved)) == 1


@pytest.mark.asyncio
async def test_reject_refund_via_api(client: AsyncClient, auth_headers, publisher):
    merchant = auth_headers("merchant")
    transaction, _ = await _paid_intent(client, merchant)

    response = await client.post(
        f"/v1/transactions/{transaction['id']}/refunds",
        headers=merchant,
        json={"amount": "10.00", "reason": "Changed mind"},
    )
    refund = response.json()

    response = await client.post(
        f"/v1/refunds/{refund['id']}/reject",
        headers=auth_headers("admin"),
        json={"reason": "Outside refund window"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "rejected"
    assert body["rejected_reason"] == "Outside refund window"

    response = await client.post(
        f"/v1/refunds/{refund['id']}/approve", headers=auth_headers("admin")
    )
    assert response.status_code == 400
    assert response.json()["error_code"] == "INVALID_STATE"

    assert len(publisher.of_type(RefundRejected)) == 1


@pytest.mark.asyncio
async def test_refund_exceeding_balance_error_shape(client: AsyncClient, auth_headers):
    merchant = auth_headers("merchant")
    transaction, _ = await _paid_intent(client, merchant)

    response = await client.post(
        f"/v1/transactions/{transaction['id']}/refunds",
        headers=merchant,
        json={"amount": "100.01", "reason": "Too much"},
    )

    assert response.status_code == 400
    body = response.json()
    assert set(body) == {"error_code", "message", "details"}
    assert body["error_code"] == "REFUND_EXCEEDS_BALANCE"
    assert body["details"]["requested_amount"] == "100.01"


@pytest.mark.asyncio
async def test_invalid_amount_is_rejected(client: AsyncClient, auth_headers):
    merchant = auth_headers("merchant")
    transaction, _ = await _paid_intent(client, merchant)

    response = await client.post(
        f"/v1/transactions/{transaction['id']}/refunds",
        headers=merchant,
        json={"amount": "1.00001", "reason": "Precision"},
    )

    assert response.status_code == 400
    assert response.json()["error_code"] == "INVALID_REQUEST"


@pytest.mark.asyncio
async def test_request_validation_error_shape(client: AsyncClient, auth_headers):
    response = await client.post(
        "/v1/payment_intents",
        headers=auth_headers("merchant"),
        json={"items": [], "currency": "USD", "metadata": {"reference_id": "x"}},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error_code"] == "INVALID_REQUEST"
    assert body["details"]["errors"]


@pytest.mark.asyncio
async def test_unsupported_currency(client: AsyncClient, auth_headers):
    body = _intent_body()
    body["currency"] = "GBP"

    response = await client.post("/v1/payment_intents", headers=auth_headers("merchant"), json=body)

    assert response.status_code == 400
    assert response.json()["error_code"] == "INVALID_REQUEST"


@pytest.mark.asyncio
async def test_confirm_without_webhook(client: AsyncClient, auth_headers):
    headers = auth_headers("no_webhook")
    response = await client.post("/v1/payment_intents", headers=headers, json=_intent_body())
    intent = response.json()

    response = await client.post(
        f"/v1/payment_intents/{intent['id']}/confirm", headers=headers, json=_confirm_body()
    )

    assert response.status_code == 400
    assert response.json()["error_code"] == "WEBHOOK_NOT_CONFIGURED"


@pytest.mark.asyncio
async def test_confirm_failed_payment(client: AsyncClient, auth_headers):
    headers = auth_headers("merchant")
    response = await client.post("/v1/payment_intents", headers=headers, json=_intent_body())
    intent = response.json()

    response = await client.post(
        f"/v1/payment_intents/{intent['id']}/confirm",
        headers=headers,
        json=_confirm_body("failed", failure_reason="Insufficient funds"),
    )

    assert response.status_code == 200
    assert response.json()["status"] == "failed"


@pytest.mark.asyncio
async def test_cancel_via_api(client: AsyncClient, auth_headers):
    headers = auth_headers("merchant")
    response = await client.post("/v1/payment_intents", headers=headers, json=_intent_body())
    intent = response.json()

    response = await client.post(f"/v1/payment_intents/{intent['id']}/cancel", headers=headers)
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"

    response = await client.post(f"/v1/payment_intents/{intent['id']}/cancel", headers=headers)
    assert response.status_code == 400
    assert response.json()["error_code"] == "INVALID_STATE"


@pytest.mark.asyncio
async def test_other_merchant_is_forbidden(client: AsyncClient, auth_headers):
    transaction, intent = await _paid_intent(client, auth_headers("merchant"))
    other = auth_headers("other")

    response = await client.get(f"/v1/payment_intents/{intent['id']}", headers=other)
    assert response.status_code == 403
    assert response.json()["error_code"] == "FORBIDDEN"

    response = await client.get(f"/v1/transactions/{transaction['id']}", headers=other)
    assert response.status_code == 403

    response = await client.post(
        f"/v1/transactions/{transaction['id']}/refunds",
        headers=other,
        json={"amount": "1.00", "reason": "Not mine"},
    )
    assert response.status_code == 403

    response = await client.get("/v1/payment_intents", headers=other)
    assert response.json()["total"] == 0


@pytest.mark.asyncio
async def test_unknown_ids_return_not_found(client: AsyncClient, auth_headers):
    admin = auth_headers("admin")
    missing = "00000000-0000-0000-0000-000000000000"

    response = await client.get(f"/v1/payment_intents/{missing}", headers=admin)
    assert response.status_code == 404
    assert response.json()["error_code"] == "PAYMENT_INTENT_NOT_FOUND"

    response = await client.get(f"/v1/transactions/{missing}", headers=admin)
    assert response.json()["error_code"] == "TRANSACTION_NOT_FOUND"

    response = await client.get(f"/v1/refunds/{missing}", headers=admin)
    assert response.json()["error_code"] == "REFUND_NOT_FOUND"


@pytest.mark.asyncio
async def test_unknown_route_uses_error_shape(client: AsyncClient):
    response = await client.get("/v1/does-not-exist")

    assert response.status_code == 404
    assert set(response.json()) == {"error_code", "message", "details"}


@pytest.mark.asyncio
async def test_list_pagination(client: AsyncClient, auth_headers):
    headers = auth_headers("merchant")
    for _ in range(3):
        await client.post("/v1/payment_intents", headers=headers, json=_intent_body())

    response = await client.get("/v1/payment_intents", headers=headers, params={"size": 2})
    page = response.json()
    assert page["total"] == 3
    assert page["page"] == 0
    assert page["size"] == 2
    assert len(page["items"]) == 2

    response = await client.get(
        "/v1/payment_intents", headers=headers, params={"size": 2, "page": 1}
    )
    assert len(response.json()["items"]) == 1

    response = await client.get("/v1/payment_intents", headers=headers, params={"size": 101})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_list_refunds_by_status(client: AsyncClient, auth_headers):
    merchant = auth_headers("merchant")
    transaction, _ = await _paid_intent(client, merchant)

    for amount in ("10.00", "20.00"):
        await client.post(
            f"/v1/transactions/{transaction['id']}/refunds",
            headers=merchant,
            json={"amount": amount, "reason": "Partial"},
        )

    response = await client.get(
        "/v1/refunds", headers=auth_headers("admin"), params={"status": ["pending", "approved"]}
    )
    assert response.status_code == 200
    assert response.json()["total"] == 2

    response = await client.get(
        "/v1/refunds", headers=merchant, params={"status": "rejected"}
    )
    assert response.json()["total"] == 0
