"""Webhook endpoints over HTTP: envelope, status codes, background dispatch."""

import pytest

from orderflow.models.enums import DeliveryOutcome, OrderStatus, PaymentStatus

pytestmark = pytest.mark.asyncio


async def test_shopify_webhook_applies_and_dispatches(client, signed, payloads, order, email_sender, repository):
    body, headers = signed("shopify", payloads.shopify(order.id), **{"X-Shopify-Topic": "orders/create"})
    r = await client.post("/webhooks/shopify", content=body, headers=headers)

    assert r.status_code == 200
    data = r.json()
    assert data["error"] == {"code": 0, "message": "Webhook processed"}
    assert data["data"]["applied"] is True
    assert data["data"]["order_status"] == "CONFIRMED"
    assert data["data"]["payment_status"] == "SUCCESS"
    # background tasks have run by the time the ASGI call returns
    assert email_sender.subjects() == ["Order Confirmation"]
    assert (await repository.get_order(order.id)).qikink_order_id == "QK-1"


async def test_replayed_webhook_is_200_noop(client, signed, payloads, order, email_sender):
    body, headers = signed("shopify", payloads.shopify(order.id), **{"X-Shopify-Topic": "orders/create"})
    await client.post("/webhooks/shopify", content=body, headers=headers)
    r = await client.post("/webhooks/shopify", content=body, headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["applied"] is False
    assert r.json()["data"]["outcome"] == "duplicate"
    assert len(email_sender.sent) == 1


async def test_tampered_body_is_401_and_changes_nothing(client, signed, payloads, order, repository):
    body, headers = signed("shopify", payloads.shopify(order.id), **{"X-Shopify-Topic": "orders/create"})
    before = await repository.get_order(order.id)
    r = await client.post("/webhooks/shopify", content=body.replace(b"buyer", b"thief"), headers=headers)

    assert r.status_code == 401
    assert r.json()["data"] is None
    assert r.json()["error"]["code"] == "UNAUTHORIZED"
    assert await repository.get_order(order.id) == before


async def test_missing_qikink_signature_is_401(client, payloads, order):
    r = await client.post("/webhooks/qikink", json=payloads.qikink("QK-1", "order.shipped", order.id))
    assert r.status_code == 401


async def test_malformed_payload_is_400(client, signed):
    body, headers = signed("qikink", {"id": "QK-1"})
    r = await client.post("/webhooks/qikink", content=body, headers=headers)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "MALFORMED_PAYLOAD"


async def test_unknown_order_is_200(client, signed, payloads):
    body, headers = signed("qikink", payloads.qikink("QK-404", "order.shipped", "nope"))
    r = await client.post("/webhooks/qikink", content=body, headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["outcome"] == "unresolved"


async def test_forged_payment_webhook_is_200_without_effect(client, payloads, order, repository):
    payload = payloads.razorpay("payment.captured", "pay_1", "order_RZP1", order.id)
    r = await client.post("/webhooks/payment", json=payload, headers={"X-Razorpay-Signature": "deadbeef"})
    assert r.status_code == 200
    assert r.json()["data"]["applied"] is False
    assert r.json()["data"]["outcome"] == "rejected"
    assert (await repository.get_order(order.id)).payment_status == PaymentStatus.PENDING


async def test_signed_payment_webhook_marks_success(client, signed, payloads, order, email_sender):
    init = await client.post("/v1/payments/initiate", json={"order_id": order.id, "provider": "RAZORPAY"})
    rp_order_id = init.json()["data"]["provider_order_id"]
    body, headers = signed("razorpay", payloads.razorpay("payment.captured", "pay_1", rp_order_id, order.id))

    r = await client.post("/webhooks/payment", content=body, headers=headers)
    assert r.json()["data"]["payment_status"] == "SUCCESS"
    assert email_sender.subjects() == ["Payment Successful"]


async def test_unhandled_payment_event_is_acknowledged(client, signed, payloads, repository):
    body, headers = signed("razorpay", payloads.razorpay("refund.created", "pay_1", "order_RZP1", None))
    r = await client.post("/webhooks/payment", content=body, headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["outcome"] == "unknown_event"
    assert repository.webhook_events[-1].outcome == DeliveryOutcome.UNKNOWN_EVENT


async def test_print_webhook_resolves_by_external_id(client, signed, order, repository):
    payload = {"type": "package_shipped", "data": {"external_id": order.id, "tracking_number": "PF1", "carrier": "UPS"}}
    body, headers = signed("print", payload)
    r = await client.post("/webhooks/print", content=body, headers=headers)
    assert r.status_code == 200
    stored = await repository.get_order(order.id)
    assert stored.order_status == OrderStatus.SHIPPED
    assert stored.shipping_carrier == "UPS"


async def test_unconfigured_secret_is_500(client, services, order, monkeypatch):
    monkeypatch.setattr(services.settings, "print_webhook_secret", "")
    r = await client.post("/webhooks/print", json={"type": "order_created", "data": {"external_id": order.id}})
    assert r.status_code == 500
    assert r.json()["error"]["code"] == "WEBHOOK_NOT_CONFIGURED"
