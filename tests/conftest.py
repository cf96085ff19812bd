import base64
import hashlib
import hmac
import json
import os
from typing import Any, AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# In-memory backend and known secrets; must be set before settings are first read
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("SHOPIFY_WEBHOOK_SECRET", "shopify-test-secret")
os.environ.setdefault("QIKINK_WEBHOOK_SECRET", "qikink-test-secret")
os.environ.setdefault("QIKINK_API_KEY", "qikink-api-key")
os.environ.setdefault("QIKINK_MERCHANT_ID", "merchant-1")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "razorpay-key-secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "razorpay-webhook-secret")
os.environ.setdefault("PRINT_WEBHOOK_SECRET", "print-test-secret")
os.environ.setdefault("SMTP_HOST", "")


class FakeEmailSender:
    def __init__(self) -> None:
        self.sent: list[dict[str, str]] = []
        self.failures: list[Exception] = []

    async def send(self, to: str, subject: str, html: str) -> bool:
        if self.failures:
            raise self.failures.pop(0)
        self.sent.append({"to": to, "subject": subject, "html": html})
        return True

    def subjects(self) -> list[str]:
        return [m["subject"] for m in self.sent]


class FakeQikinkApi:
    """httpx handler standing in for the Qikink REST API."""

    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []
        self.fail_with: int | None = None
        self.reply_text: str | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        if self.fail_with:
            return httpx.Response(self.fail_with, json={"error": "unavailable"})
        if self.reply_text is not None:
            return httpx.Response(200, text=self.reply_text)
        return httpx.Response(201, json={"id": f"QK-{len(self.requests)}", "status": "received"})


class _FakeRazorpayOrders:
    def __init__(self) -> None:
        self.created: list[dict[str, Any]] = []

    def create(self, data: dict[str, Any]) -> dict[str, Any]:
        self.created.append(data)
        return {"id": f"order_RZP{len(self.created)}", "amount": data["amount"], "currency": data["currency"]}


class FakeRazorpay:
    def __init__(self) -> None:
        self.order = _FakeRazorpayOrders()


@pytest.fixture
def settings():
    from orderflow.core.config import get_settings
    return get_settings()


@pytest.fixture
def repository(settings):
    from orderflow.storage.memory import MemoryOrderRepository
    return MemoryOrderRepository(fingerprint_history=settings.fingerprint_history)


@pytest.fixture
def email_sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def qikink_api() -> FakeQikinkApi:
    return FakeQikinkApi()


@pytest.fixture
def razorpay() -> FakeRazorpay:
    return FakeRazorpay()


@pytest_asyncio.fixture
async def services(settings, repository, email_sender, qikink_api, razorpay):
    from orderflow.deps import build_services
    from orderflow.services.qikink import QikinkClient
    from orderflow.services.retry_queue import InMemoryRetryQueue

    qikink_client = QikinkClient(
        settings.qikink_api_base,
        settings.qikink_api_key,
        settings.qikink_merchant_id,
        transport=httpx.MockTransport(qikink_api),
    )
    svc = build_services(
        settings,
        repository=repository,
        email_sender=email_sender,
        qikink_client=qikink_client,
        retry_queue=InMemoryRetryQueue(max_tries=3),
        razorpay=razorpay,
    )
    yield svc
    await svc.close()


@pytest_asyncio.fixture
async def client(services) -> AsyncGenerator[AsyncClient, None]:
    from orderflow.main import create_app
    async with AsyncClient(
        transport=ASGITransport(app=create_app(services)),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def order(repository):
    return await repository.create_order(
        user_id="user-1",
        product_id="tee-qr",
        qr_code_id="qr-1",
        amount=499.0,
        customer_email="buyer@example.com",
    )


@pytest.fixture
def signed(settings):
    """signed(provider, payload, **headers) -> (raw body, headers) as the provider would send them."""

    def _sign(provider: str, payload: dict[str, Any], **extra: str) -> tuple[bytes, dict[str, str]]:
        body = json.dumps(payload).encode()
        if provider == "shopify":
            digest = hmac.new(settings.shopify_webhook_secret.encode(), body, hashlib.sha256).digest()
            headers = {"X-Shopify-Hmac-Sha256": base64.b64encode(digest).decode()}
        else:
            secret, header = {
                "qikink": (settings.qikink_signing_secret, "X-Qikink-Signature"),
                "razorpay": (settings.razorpay_webhook_secret, "X-Razorpay-Signature"),
                "print": (settings.print_webhook_secret, "X-Print-Signature"),
            }[provider]
            headers = {header: hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()}
        headers["Content-Type"] = "application/json"
        headers.update(extra)
        return body, headers

    return _sign


def shopify_order_payload(order_id: str, shopify_id: int = 820982911946154508, **extra: Any) -> dict[str, Any]:
    payload = {
        "id": shopify_id,
        "email": "buyer@example.com",
        "note_attributes": [{"name": "order_id", "value": order_id}],
        "line_items": [
            {
                "sku": "TEE-QR-M",
                "name": "QR Tee",
                "quantity": 1,
                "properties": [{"name": "qr_code_id", "value": "qr-1"}],
            }
        ],
        "shipping_address": {
            "first_name": "Asha",
            "last_name": "Rao",
            "phone": "+919800000000",
            "address1": "12 MG Road",
            "city": "Bengaluru",
            "province": "Karnataka",
            "zip": "560001",
            "country": "India",
        },
    }
    payload.update(extra)
    return payload


def qikink_payload(qikink_id: str, event: str, order_id: str | None = None, **extra: Any) -> dict[str, Any]:
    payload = {"id": qikink_id, "event": event, "external_reference_id": order_id}
    payload.update(extra)
    return payload


def razorpay_payload(event: str, payment_id: str, rp_order_id: str | None, receipt: str | None) -> dict[str, Any]:
    return {
        "event": event,
        "payload": {
            "payment": {"entity": {"id": payment_id, "order_id": rp_order_id, "amount": 49900, "status": "captured"}},
            "order": {"entity": {"id": rp_order_id, "receipt": receipt}},
        },
    }


@pytest.fixture
def payloads():
    """Payload builders, shared across test modules without importing conftest."""

    class _Payloads:
        shopify = staticmethod(shopify_order_payload)
        qikink = staticmethod(qikink_payload)
        razorpay = staticmethod(razorpay_payload)

    return _Payloads
