"""Qikink fulfillment: outbound order creation and its retry path.

The HTTP client is built once at startup and shared; nothing here keeps
module-level state.
"""

from typing import Any

import httpx

from orderflow.core.config import Settings
from orderflow.core.exceptions import DownstreamSyncFailure
from orderflow.core.logging import get_logger
from orderflow.models.enums import QikinkSyncStatus
from orderflow.models.records import OrderRecord
from orderflow.services.order_state import SideEffect
from orderflow.services.webhook_payloads import ShopifyEvent
from orderflow.storage.base import OrderRepository

log = get_logger(__name__)

SYNC_JOB_NAME = "sync_order_to_qikink"


class QikinkClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        merchant_id: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.merchant_id = merchant_id
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "X-Merchant-ID": merchant_id,
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "QikinkClient":
        return cls(
            settings.qikink_api_base,
            settings.qikink_api_key,
            settings.qikink_merchant_id,
            timeout=settings.qikink_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.merchant_id)

    async def create_order(self, request: dict[str, Any]) -> dict[str, Any]:
        if not self.is_configured:
            raise DownstreamSyncFailure("Qikink configuration missing", retryable=False)
        try:
            resp = await self._client.post("/orders", json=request)
        except httpx.HTTPError as e:
            raise DownstreamSyncFailure(f"Qikink request failed: {e}") from e
        if resp.status_code == 429 or resp.status_code >= 500:
            raise DownstreamSyncFailure(f"Qikink API error: {resp.status_code}")
        if resp.status_code >= 400:
            raise DownstreamSyncFailure(f"Qikink rejected order: {resp.status_code} {resp.text[:200]}", retryable=False)
        try:
            data = resp.json()
        except ValueError as e:
            raise DownstreamSyncFailure(f"Qikink returned an unreadable body: {resp.text[:200]!r}") from e
        if not isinstance(data, dict):
            raise DownstreamSyncFailure(f"Qikink returned an unexpected body: {resp.text[:200]!r}")
        return data

    async def aclose(self) -> None:
        await self._client.aclose()


def _drop_empty(values: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None and v != ""}


def build_qikink_order_request(order: OrderRecord, event: ShopifyEvent) -> dict[str, Any]:
    """Qikink order body from the Shopify order that confirmed `order`."""
    products = [
        {
            "sku": item.sku or order.product_id,
            "name": item.name or item.title,
            "quantity": item.quantity,
            "customizations": _drop_empty(
                {
                    "qr_code_id": item.get_property("qr_code_id") or order.qr_code_id,
                    "qr_code_url": item.get_property("qr_code_url"),
                    "design_url": item.get_property("mockup_url") or item.get_property("design_url"),
                }
            ),
        }
        for item in event.line_items
    ]
    if not products:
        products = [
            {
                "sku": order.product_id,
                "quantity": order.quantity,
                "customizations": {"qr_code_id": order.qr_code_id},
            }
        ]
    address = event.shipping_address
    shipping = {}
    if address:
        shipping = _drop_empty(
            {
                "full_name": address.full_name,
                "email": event.email or order.customer_email,
                "phone": address.phone,
                "street_address": address.address1,
                "apartment": address.address2,
                "city": address.city,
                "state": address.province,
                "postal_code": address.zip,
                "country": address.country,
            }
        )
    return {
        "external_reference_id": order.id,
        "shopify_order_id": event.id,
        "products": products,
        "shipping_address": shipping,
        "notifications": {"email": True, "sms": bool(address and address.phone)},
    }


class QikinkSync:
    """Submit an order to Qikink and record the result on the order."""

    def __init__(self, client: QikinkClient, repository: OrderRepository) -> None:
        self.client = client
        self.repository = repository

    async def submit(self, order_id: str, request: dict[str, Any]) -> str:
        response = await self.client.create_order(request)
        qikink_order_id = response.get("id") or response.get("order_id")
        if not qikink_order_id:
            raise DownstreamSyncFailure("Qikink response carried no order id", retryable=False)
        qikink_order_id = str(qikink_order_id)
        await self.repository.update_order_fields(
            order_id,
            {
                "qikink_order_id": qikink_order_id,
                "qikink_status": response.get("status"),
                "qikink_sync_status": QikinkSyncStatus.SYNCED,
            },
        )
        await self.repository.append_audit(
            order_id, "qikink_synced", source="qikink", metadata={"qikink_order_id": qikink_order_id}
        )
        log.info("qikink_synced", order_id=order_id, qikink_order_id=qikink_order_id)
        return qikink_order_id


async def retry_sync(
    sync: QikinkSync,
    order_id: str,
    request: dict[str, Any],
    attempt: int,
    max_tries: int,
    job_id: str | None = None,
) -> bool:
    """One retry attempt. Re-raises DownstreamSyncFailure while another attempt is allowed.

    The final failure marks the order's sync as failed and dead-letters the job.
    """
    repository = sync.repository
    try:
        await sync.submit(order_id, request)
    except DownstreamSyncFailure as e:
        if e.retryable and attempt < max_tries:
            log.warning("qikink_sync_retry", order_id=order_id, attempt=attempt, reason=str(e))
            raise
        await repository.update_order_fields(order_id, {"qikink_sync_status": QikinkSyncStatus.FAILED})
        await repository.record_failed_job(
            SYNC_JOB_NAME,
            job_id or f"{order_id}:{SideEffect.QIKINK_SYNC.value}",
            [order_id, request],
            str(e),
            retries=attempt,
        )
        await repository.append_audit(order_id, "qikink_sync_failed", source="qikink", metadata={"reason": str(e)})
        log.error("qikink_sync_dead_lettered", order_id=order_id, attempts=attempt, reason=str(e))
        return False
    await repository.complete_side_effect(f"{order_id}:{SideEffect.QIKINK_SYNC.value}")
    return True

