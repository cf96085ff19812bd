"""Map provider payloads onto the canonical order/payment vocabulary.

The tables below are the single source for vendor status strings. Fulfillment
statuses nobody has told us about still move the order to PROCESSING (and are
logged as unknown_vendor_status) so a new Qikink status never drops an update.
"""

import hashlib
from dataclasses import dataclass, field
from typing import Any, Callable

from orderflow.core.logging import get_logger
from orderflow.models.enums import EventKind, OrderStatus, PaymentStatus
from orderflow.services.webhook_payloads import (
    PrintEvent,
    QikinkEvent,
    RazorpayEvent,
    ShopifyEvent,
    WebhookPayload,
)

log = get_logger(__name__)

UNKNOWN_VENDOR_STATUS_DEFAULT = OrderStatus.PROCESSING

QIKINK_STATUS_MAP: dict[str, OrderStatus] = {
    "order.received": OrderStatus.PROCESSING,
    "order.processing": OrderStatus.PROCESSING,
    "order.manufacturing": OrderStatus.PRINTING,
    "order.quality_check": OrderStatus.PRINTING,
    "order.dispatched": OrderStatus.READY_TO_SHIP,
    "order.shipped": OrderStatus.SHIPPED,
    "order.delivered": OrderStatus.DELIVERED,
    "order.cancelled": OrderStatus.CANCELLED,
}

# topic -> (order status, payment status, sync to Qikink)
SHOPIFY_TOPIC_MAP: dict[str, tuple[OrderStatus | None, PaymentStatus | None, bool]] = {
    "order/created": (OrderStatus.CONFIRMED, PaymentStatus.SUCCESS, True),
    "order/paid": (None, PaymentStatus.SUCCESS, False),
    "order/fulfilled": (OrderStatus.SHIPPED, None, False),
    "order/cancelled": (OrderStatus.CANCELLED, None, False),
    "order/refunded": (OrderStatus.CANCELLED, PaymentStatus.REFUNDED, False),
}

# Admin API topic names for the same events
_SHOPIFY_TOPIC_ALIASES = {
    "orders/create": "order/created",
    "orders/paid": "order/paid",
    "orders/fulfilled": "order/fulfilled",
    "orders/cancelled": "order/cancelled",
    "refunds/create": "order/refunded",
}

RAZORPAY_EVENT_MAP: dict[str, PaymentStatus] = {
    "payment.authorized": PaymentStatus.SUCCESS,
    "payment.captured": PaymentStatus.SUCCESS,
    "payment.failed": PaymentStatus.FAILED,
}

PRINT_EVENT_MAP: dict[str, OrderStatus] = {
    "order_created": OrderStatus.PRINTING,
    "order_shipped": OrderStatus.SHIPPED,
    "package_shipped": OrderStatus.SHIPPED,
    "order_delivered": OrderStatus.DELIVERED,
    "order_failed": OrderStatus.CANCELLED,
    "order_canceled": OrderStatus.CANCELLED,
}


@dataclass(frozen=True)
class TrackingInfo:
    tracking_number: str | None = None
    tracking_url: str | None = None
    shipping_carrier: str | None = None
    estimated_delivery_date: str | None = None

    def as_changes(self) -> dict[str, str]:
        return {k: v for k, v in self.__dict__.items() if v}


@dataclass(frozen=True)
class CanonicalEvent:
    """One provider claim about an order, in canonical terms."""

    provider: str
    kind: EventKind
    topic: str
    external_order_id: str
    target_order_status: OrderStatus | None = None
    target_payment_status: PaymentStatus | None = None
    tracking: TrackingInfo | None = None
    external_event_id: str | None = None
    shopify_order_id: str | None = None
    qikink_order_id: str | None = None
    correlation_id: str | None = None
    razorpay_order_id: str | None = None
    payment_ref: str | None = None
    provider_payment_id: str | None = None
    vendor_status: str | None = None
    sync_fulfillment: bool = False
    source: Any = field(default=None, compare=False, repr=False)

    @property
    def fingerprint(self) -> str:
        return compute_fingerprint(
            self.provider,
            self.external_order_id,
            self.target_order_status,
            self.target_payment_status,
            self.tracking.tracking_number if self.tracking else None,
        )


def compute_fingerprint(
    provider: str,
    external_order_id: str,
    order_status: OrderStatus | None,
    payment_status: PaymentStatus | None,
    tracking_number: str | None = None,
) -> str:
    parts = [
        provider,
        external_order_id,
        order_status.value if order_status else "-",
        payment_status.value if payment_status else "-",
        tracking_number or "-",
    ]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()[:40]


def map_qikink_status(vendor_status: str) -> OrderStatus:
    status = vendor_status.strip().lower()
    if not status.startswith("order."):
        status = f"order.{status}"
    mapped = QIKINK_STATUS_MAP.get(status)
    if mapped is None:
        log.warning("unknown_vendor_status", vendor="qikink", vendor_status=vendor_status)
        return UNKNOWN_VENDOR_STATUS_DEFAULT
    return mapped


def canonical_shopify_topic(topic: str) -> str:
    topic = topic.strip().lower()
    return _SHOPIFY_TOPIC_ALIASES.get(topic, topic)


def _shopify_tracking(event: ShopifyEvent) -> TrackingInfo | None:
    for f in event.fulfillments:
        number = f.tracking_number or next(iter(f.tracking_numbers), None)
        url = f.tracking_url or next(iter(f.tracking_urls), None)
        if number or url:
            return TrackingInfo(tracking_number=number, tracking_url=url, shipping_carrier=f.tracking_company)
    for line in event.shipping_lines:
        if line.tracking_number or line.tracking_url:
            return TrackingInfo(
                tracking_number=line.tracking_number,
                tracking_url=line.tracking_url,
                shipping_carrier=line.carrier_identifier or line.title,
            )
    return None


def _normalize_shopify(event: ShopifyEvent) -> CanonicalEvent | None:
    topic = canonical_shopify_topic(event.topic)
    mapping = SHOPIFY_TOPIC_MAP.get(topic)
    if mapping is None:
        log.info("unhandled_shopify_topic", topic=event.topic, shopify_order_id=event.id)
        return None
    order_status, payment_status, sync = mapping
    return CanonicalEvent(
        provider="shopify",
        kind=EventKind.PAYMENT if payment_status else EventKind.FULFILLMENT,
        topic=topic,
        external_order_id=event.id,
        target_order_status=order_status,
        target_payment_status=payment_status,
        tracking=_shopify_tracking(event) if order_status == OrderStatus.SHIPPED else None,
        shopify_order_id=event.id,
        correlation_id=event.correlation_id,
        vendor_status=event.topic,
        sync_fulfillment=sync,
        source=event,
    )


def _normalize_qikink(event: QikinkEvent) -> CanonicalEvent:
    order_status = map_qikink_status(event.vendor_status)
    tracking = None
    if order_status == OrderStatus.SHIPPED:
        tracking = TrackingInfo(
            tracking_number=event.tracking_number,
            tracking_url=event.tracking_url,
            shipping_carrier=event.shipping_carrier,
            estimated_delivery_date=event.estimated_delivery_date,
        )
    return CanonicalEvent(
        provider="qikink",
        kind=EventKind.FULFILLMENT,
        topic=event.vendor_status,
        external_order_id=event.id,
        target_order_status=order_status,
        tracking=tracking,
        external_event_id=event.event_id,
        qikink_order_id=event.id,
        correlation_id=event.external_reference_id or event.shopify_order_id,
        vendor_status=event.event or event.status,
        source=event,
    )


def _normalize_razorpay(event: RazorpayEvent) -> CanonicalEvent | None:
    payment_status = RAZORPAY_EVENT_MAP.get(event.event)
    if payment_status is None:
        log.info("unhandled_razorpay_event", razorpay_event=event.event, payment_id=event.payment.id)
        return None
    reference = event.razorpay_order_id or event.receipt or event.payment.id
    return CanonicalEvent(
        provider="razorpay",
        kind=EventKind.PAYMENT,
        topic=event.event,
        external_order_id=reference,
        target_payment_status=payment_status,
        razorpay_order_id=event.razorpay_order_id,
        payment_ref=event.receipt,
        provider_payment_id=event.payment.id,
        vendor_status=event.event,
        source=event,
    )


def _normalize_print(event: PrintEvent) -> CanonicalEvent | None:
    order_status = PRINT_EVENT_MAP.get(event.type)
    if order_status is None:
        log.warning("unknown_vendor_status", vendor="print", vendor_status=event.type)
        order_status = UNKNOWN_VENDOR_STATUS_DEFAULT
    tracking = None
    if order_status == OrderStatus.SHIPPED:
        tracking = TrackingInfo(
            tracking_number=event.data.tracking_number,
            tracking_url=event.data.tracking_url,
            shipping_carrier=event.data.carrier,
        )
    return CanonicalEvent(
        provider="print",
        kind=EventKind.FULFILLMENT,
        topic=event.type,
        external_order_id=event.data.external_id,
        target_order_status=order_status,
        tracking=tracking,
        correlation_id=event.data.external_id,
        vendor_status=event.type,
        source=event,
    )


_NORMALIZERS: dict[type, Callable[[Any], CanonicalEvent | None]] = {
    ShopifyEvent: _normalize_shopify,
    QikinkEvent: _normalize_qikink,
    RazorpayEvent: _normalize_razorpay,
    PrintEvent: _normalize_print,
}


def normalize(event: WebhookPayload) -> CanonicalEvent | None:
    """Canonical event for a decoded payload, or None for topics we do not act on."""
    return _NORMALIZERS[type(event)](event)
