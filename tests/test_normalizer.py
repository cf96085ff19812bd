import pytest

from orderflow.core.exceptions import MalformedPayloadError
from orderflow.models.enums import EventKind, OrderStatus, PaymentStatus
from orderflow.services.normalizer import compute_fingerprint, map_qikink_status, normalize
from orderflow.services.webhook_payloads import decode_payload, parse_body


@pytest.mark.parametrize(
    "vendor_status,expected",
    [
        ("order.received", OrderStatus.PROCESSING),
        ("order.processing", OrderStatus.PROCESSING),
        ("order.manufacturing", OrderStatus.PRINTING),
        ("order.quality_check", OrderStatus.PRINTING),
        ("order.dispatched", OrderStatus.READY_TO_SHIP),
        ("order.shipped", OrderStatus.SHIPPED),
        ("order.delivered", OrderStatus.DELIVERED),
        ("order.cancelled", OrderStatus.CANCELLED),
        ("shipped", OrderStatus.SHIPPED),
        ("Order.Delivered", OrderStatus.DELIVERED),
    ],
)
def test_qikink_status_table(vendor_status, expected):
    assert map_qikink_status(vendor_status) == expected


def test_unknown_qikink_status_defaults_to_processing():
    assert map_qikink_status("order.teleported") == OrderStatus.PROCESSING


def test_qikink_shipped_carries_tracking():
    payload = decode_payload(
        "qikink",
        {"id": 77, "status": "shipped", "tracking_number": "T123", "shipping_carrier": "Delhivery"},
    )
    event = normalize(payload)
    assert event.kind == EventKind.FULFILLMENT
    assert event.qikink_order_id == "77"
    assert event.target_order_status == OrderStatus.SHIPPED
    assert event.tracking.tracking_number == "T123"
    assert event.tracking.shipping_carrier == "Delhivery"


def test_qikink_non_shipping_status_drops_tracking():
    event = normalize(decode_payload("qikink", {"id": "Q1", "event": "order.manufacturing", "tracking_number": "T1"}))
    assert event.tracking is None


def test_qikink_payload_needs_event_or_status():
    with pytest.raises(MalformedPayloadError):
        decode_payload("qikink", {"id": "Q1"})


@pytest.mark.parametrize(
    "topic,order_status,payment_status",
    [
        ("orders/create", OrderStatus.CONFIRMED, PaymentStatus.SUCCESS),
        ("order/created", OrderStatus.CONFIRMED, PaymentStatus.SUCCESS),
        ("orders/paid", None, PaymentStatus.SUCCESS),
        ("orders/fulfilled", OrderStatus.SHIPPED, None),
        ("orders/cancelled", OrderStatus.CANCELLED, None),
        ("order/refunded", OrderStatus.CANCELLED, PaymentStatus.REFUNDED),
    ],
)
def test_shopify_topics(topic, order_status, payment_status):
    event = normalize(decode_payload("shopify", {"id": 1001}, topic=topic))
    assert event.target_order_status == order_status
    assert event.target_payment_status == payment_status
    assert event.shopify_order_id == "1001"


def test_shopify_created_requests_fulfillment_sync():
    event = normalize(decode_payload("shopify", {"id": 1}, topic="orders/create"))
    assert event.sync_fulfillment
    assert event.kind == EventKind.PAYMENT


def test_shopify_topic_from_body_when_header_missing():
    event = normalize(decode_payload("shopify", {"id": 1, "type": "order/paid"}))
    assert event.target_payment_status == PaymentStatus.SUCCESS


def test_shopify_unhandled_topic_is_not_an_event():
    assert normalize(decode_payload("shopify", {"id": 1}, topic="customers/update")) is None


def test_shopify_fulfilled_tracking_from_fulfillment():
    payload = {
        "id": 1,
        "fulfillments": [{"tracking_company": "BlueDart", "tracking_numbers": ["BD9"], "tracking_urls": ["https://t/BD9"]}],
    }
    event = normalize(decode_payload("shopify", payload, topic="orders/fulfilled"))
    assert event.tracking.tracking_number == "BD9"
    assert event.tracking.tracking_url == "https://t/BD9"


def test_shopify_correlation_from_note_attribute():
    payload = {"id": 1, "note_attributes": [{"name": "order_id", "value": "abc"}]}
    event = normalize(decode_payload("shopify", payload, topic="orders/create"))
    assert event.correlation_id == "abc"


def test_shopify_missing_id_is_malformed():
    with pytest.raises(MalformedPayloadError):
        decode_payload("shopify", {"email": "x@example.com"}, topic="orders/create")


@pytest.mark.parametrize(
    "name,expected",
    [
        ("payment.authorized", PaymentStatus.SUCCESS),
        ("payment.captured", PaymentStatus.SUCCESS),
        ("payment.failed", PaymentStatus.FAILED),
    ],
)
def test_razorpay_events(name, expected, payloads):
    event = normalize(decode_payload("razorpay", payloads.razorpay(name, "pay_1", "order_R1", "internal-1")))
    assert event.target_payment_status == expected
    assert event.target_order_status is None
    assert event.razorpay_order_id == "order_R1"
    assert event.payment_ref == "internal-1"
    assert event.provider_payment_id == "pay_1"


def test_razorpay_unhandled_event(payloads):
    assert normalize(decode_payload("razorpay", payloads.razorpay("refund.created", "pay_1", None, None))) is None


@pytest.mark.parametrize(
    "event_type,expected",
    [
        ("order_created", OrderStatus.PRINTING),
        ("package_shipped", OrderStatus.SHIPPED),
        ("order_delivered", OrderStatus.DELIVERED),
        ("order_canceled", OrderStatus.CANCELLED),
        ("order_on_hold", OrderStatus.PROCESSING),
    ],
)
def test_print_events(event_type, expected):
    event = normalize(decode_payload("print", {"type": event_type, "data": {"external_id": 42}}))
    assert event.target_order_status == expected
    assert event.correlation_id == "42"


def test_fingerprint_depends_on_tracking_number():
    a = compute_fingerprint("qikink", "Q1", OrderStatus.SHIPPED, None, "T1")
    b = compute_fingerprint("qikink", "Q1", OrderStatus.SHIPPED, None, "T2")
    assert a != b
    assert a == compute_fingerprint("qikink", "Q1", OrderStatus.SHIPPED, None, "T1")


def test_parse_body_rejects_non_json():
    with pytest.raises(MalformedPayloadError):
        parse_body(b"not json")
    with pytest.raises(MalformedPayloadError):
        parse_body(b"[1, 2]")
