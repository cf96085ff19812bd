from enum import Enum


class OrderStatus(str, Enum):
    CREATED = "CREATED"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    PRINTING = "PRINTING"
    READY_TO_SHIP = "READY_TO_SHIP"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class PaymentProvider(str, Enum):
    RAZORPAY = "RAZORPAY"
    STRIPE = "STRIPE"
    SHOPIFY = "SHOPIFY"


class QikinkSyncStatus(str, Enum):
    NOT_STARTED = "not_started"
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


class EventKind(str, Enum):
    PAYMENT = "payment"
    FULFILLMENT = "fulfillment"


class DeliveryOutcome(str, Enum):
    """What happened to one inbound webhook delivery."""

    APPLIED = "applied"
    NOOP = "noop"
    DUPLICATE = "duplicate"
    UNRESOLVED = "unresolved"
    REJECTED = "rejected"
    UNKNOWN_EVENT = "unknown_event"
