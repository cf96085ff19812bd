"""Backend-independent views of orders and payments.

The Beanie documents mix in the *Fields models, so the Mongo and in-memory
backends hand the same shapes to the state machine.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from orderflow.models.enums import (
    DeliveryOutcome,
    OrderStatus,
    PaymentProvider,
    PaymentStatus,
    QikinkSyncStatus,
)


class OrderFields(BaseModel):
    user_id: str
    product_id: str
    qr_code_id: str
    amount: float
    quantity: int = 1
    customer_email: str | None = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    order_status: OrderStatus = OrderStatus.CREATED
    shopify_order_id: str | None = None
    qikink_order_id: str | None = None
    qikink_status: str | None = None  # raw vendor string, audit only
    qikink_sync_status: QikinkSyncStatus = QikinkSyncStatus.NOT_STARTED
    tracking_number: str | None = None
    tracking_url: str | None = None
    shipping_carrier: str | None = None
    estimated_delivery_date: str | None = None
    version: int = 0
    applied_fingerprints: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class OrderRecord(OrderFields):
    model_config = ConfigDict(extra="ignore")

    id: str


class PaymentFields(BaseModel):
    order_id: str
    provider: PaymentProvider
    amount: float
    status: PaymentStatus = PaymentStatus.PENDING
    provider_payment_id: str | None = None
    provider_order_id: str | None = None  # e.g. Razorpay order id
    provider_order_ref: str | None = None  # receipt we issued at initiation
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class PaymentRecord(PaymentFields):
    model_config = ConfigDict(extra="ignore")

    id: str


class WebhookEventFields(BaseModel):
    provider: str
    fingerprint: str | None = None
    external_event_id: str | None = None
    external_order_id: str | None = None
    topic: str | None = None
    order_id: str | None = None
    outcome: DeliveryOutcome
    raw_payload: dict[str, Any] = Field(default_factory=dict)
    received_at: datetime = Field(default_factory=datetime.utcnow)
