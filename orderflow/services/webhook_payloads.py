"""Per-provider webhook payloads, decoded strictly at the boundary.

Each variant carries a ``provider`` tag so the union can be validated in one
pass; unknown extra keys are ignored, missing required keys are a malformed
payload.
"""

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator

from orderflow.core.exceptions import MalformedPayloadError


def _as_str(v: Any) -> Any:
    # Shopify and Razorpay send numeric ids in some payloads, strings in others
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return str(int(v))
    return v


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


# Shopify


class ShopifyLineItem(_Payload):
    sku: str | None = None
    name: str | None = None
    title: str | None = None
    quantity: int = 1
    properties: list[dict[str, Any]] = Field(default_factory=list)

    def get_property(self, name: str) -> str | None:
        for prop in self.properties:
            if prop.get("name") == name:
                value = prop.get("value")
                return str(value) if value is not None else None
        return None


class ShopifyAddress(_Payload):
    name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    address1: str | None = None
    address2: str | None = None
    city: str | None = None
    province: str | None = None
    zip: str | None = None
    country: str | None = None

    @property
    def full_name(self) -> str:
        if self.name:
            return self.name
        return " ".join(p for p in (self.first_name, self.last_name) if p)


class ShopifyFulfillment(_Payload):
    tracking_company: str | None = None
    tracking_number: str | None = None
    tracking_numbers: list[str] = Field(default_factory=list)
    tracking_url: str | None = None
    tracking_urls: list[str] = Field(default_factory=list)


class ShopifyShippingLine(_Payload):
    title: str | None = None
    carrier_identifier: str | None = None
    tracking_number: str | None = None
    tracking_url: str | None = None


class ShopifyEvent(_Payload):
    provider: Literal["shopify"] = "shopify"
    topic: str
    id: str
    email: str | None = None
    external_reference_id: str | None = None
    note_attributes: list[dict[str, Any]] = Field(default_factory=list)
    line_items: list[ShopifyLineItem] = Field(default_factory=list)
    shipping_address: ShopifyAddress | None = None
    fulfillments: list[ShopifyFulfillment] = Field(default_factory=list)
    shipping_lines: list[ShopifyShippingLine] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        return _as_str(v)

    @property
    def correlation_id(self) -> str | None:
        """Internal order id, set by our checkout as a note attribute or reference."""
        if self.external_reference_id:
            return self.external_reference_id
        for attr in self.note_attributes:
            if attr.get("name") in ("order_id", "external_reference_id") and attr.get("value"):
                return str(attr["value"])
        return None


# Qikink


class QikinkEvent(_Payload):
    provider: Literal["qikink"] = "qikink"
    id: str
    event: str | None = None
    status: str | None = None
    event_id: str | None = None
    external_reference_id: str | None = None
    shopify_order_id: str | None = None
    tracking_number: str | None = None
    tracking_url: str | None = None
    shipping_carrier: str | None = None
    estimated_delivery_date: str | None = None

    @field_validator("id", "external_reference_id", "shopify_order_id", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> Any:
        return _as_str(v)

    @model_validator(mode="after")
    def check_status(self) -> "QikinkEvent":
        if not (self.event or self.status):
            raise ValueError("Qikink payload carries neither event nor status")
        return self

    @property
    def vendor_status(self) -> str:
        return (self.event or self.status or "").strip().lower()


# Razorpay (legacy payment webhook)


class RazorpayPaymentEntity(_Payload):
    id: str
    amount: int | None = None
    order_id: str | None = None
    status: str | None = None
    notes: dict[str, Any] | list[Any] = Field(default_factory=dict)


class RazorpayOrderEntity(_Payload):
    id: str | None = None
    receipt: str | None = None


class _PaymentWrapper(_Payload):
    entity: RazorpayPaymentEntity


class _OrderWrapper(_Payload):
    entity: RazorpayOrderEntity


class RazorpayPayload(_Payload):
    payment: _PaymentWrapper
    order: _OrderWrapper | None = None


class RazorpayEvent(_Payload):
    provider: Literal["razorpay"] = "razorpay"
    event: str
    payload: RazorpayPayload
    created_at: int | None = None

    @property
    def payment(self) -> RazorpayPaymentEntity:
        return self.payload.payment.entity

    @property
    def razorpay_order_id(self) -> str | None:
        if self.payload.order and self.payload.order.entity.id:
            return self.payload.order.entity.id
        return self.payment.order_id

    @property
    def receipt(self) -> str | None:
        if self.payload.order:
            return self.payload.order.entity.receipt
        return None


# Legacy Printful / Printify


class PrintData(_Payload):
    id: str | None = None
    external_id: str
    tracking_number: str | None = None
    tracking_url: str | None = None
    carrier: str | None = None

    @field_validator("id", "external_id", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> Any:
        return _as_str(v)


class PrintEvent(_Payload):
    provider: Literal["print"] = "print"
    type: str
    data: PrintData


WebhookPayload = Annotated[
    Union[ShopifyEvent, QikinkEvent, RazorpayEvent, PrintEvent],
    Field(discriminator="provider"),
]

_adapter: TypeAdapter = TypeAdapter(WebhookPayload)


def parse_body(raw_body: bytes) -> dict[str, Any]:
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedPayloadError("Webhook body is not valid JSON") from e
    if not isinstance(data, dict):
        raise MalformedPayloadError("Webhook body must be a JSON object")
    return data


def decode_payload(provider: str, data: dict[str, Any], topic: str | None = None) -> WebhookPayload:
    """Validate a parsed body as the provider's variant.

    Shopify sends the topic in X-Shopify-Topic; older deliveries put it in the
    body as ``type``/``event``, so those are used when the header is absent.
    """
    body = dict(data)
    body["provider"] = provider
    if provider == "shopify":
        body["topic"] = topic or body.get("topic") or body.get("type") or body.get("event")
    try:
        return _adapter.validate_python(body)
    except ValidationError as e:
        raise MalformedPayloadError(
            f"Invalid {provider} webhook payload",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e
