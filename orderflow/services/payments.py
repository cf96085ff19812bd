"""Order creation, payment initiation and synchronous payment verification."""

import asyncio
from typing import Any

from orderflow.core.config import Settings, get_settings
from orderflow.core.exceptions import BadRequestError, ConflictError, NotFoundError
from orderflow.core.logging import get_logger
from orderflow.core.security import verify_razorpay_payment
from orderflow.models.enums import EventKind, PaymentProvider, PaymentStatus
from orderflow.models.records import OrderRecord
from orderflow.services.normalizer import CanonicalEvent
from orderflow.services.reconciler import Reconciler, Transition
from orderflow.storage.base import OrderRepository

log = get_logger(__name__)

CURRENCY = "INR"


def razorpay_client(settings: Settings | None = None) -> Any:
    """razorpay.Client when keys are configured, else None."""
    settings = settings or get_settings()
    if not settings.razorpay_key_id or not settings.razorpay_key_secret:
        return None
    import razorpay
    return razorpay.Client(auth=(settings.razorpay_key_id, settings.razorpay_key_secret))


async def create_order(
    repository: OrderRepository,
    user_id: str,
    product_id: str,
    qr_code_id: str,
    unit_price: float,
    quantity: int = 1,
    customer_email: str | None = None,
) -> OrderRecord:
    if unit_price <= 0 or quantity < 1:
        raise BadRequestError("Amount and quantity must be positive")
    order = await repository.create_order(
        user_id=user_id,
        product_id=product_id,
        qr_code_id=qr_code_id,
        amount=round(unit_price * quantity, 2),
        quantity=quantity,
        customer_email=customer_email,
    )
    log.info("order_created", order_id=order.id, amount=order.amount)
    return order


async def initiate_payment(
    repository: OrderRepository,
    order_id: str,
    provider: PaymentProvider,
    razorpay: Any = None,
    key_id: str = "",
) -> dict[str, Any]:
    """Create the order's single Payment and, for Razorpay, the Razorpay order.

    The internal order id goes into the Razorpay `receipt` and is stored as
    provider_order_ref, together with the Razorpay order id; payment webhooks
    resolve through exactly these two keys.
    """
    order = await repository.get_order(order_id)
    if not order:
        raise NotFoundError("Order not found")
    if await repository.get_payment_by_order(order.id):
        raise ConflictError("Payment already exists for this order")
    provider_order_id = None
    if provider == PaymentProvider.RAZORPAY:
        if razorpay is None:
            raise BadRequestError("Payments not configured")
        rp_order = await asyncio.to_thread(
            razorpay.order.create,
            {"amount": int(round(order.amount * 100)), "currency": CURRENCY, "receipt": order.id},
        )
        provider_order_id = rp_order["id"]
    payment = await repository.create_payment(
        order.id,
        provider,
        order.amount,
        provider_order_id=provider_order_id,
        provider_order_ref=order.id,
    )
    log.info("payment_initiated", order_id=order.id, provider=provider.value, provider_order_id=provider_order_id)
    return {
        "payment_id": payment.id,
        "order_id": order.id,
        "provider": provider.value,
        "amount": order.amount,
        "currency": CURRENCY,
        "provider_order_id": provider_order_id,
        "receipt": payment.provider_order_ref,
        "key_id": key_id or None,
    }


async def verify_payment(
    repository: OrderRepository,
    reconciler: Reconciler,
    order_id: str,
    payment_id: str,
    signature: str | None,
    settings: Settings | None = None,
) -> Transition:
    """Checkout-handler confirmation, routed through the same reconciliation as webhooks."""
    settings = settings or get_settings()
    order = await repository.get_order(order_id)
    if not order:
        raise NotFoundError("Order not found")
    payment = await repository.get_payment_by_order(order.id)
    if not payment:
        raise NotFoundError("Payment not found")
    if payment.provider != PaymentProvider.RAZORPAY:
        raise BadRequestError("Payment provider does not support synchronous verification")
    signed_order_id = payment.provider_order_id or order.id
    if not verify_razorpay_payment(signed_order_id, payment_id, signature, settings.razorpay_key_secret):
        log.warning("payment_signature_rejected", order_id=order.id, payment_id=payment_id)
        raise BadRequestError("Invalid payment signature")
    event = CanonicalEvent(
        provider="razorpay",
        kind=EventKind.PAYMENT,
        topic="payment.verified",
        external_order_id=signed_order_id,
        target_payment_status=PaymentStatus.SUCCESS,
        razorpay_order_id=payment.provider_order_id,
        payment_ref=payment.provider_order_ref,
        provider_payment_id=payment_id,
    )
    return await reconciler.reconcile_order(order, event)
