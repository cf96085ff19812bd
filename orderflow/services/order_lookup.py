"""Find the order a canonical event talks about."""

from orderflow.core.exceptions import UnresolvableReference
from orderflow.core.logging import get_logger
from orderflow.models.records import OrderRecord
from orderflow.services.normalizer import CanonicalEvent
from orderflow.storage.base import OrderRepository

log = get_logger(__name__)


async def resolve_order(repository: OrderRepository, event: CanonicalEvent) -> OrderRecord | None:
    """Resolve by provider id first, then by the correlation key.

    Razorpay events resolve only through the Payment created at initiation
    (Razorpay order id, then the receipt we issued); the receipt is never
    taken as an order id on its own.
    """
    if event.shopify_order_id:
        order = await repository.get_order_by_shopify_id(event.shopify_order_id)
        if order:
            return order
    if event.qikink_order_id:
        order = await repository.get_order_by_qikink_id(event.qikink_order_id)
        if order:
            return order
    if event.razorpay_order_id or event.payment_ref:
        payment = await repository.find_payment(
            provider_order_id=event.razorpay_order_id,
            provider_order_ref=event.payment_ref,
        )
        if payment:
            return await repository.get_order(payment.order_id)
    if event.correlation_id:
        order = await repository.get_order(event.correlation_id)
        if order:
            return order
        order = await repository.get_order_by_shopify_id(event.correlation_id)
        if order:
            return order
    log.warning(
        "order_not_found",
        provider=event.provider,
        external_order_id=event.external_order_id,
        correlation_id=event.correlation_id,
    )
    return None


async def require_order(repository: OrderRepository, event: CanonicalEvent) -> OrderRecord:
    order = await resolve_order(repository, event)
    if order is None:
        raise UnresolvableReference(event.external_order_id)
    return order
