"""Webhook reconciliation: one inbound delivery -> at most one applied transition.

Every status write goes through OrderRepository.compare_and_set against the
version read just before planning, so two deliveries for the same order never
interleave their read-modify-write. A lost race reloads the order and plans
again; after max_retries losses the caller gets TransientConflictError and the
provider's redelivery retries the whole (idempotent) call.

Side effects are returned, not fired: the caller dispatches them after the
write has committed.
"""

from dataclasses import dataclass, field
from typing import Any, Mapping

from orderflow.core.config import Settings, get_settings
from orderflow.core.exceptions import (
    AuthenticationFailure,
    InvalidTransition,
    TransientConflictError,
    UnresolvableReference,
)
from orderflow.core.logging import bind_webhook_context, get_logger
from orderflow.core.security import RAZORPAY, SIGNATURE_HEADERS, verify_webhook
from orderflow.models.enums import DeliveryOutcome, OrderStatus, PaymentProvider, PaymentStatus
from orderflow.models.records import OrderRecord, WebhookEventFields
from orderflow.services.normalizer import CanonicalEvent, normalize
from orderflow.services.order_lookup import require_order
from orderflow.services.order_state import SideEffect, TransitionPlan, payment_sources, require_transition
from orderflow.services.webhook_payloads import decode_payload, parse_body
from orderflow.storage.base import OrderRepository

log = get_logger(__name__)

SHOPIFY_TOPIC_HEADER = "x-shopify-topic"

_PAYMENT_PROVIDERS = {
    "razorpay": PaymentProvider.RAZORPAY,
    "shopify": PaymentProvider.SHOPIFY,
}


@dataclass
class PendingEffect:
    """A side effect owed by one committed transition."""

    effect: SideEffect
    order: OrderRecord
    event: CanonicalEvent | None = None

    @property
    def key(self) -> str:
        return f"{self.order.id}:{self.effect.value}"


@dataclass
class Transition:
    applied: bool
    outcome: DeliveryOutcome
    order_id: str | None = None
    order_status: OrderStatus | None = None
    payment_status: PaymentStatus | None = None
    side_effects: list[PendingEffect] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "applied": self.applied,
            "outcome": self.outcome.value,
            "order_id": self.order_id,
            "order_status": self.order_status.value if self.order_status else None,
            "payment_status": self.payment_status.value if self.payment_status else None,
        }


def _unchanged(order: OrderRecord, outcome: DeliveryOutcome) -> Transition:
    return Transition(
        applied=False,
        outcome=outcome,
        order_id=order.id,
        order_status=order.order_status,
        payment_status=order.payment_status,
    )


class Reconciler:
    def __init__(
        self,
        repository: OrderRepository,
        settings: Settings | None = None,
        max_retries: int | None = None,
    ) -> None:
        self.repository = repository
        self.settings = settings or get_settings()
        self.max_retries = max_retries or self.settings.reconcile_max_retries

    async def ingest(self, provider: str, raw_body: bytes, headers: Mapping[str, str]) -> Transition:
        """Verify, decode, normalize, resolve and reconcile one webhook delivery.

        Raises AuthenticationFailure (bad signature), MalformedPayloadError,
        WebhookSecretNotConfigured and TransientConflictError; every other
        outcome is an acknowledged Transition.
        """
        headers = {k.lower(): v for k, v in headers.items()}
        bind_webhook_context(provider)
        if not verify_webhook(provider, raw_body, headers.get(SIGNATURE_HEADERS[provider]), self.settings):
            if provider == RAZORPAY:
                # legacy payment path: acknowledge the delivery, apply nothing
                await self._record(provider, DeliveryOutcome.REJECTED)
                return Transition(applied=False, outcome=DeliveryOutcome.REJECTED)
            raise AuthenticationFailure(provider)

        data = parse_body(raw_body)
        payload = decode_payload(provider, data, topic=headers.get(SHOPIFY_TOPIC_HEADER))
        event = normalize(payload)
        if event is None:
            await self._record(provider, DeliveryOutcome.UNKNOWN_EVENT, raw_payload=data)
            return Transition(applied=False, outcome=DeliveryOutcome.UNKNOWN_EVENT)
        bind_webhook_context(provider, topic=event.topic)
        log.info("webhook_received", external_order_id=event.external_order_id)

        transition = await self.reconcile(event)
        await self._record(provider, transition.outcome, event=event, order_id=transition.order_id, raw_payload=data)
        return transition

    async def reconcile(self, event: CanonicalEvent) -> Transition:
        try:
            order = await require_order(self.repository, event)
        except UnresolvableReference:
            return Transition(applied=False, outcome=DeliveryOutcome.UNRESOLVED)
        return await self.reconcile_order(order, event)

    async def reconcile_order(self, order: OrderRecord, event: CanonicalEvent) -> Transition:
        """Apply `event` to `order` under compare-and-set on the order version."""
        fingerprint = event.fingerprint
        for attempt in range(1, self.max_retries + 1):
            if fingerprint in order.applied_fingerprints:
                log.info("duplicate_delivery", order_id=order.id, fingerprint=fingerprint)
                return _unchanged(order, DeliveryOutcome.DUPLICATE)
            try:
                plan = require_transition(order, event)
            except InvalidTransition as e:
                log.info("transition_noop", order_id=order.id, current=e.current, target=e.target)
                await self._note_vendor_status(order, event)
                return _unchanged(order, DeliveryOutcome.NOOP)

            updated = await self.repository.compare_and_set(order.id, order.version, plan.changes, fingerprint)
            if updated is not None:
                return await self._committed(order, updated, event, plan)

            log.info("version_conflict", order_id=order.id, attempt=attempt, version=order.version)
            reloaded = await self.repository.get_order(order.id)
            if reloaded is None:
                return Transition(applied=False, outcome=DeliveryOutcome.UNRESOLVED, order_id=order.id)
            order = reloaded

        log.warning("transition_conflict_exhausted", order_id=order.id, attempts=self.max_retries)
        raise TransientConflictError(order.id, self.max_retries)

    async def _note_vendor_status(self, order: OrderRecord, event: CanonicalEvent) -> None:
        # raw Qikink status is bookkeeping, so it skips the version check
        if event.provider != "qikink" or not event.vendor_status or event.vendor_status == order.qikink_status:
            return
        await self.repository.update_order_fields(order.id, {"qikink_status": event.vendor_status})

    async def _committed(
        self,
        before: OrderRecord,
        after: OrderRecord,
        event: CanonicalEvent,
        plan: TransitionPlan,
    ) -> Transition:
        if plan.payment_status is not None:
            await self.repository.transition_payment(
                after.id,
                _PAYMENT_PROVIDERS.get(event.provider, PaymentProvider.RAZORPAY),
                after.amount,
                payment_sources(plan.payment_status),
                plan.payment_status,
                provider_payment_id=event.provider_payment_id,
            )
        metadata = {
            "topic": event.topic,
            "fingerprint": event.fingerprint,
            "order_status": [before.order_status.value, after.order_status.value],
            "payment_status": [before.payment_status.value, after.payment_status.value],
            "version": after.version,
        }
        await self.repository.append_audit(after.id, "transition_applied", source=event.provider, metadata=metadata)
        log.info(
            "transition_applied",
            order_id=after.id,
            order_status=after.order_status.value,
            payment_status=after.payment_status.value,
            side_effects=[e.value for e in plan.side_effects],
        )
        return Transition(
            applied=True,
            outcome=DeliveryOutcome.APPLIED,
            order_id=after.id,
            order_status=after.order_status,
            payment_status=after.payment_status,
            side_effects=[PendingEffect(effect, after, event) for effect in plan.side_effects],
        )

    async def _record(
        self,
        provider: str,
        outcome: DeliveryOutcome,
        event: CanonicalEvent | None = None,
        order_id: str | None = None,
        raw_payload: dict[str, Any] | None = None,
    ) -> None:
        await self.repository.record_webhook_event(
            WebhookEventFields(
                provider=provider,
                fingerprint=event.fingerprint if event else None,
                external_event_id=event.external_event_id if event else None,
                external_order_id=event.external_order_id if event else None,
                topic=event.topic if event else None,
                order_id=order_id,
                outcome=outcome,
                raw_payload=raw_payload or {},
            )
        )
