"""In-process repository for local runs and tests.

Every method completes without awaiting, so each call is atomic with respect
to other coroutines on the loop; that gives compare_and_set the same
single-writer guarantee the Mongo conditional update gives across processes.
"""

import secrets
from datetime import datetime
from typing import Any

from orderflow.core.exceptions import ConflictError
from orderflow.models.enums import PaymentProvider, PaymentStatus
from orderflow.models.records import OrderRecord, PaymentRecord, WebhookEventFields
from orderflow.storage.base import OrderRepository


def _new_id() -> str:
    return secrets.token_hex(12)


class MemoryOrderRepository(OrderRepository):
    def __init__(self, fingerprint_history: int = 100) -> None:
        self.fingerprint_history = fingerprint_history
        self.orders: dict[str, OrderRecord] = {}
        self.payments: dict[str, PaymentRecord] = {}  # by order_id
        self.webhook_events: list[WebhookEventFields] = []
        self.side_effects: dict[str, str] = {}  # key -> claimed | done
        self.audit_entries: list[dict[str, Any]] = []
        self.failed_jobs: list[dict[str, Any]] = []

    async def create_order(
        self,
        user_id: str,
        product_id: str,
        qr_code_id: str,
        amount: float,
        quantity: int = 1,
        customer_email: str | None = None,
    ) -> OrderRecord:
        order = OrderRecord(
            id=_new_id(),
            user_id=user_id,
            product_id=product_id,
            qr_code_id=qr_code_id,
            amount=amount,
            quantity=quantity,
            customer_email=customer_email,
        )
        self.orders[order.id] = order
        return order.model_copy(deep=True)

    async def get_order(self, order_id: str) -> OrderRecord | None:
        order = self.orders.get(order_id)
        return order.model_copy(deep=True) if order else None

    async def get_order_by_shopify_id(self, shopify_order_id: str) -> OrderRecord | None:
        for order in self.orders.values():
            if order.shopify_order_id == shopify_order_id:
                return order.model_copy(deep=True)
        return None

    async def get_order_by_qikink_id(self, qikink_order_id: str) -> OrderRecord | None:
        for order in self.orders.values():
            if order.qikink_order_id == qikink_order_id:
                return order.model_copy(deep=True)
        return None

    async def compare_and_set(
        self,
        order_id: str,
        expected_version: int,
        changes: dict[str, Any],
        fingerprint: str | None = None,
    ) -> OrderRecord | None:
        current = self.orders.get(order_id)
        if current is None or current.version != expected_version:
            return None
        data = current.model_dump()
        data.update(changes)
        data["version"] = current.version + 1
        data["updated_at"] = changes.get("updated_at") or datetime.utcnow()
        if fingerprint:
            data["applied_fingerprints"] = (current.applied_fingerprints + [fingerprint])[-self.fingerprint_history:]
        updated = OrderRecord.model_validate(data)
        self.orders[order_id] = updated
        return updated.model_copy(deep=True)

    async def update_order_fields(self, order_id: str, changes: dict[str, Any]) -> None:
        current = self.orders.get(order_id)
        if current is None:
            return
        data = current.model_dump()
        data.update(changes)
        data["updated_at"] = datetime.utcnow()
        self.orders[order_id] = OrderRecord.model_validate(data)

    async def create_payment(
        self,
        order_id: str,
        provider: PaymentProvider,
        amount: float,
        provider_order_id: str | None = None,
        provider_order_ref: str | None = None,
    ) -> PaymentRecord:
        if order_id in self.payments:
            raise ConflictError("Payment already exists for this order")
        payment = PaymentRecord(
            id=_new_id(),
            order_id=order_id,
            provider=provider,
            amount=amount,
            provider_order_id=provider_order_id,
            provider_order_ref=provider_order_ref,
        )
        self.payments[order_id] = payment
        return payment.model_copy(deep=True)

    async def get_payment_by_order(self, order_id: str) -> PaymentRecord | None:
        payment = self.payments.get(order_id)
        return payment.model_copy(deep=True) if payment else None

    async def find_payment(
        self,
        provider_order_id: str | None = None,
        provider_order_ref: str | None = None,
    ) -> PaymentRecord | None:
        for payment in self.payments.values():
            if provider_order_id and payment.provider_order_id == provider_order_id:
                return payment.model_copy(deep=True)
        for payment in self.payments.values():
            if provider_order_ref and payment.provider_order_ref == provider_order_ref:
                return payment.model_copy(deep=True)
        return None

    async def transition_payment(
        self,
        order_id: str,
        provider: PaymentProvider,
        amount: float,
        sources: list[PaymentStatus],
        target: PaymentStatus,
        provider_payment_id: str | None = None,
    ) -> bool:
        payment = self.payments.get(order_id)
        if payment is None:
            self.payments[order_id] = PaymentRecord(
                id=_new_id(),
                order_id=order_id,
                provider=provider,
                amount=amount,
                status=target,
                provider_payment_id=provider_payment_id,
            )
            return True
        if payment.status not in sources:
            return False
        payment.status = target
        if provider_payment_id:
            payment.provider_payment_id = provider_payment_id
        payment.updated_at = datetime.utcnow()
        return True

    async def record_webhook_event(self, event: WebhookEventFields) -> None:
        self.webhook_events.append(event)

    async def claim_side_effect(self, key: str, order_id: str, effect: str) -> bool:
        if key in self.side_effects:
            return False
        self.side_effects[key] = "claimed"
        return True

    async def complete_side_effect(self, key: str) -> None:
        self.side_effects[key] = "done"

    async def release_side_effect(self, key: str) -> None:
        self.side_effects.pop(key, None)

    async def append_audit(
        self,
        order_id: str,
        event_type: str,
        source: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.audit_entries.append(
            {"order_id": order_id, "event_type": event_type, "source": source, "metadata": metadata or {}}
        )

    async def record_failed_job(
        self,
        job_name: str,
        job_id: str,
        args: list[Any],
        reason: str,
        retries: int = 0,
    ) -> None:
        self.failed_jobs.append(
            {"job_name": job_name, "job_id": job_id, "args": args, "reason": reason, "retries": retries}
        )
