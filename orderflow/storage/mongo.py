from datetime import datetime
from typing import Any

from beanie import PydanticObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from orderflow.core.exceptions import ConflictError
from orderflow.models.audit_log import AuditLog
from orderflow.models.enums import PaymentProvider, PaymentStatus
from orderflow.models.failed_job import FailedJob
from orderflow.models.notification_record import NotificationRecord
from orderflow.models.order import Order
from orderflow.models.payment import Payment
from orderflow.models.records import OrderRecord, PaymentRecord, WebhookEventFields
from orderflow.models.webhook_event import WebhookEvent
from orderflow.storage.base import OrderRepository, status_values


def _object_id(value: str) -> PydanticObjectId | None:
    try:
        return PydanticObjectId(value)
    except (InvalidId, TypeError, ValueError):
        return None


def _order_from_raw(raw: dict[str, Any]) -> OrderRecord:
    raw = dict(raw)
    raw["id"] = str(raw.pop("_id"))
    return OrderRecord.model_validate(raw)


class MongoOrderRepository(OrderRepository):
    """Beanie-backed repository. Requires init_db() to have run."""

    def __init__(self, fingerprint_history: int = 100) -> None:
        self.fingerprint_history = fingerprint_history

    async def create_order(
        self,
        user_id: str,
        product_id: str,
        qr_code_id: str,
        amount: float,
        quantity: int = 1,
        customer_email: str | None = None,
    ) -> OrderRecord:
        order = Order(
            user_id=user_id,
            product_id=product_id,
            qr_code_id=qr_code_id,
            amount=amount,
            quantity=quantity,
            customer_email=customer_email,
        )
        await order.insert()
        return order.to_record()

    async def get_order(self, order_id: str) -> OrderRecord | None:
        oid = _object_id(order_id)
        if oid is None:
            return None
        order = await Order.get(oid)
        return order.to_record() if order else None

    async def get_order_by_shopify_id(self, shopify_order_id: str) -> OrderRecord | None:
        order = await Order.find_one(Order.shopify_order_id == shopify_order_id)
        return order.to_record() if order else None

    async def get_order_by_qikink_id(self, qikink_order_id: str) -> OrderRecord | None:
        order = await Order.find_one(Order.qikink_order_id == qikink_order_id)
        return order.to_record() if order else None

    async def compare_and_set(
        self,
        order_id: str,
        expected_version: int,
        changes: dict[str, Any],
        fingerprint: str | None = None,
    ) -> OrderRecord | None:
        oid = _object_id(order_id)
        if oid is None:
            return None
        update: dict[str, Any] = {
            "$set": {**status_values(changes), "updated_at": changes.get("updated_at") or datetime.utcnow()},
            "$inc": {"version": 1},
        }
        if fingerprint:
            update["$push"] = {
                "applied_fingerprints": {"$each": [fingerprint], "$slice": -self.fingerprint_history}
            }
        raw = await Order.get_motor_collection().find_one_and_update(
            {"_id": oid, "version": expected_version},
            update,
            return_document=ReturnDocument.AFTER,
        )
        return _order_from_raw(raw) if raw else None

    async def update_order_fields(self, order_id: str, changes: dict[str, Any]) -> None:
        oid = _object_id(order_id)
        if oid is None:
            return
        await Order.get_motor_collection().update_one(
            {"_id": oid},
            {"$set": {**status_values(changes), "updated_at": datetime.utcnow()}},
        )

    async def create_payment(
        self,
        order_id: str,
        provider: PaymentProvider,
        amount: float,
        provider_order_id: str | None = None,
        provider_order_ref: str | None = None,
    ) -> PaymentRecord:
        payment = Payment(
            order_id=order_id,
            provider=provider,
            amount=amount,
            provider_order_id=provider_order_id,
            provider_order_ref=provider_order_ref,
        )
        try:
            await payment.insert()
        except DuplicateKeyError as e:
            raise ConflictError("Payment already exists for this order") from e
        return payment.to_record()

    async def get_payment_by_order(self, order_id: str) -> PaymentRecord | None:
        payment = await Payment.find_one(Payment.order_id == order_id)
        return payment.to_record() if payment else None

    async def find_payment(
        self,
        provider_order_id: str | None = None,
        provider_order_ref: str | None = None,
    ) -> PaymentRecord | None:
        if provider_order_id:
            payment = await Payment.find_one(Payment.provider_order_id == provider_order_id)
            if payment:
                return payment.to_record()
        if provider_order_ref:
            payment = await Payment.find_one(Payment.provider_order_ref == provider_order_ref)
            if payment:
                return payment.to_record()
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
        fields: dict[str, Any] = {"status": target.value, "updated_at": datetime.utcnow()}
        if provider_payment_id:
            fields["provider_payment_id"] = provider_payment_id
        result = await Payment.get_motor_collection().update_one(
            {"order_id": order_id, "status": {"$in": [s.value for s in sources]}},
            {"$set": fields},
        )
        if result.modified_count:
            return True
        if await Payment.find_one(Payment.order_id == order_id):
            return False
        try:
            await Payment(
                order_id=order_id,
                provider=provider,
                amount=amount,
                status=target,
                provider_payment_id=provider_payment_id,
            ).insert()
        except DuplicateKeyError:
            # lost the insert race; the winner's status stands
            return False
        return True

    async def record_webhook_event(self, event: WebhookEventFields) -> None:
        await WebhookEvent(**event.model_dump()).insert()

    async def claim_side_effect(self, key: str, order_id: str, effect: str) -> bool:
        try:
            await NotificationRecord(idempotency_key=key, order_id=order_id, effect=effect).insert()
        except DuplicateKeyError:
            return False
        return True

    async def complete_side_effect(self, key: str) -> None:
        await NotificationRecord.get_motor_collection().update_one(
            {"idempotency_key": key},
            {"$set": {"status": "done", "updated_at": datetime.utcnow()}},
        )

    async def release_side_effect(self, key: str) -> None:
        await NotificationRecord.get_motor_collection().delete_one({"idempotency_key": key, "status": "claimed"})

    async def append_audit(
        self,
        order_id: str,
        event_type: str,
        source: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await AuditLog(order_id=order_id, event_type=event_type, source=source, metadata=metadata or {}).insert()

    async def record_failed_job(
        self,
        job_name: str,
        job_id: str,
        args: list[Any],
        reason: str,
        retries: int = 0,
    ) -> None:
        await FailedJob(job_name=job_name, job_id=job_id, args=args, reason=reason[:2000], retries=retries).insert()
