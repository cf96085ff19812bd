from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from orderflow.core.config import Settings, get_settings
from orderflow.models.enums import PaymentProvider, PaymentStatus
from orderflow.models.records import OrderRecord, PaymentRecord, WebhookEventFields


class OrderRepository(ABC):
    """Persistence for orders, their single payment, and reconciliation bookkeeping.

    compare_and_set is the only way status fields change: it applies `changes`
    only while the stored version still equals `expected_version`, bumps the
    version and remembers `fingerprint`, all in one atomic write.
    """

    # Orders

    @abstractmethod
    async def create_order(
        self,
        user_id: str,
        product_id: str,
        qr_code_id: str,
        amount: float,
        quantity: int = 1,
        customer_email: str | None = None,
    ) -> OrderRecord:
        ...

    @abstractmethod
    async def get_order(self, order_id: str) -> OrderRecord | None:
        ...

    @abstractmethod
    async def get_order_by_shopify_id(self, shopify_order_id: str) -> OrderRecord | None:
        ...

    @abstractmethod
    async def get_order_by_qikink_id(self, qikink_order_id: str) -> OrderRecord | None:
        ...

    @abstractmethod
    async def compare_and_set(
        self,
        order_id: str,
        expected_version: int,
        changes: dict[str, Any],
        fingerprint: str | None = None,
    ) -> OrderRecord | None:
        """Return the updated order, or None if another writer got there first."""
        ...

    @abstractmethod
    async def update_order_fields(self, order_id: str, changes: dict[str, Any]) -> None:
        """Bookkeeping writes that never touch status fields (e.g. Qikink sync state)."""
        ...

    # Payments

    @abstractmethod
    async def create_payment(
        self,
        order_id: str,
        provider: PaymentProvider,
        amount: float,
        provider_order_id: str | None = None,
        provider_order_ref: str | None = None,
    ) -> PaymentRecord:
        """Raise ConflictError if the order already has a payment."""
        ...

    @abstractmethod
    async def get_payment_by_order(self, order_id: str) -> PaymentRecord | None:
        ...

    @abstractmethod
    async def find_payment(
        self,
        provider_order_id: str | None = None,
        provider_order_ref: str | None = None,
    ) -> PaymentRecord | None:
        ...

    @abstractmethod
    async def transition_payment(
        self,
        order_id: str,
        provider: PaymentProvider,
        amount: float,
        sources: list[PaymentStatus],
        target: PaymentStatus,
        provider_payment_id: str | None = None,
    ) -> bool:
        """Move the order's payment to `target` if it is in one of `sources`.

        Creates the payment in `target` when the order has none yet (checkout
        confirmed by the provider before we initiated one). Returns whether a
        write happened.
        """
        ...

    # Reconciliation bookkeeping

    @abstractmethod
    async def record_webhook_event(self, event: WebhookEventFields) -> None:
        ...

    @abstractmethod
    async def claim_side_effect(self, key: str, order_id: str, effect: str) -> bool:
        """True for the first claimant of `key`, False for every later one."""
        ...

    @abstractmethod
    async def complete_side_effect(self, key: str) -> None:
        ...

    @abstractmethod
    async def release_side_effect(self, key: str) -> None:
        """Drop a claim whose effect failed so a retry can take it again."""
        ...

    @abstractmethod
    async def append_audit(
        self,
        order_id: str,
        event_type: str,
        source: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        ...

    @abstractmethod
    async def record_failed_job(
        self,
        job_name: str,
        job_id: str,
        args: list[Any],
        reason: str,
        retries: int = 0,
    ) -> None:
        ...

    async def close(self) -> None:
        pass


def status_values(changes: dict[str, Any]) -> dict[str, Any]:
    """Enum members -> stored string values."""
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in changes.items()}


def get_repository(settings: Settings | None = None) -> OrderRepository:
    settings = settings or get_settings()
    if settings.storage_backend == "memory":
        from orderflow.storage.memory import MemoryOrderRepository
        return MemoryOrderRepository(fingerprint_history=settings.fingerprint_history)
    from orderflow.storage.mongo import MongoOrderRepository
    return MongoOrderRepository(fingerprint_history=settings.fingerprint_history)
