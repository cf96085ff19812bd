from beanie import Document
from pymongo import ASCENDING, IndexModel

from orderflow.models.records import PaymentFields, PaymentRecord


class Payment(Document, PaymentFields):
    """At most one per order."""

    class Settings:
        name = "payments"
        indexes = [
            IndexModel([("order_id", ASCENDING)], unique=True),
            IndexModel(
                [("provider_payment_id", ASCENDING)],
                unique=True,
                partialFilterExpression={"provider_payment_id": {"$type": "string"}},
            ),
            [("provider_order_id", ASCENDING)],
            [("provider_order_ref", ASCENDING)],
            [("status", ASCENDING)],
        ]

    def to_record(self) -> PaymentRecord:
        return PaymentRecord.model_validate({**self.model_dump(exclude={"id", "revision_id"}), "id": str(self.id)})
