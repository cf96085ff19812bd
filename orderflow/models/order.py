from beanie import Document
from pymongo import ASCENDING, DESCENDING, IndexModel

from orderflow.models.records import OrderFields, OrderRecord


class Order(Document, OrderFields):
    """Aggregate root. Status fields change only through versioned compare-and-set."""

    class Settings:
        name = "orders"
        indexes = [
            IndexModel(
                [("shopify_order_id", ASCENDING)],
                unique=True,
                partialFilterExpression={"shopify_order_id": {"$type": "string"}},
            ),
            IndexModel(
                [("qikink_order_id", ASCENDING)],
                unique=True,
                partialFilterExpression={"qikink_order_id": {"$type": "string"}},
            ),
            [("user_id", ASCENDING), ("created_at", DESCENDING)],
            [("order_status", ASCENDING)],
        ]

    def to_record(self) -> OrderRecord:
        return OrderRecord.model_validate({**self.model_dump(exclude={"id", "revision_id"}), "id": str(self.id)})
