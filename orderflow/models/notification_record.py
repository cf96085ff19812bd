from datetime import datetime
from typing import Literal

from beanie import Document
from pydantic import Field
from pymongo import ASCENDING, IndexModel


class NotificationRecord(Document):
    """Claim on a side effect owed by one transition; key is "{order_id}:{effect}"."""
    idempotency_key: str
    order_id: str
    effect: str
    status: Literal["claimed", "done"] = "claimed"
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "notification_records"
        indexes = [
            IndexModel([("idempotency_key", ASCENDING)], unique=True),
            [("order_id", ASCENDING)],
        ]
