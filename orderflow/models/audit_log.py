from datetime import datetime
from typing import Any

from beanie import Document
from pydantic import Field


class AuditLog(Document):
    order_id: str
    event_type: str  # transition_applied, qikink_synced, qikink_sync_failed
    source: str | None = None  # provider that caused it
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "audit_logs"
        indexes = [
            [("order_id", 1), ("created_at", -1)],
            [("event_type", 1)],
        ]
