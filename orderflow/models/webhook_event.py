from beanie import Document
from pymongo import ASCENDING, DESCENDING, IndexModel

from orderflow.core.config import get_settings
from orderflow.models.records import WebhookEventFields


class WebhookEvent(Document, WebhookEventFields):
    """One inbound delivery, kept until the dedup horizon expires."""

    class Settings:
        name = "webhook_events"
        indexes = [
            IndexModel([("received_at", ASCENDING)], expireAfterSeconds=get_settings().webhook_event_ttl_seconds),
            [("provider", ASCENDING), ("fingerprint", ASCENDING)],
            [("order_id", ASCENDING), ("received_at", DESCENDING)],
        ]
