import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from orderflow.core.config import get_settings
from orderflow.models.audit_log import AuditLog
from orderflow.models.failed_job import FailedJob
from orderflow.models.notification_record import NotificationRecord
from orderflow.models.order import Order
from orderflow.models.payment import Payment
from orderflow.models.webhook_event import WebhookEvent

DOCUMENT_MODELS = [
    Order,
    Payment,
    WebhookEvent,
    NotificationRecord,
    AuditLog,
    FailedJob,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db() -> AsyncIOMotorClient:
    settings = get_settings()
    kwargs = {}
    if _use_tls(settings.mongodb_uri):
        kwargs["tlsCAFile"] = certifi.where()
        kwargs["tlsDisableOCSPEndpointCheck"] = True
    client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
    database = client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    return client
