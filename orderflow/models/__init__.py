from orderflow.models.order import Order
from orderflow.models.payment import Payment
from orderflow.models.webhook_event import WebhookEvent
from orderflow.models.notification_record import NotificationRecord
from orderflow.models.audit_log import AuditLog
from orderflow.models.failed_job import FailedJob

__all__ = [
    "Order",
    "Payment",
    "WebhookEvent",
    "NotificationRecord",
    "AuditLog",
    "FailedJob",
]
