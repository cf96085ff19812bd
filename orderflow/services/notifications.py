"""Side effects owed by committed transitions: customer emails and the Qikink sync.

Each effect is claimed under "{order_id}:{effect}" before it runs, so a second
delivery of the same transition (or a sync confirmation racing its webhook)
finds the claim taken and does nothing.
"""

import asyncio
import smtplib
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

from orderflow.core.config import Settings
from orderflow.core.exceptions import DownstreamSyncFailure, EmailDeliveryFailure
from orderflow.core.logging import get_logger
from orderflow.models.enums import QikinkSyncStatus
from orderflow.models.records import OrderRecord
from orderflow.services.order_state import SideEffect
from orderflow.services.qikink import SYNC_JOB_NAME, QikinkSync, build_qikink_order_request
from orderflow.services.reconciler import PendingEffect
from orderflow.services.retry_queue import RetryQueue
from orderflow.services.webhook_payloads import ShopifyEvent
from orderflow.storage.base import OrderRepository

log = get_logger(__name__)

EMAIL_JOB_NAME = "send_notification_email"


class EmailSender(ABC):
    @abstractmethod
    async def send(self, to: str, subject: str, html: str) -> bool:
        """Return False when the message was skipped (transport not configured)."""
        ...


class SmtpEmailSender(EmailSender):
    """SMTP with STARTTLS; the blocking send runs in a worker thread."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        user: str = "",
        password: str = "",
        sender: str = "",
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender or user
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpEmailSender":
        return cls(
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_user,
            settings.smtp_password,
            settings.smtp_from,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.sender)

    def _format(self, to: str, subject: str, html: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to
        msg.attach(MIMEText(html, "html", "utf-8"))
        return msg

    def _send_sync(self, to: str, msg: MIMEMultipart) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            server.starttls()
            if self.user:
                server.login(self.user, self.password)
            server.sendmail(self.sender, [to], msg.as_string())

    async def send(self, to: str, subject: str, html: str) -> bool:
        if not self.is_configured:
            log.warning("email_not_configured", subject=subject)
            return False
        await asyncio.to_thread(self._send_sync, to, self._format(to, subject, html))
        log.info("email_sent", subject=subject)
        return True


def _details(rows: list[tuple[str, str | None]]) -> str:
    items = "".join(f"<li><strong>{escape(k)}:</strong> {escape(v or 'N/A')}</li>" for k, v in rows)
    return f"<ul>{items}</ul>"


def render_email(effect: SideEffect, order: OrderRecord) -> tuple[str, str]:
    """(subject, html) for an email side effect."""
    amount = f"₹{order.amount:g}"
    if effect == SideEffect.ORDER_CONFIRMATION_EMAIL:
        body = (
            "<h2>Order Confirmation</h2><p>Thank you for your order!</p>"
            + _details([("Order ID", order.id), ("Product", order.product_id), ("Amount", amount)])
            + "<p>We'll notify you once your order is shipped.</p>"
        )
        return "Order Confirmation", body
    if effect == SideEffect.PAYMENT_SUCCESS_EMAIL:
        body = (
            "<h2>Payment Successful</h2><p>Your payment has been received!</p>"
            + _details([("Order ID", order.id), ("Amount", amount)])
            + "<p>Your order is now being processed.</p>"
        )
        return "Payment Successful", body
    if effect == SideEffect.SHIPPING_EMAIL:
        body = (
            "<h2>Your Order Has Been Shipped!</h2><p>Great news! Your order is on its way.</p>"
            + _details(
                [
                    ("Order ID", order.id),
                    ("Carrier", order.shipping_carrier),
                    ("Tracking Number", order.tracking_number),
                ]
            )
        )
        if order.tracking_url:
            body += f'<p><a href="{escape(order.tracking_url)}">Track your order</a></p>'
        return "Your Order Has Been Shipped", body
    if effect == SideEffect.CANCELLATION_EMAIL:
        body = "<h2>Order Cancelled</h2>" + _details([("Order ID", order.id)])
        body += "<p>If you were charged, the refund is on its way.</p>"
        return "Your Order Has Been Cancelled", body
    raise ValueError(f"{effect.value} is not an email")


async def retry_email(
    repository: OrderRepository,
    email_sender: EmailSender,
    order_id: str,
    effect: str,
    to: str,
    attempt: int,
    max_tries: int,
    job_id: str | None = None,
) -> bool:
    """One retry of a customer email whose claim is still held.

    Raises EmailDeliveryFailure while another attempt is allowed; the final
    failure dead-letters the job and releases the claim.
    """
    key = f"{order_id}:{effect}"
    order = await repository.get_order(order_id)
    if order is None:
        log.warning("email_retry_order_missing", key=key)
        await repository.release_side_effect(key)
        return False
    subject, html = render_email(SideEffect(effect), order)
    try:
        await email_sender.send(to, subject, html)
    except (smtplib.SMTPException, OSError) as e:
        if attempt < max_tries:
            log.warning("email_retry", key=key, attempt=attempt, error=str(e))
            raise EmailDeliveryFailure(str(e)) from e
        await repository.record_failed_job(EMAIL_JOB_NAME, job_id or key, [order_id, effect, to], str(e), retries=attempt)
        await repository.release_side_effect(key)
        log.error("email_dead_lettered", key=key, attempts=attempt, error=str(e))
        return False
    await repository.complete_side_effect(key)
    return True


class SideEffectDispatcher:
    def __init__(
        self,
        repository: OrderRepository,
        email_sender: EmailSender,
        qikink_sync: QikinkSync,
        retry_queue: RetryQueue,
    ) -> None:
        self.repository = repository
        self.email_sender = email_sender
        self.qikink_sync = qikink_sync
        self.retry_queue = retry_queue

    async def dispatch(self, effects: list[PendingEffect]) -> None:
        """Run each effect on its own; one effect failing never skips the rest."""
        for effect in effects:
            try:
                await self.dispatch_one(effect)
            except Exception:
                log.exception("side_effect_failed", key=effect.key)
                await self.repository.release_side_effect(effect.key)

    async def dispatch_one(self, pending: PendingEffect) -> bool:
        """Run one effect unless another delivery already claimed it. Returns whether it ran."""
        order = pending.order
        if not await self.repository.claim_side_effect(pending.key, order.id, pending.effect.value):
            log.info("side_effect_already_claimed", key=pending.key)
            return False
        if pending.effect == SideEffect.QIKINK_SYNC:
            return await self._sync(pending)
        return await self._email(pending)

    async def resend_email(self, order_id: str, effect: str, to: str, attempt: int, max_tries: int) -> bool:
        return await retry_email(self.repository, self.email_sender, order_id, effect, to, attempt, max_tries)

    def _recipient(self, pending: PendingEffect) -> str | None:
        if pending.order.customer_email:
            return pending.order.customer_email
        if pending.event is not None and isinstance(pending.event.source, ShopifyEvent):
            return pending.event.source.email
        return None

    async def _email(self, pending: PendingEffect) -> bool:
        to = self._recipient(pending)
        if not to:
            log.info("email_skipped_no_recipient", key=pending.key)
            await self.repository.complete_side_effect(pending.key)
            return True
        subject, html = render_email(pending.effect, pending.order)
        try:
            await self.email_sender.send(to, subject, html)
        except (smtplib.SMTPException, OSError) as e:
            # the claim stays taken: from here on the retry queue owns this email
            log.warning("email_failed", key=pending.key, error=str(e))
            await self.retry_queue.enqueue_email(pending.order.id, pending.effect.value, to)
            return False
        await self.repository.complete_side_effect(pending.key)
        return True

    async def _sync(self, pending: PendingEffect) -> bool:
        order = pending.order
        source = pending.event.source if pending.event else None
        if not isinstance(source, ShopifyEvent):
            log.warning("qikink_sync_without_shopify_order", order_id=order.id)
            await self.repository.complete_side_effect(pending.key)
            return False
        request = build_qikink_order_request(order, source)
        try:
            await self.qikink_sync.submit(order.id, request)
        except DownstreamSyncFailure as e:
            # the claim stays taken: from here on the retry queue owns this sync
            log.warning("qikink_sync_failed", order_id=order.id, reason=str(e), retryable=e.retryable)
            await self.repository.append_audit(
                order.id, "qikink_sync_failed", source="qikink", metadata={"reason": str(e)}
            )
            if not e.retryable:
                await self.repository.update_order_fields(order.id, {"qikink_sync_status": QikinkSyncStatus.FAILED})
                await self.repository.record_failed_job(SYNC_JOB_NAME, pending.key, [order.id, request], str(e))
                return False
            await self.repository.update_order_fields(order.id, {"qikink_sync_status": QikinkSyncStatus.PENDING})
            await self.retry_queue.enqueue_sync(order.id, request)
            return False
        await self.repository.complete_side_effect(pending.key)
        return True
