"""ARQ job definitions."""

from typing import Any
from urllib.parse import urlparse

from arq import Retry, create_pool
from arq.connections import ArqRedis, RedisSettings

from orderflow.core.config import Settings, get_settings
from orderflow.core.exceptions import DownstreamSyncFailure, EmailDeliveryFailure
from orderflow.core.logging import get_logger
from orderflow.services.notifications import EMAIL_JOB_NAME, SmtpEmailSender, retry_email
from orderflow.services.qikink import SYNC_JOB_NAME, QikinkClient, QikinkSync, retry_sync
from orderflow.services.retry_queue import RetryQueue
from orderflow.storage.base import get_repository

log = get_logger(__name__)

RETRY_BACKOFF_SECONDS = 30


def get_redis_settings(settings: Settings | None = None) -> RedisSettings:
    s = settings or get_settings()
    u = urlparse(s.redis_url)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(u.path.lstrip("/")) if u.path.lstrip("/") else 0,
    )


class ArqRetryQueue(RetryQueue):
    """Side-effect retries as ARQ jobs; the API process only enqueues."""

    def __init__(self, redis: ArqRedis) -> None:
        self.redis = redis

    @classmethod
    async def connect(cls, settings: Settings | None = None) -> "ArqRetryQueue":
        return cls(await create_pool(get_redis_settings(settings)))

    async def enqueue_sync(self, order_id: str, request: dict[str, Any]) -> None:
        await self.redis.enqueue_job(
            SYNC_JOB_NAME,
            order_id,
            request,
            _job_id=f"{SYNC_JOB_NAME}:{order_id}",
            _defer_by=RETRY_BACKOFF_SECONDS,
        )
        log.info("qikink_sync_enqueued", order_id=order_id)

    async def enqueue_email(self, order_id: str, effect: str, to: str) -> None:
        await self.redis.enqueue_job(
            EMAIL_JOB_NAME,
            order_id,
            effect,
            to,
            _job_id=f"{EMAIL_JOB_NAME}:{order_id}:{effect}",
            _defer_by=RETRY_BACKOFF_SECONDS,
        )
        log.info("email_enqueued", order_id=order_id, effect=effect)

    async def close(self) -> None:
        await self.redis.aclose()


async def sync_order_to_qikink(ctx: dict[str, Any], order_id: str, request: dict[str, Any]) -> bool:
    """Retry a failed Qikink order creation; the last allowed try dead-letters to FailedJob.

    job_try 1 of this job is the second attempt overall (the first ran inline
    when the webhook was dispatched).
    """
    attempt = ctx.get("job_try", 1) + 1
    job_id = ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else None
    log.info("job_start", job=SYNC_JOB_NAME, order_id=order_id, attempt=attempt)
    try:
        ok = await retry_sync(ctx["qikink_sync"], order_id, request, attempt, ctx["max_tries"], job_id=job_id)
    except DownstreamSyncFailure as e:
        raise Retry(defer=attempt * RETRY_BACKOFF_SECONDS) from e
    log.info("job_done", job=SYNC_JOB_NAME, order_id=order_id, synced=ok)
    return ok


async def send_notification_email(ctx: dict[str, Any], order_id: str, effect: str, to: str) -> bool:
    """Retry a customer email that failed when its transition was dispatched."""
    attempt = ctx.get("job_try", 1) + 1
    job_id = ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else None
    log.info("job_start", job=EMAIL_JOB_NAME, order_id=order_id, effect=effect, attempt=attempt)
    try:
        ok = await retry_email(
            ctx["repository"],
            ctx["email_sender"],
            order_id,
            effect,
            to,
            attempt,
            ctx["email_max_tries"],
            job_id=job_id,
        )
    except EmailDeliveryFailure as e:
        raise Retry(defer=attempt * RETRY_BACKOFF_SECONDS) from e
    log.info("job_done", job=EMAIL_JOB_NAME, order_id=order_id, sent=ok)
    return ok


async def startup(ctx: dict) -> None:
    settings = get_settings()
    if settings.storage_backend == "mongo":
        from orderflow.db.init import init_db
        ctx["mongo_client"] = await init_db()
    repository = get_repository(settings)
    ctx["repository"] = repository
    ctx["email_sender"] = SmtpEmailSender.from_settings(settings)
    ctx["qikink_client"] = QikinkClient.from_settings(settings)
    ctx["qikink_sync"] = QikinkSync(ctx["qikink_client"], repository)
    ctx["max_tries"] = settings.qikink_sync_max_tries
    ctx["email_max_tries"] = settings.email_max_tries


async def shutdown(ctx: dict) -> None:
    if "qikink_client" in ctx:
        await ctx["qikink_client"].aclose()
    if "mongo_client" in ctx:
        ctx["mongo_client"].close()
