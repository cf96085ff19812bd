"""Retries for side effects that failed after their transition committed.

The request path only enqueues. With the Mongo backend the jobs run in the
ARQ worker (orderflow.worker.tasks.ArqRetryQueue); with the memory backend
InMemoryRetryQueue runs them inside the API process.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from orderflow.core.exceptions import DownstreamSyncFailure, EmailDeliveryFailure
from orderflow.core.logging import get_logger
from orderflow.services.qikink import retry_sync

if TYPE_CHECKING:
    from orderflow.services.notifications import SideEffectDispatcher

log = get_logger(__name__)


class RetryQueue(ABC):
    @abstractmethod
    async def enqueue_sync(self, order_id: str, request: dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def enqueue_email(self, order_id: str, effect: str, to: str) -> None:
        ...

    async def close(self) -> None:
        pass


@dataclass
class PendingSync:
    order_id: str
    request: dict[str, Any]
    attempt: int = 1


@dataclass
class PendingEmail:
    order_id: str
    effect: str
    to: str
    attempt: int = 1


class InMemoryRetryQueue(RetryQueue):
    """Retry queue for the memory backend.

    The app lifespan drives run_forever, which makes one pass over the queued
    jobs every poll interval; tests drain the queue with run_pending. Attempt 1
    of every job already ran inline in the dispatcher.
    """

    def __init__(self, max_tries: int = 5, email_max_tries: int | None = None) -> None:
        self.max_tries = max_tries
        self.email_max_tries = email_max_tries or max_tries
        self.pending: list[PendingSync | PendingEmail] = []

    async def enqueue_sync(self, order_id: str, request: dict[str, Any]) -> None:
        self.pending.append(PendingSync(order_id, request))
        log.info("qikink_sync_enqueued", order_id=order_id)

    async def enqueue_email(self, order_id: str, effect: str, to: str) -> None:
        self.pending.append(PendingEmail(order_id, effect, to))
        log.info("email_enqueued", order_id=order_id, effect=effect)

    async def _run(self, dispatcher: "SideEffectDispatcher", job: PendingSync | PendingEmail, attempt: int) -> None:
        if isinstance(job, PendingSync):
            await retry_sync(dispatcher.qikink_sync, job.order_id, job.request, attempt, self.max_tries)
        else:
            await dispatcher.resend_email(job.order_id, job.effect, job.to, attempt, self.email_max_tries)

    async def run_once(self, dispatcher: "SideEffectDispatcher") -> None:
        """One attempt for every job queued right now; jobs that may try again go back on the queue."""
        jobs, self.pending = self.pending, []
        for job in jobs:
            attempt = job.attempt + 1
            try:
                await self._run(dispatcher, job, attempt)
            except (DownstreamSyncFailure, EmailDeliveryFailure):
                self.pending.append(replace(job, attempt=attempt))
            except Exception:
                log.exception("retry_job_failed", order_id=job.order_id, attempt=attempt)

    async def run_pending(self, dispatcher: "SideEffectDispatcher") -> None:
        while self.pending:
            await self.run_once(dispatcher)

    async def run_forever(self, dispatcher: "SideEffectDispatcher", interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.run_once(dispatcher)
