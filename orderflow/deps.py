"""Shared FastAPI dependencies.

Collaborators are built once in the app lifespan and kept on app.state; routes
reach them only through these dependencies.
"""

from dataclasses import dataclass
from typing import Any

from fastapi import Request

from orderflow.core.config import Settings, get_settings
from orderflow.services.notifications import EmailSender, SideEffectDispatcher, SmtpEmailSender
from orderflow.services.payments import razorpay_client
from orderflow.services.qikink import QikinkClient, QikinkSync
from orderflow.services.reconciler import Reconciler
from orderflow.services.retry_queue import InMemoryRetryQueue, RetryQueue
from orderflow.storage.base import OrderRepository, get_repository


@dataclass
class Services:
    settings: Settings
    repository: OrderRepository
    reconciler: Reconciler
    dispatcher: SideEffectDispatcher
    qikink_client: QikinkClient
    retry_queue: RetryQueue
    razorpay: Any = None

    async def close(self) -> None:
        await self.qikink_client.aclose()
        await self.retry_queue.close()
        await self.repository.close()


def build_services(
    settings: Settings | None = None,
    repository: OrderRepository | None = None,
    email_sender: EmailSender | None = None,
    qikink_client: QikinkClient | None = None,
    retry_queue: RetryQueue | None = None,
    razorpay: Any = None,
) -> Services:
    settings = settings or get_settings()
    repository = repository or get_repository(settings)
    qikink_client = qikink_client or QikinkClient.from_settings(settings)
    if retry_queue is None:
        retry_queue = InMemoryRetryQueue(
            max_tries=settings.qikink_sync_max_tries,
            email_max_tries=settings.email_max_tries,
        )
    dispatcher = SideEffectDispatcher(
        repository,
        email_sender or SmtpEmailSender.from_settings(settings),
        QikinkSync(qikink_client, repository),
        retry_queue,
    )
    return Services(
        settings=settings,
        repository=repository,
        reconciler=Reconciler(repository, settings),
        dispatcher=dispatcher,
        qikink_client=qikink_client,
        retry_queue=retry_queue,
        razorpay=razorpay if razorpay is not None else razorpay_client(settings),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
