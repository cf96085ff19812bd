"""Customer emails: one send per transition, retried until the SMTP server takes it."""

import asyncio
import smtplib

import pytest
import pytest_asyncio

from orderflow.services.retry_queue import InMemoryRetryQueue

pytestmark = pytest.mark.asyncio

SHIPPED = "Your Order Has Been Shipped"


async def _ship(services, signed, payloads, order):
    body, headers = signed("qikink", payloads.qikink("QK-9", "order.shipped", order.id, tracking_number="T1"))
    transition = await services.reconciler.ingest("qikink", body, headers)
    await services.dispatcher.dispatch(transition.side_effects)
    return transition


@pytest_asyncio.fixture
async def shippable(services, order):
    await services.repository.update_order_fields(order.id, {"qikink_order_id": "QK-9"})
    return order


async def test_failed_email_is_sent_exactly_once_after_retry(services, signed, payloads, shippable, email_sender, repository):
    email_sender.failures.append(smtplib.SMTPServerDisconnected("connection unexpectedly closed"))
    await _ship(services, signed, payloads, shippable)
    assert email_sender.sent == []
    assert repository.side_effects[f"{shippable.id}:shipping_email"] == "claimed"

    for _ in range(3):
        redelivered = await _ship(services, signed, payloads, shippable)
        assert redelivered.side_effects == []

    await services.retry_queue.run_pending(services.dispatcher)
    assert email_sender.subjects() == [SHIPPED]
    assert email_sender.sent[0]["to"] == "buyer@example.com"
    assert repository.side_effects[f"{shippable.id}:shipping_email"] == "done"


async def test_email_that_never_goes_through_is_dead_lettered(services, signed, payloads, shippable, email_sender, repository):
    email_sender.failures.extend(smtplib.SMTPServerDisconnected("down") for _ in range(3))
    await _ship(services, signed, payloads, shippable)
    await services.retry_queue.run_pending(services.dispatcher)

    assert email_sender.sent == []
    assert len(repository.failed_jobs) == 1
    job = repository.failed_jobs[0]
    assert job["job_name"] == "send_notification_email"
    assert job["args"] == [shippable.id, "shipping_email", "buyer@example.com"]
    assert job["retries"] == 3
    assert f"{shippable.id}:shipping_email" not in repository.side_effects


async def test_run_forever_drains_the_queue(services, signed, payloads, shippable, email_sender):
    email_sender.failures.append(OSError("network unreachable"))
    await _ship(services, signed, payloads, shippable)
    assert isinstance(services.retry_queue, InMemoryRetryQueue)

    task = asyncio.create_task(services.retry_queue.run_forever(services.dispatcher, 0.01))
    try:
        for _ in range(100):
            if email_sender.sent:
                break
            await asyncio.sleep(0.01)
    finally:
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    assert email_sender.subjects() == [SHIPPED]
    assert services.retry_queue.pending == []
