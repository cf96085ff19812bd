"""Run ARQ worker. Usage: python -m orderflow.worker.run_worker"""

from arq import run_worker
from arq.worker import func

from orderflow.core.config import get_settings
from orderflow.core.logging import configure_logging
from orderflow.worker.tasks import get_redis_settings, send_notification_email, shutdown, startup, sync_order_to_qikink

settings = get_settings()


class WorkerSettings:
    functions = [
        func(sync_order_to_qikink, max_tries=settings.qikink_sync_max_tries),
        func(send_notification_email, max_tries=settings.email_max_tries),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = get_redis_settings(settings)


if __name__ == "__main__":
    configure_logging(debug=settings.debug)
    run_worker(WorkerSettings)
