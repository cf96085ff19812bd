import asyncio
import time
import uuid
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from orderflow.core.config import get_settings
from orderflow.core.exceptions import (
    AppError,
    app_exception_handler,
    generic_exception_handler,
    validation_exception_handler,
)
from orderflow.core.logging import bind_request_id, configure_logging, get_logger
from orderflow.deps import Services, build_services
from orderflow.routers import orders, payments, webhooks
from orderflow.services.retry_queue import InMemoryRetryQueue

settings = get_settings()
configure_logging(debug=settings.debug)
log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.sentry_dsn:
        import sentry_sdk
        sentry_sdk.init(dsn=settings.sentry_dsn, environment=settings.env, traces_sample_rate=0.1)
        log.info("startup", msg="Sentry enabled")
    mongo_client = None
    retry_task = None
    owned = getattr(app.state, "services", None) is None
    if owned:
        retry_queue = None
        if settings.storage_backend == "mongo":
            from orderflow.db.init import init_db
            from orderflow.worker.tasks import ArqRetryQueue
            mongo_client = await init_db()
            log.info("startup", msg="DB connected")
            retry_queue = await ArqRetryQueue.connect(settings)
        services = build_services(settings, retry_queue=retry_queue)
        app.state.services = services
        if isinstance(services.retry_queue, InMemoryRetryQueue):
            retry_task = asyncio.create_task(
                services.retry_queue.run_forever(services.dispatcher, settings.retry_poll_seconds)
            )
            log.info("startup", msg="In-process retry loop started")
    try:
        yield
    finally:
        if retry_task is not None:
            retry_task.cancel()
            with suppress(asyncio.CancelledError):
                await retry_task
        if owned:
            await app.state.services.close()
            if mongo_client is not None:
                mongo_client.close()
            log.info("shutdown")


def create_app(services: Services | None = None) -> FastAPI:
    app = FastAPI(
        title="Orderflow API",
        version="1.0.0",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_id_middleware(request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        bind_request_id(request_id)
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        log.info(
            "request",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        response.headers["X-Request-ID"] = request_id
        return response

    app.add_exception_handler(AppError, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # Routers
    app.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
    app.include_router(orders.router, prefix="/v1/orders", tags=["orders"])
    app.include_router(payments.router, prefix="/v1/payments", tags=["payments"])

    @app.get("/health")
    async def health():
        """Health check for load balancers and monitoring."""
        return {"status": "ok"}

    return app


app = create_app()
