"""
leadhooks - inbound webhook ingestion for integrated platforms.
Main FastAPI application entry point.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from leadhooks.config import get_settings
from leadhooks.api.router import api_router
from leadhooks.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger("leadhooks")

SHUTDOWN_GRACE_SECONDS = 10.0


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start background workers; stop them and release connections on shutdown."""
    settings = get_settings()
    logger.info(
        "leadhooks starting up (env=%s, executor=%s)",
        settings.app_env, settings.webhook_executor,
    )

    if settings.allow_unsigned_webhooks:
        logger.warning(
            "ALLOW_UNSIGNED_WEBHOOKS is set - signatures are not checked%s",
            " (ignored in production)" if settings.app_env == "production" else "",
        )

    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.app_env,
            )
            logger.info("Sentry initialized")
        except Exception as e:
            logger.warning("Sentry initialization failed: %s", str(e))

    worker_tasks: list[asyncio.Task] = []

    from leadhooks.workers.retry_worker import run_retry_worker
    worker_tasks.append(asyncio.create_task(run_retry_worker()))

    if settings.webhook_executor == "queue" and settings.webhook_worker_in_process:
        from leadhooks.workers.webhook_worker import run_webhook_worker
        worker_tasks.append(asyncio.create_task(run_webhook_worker()))

    yield

    logger.info("leadhooks shutting down - stopping %d workers...", len(worker_tasks))
    for task in worker_tasks:
        task.cancel()
    if worker_tasks:
        await asyncio.wait(worker_tasks, timeout=SHUTDOWN_GRACE_SECONDS)

    from leadhooks.database import dispose_engine
    from leadhooks.utils.dedup import close_redis
    await close_redis()
    await dispose_engine()
    logger.info("leadhooks shutdown complete")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="leadhooks",
        description="Inbound webhook ingestion for integrated platforms",
        version="1.0.0",
        lifespan=lifespan,
    )

    origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
    application.add_middleware(
        CORSMiddleware,
        allow_origins=origins or [settings.app_base_url],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Correlation-ID"],
    )

    # Added after CORS so it wraps every request
    application.add_middleware(CorrelationIdMiddleware)

    application.include_router(api_router)

    return application


app = create_app()
