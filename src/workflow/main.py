"""FastAPI application entry point for the order workflow service.

The lifespan handler loads settings, configures logging, selects the order
repository (PostgreSQL when WORKFLOW_DATABASE_URL is set, in memory
otherwise), wires the WorkflowEngine and optionally seeds demo orders.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST

from src.workflow.api.routes import register_error_handlers, router
from src.workflow.config import WorkflowSettings, get_settings
from src.workflow.events.emitter import create_event_emitter
from src.workflow.events.metrics import generate_metrics_output
from src.workflow.seed import seed_demo_orders
from src.workflow.state.machine import WorkflowEngine
from src.workflow.state.memory import InMemoryOrderRepository
from src.workflow.state.repository import PostgresOrderRepository


logger = structlog.get_logger()


def configure_logging(settings: WorkflowSettings) -> None:
    """Configure structlog on top of the standard library logger."""
    logging.basicConfig(level=settings.log_level, format="%(message)s")
    renderer = (
        structlog.processors.JSONRenderer()
        if settings.log_json
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _redact_secret(value: str, visible_chars: int = 4) -> str:
    """Redact a secret value, showing only the first few characters."""
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


def _log_configuration(settings: WorkflowSettings) -> None:
    logger.info(
        "Workflow configuration",
        database_url=_redact_secret(settings.database_url) if settings.database_url else None,
        storage_timeout_seconds=settings.storage_timeout_seconds,
        enforce_assignee=settings.enforce_assignee,
        max_text_length=settings.max_text_length,
        seed_demo_data=settings.seed_demo_data,
        event_sinks=[sink.value for sink in settings.event_sinks],
        host=settings.host,
        port=settings.port,
    )


def build_engine(settings: WorkflowSettings, repository) -> WorkflowEngine:
    """Wire a WorkflowEngine from settings and a repository."""
    return WorkflowEngine(
        repository,
        create_event_emitter(settings.event_sinks),
        enforce_assignee=settings.enforce_assignee,
        storage_timeout_seconds=settings.storage_timeout_seconds,
        max_text_length=settings.max_text_length,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings)
    _log_configuration(settings)

    postgres: Optional[PostgresOrderRepository] = None
    if settings.database_url:
        postgres = PostgresOrderRepository(
            settings.database_url,
            min_pool_size=settings.db_min_pool_size,
            max_pool_size=settings.db_max_pool_size,
        )
        await postgres.connect()
        repository = postgres
    else:
        logger.warning("No database configured, orders are kept in memory")
        repository = InMemoryOrderRepository()

    engine = build_engine(settings, repository)
    app.state.engine = engine
    app.state.postgres = postgres

    try:
        if settings.seed_demo_data:
            await seed_demo_orders(engine)

        logger.info("Workflow service started")

        yield
    finally:
        logger.info("Workflow service shutting down")
        await engine.event_emitter.close()
        if postgres is not None:
            await postgres.disconnect()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Order Workflow Service",
        description="Stage-by-stage tracking of fulfillment orders",
        version="1.0.0",
        lifespan=lifespan,
    )
    register_error_handlers(app)
    app.include_router(router)

    @app.get("/health")
    async def health():
        """Liveness probe endpoint."""
        return {"status": "healthy"}

    @app.get("/ready")
    async def ready(request: Request):
        """Readiness probe; checks the database when one is configured."""
        postgres: Optional[PostgresOrderRepository] = getattr(
            request.app.state, "postgres", None
        )
        database_status = "in_memory"
        if postgres is not None:
            database_status = "healthy" if await postgres.health_check() else "unhealthy"

        if database_status == "unhealthy":
            return JSONResponse(
                status_code=503,
                content={"status": "not_ready", "dependencies": {"database": database_status}},
            )
        return {"status": "ready", "dependencies": {"database": database_status}}

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(generate_metrics_output(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    dev_settings = get_settings()
    uvicorn.run(
        "src.workflow.main:app",
        host=dev_settings.host,
        port=dev_settings.port,
    )
