import asyncio
import random
import sys

import asyncpg
from fastapi import FastAPI
from loguru import logger
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from .alembic_helper import run_alembic_migrations
from .db.seed_catalog import seed_default_catalog
from .db.session import async_session_factory
from .settings import CreditSettings, credit_settings

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "req={extra[request_id]} | <cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)

# Health checks and scrapes would drown the ledger spans.
UNTRACED_URLS = "healthz,readyz,metrics"


def setup_logging() -> None:
    """Route every service log line through one Loguru sink tagged with the request id."""
    settings = credit_settings()
    logger.remove()
    logger.configure(extra={"request_id": "-"})
    logger.add(
        sys.stdout,
        level=settings.log_level.upper(),
        format=LOG_FORMAT,
        backtrace=False,
        diagnose=False,
        colorize=False,
    )
    logger.info(f"🪵 Logging configured for {settings.service_name} at {settings.log_level.upper()}.")


def _tracer_provider(settings: CreditSettings) -> TracerProvider:
    current = trace.get_tracer_provider()
    if isinstance(current, TracerProvider):
        return current
    provider = TracerProvider(resource=Resource(attributes={SERVICE_NAME: settings.service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_endpoint)))
    trace.set_tracer_provider(provider)
    logger.info(f"📈 Exporting traces to {settings.otel_endpoint}.")
    return provider


def setup_instrumentation(app: FastAPI) -> None:
    """Trace the credit API with OpenTelemetry. Calling it twice for one app is a no-op."""
    if getattr(app.state, "tracer_provider", None) is not None:
        return
    provider = _tracer_provider(credit_settings())
    FastAPIInstrumentor.instrument_app(app, tracer_provider=provider, excluded_urls=UNTRACED_URLS)
    app.state.tracer_provider = provider


async def _wait_for_postgres(dsn: str, attempts: int = 5, base_delay: float = 2.0) -> None:
    """Block until Postgres accepts connections, backing off exponentially with jitter."""
    dsn = dsn.replace("postgresql+asyncpg://", "postgresql://", 1)
    for attempt in range(1, attempts + 1):
        try:
            conn = await asyncpg.connect(dsn=dsn)
        except (OSError, asyncpg.PostgresError) as exc:
            delay = base_delay * 2 ** (attempt - 1) + random.uniform(0, 0.5)
            logger.warning(f"Credit database unavailable ({attempt}/{attempts}): {exc}. Next try in {delay:.2f}s")
            await asyncio.sleep(delay)
            continue
        await conn.close()
        logger.info("✅ Credit database reachable.")
        return
    raise RuntimeError(f"Credit database still unreachable after {attempts} attempts")


async def _prepare_database(settings: CreditSettings) -> None:
    tracer = trace.get_tracer(__name__)
    if settings.async_db_url.startswith("postgresql"):
        with tracer.start_as_current_span("credit.db.wait"):
            await _wait_for_postgres(settings.async_db_url)
    with tracer.start_as_current_span("credit.db.migrate"):
        await run_alembic_migrations(settings.sync_db_url)
    with tracer.start_as_current_span("credit.catalog.seed"):
        async with async_session_factory() as session, session.begin():
            await seed_default_catalog(session)


async def init_service_startup(app: FastAPI) -> None:
    """Bring the ledger store to head and seed the top-up catalog before serving."""
    app.state.is_ready = False
    settings = credit_settings()
    logger.info(f"🚀 Starting {settings.service_name} ({settings.environment}) with {settings.safe_dict()}")

    if settings.run_startup_checks:
        await _prepare_database(settings)
    else:
        logger.info("Start-up checks disabled; assuming the ledger schema is already in place.")

    app.state.is_ready = True
    logger.info(f"✅ {settings.service_name} ready.")


async def shutdown_instrumentation(app: FastAPI) -> None:
    """Flush pending spans before the process exits."""
    provider = getattr(app.state, "tracer_provider", None)
    if isinstance(provider, TracerProvider):
        provider.shutdown()
        logger.info("🧹 Trace provider shut down.")
