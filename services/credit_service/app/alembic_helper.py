import asyncio
import os

from alembic import command
from alembic.config import Config
from loguru import logger

MIGRATIONS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "db", "migrations")


def _upgrade(database_dsn: str) -> None:
    alembic_cfg = Config(os.path.join(MIGRATIONS_DIR, "alembic.ini"))
    alembic_cfg.set_main_option("script_location", MIGRATIONS_DIR)
    alembic_cfg.set_main_option("sqlalchemy.url", database_dsn)
    command.upgrade(alembic_cfg, "head")


async def run_alembic_migrations(database_dsn: str) -> None:
    """Apply Alembic migrations up to head using the configured sync DSN.

    Alembic drives a synchronous engine, so the upgrade runs in a worker
    thread to keep the event loop free during start-up.
    """
    logger.info("🚀 Running Alembic migrations...")
    try:
        await asyncio.to_thread(_upgrade, database_dsn)
    except Exception as e:
        logger.error(f"❌ Alembic migration failed: {e}")
        raise
    logger.info("✅ Alembic migrations applied successfully.")
