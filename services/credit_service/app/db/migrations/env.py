from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from services.credit_service.app import models  # noqa: F401  registers the ledger tables
from services.credit_service.app.db.base import Base
from services.credit_service.app.settings import credit_settings

config = context.config

if config.config_file_name is not None and os.path.exists(config.config_file_name):
    fileConfig(config.config_file_name, disable_existing_loggers=False)


def _database_url() -> str:
    # alembic.ini ships an in-memory placeholder; the service passes its DSN explicitly.
    url = config.get_main_option("sqlalchemy.url")
    if url and url != "sqlite:///:memory:":
        return url
    return credit_settings().sync_db_url


def _ledger_context(**options) -> None:
    url = options.pop("url", None) or _database_url()
    context.configure(
        url=url if "connection" not in options else None,
        target_metadata=Base.metadata,
        compare_type=True,
        compare_server_default=True,
        # SQLite cannot ALTER constraints in place.
        render_as_batch=url.startswith("sqlite"),
        **options,
    )


if context.is_offline_mode():
    _ledger_context(literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()
else:
    section = dict(config.get_section(config.config_ini_section) or {})
    section["sqlalchemy.url"] = _database_url()
    engine = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)
    with engine.connect() as connection:
        _ledger_context(connection=connection, url=section["sqlalchemy.url"])
        with context.begin_transaction():
            context.run_migrations()
