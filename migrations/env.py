from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from prflow.db_migrations import to_sqlalchemy_url


config = context.config
target_metadata = None

# `flask db` has already configured logging; the ini only applies to bare `alembic` runs.
if config.config_file_name is not None and config.attributes.get("configure_logger", True):
    fileConfig(config.config_file_name, disable_existing_loggers=False)


def _database_url() -> str:
    configured = config.get_main_option("sqlalchemy.url")
    if config.attributes.get("sqlalchemy_url_locked"):
        return to_sqlalchemy_url(configured)
    return to_sqlalchemy_url(os.environ.get("DATABASE_URL") or os.environ.get("DB_PATH") or configured)


def _migrate_offline() -> None:
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _migrate_online() -> None:
    options = dict(config.get_section(config.config_ini_section) or {})
    options["sqlalchemy.url"] = _database_url()
    engine = engine_from_config(options, prefix="sqlalchemy.", poolclass=pool.NullPool)
    with engine.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    _migrate_offline()
else:
    _migrate_online()
