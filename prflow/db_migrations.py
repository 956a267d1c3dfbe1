from __future__ import annotations

from pathlib import Path

import click
from alembic import command
from alembic.config import Config as AlembicConfig
from flask import Flask


def _project_root() -> Path:
    return Path(__file__).resolve().parents[1]


def _normalize_postgres_url(url: str) -> str:
    if url.startswith("postgres://"):
        return "postgresql://" + url[len("postgres://") :]
    return url


def to_sqlalchemy_url(raw_db_path: str) -> str:
    raw = (raw_db_path or "").strip()
    if not raw:
        raise RuntimeError("DB_PATH is not set; cannot run migrations.")

    normalized = _normalize_postgres_url(raw)
    if normalized.startswith(("postgresql://", "postgresql+", "sqlite://", "sqlite+pysqlite://")):
        return normalized

    sqlite_path = Path(normalized).expanduser().resolve()
    return f"sqlite:///{sqlite_path.as_posix()}"


def build_alembic_config(app_or_url) -> AlembicConfig:
    """Alembic config bound to the app's database (or an explicit DB path/URL)."""
    root = _project_root()
    alembic_ini = root / "alembic.ini"
    if not alembic_ini.exists():
        raise RuntimeError("alembic.ini not found at the project root.")

    raw_url = app_or_url.config["DB_PATH"] if isinstance(app_or_url, Flask) else str(app_or_url)
    alembic_cfg = AlembicConfig(str(alembic_ini))
    alembic_cfg.set_main_option("script_location", str((root / "migrations").as_posix()))
    alembic_cfg.set_main_option("sqlalchemy.url", to_sqlalchemy_url(raw_url).replace("%", "%%"))
    alembic_cfg.attributes["sqlalchemy_url_locked"] = True
    alembic_cfg.attributes["configure_logger"] = False
    return alembic_cfg


def upgrade_database(app_or_url, revision: str = "head") -> None:
    command.upgrade(build_alembic_config(app_or_url), revision)


def downgrade_database(app_or_url, revision: str = "-1") -> None:
    command.downgrade(build_alembic_config(app_or_url), revision)


def register_db_cli(app: Flask) -> None:
    @app.cli.group("db")
    def db_group() -> None:
        """Schema migrations (Alembic)."""

    @db_group.command("upgrade")
    @click.argument("revision", required=False, default="head")
    def db_upgrade(revision: str) -> None:
        upgrade_database(app, revision)
        click.echo(f"Upgraded to {revision}.")

    @db_group.command("downgrade")
    @click.argument("revision", required=False, default="-1")
    def db_downgrade(revision: str) -> None:
        downgrade_database(app, revision)
        click.echo(f"Downgraded to {revision}.")

    @db_group.command("current")
    def db_current() -> None:
        command.current(build_alembic_config(app), verbose=True)

    @db_group.command("history")
    def db_history() -> None:
        command.history(build_alembic_config(app), verbose=False)

    @db_group.command("init")
    def db_init() -> None:
        """Create tables directly from the DDL, bypassing Alembic."""
        from prflow.db import connect_database, init_db

        db = connect_database(app.config["DB_PATH"])
        try:
            init_db(db)
        finally:
            db.close()
        click.echo("Schema created.")
