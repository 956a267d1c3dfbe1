import os

from flask import Flask

from prflow.config import Config
from prflow.db import close_db, get_db, init_db
from prflow.db_migrations import register_db_cli
from prflow.observability import (
    configure_json_logging,
    metrics_snapshot,
    prometheus_metrics_text,
    register_request_tracing,
)

PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


def create_app(config_class=Config, *, notification_sink=None, directory=None):
    """Build the workflow API.

    ``notification_sink`` and ``directory`` replace the default push channel and
    SQL-backed identity directory for every request.
    """
    from prflow.auth import register_auth
    from prflow.core import get_event_bus, install_event_log
    from prflow.errors import register_error_handlers
    from prflow.routes.workflow_routes import workflow_bp
    from prflow.tenant import register_tenant

    app = Flask(__name__)
    app.config.from_object(config_class)
    app.extensions["prflow"] = {"notification_sink": notification_sink, "directory": directory}
    configure_json_logging(app)

    database_dir = app.config.get("DATABASE_DIR")
    if database_dir:
        os.makedirs(database_dir, exist_ok=True)

    register_request_tracing(app)
    install_event_log(get_event_bus())
    register_error_handlers(app)
    register_auth(app)
    register_tenant(app)
    app.register_blueprint(workflow_bp)
    _register_health_routes(app)
    register_db_cli(app)
    if _schema_auto_init_allowed(app):
        with app.app_context():
            init_db()

    app.teardown_appcontext(close_db)
    return app


def _schema_auto_init_allowed(app: Flask) -> bool:
    # Test sandboxes always start from an empty file.
    if app.testing:
        return True
    if not app.config.get("DB_AUTO_INIT", False):
        return False
    flask_env = (os.environ.get("FLASK_ENV") or "development").strip().lower()
    if flask_env != "development":
        app.logger.warning("DB_AUTO_INIT ignored outside development.", extra={"flask_env": flask_env})
        return False
    return True


def _register_health_routes(app: Flask) -> None:
    @app.get("/health")
    def health():
        backend = "postgres" if str(app.config.get("DB_PATH") or "").startswith("postgres") else "sqlite"
        status = "ok"
        try:
            get_db().execute("SELECT 1").fetchone()
        except Exception:  # noqa: BLE001
            app.logger.warning("health_db_unreachable", exc_info=True)
            status = "degraded"
        return {"status": status, "db": backend, "metrics": metrics_snapshot()}

    @app.get("/metrics")
    def metrics():
        return prometheus_metrics_text(), 200, {"Content-Type": PROMETHEUS_CONTENT_TYPE}
