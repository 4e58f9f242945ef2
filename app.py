# app.py

import logging
import os

from dotenv import load_dotenv
from flask import Flask, Response, jsonify
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import event

# Load environment variables from .env file first
load_dotenv()

# Module imports after load_dotenv() - E402 is intentional
from config import DevelopmentConfig, ProductionConfig, TestingConfig  # noqa: E402
from config.monitoring import (  # noqa: E402
    DevelopmentMonitoringConfig,
    ProductionMonitoringConfig,
    TestingMonitoringConfig,
)
from config.validation import validate_and_exit  # noqa: E402
from exchange_sync.models import db  # noqa: E402
from exchange_sync.sync import init_sync  # noqa: E402
from exchange_sync.utils.logging_config import setup_logging  # noqa: E402

logger = logging.getLogger(__name__)

# FLASK_ENV -> (application config, logging/monitoring config)
CONFIG_BY_ENV = {
    "production": (ProductionConfig, ProductionMonitoringConfig),
    "testing": (TestingConfig, TestingMonitoringConfig),
    "development": (DevelopmentConfig, DevelopmentMonitoringConfig),
}

flask_env = os.environ.get("FLASK_ENV", "development")
if flask_env == "production":
    # Fail fast before any config class reads missing credentials
    validate_and_exit(flask_env)

app = Flask(__name__)
for config_class in CONFIG_BY_ENV.get(flask_env, CONFIG_BY_ENV["development"]):
    app.config.from_object(config_class)

db.init_app(app)
setup_logging(app)


def _sqlite_pragmas(*, foreign_keys: bool):
    """
    Connection hook for SQLite: WAL so per-record upsert sessions on worker
    threads do not block readers, plus a busy timeout for writer contention.
    """

    statements = ["PRAGMA journal_mode=WAL", "PRAGMA synchronous=NORMAL", "PRAGMA busy_timeout=5000"]
    if foreign_keys:
        statements.append("PRAGMA foreign_keys=ON")

    def on_connect(dbapi_connection, connection_record):  # pragma: no cover - instrumentation
        cursor = dbapi_connection.cursor()
        try:
            for statement in statements:
                cursor.execute(statement)
        except Exception as exc:
            logger.warning("Failed to apply SQLite PRAGMAs: %s", exc)
        finally:
            cursor.close()

    return on_connect


with app.app_context():
    engine = db.engine
    if engine.url.drivername.startswith("sqlite") and not getattr(engine, "_sqlite_pragmas_configured", False):
        # Tests drop and recreate tables freely; foreign keys stay off there.
        event.listen(engine, "connect", _sqlite_pragmas(foreign_keys=not app.config.get("TESTING", False)))
        engine._sqlite_pragmas_configured = True  # type: ignore[attr-defined]
    if not app.config.get("TESTING", False):
        db.create_all()


# Mount the sync CLI group, blueprint and Celery app when SYNC_ENABLED is set
init_sync(app)


@app.get("/health")
def health():
    return jsonify({"status": "ok", "app": app.config.get("APP_NAME")}), 200


@app.get("/metrics")
def metrics():
    return Response(generate_latest(), mimetype=CONTENT_TYPE_LATEST)


@app.errorhandler(500)
def internal_error(error):
    db.session.rollback()
    return jsonify({"error": "Internal server error."}), 500


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port)
