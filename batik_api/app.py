import logging
import re

from flask import Flask
from flask_cors import CORS

from batik_api.audit_logging import init_audit_logging
from batik_api.config import load_settings
from batik_api.core import blueprint
from batik_api.db_adapter import init_db
from batik_api.errors import register_error_handlers
from batik_api.rate_lim import init_rate_limiter
from batik_api.reconcile import register_commands
from batik_api.s3_adapter import build_blob_store
from batik_api.secrets_loader import load_catalog_secrets
from batik_api.validation import init_validation

DEFAULT_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    re.compile(r"^https://.*\.amplifyapp\.com$"),
]


def _allowed_origins(raw: str) -> list:
    origins = [o.strip() for o in (raw or "").split(",") if o.strip()]
    return origins or DEFAULT_ORIGINS


def create_app(config=None):
    # Secrets Manager values land in os.environ before settings are read
    load_catalog_secrets()

    app = Flask(__name__)
    app.config.update(load_settings().flask_config())
    if config:
        app.config.update(config)

    if not app.logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s"))
        app.logger.addHandler(handler)
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))
    logging.getLogger("batik_api").setLevel(app.config.get("LOG_LEVEL", "INFO"))

    CORS(
        app,
        resources={r"/*": {"origins": _allowed_origins(app.config.get("ALLOWED_ORIGINS", ""))}},
        methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Authorization"],
        supports_credentials=True,
        max_age=600,
    )

    init_rate_limiter(app)
    init_validation(app)
    init_audit_logging(app)
    register_error_handlers(app)

    init_db(app)
    app.extensions["blob_store"] = build_blob_store(app.config)

    app.register_blueprint(blueprint)
    register_commands(app)
    return app


if __name__ == "__main__":
    application = create_app()
    application.run(debug=True)
