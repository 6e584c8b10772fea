"""Rate limiting for the catalog API using Flask-Limiter."""
import logging

from flask import current_app, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from batik_api.auth import hash_token

logger = logging.getLogger(__name__)


def _limiter_key_func() -> str:
    """Return a string key for rate-limiting: token digest or IP.

    Only the SHA-256 digest of a bearer token reaches the limiter storage.
    """
    token_hdr = request.headers.get("Authorization", "") or request.headers.get("X-Authorization", "")
    if token_hdr:
        v = token_hdr.strip()
        if v.lower().startswith("bearer "):
            v = v.split(" ", 1)[1].strip()
        return f"token:{hash_token(v)}"
    return get_remote_address()


limiter = Limiter(key_func=_limiter_key_func, headers_enabled=True)


def login_limit() -> str:
    return current_app.config.get("LOGIN_RATE_LIMIT", "20 per minute")


def init_rate_limiter(app) -> None:
    """Attach the shared limiter to the given Flask app.

    Config keys consumed (optional):
      - RATE_LIMIT_DEFAULT: default limit string for every route
      - LOGIN_RATE_LIMIT: stricter limit applied to /login and /register
      - RATELIMIT_ENABLED: set to False to disable limiting (tests)
    """
    app.config.setdefault("RATE_LIMIT_DEFAULT", "360 per 60 seconds")
    app.config.setdefault("RATELIMIT_DEFAULT", app.config["RATE_LIMIT_DEFAULT"])
    app.config.setdefault("RATELIMIT_STORAGE_URI", "memory://")
    limiter.init_app(app)
    logger.info("Rate limiter ready: default=%s", app.config["RATELIMIT_DEFAULT"])
