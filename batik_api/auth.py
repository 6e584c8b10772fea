"""Credential store: user registration, login and bearer tokens.

Tokens are opaque random strings handed to the client once; the database
keeps only their SHA-256 digest. Handlers never look up the current user
themselves: routes resolve a `Caller` from the request headers and pass it
in explicitly.
"""
from __future__ import annotations

import hashlib
import logging
import secrets
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from werkzeug.security import check_password_hash, generate_password_hash

from batik_api.audit_logging import audit_event, security_alert
from batik_api.db_adapter import AccessToken, User, commit, db
from batik_api.errors import Unauthorized, ValidationError
from batik_api.schemas import LoginFields, RegisterFields, require_fields

logger = logging.getLogger(__name__)

TOKEN_NAME = "auth_token"


@dataclass(frozen=True)
class Caller:
    id: int
    name: str
    email: str
    token_id: int | None = None


def _parse_bearer(header_value: str) -> str:
    if not header_value:
        return ""
    v = header_value.strip()
    if v.lower().startswith("bearer "):
        return v.split(" ", 1)[1].strip()
    return v


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue_token(user: User, name: str = TOKEN_NAME) -> str:
    plain = secrets.token_urlsafe(40)
    db.session.add(AccessToken(user_id=user.id, name=name, token_hash=hash_token(plain)))
    commit("token_issue", user_id=user.id)
    return plain


def register(fields: Mapping[str, Any]) -> tuple[User, str]:
    form = require_fields(RegisterFields, fields)
    email = form.email.lower()
    if User.query.filter_by(email=email).first() is not None:
        raise ValidationError({"email": ["The email has already been taken."]})
    user = User(name=form.name, email=email, password_hash=generate_password_hash(form.password))
    db.session.add(user)
    commit("user_register", email=email)
    token = issue_token(user)
    audit_event("user_registered", user_id=user.id)
    return user, token


def login(fields: Mapping[str, Any]) -> tuple[User, str]:
    form = require_fields(LoginFields, fields)
    user = User.query.filter_by(email=form.email.lower()).first()
    if user is None or not check_password_hash(user.password_hash, form.password):
        security_alert("login_failed", reason="invalid_credentials")
        raise Unauthorized("Invalid email or password.")
    token = issue_token(user)
    audit_event("user_logged_in", user_id=user.id)
    return user, token


def resolve_caller(header_value: str | None) -> Caller | None:
    """Map an Authorization header value to a Caller, or None when the
    token is missing, unknown or revoked."""
    token = _parse_bearer(header_value or "")
    if not token:
        return None
    record = AccessToken.query.filter_by(token_hash=hash_token(token)).first()
    if record is None or record.user is None:
        security_alert("auth_failed", reason="unknown_token", token=token[:8] + "...")
        return None
    record.last_used_at = datetime.now(timezone.utc)
    commit("token_touch", user_id=record.user_id)
    user = record.user
    return Caller(id=user.id, name=user.name, email=user.email, token_id=record.id)


def require_caller(caller: Caller | None) -> Caller:
    if caller is None:
        raise Unauthorized()
    return caller


def current_user(caller: Caller | None) -> User:
    caller = require_caller(caller)
    user = db.session.get(User, caller.id)
    if user is None:
        raise Unauthorized()
    return user


def revoke(caller: Caller | None) -> None:
    """Delete the token the caller authenticated with (logout)."""
    caller = require_caller(caller)
    if caller.token_id is None:
        return
    AccessToken.query.filter_by(id=caller.token_id, user_id=caller.id).delete()
    commit("token_revoke", user_id=caller.id)
    audit_event("token_revoked", user_id=caller.id)
