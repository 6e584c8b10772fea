"""
Relational record store for the batik catalog.

SQLAlchemy models for users, access tokens, batik entries and comments,
plus a commit helper that times every write, emits a `db_audit` entry and
converts store failures into `StorageError`.
"""

import logging
import sqlite3
import time
from datetime import datetime, timezone
from typing import Any

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from batik_api.audit_logging import db_audit, security_alert
from batik_api.errors import StorageError

logger = logging.getLogger(__name__)

db = SQLAlchemy()


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    # SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)

    batiks = db.relationship("Batik", back_populates="owner", passive_deletes=True)
    tokens = db.relationship("AccessToken", back_populates="user", passive_deletes=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "created_at": to_iso(self.created_at),
        }


class AccessToken(db.Model):
    """Opaque bearer token; only the SHA-256 digest of the token is stored."""

    __tablename__ = "access_tokens"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False, default="auth_token")
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    last_used_at = db.Column(db.DateTime(timezone=True))

    user = db.relationship("User", back_populates="tokens")


class Batik(db.Model):
    __tablename__ = "batiks"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    filename = db.Column(db.String(255), nullable=False)
    path = db.Column(db.String(512), nullable=False)
    original_name = db.Column(db.String(255), nullable=False)
    is_minangkabau_batik = db.Column(db.Boolean, nullable=False, default=False)
    batik_name = db.Column(db.String(255))
    description = db.Column(db.Text)
    origin = db.Column(db.String(255))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    owner = db.relationship("User", back_populates="batiks")
    comments = db.relationship(
        "Comment",
        back_populates="batik",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Comment.id",
    )

    @db.validates("user_id")
    def _validate_owner(self, key: str, value: int) -> int:
        if self.user_id is not None and value != self.user_id:
            raise ValueError("The owner of a batik entry cannot be changed")
        return value


class Comment(db.Model):
    __tablename__ = "comments"

    id = db.Column(db.Integer, primary_key=True)
    batik_id = db.Column(db.Integer, db.ForeignKey("batiks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)

    batik = db.relationship("Batik", back_populates="comments")
    author = db.relationship("User")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "batik_id": self.batik_id,
            "user_id": self.user_id,
            "content": self.content,
            "created_at": to_iso(self.created_at),
            "user": {"id": self.author.id, "name": self.author.name} if self.author else None,
        }


def commit(operation: str, **fields: Any) -> None:
    """Commit the current session or raise StorageError after a rollback."""
    start = time.time()
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error("Record store %s failed (%s): %s", operation, fields, e)
        security_alert("db_operation_failed", operation=operation, error=str(e), **fields)
        raise StorageError(f"record store {operation} failed") from e
    duration_ms = int((time.time() - start) * 1000)
    db_audit(operation, duration_ms=duration_ms, **fields)


def init_db(app) -> None:
    db.init_app(app)
    if app.config.get("AUTO_CREATE_TABLES", True):
        with app.app_context():
            db.create_all()
