"""Error taxonomy for the catalog handlers and its JSON rendering.

Handler functions raise these exceptions; `register_error_handlers` turns
them into HTTP responses. Server-side failures (`StorageError` and anything
unexpected) are rendered with an opaque message: the cause is logged where
the failure happens, never sent to the client.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from http import HTTPStatus

from flask import jsonify
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)

__all__ = [
    "CatalogError",
    "ValidationError",
    "Unauthorized",
    "Forbidden",
    "NotFound",
    "StorageError",
    "register_error_handlers",
]

OPAQUE_SERVER_MESSAGE = "Unexpected server error."


class CatalogError(Exception):
    """Base exception for failures surfaced to API callers."""

    status = HTTPStatus.INTERNAL_SERVER_ERROR
    default_message = OPAQUE_SERVER_MESSAGE

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"message": self.message}


class ValidationError(CatalogError):
    """Raised with field-level messages when a payload fails validation."""

    status = HTTPStatus.UNPROCESSABLE_ENTITY
    default_message = "The given data was invalid."

    def __init__(self, errors: Mapping[str, Sequence[str]], message: str | None = None) -> None:
        super().__init__(message)
        self.errors = {field: list(msgs) for field, msgs in errors.items()}

    def to_dict(self) -> dict:
        return {"message": self.message, "errors": self.errors}


class Unauthorized(CatalogError):
    status = HTTPStatus.UNAUTHORIZED
    default_message = "Unauthenticated."


class Forbidden(CatalogError):
    status = HTTPStatus.FORBIDDEN
    default_message = "You do not have permission to modify this resource."


class NotFound(CatalogError):
    status = HTTPStatus.NOT_FOUND
    default_message = "Resource not found."


class StorageError(CatalogError):
    """Blob store or record store failure; always rendered as an opaque 500."""

    def to_dict(self) -> dict:
        return {"message": OPAQUE_SERVER_MESSAGE}


def register_error_handlers(app) -> None:
    @app.errorhandler(CatalogError)
    def _catalog_error(exc: CatalogError):
        return jsonify(exc.to_dict()), int(exc.status)

    @app.errorhandler(HTTPException)
    def _http_error(exc: HTTPException):
        return jsonify({"message": exc.description}), exc.code or 500

    @app.errorhandler(Exception)
    def _unexpected_error(exc: Exception):
        logger.exception("Unhandled error while serving request: %s", exc)
        return jsonify({"message": OPAQUE_SERVER_MESSAGE}), HTTPStatus.INTERNAL_SERVER_ERROR
