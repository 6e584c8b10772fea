from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from http import HTTPStatus
from typing import Any

import yaml
from flask import Blueprint, Response, g, jsonify, request, send_from_directory
from werkzeug.datastructures import FileStorage

from batik_api import auth, comments, entries, intake
from batik_api.auth import Caller
from batik_api.errors import NotFound
from batik_api.rate_lim import limiter, login_limit
from batik_api.s3_adapter import LocalStorage, get_blob_store, normalize_key

logger = logging.getLogger(__name__)

blueprint = Blueprint("catalog", __name__)

OPENAPI_PATH = os.path.join(os.path.dirname(__file__), "openapi.yaml")


# -------------------- Request helpers --------------------


def _json_body() -> dict[str, Any]:
    if request.method in ("GET", "DELETE"):
        return {}
    payload = request.get_json(silent=True)
    if payload is None or not isinstance(payload, dict):
        return {}
    return payload


def _request_fields() -> tuple[Mapping[str, Any], FileStorage | None]:
    """Return the submitted fields and the multipart `image` part, if any.

    Multipart and urlencoded forms are read from `request.form`; anything
    else is treated as a JSON object (base64 images travel this way).
    """
    if request.mimetype in ("multipart/form-data", "application/x-www-form-urlencoded"):
        return request.form.to_dict(), request.files.get("image")
    return _json_body(), None


def _current_caller() -> Caller | None:
    header = request.headers.get("Authorization", "") or request.headers.get("X-Authorization", "")
    caller = auth.resolve_caller(header)
    g.caller_id = caller.id if caller else None
    return caller


def _entry_response(message: str, batik, status: HTTPStatus = HTTPStatus.OK) -> tuple[Response, int]:
    return jsonify({"message": message, "data": entries.serialize_entry(batik)}), status


# -------------------- Health --------------------


@blueprint.route("/health", methods=["GET"])
def health() -> tuple[Response, int]:
    return jsonify({"ok": True}), 200


@blueprint.route("/openapi", methods=["GET"])
def get_openapi_spec() -> tuple[Response, int]:
    """Return the OpenAPI specification."""
    try:
        with open(OPENAPI_PATH, encoding="utf-8") as f:
            openapi_spec = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.error("Failed to load OpenAPI specification: %s", e)
        return jsonify({"message": "OpenAPI specification not available"}), 500
    return jsonify(openapi_spec), 200


# -------------------- Authentication --------------------


def _token_response(user, token: str, message: str, status: HTTPStatus) -> tuple[Response, int]:
    body = {
        "access_token": token,
        "token_type": "Bearer",
        "user": user.to_dict(),
        "message": message,
    }
    return jsonify(body), status


@blueprint.route("/register", methods=["POST"])
@limiter.limit(login_limit)
def register_route() -> tuple[Response, int]:
    fields, _ = _request_fields()
    user, token = auth.register(fields)
    return _token_response(user, token, "User registered successfully!", HTTPStatus.CREATED)


@blueprint.route("/login", methods=["POST"])
@limiter.limit(login_limit)
def login_route() -> tuple[Response, int]:
    fields, _ = _request_fields()
    user, token = auth.login(fields)
    return _token_response(user, token, "Login successful!", HTTPStatus.OK)


@blueprint.route("/logout", methods=["POST"])
def logout_route() -> tuple[Response, int]:
    auth.revoke(_current_caller())
    return jsonify({"message": "Logged out successfully."}), 200


@blueprint.route("/user", methods=["GET"])
def current_user_route() -> tuple[Response, int]:
    user = auth.current_user(_current_caller())
    return jsonify(user.to_dict()), 200


# -------------------- Batik entries --------------------


@blueprint.route("/batiks", methods=["GET"])
def list_batiks_route() -> tuple[Response, int]:
    store = get_blob_store()
    return jsonify([entries.serialize_entry(b, store) for b in entries.list_all()]), 200


@blueprint.route("/batiks/<int:batik_id>", methods=["GET"])
def get_batik_route(batik_id: int) -> tuple[Response, int]:
    return _entry_response("Batik retrieved.", entries.get(batik_id))


@blueprint.route("/batiks/store", methods=["POST"])
def store_batik_route() -> tuple[Response, int]:
    fields, upload = _request_fields()
    batik = intake.submit(_current_caller(), fields, upload)
    return _entry_response("Batik saved successfully!", batik, HTTPStatus.CREATED)


@blueprint.route("/batiks/<int:batik_id>", methods=["PUT", "PATCH"])
def update_batik_route(batik_id: int) -> tuple[Response, int]:
    fields, upload = _request_fields()
    batik = entries.update(_current_caller(), batik_id, fields, upload)
    return _entry_response("Batik updated successfully.", batik)


@blueprint.route("/batiks/<int:batik_id>", methods=["DELETE"])
def delete_batik_route(batik_id: int) -> tuple[Response, int]:
    entries.delete(_current_caller(), batik_id)
    return jsonify({"message": "Batik deleted successfully."}), 200


@blueprint.route("/histories/clear-all", methods=["DELETE"])
def clear_history_route() -> tuple[Response, int]:
    deleted = entries.delete_all(_current_caller())
    return jsonify({"message": "All batik history deleted successfully.", "deleted": deleted}), 200


@blueprint.route("/histories", methods=["GET"])
@blueprint.route("/my-batiks", methods=["GET"])
def my_batiks_route() -> tuple[Response, int]:
    mine = entries.list_mine(_current_caller())
    store = get_blob_store()
    return jsonify([entries.serialize_entry(b, store) for b in mine]), 200


# -------------------- Comments --------------------


@blueprint.route("/batiks/<int:batik_id>/comments", methods=["GET"])
def list_comments_route(batik_id: int) -> tuple[Response, int]:
    return jsonify([c.to_dict() for c in comments.list_comments(batik_id)]), 200


@blueprint.route("/batiks/<int:batik_id>/comments", methods=["POST"])
def add_comment_route(batik_id: int) -> tuple[Response, int]:
    fields, _ = _request_fields()
    comment = comments.add_comment(_current_caller(), batik_id, fields)
    return jsonify({"message": "Comment added successfully.", "data": comment.to_dict()}), 201


@blueprint.route("/comments/<int:comment_id>", methods=["DELETE"])
def delete_comment_route(comment_id: int) -> tuple[Response, int]:
    comments.remove_comment(_current_caller(), comment_id)
    return jsonify({"message": "Comment deleted successfully."}), 200


# -------------------- Local blob serving --------------------


@blueprint.route("/storage/<path:key>", methods=["GET"])
def serve_blob_route(key: str) -> Response:
    store = get_blob_store()
    if not isinstance(store, LocalStorage):
        raise NotFound("File not found.")
    try:
        safe_key = normalize_key(key)
    except ValueError as e:
        raise NotFound("File not found.") from e
    if not store.exists(safe_key):
        raise NotFound("File not found.")
    return send_from_directory(store.root, safe_key)
