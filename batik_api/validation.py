"""Request-level input guards.

Conservative checks that run before any route:
- Enforces MAX_CONTENT_LENGTH (redundant with Flask but explicit)
- Detects malformed JSON early for JSON requests
- Limits query parameter and path parameter lengths
- Limits string lengths inside JSON payloads, except for the fields listed
  in JSON_BLOB_FIELDS (base64 images and free text whose limits, if any,
  belong to the field validators)

Field-level validation of catalog payloads lives in `schemas.py`; these
guards only reject requests that no route could accept.
"""
from http import HTTPStatus
from typing import Any

from flask import jsonify, request

# top-level JSON keys exempt from MAX_JSON_STRING_LENGTH
JSON_BLOB_FIELDS = ("image", "description", "content")


def _iter_strings(obj: Any, skip_keys: frozenset[str] = frozenset()):
    """Yield all string values nested within obj (dict/list/str), ignoring
    values stored under top-level keys listed in skip_keys."""
    if isinstance(obj, str):
        yield obj
    elif isinstance(obj, dict):
        for k, v in obj.items():
            if k in skip_keys:
                continue
            yield from _iter_strings(v)
    elif isinstance(obj, list):
        for v in obj:
            yield from _iter_strings(v)


def _reject(message: str, status: HTTPStatus):
    resp = jsonify({"message": message})
    resp.status_code = status
    return resp


def init_validation(app) -> None:
    max_qlen = int(app.config.get("MAX_QUERY_PARAM_LENGTH", 512))
    max_jslen = int(app.config.get("MAX_JSON_STRING_LENGTH", 4096))
    blob_fields = frozenset(app.config.get("JSON_BLOB_FIELDS", JSON_BLOB_FIELDS))

    @app.before_request
    def _validate_request():
        cl = request.content_length
        if cl is not None and cl > app.config.get("MAX_CONTENT_LENGTH", 4 * 1024 * 1024):
            return _reject("Request payload too large", HTTPStatus.REQUEST_ENTITY_TOO_LARGE)

        for k, v in request.args.items():
            if v is not None and len(v) > max_qlen:
                return _reject(f"Query parameter '{k}' is too long", HTTPStatus.BAD_REQUEST)

        for k, v in (request.view_args or {}).items():
            if isinstance(v, str) and len(v) > 256:
                return _reject(f"Path parameter '{k}' is too long", HTTPStatus.BAD_REQUEST)

        if request.method in ("POST", "PUT", "PATCH") and (
            request.content_type and "application/json" in request.content_type
        ):
            payload = request.get_json(silent=True)
            if (cl and cl > 0) and payload is None:
                return _reject("Malformed JSON payload", HTTPStatus.BAD_REQUEST)
            if isinstance(payload, (dict, list)):
                for s in _iter_strings(payload, blob_fields):
                    if len(s) > max_jslen:
                        return _reject("JSON field too long", HTTPStatus.BAD_REQUEST)
        return None
