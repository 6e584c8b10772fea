"""Read and owner-only mutation handlers for batik entries."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from flask import current_app
from werkzeug.datastructures import FileStorage

from batik_api.audit_logging import audit_event
from batik_api.auth import Caller, require_caller
from batik_api.db_adapter import Batik, commit, db, to_iso
from batik_api.errors import Forbidden, NotFound, ValidationError
from batik_api.intake import (
    ImageRejected,
    apply_classification_defaults,
    clear_classification_defaults,
    read_image,
    store_image,
)
from batik_api.s3_adapter import get_blob_store
from batik_api.schemas import EntryPatch, validate_fields

logger = logging.getLogger(__name__)


def serialize_entry(batik: Batik, store=None) -> dict[str, Any]:
    """Project an entry for output; `url` is derived from the storage key
    on every read and is never stored."""
    store = store or get_blob_store()
    try:
        url = store.url(batik.path)
    except Exception:
        logger.exception("Could not resolve URL for batik %s (path=%s)", batik.id, batik.path)
        url = None
    return {
        "id": batik.id,
        "user_id": batik.user_id,
        "filename": batik.filename,
        "path": batik.path,
        "original_name": batik.original_name,
        "is_minangkabau_batik": bool(batik.is_minangkabau_batik),
        "batik_name": batik.batik_name,
        "description": batik.description,
        "origin": batik.origin,
        "url": url,
        "created_at": to_iso(batik.created_at),
        "updated_at": to_iso(batik.updated_at),
    }


def delete_blob_quietly(path: str, *, batik_id: int | None = None) -> bool:
    """Best-effort blob removal; a missing blob or a store error is logged
    and never stops the record operation that follows."""
    try:
        removed = get_blob_store().delete(path)
    except Exception as e:
        logger.error("Blob delete failed: path=%s batik_id=%s cause=%s", path, batik_id, e)
        return False
    if not removed:
        logger.warning("Blob already absent: path=%s batik_id=%s", path, batik_id)
    return removed


def get(entry_id: int) -> Batik:
    batik = db.session.get(Batik, entry_id)
    if batik is None:
        raise NotFound("Batik not found.")
    return batik


def list_all() -> list[Batik]:
    return Batik.query.order_by(Batik.id.asc()).all()


def list_mine(caller: Caller | None) -> list[Batik]:
    caller = require_caller(caller)
    return Batik.query.filter_by(user_id=caller.id).order_by(Batik.id.asc()).all()


def update(
    caller: Caller | None, entry_id: int, fields: Mapping[str, Any], upload: FileStorage | None = None
) -> Batik:
    caller = require_caller(caller)
    batik = get(entry_id)
    if batik.user_id != caller.id:
        raise Forbidden("You do not have permission to update this batik.")

    patch, errors = validate_fields(EntryPatch, fields)
    image = None
    try:
        image = read_image(fields, upload, int(current_app.config.get("MAX_IMAGE_KB", 2048)))
    except ImageRejected as e:
        errors.setdefault("image", []).append(str(e))
    if errors:
        raise ValidationError(errors)

    # the new blob is written first; the old one goes only once the record points away from it
    old_path = None
    if image is not None:
        old_path = batik.path
        batik.filename, batik.path = store_image(image, get_blob_store(), batik_id=batik.id)
        batik.original_name = image.original_name[:255]

    sent = patch.model_fields_set
    was_batik = bool(batik.is_minangkabau_batik)
    if "is_minangkabau_batik" in sent:
        batik.is_minangkabau_batik = patch.is_minangkabau_batik == "true"
    for attr in ("batik_name", "description", "origin"):
        if attr in sent:
            setattr(batik, attr, getattr(patch, attr))
    if batik.is_minangkabau_batik and not was_batik:
        batik_name, description = clear_classification_defaults(batik.batik_name, batik.description)
        if "batik_name" not in sent:
            batik.batik_name = batik_name
        if "description" not in sent:
            batik.description = description
    batik.batik_name, batik.description = apply_classification_defaults(
        bool(batik.is_minangkabau_batik), batik.batik_name, batik.description
    )

    commit("batik_update", user_id=caller.id, batik_id=batik.id)
    if old_path is not None:
        delete_blob_quietly(old_path, batik_id=batik.id)
        logger.info("Replaced image of batik %s: %s -> %s", batik.id, old_path, batik.path)
    audit_event("batik_updated", user_id=caller.id, batik_id=batik.id, fields=sorted(sent))
    return batik


def delete(caller: Caller | None, entry_id: int) -> None:
    caller = require_caller(caller)
    # scoped to the owner: someone else's entry is reported exactly like a missing one
    batik = Batik.query.filter_by(id=entry_id, user_id=caller.id).first()
    if batik is None:
        raise NotFound("Batik not found.")
    delete_blob_quietly(batik.path, batik_id=batik.id)
    db.session.delete(batik)
    commit("batik_delete", user_id=caller.id, batik_id=entry_id)
    audit_event("batik_deleted", user_id=caller.id, batik_id=entry_id)


def delete_all(caller: Caller | None) -> int:
    caller = require_caller(caller)
    batiks = Batik.query.filter_by(user_id=caller.id).all()
    if not batiks:
        raise NotFound("No batik history to delete.")
    for batik in batiks:
        delete_blob_quietly(batik.path, batik_id=batik.id)
    # bulk delete bypasses ORM cascades; comments go through ON DELETE CASCADE
    deleted = Batik.query.filter_by(user_id=caller.id).delete(synchronize_session=False)
    commit("batik_delete_all", user_id=caller.id, deleted=deleted)
    db.session.expunge_all()
    audit_event("batiks_cleared", user_id=caller.id, deleted=deleted)
    return deleted
