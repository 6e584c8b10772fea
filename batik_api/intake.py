"""Intake pipeline for new batik contributions.

``submit`` takes the caller and the raw request fields (plus the uploaded
file part, if any) and runs: validation, caller check, storage key
derivation, blob write, classification defaults and record insert.

Images arrive either as a multipart file part named ``image`` or as a
base64 string in the ``image`` field, optionally prefixed by a data URI
(``data:image/png;base64,...``). Either way the bytes must decode as a
JPEG, PNG or GIF no larger than MAX_IMAGE_KB.
"""
from __future__ import annotations

import base64
import binascii
import io
import logging
import re
import secrets
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from flask import current_app
from PIL import Image, UnidentifiedImageError
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from batik_api.audit_logging import audit_event
from batik_api.auth import Caller
from batik_api.db_adapter import Batik, commit, db
from batik_api.errors import StorageError, Unauthorized, ValidationError
from batik_api.s3_adapter import get_blob_store
from batik_api.schemas import EntryFields, validate_fields

logger = logging.getLogger(__name__)

NOT_BATIK_NAME = "Not a Minangkabau batik"
NOT_BATIK_DESCRIPTION = "Image is not a Minangkabau batik motif"

DEFAULT_BASE64_EXTENSION = "jpg"
ALLOWED_FORMATS = {"JPEG": "image/jpeg", "PNG": "image/png", "GIF": "image/gif"}
ALLOWED_EXTENSIONS = "jpeg, png, jpg, gif"
_MIME_EXTENSIONS = {"image/jpeg": "jpg", "image/jpg": "jpg", "image/png": "png", "image/gif": "gif"}
_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.*)$", re.DOTALL)


@dataclass
class ImageUpload:
    data: bytes
    original_name: str
    content_type: str


class ImageRejected(ValueError):
    """Raised by the image readers with a client-facing message."""


def _detect_content_type(data: bytes) -> str:
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
            img.verify()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError) as e:
        raise ImageRejected("The image field must be an image.") from e
    if fmt not in ALLOWED_FORMATS:
        raise ImageRejected(f"The image field must be a file of type: {ALLOWED_EXTENSIONS}.")
    return ALLOWED_FORMATS[fmt]


def _check_size(data: bytes, max_kb: int) -> None:
    if not data:
        raise ImageRejected("The image field is required.")
    if len(data) > max_kb * 1024:
        raise ImageRejected(f"The image field must not be greater than {max_kb} kilobytes.")


def read_file_upload(upload: FileStorage, max_kb: int) -> ImageUpload:
    data = upload.read()
    _check_size(data, max_kb)
    content_type = _detect_content_type(data)
    original_name = (upload.filename or "").strip() or f"batik.{_MIME_EXTENSIONS[content_type]}"
    return ImageUpload(data=data, original_name=original_name, content_type=content_type)


def read_base64_image(encoded: str, max_kb: int, filename: str | None = None) -> ImageUpload:
    payload = encoded.strip()
    extension = DEFAULT_BASE64_EXTENSION
    match = _DATA_URI_RE.match(payload)
    if match:
        mime = match.group("mime").lower()
        if mime not in _MIME_EXTENSIONS:
            raise ImageRejected(f"The image field must be a file of type: {ALLOWED_EXTENSIONS}.")
        extension = _MIME_EXTENSIONS[mime]
        payload = match.group("data")
    try:
        data = base64.b64decode("".join(payload.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ImageRejected("The image field must be a valid base64 encoded image.") from e
    _check_size(data, max_kb)
    content_type = _detect_content_type(data)
    original_name = (filename or "").strip() or f"batik.{extension}"
    return ImageUpload(data=data, original_name=original_name, content_type=content_type)


def read_image(fields: Mapping[str, Any], upload: FileStorage | None, max_kb: int) -> ImageUpload | None:
    """Return the image carried by the request, or None when none was sent."""
    if upload is not None and upload.filename:
        return read_file_upload(upload, max_kb)
    encoded = fields.get("image")
    if isinstance(encoded, str) and encoded.strip():
        filename = fields.get("filename")
        return read_base64_image(encoded, max_kb, filename if isinstance(filename, str) else None)
    if encoded not in (None, ""):
        raise ImageRejected("The image field must be an image.")
    return None


def apply_classification_defaults(
    is_batik: bool, batik_name: str | None, description: str | None
) -> tuple[str | None, str | None]:
    """Fill name and description for images classified as not batik."""
    if is_batik:
        return batik_name, description
    return batik_name or NOT_BATIK_NAME, description or NOT_BATIK_DESCRIPTION


def clear_classification_defaults(
    batik_name: str | None, description: str | None
) -> tuple[str | None, str | None]:
    """Drop the not-batik placeholders from an entry reclassified as batik."""
    return (
        None if batik_name == NOT_BATIK_NAME else batik_name,
        None if description == NOT_BATIK_DESCRIPTION else description,
    )


def derive_storage_key(original_name: str, store, directory: str) -> tuple[str, str]:
    """Return (filename, key) for a new blob that does not overwrite an
    existing one: ``{ts}_{name}``, or ``{ts}_{token}_{name}`` on collision."""
    safe_name = (secure_filename(original_name) or "batik.jpg")[-200:]
    filename = f"{int(time.time())}_{safe_name}"
    key = f"{directory}/{filename}"
    while store.exists(key):
        filename = f"{int(time.time())}_{secrets.token_hex(6)}_{safe_name}"
        key = f"{directory}/{filename}"
    return filename, key


def store_image(image: ImageUpload, store, *, batik_id: int | None = None) -> tuple[str, str]:
    """Write the image under a fresh key; returns (filename, stored key)."""
    directory = current_app.config.get("IMAGE_DIRECTORY", "batik_images")
    filename, key = derive_storage_key(image.original_name, store, directory)
    try:
        stored_key = store.put(image.data, key, image.content_type)
    except Exception as e:
        logger.error("Blob write failed: key=%s batik_id=%s cause=%s", key, batik_id, e)
        raise StorageError("blob write failed") from e
    if not stored_key:
        logger.error("Blob write returned no key: key=%s batik_id=%s", key, batik_id)
        raise StorageError("blob write returned no key")
    return filename, stored_key


def submit(caller: Caller | None, fields: Mapping[str, Any], upload: FileStorage | None = None) -> Batik:
    max_kb = int(current_app.config.get("MAX_IMAGE_KB", 2048))

    form, errors = validate_fields(EntryFields, fields)
    image = None
    try:
        image = read_image(fields, upload, max_kb)
        if image is None:
            errors.setdefault("image", []).append("The image field is required.")
    except ImageRejected as e:
        errors.setdefault("image", []).append(str(e))
    if errors:
        raise ValidationError(errors)

    # validation runs first, so an anonymous invalid payload still gets its 422
    if caller is None:
        raise Unauthorized()

    store = get_blob_store()
    filename, stored_key = store_image(image, store)
    batik_name, description = apply_classification_defaults(form.is_batik, form.batik_name, form.description)

    batik = Batik(
        user_id=caller.id,
        filename=filename,
        path=stored_key,
        original_name=image.original_name[:255],
        is_minangkabau_batik=form.is_batik,
        batik_name=batik_name,
        description=description,
        origin=form.origin,
    )
    db.session.add(batik)
    try:
        commit("batik_insert", user_id=caller.id, path=stored_key)
    except StorageError:
        logger.warning("Record insert failed after blob write; orphan blob left at %s", stored_key)
        raise
    audit_event("batik_created", user_id=caller.id, batik_id=batik.id, path=stored_key)
    return batik
