"""
Tests for batik_api/intake.py and the POST /batiks/store route.

Covers:
- Multipart and base64 (plain and data URI) image payloads
- Classification flag validation and not-batik defaults
- Validation running before the caller check
- Collision-free storage keys for same-second uploads
- Opaque 500 responses when the blob store fails
"""

import base64
import os
import re
import struct
import zlib
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from PIL import Image
from sqlalchemy.exc import SQLAlchemyError

from batik_api import intake
from batik_api.db_adapter import Batik, db
from batik_api.intake import (
    NOT_BATIK_DESCRIPTION,
    NOT_BATIK_NAME,
    ImageRejected,
    apply_classification_defaults,
    clear_classification_defaults,
    derive_storage_key,
    read_base64_image,
)
from batik_api.reconcile import find_orphan_blobs
from batik_api.s3_adapter import LocalStorage


def png_header_only(width: int, height: int) -> bytes:
    """A PNG with a valid IHDR declaring the given size and no pixel data."""

    def chunk(kind: bytes, body: bytes) -> bytes:
        crc = zlib.crc32(kind + body) & 0xFFFFFFFF
        return struct.pack(">I", len(body)) + kind + body + struct.pack(">I", crc)

    ihdr = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", ihdr) + chunk(b"IEND", b"")


@pytest.mark.integration
class TestMultipartIntake:
    """Submitting images as multipart file parts."""

    def test_batik_entry_is_created(self, upload_entry, owner_token, jpeg_bytes, storage_root):
        response = upload_entry(owner_token, jpeg_bytes, batik_name="Motif Kawung", origin="Padang")

        assert response.status_code == 201
        body = response.get_json()
        data = body["data"]
        assert body["message"]
        assert data["batik_name"] == "Motif Kawung"
        assert data["origin"] == "Padang"
        assert data["is_minangkabau_batik"] is True
        assert data["original_name"] == "sample.jpg"
        assert data["path"].startswith("batik_images/")
        assert data["filename"].endswith("_sample.jpg")
        assert data["url"] == f"http://testserver/storage/{data['path']}"
        assert (storage_root / data["path"]).is_file()

    def test_not_batik_gets_default_name_and_description(self, upload_entry, owner_token, jpeg_bytes):
        response = upload_entry(owner_token, jpeg_bytes, is_minangkabau_batik="false")

        assert response.status_code == 201
        data = response.get_json()["data"]
        assert data["is_minangkabau_batik"] is False
        assert data["batik_name"] == NOT_BATIK_NAME
        assert data["description"] == NOT_BATIK_DESCRIPTION

    def test_not_batik_keeps_supplied_text(self, upload_entry, owner_token, jpeg_bytes):
        response = upload_entry(
            owner_token, jpeg_bytes, is_minangkabau_batik="false", batik_name="Songket", description="Woven cloth"
        )

        data = response.get_json()["data"]
        assert data["batik_name"] == "Songket"
        assert data["description"] == "Woven cloth"

    def test_batik_without_name_stays_null(self, upload_entry, owner_token, jpeg_bytes):
        response = upload_entry(owner_token, jpeg_bytes)

        assert response.status_code == 201
        assert response.get_json()["data"]["batik_name"] is None

    @pytest.mark.parametrize("flag", ["maybe", "True", "1", "yes", ""])
    def test_classification_flag_must_be_literal(self, upload_entry, owner_token, jpeg_bytes, flag):
        response = upload_entry(owner_token, jpeg_bytes, is_minangkabau_batik=flag)

        assert response.status_code == 422
        assert "is_minangkabau_batik" in response.get_json()["errors"]

    def test_name_longer_than_255_is_rejected(self, upload_entry, owner_token, jpeg_bytes):
        response = upload_entry(owner_token, jpeg_bytes, batik_name="x" * 256)

        assert response.status_code == 422
        assert "batik_name" in response.get_json()["errors"]

    def test_non_image_file_is_rejected(self, upload_entry, owner_token):
        response = upload_entry(owner_token, b"definitely not an image", filename="notes.jpg")

        assert response.status_code == 422
        assert response.get_json()["errors"]["image"] == ["The image field must be an image."]

    def test_disallowed_format_is_rejected(self, upload_entry, owner_token, image_factory):
        response = upload_entry(owner_token, image_factory("BMP"), filename="sample.bmp")

        assert response.status_code == 422
        assert "must be a file of type" in response.get_json()["errors"]["image"][0]

    def test_oversized_image_is_rejected(self, upload_entry, owner_token, tmp_path):
        noise = Image.frombytes("RGB", (200, 200), os.urandom(200 * 200 * 3))
        path = tmp_path / "noise.png"
        noise.save(path, format="PNG")

        response = upload_entry(owner_token, path.read_bytes(), filename="noise.png")

        assert response.status_code == 422
        assert "kilobytes" in response.get_json()["errors"]["image"][0]

    def test_missing_image_is_rejected(self, client, owner_token, auth_header):
        response = client.post(
            "/batiks/store",
            data={"is_minangkabau_batik": "true"},
            headers=auth_header(owner_token),
            content_type="multipart/form-data",
        )

        assert response.status_code == 422
        assert response.get_json()["errors"]["image"] == ["The image field is required."]

    def test_decompression_bomb_is_rejected(self, upload_entry, owner_token):
        response = upload_entry(owner_token, png_header_only(30000, 30000), filename="huge.png")

        assert response.status_code == 422
        assert response.get_json()["errors"]["image"] == ["The image field must be an image."]


@pytest.mark.integration
class TestValidationBeforeAuthorization:
    """Invalid payloads are reported before the missing caller."""

    def test_invalid_payload_without_token_gets_422(self, client):
        response = client.post("/batiks/store", json={"is_minangkabau_batik": "maybe"})

        assert response.status_code == 422
        errors = response.get_json()["errors"]
        assert "is_minangkabau_batik" in errors
        assert "image" in errors

    def test_valid_payload_without_token_gets_401(self, upload_entry, jpeg_bytes, storage_root):
        response = upload_entry(None, jpeg_bytes)

        assert response.status_code == 401
        assert response.get_json() == {"message": "Unauthenticated."}
        assert not any(p.is_file() for p in storage_root.rglob("*"))

    def test_unknown_token_gets_401(self, upload_entry, jpeg_bytes):
        response = upload_entry("not-a-real-token", jpeg_bytes)

        assert response.status_code == 401


@pytest.mark.integration
class TestBase64Intake:
    """Submitting images as base64 strings in a JSON body."""

    def test_data_uri_sets_extension(self, client, owner_token, auth_header, png_data_uri):
        response = client.post(
            "/batiks/store",
            json={"image": png_data_uri, "is_minangkabau_batik": "false"},
            headers=auth_header(owner_token),
        )

        assert response.status_code == 201
        data = response.get_json()["data"]
        assert data["original_name"] == "batik.png"
        assert data["filename"].endswith("_batik.png")
        assert data["batik_name"] == NOT_BATIK_NAME

    def test_plain_base64_uses_default_extension(self, client, owner_token, auth_header, jpeg_bytes):
        response = client.post(
            "/batiks/store",
            json={"image": base64.b64encode(jpeg_bytes).decode("ascii"), "is_minangkabau_batik": "true"},
            headers=auth_header(owner_token),
        )

        assert response.status_code == 201
        assert response.get_json()["data"]["original_name"] == "batik.jpg"

    def test_filename_field_names_the_upload(self, client, owner_token, auth_header, png_data_uri):
        response = client.post(
            "/batiks/store",
            json={"image": png_data_uri, "filename": "kawung.png", "is_minangkabau_batik": "true"},
            headers=auth_header(owner_token),
        )

        assert response.get_json()["data"]["original_name"] == "kawung.png"

    def test_invalid_base64_is_rejected(self, client, owner_token, auth_header):
        response = client.post(
            "/batiks/store",
            json={"image": "%%%not-base64%%%", "is_minangkabau_batik": "true"},
            headers=auth_header(owner_token),
        )

        assert response.status_code == 422
        assert "base64" in response.get_json()["errors"]["image"][0]

    def test_non_string_image_is_rejected(self, client, owner_token, auth_header):
        response = client.post(
            "/batiks/store",
            json={"image": 12345, "is_minangkabau_batik": "true"},
            headers=auth_header(owner_token),
        )

        assert response.status_code == 422
        assert response.get_json()["errors"]["image"] == ["The image field must be an image."]

    def test_unsupported_data_uri_type(self, png_bytes):
        encoded = "data:image/webp;base64," + base64.b64encode(png_bytes).decode("ascii")

        with pytest.raises(ImageRejected):
            read_base64_image(encoded, max_kb=64)


@pytest.mark.integration
class TestStorageKeys:
    """Same-second uploads never overwrite each other."""

    def test_same_second_uploads_get_distinct_keys(self, monkeypatch, upload_entry, owner_token, jpeg_bytes):
        monkeypatch.setattr(intake, "time", SimpleNamespace(time=lambda: 1700000000.0))

        first = upload_entry(owner_token, jpeg_bytes).get_json()["data"]
        second = upload_entry(owner_token, jpeg_bytes).get_json()["data"]

        assert first["path"] == "batik_images/1700000000_sample.jpg"
        assert second["path"] != first["path"]
        assert re.fullmatch(r"batik_images/1700000000_[0-9a-f]{12}_sample\.jpg", second["path"])

    def test_derive_storage_key_skips_existing_blob(self, monkeypatch, tmp_path):
        monkeypatch.setattr(intake, "time", SimpleNamespace(time=lambda: 1700000000.0))
        store = LocalStorage(tmp_path)
        store.put(b"x", "batik_images/1700000000_kawung.jpg")

        filename, key = derive_storage_key("kawung.jpg", store, "batik_images")

        assert key == f"batik_images/{filename}"
        assert key != "batik_images/1700000000_kawung.jpg"
        assert filename.endswith("_kawung.jpg")

    def test_derive_storage_key_sanitizes_name(self, tmp_path):
        store = LocalStorage(tmp_path)

        filename, key = derive_storage_key("../../etc/motif kawung.jpg", store, "batik_images")

        assert ".." not in key
        assert filename.endswith("_etc_motif_kawung.jpg")


@pytest.mark.integration
class TestBlobStoreFailures:
    """Blob store failures surface as opaque server errors."""

    def test_write_error_returns_opaque_500(self, app, client, upload_entry, owner_token, jpeg_bytes):
        def broken_put(*args, **kwargs):
            raise OSError("disk full at /var/secret/path")

        app.extensions["blob_store"].put = broken_put

        response = upload_entry(owner_token, jpeg_bytes)

        assert response.status_code == 500
        assert response.get_json() == {"message": "Unexpected server error."}
        assert client.get("/batiks").get_json() == []

    def test_empty_key_returns_500(self, app, upload_entry, owner_token, jpeg_bytes):
        app.extensions["blob_store"].put = lambda *args, **kwargs: ""

        response = upload_entry(owner_token, jpeg_bytes)

        assert response.status_code == 500

    def test_insert_failure_leaves_blob_for_the_sweep(
        self, app, client, upload_entry, owner_token, jpeg_bytes, storage_root
    ):
        real_commit = db.session.commit

        def failing_insert():
            if any(isinstance(obj, Batik) for obj in db.session.new):
                raise SQLAlchemyError("database is locked")
            return real_commit()

        with patch.object(db.session, "commit", side_effect=failing_insert):
            response = upload_entry(owner_token, jpeg_bytes)

        assert response.status_code == 500
        assert response.get_json() == {"message": "Unexpected server error."}
        assert client.get("/batiks").get_json() == []

        blobs = [p for p in (storage_root / "batik_images").iterdir() if p.is_file()]
        assert len(blobs) == 1
        with app.app_context():
            assert find_orphan_blobs() == [f"batik_images/{blobs[0].name}"]


class TestClassificationDefaults:
    def test_batik_is_left_alone(self):
        assert apply_classification_defaults(True, None, None) == (None, None)

    def test_not_batik_fills_missing_text(self):
        assert apply_classification_defaults(False, None, "kept") == (NOT_BATIK_NAME, "kept")


class TestClearingDefaults:
    def test_placeholders_are_dropped(self):
        assert clear_classification_defaults(NOT_BATIK_NAME, NOT_BATIK_DESCRIPTION) == (None, None)

    def test_user_text_is_kept(self):
        assert clear_classification_defaults("Motif Pucuak Rabuang", NOT_BATIK_DESCRIPTION) == (
            "Motif Pucuak Rabuang",
            None,
        )
