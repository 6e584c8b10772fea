"""
Shared pytest fixtures for the batik catalog test suite.

Every test gets its own Flask app backed by a SQLite file database and a
local blob directory under pytest's tmp_path, plus helpers for registering
users and generating real image bytes with Pillow.
"""

import base64
import io
from typing import Any, Dict, Optional

import pytest
from PIL import Image

from batik_api.app import create_app
from batik_api.db_adapter import db


# ==================== IMAGE FIXTURES ====================


def make_image_bytes(fmt: str = "JPEG", size: tuple = (8, 8), color: tuple = (150, 40, 20)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image_bytes("JPEG")


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes("PNG")


@pytest.fixture
def image_factory():
    return make_image_bytes


@pytest.fixture
def png_data_uri(png_bytes: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png_bytes).decode("ascii")


# ==================== APP FIXTURES ====================


@pytest.fixture
def app_config(tmp_path) -> Dict[str, Any]:
    return {
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'catalog.db'}",
        "UPLOAD_DIR": str(tmp_path / "storage"),
        "PUBLIC_BASE_URL": "http://testserver",
        "USE_S3": False,
        "RATELIMIT_ENABLED": False,
        "MAX_IMAGE_KB": 64,
    }


@pytest.fixture
def app(app_config):
    """Create Flask app for testing."""
    application = create_app(app_config)
    yield application
    with application.app_context():
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def storage_root(app):
    return app.extensions["blob_store"].root


# ==================== AUTH FIXTURES ====================


def bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_header():
    return bearer


@pytest.fixture
def register_user(client):
    """Return a function that registers a user and returns its bearer token."""

    def _register(name: str = "Siti", email: str = "siti@example.com", password: str = "rendang123") -> str:
        response = client.post(
            "/register",
            json={
                "name": name,
                "email": email,
                "password": password,
                "password_confirmation": password,
            },
        )
        assert response.status_code == 201, response.get_json()
        return response.get_json()["access_token"]

    return _register


@pytest.fixture
def owner_token(register_user) -> str:
    return register_user("Siti", "siti@example.com")


@pytest.fixture
def other_token(register_user) -> str:
    return register_user("Budi", "budi@example.com")


# ==================== ENTRY FIXTURES ====================


@pytest.fixture
def upload_entry(client):
    """Return a function that posts a multipart intake request."""

    def _upload(token: Optional[str], image: bytes, filename: str = "sample.jpg", **fields: str):
        data = {"image": (io.BytesIO(image), filename), "is_minangkabau_batik": "true"}
        data.update(fields)
        return client.post(
            "/batiks/store",
            data=data,
            headers=bearer(token) if token else {},
            content_type="multipart/form-data",
        )

    return _upload


@pytest.fixture
def entry(upload_entry, owner_token, jpeg_bytes) -> Dict[str, Any]:
    response = upload_entry(owner_token, jpeg_bytes, batik_name="Motif Kawung")
    assert response.status_code == 201, response.get_json()
    return response.get_json()["data"]
