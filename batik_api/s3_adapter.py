"""
Blob storage for uploaded batik images.

Two interchangeable backends share one contract (`exists`, `put`, `delete`,
`url`, `list_keys`), keyed by a relative storage key such as
``batik_images/1700000000_kawung.jpg``:

- S3Storage: used when USE_S3=true and a bucket is configured. Keys are
  placed under S3_PREFIX; optional server-side encryption and ACL.
- LocalStorage: files under UPLOAD_DIR, served back by the API at
  /storage/<key>. This is the default for local development and tests.

Config keys (Flask app config, see config.Settings):
- USE_S3, S3_BUCKET_NAME, S3_REGION, S3_PREFIX
- S3_SSE=aws:kms|AES256, S3_KMS_KEY_ID, S3_ACL
- S3_PUBLIC_URL (public base URL of the bucket; presigned URLs otherwise)
- PRESIGNED_URL_TTL
- UPLOAD_DIR, PUBLIC_BASE_URL
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any, BinaryIO

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from flask import current_app

logger = logging.getLogger(__name__)

_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")
_CONTENT_TYPE_RE = re.compile(r"^[A-Za-z0-9!#$&^_.+\-]+/[A-Za-z0-9!#$&^_.+\-]+$")


def normalize_key(relpath: str) -> str:
    """Validate a relative storage key and return it in canonical form."""
    rel = (relpath or "").strip().replace("\\", "/").lstrip("/")
    parts = [p for p in rel.split("/") if p]
    if not parts:
        raise ValueError("Invalid storage key: empty")
    if any(p in (".", "..") for p in parts):
        raise ValueError("Invalid storage key: path traversal not allowed")
    for p in parts:
        if not _SEGMENT_RE.match(p):
            raise ValueError("Invalid storage key: contains unexpected characters")
        if len(p) > 255:
            raise ValueError("Invalid storage key: segment too long")
    return "/".join(parts)


def _as_bytes(data: bytes | BinaryIO) -> bytes:
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    return data.read()


class LocalStorage:
    """Blob store backed by a directory on the local filesystem."""

    backend = "local"

    def __init__(self, root: str | Path, public_base_url: str = "") -> None:
        self.root = Path(root).resolve()
        self.public_base_url = public_base_url.rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.root / normalize_key(key)

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def put(self, data: bytes | BinaryIO, key: str, content_type: str | None = None) -> str:
        safe_key = normalize_key(key)
        dest = self.root / safe_key
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(_as_bytes(data))
        logger.info("LocalStorage.put: key=%s bytes=%d", safe_key, dest.stat().st_size)
        return safe_key

    def delete(self, key: str) -> bool:
        """Remove the blob; returns False when it was already absent."""
        dest = self._path(key)
        if not dest.is_file():
            return False
        dest.unlink()
        logger.info("LocalStorage.delete: key=%s", key)
        return True

    def url(self, key: str) -> str:
        return f"{self.public_base_url}/storage/{normalize_key(key)}"

    def list_keys(self, prefix: str = "") -> Iterator[str]:
        base = self.root / normalize_key(prefix) if prefix else self.root
        if not base.is_dir():
            return
        for p in sorted(base.rglob("*")):
            if p.is_file():
                yield p.relative_to(self.root).as_posix()


class S3Storage:
    """Blob store backed by an S3 bucket."""

    backend = "s3"

    def __init__(
        self,
        bucket: str,
        *,
        region: str = "us-east-2",
        prefix: str = "uploads",
        sse: str | None = None,
        kms_key_id: str | None = None,
        acl: str | None = None,
        public_url: str | None = None,
        presigned_ttl: int = 3600,
        client: Any = None,
    ) -> None:
        if not bucket:
            raise ValueError("S3Storage requires a bucket name")
        self.bucket = bucket
        self.prefix = (prefix or "").strip("/")
        self.sse = sse
        self.kms_key_id = kms_key_id
        self.acl = acl
        self.public_url = (public_url or "").rstrip("/")
        self.presigned_ttl = presigned_ttl
        self.client = client or boto3.client("s3", region_name=region)
        logger.info("S3 enabled: bucket=%s region=%s prefix=%s", bucket, region, self.prefix)

    def _key(self, relpath: str) -> str:
        key = normalize_key(relpath)
        return f"{self.prefix}/{key}" if self.prefix else key

    def _relative(self, full_key: str) -> str:
        if self.prefix and full_key.startswith(self.prefix + "/"):
            return full_key[len(self.prefix) + 1:]
        return full_key

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=self._key(key))
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in ("404", "NoSuchKey", "NotFound"):
                return False
            raise
        return True

    def put(self, data: bytes | BinaryIO, key: str, content_type: str | None = None) -> str:
        safe_key = self._key(key)
        params: dict[str, Any] = {"Bucket": self.bucket, "Key": safe_key, "Body": _as_bytes(data)}
        if content_type:
            ct = str(content_type).strip()
            if len(ct) > 255 or not _CONTENT_TYPE_RE.match(ct):
                logger.warning("S3Storage.put: rejecting malformed content_type: %s", content_type)
                raise ValueError("Malformed content_type")
            params["ContentType"] = ct
        if self.sse:
            params["ServerSideEncryption"] = self.sse
            if self.sse == "aws:kms" and self.kms_key_id:
                params["SSEKMSKeyId"] = self.kms_key_id
        if self.acl:
            params["ACL"] = self.acl
        logger.info("S3Storage.put: bucket=%s key=%s", self.bucket, safe_key)
        try:
            self.client.put_object(**params)
        except (BotoCoreError, ClientError) as e:
            safe_params = {k: v for k, v in params.items() if k != "Body"}
            logger.error("S3 put_object failed: %s | params=%s", e, safe_params)
            raise
        return self._relative(safe_key)

    def delete(self, key: str) -> bool:
        """Remove the blob; returns False when it was already absent."""
        if not self.exists(key):
            return False
        self.client.delete_object(Bucket=self.bucket, Key=self._key(key))
        logger.info("S3Storage.delete: bucket=%s key=%s", self.bucket, key)
        return True

    def url(self, key: str) -> str:
        safe_key = self._key(key)
        if self.public_url:
            return f"{self.public_url}/{safe_key}"
        return self.client.generate_presigned_url(
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": safe_key},
            ExpiresIn=self.presigned_ttl,
        )

    def list_keys(self, prefix: str = "") -> Iterator[str]:
        full_prefix = self._key(prefix) if prefix else self.prefix
        paginator = self.client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=full_prefix):
            for obj in page.get("Contents", []):
                yield self._relative(obj["Key"])


def build_blob_store(config: Mapping[str, Any]) -> LocalStorage | S3Storage:
    """Pick the blob store backend from app config.

    S3 is used only when USE_S3 is on and a bucket is named; a failure to
    create the S3 client falls back to local storage with an error log.
    """
    if config.get("USE_S3") and config.get("S3_BUCKET_NAME"):
        try:
            return S3Storage(
                config["S3_BUCKET_NAME"],
                region=config.get("S3_REGION") or "us-east-2",
                prefix=config.get("S3_PREFIX") or "",
                sse=config.get("S3_SSE"),
                kms_key_id=config.get("S3_KMS_KEY_ID"),
                acl=config.get("S3_ACL"),
                public_url=config.get("S3_PUBLIC_URL"),
                presigned_ttl=int(config.get("PRESIGNED_URL_TTL") or 3600),
                client=config.get("S3_CLIENT"),
            )
        except (BotoCoreError, ValueError):
            logger.exception("Failed to initialize S3 client; falling back to local storage")
    elif config.get("USE_S3"):
        logger.warning("USE_S3 is set but S3_BUCKET_NAME is missing; using local storage")
    return LocalStorage(config.get("UPLOAD_DIR") or "storage", config.get("PUBLIC_BASE_URL") or "")


def get_blob_store() -> LocalStorage | S3Storage:
    return current_app.extensions["blob_store"]
