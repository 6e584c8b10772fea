"""Optional runtime secrets loader for the batik catalog.

If the environment variable CATALOG_SECRET_ARN is present, this module
reads the referenced secret from AWS Secrets Manager and copies the keys
listed in SECRET_KEYS into os.environ, so `config.Settings` picks them up
like any other environment variable. Values already set in the
environment win.

Failures are logged and never stop the application from starting (local
development usually has no Secrets Manager access).
"""
from __future__ import annotations

import json
import logging
import os

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

SECRET_KEYS = (
    "DATABASE_URL",
    "S3_BUCKET_NAME",
    "S3_KMS_KEY_ID",
    "S3_PUBLIC_URL",
    "PUBLIC_BASE_URL",
)


def load_catalog_secrets() -> list[str]:
    """Return the names of the environment variables that were populated."""
    secret_arn = os.environ.get("CATALOG_SECRET_ARN")
    if not secret_arn:
        return []

    try:
        client = boto3.client("secretsmanager")
        resp = client.get_secret_value(SecretId=secret_arn)
    except (BotoCoreError, ClientError) as exc:
        logger.exception("Failed to fetch secret %s: %s", secret_arn, str(exc))
        return []

    secret_string = resp.get("SecretString")
    if not secret_string:
        logger.warning("Secret %s has no SecretString; skipping", secret_arn)
        return []

    try:
        data = json.loads(secret_string)
    except json.JSONDecodeError:
        logger.exception("Secret %s is not valid JSON", secret_arn)
        return []
    if not isinstance(data, dict):
        logger.warning("Secret %s is not a JSON object; skipping", secret_arn)
        return []

    loaded = []
    for key in SECRET_KEYS:
        value = data.get(key)
        if value and key not in os.environ:
            os.environ[key] = str(value)
            loaded.append(key)
    logger.info("Loaded %d catalog secret(s) from %s", len(loaded), secret_arn)
    return loaded
