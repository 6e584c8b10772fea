from typing import Any

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    env: str = "dev"
    log_level: str = "INFO"

    # Record store
    database_url: str = "sqlite:///batik.db"

    # Blob store
    upload_dir: str = "storage"
    image_directory: str = "batik_images"
    public_base_url: str = ""
    use_s3: bool = False
    s3_bucket_name: str | None = None
    s3_region: str = Field(default="us-east-2", validation_alias=AliasChoices("S3_REGION", "AWS_REGION"))
    s3_prefix: str = "uploads"
    s3_sse: str | None = None
    s3_kms_key_id: str | None = None
    s3_acl: str | None = None
    s3_public_url: str | None = None
    presigned_url_ttl: int = 3600

    # Request limits
    max_image_kb: int = 2048
    max_comment_length: int = 1000
    max_content_length: int = 4 * 1024 * 1024

    # HTTP behavior
    allowed_origins: str = ""
    rate_limit_default: str = "360 per 60 seconds"
    login_rate_limit: str = "20 per minute"

    @field_validator("database_url")
    @classmethod
    def _normalize_database_url(cls, value: str) -> str:
        # Heroku/Render style URLs are not accepted by SQLAlchemy 1.4+
        if value.startswith("postgres://"):
            return value.replace("postgres://", "postgresql://", 1)
        return value

    def flask_config(self) -> dict[str, Any]:
        return {
            "ENV_NAME": self.env,
            "LOG_LEVEL": self.log_level.upper(),
            "SQLALCHEMY_DATABASE_URI": self.database_url,
            "SQLALCHEMY_TRACK_MODIFICATIONS": False,
            "UPLOAD_DIR": self.upload_dir,
            "IMAGE_DIRECTORY": self.image_directory,
            "PUBLIC_BASE_URL": self.public_base_url.rstrip("/"),
            "USE_S3": self.use_s3,
            "S3_BUCKET_NAME": self.s3_bucket_name,
            "S3_REGION": self.s3_region,
            "S3_PREFIX": self.s3_prefix.strip("/"),
            "S3_SSE": self.s3_sse,
            "S3_KMS_KEY_ID": self.s3_kms_key_id,
            "S3_ACL": self.s3_acl,
            "S3_PUBLIC_URL": self.s3_public_url,
            "PRESIGNED_URL_TTL": self.presigned_url_ttl,
            "MAX_IMAGE_KB": self.max_image_kb,
            "MAX_COMMENT_LENGTH": self.max_comment_length,
            "MAX_CONTENT_LENGTH": self.max_content_length,
            "ALLOWED_ORIGINS": self.allowed_origins,
            "RATE_LIMIT_DEFAULT": self.rate_limit_default,
            "LOGIN_RATE_LIMIT": self.login_rate_limit,
        }


def load_settings() -> Settings:
    return Settings()
