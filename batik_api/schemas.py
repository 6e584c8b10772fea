"""Request schemas for the catalog API.

Each schema validates one kind of payload; `require_fields` runs a schema
and converts pydantic's errors into the field-level message map returned by
422 responses (``{"field": ["message", ...]}``).
"""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationInfo, field_validator
from pydantic import ValidationError as PydanticValidationError

from batik_api.errors import ValidationError

ClassificationFlag = Literal["true", "false"]


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class EntryFields(BaseModel):
    """Metadata submitted with a new batik image."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    is_minangkabau_batik: ClassificationFlag
    batik_name: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    origin: Optional[str] = Field(default=None, max_length=255)

    @field_validator("batik_name", "description", "origin", mode="before")
    @classmethod
    def blank_text_to_none(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @property
    def is_batik(self) -> bool:
        return self.is_minangkabau_batik == "true"


class EntryPatch(BaseModel):
    """Partial update of a batik entry; only fields that were sent are applied."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    is_minangkabau_batik: Optional[ClassificationFlag] = None
    batik_name: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    origin: Optional[str] = Field(default=None, max_length=255)

    @field_validator("batik_name", "description", "origin", mode="before")
    @classmethod
    def blank_text_to_none(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("is_minangkabau_batik", mode="before")
    @classmethod
    def flag_not_null(cls, value: Any) -> Any:
        # an explicit null would otherwise pass as "not sent"
        if value is None:
            raise ValueError("classification flag cannot be null")
        return value


class CommentFields(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    content: str = Field(min_length=1)


class RegisterFields(BaseModel):
    # passwords are taken verbatim, so no global whitespace stripping here
    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(min_length=8)
    password_confirmation: Optional[str] = Field(default=None, validate_default=True)

    @field_validator("name", "email", mode="before")
    @classmethod
    def strip_identity(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("password_confirmation")
    @classmethod
    def confirmation_matches(cls, value: Optional[str], info: ValidationInfo) -> Optional[str]:
        if "password" in info.data and value != info.data["password"]:
            raise ValueError("confirmation does not match")
        return value


class LoginFields(BaseModel):
    model_config = ConfigDict(extra="ignore")

    email: EmailStr
    password: str = Field(min_length=1)

    @field_validator("email", mode="before")
    @classmethod
    def strip_email(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


_MESSAGES = {
    "missing": "The {field} field is required.",
    "literal_error": 'The {field} field must be "true" or "false".',
    "string_too_long": "The {field} field must not be greater than {max_length} characters.",
    "string_too_short": "The {field} field must be at least {min_length} characters.",
    "string_type": "The {field} field must be a string.",
}

_VALUE_ERROR_MESSAGES = {
    "email": "The email field must be a valid email address.",
    "password_confirmation": "The password confirmation does not match.",
    "is_minangkabau_batik": _MESSAGES["literal_error"],
}


def _message(err: Mapping[str, Any], field: str) -> str:
    label = field.replace("_", " ")
    ctx = err.get("ctx") or {}
    kind = err["type"]
    if kind == "string_too_short" and ctx.get("min_length") == 1:
        kind = "missing"
    template = _MESSAGES.get(kind)
    if template is None:
        template = _VALUE_ERROR_MESSAGES.get(field, "The {field} field is invalid.")
    return template.format(field=label, **{k: v for k, v in ctx.items() if k != "field"})


def field_errors(exc: PydanticValidationError) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc") or ("payload",)
        field = str(loc[0])
        errors.setdefault(field, []).append(_message(err, field))
    return errors


def validate_fields(schema: type[BaseModel], data: Mapping[str, Any]) -> tuple[Any, dict[str, list[str]]]:
    """Return (model, {}) on success or (None, field errors) on failure."""
    try:
        return schema.model_validate(dict(data)), {}
    except PydanticValidationError as exc:
        return None, field_errors(exc)


def require_fields(schema: type[BaseModel], data: Mapping[str, Any]) -> Any:
    """Validate or raise the catalog ValidationError."""
    model, errors = validate_fields(schema, data)
    if errors:
        raise ValidationError(errors)
    return model
