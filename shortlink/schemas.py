"""Pydantic schemas for the shortlink core's inputs and results.

Schema Hierarchy
=================
::
    ShortenRequest (Input)
    ├─ url: str
    ├─ expires_at: datetime | None (future, UTC-aware)
    ├─ owner_id: str | None
    └─ custom_code: str | None (3-20 alphanumeric)

    ShortenResult (Output)
    ├─ short_code: str
    ├─ is_existing: bool
    └─ expires_at: datetime | None

    ResolvedURL (Output)
    ├─ short_code: str
    ├─ url: str
    ├─ expired: bool
    └─ expires_at: datetime | None

Key Behaviours
===============
- Naive datetimes are interpreted as UTC.
- Custom codes must be alphanumeric ASCII and 3-20 characters long. An empty
  custom code means "no custom code". The service applies the same rule
  through check_custom_code.
- URL syntax is checked by the normalizer, not here, so every entry point
  shares a single definition of "valid URL".

Classes:
    ShortenRequest:  Validated input for URLShorteningService.shorten.
    ShortenResult:  Outcome of create_short_url.
    ResolvedURL:  Outcome of get_original_url.
"""

import datetime

from pydantic import BaseModel, Field, field_validator

from shortlink.models import as_utc

__all__ = ["ResolvedURL", "ShortenRequest", "ShortenResult", "check_custom_code"]

CUSTOM_CODE_MIN_LENGTH = 3
CUSTOM_CODE_MAX_LENGTH = 20


def check_custom_code(value: str | None) -> str | None:
    """Return the custom code, or ``None`` when it is absent or empty."""
    if not value:
        return None
    if len(value) < CUSTOM_CODE_MIN_LENGTH or len(value) > CUSTOM_CODE_MAX_LENGTH:
        raise ValueError(
            f"Custom code must be between {CUSTOM_CODE_MIN_LENGTH} and {CUSTOM_CODE_MAX_LENGTH} characters"
        )
    if not (value.isascii() and value.isalnum()):
        raise ValueError("Custom code must be alphanumeric")
    return value


class ShortenRequest(BaseModel):
    url: str = Field(..., min_length=1)
    expires_at: datetime.datetime | None = None
    owner_id: str | None = None
    custom_code: str | None = None

    @field_validator("expires_at")
    @classmethod
    def validate_expires_at(cls, v: datetime.datetime | None) -> datetime.datetime | None:
        if v is None:
            return v
        v = as_utc(v)
        if v <= datetime.datetime.now(datetime.UTC):
            raise ValueError("expires_at must be in the future")
        return v

    @field_validator("custom_code")
    @classmethod
    def validate_custom_code(cls, v: str | None) -> str | None:
        return check_custom_code(v)


class ShortenResult(BaseModel):
    short_code: str
    is_existing: bool
    expires_at: datetime.datetime | None = None


class ResolvedURL(BaseModel):
    short_code: str
    url: str
    expired: bool
    expires_at: datetime.datetime | None = None
