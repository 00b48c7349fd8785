"""Short link request/response schemas."""

import re
import uuid
from datetime import datetime

from pydantic import BaseModel, Field, HttpUrl, field_validator

from shortlinks.core.config import settings

KEY_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,49}$")


class LinkCreate(BaseModel):
    destination_url: HttpUrl
    key: str | None = Field(None, max_length=50)
    title: str | None = Field(None, max_length=255)
    description: str | None = Field(None, max_length=1000)
    password: str | None = Field(
        None,
        min_length=settings.PASSWORD_MIN_LENGTH,
        max_length=settings.PASSWORD_MAX_LENGTH,
    )
    expires_at: datetime | None = None
    expires_in_days: int | None = Field(None, ge=1, le=3650)
    activated_at: datetime | None = None
    click_limit: int | None = Field(None, ge=1)
    track_visits: bool | None = None
    track_ip_address: bool | None = None
    track_user_agent: bool | None = None
    track_referer: bool | None = None
    track_geo: bool | None = None
    utm_parameters: dict[str, str] | None = None
    utm_hidden: bool | None = None
    redirect_status_code: int | None = None
    metadata: dict | None = None
    tags: list[str] | None = None
    group: str | None = Field(None, max_length=100)

    @field_validator("key")
    @classmethod
    def validate_key(cls, v: str | None) -> str | None:
        if v is not None and not KEY_PATTERN.match(v):
            raise ValueError("Key must be alphanumeric (dashes and underscores allowed)")
        return v

    @field_validator("redirect_status_code")
    @classmethod
    def validate_redirect_status_code(cls, v: int | None) -> int | None:
        if v is not None and v not in (301, 302, 307, 308):
            raise ValueError("Redirect status code must be one of 301, 302, 307, 308")
        return v


class LinkUpdate(BaseModel):
    destination_url: HttpUrl | None = None
    title: str | None = Field(None, max_length=255)
    description: str | None = Field(None, max_length=1000)
    password: str | None = Field(
        None,
        min_length=settings.PASSWORD_MIN_LENGTH,
        max_length=settings.PASSWORD_MAX_LENGTH,
    )
    is_active: bool | None = None
    expires_at: datetime | None = None
    click_limit: int | None = Field(None, ge=1)
    utm_parameters: dict[str, str] | None = None
    tags: list[str] | None = None
    group: str | None = Field(None, max_length=100)


class LinkResponse(BaseModel):
    id: uuid.UUID
    key: str
    short_url: str
    destination_url: str
    title: str | None = None
    description: str | None = None
    password_protected: bool
    is_active: bool
    activated_at: datetime | None = None
    expires_at: datetime | None = None
    click_limit: int | None = None
    clicks_count: int
    utm_parameters: dict[str, str] | None = None
    redirect_status_code: int
    tags: list[str] | None = None
    group: str | None = None
    first_clicked_at: datetime | None = None
    last_clicked_at: datetime | None = None
    created_at: datetime


class LinkSnapshot(BaseModel):
    """Every persisted column of a link; the cached form of a ``ShortLink``."""

    id: uuid.UUID
    key: str
    destination_url: str
    title: str | None = None
    description: str | None = None
    password: str | None = None
    password_protected: bool = False
    is_active: bool = True
    activated_at: datetime | None = None
    expires_at: datetime | None = None
    click_limit: int | None = None
    clicks_count: int = 0
    track_visits: bool = True
    track_ip_address: bool = True
    track_user_agent: bool = True
    track_referer: bool = True
    track_geo: bool = False
    utm_parameters: dict[str, str] | None = None
    utm_hidden: bool = True
    redirect_status_code: int = 302
    custom_domain: str | None = None
    qr_code_path: str | None = None
    owner_kind: str | None = None
    owner_id: str | None = None
    attached_kind: str | None = None
    attached_id: str | None = None
    metadata_: dict | None = None
    tags: list[str] | None = None
    group: str | None = None
    first_clicked_at: datetime | None = None
    last_clicked_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None

    model_config = {"from_attributes": True}


class PasswordUnlockRequest(BaseModel):
    password: str = Field(..., min_length=1, max_length=settings.PASSWORD_MAX_LENGTH)


class QrCodeResponse(BaseModel):
    qr_code_url: str
    short_url: str
