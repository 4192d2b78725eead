"""Pydantic schemas for the session API.

The browser client speaks camelCase; models accept either spelling and
serialize with camelCase aliases.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ScreenInfo(CamelModel):
    width: int = Field(..., ge=0)
    height: int = Field(..., ge=0)
    color_depth: int = Field(..., ge=0)
    pixel_depth: int = Field(..., ge=0)


class DeviceFingerprint(CamelModel):
    """Browser/device characteristics collected by the client.

    Only ever persisted as a hash (see FingerprintMatcher). Any field change,
    including benign ones after a browser update, produces a different hash.
    """

    screen: ScreenInfo
    timezone: str = Field(..., max_length=100)
    language: str = Field(..., max_length=35)
    user_agent: str = Field(..., min_length=1, max_length=1024)
    canvas: str = Field(default="", max_length=200_000)
    webgl: str = Field(default="", max_length=1024)
    touch_support: bool = False
    hardware_concurrency: int = Field(default=0, ge=0)
    device_memory: float | None = Field(default=None, ge=0)
    max_touch_points: int = Field(default=0, ge=0)
    platform: str = Field(default="", max_length=100)


class LoginRequest(CamelModel):
    """Request for login."""

    username: str = Field(..., min_length=1, max_length=50)
    # Upper bound keeps Argon2 input bounded
    password: str = Field(..., min_length=1, max_length=128)
    device_fingerprint: DeviceFingerprint


class RefreshRequest(CamelModel):
    """Request for token refresh. The refresh token itself travels in the cookie."""

    device_fingerprint: DeviceFingerprint


class SessionUser(CamelModel):
    username: str
    uuid: UUID


class AccessTokenResponse(CamelModel):
    """Access token plus scheduling hints for the client."""

    access_token: str
    token_type: str = "bearer"
    expires_at: datetime = Field(description="Access token expiry (UTC)")
    refresh_before_expiry_seconds: int = Field(
        description="Refresh this many seconds before expires_at"
    )


class LoginResponse(AccessTokenResponse):
    user: SessionUser


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str
