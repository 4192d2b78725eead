# EVI Auth Pydantic Schemas
from evi_auth.schemas.auth import (
    AccessTokenResponse,
    DeviceFingerprint,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RefreshRequest,
    ScreenInfo,
    SessionUser,
)

__all__ = [
    "AccessTokenResponse",
    "DeviceFingerprint",
    "LoginRequest",
    "LoginResponse",
    "MessageResponse",
    "RefreshRequest",
    "ScreenInfo",
    "SessionUser",
]
