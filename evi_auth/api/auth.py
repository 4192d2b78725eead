"""Session API endpoints: login, refresh, logout."""

import logging
from typing import Any, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from evi_auth.core import get_db
from evi_auth.core.request_utils import get_client_ip
from evi_auth.schemas.auth import (
    AccessTokenResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RefreshRequest,
    SessionUser,
)
from evi_auth.services.brute_force import BruteForceGuard, get_brute_force_guard
from evi_auth.services.cookies import SessionCookieManager
from evi_auth.services.errors import (
    AuthenticationError,
    ConfigurationError,
    RateLimitError,
    SessionError,
    StorageError,
    StorageTimeoutError,
    TokenError,
    ValidationError,
)
from evi_auth.services.events import EventPublisher, get_event_publisher
from evi_auth.services.session import SessionService
from evi_auth.services.signing_key import get_signing_key
from evi_auth.services.token_issuer import IssuedTokens

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


def get_cookie_manager() -> SessionCookieManager:
    """Dependency to get the refresh cookie manager."""
    return SessionCookieManager()


def require_signing_key() -> Any:
    """Dependency providing the process signing key, failing closed if absent."""
    try:
        return get_signing_key()
    except ConfigurationError as e:
        logger.critical(f"Access token signing key unavailable: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=ConfigurationError.public_message,
        ) from e


def get_session_service(
    db: AsyncSession = Depends(get_db),
    guard: BruteForceGuard = Depends(get_brute_force_guard),
    signing_key: Any = Depends(require_signing_key),
) -> SessionService:
    """Dependency to get the session service."""
    return SessionService(db, guard, signing_key)


def error_to_http(error: SessionError) -> HTTPException:
    """Map every SessionError to its HTTP response.

    Internal reasons never reach the client; several share one message.
    """
    if isinstance(error, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, RateLimitError):
        return HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=error.public_message,
            headers={"Retry-After": str(error.retry_after)},
        )
    if isinstance(error, AuthenticationError | TokenError):
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=error.public_message)
    if isinstance(error, StorageTimeoutError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=error.public_message,
            headers={"Retry-After": "1"},
        )
    if isinstance(error, StorageError | ConfigurationError):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=error.public_message
        )
    # New SessionError subclasses must be mapped above
    logger.error(f"Unmapped session error {type(error).__name__}: {error}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=SessionError.public_message
    )


async def _fail(error: SessionError, publisher: EventPublisher) -> NoReturn:
    await publisher.publish_all(error.events)
    if isinstance(error, StorageError | ConfigurationError):
        logger.error(f"{type(error).__name__}: {error}")
    raise error_to_http(error) from error


def _access_token_fields(issued: IssuedTokens) -> dict:
    return {
        "access_token": issued.pair.access_token,
        "expires_at": issued.pair.access_token_expires_at,
        "refresh_before_expiry_seconds": issued.policy.refresh_before_expiry_seconds,
    }


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    sessions: SessionService = Depends(get_session_service),
    cookies: SessionCookieManager = Depends(get_cookie_manager),
    publisher: EventPublisher = Depends(get_event_publisher),
) -> LoginResponse:
    """Authenticate and start a session.

    Returns the access token in the body; the refresh token is set as an
    httpOnly cookie. Failed attempts count towards the per-IP brute-force limit.
    """
    client_ip = get_client_ip(request)
    try:
        outcome = await sessions.login(
            username=body.username,
            password=body.password,
            fingerprint=body.device_fingerprint,
            client_ip=client_ip,
        )
    except SessionError as e:
        await _fail(e, publisher)

    cookies.set_cookie(
        response,
        outcome.issued.pair.refresh_token,
        outcome.issued.policy.refresh_token_lifetime_seconds,
    )
    await publisher.publish_all(outcome.events)
    return LoginResponse(
        **_access_token_fields(outcome.issued),
        user=SessionUser(username=outcome.username, uuid=outcome.user_id),
    )


@router.post("/refresh", response_model=AccessTokenResponse)
async def refresh(
    body: RefreshRequest,
    request: Request,
    response: Response,
    sessions: SessionService = Depends(get_session_service),
    cookies: SessionCookieManager = Depends(get_cookie_manager),
    publisher: EventPublisher = Depends(get_event_publisher),
) -> AccessTokenResponse:
    """Rotate the refresh token from the cookie and return a new access token.

    Each refresh token works exactly once.
    """
    try:
        outcome = await sessions.refresh(cookies.read(request.cookies), body.device_fingerprint)
    except SessionError as e:
        await _fail(e, publisher)

    cookies.set_cookie(
        response,
        outcome.issued.pair.refresh_token,
        outcome.issued.policy.refresh_token_lifetime_seconds,
    )
    await publisher.publish_all(outcome.events)
    return AccessTokenResponse(**_access_token_fields(outcome.issued))


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    sessions: SessionService = Depends(get_session_service),
    cookies: SessionCookieManager = Depends(get_cookie_manager),
    publisher: EventPublisher = Depends(get_event_publisher),
) -> MessageResponse:
    """Revoke the current refresh token and clear the cookie.

    Succeeds even when no valid cookie is present.
    """
    try:
        outcome = await sessions.logout(cookies.read(request.cookies))
    except SessionError as e:
        await _fail(e, publisher)

    cookies.clear_cookie(response)
    await publisher.publish_all(outcome.events)
    return MessageResponse(message="Logged out successfully")


@router.post("/logout/all", response_model=MessageResponse)
async def logout_all(
    request: Request,
    response: Response,
    sessions: SessionService = Depends(get_session_service),
    cookies: SessionCookieManager = Depends(get_cookie_manager),
    publisher: EventPublisher = Depends(get_event_publisher),
) -> MessageResponse:
    """Revoke every refresh token of the current user and clear the cookie."""
    try:
        outcome = await sessions.logout_all(cookies.read(request.cookies))
    except SessionError as e:
        await _fail(e, publisher)

    cookies.clear_cookie(response)
    await publisher.publish_all(outcome.events)
    return MessageResponse(message=f"Logged out of {outcome.revoked_count} session(s)")
