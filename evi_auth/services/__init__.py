# EVI Auth Services
from evi_auth.services.brute_force import BruteForceGuard, get_brute_force_guard
from evi_auth.services.cookies import SessionCookieManager
from evi_auth.services.credentials import CredentialCheck, CredentialValidator
from evi_auth.services.events import AuthEvent, EventPublisher, get_event_publisher
from evi_auth.services.fingerprint import FingerprintHash, FingerprintMatcher
from evi_auth.services.refresh import RefreshCoordinator, RefreshResult
from evi_auth.services.session import SessionService
from evi_auth.services.token_issuer import IssuedTokens, TokenIssuer, TokenPair

__all__ = [
    "AuthEvent",
    "BruteForceGuard",
    "CredentialCheck",
    "CredentialValidator",
    "EventPublisher",
    "FingerprintHash",
    "FingerprintMatcher",
    "IssuedTokens",
    "RefreshCoordinator",
    "RefreshResult",
    "SessionCookieManager",
    "SessionService",
    "TokenIssuer",
    "TokenPair",
    "get_brute_force_guard",
    "get_event_publisher",
]
