"""Process-wide access token signing key.

The private key is loaded once at startup and handed to TokenIssuer as an
explicit dependency. ``reset_signing_key()`` exists for tests and for key
rotation via process restart; there is no hot reload.
"""

import logging
import threading
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from evi_auth.core.config import Settings, settings
from evi_auth.services.errors import ConfigurationError

logger = logging.getLogger(__name__)

_signing_key: rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey | None = None
_lock = threading.Lock()


def _read_pem(config: Settings) -> bytes:
    if config.jwt_private_key:
        # Allow single-line env values with literal \n escapes
        return config.jwt_private_key.replace("\\n", "\n").encode("utf-8")

    if config.jwt_private_key_path:
        path = Path(config.jwt_private_key_path)
        try:
            return path.read_bytes()
        except OSError as e:
            raise ConfigurationError(f"Cannot read JWT_PRIVATE_KEY_PATH {path}: {e}") from e

    raise ConfigurationError(
        "No access token signing key configured. Set JWT_PRIVATE_KEY or JWT_PRIVATE_KEY_PATH."
    )


def load_signing_key(
    config: Settings | None = None,
) -> rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey:
    """Load and validate the private key, replacing any previously loaded one.

    Raises:
        ConfigurationError: If no key is configured, it cannot be parsed, or
            its type does not match JWT_ALGORITHM.
    """
    global _signing_key
    config = config or settings

    pem = _read_pem(config)
    try:
        key = serialization.load_pem_private_key(pem, password=None)
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"JWT signing key is not a valid unencrypted PEM key: {e}") from e

    if config.jwt_algorithm.startswith(("RS", "PS")):
        if not isinstance(key, rsa.RSAPrivateKey):
            raise ConfigurationError(f"{config.jwt_algorithm} requires an RSA private key")
        if key.key_size < 2048:
            raise ConfigurationError(f"RSA signing key too small: {key.key_size} bits")
    elif not isinstance(key, ec.EllipticCurvePrivateKey):
        raise ConfigurationError(f"{config.jwt_algorithm} requires an EC private key")

    with _lock:
        _signing_key = key
    logger.info(f"Loaded {config.jwt_algorithm} signing key")
    return key


def get_signing_key() -> rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey:
    """Return the loaded key, loading it from settings on first use."""
    if _signing_key is None:
        return load_signing_key()
    return _signing_key


def reset_signing_key() -> None:
    """Forget the loaded key so the next access reloads it."""
    global _signing_key
    with _lock:
        _signing_key = None
