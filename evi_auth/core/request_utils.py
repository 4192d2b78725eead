"""Request utility functions for handling common request operations."""

import ipaddress
import logging

from fastapi import Request

logger = logging.getLogger(__name__)

_LOCAL_PROXY_HOSTS = ("127.0.0.1", "::1", "localhost")


def _is_valid_ip(ip_str: str) -> bool:
    """Check if a string is a valid IP address."""
    try:
        ipaddress.ip_address(ip_str)
        return True
    except ValueError:
        return False


def get_client_ip(request: Request) -> str:
    """Get the client IP address used as the brute-force guard key.

    X-Real-IP is honoured only when the direct peer is a local reverse proxy;
    from anywhere else it is client-controlled and would let an attacker
    rotate the throttle key at will. X-Forwarded-For is never trusted.

    Returns "unknown" when the peer address is not available, which means all
    such requests share one bucket.
    """
    if request.client and request.client.host in _LOCAL_PROXY_HOSTS:
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            ip = real_ip.strip()
            if _is_valid_ip(ip):
                return ip
            logger.warning(f"Invalid X-Real-IP: {real_ip}")

    if request.client:
        return request.client.host

    return "unknown"
