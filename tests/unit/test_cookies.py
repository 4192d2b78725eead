"""Tests for refresh token cookie handling."""

from fastapi import Response

from evi_auth.core.config import Settings
from evi_auth.services.cookies import SessionCookieManager


def set_cookie_header(response: Response) -> str:
    return response.headers["set-cookie"]


class TestSessionCookieManager:
    """Tests for cookie attributes per environment."""

    def test_production_attributes(self):
        """Test that production cookies are httpOnly, Secure and SameSite=Strict."""
        manager = SessionCookieManager(Settings(environment="production"))
        response = Response()

        manager.set_cookie(response, "token-abc", 604800)
        header = set_cookie_header(response)

        assert header.startswith("refreshToken=token-abc")
        assert "HttpOnly" in header
        assert "Secure" in header
        assert "SameSite=strict" in header
        assert "Max-Age=604800" in header
        assert "Path=/" in header

    def test_development_attributes(self):
        """Test that development cookies work over plain http."""
        manager = SessionCookieManager(Settings(environment="development"))
        response = Response()

        manager.set_cookie(response, "token-abc", 60)
        header = set_cookie_header(response)

        assert "HttpOnly" in header
        assert "Secure" not in header
        assert "SameSite=lax" in header

    def test_cookie_domain(self):
        manager = SessionCookieManager(Settings(cookie_domain="evi.example.com"))
        response = Response()

        manager.set_cookie(response, "token-abc", 60)

        assert "Domain=evi.example.com" in set_cookie_header(response)

    def test_clear_cookie(self):
        """Test that clearing expires the cookie with matching attributes."""
        manager = SessionCookieManager(Settings(environment="production"))
        response = Response()

        manager.clear_cookie(response)
        header = set_cookie_header(response)

        assert header.startswith('refreshToken=""')
        assert "Max-Age=0" in header
        assert "HttpOnly" in header
        assert "Secure" in header
        assert "SameSite=strict" in header

    def test_read(self):
        manager = SessionCookieManager(Settings())

        assert manager.read({"refreshToken": "token-abc"}) == "token-abc"
        assert manager.read({"refreshToken": ""}) is None
        assert manager.read({}) is None

    def test_custom_cookie_name(self):
        manager = SessionCookieManager(Settings(refresh_cookie_name="evi_rt"))

        assert manager.cookie_name == "evi_rt"
        assert manager.read({"evi_rt": "token-abc"}) == "token-abc"
