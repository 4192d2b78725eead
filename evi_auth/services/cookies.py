"""Refresh token cookie delivery."""

from fastapi import Response

from evi_auth.core.config import Settings, settings


class SessionCookieManager:
    """Sets and clears the refresh token cookie.

    httpOnly always. Secure and SameSite=Strict outside development; plain
    http and SameSite=Lax in development so a local frontend on another port
    still works.
    """

    def __init__(self, config: Settings | None = None):
        self.config = config or settings

    @property
    def cookie_name(self) -> str:
        return self.config.refresh_cookie_name

    def _attributes(self) -> dict:
        development = self.config.is_development
        return {
            "httponly": True,
            "secure": not development,
            "samesite": "lax" if development else "strict",
            "path": "/",
            "domain": self.config.cookie_domain or None,
        }

    def set_cookie(self, response: Response, secret: str, max_age_seconds: int) -> None:
        response.set_cookie(
            key=self.cookie_name,
            value=secret,
            max_age=max_age_seconds,
            **self._attributes(),
        )

    def clear_cookie(self, response: Response) -> None:
        # Attributes must match the original cookie or browsers keep it
        response.delete_cookie(key=self.cookie_name, **self._attributes())

    def read(self, cookies: dict[str, str]) -> str | None:
        value = cookies.get(self.cookie_name)
        return value or None
