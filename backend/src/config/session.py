"""
Session cookie configuration.

The external auth provider signs users in and writes the user's GUID into a
Starlette SessionMiddleware cookie. This backend never issues sessions of its
own; it only needs the same signing key and cookie parameters to read them.
"""

import secrets
from functools import lru_cache
from typing import Any, Dict, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


MIN_SECRET_LENGTH = 32


class SessionSettings(BaseSettings):
    """
    Cookie settings shared with the auth provider.

    Environment Variables:
        SESSION_SECRET_KEY: Signing key (at least 32 characters)
        SESSION_MAX_AGE: Cookie lifetime in seconds (default: 24 hours)
        SESSION_COOKIE_NAME: Cookie name (default: costpilot_session)
        SESSION_SAME_SITE: lax, strict or none
        SESSION_HTTPS_ONLY: Only send the cookie over HTTPS
        SESSION_USER_KEY: Key under which the provider stores the user GUID
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    secret_key: str = Field(default="", validation_alias="SESSION_SECRET_KEY")
    max_age: int = Field(
        default=24 * 60 * 60,
        validation_alias="SESSION_MAX_AGE",
        ge=60,
        le=30 * 24 * 60 * 60,
    )
    cookie_name: str = Field(default="costpilot_session", validation_alias="SESSION_COOKIE_NAME")
    same_site: Literal["lax", "strict", "none"] = Field(
        default="lax", validation_alias="SESSION_SAME_SITE"
    )
    https_only: bool = Field(default=False, validation_alias="SESSION_HTTPS_ONLY")
    user_key: str = Field(default="user_guid", validation_alias="SESSION_USER_KEY")

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        if v and len(v) < MIN_SECRET_LENGTH:
            raise ValueError(
                f"SESSION_SECRET_KEY must be at least {MIN_SECRET_LENGTH} characters"
            )
        return v

    @property
    def is_configured(self) -> bool:
        return bool(self.secret_key)

    def effective_secret_key(self) -> str:
        """
        Configured key, or a random per-process key when unset.

        With a random key no provider-issued cookie validates, so every
        request is anonymous until SESSION_SECRET_KEY is set.
        """
        return self.secret_key or secrets.token_urlsafe(MIN_SECRET_LENGTH)

    def middleware_options(self) -> Dict[str, Any]:
        """Keyword arguments for ``app.add_middleware(SessionMiddleware, ...)``."""
        return {
            "secret_key": self.effective_secret_key(),
            "session_cookie": self.cookie_name,
            "max_age": self.max_age,
            "same_site": self.same_site,
            "https_only": self.https_only,
        }


@lru_cache()
def get_session_settings() -> SessionSettings:
    return SessionSettings()
