"""
Application settings configuration for the CostPilot notification backend.

Centralized settings loaded from environment variables.
"""

from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class AppSettings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment Variables:
        APP_BASE_URL: Origin used to resolve call-to-action links in emails
        NOTIFICATION_TIMEZONE: Reference time zone for the daily dedup window
            and the health scan (default: UTC)
        EMAIL_RELAY_URL: Transactional email relay endpoint (empty = simulated)
        EMAIL_RELAY_API_KEY: Bearer token for the email relay
        EMAIL_FROM: Sender address reported to the relay
        EMAIL_SUBJECT_PREFIX: Prefix prepended to every email subject
        PUSH_CLIENT_ID / PUSH_CLIENT_SECRET: Push provider OAuth client credentials
        PUSH_WEBSITE_ID: Push provider website identifier
        PUSH_TOKEN_URL: Push provider token-exchange endpoint
        PUSH_SEND_URL: Push provider targeted-send endpoint
        HTTP_TIMEOUT_SECONDS: Timeout for outbound relay/provider calls
        PUSH_SDK_TIMEOUT_SECONDS: How long to wait for the browser push SDK
        PUSH_SDK_POLL_INTERVAL_SECONDS: SDK readiness poll interval
        PUSH_ID_POLL_INTERVAL_SECONDS: Subscriber-id poll interval
        PUSH_ID_MAX_ATTEMPTS: Subscriber-id poll attempt budget
        UNLINK_PUSH_ON_LOGOUT: Delete the user's push link when the session ends
    """

    app_base_url: str = Field(
        default="http://localhost:3000",
        validation_alias="APP_BASE_URL",
        description="Application origin for links rendered into emails",
    )

    notification_timezone: str = Field(
        default="UTC",
        validation_alias="NOTIFICATION_TIMEZONE",
        description="IANA time zone defining the calendar day for deduplication",
    )

    # Email relay
    email_relay_url: str = Field(
        default="",
        validation_alias="EMAIL_RELAY_URL",
        description="HTTP endpoint accepting {to, subject, html}. Empty = simulated delivery.",
    )

    email_relay_api_key: str = Field(
        default="",
        validation_alias="EMAIL_RELAY_API_KEY",
    )

    email_from: str = Field(
        default="noreply@costpilot.app",
        validation_alias="EMAIL_FROM",
    )

    email_subject_prefix: str = Field(
        default="[CostPilot]",
        validation_alias="EMAIL_SUBJECT_PREFIX",
    )

    # Push provider (server-side delivery)
    push_client_id: str = Field(default="", validation_alias="PUSH_CLIENT_ID")
    push_client_secret: str = Field(default="", validation_alias="PUSH_CLIENT_SECRET")
    push_website_id: str = Field(default="", validation_alias="PUSH_WEBSITE_ID")

    push_token_url: str = Field(
        default="https://api.sendpulse.com/oauth/access_token",
        validation_alias="PUSH_TOKEN_URL",
    )

    push_send_url: str = Field(
        default="https://api.sendpulse.com/push/tasks",
        validation_alias="PUSH_SEND_URL",
    )

    http_timeout_seconds: float = Field(
        default=10.0,
        validation_alias="HTTP_TIMEOUT_SECONDS",
        gt=0,
    )

    # Push subscription lifecycle (browser SDK negotiation)
    push_sdk_timeout_seconds: float = Field(
        default=5.0,
        validation_alias="PUSH_SDK_TIMEOUT_SECONDS",
        gt=0,
    )

    push_sdk_poll_interval_seconds: float = Field(
        default=0.5,
        validation_alias="PUSH_SDK_POLL_INTERVAL_SECONDS",
        gt=0,
    )

    push_id_poll_interval_seconds: float = Field(
        default=2.0,
        validation_alias="PUSH_ID_POLL_INTERVAL_SECONDS",
        gt=0,
    )

    push_id_max_attempts: int = Field(
        default=15,
        validation_alias="PUSH_ID_MAX_ATTEMPTS",
        ge=1,
    )

    unlink_push_on_logout: bool = Field(
        default=False,
        validation_alias="UNLINK_PUSH_ON_LOGOUT",
    )

    class Config:
        env_file = ".env"
        extra = "ignore"

    @field_validator("notification_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject time zone names zoneinfo cannot resolve."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown NOTIFICATION_TIMEZONE: {v}") from e
        return v

    @property
    def email_configured(self) -> bool:
        """Check if a live email relay is configured."""
        return bool(self.email_relay_url)

    @property
    def push_configured(self) -> bool:
        """Check if push provider credentials are configured for live delivery."""
        return bool(self.push_client_id and self.push_client_secret)

    @property
    def reference_tz(self) -> ZoneInfo:
        """Time zone object for calendar-day computations."""
        return ZoneInfo(self.notification_timezone)


@lru_cache()
def get_settings() -> AppSettings:
    """
    Get cached application settings instance.

    Returns:
        AppSettings: Configured application settings from environment
    """
    return AppSettings()
