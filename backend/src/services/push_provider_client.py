"""
HTTP client for the web-push provider.

Two calls:
- client-credentials token exchange (POST token URL)
- targeted send to a single subscriber (POST send URL, Bearer token)

The access token is cached until shortly before it expires. A 401 on send
drops the cached token so the next send re-authenticates.
"""

import time
from typing import Any, Dict, Optional

import httpx

from backend.src.config.settings import AppSettings
from backend.src.services.exceptions import PushDeliveryError, PushProviderAuthError
from backend.src.utils.logging_config import get_logger


logger = get_logger("push")


# Refresh the token this many seconds before the provider says it expires
TOKEN_EXPIRY_MARGIN = 30.0
DEFAULT_TOKEN_TTL = 3600.0


class PushProviderClient:
    """
    Client for the push provider REST API.

    Attributes:
        website_id: Provider website identifier sent with every push task
    """

    def __init__(self, settings: AppSettings):
        self._settings = settings
        self.website_id = settings.push_website_id
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0
        self._client = httpx.AsyncClient(
            timeout=settings.http_timeout_seconds,
            headers={"Accept": "application/json"},
        )

    @property
    def configured(self) -> bool:
        return self._settings.push_configured

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------

    def _token_valid(self) -> bool:
        return self._access_token is not None and time.monotonic() < self._token_expires_at

    def invalidate_token(self) -> None:
        self._access_token = None
        self._token_expires_at = 0.0

    async def get_access_token(self) -> str:
        """
        Get an access token, exchanging client credentials when needed.

        Returns:
            Bearer access token

        Raises:
            PushProviderAuthError: If the exchange fails or returns no token
        """
        if self._token_valid():
            return self._access_token

        try:
            response = await self._client.post(
                self._settings.push_token_url,
                json={
                    "grant_type": "client_credentials",
                    "client_id": self._settings.push_client_id,
                    "client_secret": self._settings.push_client_secret,
                },
            )
        except httpx.HTTPError as e:
            raise PushProviderAuthError(f"Token exchange failed: {e}")

        if response.status_code != 200:
            raise PushProviderAuthError(
                f"Token exchange failed with status {response.status_code}",
                status_code=response.status_code,
            )

        data = response.json()
        token = data.get("access_token")
        if not token:
            raise PushProviderAuthError("Token exchange returned no access_token")

        try:
            ttl = float(data.get("expires_in", DEFAULT_TOKEN_TTL))
        except (TypeError, ValueError):
            ttl = DEFAULT_TOKEN_TTL

        self._access_token = token
        self._token_expires_at = time.monotonic() + max(ttl - TOKEN_EXPIRY_MARGIN, 0.0)
        logger.debug("Obtained push provider access token", extra={"expires_in": ttl})
        return token

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    async def send_to_subscriber(
        self,
        subscriber_id: str,
        title: str,
        body: str,
        link: str,
    ) -> Dict[str, Any]:
        """
        Send a push task targeted at a single subscriber.

        Args:
            subscriber_id: Provider-assigned subscriber identifier
            title: Notification title
            body: Notification body
            link: Absolute URL opened on click

        Returns:
            Provider response body

        Raises:
            PushProviderAuthError: If authentication fails
            PushDeliveryError: If the provider rejects the send or is unreachable
        """
        token = await self.get_access_token()

        payload = {
            "website_id": self.website_id,
            "title": title,
            "body": body,
            "link": link,
            "subscriber_ids": [subscriber_id],
        }

        try:
            response = await self._client.post(
                self._settings.push_send_url,
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            raise PushDeliveryError(f"Push send failed: {e}")

        if response.status_code == 401:
            self.invalidate_token()
            raise PushProviderAuthError("Push provider rejected access token", status_code=401)
        if not response.is_success:
            raise PushDeliveryError(
                f"Push send failed with status {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError:
            return {}
