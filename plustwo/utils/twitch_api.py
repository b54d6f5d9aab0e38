"""
Twitch Helix API client

Handles the user access token (refresh-token grant) and creation of EventSub
subscriptions bound to a websocket session.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Optional

import httpx

from plustwo.config import settings
from plustwo.utils.logging import get_logger

logger = get_logger(__name__, category="twitch_api")

HELIX_API_BASE = "https://api.twitch.tv/helix"
OAUTH_TOKEN_URL = "https://id.twitch.tv/oauth2/token"
OAUTH_VALIDATE_URL = "https://id.twitch.tv/oauth2/validate"

# Refresh a little before Twitch would reject the token
TOKEN_EXPIRY_MARGIN_SECONDS = 60


class TwitchApiError(Exception):
    """Raised when a Twitch API call fails in a way the caller must handle."""


class SubscriptionError(TwitchApiError):
    def __init__(self, event_type: str, status_code: int, detail: str):
        super().__init__(
            f"Failed to create {event_type} subscription: {status_code} - {detail}"
        )
        self.event_type = event_type
        self.status_code = status_code


class HelixClient:
    """Minimal Helix client for EventSub websocket subscriptions."""

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        refresh_token: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.client_id = client_id or settings.twitch_client_id
        self.client_secret = client_secret or settings.twitch_client_secret
        self._refresh_token = refresh_token or settings.twitch_refresh_token

        if not self.client_id or not self.client_secret or not self._refresh_token:
            raise ValueError(
                "TWITCH_CLIENT_ID, TWITCH_CLIENT_SECRET and TWITCH_REFRESH_TOKEN are required"
            )

        self.access_token: Optional[str] = None
        self._expires_at: float = 0.0

        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.http_timeout_seconds, connect=10.0)
        )

    async def aclose(self) -> None:
        await self.http_client.aclose()

    def token_expired(self) -> bool:
        if not self.access_token:
            return True
        return time.monotonic() >= self._expires_at - TOKEN_EXPIRY_MARGIN_SECONDS

    async def refresh_token(self, force: bool = False) -> None:
        """Exchange the refresh token for a new access token if needed."""
        if not force and not self.token_expired():
            return

        response = await self.http_client.post(
            OAUTH_TOKEN_URL,
            data={
                "grant_type": "refresh_token",
                "refresh_token": self._refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
        )
        if response.status_code in (400, 401):
            raise TwitchApiError(
                f"Refresh token rejected by Twitch: {response.status_code} - {response.text}"
            )
        response.raise_for_status()

        data = response.json()
        self.access_token = data["access_token"]
        # Twitch may rotate the refresh token
        self._refresh_token = data.get("refresh_token") or self._refresh_token
        self._expires_at = time.monotonic() + int(data.get("expires_in") or 0)

        logger.info("Refreshed Twitch access token (expires in %ss)", data.get("expires_in"))

    def _headers(self) -> Dict[str, str]:
        return {
            "Client-ID": self.client_id,
            "Authorization": f"Bearer {self.access_token}",
        }

    async def validate_token(self) -> Dict[str, Any]:
        """Validate the access token and return its owner (login, user_id)."""
        await self.refresh_token()

        response = await self.http_client.get(
            OAUTH_VALIDATE_URL,
            headers={"Authorization": f"OAuth {self.access_token}"},
        )
        if response.status_code == 401:
            raise TwitchApiError("Token is invalid or expired")
        response.raise_for_status()

        data = response.json()
        logger.info(
            "Token validated - Client ID: %s, User: %s",
            data.get("client_id"),
            data.get("login"),
        )
        return data

    async def subscribe(
        self,
        event_type: str,
        condition: Dict[str, str],
        session_id: str,
        version: str = "1",
    ) -> Optional[str]:
        """
        Create an EventSub subscription delivered over a websocket session.

        Args:
            event_type: Subscription type (e.g. "stream.online")
            condition: Subscription condition (e.g. {"broadcaster_user_id": "123"})
            session_id: EventSub websocket session id
            version: Subscription version

        Returns:
            Subscription id, or None if an identical subscription already exists

        Raises:
            SubscriptionError: If Twitch refuses the subscription
        """
        await self.refresh_token()

        payload = {
            "type": event_type,
            "version": version,
            "condition": condition,
            "transport": {"method": "websocket", "session_id": session_id},
        }
        url = f"{HELIX_API_BASE}/eventsub/subscriptions"

        response = await self.http_client.post(url, json=payload, headers=self._headers())
        if response.status_code == 401:
            logger.warning("Access token rejected creating %s, refreshing", event_type)
            await self.refresh_token(force=True)
            response = await self.http_client.post(
                url, json=payload, headers=self._headers()
            )

        if response.status_code == 409:
            logger.info("Subscription already exists: %s %s", event_type, condition)
            return None

        if response.is_error:
            raise SubscriptionError(event_type, response.status_code, response.text)

        subscriptions = response.json().get("data") or [{}]
        subscription_id = subscriptions[0].get("id")
        logger.info("Created EventSub subscription: %s (%s)", event_type, subscription_id)
        return subscription_id
