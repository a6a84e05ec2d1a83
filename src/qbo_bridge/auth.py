"""OAuth2 authorization-code helpers for connecting QBO companies."""

import base64
from dataclasses import replace
from typing import Any
from urllib.parse import urlencode

import httpx
import structlog

from qbo_bridge.config.settings import FlatSettings, get_settings
from qbo_bridge.connections import Connection, ConnectionSlot
from qbo_bridge.qbo.client import AuthenticationError, QBOClient, describe_error

logger = structlog.get_logger(__name__)

CALLBACK_PATH = "/data_access"


def redirect_uri(settings: FlatSettings) -> str:
    return f"{settings.public_url.rstrip('/')}{CALLBACK_PATH}"


def build_authorization_url(
    slot: ConnectionSlot | str, settings: FlatSettings | None = None
) -> str | None:
    """Consent URL for ``slot``; None while no public URL is configured."""
    settings = settings or get_settings()
    if not settings.public_url:
        return None
    slot = ConnectionSlot.parse(slot)
    params = {
        "client_id": settings.qbo_client_id,
        "redirect_uri": redirect_uri(settings),
        "response_type": "code",
        "scope": settings.qbo_scope,
        "state": slot.oauth_state,
    }
    return f"{settings.qbo_auth_url}?{urlencode(params)}"


class OAuthClient:
    """Token endpoint client for the authorization-code grant."""

    def __init__(self, settings: FlatSettings | None = None):
        self.settings = settings or get_settings()
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.settings.qbo_timeout))
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "OAuthClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _basic_auth(self) -> str:
        secret = self.settings.qbo_client_secret.get_secret_value()
        raw = f"{self.settings.qbo_client_id}:{secret}".encode()
        return base64.b64encode(raw).decode()

    async def exchange_code(self, code: str) -> dict[str, Any]:
        """Trade an authorization code for access and refresh tokens."""
        client = await self._get_client()
        try:
            response = await client.post(
                self.settings.qbo_token_url,
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": redirect_uri(self.settings),
                },
                headers={
                    "Authorization": f"Basic {self._basic_auth()}",
                    "Accept": "application/json",
                },
            )
        except httpx.RequestError as e:
            raise AuthenticationError(f"Token exchange failed: {e}") from e

        if response.status_code >= 400:
            try:
                details = response.json()
            except Exception:
                details = {"raw": response.text[:500] if response.text else "empty response"}
            raise AuthenticationError(
                f"Token exchange failed: {response.status_code}",
                status_code=response.status_code,
                details=details,
            )
        return response.json()


async def exchange_authorization_code(
    code: str,
    realm_id: str,
    settings: FlatSettings | None = None,
) -> Connection:
    """Complete the OAuth callback and return the new connection.

    The company name is looked up with the fresh token; a failed lookup
    leaves it blank.
    """
    if not code:
        raise AuthenticationError("Missing authorization code")

    async with OAuthClient(settings) as oauth:
        tokens = await oauth.exchange_code(code)

    connection = Connection(
        access_token=tokens.get("access_token") or "",
        refresh_token=tokens.get("refresh_token") or "",
        realm_id=realm_id or "",
    )

    company_name = ""
    try:
        async with QBOClient(connection) as client:
            company_name = await client.get_company_name()
    except Exception as e:
        logger.warning("company_name_lookup_failed", realm_id=realm_id, error=describe_error(e))

    return replace(connection, company_name=company_name)
