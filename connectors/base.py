"""
BaseConnector — shared OAuth2 authorization-code / refresh-token flow.

Each OAuth provider subclasses this and declares its endpoints, scopes,
how the client authenticates at the token endpoint (HTTP Basic or form
body) and any extra authorization parameters. The HTTP work lives here
once instead of being repeated per provider.
"""

from __future__ import annotations

import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from connectors.errors import (
    ConfigurationError,
    OAuthExchangeError,
    ProviderError,
    ReauthRequiredError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OAuthCredentials:
    client_id: str
    client_secret: str

    @property
    def basic_auth_header(self) -> str:
        raw = f"{self.client_id}:{self.client_secret}".encode()
        return "Basic " + base64.b64encode(raw).decode()


@dataclass
class OAuthSession:
    """Token material held in memory for the duration of one request."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now(timezone.utc)) >= self.expires_at


def provider_error(provider: str, response: httpx.Response) -> ProviderError:
    """Build a ``ProviderError`` from a failed upstream response."""
    message = response.reason_phrase or "request failed"
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict):
            message = err.get("message") or message
        elif isinstance(err, str):
            message = body.get("error_description") or err
        elif isinstance(body.get("errors"), list) and body["errors"]:
            first = body["errors"][0]
            message = first.get("message", message) if isinstance(first, dict) else str(first)
    return ProviderError(
        provider=provider,
        http_status=response.status_code,
        message=f"HTTP {response.status_code}: {message}",
    )


def response_json(provider: str, response: httpx.Response) -> Dict[str, Any]:
    """Decode a JSON object body, raising ``ProviderError`` for anything else."""
    try:
        body = response.json()
    except ValueError as exc:
        raise ProviderError(provider, response.status_code, "invalid JSON response") from exc
    if not isinstance(body, dict):
        raise ProviderError(provider, response.status_code, "unexpected response shape")
    return body


class BaseConnector(ABC):
    """Abstract base for the OAuth2 providers."""

    authorize_endpoint: str = ""
    token_endpoint: str = ""
    token_auth: str = "body"  # "basic" | "body"

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique slug: 'google', 'spotify'."""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        ...

    @property
    @abstractmethod
    def scopes(self) -> List[str]:
        """OAuth scopes requested by this connector."""
        ...

    @property
    def dashboard_page(self) -> str:
        """UI page the callback redirects back to."""
        return self.provider_name

    def extra_auth_params(self) -> Dict[str, str]:
        """Provider-specific authorization URL parameters."""
        return {}

    # ── OAuth flow ──────────────────────────────────────────────────────

    def get_auth_url(self, credentials: OAuthCredentials, redirect_uri: str, state: str) -> str:
        """
        Build the provider's OAuth2 authorization URL.

        Parameters
        ----------
        credentials : OAuthCredentials
            Trimmed client id / secret; both must be non-empty.
        redirect_uri : str
            Must match the URI registered with the provider exactly.
        state : str
            Opaque CSRF token, echoed back on callback.
        """
        if not credentials.client_id or not credentials.client_secret:
            raise ConfigurationError(
                f"{self.display_name} is not configured. Please add your Client ID and Secret in Settings.",
                provider=self.provider_name,
            )
        params = {
            "client_id": credentials.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
        }
        params.update(self.extra_auth_params())
        return f"{self.authorize_endpoint}?{urlencode(params)}"

    async def exchange_code(
        self,
        http: httpx.AsyncClient,
        credentials: OAuthCredentials,
        redirect_uri: str,
        code: str,
    ) -> OAuthSession:
        """Exchange the authorization code for tokens (one token-endpoint call)."""
        if not code:
            raise OAuthExchangeError(self.provider_name, "No authorization code received")

        try:
            resp = await self._token_request(
                http,
                credentials,
                {
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": redirect_uri,
                },
            )
        except httpx.HTTPError as exc:
            raise OAuthExchangeError(self.provider_name, f"Token endpoint unreachable: {exc}") from exc

        if resp.is_error:
            err = provider_error(self.provider_name, resp)
            logger.warning("%s code exchange failed: %s", self.display_name, err.message)
            raise OAuthExchangeError(self.provider_name, f"Failed to exchange code: {err.message}")

        try:
            data = response_json(self.provider_name, resp)
        except ProviderError as exc:
            raise OAuthExchangeError(self.provider_name, f"Failed to exchange code: {exc.message}") from exc
        if not data.get("access_token"):
            raise OAuthExchangeError(self.provider_name, "Token response did not contain an access token")
        return self._session_from(data)

    async def refresh_access_token(
        self,
        http: httpx.AsyncClient,
        credentials: OAuthCredentials,
        refresh_token: str,
    ) -> OAuthSession:
        """
        Use the refresh token to get a new access token.

        Raises ``ReauthRequiredError`` when the provider rejects the grant.
        """
        resp = await self._token_request(
            http,
            credentials,
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
        )

        if resp.is_error:
            err = provider_error(self.provider_name, resp)
            error_code = _oauth_error_code(resp)
            if error_code == "invalid_client":
                raise ConfigurationError(
                    f"{self.display_name} rejected the client credentials: {err.message}",
                    provider=self.provider_name,
                )
            if resp.status_code in (400, 401) or error_code == "invalid_grant":
                raise ReauthRequiredError(self.provider_name)
            raise err

        data = response_json(self.provider_name, resp)
        session = self._session_from(data)
        if not session.refresh_token:
            session.refresh_token = refresh_token
        return session

    # ── Helpers ─────────────────────────────────────────────────────────

    async def _token_request(
        self,
        http: httpx.AsyncClient,
        credentials: OAuthCredentials,
        form: Dict[str, str],
    ) -> httpx.Response:
        headers = {"Accept": "application/json"}
        body = dict(form)
        if self.token_auth == "basic":
            headers["Authorization"] = credentials.basic_auth_header
        else:
            body["client_id"] = credentials.client_id
            body["client_secret"] = credentials.client_secret
        return await http.post(self.token_endpoint, data=body, headers=headers)

    @staticmethod
    def _session_from(data: Dict[str, Any]) -> OAuthSession:
        expires_at = None
        if data.get("expires_in"):
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(data["expires_in"]))
        return OAuthSession(
            access_token=data.get("access_token", ""),
            refresh_token=data.get("refresh_token") or None,
            expires_at=expires_at,
        )


def _oauth_error_code(resp: httpx.Response) -> Optional[str]:
    try:
        body = resp.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return None
