"""
Token manager — authorization URL, code exchange and access-token renewal
for the OAuth providers.

This is the single interface the facade uses to get a live access token
for a provider. Refresh tokens live encrypted in the settings record;
access tokens are never persisted and are re-derived on every use.
"""

from __future__ import annotations

import enum
import logging
from typing import Optional, Tuple

import httpx

from config.settings import Settings, config
from connectors.base import BaseConnector, OAuthCredentials, OAuthSession
from connectors.encryption import CredentialCipher
from connectors.errors import (
    ConfigurationError,
    IntegrationError,
    InvalidStateError,
    NotAuthenticatedError,
    ReauthRequiredError,
)
from connectors.registry import ConnectorRegistry
from connectors.state import StateSigner
from database.settings_store import SettingsStore
from utils.schemas import IntegrationSettings

logger = logging.getLogger(__name__)


class AuthState(str, enum.Enum):
    NOT_CONFIGURED = "not_configured"
    CONFIGURED = "configured"
    AUTHENTICATED = "authenticated"
    REAUTH_REQUIRED = "reauth_required"
    UNAVAILABLE = "unavailable"


class OAuthSessionManager:
    """Owns the OAuth life cycle of every registered provider for one user."""

    def __init__(
        self,
        store: SettingsStore,
        cipher: CredentialCipher,
        http: httpx.AsyncClient,
        *,
        registry: Optional[ConnectorRegistry] = None,
        settings: Settings = config,
        state_signer: Optional[StateSigner] = None,
        user_id: Optional[str] = None,
    ) -> None:
        self._store = store
        self._cipher = cipher
        self._http = http
        self._registry = registry or ConnectorRegistry()
        self._settings = settings
        self._user_id = user_id or settings.default_user_id
        self._states = state_signer or StateSigner(
            settings.oauth_state_secret or cipher.derive_secret("oauth-state"),
            ttl_seconds=settings.oauth_state_ttl_seconds,
        )

    @property
    def user_id(self) -> str:
        return self._user_id

    def connector(self, provider: str) -> BaseConnector:
        connector = self._registry.get(provider)
        if connector is None:
            raise ConfigurationError(f"Unknown OAuth provider '{provider}'", provider=provider)
        return connector

    def redirect_uri(self, provider: str) -> str:
        return self._settings.callback_url(provider)

    async def _load(self, provider: str) -> Tuple[BaseConnector, OAuthCredentials, Optional[IntegrationSettings]]:
        """Resolve the connector and trimmed client credentials for ``provider``."""
        connector = self.connector(provider)
        record = await self._store.get_settings(self._user_id)

        client_id = ""
        client_secret = ""
        if record is not None:
            client_id = (getattr(record, f"{provider}_client_id") or "").strip()
            client_secret = self._cipher.reveal(getattr(record, f"{provider}_client_secret")).strip()

        client_id = client_id or getattr(self._settings, f"{provider}_client_id", "").strip()
        client_secret = client_secret or getattr(self._settings, f"{provider}_client_secret", "").strip()
        return connector, OAuthCredentials(client_id, client_secret), record

    def _stored_refresh_token(self, provider: str, record: Optional[IntegrationSettings]) -> str:
        if record is None:
            return ""
        return self._cipher.decrypt(getattr(record, f"{provider}_refresh_token"))

    async def _persist_refresh_token(self, provider: str, refresh_token: str) -> None:
        await self._store.upsert_settings(
            self._user_id,
            {f"{provider}_refresh_token": self._cipher.encrypt(refresh_token)},
        )

    # ── Configuration state ─────────────────────────────────────────────

    async def is_configured(self, provider: str) -> bool:
        _, credentials, _ = await self._load(provider)
        return bool(credentials.client_id and credentials.client_secret)

    async def has_refresh_token(self, provider: str) -> bool:
        _, _, record = await self._load(provider)
        return bool(self._stored_refresh_token(provider, record))

    # ── Authorization ───────────────────────────────────────────────────

    async def build_authorization_url(self, provider: str) -> str:
        """
        Authorization URL carrying the provider scopes and a signed ``state``.

        Raises ``ConfigurationError`` when the client id or secret is blank.
        """
        connector, credentials, _ = await self._load(provider)
        state = self._states.create(self._user_id, provider)
        url = connector.get_auth_url(credentials, self.redirect_uri(provider), state)
        logger.info("Generated %s authorization URL (redirect %s)", connector.display_name, self.redirect_uri(provider))
        return url

    def verify_state(self, provider: str, state: Optional[str]) -> None:
        """Check a callback ``state``; raises ``InvalidStateError`` on mismatch."""
        user_id = self._states.verify(state or "", provider)
        if user_id != self._user_id:
            raise InvalidStateError("state belongs to another user")

    async def exchange_code(self, provider: str, code: str) -> str:
        """
        Exchange ``code`` and persist the refresh token it yields.

        Providers may omit the refresh token on repeat consent; the stored
        one is then kept. Returns the refresh token now on record ("" if none).
        """
        connector, credentials, record = await self._load(provider)
        if not credentials.client_id or not credentials.client_secret:
            raise ConfigurationError(
                f"{connector.display_name} is not configured", provider=provider
            )

        session = await connector.exchange_code(
            self._http, credentials, self.redirect_uri(provider), code
        )

        if session.refresh_token:
            await self._persist_refresh_token(provider, session.refresh_token)
            logger.info("%s refresh token saved", connector.display_name)
            return session.refresh_token

        previous = self._stored_refresh_token(provider, record)
        if previous:
            logger.info("%s returned no refresh token; keeping the stored one", connector.display_name)
        else:
            logger.warning("No %s refresh token received — user may need to re-authorize", connector.display_name)
        return previous

    # ── Access tokens ───────────────────────────────────────────────────

    async def refresh_session(self, provider: str) -> OAuthSession:
        """
        Derive a fresh access token from the stored refresh token.

        Raises ``NotAuthenticatedError`` without any network call when no
        refresh token is stored, and ``ReauthRequiredError`` when the
        provider rejects it.
        """
        connector, credentials, record = await self._load(provider)
        refresh_token = self._stored_refresh_token(provider, record)
        if not refresh_token:
            raise NotAuthenticatedError(provider)

        session = await connector.refresh_access_token(self._http, credentials, refresh_token)

        if session.refresh_token and session.refresh_token != refresh_token:
            await self._persist_refresh_token(provider, session.refresh_token)
            logger.info("%s rotated its refresh token", connector.display_name)
        return session

    async def get_access_token(self, provider: str) -> str:
        session = await self.refresh_session(provider)
        return session.access_token

    async def auth_state(self, provider: str) -> AuthState:
        """
        Where ``provider`` sits in the authorization life cycle.

        Only a rejected grant yields ``REAUTH_REQUIRED``; transient refresh
        failures yield ``UNAVAILABLE``. Rejected client credentials raise
        ``ConfigurationError``.
        """
        connector, credentials, record = await self._load(provider)
        refresh_token = self._stored_refresh_token(provider, record)
        if not refresh_token:
            if credentials.client_id and credentials.client_secret:
                return AuthState.CONFIGURED
            return AuthState.NOT_CONFIGURED

        try:
            await connector.refresh_access_token(self._http, credentials, refresh_token)
        except ReauthRequiredError:
            return AuthState.REAUTH_REQUIRED
        except ConfigurationError:
            raise
        except (IntegrationError, httpx.HTTPError) as exc:
            # Outage or timeout; the stored grant may still be good.
            logger.warning("%s authentication check failed: %s", connector.display_name, exc)
            return AuthState.UNAVAILABLE
        return AuthState.AUTHENTICATED

    async def check_authenticated(self, provider: str) -> bool:
        """Best-effort refresh to validate the stored refresh token."""
        try:
            return await self.auth_state(provider) is AuthState.AUTHENTICATED
        except IntegrationError as exc:
            logger.warning("Could not check %s authentication: %s", provider, exc)
            return False
