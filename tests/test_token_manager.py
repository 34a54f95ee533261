"""
Tests for the OAuth session manager and state signing.
"""

import base64
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from connectors.errors import (
    ConfigurationError,
    InvalidStateError,
    NotAuthenticatedError,
    ReauthRequiredError,
)
from connectors.state import StateSigner
from connectors.token_manager import AuthState, OAuthSessionManager

from tests.conftest import USER_ID

GOOGLE_TOKEN = "https://oauth2.googleapis.com/token"
SPOTIFY_TOKEN = "https://accounts.spotify.com/api/token"


def _seed_google(store, cipher, refresh_token=None, client_id="gid", client_secret="gsecret"):
    return store.seed(
        google_client_id=client_id,
        google_client_secret=cipher.encrypt(client_secret),
        google_refresh_token=cipher.encrypt(refresh_token) if refresh_token else None,
    )


def _form(request: httpx.Request) -> dict:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


class TestStateSigner:
    def setup_method(self):
        self.now = 1_000_000.0
        self.signer = StateSigner("secret", ttl_seconds=600, clock=lambda: self.now)

    def test_roundtrip(self):
        state = self.signer.create("u1", "google")
        assert self.signer.verify(state, "google") == "u1"

    def test_states_are_unique(self):
        assert self.signer.create("u1", "google") != self.signer.create("u1", "google")

    def test_other_provider_rejected(self):
        state = self.signer.create("u1", "google")
        with pytest.raises(InvalidStateError):
            self.signer.verify(state, "spotify")

    def test_tampered_signature_rejected(self):
        state = self.signer.create("u1", "google")
        with pytest.raises(InvalidStateError):
            self.signer.verify(state[:-1] + ("0" if state[-1] != "0" else "1"), "google")

    def test_other_secret_rejected(self):
        state = StateSigner("other", clock=lambda: self.now).create("u1", "google")
        with pytest.raises(InvalidStateError):
            self.signer.verify(state, "google")

    def test_expired_rejected(self):
        state = self.signer.create("u1", "google")
        self.now += 601
        with pytest.raises(InvalidStateError):
            self.signer.verify(state, "google")

    def test_missing_or_malformed(self):
        valid = self.signer.create("u1", "google")
        payload = valid.split(".", 1)[0]
        for bad in ("", "no-dot", "!!!.abc", payload + ".\u00e9t\u00e9", payload + ".\u2603" * 4):
            with pytest.raises(InvalidStateError):
                self.signer.verify(bad, "google")

    def test_signed_garbage_payload_rejected(self):
        for raw in (b"not json", b"[1, 2]", b"\xff\xfe", b'{"provider": "google", "exp": 9999999999}'):
            encoded = base64.urlsafe_b64encode(raw).decode()
            with pytest.raises(InvalidStateError):
                self.signer.verify(encoded + "." + self.signer._sign(raw), "google")


class TestAuthorizationUrl:
    @pytest.mark.asyncio
    async def test_google_url_parameters(self, store, cipher, oauth):
        _seed_google(store, cipher, client_id="  gid  ", client_secret=" gsecret ")

        url = await oauth.build_authorization_url("google")
        parsed = urlparse(url)
        params = {k: v[0] for k, v in parse_qs(parsed.query).items()}

        assert parsed.netloc == "accounts.google.com"
        assert params["client_id"] == "gid"
        assert params["redirect_uri"] == "http://localhost:8000/api/v1/connectors/google/callback"
        assert params["response_type"] == "code"
        assert params["scope"] == "https://www.googleapis.com/auth/calendar.readonly"
        assert params["access_type"] == "offline"
        assert params["prompt"] == "consent"
        oauth.verify_state("google", params["state"])

    @pytest.mark.asyncio
    async def test_spotify_url_shows_dialog(self, store, cipher, oauth):
        store.seed(spotify_client_id="sid", spotify_client_secret=cipher.encrypt("ssecret"))
        url = await oauth.build_authorization_url("spotify")
        params = {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}
        assert params["show_dialog"] == "true"
        assert "user-modify-playback-state" in params["scope"].split(" ")

    @pytest.mark.asyncio
    async def test_blank_credentials_raise(self, store, oauth):
        store.seed(google_client_id="   ")
        with pytest.raises(ConfigurationError):
            await oauth.build_authorization_url("google")

    @pytest.mark.asyncio
    async def test_environment_credentials_are_fallback(self, store, cipher, http, settings):
        settings.google_client_id = "env-id"
        settings.google_client_secret = "env-secret"
        manager = OAuthSessionManager(store, cipher, http, settings=settings)

        assert await manager.is_configured("google") is True
        url = await manager.build_authorization_url("google")
        assert "client_id=env-id" in url

    @pytest.mark.asyncio
    async def test_plaintext_client_secret_still_usable(self, store, oauth):
        store.seed(google_client_id="gid", google_client_secret="typed-in-plain")
        assert await oauth.is_configured("google") is True

    def test_state_for_another_user_rejected(self, oauth, store, cipher, http, settings):
        other = OAuthSessionManager(store, cipher, http, settings=settings, user_id="someone-else")
        state = other._states.create("someone-else", "google")
        with pytest.raises(InvalidStateError):
            oauth.verify_state("google", state)


class TestCodeExchange:
    @pytest.mark.asyncio
    async def test_refresh_token_is_stored_encrypted(self, store, cipher, upstream, oauth):
        _seed_google(store, cipher)
        upstream.add("POST", GOOGLE_TOKEN, (200, {"access_token": "at", "refresh_token": "rt-1", "expires_in": 3599}))

        assert await oauth.exchange_code("google", "code-1") == "rt-1"

        stored = store.records[USER_ID].google_refresh_token
        assert stored != "rt-1"
        assert cipher.decrypt(stored) == "rt-1"

        form = _form(upstream.requests[0])
        assert form["grant_type"] == "authorization_code"
        assert form["code"] == "code-1"
        assert form["client_id"] == "gid"
        assert form["client_secret"] == "gsecret"

    @pytest.mark.asyncio
    async def test_missing_refresh_token_keeps_previous(self, store, cipher, upstream, oauth):
        _seed_google(store, cipher, refresh_token="abc")
        upstream.add("POST", GOOGLE_TOKEN, (200, {"access_token": "at", "expires_in": 3599}))

        assert await oauth.exchange_code("google", "code-2") == "abc"
        assert cipher.decrypt(store.records[USER_ID].google_refresh_token) == "abc"
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_spotify_uses_basic_auth(self, store, cipher, upstream, oauth):
        store.seed(spotify_client_id="sid", spotify_client_secret=cipher.encrypt("ssecret"))
        upstream.add("POST", SPOTIFY_TOKEN, (200, {"access_token": "at", "refresh_token": "srt"}))

        await oauth.exchange_code("spotify", "code-3")

        request = upstream.requests[0]
        expected = "Basic " + base64.b64encode(b"sid:ssecret").decode()
        assert request.headers["Authorization"] == expected
        assert "client_secret" not in _form(request)


class TestAccessTokens:
    @pytest.mark.asyncio
    async def test_no_refresh_token_raises_without_network(self, store, cipher, upstream, oauth):
        _seed_google(store, cipher)
        with pytest.raises(NotAuthenticatedError):
            await oauth.get_access_token("google")
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_refresh_returns_access_token(self, store, cipher, upstream, oauth):
        _seed_google(store, cipher, refresh_token="rt")
        upstream.add("POST", GOOGLE_TOKEN, (200, {"access_token": "fresh", "expires_in": 3599}))

        assert await oauth.get_access_token("google") == "fresh"
        form = _form(upstream.requests[0])
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "rt"

    @pytest.mark.asyncio
    async def test_rotated_refresh_token_is_persisted(self, store, cipher, upstream, oauth):
        store.seed(
            spotify_client_id="sid",
            spotify_client_secret=cipher.encrypt("ssecret"),
            spotify_refresh_token=cipher.encrypt("old"),
        )
        upstream.add("POST", SPOTIFY_TOKEN, (200, {"access_token": "at", "refresh_token": "new"}))

        await oauth.get_access_token("spotify")
        assert cipher.decrypt(store.records[USER_ID].spotify_refresh_token) == "new"

    @pytest.mark.asyncio
    async def test_invalid_grant_requires_reauth(self, store, cipher, upstream, oauth):
        _seed_google(store, cipher, refresh_token="revoked")
        upstream.add("POST", GOOGLE_TOKEN, (400, {"error": "invalid_grant"}))

        with pytest.raises(ReauthRequiredError):
            await oauth.get_access_token("google")

    @pytest.mark.asyncio
    async def test_invalid_client_is_configuration_error(self, store, cipher, upstream, oauth):
        _seed_google(store, cipher, refresh_token="rt")
        upstream.add("POST", GOOGLE_TOKEN, (401, {"error": "invalid_client"}))

        with pytest.raises(ConfigurationError):
            await oauth.get_access_token("google")


class TestAuthState:
    @pytest.mark.asyncio
    async def test_states(self, store, cipher, upstream, oauth):
        assert await oauth.auth_state("google") is AuthState.NOT_CONFIGURED

        _seed_google(store, cipher)
        assert await oauth.auth_state("google") is AuthState.CONFIGURED

        _seed_google(store, cipher, refresh_token="rt")
        upstream.add("POST", GOOGLE_TOKEN, (200, {"access_token": "at"}))
        assert await oauth.auth_state("google") is AuthState.AUTHENTICATED
        assert await oauth.check_authenticated("google") is True

        upstream.add("POST", GOOGLE_TOKEN, (400, {"error": "invalid_grant"}))
        assert await oauth.auth_state("google") is AuthState.REAUTH_REQUIRED
        assert await oauth.check_authenticated("google") is False

    @pytest.mark.asyncio
    async def test_outage_is_not_reauth(self, store, cipher, upstream, oauth):
        _seed_google(store, cipher, refresh_token="rt")

        upstream.add("POST", GOOGLE_TOKEN, (503, {"error": "backend_error"}))
        assert await oauth.auth_state("google") is AuthState.UNAVAILABLE
        assert await oauth.check_authenticated("google") is False

        upstream.add("POST", GOOGLE_TOKEN, lambda request: httpx.Response(502, text="<html>Bad Gateway</html>"))
        assert await oauth.auth_state("google") is AuthState.UNAVAILABLE

        def timeout(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        upstream.add("POST", GOOGLE_TOKEN, timeout)
        assert await oauth.auth_state("google") is AuthState.UNAVAILABLE

        # The stored grant survives the outage.
        record = next(iter(store.records.values()))
        assert cipher.decrypt(record.google_refresh_token) == "rt"
