"""
Spotify — authorization-code flow with HTTP Basic client auth, plus the
player and library calls used by the music page.

Access tokens are not kept between requests; every call derives a fresh
one from the stored refresh token.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from connectors.base import BaseConnector, provider_error, response_json
from connectors.errors import InvalidActionError, PremiumRequiredError

logger = logging.getLogger(__name__)

_SPOTIFY_AUTH_URL = "https://accounts.spotify.com/authorize"
_SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"
_SPOTIFY_API = "https://api.spotify.com/v1"

# action -> (HTTP method, path, query parameter carrying ``value``)
PLAYBACK_ACTIONS: Dict[str, Tuple[str, str, Optional[str]]] = {
    "play": ("PUT", "/me/player/play", None),
    "pause": ("PUT", "/me/player/pause", None),
    "next": ("POST", "/me/player/next", None),
    "previous": ("POST", "/me/player/previous", None),
    "volume": ("PUT", "/me/player/volume", "volume_percent"),
    "shuffle": ("PUT", "/me/player/shuffle", "state"),
    "repeat": ("PUT", "/me/player/repeat", "state"),
    "seek": ("PUT", "/me/player/seek", "position_ms"),
}


class SpotifyConnector(BaseConnector):
    """OAuth2 connector for Spotify."""

    authorize_endpoint = _SPOTIFY_AUTH_URL
    token_endpoint = _SPOTIFY_TOKEN_URL
    token_auth = "basic"

    @property
    def provider_name(self) -> str:
        return "spotify"

    @property
    def display_name(self) -> str:
        return "Spotify"

    @property
    def scopes(self) -> List[str]:
        return [
            "user-read-playback-state",
            "user-modify-playback-state",
            "user-read-currently-playing",
            "playlist-read-private",
            "playlist-read-collaborative",
            "user-library-read",
            "user-read-recently-played",
            "user-top-read",
        ]

    @property
    def dashboard_page(self) -> str:
        return "music"

    def extra_auth_params(self) -> Dict[str, str]:
        return {"show_dialog": "true"}


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class SpotifyClient:
    provider = "spotify"

    def __init__(self, http: httpx.AsyncClient, access_token: str) -> None:
        self._http = http
        self._headers = {"Authorization": f"Bearer {access_token}"}

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        return await self._http.get(f"{_SPOTIFY_API}{path}", params=params, headers=self._headers)

    async def get_playback(self) -> Optional[Dict[str, Any]]:
        """Current playback, or ``None`` when nothing is playing (HTTP 204)."""
        resp = await self._get("/me/player")
        if resp.status_code == 204:
            return None
        if resp.is_error:
            raise provider_error(self.provider, resp)
        return response_json(self.provider, resp)

    async def control(self, action: str, value: Any = None) -> None:
        """Send a playback command; 403 means the account is not premium."""
        if action not in PLAYBACK_ACTIONS:
            raise InvalidActionError(action)
        method, path, param = PLAYBACK_ACTIONS[action]
        if param is not None and value is None:
            raise InvalidActionError(f"{action} requires a value")

        params = {param: _query_value(value)} if param else None
        resp = await self._http.request(
            method,
            f"{_SPOTIFY_API}{path}",
            params=params,
            headers={**self._headers, "Content-Type": "application/json"},
        )
        if resp.status_code == 403:
            raise PremiumRequiredError(self.provider)
        if resp.is_error:
            logger.error("Spotify API error on %s: %s", action, resp.text)
            raise provider_error(self.provider, resp)

    async def list_playlists(self, limit: int = 20) -> Dict[str, Any]:
        resp = await self._get("/me/playlists", {"limit": limit})
        if resp.is_error:
            raise provider_error(self.provider, resp)
        return response_json(self.provider, resp)

    async def recently_played(self, limit: int = 10) -> List[Dict[str, Any]]:
        resp = await self._get("/me/player/recently-played", {"limit": limit})
        if resp.is_error:
            raise provider_error(self.provider, resp)
        return response_json(self.provider, resp).get("items") or []

    async def top_tracks(self, limit: int = 10, time_range: str = "short_term") -> List[Dict[str, Any]]:
        resp = await self._get("/me/top/tracks", {"limit": limit, "time_range": time_range})
        if resp.is_error:
            raise provider_error(self.provider, resp)
        return response_json(self.provider, resp).get("items") or []
