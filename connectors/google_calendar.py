"""
Google Calendar — OAuth2 web flow plus the read calls the dashboard needs.

``access_type=offline`` together with ``prompt=consent`` makes Google
issue a refresh token on every consent, not only the first one.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from connectors.base import BaseConnector, provider_error, response_json

logger = logging.getLogger(__name__)

# Google OAuth2 endpoints
_GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
_GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
_CALENDAR_API = "https://www.googleapis.com/calendar/v3"


class GoogleCalendarConnector(BaseConnector):
    """OAuth2 connector for Google Calendar (read-only)."""

    authorize_endpoint = _GOOGLE_AUTH_URL
    token_endpoint = _GOOGLE_TOKEN_URL
    token_auth = "body"

    @property
    def provider_name(self) -> str:
        return "google"

    @property
    def display_name(self) -> str:
        return "Google Calendar"

    @property
    def scopes(self) -> List[str]:
        return ["https://www.googleapis.com/auth/calendar.readonly"]

    @property
    def dashboard_page(self) -> str:
        return "calendar"

    def extra_auth_params(self) -> Dict[str, str]:
        return {
            "access_type": "offline",   # gets refresh_token
            "prompt": "consent",        # force consent to always get refresh_token
        }


class GoogleCalendarClient:
    """Bearer-authenticated calls against the Calendar v3 REST API."""

    provider = "google"

    def __init__(self, http: httpx.AsyncClient, access_token: str) -> None:
        self._http = http
        self._headers = {"Authorization": f"Bearer {access_token}"}

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        resp = await self._http.get(f"{_CALENDAR_API}{path}", params=params, headers=self._headers)
        if resp.is_error:
            raise provider_error(self.provider, resp)
        return response_json(self.provider, resp)

    async def list_calendars(self) -> List[Dict[str, Any]]:
        """Calendars on the user's calendar list."""
        data = await self._get("/users/me/calendarList", {"minAccessRole": "reader"})
        return data.get("items") or []

    async def list_events(
        self,
        calendar_id: str,
        time_min: str,
        time_max: str,
        max_results: int = 100,
    ) -> List[Dict[str, Any]]:
        """Expanded (single) events of one calendar in ``[time_min, time_max)``."""
        data = await self._get(
            f"/calendars/{quote(calendar_id, safe='')}/events",
            {
                "timeMin": time_min,
                "timeMax": time_max,
                "maxResults": max_results,
                "singleEvents": "true",
                "orderBy": "startTime",
            },
        )
        return data.get("items") or []
