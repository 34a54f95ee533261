"""
IntegrationFacade — the one entry point the API routes talk to.

Each operation first checks whether its provider is configured (no network
involved), then gets credentials, consults the cache where applicable,
calls the provider client and normalizes the result. Failures come back as
an ``IntegrationResult``; nothing raised by a provider escapes.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from config.settings import Settings, config
from connectors.cache import ResultCache
from connectors.encryption import SENSITIVE_FIELDS, CredentialCipher
from connectors.errors import (
    ConfigurationError,
    IntegrationError,
    InvalidActionError,
    NotAuthenticatedError,
    ReauthRequiredError,
)
from connectors.google_calendar import GoogleCalendarClient
from connectors.monday import MondayClient
from connectors.normalizer import (
    normalize_calendar_event,
    normalize_monday_projects,
    normalize_music_library,
    normalize_playback,
    normalize_redmine_issue,
    parse_timestamp,
)
from connectors.redmine import RedmineClient
from connectors.spotify import PLAYBACK_ACTIONS, SpotifyClient
from connectors.token_manager import AuthState, OAuthSessionManager
from database.settings_store import SETTINGS_FIELDS, SettingsStore
from utils.schemas import CalendarEvent, IntegrationResult, IntegrationSettings

logger = logging.getLogger(__name__)

MONDAY_PROJECTS = "monday.projects"
REDMINE_ISSUES = "redmine.issues"

# Settings fields whose change makes a cache slot meaningless.
_CACHE_DEPENDENCIES = {
    "monday_api_key": MONDAY_PROJECTS,
    "redmine_url": REDMINE_ISSUES,
    "redmine_api_key": REDMINE_ISSUES,
}

_REFRESH_TOKEN_FIELDS = ("google_refresh_token", "spotify_refresh_token")
_PREFERENCE_FIELDS = ("theme", "compact_mode", "animations_enabled")


def _rfc3339(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


def _event_start(event: CalendarEvent) -> datetime:
    # All-day dates parse as midnight UTC.
    return parse_timestamp(event.start) or _FAR_FUTURE


class IntegrationFacade:
    def __init__(
        self,
        store: SettingsStore,
        cipher: CredentialCipher,
        http: httpx.AsyncClient,
        cache: ResultCache,
        oauth: OAuthSessionManager,
        *,
        settings: Settings = config,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._store = store
        self._cipher = cipher
        self._http = http
        self._cache = cache
        self._oauth = oauth
        self._settings = settings
        self._clock = clock

    @property
    def user_id(self) -> str:
        return self._oauth.user_id

    async def _record(self) -> IntegrationSettings:
        record = await self._store.get_settings(self.user_id)
        return record or IntegrationSettings(user_id=self.user_id)

    async def _guard(self, label: str, operation: Callable[[], Awaitable[IntegrationResult]]) -> IntegrationResult:
        """Run ``operation`` and turn any integration/network failure into a result."""
        try:
            return await operation()
        except ConfigurationError as exc:
            return IntegrationResult.not_configured(exc.message)
        except ReauthRequiredError as exc:
            return IntegrationResult.not_authenticated(exc.message, code=exc.code)
        except NotAuthenticatedError as exc:
            return IntegrationResult.not_authenticated(exc.message)
        except IntegrationError as exc:
            logger.warning("%s failed: %s", label, exc.message)
            return IntegrationResult.failure(exc.message, exc.code)
        except httpx.HTTPError as exc:
            logger.error("%s failed: %s", label, exc)
            return IntegrationResult.failure(f"{label} failed: could not reach provider", "network_error")
        except (KeyError, TypeError, ValueError):
            # Payload shapes the clients and normalizer did not anticipate.
            logger.exception("%s failed on an unexpected provider response", label)
            return IntegrationResult.failure(f"{label} failed: unexpected provider response", "provider_error")

    # ── Monday.com projects ─────────────────────────────────────────────

    async def get_projects(self, force_refresh: bool = False) -> IntegrationResult:
        record = await self._record()
        api_key = self._cipher.reveal(record.monday_api_key).strip()
        if not api_key:
            return IntegrationResult.not_configured(
                "Monday.com API key not configured. Please add it in Settings."
            )

        async def fetch():
            client = MondayClient(self._http, api_key)
            board_items = await client.fetch_projects(
                self._settings.monday_board_names,
                self._settings.monday_excluded_groups,
            )
            return normalize_monday_projects(
                board_items,
                account_slug=self._settings.monday_account_slug,
                view_id=self._settings.monday_view_id,
            )

        async def run() -> IntegrationResult:
            lookup = await self._cache.get_or_fetch(MONDAY_PROJECTS, fetch, force_refresh=force_refresh)
            projects = lookup.value or []
            boards: Dict[str, int] = {}
            for project in projects:
                boards[project.board] = boards.get(project.board, 0) + 1
            return IntegrationResult.ok(
                projects,
                cached=lookup.hit,
                cache_age=lookup.age_seconds,
                meta={
                    "total": len(projects),
                    "boards": [{"name": name, "count": count} for name, count in boards.items()],
                },
            )

        return await self._guard("Monday.com projects", run)

    # ── Redmine issues ──────────────────────────────────────────────────

    async def get_issues_as_message_threads(self, force_refresh: bool = False) -> IntegrationResult:
        record = await self._record()
        base_url = (record.redmine_url or "").strip()
        api_key = self._cipher.reveal(record.redmine_api_key).strip()
        if not base_url or not api_key:
            return IntegrationResult.not_configured(
                "Redmine URL and API key not configured. Please add them in Settings."
            )

        async def fetch():
            client = RedmineClient(self._http, base_url, api_key)
            current_user = await client.get_current_user()
            listing = await client.list_issues(limit=self._settings.redmine_issue_limit)
            issue_ids = [i["id"] for i in listing["issues"] if i and i.get("id") is not None]
            detailed = await client.get_issues_detailed(issue_ids)
            now = self._clock()
            return {
                "threads": [
                    normalize_redmine_issue(issue, base_url, current_user.get("id"), now)
                    for issue in detailed
                ],
                "total_count": listing["total_count"],
            }

        async def run() -> IntegrationResult:
            lookup = await self._cache.get_or_fetch(REDMINE_ISSUES, fetch, force_refresh=force_refresh)
            payload = lookup.value or {"threads": [], "total_count": 0}
            return IntegrationResult.ok(
                payload["threads"],
                cached=lookup.hit,
                cache_age=lookup.age_seconds,
                meta={"total_count": payload["total_count"], "redmine_url": base_url},
            )

        return await self._guard("Redmine issues", run)

    # ── Google Calendar events ──────────────────────────────────────────

    async def get_calendar_events(
        self,
        time_min: Optional[str] = None,
        time_max: Optional[str] = None,
    ) -> IntegrationResult:
        now = self._clock()
        time_min = time_min or _rfc3339(now)
        time_max = time_max or _rfc3339(now + timedelta(days=self._settings.calendar_window_days))

        async def run() -> IntegrationResult:
            if not await self._oauth.is_configured("google"):
                return IntegrationResult.not_configured(
                    "Google Calendar is not configured. Please add your Client ID and Secret in Settings."
                )
            access_token = await self._oauth.get_access_token("google")
            client = GoogleCalendarClient(self._http, access_token)

            calendars = [c for c in await client.list_calendars() if c and c.get("id")] or [{"id": "primary"}]
            results = await asyncio.gather(
                *(client.list_events(cal["id"], time_min, time_max) for cal in calendars),
                return_exceptions=True,
            )

            events: List[CalendarEvent] = []
            skipped = []
            for calendar, result in zip(calendars, results):
                if isinstance(result, Exception):
                    logger.warning("Skipping calendar %s: %s", calendar.get("id"), result)
                    skipped.append(calendar.get("id"))
                    continue
                events.extend(normalize_calendar_event(event, calendar) for event in result if event)

            events.sort(key=_event_start)
            return IntegrationResult.ok(
                events,
                authenticated=True,
                meta={
                    "time_min": time_min,
                    "time_max": time_max,
                    "calendars": len(calendars),
                    "skipped_calendars": skipped,
                },
            )

        return await self._guard("Google Calendar events", run)

    # ── Spotify ─────────────────────────────────────────────────────────

    async def _spotify_client(self) -> SpotifyClient:
        if not await self._oauth.is_configured("spotify"):
            raise ConfigurationError(
                "Spotify credentials not configured. Please add them in Settings.",
                provider="spotify",
            )
        access_token = await self._oauth.get_access_token("spotify")
        return SpotifyClient(self._http, access_token)

    async def get_playback_state(self) -> IntegrationResult:
        async def run() -> IntegrationResult:
            client = await self._spotify_client()
            playback = normalize_playback(await client.get_playback())
            meta = {} if playback else {"message": "No active playback"}
            return IntegrationResult.ok(playback, authenticated=True, meta=meta)

        return await self._guard("Spotify playback", run)

    async def control_playback(self, action: str, value: Any = None) -> IntegrationResult:
        async def run() -> IntegrationResult:
            if action not in PLAYBACK_ACTIONS:
                raise InvalidActionError(action)
            client = await self._spotify_client()
            await client.control(action, value)
            return IntegrationResult.ok({"action": action}, authenticated=True)

        return await self._guard("Spotify playback control", run)

    async def get_music_library(self, limit: int = 20) -> IntegrationResult:
        async def run() -> IntegrationResult:
            client = await self._spotify_client()
            playlists = await client.list_playlists(limit)
            recent, top = await asyncio.gather(
                client.recently_played(),
                client.top_tracks(),
                return_exceptions=True,
            )
            if isinstance(recent, Exception):
                logger.warning("Spotify recently played unavailable: %s", recent)
                recent = []
            if isinstance(top, Exception):
                logger.warning("Spotify top tracks unavailable: %s", top)
                top = []
            library = normalize_music_library(playlists, recent, top)
            return IntegrationResult.ok(library, authenticated=True)

        return await self._guard("Spotify library", run)

    # ── OAuth ───────────────────────────────────────────────────────────

    async def start_auth(self, provider: str) -> IntegrationResult:
        async def run() -> IntegrationResult:
            url = await self._oauth.build_authorization_url(provider)
            return IntegrationResult.ok({"auth_url": url, "provider": provider})

        return await self._guard(f"{provider} authorization", run)

    async def complete_auth(
        self,
        provider: str,
        code: Optional[str],
        state: Optional[str] = None,
        error: Optional[str] = None,
    ) -> IntegrationResult:
        """Handle an OAuth callback; the result says where the redirect should point."""
        if error:
            logger.info("%s authorization denied: %s", provider, error)
            return IntegrationResult.failure(f"Authorization denied: {error}", error)
        if not code:
            return IntegrationResult.failure("No authorization code received", "no_code")

        async def run() -> IntegrationResult:
            self._oauth.verify_state(provider, state)
            refresh_token = await self._oauth.exchange_code(provider, code)
            return IntegrationResult.ok(
                {"provider": provider},
                authenticated=bool(refresh_token),
            )

        return await self._guard(f"{provider} callback", run)

    async def check_auth(self, provider: str) -> IntegrationResult:
        async def run() -> IntegrationResult:
            state = await self._oauth.auth_state(provider)
            if state is AuthState.NOT_CONFIGURED:
                return IntegrationResult.not_configured(f"{provider} is not configured")
            if state is AuthState.UNAVAILABLE:
                return IntegrationResult.failure(
                    f"{provider} is temporarily unavailable; try again shortly",
                    "provider_unavailable",
                    data={"state": state.value},
                )
            authenticated = state is AuthState.AUTHENTICATED
            return IntegrationResult(
                success=authenticated,
                authenticated=authenticated,
                data={"state": state.value},
            )

        return await self._guard(f"{provider} status", run)

    # ── Settings ────────────────────────────────────────────────────────

    def _public_settings(self, record: IntegrationSettings) -> Dict[str, Any]:
        data = self._cipher.decrypt_fields(record.model_dump())
        for field in _REFRESH_TOKEN_FIELDS:
            provider = field.split("_", 1)[0]
            data[f"{provider}_connected"] = bool(data.pop(field, None))
        return data

    def _invalidate_for(self, fields) -> None:
        for field in fields:
            key = _CACHE_DEPENDENCIES.get(field)
            if key:
                self._cache.invalidate(key)

    async def get_settings(self) -> IntegrationResult:
        return IntegrationResult.ok(self._public_settings(await self._record()))

    async def update_settings(self, partial: Dict[str, Any]) -> IntegrationResult:
        writable = {
            k: v
            for k, v in partial.items()
            if k in SETTINGS_FIELDS
            and k not in _REFRESH_TOKEN_FIELDS
            and not (k in _PREFERENCE_FIELDS and v is None)
        }
        if not writable:
            return IntegrationResult.failure("No settings to update", "invalid_settings")
        record = await self._store.upsert_settings(
            self.user_id,
            self._cipher.encrypt_fields(writable, SENSITIVE_FIELDS),
        )
        self._invalidate_for(writable)
        return IntegrationResult.ok(self._public_settings(record))

    async def clear_setting(self, field: str) -> IntegrationResult:
        if field not in SETTINGS_FIELDS or field in _PREFERENCE_FIELDS:
            return IntegrationResult.failure(f"Cannot clear settings field '{field}'", "invalid_settings")
        record = await self._store.upsert_settings(self.user_id, {field: None})
        self._invalidate_for([field])
        return IntegrationResult.ok(self._public_settings(record))
