"""
Pydantic schemas for the integration layer.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ═══════════════════════════════════════════════════════════════════════════════
# Settings
# ═══════════════════════════════════════════════════════════════════════════════


class IntegrationSettings(BaseModel):
    """
    The per-user settings record as seen by the integration layer.

    Secret fields hold the stored (encrypted) value; decrypt them through
    ``CredentialCipher`` before use.
    """

    user_id: str
    monday_api_key: Optional[str] = None
    redmine_url: Optional[str] = None
    redmine_api_key: Optional[str] = None
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_refresh_token: Optional[str] = None
    spotify_client_id: Optional[str] = None
    spotify_client_secret: Optional[str] = None
    spotify_refresh_token: Optional[str] = None
    theme: str = "dark"
    compact_mode: bool = False
    animations_enabled: bool = True


class SettingsUpdate(BaseModel):
    """Body of ``PUT /settings``; only the fields sent are written."""

    monday_api_key: Optional[str] = None
    redmine_url: Optional[str] = None
    redmine_api_key: Optional[str] = None
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    spotify_client_id: Optional[str] = None
    spotify_client_secret: Optional[str] = None
    theme: Optional[str] = None
    compact_mode: Optional[bool] = None
    animations_enabled: Optional[bool] = None


# ═══════════════════════════════════════════════════════════════════════════════
# Canonical read models
# ═══════════════════════════════════════════════════════════════════════════════


class Project(BaseModel):
    id: str
    title: str
    status: str = "No Status"
    status_color: Optional[str] = None
    status_tone: str = "gray"
    board: str = ""
    board_id: str = ""
    group_name: str = ""
    updated_at: Optional[str] = None
    url: str = ""


class MessageThread(BaseModel):
    """A Redmine issue presented as a conversation."""

    id: str
    client: str
    subject: str
    last_message: str = "No message"
    last_message_author: str = "Unknown"
    last_message_sent_by_me: bool = False
    needs_response: bool = False
    timestamp: str = ""
    unread: bool = False
    priority: str = "medium"  # "low" | "medium" | "high"
    status: str = ""
    tracker: str = ""
    url: str = ""
    assigned_to: Optional[str] = None
    author: Optional[str] = None
    created_on: Optional[str] = None
    updated_on: Optional[str] = None


class Attendee(BaseModel):
    email: Optional[str] = None
    display_name: Optional[str] = None
    response_status: Optional[str] = None
    organizer: bool = False


class CalendarEvent(BaseModel):
    id: str
    title: str = "Untitled Event"
    description: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    all_day: bool = False
    location: Optional[str] = None
    status: str = "confirmed"  # "confirmed" | "tentative" | "cancelled"
    url: Optional[str] = None
    calendar_id: str = "primary"
    calendar_name: Optional[str] = None
    color: Optional[str] = None
    attendees: List[Attendee] = Field(default_factory=list)
    organizer: Optional[str] = None


# ═══════════════════════════════════════════════════════════════════════════════
# Music
# ═══════════════════════════════════════════════════════════════════════════════


class Album(BaseModel):
    name: str = ""
    image: Optional[str] = None


class Track(BaseModel):
    id: Optional[str] = None
    name: str = ""
    artists: List[str] = Field(default_factory=list)
    album: Album = Field(default_factory=Album)
    duration_ms: Optional[int] = None
    played_at: Optional[str] = None
    popularity: Optional[int] = None


class PlaybackState(BaseModel):
    is_playing: bool = False
    track: Optional[Track] = None
    progress_ms: Optional[int] = None
    volume: Optional[int] = None
    device: Optional[str] = None
    shuffle: bool = False
    repeat: str = "off"


class Playlist(BaseModel):
    id: str
    name: str = ""
    description: Optional[str] = None
    image: Optional[str] = None
    tracks_count: int = 0
    owner: Optional[str] = None
    public: Optional[bool] = None


class MusicLibrary(BaseModel):
    playlists: List[Playlist] = Field(default_factory=list)
    recent_tracks: List[Track] = Field(default_factory=list)
    top_tracks: List[Track] = Field(default_factory=list)
    total: int = 0


class PlaybackCommand(BaseModel):
    action: str
    value: Optional[Any] = None


# ═══════════════════════════════════════════════════════════════════════════════
# Result envelope
# ═══════════════════════════════════════════════════════════════════════════════


class IntegrationResult(BaseModel):
    """
    What every facade operation returns.

    ``configured=False`` and ``authenticated=False`` are expected states,
    not failures; ``error`` / ``error_code`` are set only when something
    actually went wrong.
    """

    success: bool
    configured: bool = True
    authenticated: Optional[bool] = None
    data: Any = None
    cached: bool = False
    cache_age: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None, **kwargs: Any) -> "IntegrationResult":
        return cls(success=True, data=data, **kwargs)

    @classmethod
    def not_configured(cls, message: str) -> "IntegrationResult":
        return cls(success=False, configured=False, error=message, error_code="not_configured")

    @classmethod
    def not_authenticated(cls, message: str, code: str = "not_authenticated") -> "IntegrationResult":
        return cls(success=False, authenticated=False, error=message, error_code=code)

    @classmethod
    def failure(cls, message: str, code: str, **kwargs: Any) -> "IntegrationResult":
        return cls(success=False, error=message, error_code=code, **kwargs)
