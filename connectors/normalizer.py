"""
Normalizer — reshape raw provider items into the canonical read models.

Pure functions, no I/O. Every lookup has a default so an unknown status,
priority or colour never raises; every raw item yields exactly one model.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from utils.schemas import (
    Album,
    Attendee,
    CalendarEvent,
    MessageThread,
    MusicLibrary,
    PlaybackState,
    Playlist,
    Project,
    Track,
)

logger = logging.getLogger(__name__)

UNREAD_WINDOW_HOURS = 24
CLOSED_STATUSES = frozenset({"closed", "resolved"})

NO_STATUS = "No Status"
DEFAULT_TONE = "gray"

# Monday status colours (hex) -> UI tone.
MONDAY_COLOR_TONES: Dict[str, str] = {
    "#579bfc": "blue",
    "#007eb5": "blue",
    "#0086c0": "blue",
    "#fdab3d": "orange",
    "#ff9000": "orange",
    "#c4c4c4": "gray",
    "#808080": "gray",
    "#00c875": "green",
    "#9cd326": "green",
    "#037f4c": "green",
    "#df2f4a": "red",
    "#e44258": "red",
    "#e484bd": "pink",
    "#a25ddc": "purple",
    "#784bd1": "purple",
    "#ffcb00": "yellow",
    "#cab641": "yellow",
}

# Substring of the Redmine priority name -> canonical priority, first match wins.
REDMINE_PRIORITIES: Tuple[Tuple[str, str], ...] = (
    ("urgent", "high"),
    ("immediate", "high"),
    ("critical", "high"),
    ("high", "high"),
    ("low", "low"),
)
DEFAULT_PRIORITY = "medium"

EVENT_STATUSES = {"confirmed": "confirmed", "tentative": "tentative", "cancelled": "cancelled"}
DEFAULT_EVENT_STATUS = "confirmed"

# Google Calendar event colorId -> hex
GOOGLE_EVENT_COLORS: Dict[str, str] = {
    "1": "#7986cb",
    "2": "#33b679",
    "3": "#8e24aa",
    "4": "#e67c73",
    "5": "#f6bf26",
    "6": "#f4511e",
    "7": "#039be5",
    "8": "#616161",
    "9": "#3f51b5",
    "10": "#0b8043",
    "11": "#d50000",
}


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) as aware UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════════
# Monday.com → Project
# ═══════════════════════════════════════════════════════════════════════════════


def status_tone(color: Optional[str]) -> str:
    if not color:
        return DEFAULT_TONE
    return MONDAY_COLOR_TONES.get(color.lower(), DEFAULT_TONE)


def monday_item_status(item: Mapping[str, Any], columns: List[Mapping[str, Any]]) -> Tuple[str, Optional[str]]:
    """
    Status label and colour of an item.

    The label is looked up by index in the column's ``settings_str``; the
    column text and then ``No Status`` are the fallbacks.
    """
    status_col = next(
        (
            col
            for col in item.get("column_values") or []
            if col and (col.get("id") == "status61" or (col.get("id") == "status" and col.get("type") == "status"))
        ),
        None,
    )
    if status_col is None:
        return NO_STATUS, None

    text = status_col.get("text") or NO_STATUS
    if not status_col.get("value"):
        return text, None

    try:
        index = str(json.loads(status_col["value"]).get("index"))
        column_def = next((c for c in columns if c and c.get("id") == status_col.get("id")), None)
        if column_def and column_def.get("settings_str"):
            settings = json.loads(column_def["settings_str"])
            label = (settings.get("labels") or {}).get(index)
            if label:
                color = ((settings.get("labels_colors") or {}).get(index) or {}).get("color")
                return label, color
    except (TypeError, ValueError, AttributeError) as exc:
        logger.debug("Unparseable Monday status on item %s: %s", item.get("id"), exc)

    return text, None


def monday_item_url(account_slug: str, board_id: str, item_id: str, view_id: str = "") -> str:
    view = f"/views/{view_id}" if view_id else ""
    return f"https://{account_slug}.monday.com/boards/{board_id}{view}/pulses/{item_id}"


def normalize_monday_item(
    item: Mapping[str, Any],
    board: Mapping[str, Any],
    account_slug: str = "",
    view_id: str = "",
) -> Project:
    label, color = monday_item_status(item, board.get("columns") or [])
    board_id = str(board.get("id") or "")
    item_id = str(item.get("id") or "")
    return Project(
        id=item_id,
        title=item.get("name") or "Untitled",
        status=label,
        status_color=color,
        status_tone=status_tone(color),
        board=board.get("name") or "",
        board_id=board_id,
        group_name=(item.get("group") or {}).get("title") or "",
        updated_at=item.get("updated_at"),
        url=monday_item_url(account_slug, board_id, item_id, view_id),
    )


def normalize_monday_projects(board_items: List[Any], account_slug: str = "", view_id: str = "") -> List[Project]:
    """Flatten ``MondayBoardItems`` into projects, most recently updated first."""
    projects = [
        normalize_monday_item(item, entry.board, account_slug, view_id)
        for entry in board_items
        for item in entry.items
        if item
    ]
    projects.sort(key=lambda p: p.updated_at or "", reverse=True)
    return projects


# ═══════════════════════════════════════════════════════════════════════════════
# Redmine → MessageThread
# ═══════════════════════════════════════════════════════════════════════════════


def map_redmine_priority(priority_name: Optional[str]) -> str:
    name = (priority_name or "").lower()
    for needle, priority in REDMINE_PRIORITIES:
        if needle in name:
            return priority
    return DEFAULT_PRIORITY


def is_issue_unread(issue: Mapping[str, Any], now: Optional[datetime] = None) -> bool:
    """Open (not closed/resolved) and updated within the last 24 hours."""
    status = ((issue.get("status") or {}).get("name") or "").lower()
    if status in CLOSED_STATUSES:
        return False
    updated = parse_timestamp(issue.get("updated_on"))
    if updated is None:
        return False
    hours = (_now(now) - updated).total_seconds() / 3600
    return hours < UNREAD_WINDOW_HOURS


def last_journal_with_notes(issue: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    journals = sorted(
        (j for j in issue.get("journals") or [] if j),
        key=lambda j: j.get("id") or 0,
        reverse=True,
    )
    return next((j for j in journals if (j.get("notes") or "").strip()), None)


def get_last_message(issue: Mapping[str, Any]) -> str:
    journal = last_journal_with_notes(issue)
    if journal is not None:
        return journal["notes"]
    return issue.get("description") or "No message"


def get_last_message_author(issue: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    journal = last_journal_with_notes(issue)
    if journal is not None:
        return journal.get("user")
    return issue.get("author")


def format_relative_time(timestamp: Optional[str], now: Optional[datetime] = None) -> str:
    moment = parse_timestamp(timestamp)
    if moment is None:
        return ""
    seconds = int((_now(now) - moment).total_seconds())

    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{seconds // 60} minutes ago"
    if seconds < 7200:
        return "1 hour ago"
    if seconds < 86400:
        return f"{seconds // 3600} hours ago"
    if seconds < 172800:
        return "1 day ago"
    if seconds < 604800:
        return f"{seconds // 86400} days ago"
    if seconds < 1209600:
        return "1 week ago"
    if seconds < 2592000:
        return f"{seconds // 604800} weeks ago"
    if seconds < 5184000:
        return "1 month ago"
    return f"{seconds // 2592000} months ago"


def redmine_issue_url(base_url: Optional[str], issue_id: Any) -> str:
    return f"{(base_url or '').rstrip('/')}/issues/{issue_id}"


def normalize_redmine_issue(
    issue: Mapping[str, Any],
    base_url: Optional[str],
    current_user_id: Optional[Any] = None,
    now: Optional[datetime] = None,
) -> MessageThread:
    author = get_last_message_author(issue) or {}
    sent_by_me = current_user_id is not None and str(author.get("id")) == str(current_user_id)
    unread = is_issue_unread(issue, now)
    issue_id = issue.get("id") or ""

    return MessageThread(
        id=str(issue_id),
        client=(issue.get("project") or {}).get("name") or "",
        subject=issue.get("subject") or "",
        last_message=get_last_message(issue),
        last_message_author=author.get("name") or "Unknown",
        last_message_sent_by_me=sent_by_me,
        needs_response=unread and not sent_by_me,
        timestamp=format_relative_time(issue.get("updated_on"), now),
        unread=unread,
        priority=map_redmine_priority((issue.get("priority") or {}).get("name")),
        status=(issue.get("status") or {}).get("name") or "",
        tracker=(issue.get("tracker") or {}).get("name") or "",
        url=redmine_issue_url(base_url, issue_id),
        assigned_to=(issue.get("assigned_to") or {}).get("name"),
        author=(issue.get("author") or {}).get("name"),
        created_on=issue.get("created_on"),
        updated_on=issue.get("updated_on"),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Google Calendar → CalendarEvent
# ═══════════════════════════════════════════════════════════════════════════════


def _event_time(value: Union[Mapping[str, Any], str, None]) -> Optional[str]:
    if isinstance(value, str):
        return value
    if not value:
        return None
    return value.get("dateTime") or value.get("date")


def is_all_day(start: Union[Mapping[str, Any], str, None]) -> bool:
    """All-day events carry a date without a time-of-day component."""
    if isinstance(start, str):
        return "T" not in start
    if not start:
        return False
    return not start.get("dateTime") and bool(start.get("date"))


def normalize_calendar_event(
    event: Mapping[str, Any],
    calendar: Optional[Mapping[str, Any]] = None,
) -> CalendarEvent:
    calendar = calendar or {}
    organizer = event.get("organizer") or {}
    return CalendarEvent(
        id=str(event.get("id") or ""),
        title=event.get("summary") or "Untitled Event",
        description=event.get("description"),
        start=_event_time(event.get("start")),
        end=_event_time(event.get("end")),
        all_day=is_all_day(event.get("start")),
        location=event.get("location"),
        status=EVENT_STATUSES.get(event.get("status") or "", DEFAULT_EVENT_STATUS),
        url=event.get("htmlLink"),
        calendar_id=calendar.get("id") or "primary",
        calendar_name=calendar.get("summaryOverride") or calendar.get("summary"),
        color=GOOGLE_EVENT_COLORS.get(str(event.get("colorId")), calendar.get("backgroundColor")),
        attendees=[
            Attendee(
                email=a.get("email"),
                display_name=a.get("displayName"),
                response_status=a.get("responseStatus"),
                organizer=bool(a.get("organizer")),
            )
            for a in event.get("attendees") or []
            if a
        ],
        organizer=organizer.get("displayName") or organizer.get("email"),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Spotify
# ═══════════════════════════════════════════════════════════════════════════════


def _first_image(images: Optional[List[Mapping[str, Any]]]) -> Optional[str]:
    first = (images or [None])[0]
    return first.get("url") if first else None


def normalize_track(raw: Optional[Mapping[str, Any]], played_at: Optional[str] = None) -> Optional[Track]:
    if not raw:
        return None
    album = raw.get("album") or {}
    return Track(
        id=raw.get("id"),
        name=raw.get("name") or "",
        artists=[a.get("name") or "" for a in raw.get("artists") or [] if a],
        album=Album(name=album.get("name") or "", image=_first_image(album.get("images"))),
        duration_ms=raw.get("duration_ms"),
        played_at=played_at,
        popularity=raw.get("popularity"),
    )


def normalize_playback(raw: Optional[Mapping[str, Any]]) -> Optional[PlaybackState]:
    """``None`` (nothing playing) stays ``None``."""
    if raw is None:
        return None
    device = raw.get("device") or {}
    return PlaybackState(
        is_playing=bool(raw.get("is_playing")),
        track=normalize_track(raw.get("item")),
        progress_ms=raw.get("progress_ms"),
        volume=device.get("volume_percent"),
        device=device.get("name"),
        shuffle=bool(raw.get("shuffle_state")),
        repeat=raw.get("repeat_state") or "off",
    )


def normalize_playlist(raw: Mapping[str, Any]) -> Playlist:
    return Playlist(
        id=str(raw.get("id") or ""),
        name=raw.get("name") or "",
        description=raw.get("description"),
        image=_first_image(raw.get("images")),
        tracks_count=(raw.get("tracks") or {}).get("total") or 0,
        owner=(raw.get("owner") or {}).get("display_name"),
        public=raw.get("public"),
    )


def normalize_music_library(
    playlists: Mapping[str, Any],
    recent: List[Mapping[str, Any]],
    top: List[Mapping[str, Any]],
) -> MusicLibrary:
    recent_tracks = [normalize_track(item.get("track"), item.get("played_at")) for item in recent if item]
    top_tracks = [normalize_track(track) for track in top]
    return MusicLibrary(
        playlists=[normalize_playlist(p) for p in playlists.get("items") or [] if p],
        recent_tracks=[t for t in recent_tracks if t is not None],
        top_tracks=[t for t in top_tracks if t is not None],
        total=playlists.get("total") or 0,
    )
