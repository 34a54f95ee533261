"""
REST API routes for the dashboard widgets and settings page.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from api.dependencies import get_facade
from connectors.facade import IntegrationFacade
from utils.schemas import IntegrationResult, PlaybackCommand, SettingsUpdate

logger = logging.getLogger(__name__)

router = APIRouter()

# Expected states (not configured, not authenticated) are answered with 200
# so the UI can render its setup prompts.
_ERROR_STATUS = {
    "invalid_action": 400,
    "invalid_settings": 400,
    "invalid_state": 400,
    "oauth_exchange_failed": 400,
    "premium_required": 403,
    "provider_error": 502,
    "network_error": 502,
    "provider_unavailable": 503,
}


def result_response(result: IntegrationResult) -> JSONResponse:
    status_code = 200
    if not result.success and result.configured and result.authenticated is not False:
        status_code = _ERROR_STATUS.get(result.error_code or "", 500)
    return JSONResponse(content=result.model_dump(mode="json"), status_code=status_code)


# ── Projects (Monday.com) ───────────────────────────────────────────────


@router.get("/projects")
async def get_projects(facade: IntegrationFacade = Depends(get_facade)) -> JSONResponse:
    return result_response(await facade.get_projects())


@router.post("/projects/refresh")
async def refresh_projects(facade: IntegrationFacade = Depends(get_facade)) -> JSONResponse:
    return result_response(await facade.get_projects(force_refresh=True))


# ── Messages (Redmine) ──────────────────────────────────────────────────


@router.get("/messages")
async def get_messages(facade: IntegrationFacade = Depends(get_facade)) -> JSONResponse:
    return result_response(await facade.get_issues_as_message_threads())


@router.post("/messages/refresh")
async def refresh_messages(facade: IntegrationFacade = Depends(get_facade)) -> JSONResponse:
    return result_response(await facade.get_issues_as_message_threads(force_refresh=True))


# ── Calendar ────────────────────────────────────────────────────────────


@router.get("/calendar/events")
async def get_calendar_events(
    time_min: Optional[str] = Query(None, description="RFC3339 lower bound, defaults to now"),
    time_max: Optional[str] = Query(None, description="RFC3339 upper bound, defaults to now + 30 days"),
    facade: IntegrationFacade = Depends(get_facade),
) -> JSONResponse:
    return result_response(await facade.get_calendar_events(time_min, time_max))


# ── Music ───────────────────────────────────────────────────────────────


@router.get("/music/player")
async def get_player(facade: IntegrationFacade = Depends(get_facade)) -> JSONResponse:
    return result_response(await facade.get_playback_state())


@router.post("/music/player")
async def control_player(
    command: PlaybackCommand,
    facade: IntegrationFacade = Depends(get_facade),
) -> JSONResponse:
    logger.info("Playback command: %s", command.action)
    return result_response(await facade.control_playback(command.action, command.value))


@router.get("/music/library")
async def get_library(
    limit: int = Query(20, ge=1, le=50),
    facade: IntegrationFacade = Depends(get_facade),
) -> JSONResponse:
    return result_response(await facade.get_music_library(limit))


# ── Settings ────────────────────────────────────────────────────────────


@router.get("/settings")
async def get_settings(facade: IntegrationFacade = Depends(get_facade)) -> JSONResponse:
    return result_response(await facade.get_settings())


@router.put("/settings")
async def update_settings(
    update: SettingsUpdate,
    facade: IntegrationFacade = Depends(get_facade),
) -> JSONResponse:
    return result_response(await facade.update_settings(update.model_dump(exclude_unset=True)))


@router.delete("/settings")
async def clear_setting(
    field: str = Query(..., description="Settings field to clear"),
    facade: IntegrationFacade = Depends(get_facade),
) -> JSONResponse:
    return result_response(await facade.clear_setting(field))


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    return {"status": "ok"}
