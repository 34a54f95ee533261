"""
Connector API routes — OAuth connect/callback and connection status.

Route prefix: /api/v1/connectors
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse

from api.dependencies import get_facade
from api.routes import result_response
from config.settings import config
from connectors.facade import IntegrationFacade

logger = logging.getLogger(__name__)

router = APIRouter(tags=["connectors"])


def _provider_or_404(request: Request, provider: str):
    connector = request.app.state.registry.get(provider)
    if connector is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Provider '{provider}' not found",
        )
    return connector


def _dashboard_redirect(page: str, **params: str) -> RedirectResponse:
    url = f"{config.app_base_url.rstrip('/')}/dashboard/{page}?{urlencode(params)}"
    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


# ── Routes ─────────────────────────────────────────────────────────────


@router.get("/providers")
async def list_providers(request: Request) -> List[Dict[str, str]]:
    """Available OAuth providers and the dashboard page each one feeds."""
    return request.app.state.registry.list_providers()


@router.get("/{provider}/auth-url")
async def get_auth_url(
    provider: str,
    request: Request,
    facade: IntegrationFacade = Depends(get_facade),
) -> JSONResponse:
    """
    Authorization URL for a provider.

    The frontend navigates the browser to it; the provider later redirects
    back to the callback below.
    """
    _provider_or_404(request, provider)
    return result_response(await facade.start_auth(provider))


@router.get("/{provider}/status")
async def get_auth_status(
    provider: str,
    request: Request,
    facade: IntegrationFacade = Depends(get_facade),
) -> JSONResponse:
    _provider_or_404(request, provider)
    return result_response(await facade.check_auth(provider))


@router.get("/{provider}/callback")
async def oauth_callback(
    provider: str,
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    facade: IntegrationFacade = Depends(get_facade),
) -> RedirectResponse:
    """
    OAuth callback — the provider redirects here after consent.

    Exchanges the code, stores the refresh token and sends the browser back
    to the dashboard page of the provider with the outcome in the query.
    """
    connector = _provider_or_404(request, provider)
    result = await facade.complete_auth(provider, code, state, error)

    if result.success:
        logger.info("OAuth connected: provider=%s", provider)
        return _dashboard_redirect(connector.dashboard_page, success="true")

    logger.error("OAuth callback failed for %s: %s", provider, result.error)
    return _dashboard_redirect(connector.dashboard_page, error=result.error_code or "unknown_error")
