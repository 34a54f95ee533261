"""
FastAPI dependencies (shared across routes).
"""

from __future__ import annotations

from fastapi import Request

from connectors.facade import IntegrationFacade


def get_facade(request: Request) -> IntegrationFacade:
    """The facade built at startup; routes never construct their own."""
    return request.app.state.facade
