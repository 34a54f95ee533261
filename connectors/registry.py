"""
ConnectorRegistry — the OAuth connectors known to the application.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from connectors.base import BaseConnector
from connectors.google_calendar import GoogleCalendarConnector
from connectors.spotify import SpotifyConnector

logger = logging.getLogger(__name__)

# ── All known OAuth connectors — add new ones here ───────────────────────

_ALL_CONNECTORS: List[BaseConnector] = [
    GoogleCalendarConnector(),
    SpotifyConnector(),
]


class ConnectorRegistry:
    """Lookup of OAuth connectors by provider slug."""

    def __init__(self, connectors: Optional[List[BaseConnector]] = None) -> None:
        self._connectors: Dict[str, BaseConnector] = {
            c.provider_name: c for c in (connectors if connectors is not None else _ALL_CONNECTORS)
        }

    def get(self, provider: str) -> Optional[BaseConnector]:
        """Get a connector by provider name."""
        return self._connectors.get(provider)

    def list_providers(self) -> List[Dict[str, str]]:
        """Return info about all available connectors."""
        return [
            {
                "provider": c.provider_name,
                "display_name": c.display_name,
                "page": c.dashboard_page,
            }
            for c in self._connectors.values()
        ]
