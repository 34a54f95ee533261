"""
Monday.com GraphQL client.

Authenticates with the personal API token in the ``Authorization``
header (no ``Bearer`` prefix). Only the board/item reads used for the
projects page are implemented.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

import httpx

from connectors.base import provider_error, response_json
from connectors.errors import ProviderError

logger = logging.getLogger(__name__)

MONDAY_API_URL = "https://api.monday.com/v2"

_ME_AND_BOARDS_QUERY = """
query {
  me { id name email account { id name slug } }
  boards(limit: 100) { id name }
}
"""

_BOARD_ITEMS_QUERY = """
query GetBoardItems($boardIds: [ID!], $limit: Int!) {
  boards(ids: $boardIds) {
    id
    name
    columns { id title type settings_str }
    items_page(limit: $limit) {
      cursor
      items {
        id
        name
        group { id title }
        column_values { id text type value }
        updated_at
      }
    }
  }
}
"""

_PEOPLE_COLUMN_TYPES = ("people", "multiple-person")


@dataclass
class MondayBoardItems:
    """One board (with its column definitions) and the items kept from it."""

    board: Dict[str, Any]
    items: List[Dict[str, Any]] = field(default_factory=list)


def is_assigned_to(item: Mapping[str, Any], user_id: str) -> bool:
    """True if ``user_id`` appears in any people column of ``item``."""
    for col in item.get("column_values") or []:
        if not col or col.get("type") not in _PEOPLE_COLUMN_TYPES or not col.get("value"):
            continue
        try:
            value = json.loads(col["value"])
        except (TypeError, ValueError):
            continue
        people = (value.get("personsAndTeams") if isinstance(value, dict) else None) or []
        if any(p and str(p.get("id")) == str(user_id) for p in people):
            return True
    return False


class MondayClient:
    provider = "monday"

    def __init__(self, http: httpx.AsyncClient, api_key: str) -> None:
        self._http = http
        self._api_key = api_key

    async def _query(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        resp = await self._http.post(
            MONDAY_API_URL,
            json={"query": query, "variables": variables or {}},
            headers={"Authorization": self._api_key, "Content-Type": "application/json"},
        )
        if resp.is_error:
            raise provider_error(self.provider, resp)

        body = response_json(self.provider, resp)
        errors = body.get("errors") or ([body["error_message"]] if body.get("error_message") else [])
        if errors or not isinstance(body.get("data"), dict):
            first = errors[0] if errors else "empty response"
            message = first.get("message") if isinstance(first, dict) else str(first)
            raise ProviderError(self.provider, resp.status_code, f"GraphQL error: {message}")
        return body["data"]

    async def fetch_projects(
        self,
        board_names: Iterable[str],
        excluded_groups: Optional[Mapping[str, List[str]]] = None,
        limit: int = 500,
    ) -> List[MondayBoardItems]:
        """
        Items assigned to the current user on the named boards.

        Two round trips: current user + board list, then columns and items
        of every matching board in one query.
        """
        wanted = list(board_names)
        data = await self._query(_ME_AND_BOARDS_QUERY)
        me = data.get("me") or {}
        if not me.get("id"):
            raise ProviderError(self.provider, 200, "Failed to get current user from Monday.com")

        board_ids = [b["id"] for b in data.get("boards") or [] if b and b.get("id") and b.get("name") in wanted]
        if not board_ids:
            logger.warning("No Monday boards found with names: %s", wanted)
            return []

        data = await self._query(_BOARD_ITEMS_QUERY, {"boardIds": board_ids, "limit": limit})
        excluded_groups = excluded_groups or {}

        results: List[MondayBoardItems] = []
        for board in data.get("boards") or []:
            if not board:
                continue
            items = (board.get("items_page") or {}).get("items") or []
            hidden = set(excluded_groups.get(board.get("name", ""), []))
            kept = [
                item
                for item in items
                if item
                and is_assigned_to(item, me["id"])
                and (item.get("group") or {}).get("title") not in hidden
            ]
            results.append(MondayBoardItems(board=board, items=kept))

        logger.info(
            "Monday: %d items across %d boards",
            sum(len(r.items) for r in results),
            len(results),
        )
        return results
