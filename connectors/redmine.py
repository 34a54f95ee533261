"""
Redmine REST client (``X-Redmine-API-Key`` authentication).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from connectors.base import provider_error, response_json

logger = logging.getLogger(__name__)


class RedmineClient:
    provider = "redmine"

    def __init__(self, http: httpx.AsyncClient, base_url: str, api_key: str) -> None:
        self._http = http
        self._base_url = base_url.rstrip("/")
        self._headers = {"X-Redmine-API-Key": api_key, "Content-Type": "application/json"}

    async def _get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        clean = {k: v for k, v in (params or {}).items() if v is not None}
        resp = await self._http.get(f"{self._base_url}{endpoint}", params=clean, headers=self._headers)
        if resp.is_error:
            raise provider_error(self.provider, resp)
        return response_json(self.provider, resp)

    async def get_current_user(self) -> Dict[str, Any]:
        data = await self._get("/users/current.json")
        return data.get("user") or {}

    async def list_issues(
        self,
        *,
        assigned_to_id: Optional[str] = "me",
        status_id: Optional[str] = "open",
        project_id: Optional[str] = None,
        limit: int = 25,
        offset: int = 0,
        sort: str = "updated_on:desc",
    ) -> Dict[str, Any]:
        """Issue summaries (no journals) plus the total count."""
        data = await self._get(
            "/issues.json",
            {
                "assigned_to_id": assigned_to_id,
                "status_id": status_id,
                "project_id": project_id,
                "limit": limit,
                "offset": offset,
                "sort": sort,
            },
        )
        return {"issues": data.get("issues") or [], "total_count": data.get("total_count") or 0}

    async def get_issue(self, issue_id: int | str) -> Dict[str, Any]:
        """One issue including its journals (comments)."""
        data = await self._get(f"/issues/{issue_id}.json", {"include": "journals,attachments"})
        return data.get("issue") or {}

    async def get_issues_detailed(self, issue_ids: List[int | str]) -> List[Dict[str, Any]]:
        """
        Fetch details for every id concurrently.

        An issue whose detail call fails is logged and left out.
        """
        results = await asyncio.gather(
            *(self.get_issue(issue_id) for issue_id in issue_ids),
            return_exceptions=True,
        )
        detailed: List[Dict[str, Any]] = []
        for issue_id, result in zip(issue_ids, results):
            if isinstance(result, Exception):
                logger.warning("Skipping Redmine issue %s: %s", issue_id, result)
                continue
            if result:
                detailed.append(result)
        return detailed
