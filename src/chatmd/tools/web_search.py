"""Web Search tool — search the web through Brave Search or a custom endpoint.

Results are a list of {title, url, snippet} dicts. web_search is
approval-gated by default: the user picks which results the model sees.
"""

from __future__ import annotations

import logging

import httpx

import chatmd.core.config as config_module
from chatmd.tools.base import ChatTool, ToolError, ToolParam

logger = logging.getLogger(__name__)

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
MAX_WEB_RESULTS = 10


class WebSearchTool(ChatTool):
    name = "web_search"
    description = (
        "Search the web for information on a topic. Returns titles, URLs, and "
        "snippets from search results. User will be asked to approve which "
        "results to share."
    )
    parameters = [
        ToolParam(name="query", type="string", description="The search query to look up on the web"),
        ToolParam(
            name="limit",
            type="integer",
            description="Maximum number of search results to return. Default is 5, maximum is 10.",
            required=False,
            default=5,
        ),
    ]

    def __init__(
        self,
        provider: str | None = None,
        api_key: str | None = None,
        api_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        tools_config = config_module.config.tools
        self.provider = (provider or tools_config.web_search_provider).lower()
        self.api_key = tools_config.web_search_api_key if api_key is None else api_key
        self.api_url = tools_config.web_search_api_url if api_url is None else api_url
        self.client = client

    async def execute(self, query: str, limit: int = 5) -> list[dict]:
        try:
            limit = max(1, min(int(limit), MAX_WEB_RESULTS))
        except (TypeError, ValueError):
            raise ValueError(f"limit must be an integer, got {limit!r}")

        logger.info(f"Web search: '{query}' using {self.provider}")

        if self.provider == "brave":
            if not self.api_key:
                raise ToolError("Brave Search requires an API key. Please configure it.")
            return await self._search_brave(query, limit)
        if self.provider == "custom":
            if not self.api_url:
                raise ToolError("Custom search requires an API URL. Please configure it.")
            return await self._search_custom(query, limit)
        raise ToolError(f"Unknown search provider: {self.provider}")

    async def _get(self, url: str, params: dict, headers: dict) -> dict:
        try:
            if self.client is not None:
                response = await self.client.get(url, params=params, headers=headers)
            else:
                timeout = config_module.config.transport.connect_timeout
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.get(url, params=params, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise ToolError(f"Web search failed: {e}") from e
        except ValueError as e:
            raise ToolError("Web search returned invalid JSON") from e
        return data if isinstance(data, dict) else {}

    async def _search_brave(self, query: str, limit: int) -> list[dict]:
        data = await self._get(
            BRAVE_SEARCH_URL,
            params={"q": query, "count": limit},
            headers={"Accept": "application/json", "X-Subscription-Token": self.api_key},
        )
        web = data.get("web") if isinstance(data.get("web"), dict) else {}
        results = web.get("results") if isinstance(web.get("results"), list) else []
        return [
            {
                "title": r.get("title", ""),
                "url": r.get("url", ""),
                "snippet": r.get("description", ""),
            }
            for r in results[:limit]
            if isinstance(r, dict)
        ]

    async def _search_custom(self, query: str, limit: int) -> list[dict]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        data = await self._get(self.api_url, params={"q": query, "limit": limit}, headers=headers)
        results = data.get("results") if isinstance(data.get("results"), list) else []
        return [
            {
                "title": r.get("title") or "Untitled",
                "url": r.get("url") or r.get("link") or "",
                "snippet": r.get("snippet") or r.get("description") or "",
            }
            for r in results[:limit]
            if isinstance(r, dict)
        ]
