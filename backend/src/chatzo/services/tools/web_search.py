"""Web search tool backed by Serper or Firecrawl."""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from chatzo.config import settings
from chatzo.services.tools.base import ToolContext, ToolDefinition

logger = logging.getLogger(__name__)

SERPER_SEARCH_URL = "https://google.serper.dev/search"
SERPER_SCRAPE_URL = "https://scrape.serper.dev"
FIRECRAWL_SEARCH_URL = "https://api.firecrawl.dev/v1/search"

WEB_SEARCH_PARAMETERS: dict[str, Any] = {
    "type": "object",
    "properties": {
        "query": {"type": "string", "description": "The search query"},
        "scrape_content": {
            "type": "boolean",
            "description": "Whether to scrape and include content from search results",
        },
    },
    "required": ["query"],
}


class SearchError(Exception):
    """A search provider call failed."""


@dataclass
class SearchResult:
    title: str
    url: str
    description: str
    markdown: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {"title": self.title, "url": self.url, "description": self.description}
        if self.markdown:
            data["markdown"] = self.markdown
        return data


class SerperSearch:
    def __init__(self, api_key: str, client: httpx.AsyncClient):
        self.api_key = api_key
        self.client = client

    async def _scrape(self, url: str) -> str | None:
        try:
            response = await self.client.post(
                SERPER_SCRAPE_URL,
                headers={"X-API-KEY": self.api_key},
                json={"url": url, "includeMarkdown": True},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Serper scrape failed for {url}: {e}")
            return None
        body = response.json()
        return body.get("markdown") or body.get("text")

    async def search(self, query: str, limit: int, scrape_content: bool) -> list[SearchResult]:
        response = await self.client.post(
            SERPER_SEARCH_URL,
            headers={"X-API-KEY": self.api_key},
            json={"q": query, "num": limit},
        )
        if response.status_code != 200:
            raise SearchError(f"Serper search failed: HTTP {response.status_code}")

        results = [
            SearchResult(
                title=item.get("title", ""),
                url=item.get("link", ""),
                description=item.get("snippet", ""),
            )
            for item in response.json().get("organic", [])[:limit]
        ]
        if scrape_content:
            for result in results:
                result.markdown = await self._scrape(result.url)
        return results


class FirecrawlSearch:
    def __init__(self, api_key: str, client: httpx.AsyncClient):
        self.api_key = api_key
        self.client = client

    async def search(self, query: str, limit: int, scrape_content: bool) -> list[SearchResult]:
        payload: dict[str, Any] = {"query": query, "limit": limit}
        if scrape_content:
            payload["scrapeOptions"] = {"formats": ["markdown", "links"]}

        response = await self.client.post(
            FIRECRAWL_SEARCH_URL,
            headers={"Authorization": f"Bearer {self.api_key}"},
            json=payload,
        )
        if response.status_code != 200:
            raise SearchError(f"Firecrawl search failed: HTTP {response.status_code}")

        body = response.json()
        if not body.get("success", True):
            raise SearchError(body.get("error") or "Firecrawl search failed")

        return [
            SearchResult(
                title=item.get("title", ""),
                url=item.get("url", ""),
                description=item.get("description", ""),
                markdown=item.get("markdown"),
            )
            for item in body.get("data", [])
        ]


class SearchProvider:
    """Selects a search backend by name."""

    def __init__(self, provider: str, client: httpx.AsyncClient, api_key: str | None = None):
        if provider == "serper":
            key = api_key or settings.serper_api_key
            if not key:
                raise SearchError("Serper API key is not set")
            self.backend = SerperSearch(key, client)
        elif provider == "firecrawl":
            key = api_key or settings.firecrawl_api_key
            if not key:
                raise SearchError("Firecrawl API key is not set")
            self.backend = FirecrawlSearch(key, client)
        else:
            raise SearchError(f"Unsupported search provider: {provider}")

    async def search(
        self, query: str, limit: int = 5, scrape_content: bool = False
    ) -> list[SearchResult]:
        return await self.backend.search(query, limit, scrape_content)


async def run_web_search(
    query: str,
    scrape_content: bool = False,
    client: httpx.AsyncClient | None = None,
    provider: str | None = None,
) -> dict[str, Any]:
    """Run a search and return the tool payload. Never raises."""
    provider = provider or settings.search_provider
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=30.0)
    try:
        logger.info(f"Searching for {query!r} with {provider}")
        results = await SearchProvider(provider, client).search(
            query, limit=5, scrape_content=bool(scrape_content)
        )
        return {
            "success": True,
            "query": query,
            "results": [result.to_dict() for result in results],
            "count": len(results),
        }
    except Exception as e:
        logger.error(f"Web search error: {e}")
        return {"success": False, "error": str(e) or "Unknown error occurred", "query": query, "results": []}
    finally:
        if owns_client:
            await client.aclose()


async def web_search_adapter(ctx: ToolContext) -> dict[str, ToolDefinition]:
    if "web_search" not in ctx.enabled_tools:
        return {}

    async def execute(query: str, scrape_content: bool = False, **_: Any) -> dict[str, Any]:
        return await run_web_search(query, scrape_content, client=ctx.http)

    return {
        "web_search": ToolDefinition(
            name="web_search",
            description=(
                "Search the web for information. Optionally scrape content from "
                "results for detailed information."
            ),
            parameters=WEB_SEARCH_PARAMETERS,
            execute=execute,
        )
    }
