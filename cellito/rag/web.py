from __future__ import annotations

"""Web search client used to supplement internal evidence."""

from dataclasses import dataclass
import logging
from urllib.parse import urlparse

import httpx

from cellito.rag.types import WebResult

logger = logging.getLogger(__name__)

GOOGLE_SEARCH_URL = "https://www.googleapis.com/customsearch/v1"


class WebSearchError(RuntimeError):
    """Raised when the web search service fails or returns invalid data."""
    pass


def _hostname(url: str) -> str:
    return urlparse(url).hostname or ""


@dataclass(frozen=True)
class GoogleCustomSearch:
    """Google Custom Search JSON API client."""
    api_key: str
    engine_id: str
    timeout: float
    query_prefix: str = ""
    base_url: str = GOOGLE_SEARCH_URL
    transport: httpx.AsyncBaseTransport | None = None

    async def search(self, query: str, limit: int = 3) -> list[WebResult]:
        params = {
            "key": self.api_key,
            "cx": self.engine_id,
            "q": f"{self.query_prefix}{query}",
            "num": limit,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(self.base_url, params=params)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            raise WebSearchError(f"Web search error: {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise WebSearchError(str(exc) or "Web search request failed") from exc
        except ValueError as exc:
            raise WebSearchError("Invalid web search response") from exc

        items = data.get("items") or []
        if not isinstance(items, list):
            raise WebSearchError("Invalid web search response")
        results: list[WebResult] = []
        for item in items[:limit]:
            if not isinstance(item, dict):
                continue
            url = str(item.get("link") or "")
            results.append(
                WebResult(
                    title=str(item.get("title") or ""),
                    snippet=str(item.get("snippet") or ""),
                    url=url,
                    source=_hostname(url),
                )
            )
        logger.info("web_search_completed", extra={"results": len(results), "query_length": len(query)})
        return results
