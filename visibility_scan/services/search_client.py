# visibility_scan/services/search_client.py
"""
Tavily web search used by the retrieval-augmented provider path.

- tavily_search(query, max_results=5) -> SearchResults (async, never raises)
- format_search_context(results) -> prompt-ready context block
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from visibility_scan.config import cfg

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

TAVILY_SEARCH_URL = "https://api.tavily.com/search"
HTTP_TIMEOUT = 20.0
SNIPPET_CHARS = 600


@dataclass
class SearchResults:
    success: bool
    results: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None


async def tavily_search(query: str, max_results: Optional[int] = None,
                        client: Optional[httpx.AsyncClient] = None) -> SearchResults:
    """
    Run one Tavily search. Each result dict carries url, title and content.
    Failures come back as SearchResults(success=False, error=...).
    """
    if not cfg.TAVILY_API_KEY:
        return SearchResults(success=False, error="TAVILY_API_KEY not configured")

    payload = {
        "api_key": cfg.TAVILY_API_KEY,
        "query": query,
        "search_depth": "advanced",
        "include_answer": False,
        "max_results": max_results or cfg.SEARCH_MAX_RESULTS,
    }
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=HTTP_TIMEOUT) as c:
                r = await c.post(TAVILY_SEARCH_URL, json=payload)
        else:
            r = await client.post(TAVILY_SEARCH_URL, json=payload)
        r.raise_for_status()
        data = r.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("Tavily search failed for %r: %s", query[:80], e)
        return SearchResults(success=False, error=str(e))

    results = []
    for item in data.get("results", []) or []:
        url = item.get("url")
        if not url:
            continue
        results.append({
            "url": url,
            "title": item.get("title") or "",
            "content": (item.get("content") or "")[:SNIPPET_CHARS],
        })
    logger.debug("Tavily returned %d results for %r", len(results), query[:80])
    return SearchResults(success=True, results=results)


def format_search_context(results: List[Dict[str, Any]]) -> str:
    lines = []
    for i, r in enumerate(results, start=1):
        lines.append(f"[{i}] {r.get('title', '')}\n{r.get('content', '')}\nSource: {r.get('url', '')}")
    return "\n\n".join(lines)
