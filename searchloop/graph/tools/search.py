"""
tools/search.py
---------------
Web search behind one call shape, with three interchangeable providers
(Tavily, Exa, SearXNG) selected by `SEARCH_API`. Each provider normalizes its
vendor response into `SearchResults`.

Providers raise `SearchError` subclasses; `run_search` is the tool boundary
that turns any failure into an empty, error-flagged result so a turn can
still finish.
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, List, Literal, Optional, Tuple

import requests
from pydantic import BaseModel, Field
from tavily import TavilyClient

from ...config import Settings
from ...models import SearchResultItem, SearchResults

logger = logging.getLogger(__name__)

EXA_SEARCH_URL = "https://api.exa.ai/search"
HTTP_TIMEOUT = 20
MIN_QUERY_LENGTH = 5


class SearchError(Exception):
    pass


class SearchConfigError(SearchError):
    """A provider was selected but its credentials or URL are missing."""


class SearchAPIError(SearchError):
    """The provider answered with a failure or could not be reached."""


class SearchParams(BaseModel):
    """Search the web for information"""
    query: str = Field(..., description="The query to search for")
    max_results: int = Field(default=10, description="The maximum number of results to return")
    search_depth: Literal["basic", "advanced"] = Field(default="basic", description="The depth of the search")
    include_domains: List[str] = Field(default_factory=list, description="Domains to restrict the search to")
    exclude_domains: List[str] = Field(default_factory=list, description="Domains to leave out of the search")


def pad_query(query: str) -> str:
    """Vendor APIs reject very short queries; right-pad them with spaces."""
    if len(query) < MIN_QUERY_LENGTH:
        return query + " " * (MIN_QUERY_LENGTH - len(query))
    return query


def sanitize_url(url: str) -> str:
    return re.sub(r"\s+", "%20", url)


def error_result(query: str) -> SearchResults:
    return SearchResults(results=[], query=query, images=[], number_of_results=0)


# --------------------------------------------------------------------------------------
# Providers (blocking; `search` runs them in a worker thread)
# --------------------------------------------------------------------------------------
def tavily_search(
    query: str,
    max_results: int = 10,
    search_depth: str = "basic",
    include_domains: Optional[List[str]] = None,
    exclude_domains: Optional[List[str]] = None,
    *,
    api_key: str,
) -> SearchResults:
    if not api_key:
        raise SearchConfigError("TAVILY_API_KEY is not set in the environment variables")

    try:
        data = TavilyClient(api_key=api_key).search(
            query=query,
            search_depth=search_depth,
            max_results=max(max_results, 5),
            include_images=True,
            include_answer=True,
            include_domains=include_domains or [],
            exclude_domains=exclude_domains or [],
        )
    except Exception as e:
        raise SearchAPIError(f"Tavily API error: {e}") from e

    results = [
        SearchResultItem(title=r.get("title", ""), url=r.get("url", ""), content=r.get("content", ""))
        for r in data.get("results", [])
    ]
    images = [
        sanitize_url(img if isinstance(img, str) else img.get("url", ""))
        for img in data.get("images", [])
    ]
    return SearchResults(
        results=results,
        images=[i for i in images if i],
        query=data.get("query", query),
        number_of_results=len(results),
    )


def exa_search(
    query: str,
    max_results: int = 10,
    search_depth: str = "basic",
    include_domains: Optional[List[str]] = None,
    exclude_domains: Optional[List[str]] = None,
    *,
    api_key: str,
) -> SearchResults:
    if not api_key:
        raise SearchConfigError("EXA_API_KEY is not set in the environment variables")

    # Exa has no depth setting; search_depth is accepted for call-shape parity.
    body: Dict[str, Any] = {
        "query": query,
        "numResults": max_results,
        "contents": {"highlights": True},
    }
    if include_domains:
        body["includeDomains"] = include_domains
    if exclude_domains:
        body["excludeDomains"] = exclude_domains

    try:
        response = requests.post(
            EXA_SEARCH_URL,
            json=body,
            headers={"x-api-key": api_key, "Content-Type": "application/json"},
            timeout=HTTP_TIMEOUT,
        )
    except requests.RequestException as e:
        raise SearchAPIError(f"Exa API error: {e}") from e
    if not response.ok:
        raise SearchAPIError(f"Exa API error: {response.status_code} {response.reason}")

    rows = response.json().get("results", [])
    results = []
    for r in rows:
        highlights = r.get("highlights") or []
        results.append(
            SearchResultItem(
                title=r.get("title") or "",
                url=r.get("url") or "",
                content=(highlights[0] if highlights else r.get("text")) or "",
            )
        )
    return SearchResults(results=results, query=query, images=[], number_of_results=len(results))


def searxng_search(
    query: str,
    max_results: int = 10,
    search_depth: str = "basic",
    include_domains: Optional[List[str]] = None,
    exclude_domains: Optional[List[str]] = None,
    *,
    api_url: str,
) -> SearchResults:
    if not api_url:
        raise SearchConfigError("SEARXNG_API_URL is not set in the environment variables")

    params: Dict[str, Any] = {
        "q": query,
        "format": "json",
        "max_results": str(max_results),
        "categories": "general,images",
    }
    if include_domains:
        params["include_domains"] = ",".join(include_domains)
    if exclude_domains:
        params["exclude_domains"] = ",".join(exclude_domains)

    try:
        response = requests.get(
            f"{api_url}/search",
            params=params,
            headers={"Accept": "application/json"},
            timeout=HTTP_TIMEOUT,
        )
    except requests.RequestException as e:
        raise SearchAPIError(f"SearXNG API error: {e}") from e
    if not response.ok:
        logger.error("SearXNG API error (%s): %s", response.status_code, response.text)
        raise SearchAPIError(f"SearXNG API error: {response.status_code} {response.reason} - {response.text}")

    data = response.json()
    rows = data.get("results", [])
    general = [r for r in rows if not r.get("img_src")]
    images = []
    for r in rows:
        src = r.get("img_src") or ""
        if src:
            # relative when the instance proxies images
            images.append(src if src.startswith("http") else f"{api_url}{src}")

    results = [
        SearchResultItem(title=r.get("title", ""), url=r.get("url", ""), content=r.get("content", ""))
        for r in general
    ]
    return SearchResults(
        results=results,
        query=data.get("query", query),
        images=images,
        number_of_results=data.get("number_of_results", len(results)),
    )


# --------------------------------------------------------------------------------------
# Dispatch
# --------------------------------------------------------------------------------------
async def search(
    query: str,
    max_results: int = 10,
    search_depth: str = "basic",
    include_domains: Optional[List[str]] = None,
    exclude_domains: Optional[List[str]] = None,
    *,
    settings: Settings,
) -> SearchResults:
    """Run the configured provider. Raises `SearchError` on failure."""
    filled = pad_query(query)
    provider = settings.search_api
    logger.info("Using search API: %s", provider)

    if provider == "tavily":
        call, creds = tavily_search, {"api_key": settings.tavily_api_key}
    elif provider == "exa":
        call, creds = exa_search, {"api_key": settings.exa_api_key}
    else:
        call, creds = searxng_search, {"api_url": settings.searxng_api_url}

    return await asyncio.to_thread(
        call, filled, max_results, search_depth, include_domains or [], exclude_domains or [], **creds
    )


async def run_search(params: SearchParams, *, settings: Settings) -> Tuple[SearchResults, bool]:
    """
    Tool boundary: returns `(results, has_error)` and never raises for
    provider failures.
    """
    try:
        result = await search(
            params.query,
            params.max_results,
            params.search_depth,
            params.include_domains,
            params.exclude_domains,
            settings=settings,
        )
        return result, False
    except SearchError:
        logger.error("Search API error", exc_info=True)
        return error_result(pad_query(params.query)), True


def search_error_message(query: str) -> str:
    return f'An error occurred while searching for "{pad_query(query)}".'
