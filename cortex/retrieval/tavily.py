"""Tavily web search adapter for the retrieval protocol."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Literal

from tavily import TavilyClient

from ..document.models import Source, dedupe_sources
from ..exceptions import TransientCapabilityError
from ..settings import TAVILY_API_KEY
from .models import RetrievalResult
from .protocols import RetrievalProvider

logger = logging.getLogger(__name__)

FALLBACK_ANSWER_CHARS = 1200


class TavilyRetriever(RetrievalProvider):
    """
    Retrieval backed by Tavily search.

    Tavily returns a synthesized answer plus ranked results; the results
    become the sources. The Tavily client is synchronous, so each call runs
    in a worker thread.

    Usage:
        async with TavilyRetriever() as retriever:
            result = await retriever.search("largest producers of lithium")
    """

    def __init__(
        self,
        api_key: str | None = None,
        search_depth: Literal["basic", "advanced"] = "basic",
        max_results: int = 5,
        include_answer: bool = True,
    ):
        """
        Initialize the Tavily retriever.

        Args:
            api_key: Optional API key. If not provided, uses TAVILY_API_KEY env var.
            search_depth: Tavily search depth
            max_results: Number of results (sources) to request
            include_answer: Ask Tavily for a synthesized answer
        """
        self.api_key = api_key or TAVILY_API_KEY
        self.search_depth = search_depth
        self.max_results = max_results
        self.include_answer = include_answer
        self._client: TavilyClient | None = None

        if not self.api_key:
            raise ValueError("Tavily API key required. Set TAVILY_API_KEY in .env")

    async def __aenter__(self) -> "TavilyRetriever":
        self._client = TavilyClient(api_key=self.api_key)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self._client = None

    @property
    def client(self) -> TavilyClient:
        if self._client is None:
            raise RuntimeError(
                "Client not initialized. Use 'async with' context manager."
            )
        return self._client

    async def search(self, query: str) -> RetrievalResult:
        """Run one Tavily search."""
        logger.info(f"Tavily search: '{query}'")

        try:
            response = await asyncio.to_thread(
                self.client.search,
                query,
                search_depth=self.search_depth,
                max_results=self.max_results,
                include_answer=self.include_answer,
            )
        except Exception as e:
            raise TransientCapabilityError(f"Tavily search failed for '{query}': {e}") from e

        return self._to_result(query, response)

    def _to_result(self, query: str, response: dict[str, Any]) -> RetrievalResult:
        results = response.get("results") or []
        sources = dedupe_sources(
            Source(url=r["url"], title=r.get("title") or "")
            for r in results
            if r.get("url")
        )

        answer = response.get("answer") or ""
        if not answer and results:
            # No synthesized answer; fall back to the top snippets
            snippets = [r.get("content", "") for r in results[:3] if r.get("content")]
            answer = "\n".join(snippets)[:FALLBACK_ANSWER_CHARS]

        logger.info(f"Tavily returned {len(sources)} sources for '{query}'")
        return RetrievalResult(query=query, answer=answer, sources=list(sources))
