"""Factory functions to create backends and the research service from configuration."""

from __future__ import annotations

import re
from contextlib import AsyncExitStack, asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncIterator

if TYPE_CHECKING:
    from ..llm.protocols import LLMProvider, StructuredGeneration
    from ..orchestration import ProgressSink, ResearchService
    from ..retrieval import RetrievalProvider, RetrievalResult
    from ..storage import BlobStore, ConvexClient
    from .loader import (
        EventsConfig,
        GeneratorConfig,
        ProfileConfig,
        RetrievalConfig,
        RetryConfig,
        StorageConfig,
    )

QUESTION_LINE = re.compile(r"^QUESTION: (.+)$", re.MULTILINE)
CYCLE_LINE = re.compile(r"^CYCLE: (\d+)/(\d+)$", re.MULTILINE)
DONE_QUESTION_ID = re.compile(r"(?:✓ \[|^\[)(q_[0-9a-f]+)\]", re.MULTILINE)
CRITERION_LINE = re.compile(r"^\s*(?:\d+\.|-)\s+(.+)$")


def _criteria_from(context: str) -> list[str]:
    """Read the success criteria block out of a rendered prompt context."""
    criteria: list[str] = []
    in_block = False
    for line in context.splitlines():
        if line.startswith("SUCCESS CRITERIA:"):
            in_block = True
            continue
        if in_block:
            match = CRITERION_LINE.match(line)
            if not match:
                break
            criteria.append(match.group(1).strip())
    return criteria


class MockStructuredGenerator:
    """Deterministic generator for offline runs and tests.

    Reads what it needs from the rendered context and always produces a
    valid object, so a mock run goes kickoff -> one cycle per question ->
    synthesize.
    """

    async def generate(self, instructions: str, context: str, output_model: type) -> Any:
        """Return a canned instance of ``output_model``."""
        builder = getattr(self, f"_build_{output_model.__name__}", None)
        if builder is None:
            raise ValueError(f"Mock generator has no output for {output_model.__name__}")
        return output_model.model_validate(builder(context))

    def _build_KickoffPlan(self, context: str) -> dict:
        criteria = _criteria_from(context) or ["the objective"]
        return {
            "strategy": "Investigate each success criterion with its own question.",
            "reasoning": "One question per criterion keeps every question narrow.",
            "questions": [
                {
                    "name": f"Criterion {i}",
                    "question": f"What evidence supports criterion {i}: {criterion}?",
                    "goal": f"Establish '{criterion}'",
                }
                for i, criterion in enumerate(criteria[:5], 1)
            ],
        }

    def _build_QueryBatch(self, context: str) -> dict:
        match = QUESTION_LINE.search(context)
        question = match.group(1) if match else "research question"
        cycle = CYCLE_LINE.search(context)
        n = cycle.group(1) if cycle else "0"
        return {
            "queries": [f"{question} overview {n}", f"{question} evidence {n}"],
            "rationale": "Mock queries",
        }

    def _build_CycleReflection(self, context: str) -> dict:
        match = QUESTION_LINE.search(context)
        question = match.group(1) if match else "research question"
        return {
            "delta": "progress",
            "thought": "Mock reflection: the results address the question.",
            "status": "done",
            "findings": [f"Mock finding for: {question}"],
        }

    def _build_QuestionResult(self, context: str) -> dict:
        match = QUESTION_LINE.search(context)
        question = match.group(1) if match else "research question"
        return {
            "answer": f"Mock answer to: {question}",
            "key_findings": [f"Mock finding for: {question}"],
            "confidence": "medium",
            "recommendation": "promising",
            "limitations": "Produced by the mock generator.",
        }

    def _build_Evaluation(self, context: str) -> dict:
        done_ids = DONE_QUESTION_ID.findall(context)
        criteria = _criteria_from(context)
        return {
            "decision": "synthesize",
            "learned": f"{len(done_ids)} questions answered.",
            "missing": "Nothing.",
            "rationale": "Every criterion is covered by a completed question.",
            "criteria": [
                {"criterion": c, "status": "covered", "question_ids": done_ids}
                for c in criteria
            ],
            "new_questions": [],
        }

    def _build_SynthesisOutput(self, context: str) -> dict:
        done_ids = DONE_QUESTION_ID.findall(context)
        criteria = _criteria_from(context)
        return {
            "answer": f"Mock synthesis across {len(done_ids)} completed questions.",
            "confidence": "medium",
            "criteria": [
                {"criterion": c, "answer": "Addressed by the mock research.", "question_ids": done_ids}
                for c in criteria
            ],
            "gaps": [],
        }


class MockRetriever:
    """Deterministic retriever for offline runs and tests."""

    async def search(self, query: str) -> RetrievalResult:
        from ..document import Source
        from ..retrieval import RetrievalResult

        slug = re.sub(r"[^a-z0-9]+", "-", query.lower()).strip("-")[:60]
        return RetrievalResult(
            query=query,
            answer=f"Mock answer for '{query}'.",
            sources=[Source(url=f"https://example.com/{slug}", title=f"Mock source: {query}")],
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass


def create_llm_provider(config: GeneratorConfig) -> LLMProvider:
    """Create the LLM backend that structured generation runs on.

    Args:
        config: Generator configuration

    Returns:
        LLMProvider instance (OpenRouterAdapter or AnthropicAdapter)

    Raises:
        ValueError: If backend type is not supported
    """
    if config.backend == "openrouter":
        from ..llm import OpenRouterAdapter

        return OpenRouterAdapter(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url,
        )

    elif config.backend == "anthropic":
        from ..llm import AnthropicAdapter

        return AnthropicAdapter(
            api_key=config.api_key,
            model=config.model,
        )

    else:
        raise ValueError(f"Unsupported LLM backend: {config.backend}")


def create_generator(
    config: GeneratorConfig,
    llm: LLMProvider | None = None,
    retry: RetryConfig | None = None,
) -> StructuredGeneration:
    """Create a structured generator from configuration.

    Args:
        config: Generator configuration
        llm: LLM backend to wrap (created from config if None)
        retry: Retry and timeout policy

    Returns:
        StructuredGenerator, or MockStructuredGenerator for the mock backend
    """
    if config.backend == "mock":
        return MockStructuredGenerator()

    from ..llm import StructuredGenerator

    return StructuredGenerator(
        llm or create_llm_provider(config),
        temperature=config.temperature,
        max_tokens=config.max_tokens,
        retry=retry,
    )


def create_retriever(config: RetrievalConfig) -> RetrievalProvider:
    """Create a retrieval backend from configuration.

    Raises:
        ValueError: If backend type is not supported
    """
    if config.backend == "tavily":
        from ..retrieval.tavily import TavilyRetriever

        return TavilyRetriever(
            api_key=config.api_key,
            search_depth=config.search_depth,
            max_results=config.max_results,
        )

    elif config.backend == "mock":
        return MockRetriever()

    else:
        raise ValueError(f"Unsupported retrieval backend: {config.backend}")


def create_convex_client(url: str | None = None) -> ConvexClient:
    """Create a Convex client; falls back to CONVEX_URL when url is None."""
    from ..storage import ConvexClient, ConvexConfig

    if url:
        return ConvexClient(ConvexConfig(url=url))
    return ConvexClient()


def create_blob_store(config: StorageConfig) -> BlobStore:
    """Create the document storage medium.

    Raises:
        ValueError: If backend type is not supported
    """
    if config.backend == "memory":
        from ..storage import MemoryBlobStore

        return MemoryBlobStore()

    elif config.backend == "file":
        from ..storage import FileBlobStore

        return FileBlobStore(Path(config.path))

    elif config.backend == "convex":
        return create_convex_client(config.url)

    else:
        raise ValueError(f"Unsupported storage backend: {config.backend}")


def create_progress_sink(config: EventsConfig) -> ProgressSink:
    """Create the shared progress sink (logging and/or Convex streaming)."""
    from ..orchestration import CompositeSink, LoggingSink

    sink = CompositeSink()
    if config.log_events:
        sink.add(LoggingSink())
    if config.convex_url:
        sink.add(create_convex_client(config.convex_url))
    return sink


def create_from_profile(profile: ProfileConfig) -> tuple:
    """Create all backends from a profile configuration.

    Returns:
        Tuple of (generator, retriever, blob_store, sink). Backends that are
        async context managers still have to be entered before use.
    """
    generator = create_generator(profile.generator, retry=profile.research.retry)
    retriever = create_retriever(profile.retrieval)
    blob_store = create_blob_store(profile.storage)
    sink = create_progress_sink(profile.events)
    return generator, retriever, blob_store, sink


@asynccontextmanager
async def open_service(profile: ProfileConfig) -> AsyncIterator[ResearchService]:
    """Build a ResearchService from a profile with every backend connected.

    Usage:
        async with open_service(load_config("dev")) as service:
            handle = await service.start_research(objective, criteria)
    """
    from ..orchestration import ResearchService, StateStore

    generator, retriever, blob_store, sink = create_from_profile(profile)

    async with AsyncExitStack() as stack:
        llm = getattr(generator, "llm", None)
        convex_sinks = [s for s in getattr(sink, "sinks", []) if hasattr(s, "__aenter__")]
        for backend in (llm, retriever, blob_store, *convex_sinks):
            if backend is not None and hasattr(backend, "__aenter__"):
                await stack.enter_async_context(backend)

        yield ResearchService(
            generator,
            retriever,
            store=StateStore(blob_store),
            sink=sink,
            config=profile.research,
        )
