"""
Shared fixtures: scripted generation and retrieval fakes (no network).
"""

import asyncio
from typing import Callable

import pytest

from cortex.config.factory import MockStructuredGenerator
from cortex.config.loader import (
    ExecutorConfig,
    OrchestratorConfig,
    PlannerConfig,
    ResearchConfig,
    RetryConfig,
)
from cortex.document import ResearchDocument, ResearchQuestion, Source, apply, AddQuestion
from cortex.exceptions import StructuredOutputError, TransientCapabilityError
from cortex.retrieval import RetrievalResult


class ScriptedGenerator(MockStructuredGenerator):
    """
    Structured generation fake.

    Responses are keyed by output model name. A response may be a dict, a
    model instance, an exception, a callable taking the context, or a list
    of those consumed in order (the last one repeats). Models without a
    script fall back to the deterministic mock outputs.
    """

    def __init__(self, **responses):
        self.responses = {name: list(r) if isinstance(r, list) else r for name, r in responses.items()}
        self.calls: list[tuple[str, str]] = []

    def calls_for(self, model_name: str) -> list[str]:
        return [context for name, context in self.calls if name == model_name]

    async def generate(self, instructions, context, output_model):
        name = output_model.__name__
        self.calls.append((name, context))
        await asyncio.sleep(0)

        if name not in self.responses:
            return await super().generate(instructions, context, output_model)

        response = self.responses[name]
        if isinstance(response, list):
            item = response.pop(0) if len(response) > 1 else response[0]
        else:
            item = response

        if callable(item) and not isinstance(item, type):
            item = item(context)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, output_model):
            return item
        return output_model.model_validate(item)


class FakeRetriever:
    """Retrieval fake recording every query; can fail or block on demand."""

    def __init__(
        self,
        failures: int = 0,
        always_fail: bool = False,
        gate: asyncio.Event | None = None,
        gated: Callable[[str], bool] | None = None,
    ):
        self.failures = failures
        self.always_fail = always_fail
        self.gate = gate
        self.gated = gated or (lambda query: True)
        self.queries: list[str] = []

    async def search(self, query: str) -> RetrievalResult:
        self.queries.append(query)
        if self.always_fail or self.failures > 0:
            self.failures -= 1
            raise TransientCapabilityError(f"search backend unavailable for '{query}'")

        if self.gate is not None and self.gated(query):
            await self.gate.wait()
        await asyncio.sleep(0)

        return RetrievalResult(
            query=query,
            answer=f"Answer for {query}",
            sources=[Source(url=f"https://example.com/{len(self.queries)}", title=query)],
        )


def reflection(status="continue", delta="progress", findings=None, thought="Learned something."):
    """Build a CycleReflection payload."""
    return {"delta": delta, "thought": thought, "status": status, "findings": findings or []}


def counting_queries(prefix: str = "query"):
    """QueryBatch script that never repeats a query."""
    counter = {"n": 0}

    def make(context):
        counter["n"] += 1
        return {"queries": [f"{prefix} {counter['n']}"], "rationale": ""}

    return make


@pytest.fixture
def retry_config():
    return RetryConfig(max_attempts=2, backoff_factor=1.0, initial_delay=0.0, call_timeout=2.0)


@pytest.fixture
def executor_config():
    return ExecutorConfig(min_searches_before_done=0, no_progress_limit=2)


@pytest.fixture
def research_config(retry_config, executor_config):
    return ResearchConfig(
        planner=PlannerConfig(initial_questions=3),
        executor=executor_config,
        orchestrator=OrchestratorConfig(max_steps=50, max_wall_time_seconds=None),
        retry=retry_config,
    )


@pytest.fixture
def doc():
    return ResearchDocument.create(
        "List three facts about the honey bee",
        ["3 distinct facts"],
    )


@pytest.fixture
def question():
    return ResearchQuestion(
        name="Bee lifespan",
        question="How long does a worker honey bee live?",
        goal="Find the typical lifespan",
    )


@pytest.fixture
def doc_with_question(doc, question):
    return apply(doc, AddQuestion(question=question))


@pytest.fixture
def malformed_output():
    return StructuredOutputError("Anything", "scripted failure")
