"""Data models for the research document.

The document is a tree of frozen pydantic models. Sequences are tuples, so a
document value never changes once built; every mutation goes through
``cortex.document.applier.apply`` and yields a new document.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class DocumentStatus(str, Enum):
    """Lifecycle status of a research document."""

    RUNNING = "running"
    SYNTHESIZING = "synthesizing"
    COMPLETE = "complete"


class QuestionStatus(str, Enum):
    """Status of a research question. Only moves forward."""

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"


class Confidence(str, Enum):
    """Confidence level attached to answers."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Recommendation(str, Enum):
    """How useful a research angle turned out to be."""

    PROMISING = "promising"
    DEAD_END = "dead_end"
    NEEDS_MORE = "needs_more"


class Delta(str, Enum):
    """How much a single step changed our understanding."""

    PROGRESS = "progress"
    NO_CHANGE = "no_change"
    DEAD_END = "dead_end"


class FindingStatus(str, Enum):
    """Status of a recorded finding."""

    ACTIVE = "active"
    DISQUALIFIED = "disqualified"


class DecisionAction(str, Enum):
    """Actions the planner can log."""

    SPAWN = "spawn"
    SYNTHESIZE = "synthesize"


STATUS_ORDER = {
    DocumentStatus.RUNNING: 0,
    DocumentStatus.SYNTHESIZING: 1,
    DocumentStatus.COMPLETE: 2,
}

QUESTION_STATUS_ORDER = {
    QuestionStatus.PENDING: 0,
    QuestionStatus.RUNNING: 1,
    QuestionStatus.DONE: 2,
}

MIN_CYCLES = 1
MAX_CYCLES = 20
DEFAULT_MAX_CYCLES = 10


def generate_id(prefix: str) -> str:
    """Generate a short prefixed identifier, e.g. ``q_1a2b3c4d``."""
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


def normalize_query(query: str) -> str:
    """Normalize a query for deduplication (case and whitespace insensitive)."""
    return " ".join(query.lower().split())


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class Source(_Frozen):
    """A retrieved source. Identity is the URL."""

    url: str
    title: str = ""


def dedupe_sources(sources) -> tuple[Source, ...]:
    """Drop sources whose URL was already seen, keeping first occurrence order."""
    seen: set[str] = set()
    unique = []
    for source in sources:
        if source.url in seen:
            continue
        seen.add(source.url)
        unique.append(source)
    return tuple(unique)


class SearchEntry(_Frozen):
    """A query that was sent to retrieval."""

    kind: Literal["search"] = "search"
    cycle: int = 0
    query: str


class ResultEntry(_Frozen):
    """The retrieval answer for a query."""

    kind: Literal["result"] = "result"
    cycle: int = 0
    query: str = ""
    answer: str
    sources: tuple[Source, ...] = ()


class ReflectEntry(_Frozen):
    """An interpretation of the latest step."""

    kind: Literal["reflect"] = "reflect"
    cycle: int = 0
    thought: str
    delta: Delta
    compacted: bool = False


MemoryEntry = Annotated[
    Union[SearchEntry, ResultEntry, ReflectEntry],
    Field(discriminator="kind"),
]


class Finding(_Frozen):
    """A discrete fact learned while investigating a question."""

    id: str = Field(default_factory=lambda: generate_id("f"))
    content: str
    sources: tuple[Source, ...] = ()
    status: FindingStatus = FindingStatus.ACTIVE
    disqualify_reason: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == FindingStatus.ACTIVE


class QuestionSummary(_Frozen):
    """Structured result of a completed question."""

    answer: str
    key_findings: tuple[str, ...] = ()
    confidence: Confidence = Confidence.LOW
    limitations: str = ""
    recommendation: Recommendation = Recommendation.NEEDS_MORE


class ResearchQuestion(_Frozen):
    """One bounded, independently investigable sub-problem."""

    id: str = Field(default_factory=lambda: generate_id("q"))
    name: str
    question: str
    goal: str = ""
    status: QuestionStatus = QuestionStatus.PENDING
    cycles: int = Field(default=0, ge=0)
    max_cycles: int = Field(default=DEFAULT_MAX_CYCLES, ge=MIN_CYCLES, le=MAX_CYCLES)
    memory: tuple[MemoryEntry, ...] = ()
    queries_run: tuple[str, ...] = ()
    findings: tuple[Finding, ...] = ()
    confidence: Confidence | None = None
    recommendation: Recommendation | None = None
    summary: QuestionSummary | None = None
    round: int = 0

    @property
    def is_done(self) -> bool:
        return self.status == QuestionStatus.DONE

    @property
    def search_count(self) -> int:
        """Number of queries issued, including those removed by compaction."""
        return len(self.queries_run)

    def has_run_query(self, query: str) -> bool:
        """Check whether a query (after normalization) was already issued."""
        return normalize_query(query) in self.queries_run

    def get_finding(self, finding_id: str) -> Finding | None:
        for finding in self.findings:
            if finding.id == finding_id:
                return finding
        return None

    @property
    def active_findings(self) -> list[Finding]:
        return [f for f in self.findings if f.is_active]

    @property
    def sources(self) -> tuple[Source, ...]:
        """All sources seen by this question, deduplicated by URL."""
        collected = []
        for entry in self.memory:
            if isinstance(entry, ResultEntry):
                collected.extend(entry.sources)
        return dedupe_sources(collected)


class Decision(_Frozen):
    """A logged planner choice with its reasoning."""

    id: str = Field(default_factory=lambda: generate_id("d"))
    timestamp: datetime = Field(default_factory=datetime.now)
    action: DecisionAction
    question_id: str | None = None
    question_ids: tuple[str, ...] = ()
    reasoning: str


class ResearchDocument(_Frozen):
    """The record of one research run."""

    id: str = Field(default_factory=lambda: generate_id("doc"))
    objective: str
    success_criteria: tuple[str, ...] = ()
    strategy: str | None = None
    questions: tuple[ResearchQuestion, ...] = ()
    decision_log: tuple[Decision, ...] = ()
    status: DocumentStatus = DocumentStatus.RUNNING
    final_answer: str | None = None
    final_confidence: Confidence | None = None
    created_at: datetime = Field(default_factory=datetime.now)

    @classmethod
    def create(
        cls,
        objective: str,
        success_criteria: list[str] | tuple[str, ...],
        document_id: str | None = None,
    ) -> ResearchDocument:
        """Create a fresh document with no questions."""
        criteria = tuple(c.strip() for c in success_criteria if c and c.strip())
        if document_id is None:
            return cls(objective=objective.strip(), success_criteria=criteria)
        return cls(id=document_id, objective=objective.strip(), success_criteria=criteria)

    def get_question(self, question_id: str) -> ResearchQuestion | None:
        for question in self.questions:
            if question.id == question_id:
                return question
        return None

    def questions_with_status(self, status: QuestionStatus) -> list[ResearchQuestion]:
        return [q for q in self.questions if q.status == status]

    @property
    def pending_questions(self) -> list[ResearchQuestion]:
        return self.questions_with_status(QuestionStatus.PENDING)

    @property
    def running_questions(self) -> list[ResearchQuestion]:
        return self.questions_with_status(QuestionStatus.RUNNING)

    @property
    def done_questions(self) -> list[ResearchQuestion]:
        return self.questions_with_status(QuestionStatus.DONE)

    @property
    def is_complete(self) -> bool:
        return self.status == DocumentStatus.COMPLETE

    @property
    def active_findings(self) -> list[Finding]:
        return [f for q in self.questions for f in q.active_findings]
