"""Typed edit operations for the research document.

Edits are intents: executors and the planner produce them, and only the
orchestrator applies them. Every edit addresses its target by id, never by
position.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .models import (
    Confidence,
    Decision,
    DecisionAction,
    Delta,
    DocumentStatus,
    Finding,
    MemoryEntry,
    QuestionSummary,
    ReflectEntry,
    ResearchQuestion,
    ResultEntry,
    SearchEntry,
    Source,
)


class _Edit(BaseModel):
    model_config = ConfigDict(frozen=True)


class AddQuestion(_Edit):
    action: Literal["add_question"] = "add_question"
    question: ResearchQuestion


class StartQuestion(_Edit):
    action: Literal["start_question"] = "start_question"
    question_id: str


class BeginCycle(_Edit):
    """Advance a running question's cycle counter by one."""

    action: Literal["begin_cycle"] = "begin_cycle"
    question_id: str


class CompleteQuestion(_Edit):
    action: Literal["complete_question"] = "complete_question"
    question_id: str
    summary: QuestionSummary


class AppendMemory(_Edit):
    action: Literal["append_memory"] = "append_memory"
    question_id: str
    entry: MemoryEntry

    @classmethod
    def search(cls, question_id: str, query: str, cycle: int) -> AppendMemory:
        return cls(question_id=question_id, entry=SearchEntry(query=query, cycle=cycle))

    @classmethod
    def result(
        cls,
        question_id: str,
        query: str,
        answer: str,
        sources: list[Source] | tuple[Source, ...],
        cycle: int,
    ) -> AppendMemory:
        return cls(
            question_id=question_id,
            entry=ResultEntry(query=query, answer=answer, sources=tuple(sources), cycle=cycle),
        )

    @classmethod
    def reflect(cls, question_id: str, thought: str, delta: Delta, cycle: int) -> AppendMemory:
        return cls(
            question_id=question_id,
            entry=ReflectEntry(thought=thought, delta=delta, cycle=cycle),
        )


class CompactMemory(_Edit):
    """Replace all but the newest ``keep_last`` entries with one marker entry."""

    action: Literal["compact_memory"] = "compact_memory"
    question_id: str
    keep_last: int = Field(ge=1)


class AddFinding(_Edit):
    action: Literal["add_finding"] = "add_finding"
    question_id: str
    finding: Finding


class DisqualifyFinding(_Edit):
    action: Literal["disqualify_finding"] = "disqualify_finding"
    question_id: str
    finding_id: str
    reason: str


class RecordDecision(_Edit):
    action: Literal["record_decision"] = "record_decision"
    decision: Decision

    @classmethod
    def create(
        cls,
        action: DecisionAction,
        reasoning: str,
        question_ids: list[str] | tuple[str, ...] = (),
    ) -> RecordDecision:
        ids = tuple(question_ids)
        return cls(
            decision=Decision(
                action=action,
                reasoning=reasoning,
                question_id=ids[0] if ids else None,
                question_ids=ids,
            )
        )


class SetStrategy(_Edit):
    action: Literal["set_strategy"] = "set_strategy"
    strategy: str


class SetStatus(_Edit):
    action: Literal["set_status"] = "set_status"
    status: DocumentStatus


class SetFinalAnswer(_Edit):
    action: Literal["set_final_answer"] = "set_final_answer"
    answer: str
    confidence: Confidence


Edit = Annotated[
    Union[
        AddQuestion,
        StartQuestion,
        BeginCycle,
        CompleteQuestion,
        AppendMemory,
        CompactMemory,
        AddFinding,
        DisqualifyFinding,
        RecordDecision,
        SetStrategy,
        SetStatus,
        SetFinalAnswer,
    ],
    Field(discriminator="action"),
]

EDIT_ADAPTER: TypeAdapter = TypeAdapter(Edit)


def parse_edit(data: dict) -> Edit:
    """Parse a serialized edit (e.g. from a replay log) into its typed form."""
    return EDIT_ADAPTER.validate_python(data)
