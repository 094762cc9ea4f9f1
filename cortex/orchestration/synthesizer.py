"""Synthesizer: combines completed questions into the final answer."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from ..document import (
    Confidence,
    DecisionAction,
    DocumentStatus,
    Edit,
    Recommendation,
    ResearchDocument,
    SetFinalAnswer,
    SetStatus,
    format_done_questions,
)
from ..exceptions import RetryExhaustedError, StructuredOutputError
from .planner import UNFINDABLE_MARKER

if TYPE_CHECKING:
    from ..llm.protocols import StructuredGeneration

logger = logging.getLogger(__name__)


class CriterionAnswer(BaseModel):
    """The answer to one success criterion and the questions supporting it."""

    criterion: str
    answer: str
    question_ids: list[str] = Field(default_factory=list)


class SynthesisOutput(BaseModel):
    """Final answer to the research objective."""

    answer: str = Field(description="Direct answer to the objective")
    confidence: Confidence
    criteria: list[CriterionAnswer] = Field(default_factory=list)
    gaps: list[str] = Field(default_factory=list, description="What could not be established")


SYNTHESIS_INSTRUCTIONS = """You are writing the final answer of an autonomous research run.

Use ONLY the completed questions below. Answer the objective directly, then address
every success criterion explicitly, citing the ids of the questions (e.g. q_1a2b3c4d)
that support each claim. List anything that could not be established under gaps and
choose an honest confidence level."""

BUDGET_NOTE = (
    "Note: the research budget was exhausted before the planner chose to stop; "
    "this answer is based on partial evidence."
)


@dataclass
class SynthesisResult:
    """Rendered final answer plus the edits that record it."""

    answer: str
    confidence: Confidence
    edits: list[Edit] = field(default_factory=list)


class Synthesizer:
    """
    Produces the final answer from the done questions.

    Reads the document only. The answer text always addresses each success
    criterion, cites completed question ids, and ends with a confidence line.
    """

    def __init__(self, generator: StructuredGeneration):
        self.generator = generator

    async def synthesize(
        self,
        doc: ResearchDocument,
        budget_exhausted: bool = False,
    ) -> SynthesisResult:
        """
        Synthesize the final answer.

        Args:
            doc: Document to synthesize from
            budget_exhausted: Whether synthesis was forced by the run budget

        Returns:
            SynthesisResult with ``set_final_answer`` and ``set_status(complete)`` edits
        """
        logger.info(f"Synthesizing from {len(doc.done_questions)} completed questions")

        context = (
            f"OBJECTIVE: {doc.objective}\n\nSUCCESS CRITERIA:\n"
            + "\n".join(f"- {c}" for c in doc.success_criteria)
            + "\n\nCOMPLETED QUESTIONS:\n"
            + format_done_questions(doc)
        )

        try:
            output = await self.generator.generate(SYNTHESIS_INSTRUCTIONS, context, SynthesisOutput)
        except (StructuredOutputError, RetryExhaustedError) as e:
            logger.warning(f"Synthesis generation failed, using fallback: {e}")
            output = self._fallback_output(doc)

        confidence = output.confidence
        if budget_exhausted:
            confidence = Confidence.LOW

        answer = self.render(doc, output, confidence, budget_exhausted)
        return SynthesisResult(
            answer=answer,
            confidence=confidence,
            edits=[
                SetFinalAnswer(answer=answer, confidence=confidence),
                SetStatus(status=DocumentStatus.COMPLETE),
            ],
        )

    def render(
        self,
        doc: ResearchDocument,
        output: SynthesisOutput,
        confidence: Confidence,
        budget_exhausted: bool,
    ) -> str:
        """Render the answer text with per-criterion citations and a confidence line."""
        done_ids = {q.id for q in doc.done_questions}
        by_criterion = {c.criterion.strip().lower(): c for c in output.criteria}

        lines = [output.answer.strip() or "No answer could be established.", "", "Success criteria:"]
        for i, criterion in enumerate(doc.success_criteria, 1):
            item = by_criterion.get(criterion.strip().lower())
            if item is None and len(output.criteria) == len(doc.success_criteria):
                item = output.criteria[i - 1]

            if item is None:
                lines.append(f"{i}. {criterion}: not addressed by the completed research.")
                continue

            cited = [qid for qid in item.question_ids if qid in done_ids]
            citation = f" [{', '.join(cited)}]" if cited else " (no completed question supports this)"
            lines.append(f"{i}. {criterion}: {item.answer.strip()}{citation}")

        gaps = list(output.gaps)
        unfindable = self._declared_unfindable(doc)
        if unfindable:
            gaps.append(unfindable)
        if gaps:
            lines += ["", "Gaps:"]
            lines += [f"- {gap}" for gap in gaps]

        if budget_exhausted:
            lines += ["", BUDGET_NOTE]

        lines += ["", f"Confidence: {confidence.value}"]
        return "\n".join(lines)

    @staticmethod
    def _declared_unfindable(doc: ResearchDocument) -> str | None:
        for decision in reversed(doc.decision_log):
            if decision.action != DecisionAction.SYNTHESIZE:
                continue
            if UNFINDABLE_MARKER in decision.reasoning:
                criteria = decision.reasoning.split(UNFINDABLE_MARKER, 1)[1].strip().rstrip(".")
                return f"Declared unfindable by the planner: {criteria}"
            return None
        return None

    def _fallback_output(self, doc: ResearchDocument) -> SynthesisOutput:
        """Deterministic answer assembled from question summaries."""
        useful = [
            q for q in doc.done_questions
            if q.summary and q.recommendation != Recommendation.DEAD_END
        ]
        if useful:
            answer = "Summary of completed research:\n" + "\n".join(
                f"- [{q.id}] {q.name}: {q.summary.answer}" for q in useful
            )
        else:
            answer = "The research did not produce usable answers."

        ids = [q.id for q in useful]
        return SynthesisOutput(
            answer=answer,
            confidence=Confidence.LOW,
            criteria=[
                CriterionAnswer(
                    criterion=c,
                    answer="See the completed research above; not individually verified.",
                    question_ids=ids,
                )
                for c in doc.success_criteria
            ],
            gaps=["The synthesis step was unavailable; criteria were not individually verified."],
        )
