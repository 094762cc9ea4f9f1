"""Planner ("brain"): decides which questions to investigate and when to stop.

Two entry points:

- ``kickoff``: split the objective into 1-5 narrow questions.
- ``evaluate``: after a research round, either spawn more questions or
  synthesize.

The planner never touches the document. It returns a ``PlannerOutcome``
holding edits for the orchestrator to apply, and every call yields exactly
one ``record_decision`` edit.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field

from ..document import (
    AddQuestion,
    DecisionAction,
    Edit,
    RecordDecision,
    Recommendation,
    ResearchDocument,
    ResearchQuestion,
    SetStrategy,
    format_document_for_agent,
    normalize_query,
)
from ..exceptions import RetryExhaustedError, StructuredOutputError

if TYPE_CHECKING:
    from ..config.loader import PlannerConfig
    from ..llm.protocols import StructuredGeneration

logger = logging.getLogger(__name__)


class PlannedQuestion(BaseModel):
    """A proposed research question."""

    name: str = Field(description="Short label, 2-5 words")
    question: str = Field(description="One narrow, independently searchable question")
    goal: str = Field(default="", description="What answering it tells us")


class KickoffPlan(BaseModel):
    """Initial research strategy and questions for an objective."""

    strategy: str = Field(default="", description="High-level approach in 1-3 sentences")
    reasoning: str = Field(default="", description="Why these questions cover the objective")
    questions: list[PlannedQuestion] = Field(min_length=1, max_length=5)


class CriterionStatus(str, Enum):
    """Coverage of one success criterion."""

    COVERED = "covered"
    PARTIAL = "partial"
    NOT_COVERED = "not_covered"
    UNFINDABLE = "unfindable"


class CriterionAssessment(BaseModel):
    """How well one success criterion is addressed so far."""

    criterion: str
    status: CriterionStatus
    question_ids: list[str] = Field(
        default_factory=list, description="Ids of completed questions that cover it"
    )
    note: str = ""


class Evaluation(BaseModel):
    """Decision after a research round: spawn more questions or synthesize."""

    decision: Literal["spawn_new", "synthesize"]
    learned: str = Field(description="What the completed questions established")
    missing: str = Field(description="What is still missing")
    rationale: str = Field(description="Why this action")
    criteria: list[CriterionAssessment] = Field(default_factory=list)
    new_questions: list[PlannedQuestion] = Field(default_factory=list, max_length=5)


KICKOFF_INSTRUCTIONS = """You are the planner of an autonomous research system.

Given an objective and success criteria, set a short strategy and create {count} initial research questions.
Rules for every question:
- ONE narrow sub-question that can be searched on its own.
- No conjunctions (and, or, as well as, versus) and no compound questions.
- Never refer to other questions ("the above", "previous question").
Together the questions should cover every success criterion."""

EVALUATE_INSTRUCTIONS = """You are the planner of an autonomous research system, evaluating progress after a research round.

For EACH success criterion, mark it covered, partial, not_covered or unfindable and cite the
ids of completed questions that cover it.
Choose "synthesize" only when every criterion is covered by a completed question that was
not a dead end, or is genuinely unfindable (say why).
Otherwise choose "spawn_new" with up to {max_new} new narrow questions targeting the gaps.
Questions must not contain conjunctions or refer to other questions."""

CONJUNCTION_PATTERN = re.compile(r"\b(?:and|or|as well as|versus|vs\.?|both)\b|;", re.IGNORECASE)
FALLBACK_QUESTION = "What does current evidence say about the research objective?"
UNFINDABLE_MARKER = "Declared unfindable: "
REFERENCE_PATTERN = re.compile(
    r"\b(the above|above-mentioned|aforementioned|previous questions?|prior questions?)\b",
    re.IGNORECASE,
)


def check_question_text(text: str) -> str | None:
    """
    Structural check for a candidate question.

    Returns:
        None if the question is acceptable, otherwise the rejection reason
    """
    stripped = text.strip()
    if len(stripped) < 8:
        return "too short to be searchable"
    match = CONJUNCTION_PATTERN.search(stripped)
    if match:
        return f"contains conjunction '{match.group(0).strip()}'"
    match = REFERENCE_PATTERN.search(stripped)
    if match:
        return f"refers to other questions ('{match.group(0)}')"
    return None


def narrow_questions(topic: str, template: str) -> list[str]:
    """
    Deterministic questions about a topic that pass ``check_question_text``.

    A compound topic is split on its conjunctions, one question per part.
    """
    question = template.format(topic=topic.strip())
    if check_question_text(question) is None:
        return [question]

    questions: list[str] = []
    for part in CONJUNCTION_PATTERN.split(topic):
        part = REFERENCE_PATTERN.sub("", part).strip(" ,.:?!")
        if not part:
            continue
        candidate = template.format(topic=part)
        if check_question_text(candidate) is None and candidate not in questions:
            questions.append(candidate)
    return questions


def compose_reasoning(learned: str, missing: str, why: str) -> str:
    """Join the three parts of a decision's reasoning."""
    return (
        f"Learned: {learned.strip() or 'nothing new'}\n"
        f"Missing: {missing.strip() or 'nothing'}\n"
        f"Why: {why.strip() or 'no rationale given'}"
    )


@dataclass
class PlannerOutcome:
    """Edits produced by one planner call."""

    action: DecisionAction
    edits: list[Edit] = field(default_factory=list)
    question_ids: list[str] = field(default_factory=list)
    reasoning: str = ""

    @property
    def spawned(self) -> int:
        return len(self.question_ids)


class Planner:
    """
    Top-level research policy.

    Candidate questions are screened structurally (single narrow question,
    no references to other questions, no duplicates) and bad candidates are
    sent back with feedback. ``synthesize`` is only accepted when each
    success criterion is covered by a completed, non-dead-end question or
    declared unfindable.
    """

    def __init__(
        self,
        generator: StructuredGeneration,
        config: PlannerConfig | None = None,
    ):
        """
        Initialize the planner.

        Args:
            generator: Structured generation capability
            config: Planner configuration
        """
        if config is None:
            from ..config.loader import PlannerConfig
            config = PlannerConfig()

        self.generator = generator
        self.config = config

    async def kickoff(self, doc: ResearchDocument) -> PlannerOutcome:
        """
        Produce the initial strategy and questions.

        Args:
            doc: Document with no questions yet

        Returns:
            PlannerOutcome with a spawn decision
        """
        context = format_document_for_agent(doc)
        instructions = KICKOFF_INSTRUCTIONS.format(count=self.config.initial_questions)
        feedback = ""
        accepted: list[PlannedQuestion] = []
        plan: KickoffPlan | None = None

        for attempt in range(self.config.max_validation_attempts):
            try:
                plan = await self.generator.generate(instructions, context + feedback, KickoffPlan)
            except (StructuredOutputError, RetryExhaustedError) as e:
                logger.warning(f"Kickoff attempt {attempt + 1} failed: {e}")
                continue

            accepted, rejected = self._screen(plan.questions, doc, self.config.initial_questions)
            if accepted:
                break
            feedback = self._rejection_feedback(rejected)

        if accepted:
            why = (plan.reasoning if plan else "") or (
                f"Split the objective into {len(accepted)} narrow questions."
            )
        else:
            logger.warning("Kickoff produced no valid questions, falling back to the objective")
            if check_question_text(doc.objective) is None:
                texts = [doc.objective.strip()]
            else:
                texts = narrow_questions(doc.objective, "What is known about {topic}?")
            accepted = [
                PlannedQuestion(name="Core question", question=text, goal="Answer the objective directly")
                for text in (texts or [FALLBACK_QUESTION])[: self.config.initial_questions]
            ]
            why = "No valid decomposition was produced; investigating the objective directly."

        questions = [
            ResearchQuestion(
                name=p.name.strip() or p.question[:40],
                question=p.question.strip(),
                goal=p.goal.strip(),
                max_cycles=self.config.initial_max_cycles,
                round=0,
            )
            for p in accepted
        ]

        reasoning = compose_reasoning(
            learned="Nothing yet; research is starting.",
            missing="All success criteria: " + "; ".join(doc.success_criteria),
            why=why,
        )

        edits: list[Edit] = []
        if plan and plan.strategy.strip():
            edits.append(SetStrategy(strategy=plan.strategy.strip()))
        edits += [AddQuestion(question=q) for q in questions]
        edits.append(RecordDecision.create(DecisionAction.SPAWN, reasoning, [q.id for q in questions]))

        logger.info(f"Kickoff spawned {len(questions)} questions")
        return PlannerOutcome(
            action=DecisionAction.SPAWN,
            edits=edits,
            question_ids=[q.id for q in questions],
            reasoning=reasoning,
        )

    async def evaluate(self, doc: ResearchDocument) -> PlannerOutcome:
        """
        Decide whether to spawn new questions or synthesize.

        Args:
            doc: Current document (typically with every question done)

        Returns:
            PlannerOutcome with a spawn or synthesize decision
        """
        context = format_document_for_agent(doc)
        instructions = EVALUATE_INSTRUCTIONS.format(max_new=self.config.max_new_questions)
        next_round = max((q.round for q in doc.questions), default=0) + 1
        feedback = ""
        last: Evaluation | None = None

        for attempt in range(self.config.max_validation_attempts):
            try:
                evaluation = await self.generator.generate(instructions, context + feedback, Evaluation)
            except (StructuredOutputError, RetryExhaustedError) as e:
                logger.warning(f"Evaluation attempt {attempt + 1} failed: {e}")
                continue
            last = evaluation

            if evaluation.decision == "synthesize":
                uncovered = self.uncovered_criteria(doc, evaluation)
                if not uncovered:
                    return self._synthesize(doc, evaluation)
                logger.info(f"Rejecting synthesis: {len(uncovered)} criteria not covered")
                feedback = (
                    "\n\nSYNTHESIS REJECTED. These criteria are not covered by a completed, "
                    "non-dead-end question and were not declared unfindable:\n"
                    + "\n".join(f"- {c}" for c in uncovered)
                )
                continue

            accepted, rejected = self._screen(
                evaluation.new_questions, doc, self.config.max_new_questions
            )
            if accepted or doc.pending_questions or doc.running_questions:
                return self._spawn(evaluation, accepted, next_round)

            if rejected:
                feedback = self._rejection_feedback(rejected)
            else:
                feedback = "\n\nYou chose spawn_new but proposed no new questions. Propose at least one, or synthesize."

        return self._fallback(doc, last, next_round)

    def uncovered_criteria(self, doc: ResearchDocument, evaluation: Evaluation) -> list[str]:
        """
        Criteria not covered by a completed non-dead-end question nor declared unfindable.

        An assessment is matched to a criterion by text, or by position when
        the model returned one assessment per criterion in order.
        """
        valid_ids = {
            q.id for q in doc.done_questions
            if q.recommendation != Recommendation.DEAD_END
        }
        by_text = {normalize_query(a.criterion): a for a in evaluation.criteria}
        positional = len(evaluation.criteria) == len(doc.success_criteria)

        uncovered = []
        for i, criterion in enumerate(doc.success_criteria):
            assessment = by_text.get(normalize_query(criterion))
            if assessment is None and positional:
                assessment = evaluation.criteria[i]

            if assessment is None:
                uncovered.append(criterion)
            elif assessment.status == CriterionStatus.UNFINDABLE:
                continue
            elif assessment.status == CriterionStatus.COVERED and valid_ids.intersection(assessment.question_ids):
                continue
            else:
                uncovered.append(criterion)
        return uncovered

    def _synthesize(self, doc: ResearchDocument, evaluation: Evaluation) -> PlannerOutcome:
        why = evaluation.rationale
        unfindable = [
            a.criterion for a in evaluation.criteria if a.status == CriterionStatus.UNFINDABLE
        ]
        if unfindable:
            why += f" {UNFINDABLE_MARKER}" + "; ".join(unfindable) + "."

        reasoning = compose_reasoning(evaluation.learned, evaluation.missing, why)
        logger.info("Planner decided to synthesize")
        return PlannerOutcome(
            action=DecisionAction.SYNTHESIZE,
            edits=[RecordDecision.create(DecisionAction.SYNTHESIZE, reasoning)],
            reasoning=reasoning,
        )

    def _spawn(
        self,
        evaluation: Evaluation,
        accepted: list[PlannedQuestion],
        next_round: int,
    ) -> PlannerOutcome:
        questions = [
            ResearchQuestion(
                name=p.name.strip() or p.question[:40],
                question=p.question.strip(),
                goal=p.goal.strip(),
                max_cycles=self.config.followup_max_cycles,
                round=next_round,
            )
            for p in accepted
        ]
        reasoning = compose_reasoning(evaluation.learned, evaluation.missing, evaluation.rationale)
        edits: list[Edit] = [AddQuestion(question=q) for q in questions]
        edits.append(RecordDecision.create(DecisionAction.SPAWN, reasoning, [q.id for q in questions]))

        logger.info(f"Planner spawned {len(questions)} new questions (round {next_round})")
        return PlannerOutcome(
            action=DecisionAction.SPAWN,
            edits=edits,
            question_ids=[q.id for q in questions],
            reasoning=reasoning,
        )

    def _fallback(
        self,
        doc: ResearchDocument,
        last: Evaluation | None,
        next_round: int,
    ) -> PlannerOutcome:
        """No acceptable evaluation: chase the first uncovered criterion, or stop."""
        uncovered = self.uncovered_criteria(doc, last) if last else list(doc.success_criteria)
        target = uncovered[0] if uncovered else doc.objective
        existing = {normalize_query(q.question) for q in doc.questions}
        fresh = [
            text for text in narrow_questions(target, "What evidence establishes: {topic}?")
            if normalize_query(text) not in existing
        ]

        if not fresh:
            reasoning = compose_reasoning(
                learned=last.learned if last else f"{len(doc.done_questions)} questions completed.",
                missing="; ".join(uncovered) or "nothing",
                why=(
                    "The remaining gaps were already investigated without success; "
                    "synthesizing with current evidence. "
                    f"{UNFINDABLE_MARKER}" + ("; ".join(uncovered) or target) + "."
                ),
            )
            logger.info("Planner fallback: gaps already investigated, synthesizing")
            return PlannerOutcome(
                action=DecisionAction.SYNTHESIZE,
                edits=[RecordDecision.create(DecisionAction.SYNTHESIZE, reasoning)],
                reasoning=reasoning,
            )

        question = ResearchQuestion(
            name=f"Follow-up: {target[:40]}",
            question=fresh[0],
            goal=f"Close the gap on '{target}'",
            max_cycles=self.config.followup_max_cycles,
            round=next_round,
        )
        reasoning = compose_reasoning(
            learned=last.learned if last else f"{len(doc.done_questions)} questions completed.",
            missing=target,
            why="No acceptable plan was produced; spawning a follow-up on the first uncovered criterion.",
        )
        logger.info(f"Planner fallback: spawning follow-up {question.id}")
        return PlannerOutcome(
            action=DecisionAction.SPAWN,
            edits=[
                AddQuestion(question=question),
                RecordDecision.create(DecisionAction.SPAWN, reasoning, [question.id]),
            ],
            question_ids=[question.id],
            reasoning=reasoning,
        )

    def _screen(
        self,
        candidates: list[PlannedQuestion],
        doc: ResearchDocument,
        limit: int,
    ) -> tuple[list[PlannedQuestion], list[tuple[PlannedQuestion, str]]]:
        """Split candidates into accepted and (rejected, reason) lists."""
        seen = {normalize_query(q.question) for q in doc.questions}
        accepted: list[PlannedQuestion] = []
        rejected: list[tuple[PlannedQuestion, str]] = []

        for candidate in candidates:
            reason = check_question_text(candidate.question)
            normalized = normalize_query(candidate.question)
            if reason is None and normalized in seen:
                reason = "duplicates an existing question"
            if reason is not None:
                logger.info(f"Rejected question '{candidate.question}': {reason}")
                rejected.append((candidate, reason))
                continue
            if len(accepted) >= limit:
                break
            seen.add(normalized)
            accepted.append(candidate)

        return accepted, rejected

    @staticmethod
    def _rejection_feedback(rejected: list[tuple[PlannedQuestion, str]]) -> str:
        lines = [f"- \"{q.question}\": {reason}" for q, reason in rejected]
        return (
            "\n\nREJECTED QUESTIONS (rewrite each as one narrow, self-contained question):\n"
            + "\n".join(lines)
        )
