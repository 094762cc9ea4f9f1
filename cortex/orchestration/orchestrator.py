"""
Orchestrator: drives one research session from kickoff to final answer.

State machine::

    KICKOFF -> RESEARCHING <-> (replanning) -> SYNTHESIZING -> COMPLETE
    any non-terminal state -> STOPPED

The orchestrator is the only writer of the shared document. Executors
hand their edits to a queue; the orchestrator applies them in arrival
order through ``_commit``, which also persists the document and emits
progress events.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..document import (
    AddFinding,
    AddQuestion,
    AppendMemory,
    CompleteQuestion,
    Confidence,
    DecisionAction,
    DisqualifyFinding,
    DocumentStatus,
    Edit,
    QuestionStatus,
    QuestionSummary,
    Recommendation,
    RecordDecision,
    ReflectEntry,
    ResearchDocument,
    ResearchQuestion,
    ResultEntry,
    SetFinalAnswer,
    SetStatus,
    SetStrategy,
    StartQuestion,
    apply,
)
from .budget import RunBudget
from .events import EventType, ProgressEvent
from .planner import compose_reasoning

if TYPE_CHECKING:
    from ..config.loader import OrchestratorConfig
    from .events import ProgressSink
    from .executor import ExecutionOutcome, QuestionExecutor
    from .planner import Planner, PlannerOutcome
    from .state_store import StateStore
    from .synthesizer import Synthesizer

logger = logging.getLogger(__name__)

BUDGET_EXHAUSTED_REASON = "step budget exhausted"


class OrchestratorState(str, Enum):
    """Lifecycle state of a research session."""

    KICKOFF = "kickoff"
    RESEARCHING = "researching"
    SYNTHESIZING = "synthesizing"
    COMPLETE = "complete"
    STOPPED = "stopped"


TERMINAL_STATES = (OrchestratorState.COMPLETE, OrchestratorState.STOPPED)


@dataclass
class _ExecutorFinished:
    """Queue sentinel: one executor task has ended."""

    question_id: str
    outcome: ExecutionOutcome | None = None
    error: BaseException | None = None


def state_for_document(doc: ResearchDocument) -> OrchestratorState:
    """Pick the state a (possibly persisted) document should resume in."""
    if doc.status == DocumentStatus.COMPLETE:
        return OrchestratorState.COMPLETE
    if doc.status == DocumentStatus.SYNTHESIZING:
        return OrchestratorState.SYNTHESIZING
    if not doc.questions:
        return OrchestratorState.KICKOFF
    return OrchestratorState.RESEARCHING


class Orchestrator:
    """
    Runs one research session.

    Each round runs every unfinished question concurrently (bounded by
    ``max_concurrent_questions``), then asks the planner whether to spawn
    more questions or synthesize. Every planner call and executor cycle
    consumes one step of the run budget; when it runs out the session is
    forced into synthesis with a low-confidence answer.
    """

    def __init__(
        self,
        doc: ResearchDocument,
        planner: Planner,
        executor: QuestionExecutor,
        synthesizer: Synthesizer,
        store: StateStore,
        sink: ProgressSink | None = None,
        config: OrchestratorConfig | None = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            doc: New or persisted document to drive
            planner: Planner for kickoff and evaluation
            executor: Question executor shared by all questions
            synthesizer: Final answer synthesizer
            store: Persistence for the document
            sink: Receiver of progress events
            config: Orchestrator configuration
        """
        if config is None:
            from ..config.loader import OrchestratorConfig
            config = OrchestratorConfig()

        self.planner = planner
        self.executor = executor
        self.synthesizer = synthesizer
        self.store = store
        self.sink = sink
        self.config = config

        self.doc = doc
        self.state = state_for_document(doc)
        self.budget = RunBudget(config.max_steps, config.max_wall_time_seconds)
        self._cancel = asyncio.Event()

    @property
    def session_id(self) -> str:
        return self.doc.id

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def stop(self) -> None:
        """Request a cooperative stop. Running questions stay ``running``."""
        if self.state not in TERMINAL_STATES:
            logger.info(f"Stop requested for session {self.session_id}")
        self._cancel.set()

    async def run(self) -> ResearchDocument:
        """
        Drive the session until it completes or is stopped.

        Returns:
            The final (or stopped) document
        """
        logger.info(f"Session {self.session_id} entering {self.state.value}")

        while self.state not in TERMINAL_STATES:
            if self.cancelled:
                await self._stopped()
                break

            if self.state == OrchestratorState.KICKOFF:
                await self._kickoff()
            elif self.state == OrchestratorState.RESEARCHING:
                await self._research()
            elif self.state == OrchestratorState.SYNTHESIZING:
                await self._synthesize()

        return self.doc

    # ==========================================================================
    # States
    # ==========================================================================

    async def _kickoff(self) -> None:
        await self._emit(EventType.BRAIN_INITIALIZED, {
            "objective": self.doc.objective,
            "success_criteria": list(self.doc.success_criteria),
        })

        if not self.budget.try_consume("planner kickoff"):
            await self._force_synthesis()
            return

        outcome = await self.planner.kickoff(self.doc)
        await self._commit_outcome(outcome)
        self._transition(OrchestratorState.RESEARCHING)

    async def _research(self) -> None:
        if self.doc.pending_questions or self.doc.running_questions:
            await self._run_round()

            if self.cancelled:
                await self._stopped()
                return

        if self.budget.exhausted:
            await self._force_synthesis()
            return

        if self.cancelled:
            await self._stopped()
            return

        if not self.budget.try_consume("planner evaluate"):
            await self._force_synthesis()
            return

        await self._emit(EventType.BRAIN_EVALUATING, {
            "done": len(self.doc.done_questions),
            "budget_remaining": self.budget.remaining,
        })
        outcome = await self.planner.evaluate(self.doc)
        await self._commit_outcome(outcome)

        if outcome.action == DecisionAction.SYNTHESIZE:
            await self._commit(SetStatus(status=DocumentStatus.SYNTHESIZING))
            self._transition(OrchestratorState.SYNTHESIZING)

    async def _synthesize(self) -> None:
        result = await self.synthesizer.synthesize(
            self.doc, budget_exhausted=self._budget_forced()
        )
        for edit in result.edits:
            await self._commit(edit)

        if self.doc.is_complete:
            self._transition(OrchestratorState.COMPLETE)
        else:
            # Only reachable if the synthesizer's edits were rejected.
            logger.error(f"Session {self.session_id} could not be completed; stopping")
            await self._stopped()

    async def _force_synthesis(self) -> None:
        reasoning = compose_reasoning(
            learned=f"{len(self.doc.done_questions)} of {len(self.doc.questions)} questions completed.",
            missing="Unknown; the run ended before the planner chose to stop.",
            why=BUDGET_EXHAUSTED_REASON,
        )
        logger.info(f"Session {self.session_id}: {BUDGET_EXHAUSTED_REASON}, forcing synthesis")
        await self._commit(RecordDecision.create(DecisionAction.SYNTHESIZE, reasoning))
        await self._commit(SetStatus(status=DocumentStatus.SYNTHESIZING))
        self._transition(OrchestratorState.SYNTHESIZING)

    async def _stopped(self) -> None:
        await self.store.save_document(self.doc)
        self._transition(OrchestratorState.STOPPED)
        await self._emit(EventType.RESEARCH_STOPPED, {
            "running": [q.id for q in self.doc.running_questions],
            "pending": [q.id for q in self.doc.pending_questions],
        })

    def _transition(self, state: OrchestratorState) -> None:
        if state != self.state:
            logger.info(f"Session {self.session_id}: {self.state.value} -> {state.value}")
            self.state = state

    def _budget_forced(self) -> bool:
        for decision in reversed(self.doc.decision_log):
            if decision.action == DecisionAction.SYNTHESIZE:
                return BUDGET_EXHAUSTED_REASON in decision.reasoning
        return False

    # ==========================================================================
    # Research round
    # ==========================================================================

    async def _run_round(self) -> None:
        """Run every unfinished question to completion or cancellation."""
        questions = [q for q in self.doc.questions if q.status != QuestionStatus.DONE]
        logger.info(f"Session {self.session_id}: starting round with {len(questions)} questions")

        queue: asyncio.Queue[Edit | _ExecutorFinished] = asyncio.Queue()
        semaphore = asyncio.Semaphore(self.config.max_concurrent_questions)
        tasks = [
            asyncio.create_task(self._run_question(question, queue, semaphore))
            for question in questions
        ]

        remaining = len(tasks)
        try:
            while remaining:
                item = await queue.get()
                if isinstance(item, _ExecutorFinished):
                    remaining -= 1
                    if item.error is not None:
                        await self._recover_crashed(item.question_id, item.error)
                    continue
                await self._commit(item)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run_question(
        self,
        question: ResearchQuestion,
        queue: asyncio.Queue[Edit | _ExecutorFinished],
        semaphore: asyncio.Semaphore,
    ) -> None:
        async def emit(edit: Edit) -> None:
            await queue.put(edit)

        finished = _ExecutorFinished(question.id)
        try:
            async with semaphore:
                if self.cancelled:
                    return
                finished.outcome = await self.executor.run(
                    question,
                    self.doc.objective,
                    emit,
                    cancel=self._cancel,
                    budget=self.budget,
                )
        except Exception as e:
            logger.exception(f"Executor for question {question.id} crashed")
            finished.error = e
        finally:
            await queue.put(finished)

    async def _recover_crashed(self, question_id: str, error: BaseException) -> None:
        question = self.doc.get_question(question_id)
        if question is None or question.status == QuestionStatus.DONE:
            return

        if question.status == QuestionStatus.PENDING:
            await self._commit(StartQuestion(question_id=question_id))

        summary = QuestionSummary(
            answer="The question could not be researched because its executor failed.",
            confidence=Confidence.LOW,
            limitations=f"Executor error: {error}",
            recommendation=Recommendation.NEEDS_MORE,
        )
        await self._commit(CompleteQuestion(question_id=question_id, summary=summary))

    # ==========================================================================
    # Single writer
    # ==========================================================================

    async def _commit_outcome(self, outcome: PlannerOutcome) -> None:
        for edit in outcome.edits:
            await self._commit(edit)

    async def _commit(self, edit: Edit) -> bool:
        """
        Apply one edit, persist, and emit its progress events.

        Returns:
            True if the edit changed the document
        """
        updated = apply(self.doc, edit)
        if updated is self.doc:
            return False

        self.doc = updated
        await self.store.save_document(updated)

        for event_type, payload in self._events_for(edit):
            await self._emit(event_type, payload, getattr(edit, "question_id", None))
        await self._emit(EventType.DOC_UPDATED, {
            "edit": edit.action,
            "status": updated.status.value,
            "questions": len(updated.questions),
        })
        return True

    def _events_for(self, edit: Edit) -> list[tuple[EventType, dict[str, Any]]]:
        if isinstance(edit, AddQuestion):
            q = edit.question
            return [(EventType.QUESTION_SPAWNED, {
                "question_id": q.id, "name": q.name, "question": q.question, "round": q.round,
            })]
        if isinstance(edit, StartQuestion):
            return [(EventType.QUESTION_STARTED, {})]
        if isinstance(edit, AppendMemory):
            entry = edit.entry
            if isinstance(entry, ResultEntry):
                return [(EventType.QUESTION_SEARCH_COMPLETED, {
                    "query": entry.query, "sources": len(entry.sources),
                })]
            if isinstance(entry, ReflectEntry):
                return [(EventType.QUESTION_REFLECTION, {
                    "delta": entry.delta.value, "thought": entry.thought,
                })]
            return []
        if isinstance(edit, CompleteQuestion):
            return [(EventType.QUESTION_COMPLETED, {
                "confidence": edit.summary.confidence.value,
                "recommendation": edit.summary.recommendation.value,
            })]
        if isinstance(edit, AddFinding):
            return [(EventType.FINDING_ADDED, {
                "finding_id": edit.finding.id, "content": edit.finding.content,
            })]
        if isinstance(edit, DisqualifyFinding):
            return [(EventType.FINDING_DISQUALIFIED, {
                "finding_id": edit.finding_id, "reason": edit.reason,
            })]
        if isinstance(edit, RecordDecision):
            d = edit.decision
            return [(EventType.BRAIN_DECISION, {
                "decision_id": d.id,
                "action": d.action.value,
                "question_ids": list(d.question_ids),
                "reasoning": d.reasoning,
            })]
        if isinstance(edit, SetStrategy):
            return [(EventType.BRAIN_STRATEGY, {"strategy": edit.strategy})]
        if isinstance(edit, SetFinalAnswer):
            return [(EventType.BRAIN_SYNTHESIS_COMPLETE, {
                "confidence": edit.confidence.value, "answer": edit.answer,
            })]
        if isinstance(edit, SetStatus):
            if edit.status == DocumentStatus.SYNTHESIZING:
                return [(EventType.SYNTHESIZING_STARTED, {})]
            if edit.status == DocumentStatus.COMPLETE:
                return [(EventType.RESEARCH_COMPLETE, {
                    "confidence": self.doc.final_confidence.value if self.doc.final_confidence else None,
                })]
        return []

    async def _emit(
        self,
        event_type: EventType,
        payload: dict[str, Any],
        question_id: str | None = None,
    ) -> None:
        if self.sink is None:
            return
        try:
            await self.sink.emit(ProgressEvent(
                type=event_type,
                session_id=self.session_id,
                payload=payload,
                question_id=question_id,
            ))
        except Exception as e:
            logger.warning(f"Failed to emit {event_type.value}: {e}")
