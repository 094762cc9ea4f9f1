"""
Question Executor: the bounded search → reflect loop for one question.

Each executor runs as its own task. It never touches the shared document;
it emits typed edits through the ``emit`` callback and keeps a private
replica of its question, updated with the same pure ``apply`` the
orchestrator uses, so its view always matches what it has emitted.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Literal

from pydantic import BaseModel, Field

from ..document import (
    AddFinding,
    AppendMemory,
    BeginCycle,
    CompactMemory,
    CompleteQuestion,
    Confidence,
    Delta,
    DisqualifyFinding,
    Edit,
    Finding,
    QuestionStatus,
    QuestionSummary,
    Recommendation,
    ResearchDocument,
    ResearchQuestion,
    ResultEntry,
    Source,
    StartQuestion,
    apply,
    dedupe_sources,
    format_question_for_agent,
    normalize_query,
)
from ..exceptions import RetryExhaustedError, StructuredOutputError
from ..retry import retry_async

if TYPE_CHECKING:
    from ..config.loader import ExecutorConfig, RetryConfig
    from ..llm.protocols import StructuredGeneration
    from ..retrieval import RetrievalProvider, RetrievalResult
    from .budget import RunBudget

logger = logging.getLogger(__name__)

EmitFn = Callable[[Edit], Awaitable[None]]


class QueryBatch(BaseModel):
    """Search queries to run in the next research cycle."""

    queries: list[str] = Field(min_length=1, max_length=5)
    rationale: str = ""


class FindingDisqualification(BaseModel):
    """A previously recorded finding ruled out by new evidence."""

    finding_id: str = Field(description="Id of the finding, as shown under FINDINGS SO FAR")
    reason: str = Field(description="Why the finding no longer holds")


class CycleReflection(BaseModel):
    """Assessment of the latest search results for a research question."""

    delta: Delta = Field(description="How much this step changed our understanding")
    thought: str = Field(description="One or two sentences: what we learned and what to do next")
    status: Literal["continue", "done"] = Field(
        description="continue = keep searching, done = question answered or exhausted"
    )
    findings: list[str] = Field(
        default_factory=list, description="New, specific facts learned in this step"
    )
    disqualified: list[FindingDisqualification] = Field(
        default_factory=list, description="Earlier findings that the new results contradict or rule out"
    )


class QuestionResult(BaseModel):
    """Final structured result for a research question."""

    answer: str
    key_findings: list[str] = Field(default_factory=list)
    confidence: Confidence
    limitations: str = ""
    recommendation: Recommendation

    def to_summary(self) -> QuestionSummary:
        return QuestionSummary(
            answer=self.answer,
            key_findings=tuple(self.key_findings),
            confidence=self.confidence,
            limitations=self.limitations,
            recommendation=self.recommendation,
        )


QUERY_INSTRUCTIONS = """You are a research assistant planning web searches for one narrow research question.

Propose 1-{max_queries} short, specific search queries that would move the question forward.
- Never repeat a query listed under QUERIES ALREADY RUN.
- Prefer concrete names, numbers and sources over broad topics.
- Each query must be independently searchable."""

REFLECT_INSTRUCTIONS = """You are a research assistant reflecting on the latest search results for one research question.

Classify the step:
- progress: we learned something new and relevant
- no_change: nothing meaningfully new
- dead_end: this angle cannot answer the question

Choose status "done" only when the question is answered or clearly cannot be answered.
List only new, specific facts under findings.
If the new results contradict an earlier finding, list its id under disqualified with the reason."""

SUMMARY_INSTRUCTIONS = """You are a research assistant writing the final result for one research question.

Answer the question using only the history and findings provided.
State limitations honestly, pick a confidence level, and recommend whether this
angle was promising, a dead end, or needs more research."""

FINISH_ANSWERED = "answered"
FINISH_DEAD_END = "dead_end"
FINISH_MAX_CYCLES = "max_cycles"
FINISH_NO_PROGRESS = "no_progress"
FINISH_BUDGET = "budget"


@dataclass
class ExecutionOutcome:
    """How an executor run ended."""

    question_id: str
    completed: bool
    reason: str
    cycles: int

    @classmethod
    def stopped(cls, question: ResearchQuestion) -> ExecutionOutcome:
        return cls(question.id, completed=False, reason="cancelled", cycles=question.cycles)


class QuestionExecutor:
    """
    Runs one research question through bounded search/reflect cycles.

    Loop per cycle:
    1. Check cancellation, the run budget and the cycle limit
    2. Plan a query batch and drop queries already run for this question
    3. Retrieve each query (retried with backoff; exhaustion degrades to no_change)
    4. Reflect on the results and record new findings

    Ends when reflection says done, the cycle limit is hit (needs_more),
    progress stalls, or the run budget is spent.
    """

    def __init__(
        self,
        generator: StructuredGeneration,
        retriever: RetrievalProvider,
        config: ExecutorConfig | None = None,
        retry: RetryConfig | None = None,
    ):
        """
        Initialize the executor.

        Args:
            generator: Structured generation capability
            retriever: Retrieval capability
            config: Executor configuration
            retry: Retry policy for retrieval calls
        """
        if config is None:
            from ..config.loader import ExecutorConfig
            config = ExecutorConfig()
        if retry is None:
            from ..config.loader import RetryConfig
            retry = RetryConfig()

        self.generator = generator
        self.retriever = retriever
        self.config = config
        self.retry = retry

    async def run(
        self,
        question: ResearchQuestion,
        objective: str,
        emit: EmitFn,
        cancel: asyncio.Event | None = None,
        budget: RunBudget | None = None,
    ) -> ExecutionOutcome:
        """
        Run (or resume) a question until it is done or cancelled.

        Args:
            question: Snapshot of the question (pending or running)
            objective: The overall research objective, for context
            emit: Coroutine that hands an edit to the single writer
            cancel: Set when the user asks to stop
            budget: Shared run budget; one step per cycle

        Returns:
            ExecutionOutcome describing how the run ended
        """
        run = _ExecutorRun(self, question, objective, emit)
        return await run.execute(cancel, budget)


class _ExecutorRun:
    """State of one executor invocation."""

    def __init__(
        self,
        executor: QuestionExecutor,
        question: ResearchQuestion,
        objective: str,
        emit: EmitFn,
    ):
        self.executor = executor
        self.config = executor.config
        self.objective = objective
        self._emit_upstream = emit
        self._replica = ResearchDocument(objective=objective, questions=(question,))
        self.question_id = question.id
        self.no_progress_streak = 0

    @property
    def question(self) -> ResearchQuestion:
        return self._replica.questions[0]

    async def emit(self, edit: Edit) -> None:
        self._replica = apply(self._replica, edit)
        await self._emit_upstream(edit)

    async def execute(
        self,
        cancel: asyncio.Event | None,
        budget: RunBudget | None,
    ) -> ExecutionOutcome:
        if self.question.status == QuestionStatus.DONE:
            logger.info(f"Question {self.question_id} already done, nothing to run")
            return ExecutionOutcome(self.question_id, True, "already_done", self.question.cycles)

        if self.question.status == QuestionStatus.PENDING:
            await self.emit(StartQuestion(question_id=self.question_id))

        logger.info(
            f"Executing question {self.question_id} "
            f"(cycle {self.question.cycles}/{self.question.max_cycles}): {self.question.question}"
        )

        finish_reason: str | None = None
        while finish_reason is None:
            if cancel is not None and cancel.is_set():
                logger.info(f"Question {self.question_id} stopping: cancellation requested")
                return ExecutionOutcome.stopped(self.question)

            if self.question.cycles >= self.question.max_cycles:
                finish_reason = FINISH_MAX_CYCLES
                break

            if budget is not None and not budget.try_consume(f"cycle {self.question_id}"):
                finish_reason = FINISH_BUDGET
                break

            finish_reason = await self._run_cycle()

        await self._complete(finish_reason)
        return ExecutionOutcome(self.question_id, True, finish_reason, self.question.cycles)

    async def _run_cycle(self) -> str | None:
        """Run one search/reflect cycle. Returns a finish reason or None to continue."""
        await self.emit(BeginCycle(question_id=self.question_id))
        cycle = self.question.cycles

        proposed = await self._plan_queries()
        queries = self._dedupe(proposed)

        if not queries:
            await self.emit(AppendMemory.reflect(
                self.question_id,
                "All proposed queries were already run; no new search issued.",
                Delta.NO_CHANGE,
                cycle,
            ))
            return self._after_no_change()

        results = await asyncio.gather(*(self._retrieve(q) for q in queries))

        cycle_sources: list[Source] = []
        succeeded = 0
        for query, result in zip(queries, results):
            await self.emit(AppendMemory.search(self.question_id, query, cycle))
            if result is None:
                await self.emit(AppendMemory.reflect(
                    self.question_id,
                    f"Retrieval failed for '{query}' after retries; step recorded without results.",
                    Delta.NO_CHANGE,
                    cycle,
                ))
                continue
            succeeded += 1
            cycle_sources.extend(result.sources)
            await self.emit(AppendMemory.result(
                self.question_id, query, result.answer, result.sources, cycle
            ))

        if not succeeded:
            return self._after_no_change()

        reflection = await self._reflect()
        if reflection is None:
            await self.emit(AppendMemory.reflect(
                self.question_id,
                "Reflection unavailable for this cycle; treating it as no change.",
                Delta.NO_CHANGE,
                cycle,
            ))
            return self._after_no_change()

        await self.emit(AppendMemory.reflect(
            self.question_id, reflection.thought, reflection.delta, cycle
        ))

        sources = dedupe_sources(cycle_sources)
        known = {normalize_query(f.content) for f in self.question.findings}
        for fact in reflection.findings:
            if not fact.strip() or normalize_query(fact) in known:
                continue
            known.add(normalize_query(fact))
            await self.emit(AddFinding(
                question_id=self.question_id,
                finding=Finding(content=fact.strip(), sources=sources),
            ))

        for ruling in reflection.disqualified:
            finding = self.question.get_finding(ruling.finding_id)
            if finding is None or not finding.is_active or not ruling.reason.strip():
                logger.info(f"Question {self.question_id}: ignoring disqualification of {ruling.finding_id}")
                continue
            await self.emit(DisqualifyFinding(
                question_id=self.question_id,
                finding_id=finding.id,
                reason=ruling.reason.strip(),
            ))

        await self._maybe_compact()

        if reflection.delta == Delta.NO_CHANGE:
            self.no_progress_streak += 1
        else:
            self.no_progress_streak = 0

        if reflection.status == "done":
            if reflection.delta == Delta.DEAD_END:
                return FINISH_DEAD_END
            if self.question.search_count >= self.config.min_searches_before_done:
                return FINISH_ANSWERED
            logger.info(
                f"Question {self.question_id}: ignoring 'done' after only "
                f"{self.question.search_count} searches (minimum {self.config.min_searches_before_done})"
            )

        if self.no_progress_streak >= self.config.no_progress_limit:
            return FINISH_NO_PROGRESS
        return None

    def _after_no_change(self) -> str | None:
        self.no_progress_streak += 1
        if self.no_progress_streak >= self.config.no_progress_limit:
            return FINISH_NO_PROGRESS
        return None

    def _dedupe(self, proposed: list[str]) -> list[str]:
        """Drop queries already run for this question, or repeated within the batch."""
        seen = set(self.question.queries_run)
        queries = []
        for query in proposed:
            normalized = normalize_query(query)
            if not normalized:
                continue
            if normalized in seen:
                logger.info(f"Question {self.question_id}: skipping already-run query '{query}'")
                continue
            seen.add(normalized)
            queries.append(query.strip())
        return queries[: self.config.max_queries_per_cycle]

    async def _plan_queries(self) -> list[str]:
        context = format_question_for_agent(self.question, self.objective)
        instructions = QUERY_INSTRUCTIONS.format(max_queries=self.config.max_queries_per_cycle)
        try:
            batch = await self.executor.generator.generate(instructions, context, QueryBatch)
            return batch.queries
        except (StructuredOutputError, RetryExhaustedError) as e:
            logger.warning(f"Question {self.question_id}: query planning failed ({e}), using the question text")
            return [self.question.question]

    async def _retrieve(self, query: str) -> RetrievalResult | None:
        retry = self.executor.retry
        try:
            return await retry_async(
                f"retrieve '{query}'",
                lambda: self.executor.retriever.search(query),
                max_attempts=retry.max_attempts,
                backoff_factor=retry.backoff_factor,
                initial_delay=retry.initial_delay,
                timeout=retry.call_timeout,
            )
        except RetryExhaustedError as e:
            logger.warning(f"Question {self.question_id}: {e}")
            return None

    async def _reflect(self) -> CycleReflection | None:
        context = format_question_for_agent(self.question, self.objective)
        try:
            return await self.executor.generator.generate(REFLECT_INSTRUCTIONS, context, CycleReflection)
        except (StructuredOutputError, RetryExhaustedError) as e:
            logger.warning(f"Question {self.question_id}: reflection failed: {e}")
            return None

    async def _maybe_compact(self) -> None:
        if len(self.question.memory) > self.config.compaction_threshold:
            logger.info(
                f"Question {self.question_id}: compacting memory "
                f"({len(self.question.memory)} entries, keeping {self.config.compaction_keep_last})"
            )
            await self.emit(CompactMemory(
                question_id=self.question_id, keep_last=self.config.compaction_keep_last
            ))

    async def _complete(self, reason: str) -> None:
        summary = await self._summarize(reason)
        logger.info(
            f"Question {self.question_id} done ({reason}) after {self.question.cycles} cycles: "
            f"confidence={summary.confidence.value}, recommendation={summary.recommendation.value}"
        )
        await self.emit(CompleteQuestion(question_id=self.question_id, summary=summary))

    async def _summarize(self, reason: str) -> QuestionSummary:
        context = format_question_for_agent(self.question, self.objective)
        try:
            result = await self.executor.generator.generate(SUMMARY_INSTRUCTIONS, context, QuestionResult)
            summary = result.to_summary()
        except (StructuredOutputError, RetryExhaustedError) as e:
            logger.warning(f"Question {self.question_id}: summary generation failed: {e}")
            summary = self._fallback_summary()

        return self._apply_finish_reason(summary, reason)

    def _fallback_summary(self) -> QuestionSummary:
        answers = [e.answer for e in self.question.memory if isinstance(e, ResultEntry) and e.answer]
        findings = tuple(f.content for f in self.question.active_findings)
        return QuestionSummary(
            answer=answers[-1] if answers else "No answer was found for this question.",
            key_findings=findings,
            confidence=Confidence.LOW,
            limitations="Summary assembled automatically because the summarizer was unavailable.",
            recommendation=Recommendation.NEEDS_MORE,
        )

    def _apply_finish_reason(self, summary: QuestionSummary, reason: str) -> QuestionSummary:
        """Make forced stops visible in the summary."""
        question = self.question
        notes = {
            FINISH_MAX_CYCLES: f"Cycle limit reached ({question.max_cycles}) before the question was resolved.",
            FINISH_NO_PROGRESS: f"Stopped after {self.no_progress_streak} consecutive cycles without progress.",
            FINISH_BUDGET: "Stopped early because the research step budget was exhausted.",
        }
        if reason not in notes:
            if reason == FINISH_DEAD_END and summary.recommendation != Recommendation.DEAD_END:
                return summary.model_copy(update={"recommendation": Recommendation.DEAD_END})
            return summary

        limitations = notes[reason]
        if summary.limitations:
            limitations = f"{limitations} {summary.limitations}"

        update: dict = {"limitations": limitations}
        if reason == FINISH_MAX_CYCLES:
            update["recommendation"] = Recommendation.NEEDS_MORE
            update["confidence"] = Confidence.LOW
        elif reason == FINISH_NO_PROGRESS:
            update["recommendation"] = Recommendation.DEAD_END
            update["confidence"] = Confidence.LOW
        elif reason == FINISH_BUDGET:
            update["recommendation"] = Recommendation.NEEDS_MORE
            update["confidence"] = Confidence.LOW
        return summary.model_copy(update=update)
