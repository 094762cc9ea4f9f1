"""Pure edit application for the research document.

``apply(doc, edit)`` never raises for a bad edit. An edit that targets a
missing id or asks for a disallowed transition is logged and the *same*
document object is returned, so one malformed step cannot corrupt a long run.
"""

from __future__ import annotations

import logging
from functools import reduce
from typing import Callable, Iterable

from .edits import (
    AddFinding,
    AddQuestion,
    AppendMemory,
    BeginCycle,
    CompactMemory,
    CompleteQuestion,
    DisqualifyFinding,
    Edit,
    RecordDecision,
    SetFinalAnswer,
    SetStatus,
    SetStrategy,
    StartQuestion,
)
from .models import (
    STATUS_ORDER,
    Delta,
    DocumentStatus,
    FindingStatus,
    QuestionStatus,
    ReflectEntry,
    ResearchDocument,
    ResearchQuestion,
    ResultEntry,
    SearchEntry,
    normalize_query,
)

logger = logging.getLogger(__name__)


def apply(doc: ResearchDocument, edit: Edit) -> ResearchDocument:
    """
    Apply one edit to a document.

    Args:
        doc: Current document
        edit: Typed edit operation

    Returns:
        The new document, or ``doc`` itself if the edit was rejected
    """
    handler = _HANDLERS.get(type(edit))
    if handler is None:
        return _reject(doc, edit, f"unknown edit type {type(edit).__name__}")

    if doc.is_complete:
        return _reject(doc, edit, "document is complete")

    return handler(doc, edit)


def apply_all(doc: ResearchDocument, edits: Iterable[Edit]) -> ResearchDocument:
    """Apply a sequence of edits in order."""
    return reduce(apply, edits, doc)


def _reject(doc: ResearchDocument, edit, reason: str) -> ResearchDocument:
    action = getattr(edit, "action", type(edit).__name__)
    logger.warning(f"Ignoring edit '{action}' on document {doc.id}: {reason}")
    return doc


def _replace_question(doc: ResearchDocument, question: ResearchQuestion) -> ResearchDocument:
    questions = tuple(question if q.id == question.id else q for q in doc.questions)
    return doc.model_copy(update={"questions": questions})


def _add_question(doc: ResearchDocument, edit: AddQuestion) -> ResearchDocument:
    question = edit.question
    if doc.status != DocumentStatus.RUNNING:
        return _reject(doc, edit, f"document is {doc.status.value}")
    if doc.get_question(question.id) is not None:
        return _reject(doc, edit, f"question {question.id} already exists")
    if question.status != QuestionStatus.PENDING or question.cycles or question.memory:
        return _reject(doc, edit, f"question {question.id} is not fresh")

    return doc.model_copy(update={"questions": doc.questions + (question,)})


def _start_question(doc: ResearchDocument, edit: StartQuestion) -> ResearchDocument:
    question = doc.get_question(edit.question_id)
    if question is None:
        return _reject(doc, edit, f"no question {edit.question_id}")
    if question.status != QuestionStatus.PENDING:
        return _reject(doc, edit, f"question {question.id} is {question.status.value}")

    return _replace_question(
        doc, question.model_copy(update={"status": QuestionStatus.RUNNING})
    )


def _begin_cycle(doc: ResearchDocument, edit: BeginCycle) -> ResearchDocument:
    question = doc.get_question(edit.question_id)
    if question is None:
        return _reject(doc, edit, f"no question {edit.question_id}")
    if question.status != QuestionStatus.RUNNING:
        return _reject(doc, edit, f"question {question.id} is {question.status.value}")
    if question.cycles >= question.max_cycles:
        return _reject(
            doc, edit, f"question {question.id} is at its cycle limit ({question.max_cycles})"
        )

    return _replace_question(doc, question.model_copy(update={"cycles": question.cycles + 1}))


def _complete_question(doc: ResearchDocument, edit: CompleteQuestion) -> ResearchDocument:
    question = doc.get_question(edit.question_id)
    if question is None:
        return _reject(doc, edit, f"no question {edit.question_id}")
    if question.status != QuestionStatus.RUNNING:
        return _reject(doc, edit, f"question {question.id} is {question.status.value}")

    summary = edit.summary
    return _replace_question(
        doc,
        question.model_copy(
            update={
                "status": QuestionStatus.DONE,
                "summary": summary,
                "confidence": summary.confidence,
                "recommendation": summary.recommendation,
            }
        ),
    )


def _append_memory(doc: ResearchDocument, edit: AppendMemory) -> ResearchDocument:
    question = doc.get_question(edit.question_id)
    if question is None:
        return _reject(doc, edit, f"no question {edit.question_id}")

    update: dict = {"memory": question.memory + (edit.entry,)}
    if isinstance(edit.entry, SearchEntry):
        normalized = normalize_query(edit.entry.query)
        if normalized not in question.queries_run:
            update["queries_run"] = question.queries_run + (normalized,)

    return _replace_question(doc, question.model_copy(update=update))


def _compact_memory(doc: ResearchDocument, edit: CompactMemory) -> ResearchDocument:
    question = doc.get_question(edit.question_id)
    if question is None:
        return _reject(doc, edit, f"no question {edit.question_id}")
    if len(question.memory) <= edit.keep_last:
        return doc

    removed = question.memory[: -edit.keep_last]
    kept = question.memory[-edit.keep_last:]
    searches = sum(1 for e in removed if isinstance(e, SearchEntry))
    results = sum(1 for e in removed if isinstance(e, ResultEntry))
    reflections = sum(1 for e in removed if isinstance(e, ReflectEntry))
    marker = ReflectEntry(
        cycle=removed[-1].cycle,
        thought=(
            f"Compacted history: removed {len(removed)} older entries "
            f"({searches} searches, {results} results, {reflections} reflections)."
        ),
        delta=Delta.NO_CHANGE,
        compacted=True,
    )

    return _replace_question(doc, question.model_copy(update={"memory": (marker,) + kept}))


def _add_finding(doc: ResearchDocument, edit: AddFinding) -> ResearchDocument:
    question = doc.get_question(edit.question_id)
    if question is None:
        return _reject(doc, edit, f"no question {edit.question_id}")
    if question.get_finding(edit.finding.id) is not None:
        return _reject(doc, edit, f"finding {edit.finding.id} already exists")
    if edit.finding.status != FindingStatus.ACTIVE:
        return _reject(doc, edit, "new findings must be active")

    return _replace_question(
        doc, question.model_copy(update={"findings": question.findings + (edit.finding,)})
    )


def _disqualify_finding(doc: ResearchDocument, edit: DisqualifyFinding) -> ResearchDocument:
    question = doc.get_question(edit.question_id)
    if question is None:
        return _reject(doc, edit, f"no question {edit.question_id}")
    finding = question.get_finding(edit.finding_id)
    if finding is None:
        return _reject(doc, edit, f"no finding {edit.finding_id} on {question.id}")
    if not edit.reason.strip():
        return _reject(doc, edit, "a disqualify reason is required")
    if finding.status == FindingStatus.DISQUALIFIED:
        return doc

    updated = finding.model_copy(
        update={"status": FindingStatus.DISQUALIFIED, "disqualify_reason": edit.reason.strip()}
    )
    findings = tuple(updated if f.id == finding.id else f for f in question.findings)
    return _replace_question(doc, question.model_copy(update={"findings": findings}))


def _record_decision(doc: ResearchDocument, edit: RecordDecision) -> ResearchDocument:
    if any(d.id == edit.decision.id for d in doc.decision_log):
        return _reject(doc, edit, f"decision {edit.decision.id} already logged")

    return doc.model_copy(update={"decision_log": doc.decision_log + (edit.decision,)})


def _set_strategy(doc: ResearchDocument, edit: SetStrategy) -> ResearchDocument:
    return doc.model_copy(update={"strategy": edit.strategy})


def _set_status(doc: ResearchDocument, edit: SetStatus) -> ResearchDocument:
    if edit.status == doc.status:
        return doc
    if STATUS_ORDER[edit.status] < STATUS_ORDER[doc.status]:
        return _reject(doc, edit, f"cannot move from {doc.status.value} to {edit.status.value}")
    if edit.status == DocumentStatus.COMPLETE and not doc.final_answer:
        return _reject(doc, edit, "cannot complete without a final answer")

    return doc.model_copy(update={"status": edit.status})


def _set_final_answer(doc: ResearchDocument, edit: SetFinalAnswer) -> ResearchDocument:
    if doc.final_answer is not None:
        return _reject(doc, edit, "final answer already set")
    if not edit.answer.strip():
        return _reject(doc, edit, "final answer is empty")

    return doc.model_copy(
        update={"final_answer": edit.answer, "final_confidence": edit.confidence}
    )


_HANDLERS: dict[type, Callable] = {
    AddQuestion: _add_question,
    StartQuestion: _start_question,
    BeginCycle: _begin_cycle,
    CompleteQuestion: _complete_question,
    AppendMemory: _append_memory,
    CompactMemory: _compact_memory,
    AddFinding: _add_finding,
    DisqualifyFinding: _disqualify_finding,
    RecordDecision: _record_decision,
    SetStrategy: _set_strategy,
    SetStatus: _set_status,
    SetFinalAnswer: _set_final_answer,
}
