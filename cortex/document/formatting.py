"""Render the research document as prompt context for the agents."""

from __future__ import annotations

from .models import (
    QuestionStatus,
    ReflectEntry,
    ResearchDocument,
    ResearchQuestion,
    ResultEntry,
    SearchEntry,
)

STATUS_ICONS = {
    QuestionStatus.DONE: "✓",
    QuestionStatus.RUNNING: "→",
    QuestionStatus.PENDING: "○",
}

RECENT_DECISIONS = 5
RECENT_MEMORY = 12
ANSWER_PREVIEW_CHARS = 600


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."


def format_question_line(question: ResearchQuestion) -> str:
    """One-line status view of a question."""
    icon = STATUS_ICONS[question.status]
    line = f"{icon} [{question.id}] {question.name}: {question.question} ({question.cycles}/{question.max_cycles} cycles)"
    if question.is_done:
        line += f" confidence={question.confidence.value if question.confidence else 'n/a'}"
        line += f" recommendation={question.recommendation.value if question.recommendation else 'n/a'}"
    return line


def format_document_for_agent(doc: ResearchDocument) -> str:
    """
    Format the whole document for the planner.

    Includes the objective, success criteria, every question with its status
    and (for done questions) its summary, and the most recent decisions.
    """
    lines = [f"OBJECTIVE: {doc.objective}", "", "SUCCESS CRITERIA:"]
    for i, criterion in enumerate(doc.success_criteria, 1):
        lines.append(f"  {i}. {criterion}")

    if doc.strategy:
        lines += ["", f"STRATEGY: {doc.strategy}"]

    lines += [
        "",
        f"QUESTIONS ({len(doc.done_questions)} done, {len(doc.running_questions)} running, "
        f"{len(doc.pending_questions)} pending):",
    ]
    if not doc.questions:
        lines.append("  (none yet)")

    for question in doc.questions:
        lines.append(f"  {format_question_line(question)}")
        if question.summary:
            lines.append(f"      Answer: {_truncate(question.summary.answer, ANSWER_PREVIEW_CHARS)}")
            for fact in question.summary.key_findings:
                lines.append(f"      - {fact}")
            if question.summary.limitations:
                lines.append(f"      Limitations: {question.summary.limitations}")

    if doc.decision_log:
        lines += ["", "RECENT DECISIONS:"]
        for decision in doc.decision_log[-RECENT_DECISIONS:]:
            lines.append(f"  [{decision.action.value}] {decision.reasoning}")

    return "\n".join(lines)


def format_question_for_agent(question: ResearchQuestion, objective: str) -> str:
    """Format one question's working state for its executor."""
    lines = [
        f"OVERALL OBJECTIVE: {objective}",
        "",
        f"QUESTION: {question.question}",
        f"GOAL: {question.goal}",
        f"CYCLE: {question.cycles}/{question.max_cycles}",
    ]

    if question.queries_run:
        lines += ["", "QUERIES ALREADY RUN (do not repeat):"]
        lines += [f"  - {q}" for q in question.queries_run]

    if question.memory:
        lines += ["", "RECENT HISTORY:"]
        for entry in question.memory[-RECENT_MEMORY:]:
            if isinstance(entry, SearchEntry):
                lines.append(f"  [search] {entry.query}")
            elif isinstance(entry, ResultEntry):
                lines.append(f"  [result] {_truncate(entry.answer, ANSWER_PREVIEW_CHARS)}")
                for source in entry.sources[:3]:
                    lines.append(f"      source: {source.title or source.url} ({source.url})")
            elif isinstance(entry, ReflectEntry):
                lines.append(f"  [reflect:{entry.delta.value}] {entry.thought}")

    findings = question.active_findings
    if findings:
        lines += ["", "FINDINGS SO FAR:"]
        lines += [f"  - [{f.id}] {f.content}" for f in findings]

    return "\n".join(lines)


def format_done_questions(doc: ResearchDocument) -> str:
    """Format every completed question's result for synthesis."""
    blocks = []
    for question in doc.done_questions:
        summary = question.summary
        block = [f"[{question.id}] {question.name}: {question.question}"]
        if summary:
            block.append(f"  Answer: {summary.answer}")
            block += [f"  - {fact}" for fact in summary.key_findings]
            block.append(
                f"  Confidence: {summary.confidence.value}, "
                f"recommendation: {summary.recommendation.value}"
            )
            if summary.limitations:
                block.append(f"  Limitations: {summary.limitations}")
        sources = question.sources
        if sources:
            block.append("  Sources: " + ", ".join(s.url for s in sources[:5]))
        blocks.append("\n".join(block))
    return "\n\n".join(blocks) if blocks else "(no completed questions)"
