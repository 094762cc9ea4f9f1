"""
Tests for the research document model and the pure edit applier.
"""

import pytest
from pydantic import ValidationError

from cortex.document import (
    AddFinding,
    AddQuestion,
    AppendMemory,
    BeginCycle,
    CompactMemory,
    CompleteQuestion,
    Confidence,
    DecisionAction,
    Delta,
    DisqualifyFinding,
    DocumentStatus,
    Finding,
    FindingStatus,
    QuestionStatus,
    QuestionSummary,
    Recommendation,
    RecordDecision,
    ReflectEntry,
    ResearchDocument,
    ResearchQuestion,
    SearchEntry,
    SetFinalAnswer,
    SetStatus,
    SetStrategy,
    Source,
    StartQuestion,
    apply,
    apply_all,
    dedupe_sources,
    normalize_query,
    parse_edit,
)


def _running(doc, question_id):
    return apply(doc, StartQuestion(question_id=question_id))


class TestModels:
    """Tests for the document value types."""

    def test_create_strips_blank_criteria(self):
        """Should drop empty success criteria and strip the objective."""
        doc = ResearchDocument.create("  Objective  ", ["a", " ", "b "])

        assert doc.objective == "Objective"
        assert doc.success_criteria == ("a", "b")
        assert doc.status == DocumentStatus.RUNNING
        assert doc.id.startswith("doc_")

    def test_ids_have_prefixes(self, question):
        """Should prefix generated ids by kind."""
        assert question.id.startswith("q_")
        assert Finding(content="x").id.startswith("f_")

    def test_max_cycles_bounds(self):
        """Should reject max_cycles outside 1..20."""
        with pytest.raises(ValidationError):
            ResearchQuestion(name="n", question="q", max_cycles=0)
        with pytest.raises(ValidationError):
            ResearchQuestion(name="n", question="q", max_cycles=21)

    def test_documents_are_immutable(self, doc):
        """Should refuse in-place mutation."""
        with pytest.raises(ValidationError):
            doc.objective = "changed"

    def test_normalize_query(self):
        """Should ignore case and collapse whitespace."""
        assert normalize_query("  Honey   BEE lifespan ") == "honey bee lifespan"

    def test_dedupe_sources_by_url(self):
        """Should keep the first source per URL."""
        sources = [
            Source(url="https://a", title="first"),
            Source(url="https://b"),
            Source(url="https://a", title="second"),
        ]

        unique = dedupe_sources(sources)

        assert [s.url for s in unique] == ["https://a", "https://b"]
        assert unique[0].title == "first"

    def test_memory_entries_discriminated_by_kind(self):
        """Should parse memory entries from plain dicts."""
        edit = parse_edit({
            "action": "append_memory",
            "question_id": "q_1",
            "entry": {"kind": "reflect", "thought": "t", "delta": "progress", "cycle": 2},
        })

        assert isinstance(edit, AppendMemory)
        assert isinstance(edit.entry, ReflectEntry)
        assert edit.entry.cycle == 2


class TestQuestionLifecycle:
    """Tests for question transitions."""

    def test_add_and_start(self, doc_with_question, question):
        """Should add a pending question and start it."""
        assert doc_with_question.get_question(question.id).status == QuestionStatus.PENDING

        updated = _running(doc_with_question, question.id)

        assert updated.get_question(question.id).status == QuestionStatus.RUNNING

    def test_duplicate_question_rejected(self, doc_with_question, question):
        """Should ignore a question id that already exists."""
        assert apply(doc_with_question, AddQuestion(question=question)) is doc_with_question

    def test_non_fresh_question_rejected(self, doc):
        """Should only accept pending questions with no history."""
        started = ResearchQuestion(name="n", question="q?", status=QuestionStatus.RUNNING)

        assert apply(doc, AddQuestion(question=started)) is doc

    def test_begin_cycle_requires_running(self, doc_with_question, question):
        """Should not begin a cycle on a pending question."""
        assert apply(doc_with_question, BeginCycle(question_id=question.id)) is doc_with_question

    def test_cycles_never_exceed_max(self, doc):
        """Should refuse begin_cycle once max_cycles is reached."""
        q = ResearchQuestion(name="n", question="q?", max_cycles=3)
        doc = _running(apply(doc, AddQuestion(question=q)), q.id)

        for _ in range(5):
            doc = apply(doc, BeginCycle(question_id=q.id))

        assert doc.get_question(q.id).cycles == 3

    def test_complete_sets_summary_once(self, doc_with_question, question):
        """Should complete a running question and refuse a second completion."""
        summary = QuestionSummary(
            answer="About six weeks",
            confidence=Confidence.HIGH,
            recommendation=Recommendation.PROMISING,
        )
        doc = _running(doc_with_question, question.id)
        doc = apply(doc, CompleteQuestion(question_id=question.id, summary=summary))

        done = doc.get_question(question.id)
        assert done.status == QuestionStatus.DONE
        assert done.summary == summary
        assert done.confidence == Confidence.HIGH
        assert done.recommendation == Recommendation.PROMISING

        other = QuestionSummary(answer="Different")
        assert apply(doc, CompleteQuestion(question_id=question.id, summary=other)) is doc

    def test_complete_pending_rejected(self, doc_with_question, question):
        """Should only complete running questions."""
        edit = CompleteQuestion(question_id=question.id, summary=QuestionSummary(answer="a"))

        assert apply(doc_with_question, edit) is doc_with_question

    def test_done_question_cannot_restart(self, doc_with_question, question):
        """Should keep question status monotonic."""
        doc = _running(doc_with_question, question.id)
        doc = apply(doc, CompleteQuestion(question_id=question.id, summary=QuestionSummary(answer="a")))

        assert apply(doc, StartQuestion(question_id=question.id)) is doc


class TestMemory:
    """Tests for memory, dedup bookkeeping and compaction."""

    def test_search_records_normalized_query(self, doc_with_question, question):
        """Should track normalized queries once per question."""
        doc = _running(doc_with_question, question.id)
        doc = apply(doc, AppendMemory.search(question.id, "Bee  Lifespan", 1))
        doc = apply(doc, AppendMemory.search(question.id, "bee lifespan", 1))

        q = doc.get_question(question.id)
        assert q.queries_run == ("bee lifespan",)
        assert q.has_run_query("BEE LIFESPAN")
        assert len(q.memory) == 2

    def test_replay_doubles_memory(self, doc_with_question, question):
        """Should append again when the same memory edits are replayed."""
        doc = _running(doc_with_question, question.id)
        edits = [
            AppendMemory.search(question.id, "bee lifespan", 0),
            AppendMemory.result(question.id, "bee lifespan", "Six weeks", [Source(url="https://a")], 0),
            AppendMemory.reflect(question.id, "Useful", Delta.PROGRESS, 0),
        ]

        once = apply_all(doc, edits)
        twice = apply_all(once, edits)

        assert len(once.get_question(question.id).memory) == 3
        assert len(twice.get_question(question.id).memory) == 6

    def test_compaction_keeps_tail_and_marker(self, doc_with_question, question):
        """Should replace older entries with one compacted marker."""
        doc = _running(doc_with_question, question.id)
        for i in range(6):
            doc = apply(doc, AppendMemory.search(question.id, f"query {i}", i))

        doc = apply(doc, CompactMemory(question_id=question.id, keep_last=2))

        memory = doc.get_question(question.id).memory
        assert len(memory) == 3
        marker = memory[0]
        assert isinstance(marker, ReflectEntry)
        assert marker.compacted is True
        assert marker.thought.startswith("Compacted history: removed 4 older entries")
        assert [e.query for e in memory[1:]] == ["query 4", "query 5"]
        assert doc.get_question(question.id).search_count == 6

    def test_compaction_noop_when_short(self, doc_with_question, question):
        """Should leave short memories alone."""
        doc = apply(doc_with_question, AppendMemory.search(question.id, "q", 0))

        assert apply(doc, CompactMemory(question_id=question.id, keep_last=5)) is doc

    def test_memory_for_unknown_question_rejected(self, doc):
        """Should ignore edits addressed to a missing id."""
        assert apply(doc, AppendMemory.search("q_missing", "x", 0)) is doc


class TestFindings:
    """Tests for finding add and disqualify."""

    def test_disqualify_is_one_way_and_idempotent(self, doc_with_question, question):
        """Should disqualify with a reason and ignore repeats."""
        finding = Finding(content="Workers live six weeks")
        doc = apply(doc_with_question, AddFinding(question_id=question.id, finding=finding))
        edit = DisqualifyFinding(question_id=question.id, finding_id=finding.id, reason="Outdated source")

        once = apply(doc, edit)
        twice = apply(once, edit)

        f = once.get_question(question.id).get_finding(finding.id)
        assert f.status == FindingStatus.DISQUALIFIED
        assert f.disqualify_reason == "Outdated source"
        assert twice is once
        assert once.active_findings == []

    def test_disqualify_requires_reason(self, doc_with_question, question):
        """Should refuse a blank reason."""
        finding = Finding(content="fact")
        doc = apply(doc_with_question, AddFinding(question_id=question.id, finding=finding))

        edit = DisqualifyFinding(question_id=question.id, finding_id=finding.id, reason="  ")
        assert apply(doc, edit) is doc

    def test_duplicate_finding_rejected(self, doc_with_question, question):
        """Should refuse a finding id that already exists."""
        finding = Finding(content="fact")
        doc = apply(doc_with_question, AddFinding(question_id=question.id, finding=finding))

        assert apply(doc, AddFinding(question_id=question.id, finding=finding)) is doc


class TestDocumentStatus:
    """Tests for document-level edits."""

    def test_status_is_monotonic(self, doc):
        """Should move forward only and be idempotent."""
        synth = apply(doc, SetStatus(status=DocumentStatus.SYNTHESIZING))

        assert synth.status == DocumentStatus.SYNTHESIZING
        assert apply(synth, SetStatus(status=DocumentStatus.SYNTHESIZING)) is synth
        assert apply(synth, SetStatus(status=DocumentStatus.RUNNING)) is synth

    def test_complete_requires_final_answer(self, doc):
        """Should refuse to complete without a final answer."""
        assert apply(doc, SetStatus(status=DocumentStatus.COMPLETE)) is doc

        answered = apply(doc, SetFinalAnswer(answer="Done.", confidence=Confidence.MEDIUM))
        complete = apply(answered, SetStatus(status=DocumentStatus.COMPLETE))

        assert complete.is_complete
        assert complete.final_confidence == Confidence.MEDIUM

    def test_nothing_applies_after_complete(self, doc):
        """Should ignore every edit once the document is complete."""
        doc = apply(doc, SetFinalAnswer(answer="Done.", confidence=Confidence.LOW))
        doc = apply(doc, SetStatus(status=DocumentStatus.COMPLETE))

        assert apply(doc, SetStrategy(strategy="late")) is doc
        assert apply(doc, AddQuestion(question=ResearchQuestion(name="n", question="q?"))) is doc

    def test_final_answer_set_once(self, doc):
        """Should refuse a second or empty final answer."""
        assert apply(doc, SetFinalAnswer(answer="  ", confidence=Confidence.LOW)) is doc

        answered = apply(doc, SetFinalAnswer(answer="First", confidence=Confidence.LOW))
        assert apply(answered, SetFinalAnswer(answer="Second", confidence=Confidence.HIGH)) is answered

    def test_add_question_only_while_running(self, doc):
        """Should not add questions once synthesis started."""
        synth = apply(doc, SetStatus(status=DocumentStatus.SYNTHESIZING))
        q = ResearchQuestion(name="n", question="q?")

        assert apply(synth, AddQuestion(question=q)) is synth

    def test_decision_log_is_append_only(self, doc):
        """Should append decisions in order and refuse duplicate ids."""
        first = RecordDecision.create(DecisionAction.SPAWN, "Learned: a\nMissing: b\nWhy: c", ["q_1", "q_2"])
        second = RecordDecision.create(DecisionAction.SYNTHESIZE, "Learned: x\nMissing: y\nWhy: z")

        doc = apply_all(doc, [first, second])

        assert [d.id for d in doc.decision_log] == [first.decision.id, second.decision.id]
        assert doc.decision_log[0].question_id == "q_1"
        assert doc.decision_log[0].question_ids == ("q_1", "q_2")
        assert apply(doc, first) is doc

    def test_unknown_edit_type_rejected(self, doc):
        """Should ignore objects that are not edits."""
        assert apply(doc, SearchEntry(query="not an edit")) is doc
