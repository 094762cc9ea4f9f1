"""
Tests for the synthesizer's rendered answer and its edits.
"""

import pytest

from conftest import ScriptedGenerator
from cortex.document import (
    AddQuestion,
    CompleteQuestion,
    Confidence,
    DecisionAction,
    DocumentStatus,
    QuestionSummary,
    Recommendation,
    RecordDecision,
    ResearchDocument,
    ResearchQuestion,
    SetFinalAnswer,
    SetStatus,
    StartQuestion,
    apply_all,
)
from cortex.orchestration.synthesizer import BUDGET_NOTE, Synthesizer


@pytest.fixture
def answered_doc():
    doc = ResearchDocument.create("Describe honey bee biology", ["Lifespan", "Diet"])
    question = ResearchQuestion(name="Lifespan", question="How long does a worker bee live?")
    return apply_all(doc, [
        AddQuestion(question=question),
        StartQuestion(question_id=question.id),
        CompleteQuestion(question_id=question.id, summary=QuestionSummary(
            answer="About six weeks",
            confidence=Confidence.HIGH,
            recommendation=Recommendation.PROMISING,
        )),
    ])


def _output(doc, **overrides):
    qid = doc.questions[0].id
    data = {
        "answer": "Worker bees live about six weeks and eat nectar.",
        "confidence": "high",
        "criteria": [
            {"criterion": "Lifespan", "answer": "About six weeks", "question_ids": [qid]},
            {"criterion": "Diet", "answer": "Nectar", "question_ids": ["q_invented"]},
        ],
        "gaps": [],
    }
    data.update(overrides)
    return data


class TestRender:
    """Tests for the final answer text."""

    @pytest.mark.asyncio
    async def test_answer_cites_done_questions_only(self, answered_doc):
        """Should keep citations to done questions and flag unsupported criteria."""
        qid = answered_doc.questions[0].id
        synthesizer = Synthesizer(ScriptedGenerator(SynthesisOutput=_output(answered_doc)))

        result = await synthesizer.synthesize(answered_doc)

        assert f"1. Lifespan: About six weeks [{qid}]" in result.answer
        assert "2. Diet: Nectar (no completed question supports this)" in result.answer
        assert "q_invented" not in result.answer
        assert result.answer.rstrip().endswith("Confidence: high")
        assert result.confidence == Confidence.HIGH

    @pytest.mark.asyncio
    async def test_missing_criterion_is_called_out(self, answered_doc):
        """Should mention criteria the output did not address."""
        output = _output(answered_doc, criteria=[
            {"criterion": "Lifespan", "answer": "Six weeks", "question_ids": []},
        ])
        synthesizer = Synthesizer(ScriptedGenerator(SynthesisOutput=output))

        result = await synthesizer.synthesize(answered_doc)

        assert "2. Diet: not addressed by the completed research." in result.answer

    @pytest.mark.asyncio
    async def test_budget_exhaustion_forces_low_confidence(self, answered_doc):
        """Should say the budget ran out and report low confidence."""
        synthesizer = Synthesizer(ScriptedGenerator(SynthesisOutput=_output(answered_doc)))

        result = await synthesizer.synthesize(answered_doc, budget_exhausted=True)

        assert BUDGET_NOTE in result.answer
        assert result.confidence == Confidence.LOW
        assert "Confidence: low" in result.answer

    @pytest.mark.asyncio
    async def test_unfindable_gaps_are_stated(self, answered_doc):
        """Should surface criteria the planner declared unfindable."""
        decision = RecordDecision.create(
            DecisionAction.SYNTHESIZE,
            "Learned: lifespan\nMissing: diet\nWhy: All covered Declared unfindable: Diet.",
        )
        doc = apply_all(answered_doc, [decision])
        synthesizer = Synthesizer(ScriptedGenerator(SynthesisOutput=_output(doc, gaps=["Diet data"])))

        result = await synthesizer.synthesize(doc)

        assert "Gaps:" in result.answer
        assert "- Diet data" in result.answer
        assert "- Declared unfindable by the planner: Diet" in result.answer

    @pytest.mark.asyncio
    async def test_mention_of_unfindable_is_not_a_gap(self, answered_doc):
        """Should only report gaps the planner explicitly declared unfindable."""
        decision = RecordDecision.create(
            DecisionAction.SYNTHESIZE,
            "Learned: diet data looked unfindable at first\nMissing: nothing\nWhy: All covered",
        )
        doc = apply_all(answered_doc, [decision])
        synthesizer = Synthesizer(ScriptedGenerator(SynthesisOutput=_output(doc)))

        result = await synthesizer.synthesize(doc)

        assert "Declared unfindable" not in result.answer


class TestEdits:
    """Tests for the edits the synthesizer returns."""

    @pytest.mark.asyncio
    async def test_edits_complete_the_document(self, answered_doc):
        """Should return set_final_answer then set_status(complete)."""
        synthesizer = Synthesizer(ScriptedGenerator(SynthesisOutput=_output(answered_doc)))

        result = await synthesizer.synthesize(answered_doc)
        doc = apply_all(answered_doc, [SetStatus(status=DocumentStatus.SYNTHESIZING), *result.edits])

        assert isinstance(result.edits[0], SetFinalAnswer)
        assert isinstance(result.edits[1], SetStatus)
        assert doc.is_complete
        assert doc.final_answer == result.answer

    @pytest.mark.asyncio
    async def test_generation_failure_uses_fallback(self, answered_doc, malformed_output):
        """Should build a deterministic low-confidence answer from summaries."""
        qid = answered_doc.questions[0].id
        synthesizer = Synthesizer(ScriptedGenerator(SynthesisOutput=malformed_output))

        result = await synthesizer.synthesize(answered_doc)

        assert result.confidence == Confidence.LOW
        assert f"[{qid}] Lifespan: About six weeks" in result.answer
        assert "Confidence: low" in result.answer
        assert result.answer.strip()
