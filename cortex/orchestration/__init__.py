"""Research orchestration: planner, question executors, synthesizer and the session loop."""

from .budget import RunBudget
from .events import (
    CompositeSink,
    EventType,
    LoggingSink,
    ProgressEvent,
    ProgressSink,
    QueueSink,
)
from .executor import ExecutionOutcome, QuestionExecutor
from .orchestrator import Orchestrator, OrchestratorState, state_for_document
from .planner import Planner, PlannerOutcome, check_question_text
from .service import ResearchHandle, ResearchService
from .state_store import StateStore
from .synthesizer import SynthesisResult, Synthesizer

__all__ = [
    # Budget
    "RunBudget",
    # Events
    "CompositeSink",
    "EventType",
    "LoggingSink",
    "ProgressEvent",
    "ProgressSink",
    "QueueSink",
    # Components
    "ExecutionOutcome",
    "Planner",
    "PlannerOutcome",
    "QuestionExecutor",
    "SynthesisResult",
    "Synthesizer",
    "check_question_text",
    # Session loop
    "Orchestrator",
    "OrchestratorState",
    "ResearchHandle",
    "ResearchService",
    "StateStore",
    "state_for_document",
]
