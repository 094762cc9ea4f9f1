"""Research document model, typed edits, and versioned serialization."""

from .models import (
    Confidence,
    Decision,
    DecisionAction,
    Delta,
    DocumentStatus,
    Finding,
    FindingStatus,
    MemoryEntry,
    QuestionStatus,
    QuestionSummary,
    Recommendation,
    ReflectEntry,
    ResearchDocument,
    ResearchQuestion,
    ResultEntry,
    SearchEntry,
    Source,
    dedupe_sources,
    generate_id,
    normalize_query,
)
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
    parse_edit,
)
from .applier import apply, apply_all
from .serialization import SCHEMA_VERSION, deserialize, serialize
from .formatting import (
    format_document_for_agent,
    format_done_questions,
    format_question_for_agent,
)

__all__ = [
    # Models
    "Confidence",
    "Decision",
    "DecisionAction",
    "Delta",
    "DocumentStatus",
    "Finding",
    "FindingStatus",
    "MemoryEntry",
    "QuestionStatus",
    "QuestionSummary",
    "Recommendation",
    "ReflectEntry",
    "ResearchDocument",
    "ResearchQuestion",
    "ResultEntry",
    "SearchEntry",
    "Source",
    "dedupe_sources",
    "generate_id",
    "normalize_query",
    # Edits
    "AddFinding",
    "AddQuestion",
    "AppendMemory",
    "BeginCycle",
    "CompactMemory",
    "CompleteQuestion",
    "DisqualifyFinding",
    "Edit",
    "RecordDecision",
    "SetFinalAnswer",
    "SetStatus",
    "SetStrategy",
    "StartQuestion",
    "parse_edit",
    # Applier
    "apply",
    "apply_all",
    # Serialization
    "SCHEMA_VERSION",
    "deserialize",
    "serialize",
    # Formatting
    "format_document_for_agent",
    "format_done_questions",
    "format_question_for_agent",
]
