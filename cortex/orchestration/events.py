"""Progress events and the sinks that receive them."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Meaningful state changes of a research run."""

    BRAIN_INITIALIZED = "brain_initialized"
    BRAIN_STRATEGY = "brain_strategy"
    QUESTION_SPAWNED = "question_spawned"
    QUESTION_STARTED = "question_started"
    QUESTION_SEARCH_COMPLETED = "question_search_completed"
    QUESTION_REFLECTION = "question_reflection"
    QUESTION_COMPLETED = "question_completed"
    FINDING_ADDED = "finding_added"
    FINDING_DISQUALIFIED = "finding_disqualified"
    BRAIN_EVALUATING = "brain_evaluating"
    BRAIN_DECISION = "brain_decision"
    SYNTHESIZING_STARTED = "synthesizing_started"
    BRAIN_SYNTHESIS_COMPLETE = "brain_synthesis_complete"
    RESEARCH_COMPLETE = "research_complete"
    RESEARCH_STOPPED = "research_stopped"
    DOC_UPDATED = "doc_updated"


@dataclass
class ProgressEvent:
    """One progress notification."""

    type: EventType
    session_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    question_id: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "session_id": self.session_id,
            "question_id": self.question_id,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }


@runtime_checkable
class ProgressSink(Protocol):
    """Receives progress events. Must not block the research loop for long."""

    async def emit(self, event: ProgressEvent) -> None:
        ...


class LoggingSink:
    """Writes every event to the log."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    async def emit(self, event: ProgressEvent) -> None:
        target = f" [{event.question_id}]" if event.question_id else ""
        logger.log(self.level, f"{event.session_id}{target} {event.type.value}")


class QueueSink:
    """Buffers events for an async consumer (the session event stream)."""

    _CLOSED = None

    def __init__(self):
        self._queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue()
        self._closed = False

    async def emit(self, event: ProgressEvent) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    def close(self) -> None:
        """End the stream once the queued events are consumed."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._CLOSED)

    async def stream(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self._queue.get()
            if event is self._CLOSED:
                return
            yield event


class CompositeSink:
    """Fans events out to several sinks; one failing sink never affects the others."""

    def __init__(self, sinks: list[ProgressSink] | None = None):
        self.sinks: list[ProgressSink] = list(sinks or [])

    def add(self, sink: ProgressSink) -> None:
        self.sinks.append(sink)

    async def emit(self, event: ProgressEvent) -> None:
        for sink in self.sinks:
            try:
                await sink.emit(event)
            except Exception as e:
                logger.warning(f"Progress sink {type(sink).__name__} failed on {event.type.value}: {e}")
