"""Session service: start, observe, stop and resume research runs."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, AsyncIterator

from ..document import ResearchDocument
from ..exceptions import CortexError, SessionNotFoundError
from .events import CompositeSink, QueueSink
from .executor import QuestionExecutor
from .orchestrator import Orchestrator, OrchestratorState
from .planner import Planner
from .state_store import StateStore
from .synthesizer import Synthesizer

if TYPE_CHECKING:
    from ..config.loader import ResearchConfig
    from ..llm.protocols import StructuredGeneration
    from ..retrieval import RetrievalProvider
    from .events import ProgressEvent, ProgressSink

logger = logging.getLogger(__name__)


@dataclass
class ResearchHandle:
    """A running session: its id, its event stream and the task driving it."""

    session_id: str
    events: AsyncIterator[ProgressEvent]
    task: asyncio.Task


@dataclass
class _Session:
    orchestrator: Orchestrator
    task: asyncio.Task
    queue: QueueSink


class ResearchService:
    """
    Entry point for research sessions.

    Example:
        service = ResearchService(generator, retriever)
        handle = await service.start_research("How do X and Y compare?", ["Key differences"])
        async for event in handle.events:
            print(event.type.value)
        doc = await service.wait(handle.session_id)
    """

    def __init__(
        self,
        generator: StructuredGeneration,
        retriever: RetrievalProvider,
        store: StateStore | None = None,
        sink: ProgressSink | None = None,
        config: ResearchConfig | None = None,
    ):
        """
        Initialize the service.

        Args:
            generator: Structured generation capability
            retriever: Retrieval capability
            store: Document persistence (defaults to in-memory)
            sink: Extra progress sink shared by every session
            config: Research configuration
        """
        if config is None:
            from ..config.loader import ResearchConfig
            config = ResearchConfig()

        self.config = config
        self.store = store or StateStore()
        self.sink = sink
        self.planner = Planner(generator, config.planner)
        self.executor = QuestionExecutor(generator, retriever, config.executor, config.retry)
        self.synthesizer = Synthesizer(generator)
        self._sessions: dict[str, _Session] = {}

    async def start_research(
        self,
        objective: str,
        success_criteria: list[str],
    ) -> ResearchHandle:
        """
        Start a new research session.

        Args:
            objective: What the research should answer
            success_criteria: Conditions the final answer must address

        Returns:
            ResearchHandle with the session id and its event stream

        Raises:
            ValueError: If the objective is empty
            PersistenceError: If storage is unavailable (no document is created)
        """
        if not objective or not objective.strip():
            raise ValueError("Research objective must not be empty")

        await self.store.ping()

        doc = ResearchDocument.create(objective, success_criteria)
        await self.store.save_document(doc)
        logger.info(f"Started session {doc.id}: {doc.objective}")
        return self._launch(doc)

    async def resume(self, session_id: str) -> ResearchHandle:
        """
        Resume a stopped or interrupted session from its persisted document.

        Done questions are never re-run; running questions continue from
        their recorded cycle.
        """
        if self._is_active(session_id):
            raise CortexError(f"Session {session_id} is already running")

        doc = await self.store.load_document(session_id)
        if doc is None:
            raise SessionNotFoundError(f"Unknown session: {session_id}")

        logger.info(f"Resuming session {session_id} ({doc.status.value})")
        return self._launch(doc)

    async def stop(self, session_id: str) -> ResearchDocument:
        """
        Stop a session and wait for it to persist.

        Returns:
            The stopped document
        """
        session = self._sessions.get(session_id)
        if session is None:
            return await self.get_snapshot(session_id)

        session.orchestrator.stop()
        return await session.task

    async def get_snapshot(self, session_id: str) -> ResearchDocument:
        """Return the current document of a session, live or persisted."""
        session = self._sessions.get(session_id)
        if session is not None:
            return session.orchestrator.doc

        doc = await self.store.load_document(session_id)
        if doc is None:
            raise SessionNotFoundError(f"Unknown session: {session_id}")
        return doc

    async def wait(self, session_id: str) -> ResearchDocument:
        """Wait for a session to finish and return its final document."""
        session = self._sessions.get(session_id)
        if session is None:
            return await self.get_snapshot(session_id)
        return await session.task

    def state(self, session_id: str) -> OrchestratorState | None:
        """State of a live session; None once it has ended or if it is unknown."""
        session = self._sessions.get(session_id)
        return session.orchestrator.state if session else None

    async def list_sessions(self) -> list[str]:
        return await self.store.list_sessions()

    def _forget(self, session_id: str, session: _Session) -> None:
        # A resumed session may already have replaced this entry.
        if self._sessions.get(session_id) is session:
            del self._sessions[session_id]
            logger.debug(f"Session {session_id} ended ({session.orchestrator.state.value}), released")

    def _is_active(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        return session is not None and not session.task.done()

    def _launch(self, doc: ResearchDocument) -> ResearchHandle:
        queue = QueueSink()
        sinks = [queue] if self.sink is None else [queue, self.sink]
        orchestrator = Orchestrator(
            doc,
            planner=self.planner,
            executor=self.executor,
            synthesizer=self.synthesizer,
            store=self.store,
            sink=CompositeSink(sinks),
            config=self.config.orchestrator,
        )

        async def drive() -> ResearchDocument:
            try:
                return await orchestrator.run()
            finally:
                queue.close()

        task = asyncio.create_task(drive())
        session = _Session(orchestrator, task, queue)
        self._sessions[doc.id] = session
        task.add_done_callback(lambda _: self._forget(doc.id, session))
        return ResearchHandle(session_id=doc.id, events=queue.stream(), task=task)
