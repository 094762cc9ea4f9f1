"""Document persistence for research sessions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..document import ResearchDocument, deserialize, serialize
from ..exceptions import PersistenceError

if TYPE_CHECKING:
    from ..storage import BlobStore

logger = logging.getLogger(__name__)


class StateStore:
    """
    Session store for research documents.

    Provides:
    - In-memory cache of the latest document per session
    - Persistence through a pluggable BlobStore (versioned JSON blobs)
    - Session listing and deletion
    """

    def __init__(self, blob_store: BlobStore | None = None):
        """
        Initialize the state store.

        Args:
            blob_store: Storage medium. Defaults to an in-memory store.
        """
        if blob_store is None:
            from ..storage import MemoryBlobStore
            blob_store = MemoryBlobStore()

        self.blob_store = blob_store
        self._documents: dict[str, ResearchDocument] = {}

    async def ping(self) -> None:
        """Raise PersistenceError if the underlying store is unusable."""
        await self.blob_store.ping()

    async def save_document(self, doc: ResearchDocument) -> None:
        """
        Save a document.

        Args:
            doc: Document to save
        """
        self._documents[doc.id] = doc
        await self.blob_store.save(doc.id, serialize(doc))
        logger.debug(f"Saved document {doc.id} ({len(doc.questions)} questions, {doc.status.value})")

    async def load_document(self, session_id: str) -> ResearchDocument | None:
        """
        Load a document by session ID, from cache or storage.

        Args:
            session_id: ID of the session to load

        Returns:
            ResearchDocument if found, None otherwise
        """
        cached = self._documents.get(session_id)
        if cached is not None:
            return cached

        try:
            blob = await self.blob_store.load(session_id)
        except ValueError:
            return None
        if blob is None:
            return None

        doc = deserialize(blob)
        if doc.id != session_id:
            raise PersistenceError(f"Stored blob {session_id} holds document {doc.id}")
        self._documents[session_id] = doc
        return doc

    async def list_sessions(self) -> list[str]:
        """
        List all stored session IDs.

        Returns:
            Sorted list of session IDs
        """
        keys = set(await self.blob_store.list_keys())
        keys.update(self._documents)
        return sorted(keys)

    async def delete_session(self, session_id: str) -> bool:
        """
        Delete a session.

        Args:
            session_id: ID of the session to delete

        Returns:
            True if deleted, False if not found
        """
        cached = self._documents.pop(session_id, None) is not None
        stored = await self.blob_store.delete(session_id)
        if cached or stored:
            logger.info(f"Deleted session {session_id}")
        return cached or stored
