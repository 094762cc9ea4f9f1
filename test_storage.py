"""
Tests for blob stores, the document state store and the Convex client.
"""

import json

import httpx
import pytest

from cortex.document import serialize
from cortex.exceptions import PersistenceError
from cortex.orchestration import EventType, ProgressEvent, StateStore
from cortex.storage import BlobStore, ConvexClient, ConvexConfig, FileBlobStore, MemoryBlobStore


class FakeConvex:
    """In-memory stand-in for the Convex HTTP API."""

    def __init__(self, fail=False):
        self.documents: dict[str, str] = {}
        self.requests: list[dict] = []
        self.fail = fail

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.fail:
            return httpx.Response(500, text="internal error")

        body = json.loads(request.content)
        self.requests.append({"url": str(request.url), **body})
        path, args = body["path"], body["args"]

        if path == "documents:get":
            value = self.documents.get(args["key"])
        elif path == "documents:save":
            self.documents[args["key"]] = args["blob"]
            value = None
        elif path == "documents:delete":
            value = self.documents.pop(args["key"], None) is not None
        elif path == "documents:list":
            value = sorted(self.documents)
        else:
            value = None
        return httpx.Response(200, json={"status": "success", "value": value})


def _convex(handler) -> ConvexClient:
    client = ConvexClient(ConvexConfig(url="https://bees.convex.cloud"))
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client


class TestFileBlobStore:
    """Tests for the file-backed store."""

    @pytest.mark.asyncio
    async def test_save_load_list_delete(self, tmp_path):
        """Should persist blobs as one file per key."""
        store = FileBlobStore(tmp_path / "sessions")
        await store.ping()

        await store.save("doc_a", '{"a": 1}')
        await store.save("doc_b", '{"b": 2}')
        await store.save("doc_a", '{"a": 3}')

        assert await store.load("doc_a") == '{"a": 3}'
        assert await store.list_keys() == ["doc_a", "doc_b"]
        assert not list((tmp_path / "sessions").glob("*.tmp"))

        assert await store.delete("doc_a") is True
        assert await store.delete("doc_a") is False
        assert await store.load("doc_a") is None

    @pytest.mark.asyncio
    async def test_invalid_key(self, tmp_path):
        """Should refuse keys that could escape the directory."""
        store = FileBlobStore(tmp_path)

        with pytest.raises(ValueError):
            await store.save("../escape", "{}")

    @pytest.mark.asyncio
    async def test_unusable_directory(self, tmp_path):
        """Should raise PersistenceError when the root is a file."""
        blocker = tmp_path / "blocker"
        blocker.write_text("x")

        with pytest.raises(PersistenceError):
            await FileBlobStore(blocker / "sessions").ping()

    def test_stores_satisfy_protocol(self, tmp_path):
        """Should satisfy the BlobStore protocol."""
        assert isinstance(MemoryBlobStore(), BlobStore)
        assert isinstance(FileBlobStore(tmp_path), BlobStore)
        assert isinstance(ConvexClient(ConvexConfig(url="https://x.convex.cloud")), BlobStore)


class TestStateStore:
    """Tests for document persistence on top of a blob store."""

    @pytest.mark.asyncio
    async def test_round_trip_through_files(self, tmp_path, doc_with_question):
        """Should reload an equal document from a fresh store."""
        await StateStore(FileBlobStore(tmp_path)).save_document(doc_with_question)

        fresh = StateStore(FileBlobStore(tmp_path))
        loaded = await fresh.load_document(doc_with_question.id)

        assert loaded == doc_with_question
        assert await fresh.list_sessions() == [doc_with_question.id]

    @pytest.mark.asyncio
    async def test_unknown_and_invalid_ids(self, tmp_path):
        """Should return None for missing sessions and malformed ids."""
        store = StateStore(FileBlobStore(tmp_path))

        assert await store.load_document("doc_missing") is None
        assert await store.load_document("../../etc/passwd") is None

    @pytest.mark.asyncio
    async def test_mismatched_blob(self, doc):
        """Should refuse a blob stored under another document's key."""
        blobs = MemoryBlobStore()
        await blobs.save("doc_other", serialize(doc))

        with pytest.raises(PersistenceError):
            await StateStore(blobs).load_document("doc_other")

    @pytest.mark.asyncio
    async def test_delete_session(self, doc):
        """Should remove the document from cache and storage."""
        store = StateStore()
        await store.save_document(doc)

        assert await store.delete_session(doc.id) is True
        assert await store.load_document(doc.id) is None
        assert await store.delete_session(doc.id) is False


class TestConvexClient:
    """Tests for Convex storage and event streaming over a mock transport."""

    @pytest.mark.asyncio
    async def test_document_storage(self, doc):
        """Should map blob operations to the documents functions."""
        backend = FakeConvex()
        client = _convex(backend)

        await client.ping()
        await client.save(doc.id, serialize(doc))

        assert await client.load(doc.id) == serialize(doc)
        assert await client.list_keys() == [doc.id]
        assert await client.delete(doc.id) is True
        assert await client.load(doc.id) is None
        assert backend.requests[0]["url"] == "https://bees.convex.cloud/api/query"
        assert backend.requests[1]["url"] == "https://bees.convex.cloud/api/mutation"

    @pytest.mark.asyncio
    async def test_state_store_over_convex(self, doc):
        """Should work as the storage medium of a StateStore."""
        backend = FakeConvex()
        await StateStore(_convex(backend)).save_document(doc)

        loaded = await StateStore(_convex(backend)).load_document(doc.id)

        assert loaded == doc

    @pytest.mark.asyncio
    async def test_emit_event(self):
        """Should forward progress events to events:emit."""
        backend = FakeConvex()
        client = _convex(backend)

        await client.emit(ProgressEvent(
            type=EventType.QUESTION_STARTED,
            session_id="doc_1",
            payload={"n": 1},
            question_id="q_1",
        ))

        request = backend.requests[0]
        assert request["path"] == "events:emit"
        assert request["args"]["eventType"] == "question_started"
        assert request["args"]["questionId"] == "q_1"

    @pytest.mark.asyncio
    async def test_server_errors_become_persistence_errors(self):
        """Should raise PersistenceError when Convex fails."""
        client = _convex(FakeConvex(fail=True))

        with pytest.raises(PersistenceError):
            await client.ping()
        with pytest.raises(PersistenceError):
            await client.save("doc_1", "{}")

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        """Should refuse storage without a URL and skip events silently."""
        client = ConvexClient(ConvexConfig(url=""))

        with pytest.raises(PersistenceError):
            await client.ping()
        await client.emit(ProgressEvent(type=EventType.DOC_UPDATED, session_id="doc_1"))
        assert client.enabled is False
