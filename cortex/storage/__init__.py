"""Storage media for research documents and realtime events."""

from .blob_store import BlobStore, FileBlobStore, MemoryBlobStore
from .convex_client import ConvexClient, ConvexConfig

__all__ = [
    "BlobStore",
    "ConvexClient",
    "ConvexConfig",
    "FileBlobStore",
    "MemoryBlobStore",
]
