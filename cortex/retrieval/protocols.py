"""Protocol definitions for retrieval providers."""

from typing import Protocol, runtime_checkable

from .models import RetrievalResult


@runtime_checkable
class RetrievalProvider(Protocol):
    """Protocol for web/document retrieval.

    Implement this protocol to add support for new search backends. Calls
    must be safe to retry.
    """

    async def search(self, query: str) -> RetrievalResult:
        """
        Run one query.

        Args:
            query: Search query string

        Returns:
            RetrievalResult with an answer and its sources

        Raises:
            TransientCapabilityError: On network or backend failures
        """
        ...
