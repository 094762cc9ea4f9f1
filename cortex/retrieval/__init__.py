"""Retrieval providers for question execution."""

from .models import RetrievalResult
from .protocols import RetrievalProvider

__all__ = [
    "RetrievalProvider",
    "RetrievalResult",
]
