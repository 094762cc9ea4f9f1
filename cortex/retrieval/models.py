"""Pydantic models for retrieval responses."""

from pydantic import BaseModel, Field

from ..document.models import Source


class RetrievalResult(BaseModel):
    """Answer and sources returned for one query."""

    query: str
    answer: str = ""
    sources: list[Source] = Field(default_factory=list)
