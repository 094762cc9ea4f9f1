"""Cortex autonomous research orchestration package."""

from .document import ResearchDocument, apply
from .orchestration import ResearchService

__all__ = [
    "ResearchDocument",
    "ResearchService",
    "apply",
]
