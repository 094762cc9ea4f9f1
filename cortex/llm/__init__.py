"""LLM provider integrations with protocol-based adapter pattern."""

from .protocols import LLMProvider, StructuredGeneration, ToolCallingProvider
from .adapters import AnthropicAdapter, OpenRouterAdapter
from .structured import StructuredGenerator, extract_json_object

__all__ = [
    # Protocols
    "LLMProvider",
    "StructuredGeneration",
    "ToolCallingProvider",
    # Adapters
    "AnthropicAdapter",
    "OpenRouterAdapter",
    # Structured generation
    "StructuredGenerator",
    "extract_json_object",
]
