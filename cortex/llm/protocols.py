"""Protocol definitions for LLM providers and structured generation."""

from typing import Any, Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel

M = TypeVar("M", bound=BaseModel)


@runtime_checkable
class LLMProvider(Protocol):
    """Protocol for LLM providers.

    Implement this protocol to add support for new LLM APIs.
    """

    async def complete(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> str:
        """
        Generate a completion for a single prompt.

        Args:
            prompt: The user prompt
            system_prompt: Optional system prompt
            temperature: Sampling temperature (0-2)
            max_tokens: Maximum tokens to generate
            json_mode: Ask the provider to answer with a JSON object only

        Returns:
            The generated text

        Raises:
            TransientCapabilityError: On network, rate-limit or server errors
        """
        ...


@runtime_checkable
class ToolCallingProvider(LLMProvider, Protocol):
    """An LLM provider that can be forced to answer through a tool call."""

    async def complete_with_tools(
        self,
        prompt: str,
        tools: list[dict[str, Any]],
        system_prompt: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        tool_choice: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Generate a completion that may call the given tools.

        Returns:
            Dict with ``content`` (text), ``tool_use`` (list of
            ``{"id", "name", "input"}``) and ``stop_reason``
        """
        ...


@runtime_checkable
class StructuredGeneration(Protocol):
    """Produce a validated object of a requested shape from a context.

    Implementations never return malformed data: output that does not fit
    ``output_model`` raises ``StructuredOutputError``.
    """

    async def generate(
        self,
        instructions: str,
        context: str,
        output_model: type[M],
    ) -> M:
        """
        Generate a structured object.

        Args:
            instructions: Task description (system prompt)
            context: The material to reason over
            output_model: Pydantic model describing the expected shape

        Returns:
            A validated ``output_model`` instance

        Raises:
            StructuredOutputError: If the output fails validation
            RetryExhaustedError: If transient failures persisted
        """
        ...
