"""Structured generation: ask an LLM for an object of a given pydantic shape.

Providers with tool use (``complete_with_tools``) get the model's JSON
schema as a forced tool. Other providers get the schema in the prompt and
the JSON object is cut out of the reply. Either way the result is validated
and a mismatch raises ``StructuredOutputError``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, ValidationError

from ..exceptions import StructuredOutputError
from ..retry import retry_async
from .protocols import ToolCallingProvider

if TYPE_CHECKING:
    from ..config.loader import RetryConfig
    from .protocols import LLMProvider

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def tool_name_for(output_model: type[BaseModel]) -> str:
    """Derive a tool name from a model class name, e.g. ``QueryBatch`` -> ``submit_query_batch``."""
    snake = re.sub(r"(?<!^)(?=[A-Z])", "_", output_model.__name__).lower()
    return f"submit_{snake}"


def extract_json_object(text: str) -> dict[str, Any]:
    """
    Extract the outermost JSON object from free text.

    Raises:
        ValueError: If no parseable object is present
    """
    json_start = text.find("{")
    json_end = text.rfind("}") + 1

    if json_start == -1 or json_end <= json_start:
        raise ValueError("no JSON object found in response")

    try:
        data = json.loads(text[json_start:json_end])
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ValueError("top-level JSON value is not an object")
    return data


class StructuredGenerator:
    """
    Generates validated pydantic objects from an ``LLMProvider``.

    Transient failures and timeouts are retried with backoff; validation
    failures are not retried here (callers decide whether to re-ask).
    """

    def __init__(
        self,
        llm: LLMProvider,
        temperature: float = 0.3,
        max_tokens: int = 2048,
        retry: RetryConfig | None = None,
    ):
        """
        Initialize the generator.

        Args:
            llm: Underlying LLM provider (already entered, if it is a context manager)
            temperature: Sampling temperature for every call
            max_tokens: Maximum tokens per call
            retry: Retry and timeout policy
        """
        if retry is None:
            from ..config.loader import RetryConfig
            retry = RetryConfig()

        self.llm = llm
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.retry = retry

    async def generate(
        self,
        instructions: str,
        context: str,
        output_model: type[M],
    ) -> M:
        """
        Generate an instance of ``output_model`` from the given context.

        Args:
            instructions: Task description, sent as the system prompt
            context: Material to reason over, sent as the user prompt
            output_model: Expected output shape

        Returns:
            Validated ``output_model`` instance

        Raises:
            StructuredOutputError: If the reply does not match the schema
            RetryExhaustedError: If transient failures persisted
        """
        name = output_model.__name__
        data, raw = await retry_async(
            f"generate {name}",
            lambda: self._request(instructions, context, output_model),
            max_attempts=self.retry.max_attempts,
            backoff_factor=self.retry.backoff_factor,
            initial_delay=self.retry.initial_delay,
            timeout=self.retry.call_timeout,
        )

        try:
            result = output_model.model_validate(data)
        except ValidationError as e:
            logger.warning(f"{name} output failed validation: {e.error_count()} errors")
            raise StructuredOutputError(name, str(e), raw) from e

        logger.debug(f"Generated {name}: {result!r}")
        return result

    async def _request(
        self,
        instructions: str,
        context: str,
        output_model: type[BaseModel],
    ) -> tuple[Any, str]:
        """Make one provider call and return (parsed data, raw text)."""
        schema = output_model.model_json_schema()

        if isinstance(self.llm, ToolCallingProvider):
            tool_name = tool_name_for(output_model)
            tool = {
                "name": tool_name,
                "description": (output_model.__doc__ or output_model.__name__).strip(),
                "input_schema": schema,
            }
            response = await self.llm.complete_with_tools(
                prompt=context,
                tools=[tool],
                system_prompt=f"{instructions}\n\nAlways respond by calling the {tool_name} tool.",
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                tool_choice={"type": "tool", "name": tool_name},
            )
            for call in response.get("tool_use", []):
                if call.get("name") == tool_name:
                    return call.get("input"), json.dumps(call.get("input"))

            text = response.get("content", "")
        else:
            prompt = (
                f"{context}\n\n"
                "Respond with a single JSON object matching this JSON schema and nothing else:\n"
                f"{json.dumps(schema)}"
            )
            text = await self.llm.complete(
                prompt=prompt,
                system_prompt=instructions,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                json_mode=True,
            )

        try:
            return extract_json_object(text), text
        except ValueError as e:
            raise StructuredOutputError(output_model.__name__, str(e), text) from e
