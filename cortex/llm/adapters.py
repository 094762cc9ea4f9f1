"""Adapter implementations for LLM providers."""

from __future__ import annotations

import logging
from typing import Any

import openai
from openai import AsyncOpenAI

from ..exceptions import TransientCapabilityError
from ..settings import (
    ANTHROPIC_API_KEY,
    ANTHROPIC_DEFAULT_MODEL,
    OPENROUTER_API_KEY,
    OPENROUTER_BASE_URL,
    OPENROUTER_DEFAULT_MODEL,
)

logger = logging.getLogger(__name__)

OPENAI_TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
)

DEFAULT_ANTHROPIC_MAX_TOKENS = 4096


def _require_key(api_key: str | None, provider: str, env_var: str) -> str:
    if not api_key:
        raise ValueError(f"{provider} API key required. Set {env_var} in .env")
    return api_key


class OpenRouterAdapter:
    """
    Adapter for the OpenRouter API.

    OpenRouter serves many models behind an OpenAI-compatible API. It has no
    forced tool use here, so structured generation goes through JSON mode.

    Usage:
        async with OpenRouterAdapter() as llm:
            text = await llm.complete("Summarize the waggle dance")
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        timeout: float = 120.0,
        max_retries: int = 2,
    ):
        """
        Initialize the OpenRouter adapter.

        Args:
            api_key: Optional API key. If not provided, uses OPENROUTER_API_KEY env var.
            model: Model to use. Defaults to OPENROUTER_DEFAULT_MODEL.
            base_url: API base URL. Defaults to OPENROUTER_BASE_URL.
            timeout: SDK request timeout in seconds
            max_retries: SDK-level retries before an error reaches us
        """
        self.api_key = _require_key(api_key or OPENROUTER_API_KEY, "OpenRouter", "OPENROUTER_API_KEY")
        self.model = model or OPENROUTER_DEFAULT_MODEL
        self.base_url = base_url or OPENROUTER_BASE_URL
        self.timeout = timeout
        self.max_retries = max_retries
        self._client: AsyncOpenAI | None = None

        logger.info(f"OpenRouter adapter initialized with model: {self.model}")

    async def __aenter__(self) -> OpenRouterAdapter:
        self._client = AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            max_retries=self.max_retries,
            timeout=self.timeout,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.close()
            self._client = None

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")
        return self._client

    async def complete(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> str:
        """Generate a completion; ``json_mode`` requests a bare JSON object."""
        messages = [{"role": "user", "content": prompt}]
        if system_prompt:
            messages.insert(0, {"role": "system", "content": system_prompt})

        request: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            request["response_format"] = {"type": "json_object"}

        logger.debug(f"OpenRouter request: {len(prompt)} chars, json_mode={json_mode}")
        try:
            response = await self.client.chat.completions.create(**request)
        except OPENAI_TRANSIENT_ERRORS as e:
            raise TransientCapabilityError(f"OpenRouter request failed: {e}") from e

        choice = response.choices[0]
        if choice.finish_reason == "length":
            logger.warning(f"{self.model} hit max_tokens; the reply is truncated")
        logger.debug(f"Usage: {response.usage}")
        return choice.message.content or ""


class AnthropicAdapter:
    """
    Adapter for the Anthropic API (direct).

    Supports forced tool use, which structured generation prefers over
    free-text JSON. The SDK is imported lazily so the dependency is only
    touched when this backend is selected.

    Usage:
        async with AnthropicAdapter() as llm:
            reply = await llm.complete_with_tools(prompt, tools, tool_choice={"type": "any"})
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float = 120.0,
        max_retries: int = 2,
    ):
        """
        Initialize the Anthropic adapter.

        Args:
            api_key: Optional API key. If not provided, uses ANTHROPIC_API_KEY env var.
            model: Model to use. Defaults to ANTHROPIC_DEFAULT_MODEL.
            timeout: SDK request timeout in seconds
            max_retries: SDK-level retries before an error reaches us
        """
        self.api_key = _require_key(api_key or ANTHROPIC_API_KEY, "Anthropic", "ANTHROPIC_API_KEY")
        self.model = model or ANTHROPIC_DEFAULT_MODEL
        self.timeout = timeout
        self.max_retries = max_retries
        self._client = None
        self._transient_errors: tuple[type[Exception], ...] = ()

        logger.info(f"Anthropic adapter initialized with model: {self.model}")

    async def __aenter__(self) -> AnthropicAdapter:
        import anthropic

        self._client = anthropic.AsyncAnthropic(
            api_key=self.api_key,
            max_retries=self.max_retries,
            timeout=self.timeout,
        )
        self._transient_errors = (
            anthropic.APIConnectionError,
            anthropic.RateLimitError,
            anthropic.InternalServerError,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.close()
            self._client = None

    @property
    def client(self):
        if self._client is None:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")
        return self._client

    async def _send(self, messages: list[dict], **kwargs: Any):
        try:
            message = await self.client.messages.create(
                model=self.model,
                messages=messages,
                **kwargs,
            )
        except self._transient_errors as e:
            raise TransientCapabilityError(f"Anthropic request failed: {e}") from e

        logger.debug(
            f"Usage: input={message.usage.input_tokens}, output={message.usage.output_tokens}, "
            f"stop_reason={message.stop_reason}"
        )
        return message

    async def complete(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> str:
        """Generate a completion. In ``json_mode`` the reply is prefilled with ``{``."""
        messages = [{"role": "user", "content": prompt}]
        if json_mode:
            messages.append({"role": "assistant", "content": "{"})

        message = await self._send(
            messages,
            system=system_prompt or "",
            temperature=temperature,
            max_tokens=max_tokens or DEFAULT_ANTHROPIC_MAX_TOKENS,
        )
        text = "".join(block.text for block in message.content if block.type == "text")
        return "{" + text if json_mode else text

    async def complete_with_tools(
        self,
        prompt: str,
        tools: list[dict[str, Any]],
        system_prompt: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        tool_choice: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Generate a completion with tool use support.

        Args:
            prompt: User prompt
            tools: Tool definitions in Anthropic format
            system_prompt: Optional system prompt
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            tool_choice: Optional tool choice, e.g. {"type": "tool", "name": ...}

        Returns:
            Dict containing:
                - content: Text content from the response
                - tool_use: List of tool use blocks if any
                - stop_reason: Why generation stopped
        """
        extra: dict[str, Any] = {"tool_choice": tool_choice} if tool_choice else {}
        message = await self._send(
            [{"role": "user", "content": prompt}],
            system=system_prompt or "",
            tools=tools,
            temperature=temperature,
            max_tokens=max_tokens or DEFAULT_ANTHROPIC_MAX_TOKENS,
            **extra,
        )

        text_parts = [block.text for block in message.content if block.type == "text"]
        calls = [
            {"id": block.id, "name": block.name, "input": block.input}
            for block in message.content
            if block.type == "tool_use"
        ]
        logger.info(f"{self.model} made {len(calls)} tool calls (stop_reason={message.stop_reason})")

        return {"content": "".join(text_parts), "tool_use": calls, "stop_reason": message.stop_reason}
