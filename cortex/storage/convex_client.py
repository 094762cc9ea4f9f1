"""Convex HTTP client: realtime progress events and document storage."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, TYPE_CHECKING

import httpx

from ..exceptions import PersistenceError
from ..settings import CONVEX_URL

if TYPE_CHECKING:
    from ..orchestration.events import ProgressEvent

logger = logging.getLogger(__name__)


@dataclass
class ConvexConfig:
    """Configuration for Convex client."""

    url: str = field(default_factory=lambda: CONVEX_URL)
    timeout: float = 30.0

    @property
    def is_configured(self) -> bool:
        """Check if Convex is properly configured."""
        return bool(self.url)


class ConvexClient:
    """HTTP client for a Convex backend.

    Serves two roles:
    - progress sink: ``emit`` forwards events to ``events:emit``
    - blob store: ``load``/``save``/``delete``/``list_keys`` map to the
      ``documents:*`` functions
    """

    def __init__(self, config: ConvexConfig | None = None):
        """Initialize the Convex client.

        Args:
            config: Convex configuration. If None, loads from environment.
        """
        self.config = config or ConvexConfig()
        self._client: httpx.AsyncClient | None = None

    @property
    def enabled(self) -> bool:
        """Check if Convex calls will be made."""
        return self.config.is_configured and self._client is not None

    async def connect(self) -> None:
        """Connect to Convex backend."""
        if not self.config.is_configured:
            logger.warning("Convex not configured (CONVEX_URL not set), streaming disabled")
            return

        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.timeout),
            headers={"Content-Type": "application/json"},
        )
        logger.info(f"Connected to Convex at {self.config.url}")

    async def disconnect(self) -> None:
        """Disconnect from Convex backend."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Disconnected from Convex")

    async def __aenter__(self) -> "ConvexClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    async def _call(self, kind: str, function: str, args: dict[str, Any]) -> Any:
        if not self._client:
            return None

        try:
            response = await self._client.post(
                f"{self.config.url}/api/{kind}",
                json={"path": function, "args": args, "format": "json"},
            )
            response.raise_for_status()
            return response.json().get("value")
        except httpx.HTTPStatusError as e:
            logger.error(f"Convex {kind} {function} failed: {e.response.text}")
            raise
        except httpx.HTTPError as e:
            logger.error(f"Convex {kind} {function} error: {e}")
            raise

    async def mutation(self, function: str, args: dict[str, Any]) -> Any:
        """Execute a Convex mutation.

        Args:
            function: Function path (e.g., "documents:save")
            args: Arguments to pass to the function

        Returns:
            The mutation result value
        """
        return await self._call("mutation", function, args)

    async def query(self, function: str, args: dict[str, Any]) -> Any:
        """Execute a Convex query.

        Args:
            function: Function path (e.g., "documents:get")
            args: Arguments to pass to the function

        Returns:
            The query result value
        """
        return await self._call("query", function, args)

    # ==========================================================================
    # Progress events
    # ==========================================================================

    async def emit(self, event: ProgressEvent) -> None:
        """Forward a progress event to ``events:emit``."""
        if not self.enabled:
            return

        args: dict[str, Any] = {
            "sessionId": event.session_id,
            "eventType": event.type.value,
            "payload": event.payload,
            "timestamp": event.timestamp.isoformat(),
        }
        if event.question_id is not None:
            args["questionId"] = event.question_id

        await self.mutation("events:emit", args)

    # ==========================================================================
    # Document storage
    # ==========================================================================

    async def ping(self) -> None:
        if not self.config.is_configured:
            raise PersistenceError("Convex storage requires CONVEX_URL")
        if self._client is None:
            await self.connect()
        try:
            await self.query("documents:list", {})
        except httpx.HTTPError as e:
            raise PersistenceError(f"Convex is unreachable at {self.config.url}: {e}") from e

    async def load(self, key: str) -> str | None:
        try:
            return await self.query("documents:get", {"key": key})
        except httpx.HTTPError as e:
            raise PersistenceError(f"Failed to load {key} from Convex: {e}") from e

    async def save(self, key: str, blob: str) -> None:
        try:
            await self.mutation("documents:save", {"key": key, "blob": blob})
        except httpx.HTTPError as e:
            raise PersistenceError(f"Failed to save {key} to Convex: {e}") from e

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self.mutation("documents:delete", {"key": key}))
        except httpx.HTTPError as e:
            raise PersistenceError(f"Failed to delete {key} from Convex: {e}") from e

    async def list_keys(self) -> list[str]:
        try:
            return list(await self.query("documents:list", {}) or [])
        except httpx.HTTPError as e:
            raise PersistenceError(f"Failed to list Convex documents: {e}") from e
