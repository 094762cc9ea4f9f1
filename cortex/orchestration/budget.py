"""Global step and wall-time budget for one research run."""

from __future__ import annotations

import logging
import time

logger = logging.getLogger(__name__)


class RunBudget:
    """
    Bounds the total number of planner calls and executor cycles.

    Every planner invocation and every executor cycle consumes one step.
    Once the budget is spent (or the optional wall-time limit passes),
    ``try_consume`` refuses and the orchestrator forces synthesis.
    """

    def __init__(self, max_steps: int, max_wall_time_seconds: float | None = None):
        self.max_steps = max_steps
        self.max_wall_time_seconds = max_wall_time_seconds
        self.used = 0
        self._started = time.monotonic()
        self._exhausted_logged = False

    @property
    def remaining(self) -> int:
        return max(self.max_steps - self.used, 0)

    @property
    def timed_out(self) -> bool:
        if self.max_wall_time_seconds is None:
            return False
        return time.monotonic() - self._started >= self.max_wall_time_seconds

    @property
    def exhausted(self) -> bool:
        return self.used >= self.max_steps or self.timed_out

    def try_consume(self, label: str) -> bool:
        """Take one step for ``label``; return False if the budget is spent."""
        if self.exhausted:
            if not self._exhausted_logged:
                reason = "wall time" if self.timed_out else f"{self.max_steps} steps"
                logger.info(f"Run budget exhausted ({reason}); refusing '{label}'")
                self._exhausted_logged = True
            return False

        self.used += 1
        logger.debug(f"Budget step {self.used}/{self.max_steps}: {label}")
        return True
