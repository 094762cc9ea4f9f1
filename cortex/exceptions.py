"""Exception types raised by the research core."""


class CortexError(Exception):
    """Base class for all cortex errors."""


class TransientCapabilityError(CortexError):
    """A retrieval or generation call failed in a way that may succeed on retry."""


class RetryExhaustedError(CortexError):
    """A retryable call kept failing until the retry bound was reached."""

    def __init__(self, operation: str, attempts: int, last_error: BaseException | None = None):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation} failed after {attempts} attempts: {last_error}"
        )


class StructuredOutputError(CortexError):
    """Generated output did not conform to the requested schema."""

    def __init__(self, model_name: str, detail: str, raw: str | None = None):
        self.model_name = model_name
        self.detail = detail
        self.raw = raw
        super().__init__(f"Invalid {model_name} output: {detail}")


class PersistenceError(CortexError):
    """The document store could not be reached or written."""


class SessionNotFoundError(CortexError):
    """No live or stored research session exists for the given id."""
