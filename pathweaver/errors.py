"""Error taxonomy for provider calls and chat turns.

Every failure that can end a turn is an `LLMError`. The session boundary turns
it into a `{category, message, retryable}` payload for the client; nothing
below that boundary formats user-facing errors.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    TRANSPORT = "transport"
    AUTH = "auth"
    PROVIDER = "provider"
    SERVER = "server"
    RATE_LIMIT = "rate_limit"
    MALFORMED_TOOL_OUTPUT = "malformed_tool_output"
    BUSY = "busy"


class LLMError(RuntimeError):
    """Base class for all orchestration failures."""

    category: ErrorCategory = ErrorCategory.PROVIDER
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "message": self.message,
            "retryable": self.retryable,
        }


class TransportError(LLMError):
    """The provider could not be reached or did not answer in time."""

    category = ErrorCategory.TRANSPORT
    retryable = True


class AuthError(LLMError):
    """Credentials are missing or were rejected by the provider."""

    category = ErrorCategory.AUTH


class ProviderRequestError(LLMError):
    """The provider rejected the request or answered with an unexpected body."""

    category = ErrorCategory.PROVIDER

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderServerError(LLMError):
    """The provider answered with a 5xx status."""

    category = ErrorCategory.SERVER
    retryable = True

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(LLMError):
    """The provider answered 429 (or a rate-limit error body) for one model."""

    category = ErrorCategory.RATE_LIMIT
    retryable = True

    def __init__(
        self,
        retry_after_seconds: float,
        raw_message: str,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(f"Rate limited, retry after {retry_after_seconds:g}s")
        self.retry_after_seconds = retry_after_seconds
        self.raw_message = raw_message
        self.headers = dict(headers or {})


class ModelsExhaustedError(LLMError):
    """Every fallback model and the final timed retry were rate limited."""

    category = ErrorCategory.RATE_LIMIT
    retryable = True

    def __init__(self, models: Sequence[str], waits: Sequence[float]) -> None:
        self.models = list(models)
        self.waits = list(waits)
        message = f"All models are rate limited ({', '.join(self.models)})"
        if len(self.waits) > 1:
            message += f"; provider asked to wait between {min(self.waits):g}s and {max(self.waits):g}s"
        elif self.waits:
            message += f"; provider asked to wait {self.waits[0]:g}s"
        super().__init__(message)


class MalformedToolOutputError(LLMError):
    """Tool-call arguments stayed unparseable after every corrective retry."""

    category = ErrorCategory.MALFORMED_TOOL_OUTPUT
    retryable = True


class SessionBusyError(LLMError):
    """A chat turn was submitted while another one is still running."""

    category = ErrorCategory.BUSY
    retryable = True
