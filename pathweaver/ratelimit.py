"""Rate-limit monitor: quota headers and 429 bodies into normalized signals.

Every provider response goes through `interpret()`:

  * quota headers (x-ratelimit-{limit,remaining}-{requests,tokens},
    x-ratelimit-reset-{requests,tokens}) become a RateLimitSnapshot, flagged
    `warning` when either remaining/limit ratio drops strictly below the
    threshold. Responses without quota headers yield no snapshot.
  * a 429, or an error body whose code names a rate limit, becomes a
    RateLimitError with the retry delay parsed from the provider message
    ("Please try again in 7m12.5s" / "... in 2.5s"). Unparseable messages
    fall back to a fixed wait.

The most recent snapshot is kept on the monitor; there is no history.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping

from pathweaver.errors import RateLimitError
from pathweaver.llm import ProviderResponse
from pathweaver.models import RateLimitSnapshot

logger = logging.getLogger(__name__)

DEFAULT_WARNING_RATIO = 0.2
DEFAULT_FALLBACK_WAIT = 60.0

_RETRY_RE = re.compile(
    r"(?:(?P<h>\d+)h)?\s*(?:(?P<m>\d+)m(?!s))?\s*(?P<s>\d+(?:\.\d+)?)s\b",
    re.IGNORECASE,
)
_RETRY_HINT_RE = re.compile(r"try again in\s+(?P<rest>[\w.\s]+)", re.IGNORECASE)


def parse_retry_after(message: str, fallback: float = DEFAULT_FALLBACK_WAIT) -> float:
    """Seconds to wait, read from a "try again in Xm Y.Ys" style message."""
    if not message:
        return fallback
    hint = _RETRY_HINT_RE.search(message)
    haystack = hint.group("rest") if hint else message
    match = _RETRY_RE.search(haystack)
    if not match:
        return fallback
    hours = int(match.group("h") or 0)
    minutes = int(match.group("m") or 0)
    seconds = float(match.group("s"))
    return hours * 3600 + minutes * 60 + seconds


def _int_header(headers: Mapping[str, str], name: str) -> int | None:
    raw = headers.get(name)
    if raw is None:
        return None
    try:
        return int(float(raw))
    except (ValueError, OverflowError):
        return None


def _percent(remaining: int | None, limit: int | None) -> float | None:
    if remaining is None or not limit:
        return None
    return remaining / limit * 100


class RateLimitMonitor:
    """Turns provider responses into capacity snapshots and rate-limit errors."""

    def __init__(
        self,
        warning_ratio: float = DEFAULT_WARNING_RATIO,
        fallback_wait: float = DEFAULT_FALLBACK_WAIT,
    ) -> None:
        self.warning_ratio = warning_ratio
        self.fallback_wait = fallback_wait
        self.latest: RateLimitSnapshot | None = None

    def snapshot(self, model: str, headers: Mapping[str, str]) -> RateLimitSnapshot | None:
        headers = {k.lower(): v for k, v in headers.items()}
        limit_requests = _int_header(headers, "x-ratelimit-limit-requests")
        remaining_requests = _int_header(headers, "x-ratelimit-remaining-requests")
        limit_tokens = _int_header(headers, "x-ratelimit-limit-tokens")
        remaining_tokens = _int_header(headers, "x-ratelimit-remaining-tokens")
        if (limit_requests is None or remaining_requests is None) and (
            limit_tokens is None or remaining_tokens is None
        ):
            return None

        warning = False
        for remaining, limit in (
            (remaining_requests, limit_requests),
            (remaining_tokens, limit_tokens),
        ):
            if remaining is not None and limit:
                if remaining / limit < self.warning_ratio:
                    warning = True

        snap = RateLimitSnapshot(
            model=model,
            limit_requests=limit_requests,
            remaining_requests=remaining_requests,
            limit_tokens=limit_tokens,
            remaining_tokens=remaining_tokens,
            reset_requests=headers.get("x-ratelimit-reset-requests"),
            reset_tokens=headers.get("x-ratelimit-reset-tokens"),
            requests_percent=_percent(remaining_requests, limit_requests),
            tokens_percent=_percent(remaining_tokens, limit_tokens),
            warning=warning,
        )
        self.latest = snap
        if warning:
            logger.warning(
                "Low capacity on %s: requests=%s/%s tokens=%s/%s",
                model, remaining_requests, limit_requests, remaining_tokens, limit_tokens,
            )
        return snap

    def is_rate_limited(self, response: ProviderResponse) -> bool:
        if response.status_code == 429:
            return True
        return not response.ok and "rate_limit" in response.error_code.lower()

    def rate_limit_error(self, response: ProviderResponse) -> RateLimitError:
        message = response.error_message
        wait = parse_retry_after(message, self.fallback_wait)
        headers = response.headers
        if "retry-after" in headers and not _RETRY_HINT_RE.search(message or ""):
            try:
                wait = float(headers["retry-after"])
            except ValueError:
                pass
        return RateLimitError(retry_after_seconds=wait, raw_message=message, headers=headers)

    def interpret(
        self, response: ProviderResponse, model: str
    ) -> tuple[RateLimitSnapshot | None, RateLimitError | None]:
        """Return (snapshot or None, RateLimitError or None) for one response."""
        snap = self.snapshot(model, response.headers)
        if self.is_rate_limited(response):
            error = self.rate_limit_error(response)
            logger.warning(
                "Rate limited on %s, provider suggests %.1fs: %s",
                model, error.retry_after_seconds, error.raw_message[:200],
            )
            return snap, error
        return snap, None
