"""Retry policy shared by the embedding and judgment HTTP clients."""

from __future__ import annotations

from datetime import datetime
from email.utils import parsedate_to_datetime

import httpx
from tenacity import RetryCallState, wait_random_exponential

from prtriage.constants import (
    RATE_LIMIT_429_BACKOFF_BASE,
    RATE_LIMIT_429_BACKOFF_MAX,
    RATE_LIMIT_ERROR_BACKOFF_BASE,
    RATE_LIMIT_ERROR_BACKOFF_MAX,
)

RETRYABLE_STATUS_CODES = frozenset({408, 500, 502, 503, 504, 529})


class RetryableHTTPError(RuntimeError):
    """A transient failure worth retrying, optionally with a server cooldown."""

    def __init__(
        self, message: str, cooldown: float | None = None, is_rate_limit: bool = False
    ) -> None:
        super().__init__(message)
        self.cooldown = cooldown
        self.is_rate_limit = is_rate_limit


def parse_retry_after(value: str) -> float | None:
    value = value.strip()
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass

    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if dt is None:
        return None
    now = datetime.now(dt.tzinfo)
    return max(0.0, (dt - now).total_seconds())


def retry_after_seconds(resp: httpx.Response) -> float | None:
    header = resp.headers.get("retry-after")
    if not header:
        return None
    return parse_retry_after(header)


def error_message(resp: httpx.Response) -> str:
    """Best-effort error text from an OpenAI- or Anthropic-style error body."""
    try:
        data = resp.json()
    except ValueError:
        return resp.text.strip()
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict):
            msg = err.get("message")
            if isinstance(msg, str):
                return msg.strip()
    return resp.text.strip()


def classify_response(resp: httpx.Response, service: str) -> RetryableHTTPError | None:
    """Map a failed response to a retryable error, or None if it is permanent."""
    if resp.status_code == 429:
        return RetryableHTTPError(
            error_message(resp) or f"{service} rate limited",
            cooldown=retry_after_seconds(resp),
            is_rate_limit=True,
        )
    if resp.status_code in RETRYABLE_STATUS_CODES:
        return RetryableHTTPError(f"{service} API error {resp.status_code}")
    return None


_ERROR_WAIT = wait_random_exponential(
    min=RATE_LIMIT_ERROR_BACKOFF_BASE, max=RATE_LIMIT_ERROR_BACKOFF_MAX
)
_RATE_LIMIT_WAIT = wait_random_exponential(
    min=RATE_LIMIT_429_BACKOFF_BASE, max=RATE_LIMIT_429_BACKOFF_MAX
)


def retry_wait(retry_state: RetryCallState) -> float:
    outcome = retry_state.outcome
    exc = outcome.exception() if outcome is not None else None
    if isinstance(exc, RetryableHTTPError):
        if exc.cooldown is not None:
            return exc.cooldown
        if exc.is_rate_limit:
            return _RATE_LIMIT_WAIT(retry_state)
    return _ERROR_WAIT(retry_state)
