"""Retry classification and backoff policy for remote calls."""

from __future__ import annotations

import asyncio
import json
import math
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Optional

import openai

from .errors import CountMismatchError, ErrorCategory, ResponseParseError

TRANSIENT_STATUS_CODES = frozenset({408, 409, 425})
RESPONSE_SHAPE_BASE_MS = 200
RESPONSE_SHAPE_FLOOR_MS = 100
MAX_RETRY_AFTER_SECONDS = 300.0

_TIMEOUT_HINTS = ("timeout", "timed out", "aborted", "abort")
_NETWORK_HINTS = (
    "network",
    "connection",
    "econnreset",
    "econnrefused",
    "enotfound",
    "eai_again",
    "socket",
    "fetch failed",
)


@dataclass(frozen=True)
class RetryDecision:
    """How a failed attempt should be followed up."""

    category: ErrorCategory
    retryable: bool
    delay_seconds: float


def extract_status_code(exc: BaseException) -> Optional[int]:
    """Read an HTTP status code from the attributes clients commonly set."""

    for attr in ("status_code", "statusCode", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def _parse_retry_after(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        number = float(value)
        return max(0.0, number) if math.isfinite(number) else None
    text = str(value).strip()
    try:
        number = float(text)
    except ValueError:
        pass
    else:
        return max(0.0, number) if math.isfinite(number) else None
    try:
        moment = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return max(0.0, (moment - datetime.now(timezone.utc)).total_seconds())


def extract_retry_after(exc: BaseException) -> Optional[float]:
    """Return the server's retry-after hint in seconds, if any."""

    explicit = _parse_retry_after(getattr(exc, "retry_after", None))
    if explicit is not None:
        return explicit

    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)
    if headers is None:
        return None
    milliseconds = _parse_retry_after(headers.get("retry-after-ms"))
    if milliseconds is not None:
        return milliseconds / 1000.0
    return _parse_retry_after(headers.get("retry-after"))


def _message_of(exc: BaseException) -> str:
    return str(exc).lower()


class RetryPolicy:
    """Classifies failures and computes the delay before the next attempt."""

    def __init__(
        self,
        *,
        base_delay_ms: int = 500,
        max_delay_ms: int = 8000,
        jitter_ms: int = 100,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.base_delay_ms = max(0, base_delay_ms)
        self.max_delay_ms = max(self.base_delay_ms, max_delay_ms)
        self.jitter_ms = max(0, jitter_ms)
        self._rng = rng

    def classify(self, exc: BaseException) -> ErrorCategory:
        if isinstance(exc, (ResponseParseError, CountMismatchError, json.JSONDecodeError)):
            return ErrorCategory.RESPONSE_SHAPE

        status = extract_status_code(exc)
        if status is not None:
            if status == 429:
                return ErrorCategory.RATE_LIMIT
            if status in TRANSIENT_STATUS_CODES:
                return ErrorCategory.TRANSIENT_HTTP
            if status >= 500:
                return ErrorCategory.SERVER_ERROR
            if 400 <= status < 500:
                return ErrorCategory.CLIENT_ERROR

        if isinstance(exc, (asyncio.TimeoutError, TimeoutError, openai.APITimeoutError)):
            return ErrorCategory.TIMEOUT
        if isinstance(exc, (ConnectionError, openai.APIConnectionError)):
            return ErrorCategory.NETWORK

        message = _message_of(exc)
        if any(hint in message for hint in _TIMEOUT_HINTS):
            return ErrorCategory.TIMEOUT
        if any(hint in message for hint in _NETWORK_HINTS):
            return ErrorCategory.NETWORK
        return ErrorCategory.UNKNOWN

    @staticmethod
    def is_retryable(category: ErrorCategory) -> bool:
        return category is not ErrorCategory.CLIENT_ERROR

    def _jitter(self) -> float:
        return self._rng() * self.jitter_ms

    def delay_for(self, exc: BaseException, category: ErrorCategory, attempt: int) -> float:
        """Delay in seconds after the zero-based ``attempt`` failed."""

        exponent = 2 ** max(0, attempt)
        if category is ErrorCategory.CLIENT_ERROR:
            return 0.0
        if category is ErrorCategory.RATE_LIMIT:
            hint = extract_retry_after(exc)
            if hint is not None:
                return min(hint, MAX_RETRY_AFTER_SECONDS)
            delay_ms = 2 * self.base_delay_ms * exponent + self._jitter()
        elif category is ErrorCategory.RESPONSE_SHAPE:
            delay_ms = max(
                RESPONSE_SHAPE_FLOOR_MS,
                RESPONSE_SHAPE_BASE_MS * exponent + self._jitter(),
            )
        else:
            delay_ms = self.base_delay_ms * exponent + self._jitter()
        return min(self.max_delay_ms, delay_ms) / 1000.0

    def decide(self, exc: BaseException, attempt: int) -> RetryDecision:
        category = self.classify(exc)
        return RetryDecision(
            category=category,
            retryable=self.is_retryable(category),
            delay_seconds=self.delay_for(exc, category, attempt),
        )
