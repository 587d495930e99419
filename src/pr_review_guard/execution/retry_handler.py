"""Failure classification, exponential backoff and the sequential retry queue."""

import errno
import random
import socket
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from loguru import logger

DEFAULT_RETRY_DELAY_MS = 1000
DEFAULT_MAX_RETRY_DELAY_MS = 10000
MAX_JITTER = 0.1


class ErrorClass(Enum):
    """Classes of review-service failure, in match priority order."""

    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    AUTHENTICATION = "authentication"
    MALFORMED_RESPONSE = "malformed_response"
    NETWORK = "network"
    TOKEN_LIMIT = "token_limit"
    UNKNOWN = "unknown"


_FALLBACK_REASONS = {
    ErrorClass.TIMEOUT: "ai_timeout",
    ErrorClass.RATE_LIMIT: "rate_limit_exceeded",
    ErrorClass.AUTHENTICATION: "authentication_failed",
    ErrorClass.MALFORMED_RESPONSE: "malformed_response",
    ErrorClass.NETWORK: "network_error",
    ErrorClass.TOKEN_LIMIT: "token_limit_exceeded",
    ErrorClass.UNKNOWN: "unknown_error",
}

# Error kinds that are always worth another attempt
RETRYABLE_ERROR_KINDS = frozenset({
    "timeout",
    "network",
    "connection-reset",
    "connection-refused",
    "timed-out",
    "not-found",
})

RETRYABLE_MESSAGES = (
    "rate limit",
    "timeout",
    "network",
    "connection",
    "temporary",
    "service unavailable",
)

_ERRNO_KINDS = {
    errno.ECONNRESET: "connection-reset",
    errno.ECONNREFUSED: "connection-refused",
    errno.ETIMEDOUT: "timed-out",
}

_CODE_KINDS = {
    "ECONNRESET": "connection-reset",
    "ECONNREFUSED": "connection-refused",
    "ETIMEDOUT": "timed-out",
    "ENOTFOUND": "not-found",
}


def _name_and_message(error: BaseException) -> tuple[str, str]:
    return type(error).__name__.lower(), str(error).lower()


def classify_error(error: BaseException) -> ErrorClass:
    """Classify an error by its type name and message. First match wins."""
    name, message = _name_and_message(error)

    if "timeout" in name or "timeout" in message or "timed out" in message:
        return ErrorClass.TIMEOUT

    if "ratelimit" in name or "rate limit" in message:
        return ErrorClass.RATE_LIMIT

    if (
        "authentication" in name
        or "authentication" in message
        or "unauthorized" in message
    ):
        return ErrorClass.AUTHENTICATION

    if (
        "parse" in name
        or "decode" in name
        or "parse" in message
        or "malformed" in message
    ):
        return ErrorClass.MALFORMED_RESPONSE

    if (
        "connection" in name
        or "network" in name
        or "network" in message
        or "connection" in message
    ):
        return ErrorClass.NETWORK

    if "token" in message or "context length" in message:
        return ErrorClass.TOKEN_LIMIT

    return ErrorClass.UNKNOWN


def get_fallback_reason(error: BaseException) -> str:
    """Reason string recorded in synthesized fallback responses."""
    return _FALLBACK_REASONS[classify_error(error)]


def _error_kind(error: BaseException) -> str | None:
    """Map an exception onto one of the retryable error kinds, if any."""
    if isinstance(error, TimeoutError) or "timeout" in type(error).__name__.lower():
        return "timeout"
    if isinstance(error, ConnectionResetError):
        return "connection-reset"
    if isinstance(error, ConnectionRefusedError):
        return "connection-refused"
    if isinstance(error, socket.gaierror):
        return "not-found"

    code = getattr(error, "code", None)
    if isinstance(code, str) and code in _CODE_KINDS:
        return _CODE_KINDS[code]

    err_no = getattr(error, "errno", None)
    if err_no in _ERRNO_KINDS:
        return _ERRNO_KINDS[err_no]

    if "network" in type(error).__name__.lower():
        return "network"
    return None


def is_retryable_error(error: BaseException) -> bool:
    """Whether a failed review call is worth another attempt."""
    if _error_kind(error) in RETRYABLE_ERROR_KINDS:
        return True
    message = str(error).lower()
    return any(keyword in message for keyword in RETRYABLE_MESSAGES)


def calculate_retry_delay(
    attempt: int,
    base_delay_ms: float = DEFAULT_RETRY_DELAY_MS,
    max_delay_ms: float = DEFAULT_MAX_RETRY_DELAY_MS,
    jitter: float | None = None,
) -> float:
    """Exponential backoff in milliseconds: base * 2^(attempt-1) * (1 + jitter).

    Jitter is drawn uniformly from [0, 0.1] unless given. The result is
    capped at ``max_delay_ms``.
    """
    if jitter is None:
        jitter = random.uniform(0, MAX_JITTER)
    exponent = max(attempt, 1) - 1
    delay = base_delay_ms * (2**exponent) * (1 + jitter)
    return min(delay, max_delay_ms)


@dataclass
class RetryEntry:
    """Queued retry for a single target (e.g. one review chunk)."""

    target: str
    operation: Callable[[], Any]
    delay_ms: float = 0.0
    attempt: int = 1


@dataclass
class RetryOutcome:
    """Result of processing one queued retry."""

    target: str
    attempt: int
    succeeded: bool
    value: Any = None
    error: Exception | None = None


class RetryQueue:
    """FIFO queue of delayed retries.

    Entries are processed one at a time; each entry's delay elapses before
    its operation runs. Two entries for the same target never run
    concurrently, even when a background drain overlaps a foreground one.
    """

    def __init__(self):
        self._entries: deque[RetryEntry] = deque()
        self._lock = threading.Lock()
        self._in_flight: set[str] = set()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def enqueue(
        self,
        target: str,
        operation: Callable[[], Any],
        delay_ms: float = 0.0,
        attempt: int = 1,
    ) -> None:
        with self._lock:
            self._entries.append(RetryEntry(target, operation, delay_ms, attempt))

    def _take_next(self) -> RetryEntry | None:
        with self._lock:
            for index, entry in enumerate(self._entries):
                if entry.target not in self._in_flight:
                    del self._entries[index]
                    self._in_flight.add(entry.target)
                    return entry
            return None

    def _release(self, target: str) -> None:
        with self._lock:
            self._in_flight.discard(target)

    def drain(self) -> list[RetryOutcome]:
        """Process queued entries until none are runnable."""
        outcomes = []

        while True:
            entry = self._take_next()
            if entry is None:
                break
            try:
                if entry.delay_ms > 0:
                    time.sleep(entry.delay_ms / 1000)
                value = entry.operation()
                outcomes.append(RetryOutcome(
                    target=entry.target,
                    attempt=entry.attempt,
                    succeeded=True,
                    value=value,
                ))
            except Exception as e:
                logger.warning(
                    f"Retry {entry.attempt} for {entry.target} failed: {e}"
                )
                outcomes.append(RetryOutcome(
                    target=entry.target,
                    attempt=entry.attempt,
                    succeeded=False,
                    error=e,
                ))
            finally:
                self._release(entry.target)

        return outcomes

    def drain_in_background(self) -> threading.Thread:
        """Start a daemon thread draining the queue. Outcomes are logged only."""
        thread = threading.Thread(target=self.drain, name="retry-queue", daemon=True)
        thread.start()
        return thread
