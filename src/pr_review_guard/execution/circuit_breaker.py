"""Timeout breaker for external calls (review requests, health probes)."""

import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from enum import Enum
from typing import Any


class CallStatus(Enum):
    """How a guarded call ended."""

    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


class CallTimedOutError(TimeoutError):
    """Raised in place of a call that exceeded its timeout budget."""


@dataclass
class BreakerResult:
    """Result of running a call through the breaker."""

    status: CallStatus
    value: Any = None
    elapsed_ms: int = 0
    error: Exception | None = None

    @property
    def completed(self) -> bool:
        return self.status is CallStatus.COMPLETED


def run_with_breaker(
    fn: Callable[[], Any],
    timeout: float | None,
) -> BreakerResult:
    """Run a zero-arg callable with a timeout budget.

    The call runs on a worker thread; when it overruns, the breaker returns
    immediately with a ``CallTimedOutError`` and leaves the worker to finish
    in the background. Exceptions raised by the call are captured, never
    re-raised.

    Args:
        fn: Zero-arg callable to run.
        timeout: Maximum seconds to wait, or None for no limit.

    Returns:
        BreakerResult with status, value or error, and elapsed_ms.
    """
    start = time.monotonic()
    executor = ThreadPoolExecutor(max_workers=1)

    try:
        future = executor.submit(fn)
        value = future.result(timeout=timeout)
        return BreakerResult(
            status=CallStatus.COMPLETED,
            value=value,
            elapsed_ms=int((time.monotonic() - start) * 1000),
        )

    except FuturesTimeoutError:
        return BreakerResult(
            status=CallStatus.TIMED_OUT,
            elapsed_ms=int((time.monotonic() - start) * 1000),
            error=CallTimedOutError(f"Call timed out after {timeout}s"),
        )

    except Exception as e:
        return BreakerResult(
            status=CallStatus.FAILED,
            elapsed_ms=int((time.monotonic() - start) * 1000),
            error=e,
        )

    finally:
        executor.shutdown(wait=False, cancel_futures=True)
