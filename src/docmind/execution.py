"""
Time-boxed, cancellable execution of provider calls.
Embedding and generation providers have variable latency, so every call runs
on a shared worker pool while the caller polls for completion, expiry, or
cancellation.
"""
from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Callable, TypeVar

from .config import PROVIDER_MAX_WORKERS, PROVIDER_POLL_INTERVAL_S
from .errors import OperationCancelledError
from .observability import get_logger

T = TypeVar("T")
logger = get_logger(__name__)

_PROVIDER_POOL = ThreadPoolExecutor(max_workers=PROVIDER_MAX_WORKERS, thread_name_prefix="docmind-provider")


class CancellationToken:
    """Thread-safe signal a caller sets when it abandons a request."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, operation: str = "operation"):
        if self._event.is_set():
            raise OperationCancelledError(f"{operation} was cancelled by the caller")


def run_time_boxed(
    fn: Callable[..., T],
    *args: Any,
    timeout_s: float = 0.0,
    cancel_token: CancellationToken | None = None,
    operation: str = "provider_call",
    poll_interval_s: float = PROVIDER_POLL_INTERVAL_S,
    **kwargs: Any,
) -> T:
    """
    Runs fn(*args, **kwargs) and waits at most timeout_s (0 = unbounded).
    Raises TimeoutError on expiry and OperationCancelledError when the token is
    set; an abandoned call keeps running in its worker but its result is dropped.
    """
    if cancel_token is not None:
        cancel_token.raise_if_cancelled(operation)

    future = _PROVIDER_POOL.submit(fn, *args, **kwargs)
    deadline = (time.monotonic() + float(timeout_s)) if timeout_s and timeout_s > 0 else None
    while True:
        wait_s = max(0.001, float(poll_interval_s))
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                future.cancel()
                logger.warning("provider_call_timed_out", operation=operation, timeout_s=float(timeout_s))
                raise TimeoutError(f"{operation} exceeded {float(timeout_s):.1f}s")
            wait_s = min(wait_s, remaining)
        done, _ = wait([future], timeout=wait_s)
        if done:
            return future.result()
        if cancel_token is not None and cancel_token.cancelled:
            future.cancel()
            logger.info("provider_call_cancelled", operation=operation)
            raise OperationCancelledError(f"{operation} was cancelled by the caller")
