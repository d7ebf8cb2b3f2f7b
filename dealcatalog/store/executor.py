"""
Deadline-bounded execution of remote store operations.

Every read and write goes through :class:`BoundedExecutor.run`.  The operation
is a zero-argument callable (typically the ``execute`` method of an
already-built supabase request) that is submitted to a worker thread; the
caller waits on the resulting future for at most ``timeout_ms``.

When the deadline expires the caller receives a ``timeout`` CatalogError and
the future is abandoned.  Nothing is cancelled on the store side: the request
may still complete afterwards, and any write it carries may still land.  The
late result is only logged, never returned to anyone.
"""
from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, TypeVar

from ..errors import CatalogError, ErrorKind, translate_store_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Deadlines used by callers, in milliseconds.
STORE_ROUND_TRIP_MS = 8000
CONTROLLER_OPERATION_MS = 20000


class BoundedExecutor:
    def __init__(self, max_workers: int = 16, name: str = "store") -> None:
        self.name = name
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)

    def run(
        self,
        operation: Callable[[], T],
        timeout_ms: int = STORE_ROUND_TRIP_MS,
        *,
        label: str = "store operation",
    ) -> T:
        """Run ``operation`` and return its result, or raise a timeout error."""
        started = time.monotonic()
        future: Future[T] = self._pool.submit(operation)
        try:
            return future.result(timeout=timeout_ms / 1000)
        except FutureTimeoutError:
            elapsed_ms = round((time.monotonic() - started) * 1000, 1)
            logger.warning(
                "%s exceeded its %d ms deadline (waited %.1f ms); abandoning it",
                label, timeout_ms, elapsed_ms,
            )
            future.add_done_callback(lambda f: _log_late_completion(f, label))
            raise CatalogError(
                ErrorKind.timeout,
                f"{label} timed out after {timeout_ms} ms. Please try again later.",
            ) from None
        except CatalogError:
            raise
        except Exception as exc:
            raise translate_store_error(exc) from exc

    def shutdown(self) -> None:
        # Abandoned operations are left to finish on their own.
        self._pool.shutdown(wait=False, cancel_futures=True)


def _log_late_completion(future: Future, label: str) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.debug("Abandoned %s failed after its deadline: %s", label, exc)
    else:
        logger.debug("Abandoned %s completed after its deadline; result discarded", label)
