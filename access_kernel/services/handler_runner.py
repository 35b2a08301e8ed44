"""
Module: access_kernel.services.handler_runner
Responsibility: Run catalog plugin handlers on a worker pool with a timeout.

Architecture position: Kernel > Services.  Imported by every service that
    calls into a catalog plugin.

Invariants enforced:
    - Approval flow handlers never raise into the lifecycle: an exception
      or a timeout becomes ``HandlerResult.failure``.
    - An in-flight handler is never cancelled.  On timeout the caller stops
      waiting and the worker thread is left to finish on its own.
    - Handlers run on pool threads and must not touch the caller's
      SQLAlchemy session.

Failure modes:
    - ``call()`` (resource type handlers) raises ProviderError on exception
      or timeout; resource CRUD has no record to fold a failure into.
"""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, TypeVar

from access_kernel.domain.approval import HandlerResult
from access_kernel.exceptions import ProviderError
from access_kernel.logging_config import get_logger

logger = get_logger("services.handler_runner")

T = TypeVar("T")

HANDLER_TIMED_OUT_MESSAGE = "handler timed out"


class HandlerRunner:
    """Bounded worker pool for plugin handler calls."""

    def __init__(self, timeout_seconds: float = 30.0, max_workers: int = 8):
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self._timeout_seconds = timeout_seconds
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="catalog-handler",
        )

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    def run(self, name: str, handler: Callable[..., HandlerResult], *args: Any) -> HandlerResult:
        """
        Run an approval flow handler and always return a HandlerResult.

        Args:
            name: Handler label for logging (e.g. ``"approve"``).
            handler: The plugin callable.
            *args: Positional arguments for the handler.
        """
        future = self._executor.submit(handler, *args)
        try:
            result = future.result(timeout=self._timeout_seconds)
        except FutureTimeoutError:
            logger.warning(
                "handler_timed_out",
                extra={"handler": name, "timeout_seconds": self._timeout_seconds},
            )
            return HandlerResult.failure(HANDLER_TIMED_OUT_MESSAGE)
        except Exception as exc:
            logger.warning(
                "handler_raised",
                extra={"handler": name, "error_type": type(exc).__name__},
                exc_info=True,
            )
            return HandlerResult.failure(str(exc) or type(exc).__name__)

        if not isinstance(result, HandlerResult):
            logger.warning(
                "handler_returned_invalid_result",
                extra={"handler": name, "result_type": type(result).__name__},
            )
            return HandlerResult.failure(f"handler {name} returned {type(result).__name__}")

        logger.info(
            "handler_completed",
            extra={"handler": name, "is_success": result.is_success},
        )
        return result

    def call(self, name: str, fn: Callable[..., T], *args: Any) -> T:
        """Run a resource type handler; failures raise ProviderError."""
        future: Future[T] = self._executor.submit(fn, *args)
        try:
            return future.result(timeout=self._timeout_seconds)
        except FutureTimeoutError:
            logger.warning(
                "handler_timed_out",
                extra={"handler": name, "timeout_seconds": self._timeout_seconds},
            )
            raise ProviderError("catalog", f"{name}: {HANDLER_TIMED_OUT_MESSAGE}") from None
        except Exception as exc:
            logger.warning(
                "handler_raised",
                extra={"handler": name, "error_type": type(exc).__name__},
                exc_info=True,
            )
            raise ProviderError("catalog", f"{name}: {exc}") from exc

    def shutdown(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait)
