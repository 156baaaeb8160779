"""
Execution contexts — separate WHAT (pure logic) from HOW (side effects).

A reconciliation is a pure function returning Result[T]. The context decides
how it runs: timed and logged, or wrapped in further contexts.

    ctx = LoggingExecutionContext(operation="EtcdMemberResync")
    result = ctx.execute(lambda: reconcile_all(...))
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Protocol, TypeVar, runtime_checkable

from railway.failure import ErrorCode, FailureDescription
from railway.result import Failure, Result

T = TypeVar("T")
logger = logging.getLogger("railway.execution")


@runtime_checkable
class ExecutionContext(Protocol):
    """Anything with execute(computation) is an execution context."""

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]:
        ...


class NoOpExecutionContext:
    """Passthrough context, used in unit tests and as the innermost default."""

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]:
        return computation()


class LoggingExecutionContext:
    """
    Execution context that logs entry, exit and duration, plus the failure code
    and disposition when the computation returns a Failure.

    An exception escaping the computation is turned into UNKNOWN_ERROR so the
    caller (a scheduler job, an HTTP handler) always receives a Result.
    """

    def __init__(
        self,
        inner: ExecutionContext | None = None,
        operation: str = "unknown",
        log_level: int = logging.INFO,
    ) -> None:
        self._inner = inner or NoOpExecutionContext()
        self._operation = operation
        self._log_level = log_level

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]:
        logger.log(self._log_level, "[%s] Starting execution", self._operation)
        start = time.monotonic()

        try:
            result = self._inner.execute(computation)
        except Exception as e:
            elapsed = time.monotonic() - start
            logger.error(
                "[%s] Execution failed after %.3fs: %s",
                self._operation,
                elapsed,
                e,
            )
            return Failure(
                FailureDescription(ErrorCode.UNKNOWN_ERROR, f"Execution failed: {e}", e)
            )

        elapsed = time.monotonic() - start
        # A Success may wrap a value with outcomes of its own; callers log those.
        if result.is_success():
            logger.log(
                self._log_level,
                "[%s] Completed in %.3fs: returned Success",
                self._operation,
                elapsed,
            )
        else:
            error = result.error()
            logger.log(
                self._log_level,
                "[%s] Completed in %.3fs: returned Failure %s (%s)",
                self._operation,
                elapsed,
                error.code.value,
                error.disposition.name,
            )
        return result


class ComposableExecutionContext:
    """
    Compose several execution contexts; the first one given is the outermost.

        ComposableExecutionContext(LoggingExecutionContext(operation="x"), other_ctx)
    """

    def __init__(self, *contexts: ExecutionContext) -> None:
        if not contexts:
            raise ValueError("At least one execution context is required")
        self._contexts = list(contexts)

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]:
        wrapped = computation
        for ctx in reversed(self._contexts):
            prev = wrapped
            wrapped = lambda _ctx=ctx, _prev=prev: _ctx.execute(_prev)
        return wrapped()
