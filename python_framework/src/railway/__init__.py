"""
Railway-Oriented Programming (ROP) framework used by the etcd certificate signer.

Explicit, composable error handling: stages return Result instead of raising,
and every failure carries a Disposition (retryable or fatal).

    from railway import Result, ErrorCode

    def require_identity(annotations: dict[str, str]) -> Result[str]:
        return Result.from_optional(
            annotations.get("auth.openshift.io/certificate-etcd-identity"),
            "etcd identity annotation not found",
            ErrorCode.MISSING_ANNOTATION,
        )
"""

from railway.result import Result, Success, Failure
from railway.failure import Disposition, ErrorCode, FailureDescription
from railway.execution import (
    ExecutionContext,
    NoOpExecutionContext,
    LoggingExecutionContext,
    ComposableExecutionContext,
)
from railway.assertions import ResultAssertions

__all__ = [
    "Result",
    "Success",
    "Failure",
    "Disposition",
    "ErrorCode",
    "FailureDescription",
    "ExecutionContext",
    "NoOpExecutionContext",
    "LoggingExecutionContext",
    "ComposableExecutionContext",
    "ResultAssertions",
]

__version__ = "1.1.0"
