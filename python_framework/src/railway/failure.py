"""
Failure description — structured error information for the failure track.

Every failure carries an ErrorCode, and every ErrorCode carries a
Disposition that tells the caller what to do next:

  SUCCESS    → nothing failed, do not requeue
  RETRYABLE  → requeue, the condition may clear on its own (or after an operator fixes it)
  FATAL      → do not requeue, the input itself is wrong

Dispositions are ordered so several step outcomes can be folded into the
worst one with max().
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, IntEnum, unique
from typing import Iterable, Optional


@unique
class Disposition(IntEnum):
    """Outcome class of one step, ordered from best to worst."""

    SUCCESS = 0
    RETRYABLE = 1
    FATAL = 2

    @staticmethod
    def worst(dispositions: Iterable[Disposition]) -> Disposition:
        """Fold many step outcomes into the worst one (SUCCESS when empty)."""
        return max(dispositions, default=Disposition.SUCCESS)


@unique
class ErrorCode(Enum):
    """
    Structured error codes for the failure track.

    The first six mirror the certificate signer's error taxonomy; the last two
    cover startup configuration and anything unclassified.
    """

    MISSING_ANNOTATION = "MISSING_ANNOTATION"
    """A required annotation is absent on a target record."""

    INVALID_CA = "INVALID_CA"
    """CA record lacks certificate or key bytes, or its material is malformed."""

    UNRECOGNIZED_TARGET_NAME = "UNRECOGNIZED_TARGET_NAME"
    """Target record name matches none of the known role substrings."""

    SIGNING_ERROR = "SIGNING_ERROR"
    """Key generation, signing, or encoding failed."""

    NOT_FOUND = "NOT_FOUND"
    """The collaborator reports the record does not exist."""

    FETCH_ERROR = "FETCH_ERROR"
    """The collaborator failed to read or write a record."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    """System misconfiguration."""

    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    """Unexpected/unclassified failures."""

    @property
    def disposition(self) -> Disposition:
        """Whether a failure with this code should be retried."""
        return _FATAL_CODES.get(self, Disposition.RETRYABLE)

    @property
    def retryable(self) -> bool:
        return self.disposition is Disposition.RETRYABLE


_FATAL_CODES = {
    ErrorCode.MISSING_ANNOTATION: Disposition.FATAL,
    ErrorCode.UNRECOGNIZED_TARGET_NAME: Disposition.FATAL,
    ErrorCode.CONFIGURATION_ERROR: Disposition.FATAL,
}


@dataclass(frozen=True, slots=True)
class FailureDescription:
    """
    Immutable failure descriptor carrying error code, message, optional exception, and timestamp.

    >>> desc = FailureDescription(ErrorCode.INVALID_CA, "CA certificate not found")
    >>> desc.code
    <ErrorCode.INVALID_CA: 'INVALID_CA'>
    >>> desc.disposition
    <Disposition.RETRYABLE: 1>
    """

    code: ErrorCode
    message: str
    exception: Optional[BaseException] = field(default=None, repr=False)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def disposition(self) -> Disposition:
        return self.code.disposition

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    def full_stack_trace(self) -> str:
        """Message followed by the formatted exception chain, if any."""
        if self.exception is None:
            return self.message
        tb = "".join(
            traceback.format_exception(
                type(self.exception), self.exception, self.exception.__traceback__
            )
        )
        return f"{self.message}\n{tb}"
