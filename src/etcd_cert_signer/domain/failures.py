"""
Factory methods for the signer's failures.

One factory per error class keeps messages uniform across the domain and the
adapters:

    return failures.missing_annotation(record, CERTIFICATE_HOSTNAMES)
"""

from __future__ import annotations

from typing import Any

from railway import ErrorCode, Result

from etcd_cert_signer.domain.models import SecretRecord


def missing_annotation(record: SecretRecord, key: str) -> Result[Any]:
    """A required annotation is absent on a target record."""
    return Result.failure(
        ErrorCode.MISSING_ANNOTATION,
        f"annotation {key} not found on {record.namespace}/{record.name}",
    )


def invalid_ca(reason: str, exception: BaseException | None = None) -> Result[Any]:
    """The CA record is incomplete or its material cannot be used."""
    return Result.failure(ErrorCode.INVALID_CA, reason, exception)


def unrecognized_target_name(name: str) -> Result[Any]:
    """The record name matches none of the known role substrings."""
    return Result.failure(
        ErrorCode.UNRECOGNIZED_TARGET_NAME,
        f"unable to recognise target record name {name!r}",
    )

