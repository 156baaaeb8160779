"""
Typed accessor layer over a record's annotations.

Target records describe the certificate they want through annotations. The
required ones come back as Result (a missing key is MISSING_ANNOTATION), the
informational ones as plain optionals.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime

from railway import ErrorCode, Result

from etcd_cert_signer.domain import failures
from etcd_cert_signer.domain.models import SecretRecord

CERTIFICATE_NOT_BEFORE = "auth.openshift.io/certificate-not-before"
CERTIFICATE_NOT_AFTER = "auth.openshift.io/certificate-not-after"
CERTIFICATE_ISSUER = "auth.openshift.io/certificate-issuer"
CERTIFICATE_HOSTNAMES = "auth.openshift.io/certificate-hostnames"
CERTIFICATE_ETCD_IDENTITY = "auth.openshift.io/certificate-etcd-identity"


def format_timestamp(moment: datetime) -> str:
    """RFC 3339 in UTC with a Z suffix, e.g. 2026-10-19T12:00:00Z."""
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")


class RecordAnnotations:
    """Named getters over the annotations of one SecretRecord."""

    def __init__(self, record: SecretRecord) -> None:
        self._record = record
        self._annotations: Mapping[str, str] = record.annotations

    def hostnames(self) -> Result[tuple[str, ...]]:
        """
        The SAN list, split on commas.

        Tokens are not trimmed: "a, b" yields ("a", " b"). Duplicates are
        dropped, keeping first-seen order.
        """
        return self._required(CERTIFICATE_HOSTNAMES).map(
            lambda raw: tuple(dict.fromkeys(raw.split(",")))
        )

    def etcd_identity(self) -> Result[str]:
        """The subject CN for the issued certificate. An empty value counts as missing."""
        return self._required(CERTIFICATE_ETCD_IDENTITY).ensure(
            bool,
            ErrorCode.MISSING_ANNOTATION,
            f"annotation {CERTIFICATE_ETCD_IDENTITY} is empty on {self._record.namespace}/{self._record.name}",
        )

    def not_before(self) -> str | None:
        return self._annotations.get(CERTIFICATE_NOT_BEFORE)

    def not_after(self) -> str | None:
        return self._annotations.get(CERTIFICATE_NOT_AFTER)

    def issuer(self) -> str | None:
        return self._annotations.get(CERTIFICATE_ISSUER)

    def _required(self, key: str) -> Result[str]:
        value = self._annotations.get(key)
        if value is None:
            return failures.missing_annotation(self._record, key)
        return Result.success(value)


def issuance_annotations(issuer_common_name: str, not_before: datetime, not_after: datetime) -> dict[str, str]:
    """Annotations recorded next to a newly issued certificate."""
    return {
        CERTIFICATE_NOT_BEFORE: format_timestamp(not_before),
        CERTIFICATE_NOT_AFTER: format_timestamp(not_after),
        CERTIFICATE_ISSUER: issuer_common_name,
    }
