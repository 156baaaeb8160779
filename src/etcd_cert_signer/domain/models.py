"""
Domain models — immutable values flowing through one reconciliation.

Nothing here outlives a single reconcile call: members, records, CA material,
requests, and issued certificates are built fresh from what the store returns
and discarded afterwards. All durable state lives in the external records.

All models are frozen dataclasses; records are "modified" by building a new
instance (see SecretRecord.with_issued_certificate).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum, unique

from railway import Disposition, FailureDescription

CERT_DATA_KEY = "tls.crt"
KEY_DATA_KEY = "tls.key"

# 3 x 365 days, not calendar-aware.
ETCD_CERT_VALIDITY = timedelta(hours=3 * 365 * 24)


@unique
class CertificateKind(Enum):
    """
    The certificates every etcd member needs.

    Each kind fixes the target record suffix and the Subject organization
    that selects the member's role. METRICS is reserved: its naming is
    defined but no reconciliation issues it.
    """

    PEER = ("peer", "system:peers")
    SERVER = ("server", "system:servers")
    METRICS = ("metrics", "system:metrics")

    def __init__(self, suffix: str, organization: str) -> None:
        self.suffix = suffix
        self.organization = organization

    def target_name(self, member_name: str) -> str:
        return f"{member_name}-{self.suffix}"


@unique
class KeyAlgorithm(Enum):
    RSA = "rsa"
    ECDSA = "ecdsa"


@dataclass(frozen=True, slots=True)
class KeySpec:
    """Algorithm and size of the private keys generated for member certificates."""

    algorithm: KeyAlgorithm = KeyAlgorithm.RSA
    rsa_key_size: int = 2048
    ec_curve: str = "P-256"


@dataclass(frozen=True, slots=True)
class MemberIdentity:
    """An observed runtime object (pod) that may be an etcd cluster member."""

    name: str
    namespace: str
    labels: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class SecretRecord:
    """
    A record in the external store: the CA record or one member's per-kind slot.

    `data` holds decoded bytes keyed by field name (tls.crt, tls.key).
    `resource_version` is echoed back on update for optimistic concurrency.
    """

    name: str
    namespace: str
    annotations: Mapping[str, str] = field(default_factory=dict)
    data: Mapping[str, bytes] = field(default_factory=dict, repr=False)
    resource_version: str | None = None

    @property
    def certificate(self) -> bytes | None:
        return self.data.get(CERT_DATA_KEY)

    @property
    def private_key(self) -> bytes | None:
        return self.data.get(KEY_DATA_KEY)

    @property
    def has_certificate(self) -> bool:
        """True when the certificate slot is populated (present and non-empty)."""
        return bool(self.certificate)

    def with_issued_certificate(
        self,
        issued: IssuedCertificate,
        annotations: Mapping[str, str],
    ) -> SecretRecord:
        """Return a copy carrying the issued pair and the extra annotations."""
        return replace(
            self,
            data={
                **self.data,
                CERT_DATA_KEY: issued.certificate_pem,
                KEY_DATA_KEY: issued.private_key_pem,
            },
            annotations={**self.annotations, **annotations},
        )


@dataclass(frozen=True, slots=True)
class CertificateRequest:
    """Everything needed to sign one member certificate of one kind."""

    target_name: str
    target_namespace: str
    hostnames: tuple[str, ...]
    subject_identity: str
    organization: str
    signer_common_name: str


@dataclass(frozen=True, slots=True)
class IssuedCertificate:
    """
    A freshly signed certificate and its private key, both PEM-encoded.

    Issuer CN, serial and validity window are copied out of the certificate
    so the caller can record them without re-parsing.
    """

    certificate_pem: bytes = field(repr=False)
    private_key_pem: bytes = field(repr=False)
    issuer_common_name: str
    serial_number: int
    not_before: datetime
    not_after: datetime


@dataclass(frozen=True, slots=True)
class ReconcileRequest:
    """One trigger: reconcile the member with this namespace and name."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@unique
class KindStatus(Enum):
    """What happened to one certificate kind during a reconciliation."""

    ISSUED = "issued"
    PRESENT = "present"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class KindOutcome:
    """Per-kind step result threaded through the reconciliation."""

    kind: CertificateKind
    target_name: str
    status: KindStatus
    failure: FailureDescription | None = None
    serial_number: int | None = None

    @property
    def disposition(self) -> Disposition:
        if self.failure is None:
            return Disposition.SUCCESS
        return self.failure.disposition


@dataclass(frozen=True, slots=True)
class ReconcileReport:
    """
    Caller-facing outcome of a reconciliation that reached a non-terminal state.

    `skipped` is set when the object is not an etcd member (or is gone);
    `outcomes` then stays empty.
    """

    request: ReconcileRequest
    outcomes: tuple[KindOutcome, ...] = ()
    skipped: bool = False
    skip_reason: str | None = None

    @property
    def disposition(self) -> Disposition:
        """Worst-case disposition across all attempted kinds."""
        return Disposition.worst(o.disposition for o in self.outcomes)

    @property
    def requeue(self) -> bool:
        return self.disposition is Disposition.RETRYABLE

    @property
    def failures(self) -> tuple[KindOutcome, ...]:
        return tuple(o for o in self.outcomes if o.status is KindStatus.FAILED)

    @property
    def issued(self) -> tuple[KindOutcome, ...]:
        return tuple(o for o in self.outcomes if o.status is KindStatus.ISSUED)


@dataclass(frozen=True, slots=True)
class ResyncSummary:
    """Outcome of reconciling every listed member once."""

    reports: tuple[ReconcileReport, ...] = ()
    failures: tuple[tuple[ReconcileRequest, FailureDescription], ...] = ()

    @property
    def members(self) -> int:
        return len(self.reports) + len(self.failures)

    @property
    def issued_count(self) -> int:
        return sum(len(report.issued) for report in self.reports)

    @property
    def disposition(self) -> Disposition:
        return Disposition.worst(
            [report.disposition for report in self.reports]
            + [failure.disposition for _, failure in self.failures]
        )
