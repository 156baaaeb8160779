"""
Reconciler — the issuance state machine for one etcd member.

Domain layer — no I/O of its own. Fetches and updates go through the
MemberSource and RecordStore ports; signing goes through CertificateIssuer.

Per triggering event:

  fetch member ──not found──▶ Skip
    → classify ──not etcd──▶ Skip
      → resolve CA (must exist AND hold both tls.crt and tls.key)
        → for each kind (peer, then server):
            fetch target record (terminal on error)
              → certificate present? ──yes──▶ PRESENT
              → build request from THIS record's annotations
                → issue → update record (tls.crt, tls.key, issuance annotations)
                  → ISSUED | FAILED
          → ReconcileReport (disposition = worst of all kinds)

Terminal states come back as Result.failure; everything else as a
ReconcileReport whose disposition tells the caller whether to requeue.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, unique

import structlog
from railway import ErrorCode, Failure, FailureDescription, Result, Success

from etcd_cert_signer.domain.annotations import issuance_annotations
from etcd_cert_signer.domain.classifier import is_cluster_member
from etcd_cert_signer.domain.identity import build_request, validate_ca
from etcd_cert_signer.domain.models import (
    CertificateKind,
    IssuedCertificate,
    KindOutcome,
    KindStatus,
    MemberIdentity,
    ReconcileReport,
    ReconcileRequest,
    ResyncSummary,
    SecretRecord,
)
from etcd_cert_signer.domain.ports import CertificateIssuer, MemberSource, RecordStore

log = structlog.get_logger()


@unique
class FailurePolicy(Enum):
    """
    How per-kind failures affect the rest of a reconciliation.

    ATTEMPT_ALL: every kind is attempted and failures are aggregated into the report.
    ABORT_ON_FIRST: the first per-kind failure ends the reconciliation as a Failure.
    """

    ATTEMPT_ALL = "attempt-all"
    ABORT_ON_FIRST = "abort-on-first"


@dataclass(frozen=True, slots=True)
class ReconcilerConfig:
    """
    Everything the reconciler would otherwise read from process-wide constants.

    Certificate lifetime and key generation belong to the CertificateIssuer
    and are configured on it.
    """

    ca_name: str = "etcd-ca"
    ca_namespace: str = "openshift-etcd"
    failure_policy: FailurePolicy = FailurePolicy.ATTEMPT_ALL
    kinds: tuple[CertificateKind, ...] = (CertificateKind.PEER, CertificateKind.SERVER)


def _skip(request: ReconcileRequest, reason: str) -> Result[ReconcileReport]:
    log.info("reconcile.skipped", member=str(request), reason=reason)
    return Result.success(ReconcileReport(request=request, skipped=True, skip_reason=reason))


def _resolve_ca(store: RecordStore, config: ReconcilerConfig) -> Result[SecretRecord]:
    """Fetch the CA record; absence and incompleteness are both terminal."""
    return (
        store.fetch_record(config.ca_namespace, config.ca_name)
        .flat_map(validate_ca)
        .peek_failure(
            lambda err: log.error(
                "reconcile.ca_unavailable",
                ca=f"{config.ca_namespace}/{config.ca_name}",
                code=err.code.value,
                error=err.message,
            )
        )
    )


def _persist(
    store: RecordStore,
    target: SecretRecord,
    issued: IssuedCertificate,
) -> Result[IssuedCertificate]:
    """Write certificate, key and issuance annotations in one update."""
    updated = target.with_issued_certificate(
        issued,
        issuance_annotations(issued.issuer_common_name, issued.not_before, issued.not_after),
    )
    return store.update_record(updated).map(lambda _: issued)


def issue_if_missing(
    target: SecretRecord,
    kind: CertificateKind,
    ca_record: SecretRecord,
    store: RecordStore,
    issuer: CertificateIssuer,
) -> KindOutcome:
    """
    Issue and store a certificate for one kind, unless one is already there.

    A populated tls.crt means nothing is generated and nothing is written,
    whatever the certificate's expiry or content.
    """
    target_ref = f"{target.namespace}/{target.name}"
    if target.has_certificate:
        log.debug("reconcile.certificate_present", target=target_ref, kind=kind.suffix)
        return KindOutcome(kind=kind, target_name=target.name, status=KindStatus.PRESENT)

    return (
        build_request(target, kind)
        .flat_map(lambda request: issuer.issue(ca_record, request))
        .flat_map(lambda issued: _persist(store, target, issued))
        .either(
            on_success=lambda issued: _issued(kind, target, issued),
            on_failure=lambda err: _failed(kind, target, err),
        )
    )


def _issued(kind: CertificateKind, target: SecretRecord, issued: IssuedCertificate) -> KindOutcome:
    log.info(
        "reconcile.certificate_issued",
        target=f"{target.namespace}/{target.name}",
        kind=kind.suffix,
        serial=format(issued.serial_number, "x"),
    )
    return KindOutcome(
        kind=kind,
        target_name=target.name,
        status=KindStatus.ISSUED,
        serial_number=issued.serial_number,
    )


def _failed(kind: CertificateKind, target: SecretRecord, err: FailureDescription) -> KindOutcome:
    log.error(
        "reconcile.issuance_failed",
        target=f"{target.namespace}/{target.name}",
        kind=kind.suffix,
        code=err.code.value,
        disposition=err.disposition.name,
        error=err.message,
    )
    return KindOutcome(kind=kind, target_name=target.name, status=KindStatus.FAILED, failure=err)


def _reconcile_kinds(
    request: ReconcileRequest,
    member: MemberIdentity,
    ca_record: SecretRecord,
    store: RecordStore,
    issuer: CertificateIssuer,
    config: ReconcilerConfig,
) -> Result[ReconcileReport]:
    outcomes: list[KindOutcome] = []
    for kind in config.kinds:
        fetched = store.fetch_record(member.namespace, kind.target_name(member.name))
        match fetched:
            case Failure(err):
                log.error(
                    "reconcile.target_unavailable",
                    member=str(request),
                    kind=kind.suffix,
                    code=err.code.value,
                    error=err.message,
                )
                return Failure(err)
            case Success(target):
                outcome = issue_if_missing(target, kind, ca_record, store, issuer)

        outcomes.append(outcome)
        if outcome.failure is not None and config.failure_policy is FailurePolicy.ABORT_ON_FIRST:
            return Result.failure_from(outcome.failure)

    return Result.success(ReconcileReport(request=request, outcomes=tuple(outcomes)))


def reconcile_member(
    request: ReconcileRequest,
    member_source: MemberSource,
    store: RecordStore,
    issuer: CertificateIssuer,
    config: ReconcilerConfig | None = None,
) -> Result[ReconcileReport]:
    """
    Ensure the member named by request has its peer and server certificates.

    Safe to re-run any number of times: with populated target records it
    only reads. Returns Result.failure for terminal states (CA missing or
    incomplete, member/target fetch errors, or the first failure under
    ABORT_ON_FIRST), otherwise a ReconcileReport.
    """
    config = config or ReconcilerConfig()
    log.info("reconcile.start", member=str(request))

    fetched = member_source.fetch_member(request.namespace, request.name)
    if fetched.is_failure() and fetched.error().code is ErrorCode.NOT_FOUND:
        return _skip(request, "member not found")

    def _classified(member: MemberIdentity) -> Result[ReconcileReport]:
        if not is_cluster_member(member.labels):
            return _skip(request, "not an etcd member")
        return _resolve_ca(store, config).flat_map(
            lambda ca_record: _reconcile_kinds(request, member, ca_record, store, issuer, config)
        )

    return fetched.flat_map(_classified).peek(
        lambda report: log.info(
            "reconcile.done",
            member=str(request),
            disposition=report.disposition.name,
            issued=len(report.issued),
            failed=len(report.failures),
        )
    )


def reconcile_all(
    member_source: MemberSource,
    store: RecordStore,
    issuer: CertificateIssuer,
    config: ReconcilerConfig | None = None,
    namespace: str | None = None,
) -> Result[ResyncSummary]:
    """
    Reconcile every listed etcd member once, one after another.

    A failure for one member does not stop the others; it is recorded in
    the summary. Only a failure to list members fails the whole resync.
    """
    config = config or ReconcilerConfig()

    def _each(members: list[MemberIdentity]) -> ResyncSummary:
        reports: list[ReconcileReport] = []
        failed: list[tuple[ReconcileRequest, FailureDescription]] = []
        for member in members:
            request = ReconcileRequest(namespace=member.namespace, name=member.name)
            reconcile_member(request, member_source, store, issuer, config).either(
                on_success=reports.append,
                on_failure=lambda err, req=request: failed.append((req, err)),
            )
        return ResyncSummary(reports=tuple(reports), failures=tuple(failed))

    return member_source.list_members(namespace).map(_each)
