"""
Identity resolution — names and X.509 fields derived from member metadata.

Pure functions over records that were already fetched. Each resolver
returns a Result so the orchestrator can chain them:

  validate_ca(ca_record)
    → resolve_hostnames(target)
      → resolve_subject_identity(target)
        → resolve_signer_common_name(target)
          → CertificateRequest
"""

from __future__ import annotations

from railway import Result

from etcd_cert_signer.domain import failures
from etcd_cert_signer.domain.annotations import RecordAnnotations
from etcd_cert_signer.domain.models import (
    CertificateKind,
    CertificateRequest,
    MemberIdentity,
    SecretRecord,
)

ETCD_SIGNER_COMMON_NAME = "etcd-signer"
ETCD_METRIC_SIGNER_COMMON_NAME = "etcd-metric-signer"


def peer_target_name(member: MemberIdentity) -> str:
    return CertificateKind.PEER.target_name(member.name)


def server_target_name(member: MemberIdentity) -> str:
    return CertificateKind.SERVER.target_name(member.name)


def metrics_target_name(member: MemberIdentity) -> str:
    return CertificateKind.METRICS.target_name(member.name)


def resolve_hostnames(target: SecretRecord) -> Result[tuple[str, ...]]:
    return RecordAnnotations(target).hostnames()


def resolve_subject_identity(target: SecretRecord) -> Result[str]:
    return RecordAnnotations(target).etcd_identity()


def resolve_signer_common_name(target: SecretRecord) -> Result[str]:
    """
    Pick the signer CN by substring match on the record's own name.

    "peer" or "server" anywhere in the name selects the etcd signer,
    "metric" the metric signer. The peer/server check runs first.
    """
    name = target.name
    if "peer" in name or "server" in name:
        return Result.success(ETCD_SIGNER_COMMON_NAME)
    if "metric" in name:
        return Result.success(ETCD_METRIC_SIGNER_COMMON_NAME)
    return failures.unrecognized_target_name(name)


def validate_ca(ca_record: SecretRecord) -> Result[SecretRecord]:
    """Fail with INVALID_CA unless both tls.crt and tls.key are present and non-empty."""
    if not ca_record.certificate:
        return failures.invalid_ca(
            f"CA certificate not found in {ca_record.namespace}/{ca_record.name}"
        )
    if not ca_record.private_key:
        return failures.invalid_ca(
            f"CA private key not found in {ca_record.namespace}/{ca_record.name}"
        )
    return Result.success(ca_record)


def build_request(target: SecretRecord, kind: CertificateKind) -> Result[CertificateRequest]:
    """
    Derive the CertificateRequest for one kind from that kind's own target record.

    Hostnames and identity are always read from `target`, never from another
    kind's record.
    """
    return resolve_hostnames(target).flat_map(
        lambda hostnames: resolve_subject_identity(target).flat_map(
            lambda identity: resolve_signer_common_name(target).map(
                lambda signer_cn: CertificateRequest(
                    target_name=target.name,
                    target_namespace=target.namespace,
                    hostnames=hostnames,
                    subject_identity=identity,
                    organization=kind.organization,
                    signer_common_name=signer_cn,
                )
            )
        )
    )
