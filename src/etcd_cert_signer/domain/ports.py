"""
Ports — Protocol-based interfaces for the signer's collaborators.

The reconciliation depends on WHAT it needs, not HOW it is provided:

  Domain ← Ports (protocols) ← Adapters (Kubernetes API over HTTP, X.509 issuer)

Adapters satisfy a port structurally, by implementing its methods. Every
method returns a Result; adapters never let exceptions through.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from railway import Result

from etcd_cert_signer.domain.models import (
    CertificateRequest,
    IssuedCertificate,
    MemberIdentity,
    SecretRecord,
)


@runtime_checkable
class MemberSource(Protocol):
    """
    Port: look up the runtime objects (pods) that may be etcd members.

    fetch_member fails with NOT_FOUND when the object is gone, FETCH_ERROR otherwise.
    list_members returns the objects carrying the member label, across all
    namespaces when namespace is None.
    """

    def fetch_member(self, namespace: str, name: str) -> Result[MemberIdentity]: ...

    def list_members(self, namespace: str | None = None) -> Result[list[MemberIdentity]]: ...


@runtime_checkable
class RecordStore(Protocol):
    """
    Port: read and write the CA record and the per-member target records.

    update_record is all-or-nothing: either the certificate, key and
    annotations are all stored, or the record is left as it was.
    """

    def fetch_record(self, namespace: str, name: str) -> Result[SecretRecord]: ...

    def update_record(self, record: SecretRecord) -> Result[SecretRecord]: ...


@runtime_checkable
class CertificateIssuer(Protocol):
    """
    Port: sign a certificate for a request with the CA held in ca_record.

    Fails with INVALID_CA for unusable CA material and SIGNING_ERROR for any
    other cryptographic failure.
    """

    def issue(self, ca_record: SecretRecord, request: CertificateRequest) -> Result[IssuedCertificate]: ...
