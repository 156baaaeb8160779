"""
Shared test fixtures for the etcd-cert-signer test suite.

The CA is generated once per session: RSA key generation is the slowest
thing the suite does.
"""

from __future__ import annotations

import pytest

from etcd_cert_signer.domain.models import SecretRecord
from tests.factories import ca_record, generate_ca


@pytest.fixture(scope="session")
def ca_material() -> tuple[bytes, bytes]:
    """(certificate PEM, private key PEM) of a CA with subject OU=openshift, CN=etcd-signer."""
    return generate_ca("etcd-signer")


@pytest.fixture()
def ca_secret(ca_material: tuple[bytes, bytes]) -> SecretRecord:
    """A complete CA record in openshift-etcd/etcd-ca."""
    cert_pem, key_pem = ca_material
    return ca_record(cert_pem, key_pem)
