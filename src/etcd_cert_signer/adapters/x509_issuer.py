"""
X.509 issuer adapter — signs etcd member certificates with the cluster CA.

Adapter layer — implements the CertificateIssuer port using cryptography (PyCA).

Pipeline for one request:
  CA record bytes
    → validate_ca (both halves present)
    → load CA certificate + private key (INVALID_CA on malformed material)
    → generate a fresh member key (RSA-2048 by default)
    → build the leaf certificate (issuer, subject, SAN, usages, random serial)
    → sign with the CA key, PEM-encode certificate and key
    → IssuedCertificate

Key design decision: the Issuer name is set explicitly to OU=openshift,
CN=<signer CN> rather than copied from the CA certificate's subject, so the
signer identity follows the target record's role.
"""

from __future__ import annotations

import ipaddress
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, rsa
from cryptography.hazmat.primitives.asymmetric.types import (
    CertificateIssuerPrivateKeyTypes,
    PrivateKeyTypes,
)
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID
from railway import ErrorCode, Result

from etcd_cert_signer.domain.identity import validate_ca
from etcd_cert_signer.domain.models import (
    ETCD_CERT_VALIDITY,
    CertificateRequest,
    IssuedCertificate,
    KeyAlgorithm,
    KeySpec,
    SecretRecord,
)

log = structlog.get_logger()

ISSUER_ORGANIZATIONAL_UNIT = "openshift"
# RFC 5280 sec 4.1.2.2: at most 20 octets, positive.
SERIAL_NUMBER_BYTES = 20

_EC_CURVES: dict[str, ec.EllipticCurve] = {
    "P-256": ec.SECP256R1(),
    "P-384": ec.SECP384R1(),
}


@dataclass(frozen=True, slots=True)
class CAKeyPair:
    """The parsed CA certificate and its private key; lives for one issue() call."""

    certificate: x509.Certificate
    private_key: CertificateIssuerPrivateKeyTypes


# ─────────────────────── CA Material ───────────────────────


def _public_key_bytes(key: object) -> bytes:
    return key.public_bytes(  # type: ignore[attr-defined]
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def _parse_ca(record: SecretRecord) -> CAKeyPair:
    """Parse CA bytes; may raise (caught by from_computation)."""
    certificate = x509.load_pem_x509_certificates(record.certificate or b"")[0]
    private_key = serialization.load_pem_private_key(record.private_key or b"", password=None)
    if not isinstance(
        private_key,
        (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey, ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey),
    ):
        raise ValueError(f"unsupported CA key type {type(private_key).__name__}")
    if _public_key_bytes(private_key.public_key()) != _public_key_bytes(certificate.public_key()):
        raise ValueError("CA private key does not match the CA certificate")
    return CAKeyPair(certificate=certificate, private_key=private_key)


def load_ca_key_pair(ca_record: SecretRecord) -> Result[CAKeyPair]:
    """Validate completeness, then parse. Every failure here is INVALID_CA."""
    return validate_ca(ca_record).flat_map(
        lambda record: Result.from_computation(
            lambda: _parse_ca(record),
            ErrorCode.INVALID_CA,
            f"Failed to load CA material from {record.namespace}/{record.name}",
        )
    )


# ─────────────────────── Certificate Fields ───────────────────────


def generate_serial_number() -> int:
    """Random 20-byte serial with the sign bit cleared; never zero."""
    while True:
        raw = bytearray(secrets.token_bytes(SERIAL_NUMBER_BYTES))
        raw[0] &= 0x7F
        serial = int.from_bytes(raw, "big")
        if serial:
            return serial


def generate_private_key(key_spec: KeySpec) -> PrivateKeyTypes:
    if key_spec.algorithm is KeyAlgorithm.ECDSA:
        curve = _EC_CURVES.get(key_spec.ec_curve)
        if curve is None:
            raise ValueError(f"unsupported EC curve {key_spec.ec_curve!r}")
        return ec.generate_private_key(curve)
    return rsa.generate_private_key(public_exponent=65537, key_size=key_spec.rsa_key_size)


def subject_alternative_names(hostnames: tuple[str, ...]) -> list[x509.GeneralName]:
    """IP literals become IPAddress entries, everything else a DNSName."""
    names: list[x509.GeneralName] = []
    for hostname in hostnames:
        try:
            names.append(x509.IPAddress(ipaddress.ip_address(hostname)))
        except ValueError:
            names.append(x509.DNSName(hostname))
    return names


def _issuer_name(request: CertificateRequest) -> x509.Name:
    return x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, ISSUER_ORGANIZATIONAL_UNIT),
            x509.NameAttribute(NameOID.COMMON_NAME, request.signer_common_name),
        ]
    )


def _subject_name(request: CertificateRequest) -> x509.Name:
    # Member identities include the cluster domain and routinely exceed the
    # 64-character ub-common-name, so the CN is written without that bound.
    return x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, request.organization),
            x509.NameAttribute(NameOID.COMMON_NAME, request.subject_identity, _validate=False),
        ]
    )


def _signature_hash(ca_key: CertificateIssuerPrivateKeyTypes) -> hashes.HashAlgorithm | None:
    # Edwards-curve keys sign without a separate digest.
    if isinstance(ca_key, (ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey)):
        return None
    return hashes.SHA256()


def build_certificate(
    ca: CAKeyPair,
    request: CertificateRequest,
    member_key: PrivateKeyTypes,
    serial_number: int,
    not_before: datetime,
    not_after: datetime,
) -> x509.Certificate:
    """Assemble and sign the end-entity certificate for a member."""
    public_key = member_key.public_key()
    builder = (
        x509.CertificateBuilder()
        .issuer_name(_issuer_name(request))
        .subject_name(_subject_name(request))
        .public_key(public_key)  # type: ignore[arg-type]
        .serial_number(serial_number)
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.ExtendedKeyUsage(
                [ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]
            ),
            critical=False,
        )
        .add_extension(
            x509.SubjectAlternativeName(subject_alternative_names(request.hostnames)),
            critical=False,
        )
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(public_key),  # type: ignore[arg-type]
            critical=False,
        )
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(ca.private_key.public_key()),  # type: ignore[arg-type]
            critical=False,
        )
    )
    return builder.sign(ca.private_key, _signature_hash(ca.private_key))


# ─────────────────────── Public Issuer Class ───────────────────────


class X509CertificateIssuer:
    """
    Sign member certificates with the CA found in the CA record.

    Implements the CertificateIssuer port.
    CA problems surface as INVALID_CA, everything after CA loading as SIGNING_ERROR.
    """

    def __init__(
        self,
        validity: timedelta = ETCD_CERT_VALIDITY,
        key_spec: KeySpec | None = None,
    ) -> None:
        self._validity = validity
        self._key_spec = key_spec or KeySpec()

    def issue(self, ca_record: SecretRecord, request: CertificateRequest) -> Result[IssuedCertificate]:
        """
        Produce a signed certificate and private key for the request.

        Returns Result[IssuedCertificate] on success,
        Result.failure(INVALID_CA, ...) when the CA cannot be used,
        Result.failure(SIGNING_ERROR, ...) on any other cryptographic failure.
        """
        return (
            load_ca_key_pair(ca_record)
            .flat_map(
                lambda ca: Result.from_computation(
                    lambda: self._do_issue(ca, request),
                    ErrorCode.SIGNING_ERROR,
                    f"Failed to sign certificate for {request.target_namespace}/{request.target_name}",
                )
            )
            .peek(
                lambda issued: log.info(
                    "issuer.signed",
                    target=f"{request.target_namespace}/{request.target_name}",
                    subject=request.subject_identity,
                    organization=request.organization,
                    issuer=issued.issuer_common_name,
                    serial=format(issued.serial_number, "x"),
                    not_after=issued.not_after.isoformat(),
                )
            )
        )

    def _do_issue(self, ca: CAKeyPair, request: CertificateRequest) -> IssuedCertificate:
        """Internal signing; may raise (caught by from_computation)."""
        member_key = generate_private_key(self._key_spec)
        serial_number = generate_serial_number()
        not_before = datetime.now(UTC).replace(microsecond=0)
        not_after = not_before + self._validity

        certificate = build_certificate(
            ca, request, member_key, serial_number, not_before, not_after
        )

        return IssuedCertificate(
            certificate_pem=certificate.public_bytes(serialization.Encoding.PEM),
            private_key_pem=member_key.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.TraditionalOpenSSL,
                serialization.NoEncryption(),
            ),
            issuer_common_name=request.signer_common_name,
            serial_number=serial_number,
            not_before=not_before,
            not_after=not_after,
        )

