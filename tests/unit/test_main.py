"""
Unit tests for the main module — composition root.

Tests verify structlog configuration and the wiring logic
without making real HTTP calls.
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
import structlog
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ec
from railway import Result, ResultAssertions

from etcd_cert_signer.adapters.kube_client import HttpMemberSource, HttpSecretStore
from etcd_cert_signer.adapters.x509_issuer import X509CertificateIssuer
from etcd_cert_signer.config import AppSettings
from etcd_cert_signer.domain.identity import build_request
from etcd_cert_signer.domain.models import CertificateKind, MemberIdentity, ReconcileRequest, SecretRecord
from etcd_cert_signer.main import (
    Adapters,
    _create_adapters,
    build_reconcile,
    build_resync,
    configure_structlog,
    main,
)
from tests.factories import target_record


def _settings(**overrides: object) -> AppSettings:
    return AppSettings(_env_file=None, **overrides)  # type: ignore[call-arg]


class TestConfigureStructlog:
    def test_configure_structlog_sets_log_level(self) -> None:
        configure_structlog("WARNING")
        assert structlog.get_logger() is not None

    def test_configure_structlog_invalid_level_falls_back(self) -> None:
        """
        GIVEN an invalid log_level string
        WHEN configure_structlog is called
        THEN it falls back to INFO (no crash).
        """
        configure_structlog("NONEXISTENT")
        assert structlog.get_logger() is not None


class TestCreateAdapters:
    def test_creates_all_adapters(self) -> None:
        adapters = _create_adapters(_settings(kubernetes={"token": "t", "verify_tls": False}))

        assert isinstance(adapters.member_source, HttpMemberSource)
        assert isinstance(adapters.store, HttpSecretStore)
        assert isinstance(adapters.issuer, X509CertificateIssuer)

    def test_issuance_settings_reach_the_issued_certificate(self, ca_secret: SecretRecord) -> None:
        """
        GIVEN ISSUANCE settings with a 1-hour validity and ECDSA P-384 keys
        WHEN the issuer built by _create_adapters signs a request
        THEN the certificate spans exactly 1 hour and carries a P-384 key.
        """
        settings = _settings(
            kubernetes={"token": "t"},
            issuance={"validity_hours": 1, "key_algorithm": "ecdsa", "ec_curve": "P-384"},
        )
        request = ResultAssertions.assert_success(
            build_request(target_record("etcd-0-peer"), CertificateKind.PEER)
        )

        issued = ResultAssertions.assert_success(_create_adapters(settings).issuer.issue(ca_secret, request))
        certificate = x509.load_pem_x509_certificate(issued.certificate_pem)

        assert certificate.not_valid_after_utc - certificate.not_valid_before_utc == timedelta(hours=1)
        assert isinstance(certificate.public_key(), ec.EllipticCurvePublicKey)
        assert certificate.public_key().curve.name == "secp384r1"


class TestWiring:
    def _adapters(self) -> Adapters:
        return Adapters(member_source=MagicMock(), store=MagicMock(), issuer=MagicMock())

    def test_resync_lists_configured_namespace(self) -> None:
        adapters = self._adapters()
        adapters.member_source.list_members.return_value = Result.success([])

        resync = build_resync(_settings(kubernetes={"namespace": "openshift-etcd"}), adapters)
        result = resync()

        assert result.is_success()
        adapters.member_source.list_members.assert_called_once_with("openshift-etcd")

    def test_reconcile_takes_a_request(self) -> None:
        adapters = self._adapters()
        adapters.member_source.fetch_member.return_value = Result.success(
            MemberIdentity(name="web-0", namespace="default", labels={"app": "web"})
        )

        result = build_reconcile(_settings(), adapters)(ReconcileRequest("default", "web-0"))

        assert result.value().skipped
        adapters.member_source.fetch_member.assert_called_once_with("default", "web-0")


class TestMain:
    def test_configuration_error_exits(self) -> None:
        with patch("etcd_cert_signer.main.AppSettings", side_effect=ValueError("bad")):
            with pytest.raises(SystemExit) as exc_info:
                main()
        assert exc_info.value.code == 1

    @patch("etcd_cert_signer.main.create_scheduler")
    @patch("etcd_cert_signer.main._create_adapters")
    @patch("etcd_cert_signer.main.AppSettings")
    def test_starts_scheduler(
        self, mock_settings: MagicMock, mock_adapters: MagicMock, mock_create: MagicMock
    ) -> None:
        mock_settings.return_value = _settings()
        scheduler = MagicMock()
        mock_create.return_value = scheduler

        main()

        mock_adapters.assert_called_once()
        scheduler.start.assert_called_once()
        assert mock_create.call_args.kwargs["cron"] == "*/5 * * * *"
