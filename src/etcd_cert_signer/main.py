"""
Application entry point — wires dependencies and starts the scheduler.

Composition root: creates concrete adapters, injects them into the
reconciler, and hands the resync to the scheduler.

This is the ONLY place where concrete classes are instantiated.
Everything else depends on Protocol interfaces.

Responsibilities:
  1. Configure structlog for structured logging
  2. Load and validate configuration from environment
  3. Create concrete adapter instances (member source, secret store, issuer)
  4. Wire reconcile_all / reconcile_member (partial application with ports)
  5. Create and start the scheduler
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial

import structlog
from railway.result import Result

from etcd_cert_signer import __version__
from etcd_cert_signer.adapters.kube_client import (
    HttpMemberSource,
    HttpSecretStore,
    KubernetesConnection,
)
from etcd_cert_signer.adapters.x509_issuer import X509CertificateIssuer
from etcd_cert_signer.config import AppSettings
from etcd_cert_signer.domain.models import ReconcileReport, ReconcileRequest, ResyncSummary
from etcd_cert_signer.reconciler import reconcile_all, reconcile_member
from etcd_cert_signer.scheduler import create_scheduler


def configure_structlog(log_level: str = "INFO") -> None:
    """
    Configure structlog for structured logging.

    Console-rendered key/value lines on stdout, filtered at `log_level`.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    # The railway execution context logs through the stdlib.
    logging.basicConfig(level=level, stream=sys.stdout, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


@dataclass(frozen=True, slots=True)
class Adapters:
    member_source: HttpMemberSource
    store: HttpSecretStore
    issuer: X509CertificateIssuer


def _create_adapters(settings: AppSettings) -> Adapters:
    """
    Instantiate all concrete adapters from application settings.

    This is the ONLY place where concrete classes are created.
    Both Kubernetes adapters share one connection description.
    """
    connection = KubernetesConnection(
        api_url=settings.kubernetes.api_url,
        token=settings.kubernetes.resolve_token(),
        verify=settings.kubernetes.resolve_verify(),
        timeout=settings.http_timeout_seconds,
    )
    return Adapters(
        member_source=HttpMemberSource(connection),
        store=HttpSecretStore(connection),
        issuer=X509CertificateIssuer(
            validity=settings.issuance.validity(),
            key_spec=settings.issuance.key_spec(),
        ),
    )


def build_resync(settings: AppSettings, adapters: Adapters) -> Callable[[], Result[ResyncSummary]]:
    """Zero-argument resync of every member, as the scheduler expects."""
    return partial(
        reconcile_all,
        member_source=adapters.member_source,
        store=adapters.store,
        issuer=adapters.issuer,
        config=settings.reconciler_config(),
        namespace=settings.kubernetes.namespace,
    )


def build_reconcile(
    settings: AppSettings, adapters: Adapters
) -> Callable[[ReconcileRequest], Result[ReconcileReport]]:
    """Single-member reconciliation, for event-driven triggers."""
    return partial(
        reconcile_member,
        member_source=adapters.member_source,
        store=adapters.store,
        issuer=adapters.issuer,
        config=settings.reconciler_config(),
    )


def main() -> None:
    """Wire dependencies and launch the scheduled resync."""
    try:
        settings = AppSettings()
    except Exception as e:
        print(f"FATAL: Configuration error — {e}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    configure_structlog(settings.log_level)
    log = structlog.get_logger()

    log.info(
        "app.starting",
        version=__version__,
        log_level=settings.log_level,
        cron=settings.scheduler.cron,
        run_on_startup=settings.run_on_startup,
        ca=f"{settings.ca.namespace}/{settings.ca.name}",
        namespace=settings.kubernetes.namespace or "*",
    )

    adapters = _create_adapters(settings)
    scheduler = create_scheduler(
        resync_fn=build_resync(settings, adapters),
        cron=settings.scheduler.cron,
        run_on_startup=settings.run_on_startup,
    )

    log.info("app.scheduler_starting", cron=settings.scheduler.cron)

    try:
        scheduler.start()
    except KeyboardInterrupt:
        log.info("app.shutdown", reason="signal received")
    except SystemExit:
        log.info("app.shutdown", reason="signal received")
        raise
    except Exception as e:
        log.error("app.fatal_error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
