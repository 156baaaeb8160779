"""
FastAPI + Uvicorn ASGI application for Kubernetes deployment.

Runs the signer as a web service with health check endpoints, a background
resync scheduler, and a per-member trigger for external event sources.
Uvicorn serves this app with graceful shutdown (SIGTERM → drain + exit).

Architecture:
  - FastAPI: lightweight web framework
  - Uvicorn: production ASGI server (handles signals, graceful shutdown)
  - APScheduler: runs in background thread while Uvicorn listens for requests
  - K8s Probes: liveness (checks scheduler thread alive) + readiness

Outcome → HTTP status:
  success / no-op          200
  retryable (requeue)      202
  fatal per-kind outcome   422
  terminal failure         500
  not initialized          503

Entry point for production: uvicorn etcd_cert_signer.asgi:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from railway import Disposition, FailureDescription
from railway.result import Result

from etcd_cert_signer import __version__
from etcd_cert_signer.config import AppSettings
from etcd_cert_signer.domain.models import ReconcileReport, ReconcileRequest, ResyncSummary
from etcd_cert_signer.main import (
    _create_adapters,
    build_reconcile,
    build_resync,
    configure_structlog,
)
from etcd_cert_signer.scheduler import create_scheduler

# ─────────────────────── Global State ───────────────────────
# These are set during app startup and used for health checks.

_scheduler_thread: threading.Thread | None = None
_scheduler_started = False
_scheduler_ready = False
_error_message: str | None = None
_resync_fn: Callable[[], Result[ResyncSummary]] | None = None
_reconcile_fn: Callable[[ReconcileRequest], Result[ReconcileReport]] | None = None
log = structlog.get_logger()

_STATUS_BY_DISPOSITION = {
    Disposition.SUCCESS: 200,
    Disposition.RETRYABLE: 202,
    Disposition.FATAL: 422,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    FastAPI lifespan context manager — runs on startup and shutdown.

    Startup: Create adapters and start scheduler in background thread.
    Shutdown: Gracefully stop scheduler and thread.
    """
    global _scheduler_thread, _scheduler_started, _scheduler_ready, _error_message
    global _resync_fn, _reconcile_fn

    log.info("asgi.startup", phase="lifespan_startup")

    try:
        settings = AppSettings()
    except Exception as e:
        error_msg = f"Configuration error: {e}"
        _error_message = error_msg
        log.error("asgi.startup_error", error=error_msg)
        raise

    configure_structlog(settings.log_level)

    log.info(
        "asgi.startup_config",
        version=__version__,
        log_level=settings.log_level,
        cron=settings.scheduler.cron,
        run_on_startup=settings.run_on_startup,
    )

    try:
        adapters = _create_adapters(settings)
        _resync_fn = build_resync(settings, adapters)
        _reconcile_fn = build_reconcile(settings, adapters)

        # Uvicorn owns SIGINT/SIGTERM here.
        scheduler = create_scheduler(
            resync_fn=_resync_fn,
            cron=settings.scheduler.cron,
            run_on_startup=settings.run_on_startup,
            register_signals=False,
        )
    except Exception as e:
        error_msg = f"Failed to initialize adapters/scheduler: {e}"
        _error_message = error_msg
        log.error("asgi.init_error", error=error_msg)
        raise

    def run_scheduler() -> None:
        """Run scheduler in background thread (blocking)."""
        global _scheduler_started, _error_message
        try:
            _scheduler_started = True
            log.info("asgi.scheduler_thread_started")
            scheduler.start()
        except KeyboardInterrupt:
            log.info("asgi.scheduler_interrupted")
        except Exception as e:
            error_msg = f"Scheduler error: {e}"
            _error_message = error_msg
            log.error("asgi.scheduler_error", error=error_msg)

    _scheduler_thread = threading.Thread(target=run_scheduler, daemon=True)
    _scheduler_thread.start()

    await asyncio.sleep(0.1)
    _scheduler_ready = True

    log.info("asgi.startup_complete")

    yield

    log.info("asgi.shutdown", reason="SIGTERM or server stop")

    try:
        scheduler.shutdown(wait=True)
        log.info("asgi.scheduler_shutdown_complete")
    except Exception as e:
        log.warning("asgi.scheduler_shutdown_error", error=str(e))

    if _scheduler_thread and _scheduler_thread.is_alive():
        _scheduler_thread.join(timeout=5.0)
        if _scheduler_thread.is_alive():
            log.warning("asgi.scheduler_thread_timeout", timeout_seconds=5.0)

    log.info("asgi.shutdown_complete")


# ─────────────────────── FastAPI Application ───────────────────────

app = FastAPI(
    title="etcd-cert-signer",
    description="Issues peer and server certificates for etcd cluster members",
    version=__version__,
    lifespan=lifespan,
)


def _unavailable() -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={"status": "unavailable", "reason": "Signer not initialized"},
    )


def _terminal(failure: FailureDescription) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={
            "status": "failed",
            "error_code": failure.code.value,
            "message": failure.message,
        },
    )


def report_body(report: ReconcileReport) -> dict[str, Any]:
    """JSON view of a ReconcileReport."""
    return {
        "member": str(report.request),
        "skipped": report.skipped,
        "skip_reason": report.skip_reason,
        "disposition": report.disposition.name,
        "requeue": report.requeue,
        "outcomes": [
            {
                "kind": outcome.kind.suffix,
                "target": outcome.target_name,
                "status": outcome.status.value,
                "error_code": outcome.failure.code.value if outcome.failure else None,
                "message": outcome.failure.message if outcome.failure else None,
            }
            for outcome in report.outcomes
        ],
    }


@app.get("/health")
async def health() -> JSONResponse:
    """
    Kubernetes liveness probe.

    Returns 503 if configuration failed or the scheduler thread is not running.
    """
    if _error_message:
        log.warning("health.check_failed", error=_error_message)
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "error": _error_message},
        )

    if not _scheduler_thread or not _scheduler_thread.is_alive():
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "reason": "scheduler thread not running"},
        )

    return JSONResponse(
        status_code=200,
        content={"status": "healthy", "scheduler_running": True},
    )


@app.get("/ready")
async def ready() -> JSONResponse:
    """Kubernetes readiness probe: 202 while starting, 503 on error, 200 once running."""
    if not _scheduler_ready or not _scheduler_started:
        return JSONResponse(
            status_code=202,
            content={"status": "starting", "scheduler_started": _scheduler_started},
        )

    if _error_message:
        return JSONResponse(
            status_code=503,
            content={"status": "error", "error": _error_message},
        )

    return JSONResponse(
        status_code=200,
        content={
            "status": "ready",
            "scheduler_running": _scheduler_thread is not None and _scheduler_thread.is_alive(),
        },
    )


@app.get("/info")
async def info() -> dict[str, Any]:
    return {
        "name": "etcd-cert-signer",
        "version": __version__,
        "scheduler_running": _scheduler_thread is not None and _scheduler_thread.is_alive(),
        "scheduler_started": _scheduler_started,
        "scheduler_ready": _scheduler_ready,
        "has_error": _error_message is not None,
    }


@app.post("/trigger")
async def trigger() -> JSONResponse:
    """
    Resync every etcd member now instead of waiting for the scheduler.

    Runs in a worker thread so the event loop is not blocked.
    """
    if _resync_fn is None:
        return _unavailable()

    log.info("trigger.manual_start", source="REST")

    try:
        result = await asyncio.to_thread(_resync_fn)
    except Exception as e:
        log.error("trigger.exception", error=str(e))
        return JSONResponse(status_code=500, content={"status": "error", "error": str(e)})

    if result.is_failure():
        failure = result.error()
        log.error("trigger.resync_failed", failure=str(failure))
        return _terminal(failure)

    summary = result.value()
    log.info(
        "trigger.completed",
        members=summary.members,
        issued=summary.issued_count,
        disposition=summary.disposition.name,
    )
    return JSONResponse(
        status_code=_STATUS_BY_DISPOSITION[summary.disposition],
        content={
            "status": summary.disposition.name.lower(),
            "members": summary.members,
            "issued": summary.issued_count,
            "reports": [report_body(report) for report in summary.reports],
            "failures": [
                {"member": str(request), "error_code": failure.code.value, "message": failure.message}
                for request, failure in summary.failures
            ],
        },
    )


@app.post("/reconcile/{namespace}/{name}")
async def reconcile(namespace: str, name: str) -> JSONResponse:
    """
    Reconcile a single member, e.g. on a pod add/update event.

    A 202 tells the event source to requeue the member.
    """
    if _reconcile_fn is None:
        return _unavailable()

    request = ReconcileRequest(namespace=namespace, name=name)
    log.info("reconcile.requested", member=str(request), source="REST")

    try:
        result = await asyncio.to_thread(_reconcile_fn, request)
    except Exception as e:
        log.error("reconcile.exception", member=str(request), error=str(e))
        return JSONResponse(status_code=500, content={"status": "error", "error": str(e)})

    if result.is_failure():
        return _terminal(result.error())

    report = result.value()
    return JSONResponse(
        status_code=_STATUS_BY_DISPOSITION[report.disposition],
        content={"status": report.disposition.name.lower(), **report_body(report)},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "etcd_cert_signer.asgi:app",
        host="0.0.0.0",
        port=8000,
        reload=False,
        log_level="info",
    )
