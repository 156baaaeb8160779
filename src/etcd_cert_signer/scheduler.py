"""
Scheduler — periodic resync of every etcd member.

Infrastructure layer — uses APScheduler (3.x) for lightweight in-process
scheduling driven by a standard 5-field cron expression.

Each run wraps reconcile_all within a LoggingExecutionContext for structured
observability (timing, success/failure logging). Because reconciliation is
idempotent, a resync over members whose certificates exist only reads.

Graceful shutdown: handles SIGINT/SIGTERM to stop the scheduler cleanly.
"""

from __future__ import annotations

import signal
import sys
from collections.abc import Callable

import structlog
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from railway import LoggingExecutionContext
from railway.result import Result

from etcd_cert_signer.domain.models import ResyncSummary

log = structlog.get_logger()

RESYNC_JOB_ID = "etcd_cert_signer_resync"


def create_scheduler(
    resync_fn: Callable[[], Result[ResyncSummary]],
    cron: str = "*/5 * * * *",
    run_on_startup: bool = True,
    register_signals: bool = True,
) -> BlockingScheduler:
    """
    Create a configured APScheduler that resyncs all members on a cron schedule.

    Args:
        resync_fn: Zero-argument callable returning Result[ResyncSummary].
        cron: Standard 5-field cron expression (minute hour dom month dow).
        run_on_startup: If True, execute once immediately before entering the loop.
        register_signals: Install SIGINT/SIGTERM handlers. Must be False when
            the scheduler is created outside the main thread.

    Returns:
        A configured BlockingScheduler (call .start() to begin).
    """
    scheduler = BlockingScheduler()
    ctx = LoggingExecutionContext(operation="EtcdMemberResync")

    def _job() -> None:
        result = ctx.execute(resync_fn)
        if result.is_success():
            summary = result.value()
            log.info(
                "scheduler.job_completed",
                members=summary.members,
                issued=summary.issued_count,
                failed=len(summary.failures),
                disposition=summary.disposition.name,
            )
        else:
            log.error("scheduler.job_failed", failure=str(result.error()))

    minute, hour, dom, month, dow = cron.split()
    scheduler.add_job(
        _job,
        trigger=CronTrigger(
            minute=minute,
            hour=hour,
            day=dom,
            month=month,
            day_of_week=dow,
        ),
        id=RESYNC_JOB_ID,
        name="etcd member certificate resync",
        replace_existing=True,
    )

    if run_on_startup:
        log.info("scheduler.startup_run", message="Resyncing members immediately on startup")
        _job()

    if register_signals:
        _register_shutdown_signals(scheduler)

    return scheduler


def _register_shutdown_signals(scheduler: BlockingScheduler) -> None:
    """Register SIGINT and SIGTERM handlers for graceful shutdown."""

    def _shutdown(signum: int, frame: object) -> None:
        sig_name = signal.Signals(signum).name
        log.info("scheduler.shutdown_requested", signal=sig_name)
        scheduler.shutdown(wait=False)
        sys.exit(0)

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)
