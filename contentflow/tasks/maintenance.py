# contentflow/tasks/maintenance.py
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from typing import Callable, Optional

from contentflow.common.exceptions import LeaseExpired
from contentflow.storage.base import DEFAULT_STUCK_THRESHOLD, JobStore

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = timedelta(days=30)


@dataclass
class MaintenanceReport:
    failures_purged: int = 0
    history_purged: int = 0
    released: int = 0
    archived: int = 0


def recover_stuck_jobs(
    store: JobStore,
    max_attempts: int = 3,
    older_than: timedelta = DEFAULT_STUCK_THRESHOLD,
    limit: int = 100,
    clock: Optional[Callable[[], datetime]] = None,
    report: Optional[MaintenanceReport] = None,
) -> MaintenanceReport:
    """
    Ends stale leases. Jobs with attempts left become reservable again right
    away; the rest go to the failure log with ``LeaseExpired``.
    """
    report = report or MaintenanceReport()
    now = (clock or (lambda: datetime.now(UTC)))()
    for job in store.find_stuck(older_than, limit=limit):
        if job.attempts < max_attempts:
            if store.release_for_retry(job.id, now, error="Reservation expired"):
                report.released += 1
                logger.warning(
                    f"Released stuck job {job.id}",
                    extra={"job_id": job.id, "job_type": job.job_type},
                )
        else:
            store.archive_failure(
                job,
                LeaseExpired(
                    f"Reserved since {job.reserved_at.isoformat()} with no attempts left"
                ),
            )
            report.archived += 1
            logger.warning(
                f"Archived stuck job {job.id} after {job.attempts} attempts",
                extra={"job_id": job.id, "job_type": job.job_type},
            )
    return report


def run_daily_maintenance(
    store: JobStore,
    retention: timedelta = DEFAULT_RETENTION,
    max_attempts: int = 3,
    stuck_threshold: timedelta = DEFAULT_STUCK_THRESHOLD,
    clock: Optional[Callable[[], datetime]] = None,
) -> MaintenanceReport:
    clock = clock or (lambda: datetime.now(UTC))
    logger.info("Starting daily maintenance")
    report = MaintenanceReport()
    cutoff = clock() - retention
    report.failures_purged = store.purge_failures(cutoff)
    report.history_purged = store.purge_history(cutoff)
    recover_stuck_jobs(
        store,
        max_attempts=max_attempts,
        older_than=stuck_threshold,
        clock=clock,
        report=report,
    )
    logger.info(
        "Daily maintenance completed",
        extra={
            "failures_purged": report.failures_purged,
            "history_purged": report.history_purged,
            "released": report.released,
            "archived": report.archived,
        },
    )
    return report
