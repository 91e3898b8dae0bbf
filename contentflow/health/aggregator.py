# contentflow/health/aggregator.py
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, UTC
from typing import Callable, Dict, List, Optional

from contentflow.common.exceptions import StorageError
from contentflow.common.job import OUTCOME_SUCCEEDED, QueueStats
from contentflow.storage.base import DEFAULT_STUCK_THRESHOLD, JobStore
from .notifier import ISSUE_CRITICAL, ISSUE_INFO, ISSUE_WARNING, Issue, LogNotifier, Notifier
from .probes import DiskUsage, ProbeResult, STATUS_ERROR

DISK_CRITICAL_PERCENT = 90
FAILED_JOBS_WARNING = 50
STUCK_JOBS_WARNING = 10
SUCCESS_RATE_WARNING = 80.0
METRICS_WINDOW = timedelta(hours=24)


@dataclass
class HealthSnapshot:
    checked_at: datetime
    issues: List[Issue] = field(default_factory=list)
    queue: Optional[QueueStats] = None
    recent_failures: Optional[int] = None
    success_rate: Optional[float] = None
    disk: Optional[DiskUsage] = None
    apis: Dict[str, ProbeResult] = field(default_factory=dict)

    @property
    def status(self) -> str:
        types = {issue.type for issue in self.issues}
        if ISSUE_CRITICAL in types:
            return ISSUE_CRITICAL
        if ISSUE_WARNING in types:
            return ISSUE_WARNING
        return ISSUE_INFO

    @property
    def critical(self) -> bool:
        return self.status == ISSUE_CRITICAL


def _format_bytes(size: float) -> str:
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if size < 1024 or unit == "TB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.2f} {unit}"
        size /= 1024


class HealthAggregator:
    """
    Collects disk, queue, API and content metrics into a ``HealthSnapshot``
    and escalates critical findings to the notifier.

    A failing probe becomes an issue in the snapshot; ``check`` itself does
    not raise.
    """

    def __init__(
        self,
        store: JobStore,
        notifier: Optional[Notifier] = None,
        probes: Optional[List[Callable[[], ProbeResult]]] = None,
        disk_usage: Optional[Callable[[], DiskUsage]] = None,
        content_job_type: str = "generate_content",
        stuck_threshold: timedelta = DEFAULT_STUCK_THRESHOLD,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.notifier = notifier or LogNotifier()
        self.probes = probes or []
        self.disk_usage = disk_usage
        self.content_job_type = content_job_type
        self.stuck_threshold = stuck_threshold
        self.clock = clock or (lambda: datetime.now(UTC))
        self.logger = logger or logging.getLogger(__name__)

    def check(self) -> HealthSnapshot:
        self.logger.info("Starting system health check")
        snapshot = HealthSnapshot(checked_at=self.clock())

        self._check_disk(snapshot)
        self._check_apis(snapshot)
        self._check_queue(snapshot)
        self._check_content(snapshot)

        if snapshot.critical:
            try:
                self.notifier.notify_critical(list(snapshot.issues))
            except Exception:
                self.logger.error("Failed to deliver critical health notification", exc_info=True)

        self.logger.info(
            "System health check completed",
            extra={
                "issues_found": len(snapshot.issues),
                "critical": snapshot.critical,
                "status": snapshot.status,
            },
        )
        return snapshot

    def _check_disk(self, snapshot: HealthSnapshot) -> None:
        if self.disk_usage is None:
            return
        try:
            usage = self.disk_usage()
        except Exception as e:
            self.logger.error(f"Disk usage probe failed: {e}", exc_info=True)
            snapshot.issues.append(
                Issue(ISSUE_WARNING, "disk_space", f"Disk usage unavailable: {e}")
            )
            return
        snapshot.disk = usage
        if usage.percentage > DISK_CRITICAL_PERCENT:
            snapshot.issues.append(
                Issue(
                    ISSUE_CRITICAL,
                    "disk_space",
                    f"Disk space critical: {usage.percentage}% used ({_format_bytes(usage.free)} free)",
                )
            )

    def _check_apis(self, snapshot: HealthSnapshot) -> None:
        for probe in self.probes:
            try:
                result = probe()
            except Exception as e:
                name = getattr(probe, "name", repr(probe))
                self.logger.error(f"API probe {name} raised", exc_info=True)
                result = ProbeResult(name, STATUS_ERROR, critical=True, message=str(e))
            snapshot.apis[result.name] = result
            if not result.operational:
                snapshot.issues.append(
                    Issue(
                        ISSUE_CRITICAL if result.critical else ISSUE_WARNING,
                        f"api_{result.name}",
                        f"API service '{result.name}' is {result.status}",
                    )
                )

    def _check_queue(self, snapshot: HealthSnapshot) -> None:
        try:
            stats = self.store.stats(self.stuck_threshold)
            failures = self.store.count_failures(since=snapshot.checked_at - METRICS_WINDOW)
        except StorageError as e:
            self.logger.error("Queue store unavailable during health check", exc_info=True)
            snapshot.issues.append(
                Issue(ISSUE_CRITICAL, "queue_store", f"Job store unavailable: {e}")
            )
            return
        snapshot.queue = stats
        snapshot.recent_failures = failures
        if failures > FAILED_JOBS_WARNING or stats.stuck_count > STUCK_JOBS_WARNING:
            snapshot.issues.append(
                Issue(
                    ISSUE_WARNING,
                    "queue",
                    f"Queue health issues: {failures} failed jobs, {stats.stuck_count} stuck jobs",
                )
            )

    def _check_content(self, snapshot: HealthSnapshot) -> None:
        try:
            counts = self.store.outcome_counts(
                job_type=self.content_job_type,
                since=snapshot.checked_at - METRICS_WINDOW,
            )
        except StorageError:
            self.logger.error("Could not read content generation metrics", exc_info=True)
            return
        attempted = sum(counts.values())
        successful = counts.get(OUTCOME_SUCCEEDED, 0)
        rate = successful / attempted * 100 if attempted else 100.0
        snapshot.success_rate = rate
        if rate < SUCCESS_RATE_WARNING:
            snapshot.issues.append(
                Issue(
                    ISSUE_WARNING,
                    "content_generation",
                    f"Low content generation success rate: {rate:.2f}%",
                )
            )
