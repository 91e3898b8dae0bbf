# contentflow/runtime.py
import logging
from datetime import datetime, UTC
from typing import Any, Callable, Dict, List, Mapping, Optional
from zoneinfo import ZoneInfo

from .client import QueueClient
from .config import QueueConfig
from .execution.registry import HandlerLike, HandlerRegistry
from .health.aggregator import HealthAggregator, HealthSnapshot
from .health.notifier import Notifier
from .health.probes import DiskUsage, ProbeResult, default_api_probes, disk_usage_probe
from .scheduling.registry import ScheduleRegistry
from .server.dispatcher import Dispatcher, DispatchReport
from .server.worker import Worker
from .storage.base import JobStore
from .storage.memory_storage import MemoryJobStore
from .storage.sql_storage import SqlJobStore
from .tasks.analytics import queue_analytics_update
from .tasks.autofetch import register_auto_fetch
from .tasks.maintenance import MaintenanceReport, run_daily_maintenance

PROCESS_QUEUE = "contentflow_process_queue"
CHECK_SYSTEM_HEALTH = "contentflow_check_system_health"
ANALYTICS_UPDATE = "contentflow_analytics_update"
DAILY_MAINTENANCE = "contentflow_daily_maintenance"


def build_store(config: QueueConfig, clock: Optional[Callable[[], datetime]] = None) -> JobStore:
    if config.database_url:
        return SqlJobStore(connection_url=config.database_url, clock=clock)
    return MemoryJobStore(clock=clock)


class ContentFlow:
    """
    Wires the queue, scheduler and health checks around one job store.

    Every collaborator can be passed in; anything missing is built from
    ``config``::

        flow = ContentFlow(QueueConfig.from_env())
        flow.handlers.register("generate_content", generate)
        flow.register_default_schedules()
        flow.worker().run()
    """

    def __init__(
        self,
        config: Optional[QueueConfig] = None,
        store: Optional[JobStore] = None,
        handlers: Optional[HandlerRegistry] = None,
        notifier: Optional[Notifier] = None,
        probes: Optional[List[Callable[[], ProbeResult]]] = None,
        disk_usage: Optional[Callable[[], DiskUsage]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or QueueConfig()
        self.clock = clock or (lambda: datetime.now(UTC))
        self.logger = logger or logging.getLogger("contentflow")
        self.store = store or build_store(self.config, clock=self.clock)
        self.handlers = handlers or HandlerRegistry()

        self.client = QueueClient(
            self.store, stuck_threshold=self.config.stuck_threshold_td, clock=self.clock
        )
        self.dispatcher = Dispatcher(
            self.store,
            self.handlers,
            max_attempts=self.config.max_attempts,
            batch_size=self.config.batch_size,
            retry_delay=self.config.retry_delay_td,
            job_timeout=self.config.job_timeout,
            max_workers=self.config.handler_workers,
            clock=self.clock,
            logger=self.logger.getChild("dispatcher"),
        )
        if probes is None:
            probes = default_api_probes(timeout=self.config.probe_timeout)
        self.health = HealthAggregator(
            self.store,
            notifier=notifier,
            probes=probes,
            disk_usage=disk_usage or disk_usage_probe(self.config.disk_path),
            content_job_type=self.config.content_job_type,
            stuck_threshold=self.config.stuck_threshold_td,
            clock=self.clock,
            logger=self.logger.getChild("health"),
        )
        self.schedules = ScheduleRegistry(
            self.store,
            tolerance=self.config.tolerance_td,
            tz=UTC if self.config.timezone == "UTC" else ZoneInfo(self.config.timezone),
            clock=self.clock,
            logger=self.logger.getChild("scheduler"),
        )

    def register_handler(self, job_type: str, handler: HandlerLike) -> None:
        self.handlers.register(job_type, handler)

    def push(self, job_type: str, payload: Optional[Dict[str, Any]] = None, **options) -> int:
        return self.client.push(job_type, payload, **options)

    def process_queue(self) -> DispatchReport:
        return self.dispatcher.tick()

    def check_health(self) -> HealthSnapshot:
        return self.health.check()

    def update_analytics(self) -> List[int]:
        return queue_analytics_update(self.store, clock=self.clock)

    def daily_maintenance(self) -> MaintenanceReport:
        return run_daily_maintenance(
            self.store,
            retention=self.config.retention_td,
            max_attempts=self.config.max_attempts,
            stuck_threshold=self.config.stuck_threshold_td,
            clock=self.clock,
        )

    def register_default_schedules(
        self, fetch_configs: Optional[List[Mapping[str, Any]]] = None
    ) -> List[str]:
        """Arms the built-in schedules plus one per valid auto-fetch config."""
        self.schedules.register(PROCESS_QUEUE, {"cadence": "every_minute"}, self.process_queue)
        self.schedules.register(
            CHECK_SYSTEM_HEALTH, {"cadence": "every_fifteen_minutes"}, self.check_health
        )
        self.schedules.register(ANALYTICS_UPDATE, {"cadence": "hourly"}, self.update_analytics)
        self.schedules.register(DAILY_MAINTENANCE, {"daily_at": "00:00"}, self.daily_maintenance)
        if fetch_configs is None:
            fetch_configs = self.config.fetch_configs
        register_auto_fetch(self.schedules, self.store, fetch_configs)
        return self.schedules.names

    def tick(self, now: Optional[datetime] = None) -> List[str]:
        """One scheduler tick. Never raises."""
        try:
            return self.schedules.run_due(now)
        except Exception:
            self.logger.error("Scheduler tick failed", exc_info=True)
            return []

    def worker(self, **options) -> Worker:
        options.setdefault("poll_interval", self.config.poll_interval)
        options.setdefault("logger", self.logger.getChild("worker"))
        return Worker(self.tick, **options)
