# contentflow/tasks/autofetch.py
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from contentflow.common.exceptions import ScheduleConfigError, StorageError
from contentflow.scheduling import cron
from contentflow.scheduling.registry import ScheduleRegistry, parse_clock
from contentflow.storage.base import JobStore

logger = logging.getLogger(__name__)

FETCH_JOB_TYPE = "fetch_content"
SUPPORTED_SOURCES = ("rss", "youtube", "amazon", "ebay", "google_news")
REQUIRED_FIELDS = ("source", "query", "schedule")


@dataclass
class FetchConfig:
    source: str
    query: str
    schedule: str
    priority: int = 0
    options: Dict[str, Any] = field(default_factory=dict)
    filters: List[Any] = field(default_factory=list)

    @property
    def schedule_name(self) -> str:
        return f"auto_fetch:{self.source}:{self.query}"

    def recurrence(self) -> Dict[str, str]:
        if self.schedule == "hourly":
            return {"cadence": "hourly"}
        if self.schedule == "daily":
            return {"daily_at": "00:00"}
        if ":" in self.schedule and " " not in self.schedule:
            return {"daily_at": self.schedule}
        return {"cron_expression": self.schedule}

    def job_payload(self) -> Dict[str, Any]:
        options = dict(self.options)
        options.update({"check_duplicates": True, "content_filters": list(self.filters)})
        return {"source": self.source, "query": self.query, "options": options}


def validate_fetch_config(config: Mapping[str, Any]) -> FetchConfig:
    """Raises ``ScheduleConfigError`` describing the first problem found."""
    if not isinstance(config, Mapping):
        raise ScheduleConfigError(f"Fetch configuration must be a mapping, got {config!r}")
    for name in REQUIRED_FIELDS:
        if not config.get(name):
            raise ScheduleConfigError(f"Missing required field: {name}")

    source = config["source"]
    if source not in SUPPORTED_SOURCES:
        raise ScheduleConfigError(f"Invalid fetch source {source!r}")

    schedule = config["schedule"]
    if not isinstance(schedule, str):
        raise ScheduleConfigError(f"Invalid schedule format {schedule!r}")
    if schedule not in ("hourly", "daily"):
        if ":" in schedule and " " not in schedule:
            parse_clock(schedule)
        else:
            cron.validate(schedule)

    priority = config.get("priority", 0)
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise ScheduleConfigError(f"Priority must be an integer, got {priority!r}")

    return FetchConfig(
        source=source,
        query=str(config["query"]),
        schedule=schedule,
        priority=priority,
        options=dict(config.get("options") or {}),
        filters=list(config.get("filters") or []),
    )


def fetch_action(store: JobStore, config: FetchConfig) -> Callable[[], Optional[int]]:
    def push_fetch_job() -> Optional[int]:
        try:
            job_id = store.push(
                FETCH_JOB_TYPE,
                config.job_payload(),
                priority=config.priority,
                unique=True,
            )
        except StorageError:
            logger.error(
                f"Auto-fetch job could not be queued for {config.source}:{config.query}",
                exc_info=True,
            )
            return None
        logger.info(
            "Auto-fetch job queued",
            extra={"source": config.source, "query": config.query, "job_id": job_id},
        )
        return job_id

    return push_fetch_job


def register_auto_fetch(
    registry: ScheduleRegistry, store: JobStore, configs: List[Mapping[str, Any]]
) -> List[str]:
    """Registers one schedule per valid configuration. Invalid ones are logged and skipped."""
    if not configs:
        logger.info("No auto-fetch configurations found")
        return []

    registered = []
    for raw in configs:
        try:
            config = validate_fetch_config(raw)
            registry.register(
                config.schedule_name, config.recurrence(), fetch_action(store, config)
            )
        except ScheduleConfigError as e:
            logger.error(f"Invalid fetch configuration: {e}", extra={"config": raw})
            continue
        registered.append(config.schedule_name)
    return registered
