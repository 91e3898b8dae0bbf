# contentflow/config.py
import os
from dataclasses import dataclass, field, fields
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional

ENV_PREFIX = "CONTENTFLOW_"


@dataclass
class QueueConfig:
    """Tunables for the queue, scheduler and health checks."""

    database_url: Optional[str] = None  # None selects the in-memory store
    batch_size: int = 50
    max_attempts: int = 3
    retry_delay: float = 300.0
    stuck_threshold: float = 3600.0
    job_timeout: Optional[float] = 300.0
    handler_workers: int = 1
    schedule_tolerance: float = 300.0
    timezone: str = "UTC"
    log_retention_days: int = 30
    poll_interval: float = 60.0
    disk_path: str = "/"
    content_job_type: str = "generate_content"
    probe_timeout: float = 5.0
    fetch_configs: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def retry_delay_td(self) -> timedelta:
        return timedelta(seconds=self.retry_delay)

    @property
    def stuck_threshold_td(self) -> timedelta:
        return timedelta(seconds=self.stuck_threshold)

    @property
    def tolerance_td(self) -> timedelta:
        return timedelta(seconds=self.schedule_tolerance)

    @property
    def retention_td(self) -> timedelta:
        return timedelta(days=self.log_retention_days)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "QueueConfig":
        """
        Reads ``CONTENTFLOW_<FIELD>`` variables, e.g. ``CONTENTFLOW_BATCH_SIZE``.
        Keyword overrides win over the environment. ``fetch_configs`` is not
        read from the environment.
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for f in fields(cls):
            if f.name == "fetch_configs":
                continue
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            values[f.name] = _coerce(f.name, raw, getattr(cls, f.name, None))
        values.update(overrides)
        return cls(**values)


def _coerce(name: str, raw: str, default: Any) -> Any:
    if name == "job_timeout":
        return None if raw.lower() in ("none", "0") else float(raw)
    if isinstance(default, bool):
        return raw.lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw
