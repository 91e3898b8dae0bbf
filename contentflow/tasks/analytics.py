# contentflow/tasks/analytics.py
import logging
from datetime import datetime, UTC
from typing import Callable, List, Optional

from contentflow.storage.base import JobStore

logger = logging.getLogger(__name__)

ANALYTICS_JOB_TYPE = "update_analytics"
PERFORMANCE_METRICS = ["content_count", "ai_usage", "fetch_stats"]


def queue_analytics_update(
    store: JobStore, clock: Optional[Callable[[], datetime]] = None
) -> List[int]:
    """Queues the daily summary and performance metrics rollups."""
    now = (clock or (lambda: datetime.now(UTC)))()
    logger.info("Starting analytics update")
    job_ids = [
        store.push(
            ANALYTICS_JOB_TYPE,
            {"type": "daily_summary", "date": now.date().isoformat()},
            unique=True,
        ),
        store.push(
            ANALYTICS_JOB_TYPE,
            {"type": "performance_metrics", "metrics": list(PERFORMANCE_METRICS)},
            unique=True,
        ),
    ]
    logger.info("Analytics update queued", extra={"job_ids": job_ids})
    return job_ids
