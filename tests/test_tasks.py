# tests/test_tasks.py
import pytest
from datetime import UTC, datetime, timedelta

from contentflow.common.exceptions import ScheduleConfigError
from contentflow.scheduling.registry import ScheduleRegistry
from contentflow.tasks.analytics import queue_analytics_update
from contentflow.tasks.autofetch import (
    FETCH_JOB_TYPE,
    register_auto_fetch,
    validate_fetch_config,
)
from contentflow.tasks.maintenance import recover_stuck_jobs, run_daily_maintenance


# --- Auto-fetch ---


@pytest.mark.parametrize(
    "config",
    [
        {"source": "rss", "query": "python", "schedule": "hourly"},
        {"source": "youtube", "query": "ai", "schedule": "daily"},
        {"source": "google_news", "query": "ai", "schedule": "06:30"},
        {"source": "ebay", "query": "lego", "schedule": "*/30 * * * *"},
    ],
)
def test_valid_fetch_configs(config):
    assert validate_fetch_config(config).source == config["source"]


@pytest.mark.parametrize(
    "config",
    [
        {"query": "python", "schedule": "hourly"},
        {"source": "rss", "schedule": "hourly"},
        {"source": "rss", "query": "python"},
        {"source": "myspace", "query": "python", "schedule": "hourly"},
        {"source": "rss", "query": "python", "schedule": "weekly"},
        {"source": "rss", "query": "python", "schedule": "24:00"},
        {"source": "rss", "query": "python", "schedule": "1-10/2 * * * *"},
        {"source": "rss", "query": "python", "schedule": "hourly", "priority": "high"},
    ],
)
def test_invalid_fetch_configs(config):
    with pytest.raises(ScheduleConfigError):
        validate_fetch_config(config)


def test_auto_fetch_schedules_push_unique_fetch_jobs(memory_store, clock):
    registry = ScheduleRegistry(memory_store, clock=clock)
    configs = [
        {
            "source": "rss",
            "query": "python",
            "schedule": "hourly",
            "priority": 5,
            "options": {"limit": 10},
            "filters": ["no_duplicates"],
        },
        {"source": "myspace", "query": "x", "schedule": "hourly"},
    ]

    names = register_auto_fetch(registry, memory_store, configs)
    assert names == ["auto_fetch:rss:python"]

    clock.advance(hours=1)
    assert registry.run_due() == ["auto_fetch:rss:python"]
    clock.advance(hours=1)
    assert registry.run_due() == ["auto_fetch:rss:python"]

    (job,) = memory_store.reserve_batch(max_attempts=3, batch_size=10)
    assert job.job_type == FETCH_JOB_TYPE
    assert job.priority == 5
    assert job.payload == {
        "source": "rss",
        "query": "python",
        "options": {
            "limit": 10,
            "check_duplicates": True,
            "content_filters": ["no_duplicates"],
        },
    }


def test_auto_fetch_clock_schedule(memory_store, clock):
    registry = ScheduleRegistry(memory_store, clock=clock)
    register_auto_fetch(
        registry, memory_store, [{"source": "amazon", "query": "books", "schedule": "18:00"}]
    )
    assert registry.next_run("auto_fetch:amazon:books") == datetime(2024, 3, 15, 18, 0, tzinfo=UTC)


def test_no_auto_fetch_configs(memory_store, clock):
    registry = ScheduleRegistry(memory_store, clock=clock)
    assert register_auto_fetch(registry, memory_store, []) == []


# --- Analytics ---


def test_analytics_update_queues_rollups(memory_store, clock):
    job_ids = queue_analytics_update(memory_store, clock=clock)

    jobs = [memory_store.get_job(job_id) for job_id in job_ids]
    assert [j.job_type for j in jobs] == ["update_analytics", "update_analytics"]
    assert jobs[0].payload == {"type": "daily_summary", "date": "2024-03-15"}
    assert jobs[1].payload["type"] == "performance_metrics"

    # A second run before the first is handled does not pile up.
    assert queue_analytics_update(memory_store, clock=clock) == job_ids


# --- Maintenance ---


def test_recover_stuck_jobs_releases_or_archives(store, clock):
    fresh = store.push("a", {"n": 1}, priority=2)
    spent = store.push("a", {"n": 2}, priority=1)
    store.reserve_batch(max_attempts=3, batch_size=1)
    store.reserve_batch(max_attempts=3, batch_size=1)
    store.release_for_retry(spent, clock.now)
    store.reserve_batch(max_attempts=3, batch_size=1)
    assert store.get_job(spent).attempts == 2

    clock.advance(hours=2)
    report = recover_stuck_jobs(store, max_attempts=2, clock=clock)

    assert report.released == 1
    assert report.archived == 1
    assert store.get_job(fresh).reserved_at is None
    assert store.get_job(spent) is None
    (failure,) = store.list_failures()
    assert failure.error_type == "LeaseExpired"


def test_daily_maintenance_purges_old_records(store, clock):
    store.push("a", {})
    (job,) = store.reserve_batch(max_attempts=3, batch_size=1)
    store.archive_failure(job, "failed")
    clock.advance(days=31)
    store.push("a", {})
    (job,) = store.reserve_batch(max_attempts=3, batch_size=1)
    store.complete(job.id)

    report = run_daily_maintenance(store, retention=timedelta(days=30), clock=clock)

    assert report.failures_purged == 1
    assert report.history_purged == 1
    assert store.count_failures() == 0


def test_recovery_cli_accepts_fractional_thresholds(monkeypatch):
    from run_recover_stuck_jobs import build_arg_parser

    monkeypatch.setenv("CONTENTFLOW_STUCK_THRESHOLD", "3600.0")
    assert build_arg_parser().parse_args([]).max_age_seconds == 3600.0

    args = build_arg_parser().parse_args(["--max-age-seconds", "90.5"])
    assert args.max_age_seconds == 90.5
