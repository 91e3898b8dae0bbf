import pytest
from datetime import timedelta
from threading import Thread

from contentflow.common.exceptions import ReservationConflict, StorageError
from contentflow.common.job import OUTCOME_FAILED, OUTCOME_RETRIED, OUTCOME_SUCCEEDED

from conftest import make_sql_store


def test_push_assigns_ids_and_defaults(store, clock):
    job_id = store.push("generate_content", {"topic": "python"})
    job = store.get_job(job_id)

    assert job.id == job_id
    assert job.job_type == "generate_content"
    assert job.payload == {"topic": "python"}
    assert job.priority == 0
    assert job.attempts == 0
    assert job.reserved_at is None
    assert job.available_at == clock.now
    assert job.created_at == clock.now


def test_push_with_delay_is_not_reservable_until_due(store, clock):
    store.push("fetch_content", {"source": "rss"}, delay=60)

    assert store.reserve_batch(max_attempts=3, batch_size=10) == []
    clock.advance(seconds=60)
    assert len(store.reserve_batch(max_attempts=3, batch_size=10)) == 1


def test_reserve_orders_by_priority_then_age(store, clock):
    low = store.push("a", {"n": 1}, priority=1)
    clock.advance(seconds=1)
    high = store.push("a", {"n": 2}, priority=10)
    clock.advance(seconds=1)
    mid_old = store.push("a", {"n": 3}, priority=5)
    clock.advance(seconds=1)
    mid_new = store.push("a", {"n": 4}, priority=5)

    jobs = store.reserve_batch(max_attempts=3, batch_size=10)

    assert [j.id for j in jobs] == [high, mid_old, mid_new, low]


def test_reserve_respects_batch_size_and_sets_lease(store, clock):
    for n in range(5):
        store.push("a", {"n": n})

    jobs = store.reserve_batch(max_attempts=3, batch_size=2)

    assert len(jobs) == 2
    for job in jobs:
        assert job.attempts == 1
        assert job.reserved_at == clock.now
    assert len(store.reserve_batch(max_attempts=3, batch_size=10)) == 3
    assert store.reserve_batch(max_attempts=3, batch_size=10) == []


def test_reserve_skips_jobs_out_of_attempts(store, clock):
    job_id = store.push("a", {})
    for _ in range(2):
        (job,) = store.reserve_batch(max_attempts=2, batch_size=1)
        store.release_for_retry(job.id, clock.now)

    assert store.get_job(job_id).attempts == 2
    assert store.reserve_batch(max_attempts=2, batch_size=1) == []


def test_unique_push_returns_existing_id_regardless_of_key_order(store):
    first = store.push("fetch_content", {"source": "rss", "query": "ai"}, unique=True)
    second = store.push("fetch_content", {"query": "ai", "source": "rss"}, unique=True)
    other = store.push("fetch_content", {"query": "ml", "source": "rss"}, unique=True)

    assert first == second
    assert other != first
    assert store.stats().total == 2


def test_unique_push_allowed_again_after_completion(store):
    first = store.push("a", {"k": 1}, unique=True)
    (job,) = store.reserve_batch(max_attempts=3, batch_size=1)
    assert store.complete(job.id)

    second = store.push("a", {"k": 1}, unique=True)

    assert second != first


def test_job_ids_are_not_reused_after_archiving(store):
    first = store.push("a", {})
    (job,) = store.reserve_batch(max_attempts=3, batch_size=1)
    store.archive_failure(job, "failed")

    second = store.push("a", {})

    assert second > first
    (failure,) = store.list_failures()
    assert failure.job_id == first
    assert store.get_job(first) is None


def test_non_unique_push_duplicates(store):
    store.push("a", {"k": 1})
    store.push("a", {"k": 1})
    assert store.stats().total == 2


def test_complete_deletes_and_is_idempotent(store):
    job_id = store.push("a", {})
    store.reserve_batch(max_attempts=3, batch_size=1)

    assert store.complete(job_id) is True
    assert store.get_job(job_id) is None
    assert store.complete(job_id) is False
    assert store.outcome_counts()[OUTCOME_SUCCEEDED] == 1


def test_release_for_retry_clears_lease(store, clock):
    job_id = store.push("a", {})
    store.reserve_batch(max_attempts=3, batch_size=1)
    retry_at = clock.now + timedelta(minutes=5)

    assert store.release_for_retry(job_id, retry_at, error="boom")

    job = store.get_job(job_id)
    assert job.reserved_at is None
    assert job.available_at == retry_at
    assert job.attempts == 1
    assert store.outcome_counts()[OUTCOME_RETRIED] == 1


def test_archive_failure_moves_job_to_failure_log(store, clock):
    job_id = store.push("generate_content", {"topic": "x"})
    (job,) = store.reserve_batch(max_attempts=3, batch_size=1)

    try:
        raise ValueError("provider exploded")
    except ValueError as e:
        failure_id = store.archive_failure(job, e)

    assert store.get_job(job_id) is None
    failure = store.get_failure(failure_id)
    assert failure.job_id == job_id
    assert failure.job_type == "generate_content"
    assert failure.payload == {"topic": "x"}
    assert failure.error_type == "ValueError"
    assert failure.error_message == "provider exploded"
    assert "provider exploded" in failure.stack_trace
    assert failure.attempts == 1
    assert failure.failed_at == clock.now
    assert store.count_failures() == 1
    assert store.outcome_counts(job_type="generate_content")[OUTCOME_FAILED] == 1


def test_stats_counts_stuck_jobs(store, clock):
    store.push("a", {})
    store.push("b", {})
    store.push("b", {})
    store.reserve_batch(max_attempts=3, batch_size=1)
    clock.advance(minutes=90)
    store.reserve_batch(max_attempts=3, batch_size=1)

    stats = store.stats(stuck_threshold=timedelta(minutes=60))

    assert stats.total == 3
    assert stats.pending == 1
    assert stats.reserved == 2
    assert stats.stuck_count == 1
    assert stats.by_type == {"a": 1, "b": 2}
    assert stats.to_dict()["stuck_count"] == 1


def test_find_stuck_returns_oldest_leases(store, clock):
    first = store.push("a", {}, priority=1)
    store.push("a", {})
    store.reserve_batch(max_attempts=3, batch_size=1)
    clock.advance(hours=2)

    stuck = store.find_stuck(timedelta(hours=1))

    assert [j.id for j in stuck] == [first]


def test_list_and_purge_failures(store, clock):
    for n in range(3):
        store.push("a", {"n": n})
    for job in store.reserve_batch(max_attempts=3, batch_size=3):
        store.archive_failure(job, "failed")
        clock.advance(days=10)

    page = store.list_failures(0, 2)
    assert len(page) == 2
    assert page[0].id > page[1].id
    assert store.count_failures(since=clock.now - timedelta(days=15)) == 1

    assert store.purge_failures(clock.now - timedelta(days=15)) == 2
    assert store.count_failures() == 1


def test_outcome_counts_filters_by_type_and_time(store, clock):
    store.push("generate_content", {"n": 1})
    store.push("fetch_content", {"n": 2})
    for job in store.reserve_batch(max_attempts=3, batch_size=2):
        store.complete(job.id)
    clock.advance(days=2)

    assert store.outcome_counts(job_type="generate_content")[OUTCOME_SUCCEEDED] == 1
    assert store.outcome_counts(since=clock.now - timedelta(days=1))[OUTCOME_SUCCEEDED] == 0
    assert store.purge_history(clock.now) == 2


def test_schedule_state_arm_is_insert_if_absent(store, clock):
    assert store.arm_schedule("hourly", clock.now) is True
    assert store.arm_schedule("hourly", clock.now + timedelta(hours=5)) is False
    assert store.get_schedule("hourly").next_run_at == clock.now


def test_schedule_advance_is_compare_and_set(store, clock):
    store.arm_schedule("s", clock.now)
    later = clock.now + timedelta(hours=1)

    assert store.advance_schedule("s", clock.now, later, last_run_at=clock.now)
    assert not store.advance_schedule("s", clock.now, later + timedelta(hours=1))

    state = store.get_schedule("s")
    assert state.next_run_at == later
    assert state.last_run_at == clock.now

    store.disarm_schedule("s")
    assert store.get_schedule("s") is None


def test_memory_store_concurrent_reserve_never_double_claims(memory_store):
    for n in range(200):
        memory_store.push("a", {"n": n})
    claimed = []

    def worker():
        while True:
            jobs = memory_store.reserve_batch(max_attempts=3, batch_size=7)
            if not jobs:
                return
            claimed.extend(j.id for j in jobs)

    threads = [Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(claimed) == 200
    assert len(set(claimed)) == 200


def test_memory_store_payload_is_a_copy(memory_store):
    job_id = memory_store.push("a", {"items": [1]})
    (job,) = memory_store.reserve_batch(max_attempts=3, batch_size=1)
    job.payload["items"].append(2)

    assert memory_store.get_job(job_id).payload == {"items": [1]}


def test_sql_claim_conflict_when_already_reserved(clock):
    store = make_sql_store(clock)
    job_id = store.push("a", {})
    store.reserve_batch(max_attempts=3, batch_size=1)

    with pytest.raises(ReservationConflict):
        with store._transaction() as session:
            store._claim(session, job_id, clock.now, max_attempts=3)


def test_sql_store_wraps_backend_errors(clock):
    store = make_sql_store(clock)
    with store.engine.begin() as conn:
        conn.exec_driver_sql("DROP TABLE contentflow_jobs")

    with pytest.raises(StorageError):
        store.push("a", {})
    with pytest.raises(StorageError):
        store.reserve_batch(max_attempts=3, batch_size=1)
