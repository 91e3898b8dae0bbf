# contentflow/storage/memory_storage.py
import itertools
import logging
from dataclasses import replace
from datetime import datetime, timedelta, UTC
from threading import RLock
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from contentflow.common.exceptions import ReservationConflict
from contentflow.common.job import (
    OUTCOME_FAILED,
    OUTCOME_RETRIED,
    OUTCOME_SUCCEEDED,
    FailedJob,
    Job,
    QueueStats,
    ScheduleState,
)
from contentflow.serialization.base import BaseSerializer
from contentflow.serialization.json_serializer import JsonSerializer
from contentflow.storage.base import (
    DEFAULT_STUCK_THRESHOLD,
    JobStore,
    as_timedelta,
    describe_error,
)

logger = logging.getLogger(__name__)


class MemoryJobStore(JobStore):
    """Process-local store. Every operation runs under a single lock."""

    def __init__(
        self,
        serializer: Optional[BaseSerializer] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.serializer = serializer or JsonSerializer()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._jobs: Dict[int, Job] = {}
        self._fingerprints: Dict[int, str] = {}
        self._failures: Dict[int, FailedJob] = {}
        self._history: List[Tuple[int, str, str, datetime]] = []
        self._schedules: Dict[str, ScheduleState] = {}
        self._job_ids = itertools.count(1)
        self._failure_ids = itertools.count(1)
        self._lock = RLock()

    def _copy(self, job: Job) -> Job:
        # Handlers get their own payload so they cannot mutate the stored row.
        payload = self.serializer.deserialize_payload(
            self.serializer.serialize_payload(job.payload)
        )
        return replace(job, payload=payload)

    def _record(self, job_id: int, job_type: str, outcome: str, now: datetime) -> None:
        self._history.append((job_id, job_type, outcome, now))

    def push(
        self,
        job_type: str,
        payload: Dict[str, Any],
        priority: int = 0,
        delay: Union[int, float, timedelta] = 0,
        unique: bool = False,
    ) -> int:
        fingerprint = self.serializer.fingerprint(job_type, payload)
        with self._lock:
            if unique:
                for job_id, existing in self._fingerprints.items():
                    if existing == fingerprint:
                        return job_id

            now = self._clock()
            job_id = next(self._job_ids)
            self._jobs[job_id] = Job(
                id=job_id,
                job_type=job_type,
                payload=self.serializer.deserialize_payload(
                    self.serializer.serialize_payload(payload)
                ),
                priority=priority,
                attempts=0,
                reserved_at=None,
                available_at=now + as_timedelta(delay),
                created_at=now,
                updated_at=now,
            )
            self._fingerprints[job_id] = fingerprint
        logger.info(f"Job {job_id} pushed to queue", extra={"job_type": job_type})
        return job_id

    def _claim(self, job_id: int, now: datetime, max_attempts: int) -> Job:
        job = self._jobs.get(job_id)
        if job is None or not job.is_eligible(now, max_attempts):
            raise ReservationConflict(job_id)
        job.reserved_at = now
        job.attempts += 1
        job.updated_at = now
        return job

    def reserve_batch(self, max_attempts: int, batch_size: int) -> List[Job]:
        with self._lock:
            now = self._clock()
            candidates = sorted(
                (j for j in self._jobs.values() if j.is_eligible(now, max_attempts)),
                key=lambda j: (-j.priority, j.created_at, j.id),
            )[:batch_size]
            reserved = []
            for job in candidates:
                try:
                    reserved.append(self._copy(self._claim(job.id, now, max_attempts)))
                except ReservationConflict:
                    continue
            return reserved

    def complete(self, job_id: int) -> bool:
        with self._lock:
            job = self._jobs.pop(job_id, None)
            if job is None:
                return False
            self._fingerprints.pop(job_id, None)
            self._record(job_id, job.job_type, OUTCOME_SUCCEEDED, self._clock())
            return True

    def release_for_retry(
        self, job_id: int, next_available_at: datetime, error: Optional[str] = None
    ) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            now = self._clock()
            job.reserved_at = None
            job.available_at = next_available_at
            job.updated_at = now
            self._record(job_id, job.job_type, OUTCOME_RETRIED, now)
            return True

    def archive_failure(self, job: Job, error: Union[BaseException, str]) -> int:
        error_type, message, details = describe_error(error)
        with self._lock:
            now = self._clock()
            live = self._jobs.pop(job.id, None)
            self._fingerprints.pop(job.id, None)
            source = live or job
            failure_id = next(self._failure_ids)
            self._failures[failure_id] = FailedJob(
                id=failure_id,
                job_id=source.id,
                job_type=source.job_type,
                payload=self._copy(source).payload,
                error_type=error_type,
                error_message=message,
                stack_trace=details,
                attempts=source.attempts,
                created_at=source.created_at,
                failed_at=now,
            )
            self._record(source.id, source.job_type, OUTCOME_FAILED, now)
            return failure_id

    def stats(self, stuck_threshold: timedelta = DEFAULT_STUCK_THRESHOLD) -> QueueStats:
        with self._lock:
            cutoff = self._clock() - stuck_threshold
            stats = QueueStats()
            for job in self._jobs.values():
                stats.total += 1
                stats.by_type[job.job_type] = stats.by_type.get(job.job_type, 0) + 1
                if job.reserved_at is None:
                    stats.pending += 1
                else:
                    stats.reserved += 1
                    if job.reserved_at < cutoff:
                        stats.stuck_count += 1
            return stats

    def get_job(self, job_id: int) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return self._copy(job) if job else None

    def find_stuck(self, older_than: timedelta, limit: int = 100) -> List[Job]:
        with self._lock:
            cutoff = self._clock() - older_than
            stuck = sorted(
                (
                    j
                    for j in self._jobs.values()
                    if j.reserved_at is not None and j.reserved_at < cutoff
                ),
                key=lambda j: j.reserved_at,
            )
            return [self._copy(j) for j in stuck[:limit]]

    def list_failures(self, start: int = 0, count: int = 20) -> List[FailedJob]:
        with self._lock:
            ordered = sorted(self._failures.values(), key=lambda f: f.id, reverse=True)
            return [replace(f) for f in ordered[start : start + count]]

    def get_failure(self, failure_id: int) -> Optional[FailedJob]:
        with self._lock:
            failure = self._failures.get(failure_id)
            return replace(failure) if failure else None

    def count_failures(self, since: Optional[datetime] = None) -> int:
        with self._lock:
            if since is None:
                return len(self._failures)
            return sum(1 for f in self._failures.values() if f.failed_at >= since)

    def purge_failures(self, before: datetime) -> int:
        with self._lock:
            doomed = [k for k, f in self._failures.items() if f.failed_at < before]
            for key in doomed:
                del self._failures[key]
            return len(doomed)

    def outcome_counts(
        self, job_type: Optional[str] = None, since: Optional[datetime] = None
    ) -> Dict[str, int]:
        counts = {OUTCOME_SUCCEEDED: 0, OUTCOME_RETRIED: 0, OUTCOME_FAILED: 0}
        with self._lock:
            for _, entry_type, outcome, timestamp in self._history:
                if job_type is not None and entry_type != job_type:
                    continue
                if since is not None and timestamp < since:
                    continue
                counts[outcome] += 1
        return counts

    def purge_history(self, before: datetime) -> int:
        with self._lock:
            kept = [entry for entry in self._history if entry[3] >= before]
            purged = len(self._history) - len(kept)
            self._history = kept
            return purged

    def get_schedule(self, name: str) -> Optional[ScheduleState]:
        with self._lock:
            state = self._schedules.get(name)
            return replace(state) if state else None

    def arm_schedule(self, name: str, next_run_at: datetime) -> bool:
        with self._lock:
            if name in self._schedules:
                return False
            self._schedules[name] = ScheduleState(
                name=name, next_run_at=next_run_at.astimezone(UTC)
            )
            return True

    def advance_schedule(
        self,
        name: str,
        expected_next_run_at: datetime,
        next_run_at: datetime,
        last_run_at: Optional[datetime] = None,
    ) -> bool:
        with self._lock:
            state = self._schedules.get(name)
            if state is None or state.next_run_at != expected_next_run_at:
                return False
            state.next_run_at = next_run_at.astimezone(UTC)
            if last_run_at is not None:
                state.last_run_at = last_run_at.astimezone(UTC)
            return True

    def disarm_schedule(self, name: str) -> None:
        with self._lock:
            self._schedules.pop(name, None)
