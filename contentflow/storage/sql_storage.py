# contentflow/storage/sql_storage.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from sqlalchemy import (
    DateTime,
    Engine,
    Integer,
    String,
    Text,
    create_engine,
    delete,
    func,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from contentflow.common.exceptions import ReservationConflict, StorageError
from contentflow.common.job import (
    ALL_OUTCOMES,
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


class Base(DeclarativeBase):
    pass


class JobModel(Base):
    __tablename__ = "contentflow_jobs"
    # Ids are never reused once the highest row is deleted.
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_type: Mapped[str] = mapped_column(String(50), index=True)
    payload: Mapped[str] = mapped_column(Text)
    payload_hash: Mapped[str] = mapped_column(String(64), index=True)
    # Set only for unique pushes; NULLs never collide.
    unique_key: Mapped[Optional[str]] = mapped_column(String(64), unique=True)
    priority: Mapped[int] = mapped_column(Integer, index=True, default=0)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    reserved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), index=True
    )
    available_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class FailedJobModel(Base):
    __tablename__ = "contentflow_failed_jobs"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(Integer, index=True)
    job_type: Mapped[str] = mapped_column(String(50), index=True)
    payload: Mapped[str] = mapped_column(Text)
    error_type: Mapped[str] = mapped_column(String(255))
    error_message: Mapped[str] = mapped_column(Text)
    stack_trace: Mapped[str] = mapped_column(Text, default="")
    attempts: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    failed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)


class JobHistoryModel(Base):
    __tablename__ = "contentflow_job_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(Integer, index=True)
    job_type: Mapped[str] = mapped_column(String(50), index=True)
    outcome: Mapped[str] = mapped_column(String(20), index=True)
    attempt: Mapped[int] = mapped_column(Integer)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    data: Mapped[Optional[str]] = mapped_column(Text)


class ScheduleModel(Base):
    __tablename__ = "contentflow_schedules"

    name: Mapped[str] = mapped_column(String(191), primary_key=True)
    next_run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything we write is UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class SqlJobStore(JobStore):
    def __init__(
        self,
        connection_url: Optional[str] = None,
        engine: Optional[Engine] = None,
        create_tables: bool = True,
        serializer: Optional[BaseSerializer] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if engine is None and connection_url is None:
            raise ValueError("connection_url or engine is required")
        self.engine = engine or create_engine(connection_url)
        self.serializer = serializer or JsonSerializer()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        if create_tables:
            Base.metadata.create_all(self.engine)

        self._supports_skip_locked = self.engine.dialect.name in {
            "postgresql",
            "mysql",
            "mariadb",
        }

    def _now(self) -> datetime:
        return _utc(self._clock())

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        try:
            with self._session_factory.begin() as session:
                yield session
        except SQLAlchemyError as exc:
            raise StorageError(f"Job store operation failed: {exc}") from exc

    @contextmanager
    def _reader(self) -> Iterator[Session]:
        try:
            with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            raise StorageError(f"Job store query failed: {exc}") from exc

    def _job_from_model(self, model: JobModel) -> Job:
        return Job(
            id=model.id,
            job_type=model.job_type,
            payload=self.serializer.deserialize_payload(model.payload),
            priority=model.priority,
            attempts=model.attempts,
            reserved_at=_utc(model.reserved_at),
            available_at=_utc(model.available_at),
            created_at=_utc(model.created_at),
            updated_at=_utc(model.updated_at),
        )

    def _failure_from_model(self, model: FailedJobModel) -> FailedJob:
        return FailedJob(
            id=model.id,
            job_id=model.job_id,
            job_type=model.job_type,
            payload=self.serializer.deserialize_payload(model.payload),
            error_type=model.error_type,
            error_message=model.error_message,
            stack_trace=model.stack_trace,
            attempts=model.attempts,
            created_at=_utc(model.created_at),
            failed_at=_utc(model.failed_at),
        )

    def _record_history(
        self,
        session: Session,
        model: JobModel,
        outcome: str,
        now: datetime,
        data: Optional[str] = None,
    ) -> None:
        session.add(
            JobHistoryModel(
                job_id=model.id,
                job_type=model.job_type,
                outcome=outcome,
                attempt=model.attempts,
                timestamp=now,
                data=data,
            )
        )

    # --- Queue ---

    def _find_live(self, job_type: str, fingerprint: str, payload_text: str) -> Optional[int]:
        with self._reader() as session:
            rows = session.execute(
                select(JobModel.id, JobModel.payload)
                .where(JobModel.job_type == job_type, JobModel.payload_hash == fingerprint)
                .order_by(JobModel.id)
            ).all()
            for job_id, payload in rows:
                if payload == payload_text:
                    return job_id
            return None

    def push(
        self,
        job_type: str,
        payload: Dict[str, Any],
        priority: int = 0,
        delay: Union[int, float, timedelta] = 0,
        unique: bool = False,
    ) -> int:
        payload_text = self.serializer.serialize_payload(payload)
        fingerprint = self.serializer.fingerprint(job_type, payload)
        if unique:
            existing = self._find_live(job_type, fingerprint, payload_text)
            if existing is not None:
                logger.debug(f"Unique job {existing} already queued for {job_type}")
                return existing

        now = self._now()
        try:
            with self._session_factory.begin() as session:
                model = JobModel(
                    job_type=job_type,
                    payload=payload_text,
                    payload_hash=fingerprint,
                    unique_key=fingerprint if unique else None,
                    priority=priority,
                    attempts=0,
                    reserved_at=None,
                    available_at=now + as_timedelta(delay),
                    created_at=now,
                    updated_at=now,
                )
                session.add(model)
                session.flush()
                job_id = model.id
        except IntegrityError as exc:
            # Lost a race against a concurrent unique push of the same job.
            if unique:
                existing = self._find_live(job_type, fingerprint, payload_text)
                if existing is not None:
                    return existing
            raise StorageError(f"Failed to push job to queue: {exc}") from exc
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to push job to queue: {exc}") from exc

        logger.info(
            f"Job {job_id} pushed to queue",
            extra={"job_type": job_type, "priority": priority},
        )
        return job_id

    def _claim(
        self, session: Session, job_id: int, now: datetime, max_attempts: int
    ) -> None:
        # Compare-and-set on reserved_at: exactly one claimant sees rowcount 1.
        result = session.execute(
            update(JobModel)
            .where(
                JobModel.id == job_id,
                JobModel.reserved_at.is_(None),
                JobModel.attempts < max_attempts,
            )
            .values(reserved_at=now, attempts=JobModel.attempts + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ReservationConflict(job_id)

    def reserve_batch(self, max_attempts: int, batch_size: int) -> List[Job]:
        with self._transaction() as session:
            now = self._now()
            query = (
                select(JobModel.id)
                .where(
                    JobModel.reserved_at.is_(None),
                    JobModel.available_at <= now,
                    JobModel.attempts < max_attempts,
                )
                .order_by(JobModel.priority.desc(), JobModel.created_at, JobModel.id)
                .limit(batch_size)
            )
            if self._supports_skip_locked:
                query = query.with_for_update(skip_locked=True)

            reserved_ids: List[int] = []
            for job_id in session.execute(query).scalars().all():
                try:
                    self._claim(session, job_id, now, max_attempts)
                except ReservationConflict:
                    logger.debug(f"Job {job_id} already claimed, skipping")
                    continue
                reserved_ids.append(job_id)

            if not reserved_ids:
                return []
            rows = session.execute(
                select(JobModel).where(JobModel.id.in_(reserved_ids))
            ).scalars()
            by_id = {row.id: row for row in rows}
            return [self._job_from_model(by_id[job_id]) for job_id in reserved_ids]

    def complete(self, job_id: int) -> bool:
        with self._transaction() as session:
            model = session.get(JobModel, job_id)
            if model is None:
                return False
            result = session.execute(
                delete(JobModel)
                .where(JobModel.id == job_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return False
            self._record_history(session, model, OUTCOME_SUCCEEDED, self._now())
            return True

    def release_for_retry(
        self, job_id: int, next_available_at: datetime, error: Optional[str] = None
    ) -> bool:
        with self._transaction() as session:
            model = session.get(JobModel, job_id)
            if model is None:
                return False
            now = self._now()
            model.reserved_at = None
            model.available_at = _utc(next_available_at)
            model.updated_at = now
            self._record_history(session, model, OUTCOME_RETRIED, now, data=error)
            return True

    def archive_failure(self, job: Job, error: Union[BaseException, str]) -> int:
        error_type, message, details = describe_error(error)
        with self._transaction() as session:
            now = self._now()
            model = session.get(JobModel, job.id)
            failure = FailedJobModel(
                job_id=job.id,
                job_type=model.job_type if model else job.job_type,
                payload=(
                    model.payload
                    if model
                    else self.serializer.serialize_payload(job.payload)
                ),
                error_type=error_type,
                error_message=message,
                stack_trace=details,
                attempts=model.attempts if model else job.attempts,
                created_at=_utc(model.created_at) if model else _utc(job.created_at),
                failed_at=now,
            )
            session.add(failure)
            if model is not None:
                self._record_history(session, model, OUTCOME_FAILED, now, data=message)
                session.delete(model)
            session.flush()
            return failure.id

    def stats(self, stuck_threshold: timedelta = DEFAULT_STUCK_THRESHOLD) -> QueueStats:
        cutoff = self._now() - stuck_threshold
        with self._reader() as session:
            total = session.execute(select(func.count(JobModel.id))).scalar_one()
            reserved = session.execute(
                select(func.count(JobModel.id)).where(JobModel.reserved_at.is_not(None))
            ).scalar_one()
            stuck = session.execute(
                select(func.count(JobModel.id)).where(
                    JobModel.reserved_at.is_not(None), JobModel.reserved_at < cutoff
                )
            ).scalar_one()
            rows = session.execute(
                select(JobModel.job_type, func.count(JobModel.id)).group_by(
                    JobModel.job_type
                )
            ).all()
            return QueueStats(
                total=int(total or 0),
                pending=int(total or 0) - int(reserved or 0),
                reserved=int(reserved or 0),
                stuck_count=int(stuck or 0),
                by_type={job_type: int(count) for job_type, count in rows},
            )

    def get_job(self, job_id: int) -> Optional[Job]:
        with self._reader() as session:
            model = session.get(JobModel, job_id)
            return self._job_from_model(model) if model else None

    def find_stuck(self, older_than: timedelta, limit: int = 100) -> List[Job]:
        cutoff = self._now() - older_than
        with self._reader() as session:
            rows = (
                session.execute(
                    select(JobModel)
                    .where(
                        JobModel.reserved_at.is_not(None),
                        JobModel.reserved_at < cutoff,
                    )
                    .order_by(JobModel.reserved_at)
                    .limit(limit)
                )
                .scalars()
                .all()
            )
            return [self._job_from_model(row) for row in rows]

    # --- Failure log ---

    def list_failures(self, start: int = 0, count: int = 20) -> List[FailedJob]:
        with self._reader() as session:
            rows = (
                session.execute(
                    select(FailedJobModel)
                    .order_by(FailedJobModel.id.desc())
                    .offset(start)
                    .limit(count)
                )
                .scalars()
                .all()
            )
            return [self._failure_from_model(row) for row in rows]

    def get_failure(self, failure_id: int) -> Optional[FailedJob]:
        with self._reader() as session:
            model = session.get(FailedJobModel, failure_id)
            return self._failure_from_model(model) if model else None

    def count_failures(self, since: Optional[datetime] = None) -> int:
        query = select(func.count(FailedJobModel.id))
        if since is not None:
            query = query.where(FailedJobModel.failed_at >= _utc(since))
        with self._reader() as session:
            return int(session.execute(query).scalar_one() or 0)

    def purge_failures(self, before: datetime) -> int:
        with self._transaction() as session:
            result = session.execute(
                delete(FailedJobModel).where(FailedJobModel.failed_at < _utc(before))
            )
            return int(result.rowcount or 0)

    # --- History ---

    def outcome_counts(
        self, job_type: Optional[str] = None, since: Optional[datetime] = None
    ) -> Dict[str, int]:
        query = select(JobHistoryModel.outcome, func.count(JobHistoryModel.id))
        if job_type is not None:
            query = query.where(JobHistoryModel.job_type == job_type)
        if since is not None:
            query = query.where(JobHistoryModel.timestamp >= _utc(since))
        with self._reader() as session:
            rows = session.execute(query.group_by(JobHistoryModel.outcome)).all()
        counts = {outcome: 0 for outcome in ALL_OUTCOMES}
        for outcome, count in rows:
            counts[outcome] = int(count)
        return counts

    def purge_history(self, before: datetime) -> int:
        with self._transaction() as session:
            result = session.execute(
                delete(JobHistoryModel).where(JobHistoryModel.timestamp < _utc(before))
            )
            return int(result.rowcount or 0)

    # --- Schedules ---

    def get_schedule(self, name: str) -> Optional[ScheduleState]:
        with self._reader() as session:
            model = session.get(ScheduleModel, name)
            if model is None:
                return None
            return ScheduleState(
                name=model.name,
                next_run_at=_utc(model.next_run_at),
                last_run_at=_utc(model.last_run_at),
            )

    def arm_schedule(self, name: str, next_run_at: datetime) -> bool:
        try:
            with self._session_factory.begin() as session:
                if session.get(ScheduleModel, name) is not None:
                    return False
                session.add(ScheduleModel(name=name, next_run_at=_utc(next_run_at)))
            return True
        except IntegrityError:
            # Another process armed it first.
            return False
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to arm schedule {name}: {exc}") from exc

    def advance_schedule(
        self,
        name: str,
        expected_next_run_at: datetime,
        next_run_at: datetime,
        last_run_at: Optional[datetime] = None,
    ) -> bool:
        values: Dict[str, Any] = {"next_run_at": _utc(next_run_at)}
        if last_run_at is not None:
            values["last_run_at"] = _utc(last_run_at)
        with self._transaction() as session:
            result = session.execute(
                update(ScheduleModel)
                .where(
                    ScheduleModel.name == name,
                    ScheduleModel.next_run_at == _utc(expected_next_run_at),
                )
                .values(values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def disarm_schedule(self, name: str) -> None:
        with self._transaction() as session:
            session.execute(delete(ScheduleModel).where(ScheduleModel.name == name))
