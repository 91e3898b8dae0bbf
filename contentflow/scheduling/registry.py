# contentflow/scheduling/registry.py
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, time, timedelta, tzinfo, UTC
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from contentflow.common.exceptions import ScheduleConfigError, StorageError
from contentflow.common.job import ScheduleState
from contentflow.scheduling import cron
from contentflow.storage.base import JobStore


# Named cadences, in seconds.
CADENCES: Dict[str, int] = {
    "every_minute": 60,
    "every_fifteen_minutes": 900,
    "hourly": 3600,
    "twice_daily": 43200,
    "daily": 86400,
}

DEFAULT_TOLERANCE = timedelta(minutes=5)

_CLOCK_RE = re.compile(r"^([0-1][0-9]|2[0-3]):([0-5][0-9])$")


def parse_clock(value: Any) -> time:
    """Parse an ``HH:MM`` wall-clock time."""
    match = _CLOCK_RE.match(value) if isinstance(value, str) else None
    if not match:
        raise ScheduleConfigError(f"Invalid time of day {value!r}, expected HH:MM")
    return time(int(match.group(1)), int(match.group(2)))


class Recurrence(ABC):
    # Clock and cron recurrences fire only inside a tolerance window.
    windowed = False

    @abstractmethod
    def next_after(self, moment: datetime) -> datetime: ...

    @abstractmethod
    def describe(self) -> str: ...


@dataclass(frozen=True)
class IntervalRecurrence(Recurrence):
    seconds: int

    def __post_init__(self):
        if isinstance(self.seconds, bool) or not isinstance(self.seconds, int):
            raise ScheduleConfigError(f"Interval must be an integer, got {self.seconds!r}")
        if self.seconds <= 0:
            raise ScheduleConfigError(f"Interval must be positive, got {self.seconds}")

    def next_after(self, moment: datetime) -> datetime:
        return moment.astimezone(UTC) + timedelta(seconds=self.seconds)

    def describe(self) -> str:
        return f"every {self.seconds}s"


@dataclass(frozen=True)
class ClockRecurrence(Recurrence):
    times: Tuple[time, ...]
    windowed = True

    def __post_init__(self):
        if not self.times:
            raise ScheduleConfigError("At least one time of day is required")

    def next_after(self, moment: datetime) -> datetime:
        # Today's slot if it is still ahead, otherwise the same slot tomorrow.
        candidates = []
        for at in self.times:
            scheduled = datetime.combine(moment.date(), at, tzinfo=moment.tzinfo)
            if scheduled.astimezone(UTC) <= moment.astimezone(UTC):
                scheduled = datetime.combine(
                    moment.date() + timedelta(days=1), at, tzinfo=moment.tzinfo
                )
            candidates.append(scheduled)
        return min(candidates)

    def describe(self) -> str:
        return "at " + ", ".join(t.strftime("%H:%M") for t in self.times)


@dataclass(frozen=True)
class CronRecurrence(Recurrence):
    expression: str
    windowed = True

    def __post_init__(self):
        cron.validate(self.expression)

    def next_after(self, moment: datetime) -> datetime:
        return cron.next_fire_after(self.expression, moment)

    def describe(self) -> str:
        return f"cron {self.expression}"


def parse_recurrence(spec: Union[Recurrence, str, Mapping[str, Any]]) -> Recurrence:
    """
    Build a recurrence from one of::

        {"interval_seconds": 60}
        {"cadence": "every_fifteen_minutes"}   # or just "every_fifteen_minutes"
        {"daily_at": "00:00"}
        {"times": ["06:00", "18:00"]}
        {"cron_expression": "*/15 * * * *"}
    """
    if isinstance(spec, Recurrence):
        return spec
    if isinstance(spec, str):
        spec = {"cadence": spec}
    if not isinstance(spec, Mapping) or len(spec) != 1:
        raise ScheduleConfigError(f"Malformed recurrence {spec!r}")

    kind, value = next(iter(spec.items()))
    if kind == "interval_seconds":
        return IntervalRecurrence(value)
    if kind == "cadence":
        if value not in CADENCES:
            raise ScheduleConfigError(f"Unknown cadence {value!r}")
        return IntervalRecurrence(CADENCES[value])
    if kind == "daily_at":
        return ClockRecurrence((parse_clock(value),))
    if kind == "times":
        if isinstance(value, str) or not isinstance(value, (list, tuple)):
            raise ScheduleConfigError(f"'times' must be a list of HH:MM, got {value!r}")
        return ClockRecurrence(tuple(sorted({parse_clock(v) for v in value})))
    if kind == "cron_expression":
        return CronRecurrence(value)
    raise ScheduleConfigError(f"Unknown recurrence kind {kind!r}")


@dataclass
class Schedule:
    name: str
    recurrence: Recurrence
    action: Optional[Callable[[], Any]] = None


class ScheduleRegistry:
    """
    Named recurring triggers whose next/last run instants live in the job store.

    Arming is idempotent: a name that already has a next run in the store keeps
    it, so restarts never pile up duplicate timers. Firing claims the instant
    with a compare-and-set on the stored next run, so two processes ticking
    the same store never fire the same instant twice.
    """

    def __init__(
        self,
        store: JobStore,
        tolerance: timedelta = DEFAULT_TOLERANCE,
        tz: tzinfo = UTC,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.tolerance = tolerance
        self.tz = tz
        self._clock = clock or (lambda: datetime.now(UTC))
        self.logger = logger or logging.getLogger(__name__)
        self._schedules: Dict[str, Schedule] = {}

    def _now(self) -> datetime:
        return self._clock().astimezone(self.tz)

    def _local(self, moment: Optional[datetime]) -> datetime:
        return self._now() if moment is None else moment.astimezone(self.tz)

    def _get(self, name: str) -> Schedule:
        try:
            return self._schedules[name]
        except KeyError:
            raise ScheduleConfigError(f"Schedule {name!r} is not registered") from None

    @property
    def names(self) -> List[str]:
        return list(self._schedules)

    def register(
        self,
        name: str,
        recurrence: Union[Recurrence, str, Mapping[str, Any]],
        action: Optional[Callable[[], Any]] = None,
    ) -> Schedule:
        now = self._now()
        try:
            parsed = parse_recurrence(recurrence)
            next_run = parsed.next_after(now)
        except ScheduleConfigError:
            self.logger.error(
                f"Schedule {name} rejected", exc_info=True, extra={"schedule": name}
            )
            raise

        schedule = Schedule(name=name, recurrence=parsed, action=action)
        try:
            if self.store.get_schedule(name) is None and self.store.arm_schedule(
                name, next_run
            ):
                self.logger.info(
                    f"Schedule {name} armed ({parsed.describe()}), next run {next_run.isoformat()}",
                    extra={"schedule": name},
                )
        except StorageError:
            self.logger.error(
                f"Could not arm schedule {name}", exc_info=True, extra={"schedule": name}
            )
            raise
        self._schedules[name] = schedule
        return schedule

    def unregister(self, name: str) -> None:
        self._schedules.pop(name, None)
        self.store.disarm_schedule(name)

    def next_run(self, name: str) -> Optional[datetime]:
        self._get(name)
        state = self.store.get_schedule(name)
        return state.next_run_at if state else None

    # Compare UTC instants; aware datetimes sharing one zone compare by wall clock.
    def _missed(self, schedule: Schedule, state: ScheduleState, now: datetime) -> bool:
        return schedule.recurrence.windowed and now.astimezone(UTC) > (
            state.next_run_at.astimezone(UTC) + self.tolerance
        )

    def _due(self, schedule: Schedule, state: ScheduleState, now: datetime) -> bool:
        next_run_at = state.next_run_at.astimezone(UTC)
        if now.astimezone(UTC) < next_run_at:
            return False
        if not schedule.recurrence.windowed:
            # next_run_at is last_run + interval once it has run.
            return True
        if self._missed(schedule, state, now):
            return False
        return state.last_run_at is None or state.last_run_at.astimezone(UTC) < next_run_at

    def is_due(self, name: str, now: Optional[datetime] = None) -> bool:
        schedule = self._get(name)
        state = self.store.get_schedule(name)
        if state is None:
            return False
        return self._due(schedule, state, self._local(now))

    def mark_run(self, name: str, now: Optional[datetime] = None) -> bool:
        schedule = self._get(name)
        now = self._local(now)
        state = self.store.get_schedule(name)
        if state is None:
            return False
        return self.store.advance_schedule(
            name,
            state.next_run_at,
            schedule.recurrence.next_after(now),
            last_run_at=now,
        )

    def run_due(self, now: Optional[datetime] = None) -> List[str]:
        """Fire every due schedule once. Returns the names that fired."""
        now = self._local(now)
        fired = []
        for schedule in list(self._schedules.values()):
            name = schedule.name
            try:
                state = self.store.get_schedule(name)
                if state is None:
                    self.store.arm_schedule(name, schedule.recurrence.next_after(now))
                    continue
                if self._missed(schedule, state, now):
                    next_run = schedule.recurrence.next_after(now)
                    if self.store.advance_schedule(name, state.next_run_at, next_run):
                        self.logger.warning(
                            f"Schedule {name} missed its window at {state.next_run_at.isoformat()}, "
                            f"next run {next_run.isoformat()}",
                            extra={"schedule": name},
                        )
                    continue
                if not self._due(schedule, state, now):
                    continue
                claimed = self.store.advance_schedule(
                    name,
                    state.next_run_at,
                    schedule.recurrence.next_after(now),
                    last_run_at=now,
                )
                if not claimed:
                    self.logger.debug(f"Schedule {name} already fired elsewhere")
                    continue
            except (StorageError, ScheduleConfigError):
                self.logger.error(
                    f"Schedule {name} could not be evaluated",
                    exc_info=True,
                    extra={"schedule": name},
                )
                continue

            fired.append(name)
            if schedule.action is None:
                continue
            try:
                schedule.action()
            except Exception:
                self.logger.error(
                    f"Schedule {name} action failed", exc_info=True, extra={"schedule": name}
                )
        return fired
