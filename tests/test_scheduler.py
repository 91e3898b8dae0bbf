import pytest
from datetime import UTC, datetime, time, timedelta
from zoneinfo import ZoneInfo

from contentflow.common.exceptions import ScheduleConfigError
from contentflow.scheduling.registry import (
    CADENCES,
    ClockRecurrence,
    CronRecurrence,
    IntervalRecurrence,
    ScheduleRegistry,
    parse_recurrence,
)


@pytest.fixture
def registry(store, clock):
    return ScheduleRegistry(store, clock=clock)


def test_named_cadences():
    assert CADENCES["every_minute"] == 60
    assert CADENCES["every_fifteen_minutes"] == 900
    assert CADENCES["hourly"] == 3600
    assert CADENCES["twice_daily"] == 43200
    assert CADENCES["daily"] == 86400


def test_parse_recurrence_forms():
    assert parse_recurrence({"interval_seconds": 30}) == IntervalRecurrence(30)
    assert parse_recurrence("hourly") == IntervalRecurrence(3600)
    assert parse_recurrence({"daily_at": "06:30"}) == ClockRecurrence((time(6, 30),))
    assert parse_recurrence({"times": ["18:00", "06:00"]}) == ClockRecurrence(
        (time(6, 0), time(18, 0))
    )
    assert parse_recurrence({"cron_expression": "0 * * * *"}) == CronRecurrence("0 * * * *")


@pytest.mark.parametrize(
    "spec",
    [
        {"interval_seconds": 0},
        {"interval_seconds": "60"},
        {"cadence": "fortnightly"},
        {"daily_at": "25:00"},
        {"daily_at": "6:00"},
        {"times": "06:00"},
        {"times": []},
        {"cron_expression": "1-10/2 * * * *"},
        {"interval_seconds": 60, "cadence": "hourly"},
        {"weekly": True},
    ],
)
def test_malformed_recurrence_is_rejected_and_not_armed(registry, store, spec):
    with pytest.raises(ScheduleConfigError):
        registry.register("broken", spec)
    assert store.get_schedule("broken") is None
    assert "broken" not in registry.names


def test_daily_time_already_passed_arms_tomorrow(registry, clock):
    registry.register("morning", {"daily_at": "06:00"})
    registry.register("evening", {"daily_at": "18:00"})

    assert registry.next_run("morning") == datetime(2024, 3, 16, 6, 0, tzinfo=UTC)
    assert registry.next_run("evening") == datetime(2024, 3, 15, 18, 0, tzinfo=UTC)


def test_registration_is_idempotent_across_instances(store, clock):
    ScheduleRegistry(store, clock=clock).register("tick", {"cadence": "hourly"})
    armed = store.get_schedule("tick").next_run_at

    clock.advance(minutes=30)
    ScheduleRegistry(store, clock=clock).register("tick", {"cadence": "hourly"})

    assert store.get_schedule("tick").next_run_at == armed


def test_interval_schedule_fires_once_per_interval(registry, clock):
    calls = []
    registry.register("poll", {"interval_seconds": 60}, lambda: calls.append(clock.now))

    assert registry.run_due() == []
    clock.advance(seconds=60)
    assert registry.run_due() == ["poll"]
    assert registry.run_due() == []
    clock.advance(seconds=59)
    assert registry.run_due() == []
    clock.advance(seconds=1)
    assert registry.run_due() == ["poll"]
    assert len(calls) == 2


def test_interval_schedule_catches_up_after_a_long_pause(registry, clock):
    calls = []
    registry.register("poll", "every_minute", lambda: calls.append(1))

    clock.advance(hours=3)
    assert registry.run_due() == ["poll"]
    assert registry.run_due() == []
    assert len(calls) == 1


def test_clock_schedule_fires_inside_tolerance_window(registry, clock):
    calls = []
    registry.register("evening", {"daily_at": "18:00"}, lambda: calls.append(clock.now))

    clock.now = datetime(2024, 3, 15, 17, 59, tzinfo=UTC)
    assert not registry.is_due("evening")
    clock.now = datetime(2024, 3, 15, 18, 3, tzinfo=UTC)
    assert registry.is_due("evening")
    assert registry.run_due() == ["evening"]

    # Same window again: suppressed.
    clock.advance(minutes=1)
    assert not registry.is_due("evening")
    assert registry.run_due() == []
    assert registry.next_run("evening") == datetime(2024, 3, 16, 18, 0, tzinfo=UTC)
    assert len(calls) == 1


def test_missed_window_rolls_forward_without_firing(registry, clock):
    calls = []
    registry.register("evening", {"daily_at": "18:00"}, lambda: calls.append(1))

    clock.now = datetime(2024, 3, 15, 18, 6, tzinfo=UTC)
    assert not registry.is_due("evening")
    assert registry.run_due() == []
    assert calls == []
    assert registry.next_run("evening") == datetime(2024, 3, 16, 18, 0, tzinfo=UTC)


def test_mark_run_suppresses_refiring(registry, clock):
    registry.register("evening", {"daily_at": "18:00"})
    clock.now = datetime(2024, 3, 15, 18, 0, tzinfo=UTC)

    assert registry.is_due("evening")
    assert registry.mark_run("evening")
    assert not registry.is_due("evening")
    assert registry.store.get_schedule("evening").last_run_at == clock.now


def test_cron_schedule(registry, clock):
    calls = []
    registry.register("quarter", {"cron_expression": "*/15 * * * *"}, lambda: calls.append(1))

    assert registry.next_run("quarter") == datetime(2024, 3, 15, 12, 15, tzinfo=UTC)
    clock.now = datetime(2024, 3, 15, 12, 16, tzinfo=UTC)
    assert registry.run_due() == ["quarter"]
    assert registry.next_run("quarter") == datetime(2024, 3, 15, 12, 30, tzinfo=UTC)


def test_wall_clock_times_use_registry_timezone(store, clock):
    registry = ScheduleRegistry(store, tz=ZoneInfo("America/New_York"), clock=clock)
    registry.register("local_noon", {"daily_at": "12:00"})

    # 12:00 UTC is 08:00 in New York, so today's noon is still ahead.
    expected = datetime(2024, 3, 15, 12, 0, tzinfo=ZoneInfo("America/New_York"))
    assert registry.next_run("local_noon") == expected


def test_clock_schedule_across_spring_forward(store, clock):
    # 02:30 does not exist in New York on 2024-03-10; it runs at 03:30 EDT.
    registry = ScheduleRegistry(store, tz=ZoneInfo("America/New_York"), clock=clock)
    clock.now = datetime(2024, 3, 9, 12, 0, tzinfo=UTC)
    fired = []
    registry.register("nightly", {"daily_at": "02:30"}, lambda: fired.append(clock.now))

    while clock.now < datetime(2024, 3, 11, 12, 0, tzinfo=UTC):
        clock.advance(minutes=1)
        registry.run_due()

    assert fired == [
        datetime(2024, 3, 10, 7, 30, tzinfo=UTC),
        datetime(2024, 3, 11, 6, 30, tzinfo=UTC),
    ]


def test_action_failure_is_isolated(registry, clock):
    calls = []

    def boom():
        raise RuntimeError("action failed")

    registry.register("bad", "every_minute", boom)
    registry.register("good", "every_minute", lambda: calls.append(1))
    clock.advance(minutes=1)

    assert sorted(registry.run_due()) == ["bad", "good"]
    assert calls == [1]


def test_two_registries_never_fire_the_same_instant(store, clock):
    calls = []
    first = ScheduleRegistry(store, clock=clock)
    second = ScheduleRegistry(store, clock=clock)
    first.register("tick", "every_minute", lambda: calls.append("first"))
    second.register("tick", "every_minute", lambda: calls.append("second"))
    clock.advance(minutes=1)

    first.run_due()
    second.run_due()

    assert calls == ["first"]


def test_unregister_disarms(registry, store):
    registry.register("tick", "hourly")
    registry.unregister("tick")
    assert store.get_schedule("tick") is None
    with pytest.raises(ScheduleConfigError):
        registry.is_due("tick")


def test_disarmed_schedule_is_rearmed_on_tick(registry, store, clock):
    registry.register("tick", "hourly")
    store.disarm_schedule("tick")

    assert registry.run_due() == []
    assert store.get_schedule("tick").next_run_at == clock.now + timedelta(hours=1)
