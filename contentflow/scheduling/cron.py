"""Five-field cron matching.

Fields are minute, hour, day of month, month and weekday (0-6, Sunday is 0).
Each field is ``*``, a comma list of integers, an inclusive range ``a-b``, a
step over the full range ``*/n`` (matches when ``value % n == 0``) or a single
integer. All five fields must match, day of month and weekday included.

Steps on ranges or literals (``1-10/2``, ``5/2``) and ranges inside lists are
not supported and raise ``ScheduleConfigError``.
"""
from datetime import datetime, timedelta
from typing import FrozenSet, Tuple

from cronsim import CronSim, CronSimError

from contentflow.common.exceptions import ScheduleConfigError

FIELDS = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day of month", 1, 31),
    ("month", 1, 12),
    ("weekday", 0, 6),
)

# How far ahead next_fire_after looks before declaring an expression dead.
SEARCH_HORIZON = timedelta(days=366 * 5)

CronFields = Tuple[FrozenSet[int], ...]


def _parse_int(text: str, name: str, low: int, high: int) -> int:
    if not text.isdigit():
        raise ScheduleConfigError(f"Invalid {name} value {text!r}")
    value = int(text)
    if not low <= value <= high:
        raise ScheduleConfigError(
            f"{name.capitalize()} value {value} out of range {low}-{high}"
        )
    return value


def _expand_field(text: str, name: str, low: int, high: int) -> FrozenSet[int]:
    if text == "*":
        return frozenset(range(low, high + 1))

    if "," in text:
        return frozenset(_parse_int(part, name, low, high) for part in text.split(","))

    if "/" in text:
        base, _, step = text.partition("/")
        if base != "*":
            raise ScheduleConfigError(
                f"Unsupported {name} field {text!r}: steps are only allowed on '*'"
            )
        if not step.isdigit() or int(step) == 0:
            raise ScheduleConfigError(f"Invalid {name} step {text!r}")
        return frozenset(v for v in range(low, high + 1) if v % int(step) == 0)

    if "-" in text:
        start_text, _, end_text = text.partition("-")
        start = _parse_int(start_text, name, low, high)
        end = _parse_int(end_text, name, low, high)
        if start > end:
            raise ScheduleConfigError(f"Reversed {name} range {text!r}")
        return frozenset(range(start, end + 1))

    return frozenset({_parse_int(text, name, low, high)})


def parse(expression: str) -> CronFields:
    """Expand an expression into the set of allowed values per field."""
    if not isinstance(expression, str):
        raise ScheduleConfigError(f"Cron expression must be a string, got {expression!r}")
    parts = expression.split()
    if len(parts) != len(FIELDS):
        raise ScheduleConfigError(
            f"Cron expression must have 5 fields, got {len(parts)}: {expression!r}"
        )
    return tuple(
        _expand_field(part, name, low, high)
        for part, (name, low, high) in zip(parts, FIELDS)
    )


def validate(expression: str) -> None:
    parse(expression)


def _values_of(timestamp: datetime) -> Tuple[int, ...]:
    return (
        timestamp.minute,
        timestamp.hour,
        timestamp.day,
        timestamp.month,
        timestamp.isoweekday() % 7,
    )


def _matches_fields(fields: CronFields, timestamp: datetime) -> bool:
    return all(value in allowed for value, allowed in zip(_values_of(timestamp), fields))


def matches(expression: str, timestamp: datetime) -> bool:
    """True when ``timestamp`` (at minute granularity) satisfies every field."""
    return _matches_fields(parse(expression), timestamp)


def _render(values: FrozenSet[int], low: int, high: int) -> str:
    if values == frozenset(range(low, high + 1)):
        return "*"
    return ",".join(str(v) for v in sorted(values))


def next_fire_after(expression: str, after: datetime) -> datetime:
    """Return the first matching minute strictly after ``after``.

    CronSim proposes candidates; it treats a restricted day of month and
    weekday as either/or, so its candidates are a superset of ours and each
    one is checked against the matcher.
    """
    fields = parse(expression)
    if not all(fields):
        raise ScheduleConfigError(f"Cron expression {expression!r} never matches")

    rendered = " ".join(
        _render(values, low, high) for values, (_, low, high) in zip(fields, FIELDS)
    )
    horizon = after + SEARCH_HORIZON
    cursor = after
    while cursor < horizon:
        try:
            candidate = next(CronSim(rendered, cursor))
        except CronSimError as exc:
            raise ScheduleConfigError(f"Invalid cron expression {expression!r}: {exc}") from exc
        except StopIteration:
            break

        if _matches_fields(fields, candidate):
            return candidate
        if candidate.day in fields[2] and candidate.isoweekday() % 7 in fields[4]:
            cursor = candidate
        else:
            # Wrong day entirely; skip to its last minute.
            cursor = candidate.replace(hour=23, minute=59, second=0, microsecond=0)

    raise ScheduleConfigError(f"Cron expression {expression!r} never matches")
