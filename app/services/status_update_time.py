from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from app.core.clock import as_utc
from app.services.status_errors import InvalidTimeSpec

_HOURS_RE = re.compile(r"^\d+$")
_CLOCK_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_LOCAL_TIMESTAMP_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})[ T](\d{1,2}):(\d{2})(?::(\d{2}))?$")


@dataclass(frozen=True)
class ResolvedTime:
    execute_at: datetime
    duration: int | None = None


def is_blank_time_spec(value: object) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


def _offset(timezone_offset: int | None) -> timedelta:
    # Browser convention: minutes UTC is ahead of local time, so utc = local + offset.
    try:
        return timedelta(minutes=int(timezone_offset or 0))
    except OverflowError as exc:
        raise InvalidTimeSpec(f"timezone_offset={timezone_offset}") from exc


def _shift(moment: datetime, delta: timedelta, spec: object) -> datetime:
    try:
        return moment + delta
    except OverflowError as exc:
        raise InvalidTimeSpec(spec) from exc


def hours_after(base: datetime, hours: int) -> datetime:
    try:
        delta = timedelta(hours=int(hours))
    except OverflowError as exc:
        raise InvalidTimeSpec(hours) from exc
    return _shift(as_utc(base), delta, hours)


def next_clock_time(now: datetime, hour: int, minute: int, *, timezone_offset: int | None = None) -> datetime:
    spec = f"{hour}:{minute:02d}"
    if hour > 23 or minute > 59:
        raise InvalidTimeSpec(spec)
    offset = _offset(timezone_offset)
    local_now = _shift(as_utc(now), -offset, spec)
    candidate = local_now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= local_now:
        candidate = _shift(candidate, timedelta(days=1), spec)
    return _shift(candidate, offset, spec)


def local_timestamp(parts: tuple[int, ...], *, timezone_offset: int | None = None) -> datetime:
    year, month, day, hour, minute, second = parts
    spec = "-".join(str(p) for p in parts)
    try:
        local = datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)
    except (ValueError, OverflowError) as exc:
        raise InvalidTimeSpec(spec) from exc
    return _shift(local, _offset(timezone_offset), spec)


def parse_timestamp(text: str, *, timezone_offset: int | None = None) -> datetime | None:
    match = _LOCAL_TIMESTAMP_RE.fullmatch(text)
    if match:
        parts = tuple(int(p) if p is not None else 0 for p in match.groups())
        return local_timestamp(parts, timezone_offset=timezone_offset)
    iso = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        parsed = datetime.fromisoformat(iso)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return _shift(parsed.replace(tzinfo=timezone.utc), _offset(timezone_offset), text)
    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError as exc:
        raise InvalidTimeSpec(text) from exc


def resolve_time_spec(
    time_spec: object,
    *,
    now: datetime,
    timezone_offset: int | None = None,
    based_on_last_post: bool = False,
    last_posted_at: datetime | None = None,
) -> ResolvedTime | None:
    """Turn a user supplied time into an absolute UTC ``execute_at``.

    Accepted shapes:

    * a whole number of hours (``72`` or ``"72"``), counted from ``now`` or,
      with ``based_on_last_post``, from ``last_posted_at``;
    * a clock time ``"HH:MM"``: the next occurrence in the caller's local time;
    * a timestamp ``"YYYY-MM-DD HH:MM"`` in local time, or ISO-8601 with offset;
    * ``None`` or a blank string, which means "cancel" and yields ``None``.
    """
    if is_blank_time_spec(time_spec):
        return None

    if isinstance(time_spec, datetime):
        return ResolvedTime(execute_at=as_utc(time_spec))

    if isinstance(time_spec, bool):
        raise InvalidTimeSpec(time_spec)

    if isinstance(time_spec, int):
        hours = time_spec
    else:
        text = str(time_spec).strip()
        if _HOURS_RE.fullmatch(text):
            hours = int(text)
        else:
            clock_match = _CLOCK_TIME_RE.fullmatch(text)
            if clock_match:
                hour, minute = (int(p) for p in clock_match.groups())
                return ResolvedTime(
                    execute_at=next_clock_time(now, hour, minute, timezone_offset=timezone_offset)
                )
            parsed = parse_timestamp(text, timezone_offset=timezone_offset)
            if parsed is None:
                raise InvalidTimeSpec(time_spec)
            return ResolvedTime(execute_at=parsed)

    base = last_posted_at if based_on_last_post and last_posted_at is not None else now
    return ResolvedTime(execute_at=hours_after(base, hours), duration=hours)
