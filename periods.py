from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Optional, Union

from errors import ValidationError

InstantLike = Union[str, date, datetime]


@dataclass(frozen=True)
class Window:
    """Inclusive ``[start, end]`` range of naive UTC instants."""

    start: datetime
    end: datetime


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_instant(value: InstantLike, *, end_of_day: bool = False) -> datetime:
    """Parse an ISO date or datetime into a naive UTC datetime.

    Date-only input resolves to the first instant of that day, or to the last
    one when ``end_of_day`` is set. Raises ``ValueError`` on garbage.
    """
    if isinstance(value, datetime):
        return _to_naive_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.max if end_of_day else time.min)

    clean = str(value).strip()
    if not clean:
        raise ValueError("Invalid date")
    if len(clean) == 10:
        try:
            day = date.fromisoformat(clean)
        except ValueError as exc:
            raise ValueError("Invalid date") from exc
        return datetime.combine(day, time.max if end_of_day else time.min)
    if clean.endswith(("Z", "z")):
        clean = clean[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(clean)
    except ValueError as exc:
        raise ValueError("Invalid date") from exc
    return _to_naive_utc(parsed)


def month_window(now: Optional[datetime] = None) -> Window:
    now = now or utcnow()
    first = now.date().replace(day=1)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    last = next_month - date.resolution
    return Window(datetime.combine(first, time.min), datetime.combine(last, time.max))


def parse_bound(
    value: Optional[InstantLike], field: str, *, end_of_day: bool = False
) -> Optional[datetime]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        return parse_instant(value, end_of_day=end_of_day)
    except ValueError as exc:
        raise ValidationError(f"Invalid {field}", field=field) from exc


def resolve_window(
    start: Optional[InstantLike],
    end: Optional[InstantLike],
    *,
    now: Optional[datetime] = None,
) -> Window:
    start_at = parse_bound(start, "startDate")
    end_at = parse_bound(end, "endDate", end_of_day=True)
    # A custom window needs both bounds; otherwise the current month applies.
    if start_at is None or end_at is None:
        return month_window(now)
    if end_at < start_at:
        raise ValidationError("endDate must not be before startDate", field="endDate")
    return Window(start_at, end_at)
