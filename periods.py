from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Optional, Union

from errors import ValidationError

DateInput = Union[str, date, datetime, None]


@dataclass(frozen=True)
class DateRange:
    start: Optional[datetime]
    end: Optional[datetime]

    def contains(self, moment: datetime) -> bool:
        if self.start is not None and moment < self.start:
            return False
        if self.end is not None and moment > self.end:
            return False
        return True


def _as_naive_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def parse_bound(value: DateInput, field: str, *, end_of_day: bool = False) -> Optional[datetime]:
    """Turn an ISO-8601 date or datetime into a naive UTC datetime.

    A bare date on the upper bound covers the whole day.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return _as_naive_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.max if end_of_day else time.min)

    raw = value.strip()
    if not raw:
        return None
    try:
        if len(raw) == 10:
            day = date.fromisoformat(raw)
            return datetime.combine(day, time.max if end_of_day else time.min)
        return _as_naive_utc(datetime.fromisoformat(raw))
    except ValueError as exc:
        raise ValidationError.for_field(field, f"Invalid date: {raw!r}") from exc


def resolve_range(start: DateInput, end: DateInput) -> DateRange:
    start_at = parse_bound(start, "startDate")
    end_at = parse_bound(end, "endDate", end_of_day=True)
    if start_at is not None and end_at is not None and start_at > end_at:
        raise ValidationError.for_field(
            "startDate", "Start date must be before end date"
        )
    return DateRange(start_at, end_at)
