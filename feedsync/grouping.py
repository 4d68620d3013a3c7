"""Day grouping and relative time labels for message and notification lists."""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, tzinfo
from typing import Callable, Generic, Iterable, List, Optional, TypeVar

T = TypeVar("T")


@dataclass
class DayGroup(Generic[T]):
    label: str
    day: date
    items: List[T] = field(default_factory=list)


def _local(dt: datetime, tz: Optional[tzinfo]) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(tz)


def day_label(day: date, today: date) -> str:
    if day == today:
        return "Today"
    if day == today - timedelta(days=1):
        return "Yesterday"
    return day.strftime("%B %d, %Y")


def group_by_day(
    records: Iterable[T],
    timestamp_of: Callable[[T], datetime],
    same_day: Optional[Callable[[datetime, datetime], bool]] = None,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> List[DayGroup[T]]:
    """Split a chronologically ordered list into contiguous same-day groups.

    ``same_day`` defaults to calendar-date equality in ``tz`` (local time when
    None). Labels use ``now`` to name today and yesterday.
    """
    if same_day is None:
        def same_day(a: datetime, b: datetime) -> bool:
            return _local(a, tz).date() == _local(b, tz).date()

    now = now or datetime.now().astimezone()
    today = _local(now, tz).date()

    groups: List[DayGroup[T]] = []
    anchor: Optional[datetime] = None
    for record in records:
        ts = timestamp_of(record)
        if anchor is None or not same_day(anchor, ts):
            day = _local(ts, tz).date()
            groups.append(DayGroup(label=day_label(day, today), day=day))
            anchor = ts
        groups[-1].items.append(record)
    return groups


def format_time_ago(dt: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Format datetime as 'time ago' string."""
    if dt is None:
        return "just now"
    if now is None:
        now = datetime.now(dt.tzinfo) if dt.tzinfo else datetime.now()
    diff = now - dt
    if diff.days > 0:
        return f"{diff.days}d ago"
    if diff.days < 0 or diff.seconds < 60:
        return "just now"
    if diff.seconds < 3600:
        return f"{diff.seconds // 60}m ago"
    return f"{diff.seconds // 3600}h ago"
