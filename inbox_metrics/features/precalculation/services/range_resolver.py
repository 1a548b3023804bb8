"""
Rolling range resolution in the business timezone.

All ranges are closed, calendar-complete and backward looking. "Today"
is always taken in the business timezone so the result does not depend
on the server locale, and every boundary is the epoch second of a local
wall-clock time in that zone.
"""

from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from inbox_metrics.config import settings
from inbox_metrics.features.precalculation.domain import RangeSpec, UnknownRange

RANGE_LABELS = {
    "lastWeek": "Last Week",
    "lastMonth": "Last Month",
    "lastQuarter": "Last Quarter",
}

SUPPORTED_RANGES = tuple(RANGE_LABELS)

_DAY_END = time(23, 59, 59)


class RangeResolver:
    """Maps a range name to concrete bounds for a given instant."""

    def __init__(self, timezone_name: str | None = None):
        self.timezone_name = timezone_name or settings.BUSINESS_TIMEZONE
        self.tz = ZoneInfo(self.timezone_name)

    def local_now(self, now: datetime | None = None) -> datetime:
        """Current instant expressed in the business timezone."""
        now = now or datetime.now(UTC)
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        return now.astimezone(self.tz)

    def today(self, now: datetime | None = None) -> date:
        return self.local_now(now).date()

    def business_date(self, instant: datetime) -> date:
        """Calendar date of an instant in the business timezone."""
        return self.local_now(instant).date()

    def resolve(self, range_name: str, now: datetime | None = None) -> RangeSpec:
        """
        Resolve ``range_name`` against ``now`` (defaults to the current time).

        Raises:
            UnknownRange: If the name is not supported
        """
        if range_name not in RANGE_LABELS:
            raise UnknownRange(range_name)

        today = self.today(now)

        if range_name == "lastWeek":
            first_day, last_day = _last_week(today)
        elif range_name == "lastMonth":
            first_day, last_day = _last_month(today)
        else:
            first_day, last_day = _last_quarter(today)

        return RangeSpec(
            name=range_name,
            start=self._epoch(first_day, time.min),
            end=self._epoch(last_day, _DAY_END),
            label=RANGE_LABELS[range_name],
        )

    def _epoch(self, day: date, at: time) -> int:
        return int(datetime.combine(day, at, tzinfo=self.tz).timestamp())


def _last_week(today: date) -> tuple[date, date]:
    # Weeks run Sunday..Saturday; isoweekday() is 7 for Sunday
    days_since_sunday = today.isoweekday() % 7
    saturday = today - timedelta(days=days_since_sunday + 1)
    return saturday - timedelta(days=6), saturday


def _last_month(today: date) -> tuple[date, date]:
    last_day = today.replace(day=1) - timedelta(days=1)
    return last_day.replace(day=1), last_day


def _last_quarter(today: date) -> tuple[date, date]:
    current_quarter_start = date(today.year, 3 * ((today.month - 1) // 3) + 1, 1)
    last_day = current_quarter_start - timedelta(days=1)
    first_month = last_day.month - 2
    return date(last_day.year, first_month, 1), last_day
