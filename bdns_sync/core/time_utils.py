"""
Timezone utilities for sync scheduling and date ranges.
BDNS dates are Spanish local dates (Europe/Madrid); run timestamps are UTC.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
import zoneinfo

from bdns_sync.core.domain_models import SyncType
from bdns_sync.core.utils import format_bdns_date

# Canonical timezone for registry dates
TZ_MADRID = zoneinfo.ZoneInfo("Europe/Madrid")

# First year with records in the registry
REGISTRY_START = date(2008, 1, 1)

INCREMENTAL_DAYS_BACK = 7


def now_utc() -> datetime:
    """Current timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def today_madrid() -> date:
    """Current date in Madrid local time."""
    return datetime.now(TZ_MADRID).date()


def parse_timestamp(value):
    """
    Parse an ISO timestamp written by this package.

    Naive values are assumed to be UTC.
    """
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class DateRange:
    """Inclusive registration date range for a BDNS query."""
    start: date
    end: date

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError(f"Invalid date range: {self.start} > {self.end}")

    @property
    def desde(self) -> str:
        return format_bdns_date(self.start)

    @property
    def hasta(self) -> str:
        return format_bdns_date(self.end)

    @classmethod
    def current_year(cls, today: date = None) -> "DateRange":
        """Default full-year range for callers that do not supply one."""
        today = today or today_madrid()
        return cls(date(today.year, 1, 1), date(today.year, 12, 31))


def date_range_for(sync_type: SyncType, today: date = None) -> DateRange:
    """
    Determine the date range a sync type covers.

    - incremental: the last 7 days up to yesterday
    - full: the current calendar year
    - complete: every year since the registry started, through next year

    Args:
        sync_type: Kind of sync run
        today: Reference date (defaults to today in Madrid)

    Returns:
        DateRange
    """
    today = today or today_madrid()

    if sync_type == SyncType.COMPLETE:
        return DateRange(REGISTRY_START, date(today.year + 1, 12, 31))
    if sync_type == SyncType.FULL:
        return DateRange.current_year(today)
    return DateRange(
        today - timedelta(days=INCREMENTAL_DAYS_BACK),
        today - timedelta(days=1),
    )
