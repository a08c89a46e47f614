import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from money import days_in_month, month_end

ROLLING_WINDOWS = (15, 30, 60)

_ROLLING = re.compile(r"^(?:last_)?(\d+)d?$")
_MONTH = re.compile(r"^(\d{4})-(\d{2})$")


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date
    # Divisor for the daily expense rate.
    elapsed_days: int
    is_rolling: bool = False

    def contains(self, d: Optional[date]) -> bool:
        return d is not None and self.start <= d <= self.end


def resolve_period(selector: Optional[str], *, today: Optional[date] = None) -> Period:
    """Resolve ``"15d"``/``"30d"``/``"60d"`` or ``"YYYY-MM"`` into a window.

    No selector means the current calendar month.
    """
    today = today or local_today()
    raw = (selector or "").strip().lower()
    if not raw:
        raw = f"{today.year:04d}-{today.month:02d}"

    month_match = _MONTH.match(raw)
    if month_match:
        year, month = int(month_match.group(1)), int(month_match.group(2))
        if not 1 <= month <= 12:
            raise ValueError(f"Invalid month: {selector}")
        start = date(year, month, 1)
        end = month_end(start)
        if year == today.year and month == today.month:
            elapsed = today.day
        else:
            elapsed = days_in_month(year, month)
        return Period(raw, start, end, elapsed)

    rolling_match = _ROLLING.match(raw)
    if rolling_match:
        days = int(rolling_match.group(1))
        if days not in ROLLING_WINDOWS:
            raise ValueError(
                f"Rolling window must be one of {', '.join(map(str, ROLLING_WINDOWS))} days"
            )
        start = today - timedelta(days=days - 1)
        return Period(f"{days}d", start, today, days, is_rolling=True)

    raise ValueError(f"Unknown period: {selector}")
