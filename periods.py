from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Sequence
from zoneinfo import ZoneInfo


@dataclass(frozen=True)
class Period:
    year: int
    month: int
    start: date
    end: date

    @property
    def label(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


def month_period(year: int, month: int) -> Period:
    first = date(year, month, 1)
    if month == 12:
        return Period(year, month, first, first.replace(day=31))
    next_month = first.replace(month=month + 1)
    return Period(year, month, first, next_month - date.resolution)


def local_today(timezone: str) -> date:
    return datetime.now(ZoneInfo(timezone)).date()


def _to_int(value: Optional[str]) -> Optional[int]:
    if value is None or value.strip() == "":
        return None
    try:
        return int(value)
    except ValueError:
        return None


def resolve_month(
    year: Optional[str],
    month: Optional[str],
    *,
    today: date,
    available_years: Optional[Sequence[int]] = None,
) -> Period:
    """Turn raw ``year``/``month`` query values into a month period.

    Missing or malformed values fall back to the current month. When
    ``available_years`` is given, a year outside it also falls back to the
    current year.
    """
    year_value = _to_int(year)
    month_value = _to_int(month)
    if year_value is None or not 1 <= year_value <= 9999:
        year_value = today.year
    if available_years is not None and year_value not in available_years:
        year_value = today.year
    if month_value is None or not 1 <= month_value <= 12:
        month_value = today.month
    return month_period(year_value, month_value)
