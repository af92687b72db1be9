# sales_rollup/utils/date_utils.py
import threading
from datetime import date, datetime
from typing import Dict, Hashable, List, Optional, Tuple, Union

from sales_rollup.core.types import Week
from sales_rollup.exceptions import InvalidWeekError, NotFoundError

def convert_to_date(value: Union[date, datetime, str]) -> date:
    """Convert a date, datetime or 'YYYY-MM-DD' string to a date.

    Args:
        value: Value to convert

    Returns:
        Date object
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return datetime.strptime(value, '%Y-%m-%d').date()
    raise ValueError(f"Cannot convert {value!r} to a date")

def validate_week_range(start_date: date, end_date: date, week_id: Optional[Hashable] = None) -> None:
    """Reject a week whose end date is not after its start date.

    Raises:
        InvalidWeekError
    """
    if end_date <= start_date:
        raise InvalidWeekError(
            f"Week end date {end_date} must be after start date {start_date}",
            details={'week_id': week_id, 'start_date': str(start_date), 'end_date': str(end_date)}
        )

def parse_week_range(start_date, end_date, week_id: Optional[Hashable] = None) -> Tuple[date, date]:
    """Convert and validate the start and end dates of a week.

    Raises:
        InvalidWeekError: for a date that cannot be parsed or an empty range
    """
    try:
        start, end = convert_to_date(start_date), convert_to_date(end_date)
    except ValueError as e:
        raise InvalidWeekError(
            f"Invalid week date: {e}",
            details={'week_id': week_id, 'start_date': str(start_date), 'end_date': str(end_date)}
        ) from e

    validate_week_range(start, end, week_id)
    return start, end

def weeks_overlap(first: Week, second: Week) -> bool:
    """Weeks are half-open ranges [start, end), so adjacent weeks may share a boundary date."""
    return first.start_date < second.end_date and second.start_date < first.end_date


class WeekCalendar:
    """Accepted reporting weeks, keyed by week id."""

    def __init__(self, weeks: Optional[List[Week]] = None):
        self._weeks: Dict[Hashable, Week] = {}
        self._lock = threading.Lock()
        for week in weeks or []:
            self.accept_week(week.week_id, week.start_date, week.end_date)

    def accept_week(self, week_id: Hashable, start_date, end_date) -> Week:
        """Accept a week after validating its range against every known week.

        Raises:
            InvalidWeekError: if the range is empty or overlaps an accepted week
        """
        week = Week(week_id, *parse_week_range(start_date, end_date, week_id))

        with self._lock:
            if week_id in self._weeks:
                raise InvalidWeekError(f"Week {week_id} already accepted", details={'week_id': week_id})
            for other in self._weeks.values():
                if weeks_overlap(week, other):
                    raise InvalidWeekError(
                        f"Week {week_id} overlaps week {other.week_id}",
                        details={'week_id': week_id, 'overlaps': other.week_id}
                    )
            weeks = dict(self._weeks)
            weeks[week_id] = week
            self._weeks = weeks

        return week

    def get_week(self, week_id: Hashable) -> Week:
        week = self._weeks.get(week_id)
        if week is None:
            raise NotFoundError(f"Week {week_id} not found", details={'week_id': week_id})
        return week

    def __contains__(self, week_id) -> bool:
        return week_id in self._weeks

    def start_dates(self) -> Dict[Hashable, date]:
        return {week_id: week.start_date for week_id, week in self._weeks.items()}

    def weeks_through(self, week_id: Hashable) -> List[Hashable]:
        """Ids of every accepted week starting on or before the given week, oldest first."""
        cutoff = self.get_week(week_id).start_date
        weeks = [w for w in self._weeks.values() if w.start_date <= cutoff]
        return [w.week_id for w in sorted(weeks, key=lambda w: w.start_date)]
