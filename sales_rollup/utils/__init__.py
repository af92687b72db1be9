from .date_utils import WeekCalendar, convert_to_date, parse_week_range, validate_week_range, weeks_overlap
from .validation import validate_report, validate_line_counts, coerce_granularity

__all__ = [
    'WeekCalendar',
    'convert_to_date',
    'parse_week_range',
    'validate_week_range',
    'weeks_overlap',
    'validate_report',
    'validate_line_counts',
    'coerce_granularity'
]
