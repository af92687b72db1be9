from typing import Iterable, Optional

from sales_rollup.core.types import Granularity, Report, ReportLine
from sales_rollup.exceptions import NegativeCountError, ValidationError

def coerce_granularity(value) -> Optional[Granularity]:
    """Accept a Granularity, its string value, or None."""
    if value is None or isinstance(value, Granularity):
        return value
    try:
        return Granularity(str(value).lower())
    except ValueError:
        raise ValidationError(
            f"Invalid granularity: {value}. Valid values are: category, item",
            details={'granularity': value}
        )

def validate_line_counts(lines: Iterable[ReportLine], store_id=None, week_id=None) -> None:
    """Reject any line with a negative or non-integer count.

    Raises:
        NegativeCountError, ValidationError
    """
    for line in lines:
        if isinstance(line.count, bool) or not isinstance(line.count, int):
            raise ValidationError(
                f"Sales count for {line.target_id} must be an integer",
                details={'store_id': store_id, 'week_id': week_id, 'target_id': line.target_id}
            )
        if line.count < 0:
            raise NegativeCountError(
                f"Negative sales count {line.count} for {line.target_id}",
                details={'store_id': store_id, 'week_id': week_id, 'target_id': line.target_id,
                         'count': line.count}
            )

def validate_report(report: Report) -> None:
    """Validate a finalized report before it reaches the rollup engine.

    Args:
        report: Report to validate

    Raises:
        NegativeCountError: for a negative line count
        ValidationError: for missing identifiers or a report with lines but no granularity
    """
    errors = {}

    if report.report_id is None:
        errors['report_id'] = 'Report ID is required'

    if report.store_id is None:
        errors['store_id'] = 'Store ID is required'

    if report.week_id is None:
        errors['week_id'] = 'Week ID is required'

    if report.lines and report.granularity is None:
        errors['granularity'] = 'Granularity is required for a report with lines'

    if errors:
        raise ValidationError(
            "Invalid report",
            details={'report_id': report.report_id, 'store_id': report.store_id,
                     'week_id': report.week_id, 'errors': errors}
        )

    validate_line_counts(report.lines, report.store_id, report.week_id)
