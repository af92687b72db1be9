# sales_rollup/core/reconciler.py
import logging
from collections import defaultdict
from typing import Dict, Hashable, List

from sales_rollup.core.types import CategoryFact, Granularity, Report
from sales_rollup.exceptions import NotFoundError, UnresolvableItemError, ValidationError

logger = logging.getLogger(__name__)

def category_counts(report: Report, catalog) -> Dict[Hashable, int]:
    """Sum a report's lines per category, resolving items through the catalog.

    Args:
        report: Finalized report
        catalog: Object exposing resolve_category() and category_exists()

    Returns:
        Dictionary of category id to units sold

    Raises:
        UnresolvableItemError: if any item line has no category; nothing is returned
        NotFoundError: if a category line names an unknown category
    """
    counts = defaultdict(int)

    if report.is_empty:
        return {}

    if report.granularity == Granularity.CATEGORY:
        for line in report.lines:
            if not catalog.category_exists(line.target_id):
                raise NotFoundError(
                    f"Category {line.target_id} not found",
                    details={'report_id': report.report_id, 'store_id': report.store_id,
                             'week_id': report.week_id, 'category_id': line.target_id}
                )
            counts[line.target_id] += line.count

    elif report.granularity == Granularity.ITEM:
        for line in report.lines:
            try:
                category_id = catalog.resolve_category(line.target_id)
            except NotFoundError:
                raise UnresolvableItemError(
                    f"Item {line.target_id} in report {report.report_id} has no category",
                    details={'report_id': report.report_id, 'store_id': report.store_id,
                             'week_id': report.week_id, 'item_id': line.target_id}
                )
            counts[category_id] += line.count

    else:
        raise ValidationError(
            f"Report {report.report_id} has lines but no granularity",
            details={'report_id': report.report_id, 'store_id': report.store_id, 'week_id': report.week_id}
        )

    return dict(counts)

def reconcile(report: Report, catalog) -> List[CategoryFact]:
    """Convert a report of either granularity into category-level facts.

    A report with no lines yields no facts: zero activity, not a missing report.

    Args:
        report: Finalized report
        catalog: Object exposing resolve_category() and category_exists()

    Returns:
        One CategoryFact per category, ordered by category id
    """
    counts = category_counts(report, catalog)
    facts = [
        CategoryFact(category_id, report.week_id, count)
        for category_id, count in sorted(counts.items(), key=lambda kv: kv[0])
    ]

    logger.debug(
        f"Reconciled report {report.report_id} ({report.granularity}) "
        f"into {len(facts)} category facts"
    )
    return facts
