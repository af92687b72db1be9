# sales_rollup/core/rollup.py
"""
Incremental weekly rollups.

Each applied report contributes one term to every aggregate cell it touches.
Cells are plain sums, so the aggregate for a (key, week) is independent of
the order reports arrive in, and a report can be removed again by
subtracting exactly the term it added.
"""
import logging
import threading
from collections import defaultdict
from typing import Dict, Hashable, Iterable, List, Optional, Tuple

from sales_rollup.core.reconciler import category_counts
from sales_rollup.core.types import Contribution, Granularity, Report, RollupSnapshot
from sales_rollup.exceptions import DuplicateReportError, NotFoundError, RollupError
from sales_rollup.utils.validation import validate_report

logger = logging.getLogger(__name__)

def build_contribution(report: Report, catalog) -> Contribution:
    """Compute what a report adds to the category, store and item aggregates.

    Pure function: validates and reconciles without touching any aggregate.

    Store totals come from raw line counts, not from reconciled facts, so they
    stay fixed even if an item later moves to another category.

    Raises:
        ValidationError, NegativeCountError, UnresolvableItemError, NotFoundError
    """
    validate_report(report)

    categories = category_counts(report, catalog)
    store_total = sum(line.count for line in report.lines)

    items = defaultdict(int)
    if report.granularity == Granularity.ITEM:
        for line in report.lines:
            items[line.target_id] += line.count

    return Contribution(
        report_id=report.report_id,
        store_id=report.store_id,
        week_id=report.week_id,
        granularity=report.granularity,
        category_totals=categories,
        store_total=store_total,
        item_totals=dict(items)
    )

def contribution_cells(contribution: Contribution) -> Dict[str, List[Tuple[Hashable, int]]]:
    """Flatten a contribution into (dimension id, amount) terms per aggregate, all in its week."""
    return {
        'category': list(contribution.category_totals.items()),
        'store': [(contribution.store_id, contribution.store_total)],
        'item': list(contribution.item_totals.items()),
    }


class Accumulator:
    """Sum per key with a count of contributing terms.

    A key disappears when its last term is subtracted, so removing a report
    restores the exact state that existed before it was added.
    """

    def __init__(self):
        self._totals: Dict[Hashable, int] = {}
        self._terms: Dict[Hashable, int] = {}

    def add(self, key: Hashable, amount: int) -> None:
        self._totals[key] = self._totals.get(key, 0) + amount
        self._terms[key] = self._terms.get(key, 0) + 1

    def subtract(self, key: Hashable, amount: int) -> None:
        terms = self._terms.get(key, 0) - 1
        if terms <= 0:
            self._totals.pop(key, None)
            self._terms.pop(key, None)
            return
        self._totals[key] -= amount
        self._terms[key] = terms

    def get(self, key: Hashable, default: int = 0) -> int:
        return self._totals.get(key, default)

    def items(self):
        return self._totals.items()

    def copy(self) -> Dict[Hashable, int]:
        return dict(self._totals)

    def __len__(self):
        return len(self._totals)


class RollupEngine:
    """Thread-safe in-memory rollup of category, store and item totals per week.

    Reconciliation (the catalog lookups) runs outside the lock; only the
    commit of a finished contribution is serialized, and it updates all three
    aggregates together so snapshot() never observes part of a report.

    Each aggregate holds one Accumulator per week, so a weekly query touches
    only the keys of that week.
    """

    def __init__(self, catalog, calendar):
        """Initialize the engine.

        Args:
            catalog: Catalog used to resolve item lines
            calendar: WeekCalendar of accepted weeks
        """
        self.catalog = catalog
        self.calendar = calendar
        self._lock = threading.RLock()
        self._aggregates: Dict[str, Dict[Hashable, Accumulator]] = {
            'category': {},
            'store': {},
            'item': {},
        }
        self._contributions: Dict[Hashable, Contribution] = {}
        self._applied_keys: Dict[Tuple[Hashable, Hashable], Hashable] = {}

    def _prepare(self, report: Report) -> Contribution:
        # Raises NotFoundError for a week the calendar has not accepted
        self.calendar.get_week(report.week_id)
        return build_contribution(report, self.catalog)

    def _commit(self, contribution: Contribution, sign: int) -> None:
        week_id = contribution.week_id
        for aggregate, terms in contribution_cells(contribution).items():
            weeks = self._aggregates[aggregate]
            accumulator = weeks.setdefault(week_id, Accumulator())
            for key, amount in terms:
                if sign > 0:
                    accumulator.add(key, amount)
                else:
                    accumulator.subtract(key, amount)
            if not accumulator:
                del weeks[week_id]

        key = (contribution.store_id, week_id)
        if sign > 0:
            self._contributions[contribution.report_id] = contribution
            self._applied_keys[key] = contribution.report_id
        else:
            del self._contributions[contribution.report_id]
            del self._applied_keys[key]

    def _check_not_applied(self, report: Report) -> None:
        if report.report_id in self._contributions:
            raise DuplicateReportError(
                f"Report {report.report_id} has already been applied",
                details={'report_id': report.report_id, 'store_id': report.store_id, 'week_id': report.week_id}
            )
        existing = self._applied_keys.get(report.key)
        if existing is not None:
            raise DuplicateReportError(
                f"Store {report.store_id} already has report {existing} applied for week {report.week_id}",
                details={'report_id': report.report_id, 'applied_report_id': existing,
                         'store_id': report.store_id, 'week_id': report.week_id}
            )

    def apply_report(self, report: Report) -> Contribution:
        """Add a report's contribution to all three aggregates.

        All or nothing: validation, reconciliation and duplicate checks happen
        before any aggregate cell is changed.

        Raises:
            DuplicateReportError: if the report, or another report for the same
                store and week, has already been applied
            UnresolvableItemError, NegativeCountError, ValidationError, NotFoundError
        """
        with self._lock:
            self._check_not_applied(report)

        contribution = self._prepare(report)

        with self._lock:
            # A concurrent writer may have applied the same (store, week) meanwhile
            self._check_not_applied(report)
            self._commit(contribution, 1)

        logger.debug(f"Applied report {report.report_id} for store {report.store_id}, week {report.week_id}")
        return contribution

    def supersede_report(self, report: Report) -> Contribution:
        """Replace the report applied for the same (store, week) with a corrected one.

        The prior contribution is subtracted and the new one added under a
        single lock acquisition. If the corrected report fails validation or
        reconciliation, the prior contribution stays in place.

        Raises:
            NotFoundError: if no report is applied for the store and week
            DuplicateReportError: if the corrected report id is already applied
        """
        contribution = self._prepare(report)

        with self._lock:
            prior_id = self._applied_keys.get(report.key)
            if prior_id is None:
                raise NotFoundError(
                    f"No applied report to supersede for store {report.store_id}, week {report.week_id}",
                    details={'store_id': report.store_id, 'week_id': report.week_id,
                             'report_id': report.report_id}
                )
            if report.report_id in self._contributions and report.report_id != prior_id:
                raise DuplicateReportError(
                    f"Report {report.report_id} has already been applied",
                    details={'report_id': report.report_id, 'store_id': report.store_id, 'week_id': report.week_id}
                )
            self._commit(self._contributions[prior_id], -1)
            self._commit(contribution, 1)

        logger.info(f"Report {prior_id} superseded by {report.report_id} "
                    f"for store {report.store_id}, week {report.week_id}")
        return contribution

    def retract_report(self, report_id: Hashable) -> Contribution:
        """Subtract an applied report's contribution.

        Raises:
            NotFoundError: if the report is not applied
        """
        with self._lock:
            contribution = self._contributions.get(report_id)
            if contribution is None:
                raise NotFoundError(f"Report {report_id} is not applied", details={'report_id': report_id})
            self._commit(contribution, -1)

        logger.info(f"Retracted report {report_id}")
        return contribution

    def apply_reports(self, reports: Iterable[Report]) -> Dict:
        """Apply several reports, collecting failures instead of stopping.

        Returns:
            Dictionary with applied count and per-report errors
        """
        results = {'applied': 0, 'failed': 0, 'errors': []}
        for report in reports:
            try:
                self.apply_report(report)
                results['applied'] += 1
            except RollupError as e:
                results['failed'] += 1
                results['errors'].append({'report_id': report.report_id, **e.to_dict()})
        return results

    def contribution_for(self, report_id: Hashable) -> Optional[Contribution]:
        return self._contributions.get(report_id)

    def applied_report_for(self, store_id: Hashable, week_id: Hashable) -> Optional[Hashable]:
        return self._applied_keys.get((store_id, week_id))

    def _week_totals(self, aggregate: str, week_id: Hashable) -> Dict[Hashable, int]:
        with self._lock:
            accumulator = self._aggregates[aggregate].get(week_id)
            return accumulator.copy() if accumulator is not None else {}

    def _copy_weeks(self, aggregate: str, week_ids: Optional[Iterable[Hashable]]) -> Dict:
        weeks = self._aggregates[aggregate]
        if week_ids is None:
            week_ids = list(weeks)
        return {week_id: weeks[week_id].copy() for week_id in week_ids if week_id in weeks}

    def combined_category_week_total(self, week_id: Hashable) -> Dict[Hashable, int]:
        """Category totals for a week across both report granularities.

        Item-level reports were reconciled when applied, so no union is needed here.
        """
        return self._week_totals('category', week_id)

    def store_week_total(self, week_id: Hashable) -> Dict[Hashable, int]:
        return self._week_totals('store', week_id)

    def item_week_total(self, week_id: Hashable) -> Dict[Hashable, int]:
        return self._week_totals('item', week_id)

    def snapshot(self, week_id: Optional[Hashable] = None) -> RollupSnapshot:
        """Consistent copy of the aggregates for the analytics functions.

        Args:
            week_id: Optional week to report on. Only that week's store and
                item totals are copied, plus the category totals of weeks
                starting on or before it. Everything is copied when omitted.

        Raises:
            NotFoundError: for a week the calendar has not accepted
        """
        category_weeks = other_weeks = None
        if week_id is not None:
            category_weeks = self.calendar.weeks_through(week_id)
            other_weeks = [week_id]

        with self._lock:
            return RollupSnapshot(
                category_week_totals=self._copy_weeks('category', category_weeks),
                store_week_totals=self._copy_weeks('store', other_weeks),
                item_week_totals=self._copy_weeks('item', other_weeks),
                week_start_dates=self.calendar.start_dates()
            )
