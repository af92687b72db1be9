# sales_rollup/services/rollup_service.py
import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sales_rollup.core.reconciler import category_counts
from sales_rollup.core.rollup import build_contribution
from sales_rollup.core.types import Contribution, Granularity, RollupSnapshot
from sales_rollup.exceptions import (
    DuplicateReportError, NotFoundError, RollupError, ValidationError
)
from sales_rollup.models import (
    AGGREGATE_TABLES, ContributionDimension, ReportContribution, SalesReport, WeekMetadata
)
from sales_rollup.services.catalog_service import CatalogService
from sales_rollup.services.report_service import ReportService

logger = logging.getLogger(__name__)

class RollupService:
    """Database-backed rollup maintenance.

    Every applied report writes its terms to the report_contribution ledger
    and adds them to the category, store and item week totals in the same
    transaction. The ledger is what makes a correction exact: superseding a
    report subtracts precisely the rows it wrote.
    """

    def __init__(self, session: Session, catalog=None):
        """Initialize the rollup service.

        Args:
            session: Database session
            catalog: Optional catalog to reconcile against; defaults to the database catalog
        """
        self.session = session
        self.catalog = catalog if catalog is not None else CatalogService(session)
        self.report_service = ReportService(session)

    def check_applicable(self, sales_report: SalesReport) -> None:
        details = {'report_id': sales_report.id, 'store_id': sales_report.store_id,
                   'week_id': sales_report.week_id}

        if sales_report.superseded_by_id is not None:
            raise DuplicateReportError(
                f"Report {sales_report.id} was superseded by {sales_report.superseded_by_id}",
                details=details
            )
        if sales_report.retracted_at is not None:
            raise DuplicateReportError(f"Report {sales_report.id} was retracted", details=details)
        if sales_report.applied_at is not None:
            raise DuplicateReportError(f"Report {sales_report.id} has already been applied", details=details)

        existing = self.report_service.get_applied_report(sales_report.store_id, sales_report.week_id)
        if existing is not None:
            raise DuplicateReportError(
                f"Store {sales_report.store_id} already has report {existing.id} "
                f"applied for week {sales_report.week_id}",
                details={**details, 'applied_report_id': existing.id}
            )

    def apply_report(self, report_id: str) -> Contribution:
        """Reconcile a stored report and add it to the aggregates.

        Nothing is written unless validation, duplicate checks and
        reconciliation all succeed.

        Raises:
            NotFoundError, DuplicateReportError, UnresolvableItemError
        """
        sales_report = self.report_service.get_report(report_id)
        self.check_applicable(sales_report)

        contribution = build_contribution(ReportService.to_report(sales_report), self.catalog)
        self.record_contribution(sales_report, contribution)
        return contribution

    def record_contribution(self, sales_report: SalesReport, contribution: Contribution) -> None:
        """Write a precomputed contribution to the ledger and the aggregate tables.

        The report is marked applied first, so a concurrent writer that already
        applied a report for the same store and week fails here.

        Raises:
            DuplicateReportError: if another report is active for the store and week
        """
        sales_report.applied_at = datetime.now()
        try:
            self.session.flush()
        except IntegrityError as e:
            raise DuplicateReportError(
                f"Store {sales_report.store_id} already has a report applied for week {sales_report.week_id}",
                details={'report_id': sales_report.id, 'store_id': sales_report.store_id,
                         'week_id': sales_report.week_id}
            ) from e

        for dimension, dimension_id, sales in self._ledger_terms(contribution):
            self.session.add(ReportContribution(
                report_id=sales_report.id,
                dimension=dimension,
                dimension_id=dimension_id,
                week_id=contribution.week_id,
                sales=sales
            ))
            self._adjust(dimension, dimension_id, contribution.week_id, sales, 1)

        self.session.flush()

        logger.debug(f"Recorded contribution of report {sales_report.id}")

    def supersede_report(self, prior_report_id: str, new_report_id: str) -> Contribution:
        """Replace an applied report with a corrected one for the same store and week.

        The corrected report is reconciled first; if that fails the prior
        report stays applied.

        Raises:
            NotFoundError: if the prior report is not currently applied
            ValidationError: if the reports cover different stores or weeks
            DuplicateReportError: if the corrected report was already applied
        """
        prior = self.report_service.get_report(prior_report_id)
        new = self.report_service.get_report(new_report_id)

        if not prior.is_applied:
            raise NotFoundError(
                f"Report {prior_report_id} is not applied",
                details={'report_id': prior_report_id, 'store_id': prior.store_id, 'week_id': prior.week_id}
            )
        if (prior.store_id, prior.week_id) != (new.store_id, new.week_id):
            raise ValidationError(
                f"Report {new_report_id} does not cover the same store and week as {prior_report_id}",
                details={'report_id': new_report_id, 'store_id': new.store_id, 'week_id': new.week_id,
                         'prior_store_id': prior.store_id, 'prior_week_id': prior.week_id}
            )
        if new.applied_at is not None or new.superseded_by_id is not None:
            raise DuplicateReportError(
                f"Report {new_report_id} has already been applied",
                details={'report_id': new_report_id, 'store_id': new.store_id, 'week_id': new.week_id}
            )

        contribution = build_contribution(ReportService.to_report(new), self.catalog)

        self._subtract_ledger(prior)
        prior.superseded_by_id = new.id
        self.session.flush()
        self.record_contribution(new, contribution)

        logger.info(f"Report {prior_report_id} superseded by {new_report_id}")
        return contribution

    def retract_report(self, report_id: str) -> None:
        """Remove an applied report's contribution and its ledger rows.

        The report is marked retracted and is never picked up for applying again.
        """
        sales_report = self.report_service.get_report(report_id)
        if not sales_report.is_applied:
            raise NotFoundError(f"Report {report_id} is not applied", details={'report_id': report_id})

        self._subtract_ledger(sales_report)
        self.session.query(ReportContribution).filter(
            ReportContribution.report_id == report_id
        ).delete(synchronize_session=False)
        sales_report.retracted_at = datetime.now()
        self.session.flush()

        logger.info(f"Retracted report {report_id}")

    def rebuild_aggregates(self) -> Dict:
        """Recompute all three aggregates from the ledger of active reports.

        Returns:
            Dictionary with the number of rows written per aggregate
        """
        for model, _ in AGGREGATE_TABLES.values():
            self.session.query(model).delete(synchronize_session='fetch')
        self.session.flush()

        terms = self.session.query(ReportContribution).join(
            SalesReport, SalesReport.id == ReportContribution.report_id
        ).filter(
            SalesReport.applied_at.isnot(None),
            SalesReport.superseded_by_id.is_(None),
            SalesReport.retracted_at.is_(None)
        ).all()

        sums = defaultdict(lambda: [0, 0])
        for term in terms:
            cell = sums[(term.dimension, term.dimension_id, term.week_id)]
            cell[0] += term.sales
            cell[1] += 1

        results = {dimension.value: 0 for dimension in ContributionDimension}
        for (dimension, dimension_id, week_id), (total, count) in sums.items():
            model, key_column = AGGREGATE_TABLES[dimension]
            self.session.add(model(**{key_column: dimension_id, 'week_id': week_id,
                                      'total_sales': total, 'report_count': count}))
            results[dimension.value] += 1

        self.session.flush()
        logger.info(f"Rebuilt aggregates from {len(terms)} ledger rows: {results}")
        return results

    def load_snapshot(self, week_id: Optional[str] = None) -> RollupSnapshot:
        """Read the aggregate tables into a RollupSnapshot for the analytics functions.

        Args:
            week_id: Optional week to report on. Only that week's store and item
                rows are read, plus category rows for weeks starting on or
                before it. Every row is read when omitted.
        """
        snapshot = RollupSnapshot()
        for week in self.session.query(WeekMetadata).all():
            snapshot.week_start_dates[week.id] = week.start_date

        targets = {
            ContributionDimension.CATEGORY: snapshot.category_week_totals,
            ContributionDimension.STORE: snapshot.store_week_totals,
            ContributionDimension.ITEM: snapshot.item_week_totals,
        }
        cutoff = snapshot.week_start_dates.get(week_id)
        for dimension, (model, key_column) in AGGREGATE_TABLES.items():
            query = self.session.query(model)
            if week_id is not None:
                if dimension == ContributionDimension.CATEGORY and cutoff is not None:
                    # All-time highs need every earlier week of category totals
                    query = query.join(WeekMetadata, WeekMetadata.id == model.week_id).filter(
                        WeekMetadata.start_date <= cutoff
                    )
                else:
                    query = query.filter(model.week_id == week_id)

            for row in query.all():
                targets[dimension].setdefault(row.week_id, {})[getattr(row, key_column)] = row.total_sales

        return snapshot

    def detect_mapping_drift(self, week_id: Optional[str] = None) -> List[Dict]:
        """Find applied item-level reports whose category split no longer matches the catalog.

        Store totals are taken from raw line counts, so moving an item to
        another category after a report was applied leaves category totals and
        store totals describing different mappings.

        Returns:
            One dictionary per drifted report with the applied and current category counts
        """
        query = self.session.query(SalesReport).filter(
            SalesReport.granularity == Granularity.ITEM,
            SalesReport.applied_at.isnot(None),
            SalesReport.superseded_by_id.is_(None),
            SalesReport.retracted_at.is_(None)
        )
        if week_id:
            query = query.filter(SalesReport.week_id == week_id)

        drifted = []
        for sales_report in query.all():
            applied = {
                term.dimension_id: term.sales
                for term in self.session.query(ReportContribution).filter(
                    ReportContribution.report_id == sales_report.id,
                    ReportContribution.dimension == ContributionDimension.CATEGORY
                ).all()
            }
            entry = {'report_id': sales_report.id, 'store_id': sales_report.store_id,
                     'week_id': sales_report.week_id, 'applied': applied}
            try:
                current = category_counts(ReportService.to_report(sales_report), self.catalog)
            except RollupError as e:
                drifted.append({**entry, 'current': None, 'error': e.to_dict()})
                continue
            if current != applied:
                drifted.append({**entry, 'current': current})

        if drifted:
            logger.warning(f"{len(drifted)} applied reports no longer match the current item-to-category mapping")
        return drifted

    def _ledger_terms(self, contribution: Contribution):
        for category_id, sales in contribution.category_totals.items():
            yield ContributionDimension.CATEGORY, category_id, sales
        yield ContributionDimension.STORE, contribution.store_id, contribution.store_total
        for item_id, sales in contribution.item_totals.items():
            yield ContributionDimension.ITEM, item_id, sales

    def _subtract_ledger(self, sales_report: SalesReport) -> None:
        terms = self.session.query(ReportContribution).filter(
            ReportContribution.report_id == sales_report.id
        ).all()
        for term in terms:
            self._adjust(term.dimension, term.dimension_id, term.week_id, term.sales, -1)

    def _adjust(self, dimension: ContributionDimension, dimension_id: str, week_id: str,
                sales: int, sign: int) -> None:
        model, key_column = AGGREGATE_TABLES[dimension]
        cell = self.session.query(model).filter(
            getattr(model, key_column) == dimension_id,
            model.week_id == week_id
        )

        # Added in SQL so concurrent writers to one cell never lose an update
        updated = cell.update({
            model.total_sales: model.total_sales + sign * sales,
            model.report_count: model.report_count + sign
        }, synchronize_session='fetch')

        if sign > 0:
            if not updated:
                self.session.add(model(**{key_column: dimension_id, 'week_id': week_id,
                                          'total_sales': sales, 'report_count': 1}))
            return

        if not updated:
            logger.error(f"Missing {dimension.value} aggregate row for {dimension_id}, week {week_id}")
            return
        cell.filter(model.report_count <= 0).delete(synchronize_session='fetch')
