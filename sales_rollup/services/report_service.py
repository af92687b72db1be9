# sales_rollup/services/report_service.py
import logging
from typing import Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from sales_rollup.core.types import Granularity, Report, ReportLine
from sales_rollup.exceptions import NotFoundError, ValidationError
from sales_rollup.models import (
    Category, Item, SalesReport, SalesReportByCategory, SalesReportByItem, Store, WeekMetadata
)
from sales_rollup.utils.validation import coerce_granularity, validate_line_counts

logger = logging.getLogger(__name__)

LineInput = Union[Dict[str, int], Iterable[Tuple[str, int]]]

class ReportService:
    """Service for storing submitted weekly reports.

    This is the ingestion boundary: negative counts and unknown references
    are rejected here and never reach the rollups.
    """

    def __init__(self, session: Session):
        """Initialize the report service.

        Args:
            session: Database session
        """
        self.session = session

    def submit_report(
        self,
        store_id: str,
        week_id: str,
        granularity=None,
        lines: Optional[LineInput] = None,
        report_id: Optional[str] = None
    ) -> SalesReport:
        """Store a finalized report and its lines.

        Args:
            store_id: Reporting store
            week_id: Reporting week
            granularity: Granularity, 'category' or 'item'; may be omitted when there are no lines
            lines: Mapping or sequence of (category or item id, count)
            report_id: Optional explicit report id

        Returns:
            The stored SalesReport

        Raises:
            NotFoundError: for an unknown store, week, category or item
            NegativeCountError: for a negative count
        """
        granularity = coerce_granularity(granularity)
        pairs = list(lines.items()) if isinstance(lines, dict) else list(lines or [])
        report_lines = [ReportLine(target_id, count) for target_id, count in pairs]

        if report_lines and granularity is None:
            raise ValidationError(
                "Granularity is required for a report with lines",
                details={'store_id': store_id, 'week_id': week_id}
            )
        validate_line_counts(report_lines, store_id, week_id)

        if self.session.query(Store.id).filter(Store.id == store_id).first() is None:
            raise NotFoundError(f"Store {store_id} not found", details={'store_id': store_id, 'week_id': week_id})
        if self.session.query(WeekMetadata.id).filter(WeekMetadata.id == week_id).first() is None:
            raise NotFoundError(f"Week {week_id} not found", details={'store_id': store_id, 'week_id': week_id})

        self._check_targets(granularity, report_lines, store_id, week_id)

        report = SalesReport(store_id=store_id, week_id=week_id, granularity=granularity)
        if report_id is not None:
            report.id = report_id

        if granularity == Granularity.CATEGORY:
            report.category_lines = [
                SalesReportByCategory(category_id=line.target_id, number_of_sales=line.count)
                for line in report_lines
            ]
        elif granularity == Granularity.ITEM:
            report.item_lines = [
                SalesReportByItem(item_id=line.target_id, number_of_sales=line.count)
                for line in report_lines
            ]

        self.session.add(report)
        self.session.flush()

        logger.info(f"Stored report {report.id} for store {store_id}, week {week_id} "
                    f"({granularity}, {len(report_lines)} lines)")
        return report

    def _check_targets(self, granularity, report_lines: List[ReportLine], store_id, week_id) -> None:
        if not report_lines:
            return

        model = Category if granularity == Granularity.CATEGORY else Item
        target_ids = {line.target_id for line in report_lines}
        known = {row.id for row in self.session.query(model.id).filter(model.id.in_(target_ids)).all()}
        missing = sorted(target_ids - known)
        if missing:
            kind = 'category' if model is Category else 'item'
            raise NotFoundError(
                f"Unknown {kind} ids in report: {', '.join(missing)}",
                details={'store_id': store_id, 'week_id': week_id, f'{kind}_ids': missing}
            )

    def get_report(self, report_id: str) -> SalesReport:
        report = self.session.query(SalesReport).filter(SalesReport.id == report_id).first()
        if report is None:
            raise NotFoundError(f"Report {report_id} not found", details={'report_id': report_id})
        return report

    def get_pending_reports(self, week_id: Optional[str] = None) -> List[SalesReport]:
        """Reports never applied, superseded or retracted, oldest first."""
        query = self.session.query(SalesReport).filter(
            SalesReport.applied_at.is_(None),
            SalesReport.retracted_at.is_(None),
            SalesReport.superseded_by_id.is_(None)
        )
        if week_id:
            query = query.filter(SalesReport.week_id == week_id)
        return query.order_by(SalesReport.created_at, SalesReport.id).all()

    def get_applied_report(self, store_id: str, week_id: str) -> Optional[SalesReport]:
        return self.session.query(SalesReport).filter(
            SalesReport.store_id == store_id,
            SalesReport.week_id == week_id,
            SalesReport.applied_at.isnot(None),
            SalesReport.superseded_by_id.is_(None),
            SalesReport.retracted_at.is_(None)
        ).first()

    @staticmethod
    def to_report(sales_report: SalesReport) -> Report:
        """Convert a stored report into the value the rollup engine consumes."""
        if sales_report.granularity == Granularity.CATEGORY:
            lines = tuple(ReportLine(l.category_id, l.number_of_sales) for l in sales_report.category_lines)
        elif sales_report.granularity == Granularity.ITEM:
            lines = tuple(ReportLine(l.item_id, l.number_of_sales) for l in sales_report.item_lines)
        else:
            lines = ()

        return Report(
            report_id=sales_report.id,
            store_id=sales_report.store_id,
            week_id=sales_report.week_id,
            granularity=sales_report.granularity,
            lines=lines
        )
