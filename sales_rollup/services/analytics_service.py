# sales_rollup/services/analytics_service.py
import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from sales_rollup.config import config
from sales_rollup.core import analytics
from sales_rollup.core.types import RollupSnapshot
from sales_rollup.exceptions import ReportingError
from sales_rollup.services.catalog_service import CatalogService
from sales_rollup.services.rollup_service import RollupService

logger = logging.getLogger(__name__)

class AnalyticsService:
    """Service for the weekly analytical reports.

    Loads a snapshot of the aggregate rows each queried week needs and runs
    the pure analytics functions against it, adding display names to each row.
    Snapshots are cached per week until refresh().
    """

    def __init__(self, session: Session, snapshot: Optional[RollupSnapshot] = None):
        """Initialize the analytics service.

        Args:
            session: Database session
            snapshot: Optional snapshot to report on instead of loading one
        """
        self.session = session
        self.catalog_service = CatalogService(session)
        self._snapshot = snapshot
        self._week_snapshots: Dict[str, RollupSnapshot] = {}

    def snapshot_for(self, week_id: str) -> RollupSnapshot:
        if self._snapshot is not None:
            return self._snapshot
        if week_id not in self._week_snapshots:
            self._week_snapshots[week_id] = RollupService(self.session).load_snapshot(week_id)
        return self._week_snapshots[week_id]

    def refresh(self) -> None:
        """Drop cached snapshots so the next query reads current aggregates."""
        self._snapshot = None
        self._week_snapshots = {}

    def top_categories(self, week_id: str, n: Optional[int] = None) -> List[Dict]:
        """Best selling categories for a week.

        Args:
            week_id: Week to rank
            n: Ranking size; defaults to ANALYTICS.top_n

        Returns:
            List of dictionaries with rank, category and total sales
        """
        if n is None:
            n = config.analytics_config['top_n']
        names = self.catalog_service.category_names()
        return [
            {
                'rank': row.rank,
                'category_id': row.category_id,
                'category_name': names.get(row.category_id),
                'total_sales': row.total
            }
            for row in analytics.top_categories(self.snapshot_for(week_id), week_id, n)
        ]

    def top_items(self, week_id: str, n: Optional[int] = None) -> List[Dict]:
        if n is None:
            n = config.analytics_config['top_n']
        names = self.catalog_service.item_names()
        return [
            {'rank': row.rank, 'item_id': row.item_id, 'item_name': names.get(row.item_id), 'total_sales': row.total}
            for row in analytics.top_items(self.snapshot_for(week_id), week_id, n)
        ]

    def outlier_stores(self, week_id: str, k_threshold: Optional[float] = None) -> List[Dict]:
        """Stores whose weekly total is more than k standard deviations from the mean.

        Args:
            week_id: Week to examine
            k_threshold: Defaults to ANALYTICS.outlier_threshold

        Returns:
            List of dictionaries with store, z-score and outlier type
        """
        if k_threshold is None:
            k_threshold = config.analytics_config['outlier_threshold']
        names = self.catalog_service.store_names()
        snapshot = self.snapshot_for(week_id)
        store_totals = snapshot.for_week(snapshot.store_week_totals, week_id)
        rows = [
            {
                'store_id': row.store_id,
                'store_name': names.get(row.store_id),
                'total_sales': store_totals[row.store_id],
                'z_score': round(row.z_score, 4),
                'outlier_type': str(row.outlier_type)
            }
            for row in analytics.outlier_stores(snapshot, week_id, k_threshold)
        ]
        logger.info(f"Found {len(rows)} outlier stores for week {week_id} (k={k_threshold})")
        return rows

    def category_vs_all_time_high(self, week_id: str) -> List[Dict]:
        """Each category's weekly total as a percentage of its all-time high so far."""
        names = self.catalog_service.category_names()
        return [
            {
                'category_id': row.category_id,
                'category_name': names.get(row.category_id),
                'total_sales': row.week_total,
                'all_time_high_sales': row.all_time_high,
                'percentage_of_all_time_high': round(row.percentage, 2)
            }
            for row in analytics.category_vs_all_time_high(self.snapshot_for(week_id), week_id)
        ]

    def weekly_summary(self, week_id: str) -> Dict:
        """All three weekly reports in one dictionary.

        Raises:
            ReportingError: if any report cannot be produced
        """
        try:
            return {
                'week_id': week_id,
                'top_categories': self.top_categories(week_id),
                'outlier_stores': self.outlier_stores(week_id),
                'category_vs_all_time_high': self.category_vs_all_time_high(week_id)
            }
        except Exception as e:
            logger.error(f"Error building weekly summary for week {week_id}: {str(e)}")
            raise ReportingError(f"Failed to build weekly summary: {str(e)}", details={'week_id': week_id}) from e
