# sales_rollup/core/analytics.py
"""
Analytical queries over a RollupSnapshot.

Every function is a pure read of the snapshot it is given; none of them
touch the engine the snapshot was taken from.
"""
import logging
from typing import Dict, Hashable, List

import numpy as np

from sales_rollup.core.types import (
    CategoryHighMark, CategoryRank, ItemRank, OutlierType, RollupSnapshot, StoreOutlier
)
from sales_rollup.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_TOP_N = 10
DEFAULT_OUTLIER_THRESHOLD = 2.0

def _ranked(totals: Dict[Hashable, int], n: int) -> List[tuple]:
    if n < 1:
        raise ValidationError(f"Ranking size must be at least 1, got {n}", details={'n': n})
    # Ties break on ascending id so repeated calls return the same order
    ordered = sorted(totals.items(), key=lambda kv: (-kv[1], kv[0]))
    return [(key, total, rank) for rank, (key, total) in enumerate(ordered[:n], start=1)]

def top_categories(snapshot: RollupSnapshot, week_id: Hashable, n: int = DEFAULT_TOP_N) -> List[CategoryRank]:
    """Best selling categories for a week.

    Args:
        snapshot: Aggregate snapshot
        week_id: Week to rank
        n: Maximum number of categories to return

    Returns:
        CategoryRank rows ordered by rank; empty for a week with no data
    """
    totals = snapshot.for_week(snapshot.category_week_totals, week_id)
    return [CategoryRank(cid, total, rank) for cid, total, rank in _ranked(totals, n)]

def top_items(snapshot: RollupSnapshot, week_id: Hashable, n: int = DEFAULT_TOP_N) -> List[ItemRank]:
    """Best selling items for a week.

    Only stores that reported item lines contribute, so this is an estimate.
    """
    totals = snapshot.for_week(snapshot.item_week_totals, week_id)
    return [ItemRank(iid, total, rank) for iid, total, rank in _ranked(totals, n)]

def store_total_stats(store_totals: Dict[Hashable, int]) -> Dict:
    """Mean and sample standard deviation of store totals.

    Returns:
        Dictionary with count, mean and std_dev (None with fewer than two stores)
    """
    count = len(store_totals)
    if count == 0:
        return {'count': 0, 'mean': None, 'std_dev': None}

    values = np.array(list(store_totals.values()), dtype=float)
    mean = float(np.mean(values))
    std_dev = float(np.std(values, ddof=1)) if count > 1 else None

    return {'count': count, 'mean': mean, 'std_dev': std_dev}

def outlier_stores(
    snapshot: RollupSnapshot,
    week_id: Hashable,
    k_threshold: float = DEFAULT_OUTLIER_THRESHOLD
) -> List[StoreOutlier]:
    """Stores whose weekly total lies more than k standard deviations from the mean.

    Args:
        snapshot: Aggregate snapshot
        week_id: Week to examine
        k_threshold: Number of standard deviations a store must exceed

    Returns:
        StoreOutlier rows ordered by store id. Empty when fewer than two stores
        reported or every store sold the same amount.
    """
    if k_threshold < 0:
        raise ValidationError(
            f"Outlier threshold must not be negative, got {k_threshold}",
            details={'k_threshold': k_threshold}
        )

    store_totals = snapshot.for_week(snapshot.store_week_totals, week_id)
    stats = store_total_stats(store_totals)
    std_dev = stats['std_dev']

    if not std_dev:
        logger.debug(f"No store variance for week {week_id} ({stats['count']} stores)")
        return []

    mean = stats['mean']
    outliers = []
    for store_id, total in sorted(store_totals.items(), key=lambda kv: kv[0]):
        deviation = total - mean
        if abs(deviation) > k_threshold * std_dev:
            outliers.append(StoreOutlier(
                store_id=store_id,
                z_score=deviation / std_dev,
                outlier_type=OutlierType.HIGH if total > mean else OutlierType.LOW
            ))

    return outliers

def category_all_time_highs(snapshot: RollupSnapshot, week_id: Hashable) -> Dict[Hashable, int]:
    """Highest weekly total per category over weeks starting on or before week_id.

    Raises:
        NotFoundError: if the snapshot has no start date for the week
    """
    start_dates = snapshot.week_start_dates
    if week_id not in start_dates:
        raise NotFoundError(f"Week {week_id} not found", details={'week_id': week_id})

    cutoff = start_dates[week_id]
    highs: Dict[Hashable, int] = {}
    for week, totals in snapshot.category_week_totals.items():
        week_start = start_dates.get(week)
        if week_start is None or week_start > cutoff:
            continue
        for category_id, total in totals.items():
            if category_id not in highs or total > highs[category_id]:
                highs[category_id] = total
    return highs

def category_vs_all_time_high(snapshot: RollupSnapshot, week_id: Hashable) -> List[CategoryHighMark]:
    """Each category's total for a week compared with its best week so far.

    Later weeks are ignored so the comparison is the one that was true at the time.

    Returns:
        CategoryHighMark rows ordered by category id; empty for a week with no data
    """
    week_totals = snapshot.for_week(snapshot.category_week_totals, week_id)
    if not week_totals:
        return []

    highs = category_all_time_highs(snapshot, week_id)
    rows = []
    for category_id, week_total in sorted(week_totals.items(), key=lambda kv: kv[0]):
        high = highs.get(category_id, week_total)
        percentage = 0.0 if high == 0 else week_total / high * 100
        rows.append(CategoryHighMark(category_id, week_total, high, percentage))

    return rows
