"""
Value types shared by the catalog, reconciler, rollup engine and analytics.

These are plain in-memory records. The ORM tables in ``sales_rollup.models``
are converted into them at the service boundary.
"""
import enum
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Hashable, Optional, Tuple


class Granularity(enum.Enum):
    """Level of detail a report was submitted at."""
    CATEGORY = 'category'
    ITEM = 'item'

    def __str__(self):
        return self.value


class OutlierType(enum.Enum):
    HIGH = 'high'
    LOW = 'low'

    def __str__(self):
        return self.value


@dataclass(frozen=True)
class ReportLine:
    """One line of a report: a category id or an item id, depending on granularity."""
    target_id: Hashable
    count: int


@dataclass(frozen=True)
class Report:
    report_id: Hashable
    store_id: Hashable
    week_id: Hashable
    granularity: Optional[Granularity] = None
    lines: Tuple[ReportLine, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def key(self) -> Tuple[Hashable, Hashable]:
        """The (store, week) pair the report covers."""
        return (self.store_id, self.week_id)


@dataclass(frozen=True)
class CategoryFact:
    category_id: Hashable
    week_id: Hashable
    count: int


@dataclass(frozen=True)
class Contribution:
    """Everything a single report adds to the three weekly aggregates."""
    report_id: Hashable
    store_id: Hashable
    week_id: Hashable
    granularity: Optional[Granularity]
    category_totals: Dict[Hashable, int] = field(default_factory=dict)
    store_total: int = 0
    item_totals: Dict[Hashable, int] = field(default_factory=dict)


@dataclass(frozen=True)
class Week:
    week_id: Hashable
    start_date: date
    end_date: date


WeekTotals = Dict[Hashable, Dict[Hashable, int]]


@dataclass
class RollupSnapshot:
    """Point-in-time copy of the aggregates as {week id: {dimension id: total}}.

    A snapshot taken for one week holds that week's store and item totals
    and the category totals of every week starting on or before it.
    """
    category_week_totals: WeekTotals = field(default_factory=dict)
    store_week_totals: WeekTotals = field(default_factory=dict)
    item_week_totals: WeekTotals = field(default_factory=dict)
    week_start_dates: Dict[Hashable, date] = field(default_factory=dict)

    def for_week(self, totals: WeekTotals, week_id) -> Dict[Hashable, int]:
        return dict(totals.get(week_id, {}))


@dataclass(frozen=True)
class CategoryRank:
    category_id: Hashable
    total: int
    rank: int


@dataclass(frozen=True)
class ItemRank:
    item_id: Hashable
    total: int
    rank: int


@dataclass(frozen=True)
class StoreOutlier:
    store_id: Hashable
    z_score: float
    outlier_type: OutlierType


@dataclass(frozen=True)
class CategoryHighMark:
    category_id: Hashable
    week_total: int
    all_time_high: int
    percentage: float
