from .types import (
    Granularity, OutlierType, Report, ReportLine, CategoryFact, Contribution, Week,
    RollupSnapshot, CategoryRank, ItemRank, StoreOutlier, CategoryHighMark
)
from .catalog import Catalog
from .reconciler import reconcile, category_counts
from .rollup import RollupEngine, build_contribution
from .analytics import top_categories, top_items, outlier_stores, category_vs_all_time_high

__all__ = [
    'Granularity',
    'OutlierType',
    'Report',
    'ReportLine',
    'CategoryFact',
    'Contribution',
    'Week',
    'RollupSnapshot',
    'CategoryRank',
    'ItemRank',
    'StoreOutlier',
    'CategoryHighMark',
    'Catalog',
    'reconcile',
    'category_counts',
    'RollupEngine',
    'build_contribution',
    'top_categories',
    'top_items',
    'outlier_stores',
    'category_vs_all_time_high'
]
