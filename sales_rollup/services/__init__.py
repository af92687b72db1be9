from .catalog_service import CatalogService
from .week_service import WeekService
from .report_service import ReportService
from .rollup_service import RollupService
from .analytics_service import AnalyticsService

__all__ = [
    'CatalogService',
    'WeekService',
    'ReportService',
    'RollupService',
    'AnalyticsService'
]
