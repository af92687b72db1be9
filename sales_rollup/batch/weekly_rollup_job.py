# sales_rollup/batch/weekly_rollup_job.py
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Tuple

from sales_rollup.config import config
from sales_rollup.core.rollup import build_contribution
from sales_rollup.core.types import Contribution, Report
from sales_rollup.db import session_scope
from sales_rollup.exceptions import BatchProcessError, RollupError
from sales_rollup.logging_setup import get_logger, log_exception, logger as log_manager
from sales_rollup.services.catalog_service import CatalogService
from sales_rollup.services.report_service import ReportService
from sales_rollup.services.rollup_service import RollupService
from sales_rollup.services.week_service import WeekService

logger = get_logger('weekly_rollup')

Outcome = Tuple[Report, Optional[Contribution], Optional[RollupError]]

def build_contributions(
    reports: List[Report],
    catalog,
    calendar,
    max_workers: int = 4,
    timeout: Optional[float] = None
) -> List[Outcome]:
    """Reconcile reports in parallel against in-memory catalog and calendar copies.

    Args:
        reports: Reports to reconcile
        catalog: In-memory Catalog
        calendar: WeekCalendar of accepted weeks
        max_workers: Worker thread count
        timeout: Seconds to wait for all reports before giving up

    Returns:
        (report, contribution, error) per report, in input order

    Raises:
        concurrent.futures.TimeoutError: if reconciliation outlasts the timeout
    """
    def reconcile_one(report: Report) -> Outcome:
        try:
            calendar.get_week(report.week_id)
            return report, build_contribution(report, catalog), None
        except RollupError as e:
            return report, None, e

    executor = ThreadPoolExecutor(max_workers=max_workers)
    try:
        outcomes = list(executor.map(reconcile_one, reports, timeout=timeout))
    except Exception:
        # Queued reports are dropped; a running one finishes in the background
        executor.shutdown(wait=False, cancel_futures=True)
        raise
    executor.shutdown()
    return outcomes

def _record_failure(results: Dict, report: Report, error: RollupError) -> None:
    results['failed'] += 1
    results['errors'].append({'report_id': report.report_id, **error.to_dict()})
    log_manager.report_logger('weekly_rollup', report).warning(f"Not applied: {error}")

def run_weekly_rollup(week_id: Optional[str] = None, max_workers: Optional[int] = None) -> Dict:
    """Apply every pending report to the weekly aggregates.

    Reconciliation fans out over a thread pool; contributions are then written
    by this thread, one transaction per report, so a failing report never
    affects another report's aggregates.

    Args:
        week_id: Optional week filter (all weeks when omitted)
        max_workers: Worker thread count; defaults to BATCH_PROCESS.max_workers

    Returns:
        Dictionary with processing results
    """
    batch_config = config.batch_config
    max_workers = max_workers or batch_config['max_workers']
    timeout = batch_config['timeout_minutes'] * 60
    run = log_manager.rollup_run_started('weekly_rollup', week_id, max_workers)

    results = {
        'success': False,
        'week_id': week_id,
        'processed': 0,
        'applied': 0,
        'failed': 0,
        'errors': []
    }

    try:
        with session_scope() as session:
            catalog = CatalogService(session).load_catalog()
            calendar = WeekService(session).load_calendar()
            pending = [ReportService.to_report(r) for r in ReportService(session).get_pending_reports(week_id)]

        logger.info(f"Reconciling {len(pending)} pending reports with {max_workers} workers")

        for report, contribution, error in build_contributions(pending, catalog, calendar, max_workers, timeout):
            results['processed'] += 1
            if error is not None:
                _record_failure(results, report, error)
                continue

            try:
                with session_scope() as session:
                    rollup_service = RollupService(session, catalog=catalog)
                    sales_report = rollup_service.report_service.get_report(report.report_id)
                    rollup_service.check_applicable(sales_report)
                    rollup_service.record_contribution(sales_report, contribution)
                results['applied'] += 1
            except RollupError as e:
                _record_failure(results, report, e)

        results['success'] = True
        logger.info(f"Weekly rollup finished: {results['applied']} applied, {results['failed']} failed")

    except Exception as e:
        log_exception('weekly_rollup', e, "Weekly rollup failed")
        raise BatchProcessError(f"Weekly rollup failed: {str(e)}", details={'week_id': week_id}) from e

    finally:
        log_manager.rollup_run_finished(
            run,
            results['success'],
            {k: results[k] for k in ('processed', 'applied', 'failed')}
        )

    return results
