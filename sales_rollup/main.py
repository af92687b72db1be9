import argparse
import json
import sys

from tabulate import tabulate

from sales_rollup.config import config
from sales_rollup.db import db, session_scope
from sales_rollup.exceptions import RollupError
from sales_rollup.logging_setup import logger, get_logger

def init_application(connection_string=None):
    """Initialize application components."""
    db.initialize(connection_string)

    log = logger.app_logger
    log.info("Sales Rollup engine initialized")
    log.info(f"Using database: {connection_string or config.get_db_url()}")

    return True

def setup_database(drop_existing=False):
    """Create the schema, optionally dropping existing tables first."""
    log = get_logger('db_setup')
    if drop_existing:
        log.info("Dropping existing tables")
        db.drop_all_tables()
    db.create_all_tables()
    log.info("Database tables created")

def _resolve_week(session, week_id):
    from sales_rollup.services.week_service import WeekService

    if week_id:
        return week_id
    week = WeekService(session).latest_week()
    if week is None:
        raise RollupError("No weeks have been accepted yet")
    return week.id

def run_rollup(args):
    from sales_rollup.batch.weekly_rollup_job import run_weekly_rollup

    results = run_weekly_rollup(args.week_id, args.workers)
    print(f"\nProcessed: {results['processed']}  Applied: {results['applied']}  Failed: {results['failed']}")
    if results['errors']:
        table_data = [[e['report_id'], e['error'], e['message']] for e in results['errors']]
        print(tabulate(table_data, headers=['Report ID', 'Error', 'Message']))
    return results

def show_top(args):
    from sales_rollup.services.analytics_service import AnalyticsService

    with session_scope() as session:
        week_id = _resolve_week(session, args.week_id)
        rows = AnalyticsService(session).top_categories(week_id, args.n)

    print(f"\nTop categories for week {week_id}:")
    print(tabulate(
        [[r['rank'], r['category_name'] or r['category_id'], r['total_sales']] for r in rows],
        headers=['Rank', 'Category', 'Sales']
    ))
    return rows

def show_outliers(args):
    from sales_rollup.services.analytics_service import AnalyticsService

    with session_scope() as session:
        week_id = _resolve_week(session, args.week_id)
        rows = AnalyticsService(session).outlier_stores(week_id, args.k)

    print(f"\nOutlier stores for week {week_id}:")
    print(tabulate(
        [[r['store_name'] or r['store_id'], r['total_sales'], f"{r['z_score']:.2f}", r['outlier_type']]
         for r in rows],
        headers=['Store', 'Sales', 'Z-Score', 'Type']
    ))
    print(f"\nTotal outliers: {len(rows)}")
    return rows

def show_all_time_high(args):
    from sales_rollup.services.analytics_service import AnalyticsService

    with session_scope() as session:
        week_id = _resolve_week(session, args.week_id)
        rows = AnalyticsService(session).category_vs_all_time_high(week_id)

    print(f"\nWeekly sales vs all-time high for week {week_id}:")
    print(tabulate(
        [[r['category_name'] or r['category_id'], r['total_sales'], r['all_time_high_sales'],
          f"{r['percentage_of_all_time_high']:.1f}%"] for r in rows],
        headers=['Category', 'Sales', 'All-Time High', '% of High']
    ))
    return rows

def show_drift(args):
    from sales_rollup.services.rollup_service import RollupService

    with session_scope() as session:
        drifted = RollupService(session).detect_mapping_drift(args.week_id)

    if not drifted:
        print("No mapping drift found")
    else:
        print(json.dumps(drifted, indent=2, default=str))
    return drifted

def rebuild(args):
    from sales_rollup.services.rollup_service import RollupService

    with session_scope() as session:
        results = RollupService(session).rebuild_aggregates()
    print(tabulate(sorted(results.items()), headers=['Aggregate', 'Rows']))
    return results

def main(argv=None):
    """Main application entry point."""
    parser = argparse.ArgumentParser(description='Sales Rollup engine')

    parser.add_argument('--setup-db', action='store_true', help='Set up the database schema')
    parser.add_argument('--drop-db', action='store_true', help='Drop existing tables before setup')
    parser.add_argument('--db-url', type=str, help='Override the configured database URL')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    rollup_parser = subparsers.add_parser('rollup', help='Apply pending reports to the weekly aggregates')
    rollup_parser.add_argument('--week-id', type=str, help='Only apply reports for this week')
    rollup_parser.add_argument('--workers', type=int, help='Reconciliation worker threads')

    top_parser = subparsers.add_parser('top', help='Best selling categories for a week')
    top_parser.add_argument('--week-id', type=str, help='Week to report (latest when omitted)')
    top_parser.add_argument('-n', type=int, default=None, help='Number of categories to show')

    outlier_parser = subparsers.add_parser('outliers', help='Outlier stores for a week')
    outlier_parser.add_argument('--week-id', type=str, help='Week to report (latest when omitted)')
    outlier_parser.add_argument('-k', type=float, default=None, help='Standard deviation threshold')

    ath_parser = subparsers.add_parser('ath', help='Weekly category sales vs all-time high')
    ath_parser.add_argument('--week-id', type=str, help='Week to report (latest when omitted)')

    drift_parser = subparsers.add_parser('drift', help='Reports whose item mapping changed after apply')
    drift_parser.add_argument('--week-id', type=str, help='Only check this week')

    subparsers.add_parser('rebuild', help='Recompute aggregates from the contribution ledger')

    args = parser.parse_args(argv)

    init_application(args.db_url)

    if args.setup_db:
        setup_database(args.drop_db)
        if not args.command:
            return 0

    commands = {
        'rollup': run_rollup,
        'top': show_top,
        'outliers': show_outliers,
        'ath': show_all_time_high,
        'drift': show_drift,
        'rebuild': rebuild,
    }

    if args.command not in commands:
        parser.print_help()
        return 1

    try:
        commands[args.command](args)
    except RollupError as e:
        logger.app_logger.error(f"{args.command} failed: {e}")
        print(json.dumps(e.to_dict(), indent=2, default=str), file=sys.stderr)
        return 1

    return 0

if __name__ == "__main__":
    sys.exit(main())
