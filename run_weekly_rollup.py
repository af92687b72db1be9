#!/usr/bin/env python
# run_weekly_rollup.py - Script to apply pending store reports to the weekly rollups

import sys
import argparse
from pathlib import Path

# Add the project directory to the path so we can import our modules
project_dir = str(Path(__file__).parent)
if project_dir not in sys.path:
    sys.path.append(project_dir)

from sales_rollup.batch.weekly_rollup_job import run_weekly_rollup
from sales_rollup.db import db
from sales_rollup.exceptions import RollupError
from sales_rollup.logging_setup import get_logger

def main():
    """Run the weekly rollup."""
    parser = argparse.ArgumentParser(description='Run the Sales Rollup weekly job')
    parser.add_argument('--week', '-w', type=str, help='Apply reports for a specific week ID only')
    parser.add_argument('--workers', type=int, help='Reconciliation worker threads')
    parser.add_argument('--db-url', type=str, help='Override the configured database URL')

    args = parser.parse_args()

    logger = get_logger('weekly_rollup_runner')

    logger.info("Starting weekly rollup runner...")
    logger.info(f"Week filter: {args.week if args.week is not None else 'All weeks'}")

    db.initialize(args.db_url)

    try:
        results = run_weekly_rollup(args.week, args.workers)
    except RollupError as e:
        logger.exception(f"Error running weekly rollup: {str(e)}")
        return 1

    logger.info(f"Weekly rollup completed: {results['applied']} of {results['processed']} reports applied")
    for error in results['errors']:
        logger.warning(f"  {error['report_id']}: {error['message']}")

    return 0 if results['failed'] == 0 else 2

if __name__ == "__main__":
    sys.exit(main())
