"""
Tests for the weekly rollup batch job.
"""
import threading
import time
import unittest
from concurrent.futures import TimeoutError as FuturesTimeoutError
from datetime import date
from unittest.mock import patch

from sales_rollup.batch.weekly_rollup_job import build_contributions, run_weekly_rollup
from sales_rollup.core.catalog import Catalog
from sales_rollup.core.types import Granularity, Report, ReportLine
from sales_rollup.db import db, session_scope
from sales_rollup.exceptions import BatchProcessError, UnresolvableItemError
from sales_rollup.models import CategoryWeekTotal, StoreWeekTotal
from sales_rollup.services import CatalogService, ReportService, RollupService, WeekService
from sales_rollup.utils.date_utils import WeekCalendar


class TestBuildContributions(unittest.TestCase):

    def test_failures_are_returned_in_order(self):
        catalog = Catalog()
        catalog.add_category('food', 'Food')
        catalog.add_item('burger', 'Burger', 'food')
        calendar = WeekCalendar()
        calendar.accept_week('W1', date(2024, 1, 1), date(2024, 1, 8))

        reports = [
            Report('r1', 'S1', 'W1', Granularity.ITEM, (ReportLine('burger', 2),)),
            Report('r2', 'S2', 'W1', Granularity.ITEM, (ReportLine('pizza', 1),)),
            Report('r3', 'S3', 'W1', Granularity.CATEGORY, (ReportLine('food', 4),)),
        ]

        outcomes = build_contributions(reports, catalog, calendar, max_workers=3)

        self.assertEqual([report.report_id for report, _, _ in outcomes], ['r1', 'r2', 'r3'])
        self.assertEqual(outcomes[0][1].category_totals, {'food': 2})
        self.assertIsNone(outcomes[1][1])
        self.assertIsInstance(outcomes[1][2], UnresolvableItemError)
        self.assertEqual(outcomes[2][1].store_total, 4)

    @patch('sales_rollup.batch.weekly_rollup_job.build_contribution')
    def test_timeout_does_not_wait_for_queued_reports(self, mock_build_contribution):
        release = threading.Event()
        started = []

        def slow_build(report, catalog):
            started.append(report.report_id)
            release.wait(5)

        mock_build_contribution.side_effect = slow_build
        calendar = WeekCalendar()
        calendar.accept_week('W1', date(2024, 1, 1), date(2024, 1, 8))
        reports = [Report(f'r{n}', 'S1', 'W1') for n in range(4)]

        began = time.monotonic()
        try:
            with self.assertRaises(FuturesTimeoutError):
                build_contributions(reports, Catalog(), calendar, max_workers=1, timeout=0.1)
            elapsed = time.monotonic() - began
        finally:
            release.set()

        self.assertLess(elapsed, 4)
        self.assertEqual(started, ['r0'])


class TestWeeklyRollupJob(unittest.TestCase):
    """Test cases for applying pending reports from the database."""

    def setUp(self):
        db.initialize('sqlite://')
        db.create_all_tables()

        with session_scope() as session:
            catalog_service = CatalogService(session)
            catalog_service.create_category('Beverages', category_id='beverages')
            catalog_service.create_category('Food', category_id='food')
            catalog_service.create_category('Snacks', category_id='snacks')
            catalog_service.create_item('Soda', 'beverages', item_id='soda')
            catalog_service.create_item('Burger', 'food', item_id='burger')
            catalog_service.create_item('Chips', 'snacks', item_id='chips')
            for store_id in ('S1', 'S2', 'S3'):
                catalog_service.create_store(f'Store {store_id}', store_id=store_id)

            week_service = WeekService(session)
            week_service.accept_week(date(2024, 1, 1), date(2024, 1, 8), week_id='W1')
            week_service.accept_week(date(2024, 1, 8), date(2024, 1, 15), week_id='W2')

            report_service = ReportService(session)
            report_service.submit_report('S1', 'W1', 'category', {'beverages': 10, 'food': 5}, report_id='r1')
            report_service.submit_report('S2', 'W1', 'item', {'soda': 8, 'burger': 2}, report_id='r2')
            report_service.submit_report('S3', 'W1', 'item', {'chips': 4}, report_id='r3')
            report_service.submit_report('S1', 'W2', 'category', {'food': 1}, report_id='r4')
            report_service.submit_report('S1', 'W2', 'category', {'food': 2}, report_id='r5')

        with session_scope() as session:
            # r3 can no longer be reconciled
            CatalogService(session).delete_category('snacks')

    def tearDown(self):
        db.session.remove()
        db.drop_all_tables()

    def test_run_weekly_rollup(self):
        results = run_weekly_rollup(max_workers=2)

        self.assertTrue(results['success'])
        self.assertEqual(results['processed'], 5)
        self.assertEqual(results['applied'], 3)
        self.assertEqual(results['failed'], 2)
        self.assertEqual(sorted(e['code'] for e in results['errors']), ['DUPLICATE_REPORT', 'UNRESOLVABLE_ITEM'])

        with session_scope() as session:
            categories = {
                (row.category_id, row.week_id): row.total_sales
                for row in session.query(CategoryWeekTotal).all()
            }
            stores = {(row.store_id, row.week_id): row.total_sales for row in session.query(StoreWeekTotal).all()}
            pending = {r.id for r in ReportService(session).get_pending_reports()}

        self.assertEqual(categories[('beverages', 'W1')], 18)
        self.assertEqual(categories[('food', 'W1')], 7)
        self.assertIn(categories[('food', 'W2')], (1, 2))
        self.assertEqual(stores[('S1', 'W1')], 15)
        self.assertEqual(stores[('S2', 'W1')], 10)
        self.assertNotIn(('S3', 'W1'), stores)
        self.assertIn('r3', pending)
        self.assertEqual(len(pending), 2)

    def test_second_run_applies_nothing_new(self):
        run_weekly_rollup(max_workers=2)
        results = run_weekly_rollup(max_workers=2)

        self.assertEqual(results['applied'], 0)
        self.assertEqual(results['processed'], 2)

    def test_week_filter(self):
        results = run_weekly_rollup(week_id='W2', max_workers=1)

        self.assertEqual(results['processed'], 2)
        self.assertEqual(results['applied'], 1)

    def test_retracted_report_is_not_applied_again(self):
        run_weekly_rollup(max_workers=2)
        with session_scope() as session:
            RollupService(session).retract_report('r1')

        results = run_weekly_rollup(max_workers=2)

        self.assertEqual(results['applied'], 0)
        with session_scope() as session:
            stores = {(row.store_id, row.week_id) for row in session.query(StoreWeekTotal).all()}
            pending = {r.id for r in ReportService(session).get_pending_reports()}
        self.assertNotIn(('S1', 'W1'), stores)
        self.assertNotIn('r1', pending)

    @patch('sales_rollup.batch.weekly_rollup_job.CatalogService')
    def test_unexpected_error_raises_batch_error(self, mock_catalog_service):
        mock_catalog_service.return_value.load_catalog.side_effect = RuntimeError("connection lost")

        with self.assertRaises(BatchProcessError) as ctx:
            run_weekly_rollup(max_workers=1)

        self.assertIn("connection lost", str(ctx.exception))


if __name__ == '__main__':
    unittest.main()
