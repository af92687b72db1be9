"""
Tests for the database-backed services against an in-memory SQLite database.
"""
import unittest
from datetime import date

from sales_rollup.db import db
from sales_rollup.exceptions import (
    DuplicateReportError, InvalidWeekError, NegativeCountError, NotFoundError,
    UnresolvableItemError, ValidationError
)
from sales_rollup.models import (
    CategoryWeekTotal, Item, ReportContribution, StoreStatus, StoreWeekTotal
)
from sales_rollup.services import (
    AnalyticsService, CatalogService, ReportService, RollupService, WeekService
)


class DatabaseTestCase(unittest.TestCase):
    """Fresh in-memory schema with two categories, three items, three stores and two weeks."""

    def setUp(self):
        db.initialize('sqlite://')
        db.create_all_tables()
        self.session = db.session()

        self.catalog_service = CatalogService(self.session)
        self.week_service = WeekService(self.session)
        self.report_service = ReportService(self.session)

        self.catalog_service.create_category('Beverages', category_id='beverages')
        self.catalog_service.create_category('Food', category_id='food')
        self.catalog_service.create_item('Soda', 'beverages', item_id='soda')
        self.catalog_service.create_item('Juice', 'beverages', item_id='juice')
        self.catalog_service.create_item('Burger', 'food', item_id='burger')
        for store_id in ('S1', 'S2', 'S3'):
            self.catalog_service.create_store(f'Store {store_id}', store_id=store_id)

        self.week_service.accept_week(date(2024, 1, 1), date(2024, 1, 8), week_id='W1')
        self.week_service.accept_week(date(2024, 1, 8), date(2024, 1, 15), week_id='W2')
        self.session.commit()

    def tearDown(self):
        self.session.rollback()
        db.session.remove()
        db.drop_all_tables()

    def category_totals(self, week_id):
        rows = self.session.query(CategoryWeekTotal).filter(CategoryWeekTotal.week_id == week_id).all()
        return {row.category_id: row.total_sales for row in rows}

    def store_totals(self, week_id):
        rows = self.session.query(StoreWeekTotal).filter(StoreWeekTotal.week_id == week_id).all()
        return {row.store_id: row.total_sales for row in rows}


class TestCatalogService(DatabaseTestCase):

    def test_resolve_category(self):
        self.assertEqual(self.catalog_service.resolve_category('juice'), 'beverages')
        with self.assertRaises(NotFoundError):
            self.catalog_service.resolve_category('pizza')

    def test_duplicate_name_rejected(self):
        with self.assertRaises(ValidationError):
            self.catalog_service.create_category('Food')

    def test_create_item_in_unknown_category(self):
        with self.assertRaises(NotFoundError):
            self.catalog_service.create_item('Cake', 'desserts')

    def test_delete_category_removes_items(self):
        self.assertEqual(self.catalog_service.delete_category('beverages'), 2)
        self.assertFalse(self.catalog_service.category_exists('beverages'))
        self.assertEqual([i.id for i in self.session.query(Item).all()], ['burger'])

    def test_store_status(self):
        store = self.catalog_service.set_store_status('S1', 'inactive')
        self.assertEqual(store.status, StoreStatus.INACTIVE)
        with self.assertRaises(ValueError):
            self.catalog_service.set_store_status('S1', 'closed')

    def test_load_catalog(self):
        catalog = self.catalog_service.load_catalog()
        self.assertEqual(catalog.resolve_category('burger'), 'food')
        self.assertEqual(catalog.category_name('beverages'), 'Beverages')


class TestWeekService(DatabaseTestCase):

    def test_overlapping_week_rejected(self):
        with self.assertRaises(InvalidWeekError):
            self.week_service.accept_week(date(2024, 1, 12), date(2024, 1, 19))

    def test_inverted_week_rejected(self):
        with self.assertRaises(InvalidWeekError):
            self.week_service.accept_week('2024-02-08', '2024-02-01')

    def test_malformed_date_rejected(self):
        with self.assertRaises(InvalidWeekError) as ctx:
            self.week_service.accept_week('08/02/2024', '2024-02-15', week_id='W3')
        self.assertEqual(ctx.exception.details['week_id'], 'W3')

    def test_latest_week_and_calendar(self):
        self.assertEqual(self.week_service.latest_week().id, 'W2')
        calendar = self.week_service.load_calendar()
        self.assertEqual(calendar.weeks_through('W2'), ['W1', 'W2'])


class TestReportService(DatabaseTestCase):

    def test_submit_item_report(self):
        report = self.report_service.submit_report('S1', 'W1', 'item', {'soda': 3, 'burger': 2}, report_id='r1')

        value = ReportService.to_report(report)
        self.assertEqual(value.store_id, 'S1')
        self.assertEqual(sorted((l.target_id, l.count) for l in value.lines), [('burger', 2), ('soda', 3)])
        self.assertEqual([r.id for r in self.report_service.get_pending_reports()], ['r1'])

    def test_negative_count_rejected(self):
        with self.assertRaises(NegativeCountError):
            self.report_service.submit_report('S1', 'W1', 'category', [('food', -1)])

    def test_unknown_references_rejected(self):
        with self.assertRaises(NotFoundError):
            self.report_service.submit_report('S9', 'W1', 'category', {'food': 1})
        with self.assertRaises(NotFoundError):
            self.report_service.submit_report('S1', 'W9', 'category', {'food': 1})
        with self.assertRaises(NotFoundError) as ctx:
            self.report_service.submit_report('S1', 'W1', 'item', {'soda': 1, 'pizza': 1})
        self.assertEqual(ctx.exception.details['item_ids'], ['pizza'])

    def test_lines_require_granularity(self):
        with self.assertRaises(ValidationError):
            self.report_service.submit_report('S1', 'W1', None, {'food': 1})


class TestRollupService(DatabaseTestCase):
    """Test cases for maintaining the aggregate tables."""

    def setUp(self):
        super().setUp()
        self.rollup_service = RollupService(self.session)

    def submit(self, report_id, store_id, week_id, granularity, lines):
        return self.report_service.submit_report(store_id, week_id, granularity, lines, report_id=report_id)

    def test_apply_mixed_granularity(self):
        self.submit('r1', 'S1', 'W1', 'category', {'beverages': 10, 'food': 5})
        self.submit('r2', 'S2', 'W1', 'item', {'soda': 8, 'burger': 2})

        self.rollup_service.apply_report('r1')
        self.rollup_service.apply_report('r2')

        self.assertEqual(self.category_totals('W1'), {'beverages': 18, 'food': 7})
        self.assertEqual(self.store_totals('W1'), {'S1': 15, 'S2': 10})
        self.assertEqual(self.report_service.get_pending_reports(), [])

    def test_duplicate_apply_rejected(self):
        self.submit('r1', 'S1', 'W1', 'category', {'food': 5})
        self.submit('r2', 'S1', 'W1', 'category', {'food': 7})
        self.rollup_service.apply_report('r1')

        with self.assertRaises(DuplicateReportError):
            self.rollup_service.apply_report('r1')
        with self.assertRaises(DuplicateReportError):
            self.rollup_service.apply_report('r2')

        self.assertEqual(self.category_totals('W1'), {'food': 5})

    def test_unresolvable_item_writes_nothing(self):
        self.submit('r1', 'S1', 'W1', 'item', {'soda': 4, 'burger': 1})
        # Item removed after the report was stored
        self.catalog_service.delete_category('food')

        with self.assertRaises(UnresolvableItemError):
            self.rollup_service.apply_report('r1')

        self.assertEqual(self.category_totals('W1'), {})
        self.assertEqual(self.store_totals('W1'), {})
        self.assertEqual(self.session.query(ReportContribution).count(), 0)
        self.assertIsNone(self.report_service.get_report('r1').applied_at)

    def test_supersede(self):
        self.submit('r0', 'S2', 'W1', 'category', {'food': 4})
        self.submit('r1', 'S1', 'W1', 'item', {'soda': 8, 'burger': 2})
        self.submit('r2', 'S1', 'W1', 'category', {'beverages': 5})
        self.rollup_service.apply_report('r0')
        self.rollup_service.apply_report('r1')

        self.rollup_service.supersede_report('r1', 'r2')

        self.assertEqual(self.category_totals('W1'), {'beverages': 5, 'food': 4})
        self.assertEqual(self.store_totals('W1'), {'S1': 5, 'S2': 4})
        self.assertEqual(self.report_service.get_applied_report('S1', 'W1').id, 'r2')
        self.assertEqual(self.report_service.get_report('r1').superseded_by_id, 'r2')

    def test_supersede_requires_same_store_and_week(self):
        self.submit('r1', 'S1', 'W1', 'category', {'food': 1})
        self.submit('r2', 'S2', 'W1', 'category', {'food': 2})
        self.rollup_service.apply_report('r1')

        with self.assertRaises(ValidationError):
            self.rollup_service.supersede_report('r1', 'r2')
        with self.assertRaises(NotFoundError):
            self.rollup_service.supersede_report('r2', 'r1')

    def test_retract(self):
        self.submit('r1', 'S1', 'W1', 'category', {'food': 3})
        self.submit('r2', 'S2', 'W1', 'category', {'food': 2})
        self.rollup_service.apply_report('r1')
        self.rollup_service.apply_report('r2')

        self.rollup_service.retract_report('r2')

        self.assertEqual(self.category_totals('W1'), {'food': 3})
        self.assertEqual(self.store_totals('W1'), {'S1': 3})
        self.assertEqual(self.report_service.get_pending_reports(), [])
        self.assertIsNone(self.report_service.get_applied_report('S2', 'W1'))
        with self.assertRaises(DuplicateReportError):
            self.rollup_service.apply_report('r2')

    def test_store_can_report_again_after_retraction(self):
        self.submit('r1', 'S1', 'W1', 'category', {'food': 3})
        self.submit('r2', 'S1', 'W1', 'category', {'food': 6})
        self.rollup_service.apply_report('r1')
        self.rollup_service.retract_report('r1')

        self.rollup_service.apply_report('r2')

        self.assertEqual(self.store_totals('W1'), {'S1': 6})
        self.assertEqual(self.report_service.get_applied_report('S1', 'W1').id, 'r2')

    def test_one_active_report_per_store_and_week(self):
        self.submit('r1', 'S1', 'W1', 'category', {'food': 3})
        second = self.submit('r2', 'S1', 'W1', 'category', {'food': 4})
        contribution = self.rollup_service.apply_report('r1')
        self.session.commit()

        # A writer that checked before r1 was applied still cannot apply r2
        with self.assertRaises(DuplicateReportError):
            self.rollup_service.record_contribution(second, contribution)

        self.session.rollback()
        self.assertEqual(self.report_service.get_applied_report('S1', 'W1').id, 'r1')
        self.assertEqual(self.category_totals('W1'), {'food': 3})

    def test_cells_are_incremented_in_place(self):
        self.submit('r1', 'S1', 'W1', 'category', {'food': 5})
        self.submit('r2', 'S2', 'W1', 'category', {'food': 7})
        self.rollup_service.apply_report('r1')
        row = self.session.query(CategoryWeekTotal).filter_by(category_id='food', week_id='W1').one()

        self.rollup_service.apply_report('r2')

        self.assertEqual((row.total_sales, row.report_count), (12, 2))
        self.rollup_service.retract_report('r1')
        self.assertEqual((row.total_sales, row.report_count), (7, 1))

    def test_rebuild_matches_incremental_totals(self):
        self.submit('r1', 'S1', 'W1', 'category', {'beverages': 10, 'food': 5})
        self.submit('r2', 'S2', 'W1', 'item', {'soda': 8, 'burger': 2})
        self.submit('r3', 'S2', 'W1', 'item', {'juice': 1})
        self.submit('r4', 'S3', 'W2', 'category', {'food': 9})
        for report_id in ('r1', 'r2', 'r4'):
            self.rollup_service.apply_report(report_id)
        self.rollup_service.supersede_report('r2', 'r3')

        before = (self.category_totals('W1'), self.store_totals('W1'), self.category_totals('W2'))
        results = self.rollup_service.rebuild_aggregates()
        after = (self.category_totals('W1'), self.store_totals('W1'), self.category_totals('W2'))

        self.assertEqual(after, before)
        self.assertEqual(results['store'], 3)
        self.assertEqual(self.category_totals('W1'), {'beverages': 11, 'food': 5})

    def test_detect_mapping_drift(self):
        self.submit('r1', 'S1', 'W1', 'item', {'soda': 8, 'burger': 2})
        self.rollup_service.apply_report('r1')
        self.assertEqual(self.rollup_service.detect_mapping_drift(), [])

        self.catalog_service.move_item('soda', 'food')
        drifted = self.rollup_service.detect_mapping_drift('W1')

        self.assertEqual(len(drifted), 1)
        self.assertEqual(drifted[0]['applied'], {'beverages': 8, 'food': 2})
        self.assertEqual(drifted[0]['current'], {'food': 10})
        # Stored aggregates keep the mapping that was in force when applied
        self.assertEqual(self.category_totals('W1'), {'beverages': 8, 'food': 2})
        self.assertEqual(self.store_totals('W1'), {'S1': 10})

    def test_load_snapshot(self):
        self.submit('r1', 'S1', 'W1', 'item', {'soda': 8})
        self.rollup_service.apply_report('r1')

        snapshot = self.rollup_service.load_snapshot()

        self.assertEqual(snapshot.category_week_totals, {'W1': {'beverages': 8}})
        self.assertEqual(snapshot.item_week_totals, {'W1': {'soda': 8}})
        self.assertEqual(snapshot.week_start_dates['W2'], date(2024, 1, 8))

    def test_load_snapshot_for_one_week(self):
        self.submit('r1', 'S1', 'W1', 'item', {'soda': 8})
        self.submit('r2', 'S2', 'W2', 'category', {'food': 4})
        self.rollup_service.apply_report('r1')
        self.rollup_service.apply_report('r2')

        first = self.rollup_service.load_snapshot('W1')
        self.assertEqual(first.category_week_totals, {'W1': {'beverages': 8}})
        self.assertEqual(first.store_week_totals, {'W1': {'S1': 8}})

        second = self.rollup_service.load_snapshot('W2')
        self.assertEqual(second.category_week_totals, {'W1': {'beverages': 8}, 'W2': {'food': 4}})
        self.assertEqual(second.store_week_totals, {'W2': {'S2': 4}})
        self.assertEqual(second.item_week_totals, {})


class TestAnalyticsService(DatabaseTestCase):
    """Test cases for the named weekly reports."""

    def setUp(self):
        super().setUp()
        rollup_service = RollupService(self.session)
        reports = [
            ('r1', 'S1', 'W1', 'category', {'beverages': 20, 'food': 10}),
            ('r2', 'S1', 'W2', 'category', {'beverages': 9, 'food': 5}),
            ('r3', 'S2', 'W2', 'item', {'soda': 9, 'burger': 1}),
        ]
        for report_id, store_id, week_id, granularity, lines in reports:
            self.report_service.submit_report(store_id, week_id, granularity, lines, report_id=report_id)
            rollup_service.apply_report(report_id)
        self.analytics = AnalyticsService(self.session)

    def test_top_categories(self):
        rows = self.analytics.top_categories('W2', 5)

        self.assertEqual([(r['rank'], r['category_name'], r['total_sales']) for r in rows],
                         [(1, 'Beverages', 18), (2, 'Food', 6)])

    def test_top_items(self):
        rows = self.analytics.top_items('W2')
        self.assertEqual([r['item_name'] for r in rows], ['Soda', 'Burger'])

    def test_outlier_stores(self):
        # S1 sold 14 and S2 sold 10: mean 12, sample std sqrt(8)
        self.assertEqual(self.analytics.outlier_stores('W2', 1.0), [])

        rows = self.analytics.outlier_stores('W2', 0.5)

        self.assertEqual([(r['store_name'], r['total_sales'], r['outlier_type']) for r in rows],
                         [('Store S1', 14, 'high'), ('Store S2', 10, 'low')])

    def test_category_vs_all_time_high(self):
        rows = self.analytics.category_vs_all_time_high('W2')

        self.assertEqual(rows[0]['category_id'], 'beverages')
        self.assertEqual(rows[0]['all_time_high_sales'], 20)
        self.assertEqual(rows[0]['percentage_of_all_time_high'], 90.0)
        self.assertEqual(rows[1]['percentage_of_all_time_high'], 60.0)

    def test_snapshot_is_cached_until_refresh(self):
        self.analytics.top_categories('W2')
        self.report_service.submit_report('S3', 'W2', 'category', {'food': 100}, report_id='r4')
        RollupService(self.session).apply_report('r4')

        self.assertEqual(self.analytics.top_categories('W2')[0]['category_id'], 'beverages')
        self.analytics.refresh()
        self.assertEqual(self.analytics.top_categories('W2')[0]['category_id'], 'food')

    def test_weekly_summary(self):
        summary = self.analytics.weekly_summary('W2')
        self.assertEqual(summary['week_id'], 'W2')
        self.assertEqual(len(summary['top_categories']), 2)


if __name__ == '__main__':
    unittest.main()
