# ========================
# tests/test_aggregation.py
# ========================

import unittest
import os
import sys

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.pipeline.errors import DataProcessError
from src.pipeline.models import Aggregation, AggregationDirective, AGGREGATE_METHODS
from src.pipeline.transformation import GroupAggregator, AGGREGATE_FUNCTIONS
from src.pipeline.table import Table


class TestAggregateFunctions(unittest.TestCase):
    """Test the per-group statistics."""

    def test_every_method_has_a_function(self):
        self.assertEqual(sorted(AGGREGATE_FUNCTIONS), sorted(AGGREGATE_METHODS))

    def test_median(self):
        median = AGGREGATE_FUNCTIONS['median']
        self.assertEqual(median([4, 1, 3, 2]), 2.5)
        self.assertEqual(median([3, 1, 2]), 2)

    def test_empty_values(self):
        self.assertEqual(AGGREGATE_FUNCTIONS['count']([]), 0)
        for method in ('sum', 'avg', 'min', 'max', 'median'):
            self.assertIsNone(AGGREGATE_FUNCTIONS[method]([]), method)


class TestGroupAggregator(unittest.TestCase):
    """Test the aggregation stage."""

    def setUp(self):
        self.table = Table.from_records([
            {'region': 'A', 'product': 'x', 'sales': 10},
            {'region': 'B', 'product': 'x', 'sales': 5},
            {'region': 'A', 'product': 'y', 'sales': 7},
        ])
        self.aggregator = GroupAggregator()

    def test_sum_by_region(self):
        directive = AggregationDirective(['region'], [Aggregation('sales', 'sum', 'total')])
        result = self.aggregator.aggregate(self.table, [directive])
        self.assertEqual(result.column_names, ['region', 'total'])
        self.assertEqual(result.column('region').values, ('A', 'B'))
        self.assertEqual(result.column('total').values, (17, 5))

    def test_groups_follow_first_appearance(self):
        table = Table.from_records([{'k': 'z', 'v': 1}, {'k': 'a', 'v': 2}, {'k': 'z', 'v': 3}])
        directive = AggregationDirective(['k'], [Aggregation('v', 'max', 'v_max')])
        result = self.aggregator.aggregate(table, [directive])
        self.assertEqual(result.column('k').values, ('z', 'a'))
        self.assertEqual(result.column('v_max').values, (3, 2))

    def test_several_methods_and_default_names(self):
        directive = AggregationDirective(['region'], [
            Aggregation('sales', 'avg'),
            Aggregation('sales', 'min'),
            Aggregation('sales', 'count'),
        ])
        result = self.aggregator.aggregate(self.table, [directive])
        self.assertEqual(result.column_names, ['region', 'sales_avg', 'sales_min', 'sales_count'])
        self.assertEqual(result.column('sales_avg').values, (8.5, 5))
        self.assertEqual(result.column('sales_min').values, (7, 5))
        self.assertEqual(result.column('sales_count').values, (2, 1))

    def test_multiple_grouping_columns(self):
        directive = AggregationDirective(['region', 'product'], [Aggregation('sales', 'sum', 's')])
        result = self.aggregator.aggregate(self.table, [directive])
        self.assertEqual(result.row_count, 3)

    def test_missing_values_are_skipped(self):
        table = Table.from_records([
            {'g': 'a', 'v': None},
            {'g': 'b', 'v': 4},
            {'g': 'b', 'v': None},
        ])
        directive = AggregationDirective(['g'], [
            Aggregation('v', 'sum', 'v_sum'),
            Aggregation('v', 'count', 'v_count'),
        ])
        result = self.aggregator.aggregate(table, [directive])
        self.assertEqual(result.column('v_sum').values, (None, 4))
        self.assertEqual(result.column('v_count').values, (0, 1))

    def test_chained_directives(self):
        first = AggregationDirective(['region', 'product'], [Aggregation('sales', 'sum', 'subtotal')])
        second = AggregationDirective(['region'], [Aggregation('subtotal', 'count', 'products')])
        result = self.aggregator.aggregate(self.table, [first, second])
        self.assertEqual(result.column('products').values, (2, 1))
        self.assertEqual(self.aggregator.get_aggregation_summary()['directives_applied'], 2)

    def test_non_numeric_target(self):
        directive = AggregationDirective(['region'], [Aggregation('product', 'sum', 'bad')])
        with self.assertRaises(DataProcessError) as ctx:
            self.aggregator.aggregate(self.table, [directive])
        self.assertEqual(ctx.exception.step, 'aggregate')
        self.assertIn('product', str(ctx.exception))

    def test_count_accepts_string_column(self):
        directive = AggregationDirective(['region'], [Aggregation('product', 'count', 'n')])
        result = self.aggregator.aggregate(self.table, [directive])
        self.assertEqual(result.column('n').values, (2, 1))

    def test_unknown_grouping_column(self):
        directive = AggregationDirective(['country'], [Aggregation('sales', 'sum')])
        with self.assertRaises(DataProcessError):
            self.aggregator.aggregate(self.table, [directive])

    def test_duplicate_output_names(self):
        directive = AggregationDirective(['region'], [
            Aggregation('sales', 'sum', 'x'),
            Aggregation('sales', 'avg', 'x'),
        ])
        with self.assertRaises(DataProcessError):
            self.aggregator.aggregate(self.table, [directive])

    def test_no_directives_returns_input(self):
        self.assertEqual(self.aggregator.aggregate(self.table, []), self.table)


if __name__ == '__main__':
    unittest.main()
