# ========================
# tests/test_merging.py
# ========================

import unittest
import os
import sys

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.pipeline.errors import DataProcessError
from src.pipeline.merging import ColumnMerger
from src.pipeline.models import MergeDirective, MERGE_STRATEGIES
from src.pipeline.table import Table, NUMERIC


class TestColumnMerger(unittest.TestCase):
    """Test the merge stage."""

    def setUp(self):
        self.table = Table.from_records([
            {'first': 'Ada', 'last': 'Lovelace', 'base': 10, 'bonus': 5},
            {'first': 'Alan', 'last': None, 'base': 20, 'bonus': None},
            {'first': None, 'last': 'Hopper', 'base': None, 'bonus': 7},
        ])
        self.merger = ColumnMerger()

    def test_concat(self):
        result = self.merger.merge(self.table, [MergeDirective('first', 'last', 'concat', [], 'full')])
        self.assertEqual(result.column('full').values, ('AdaLovelace', None, None))
        self.assertEqual(result.column_names[-1], 'full')
        self.assertEqual(result.row_count, self.table.row_count)

    def test_sum_keeps_row_count(self):
        result = self.merger.merge(self.table, [MergeDirective('base', 'bonus', 'sum', [], 'total')])
        self.assertEqual(result.row_count, self.table.row_count)
        self.assertEqual(result.column('total').values, (15, None, None))
        self.assertEqual(result.dtype('total'), NUMERIC)

    def test_default_values_fill_missing_operands(self):
        directive = MergeDirective('base', 'bonus', 'sum', ['0', '0'], 'total')
        result = self.merger.merge(self.table, [directive])
        self.assertEqual(result.column('total').values, (15, 20, 7))

    def test_concat_uses_defaults_verbatim(self):
        table = Table.from_records([{'a': None, 'b': 'x'}, {'a': 'y', 'b': None}])
        directive = MergeDirective('a', 'b', 'concat', ['007', '1.50'], 'ab')
        result = self.merger.merge(table, [directive])
        self.assertEqual(result.column('ab').values, ('007x', 'y1.50'))

    def test_pick_default_matches_column_type(self):
        result = self.merger.merge(self.table, [
            MergeDirective('base', 'bonus', 'second', ['0', '0'], 'numeric_pick'),
            MergeDirective('first', 'last', 'first', ['007', '-'], 'text_pick'),
        ])
        self.assertEqual(result.column('numeric_pick').values, (5, 0, 7))
        self.assertEqual(result.dtype('numeric_pick'), NUMERIC)
        self.assertEqual(result.column('text_pick').values, ('Ada', 'Alan', '007'))

    def test_first_and_second(self):
        result = self.merger.merge(self.table, [
            MergeDirective('first', 'last', 'first', [], 'pick_first'),
            MergeDirective('first', 'last', 'second', [], 'pick_second'),
        ])
        self.assertEqual(result.column('pick_first').values, ('Ada', 'Alan', 'Hopper'))
        self.assertEqual(result.column('pick_second').values, ('Lovelace', 'Alan', 'Hopper'))

    def test_default_result_name(self):
        result = self.merger.merge(self.table, [MergeDirective('first', 'last', 'concat')])
        self.assertIn('first_last', result.column_names)

    def test_chained_merges_see_earlier_results(self):
        result = self.merger.merge(self.table, [
            MergeDirective('base', 'bonus', 'sum', ['0', '0'], 'total'),
            MergeDirective('total', 'base', 'sum', ['0', '0'], 'double_base_plus_bonus'),
        ])
        self.assertEqual(result.column('double_base_plus_bonus').values, (25, 40, 7))
        self.assertEqual(self.merger.get_statistics(), {'columns_created': 2})

    def test_sum_of_non_numeric_names_column(self):
        with self.assertRaises(DataProcessError) as ctx:
            self.merger.merge(self.table, [MergeDirective('first', 'base', 'sum', [], 'bad')])
        self.assertEqual(ctx.exception.step, 'merge')
        self.assertIn("'first'", str(ctx.exception))

    def test_unknown_column(self):
        with self.assertRaises(DataProcessError) as ctx:
            self.merger.merge(self.table, [MergeDirective('first', 'middle', 'concat')])
        self.assertIn('middle', str(ctx.exception))

    def test_result_name_collision(self):
        with self.assertRaises(DataProcessError):
            self.merger.merge(self.table, [MergeDirective('base', 'bonus', 'sum', [], 'base')])

    def test_every_strategy_is_available(self):
        for strategy in MERGE_STRATEGIES:
            result = self.merger.merge(self.table, [MergeDirective('base', 'bonus', strategy, [], 'out')])
            self.assertIsNotNone(result.column('out').values[0], strategy)

    def test_input_not_modified(self):
        self.merger.merge(self.table, [MergeDirective('first', 'last', 'concat', [], 'full')])
        self.assertEqual(self.table.column_names, ['first', 'last', 'base', 'bonus'])


if __name__ == '__main__':
    unittest.main()
