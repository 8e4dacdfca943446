# ========================
# tests/test_table.py
# ========================

import unittest
import os
import sys

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.pipeline.table import (
    Table, Column, NUMERIC, STRING, parse_number, format_value, infer_dtype,
)


class TestValueHelpers(unittest.TestCase):
    """Test number parsing and value formatting."""

    def test_parse_number(self):
        self.assertEqual(parse_number("42"), 42)
        self.assertEqual(parse_number(" 2.5 "), 2.5)
        self.assertEqual(parse_number(7), 7)
        self.assertIsNone(parse_number("abc"))
        self.assertIsNone(parse_number(""))
        self.assertIsNone(parse_number(None))
        self.assertIsNone(parse_number(True))
        self.assertIsNone(parse_number("nan"))
        self.assertIsNone(parse_number(float("inf")))
        self.assertEqual(parse_number("-1.5e3"), -1500.0)
        self.assertEqual(parse_number("+.5"), 0.5)
        self.assertIsNone(parse_number("1_000"))
        self.assertIsNone(parse_number("1_0.5"))
        self.assertIsNone(parse_number("\u0661\u0662"))
        self.assertIsNone(parse_number("\uff11"))
        self.assertIsNone(parse_number("infinity"))

    def test_format_value(self):
        self.assertEqual(format_value(3.0), "3")
        self.assertEqual(format_value(2.5), "2.5")
        self.assertEqual(format_value("x"), "x")
        self.assertIsNone(format_value(None))

    def test_infer_dtype(self):
        self.assertEqual(infer_dtype([1, 2.5, None]), NUMERIC)
        self.assertEqual(infer_dtype([1, "a"]), STRING)
        self.assertEqual(infer_dtype([]), NUMERIC)


class TestColumn(unittest.TestCase):
    """Test typed columns."""

    def test_string_column_stringifies_values(self):
        column = Column("code", [1, "b", None], STRING)
        self.assertEqual(column.values, ("1", "b", None))

    def test_declared_numeric_rejects_strings(self):
        with self.assertRaises(ValueError):
            Column("amount", [1, "x"], NUMERIC)

    def test_unknown_dtype(self):
        with self.assertRaises(ValueError):
            Column("a", [1], "date")


class TestTable(unittest.TestCase):
    """Test the immutable in-memory table."""

    def setUp(self):
        self.table = Table.from_records([
            {'name': 'Alice', 'age': 34},
            {'name': 'Bob', 'age': 27},
            {'name': 'Carol', 'age': None},
        ])

    def test_shape_and_types(self):
        self.assertEqual(self.table.column_names, ['name', 'age'])
        self.assertEqual(self.table.row_count, 3)
        self.assertEqual(self.table.column_count, 2)
        self.assertEqual(len(self.table), 3)
        self.assertEqual(self.table.dtype('name'), STRING)
        self.assertEqual(self.table.dtype('age'), NUMERIC)

    def test_unknown_column(self):
        self.assertFalse(self.table.has_column('city'))
        with self.assertRaises(KeyError):
            self.table.column('city')

    def test_take_keeps_given_order(self):
        taken = self.table.take([2, 0])
        self.assertEqual(taken.column('name').values, ('Carol', 'Alice'))
        self.assertEqual(self.table.row_count, 3)

    def test_head(self):
        self.assertEqual(self.table.head(2).row_count, 2)
        self.assertEqual(self.table.head(10).row_count, 3)
        self.assertEqual(self.table.head(0).row_count, 0)

    def test_with_column_returns_new_table(self):
        extended = self.table.with_column('city', ['Oslo', 'Rome', None])
        self.assertEqual(extended.column_names, ['name', 'age', 'city'])
        self.assertEqual(self.table.column_names, ['name', 'age'])

    def test_with_column_rejects_duplicates_and_bad_length(self):
        with self.assertRaises(ValueError):
            self.table.with_column('age', [1, 2, 3])
        with self.assertRaises(ValueError):
            self.table.with_column('city', ['Oslo'])

    def test_unequal_columns_rejected(self):
        with self.assertRaises(ValueError):
            Table({'a': [1, 2], 'b': [1]})

    def test_from_rows_and_records(self):
        table = Table.from_rows(['a', 'b'], [(1, 'x'), (2, 'y')])
        self.assertEqual(list(table.rows()), [(1, 'x'), (2, 'y')])
        self.assertEqual(table.to_records(), [{'a': 1, 'b': 'x'}, {'a': 2, 'b': 'y'}])
        with self.assertRaises(ValueError):
            Table.from_rows(['a', 'b'], [(1,)])

    def test_equality(self):
        same = Table.from_records([
            {'name': 'Alice', 'age': 34},
            {'name': 'Bob', 'age': 27},
            {'name': 'Carol', 'age': None},
        ])
        self.assertEqual(self.table, same)
        self.assertNotEqual(self.table, self.table.head(1))


if __name__ == '__main__':
    unittest.main()
