# ========================
# src/pipeline/table.py
# ========================

"""
In-Memory Table

Column-oriented, row-ordered table with named, typed columns. Tables are
immutable: every operation returns a new Table and shares the untouched
column tuples with its source.
"""

import math
import re
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

NUMERIC = "numeric"
STRING = "string"

# Plain ASCII decimal notation only: no digit separators, no Unicode digits.
_INTEGER_RE = re.compile(r"[+-]?[0-9]+")
_DECIMAL_RE = re.compile(r"[+-]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")


def is_missing(value: Any) -> bool:
    """A value is missing when it is None (an empty string is present)."""
    return value is None


def parse_number(value: Any):
    """
    Return ``value`` as an int or float, or None when it is not numeric.

    Numeric strings are parsed when written in plain ASCII decimal notation
    (``1_000`` and non-ASCII digits are not numbers); booleans, NaN and
    infinities are not numbers.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if not isinstance(value, str):
        return None

    text = value.strip()
    if _INTEGER_RE.fullmatch(text):
        return int(text)
    if not _DECIMAL_RE.fullmatch(text):
        return None
    number = float(text)
    return number if math.isfinite(number) else None


def format_value(value: Any) -> Optional[str]:
    """Canonical string form of a cell value; integral floats drop the '.0'."""
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def infer_dtype(values: Iterable[Any]) -> str:
    """Numeric when every non-missing value is a number, string otherwise."""
    for value in values:
        if value is not None and not _is_number(value):
            return STRING
    return NUMERIC


class Column:
    """A named, typed, immutable sequence of values."""

    __slots__ = ('name', 'values', 'dtype')

    def __init__(self, name: str, values: Iterable[Any], dtype: Optional[str] = None):
        values = tuple(values)
        dtype = dtype or infer_dtype(values)
        if dtype == STRING:
            values = tuple(v if v is None or isinstance(v, str) else format_value(v) for v in values)
        elif dtype == NUMERIC:
            if infer_dtype(values) != NUMERIC:
                raise ValueError(f"Column '{name}' declared numeric but holds non-numeric values")
        else:
            raise ValueError(f"Unknown column dtype '{dtype}'")

        self.name = name
        self.values = values
        self.dtype = dtype

    def __len__(self) -> int:
        return len(self.values)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Column):
            return NotImplemented
        return (self.name, self.dtype, self.values) == (other.name, other.dtype, other.values)

    def __repr__(self) -> str:
        return f"Column(name={self.name!r}, dtype={self.dtype!r}, length={len(self.values)})"


class Table:
    """
    Ordered set of uniquely named columns of equal length.

    Args:
        columns: Mapping of column name to values, or an iterable of Column
    """

    def __init__(self, columns: Optional[Any] = None):
        self._columns: Dict[str, Column] = {}
        if columns is None:
            columns = {}
        items = columns.items() if isinstance(columns, Mapping) else ((c.name, c) for c in columns)

        row_count = None
        for name, values in items:
            column = values if isinstance(values, Column) else Column(name, values)
            if name in self._columns:
                raise ValueError(f"Duplicate column name '{name}'")
            if row_count is None:
                row_count = len(column)
            elif len(column) != row_count:
                raise ValueError(
                    f"Column '{name}' has {len(column)} values, expected {row_count}"
                )
            self._columns[name] = column
        self._row_count = row_count or 0

    @classmethod
    def from_records(cls, records: Sequence[Mapping[str, Any]],
                     columns: Optional[Sequence[str]] = None) -> 'Table':
        """Build a table from a list of dicts; absent keys become missing values."""
        if columns is None:
            columns = []
            for record in records:
                for key in record:
                    if key not in columns:
                        columns.append(key)
        return cls({name: [record.get(name) for record in records] for name in columns})

    @classmethod
    def from_rows(cls, header: Sequence[str], rows: Sequence[Sequence[Any]]) -> 'Table':
        """Build a table from a header and row tuples."""
        for index, row in enumerate(rows):
            if len(row) != len(header):
                raise ValueError(f"Row {index} has {len(row)} values, expected {len(header)}")
        return cls({name: [row[i] for row in rows] for i, name in enumerate(header)})

    @property
    def column_names(self) -> List[str]:
        return list(self._columns)

    @property
    def row_count(self) -> int:
        return self._row_count

    @property
    def column_count(self) -> int:
        return len(self._columns)

    def has_column(self, name: str) -> bool:
        return name in self._columns

    def column(self, name: str) -> Column:
        try:
            return self._columns[name]
        except KeyError:
            raise KeyError(f"Column '{name}' not found") from None

    def dtype(self, name: str) -> str:
        return self.column(name).dtype

    def columns(self) -> List[Column]:
        return list(self._columns.values())

    def take(self, indices: Sequence[int]) -> 'Table':
        """Return a table holding the given rows, in the given order."""
        return Table(
            Column(col.name, (col.values[i] for i in indices), col.dtype)
            for col in self._columns.values()
        )

    def head(self, n: int) -> 'Table':
        return self.take(range(min(max(n, 0), self._row_count)))

    def with_column(self, name: str, values: Iterable[Any], dtype: Optional[str] = None) -> 'Table':
        """Return a new table with one column appended."""
        if name in self._columns:
            raise ValueError(f"Duplicate column name '{name}'")
        column = Column(name, values, dtype)
        if self._columns and len(column) != self._row_count:
            raise ValueError(
                f"Column '{name}' has {len(column)} values, expected {self._row_count}"
            )
        return Table(list(self._columns.values()) + [column])

    def rows(self) -> Iterator[Tuple[Any, ...]]:
        columns = [col.values for col in self._columns.values()]
        for i in range(self._row_count):
            yield tuple(values[i] for values in columns)

    def to_records(self) -> List[Dict[str, Any]]:
        names = self.column_names
        return [dict(zip(names, row)) for row in self.rows()]

    def __len__(self) -> int:
        return self._row_count

    def __eq__(self, other) -> bool:
        if not isinstance(other, Table):
            return NotImplemented
        return self.columns() == other.columns()

    def __repr__(self) -> str:
        return f"Table(columns={self.column_names!r}, rows={self._row_count})"
