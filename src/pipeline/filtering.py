# ========================
# src/pipeline/filtering.py
# ========================

"""
Data Filtering Module

Evaluates an ordered list of filter clauses against a table and keeps the
matching rows.

Clauses are folded strictly left to right: the running result is combined
with the next clause using the current clause's ``logical_operator``. There
is no precedence between ``and`` and ``or``, so ``a or b and c`` reads as
``(a or b) and c``.
"""

import logging
import shlex
from typing import Any, List, Optional, Sequence

from .cancellation import CancelToken, check_cancelled
from .errors import ConfigurationError, DataProcessError
from .models import FilterClause, LOGICAL_OPERATORS, validate_filter_clause
from .table import Table, parse_number, format_value

logger = logging.getLogger(__name__)

STEP_NAME = "filter"

# One entry per name in FILTER_OPERATORS.
COMPARATORS = {
    "eq": lambda a, b: a == b,
    "neq": lambda a, b: a != b,
    "gt": lambda a, b: a > b,
    "gte": lambda a, b: a >= b,
    "lt": lambda a, b: a < b,
    "lte": lambda a, b: a <= b,
}


def compare_values(cell: Any, literal: str, operator: str) -> bool:
    """
    Compare one cell against a string literal.

    Both sides are compared as numbers when both parse as numbers, otherwise
    as strings. A missing cell only satisfies ``neq``.
    """
    if cell is None:
        return operator == "neq"

    left = parse_number(cell)
    right = parse_number(literal)
    if left is None or right is None:
        left = format_value(cell)
        right = literal

    try:
        return COMPARATORS[operator](left, right)
    except KeyError:
        raise ValueError(f"Unsupported operator '{operator}'") from None


def describe_clause(clause: FilterClause) -> str:
    """Render a clause in expression syntax, e.g. ``age gte 30``."""
    return f"{_quote(clause.column)} {clause.operator} {_quote(clause.value)}"


def _quote(token: str) -> str:
    if token and not any(ch.isspace() or ch in '"\'' for ch in token):
        return token
    return '"' + token.replace('\\', '\\\\').replace('"', '\\"') + '"'


def parse_expression(expression: str) -> List[FilterClause]:
    """
    Parse ``column op value [and|or column op value]...`` into clauses.

    Tokens containing spaces are double-quoted. The final clause gets the
    ``and`` logical operator since it combines with nothing.

    Raises:
        ConfigurationError: if the expression is malformed
    """
    try:
        tokens = shlex.split(expression, posix=True)
    except ValueError as e:
        raise ConfigurationError("expression", f"cannot tokenize expression: {e}", e)
    if not tokens:
        raise ConfigurationError("expression", "expression is empty")

    clauses = []
    position = 0
    while True:
        if position + 3 > len(tokens):
            raise ConfigurationError(
                "expression",
                f"incomplete clause at token {position + 1}: expected 'column operator value'"
            )
        column, operator, value = tokens[position:position + 3]
        position += 3

        if position == len(tokens):
            clauses.append(FilterClause(column, value, operator, "and"))
            break

        logical = tokens[position].lower()
        if logical not in LOGICAL_OPERATORS:
            raise ConfigurationError(
                "expression",
                f"expected one of {list(LOGICAL_OPERATORS)} at token {position + 1}, got '{tokens[position]}'"
            )
        clauses.append(FilterClause(column, value, operator, logical))
        position += 1
    return clauses


def validate_expression(expression: str, column_names: Sequence[str]) -> List[FilterClause]:
    """
    Check that an expression parses, uses supported operators and only
    references known columns. Returns the parsed clauses.
    """
    clauses = parse_expression(expression)
    known = set(column_names)
    for i, clause in enumerate(clauses):
        validate_filter_clause(clause, f"filter[{i}]")
        if clause.column not in known:
            raise ConfigurationError(
                f"filter[{i}].column",
                f"unknown column '{clause.column}', available columns: {list(column_names)}"
            )
    return clauses


class RowFilter:
    """
    Applies filter clauses to a table.
    Keeps row order and every column of the input.
    """

    def __init__(self):
        self.rows_evaluated = 0
        self.rows_matched = 0

    def filter(self,
               table: Table,
               clauses: Sequence[FilterClause],
               cancel: Optional[CancelToken] = None) -> Table:
        """
        Return a new table holding the rows that satisfy the clauses.

        Raises:
            DataProcessError: if a clause references an unknown column
            OperationCancelledError: if ``cancel`` fires mid-stage
        """
        check_cancelled(cancel, STEP_NAME)
        if not clauses:
            logger.debug("No filter clauses; keeping all rows")
            return table.take(range(table.row_count))

        for clause in clauses:
            if not table.has_column(clause.column):
                raise DataProcessError(
                    STEP_NAME,
                    f"column '{clause.column}' not found; available columns: {table.column_names}"
                )

        columns = [table.column(clause.column).values for clause in clauses]
        matched = []
        for row in range(table.row_count):
            if cancel is not None:
                cancel.poll(STEP_NAME, row)
            if self._evaluate_row(clauses, columns, row):
                matched.append(row)

        self.rows_evaluated += table.row_count
        self.rows_matched += len(matched)
        logger.info(f"Filter kept {len(matched)}/{table.row_count} rows using {len(clauses)} clauses")
        return table.take(matched)

    @staticmethod
    def _evaluate_row(clauses: Sequence[FilterClause], columns: List[tuple], row: int) -> bool:
        result = compare_values(columns[0][row], clauses[0].value, clauses[0].operator)
        for i in range(1, len(clauses)):
            current = compare_values(columns[i][row], clauses[i].value, clauses[i].operator)
            if clauses[i - 1].logical_operator == "or":
                result = result or current
            else:
                result = result and current
        return result

    def get_statistics(self) -> dict:
        return {
            'rows_evaluated': self.rows_evaluated,
            'rows_matched': self.rows_matched,
        }


def filter_table(table: Table,
                 clauses: Sequence[FilterClause],
                 cancel: Optional[CancelToken] = None) -> Table:
    """Filter ``table`` with a fresh RowFilter."""
    return RowFilter().filter(table, clauses, cancel)
