# ========================
# src/pipeline/merging.py
# ========================

"""
Column Merge Module

Builds new columns from pairs of existing columns. Directives run in list
order and each appends one column, so a later directive may use a column
produced by an earlier one.

Strategies:
- concat: string concatenation of the two values
- sum: numeric addition; a non-numeric value fails the whole merge
- first: the first value, or the second when the first is missing
- second: the second value, or the first when the second is missing

Missing values are replaced by ``default_values`` before the strategy runs.
Defaults are used as written, so ``concat`` keeps leading zeros.
A value that is still missing makes ``concat`` and ``sum`` produce a missing
result.
"""

import logging
from typing import Any, Callable, Dict, Optional, Sequence

from .cancellation import CancelToken, check_cancelled
from .errors import DataProcessError
from .models import MergeDirective, DEFAULT_MERGE_STRATEGY, MERGE_STRATEGIES
from .table import Column, Table, NUMERIC, parse_number, format_value

logger = logging.getLogger(__name__)

STEP_NAME = "merge"

# Strategies that return one of the operands unchanged.
PICK_STRATEGIES = ("first", "second")


def _resolve_default(value: Optional[str], column: Column, strategy_name: str) -> Any:
    """
    Defaults are string literals used verbatim. Only ``first`` and ``second``
    turn a numeric-looking default into a number, and only for a numeric
    column, so the merged column keeps its type.
    """
    if value is None or strategy_name not in PICK_STRATEGIES or column.dtype != NUMERIC:
        return value
    number = parse_number(value)
    return value if number is None else number


class ColumnMerger:
    """Applies merge directives to a table."""

    def __init__(self):
        self.columns_created = 0
        self._strategies: Dict[str, Callable] = {
            name: getattr(self, f"_{name}") for name in MERGE_STRATEGIES
        }

    def merge(self,
              table: Table,
              directives: Sequence[MergeDirective],
              cancel: Optional[CancelToken] = None) -> Table:
        """
        Return a new table with one extra column per directive.

        Raises:
            DataProcessError: for unknown source columns, duplicate result
                columns, unsupported strategies or non-numeric ``sum`` operands
            OperationCancelledError: if ``cancel`` fires mid-stage
        """
        check_cancelled(cancel, STEP_NAME)
        result = table
        for index, directive in enumerate(directives):
            result = self._apply_directive(result, directive, index, cancel)
        return result

    def _apply_directive(self,
                         table: Table,
                         directive: MergeDirective,
                         index: int,
                         cancel: Optional[CancelToken]) -> Table:
        for name in (directive.first_column, directive.second_column):
            if not table.has_column(name):
                raise DataProcessError(
                    STEP_NAME,
                    f"mergeColumn[{index}]: column '{name}' not found; "
                    f"available columns: {table.column_names}"
                )

        strategy_name = directive.strategy or DEFAULT_MERGE_STRATEGY
        strategy = self._strategies.get(strategy_name)
        if strategy is None:
            raise DataProcessError(STEP_NAME, f"mergeColumn[{index}]: unsupported strategy '{strategy_name}'")

        result_name = directive.result_column_name or f"{directive.first_column}_{directive.second_column}"
        if table.has_column(result_name):
            raise DataProcessError(
                STEP_NAME, f"mergeColumn[{index}]: result column '{result_name}' already exists"
            )

        first_column = table.column(directive.first_column)
        second_column = table.column(directive.second_column)
        first_default, second_default = None, None
        if directive.default_values:
            first_default = _resolve_default(directive.default_values[0], first_column, strategy_name)
            second_default = _resolve_default(directive.default_values[1], second_column, strategy_name)

        first_values = first_column.values
        second_values = second_column.values
        merged = []
        for row in range(table.row_count):
            if cancel is not None:
                cancel.poll(STEP_NAME, row)
            first = first_values[row]
            second = second_values[row]
            if first is None:
                first = first_default
            if second is None:
                second = second_default
            merged.append(strategy(first, second, directive))

        self.columns_created += 1
        logger.info(
            f"Merged '{directive.first_column}' and '{directive.second_column}' "
            f"into '{result_name}' ({strategy_name})"
        )
        try:
            return table.with_column(result_name, merged, NUMERIC if strategy_name == 'sum' else None)
        except ValueError as e:
            raise DataProcessError(STEP_NAME, f"mergeColumn[{index}]: {e}", e)

    @staticmethod
    def _concat(first: Any, second: Any, directive: MergeDirective) -> Optional[str]:
        if first is None or second is None:
            return None
        return format_value(first) + format_value(second)

    @staticmethod
    def _sum(first: Any, second: Any, directive: MergeDirective):
        if first is None or second is None:
            return None
        left = parse_number(first)
        if left is None:
            raise DataProcessError(
                STEP_NAME,
                f"cannot sum non-numeric value {first!r} in column '{directive.first_column}'"
            )
        right = parse_number(second)
        if right is None:
            raise DataProcessError(
                STEP_NAME,
                f"cannot sum non-numeric value {second!r} in column '{directive.second_column}'"
            )
        return left + right

    @staticmethod
    def _first(first: Any, second: Any, directive: MergeDirective) -> Any:
        return first if first is not None else second

    @staticmethod
    def _second(first: Any, second: Any, directive: MergeDirective) -> Any:
        return second if second is not None else first

    def get_statistics(self) -> dict:
        return {'columns_created': self.columns_created}


def merge_columns(table: Table,
                  directives: Sequence[MergeDirective],
                  cancel: Optional[CancelToken] = None) -> Table:
    """Merge columns of ``table`` with a fresh ColumnMerger."""
    return ColumnMerger().merge(table, directives, cancel)
