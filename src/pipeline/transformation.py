# ========================
# src/pipeline/transformation.py
# ========================

"""
Data Transformation Module

Groups rows and computes per-group statistics for each aggregation directive.

Directives are chained: each directive runs over the table produced by the
previous one. Groups are emitted in first-seen order. Missing values are
ignored by every method; ``count`` counts the non-missing values of a group,
and a group without any non-missing value yields a missing statistic for
every other method.
"""

import logging
import statistics
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .cancellation import CancelToken, check_cancelled
from .errors import DataProcessError
from .models import AggregationDirective, Aggregation
from .table import Column, Table, NUMERIC

logger = logging.getLogger(__name__)

STEP_NAME = "aggregate"


def _sum(values: List[Any]):
    return sum(values) if values else None


def _avg(values: List[Any]):
    return sum(values) / len(values) if values else None


def _min(values: List[Any]):
    return min(values) if values else None


def _max(values: List[Any]):
    return max(values) if values else None


def _count(values: List[Any]) -> int:
    return len(values)


def _median(values: List[Any]):
    """Middle value of the sorted values, or the mean of the two middle values."""
    if not values:
        return None
    return statistics.median(values)


# One entry per name in AGGREGATE_METHODS.
AGGREGATE_FUNCTIONS: Dict[str, Callable[[List[Any]], Any]] = {
    'sum': _sum,
    'avg': _avg,
    'min': _min,
    'max': _max,
    'count': _count,
    'median': _median,
}

# Methods that accept any column type.
TYPE_AGNOSTIC_METHODS = ('count',)


class GroupAggregator:
    """
    Performs grouped aggregations on in-memory tables.
    Only group membership (row indices) is kept while computing.
    """

    def __init__(self):
        self.groups_emitted = 0
        self.directives_applied = 0

    def aggregate(self,
                  table: Table,
                  directives: Sequence[AggregationDirective],
                  cancel: Optional[CancelToken] = None) -> Table:
        """
        Apply the directives in sequence and return the final table.

        Raises:
            DataProcessError: for unknown columns, non-numeric targets or
                clashing output column names
            OperationCancelledError: if ``cancel`` fires mid-stage
        """
        check_cancelled(cancel, STEP_NAME)
        result = table
        for index, directive in enumerate(directives):
            result = self._apply_directive(result, directive, index, cancel)
            self.directives_applied += 1
        return result

    def _apply_directive(self,
                         table: Table,
                         directive: AggregationDirective,
                         index: int,
                         cancel: Optional[CancelToken]) -> Table:
        self._check_directive(table, directive, index)

        groups = self._group_rows(table, directive.grouping_columns, cancel)
        logger.info(
            f"Grouped {table.row_count} rows into {len(groups)} groups "
            f"by {directive.grouping_columns}"
        )

        output: List[Column] = []
        keys = list(groups)
        for position, name in enumerate(directive.grouping_columns):
            source = table.column(name)
            output.append(Column(name, (key[position] for key in keys), source.dtype))

        for aggregation in directive.aggregations:
            output.append(self._compute(table, groups, aggregation, cancel))

        self.groups_emitted += len(groups)
        return Table(output)

    def _check_directive(self, table: Table, directive: AggregationDirective, index: int) -> None:
        for name in directive.grouping_columns:
            if not table.has_column(name):
                raise DataProcessError(
                    STEP_NAME,
                    f"aggregation[{index}]: grouping column '{name}' not found; "
                    f"available columns: {table.column_names}"
                )

        output_names = list(directive.grouping_columns)
        for aggregation in directive.aggregations:
            method = aggregation.aggregate_method
            if method not in AGGREGATE_FUNCTIONS:
                raise DataProcessError(STEP_NAME, f"aggregation[{index}]: unsupported method '{method}'")
            if not table.has_column(aggregation.column):
                raise DataProcessError(
                    STEP_NAME,
                    f"aggregation[{index}]: column '{aggregation.column}' not found; "
                    f"available columns: {table.column_names}"
                )
            if method not in TYPE_AGNOSTIC_METHODS and table.dtype(aggregation.column) != NUMERIC:
                raise DataProcessError(
                    STEP_NAME,
                    f"aggregation[{index}]: column '{aggregation.column}' is not numeric, "
                    f"cannot compute {method}"
                )
            output_names.append(aggregation.result_name or f"{aggregation.column}_{method}")

        duplicates = sorted({n for n in output_names if output_names.count(n) > 1})
        if duplicates:
            raise DataProcessError(
                STEP_NAME, f"aggregation[{index}]: duplicate output column names {duplicates}"
            )

    @staticmethod
    def _group_rows(table: Table,
                    grouping_columns: Sequence[str],
                    cancel: Optional[CancelToken]) -> Dict[Tuple[Any, ...], List[int]]:
        key_columns = [table.column(name).values for name in grouping_columns]
        groups: Dict[Tuple[Any, ...], List[int]] = {}
        for row in range(table.row_count):
            if cancel is not None:
                cancel.poll(STEP_NAME, row)
            key = tuple(values[row] for values in key_columns)
            groups.setdefault(key, []).append(row)
        return groups

    @staticmethod
    def _compute(table: Table,
                 groups: Dict[Tuple[Any, ...], List[int]],
                 aggregation: Aggregation,
                 cancel: Optional[CancelToken]) -> Column:
        method = aggregation.aggregate_method
        function = AGGREGATE_FUNCTIONS[method]
        values = table.column(aggregation.column).values

        results = []
        for position, rows in enumerate(groups.values()):
            if cancel is not None:
                cancel.poll(STEP_NAME, position)
            present = [values[row] for row in rows if values[row] is not None]
            results.append(function(present))

        name = aggregation.result_name or f"{aggregation.column}_{method}"
        return Column(name, results, NUMERIC)

    def get_aggregation_summary(self) -> Dict[str, Any]:
        return {
            'directives_applied': self.directives_applied,
            'groups_emitted': self.groups_emitted,
        }


def aggregate_table(table: Table,
                    directives: Sequence[AggregationDirective],
                    cancel: Optional[CancelToken] = None) -> Table:
    """Aggregate ``table`` with a fresh GroupAggregator."""
    return GroupAggregator().aggregate(table, directives, cancel)
