# ========================
# src/pipeline/processor.py
# ========================

"""
Table Processor

Single entry point for the three engine stages plus introspection of the
supported operator sets. The orchestrator and the API only talk to this
class, never to the stage modules directly.
"""

import logging
from typing import List, Optional, Sequence

from .cancellation import CancelToken
from .filtering import RowFilter, validate_expression
from .merging import ColumnMerger
from .models import (
    AGGREGATE_METHODS, FILTER_OPERATORS, MERGE_STRATEGIES,
    AggregationDirective, FilterClause, MergeDirective,
)
from .table import Table
from .transformation import GroupAggregator

logger = logging.getLogger(__name__)


class TableProcessor:
    """Filter, merge and aggregate in-memory tables."""

    def __init__(self):
        self.row_filter = RowFilter()
        self.merger = ColumnMerger()
        self.aggregator = GroupAggregator()

    def filter(self, table: Table, clauses: Sequence[FilterClause],
               cancel: Optional[CancelToken] = None) -> Table:
        return self.row_filter.filter(table, clauses, cancel)

    def merge(self, table: Table, directives: Sequence[MergeDirective],
              cancel: Optional[CancelToken] = None) -> Table:
        return self.merger.merge(table, directives, cancel)

    def aggregate(self, table: Table, directives: Sequence[AggregationDirective],
                  cancel: Optional[CancelToken] = None) -> Table:
        return self.aggregator.aggregate(table, directives, cancel)

    def validate_expression(self, expression: str, column_names: Sequence[str]) -> List[FilterClause]:
        """
        Check a filter expression such as ``age gte 30 and city eq Tokyo``
        against the available columns.

        Raises:
            ConfigurationError: if the expression is invalid
        """
        return validate_expression(expression, column_names)

    @staticmethod
    def get_supported_operators() -> List[str]:
        return list(FILTER_OPERATORS)

    @staticmethod
    def get_supported_merge_strategies() -> List[str]:
        return list(MERGE_STRATEGIES)

    @staticmethod
    def get_supported_aggregations() -> List[str]:
        return list(AGGREGATE_METHODS)

    def get_statistics(self) -> dict:
        return {
            'filter': self.row_filter.get_statistics(),
            'merge': self.merger.get_statistics(),
            'aggregate': self.aggregator.get_aggregation_summary(),
        }
