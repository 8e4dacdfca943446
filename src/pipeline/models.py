# ========================
# src/pipeline/models.py
# ========================

"""
Pipeline Configuration Model

Declarative description of one pipeline run: the data source, the filter
clauses, the merge directives, the aggregation directives and the output
format. ``validate_config`` normalises a configuration and returns a new
object, filling defaults and failing fast on the first invalid entry.

The enumerated operator sets below are the only definition of what the
engine supports; validation and introspection both read them.
"""

import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List

from .errors import ConfigurationError
from ..utils.identifiers import random_string

FILTER_OPERATORS = ("eq", "neq", "gt", "gte", "lt", "lte")
LOGICAL_OPERATORS = ("and", "or")
MERGE_STRATEGIES = ("concat", "sum", "first", "second")
AGGREGATE_METHODS = ("sum", "avg", "min", "max", "count", "median")

DEFAULT_MERGE_STRATEGY = "concat"
DEFAULT_OUTPUT_FORMAT = "csv"
UNTITLED_PREFIX = "UntitledConfig_"


def _require_str(data: Dict[str, Any], key: str, path: str) -> str:
    value = data.get(key, "")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ConfigurationError(f"{path}{key}", f"must be a string, got {type(value).__name__}")
    return value


def _require_list(data: Dict[str, Any], key: str, path: str) -> list:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigurationError(f"{path}{key}", f"must be a list, got {type(value).__name__}")
    return value


def _require_mapping(value: Any, path: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ConfigurationError(path, f"must be an object, got {type(value).__name__}")
    return value


@dataclass
class FilterClause:
    """
    One filter condition. ``logical_operator`` says how this clause combines
    with the next clause in the list.
    """
    column: str
    value: str
    operator: str
    logical_operator: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str = "") -> 'FilterClause':
        data = _require_mapping(data, path.rstrip('.') or "filter")
        value = data.get("value", "")
        # Literals are string-encoded; accept bare JSON numbers too.
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        elif value is None:
            value = ""
        elif not isinstance(value, str):
            raise ConfigurationError(f"{path}value", f"must be a string, got {type(value).__name__}")
        return cls(
            column=_require_str(data, "column", path),
            value=value,
            operator=_require_str(data, "operator", path),
            logical_operator=_require_str(data, "logicalOperator", path),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "column": self.column,
            "value": self.value,
            "operator": self.operator,
            "logicalOperator": self.logical_operator,
        }


@dataclass
class MergeDirective:
    """Build a new column from two existing ones."""
    first_column: str
    second_column: str
    strategy: str = ""
    default_values: List[str] = field(default_factory=list)
    result_column_name: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str = "") -> 'MergeDirective':
        data = _require_mapping(data, path.rstrip('.') or "mergeColumn")
        defaults = _require_list(data, "defaultValues", path)
        return cls(
            first_column=_require_str(data, "firstColumn", path),
            second_column=_require_str(data, "secondColumn", path),
            strategy=_require_str(data, "strategy", path),
            default_values=[None if v is None else str(v) for v in defaults],
            result_column_name=_require_str(data, "resultColumnName", path),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "firstColumn": self.first_column,
            "secondColumn": self.second_column,
            "strategy": self.strategy,
        }
        if self.default_values:
            data["defaultValues"] = list(self.default_values)
        if self.result_column_name:
            data["resultColumnName"] = self.result_column_name
        return data


@dataclass
class Aggregation:
    """One statistic computed per group."""
    column: str
    aggregate_method: str
    result_name: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str = "") -> 'Aggregation':
        data = _require_mapping(data, path.rstrip('.') or "aggregation")
        return cls(
            column=_require_str(data, "column", path),
            aggregate_method=_require_str(data, "aggregateMethod", path),
            result_name=_require_str(data, "resultName", path),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {"column": self.column, "aggregateMethod": self.aggregate_method}
        if self.result_name:
            data["resultName"] = self.result_name
        return data


@dataclass
class AggregationDirective:
    """Group rows by ``grouping_columns`` and compute ``aggregations`` per group."""
    grouping_columns: List[str] = field(default_factory=list)
    aggregations: List[Aggregation] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str = "") -> 'AggregationDirective':
        data = _require_mapping(data, path.rstrip('.') or "aggregation")
        grouping = _require_list(data, "groupingColumns", path)
        for i, name in enumerate(grouping):
            if not isinstance(name, str):
                raise ConfigurationError(f"{path}groupingColumns[{i}]", "must be a string")
        return cls(
            grouping_columns=list(grouping),
            aggregations=[
                Aggregation.from_dict(item, f"{path}aggregations[{i}].")
                for i, item in enumerate(_require_list(data, "aggregations", path))
            ],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "groupingColumns": list(self.grouping_columns),
            "aggregations": [a.to_dict() for a in self.aggregations],
        }


@dataclass
class PipelineConfig:
    """
    Configuration for one pipeline run.

    ``type`` selects the data source (csv, googlesheets, ...) and ``source``
    identifies the data within it (a file path, a sheet id). Both are opaque
    to the engine.
    """
    name: str = ""
    description: str = ""
    creator: str = ""
    type: str = ""
    source: str = ""
    range: str = ""
    filters: List[FilterClause] = field(default_factory=list)
    merge_columns: List[MergeDirective] = field(default_factory=list)
    aggregations: List[AggregationDirective] = field(default_factory=list)
    output_format: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PipelineConfig':
        data = _require_mapping(data, "config")
        return cls(
            name=_require_str(data, "name", ""),
            description=_require_str(data, "description", ""),
            creator=_require_str(data, "creator", ""),
            type=_require_str(data, "type", ""),
            source=_require_str(data, "source", ""),
            range=_require_str(data, "range", ""),
            filters=[
                FilterClause.from_dict(item, f"filter[{i}].")
                for i, item in enumerate(_require_list(data, "filters", ""))
            ],
            merge_columns=[
                MergeDirective.from_dict(item, f"mergeColumn[{i}].")
                for i, item in enumerate(_require_list(data, "mergeColumns", ""))
            ],
            aggregations=[
                AggregationDirective.from_dict(item, f"aggregation[{i}].")
                for i, item in enumerate(_require_list(data, "aggregations", ""))
            ],
            output_format=_require_str(data, "outputFormat", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "name": self.name,
            "description": self.description,
            "creator": self.creator,
            "type": self.type,
            "source": self.source,
        }
        if self.range:
            data["range"] = self.range
        if self.filters:
            data["filters"] = [f.to_dict() for f in self.filters]
        if self.merge_columns:
            data["mergeColumns"] = [m.to_dict() for m in self.merge_columns]
        if self.aggregations:
            data["aggregations"] = [a.to_dict() for a in self.aggregations]
        data["outputFormat"] = self.output_format
        return data

    def to_json(self, indent: int = 4) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)

    @classmethod
    def from_json(cls, text: str) -> 'PipelineConfig':
        """Parse JSON text and return the validated configuration."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigurationError("", f"failed to parse configuration JSON: {e}", e)
        return validate_config(cls.from_dict(data))

    def validate(self) -> 'PipelineConfig':
        """Return a validated, normalised copy of this configuration."""
        return validate_config(self)


def load_config(file_path) -> PipelineConfig:
    """Load and validate a configuration file."""
    path = Path(file_path)
    try:
        text = path.read_text(encoding='utf-8')
    except OSError as e:
        raise ConfigurationError("", f"cannot read configuration file {path}: {e}", e)
    return PipelineConfig.from_json(text)


def validate_filter_clause(clause: FilterClause, path: str) -> FilterClause:
    if not clause.column:
        raise ConfigurationError(f"{path}.column", "column is required")
    if not clause.value:
        raise ConfigurationError(f"{path}.value", "value is required")
    if clause.operator not in FILTER_OPERATORS:
        raise ConfigurationError(
            f"{path}.operator",
            f"invalid operator '{clause.operator}', operator must be one of {list(FILTER_OPERATORS)}"
        )
    # Required on every clause, including the last one which combines with nothing.
    if clause.logical_operator not in LOGICAL_OPERATORS:
        raise ConfigurationError(
            f"{path}.logicalOperator",
            f"invalid logical operator '{clause.logical_operator}', "
            f"operator must be one of {list(LOGICAL_OPERATORS)}"
        )
    return replace(clause)


def _validate_merge(directive: MergeDirective, path: str) -> MergeDirective:
    if not directive.first_column:
        raise ConfigurationError(f"{path}.firstColumn", "firstColumn is required")
    if not directive.second_column:
        raise ConfigurationError(f"{path}.secondColumn", "secondColumn is required")

    strategy = directive.strategy or DEFAULT_MERGE_STRATEGY
    if strategy not in MERGE_STRATEGIES:
        raise ConfigurationError(
            f"{path}.strategy",
            f"invalid strategy '{strategy}', strategy must be one of {list(MERGE_STRATEGIES)}"
        )
    if len(directive.default_values) not in (0, 2):
        raise ConfigurationError(
            f"{path}.defaultValues",
            f"defaultValues must hold exactly 2 values, got {len(directive.default_values)}"
        )
    return replace(
        directive,
        strategy=strategy,
        default_values=list(directive.default_values),
        result_column_name=(directive.result_column_name
                            or f"{directive.first_column}_{directive.second_column}"),
    )


def _validate_aggregation(aggregation: Aggregation, path: str) -> Aggregation:
    if not aggregation.column:
        raise ConfigurationError(f"{path}.column", "column is required")
    if not aggregation.aggregate_method:
        raise ConfigurationError(f"{path}.aggregateMethod", "aggregateMethod is required")
    if aggregation.aggregate_method not in AGGREGATE_METHODS:
        raise ConfigurationError(
            f"{path}.aggregateMethod",
            f"invalid aggregateMethod '{aggregation.aggregate_method}', "
            f"aggregateMethod must be one of {list(AGGREGATE_METHODS)}"
        )
    return replace(
        aggregation,
        result_name=aggregation.result_name or f"{aggregation.column}_{aggregation.aggregate_method}",
    )


def _validate_aggregation_directive(directive: AggregationDirective, path: str) -> AggregationDirective:
    if not directive.grouping_columns:
        raise ConfigurationError(f"{path}.groupingColumns", "groupingColumns cannot be empty")
    for i, name in enumerate(directive.grouping_columns):
        if not name:
            raise ConfigurationError(f"{path}.groupingColumns[{i}]", "grouping column name is required")
    if not directive.aggregations:
        raise ConfigurationError(f"{path}.aggregations", "aggregations cannot be empty")
    return AggregationDirective(
        grouping_columns=list(directive.grouping_columns),
        aggregations=[
            _validate_aggregation(aggregation, f"{path}.aggregations[{i}]")
            for i, aggregation in enumerate(directive.aggregations)
        ],
    )


def validate_config(config: PipelineConfig) -> PipelineConfig:
    """
    Check a configuration and return a normalised copy.

    Defaults filled: a random ``name`` when blank, ``outputFormat`` csv, merge
    strategy concat, merge result column names and aggregation result names.
    The argument is never modified.

    Raises:
        ConfigurationError: on the first invalid field, named by index and field
    """
    name = config.name or UNTITLED_PREFIX + random_string(10)
    if not config.type:
        raise ConfigurationError("type", "type is required, valid values are: csv, googlesheets")
    if not config.source:
        raise ConfigurationError("source", "source is required")

    filters = [validate_filter_clause(c, f"filter[{i}]") for i, c in enumerate(config.filters)]
    merges = [_validate_merge(m, f"mergeColumn[{i}]") for i, m in enumerate(config.merge_columns)]
    aggregations = [
        _validate_aggregation_directive(a, f"aggregation[{i}]")
        for i, a in enumerate(config.aggregations)
    ]

    return replace(
        config,
        name=name,
        output_format=config.output_format or DEFAULT_OUTPUT_FORMAT,
        filters=filters,
        merge_columns=merges,
        aggregations=aggregations,
    )
