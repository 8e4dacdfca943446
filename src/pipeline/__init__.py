# ========================
# src/pipeline/__init__.py
# ========================

"""
Tabular Transformation Pipeline Package

This package contains the core components of the declarative pipeline:
- models: Pipeline configuration model and validation
- table: Column-oriented in-memory table
- ingestion: Data sources (CSV, Google Sheets)
- filtering / merging / transformation: The three engine stages
- processing: Per-run metadata tracker
- storage: Output sinks
- orchestrator: Pipeline coordination
"""

from .errors import (
    PipelineError, ConfigurationError, AuthenticationError,
    DataProcessError, OperationCancelledError,
)
from .table import Table, Column
from .models import (
    FilterClause, MergeDirective, Aggregation, AggregationDirective,
    PipelineConfig, validate_config, load_config,
)
from .cancellation import CancelToken
from .ingestion import CSVReader, DataSource, SourceConfig, get_data_source
from .processor import TableProcessor
from .processing import Processing
from .storage import Output, OutputConfig, get_output
from .orchestrator import DataPipeline, PipelineResult

__all__ = [
    'PipelineError',
    'ConfigurationError',
    'AuthenticationError',
    'DataProcessError',
    'OperationCancelledError',
    'Table',
    'Column',
    'FilterClause',
    'MergeDirective',
    'Aggregation',
    'AggregationDirective',
    'PipelineConfig',
    'validate_config',
    'load_config',
    'CancelToken',
    'CSVReader',
    'DataSource',
    'SourceConfig',
    'get_data_source',
    'TableProcessor',
    'Processing',
    'Output',
    'OutputConfig',
    'get_output',
    'DataPipeline',
    'PipelineResult',
]

__version__ = "1.0.0"
