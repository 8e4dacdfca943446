# ========================
# src/pipeline/orchestrator.py
# ========================

"""
Pipeline Orchestrator Module

Coordinates one pipeline run: validate the configuration, fetch the table,
filter, merge, aggregate and hand the result to an output sink, keeping the
run tracker up to date around every stage.

Stage errors never escape ``run()``: they are returned on the PipelineResult
together with the name of the failing step.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from .cancellation import CancelToken
from .errors import PipelineError, ConfigurationError, AuthenticationError, DataProcessError
from .filtering import describe_clause
from .ingestion import DataSource, SourceConfig, get_data_source
from .models import PipelineConfig, validate_config
from .processing import Processing
from .processor import TableProcessor
from .storage import Output, OutputConfig, get_output
from .table import Table
from ..utils.config import Config
from ..utils.logging_setup import StructuredLogger
from ..utils.performance_monitor import MemorySampler, default_memory_sampler

logger = logging.getLogger(__name__)

FILE_FORMATS = ('csv', 'json')


class PipelineResult:
    """Outcome of one run: the final table and run record, or the error."""

    def __init__(self,
                 status: str,
                 config: Optional[PipelineConfig] = None,
                 table: Optional[Table] = None,
                 processing: Optional[Processing] = None,
                 error: Optional[PipelineError] = None,
                 failed_step: str = "",
                 destination: str = ""):
        self.status = status
        self.config = config
        self.table = table
        self.processing = processing
        self.error = error
        self.failed_step = failed_step
        self.destination = destination

    @property
    def ok(self) -> bool:
        return self.status == 'completed'

    def error_info(self) -> Optional[Dict[str, Any]]:
        if self.error is None:
            return None
        info = {'type': type(self.error).__name__, 'message': str(self.error), 'step': self.failed_step}
        if isinstance(self.error, ConfigurationError):
            info['field'] = self.error.field
        elif isinstance(self.error, DataProcessError):
            info['recoverable'] = self.error.is_recoverable()
            info['recoveryAction'] = self.error.get_recovery_action()
        elif isinstance(self.error, AuthenticationError):
            info['retryable'] = self.error.is_retryable()
        return info

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'configName': self.config.name if self.config else None,
            'rows': self.table.row_count if self.table is not None else 0,
            'columns': self.table.column_names if self.table is not None else [],
            'destination': self.destination,
            'error': self.error_info(),
            'report': self.processing.to_dict() if self.processing else None,
        }


class DataPipeline:
    """
    Orchestrates one configured pipeline run.

    Args:
        config (PipelineConfig): Run description; validated by ``run()``
        settings (Config): Runtime settings
        source (DataSource): Source override; chosen from ``config.type`` otherwise
        output (Output): Output override; chosen from ``config.output_format`` otherwise
        memory_sampler (MemorySampler): Memory reading capability for the run tracker
        structured_logger (StructuredLogger): Logger receiving stage events
    """

    def __init__(self,
                 config: PipelineConfig,
                 settings: Optional[Config] = None,
                 source: Optional[DataSource] = None,
                 output: Optional[Output] = None,
                 processor: Optional[TableProcessor] = None,
                 memory_sampler: Optional[MemorySampler] = None,
                 structured_logger: Optional[StructuredLogger] = None):
        self.config = config
        self.settings = settings or Config()
        self.source = source
        self.output = output
        self.processor = processor or TableProcessor()
        self.memory_sampler = memory_sampler
        self.log = structured_logger or StructuredLogger(logger)

    def create_cancel_token(self, timeout: Optional[float] = None) -> CancelToken:
        return CancelToken(
            timeout=timeout if timeout is not None else self.settings.timeout,
            poll_interval=self.settings.CANCEL_POLL_ROWS,
        )

    def _create_source(self, source_type: str) -> DataSource:
        if self.source is not None:
            return self.source
        if source_type == 'csv':
            return get_data_source(source_type, chunk_size=self.settings.CSV_CHUNK_SIZE,
                                   na_values=self.settings.NA_VALUES)
        if source_type == 'googlesheets':
            return get_data_source(source_type, timeout=self.settings.HTTP_TIMEOUT_SECONDS,
                                   na_values=self.settings.NA_VALUES)
        return get_data_source(source_type)

    def _output_config(self, config: PipelineConfig, destination: str,
                       options: Optional[Dict[str, Any]]) -> OutputConfig:
        if not destination and config.output_format in FILE_FORMATS:
            destination = str(Path(self.settings.DEFAULT_OUTPUT_DIR) / f"{config.name}.{config.output_format}")
        return OutputConfig(config.output_format, destination, options)

    def run(self,
            table: Optional[Table] = None,
            destination: str = "",
            output_options: Optional[Dict[str, Any]] = None,
            cancel: Optional[CancelToken] = None,
            write_output: bool = True) -> PipelineResult:
        """
        Execute the pipeline from start to finish.

        Args:
            table (Table): Input table; fetched from the configured source when omitted
            destination (str): Output path for file formats
            output_options (dict): Format-specific output options
            cancel (CancelToken): Cancellation signal, built from settings when omitted
            write_output (bool): Skip the output sink when False

        Returns:
            PipelineResult: ``status`` is ``completed`` or ``failed``
        """
        step = 'validate'
        config = None
        processing = None
        try:
            config = validate_config(self.config)
            cancel = cancel or self.create_cancel_token()
            self.log.info("Pipeline run started", {'config': config.name, 'source_type': config.type})

            step = 'fetch'
            source_info = "in-memory table"
            if table is None:
                source_config = SourceConfig.from_pipeline_config(config)
                source = self._create_source(config.type)
                source.validate(source_config)
                table = source.fetch(source_config, cancel)
                source_info = source.get_source_info(source_config)
            self.log.info("Source loaded", {'rows': table.row_count, 'columns': table.column_count})

            processing = Processing.from_table(
                table, config.name,
                memory_sampler=self.memory_sampler or default_memory_sampler(self.settings.ENABLE_MEMORY_SAMPLING),
            )
            processing.set_data_source_info(source_info)

            step = 'filter'
            with processing.track_step(step, table.row_count) as entry:
                filtered = self.processor.filter(table, config.filters, cancel)
                entry.output_rows = filtered.row_count
            for clause in config.filters:
                processing.add_filter(describe_clause(clause))
            processing.update_rows(table.row_count, filtered.row_count)
            self.log.info("Filter stage completed", {'input_rows': table.row_count, 'output_rows': filtered.row_count})

            step = 'merge'
            with processing.track_step(step, filtered.row_count) as entry:
                merged = self.processor.merge(filtered, config.merge_columns, cancel)
                entry.output_rows = merged.row_count
            for directive in config.merge_columns:
                processing.add_merge(directive.first_column, directive.second_column, directive.strategy)
            self.log.info("Merge stage completed", {'columns': merged.column_count})

            step = 'aggregate'
            with processing.track_step(step, merged.row_count) as entry:
                result = self.processor.aggregate(merged, config.aggregations, cancel)
                entry.output_rows = result.row_count
            for directive in config.aggregations:
                for aggregation in directive.aggregations:
                    processing.add_aggregation(aggregation.aggregate_method, aggregation.column)
            self.log.info("Aggregate stage completed", {'output_rows': result.row_count})

            processing.attach_result(result)
            processing.complete()

            step = 'output'
            output_config = self._output_config(config, destination, output_options)
            if write_output:
                output = self.output or get_output(config.output_format)
                output.validate(output_config)
                output.write(result, output_config, cancel)

        except PipelineError as e:
            self.log.error("Pipeline run failed", {'step': step, 'error': str(e)})
            if processing is not None and not processing.completed:
                processing.complete()
            return PipelineResult('failed', config=config, processing=processing,
                                  error=e, failed_step=step)

        self.log.info("Pipeline run completed", {'config': config.name, 'rows': result.row_count})
        completed = PipelineResult('completed', config=config, table=result, processing=processing,
                                   destination=output_config.destination if write_output else "")
        self._log_final_summary(completed)
        return completed

    def _log_final_summary(self, result: PipelineResult) -> None:
        """Log final pipeline summary."""
        metadata = result.processing.metadata
        logger.info("=" * 60)
        logger.info("PIPELINE EXECUTION SUMMARY")
        logger.info("=" * 60)
        logger.info(f"Configuration: {metadata.config_name}")
        logger.info(f"Data source: {metadata.data_source}")
        logger.info(f"Rows: {metadata.source_total_rows:,} read, {metadata.filtered_total_rows:,} after filters")
        logger.info(f"Result: {result.table.row_count:,} rows x {result.table.column_count} columns")
        logger.info(f"Processing time: {metadata.processing_time.total_seconds():.3f}s")
        if result.destination:
            logger.info(f"Output: {result.destination}")
        logger.info("=" * 60)

    def preview(self, result: PipelineResult, max_rows: Optional[int] = None,
                format: str = 'console') -> str:
        """Render the first rows of a completed run without writing files."""
        if not result.ok:
            raise DataProcessError('preview', "cannot preview a failed run")
        output = get_output(format)
        rows = self.settings.PREVIEW_ROWS if max_rows is None else max_rows
        return output.preview(result.processing, OutputConfig(format), rows)
