# ========================
# src/pipeline/processing.py
# ========================

"""
Run Tracker

``Processing`` records what happened during one pipeline run: row counts,
the applied filters, merges and aggregations, wall-clock timing, memory
readings and one performance entry per step. It never transforms data.

The orchestrator creates it before the first stage, logs each stage right
after it completes and calls ``complete()`` once at the end. After that the
record is read-only. One instance serves exactly one run and is not safe for
concurrent mutation.

The JSON report carries only ``metadata``; row data is left out.
"""

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from .errors import DataProcessError
from .table import Table
from ..utils.performance_monitor import MemorySampler, NullMemorySampler

logger = logging.getLogger(__name__)

STEP_NAME = "processing"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _nanoseconds(delta: timedelta) -> int:
    return (delta // timedelta(microseconds=1)) * 1000


def _isoformat(moment: Optional[datetime]) -> Optional[str]:
    return moment.isoformat() if moment is not None else None


@dataclass
class MemoryStats:
    peak_alloc_bytes: int = 0
    peak_sys_bytes: int = 0
    total_alloc_bytes: int = 0
    final_alloc_bytes: int = 0
    num_gc: int = 0
    memory_increase_percent: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'peakAllocBytes': self.peak_alloc_bytes,
            'peakSysBytes': self.peak_sys_bytes,
            'totalAllocBytes': self.total_alloc_bytes,
            'finalAllocBytes': self.final_alloc_bytes,
            'numGC': self.num_gc,
            'memoryIncreasePercent': self.memory_increase_percent,
        }


@dataclass
class PerformanceEntry:
    """Timing, row counts and a memory reading for one step."""
    step_name: str
    start_time: datetime
    end_time: Optional[datetime] = None
    input_rows: int = 0
    output_rows: int = 0
    memory_usage_bytes: int = 0

    @property
    def duration(self) -> timedelta:
        if self.end_time is None:
            return timedelta(0)
        return self.end_time - self.start_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            'stepName': self.step_name,
            'startTime': _isoformat(self.start_time),
            'endTime': _isoformat(self.end_time),
            'duration': _nanoseconds(self.duration),
            'inputRows': self.input_rows,
            'outputRows': self.output_rows,
            'memoryUsageBytes': self.memory_usage_bytes,
        }


@dataclass
class ProcessingMetadata:
    source_total_rows: int = 0
    filtered_total_rows: int = 0
    applied_filters: List[str] = field(default_factory=list)
    performed_aggregations: List[str] = field(default_factory=list)
    performed_merges: List[str] = field(default_factory=list)
    processing_time: timedelta = timedelta(0)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    config_name: str = ""
    data_source: str = ""
    memory_stats: MemoryStats = field(default_factory=MemoryStats)
    step_performance: List[PerformanceEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sourceTotalRows': self.source_total_rows,
            'filterTotalRows': self.filtered_total_rows,
            'appliedFilters': list(self.applied_filters),
            'performedAggregations': list(self.performed_aggregations),
            'performedMerges': list(self.performed_merges),
            'processingTime': _nanoseconds(self.processing_time),
            'startTime': _isoformat(self.start_time),
            'endTime': _isoformat(self.end_time),
            'configName': self.config_name,
            'dataSource': self.data_source,
            'memoryStats': self.memory_stats.to_dict(),
            'stepPerformance': [entry.to_dict() for entry in self.step_performance],
        }


class Processing:
    """
    Metadata record for one pipeline run.

    Args:
        data (list): Raw input rows
        config_name (str): Name of the validated configuration
        column_names (list): Column names matching ``data``
        memory_sampler (MemorySampler): Memory reading capability
        clock (callable): Returns the current time, UTC by default
    """

    def __init__(self,
                 data: Sequence[Sequence[Any]],
                 config_name: str,
                 column_names: Optional[Sequence[str]] = None,
                 memory_sampler: Optional[MemorySampler] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self._sampler = memory_sampler or NullMemorySampler()
        self._clock = clock or _utc_now
        self._completed = False

        self.data: List[tuple] = [tuple(row) for row in data]
        self.column_names: List[str] = list(column_names or [])

        initial = self._sampler.sample()
        self.metadata = ProcessingMetadata(
            source_total_rows=len(self.data),
            start_time=self._clock(),
            config_name=config_name,
            memory_stats=MemoryStats(
                peak_alloc_bytes=initial.alloc_bytes,
                peak_sys_bytes=initial.sys_bytes,
                total_alloc_bytes=initial.total_alloc_bytes,
                num_gc=initial.gc_cycles,
            ),
        )
        logger.debug(f"Processing record created for '{config_name}' with {len(self.data)} rows")

    @classmethod
    def from_table(cls, table: Table, config_name: str, **kwargs) -> 'Processing':
        return cls(list(table.rows()), config_name, table.column_names, **kwargs)

    @property
    def completed(self) -> bool:
        return self._completed

    def _ensure_open(self, operation: str) -> None:
        if self._completed:
            raise DataProcessError(STEP_NAME, f"cannot {operation}: processing already completed")

    def add_filter(self, filter_expression: str) -> None:
        self._ensure_open("add filter")
        self.metadata.applied_filters.append(filter_expression)

    def add_aggregation(self, aggregate_method: str, target_column: str) -> None:
        self._ensure_open("add aggregation")
        self.metadata.performed_aggregations.append(f"{aggregate_method}({target_column})")

    def add_merge(self, first_column: str, second_column: str, strategy: str) -> None:
        self._ensure_open("add merge")
        self.metadata.performed_merges.append(f"{first_column} + {second_column} ({strategy})")

    def update_rows(self, original_rows: int, filtered_rows: int) -> None:
        self._ensure_open("update rows")
        self.metadata.source_total_rows = original_rows
        self.metadata.filtered_total_rows = filtered_rows

    def set_data_source_info(self, info: str) -> None:
        self._ensure_open("set data source info")
        self.metadata.data_source = info

    def attach_result(self, table: Table) -> None:
        """Replace the held rows with the final result table."""
        self._ensure_open("attach result")
        self.data = list(table.rows())
        self.column_names = table.column_names

    @contextmanager
    def track_step(self, step_name: str, input_rows: int) -> Iterator[PerformanceEntry]:
        """
        Time one step. The caller sets ``output_rows`` on the yielded entry.
        The entry is only recorded when the step finishes without error.
        """
        self._ensure_open("track step")
        entry = PerformanceEntry(step_name=step_name, start_time=self._clock(), input_rows=input_rows)
        yield entry
        entry.end_time = self._clock()
        entry.memory_usage_bytes = self._sampler.sample().alloc_bytes
        self.metadata.step_performance.append(entry)
        logger.debug(
            f"Step '{step_name}': {entry.input_rows} -> {entry.output_rows} rows "
            f"in {entry.duration.total_seconds():.4f}s"
        )

    def complete(self) -> None:
        """Stamp end time, duration and the final memory reading. Call once."""
        self._ensure_open("complete")
        metadata = self.metadata
        metadata.end_time = self._clock()
        metadata.processing_time = metadata.end_time - metadata.start_time

        final = self._sampler.sample()
        stats = metadata.memory_stats
        stats.final_alloc_bytes = final.alloc_bytes
        stats.total_alloc_bytes = final.total_alloc_bytes
        stats.num_gc = final.gc_cycles

        if stats.peak_alloc_bytes > 0:
            stats.memory_increase_percent = (
                (final.alloc_bytes - stats.peak_alloc_bytes) / stats.peak_alloc_bytes * 100
            )
        stats.peak_alloc_bytes = max(stats.peak_alloc_bytes, final.alloc_bytes)
        stats.peak_sys_bytes = max(stats.peak_sys_bytes, final.sys_bytes)

        self._completed = True
        logger.info(
            f"Processing '{metadata.config_name}' completed in "
            f"{metadata.processing_time.total_seconds():.3f}s"
        )

    def has_data(self) -> bool:
        return len(self.data) > 0

    def get_row_count(self) -> int:
        return len(self.data)

    def get_column_count(self) -> int:
        if self.column_names:
            return len(self.column_names)
        return len(self.data[0]) if self.data else 0

    def get_column_names(self) -> List[str]:
        return list(self.column_names)

    def to_dict(self) -> Dict[str, Any]:
        return {'metadata': self.metadata.to_dict()}

    def to_json(self, indent: int = 4) -> str:
        return json.dumps(self.to_dict(), indent=indent)
