# ========================
# src/pipeline/storage.py
# ========================

"""
Data Storage Module

Output sinks write the final table in one format. Each format has one
concrete class registered in ``OUTPUTS``; the orchestrator depends only on
the Output contract.
"""

import csv
import io
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, TextIO

from .cancellation import CancelToken, check_cancelled
from .errors import ConfigurationError, DataProcessError
from .table import Table, format_value

logger = logging.getLogger(__name__)

STEP_NAME = "output"


class OutputConfig:
    """
    Where and how to write the result.

    Args:
        format (str): Output format, e.g. ``csv``, ``json`` or ``console``
        destination (str): File path for file outputs
        options (dict): Format-specific options
    """

    def __init__(self, format: str, destination: str = "", options: Optional[Dict[str, Any]] = None):
        self.format = format
        self.destination = destination
        self.options = dict(options or {})

    def to_dict(self) -> Dict[str, Any]:
        return {'format': self.format, 'destination': self.destination, 'options': dict(self.options)}

    def __repr__(self) -> str:
        return f"OutputConfig({self.to_dict()})"


def _cell(value: Any) -> str:
    return "" if value is None else format_value(value)


def _json_cell(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


class Output:
    """Abstract output sink."""

    #: option name -> description
    FORMAT_OPTIONS: Dict[str, str] = {}

    def write(self, table: Table, config: OutputConfig, cancel: Optional[CancelToken] = None) -> None:
        raise NotImplementedError

    def validate(self, config: OutputConfig) -> None:
        """Raise ConfigurationError when ``config`` is unusable."""
        if config.format not in self.supported_formats():
            raise ConfigurationError(
                "format", f"unsupported format '{config.format}', expected one of {self.supported_formats()}"
            )
        unknown = sorted(set(config.options) - set(self.FORMAT_OPTIONS))
        if unknown:
            raise ConfigurationError("options", f"unknown options {unknown} for format '{config.format}'")

    def supported_formats(self) -> List[str]:
        raise NotImplementedError

    def get_format_options(self, format: str) -> Dict[str, str]:
        return dict(self.FORMAT_OPTIONS) if format in self.supported_formats() else {}

    def render(self, column_names: Sequence[str], rows: Sequence[Sequence[Any]], config: OutputConfig) -> str:
        raise NotImplementedError

    def preview(self, processing, config: OutputConfig, max_rows: int = 10) -> str:
        """
        Render the first ``max_rows`` result rows of a Processing record
        without writing anything. ``max_rows`` of 0 renders every row.
        """
        self.validate(config)
        rows = processing.data if max_rows <= 0 else processing.data[:max_rows]
        return self.render(processing.get_column_names(), rows, config)

    @staticmethod
    def _int_option(config: OutputConfig, name: str, default: int, minimum: int = 0) -> int:
        """Read a non-negative integer option, accepting ints and digit strings."""
        value = config.options.get(name, default)
        if isinstance(value, str) and value.strip().isdigit():
            value = int(value)
        if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
            raise ConfigurationError(f"options.{name}", f"{name} must be an integer >= {minimum}, got {value!r}")
        return value

    def _open_destination(self, config: OutputConfig) -> Path:
        if not config.destination:
            raise ConfigurationError("destination", f"destination is required for format '{config.format}'")
        path = Path(config.destination)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DataProcessError(STEP_NAME, f"cannot create output directory {path.parent}: {e}", e)
        return path

    def _write_text(self, path: Path, content: str) -> None:
        try:
            with open(path, 'w', newline='', encoding='utf-8') as f:
                f.write(content)
        except OSError as e:
            logger.error(f"Error writing file {path}: {e}")
            raise DataProcessError(STEP_NAME, f"cannot write {path}: {e}", e)
        logger.info(f"Saved output to {path}")


class CsvOutput(Output):
    """Writes CSV with a header row. Missing values become empty cells."""

    FORMAT_OPTIONS = {
        'delimiter': "Field delimiter, default ','",
        'header': "Write the header row, default true",
    }

    def supported_formats(self) -> List[str]:
        return ['csv']

    def validate(self, config: OutputConfig) -> None:
        super().validate(config)
        delimiter = config.options.get('delimiter', ',')
        if not isinstance(delimiter, str) or len(delimiter) != 1:
            raise ConfigurationError("options.delimiter", "delimiter must be a single character")

    def render(self, column_names: Sequence[str], rows: Sequence[Sequence[Any]], config: OutputConfig) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, delimiter=config.options.get('delimiter', ','), lineterminator='\n')
        if config.options.get('header', True):
            writer.writerow(column_names)
        for row in rows:
            writer.writerow([_cell(v) for v in row])
        return buffer.getvalue()

    def write(self, table: Table, config: OutputConfig, cancel: Optional[CancelToken] = None) -> None:
        self.validate(config)
        path = self._open_destination(config)
        check_cancelled(cancel, STEP_NAME)
        self._write_text(path, self.render(table.column_names, list(table.rows()), config))
        logger.info(f"Saved {table.row_count} records to {path}")


class JsonOutput(Output):
    """Writes JSON, either a list of records or a mapping of column lists."""

    FORMAT_OPTIONS = {
        'indent': "Indentation width, default 2",
        'orient': "'records' (list of objects, default) or 'columns' (object of lists)",
    }

    def supported_formats(self) -> List[str]:
        return ['json']

    def validate(self, config: OutputConfig) -> None:
        super().validate(config)
        if config.options.get('orient', 'records') not in ('records', 'columns'):
            raise ConfigurationError("options.orient", "orient must be 'records' or 'columns'")
        self._int_option(config, 'indent', 2)

    def render(self, column_names: Sequence[str], rows: Sequence[Sequence[Any]], config: OutputConfig) -> str:
        if config.options.get('orient', 'records') == 'columns':
            payload = {
                name: [_json_cell(row[i]) for row in rows]
                for i, name in enumerate(column_names)
            }
        else:
            payload = [
                {name: _json_cell(value) for name, value in zip(column_names, row)}
                for row in rows
            ]
        return json.dumps(payload, indent=self._int_option(config, 'indent', 2), ensure_ascii=False)

    def write(self, table: Table, config: OutputConfig, cancel: Optional[CancelToken] = None) -> None:
        self.validate(config)
        path = self._open_destination(config)
        check_cancelled(cancel, STEP_NAME)
        self._write_text(path, self.render(table.column_names, list(table.rows()), config))


class ConsoleOutput(Output):
    """Prints an aligned text table to a stream (stdout by default)."""

    FORMAT_OPTIONS = {
        'max_width': "Truncate cells wider than this many characters, default 40",
    }

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream

    def supported_formats(self) -> List[str]:
        return ['console']

    def validate(self, config: OutputConfig) -> None:
        super().validate(config)
        self._int_option(config, 'max_width', 40, minimum=1)

    def render(self, column_names: Sequence[str], rows: Sequence[Sequence[Any]], config: OutputConfig) -> str:
        max_width = self._int_option(config, 'max_width', 40, minimum=1)
        cells = [[self._truncate(str(name), max_width) for name in column_names]]
        cells.extend([self._truncate(_cell(v), max_width) for v in row] for row in rows)
        widths = [max(len(row[i]) for row in cells) for i in range(len(column_names))]

        def line(values: List[str]) -> str:
            return " | ".join(value.ljust(width) for value, width in zip(values, widths)).rstrip()

        separator = "-+-".join("-" * width for width in widths)
        lines = [line(cells[0]), separator]
        lines.extend(line(row) for row in cells[1:])
        lines.append(f"({len(rows)} rows)")
        return "\n".join(lines) + "\n"

    @staticmethod
    def _truncate(text: str, max_width: int) -> str:
        if max_width > 3 and len(text) > max_width:
            return text[:max_width - 3] + "..."
        return text

    def write(self, table: Table, config: OutputConfig, cancel: Optional[CancelToken] = None) -> None:
        self.validate(config)
        check_cancelled(cancel, STEP_NAME)
        stream = self.stream or sys.stdout
        stream.write(self.render(table.column_names, list(table.rows()), config))
        stream.flush()


OUTPUTS = {
    'csv': CsvOutput,
    'json': JsonOutput,
    'console': ConsoleOutput,
}


def supported_output_formats() -> List[str]:
    return list(OUTPUTS)


def get_output(format: str, **kwargs) -> Output:
    """Create the output sink registered for ``format``."""
    try:
        factory = OUTPUTS[format]
    except KeyError:
        raise ConfigurationError(
            "outputFormat", f"unsupported output format '{format}', valid values are: {supported_output_formats()}"
        ) from None
    return factory(**kwargs)
