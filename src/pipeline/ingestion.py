# ========================
# src/pipeline/ingestion.py
# ========================

"""
Data Ingestion Module

Data sources turn a source configuration into an in-memory Table. The engine
only depends on the DataSource contract; each source type has one concrete
class registered in ``DATA_SOURCES``.

Cell values listed in ``na_values`` become missing values. A column whose
remaining cells all parse as numbers is loaded as a numeric column.
"""

import csv
import io
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import requests

from .cancellation import CancelToken, check_cancelled
from .errors import AuthenticationError, ConfigurationError, DataProcessError
from .table import Table, parse_number

logger = logging.getLogger(__name__)

STEP_NAME = "fetch"
DEFAULT_NA_VALUES = ("", "NA", "NaN", "null")


class SourceConfig:
    """
    Where to read data from.

    Args:
        type (str): Source type, e.g. ``csv`` or ``googlesheets``
        source (str): Source identifier (file path, sheet id)
        range (str): Optional source-specific row/cell range
    """

    def __init__(self, type: str, source: str, range: str = ""):
        self.type = type
        self.source = source
        self.range = range

    @classmethod
    def from_pipeline_config(cls, config) -> 'SourceConfig':
        return cls(config.type, config.source, getattr(config, 'range', ''))

    def to_dict(self) -> Dict[str, str]:
        return {'type': self.type, 'source': self.source, 'range': self.range}

    def __repr__(self) -> str:
        return f"SourceConfig({self.to_dict()})"


def build_table(header: Sequence[str],
                rows: Sequence[Sequence[Any]],
                na_values: Sequence[str] = DEFAULT_NA_VALUES) -> Table:
    """Build a typed table from raw string rows."""
    missing = set(na_values)
    columns = {}
    for index, name in enumerate(header):
        if name in columns:
            raise DataProcessError(STEP_NAME, f"duplicate column name '{name}' in header")
        raw = [row[index] if index < len(row) else None for row in rows]
        values = [None if v is None or v in missing else v for v in raw]
        numbers = [parse_number(v) for v in values]
        if all(n is not None for n, v in zip(numbers, values) if v is not None):
            values = numbers
        columns[name] = values
    return Table(columns)


def parse_row_range(range_text: str) -> Tuple[int, Optional[int]]:
    """
    Parse a ``start:end`` 1-based, inclusive data row range.
    Either bound may be omitted. Returns a 0-based ``(start, stop)`` slice.
    """
    if not range_text:
        return 0, None
    start_text, sep, end_text = range_text.partition(':')
    if not sep:
        raise ConfigurationError("range", f"invalid range '{range_text}', expected 'start:end'")
    try:
        start = int(start_text) if start_text.strip() else 1
        end = int(end_text) if end_text.strip() else None
    except ValueError as e:
        raise ConfigurationError("range", f"invalid range '{range_text}', bounds must be integers", e)
    if start < 1 or (end is not None and end < start):
        raise ConfigurationError("range", f"invalid range '{range_text}'")
    return start - 1, end


class DataSource:
    """
    Abstract data source.

    Implementations handle connection and authentication details and return
    the fetched data as a Table.
    """

    def fetch(self, config: SourceConfig, cancel: Optional[CancelToken] = None) -> Table:
        raise NotImplementedError

    def validate(self, config: SourceConfig) -> None:
        """Raise ConfigurationError when ``config`` is unusable."""
        raise NotImplementedError

    def get_source_info(self, config: SourceConfig) -> str:
        raise NotImplementedError

    def supported_types(self) -> List[str]:
        raise NotImplementedError


class CSVReader:
    """
    A memory-efficient CSV reader that reads a file in chunks.
    """

    def __init__(self, file_path):
        """
        Initialize the CSV reader.

        Args:
            file_path (str): Path to the CSV file to read
        """
        self.file_path = file_path
        self.header = []
        logger.info(f"Initialized CSVReader for file: {file_path}")

    def read_in_chunks(self, chunk_size: int) -> Iterator[List[List[str]]]:
        """
        A generator that yields a list of rows for each chunk of data.

        Args:
            chunk_size (int): The number of rows to yield per chunk.

        Yields:
            list[list]: A list of raw rows representing a chunk.
        """
        try:
            with open(self.file_path, 'r', newline='', encoding='utf-8-sig') as f:
                reader = csv.reader(f)
                self.header = next(reader, [])
                logger.debug(f"CSV header: {self.header}")

                chunk = []
                row_count = 0

                for row in reader:
                    if not row:
                        continue
                    chunk.append(row)
                    row_count += 1

                    if len(chunk) == chunk_size:
                        logger.debug(f"Yielding chunk with {len(chunk)} rows")
                        yield chunk
                        chunk = []

                # Yield any remaining rows in the last chunk
                if chunk:
                    logger.debug(f"Yielding final chunk with {len(chunk)} rows")
                    yield chunk

                logger.info(f"Total rows read: {row_count}")

        except FileNotFoundError:
            logger.error(f"File '{self.file_path}' was not found")
            raise


class CsvDataSource(DataSource):
    """Reads a local CSV file with a header row."""

    def __init__(self, chunk_size: int = 1000, na_values: Sequence[str] = DEFAULT_NA_VALUES):
        self.chunk_size = chunk_size
        self.na_values = tuple(na_values)

    def fetch(self, config: SourceConfig, cancel: Optional[CancelToken] = None) -> Table:
        self.validate(config)
        start, stop = parse_row_range(config.range)
        reader = CSVReader(config.source)

        rows: List[List[str]] = []
        try:
            for chunk in reader.read_in_chunks(self.chunk_size):
                check_cancelled(cancel, STEP_NAME)
                rows.extend(chunk)
        except (OSError, csv.Error, UnicodeDecodeError) as e:
            raise DataProcessError(STEP_NAME, f"cannot read CSV file '{config.source}': {e}", e)

        header = self._unique_header(reader.header)
        return build_table(header, rows[start:stop], self.na_values)

    @staticmethod
    def _unique_header(header: Sequence[str]) -> List[str]:
        # Every emitted name is recorded so a suffixed name never shadows a later header.
        suffixes: Dict[str, int] = {}
        emitted = set()
        result = []
        for index, name in enumerate(header):
            base = name.strip() or f"column_{index + 1}"
            name = base
            while name in emitted:
                suffixes[base] = suffixes.get(base, 0) + 1
                name = f"{base}_{suffixes[base]}"
            emitted.add(name)
            result.append(name)
        return result

    def validate(self, config: SourceConfig) -> None:
        if config.type not in self.supported_types():
            raise ConfigurationError("type", f"unsupported source type '{config.type}' for CSV source")
        if not config.source:
            raise ConfigurationError("source", "source is required")
        path = Path(config.source)
        if not path.exists():
            raise ConfigurationError("source", f"input file does not exist: {config.source}")
        if not path.is_file():
            raise ConfigurationError("source", f"input path is not a file: {config.source}")
        parse_row_range(config.range)

    def get_source_info(self, config: SourceConfig) -> str:
        path = Path(config.source)
        size = path.stat().st_size if path.exists() else 0
        return f"CSV: {path.name} ({size} bytes)"

    def supported_types(self) -> List[str]:
        return ['csv']


class GoogleSheetsDataSource(DataSource):
    """
    Downloads a Google Sheet through its CSV export endpoint.

    Public sheets need no credentials. Private sheets need an OAuth2 access
    token, supplied by ``token_provider`` (the ``GOOGLE_SHEETS_TOKEN``
    environment variable by default). The provider is called again before
    every retry after an authentication failure.
    """

    EXPORT_URL = "https://docs.google.com/spreadsheets/d/{sheet_id}/export"

    def __init__(self,
                 token_provider: Optional[Callable[[], Optional[str]]] = None,
                 timeout: float = 30.0,
                 max_retries: int = AuthenticationError.DEFAULT_MAX_RETRIES,
                 na_values: Sequence[str] = DEFAULT_NA_VALUES,
                 session: Optional[requests.Session] = None):
        self.token_provider = token_provider or (lambda: os.getenv('GOOGLE_SHEETS_TOKEN'))
        self.timeout = timeout
        self.max_retries = max_retries
        self.na_values = tuple(na_values)
        self.session = session or requests.Session()

    def fetch(self, config: SourceConfig, cancel: Optional[CancelToken] = None) -> Table:
        self.validate(config)
        auth_error: Optional[AuthenticationError] = None
        while True:
            check_cancelled(cancel, STEP_NAME)
            try:
                text = self._download(config)
                break
            except AuthenticationError as e:
                if auth_error is None:
                    auth_error = e
                else:
                    auth_error.increment_retry_attempt()
                if not auth_error.is_retryable():
                    raise auth_error
                logger.warning(
                    f"Authentication failed for sheet {config.source}, "
                    f"retry {auth_error.retry_attempt + 1}/{auth_error.max_retries}"
                )

        reader = csv.reader(io.StringIO(text))
        header = next(reader, [])
        rows = [row for row in reader if row]
        return build_table(CsvDataSource._unique_header(header), rows, self.na_values)

    def _download(self, config: SourceConfig) -> str:
        params = {'format': 'csv'}
        if config.range:
            params['range'] = config.range
        headers = {}
        token = self.token_provider()
        if token:
            headers['Authorization'] = f"Bearer {token}"

        url = self.EXPORT_URL.format(sheet_id=config.source)
        try:
            response = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise DataProcessError(STEP_NAME, f"failed to download sheet {config.source}: {e}", e)

        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"access to sheet {config.source} denied (HTTP {response.status_code})",
                max_retries=self.max_retries,
            )
        if response.status_code != 200:
            raise DataProcessError(
                STEP_NAME, f"failed to download sheet {config.source}: HTTP {response.status_code}"
            )
        return response.content.decode('utf-8-sig')

    def validate(self, config: SourceConfig) -> None:
        if config.type not in self.supported_types():
            raise ConfigurationError("type", f"unsupported source type '{config.type}' for Google Sheets source")
        if not config.source:
            raise ConfigurationError("source", "sheet id is required")
        if '/' in config.source:
            raise ConfigurationError("source", "source must be the sheet id, not a URL")

    def get_source_info(self, config: SourceConfig) -> str:
        suffix = f" [{config.range}]" if config.range else ""
        return f"Google Sheets: {config.source}{suffix}"

    def supported_types(self) -> List[str]:
        return ['googlesheets']


DATA_SOURCES: Dict[str, Callable[..., DataSource]] = {
    'csv': CsvDataSource,
    'googlesheets': GoogleSheetsDataSource,
}


def supported_source_types() -> List[str]:
    return list(DATA_SOURCES)


def get_data_source(source_type: str, **kwargs) -> DataSource:
    """Create the data source registered for ``source_type``."""
    try:
        factory = DATA_SOURCES[source_type]
    except KeyError:
        raise ConfigurationError(
            "type", f"unsupported source type '{source_type}', valid values are: {supported_source_types()}"
        ) from None
    return factory(**kwargs)
