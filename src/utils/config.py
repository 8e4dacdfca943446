# ========================
# src/utils/config.py
# ========================

"""
Configuration Management

Runtime settings for the pipeline with environment support. These are the
process-level knobs (logging, directories, polling, API); the per-run
transformation description lives in ``src.pipeline.models``.
"""

import json
import os
from pathlib import Path
from typing import Dict, Any, Optional


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """
    Configuration class for the pipeline runtime.
    Supports environment variables and default values.
    """

    def __init__(self, config_dict: Optional[Dict[str, Any]] = None):
        """
        Initialize configuration.

        Args:
            config_dict (dict): Optional configuration overrides
        """
        # Logging Configuration
        self.LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
        self.LOG_DIR = os.getenv('PIPELINE_LOG_DIR', 'logs')
        self.LOG_FILE = os.getenv('PIPELINE_LOG_FILE', '')

        # File Paths
        self.DEFAULT_OUTPUT_DIR = os.getenv('PIPELINE_OUTPUT_DIR', 'data/processed')
        self.UPLOAD_DIR = os.getenv('PIPELINE_UPLOAD_DIR', 'data/uploaded')

        # Ingestion
        self.CSV_CHUNK_SIZE = int(os.getenv('PIPELINE_CHUNK_SIZE', '1000'))
        self.NA_VALUES = [v for v in os.getenv('PIPELINE_NA_VALUES', ',NA,NaN,null').split(',')]
        self.HTTP_TIMEOUT_SECONDS = float(os.getenv('PIPELINE_HTTP_TIMEOUT', '30'))

        # Engine Settings
        self.CANCEL_POLL_ROWS = int(os.getenv('PIPELINE_CANCEL_POLL_ROWS', '1024'))
        self.DEFAULT_TIMEOUT_SECONDS = float(os.getenv('PIPELINE_TIMEOUT_SECONDS', '0'))
        self.ENABLE_MEMORY_SAMPLING = _env_bool('PIPELINE_MEMORY_SAMPLING', 'true')

        # Output Settings
        self.PREVIEW_ROWS = int(os.getenv('PIPELINE_PREVIEW_ROWS', '10'))

        # API Settings
        self.API_PORT = int(os.getenv('API_PORT', '8000'))
        self.MAX_CONCURRENT_JOBS = int(os.getenv('MAX_CONCURRENT_JOBS', '3'))

        # Override with provided config
        if config_dict:
            self._update_from_dict(config_dict)

    def _update_from_dict(self, config_dict: Dict[str, Any]) -> None:
        """Update configuration from dictionary."""
        for key, value in config_dict.items():
            if hasattr(self, key.upper()):
                setattr(self, key.upper(), value)

    @property
    def timeout(self) -> Optional[float]:
        """Default run timeout in seconds, None when disabled."""
        return self.DEFAULT_TIMEOUT_SECONDS if self.DEFAULT_TIMEOUT_SECONDS > 0 else None

    def get_data_paths(self) -> Dict[str, Path]:
        """Get all configured data paths as Path objects."""
        return {
            'output_dir': Path(self.DEFAULT_OUTPUT_DIR),
            'upload_dir': Path(self.UPLOAD_DIR),
            'logs_dir': Path(self.LOG_DIR),
        }

    def ensure_directories(self) -> None:
        """Create necessary directories if they don't exist."""
        for path in self.get_data_paths().values():
            path.mkdir(parents=True, exist_ok=True)

    def validate_config(self) -> Dict[str, bool]:
        """
        Validate configuration values.

        Returns:
            dict: Validation results for each setting
        """
        validations = {}

        validations['chunk_size'] = self.CSV_CHUNK_SIZE > 0
        validations['cancel_poll_rows'] = self.CANCEL_POLL_ROWS > 0
        validations['timeout'] = self.DEFAULT_TIMEOUT_SECONDS >= 0
        validations['http_timeout'] = self.HTTP_TIMEOUT_SECONDS > 0
        validations['preview_rows'] = self.PREVIEW_ROWS >= 0
        validations['api_port'] = 1000 <= self.API_PORT <= 65535
        validations['max_concurrent_jobs'] = self.MAX_CONCURRENT_JOBS > 0

        valid_log_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        validations['log_level'] = self.LOG_LEVEL.upper() in valid_log_levels

        return validations

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            attr: getattr(self, attr)
            for attr in dir(self)
            if attr.isupper() and not callable(getattr(self, attr))
        }

    def save_to_file(self, file_path: str) -> None:
        """Save configuration to JSON file."""
        with open(file_path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2, default=str)

    @classmethod
    def load_from_file(cls, file_path: str) -> 'Config':
        """Load configuration from JSON file."""
        with open(file_path, 'r') as f:
            config_dict = json.load(f)
        return cls(config_dict)

    def __str__(self) -> str:
        """String representation of configuration."""
        lines = ["Configuration Settings:"]
        config_dict = self.to_dict()
        for key, value in sorted(config_dict.items()):
            lines.append(f"  {key}: {value}")
        return "\n".join(lines)
