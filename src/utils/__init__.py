# ========================
# src/utils/__init__.py
# ========================

"""
Utilities Package

Common utilities and helper functions for the data pipeline.
"""

from .config import Config
from .performance_monitor import (
    MemorySample, MemorySampler, ProcessMemorySampler, NullMemorySampler,
    StaticMemorySampler, SystemResourceMonitor,
)
from .logging_setup import setup_logging, StructuredLogger
from .identifiers import random_string

__all__ = [
    'Config',
    'MemorySample',
    'MemorySampler',
    'ProcessMemorySampler',
    'NullMemorySampler',
    'StaticMemorySampler',
    'SystemResourceMonitor',
    'setup_logging',
    'StructuredLogger',
    'random_string',
]
