# ========================
# src/utils/performance_monitor.py
# ========================

"""
Performance Monitoring Utilities

Memory sampling for the run tracker and system resource checks for the API.
Samplers are injected into ``Processing`` so tests can replace the live
process reading with fixed values.
"""

import gc
import os
import logging
from typing import Dict, Any, Iterable, Optional

import psutil

logger = logging.getLogger(__name__)


class MemorySample:
    """
    One memory reading.

    Attributes:
        alloc_bytes: Memory currently in use by the process (RSS)
        sys_bytes: Memory reserved from the OS (virtual size)
        total_alloc_bytes: Highest in-use reading seen by the sampler so far
        gc_cycles: Garbage collector runs across all generations
    """

    __slots__ = ('alloc_bytes', 'sys_bytes', 'total_alloc_bytes', 'gc_cycles')

    def __init__(self, alloc_bytes: int = 0, sys_bytes: int = 0,
                 total_alloc_bytes: int = 0, gc_cycles: int = 0):
        self.alloc_bytes = alloc_bytes
        self.sys_bytes = sys_bytes
        self.total_alloc_bytes = total_alloc_bytes
        self.gc_cycles = gc_cycles

    def to_dict(self) -> Dict[str, int]:
        return {
            'alloc_bytes': self.alloc_bytes,
            'sys_bytes': self.sys_bytes,
            'total_alloc_bytes': self.total_alloc_bytes,
            'gc_cycles': self.gc_cycles,
        }

    def __repr__(self) -> str:
        return f"MemorySample({self.to_dict()})"


class MemorySampler:
    """Capability that reads the current memory state."""

    def sample(self) -> MemorySample:
        raise NotImplementedError


class ProcessMemorySampler(MemorySampler):
    """Reads the current process through psutil."""

    def __init__(self, pid: Optional[int] = None):
        self._process = psutil.Process(pid or os.getpid())
        self._high_water = 0

    def sample(self) -> MemorySample:
        info = self._process.memory_info()
        self._high_water = max(self._high_water, info.rss)
        gc_cycles = sum(generation.get('collections', 0) for generation in gc.get_stats())
        return MemorySample(
            alloc_bytes=info.rss,
            sys_bytes=info.vms,
            total_alloc_bytes=self._high_water,
            gc_cycles=gc_cycles,
        )


class NullMemorySampler(MemorySampler):
    """Sampling disabled: every reading is zero."""

    def sample(self) -> MemorySample:
        return MemorySample()


class StaticMemorySampler(MemorySampler):
    """
    Replays a fixed sequence of samples; the last one repeats once the
    sequence is exhausted.
    """

    def __init__(self, samples: Iterable[MemorySample]):
        self._samples = list(samples) or [MemorySample()]
        self._position = 0

    def sample(self) -> MemorySample:
        sample = self._samples[min(self._position, len(self._samples) - 1)]
        self._position += 1
        return sample


def default_memory_sampler(enabled: bool = True) -> MemorySampler:
    """Process sampler when enabled, otherwise the null sampler."""
    if not enabled:
        return NullMemorySampler()
    return ProcessMemorySampler()


class SystemResourceMonitor:
    """Monitor system-wide resource usage."""

    @staticmethod
    def get_system_stats() -> Dict[str, Any]:
        """Get current system resource statistics."""
        stats = {}

        try:
            stats['cpu_percent'] = psutil.cpu_percent(interval=None)
            stats['cpu_count'] = psutil.cpu_count()

            memory = psutil.virtual_memory()
            stats['memory_total_gb'] = memory.total / (1024**3)
            stats['memory_available_gb'] = memory.available / (1024**3)
            stats['memory_used_percent'] = memory.percent

            disk = psutil.disk_usage('/')
            stats['disk_free_gb'] = disk.free / (1024**3)
            stats['disk_used_percent'] = (disk.used / disk.total) * 100
        except (psutil.Error, OSError) as e:
            logger.warning(f"Could not get system stats: {e}")

        return stats

    @staticmethod
    def check_resource_availability(min_memory_gb: float = 0.5,
                                    min_disk_gb: float = 0.5) -> Dict[str, bool]:
        """
        Check if system has sufficient resources.

        Args:
            min_memory_gb (float): Minimum required memory in GB
            min_disk_gb (float): Minimum required disk space in GB

        Returns:
            dict: Resource availability status
        """
        system_stats = SystemResourceMonitor.get_system_stats()

        checks = {
            'sufficient_memory': True,
            'sufficient_disk': True,
        }

        if 'memory_available_gb' in system_stats:
            checks['sufficient_memory'] = system_stats['memory_available_gb'] >= min_memory_gb
        if 'disk_free_gb' in system_stats:
            checks['sufficient_disk'] = system_stats['disk_free_gb'] >= min_disk_gb

        return checks
