"""
System utilities module for vsnap.

Resource-based sizing of worker pools and human readable formatting.
"""

from typing import Optional

import psutil

from ..constants import MAX_INVENTORY_WORKERS, RAM_WORKER_THRESHOLDS
from .logging import get_logger

logger = get_logger(__name__)


class SystemUtils:
    """
    System utilities for resource management.

    The inventory fans out one helper container per snapshot; the daemon,
    not this process, does the heavy lifting, so worker counts stay small.
    """

    @staticmethod
    def get_available_ram() -> float:
        """
        Get total system RAM in gigabytes.

        Returns:
            RAM in GB
        """
        try:
            memory = psutil.virtual_memory()
            return memory.total / (1024 ** 3)
        except (OSError, RuntimeError) as e:
            logger.error(f"Failed to get RAM info: {e}")
            return 2.0

    @staticmethod
    def get_cpu_count() -> int:
        """
        Get number of CPU cores.

        Returns:
            Number of CPU cores
        """
        try:
            return psutil.cpu_count(logical=True) or 1
        except (OSError, RuntimeError):
            return 1

    @staticmethod
    def get_optimal_workers() -> int:
        """
        Calculate a worker count for parallel helper containers.

        Returns:
            Recommended number of workers
        """
        ram_gb = SystemUtils.get_available_ram()
        cpu_count = SystemUtils.get_cpu_count()

        ram_workers = 1
        for threshold_gb, workers in RAM_WORKER_THRESHOLDS:
            if ram_gb <= threshold_gb:
                ram_workers = workers
                break

        optimal = max(1, min(ram_workers, cpu_count, MAX_INVENTORY_WORKERS))

        logger.debug(f"System has {ram_gb:.1f}GB RAM, {cpu_count} CPUs. "
                     f"Recommending {optimal} workers.")

        return optimal

    @staticmethod
    def format_bytes(size_bytes: Optional[int]) -> str:
        """
        Format bytes into human-readable string.

        Args:
            size_bytes: Size in bytes

        Returns:
            Formatted string (e.g., "1.50 GB")
        """
        if size_bytes is None:
            return "Unavailable"
        size = float(size_bytes)
        for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
            if size < 1024.0:
                return f"{size:.2f} {unit}"
            size /= 1024.0
        return f"{size:.2f} PB"

    @staticmethod
    def format_duration(seconds: float) -> str:
        """
        Format duration into human-readable string.

        Args:
            seconds: Duration in seconds

        Returns:
            Formatted string (e.g., "2h 15m 30s")
        """
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        secs = int(seconds % 60)

        if hours > 0:
            return f"{hours}h {minutes}m {secs}s"
        if minutes > 0:
            return f"{minutes}m {secs}s"
        return f"{secs}s"
