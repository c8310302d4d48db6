#!/usr/bin/env python3
"""
Memory Management Module

This module provides process memory monitoring for recognition calls. A
MemoryManager with a limit fails the current request with MemoryLimitError
instead of letting a large image take the whole session down.
"""

import logging
import psutil
import gc
import os
from typing import Optional
from contextlib import contextmanager

from .exceptions import MemoryLimitError

logger = logging.getLogger(__name__)


class MemoryManager:
    """
    Memory management utility for OCR operations.

    Provides memory monitoring, limits, and cleanup functionality.
    """

    def __init__(self, memory_limit_mb: Optional[int] = None):
        """
        Initialize memory manager.

        Args:
            memory_limit_mb: Memory limit in MB, None for no limit
        """
        self.memory_limit_mb = memory_limit_mb
        self.process = psutil.Process(os.getpid())

    def get_memory_usage(self) -> float:
        """
        Get current resident memory usage in MB.

        Returns:
            Memory usage in MB
        """
        try:
            return self.process.memory_info().rss / (1024 * 1024)
        except psutil.Error as e:
            logger.warning(f"Failed to get memory usage: {e}")
            return 0.0

    def check_memory_limit(self, operation: str = "operation") -> None:
        """
        Check if memory usage exceeds limit.

        Args:
            operation: Description of current operation

        Raises:
            MemoryLimitError: If memory limit exceeded
        """
        if self.memory_limit_mb is None:
            return

        current_usage = self.get_memory_usage()
        if current_usage > self.memory_limit_mb:
            raise MemoryLimitError(
                operation=operation,
                memory_used=int(current_usage),
                memory_limit=self.memory_limit_mb
            )

    @contextmanager
    def memory_context(self, operation: str = "operation"):
        """
        Context manager for memory-monitored operations.

        The end-of-operation check only runs when the block succeeded, so a
        failure inside the block is never masked by a memory error.

        Args:
            operation: Description of operation for error messages

        Raises:
            MemoryLimitError: If memory limit exceeded during operation
        """
        self.check_memory_limit(f"start of {operation}")
        yield
        if self.memory_limit_mb is not None:
            gc.collect()
            self.check_memory_limit(f"end of {operation}")
