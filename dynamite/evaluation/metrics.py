"""
Dynamite Metrics
================
Timing, memory and accuracy measurements for comparing the dynamic and
reference formulations.

    Timer            wall-clock time of a block, logged on exit
    MemoryTracker    peak Python-level memory of a block (tracemalloc)
    classification_error   0/1 error of one example's logits

Usage:
    >>> with Timer("dynamic criterion") as t:
    ...     loss = criterion(features, labels)
    >>> t.elapsed
"""

from __future__ import annotations

import logging
import time
import tracemalloc
from typing import Optional

import torch

logger = logging.getLogger(__name__)


def classification_error(z: torch.Tensor, label: torch.Tensor) -> torch.Tensor:
    """
    1.0 if the arg-max of the logits `z` differs from the one-hot
    `label`, else 0.0.
    """
    return (torch.argmax(z) != torch.argmax(label)).to(z.dtype)


class Timer:
    """
    Context manager for timing a block of code.

    Repeated blocks can pass `repeats` to also log the per-repeat time.

    Usage:
        >>> with Timer("Training", repeats=10) as t:
        ...     for _ in range(10):
        ...         train_step()
        >>> print(f"Took: {t.elapsed:.2f}s")
    """

    def __init__(self, label: str = "operation", repeats: Optional[int] = None):
        self.label = label
        self.repeats = repeats
        self.elapsed: float = 0.0
        self._start: float = 0.0

    def __enter__(self):
        self._start = time.perf_counter()
        return self

    def __exit__(self, *args):
        self.elapsed = time.perf_counter() - self._start
        if self.repeats:
            logger.info(
                f"[{self.label}] Time: {self.elapsed:.6f}s "
                f"({self.elapsed / self.repeats:.6f}s x {self.repeats})"
            )
        else:
            logger.info(f"[{self.label}] Time: {self.elapsed:.6f}s")

    @property
    def per_repeat(self) -> float:
        """Elapsed time divided by the repeat count."""
        return self.elapsed / self.repeats if self.repeats else self.elapsed


class MemoryTracker:
    """
    Context manager for tracking peak memory of a block of code.

    Host memory is measured with tracemalloc, which only sees Python-level
    allocations. When `device` is a CUDA device, the CUDA allocator's peak
    is recorded as well.

    Usage:
        >>> with MemoryTracker("Training", device=torch.device("cuda")) as tracker:
        ...     train()
        >>> print(f"Peak: {tracker.peak_mb:.1f} MB, GPU: {tracker.device_peak_mb:.1f} MB")
    """

    def __init__(self, label: str = "operation", device: Optional[torch.device] = None):
        self.label = label
        self.device = device
        self.peak_mb: float = 0.0
        self.current_mb: float = 0.0
        self.device_peak_mb: Optional[float] = None
        self.duration_seconds: float = 0.0
        self._start_time: float = 0.0

    @property
    def _tracks_cuda(self) -> bool:
        return (
            self.device is not None
            and self.device.type == "cuda"
            and torch.cuda.is_available()
        )

    def __enter__(self):
        tracemalloc.start()
        if self._tracks_cuda:
            torch.cuda.reset_peak_memory_stats(self.device)
        self._start_time = time.perf_counter()
        return self

    def __exit__(self, *args):
        self.duration_seconds = time.perf_counter() - self._start_time
        current, peak = tracemalloc.get_traced_memory()
        tracemalloc.stop()

        self.current_mb = current / (1024 * 1024)
        self.peak_mb = peak / (1024 * 1024)
        if self._tracks_cuda:
            self.device_peak_mb = torch.cuda.max_memory_allocated(self.device) / (1024 * 1024)

        device_part = (
            f", device_peak={self.device_peak_mb:.1f}MB"
            if self.device_peak_mb is not None else ""
        )
        logger.info(
            f"[{self.label}] Memory: peak={self.peak_mb:.1f}MB, "
            f"current={self.current_mb:.1f}MB{device_part}, "
            f"time={self.duration_seconds:.2f}s"
        )

    def __repr__(self) -> str:
        return (
            f"MemoryTracker({self.label}: "
            f"peak={self.peak_mb:.1f}MB, "
            f"time={self.duration_seconds:.2f}s)"
        )

