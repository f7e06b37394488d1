"""
Resource Manager for the OCR worker lifecycle and memory monitoring.

The OCR worker is the only long-lived resource in the pipeline. This module
owns it as an explicit handle: one worker at a time, keyed by its language
set, torn down and recreated when the language set changes, and released on
every exit path of a processing run through the session() context manager.
"""

import logging
import threading
from typing import Any, Callable, List, Optional, Iterable
from dataclasses import dataclass
from contextlib import contextmanager

import psutil


@dataclass
class MemoryStats:
    """Memory usage statistics."""
    total_memory: float  # Total system memory in MB
    available_memory: float  # Available system memory in MB
    used_memory: float  # Used system memory in MB
    process_memory: float  # Current process memory usage in MB
    memory_percent: float  # Memory usage percentage


def language_key(languages: Iterable[str]) -> str:
    """Sorted, de-duplicated language codes joined with '+', e.g. 'eng+spa'."""
    codes = set()
    for language in languages:
        codes.update(part for part in language.split('+') if part)
    if not codes:
        raise ValueError("At least one OCR language is required")
    return '+'.join(sorted(codes))


class OCRWorkerManager:
    """
    Owns the single OCR worker.

    Workers are created by a factory called with the language key; anything
    with a terminate() method can serve as a worker. The lock only guards the
    swap itself: pages are processed one at a time, so the worker is never
    used by two in-flight recognitions.
    """

    def __init__(self, worker_factory: Callable[[str], Any], debug: bool = False):
        """
        Initialize the OCRWorkerManager.

        Args:
            worker_factory: Builds a worker for a language key such as 'eng+spa'
            debug: Enable debug logging.
        """
        self.worker_factory = worker_factory
        self.debug = debug
        self._worker = None
        self._worker_key: Optional[str] = None
        self._lock = threading.Lock()
        self._logger = self._setup_logger()
        self.workers_created = 0
        self.workers_terminated = 0

    def _setup_logger(self) -> logging.Logger:
        """Set up logger for the OCRWorkerManager."""
        logger = logging.getLogger(f"{__name__}.OCRWorkerManager")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        logger.setLevel(logging.DEBUG if self.debug else logging.INFO)
        return logger

    @property
    def active_key(self) -> Optional[str]:
        return self._worker_key

    @property
    def has_worker(self) -> bool:
        return self._worker is not None

    def get_worker(self, languages: List[str]):
        """
        Return the worker for the given languages, replacing the current one
        when its language set differs.
        """
        key = language_key(languages)

        with self._lock:
            if self._worker is not None and self._worker_key == key:
                return self._worker

            if self._worker is not None:
                self._logger.info(
                    f"OCR language set changed ({self._worker_key} -> {key}), replacing worker"
                )
                self._terminate_locked()

            self._logger.debug(f"Creating OCR worker for languages: {key}")
            self._worker = self.worker_factory(key)
            self._worker_key = key
            self.workers_created += 1
            return self._worker

    def terminate_worker(self) -> None:
        """Release the current worker. Safe to call when none is active."""
        with self._lock:
            self._terminate_locked()

    def _terminate_locked(self) -> None:
        if self._worker is None:
            return

        worker, key = self._worker, self._worker_key
        self._worker = None
        self._worker_key = None
        self.workers_terminated += 1

        try:
            worker.terminate()
        except Exception as e:
            self._logger.error(f"Failed to terminate OCR worker ({key}): {e}")
            return

        if self.debug:
            self._logger.debug(f"Terminated OCR worker ({key})")

    @contextmanager
    def session(self):
        """
        Scope a processing run: the worker is released however the run ends.

        Example:
            with manager.session():
                engine.recognize(image, ['eng'], options)
            # worker terminated here, also on exceptions
        """
        try:
            yield self
        finally:
            self.terminate_worker()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit with guaranteed worker release."""
        self.terminate_worker()


def get_memory_usage() -> MemoryStats:
    """
    Get current memory usage statistics.

    Returns:
        MemoryStats object with current memory information.
    """
    memory = psutil.virtual_memory()
    process_memory_info = psutil.Process().memory_info()

    return MemoryStats(
        total_memory=memory.total / (1024 * 1024),  # Convert to MB
        available_memory=memory.available / (1024 * 1024),
        used_memory=memory.used / (1024 * 1024),
        process_memory=process_memory_info.rss / (1024 * 1024),
        memory_percent=memory.percent
    )
