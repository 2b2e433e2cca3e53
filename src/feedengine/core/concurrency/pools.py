"""
Worker Pool Management

Shared thread pool on which feed evaluations run. Each request is an
independent unit of work; callers either block on the returned future or
hand it to the result cache, which shares it among concurrent waiters.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TypeVar

from feedengine.core.monitoring.metrics import get_metrics_collector


T = TypeVar('T')
logger = logging.getLogger(__name__)


@dataclass
class PoolMetrics:
    """Metrics for pool performance tracking."""
    active_tasks: int = 0
    submitted_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    average_task_time: float = 0.0
    started_at: float = field(default_factory=time.time)


class EvaluationPool:
    """
    Thread pool for evaluation work.

    The executor is created lazily so that constructing a service does not
    spawn threads until the first evaluation is submitted.
    """

    def __init__(self, max_workers: int = 8, name: str = "feedengine-eval"):
        """
        Initialize the pool.

        Args:
            max_workers: Number of worker threads
            name: Thread name prefix
        """
        self.max_workers = max_workers
        self.name = name
        self.metrics = PoolMetrics()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()
        self._total_task_time = 0.0
        self._shutdown = False
        self._collector = get_metrics_collector()

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._shutdown:
                raise RuntimeError("Evaluation pool has been shut down")
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers,
                    thread_name_prefix=self.name
                )
                logger.info(f"Started evaluation pool with {self.max_workers} workers")
            return self._executor

    def submit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> "Future[T]":
        """
        Schedule a callable on the pool.

        Returns:
            Future resolving to the callable's result
        """
        executor = self._get_executor()
        with self._lock:
            self.metrics.submitted_tasks += 1
        return executor.submit(self._run_tracked, fn, *args, **kwargs)

    def run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Schedule a callable and block until it finishes."""
        return self.submit(fn, *args, **kwargs).result()

    def _run_tracked(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        start = time.perf_counter()
        with self._lock:
            self.metrics.active_tasks += 1
        failed = False
        try:
            return fn(*args, **kwargs)
        except Exception:
            failed = True
            raise
        finally:
            elapsed = time.perf_counter() - start
            with self._lock:
                self.metrics.active_tasks -= 1
                if failed:
                    self.metrics.failed_tasks += 1
                else:
                    self.metrics.completed_tasks += 1
                finished = self.metrics.completed_tasks + self.metrics.failed_tasks
                self._total_task_time += elapsed
                self.metrics.average_task_time = self._total_task_time / finished
            self._collector.timer("pool.task_time").record(elapsed)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work and release the threads."""
        with self._lock:
            self._shutdown = True
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
            logger.info("Evaluation pool stopped")

    def get_metrics(self) -> PoolMetrics:
        """Get current pool metrics."""
        return self.metrics

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False
