"""
Background enrichment queue
===========================
Runs EnrichmentService.enrich_product on a thread pool and hands back an
EnrichmentTask per submission, so callers can observe, wait on and retry
enrichment instead of firing it and forgetting it.

Usage:
    queue = EnrichmentQueue(enrichment_service, max_workers=4)
    task = queue.submit(product_id, callback=on_done)
    queue.wait_all()
    for failed in queue.failed_tasks():
        queue.retry(failed)
"""

import logging
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional

from authority.enrichment.client import GdsnError
from authority.enrichment.service import EnrichmentResult, EnrichmentService
from authority.models import new_id

logger = logging.getLogger(__name__)

RETRY_BACKOFF_SECONDS = 0.5
HISTORY_SIZE = 200


class TaskStatus(str, Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


@dataclass
class EnrichmentTask:
    product_id: str
    id: str = field(default_factory=new_id)
    status: TaskStatus = TaskStatus.QUEUED
    attempts: int = 0
    result: Optional[EnrichmentResult] = None
    error: Optional[str] = None
    future: Optional[Future] = field(default=None, repr=False)

    @property
    def done(self) -> bool:
        return self.status in (TaskStatus.SUCCEEDED, TaskStatus.FAILED)

    def wait(self, timeout: Optional[float] = None) -> "EnrichmentTask":
        if self.future is not None:
            wait([self.future], timeout=timeout)
        return self


TaskCallback = Callable[[EnrichmentTask], None]


class EnrichmentQueue:
    """Thread-pool backed enrichment with automatic retry of retryable errors"""

    def __init__(
        self,
        service: EnrichmentService,
        max_workers: int = 4,
        max_attempts: int = 3,
        backoff_seconds: float = RETRY_BACKOFF_SECONDS,
        history_size: int = HISTORY_SIZE
    ):
        self.service = service
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="enrichment")
        # Finished tasks leave _pending; only the last `history_size` are kept,
        # failed ones stay in _failed until retried
        self._pending: Dict[str, EnrichmentTask] = {}
        self._history: Deque[EnrichmentTask] = deque(maxlen=max(1, history_size))
        self._failed: Dict[str, EnrichmentTask] = {}
        self._lock = threading.Lock()
        self._callbacks: List[TaskCallback] = []

    def add_callback(self, callback: TaskCallback) -> None:
        """Called for every task once it finishes, successfully or not"""
        self._callbacks.append(callback)

    def submit(self, product_id: str, callback: Optional[TaskCallback] = None) -> EnrichmentTask:
        task = EnrichmentTask(product_id=product_id)
        with self._lock:
            self._pending[task.id] = task
        try:
            task.future = self._executor.submit(self._run, task, callback)
        except RuntimeError:
            with self._lock:
                self._pending.pop(task.id, None)
            raise
        logger.debug(f"Queued enrichment for product {product_id} (task {task.id[:8]})")
        return task

    def retry(self, task: EnrichmentTask, callback: Optional[TaskCallback] = None) -> EnrichmentTask:
        """Resubmit the product of a failed task as a new task"""
        if task.status != TaskStatus.FAILED:
            raise ValueError(f"Only failed tasks can be retried (task {task.id} is {task.status.value})")
        with self._lock:
            self._failed.pop(task.id, None)
        return self.submit(task.product_id, callback)

    def tasks(self) -> List[EnrichmentTask]:
        """Recently finished tasks followed by the ones still queued or running"""
        with self._lock:
            return list(self._history) + list(self._pending.values())

    def failed_tasks(self) -> List[EnrichmentTask]:
        with self._lock:
            return list(self._failed.values())

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def wait_all(self, timeout: Optional[float] = None) -> List[EnrichmentTask]:
        """Block until every submitted task has finished; returns the tasks"""
        tasks = self.tasks()
        futures = [t.future for t in tasks if t.future is not None]
        wait(futures, timeout=timeout)
        return tasks

    def shutdown(self, wait_for_tasks: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_tasks)

    def _run(self, task: EnrichmentTask, callback: Optional[TaskCallback]) -> EnrichmentTask:
        task.status = TaskStatus.RUNNING
        while True:
            task.attempts += 1
            try:
                task.result = self.service.enrich_product(task.product_id, raise_on_error=True)
                task.status = TaskStatus.SUCCEEDED
                task.error = None
                break
            except GdsnError as e:
                task.error = e.message
                if e.retryable and task.attempts < self.max_attempts:
                    delay = self.backoff_seconds * (2 ** (task.attempts - 1))
                    logger.info(
                        f"Enrichment of {task.product_id} hit {e.code}, "
                        f"retry {task.attempts}/{self.max_attempts - 1} in {delay:.1f}s"
                    )
                    time.sleep(delay)
                    continue
                task.status = TaskStatus.FAILED
                logger.warning(f"Enrichment of {task.product_id} failed after {task.attempts} attempt(s): {e.message}")
                break
            except Exception as e:
                task.status = TaskStatus.FAILED
                task.error = str(e)
                logger.error(f"Enrichment of {task.product_id} raised: {e}", exc_info=True)
                break

        for cb in [callback] + self._callbacks:
            if cb is None:
                continue
            try:
                cb(task)
            except Exception as e:
                logger.error(f"Enrichment callback failed for task {task.id[:8]}: {e}", exc_info=True)

        with self._lock:
            self._pending.pop(task.id, None)
            self._history.append(task)
            if task.status == TaskStatus.FAILED:
                self._failed[task.id] = task
        return task
