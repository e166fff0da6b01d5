"""Durable job queue with concurrency control and retry/backoff."""

import asyncio
import itertools
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Union
from uuid import uuid4

from loguru import logger
from pydantic import BaseModel, Field

from aimm.services.persistence import load_models, save_model

Handler = Callable[[Dict[str, Any]], Awaitable[Any]]


class QueueTaskStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    FAILED = "failed"


class QueueTask(BaseModel):
    """A unit of work, persisted until it succeeds or runs out of attempts."""
    id: str = Field(default_factory=lambda: uuid4().hex)
    name: str
    payload: Dict[str, Any]
    attempts: int = 1
    backoff: float = 0.0  # seconds, doubled after every failed attempt
    attempts_made: int = 0
    priority: int = 0
    status: QueueTaskStatus = QueueTaskStatus.PENDING
    last_error: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    def retry_delay(self) -> float:
        """Exponential backoff before the next attempt."""
        return self.backoff * (2 ** max(self.attempts_made - 1, 0))


@dataclass
class QueueItem:
    """Item in the job queue."""
    task_id: str
    priority: int = 0  # Higher = more priority
    added_at: datetime = field(default_factory=datetime.now)


class JobQueue:
    """
    Async job queue with concurrency control.

    Tasks are dispatched by name to registered handlers. Pending tasks are
    written to ``queue_dir`` so they survive a restart (at-least-once
    delivery); a task that fails is retried with exponential backoff until
    its attempt budget is used up.
    """

    def __init__(
        self,
        max_concurrent: int = 2,
        queue_dir: Optional[Path] = None,
    ):
        self.max_concurrent = max_concurrent
        self.queue_dir = Path(queue_dir) if queue_dir else None
        if self.queue_dir:
            self.queue_dir.mkdir(parents=True, exist_ok=True)
        self._handlers: Dict[str, Handler] = {}
        self._tasks: Dict[str, QueueTask] = {}
        self._queue: asyncio.PriorityQueue = asyncio.PriorityQueue()
        # Tie-breaker so the heap never compares QueueItem objects
        self._seq = itertools.count()
        self._active_tasks: Set[str] = set()
        self._delayed: Set[asyncio.Task] = set()
        self._workers: list[asyncio.Task] = []
        self._running = False
        self._processed_count = 0
        self._failed_count = 0
        self._retried_count = 0

    def register(self, name: str, handler: Handler) -> None:
        """Register the handler for a task name."""
        self._handlers[name] = handler
        logger.debug(f"Registered queue handler: {name}")

    # ========== Persistence ==========

    def _task_path(self, task_id: str) -> Optional[Path]:
        return self.queue_dir / f"{task_id}.json" if self.queue_dir else None

    def _save_task(self, task: QueueTask) -> None:
        task.updated_at = datetime.now()
        path = self._task_path(task.id)
        if path:
            save_model(path, task)

    def _remove_task(self, task: QueueTask) -> None:
        self._tasks.pop(task.id, None)
        path = self._task_path(task.id)
        if path and path.exists():
            path.unlink()

    def _load_pending_tasks(self) -> int:
        """Re-enqueue tasks left over from a previous run."""
        if not self.queue_dir:
            return 0
        restored = 0
        for task in load_models(self.queue_dir, QueueTask):
            if task.status == QueueTaskStatus.FAILED or task.id in self._tasks:
                continue
            # An active task was interrupted mid-run; deliver it again
            task.status = QueueTaskStatus.PENDING
            self._tasks[task.id] = task
            self._save_task(task)
            self._enqueue(task)
            restored += 1
        if restored:
            logger.info(f"Restored {restored} pending queue tasks")
        return restored

    # ========== Lifecycle ==========

    async def start(self) -> None:
        """Start queue workers."""
        if self._running:
            return

        self._running = True
        self._load_pending_tasks()
        logger.info(f"Starting job queue with {self.max_concurrent} workers")

        for i in range(self.max_concurrent):
            worker = asyncio.create_task(self._worker(i))
            self._workers.append(worker)

    async def stop(self) -> None:
        """Stop queue workers gracefully."""
        self._running = False

        for delayed in list(self._delayed):
            delayed.cancel()

        # Cancel all workers
        for worker in self._workers:
            worker.cancel()

        # Wait for workers to finish
        if self._workers or self._delayed:
            await asyncio.gather(*self._workers, *self._delayed, return_exceptions=True)

        self._workers.clear()
        self._delayed.clear()
        logger.info("Job queue stopped")

    # ========== Producing ==========

    def _enqueue(self, task: QueueTask) -> None:
        item = QueueItem(task_id=task.id, priority=task.priority)
        # Use negative priority for max-heap behavior (higher priority first)
        self._queue.put_nowait((-item.priority, next(self._seq), item))

    async def add(
        self,
        name: str,
        payload: Union[BaseModel, Dict[str, Any]],
        attempts: int = 1,
        backoff: float = 0.0,
        priority: int = 0,
    ) -> str:
        """Add a task to the queue and return its id."""
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(mode="json")

        task = QueueTask(
            name=name,
            payload=payload,
            attempts=max(attempts, 1),
            backoff=backoff,
            priority=priority,
        )
        self._tasks[task.id] = task
        self._save_task(task)
        self._enqueue(task)
        logger.info(f"Added {name} task {task.id} to queue (attempts={task.attempts})")
        return task.id

    async def _requeue_later(self, task: QueueTask, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            self._enqueue(task)
        except asyncio.CancelledError:
            # Still persisted as pending; picked up again on next start
            pass
        finally:
            self._delayed.discard(asyncio.current_task())

    def _schedule_retry(self, task: QueueTask) -> None:
        delay = task.retry_delay()
        self._retried_count += 1
        logger.warning(
            f"Retrying {task.name} task {task.id} in {delay:.1f}s "
            f"(attempt {task.attempts_made + 1}/{task.attempts})"
        )
        if delay <= 0:
            self._enqueue(task)
            return
        delayed = asyncio.create_task(self._requeue_later(task, delay))
        self._delayed.add(delayed)

    # ========== Consuming ==========

    async def _process(self, worker_id: int, task: QueueTask) -> None:
        handler = self._handlers.get(task.name)
        task.status = QueueTaskStatus.ACTIVE
        task.attempts_made += 1
        self._save_task(task)

        if handler is None:
            task.status = QueueTaskStatus.FAILED
            task.last_error = f"No handler registered for {task.name}"
            self._save_task(task)
            self._tasks.pop(task.id, None)
            self._failed_count += 1
            logger.error(f"Worker {worker_id}: {task.last_error} (task {task.id})")
            return

        logger.info(
            f"Worker {worker_id} processing {task.name} task {task.id} "
            f"(attempt {task.attempts_made}/{task.attempts})"
        )

        try:
            await handler(task.payload)
        except Exception as e:
            task.last_error = str(e) or type(e).__name__
            if task.attempts_made < task.attempts:
                task.status = QueueTaskStatus.PENDING
                self._save_task(task)
                self._schedule_retry(task)
            else:
                task.status = QueueTaskStatus.FAILED
                self._save_task(task)
                self._tasks.pop(task.id, None)
                self._failed_count += 1
                logger.error(
                    f"Worker {worker_id}: {task.name} task {task.id} failed "
                    f"after {task.attempts_made} attempts: {task.last_error}"
                )
            return

        self._remove_task(task)
        self._processed_count += 1

    async def _worker(self, worker_id: int) -> None:
        """Queue worker that processes tasks."""
        logger.debug(f"Worker {worker_id} started")

        while self._running:
            try:
                # Wait for a task with timeout
                try:
                    _, _, item = await asyncio.wait_for(
                        self._queue.get(), timeout=1.0
                    )
                except asyncio.TimeoutError:
                    continue

                task = self._tasks.get(item.task_id)
                if task is None:
                    self._queue.task_done()
                    continue

                self._active_tasks.add(task.id)
                try:
                    await self._process(worker_id, task)
                finally:
                    self._active_tasks.discard(task.id)
                    self._queue.task_done()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Worker {worker_id} error: {e}")

        logger.debug(f"Worker {worker_id} stopped")

    async def wait_idle(self, timeout: float = 10.0, interval: float = 0.01) -> None:
        """Wait until no task is pending, running or waiting for a retry."""

        async def _poll():
            while self.is_busy:
                await asyncio.sleep(interval)

        await asyncio.wait_for(_poll(), timeout)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending_count(self) -> int:
        """Number of tasks waiting in queue."""
        return self._queue.qsize()

    @property
    def active_count(self) -> int:
        """Number of tasks currently being processed."""
        return len(self._active_tasks)

    @property
    def is_busy(self) -> bool:
        """Whether any task is still pending, running or waiting for a retry."""
        return bool(self._tasks) or bool(self._delayed)

    def get_task(self, task_id: str) -> Optional[QueueTask]:
        return self._tasks.get(task_id)

    def get_stats(self) -> dict:
        """Get queue statistics."""
        return {
            "running": self._running,
            "max_concurrent": self.max_concurrent,
            "pending": self.pending_count,
            "active": self.active_count,
            "delayed": len(self._delayed),
            "active_tasks": list(self._active_tasks),
            "processed": self._processed_count,
            "failed": self._failed_count,
            "retried": self._retried_count,
        }
