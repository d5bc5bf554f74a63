"""In-process background job queue with per-queue retry policies.

Jobs run as asyncio tasks off the request path. A job that raises is retried
with exponential backoff until its queue's attempt limit, then parked in
``failed_jobs`` for inspection. Jobs are not persisted; pending work is lost
if the process stops.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

WEBHOOK_QUEUE = "webhook"
CALL_PROCESSING_QUEUE = "call-processing"
TRANSCRIPT_FETCH_QUEUE = "transcript-fetch"


@dataclass
class RetryPolicy:
    """Exponential backoff: ``base_delay * factor ** (attempt - 1)`` seconds."""

    max_attempts: int = 3
    base_delay: float = 2.0
    factor: float = 2.0
    max_delay: float = 300.0

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * self.factor ** max(attempt - 1, 0), self.max_delay)


@dataclass
class Job:
    queue: str
    name: str
    func: Callable[..., Awaitable[Any]]
    args: tuple = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    attempts: int = 0
    status: str = "pending"
    last_error: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def describe(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "queue": self.queue,
            "name": self.name,
            "attempts": self.attempts,
            "status": self.status,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat(),
        }


class JobQueue:
    """Named queues sharing one event loop."""

    def __init__(self, policies: Optional[Dict[str, RetryPolicy]] = None, failed_history: int = 100):
        self.policies: Dict[str, RetryPolicy] = dict(policies or {})
        self.failed_jobs: Deque[Job] = deque(maxlen=failed_history)
        self._tasks: Set[asyncio.Task] = set()
        self._active: Dict[str, Job] = {}
        self._counters: Dict[str, Dict[str, int]] = {}

    def policy_for(self, queue: str) -> RetryPolicy:
        return self.policies.get(queue) or RetryPolicy()

    def _count(self, queue: str, key: str) -> None:
        counters = self._counters.setdefault(queue, {"enqueued": 0, "completed": 0, "retried": 0, "failed": 0})
        counters[key] += 1

    def enqueue(
        self,
        queue: str,
        name: str,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        delay: float = 0.0,
        **kwargs: Any,
    ) -> Job:
        """Schedule ``func(*args, **kwargs)`` on ``queue``.

        Args:
            queue: Queue name, selects the retry policy
            name: Human readable job name for logs
            func: Coroutine function to run
            delay: Seconds to wait before the first attempt

        Returns:
            The scheduled job
        """
        job = Job(queue=queue, name=name, func=func, args=args, kwargs=kwargs)
        task = asyncio.get_running_loop().create_task(self._run(job, delay))
        self._tasks.add(task)
        self._active[job.id] = job
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(lambda _task, job_id=job.id: self._active.pop(job_id, None))
        self._count(queue, "enqueued")
        logger.debug(f"Enqueued {queue}/{name} ({job.id})")
        return job

    async def _run(self, job: Job, delay: float) -> None:
        policy = self.policy_for(job.queue)
        if delay > 0:
            await asyncio.sleep(delay)

        while True:
            job.attempts += 1
            job.status = "running"
            try:
                await job.func(*job.args, **job.kwargs)
            except asyncio.CancelledError:
                job.status = "cancelled"
                raise
            except Exception as e:
                job.last_error = f"{type(e).__name__}: {e}"
                if job.attempts >= policy.max_attempts:
                    job.status = "failed"
                    self.failed_jobs.append(job)
                    self._count(job.queue, "failed")
                    logger.error(
                        f"❌ Job {job.queue}/{job.name} failed after {job.attempts} attempts: {job.last_error}"
                    )
                    return
                backoff = policy.delay_for(job.attempts)
                job.status = "retrying"
                self._count(job.queue, "retried")
                logger.warning(
                    f"⚠️ Job {job.queue}/{job.name} attempt {job.attempts}/{policy.max_attempts} failed "
                    f"({job.last_error}); retrying in {backoff:.1f}s"
                )
                await asyncio.sleep(backoff)
                continue

            job.status = "completed"
            self._count(job.queue, "completed")
            return

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def is_scheduled(self, name: str) -> bool:
        """True while a job with this name is waiting, running or backing off."""
        return any(job.name == name for job in self._active.values())

    async def drain(self) -> None:
        """Wait until every scheduled job, including jobs scheduled meanwhile, has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def stats(self) -> Dict[str, Any]:
        return {
            "pending": self.pending,
            "queues": {name: dict(counts) for name, counts in self._counters.items()},
            "failed_jobs": [job.describe() for job in list(self.failed_jobs)[-10:]],
        }

    def failed(self, queue: Optional[str] = None) -> List[Job]:
        return [job for job in self.failed_jobs if queue is None or job.queue == queue]
