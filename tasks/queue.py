"""
tasks/queue.py -- Background task queue for post-response side effects.

Work that the caller does not need to wait for (deleting a used token,
re-subscribing an address, sending a notice email, fanning out Slack
notifications) is enqueued here instead of running inside the request.

Delivery is at-least-once: a task that raises is retried with exponential
backoff up to max_attempts, then logged and dropped. Task bodies must
therefore be idempotent -- deletes tolerate missing rows, mailing-list calls
are upserts, emails carry an idempotency key.
Configuration errors such as EmailNotConfigured fail on the first attempt.

Task bodies are plain synchronous callables. The worker runs them with
asyncio.to_thread so a slow HTTP call never blocks the event loop.

Threading: route handlers declared with `def` run in Starlette's thread pool,
so enqueue() hands tasks to the loop with call_soon_threadsafe when called
off the loop thread.

Eager mode (TASKS_EAGER=true) runs each task inline inside enqueue(), with
the same retry policy and no backoff sleep. Tests and the CLI use it so side
effects are visible as soon as the call returns.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Optional

from services.email import EmailNotConfigured

logger = logging.getLogger("docroom.tasks")

# Configuration errors: retrying cannot help, so the task fails on the first try.
NOT_RETRIED: tuple[type[Exception], ...] = (EmailNotConfigured,)

# Permanently failed tasks kept for inspection; older entries are dropped.
FAILED_HISTORY = 100


@dataclass
class Task:
    name: str
    func: Callable[..., Any]
    args: tuple = ()
    kwargs: dict[str, Any] = field(default_factory=dict)
    attempts: int = 0


class TaskQueue:
    """A single-worker asyncio queue with bounded retries.

    Lifecycle (see api/main.py lifespan):
        queue = TaskQueue()
        await queue.start()
        queue.enqueue("send-email", send_fn, to, subject=...)
        await queue.stop()     # drains pending work and retries, then cancels the worker

    A retry waits out its backoff in its own asyncio task, so the worker keeps
    serving other work meanwhile. stop() waits for those too. After stop(),
    enqueue() runs tasks inline.
    """

    def __init__(self, max_attempts: int = 3, eager: bool = False, backoff: float = 0.5) -> None:
        self.max_attempts = max(1, max_attempts)
        self.eager = eager
        self.backoff = backoff
        self._queue: Optional[asyncio.Queue[Task]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._worker: Optional[asyncio.Task] = None
        self._retries: set[asyncio.Task] = set()
        self.failed: deque[Task] = deque(maxlen=FAILED_HISTORY)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self.eager or self._worker is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._run_forever(self._queue))

    async def stop(self, timeout: float = 5.0) -> None:
        """Give pending tasks and retries up to timeout seconds, then cancel the worker."""
        if self._worker is None or self._queue is None:
            return
        queue, worker = self._queue, self._worker
        try:
            await asyncio.wait_for(self._drain(queue), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Task queue stopped with %d task(s) and %d retry(ies) pending",
                queue.qsize(),
                len(self._retries),
            )
        for retry in list(self._retries):
            retry.cancel()
        worker.cancel()
        self._worker = None
        self._queue = None
        self._loop = None

    async def _drain(self, queue: asyncio.Queue[Task]) -> None:
        # A retry is registered before its failed attempt calls task_done(),
        # so an empty queue with no retries means nothing is left.
        while True:
            await queue.join()
            if not self._retries:
                return
            await asyncio.gather(*list(self._retries), return_exceptions=True)

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def enqueue(self, name: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        """Schedule func(*args, **kwargs) to run after the current request."""
        task = Task(name=name, func=func, args=args, kwargs=kwargs)
        loop, queue = self._loop, self._queue
        if self.eager or loop is None or queue is None:
            self._run_inline(task)
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            queue.put_nowait(task)
        else:
            loop.call_soon_threadsafe(queue.put_nowait, task)

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def _run_inline(self, task: Task) -> None:
        while True:
            task.attempts += 1
            try:
                task.func(*task.args, **task.kwargs)
                return
            except Exception as exc:
                if not self._should_retry(task, exc):
                    return

    async def _run_forever(self, queue: asyncio.Queue[Task]) -> None:
        while True:
            task = await queue.get()
            try:
                await self._run_once(queue, task)
            finally:
                queue.task_done()

    async def _run_once(self, queue: asyncio.Queue[Task], task: Task) -> None:
        task.attempts += 1
        try:
            await asyncio.to_thread(task.func, *task.args, **task.kwargs)
        except Exception as exc:
            if self._should_retry(task, exc):
                delay = self.backoff * (2 ** (task.attempts - 1))
                retry = asyncio.create_task(self._retry_later(queue, task, delay))
                self._retries.add(retry)
                retry.add_done_callback(self._retries.discard)

    async def _retry_later(self, queue: asyncio.Queue[Task], task: Task, delay: float) -> None:
        await asyncio.sleep(delay)
        queue.put_nowait(task)

    def _should_retry(self, task: Task, exc: Exception) -> bool:
        if isinstance(exc, NOT_RETRIED):
            logger.error("Task %s cannot run: %s", task.name, exc)
            self.failed.append(task)
            return False
        if task.attempts < self.max_attempts:
            logger.warning(
                "Task %s failed (attempt %d/%d): %s", task.name, task.attempts, self.max_attempts, exc
            )
            return True
        logger.error("Task %s failed after %d attempts: %s", task.name, task.attempts, exc)
        self.failed.append(task)
        return False
