"""
In-process work queues for background pipeline tasks.

A message carries a dequeue count. The first delivery runs as
``ProcessType.BACKEND``; every re-delivery after a retryable failure runs as
``ProcessType.BACKEND_RETRY``. Retries are delayed by a fixed visibility
timeout and capped at ``max_dequeue_count`` deliveries, after which the
message is dead-lettered for manual re-drive.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List

from socialmod.datatypes.process_datatypes import ExecutionContext
from socialmod.errors import PipelineError
from socialmod.util.handles import new_handle
from socialmod.util.logger import get_logger

logger = get_logger("work_queue")


@dataclass(slots=True)
class WorkMessage:
    """A queued unit of background work."""
    payload: Dict[str, Any]
    dequeue_count: int = 0
    message_id: str = field(default_factory=new_handle)

    @property
    def context(self) -> ExecutionContext:
        return ExecutionContext.backend(self.dequeue_count)


MessageHandler = Callable[[WorkMessage], Awaitable[None]]


class WorkQueue:
    """
    asyncio.Queue with delivery counting, delayed retry and a dead-letter list.

    Args:
        name: Queue name used in logs and task names.
        max_dequeue_count: Deliveries allowed before a message is dead-lettered.
        retry_delay_seconds: Delay before a failed message becomes visible again.
    """

    def __init__(self, name: str, max_dequeue_count: int = 5, retry_delay_seconds: float = 5.0) -> None:
        self.name = name
        self.max_dequeue_count = max_dequeue_count
        self.retry_delay_seconds = retry_delay_seconds
        self.dead_letters: List[WorkMessage] = []
        self._queue: asyncio.Queue[WorkMessage] = asyncio.Queue()
        self._pending_retries: set[asyncio.TimerHandle] = set()

    def qsize(self) -> int:
        return self._queue.qsize()

    @property
    def retries_pending(self) -> int:
        return len(self._pending_retries)

    async def enqueue(self, **payload: Any) -> WorkMessage:
        message = WorkMessage(payload=payload)
        await self._queue.put(message)
        logger.debug("[QUEUE] %s: enqueued %s %s", self.name, message.message_id, payload)
        return message

    async def dequeue(self) -> WorkMessage:
        """Wait for the next message and count the delivery."""
        message = await self._queue.get()
        message.dequeue_count += 1
        return message

    def dequeue_nowait(self) -> WorkMessage:
        message = self._queue.get_nowait()
        message.dequeue_count += 1
        return message

    def retry(self, message: WorkMessage) -> bool:
        """Schedule a re-delivery of ``message``.

        Returns:
            False if the message has used up its deliveries and was
            dead-lettered instead.
        """
        if message.dequeue_count >= self.max_dequeue_count:
            self.dead_letters.append(message)
            logger.error(
                "[QUEUE] %s: message %s dead-lettered after %d deliveries",
                self.name, message.message_id, message.dequeue_count,
            )
            return False

        if self.retry_delay_seconds <= 0:
            self._queue.put_nowait(message)
            return True

        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle

        def _make_visible() -> None:
            self._pending_retries.discard(handle)
            self._queue.put_nowait(message)

        handle = loop.call_later(self.retry_delay_seconds, _make_visible)
        self._pending_retries.add(handle)
        return True

    def drop(self, message: WorkMessage) -> None:
        """Dead-letter a message that must not be retried."""
        self.dead_letters.append(message)

    def cancel_pending_retries(self) -> int:
        count = len(self._pending_retries)
        for handle in self._pending_retries:
            handle.cancel()
        self._pending_retries.clear()
        return count


class QueueWorker:
    """
    Runs ``handler`` for every message of a ``WorkQueue``.

    Retryable pipeline errors (and unexpected exceptions) send the message
    back through ``WorkQueue.retry``; non-retryable pipeline errors are logged
    and the message is dead-lettered. A failing message never stops the
    worker or blocks other messages.
    """

    def __init__(self, queue: WorkQueue, handler: MessageHandler) -> None:
        self.queue = queue
        self.handler = handler
        self._tasks: List[asyncio.Task[None]] = []

    # ------------------------------------------------------
    # Public API
    # ------------------------------------------------------

    def start(self, count: int = 1) -> None:
        """Start ``count`` worker tasks (restarting any that died)."""
        self._tasks = [task for task in self._tasks if not task.done()]
        for index in range(len(self._tasks), count):
            self._tasks.append(
                asyncio.create_task(self._run(), name=f"socialmod-{self.queue.name}-worker-{index}")
            )
        logger.info("[QUEUE] %s: %d worker(s) running", self.queue.name, len(self._tasks))

    async def shutdown(self) -> None:
        """Cancel worker tasks and pending retries."""
        for task in self._tasks:
            if not task.done():
                task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        cancelled = self.queue.cancel_pending_retries()
        logger.info("[QUEUE] %s: workers shut down (%d pending retries dropped)", self.queue.name, cancelled)

    async def drain(self) -> int:
        """Process messages until the queue is empty; returns the number handled.

        Retries scheduled without delay are processed in the same call.
        """
        handled = 0
        while self.queue.qsize():
            message = self.queue.dequeue_nowait()
            await self.process(message)
            handled += 1
        return handled

    async def process(self, message: WorkMessage) -> bool:
        """Handle one delivered message; returns True on success."""
        try:
            await self.handler(message)
        except asyncio.CancelledError:
            raise
        except PipelineError as exc:
            if exc.retryable:
                logger.warning(
                    "[QUEUE] %s: message %s failed on delivery %d, retrying: %s",
                    self.queue.name, message.message_id, message.dequeue_count, exc,
                )
                self.queue.retry(message)
            else:
                logger.error(
                    "[QUEUE] %s: message %s dropped (%s): %s",
                    self.queue.name, message.message_id, type(exc).__name__, exc,
                )
                self.queue.drop(message)
            return False
        except Exception:
            logger.exception(
                "[QUEUE] %s: unexpected error handling message %s", self.queue.name, message.message_id,
            )
            self.queue.retry(message)
            return False
        return True

    # -------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------

    async def _run(self) -> None:
        while True:
            try:
                message = await self.queue.dequeue()
            except asyncio.CancelledError:
                return
            await self.process(message)
