# FILE: firmware_backend/services/queue_service.py
"""
In-process work queue of idempotent tasks with at-least-once delivery.

A handler acks a delivery by returning and nacks it by raising; a nacked
delivery is put back after `retry_delay` until `max_deliveries` is reached,
after which it is dead-lettered. Handlers never retry on their own.

With a TaskJournal every enqueued message is also written to the
`queued_tasks` table and only removed on ack, so whatever is still unacked
when the process stops is replayed on the next start. A delivery interrupted
by cancellation (shutdown) goes back on the queue instead of being dropped.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from firmware_backend.core.config import QUEUE_MAX_DELIVERIES, QUEUE_RETRY_DELAY_SECONDS
from firmware_backend.models.queued_task import QueuedTask, STATUS_DEAD, STATUS_PENDING

logger = logging.getLogger("firmware-backend.queue")

Handler = Callable[[Any], Awaitable[Any]]


def _model_json(message: Any) -> str:
    return message.model_dump_json()


class TaskJournal:
    """Unacked messages of one queue, persisted in `queued_tasks`."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        decode: Callable[[str], Any],
        encode: Callable[[Any], str] = _model_json,
        queue_name: str = "ingest",
    ):
        self.session_factory = session_factory
        self.decode = decode
        self.encode = encode
        self.queue_name = queue_name

    async def add(self, message: Any) -> int:
        async with self.session_factory() as db:
            row = QueuedTask(queue_name=self.queue_name, payload=self.encode(message))
            db.add(row)
            await db.commit()
            return row.id

    async def ack(self, task_id: int) -> None:
        async with self.session_factory() as db:
            await db.execute(delete(QueuedTask).where(QueuedTask.id == task_id))
            await db.commit()

    async def dead(self, task_id: int, attempts: int, error: str) -> None:
        async with self.session_factory() as db:
            await db.execute(
                update(QueuedTask)
                .where(QueuedTask.id == task_id)
                .values(status=STATUS_DEAD, attempts=attempts, error=error[:2000])
            )
            await db.commit()

    async def pending(self) -> List[Tuple[int, Any]]:
        async with self.session_factory() as db:
            rows = (
                await db.execute(
                    select(QueuedTask.id, QueuedTask.payload)
                    .where(QueuedTask.queue_name == self.queue_name, QueuedTask.status == STATUS_PENDING)
                    .order_by(QueuedTask.id)
                )
            ).all()
        return [(task_id, self.decode(payload)) for task_id, payload in rows]


@dataclass
class Delivery:
    message: Any
    attempts: int = 0
    task_id: Optional[int] = None


class WorkQueue:
    def __init__(
        self,
        name: str = "ingest",
        max_deliveries: int = QUEUE_MAX_DELIVERIES,
        retry_delay: float = QUEUE_RETRY_DELAY_SECONDS,
        journal: Optional[TaskJournal] = None,
    ):
        self.name = name
        self.max_deliveries = max(1, max_deliveries)
        self.retry_delay = retry_delay
        self.journal = journal
        self._queue: "asyncio.Queue[Delivery]" = asyncio.Queue()
        self._workers: List[asyncio.Task] = []
        self._pending_retries: Dict[asyncio.Task, Delivery] = {}
        self.dead_letters: List[Delivery] = []

    def __len__(self) -> int:
        return self._queue.qsize()

    async def enqueue(self, message: Any) -> None:
        task_id = await self.journal.add(message) if self.journal else None
        await self._queue.put(Delivery(message=message, task_id=task_id))

    async def replay(self) -> int:
        """Queue everything the journal still holds from a previous run."""
        if self.journal is None:
            return 0
        pending = await self.journal.pending()
        for task_id, message in pending:
            self._queue.put_nowait(Delivery(message=message, task_id=task_id))
        if pending:
            logger.info(f"[{self.name}] replayed {len(pending)} unacked task(s)")
        return len(pending)

    async def _redeliver_later(self, delivery: Delivery) -> None:
        if self.retry_delay > 0:
            await asyncio.sleep(self.retry_delay)
        self._queue.put_nowait(delivery)

    async def _ack(self, delivery: Delivery) -> None:
        if self.journal is None or delivery.task_id is None:
            return
        try:
            await self.journal.ack(delivery.task_id)
        except Exception:
            # the row stays pending and is replayed; handlers are idempotent
            logger.exception(f"[{self.name}] failed to ack task {delivery.task_id}")

    async def _nack(self, delivery: Delivery, error: BaseException) -> None:
        if delivery.attempts >= self.max_deliveries:
            logger.error(f"[{self.name}] dead-lettered after {delivery.attempts} attempts: {error}")
            self.dead_letters.append(delivery)
            if self.journal is not None and delivery.task_id is not None:
                await self.journal.dead(delivery.task_id, delivery.attempts, str(error))
            return
        logger.warning(f"[{self.name}] delivery {delivery.attempts}/{self.max_deliveries} failed, will retry: {error}")
        task = asyncio.create_task(self._redeliver_later(delivery))
        self._pending_retries[task] = delivery
        task.add_done_callback(lambda t: self._pending_retries.pop(t, None))

    async def _deliver(self, delivery: Delivery, handler: Handler) -> None:
        delivery.attempts += 1
        try:
            await handler(delivery.message)
        except asyncio.CancelledError:
            # interrupted, not failed
            delivery.attempts -= 1
            self._queue.put_nowait(delivery)
            raise
        except Exception as e:
            logger.exception(f"[{self.name}] handler failed")
            await self._nack(delivery, e)
        else:
            await self._ack(delivery)
        finally:
            self._queue.task_done()

    async def _worker(self, handler: Handler) -> None:
        while True:
            delivery = await self._queue.get()
            await self._deliver(delivery, handler)

    def start(self, handler: Handler, workers: int = 1) -> None:
        for _ in range(max(1, workers)):
            self._workers.append(asyncio.create_task(self._worker(handler)))
        logger.info(f"[{self.name}] started {len(self._workers)} worker(s)")

    async def stop(self) -> None:
        """Stop the workers; in-flight and retry-waiting deliveries are queued again."""
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()

        retries = list(self._pending_retries.items())
        for task, delivery in retries:
            if not task.done():
                task.cancel()
                self._queue.put_nowait(delivery)
        await asyncio.gather(*(task for task, _ in retries), return_exceptions=True)
        self._pending_retries.clear()

    async def drain(self, handler: Handler, timeout: Optional[float] = None) -> None:
        """Deliver everything queued (including redeliveries) until the queue is empty."""

        async def _run() -> None:
            while True:
                while not self._queue.empty():
                    await self._deliver(self._queue.get_nowait(), handler)
                if not self._pending_retries:
                    return
                await asyncio.wait(set(self._pending_retries))

        await asyncio.wait_for(_run(), timeout)
