"""
Review Queue

Webhook deliveries are turned into tickets and queued; a worker task drains
the queue one ticket at a time. Tickets already seen within the dedup TTL
are dropped so that redelivered events do not trigger a second review.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from diffwarden.review.models import ReviewTicket
from diffwarden.utils.cache import TTLCache

logger = structlog.get_logger(__name__)

TicketHandler = Callable[[ReviewTicket], Awaitable[Any]]


class ReviewQueue:
    """Deduplicating ticket queue with a single worker."""

    def __init__(
        self,
        handler: TicketHandler,
        dedup: TTLCache | None = None,
        max_size: int = 1000,
    ):
        """
        Args:
            handler: Coroutine run for each ticket
            dedup: Cache of recently accepted ticket keys
            max_size: Maximum number of pending tickets
        """
        self.handler = handler
        self.dedup = dedup if dedup is not None else TTLCache(ttl_seconds=24 * 60 * 60)
        self.queue: asyncio.Queue[ReviewTicket] = asyncio.Queue(maxsize=max_size)
        self.worker_task: asyncio.Task | None = None
        self.stats = {
            "accepted": 0,
            "duplicates": 0,
            "processed": 0,
            "failed": 0,
        }

    @property
    def is_running(self) -> bool:
        return self.worker_task is not None and not self.worker_task.done()

    @property
    def pending(self) -> int:
        return self.queue.qsize()

    def submit(self, ticket: ReviewTicket) -> bool:
        """
        Enqueue a ticket unless it is a recent duplicate.

        Returns:
            True if the ticket was queued

        Raises:
            asyncio.QueueFull: Too many pending tickets
        """
        if not self.dedup.add_if_absent(ticket.dedup_key):
            self.stats["duplicates"] += 1
            logger.info("Duplicate ticket ignored", key=ticket.dedup_key)
            return False

        try:
            self.queue.put_nowait(ticket)
        except asyncio.QueueFull:
            self.dedup.discard(ticket.dedup_key)
            raise

        self.stats["accepted"] += 1
        logger.info(
            "Ticket queued",
            action=ticket.action.value,
            repository=ticket.repository,
            pull_request=ticket.pull_request_id,
            pending=self.queue.qsize(),
        )
        return True

    async def start(self) -> None:
        if self.is_running:
            return
        self.worker_task = asyncio.create_task(self._worker())

    async def stop(self) -> None:
        """Cancel the worker; pending tickets are discarded."""
        if self.worker_task is None:
            return
        self.worker_task.cancel()
        try:
            await self.worker_task
        except asyncio.CancelledError:
            pass
        self.worker_task = None

    async def join(self) -> None:
        """Wait until every queued ticket has been handled."""
        await self.queue.join()

    async def _worker(self) -> None:
        while True:
            ticket = await self.queue.get()
            try:
                await self.handler(ticket)
                self.stats["processed"] += 1
            except Exception as e:
                # Allow the same event to be retried by a later delivery
                self.dedup.discard(ticket.dedup_key)
                self.stats["failed"] += 1
                logger.error(
                    "Ticket handling failed",
                    action=ticket.action.value,
                    repository=ticket.repository,
                    pull_request=ticket.pull_request_id,
                    error=str(e),
                )
            finally:
                self.queue.task_done()

    def get_stats(self) -> dict[str, Any]:
        return {**self.stats, "pending": self.pending, "running": self.is_running}
