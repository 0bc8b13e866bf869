"""
Garbage collection of unused pending queues.

A pending queue is deleted when both hold:

  - its metadata is incomplete, or last_used is more than 10 days old
  - its approximate message count is 0

Active families refresh last_used at least every ~48 hours and queues with
messages are never touched, so the sweep is safe to run next to normal
traffic. A message published between the emptiness check and the delete is
lost; with a 10-day staleness bar that window is accepted.

Failures on one queue are reported and the sweep moves on.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from types import TracebackType

from tqueue.adapters.reporting.log import LoggingErrorReporter
from tqueue.core.timing import utcnow
from tqueue.domain.errors import QueueNotFoundError
from tqueue.domain.models import QueueInfo, QueueMetadata
from tqueue.ports.queue_client import QueueClientPort
from tqueue.ports.reporting import ErrorReporter

logger = logging.getLogger(__name__)

MAX_UNUSED = timedelta(days=10)


async def delete_unused_worker_queues(
    client: QueueClientPort,
    prefix: str,
    now: datetime,
    *,
    reporter: ErrorReporter | None = None,
    max_unused: timedelta = MAX_UNUSED,
) -> int:
    """
    Delete every empty pending queue under prefix unused since now - max_unused.

    Returns the number of queues deleted.
    """
    reporter = reporter or LoggingErrorReporter()
    cutoff = now - max_unused
    deleted = 0
    marker: str | None = None

    while True:
        page = await client.list_queues(
            prefix=f"{prefix}-", marker=marker, include_metadata=True
        )
        candidates = [
            queue
            for queue in page.queues
            if QueueMetadata.from_mapping(queue.metadata).is_unused_since(cutoff)
        ]
        results = await asyncio.gather(
            *(_delete_if_empty(client, queue, cutoff, reporter) for queue in candidates)
        )
        deleted += sum(results)

        marker = page.next_marker
        if marker is None:
            break

    logger.info("deleted %d unused queue(s) under %s-", deleted, prefix)
    return deleted


async def _delete_if_empty(
    client: QueueClientPort,
    queue: QueueInfo,
    cutoff: datetime,
    reporter: ErrorReporter,
) -> bool:
    try:
        props = await client.get_metadata(queue.name)
        # Listings can lag; skip queues touched since the page was read.
        if not QueueMetadata.from_mapping(props.metadata).is_unused_since(cutoff):
            return False
        if props.approximate_message_count > 0:
            return False
        logger.info("deleting queue %s with metadata %s", queue.name, props.metadata)
        await client.delete_queue(queue.name)
        return True
    except QueueNotFoundError:
        return False
    except Exception as exc:
        reporter.report_error(
            exc, {"note": "failed to delete unused queue", "queue": queue.name}
        )
        return False


@dataclasses.dataclass
class QueueSweeper:
    """
    Runs delete_unused_worker_queues periodically in the background.

    Usage
    -----
        async with QueueSweeper(client, prefix="tc"):
            await serve_forever()

    The first sweep starts immediately. A failed sweep is reported and the
    next one runs after the usual interval.
    """

    client: QueueClientPort
    prefix: str
    interval: timedelta = timedelta(hours=24)
    reporter: ErrorReporter = dataclasses.field(default_factory=LoggingErrorReporter)
    clock: Callable[[], datetime] = utcnow

    _task: asyncio.Task[None] | None = dataclasses.field(
        default=None, init=False, repr=False
    )

    async def __aenter__(self) -> QueueSweeper:
        self._task = asyncio.create_task(
            self._sweep_loop(), name=f"tqueue-sweeper-{self.prefix}"
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def sweep(self) -> int:
        return await delete_unused_worker_queues(
            self.client, self.prefix, self.clock(), reporter=self.reporter
        )

    async def _sweep_loop(self) -> None:
        while True:
            try:
                await self.sweep()
            except Exception as exc:
                self.reporter.report_error(exc, {"note": "queue sweep failed"})
            await asyncio.sleep(self.interval.total_seconds())
