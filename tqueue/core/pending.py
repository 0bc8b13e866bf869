"""
PendingQueueManager — priority-sharded pending-task queues.

Every (provisionerId, workerType) pair owns a family of 7 queues, one per
priority (see naming.py). Queues are created lazily the first time a pair is
used and the fact that they exist is cached in-process.

Metadata upkeep
---------------
Each queue carries {provisioner_id, worker_type, last_used}. Ensuring a
queue rewrites the metadata when it is missing, mismatched, or older than
23 hours. The existence cache is dropped every 25 hours, so an active family
touches its metadata at least once per ~48 hours, far inside the 10-day
window after which the garbage collector may delete it.

Pending counts
--------------
count_pending_messages() is stale-while-revalidate: it answers from cache
at once and, if the entry is older than 20 seconds, starts one background
refresh that sums the approximate counts of the 7 shards. The number feeds
scaling heuristics only, so approximate and racy is acceptable.
"""

from __future__ import annotations

import asyncio
import dataclasses
import functools
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from types import TracebackType
from typing import Any

from tqueue.adapters.reporting.log import LoggingErrorReporter
from tqueue.core import gc
from tqueue.core.lease import LeasedMessage, get_messages, put_message
from tqueue.core.memo import AsyncMemo
from tqueue.core.naming import parse_priority, queue_family, validate_identifier, validate_prefix
from tqueue.core.timing import seconds_to, utcnow
from tqueue.domain.errors import (
    QueueAlreadyExistsError,
    QueueNotFoundError,
    TaskValidationError,
    TQueueError,
)
from tqueue.domain.models import PRIORITIES, PendingMessage, Priority, QueueMetadata
from tqueue.ports.queue_client import QueueClientPort
from tqueue.ports.reporting import ErrorReporter

logger = logging.getLogger(__name__)

MAX_POLL_COUNT = 32
PENDING_LEASE = timedelta(minutes=5)
METADATA_MAX_AGE = timedelta(hours=23)
CACHE_RESET_INTERVAL = timedelta(hours=25)
COUNT_CACHE_TTL = timedelta(seconds=20)

PollFn = Callable[[int], Awaitable[list[LeasedMessage[PendingMessage]]]]


@dataclasses.dataclass
class _CountEntry:
    count: int = 0
    last_updated: datetime | None = None
    refresh: asyncio.Task[None] | None = None


def validate_run_id(run_id: object) -> int:
    if isinstance(run_id, bool) or not isinstance(run_id, int) or run_id < 0:
        raise TaskValidationError(f"Expected run_id as non-negative int, got {run_id!r}")
    return run_id


def _validate_task(task: Any) -> tuple[str, datetime, Priority]:
    """Check the task attributes this module reads. Identifiers are checked later."""
    task_id = getattr(task, "task_id", None)
    if not isinstance(task_id, str) or not task_id:
        raise TaskValidationError("Expected task.task_id")
    for attr in ("provisioner_id", "worker_type"):
        if not isinstance(getattr(task, attr, None), str):
            raise TaskValidationError(f"Expected task.{attr}", task_id=task_id)
    deadline = getattr(task, "deadline", None)
    if not isinstance(deadline, datetime) or deadline.tzinfo is None:
        raise TaskValidationError("Expected task.deadline as aware datetime", task_id=task_id)
    return task_id, deadline, parse_priority(getattr(task, "priority", None))


@dataclasses.dataclass
class PendingQueueManager:
    """
    Owns the pending queue families, their existence cache and count cache.

    Parameters
    ----------
    client               : queue primitive
    prefix               : prefix of every pending queue (≤ 6 chars)
    reporter             : sink for unexpected ensure/create errors
    clock                : returns the current UTC time
    cache_reset_interval : how often the existence cache is dropped
    count_cache_ttl      : freshness window of pending counts

    Use as an async context manager (or call start()/stop()) to run the
    periodic cache reset.
    """

    client: QueueClientPort
    prefix: str
    reporter: ErrorReporter = dataclasses.field(default_factory=LoggingErrorReporter)
    clock: Callable[[], datetime] = utcnow
    cache_reset_interval: timedelta = CACHE_RESET_INTERVAL
    count_cache_ttl: timedelta = COUNT_CACHE_TTL

    _families: AsyncMemo[tuple[str, str], dict[Priority, str]] = dataclasses.field(
        default_factory=AsyncMemo, init=False, repr=False
    )
    _counts: dict[tuple[str, str], _CountEntry] = dataclasses.field(
        default_factory=dict, init=False, repr=False
    )
    _reset_task: asyncio.Task[None] | None = dataclasses.field(
        default=None, init=False, repr=False
    )

    def __post_init__(self) -> None:
        validate_prefix(self.prefix)

    # ------------------------------------------------------------------ #
    # Lifecycle                                                            #
    # ------------------------------------------------------------------ #

    async def start(self) -> None:
        """Start the periodic existence-cache reset."""
        if self._reset_task is not None:
            raise RuntimeError("PendingQueueManager is already running")
        self._reset_task = asyncio.create_task(
            self._reset_loop(), name="tqueue-pending-cache-reset"
        )

    async def stop(self) -> None:
        """Cancel the cache reset and any in-flight count refreshes."""
        tasks = [e.refresh for e in self._counts.values() if e.refresh is not None]
        if self._reset_task is not None:
            tasks.append(self._reset_task)
            self._reset_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def __aenter__(self) -> PendingQueueManager:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()

    async def _reset_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cache_reset_interval.total_seconds())
            logger.debug("resetting pending queue cache (%d families)", len(self._families))
            self._families.clear()

    # ------------------------------------------------------------------ #
    # Queue families                                                       #
    # ------------------------------------------------------------------ #

    async def ensure_pending_queue_family(
        self,
        provisioner_id: str,
        worker_type: str,
    ) -> dict[Priority, str]:
        """
        Make sure all 7 shards exist with current metadata.

        Returns a mapping from priority to queue name. Concurrent calls for
        the same pair share a single creation; failures are not cached.

        Raises
        ------
        InvalidIdentifierError  before any I/O if an identifier is malformed
        """
        names = queue_family(self.prefix, provisioner_id, worker_type)
        ensured = await self._families.get(
            (provisioner_id, worker_type),
            lambda: self._create_family(names, provisioner_id, worker_type),
        )
        return dict(ensured)

    async def _create_family(
        self,
        names: dict[Priority, str],
        provisioner_id: str,
        worker_type: str,
    ) -> dict[Priority, str]:
        try:
            await asyncio.gather(
                *(
                    self.ensure_queue_and_metadata(name, provisioner_id, worker_type)
                    for name in names.values()
                )
            )
        except Exception as exc:
            self.reporter.report_error(
                exc,
                {
                    "note": "failed to ensure pending queue family",
                    "provisioner_id": provisioner_id,
                    "worker_type": worker_type,
                },
            )
            raise
        logger.debug("pending queues ready for %s/%s", provisioner_id, worker_type)
        return names

    async def ensure_queue_and_metadata(
        self,
        queue: str,
        provisioner_id: str,
        worker_type: str,
    ) -> None:
        """
        Ensure queue exists and its metadata is current.

        A no-op when the metadata names this pair and last_used is younger
        than 23 hours; otherwise the metadata is rewritten, and a missing
        queue is created with it.
        """
        now = self.clock()
        metadata = QueueMetadata(
            provisioner_id=provisioner_id,
            worker_type=worker_type,
            last_used=now,
        ).to_mapping()
        try:
            props = await self.client.get_metadata(queue)
            current = QueueMetadata.from_mapping(props.metadata)
            if current.is_current(provisioner_id, worker_type, now, METADATA_MAX_AGE):
                return
            await self.client.set_metadata(queue, metadata)
            return
        except QueueNotFoundError:
            pass

        try:
            await self.client.create_queue(queue, metadata)
        except QueueAlreadyExistsError:
            # Raced with another creator, which set the metadata.
            logger.debug("queue %s was created concurrently", queue)
        except Exception as exc:
            fields = {
                "queue": queue,
                "provisioner_id": provisioner_id,
                "worker_type": worker_type,
            }
            if isinstance(exc, TQueueError):
                exc.with_fields(**fields)
            self.reporter.report_error(exc, {"note": "failed to create queue", **fields})
            raise

    # ------------------------------------------------------------------ #
    # Publish / poll                                                       #
    # ------------------------------------------------------------------ #

    async def put_pending_message(self, task: Any, run_id: int) -> None:
        """
        Announce that a run of task is pending.

        task is any object with task_id, provisioner_id, worker_type,
        deadline and priority (a TaskRef or a task entity). The message lives
        until the task deadline. Runs whose deadline already passed are
        skipped without error.
        """
        task_id, deadline, priority = _validate_task(task)
        validate_run_id(run_id)
        names = await self.ensure_pending_queue_family(task.provisioner_id, task.worker_type)

        now = self.clock()
        if deadline <= now:
            logger.info(
                "run %s of task %s became pending after its deadline, "
                "skipping pending message",
                run_id,
                task_id,
            )
            return

        await put_message(
            self.client,
            names[priority],
            PendingMessage(task_id=task_id, run_id=run_id, hint_id=str(uuid.uuid4())),
            visibility=0,
            ttl=seconds_to(deadline, now),
        )

    async def pending_queues(
        self,
        provisioner_id: str,
        worker_type: str,
    ) -> list[PollFn]:
        """
        Return one poll(count) function per priority, highest first.

        Callers should drain the list in order to honour priorities.
        """
        names = await self.ensure_pending_queue_family(provisioner_id, worker_type)
        return [functools.partial(self._poll_pending, names[p]) for p in PRIORITIES]

    async def _poll_pending(
        self,
        queue: str,
        count: int,
    ) -> list[LeasedMessage[PendingMessage]]:
        count = min(count, MAX_POLL_COUNT)
        if count < 1:
            return []
        return await get_messages(
            self.client,
            queue,
            PendingMessage,
            visibility=int(PENDING_LEASE.total_seconds()),
            count=count,
            reporter=self.reporter,
        )

    # ------------------------------------------------------------------ #
    # Counting                                                             #
    # ------------------------------------------------------------------ #

    async def count_pending_messages(self, provisioner_id: str, worker_type: str) -> int:
        """
        Last known approximate number of pending messages for the pair.

        Never waits for I/O; a stale entry starts a background refresh.
        Returns 0 until the first refresh completes.
        """
        validate_identifier(provisioner_id, "provisioner_id")
        validate_identifier(worker_type, "worker_type")
        key = (provisioner_id, worker_type)
        entry = self._counts.setdefault(key, _CountEntry())

        now = self.clock()
        stale = entry.last_updated is None or now - entry.last_updated > self.count_cache_ttl
        if stale and (entry.refresh is None or entry.refresh.done()):
            entry.last_updated = now
            entry.refresh = asyncio.create_task(
                self._refresh_count(key, entry),
                name=f"tqueue-count-{provisioner_id}/{worker_type}",
            )
        return entry.count

    async def _refresh_count(self, key: tuple[str, str], entry: _CountEntry) -> None:
        try:
            names = await self.ensure_pending_queue_family(*key)
            results = await asyncio.gather(
                *(self.client.get_metadata(name) for name in names.values())
            )
        except Exception as exc:
            self.reporter.report_error(
                exc,
                {
                    "note": "failed to refresh pending count",
                    "provisioner_id": key[0],
                    "worker_type": key[1],
                },
            )
            return
        entry.count = sum(r.approximate_message_count for r in results)

    # ------------------------------------------------------------------ #
    # Garbage collection                                                   #
    # ------------------------------------------------------------------ #

    async def delete_unused_worker_queues(self, now: datetime | None = None) -> int:
        """Delete empty pending queues unused for 10 days. Returns the count."""
        return await gc.delete_unused_worker_queues(
            self.client,
            self.prefix,
            now if now is not None else self.clock(),
            reporter=self.reporter,
        )
