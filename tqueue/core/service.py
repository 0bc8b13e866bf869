"""
QueueService — one object for everything the scheduler and workers need.

QueueService is an async context manager that starts the pending-queue
cache reset on __aenter__ and stops it (and closes a client it created
itself) on __aexit__.

Usage
-----
    from tqueue import QueueService, QueueServiceConfig, TaskRef

    config = QueueServiceConfig.from_env()
    async with QueueService.from_config(config) as queues:
        await queues.put_pending_message(task, run_id=0)

        for poll in await queues.pending_queues("aws", "build-linux"):
            for msg in await poll(4):
                if await claim(msg.payload.task_id, msg.payload.run_id):
                    await msg.remove()
                else:
                    await msg.release()
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable
from datetime import datetime, timedelta
from types import TracebackType
from typing import Any

from tqueue.adapters.reporting.log import LoggingErrorReporter
from tqueue.config import QueueServiceConfig, create_client
from tqueue.core.expiration import ExpirationQueues
from tqueue.core.gc import QueueSweeper
from tqueue.core.lease import LeasedMessage
from tqueue.core.pending import PendingQueueManager, PollFn
from tqueue.core.timing import utcnow
from tqueue.domain.models import (
    ClaimMessage,
    DeadlineMessage,
    Priority,
    Resolution,
    ResolvedMessage,
)
from tqueue.ports.queue_client import QueueClientPort
from tqueue.ports.reporting import ErrorReporter


@dataclasses.dataclass
class QueueService:
    """
    Facade over PendingQueueManager and ExpirationQueues sharing one client.

    Parameters
    ----------
    client       : queue primitive
    config       : prefix, expiration queue names and deadline delay
    reporter     : sink for unexpected errors (default: logging)
    clock        : returns the current UTC time
    owns_client  : close the client on exit (set by from_config)
    """

    client: QueueClientPort
    config: QueueServiceConfig
    reporter: ErrorReporter = dataclasses.field(default_factory=LoggingErrorReporter)
    clock: Callable[[], datetime] = utcnow
    owns_client: bool = False

    _pending: PendingQueueManager = dataclasses.field(init=False, repr=False)
    _expiration: ExpirationQueues = dataclasses.field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._pending = PendingQueueManager(
            client=self.client,
            prefix=self.config.prefix,
            reporter=self.reporter,
            clock=self.clock,
        )
        self._expiration = ExpirationQueues(
            client=self.client,
            claim_queue=self.config.claim_queue,
            resolved_queue=self.config.resolved_queue,
            deadline_queue=self.config.deadline_queue,
            deadline_delay=self.config.deadline_delay,
            reporter=self.reporter,
            clock=self.clock,
        )

    @classmethod
    def from_config(
        cls,
        config: QueueServiceConfig,
        reporter: ErrorReporter | None = None,
    ) -> QueueService:
        """Build the service and the client the config selects."""
        return cls(
            client=create_client(config),
            config=config,
            reporter=reporter or LoggingErrorReporter(),
            owns_client=True,
        )

    async def __aenter__(self) -> QueueService:
        await self._pending.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self._pending.stop()
        if self.owns_client:
            close = getattr(self.client, "close", None)
            if close is not None:
                await close()

    def sweeper(self, interval: timedelta = timedelta(hours=24)) -> QueueSweeper:
        """A background garbage collector for this service's pending queues."""
        return QueueSweeper(
            client=self.client,
            prefix=self.config.prefix,
            interval=interval,
            reporter=self.reporter,
            clock=self.clock,
        )

    # ------------------------------------------------------------------ #
    # Pending queues (delegated to PendingQueueManager)                   #
    # ------------------------------------------------------------------ #

    async def ensure_pending_queue_family(
        self,
        provisioner_id: str,
        worker_type: str,
    ) -> dict[Priority, str]:
        return await self._pending.ensure_pending_queue_family(provisioner_id, worker_type)

    async def put_pending_message(self, task: Any, run_id: int) -> None:
        await self._pending.put_pending_message(task, run_id)

    async def pending_queues(self, provisioner_id: str, worker_type: str) -> list[PollFn]:
        return await self._pending.pending_queues(provisioner_id, worker_type)

    async def count_pending_messages(self, provisioner_id: str, worker_type: str) -> int:
        return await self._pending.count_pending_messages(provisioner_id, worker_type)

    async def delete_unused_worker_queues(self, now: datetime | None = None) -> int:
        return await self._pending.delete_unused_worker_queues(now)

    # ------------------------------------------------------------------ #
    # Expiration queues (delegated to ExpirationQueues)                   #
    # ------------------------------------------------------------------ #

    async def put_claim_message(
        self,
        task_id: str,
        run_id: int,
        taken_until: datetime,
    ) -> None:
        await self._expiration.put_claim_message(task_id, run_id, taken_until)

    async def put_resolved_message(
        self,
        task_id: str,
        task_group_id: str,
        scheduler_id: str,
        resolution: Resolution | str,
    ) -> None:
        await self._expiration.put_resolved_message(
            task_id, task_group_id, scheduler_id, resolution
        )

    async def put_deadline_message(
        self,
        task_id: str,
        task_group_id: str,
        scheduler_id: str,
        deadline: datetime,
    ) -> None:
        await self._expiration.put_deadline_message(
            task_id, task_group_id, scheduler_id, deadline
        )

    async def poll_claim_queue(self) -> list[LeasedMessage[ClaimMessage]]:
        return await self._expiration.poll_claim_queue()

    async def poll_resolved_queue(self) -> list[LeasedMessage[ResolvedMessage]]:
        return await self._expiration.poll_resolved_queue()

    async def poll_deadline_queue(self) -> list[LeasedMessage[DeadlineMessage]]:
        return await self._expiration.poll_deadline_queue()
