"""
ExpirationQueues — the claim, deadline and resolved queues.

These are three fixed queues shared by every provisioner and worker type.
They are used as timers: a message is published with a visibility delay and
shows up for the consumer only once the event it stands for may have
happened.

  claim     — visible at takenUntil; the claim on a run may have expired
  deadline  — visible at deadline + deadline_delay, so claim expiration is
              processed first
  resolved  — visible at once; a task was resolved

Messages are hints. Consumers must re-check the task state and handle each
message idempotently, then remove() it within the 10-minute lease or it is
delivered again.

Each queue is created once per process; the ready fact is cached until a
creation fails.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from tqueue.adapters.reporting.log import LoggingErrorReporter
from tqueue.core.lease import LeasedMessage, get_messages, put_message
from tqueue.core.memo import AsyncMemo
from tqueue.core.pending import MAX_POLL_COUNT, validate_run_id
from tqueue.core.timing import seconds_to, utcnow
from tqueue.domain.errors import QueueAlreadyExistsError, TaskValidationError
from tqueue.domain.models import ClaimMessage, DeadlineMessage, Resolution, ResolvedMessage
from tqueue.ports.queue_client import QueueClientPort
from tqueue.ports.reporting import ErrorReporter

logger = logging.getLogger(__name__)

MESSAGE_TTL = timedelta(days=7)
EXPIRATION_LEASE = timedelta(minutes=10)
DEFAULT_DEADLINE_DELAY = timedelta(minutes=10)

_TTL_SECONDS = int(MESSAGE_TTL.total_seconds())
_LEASE_SECONDS = int(EXPIRATION_LEASE.total_seconds())


def _require(value: object, name: str) -> str:
    if not isinstance(value, str) or not value:
        raise TaskValidationError(f"{name} must be given")
    return value


def _require_time(value: object, name: str) -> datetime:
    if not isinstance(value, datetime) or value.tzinfo is None:
        raise TaskValidationError(f"{name} must be an aware datetime")
    return value


@dataclasses.dataclass
class ExpirationQueues:
    """
    Parameters
    ----------
    client         : queue primitive
    claim_queue    : name of the claim-expiration queue
    resolved_queue : name of the resolved-task queue
    deadline_queue : name of the deadline queue
    deadline_delay : extra delay after the deadline (default 10 minutes)
    reporter       : sink for queue creation failures
    clock          : returns the current UTC time
    """

    client: QueueClientPort
    claim_queue: str
    resolved_queue: str
    deadline_queue: str
    deadline_delay: timedelta = DEFAULT_DEADLINE_DELAY
    reporter: ErrorReporter = dataclasses.field(default_factory=LoggingErrorReporter)
    clock: Callable[[], datetime] = utcnow

    _ready: AsyncMemo[str, None] = dataclasses.field(
        default_factory=AsyncMemo, init=False, repr=False
    )

    # ------------------------------------------------------------------ #
    # Queue creation                                                       #
    # ------------------------------------------------------------------ #

    async def ensure_claim_queue(self) -> None:
        await self._ensure(self.claim_queue)

    async def ensure_resolved_queue(self) -> None:
        await self._ensure(self.resolved_queue)

    async def ensure_deadline_queue(self) -> None:
        await self._ensure(self.deadline_queue)

    async def _ensure(self, queue: str) -> None:
        await self._ready.get(queue, lambda: self._create(queue))

    async def _create(self, queue: str) -> None:
        try:
            await self.client.create_queue(queue)
        except QueueAlreadyExistsError:
            pass
        except Exception as exc:
            self.reporter.report_error(
                exc, {"note": "failed to ensure expiration queue", "queue": queue}
            )
            raise

    # ------------------------------------------------------------------ #
    # Publish                                                              #
    # ------------------------------------------------------------------ #

    async def put_claim_message(
        self,
        task_id: str,
        run_id: int,
        taken_until: datetime,
    ) -> None:
        """Publish a message that surfaces once the claim may have expired."""
        message = ClaimMessage(
            task_id=_require(task_id, "task_id"),
            run_id=validate_run_id(run_id),
            taken_until=_require_time(taken_until, "taken_until"),
        )
        await self.ensure_claim_queue()
        await put_message(
            self.client,
            self.claim_queue,
            message,
            visibility=seconds_to(taken_until, self.clock()),
            ttl=_TTL_SECONDS,
        )

    async def put_resolved_message(
        self,
        task_id: str,
        task_group_id: str,
        scheduler_id: str,
        resolution: Resolution | str,
    ) -> None:
        """Announce that a task was resolved as completed, failed or exception."""
        try:
            resolution = Resolution(resolution)
        except ValueError:
            raise TaskValidationError(
                f"resolution must be completed, failed or exception, got {resolution!r}"
            ) from None
        message = ResolvedMessage(
            task_id=_require(task_id, "task_id"),
            task_group_id=_require(task_group_id, "task_group_id"),
            scheduler_id=_require(scheduler_id, "scheduler_id"),
            resolution=resolution,
        )
        await self.ensure_resolved_queue()
        await put_message(
            self.client,
            self.resolved_queue,
            message,
            visibility=0,
            ttl=_TTL_SECONDS,
        )

    async def put_deadline_message(
        self,
        task_id: str,
        task_group_id: str,
        scheduler_id: str,
        deadline: datetime,
    ) -> None:
        """Publish a message that surfaces deadline_delay after the deadline."""
        message = DeadlineMessage(
            task_id=_require(task_id, "task_id"),
            task_group_id=_require(task_group_id, "task_group_id"),
            scheduler_id=_require(scheduler_id, "scheduler_id"),
            deadline=_require_time(deadline, "deadline"),
        )
        await self.ensure_deadline_queue()
        visibility = seconds_to(deadline, self.clock()) + int(
            self.deadline_delay.total_seconds()
        )
        logger.debug("deadline message for %s visible in %s seconds", task_id, visibility)
        await put_message(
            self.client,
            self.deadline_queue,
            message,
            visibility=visibility,
            ttl=_TTL_SECONDS,
        )

    # ------------------------------------------------------------------ #
    # Poll                                                                 #
    # ------------------------------------------------------------------ #

    async def poll_claim_queue(self) -> list[LeasedMessage[ClaimMessage]]:
        """Lease up to 32 claim messages for 10 minutes."""
        await self.ensure_claim_queue()
        return await get_messages(
            self.client,
            self.claim_queue,
            ClaimMessage,
            visibility=_LEASE_SECONDS,
            count=MAX_POLL_COUNT,
            reporter=self.reporter,
        )

    async def poll_resolved_queue(self) -> list[LeasedMessage[ResolvedMessage]]:
        """Lease up to 32 resolved messages for 10 minutes."""
        await self.ensure_resolved_queue()
        return await get_messages(
            self.client,
            self.resolved_queue,
            ResolvedMessage,
            visibility=_LEASE_SECONDS,
            count=MAX_POLL_COUNT,
            reporter=self.reporter,
        )

    async def poll_deadline_queue(self) -> list[LeasedMessage[DeadlineMessage]]:
        """Lease up to 32 deadline messages for 10 minutes."""
        await self.ensure_deadline_queue()
        return await get_messages(
            self.client,
            self.deadline_queue,
            DeadlineMessage,
            visibility=_LEASE_SECONDS,
            count=MAX_POLL_COUNT,
            reporter=self.reporter,
        )
