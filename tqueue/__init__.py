"""
tqueue — pending-task and expiration queues over a cloud queue primitive.

The task-distribution layer of a CI platform: schedulers publish pending
runs, workers poll them by priority, and claim/deadline/resolution events
come back through timer queues. The underlying primitive (Azure Queue
Storage) is at-least-once, has no priorities and only approximate counts;
tqueue adds:

  - 7 priority shards per (provisionerId, workerType), created lazily
  - lease-based polling with remove()/release()
  - claim, deadline and resolved queues used as delayed-event channels
  - garbage collection of pending queues unused for 10 days

Queue messages are hints. Exactly-once delivery is not provided; callers
must re-check task state and be idempotent.

Quick start
-----------
    import asyncio
    from datetime import UTC, datetime, timedelta
    from tqueue import InMemoryQueueClient, QueueService, QueueServiceConfig, TaskRef

    async def main():
        config = QueueServiceConfig(
            prefix="tc",
            claim_queue="claims",
            resolved_queue="resolved",
            deadline_queue="deadlines",
            fake=True,
        )
        async with QueueService(InMemoryQueueClient(), config) as queues:
            task = TaskRef(
                task_id="fN1SbArXTPSVFNUvaOlinQ",
                provisioner_id="aws",
                worker_type="build-linux",
                deadline=datetime.now(UTC) + timedelta(hours=1),
                priority="high",
            )
            await queues.put_pending_message(task, run_id=0)

            for poll in await queues.pending_queues("aws", "build-linux"):
                for msg in await poll(1):
                    print(msg.payload.task_id)
                    await msg.remove()

    asyncio.run(main())

Architecture
------------
Follows the Ports & Adapters pattern:
  domain/   — pure value types and the error hierarchy
  ports/    — Protocol interfaces (QueueClientPort, ErrorReporter)
  core/     — naming, codec, PendingQueueManager, ExpirationQueues, GC
  adapters/ — concrete queue clients and error reporters
"""

from __future__ import annotations

from tqueue.adapters.queue.memory import InMemoryQueueClient
from tqueue.adapters.reporting.log import LoggingErrorReporter
from tqueue.config import QueueServiceConfig, create_client
from tqueue.core.expiration import ExpirationQueues
from tqueue.core.gc import QueueSweeper, delete_unused_worker_queues
from tqueue.core.lease import LeasedMessage
from tqueue.core.pending import PendingQueueManager
from tqueue.core.service import QueueService
from tqueue.domain.errors import (
    InvalidIdentifierError,
    MessageDecodeError,
    MessageNotFoundError,
    PopReceiptMismatchError,
    QueueAlreadyExistsError,
    QueueClientError,
    QueueNotFoundError,
    TaskValidationError,
    TQueueError,
)
from tqueue.domain.models import (
    PRIORITIES,
    ClaimMessage,
    DeadlineMessage,
    PendingMessage,
    Priority,
    Resolution,
    ResolvedMessage,
    TaskRef,
)
from tqueue.ports.queue_client import QueueClientPort
from tqueue.ports.reporting import ErrorReporter

__all__ = [
    # Domain models
    "PRIORITIES",
    "Priority",
    "Resolution",
    "TaskRef",
    "PendingMessage",
    "ClaimMessage",
    "DeadlineMessage",
    "ResolvedMessage",
    "LeasedMessage",
    # Errors
    "TQueueError",
    "InvalidIdentifierError",
    "TaskValidationError",
    "QueueNotFoundError",
    "QueueAlreadyExistsError",
    "MessageNotFoundError",
    "PopReceiptMismatchError",
    "MessageDecodeError",
    "QueueClientError",
    # Ports (for typing custom adapters)
    "QueueClientPort",
    "ErrorReporter",
    # Configuration
    "QueueServiceConfig",
    "create_client",
    # High-level API
    "QueueService",
    "PendingQueueManager",
    "ExpirationQueues",
    "QueueSweeper",
    "delete_unused_worker_queues",
    # Built-in adapters
    "InMemoryQueueClient",
    "LoggingErrorReporter",
]
