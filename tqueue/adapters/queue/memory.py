"""
InMemoryQueueClient — in-process fake of the queue primitive.

Simulates the parts of Azure Queue Storage tqueue relies on:

  - per-message visibility delay and TTL, measured against an injectable clock
  - leases with pop receipts; a stale receipt raises PopReceiptMismatchError
  - queue metadata and an approximate message count
  - prefix-filtered, paginated list_queues with an opaque marker
  - create_queue is idempotent for identical metadata and raises
    QueueAlreadyExistsError otherwise

Zero external dependencies. Safe for multiple concurrent coroutines in a
single event loop. NOT safe across processes or threads.
"""

from __future__ import annotations

import asyncio
import dataclasses
import uuid
from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta

from tqueue.domain.errors import (
    MessageNotFoundError,
    PopReceiptMismatchError,
    QueueAlreadyExistsError,
    QueueNotFoundError,
)
from tqueue.domain.models import QueueInfo, QueuePage, QueueProperties, ReceivedMessage


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclasses.dataclass
class _StoredMessage:
    message_id: str
    text: str
    visible_at: datetime
    expires_at: datetime
    pop_receipt: str | None = None


@dataclasses.dataclass
class _StoredQueue:
    metadata: dict[str, str]
    messages: list[_StoredMessage] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class InMemoryQueueClient:
    """
    Parameters
    ----------
    clock     : returns the current UTC time (override in tests)
    page_size : number of queues returned per list_queues page
    """

    clock: Callable[[], datetime] = _utcnow
    page_size: int = 100

    def __post_init__(self) -> None:
        self._queues: dict[str, _StoredQueue] = {}
        self._lock: asyncio.Lock = asyncio.Lock()

    def _queue(self, name: str) -> _StoredQueue:
        try:
            return self._queues[name]
        except KeyError:
            raise QueueNotFoundError(name) from None

    def _purge_expired(self, queue: _StoredQueue, now: datetime) -> None:
        queue.messages = [m for m in queue.messages if m.expires_at > now]

    def _leased(
        self,
        name: str,
        message_id: str,
        pop_receipt: str,
    ) -> _StoredMessage:
        queue = self._queue(name)
        self._purge_expired(queue, self.clock())
        for msg in queue.messages:
            if msg.message_id == message_id:
                if msg.pop_receipt != pop_receipt:
                    raise PopReceiptMismatchError(name, message_id)
                return msg
        raise MessageNotFoundError(name, message_id)

    # ------------------------------------------------------------------ #
    # Queues                                                               #
    # ------------------------------------------------------------------ #

    async def create_queue(
        self,
        name: str,
        metadata: Mapping[str, str] | None = None,
    ) -> None:
        async with self._lock:
            wanted = dict(metadata or {})
            existing = self._queues.get(name)
            if existing is not None:
                if existing.metadata != wanted:
                    raise QueueAlreadyExistsError(name)
                return
            self._queues[name] = _StoredQueue(metadata=wanted)

    async def delete_queue(self, name: str) -> None:
        async with self._lock:
            self._queue(name)
            del self._queues[name]

    async def get_metadata(self, name: str) -> QueueProperties:
        async with self._lock:
            queue = self._queue(name)
            self._purge_expired(queue, self.clock())
            return QueueProperties(
                metadata=dict(queue.metadata),
                approximate_message_count=len(queue.messages),
            )

    async def set_metadata(self, name: str, metadata: Mapping[str, str]) -> None:
        """Replace the queue metadata (Azure semantics, not a merge)."""
        async with self._lock:
            self._queue(name).metadata = dict(metadata)

    async def list_queues(
        self,
        *,
        prefix: str,
        marker: str | None = None,
        include_metadata: bool = True,
    ) -> QueuePage:
        async with self._lock:
            names = sorted(n for n in self._queues if n.startswith(prefix))
            if marker is not None:
                names = [n for n in names if n >= marker]
            page, rest = names[: self.page_size], names[self.page_size :]
            return QueuePage(
                queues=tuple(
                    QueueInfo(
                        name=n,
                        metadata=dict(self._queues[n].metadata) if include_metadata else {},
                    )
                    for n in page
                ),
                next_marker=rest[0] if rest else None,
            )

    # ------------------------------------------------------------------ #
    # Messages                                                             #
    # ------------------------------------------------------------------ #

    async def put_message(
        self,
        name: str,
        text: str,
        *,
        visibility_timeout: int,
        ttl: int,
    ) -> None:
        async with self._lock:
            queue = self._queue(name)
            now = self.clock()
            queue.messages.append(
                _StoredMessage(
                    message_id=str(uuid.uuid4()),
                    text=text,
                    visible_at=now + timedelta(seconds=visibility_timeout),
                    expires_at=now + timedelta(seconds=ttl),
                )
            )

    async def get_messages(
        self,
        name: str,
        *,
        visibility_timeout: int,
        max_count: int,
    ) -> list[ReceivedMessage]:
        async with self._lock:
            queue = self._queue(name)
            now = self.clock()
            self._purge_expired(queue, now)
            result: list[ReceivedMessage] = []
            for msg in queue.messages:
                if len(result) >= max_count:
                    break
                if msg.visible_at > now:
                    continue
                msg.visible_at = now + timedelta(seconds=visibility_timeout)
                msg.pop_receipt = str(uuid.uuid4())
                result.append(
                    ReceivedMessage(
                        message_id=msg.message_id,
                        pop_receipt=msg.pop_receipt,
                        text=msg.text,
                    )
                )
            return result

    async def delete_message(
        self,
        name: str,
        message_id: str,
        pop_receipt: str,
    ) -> None:
        async with self._lock:
            msg = self._leased(name, message_id, pop_receipt)
            self._queues[name].messages.remove(msg)

    async def update_message(
        self,
        name: str,
        text: str,
        message_id: str,
        pop_receipt: str,
        *,
        visibility_timeout: int,
    ) -> None:
        async with self._lock:
            msg = self._leased(name, message_id, pop_receipt)
            msg.text = text
            msg.visible_at = self.clock() + timedelta(seconds=visibility_timeout)
            # Azure hands out a fresh receipt on update; the old one is dead.
            msg.pop_receipt = str(uuid.uuid4())
