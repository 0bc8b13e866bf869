"""
QueueClientPort — the queue primitive tqueue is built on.

Any object satisfying this structural Protocol can act as the backend.
No base class or registration is required.

The primitive is an append-only, at-least-once cloud queue with per-message
visibility timeouts and TTLs (Azure Queue Storage semantics). It offers no
priorities and only approximate introspection; tqueue layers those on top.

Lease contract
--------------
get_messages() hides each returned message for ``visibility_timeout``
seconds and hands out a pop receipt. The receipt is required to delete the
message or to change its visibility. Once the lease expires the message is
redelivered with a new receipt, and the old one stops working.

Not-found contract
------------------
Operations on a missing queue raise QueueNotFoundError. create_queue on an
existing queue with different metadata raises QueueAlreadyExistsError.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol, runtime_checkable

from tqueue.domain.models import QueuePage, QueueProperties, ReceivedMessage


@runtime_checkable
class QueueClientPort(Protocol):
    """
    Minimal interface required by tqueue core.

    Implementing adapters (built-in):
      - InMemoryQueueClient — in-process fake, for tests and local runs
      - AzureQueueClient    — Azure Queue Storage (azure-storage-queue aio)
    """

    async def create_queue(
        self,
        name: str,
        metadata: Mapping[str, str] | None = None,
    ) -> None:
        """
        Create the queue, optionally with metadata.

        Raises
        ------
        QueueAlreadyExistsError  if the queue exists with different metadata
        """
        ...

    async def delete_queue(self, name: str) -> None: ...

    async def put_message(
        self,
        name: str,
        text: str,
        *,
        visibility_timeout: int,
        ttl: int,
    ) -> None:
        """Append a message, hidden for visibility_timeout seconds, kept for ttl."""
        ...

    async def get_messages(
        self,
        name: str,
        *,
        visibility_timeout: int,
        max_count: int,
    ) -> list[ReceivedMessage]:
        """Lease up to max_count visible messages for visibility_timeout seconds."""
        ...

    async def delete_message(
        self,
        name: str,
        message_id: str,
        pop_receipt: str,
    ) -> None:
        """
        Remove a leased message.

        Raises
        ------
        PopReceiptMismatchError  if the receipt is no longer current
        """
        ...

    async def update_message(
        self,
        name: str,
        text: str,
        message_id: str,
        pop_receipt: str,
        *,
        visibility_timeout: int,
    ) -> None:
        """Replace the text and reset the visibility of a leased message."""
        ...

    async def get_metadata(self, name: str) -> QueueProperties: ...

    async def set_metadata(self, name: str, metadata: Mapping[str, str]) -> None: ...

    async def list_queues(
        self,
        *,
        prefix: str,
        marker: str | None = None,
        include_metadata: bool = True,
    ) -> QueuePage:
        """
        Return one page of queues whose name starts with prefix.

        Pass the returned next_marker back as marker to fetch the next page;
        next_marker is None on the last page.
        """
        ...
