"""
Message publish/receive helpers and the LeasedMessage handle.

A polled message is hidden from other pollers for the lease duration. The
holder must call exactly one of:

  remove()   — delete the message for good (work was claimed / handled)
  release()  — make it visible again immediately (claim attempt failed)

Doing neither is safe: the message reappears once the lease expires.
"""

from __future__ import annotations

import dataclasses
import logging
from time import perf_counter
from typing import Generic, TypeVar

from pydantic import BaseModel

from tqueue.adapters.reporting.log import LoggingErrorReporter
from tqueue.core import codec
from tqueue.domain.errors import MessageDecodeError, PopReceiptMismatchError
from tqueue.ports.queue_client import QueueClientPort
from tqueue.ports.reporting import ErrorReporter

logger = logging.getLogger(__name__)

P = TypeVar("P", bound=BaseModel)


@dataclasses.dataclass(frozen=True)
class LeasedMessage(Generic[P]):
    """
    A decoded payload plus the receipt needed to settle its lease.

    payload     — the decoded message model
    queue       — name of the queue it was received from
    message_id  — primitive message id
    pop_receipt — receipt of the current lease
    """

    payload: P
    queue: str
    message_id: str
    pop_receipt: str
    text: str = dataclasses.field(repr=False)
    client: QueueClientPort = dataclasses.field(repr=False, compare=False)

    async def remove(self) -> None:
        """Delete the message permanently."""
        try:
            await self.client.delete_message(self.queue, self.message_id, self.pop_receipt)
        except PopReceiptMismatchError:
            logger.error(
                "lease on message %s in %s expired before remove()",
                self.message_id,
                self.queue,
            )
            raise

    async def release(self) -> None:
        """Make the message visible to other pollers right away."""
        try:
            await self.client.update_message(
                self.queue,
                self.text,
                self.message_id,
                self.pop_receipt,
                visibility_timeout=0,
            )
        except PopReceiptMismatchError:
            logger.error(
                "lease on message %s in %s expired before release()",
                self.message_id,
                self.queue,
            )
            raise


async def put_message(
    client: QueueClientPort,
    queue: str,
    payload: BaseModel,
    *,
    visibility: int,
    ttl: int,
) -> None:
    """Encode payload and append it to queue."""
    start = perf_counter()
    await client.put_message(
        queue,
        codec.encode(payload),
        visibility_timeout=visibility,
        ttl=ttl,
    )
    logger.debug(
        "put %s on %s (visibility=%ss, ttl=%ss) in %.1fms",
        type(payload).__name__,
        queue,
        visibility,
        ttl,
        (perf_counter() - start) * 1000,
    )


async def get_messages(
    client: QueueClientPort,
    queue: str,
    model: type[P],
    *,
    visibility: int,
    count: int,
    reporter: ErrorReporter | None = None,
) -> list[LeasedMessage[P]]:
    """
    Lease up to count messages from queue and decode them as model.

    Undecodable messages are deleted. A failure to delete one is reported
    and does not affect the rest of the batch.
    """
    start = perf_counter()
    received = await client.get_messages(
        queue, visibility_timeout=visibility, max_count=count
    )
    logger.debug(
        "got %d message(s) from %s in %.1fms",
        len(received),
        queue,
        (perf_counter() - start) * 1000,
    )

    leased: list[LeasedMessage[P]] = []
    for msg in received:
        try:
            payload = codec.decode(msg.text, model)
        except MessageDecodeError:
            # Poison message: it would be redelivered until its TTL runs out.
            logger.exception("dropping undecodable message %s from %s", msg.message_id, queue)
            await _drop(client, queue, msg.message_id, msg.pop_receipt, reporter)
            continue
        leased.append(
            LeasedMessage(
                payload=payload,
                queue=queue,
                message_id=msg.message_id,
                pop_receipt=msg.pop_receipt,
                text=msg.text,
                client=client,
            )
        )
    return leased


async def _drop(
    client: QueueClientPort,
    queue: str,
    message_id: str,
    pop_receipt: str,
    reporter: ErrorReporter | None,
) -> None:
    try:
        await client.delete_message(queue, message_id, pop_receipt)
    except Exception as exc:
        (reporter or LoggingErrorReporter()).report_error(
            exc,
            {
                "note": "failed to delete undecodable message",
                "queue": queue,
                "message_id": message_id,
            },
        )
