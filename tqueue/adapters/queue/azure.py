"""
AzureQueueClient — Azure Queue Storage adapter using azure-storage-queue (aio).

Install extras: pip install "tqueue[azure]"

Error mapping
-------------
azure-core raises HttpResponseError subclasses carrying the storage error
code. They are translated to the tqueue taxonomy:

  QueueNotFound       → QueueNotFoundError
  QueueAlreadyExists  → QueueAlreadyExistsError
  PopReceiptMismatch  → PopReceiptMismatchError
  MessageNotFound     → MessageNotFoundError
  404 without a code  → QueueNotFoundError (get_queue_properties is a HEAD
                        request, so there is no error body to read)
  anything else       → QueueClientError

Every call runs under a timeout (default 7 seconds); expiry surfaces as
QueueClientError.

Messages are passed through as-is: tqueue base64-encodes payloads itself,
so no SDK encode policy is configured.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
from collections.abc import AsyncIterator, Mapping
from datetime import timedelta
from types import TracebackType
from typing import TYPE_CHECKING

from tqueue.domain.errors import (
    MessageNotFoundError,
    PopReceiptMismatchError,
    QueueAlreadyExistsError,
    QueueClientError,
    QueueNotFoundError,
    TQueueError,
)
from tqueue.domain.models import QueueInfo, QueuePage, QueueProperties, ReceivedMessage

if TYPE_CHECKING:
    from azure.storage.queue.aio import QueueServiceClient


@dataclasses.dataclass
class AzureQueueClient:
    """
    Azure Queue Storage adapter.

    Parameters
    ----------
    account_id   : storage account name
    access_key   : storage account key
    account_url  : endpoint override (e.g. Azurite); defaults to
                   https://{account_id}.queue.core.windows.net
    timeout      : per-call timeout
    page_size    : queues per list_queues page
    service      : pre-built QueueServiceClient — created lazily if omitted
    """

    account_id: str
    access_key: str = dataclasses.field(repr=False)
    account_url: str | None = None
    timeout: timedelta = timedelta(seconds=7)
    page_size: int = 1000
    service: QueueServiceClient | None = None

    def _get_service(self) -> QueueServiceClient:
        if self.service is not None:
            return self.service
        try:
            from azure.storage.queue.aio import QueueServiceClient
        except ImportError as exc:
            raise ImportError(
                "AzureQueueClient requires azure-storage-queue. "
                "Install with: pip install 'tqueue[azure]'"
            ) from exc
        self.service = QueueServiceClient(
            account_url=self.account_url
            or f"https://{self.account_id}.queue.core.windows.net",
            credential={"account_name": self.account_id, "account_key": self.access_key},
        )
        return self.service

    async def close(self) -> None:
        if self.service is not None:
            await self.service.close()
            self.service = None

    async def __aenter__(self) -> AzureQueueClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @contextlib.asynccontextmanager
    async def _call(
        self,
        operation: str,
        queue: str,
        message_id: str | None = None,
    ) -> AsyncIterator[None]:
        """Apply the timeout and translate backend errors."""
        try:
            async with asyncio.timeout(self.timeout.total_seconds()):
                yield
        except TQueueError:
            raise
        except Exception as exc:
            raise _translate_error(operation, queue, message_id, exc) from exc

    # ------------------------------------------------------------------ #
    # Queues                                                               #
    # ------------------------------------------------------------------ #

    async def create_queue(
        self,
        name: str,
        metadata: Mapping[str, str] | None = None,
    ) -> None:
        async with self._call("create queue", name):
            await self._get_service().create_queue(
                name, metadata=dict(metadata) if metadata else None
            )

    async def delete_queue(self, name: str) -> None:
        async with self._call("delete queue", name):
            await self._get_service().delete_queue(name)

    async def get_metadata(self, name: str) -> QueueProperties:
        async with self._call("get queue properties", name):
            props = await self._get_service().get_queue_client(name).get_queue_properties()
        return QueueProperties(
            metadata=dict(props.metadata or {}),
            approximate_message_count=props.approximate_message_count or 0,
        )

    async def set_metadata(self, name: str, metadata: Mapping[str, str]) -> None:
        async with self._call("set queue metadata", name):
            await self._get_service().get_queue_client(name).set_queue_metadata(
                metadata=dict(metadata)
            )

    async def list_queues(
        self,
        *,
        prefix: str,
        marker: str | None = None,
        include_metadata: bool = True,
    ) -> QueuePage:
        queues: list[QueueInfo] = []
        async with self._call("list queues", prefix):
            pages = self._get_service().list_queues(
                name_starts_with=prefix,
                include_metadata=include_metadata,
                results_per_page=self.page_size,
            ).by_page(continuation_token=marker)
            async for page in pages:
                async for item in page:
                    queues.append(
                        QueueInfo(name=item.name, metadata=dict(item.metadata or {}))
                    )
                break
        return QueuePage(
            queues=tuple(queues),
            next_marker=pages.continuation_token or None,
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
        async with self._call("put message", name):
            await self._get_service().get_queue_client(name).send_message(
                text,
                visibility_timeout=visibility_timeout,
                time_to_live=ttl,
            )

    async def get_messages(
        self,
        name: str,
        *,
        visibility_timeout: int,
        max_count: int,
    ) -> list[ReceivedMessage]:
        result: list[ReceivedMessage] = []
        async with self._call("get messages", name):
            messages = self._get_service().get_queue_client(name).receive_messages(
                messages_per_page=max_count,
                visibility_timeout=visibility_timeout,
                max_messages=max_count,
            )
            async for msg in messages:
                result.append(
                    ReceivedMessage(
                        message_id=msg.id,
                        pop_receipt=msg.pop_receipt,
                        text=msg.content,
                    )
                )
        return result

    async def delete_message(
        self,
        name: str,
        message_id: str,
        pop_receipt: str,
    ) -> None:
        async with self._call("delete message", name, message_id):
            await self._get_service().get_queue_client(name).delete_message(
                message_id, pop_receipt=pop_receipt
            )

    async def update_message(
        self,
        name: str,
        text: str,
        message_id: str,
        pop_receipt: str,
        *,
        visibility_timeout: int,
    ) -> None:
        async with self._call("update message", name, message_id):
            await self._get_service().get_queue_client(name).update_message(
                message_id,
                pop_receipt=pop_receipt,
                content=text,
                visibility_timeout=visibility_timeout,
            )


def _azure_error_code(exc: Exception) -> str:
    """Extract the storage error code from an azure-core error, or return ''."""
    code = getattr(exc, "error_code", None)
    return str(code) if code else ""


def _translate_error(
    operation: str,
    queue: str,
    message_id: str | None,
    exc: Exception,
) -> TQueueError:
    match _azure_error_code(exc):
        case "QueueNotFound":
            return QueueNotFoundError(queue)
        case "QueueAlreadyExists":
            return QueueAlreadyExistsError(queue)
        case "PopReceiptMismatch" if message_id is not None:
            return PopReceiptMismatchError(queue, message_id)
        case "MessageNotFound" if message_id is not None:
            return MessageNotFoundError(queue, message_id)
    if getattr(exc, "status_code", None) == 404 and message_id is None:
        return QueueNotFoundError(queue)
    return QueueClientError(f"Azure {operation} failed", exc, queue=queue)
