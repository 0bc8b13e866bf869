"""
Tests for AzureQueueClient against a mocked QueueServiceClient.

Only test_builds_service_from_credentials needs azure-storage-queue
installed; the rest exercise the adapter's mapping and error translation.
"""

import asyncio
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from tqueue.adapters.queue.azure import AzureQueueClient
from tqueue.domain.errors import (
    MessageNotFoundError,
    PopReceiptMismatchError,
    QueueAlreadyExistsError,
    QueueClientError,
    QueueNotFoundError,
)
from tqueue.ports.queue_client import QueueClientPort


class _AzureError(Exception):
    """Stand-in for azure.core.exceptions.HttpResponseError."""

    def __init__(self, error_code: str | None = None, status_code: int | None = None) -> None:
        super().__init__(error_code or f"HTTP {status_code}")
        self.error_code = error_code
        self.status_code = status_code


class _Pager:
    """Mimics the AsyncPageIterator returned by AsyncItemPaged.by_page()."""

    def __init__(self, items: list, continuation_token: str | None) -> None:
        self._items = items
        self.continuation_token: str | None = None
        self._next_token = continuation_token

    def __aiter__(self):
        return self._pages()

    async def _pages(self):
        self.continuation_token = self._next_token
        yield _aiter(self._items)


async def _aiter(items):
    for item in items:
        yield item


@pytest.fixture
def queue_client() -> MagicMock:
    qc = MagicMock()
    qc.get_queue_properties = AsyncMock()
    qc.set_queue_metadata = AsyncMock()
    qc.send_message = AsyncMock()
    qc.delete_message = AsyncMock()
    qc.update_message = AsyncMock()
    return qc


@pytest.fixture
def service(queue_client) -> MagicMock:
    svc = MagicMock()
    svc.create_queue = AsyncMock()
    svc.delete_queue = AsyncMock()
    svc.close = AsyncMock()
    svc.get_queue_client.return_value = queue_client
    return svc


@pytest.fixture
def azure(service) -> AzureQueueClient:
    return AzureQueueClient(account_id="acct", access_key="s3cr3t", service=service)


def test_satisfies_port(azure):
    assert isinstance(azure, QueueClientPort)


def test_access_key_not_in_repr(azure):
    assert "s3cr3t" not in repr(azure)


# ---------------------------------------------------------------------------
# Queues
# ---------------------------------------------------------------------------


async def test_create_queue_passes_metadata(azure, service):
    await azure.create_queue("q", {"a": "1"})
    service.create_queue.assert_awaited_once_with("q", metadata={"a": "1"})


async def test_create_queue_without_metadata(azure, service):
    await azure.create_queue("q")
    service.create_queue.assert_awaited_once_with("q", metadata=None)


async def test_create_existing_queue_raises_already_exists(azure, service):
    service.create_queue.side_effect = _AzureError("QueueAlreadyExists", 409)
    with pytest.raises(QueueAlreadyExistsError):
        await azure.create_queue("q", {"a": "1"})


async def test_get_metadata_maps_properties(azure, service, queue_client):
    queue_client.get_queue_properties.return_value = SimpleNamespace(
        metadata={"provisioner_id": "p"}, approximate_message_count=4
    )
    props = await azure.get_metadata("q")
    service.get_queue_client.assert_called_with("q")
    assert props.metadata == {"provisioner_id": "p"}
    assert props.approximate_message_count == 4


async def test_get_metadata_handles_missing_values(azure, queue_client):
    queue_client.get_queue_properties.return_value = SimpleNamespace(
        metadata=None, approximate_message_count=None
    )
    props = await azure.get_metadata("q")
    assert props.metadata == {}
    assert props.approximate_message_count == 0


async def test_head_404_without_code_is_queue_not_found(azure, queue_client):
    queue_client.get_queue_properties.side_effect = _AzureError(status_code=404)
    with pytest.raises(QueueNotFoundError) as info:
        await azure.get_metadata("q")
    assert info.value.queue == "q"


async def test_set_metadata(azure, queue_client):
    await azure.set_metadata("q", {"k": "v"})
    queue_client.set_queue_metadata.assert_awaited_once_with(metadata={"k": "v"})


async def test_delete_missing_queue_raises_not_found(azure, service):
    service.delete_queue.side_effect = _AzureError("QueueNotFound", 404)
    with pytest.raises(QueueNotFoundError):
        await azure.delete_queue("q")


async def test_list_queues_returns_one_page(azure, service):
    items = [
        SimpleNamespace(name="tc-a", metadata={"k": "v"}),
        SimpleNamespace(name="tc-b", metadata=None),
    ]
    paged = MagicMock()
    paged.by_page.return_value = _Pager(items, "next-token")
    service.list_queues.return_value = paged

    page = await azure.list_queues(prefix="tc-", marker="m1")

    service.list_queues.assert_called_once_with(
        name_starts_with="tc-", include_metadata=True, results_per_page=1000
    )
    paged.by_page.assert_called_once_with(continuation_token="m1")
    assert [q.name for q in page.queues] == ["tc-a", "tc-b"]
    assert page.queues[1].metadata == {}
    assert page.next_marker == "next-token"


async def test_list_queues_last_page_has_no_marker(azure, service):
    paged = MagicMock()
    paged.by_page.return_value = _Pager([], "")
    service.list_queues.return_value = paged
    page = await azure.list_queues(prefix="tc-")
    assert page.queues == ()
    assert page.next_marker is None


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


async def test_put_message_sets_visibility_and_ttl(azure, queue_client):
    await azure.put_message("q", "dGV4dA==", visibility_timeout=5, ttl=60)
    queue_client.send_message.assert_awaited_once_with(
        "dGV4dA==", visibility_timeout=5, time_to_live=60
    )


async def test_get_messages_maps_received(azure, queue_client):
    queue_client.receive_messages.return_value = _aiter(
        [SimpleNamespace(id="m1", pop_receipt="r1", content="abc")]
    )
    [msg] = await azure.get_messages("q", visibility_timeout=300, max_count=32)
    queue_client.receive_messages.assert_called_once_with(
        messages_per_page=32, visibility_timeout=300, max_messages=32
    )
    assert (msg.message_id, msg.pop_receipt, msg.text) == ("m1", "r1", "abc")


async def test_delete_message_with_stale_receipt(azure, queue_client):
    queue_client.delete_message.side_effect = _AzureError("PopReceiptMismatch", 400)
    with pytest.raises(PopReceiptMismatchError) as info:
        await azure.delete_message("q", "m1", "r1")
    assert info.value.message_id == "m1"


async def test_delete_vanished_message(azure, queue_client):
    queue_client.delete_message.side_effect = _AzureError("MessageNotFound", 404)
    with pytest.raises(MessageNotFoundError):
        await azure.delete_message("q", "m1", "r1")


async def test_message_404_without_code_is_client_error(azure, queue_client):
    queue_client.update_message.side_effect = _AzureError(status_code=404)
    with pytest.raises(QueueClientError):
        await azure.update_message("q", "t", "m1", "r1", visibility_timeout=0)


async def test_update_message(azure, queue_client):
    await azure.update_message("q", "text", "m1", "r1", visibility_timeout=0)
    queue_client.update_message.assert_awaited_once_with(
        "m1", pop_receipt="r1", content="text", visibility_timeout=0
    )


# ---------------------------------------------------------------------------
# Error translation and lifecycle
# ---------------------------------------------------------------------------


async def test_unknown_error_wraps_cause(azure, queue_client):
    cause = _AzureError("ServerBusy", 503)
    queue_client.send_message.side_effect = cause
    with pytest.raises(QueueClientError) as info:
        await azure.put_message("q", "x", visibility_timeout=0, ttl=1)
    assert info.value.cause is cause
    assert info.value.fields["queue"] == "q"


async def test_timeout_becomes_client_error(service, queue_client):
    async def hang(*args, **kwargs):
        await asyncio.sleep(10)

    queue_client.send_message.side_effect = hang
    azure = AzureQueueClient(
        account_id="acct",
        access_key="key",
        service=service,
        timeout=timedelta(milliseconds=10),
    )
    with pytest.raises(QueueClientError):
        await azure.put_message("q", "x", visibility_timeout=0, ttl=1)


async def test_close_releases_service(azure, service):
    async with azure:
        pass
    service.close.assert_awaited_once()
    assert azure.service is None


async def test_builds_service_from_credentials():
    pytest.importorskip("azure.storage.queue.aio")
    pytest.importorskip("aiohttp")
    azure = AzureQueueClient(account_id="devstoreaccount1", access_key="a2V5")
    svc = azure._get_service()
    assert "devstoreaccount1.queue.core.windows.net" in svc.url
    assert azure._get_service() is svc
    await azure.close()
