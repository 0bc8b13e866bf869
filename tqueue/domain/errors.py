"""
Exception hierarchy for tqueue.

TQueueError
├── InvalidIdentifierError   — malformed provisionerId / workerType / priority
├── TaskValidationError      — malformed task reference, run id or resolution
├── QueueNotFoundError       — the named queue does not exist
├── QueueAlreadyExistsError  — create raced with an existing queue
├── MessageNotFoundError     — message was deleted or its TTL expired
├── PopReceiptMismatchError  — lease used after expiry or reused
├── MessageDecodeError       — message text is not base64 JSON of the payload
└── QueueClientError         — underlying I/O failure (wraps original exception)

Every error carries a ``fields`` mapping of context (queue name, identifiers,
notes) that is handed to the ErrorReporter together with the exception.
"""

from __future__ import annotations


class TQueueError(Exception):
    """Base class for all tqueue exceptions."""

    def __init__(self, message: str = "", **fields: object) -> None:
        self.fields: dict[str, object] = dict(fields)
        super().__init__(message)

    def with_fields(self, **fields: object) -> TQueueError:
        """Attach extra context and return self (for use in ``raise``)."""
        self.fields.update(fields)
        return self


class InvalidIdentifierError(TQueueError):
    """Raised when an identifier does not match the allowed format."""

    def __init__(self, kind: str, value: object) -> None:
        self.kind = kind
        self.value = value
        super().__init__(f"Expected {kind} to be an identifier, got {value!r}", **{kind: value})


class TaskValidationError(TQueueError):
    """Raised when a task reference or message argument is malformed."""


class QueueNotFoundError(TQueueError):
    """Raised when the named queue does not exist."""

    def __init__(self, queue: str) -> None:
        self.queue = queue
        super().__init__(f"Queue {queue!r} not found", queue=queue)


class QueueAlreadyExistsError(TQueueError):
    """
    Raised when a queue is created while it already exists with other metadata.

    Ensure paths treat this as a benign race: whoever created the queue set
    its metadata.
    """

    def __init__(self, queue: str) -> None:
        self.queue = queue
        super().__init__(f"Queue {queue!r} already exists", queue=queue)


class MessageNotFoundError(TQueueError):
    """Raised when a message no longer exists in the queue."""

    def __init__(self, queue: str, message_id: str) -> None:
        self.queue = queue
        self.message_id = message_id
        super().__init__(
            f"Message {message_id!r} not found in queue {queue!r}",
            queue=queue,
            message_id=message_id,
        )


class PopReceiptMismatchError(TQueueError):
    """
    Raised when a delete or update presents a stale pop receipt.

    This means a lease was used after it expired and the message was handed
    to another poller, or a receipt was reused after a release.
    """

    def __init__(self, queue: str, message_id: str) -> None:
        self.queue = queue
        self.message_id = message_id
        super().__init__(
            f"Pop receipt mismatch for message {message_id!r} in queue {queue!r}",
            queue=queue,
            message_id=message_id,
        )


class MessageDecodeError(TQueueError):
    """Raised when message text cannot be decoded into the expected payload."""


class QueueClientError(TQueueError):
    """
    Wraps an underlying I/O failure from a queue client adapter.

    Attributes
    ----------
    cause : Exception
        The original exception from the queue backend.
    """

    def __init__(self, message: str, cause: Exception, **fields: object) -> None:
        self.cause = cause
        super().__init__(f"{message}: {cause}", **fields)
