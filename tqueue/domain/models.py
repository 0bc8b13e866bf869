"""
Domain models for tqueue — backed by Pydantic v2.

Pydantic handles:
  - JSON serialization / deserialization of message payloads (via codec.py)
  - camelCase wire names (taskId, runId, ...) through an alias generator
  - datetime parsing (ISO-8601 with timezone)
  - field validation and type coercion

All models are frozen (immutable).
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from enum import Enum

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Priority(str, Enum):
    """
    Task priority levels, declared from highest to lowest.

    The declaration order and the shard tags are part of the queue names on
    the wire; neither may ever change.
    """

    HIGHEST = "highest"
    VERY_HIGH = "very-high"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    VERY_LOW = "very-low"
    LOWEST = "lowest"

    @property
    def tag(self) -> str:
        """Single-character suffix of the shard queue for this priority."""
        return _PRIORITY_TAGS[self]


_PRIORITY_TAGS: dict[Priority, str] = {
    Priority.HIGHEST: "7",
    Priority.VERY_HIGH: "6",
    Priority.HIGH: "5",
    Priority.MEDIUM: "4",
    Priority.LOW: "3",
    Priority.VERY_LOW: "2",
    Priority.LOWEST: "1",
}

# Highest first: the order pending queues must be polled in.
PRIORITIES: tuple[Priority, ...] = tuple(Priority)


class Resolution(str, Enum):
    """Final outcome of a task run, announced on the resolved queue."""

    COMPLETED = "completed"
    FAILED = "failed"
    EXCEPTION = "exception"


def format_timestamp(ts: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a ``Z`` suffix."""
    return ts.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str | None) -> datetime | None:
    """Lenient inverse of format_timestamp — None for missing or garbage input."""
    if not value:
        return None
    try:
        ts = datetime.fromisoformat(value)
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts


class TaskRef(BaseModel):
    """
    The slice of a task needed to route a pending message.

    Any object exposing the same attributes is accepted by the pending queue
    manager; this model is a convenience for callers without a task entity.
    """

    model_config = ConfigDict(frozen=True)

    task_id: str
    provisioner_id: str
    worker_type: str
    deadline: AwareDatetime
    priority: Priority = Priority.LOWEST


class _WireModel(BaseModel):
    """Message payload serialised with camelCase keys."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class PendingMessage(_WireModel):
    """A task run became pending. hint_id is fresh for every publish."""

    task_id: str
    run_id: int = Field(ge=0)
    hint_id: str


class ClaimMessage(_WireModel):
    """Becomes visible when the claim on a run may have expired."""

    task_id: str
    run_id: int = Field(ge=0)
    taken_until: AwareDatetime


class DeadlineMessage(_WireModel):
    """Becomes visible a configured delay after the task deadline."""

    task_id: str
    task_group_id: str
    scheduler_id: str
    deadline: AwareDatetime


class ResolvedMessage(_WireModel):
    """A task was resolved; dependency resolution should react to it."""

    task_id: str
    task_group_id: str
    scheduler_id: str
    resolution: Resolution


class QueueMetadata(BaseModel):
    """
    Out-of-band metadata kept on every pending queue.

    provisioner_id / worker_type — identify the family the queue belongs to
    last_used                    — refreshed at most once every ~24 hours

    Missing or unparseable values are None; the garbage collector treats such
    queues as unused.
    """

    model_config = ConfigDict(frozen=True)

    provisioner_id: str | None = None
    worker_type: str | None = None
    last_used: datetime | None = None

    @classmethod
    def from_mapping(cls, metadata: Mapping[str, str] | None) -> QueueMetadata:
        metadata = metadata or {}
        return cls(
            provisioner_id=metadata.get("provisioner_id") or None,
            worker_type=metadata.get("worker_type") or None,
            last_used=parse_timestamp(metadata.get("last_used")),
        )

    def to_mapping(self) -> dict[str, str]:
        """String-valued mapping as stored on the queue."""
        result: dict[str, str] = {}
        if self.provisioner_id is not None:
            result["provisioner_id"] = self.provisioner_id
        if self.worker_type is not None:
            result["worker_type"] = self.worker_type
        if self.last_used is not None:
            result["last_used"] = format_timestamp(self.last_used)
        return result

    def is_current(
        self,
        provisioner_id: str,
        worker_type: str,
        now: datetime,
        max_age: timedelta,
    ) -> bool:
        """True if identifiers match and last_used is younger than max_age."""
        return (
            self.provisioner_id == provisioner_id
            and self.worker_type == worker_type
            and self.last_used is not None
            and self.last_used > now - max_age
        )

    def is_unused_since(self, cutoff: datetime) -> bool:
        """True if the metadata is incomplete or last_used is before cutoff."""
        return (
            not self.provisioner_id
            or not self.worker_type
            or self.last_used is None
            or self.last_used < cutoff
        )


class QueueProperties(BaseModel):
    """Result of get_metadata: user metadata plus the approximate depth."""

    model_config = ConfigDict(frozen=True)

    metadata: dict[str, str] = Field(default_factory=dict)
    approximate_message_count: int = 0


class QueueInfo(BaseModel):
    """A single entry of a list_queues page."""

    model_config = ConfigDict(frozen=True)

    name: str
    metadata: dict[str, str] = Field(default_factory=dict)


class QueuePage(BaseModel):
    """
    One page of list_queues.

    next_marker is an opaque continuation token; None marks the last page.
    """

    model_config = ConfigDict(frozen=True)

    queues: tuple[QueueInfo, ...] = ()
    next_marker: str | None = None


class ReceivedMessage(BaseModel):
    """A raw message as handed out by get_messages, with its lease receipt."""

    model_config = ConfigDict(frozen=True)

    message_id: str
    pop_receipt: str
    text: str
