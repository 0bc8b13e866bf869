"""
Queue naming and sharding.

A pending queue family is 7 physical queues per (provisionerId, workerType),
one per priority:

    {prefix}-{hash(provisionerId)}-{hash(workerType)}-{priority tag}

hash() is the first 15 bytes of SHA-256, base32 encoded and lower-cased,
which always yields 24 characters from [a-z2-7]. With a prefix of at most 6
characters the longest name is 58 characters, inside the 63-character limit
of Azure queue names, and every character is legal there.

Collisions between distinct identifier pairs are only possible at
hash-collision probability and are not handled.
"""

from __future__ import annotations

import base64
import hashlib
import re

from tqueue.domain.errors import InvalidIdentifierError
from tqueue.domain.models import PRIORITIES, Priority

_IDENTIFIER = re.compile(r"^[A-Za-z0-9_-]{1,38}$")
_PREFIX = re.compile(r"^[A-Za-z0-9][A-Za-z0-9-]*$")

MAX_PREFIX_LENGTH = 6
MAX_QUEUE_NAME_LENGTH = 63


def validate_identifier(value: object, kind: str) -> str:
    """Return value if it is a valid provisionerId/workerType, else raise."""
    if not isinstance(value, str) or not _IDENTIFIER.match(value):
        raise InvalidIdentifierError(kind, value)
    return value


def validate_prefix(prefix: str) -> str:
    if not _PREFIX.match(prefix) or len(prefix) > MAX_PREFIX_LENGTH:
        raise ValueError(
            f"Queue prefix must match {_PREFIX.pattern} and be at most "
            f"{MAX_PREFIX_LENGTH} characters, got {prefix!r}"
        )
    return prefix


def parse_priority(value: object) -> Priority:
    """Coerce a Priority or its string value, raising InvalidIdentifierError."""
    if isinstance(value, Priority):
        return value
    try:
        return Priority(value)
    except ValueError:
        raise InvalidIdentifierError("priority", value) from None


def hash_identifier(value: str) -> str:
    digest = hashlib.sha256(value.encode("utf-8")).digest()
    return base64.b32encode(digest[:15]).decode("ascii").lower()


def shard_name(
    prefix: str,
    provisioner_id: str,
    worker_type: str,
    priority: Priority,
) -> str:
    """Deterministic queue name for one priority shard of a family."""
    return "-".join(
        (
            prefix,
            hash_identifier(provisioner_id),
            hash_identifier(worker_type),
            priority.tag,
        )
    )


def queue_family(
    prefix: str,
    provisioner_id: str,
    worker_type: str,
) -> dict[Priority, str]:
    """
    Map every priority to its shard name, highest priority first.

    Validates both identifiers before hashing.
    """
    validate_identifier(provisioner_id, "provisioner_id")
    validate_identifier(worker_type, "worker_type")
    return {
        priority: shard_name(prefix, provisioner_id, worker_type, priority)
        for priority in PRIORITIES
    }
