"""
AsyncMemo — single-flight memoization of async "ensure" operations.

Concurrent callers asking for the same key share one in-flight task, so a
queue family is created once no matter how many handlers race for it.
Later callers reuse the finished task without any I/O until the entry is
cleared.

Eviction policy
---------------
  - failure      → the entry is dropped; the next caller starts over
  - cancellation → when the last waiter is cancelled the task is cancelled
                   and dropped; other waiters keep it alive
  - clear()      → everything is dropped (time-based reset by the owner)

Negative results are never cached.
"""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Awaitable, Callable, Hashable
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclasses.dataclass
class _Entry(Generic[V]):
    task: asyncio.Future[V]
    waiters: int = 0


@dataclasses.dataclass
class AsyncMemo(Generic[K, V]):
    """
    Keyed cache of in-flight or finished asyncio tasks.

    Usage
    -----
        memo: AsyncMemo[str, None] = AsyncMemo()
        await memo.get("claim-queue", lambda: client.create_queue("claims"))
    """

    _entries: dict[K, _Entry[V]] = dataclasses.field(
        default_factory=dict, init=False, repr=False
    )

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: K, factory: Callable[[], Awaitable[V]]) -> V:
        """Return the memoized result for key, running factory at most once."""
        entry = self._entries.get(key)
        if entry is None:
            entry = _Entry(task=asyncio.ensure_future(factory()))
            self._entries[key] = entry
            entry.task.add_done_callback(lambda t: self._on_done(key, t))

        if entry.task.done():
            return entry.task.result()

        entry.waiters += 1
        try:
            return await asyncio.shield(entry.task)
        except asyncio.CancelledError:
            if entry.waiters == 1 and not entry.task.done():
                entry.task.cancel()
                # Later callers must start over rather than join a dying task.
                if self._entries.get(key) is entry:
                    del self._entries[key]
            raise
        finally:
            entry.waiters -= 1

    def clear(self) -> None:
        """Forget every entry. In-flight tasks still resolve for their waiters."""
        self._entries.clear()

    def _on_done(self, key: K, task: asyncio.Future[V]) -> None:
        if not task.cancelled() and task.exception() is None:
            return
        entry = self._entries.get(key)
        if entry is not None and entry.task is task:
            del self._entries[key]
