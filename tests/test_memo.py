import asyncio

import pytest

from tqueue.core.memo import AsyncMemo


class _Factory:
    def __init__(self, result: object = "ok", error: Exception | None = None) -> None:
        self.calls = 0
        self.result = result
        self.error = error
        self.gate = asyncio.Event()
        self.gate.set()

    async def __call__(self) -> object:
        self.calls += 1
        await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.result


async def test_result_is_returned_and_cached() -> None:
    memo: AsyncMemo[str, object] = AsyncMemo()
    factory = _Factory("value")
    assert await memo.get("k", factory) == "value"
    assert await memo.get("k", factory) == "value"
    assert factory.calls == 1
    assert "k" in memo


async def test_concurrent_callers_share_one_call() -> None:
    memo: AsyncMemo[str, object] = AsyncMemo()
    factory = _Factory("shared")
    factory.gate.clear()

    waiters = [asyncio.create_task(memo.get("k", factory)) for _ in range(5)]
    await asyncio.sleep(0)
    factory.gate.set()

    assert await asyncio.gather(*waiters) == ["shared"] * 5
    assert factory.calls == 1


async def test_distinct_keys_run_independently() -> None:
    memo: AsyncMemo[str, object] = AsyncMemo()
    factory = _Factory()
    await asyncio.gather(memo.get("a", factory), memo.get("b", factory))
    assert factory.calls == 2
    assert len(memo) == 2


async def test_failure_is_not_cached() -> None:
    memo: AsyncMemo[str, object] = AsyncMemo()
    factory = _Factory(error=RuntimeError("boom"))
    with pytest.raises(RuntimeError, match="boom"):
        await memo.get("k", factory)
    await asyncio.sleep(0)
    assert "k" not in memo

    factory.error = None
    assert await memo.get("k", factory) == "ok"
    assert factory.calls == 2


async def test_failure_reaches_every_concurrent_waiter() -> None:
    memo: AsyncMemo[str, object] = AsyncMemo()
    factory = _Factory(error=ValueError("nope"))
    factory.gate.clear()

    waiters = [asyncio.create_task(memo.get("k", factory)) for _ in range(3)]
    await asyncio.sleep(0)
    factory.gate.set()

    results = await asyncio.gather(*waiters, return_exceptions=True)
    assert all(isinstance(r, ValueError) for r in results)
    assert factory.calls == 1


async def test_cancelling_last_waiter_cancels_and_evicts() -> None:
    memo: AsyncMemo[str, object] = AsyncMemo()
    factory = _Factory()
    factory.gate.clear()

    waiter = asyncio.create_task(memo.get("k", factory))
    await asyncio.sleep(0)
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter
    for _ in range(3):
        await asyncio.sleep(0)
    assert "k" not in memo


async def test_caller_after_cancellation_starts_a_new_call() -> None:
    memo: AsyncMemo[str, object] = AsyncMemo()
    factory = _Factory("fresh")
    factory.gate.clear()

    first = asyncio.create_task(memo.get("k", factory))
    await asyncio.sleep(0)
    first.cancel()
    await asyncio.sleep(0)
    assert "k" not in memo

    factory.gate.set()
    second = asyncio.create_task(memo.get("k", factory))
    assert await second == "fresh"
    assert not second.cancelled()
    assert first.cancelled()


async def test_cancelling_one_waiter_keeps_others_alive() -> None:
    memo: AsyncMemo[str, object] = AsyncMemo()
    factory = _Factory("kept")
    factory.gate.clear()

    first = asyncio.create_task(memo.get("k", factory))
    second = asyncio.create_task(memo.get("k", factory))
    await asyncio.sleep(0)
    first.cancel()
    await asyncio.sleep(0)
    factory.gate.set()

    assert await second == "kept"
    assert first.cancelled()
    assert factory.calls == 1


async def test_clear_forces_a_new_call() -> None:
    memo: AsyncMemo[str, object] = AsyncMemo()
    factory = _Factory()
    await memo.get("k", factory)
    memo.clear()
    assert len(memo) == 0
    await memo.get("k", factory)
    assert factory.calls == 2
