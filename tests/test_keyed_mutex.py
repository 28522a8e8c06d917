"""Tests for the per-key mutex."""

import asyncio

import pytest

from hollon.workspace.keyed_mutex import KeyedMutex


@pytest.mark.asyncio
async def test_same_key_is_serialized():
    mutex = KeyedMutex("test")
    active = 0
    max_active = 0

    async def work():
        nonlocal active, max_active
        async with mutex.hold("/repo"):
            active += 1
            max_active = max(max_active, active)
            await asyncio.sleep(0.01)
            active -= 1

    await asyncio.gather(*(work() for _ in range(5)))

    assert max_active == 1
    assert len(mutex) == 0


@pytest.mark.asyncio
async def test_different_keys_run_concurrently():
    mutex = KeyedMutex("test")
    both_inside = asyncio.Event()
    inside = 0

    async def work(key):
        nonlocal inside
        async with mutex.hold(key):
            inside += 1
            if inside == 2:
                both_inside.set()
            await asyncio.wait_for(both_inside.wait(), timeout=1)

    await asyncio.gather(work("/repo-a"), work("/repo-b"))

    assert both_inside.is_set()


@pytest.mark.asyncio
async def test_released_on_error():
    mutex = KeyedMutex("test")

    with pytest.raises(RuntimeError):
        async with mutex.hold("/repo"):
            assert mutex.is_locked("/repo")
            raise RuntimeError("git failed")

    assert not mutex.is_locked("/repo")
    assert len(mutex) == 0


@pytest.mark.asyncio
async def test_released_on_cancellation():
    mutex = KeyedMutex("test")
    entered = asyncio.Event()

    async def holder():
        async with mutex.hold("/repo"):
            entered.set()
            await asyncio.sleep(10)

    task = asyncio.create_task(holder())
    await entered.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    async with mutex.hold("/repo"):
        assert mutex.is_locked("/repo")

    assert len(mutex) == 0
