"""Tests for the abort signal."""

import asyncio
import gc

import pytest

from directupload.client.errors import UploadAborted
from directupload.client.signal import AbortSignal


def test_abort_propagates_to_children():
    """Test that a child aborts with its parent but not the other way round."""
    parent = AbortSignal()
    child = parent.child()
    other = parent.child()

    other.abort()
    assert other.aborted
    assert not parent.aborted
    assert not child.aborted

    parent.abort()
    assert child.aborted


def test_child_of_aborted_signal():
    """Test that a child created after the abort starts aborted."""
    parent = AbortSignal()
    parent.abort()

    assert parent.child().aborted


@pytest.mark.asyncio
async def test_sleep_wakes_up_on_abort():
    """Test that a long wait ends as soon as the signal fires."""
    signal = AbortSignal()
    asyncio.get_running_loop().call_later(0.01, signal.abort)

    with pytest.raises(UploadAborted):
        await asyncio.wait_for(signal.sleep(30), timeout=1)


@pytest.mark.asyncio
async def test_sleep_returns_after_timeout():
    """Test an uninterrupted wait."""
    signal = AbortSignal()

    await signal.sleep(0.01)
    await signal.sleep(0)

    assert not signal.aborted


@pytest.mark.asyncio
async def test_run_returns_result():
    """Test that a request finishing first keeps its result."""

    async def request():
        return "done"

    assert await AbortSignal().run(request()) == "done"


@pytest.mark.asyncio
async def test_run_cancels_in_flight_request():
    """Test that abort cancels the awaited request."""
    signal = AbortSignal()
    started = asyncio.Event()
    cancelled = asyncio.Event()

    async def request():
        started.set()
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    task = asyncio.create_task(signal.run(request()))
    await started.wait()
    signal.abort()

    with pytest.raises(UploadAborted):
        await asyncio.wait_for(task, timeout=1)
    await asyncio.wait_for(cancelled.wait(), timeout=1)


@pytest.mark.asyncio
async def test_run_refuses_to_start_when_aborted():
    """Test that nothing starts once the signal has fired."""
    signal = AbortSignal()
    signal.abort()
    calls = []

    async def request():
        calls.append(1)

    with pytest.raises(UploadAborted):
        await signal.run(request())
    assert calls == []


def test_released_children_are_not_kept():
    """Test that a long-lived signal does not hold on to finished child signals."""
    parent = AbortSignal()
    for _ in range(10):
        parent.child()
    gc.collect()

    kept = parent.child()

    assert list(parent._children) == [kept]
    parent.abort()
    assert kept.aborted
