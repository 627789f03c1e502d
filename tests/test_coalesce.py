import asyncio

import pytest

from refreshstore import CoalescedResolver


@pytest.mark.asyncio
async def test_callers_within_window_share_one_call() -> None:
    calls = 0

    async def resolver():
        nonlocal calls
        calls += 1
        return {"call": calls}

    wrapper = CoalescedResolver(resolver, window=0.02)
    first, second, third = await asyncio.gather(wrapper(), wrapper(), wrapper())
    assert calls == 1
    assert wrapper.calls == 1
    assert first is second is third

    assert (await wrapper())["call"] == 2
    assert not wrapper.pending


@pytest.mark.asyncio
async def test_callers_during_flight_share_outcome() -> None:
    gate = asyncio.Event()
    calls = 0

    async def resolver():
        nonlocal calls
        calls += 1
        await gate.wait()
        return calls

    wrapper = CoalescedResolver(resolver, window=0)
    early = asyncio.create_task(wrapper())
    await asyncio.sleep(0.01)
    assert wrapper.pending
    late = asyncio.create_task(wrapper())
    gate.set()
    assert await early == 1
    assert await late == 1
    assert calls == 1


@pytest.mark.asyncio
async def test_errors_reach_every_caller() -> None:
    async def resolver():
        raise LookupError("missing")

    wrapper = CoalescedResolver(resolver, window=0.01)
    results = await asyncio.gather(wrapper(), wrapper(), return_exceptions=True)
    assert all(isinstance(result, LookupError) for result in results)
    assert wrapper.calls == 1


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_cancel_others() -> None:
    gate = asyncio.Event()

    async def resolver():
        await gate.wait()
        return 7

    wrapper = CoalescedResolver(resolver, window=0)
    cancelled = asyncio.create_task(wrapper())
    survivor = asyncio.create_task(wrapper())
    await asyncio.sleep(0)
    cancelled.cancel()
    gate.set()
    assert await survivor == 7
    with pytest.raises(asyncio.CancelledError):
        await cancelled


@pytest.mark.asyncio
async def test_plain_functions_are_supported() -> None:
    wrapper = CoalescedResolver(lambda: "sync", window=0)
    assert await wrapper() == "sync"


def test_negative_window_rejected() -> None:
    with pytest.raises(ValueError):
        CoalescedResolver(lambda: None, window=-1)
