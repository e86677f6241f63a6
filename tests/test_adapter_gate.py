from __future__ import annotations

import asyncio

import pytest

from beaconscan.adapter import AdapterError, AdapterGate, AdapterState, Subscription


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_ready_adapter_resolves_immediately(adapter) -> None:
    gate = AdapterGate(adapter)

    await gate.wait_ready()

    assert adapter.state_listeners == []
    assert not gate.waiting


@pytest.mark.asyncio
async def test_first_state_change_settles_wait(adapter) -> None:
    adapter.state = AdapterState.UNKNOWN
    gate = AdapterGate(adapter)

    task = asyncio.create_task(gate.wait_ready())
    await _settle()
    assert gate.waiting
    assert len(adapter.state_listeners) == 1

    adapter.set_state(AdapterState.POWERED_ON)
    await task

    assert adapter.state_listeners == []
    assert not gate.waiting


@pytest.mark.asyncio
async def test_non_ready_state_fails_with_state_name(adapter) -> None:
    adapter.state = AdapterState.RESETTING
    gate = AdapterGate(adapter)

    task = asyncio.create_task(gate.wait_ready())
    await _settle()
    adapter.set_state(AdapterState.UNAUTHORIZED)

    with pytest.raises(AdapterError) as excinfo:
        await task

    assert excinfo.value.state == AdapterState.UNAUTHORIZED
    assert str(excinfo.value) == "Failed to initialize the adapter: unauthorized"
    assert adapter.state_listeners == []


@pytest.mark.asyncio
async def test_wait_does_not_rearm_after_firing(adapter) -> None:
    adapter.state = AdapterState.UNKNOWN
    gate = AdapterGate(adapter)

    task = asyncio.create_task(gate.wait_ready())
    await _settle()
    adapter.set_state(AdapterState.POWERED_OFF)
    adapter.set_state(AdapterState.POWERED_ON)

    with pytest.raises(AdapterError):
        await task


@pytest.mark.asyncio
async def test_overlapping_waits_share_one_listener(adapter) -> None:
    adapter.state = AdapterState.UNKNOWN
    gate = AdapterGate(adapter)

    first = asyncio.create_task(gate.wait_ready())
    await _settle()
    second = asyncio.create_task(gate.wait_ready())
    await _settle()

    assert len(adapter.state_listeners) == 1

    adapter.set_state(AdapterState.POWERED_ON)
    await asyncio.gather(first, second)

    assert adapter.state_listeners == []


@pytest.mark.asyncio
async def test_cancelled_wait_removes_listener(adapter) -> None:
    adapter.state = AdapterState.UNKNOWN
    gate = AdapterGate(adapter)

    task = asyncio.create_task(gate.wait_ready())
    await _settle()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert adapter.state_listeners == []
    assert not gate.waiting


def test_subscription_releases_once() -> None:
    calls = []
    subscription = Subscription(lambda: calls.append("released"))

    assert subscription.active
    subscription.unsubscribe()
    subscription.unsubscribe()

    assert calls == ["released"]
    assert not subscription.active
