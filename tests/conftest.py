"""Pytest fixtures shared by the scan session tests."""

from __future__ import annotations

import asyncio
from typing import Callable, List, Optional

import pytest

from beaconscan.adapter import AdapterState, Subscription
from beaconscan.models import RawAdvertisement


class FakeAdapter:
    """In-memory ScanAdapter driven by the test."""

    def __init__(self, state: str = AdapterState.POWERED_ON) -> None:
        self.state = state
        self.is_scanning = False
        self.start_error: Optional[BaseException] = None
        self.start_gate: Optional[asyncio.Event] = None
        self.state_listeners: List[Callable[[str], None]] = []
        self.subscribers: List[Callable[[RawAdvertisement], None]] = []
        self.start_calls = 0
        self.stop_calls = 0

    def add_state_listener(self, listener: Callable[[str], None]) -> Callable[[], None]:
        self.state_listeners.append(listener)

        def remove() -> None:
            self.state_listeners.remove(listener)

        return remove

    def set_state(self, state: str) -> None:
        self.state = state
        for listener in list(self.state_listeners):
            listener(state)

    async def start_scanning(self) -> None:
        self.start_calls += 1
        if self.start_gate is not None:
            await self.start_gate.wait()
        if self.start_error is not None:
            raise self.start_error
        self.is_scanning = True

    def stop_scanning(self) -> None:
        self.stop_calls += 1
        self.is_scanning = False

    def subscribe(self, listener: Callable[[RawAdvertisement], None]) -> Subscription:
        self.subscribers.append(listener)
        return Subscription(lambda: self.subscribers.remove(listener))

    def emit(self, advertisement: RawAdvertisement) -> None:
        for listener in list(self.subscribers):
            listener(advertisement)


class FakeClock:
    def __init__(self, now: int = 0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture
def adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
