from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Callable, Optional, Protocol

from .models import RawAdvertisement

LOGGER = logging.getLogger(__name__)


class AdapterState:
    UNKNOWN = "unknown"
    RESETTING = "resetting"
    UNSUPPORTED = "unsupported"
    UNAUTHORIZED = "unauthorized"
    POWERED_OFF = "poweredOff"
    POWERED_ON = "poweredOn"


@dataclass(frozen=True)
class ScanError(RuntimeError):
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class AdapterError(ScanError):
    state: str = AdapterState.UNKNOWN


@dataclass(frozen=True)
class ScanStartError(ScanError):
    pass


@dataclass(frozen=True)
class ScanAbortedError(ScanError):
    pass


StateListener = Callable[[str], None]
AdvertisementListener = Callable[[RawAdvertisement], None]


class Subscription:
    """Handle for a raw-advertisement subscription; released at most once."""

    def __init__(self, release: Callable[[], None]) -> None:
        self._release: Optional[Callable[[], None]] = release

    @property
    def active(self) -> bool:
        return self._release is not None

    def unsubscribe(self) -> None:
        release, self._release = self._release, None
        if release is not None:
            release()


class ScanAdapter(Protocol):
    @property
    def state(self) -> str: ...

    @property
    def is_scanning(self) -> bool: ...

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]: ...

    async def start_scanning(self) -> None: ...

    def stop_scanning(self) -> None: ...

    def subscribe(self, listener: AdvertisementListener) -> Subscription: ...


class AdapterGate:
    """Wait for the adapter to report ``poweredOn`` before scanning is requested.

    The wait is one-shot: the first state change after the wait begins settles
    it. Overlapping ``wait_ready`` calls share the pending future instead of
    registering another listener.
    """

    def __init__(self, adapter: ScanAdapter) -> None:
        self._adapter = adapter
        self._pending: Optional[asyncio.Future[None]] = None
        self._remove_listener: Optional[Callable[[], None]] = None

    @property
    def waiting(self) -> bool:
        return self._pending is not None and not self._pending.done()

    async def wait_ready(self) -> None:
        if self._adapter.state == AdapterState.POWERED_ON:
            return
        if self.waiting:
            assert self._pending is not None
            await asyncio.shield(self._pending)
            return

        loop = asyncio.get_running_loop()
        pending: asyncio.Future[None] = loop.create_future()
        self._pending = pending
        LOGGER.debug("Waiting for adapter readiness (state=%s)", self._adapter.state)
        self._remove_listener = self._adapter.add_state_listener(self._on_state_change)
        try:
            await pending
        finally:
            # Cancelled waits must not leave the listener behind.
            self._detach()
            if self._pending is pending:
                self._pending = None

    def _on_state_change(self, state: str) -> None:
        pending = self._pending
        self._detach()
        if pending is None or pending.done():
            return
        if state == AdapterState.POWERED_ON:
            LOGGER.info("Adapter ready")
            pending.set_result(None)
        else:
            LOGGER.warning("Adapter reported non-ready state: %s", state)
            pending.set_exception(
                AdapterError(f"Failed to initialize the adapter: {state}", state=state)
            )

    def _detach(self) -> None:
        remove, self._remove_listener = self._remove_listener, None
        if remove is not None:
            remove()
