from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
import logging
import time
from typing import Callable, List, Optional

from .adapter import AdapterGate, ScanAbortedError, ScanAdapter, Subscription
from .ingestion.decoder import decode
from .models import BeaconRecord, RawAdvertisement, dedup_key
from .registry import BeaconRegistry

LOGGER = logging.getLogger(__name__)

Decoder = Callable[[RawAdvertisement], Optional[BeaconRecord]]
Consumer = Callable[[BeaconRecord], None]
Clock = Callable[[], int]


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


class SessionState:
    IDLE = "idle"
    AWAITING_ADAPTER = "awaitingAdapter"
    SCANNING = "scanning"
    FAILED = "failed"


@dataclass
class SessionStats:
    received: int = 0
    decoded: int = 0
    dispatched: int = 0
    suppressed: int = 0
    evicted: int = 0


class SweepTimer:
    """Repeating asyncio task that calls ``callback`` every interval.

    ``cancel`` is safe whether or not the timer was ever armed.
    """

    def __init__(self, callback: Callable[[], object]) -> None:
        self._callback = callback
        self._task: Optional[asyncio.Task[None]] = None
        self.interval_seconds: Optional[float] = None

    @property
    def armed(self) -> bool:
        return self._task is not None and not self._task.done()

    def arm(self, interval_seconds: float) -> None:
        self.cancel()
        self.interval_seconds = interval_seconds
        self._task = asyncio.get_running_loop().create_task(
            self._run(interval_seconds), name="beaconscan-sweep"
        )

    def cancel(self) -> None:
        task, self._task = self._task, None
        self.interval_seconds = None
        if task is not None:
            task.cancel()

    async def _run(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                self._callback()
            except Exception:
                LOGGER.exception("Sweep callback failed; retrying next interval")


class ScanSession:
    """Drive an adapter through a scan and deliver de-duplicated beacon records.

    ``start(grace_period_ms)`` waits for the adapter, starts scanning and
    subscribes to raw advertisements. With a positive grace period each beacon
    is delivered once, then suppressed until a sweep (every half grace period)
    finds its entry older than the grace period. With a grace period of zero
    every decoded advertisement is delivered.

    ``on_advertisement`` is read when each advertisement arrives; records seen
    while it is unset are routed as usual but not delivered or queued.
    """

    def __init__(
        self,
        adapter: ScanAdapter,
        *,
        decoder: Decoder = decode,
        on_advertisement: Optional[Consumer] = None,
        clock: Clock = wall_clock_ms,
    ) -> None:
        self._adapter = adapter
        self._gate = AdapterGate(adapter)
        self._decoder = decoder
        self._clock = clock
        self.on_advertisement = on_advertisement
        self.stats = SessionStats()
        self._registry = BeaconRegistry()
        self._sweep = SweepTimer(self.evict_stale)
        self._subscription: Optional[Subscription] = None
        self._ready_task: Optional[asyncio.Task[None]] = None
        self._state = SessionState.IDLE
        self._grace_period_ms = 0
        self._generation = 0

    @property
    def state(self) -> str:
        return self._state

    @property
    def is_scanning(self) -> bool:
        return self._state == SessionState.SCANNING

    @property
    def grace_period_ms(self) -> int:
        return self._grace_period_ms

    @property
    def deduplicating(self) -> bool:
        return self._grace_period_ms > 0

    @property
    def sweep_armed(self) -> bool:
        return self._sweep.armed

    def tracked_keys(self) -> List[str]:
        return self._registry.keys()

    async def start(self, grace_period_ms: int = 0) -> None:
        if (
            isinstance(grace_period_ms, bool)
            or not isinstance(grace_period_ms, int)
            or grace_period_ms < 0
        ):
            raise ValueError(
                f"grace_period_ms must be a non-negative integer; received {grace_period_ms!r}."
            )

        self._teardown()
        self._generation += 1
        generation = self._generation
        self._grace_period_ms = grace_period_ms
        self.stats = SessionStats()
        if self.deduplicating:
            self._sweep.arm(grace_period_ms / 2 / 1000.0)
        self._state = SessionState.AWAITING_ADAPTER
        LOGGER.info("Starting beacon scan (grace_period_ms=%d)", grace_period_ms)

        try:
            self._ready_task = asyncio.ensure_future(self._gate.wait_ready())
            try:
                await self._ready_task
            except asyncio.CancelledError:
                if generation != self._generation:
                    raise ScanAbortedError("Scan start aborted while waiting for the adapter.") from None
                raise
            finally:
                if generation == self._generation:
                    self._ready_task = None
            if generation != self._generation:
                raise ScanAbortedError("Scan start aborted while waiting for the adapter.")

            await self._adapter.start_scanning()
            if generation != self._generation:
                if self._adapter.is_scanning:
                    self._adapter.stop_scanning()
                raise ScanAbortedError("Scan start aborted before scanning began.")
        except ScanAbortedError:
            LOGGER.info("Beacon scan start aborted by stop()")
            raise
        except asyncio.CancelledError:
            if generation == self._generation:
                self._teardown()
                self._state = SessionState.IDLE
            raise
        except Exception as exc:
            if generation == self._generation:
                self._teardown()
                self._state = SessionState.FAILED
            LOGGER.error("Beacon scan failed to start: %s", exc)
            raise

        self._subscription = self._adapter.subscribe(self._handle_advertisement)
        self._state = SessionState.SCANNING
        LOGGER.info("Beacon scan running")

    def stop(self) -> None:
        previous = self._state
        self._generation += 1
        self._teardown()
        self._state = SessionState.IDLE
        if previous != SessionState.IDLE:
            LOGGER.info("Beacon scan stopped (was %s)", previous)

    def evict_stale(self) -> int:
        if not self.deduplicating:
            return 0
        evicted = self._registry.evict_stale(
            now_ms=self._clock(),
            grace_period_ms=self._grace_period_ms,
        )
        if evicted:
            self.stats.evicted += len(evicted)
            LOGGER.debug("Evicted %d stale beacon(s): %s", len(evicted), ", ".join(evicted))
        return len(evicted)

    def _teardown(self) -> None:
        # Detach first so no advertisement sees a half-cleared registry.
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription.unsubscribe()
        ready_task, self._ready_task = self._ready_task, None
        if ready_task is not None and not ready_task.done():
            ready_task.cancel()
        self._registry.clear()
        self._sweep.cancel()
        if self._adapter.is_scanning:
            self._adapter.stop_scanning()

    def _handle_advertisement(self, advertisement: RawAdvertisement) -> None:
        if self._state != SessionState.SCANNING:
            return
        self.stats.received += 1
        record = self._decode(advertisement)
        if record is None:
            return
        self.stats.decoded += 1
        record = replace(record, last_seen=self._clock())
        key = dedup_key(record)
        if self.deduplicating and not self._registry.insert_if_absent(key, record):
            self.stats.suppressed += 1
            return
        self._dispatch(key, record)

    def _decode(self, advertisement: RawAdvertisement) -> Optional[BeaconRecord]:
        try:
            return self._decoder(advertisement)
        except Exception:
            LOGGER.exception("Decoder failed for advertisement from %s", advertisement.address)
            return None

    def _dispatch(self, key: str, record: BeaconRecord) -> None:
        consumer = self.on_advertisement
        if consumer is None:
            LOGGER.debug("No consumer registered; beacon %s not delivered", key)
            return
        self.stats.dispatched += 1
        try:
            consumer(record)
        except Exception:
            LOGGER.exception("Beacon consumer failed for %s", key)
