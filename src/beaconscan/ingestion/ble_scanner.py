from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import time
from typing import Callable, Iterable, List, Mapping, Optional, Sequence, Set

from ..adapter import (
    AdapterState,
    AdvertisementListener,
    ScanStartError,
    StateListener,
    Subscription,
)
from ..models import RawAdvertisement

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class BleakScannerAdapterError(RuntimeError):
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class BleakScannerConfig:
    adapter_name: str = "ble"
    device: Optional[str] = None
    offline: bool = False
    offline_payloads: Sequence[Mapping[str, object]] = field(default_factory=tuple)
    offline_interval_seconds: float = 0.0


class BleakScannerAdapter:
    """Stream BLE advertisements from bleak, or replay offline payloads.

    Must be used from within a running event loop; bleak delivers detection
    callbacks on that loop, so subscribers never run concurrently.
    """

    def __init__(self, config: BleakScannerConfig) -> None:
        self._config = config
        self._state = AdapterState.UNKNOWN
        self._state_listeners: List[StateListener] = []
        self._subscribers: List[AdvertisementListener] = []
        self._scanner: Optional[object] = None
        self._replay_task: Optional[asyncio.Task[None]] = None
        self._probe_task: Optional[asyncio.Task[str]] = None
        self._pending_stops: Set[asyncio.Task[None]] = set()
        self._scanning = False

    @property
    def name(self) -> str:
        return self._config.adapter_name

    @property
    def state(self) -> str:
        return self._state

    @property
    def is_scanning(self) -> bool:
        return self._scanning

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]:
        self._state_listeners.append(listener)
        if self._state != AdapterState.POWERED_ON and (
            self._probe_task is None or self._probe_task.done()
        ):
            self._probe_task = asyncio.get_running_loop().create_task(self.probe())

        def remove() -> None:
            if listener in self._state_listeners:
                self._state_listeners.remove(listener)

        return remove

    async def probe(self) -> str:
        """Check whether the adapter can scan and report the result to listeners."""
        if self._config.offline:
            state = AdapterState.POWERED_ON
        else:
            try:
                state = await self._probe_bleak()
            except Exception:
                LOGGER.exception("Probing Bluetooth adapter %s failed", self.name)
                state = AdapterState.UNSUPPORTED
        self._set_state(state)
        return state

    async def start_scanning(self) -> None:
        if self._scanning:
            return
        if self._config.offline:
            try:
                payloads = self._normalize_offline_payloads()
            except BleakScannerAdapterError as exc:
                raise ScanStartError(str(exc)) from exc
            self._replay_task = asyncio.get_running_loop().create_task(self._replay(payloads))
        else:
            await self._start_bleak()
        self._scanning = True
        LOGGER.info("Scanning started on %s", self.name)

    def stop_scanning(self) -> None:
        if not self._scanning:
            return
        self._scanning = False
        replay_task, self._replay_task = self._replay_task, None
        if replay_task is not None:
            replay_task.cancel()
        scanner, self._scanner = self._scanner, None
        if scanner is not None:
            task = asyncio.get_running_loop().create_task(self._stop_bleak(scanner))
            self._pending_stops.add(task)
            task.add_done_callback(self._pending_stops.discard)
        LOGGER.info("Scanning stopped on %s", self.name)

    async def aclose(self) -> None:
        """Stop scanning and wait for the underlying scanner to shut down."""
        self.stop_scanning()
        if self._pending_stops:
            await asyncio.gather(*self._pending_stops, return_exceptions=True)

    def subscribe(self, listener: AdvertisementListener) -> Subscription:
        self._subscribers.append(listener)

        def release() -> None:
            if listener in self._subscribers:
                self._subscribers.remove(listener)

        return Subscription(release)

    def _set_state(self, state: str) -> None:
        if state != self._state:
            LOGGER.info("Adapter %s state: %s -> %s", self.name, self._state, state)
        self._state = state
        for listener in list(self._state_listeners):
            listener(state)

    def _emit(self, advertisement: RawAdvertisement) -> None:
        for listener in list(self._subscribers):
            try:
                listener(advertisement)
            except Exception:
                LOGGER.exception("Advertisement subscriber failed for %s", advertisement.address)

    def _scanner_kwargs(self) -> dict[str, object]:
        kwargs: dict[str, object] = {}
        if self._config.device:
            kwargs["adapter"] = self._config.device
        return kwargs

    async def _probe_bleak(self) -> str:
        from bleak import BleakScanner
        from bleak.exc import BleakError

        try:
            scanner = BleakScanner(**self._scanner_kwargs())
            await scanner.start()
            await scanner.stop()
        except BleakError as exc:
            LOGGER.warning("Bluetooth adapter %s not available: %s", self.name, exc)
            return AdapterState.POWERED_OFF
        except OSError as exc:
            LOGGER.warning("Bluetooth adapter %s unsupported: %s", self.name, exc)
            return AdapterState.UNSUPPORTED
        return AdapterState.POWERED_ON

    async def _start_bleak(self) -> None:
        from bleak import BleakScanner
        from bleak.exc import BleakError

        try:
            scanner = BleakScanner(detection_callback=self._on_detection, **self._scanner_kwargs())
            await scanner.start()
        except (BleakError, OSError) as exc:
            raise ScanStartError(f"Failed to start scanning on {self.name}: {exc}") from exc
        self._scanner = scanner

    async def _stop_bleak(self, scanner: object) -> None:
        try:
            await scanner.stop()  # type: ignore[attr-defined]
        except Exception:
            LOGGER.warning("Failed to stop scanner on %s", self.name, exc_info=True)

    def _on_detection(self, device: object, advertisement: object) -> None:
        if not self._scanning:
            return
        normalized = _normalize_discovery(device, advertisement, time.time())
        if normalized is None:
            LOGGER.debug("Skipping BLE discovery without an address")
            return
        self._emit(normalized)

    async def _replay(self, payloads: Sequence[RawAdvertisement]) -> None:
        interval = max(self._config.offline_interval_seconds, 0.0)
        for advertisement in payloads:
            if not self._scanning:
                return
            self._emit(advertisement)
            await asyncio.sleep(interval)

    def _normalize_offline_payloads(self) -> List[RawAdvertisement]:
        normalized: List[RawAdvertisement] = []
        for idx, item in enumerate(self._config.offline_payloads):
            if not isinstance(item, Mapping):
                raise BleakScannerAdapterError(
                    f"Offline BLE payload #{idx} must be a mapping."
                )
            address = _optional_str(item.get("address"))
            if not address:
                raise BleakScannerAdapterError(
                    f"Offline BLE payload #{idx} must include address."
                )
            manufacturer_data = _normalize_manufacturer_data(
                _require_payload_mapping(item, "manufacturer_data", idx)
            )
            service_data = _normalize_service_data(
                _require_payload_mapping(item, "service_data", idx)
            )
            normalized.append(
                RawAdvertisement(
                    address=address,
                    rssi=_resolve_rssi(item, None),
                    local_name=_optional_str(item.get("local_name")),
                    tx_power=_coerce_int(item.get("tx_power")),
                    manufacturer_data=manufacturer_data,
                    service_data=service_data,
                    service_uuids=tuple(str(value).lower() for value in item.get("service_uuids", ()) or ()),
                    timestamp=_coerce_float(item.get("timestamp")),
                )
            )
        return normalized


def _require_payload_mapping(item: Mapping[str, object], key: str, idx: int) -> Mapping[object, object]:
    value = item.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise BleakScannerAdapterError(
            f"Offline BLE payload #{idx} field {key} must be a mapping."
        )
    return value


def _normalize_discovery(
    device: object, advertisement: Optional[object], timestamp: float
) -> Optional[RawAdvertisement]:
    address = _resolve_device_identifier(device)
    if not address:
        return None
    local_name = _optional_str(getattr(advertisement, "local_name", None)) or _optional_str(
        getattr(device, "name", None)
    )
    service_uuids = getattr(advertisement, "service_uuids", None) or ()
    return RawAdvertisement(
        address=address,
        rssi=_resolve_rssi(device, advertisement),
        local_name=local_name,
        tx_power=_coerce_int(getattr(advertisement, "tx_power", None)),
        manufacturer_data=_normalize_manufacturer_data(
            _extract_mapping(advertisement, device, "manufacturer_data")
        ),
        service_data=_normalize_service_data(
            _extract_mapping(advertisement, device, "service_data")
        ),
        service_uuids=tuple(str(value).lower() for value in service_uuids),
        timestamp=timestamp,
    )


def _optional_str(value: object) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    return None


def _resolve_device_identifier(device: object) -> Optional[str]:
    identifier = _optional_str(getattr(device, "address", None))
    if identifier:
        return identifier
    metadata = getattr(device, "metadata", None)
    if isinstance(metadata, Mapping):
        return _optional_str(metadata.get("identifier"))
    return None


def _resolve_rssi(device: object, advertisement: Optional[object]) -> Optional[float]:
    candidates = [getattr(advertisement, "rssi", None), getattr(device, "rssi", None)]
    if isinstance(device, Mapping):
        candidates.insert(0, device.get("rssi"))
    for candidate in candidates:
        value = _coerce_float(candidate)
        if value is not None:
            return value
    return None


def _extract_mapping(
    advertisement: Optional[object], device: object, key: str
) -> Mapping[object, object]:
    data = getattr(advertisement, key, None)
    if isinstance(data, Mapping):
        return data
    metadata = getattr(device, "metadata", None)
    if isinstance(metadata, Mapping) and isinstance(metadata.get(key), Mapping):
        return metadata[key]
    return {}


def _normalize_manufacturer_data(manufacturer_data: Mapping[object, object]) -> dict[int, bytes]:
    normalized: dict[int, bytes] = {}
    for company_id, data in manufacturer_data.items():
        company_int = _coerce_int(company_id)
        if company_int is None:
            continue
        data_bytes = _coerce_bytes(data)
        if data_bytes is None:
            continue
        normalized[company_int] = data_bytes
    return normalized


def _normalize_service_data(service_data: Mapping[object, object]) -> dict[str, bytes]:
    normalized: dict[str, bytes] = {}
    for uuid_value, data in service_data.items():
        data_bytes = _coerce_bytes(data)
        if data_bytes is None:
            continue
        if isinstance(uuid_value, int):
            key = f"{uuid_value:04x}"
        else:
            key = str(uuid_value).lower()
        normalized[key] = data_bytes
    return normalized


def _coerce_int(value: object) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError:
            return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _coerce_float(value: object) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _coerce_bytes(value: object) -> Optional[bytes]:
    if isinstance(value, bytes):
        return value
    if isinstance(value, bytearray):
        return bytes(value)
    if isinstance(value, str):
        try:
            return bytes.fromhex(value)
        except ValueError:
            return None
    if isinstance(value, Iterable):
        try:
            return bytes(int(item) for item in value)
        except (TypeError, ValueError):
            return None
    return None
