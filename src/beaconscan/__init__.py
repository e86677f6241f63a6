"""Discover BLE beacons and deliver de-duplicated sightings."""

from .adapter import (
    AdapterError,
    AdapterGate,
    AdapterState,
    ScanAbortedError,
    ScanAdapter,
    ScanError,
    ScanStartError,
    Subscription,
)
from .config import ScannerConfig
from .ingestion import BleakScannerAdapter, BleakScannerConfig, DecoderFilter, decode
from .models import (
    BeaconRecord,
    BeaconType,
    RawAdvertisement,
    dedup_key,
    validate_beacon_record,
)
from .registry import BeaconRegistry
from .session import ScanSession, SessionState, SessionStats, SweepTimer

__all__ = [
    "AdapterError",
    "AdapterGate",
    "AdapterState",
    "BeaconRecord",
    "BeaconRegistry",
    "BeaconType",
    "BleakScannerAdapter",
    "BleakScannerConfig",
    "DecoderFilter",
    "RawAdvertisement",
    "ScanAbortedError",
    "ScanAdapter",
    "ScanError",
    "ScanSession",
    "ScanStartError",
    "ScannerConfig",
    "SessionState",
    "SessionStats",
    "Subscription",
    "SweepTimer",
    "decode",
    "dedup_key",
    "validate_beacon_record",
]
