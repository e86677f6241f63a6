"""Adapter and decoder implementations for BLE beacon scanning."""

from .ble_scanner import (
    BleakScannerAdapter,
    BleakScannerAdapterError,
    BleakScannerConfig,
)
from .decoder import BeaconDecodeError, DecoderFilter, decode

__all__ = [
    "BeaconDecodeError",
    "BleakScannerAdapter",
    "BleakScannerAdapterError",
    "BleakScannerConfig",
    "DecoderFilter",
    "decode",
]
