from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from .ingestion.ble_scanner import BleakScannerConfig


@dataclass(frozen=True)
class ScannerConfig:
    """Settings for one scan session.

    ``grace_period_ms`` of 0 disables de-duplication. An empty
    ``beacon_types`` accepts every supported beacon family.
    """

    grace_period_ms: int = 0
    beacon_types: Sequence[str] = field(default_factory=tuple)
    adapter: BleakScannerConfig = field(default_factory=BleakScannerConfig)
