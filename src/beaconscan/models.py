from __future__ import annotations

from dataclasses import dataclass, field
import math
from typing import Mapping, Optional, Sequence


class BeaconType:
    IBEACON = "iBeacon"
    EDDYSTONE_UID = "eddystoneUid"
    EDDYSTONE_URL = "eddystoneUrl"
    EDDYSTONE_TLM = "eddystoneTlm"
    ESTIMOTE_TELEMETRY = "estimoteTelemetry"
    ESTIMOTE_NEARABLE = "estimoteNearable"

    ALL = frozenset(
        {
            IBEACON,
            EDDYSTONE_UID,
            EDDYSTONE_URL,
            EDDYSTONE_TLM,
            ESTIMOTE_TELEMETRY,
            ESTIMOTE_NEARABLE,
        }
    )


@dataclass(frozen=True)
class RawAdvertisement:
    """One advertisement as reported by the adapter, before decoding."""

    address: str
    rssi: Optional[float] = None
    local_name: Optional[str] = None
    tx_power: Optional[int] = None
    manufacturer_data: Mapping[int, bytes] = field(default_factory=dict)
    service_data: Mapping[str, bytes] = field(default_factory=dict)
    service_uuids: Sequence[str] = field(default_factory=tuple)
    timestamp: Optional[float] = None


@dataclass(frozen=True)
class BeaconRecord:
    id: str
    beacon_type: str
    address: Optional[str] = None
    rssi: Optional[float] = None
    tx_power: Optional[int] = None
    local_name: Optional[str] = None
    telemetry_id: Optional[str] = None
    payload: Mapping[str, object] = field(default_factory=dict)
    last_seen: Optional[int] = None

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "id": self.id,
            "beaconType": self.beacon_type,
            "address": self.address,
            "rssi": self.rssi,
            "txPower": self.tx_power,
            "localName": self.local_name,
            "lastSeen": self.last_seen,
        }
        if self.telemetry_id is not None:
            data["telemetryId"] = self.telemetry_id
        data[self.beacon_type] = dict(self.payload)
        return data


def dedup_key(record: BeaconRecord) -> str:
    """Return the identity used to decide whether two sightings are the same beacon."""
    if record.beacon_type == BeaconType.ESTIMOTE_TELEMETRY and record.telemetry_id:
        return record.telemetry_id
    return record.id


def validate_beacon_record(record: BeaconRecord) -> None:
    if not record.id:
        raise ValueError("Beacon record id must be set.")
    if record.beacon_type not in BeaconType.ALL:
        raise ValueError(f"Unknown beacon type: {record.beacon_type!r}.")
    if record.rssi is not None and not math.isfinite(record.rssi):
        raise ValueError("Beacon rssi must be a finite number when provided.")
    if record.last_seen is not None and record.last_seen < 0:
        raise ValueError("Beacon last_seen must be non-negative.")
