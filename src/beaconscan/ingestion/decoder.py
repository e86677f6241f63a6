from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable, Iterable, Mapping, Optional
import uuid

from ..models import BeaconRecord, BeaconType, RawAdvertisement, validate_beacon_record

LOGGER = logging.getLogger(__name__)

APPLE_COMPANY_ID = 0x004C
ESTIMOTE_COMPANY_ID = 0x015D
EDDYSTONE_SERVICE_UUID = "feaa"
ESTIMOTE_SERVICE_UUID = "fe9a"

_BASE_UUID_SUFFIX = "-0000-1000-8000-00805f9b34fb"

_EDDYSTONE_URL_SCHEMES = {
    0x00: "http://www.",
    0x01: "https://www.",
    0x02: "http://",
    0x03: "https://",
}

_EDDYSTONE_URL_EXPANSIONS = (
    ".com/",
    ".org/",
    ".edu/",
    ".net/",
    ".info/",
    ".biz/",
    ".gov/",
    ".com",
    ".org",
    ".edu",
    ".net",
    ".info",
    ".biz",
    ".gov",
)


@dataclass(frozen=True)
class BeaconDecodeError(ValueError):
    message: str

    def __str__(self) -> str:
        return self.message


def decode(advertisement: RawAdvertisement) -> Optional[BeaconRecord]:
    """Decode a raw advertisement into a BeaconRecord.

    Returns None for payloads that are not a recognized beacon or are
    malformed; this function never raises for bad input.
    """
    try:
        record = _decode(advertisement)
    except BeaconDecodeError as exc:
        LOGGER.debug("Dropping advertisement from %s: %s", advertisement.address, exc)
        return None
    if record is None:
        return None
    try:
        validate_beacon_record(record)
    except ValueError as exc:
        LOGGER.debug("Dropping advertisement from %s: %s", advertisement.address, exc)
        return None
    return record


class DecoderFilter:
    """Wrap a decoder and keep only records of the given beacon types."""

    def __init__(
        self,
        beacon_types: Iterable[str],
        decoder: Callable[[RawAdvertisement], Optional[BeaconRecord]] = decode,
    ) -> None:
        self.beacon_types = frozenset(beacon_types)
        unknown = self.beacon_types - BeaconType.ALL
        if unknown:
            raise ValueError(f"Unknown beacon types: {', '.join(sorted(unknown))}.")
        self._decoder = decoder

    def __call__(self, advertisement: RawAdvertisement) -> Optional[BeaconRecord]:
        record = self._decoder(advertisement)
        if record is None or record.beacon_type not in self.beacon_types:
            return None
        return record


def _decode(advertisement: RawAdvertisement) -> Optional[BeaconRecord]:
    apple = advertisement.manufacturer_data.get(APPLE_COMPANY_ID)
    if apple is not None and apple[:2] == b"\x02\x15":
        return _decode_ibeacon(advertisement, apple)

    eddystone = _find_service_data(advertisement.service_data, EDDYSTONE_SERVICE_UUID)
    if eddystone is not None:
        return _decode_eddystone(advertisement, eddystone)

    estimote = _find_service_data(advertisement.service_data, ESTIMOTE_SERVICE_UUID)
    if estimote is not None:
        return _decode_estimote_telemetry(advertisement, estimote)

    nearable = advertisement.manufacturer_data.get(ESTIMOTE_COMPANY_ID)
    if nearable is not None:
        return _decode_estimote_nearable(advertisement, nearable)

    return None


def _decode_ibeacon(advertisement: RawAdvertisement, data: bytes) -> BeaconRecord:
    # 02 15 | uuid(16) | major(2) | minor(2) | tx power(1)
    _require_length(data, 23, "iBeacon")
    beacon_uuid = str(uuid.UUID(bytes=bytes(data[2:18])))
    major = int.from_bytes(data[18:20], "big")
    minor = int.from_bytes(data[20:22], "big")
    tx_power = int.from_bytes(data[22:23], "big", signed=True)
    return BeaconRecord(
        id=f"{beacon_uuid}-{major}-{minor}",
        beacon_type=BeaconType.IBEACON,
        address=advertisement.address,
        rssi=advertisement.rssi,
        tx_power=tx_power,
        local_name=advertisement.local_name,
        payload={"uuid": beacon_uuid, "major": major, "minor": minor, "txPower": tx_power},
    )


def _decode_eddystone(advertisement: RawAdvertisement, data: bytes) -> Optional[BeaconRecord]:
    _require_length(data, 2, "Eddystone")
    frame_type = data[0]
    if frame_type == 0x00:
        return _decode_eddystone_uid(advertisement, data)
    if frame_type == 0x10:
        return _decode_eddystone_url(advertisement, data)
    if frame_type == 0x20:
        return _decode_eddystone_tlm(advertisement, data)
    return None


def _decode_eddystone_uid(advertisement: RawAdvertisement, data: bytes) -> BeaconRecord:
    _require_length(data, 18, "Eddystone-UID")
    tx_power = int.from_bytes(data[1:2], "big", signed=True)
    namespace = data[2:12].hex()
    instance = data[12:18].hex()
    return BeaconRecord(
        id=f"{namespace}-{instance}",
        beacon_type=BeaconType.EDDYSTONE_UID,
        address=advertisement.address,
        rssi=advertisement.rssi,
        tx_power=tx_power,
        local_name=advertisement.local_name,
        payload={"namespace": namespace, "instance": instance, "txPower": tx_power},
    )


def _decode_eddystone_url(advertisement: RawAdvertisement, data: bytes) -> BeaconRecord:
    _require_length(data, 3, "Eddystone-URL")
    tx_power = int.from_bytes(data[1:2], "big", signed=True)
    scheme = _EDDYSTONE_URL_SCHEMES.get(data[2])
    if scheme is None:
        raise BeaconDecodeError(f"Unknown Eddystone-URL scheme prefix 0x{data[2]:02x}.")
    parts = [scheme]
    for code in data[3:]:
        if code < len(_EDDYSTONE_URL_EXPANSIONS):
            parts.append(_EDDYSTONE_URL_EXPANSIONS[code])
        elif 0x21 <= code <= 0x7E:
            parts.append(chr(code))
        else:
            raise BeaconDecodeError(f"Invalid Eddystone-URL byte 0x{code:02x}.")
    url = "".join(parts)
    return BeaconRecord(
        id=advertisement.address,
        beacon_type=BeaconType.EDDYSTONE_URL,
        address=advertisement.address,
        rssi=advertisement.rssi,
        tx_power=tx_power,
        local_name=advertisement.local_name,
        payload={"url": url, "txPower": tx_power},
    )


def _decode_eddystone_tlm(advertisement: RawAdvertisement, data: bytes) -> BeaconRecord:
    version = data[1]
    if version != 0x00:
        raise BeaconDecodeError(f"Unsupported Eddystone-TLM version {version}.")
    _require_length(data, 14, "Eddystone-TLM")
    battery_mv = int.from_bytes(data[2:4], "big")
    # 8.8 fixed point, 0x8000 means not supported
    raw_temperature = int.from_bytes(data[4:6], "big", signed=True)
    temperature = None if raw_temperature == -0x8000 else raw_temperature / 256.0
    adv_count = int.from_bytes(data[6:10], "big")
    uptime_seconds = int.from_bytes(data[10:14], "big") / 10.0
    return BeaconRecord(
        id=advertisement.address,
        beacon_type=BeaconType.EDDYSTONE_TLM,
        address=advertisement.address,
        rssi=advertisement.rssi,
        local_name=advertisement.local_name,
        payload={
            "version": version,
            "batteryVoltage": battery_mv,
            "temperature": temperature,
            "advCount": adv_count,
            "secCount": uptime_seconds,
        },
    )


def _decode_estimote_telemetry(
    advertisement: RawAdvertisement, data: bytes
) -> Optional[BeaconRecord]:
    _require_length(data, 1, "Estimote")
    if data[0] & 0x0F != 0x02:
        return None
    _require_length(data, 10, "Estimote telemetry")
    protocol_version = (data[0] & 0xF0) >> 4
    telemetry_id = data[1:9].hex()
    subframe = "A" if data[9] & 0x03 == 0 else "B"
    return BeaconRecord(
        id=advertisement.address,
        beacon_type=BeaconType.ESTIMOTE_TELEMETRY,
        address=advertisement.address,
        rssi=advertisement.rssi,
        local_name=advertisement.local_name,
        telemetry_id=telemetry_id,
        payload={
            "telemetryId": telemetry_id,
            "protocolVersion": protocol_version,
            "subFrameType": subframe,
            "raw": data[10:].hex(),
        },
    )


def _decode_estimote_nearable(advertisement: RawAdvertisement, data: bytes) -> Optional[BeaconRecord]:
    _require_length(data, 1, "Estimote nearable")
    if data[0] != 0x01:
        return None
    _require_length(data, 9, "Estimote nearable")
    nearable_id = data[1:9].hex()
    return BeaconRecord(
        id=nearable_id,
        beacon_type=BeaconType.ESTIMOTE_NEARABLE,
        address=advertisement.address,
        rssi=advertisement.rssi,
        local_name=advertisement.local_name,
        payload={"nearableId": nearable_id, "raw": data[9:].hex()},
    )


def _find_service_data(service_data: Mapping[str, bytes], short_uuid: str) -> Optional[bytes]:
    full_uuid = f"0000{short_uuid}{_BASE_UUID_SUFFIX}"
    for key, value in service_data.items():
        if key.lower() in (short_uuid, full_uuid):
            return value
    return None


def _require_length(data: bytes, minimum: int, label: str) -> None:
    if len(data) < minimum:
        raise BeaconDecodeError(
            f"{label} payload too short: expected at least {minimum} bytes, got {len(data)}."
        )
