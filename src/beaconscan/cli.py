from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Mapping, Optional, Sequence

from .adapter import ScanError
from .config import ScannerConfig
from .ingestion.ble_scanner import BleakScannerAdapter, BleakScannerConfig
from .ingestion.decoder import DecoderFilter, decode
from .models import BeaconRecord, BeaconType
from .session import ScanSession

LOGGER = logging.getLogger(__name__)


def _load_config(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def _require_mapping(value: object, label: str) -> Mapping[str, object]:
    if not isinstance(value, Mapping):
        raise ValueError(f"{label} must be an object.")
    return value


def _require_sequence(value: object, label: str) -> Sequence[object]:
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        raise ValueError(f"{label} must be a list.")
    return value


def _require_float(value: object, label: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{label} must be numeric.")


def _require_non_negative_int(value: object, label: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{label} must be a non-negative integer.")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{label} must be a non-negative integer.")
    if number < 0 or number != value:
        raise ValueError(f"{label} must be a non-negative integer.")
    return number


def _optional_str(value: object) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    return None


def _parse_beacon_types(value: object, label: str) -> tuple[str, ...]:
    types = tuple(str(item) for item in _require_sequence(value, label))
    unknown = sorted(set(types) - BeaconType.ALL)
    if unknown:
        raise ValueError(f"{label} contains unknown beacon types: {', '.join(unknown)}.")
    return types


def _parse_adapter_config(payload: Mapping[str, object]) -> BleakScannerConfig:
    offline_payloads = _require_sequence(
        payload.get("offline_payloads", []), "adapter.offline_payloads"
    )
    return BleakScannerConfig(
        adapter_name=str(payload.get("adapter_name", "ble")),
        device=_optional_str(payload.get("device")),
        offline=bool(payload.get("offline", False)),
        offline_payloads=tuple(
            _require_mapping(item, f"adapter.offline_payloads[{idx}]")
            for idx, item in enumerate(offline_payloads)
        ),
        offline_interval_seconds=_require_float(
            payload.get("offline_interval_seconds", 0.0),
            "adapter.offline_interval_seconds",
        ),
    )


def _parse_scanner_config(config: Mapping[str, object]) -> ScannerConfig:
    adapter_payload = _require_mapping(config.get("adapter", {}), "adapter")
    return ScannerConfig(
        grace_period_ms=_require_non_negative_int(
            config.get("grace_period_ms", 0), "grace_period_ms"
        ),
        beacon_types=_parse_beacon_types(config.get("beacon_types", []), "beacon_types"),
        adapter=_parse_adapter_config(adapter_payload),
    )


def _apply_overrides(config: ScannerConfig, args: argparse.Namespace) -> ScannerConfig:
    grace_period_ms = config.grace_period_ms
    if args.grace_period is not None:
        grace_period_ms = _require_non_negative_int(args.grace_period, "--grace-period")
    beacon_types = tuple(config.beacon_types)
    if args.beacon_types:
        beacon_types = _parse_beacon_types(args.beacon_types, "--type")
    adapter = config.adapter
    if args.offline_payloads:
        payloads = _require_sequence(
            _load_config(Path(args.offline_payloads)), "offline payloads"
        )
        adapter = BleakScannerConfig(
            adapter_name=adapter.adapter_name,
            device=adapter.device,
            offline=True,
            offline_payloads=tuple(
                _require_mapping(item, f"offline payloads[{idx}]")
                for idx, item in enumerate(payloads)
            ),
            offline_interval_seconds=adapter.offline_interval_seconds,
        )
    return ScannerConfig(
        grace_period_ms=grace_period_ms,
        beacon_types=beacon_types,
        adapter=adapter,
    )


def _emit_ndjson(record: BeaconRecord) -> None:
    print(json.dumps(record.to_dict()), flush=True)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


async def _run(config: ScannerConfig, duration_seconds: float) -> int:
    adapter = BleakScannerAdapter(config.adapter)
    decoder = DecoderFilter(config.beacon_types) if config.beacon_types else decode
    session = ScanSession(adapter, decoder=decoder, on_advertisement=_emit_ndjson)
    try:
        await session.start(config.grace_period_ms)
    except ScanError as exc:
        LOGGER.error("Unable to start scanning: %s", exc)
        await adapter.aclose()
        return 1

    try:
        if duration_seconds > 0:
            await asyncio.sleep(duration_seconds)
        else:
            await asyncio.Event().wait()
    finally:
        session.stop()
        await adapter.aclose()
        stats = session.stats
        LOGGER.info(
            "Scan finished: received=%d decoded=%d dispatched=%d suppressed=%d evicted=%d",
            stats.received,
            stats.decoded,
            stats.dispatched,
            stats.suppressed,
            stats.evicted,
        )
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Scan for BLE beacons and print de-duplicated sightings as NDJSON."
    )
    parser.add_argument(
        "--config",
        help="Path to a JSON configuration file.",
    )
    parser.add_argument(
        "--grace-period",
        type=int,
        default=None,
        help="Milliseconds to suppress repeat sightings of a beacon (0 = report every sighting).",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=0.0,
        help="Stop after N seconds (0 = run until interrupted).",
    )
    parser.add_argument(
        "--type",
        dest="beacon_types",
        action="append",
        choices=sorted(BeaconType.ALL),
        help="Only report this beacon type; may be repeated.",
    )
    parser.add_argument(
        "--offline-payloads",
        help="Replay advertisements from a JSON list instead of using the radio.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (default: INFO).",
    )
    args = parser.parse_args(argv)

    _configure_logging(args.log_level)

    config_map: Mapping[str, object] = {}
    if args.config:
        config_path = Path(args.config)
        if not config_path.exists():
            raise FileNotFoundError(f"Config not found: {config_path}")
        config_map = _require_mapping(_load_config(config_path), "config")
    config = _apply_overrides(_parse_scanner_config(config_map), args)

    try:
        return asyncio.run(_run(config, max(args.duration, 0.0)))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
