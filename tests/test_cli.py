from __future__ import annotations

import json
from pathlib import Path

import bleak
from bleak.exc import BleakError
import pytest

from beaconscan.cli import _parse_scanner_config, main
from beaconscan.models import BeaconType

IBEACON_HEX = "0215e2c56db5dffb48d2b060d0f5a71096e000010002c5"


def test_parse_scanner_config_reads_adapter_settings() -> None:
    config = _parse_scanner_config(
        {
            "grace_period_ms": 5000,
            "beacon_types": ["iBeacon"],
            "adapter": {
                "adapter_name": "lab",
                "device": "hci1",
                "offline": True,
                "offline_payloads": [{"address": "A"}],
                "offline_interval_seconds": 0.5,
            },
        }
    )

    assert config.grace_period_ms == 5000
    assert tuple(config.beacon_types) == (BeaconType.IBEACON,)
    assert config.adapter.adapter_name == "lab"
    assert config.adapter.device == "hci1"
    assert config.adapter.offline is True
    assert config.adapter.offline_payloads == ({"address": "A"},)
    assert config.adapter.offline_interval_seconds == 0.5


def test_parse_scanner_config_defaults() -> None:
    config = _parse_scanner_config({})

    assert config.grace_period_ms == 0
    assert tuple(config.beacon_types) == ()
    assert config.adapter.offline is False


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"grace_period_ms": -5}, "grace_period_ms"),
        ({"grace_period_ms": 1.5}, "grace_period_ms"),
        ({"beacon_types": ["bogus"]}, "beacon_types"),
        ({"adapter": []}, "adapter"),
        ({"adapter": {"offline_payloads": ["x"]}}, "adapter.offline_payloads[0]"),
    ],
)
def test_parse_scanner_config_rejects_invalid_values(payload: dict, message: str) -> None:
    with pytest.raises(ValueError) as excinfo:
        _parse_scanner_config(payload)

    assert message in str(excinfo.value)


def test_main_replays_offline_payloads_as_ndjson(tmp_path: Path, capsys) -> None:
    payloads_path = tmp_path / "payloads.json"
    payloads_path.write_text(
        json.dumps(
            [
                {"address": "A1", "rssi": -40, "manufacturer_data": {"76": IBEACON_HEX}},
                {"address": "A1", "rssi": -41, "manufacturer_data": {"76": IBEACON_HEX}},
            ]
        ),
        encoding="utf-8",
    )

    exit_code = main(
        [
            "--offline-payloads",
            str(payloads_path),
            "--grace-period",
            "10000",
            "--duration",
            "0.05",
            "--log-level",
            "WARNING",
        ]
    )

    assert exit_code == 0
    lines = [line for line in capsys.readouterr().out.splitlines() if line.strip()]
    assert len(lines) == 1
    record = json.loads(lines[0])
    assert record["beaconType"] == "iBeacon"
    assert record["id"] == "e2c56db5-dffb-48d2-b060-d0f5a71096e0-1-2"
    assert record["lastSeen"] > 0


def test_main_reports_start_failure(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps({"adapter": {"offline": True, "offline_payloads": [{"rssi": -40}]}}),
        encoding="utf-8",
    )

    assert main(["--config", str(config_path), "--duration", "0.01"]) == 1


def test_main_reports_unavailable_bluetooth_backend(monkeypatch) -> None:
    def unsupported_scanner(*args, **kwargs):
        raise BleakError("Unsupported platform")

    monkeypatch.setattr(bleak, "BleakScanner", unsupported_scanner)

    assert main(["--duration", "0.01", "--log-level", "WARNING"]) == 1


def test_main_requires_existing_config(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        main(["--config", str(tmp_path / "missing.json")])
