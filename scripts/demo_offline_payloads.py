#!/usr/bin/env python3
"""Write demo beacon advertisements for ``beaconscan --offline-payloads``."""

from __future__ import annotations

import argparse
import json
import time
from pathlib import Path

IBEACON_UUID = "e2c56db5dffb48d2b060d0f5a71096e0"


def build_payloads(repeats: int) -> list[dict]:
    now = time.time()
    payloads = []
    for idx in range(repeats):
        payloads.append(
            {
                "timestamp": now + idx,
                "address": "AA:BB:CC:DD:EE:01",
                "rssi": -58 - idx % 3,
                "manufacturer_data": {"0x004C": f"0215{IBEACON_UUID}00010002c5"},
            }
        )
        payloads.append(
            {
                "timestamp": now + idx,
                "address": "AA:BB:CC:DD:EE:02",
                "rssi": -71,
                "service_data": {"feaa": "00ee00112233445566778899aabbccddeeff0000"},
            }
        )
        payloads.append(
            {
                "timestamp": now + idx,
                "address": "AA:BB:CC:DD:EE:03",
                "rssi": -66,
                "service_data": {"fe9a": "220102030405060708" + f"{idx % 2:02x}" + "ffff"},
            }
        )
    return payloads


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--out", default="demo_payloads.json")
    parser.add_argument("--repeats", type=int, default=5)
    args = parser.parse_args()

    path = Path(args.out)
    path.write_text(json.dumps(build_payloads(max(args.repeats, 1)), indent=2), encoding="utf-8")
    print(f"Wrote {path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
