#!/usr/bin/env python3
"""Passive BLE scan, run on the target device.

Copied to the device and executed with the bridge's venv interpreter, which
has bleak installed.  Prints one JSON document on stdout:

    {"status": "ok", "sightings": [{"address": ..., "name": ..., "rssi": ...}, ...]}

Sightings are reported in arrival order, repeats included; the installer
does the deduplication and ranking.  If the adapter is missing or access is
denied, prints ``{"status": "error", "error": "..."}`` and exits 2.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

UNKNOWN_NAME = "Unknown"


async def scan(duration: float) -> list[dict]:
    from bleak import BleakScanner

    sightings: list[dict] = []

    def on_advertisement(device, adv) -> None:
        sightings.append({
            "address": device.address,
            "name": device.name or adv.local_name or UNKNOWN_NAME,
            "rssi": getattr(adv, "rssi", None),
        })

    scanner = BleakScanner(detection_callback=on_advertisement)
    await scanner.start()
    try:
        await asyncio.sleep(duration)
    finally:
        await scanner.stop()
    return sightings


def main() -> int:
    parser = argparse.ArgumentParser(description="Passive BLE scan")
    parser.add_argument("--duration", type=float, default=10.0)
    args = parser.parse_args()

    try:
        from bleak.exc import BleakError
    except ImportError as exc:
        print(json.dumps({"status": "error", "error": f"bleak unavailable: {exc}"}))
        return 2

    try:
        sightings = asyncio.run(scan(args.duration))
    except (BleakError, OSError) as exc:
        print(json.dumps({"status": "error", "error": str(exc) or type(exc).__name__}))
        return 2

    print(json.dumps({"status": "ok", "sightings": sightings}))
    return 0


if __name__ == "__main__":
    sys.exit(main())
