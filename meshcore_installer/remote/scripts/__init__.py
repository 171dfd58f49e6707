# Helper scripts executed on the target device.
#
# These are not imported locally.  They are read as text, copied over the
# session and run with the bridge venv interpreter on the device.
#
# Scripts in this package:
# - ble_scan.py: passive BLE scan via bleak, JSON sightings on stdout

from __future__ import annotations

from pathlib import Path

_SCRIPTS_DIR = Path(__file__).parent


def load_script(name: str) -> str:
    """Return the source of the helper script *name* (e.g. ``"ble_scan.py"``)."""
    return (_SCRIPTS_DIR / name).read_text(encoding="utf-8")
