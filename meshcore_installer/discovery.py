"""Device discovery on the target host.

Finds candidate transports for the MeshCore companion radio:
  - Serial: USB-serial and ACM device nodes under /dev
  - BLE:    a timed passive scan run on the device itself

BLE sightings are deduplicated (first sighting of an address wins), split
into a priority group (names that look like companion hardware) and an
"other" group, and each group is sorted by signal strength.  The priority
group always comes first; the other group is capped so the selection menu
stays short in noisy environments.
"""

from __future__ import annotations

import json
import logging
import shlex
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Sequence

from meshcore_installer.config import (
    DEFAULT_SCAN_SECONDS,
    OTHER_DEVICE_LIMIT,
    PRIORITY_KEYWORDS,
)
from meshcore_installer.errors import (
    CommandTimeoutError,
    RemoteCommandError,
    ScanError,
    TransferError,
)
from meshcore_installer.remote.scripts import load_script
from meshcore_installer.remote.session import RemoteSession

logger = logging.getLogger(__name__)

SERIAL_GLOBS: tuple[str, ...] = ("/dev/ttyUSB*", "/dev/ttyACM*")
UNKNOWN_NAME = "Unknown"
SCAN_GRACE_SECONDS = 15.0
BLE_SCAN_SCRIPT = "ble_scan.py"


@dataclass(frozen=True)
class DeviceCandidate:
    address: str
    display_name: str = UNKNOWN_NAME
    signal_strength: int | None = None

    @property
    def label(self) -> str:
        rssi = f" RSSI:{self.signal_strength}" if self.signal_strength is not None else ""
        return f"{self.display_name} ({self.address}){rssi}"


@dataclass
class RankedCandidates:
    """Priority group followed by the (capped) other group."""

    priority: list[DeviceCandidate] = field(default_factory=list)
    other: list[DeviceCandidate] = field(default_factory=list)

    @property
    def candidates(self) -> list[DeviceCandidate]:
        return self.priority + self.other

    def is_priority(self, candidate: DeviceCandidate) -> bool:
        return candidate in self.priority

    def __iter__(self) -> Iterator[DeviceCandidate]:
        return iter(self.candidates)

    def __len__(self) -> int:
        return len(self.priority) + len(self.other)


# ── Ranking ───────────────────────────────────────────────────────


def is_priority_name(name: str, keywords: Iterable[str] = PRIORITY_KEYWORDS) -> bool:
    """Case-insensitive substring match of *name* against *keywords*."""
    upper = name.upper()
    return any(keyword.upper() in upper for keyword in keywords)


def dedupe_candidates(candidates: Iterable[DeviceCandidate]) -> list[DeviceCandidate]:
    """Keep the first sighting of each address, in sighting order."""
    seen: set[str] = set()
    unique: list[DeviceCandidate] = []
    for candidate in candidates:
        if candidate.address in seen:
            continue
        seen.add(candidate.address)
        unique.append(candidate)
    return unique


def partition_candidates(
    candidates: Iterable[DeviceCandidate],
    keywords: Iterable[str] = PRIORITY_KEYWORDS,
) -> tuple[list[DeviceCandidate], list[DeviceCandidate]]:
    """Split into (priority, other); every candidate lands in exactly one."""
    keywords = tuple(keywords)
    priority: list[DeviceCandidate] = []
    other: list[DeviceCandidate] = []
    for candidate in candidates:
        if is_priority_name(candidate.display_name, keywords):
            priority.append(candidate)
        else:
            other.append(candidate)
    return priority, other


def _by_signal(candidates: list[DeviceCandidate]) -> list[DeviceCandidate]:
    # Missing RSSI sorts below any measured value; ties keep sighting order
    return sorted(
        candidates,
        key=lambda c: c.signal_strength if c.signal_strength is not None else float("-inf"),
        reverse=True,
    )


def rank_candidates(
    candidates: Iterable[DeviceCandidate],
    keywords: Iterable[str] = PRIORITY_KEYWORDS,
    other_limit: int = OTHER_DEVICE_LIMIT,
    drop_unnamed: bool = True,
) -> RankedCandidates:
    """Deduplicate, classify and sort scan results.

    Args:
        candidates:   Sightings in arrival order, repeats allowed.
        keywords:     Name fragments that mark likely companion hardware.
        other_limit:  Maximum size of the non-priority group.
        drop_unnamed: Leave out non-priority devices that advertised no name.
    """
    priority, other = partition_candidates(dedupe_candidates(candidates), keywords)
    if drop_unnamed:
        other = [c for c in other if c.display_name != UNKNOWN_NAME]
    return RankedCandidates(
        priority=_by_signal(priority),
        other=_by_signal(other)[:max(other_limit, 0)],
    )


def parse_scan_output(output: str) -> list[DeviceCandidate]:
    """Parse the JSON document printed by the remote scan helper.

    Raises:
        ScanError: if the helper reported a failure or printed garbage.
    """
    try:
        payload: Any = json.loads(output.strip().splitlines()[-1])
    except (IndexError, ValueError) as exc:
        raise ScanError(f"Unreadable BLE scan output: {output.strip()[:200]!r}") from exc
    if not isinstance(payload, dict):
        raise ScanError(f"Unexpected BLE scan output: {output.strip()[:200]!r}")

    if payload.get("status") != "ok":
        raise ScanError(f"BLE scan unavailable: {payload.get('error', 'unknown error')}")

    records = payload.get("sightings", [])
    if not isinstance(records, list):
        raise ScanError(f"Malformed BLE sightings: {records!r}")

    sightings: list[DeviceCandidate] = []
    for record in records:
        if not isinstance(record, dict):
            raise ScanError(f"Malformed BLE sighting: {record!r}")
        address = record.get("address")
        if not address:
            continue
        rssi = record.get("rssi")
        try:
            signal = int(rssi) if rssi is not None else None
        except (TypeError, ValueError) as exc:
            raise ScanError(f"Malformed RSSI for {address}: {rssi!r}") from exc
        sightings.append(DeviceCandidate(
            address=str(address),
            display_name=str(record.get("name") or UNKNOWN_NAME),
            signal_strength=signal,
        ))
    return sightings


# ── Remote discovery ──────────────────────────────────────────────


class DeviceDiscovery:
    """Enumerate serial ports and scan for BLE devices on the remote host."""

    def __init__(
        self,
        session: RemoteSession,
        install_dir: str,
        keywords: Sequence[str] = PRIORITY_KEYWORDS,
        other_limit: int = OTHER_DEVICE_LIMIT,
        install_scanner: bool = True,
    ) -> None:
        self._session = session
        self.install_dir = install_dir
        self.keywords = tuple(keywords)
        self.other_limit = other_limit
        self.install_scanner = install_scanner

    @property
    def python(self) -> str:
        return f"{self.install_dir}/venv/bin/python"

    @property
    def script_path(self) -> str:
        return f"{self.install_dir}/.{BLE_SCAN_SCRIPT}"

    async def list_serial_paths(self) -> list[str]:
        """Return serial device nodes, USB-serial before ACM, without duplicates.

        An empty list means nothing is plugged in; that is not an error.
        """
        globs = " ".join(SERIAL_GLOBS)
        result = await self._session.run(
            f'for p in {globs}; do [ -e "$p" ] && echo "$p"; done; true',
            check=False,
        )
        paths: list[str] = []
        for line in result.stdout.splitlines():
            path = line.strip()
            if path.startswith("/dev/") and path not in paths:
                paths.append(path)
        logger.info("Found %d serial port(s) on %s", len(paths), self._session.host)
        return paths

    async def scan_ble(self, duration: float = DEFAULT_SCAN_SECONDS) -> RankedCandidates:
        """Run a passive BLE scan for *duration* seconds and rank the results.

        Blocks for the full window.  Returns an empty list if the scan ran
        and saw nothing.

        Raises:
            ScanError: if the device cannot scan (no adapter, no permission,
                scanner not installable, helper failed or timed out).
        """
        if self.install_scanner:
            await self._install_scanner()

        try:
            await self._session.copy_file(load_script(BLE_SCAN_SCRIPT), self.script_path)
        except TransferError as exc:
            raise ScanError(f"Could not upload BLE scan helper: {exc}") from exc

        command = (
            f"{shlex.quote(self.python)} {shlex.quote(self.script_path)} "
            f"--duration {duration:g}"
        )
        try:
            result = await self._session.run_with_deadline(
                duration + SCAN_GRACE_SECONDS, command, check=False
            )
        except CommandTimeoutError as exc:
            raise ScanError(f"BLE scan did not finish: {exc}") from exc

        if not result.stdout.strip():
            raise ScanError(
                f"BLE scan failed (exit {result.exit_status}): {result.stderr.strip()[-300:]}"
            )
        sightings = parse_scan_output(result.stdout)
        if not result.ok:
            raise ScanError(f"BLE scan exited with status {result.exit_status}")

        ranked = rank_candidates(sightings, self.keywords, self.other_limit)
        logger.info(
            "BLE scan: %d sighting(s), %d priority, %d other",
            len(sightings), len(ranked.priority), len(ranked.other),
        )
        return ranked

    async def _install_scanner(self) -> None:
        try:
            await self._session.run(
                f"cd {shlex.quote(self.install_dir)} && venv/bin/pip install -q bleak"
            )
        except RemoteCommandError as exc:
            raise ScanError(f"Could not install bleak on the device: {exc}") from exc
