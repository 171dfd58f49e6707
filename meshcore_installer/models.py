"""Data models threaded through the provisioning stages."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, ClassVar, Union

from meshcore_installer.config import (
    DEFAULT_BAUDRATE,
    DEFAULT_INSTALL_DIR,
    DEFAULT_MQTT_BROKER,
    DEFAULT_MQTT_PORT,
    DEFAULT_MQTT_PREFIX,
    DEFAULT_MQTT_QOS,
    DEFAULT_MQTT_TLS_PORT,
    DEFAULT_TCP_PORT,
)
from meshcore_installer.errors import ValidationError

if TYPE_CHECKING:
    from meshcore_installer.remote.session import RemoteSession

MAC_ADDRESS_RE = re.compile(r"^[0-9A-Fa-f]{2}(:[0-9A-Fa-f]{2}){5}$")
VALID_QOS = (0, 1, 2)


class ConnectionKind(str, Enum):
    SERIAL = "serial"
    BLE = "ble"
    TCP = "tcp"


def normalize_mac(value: str) -> str:
    """Validate a colon-separated MAC address and return it uppercased.

    Raises:
        ValidationError: if *value* is not six colon-separated hex octets.
    """
    candidate = value.strip()
    if not MAC_ADDRESS_RE.match(candidate):
        raise ValidationError(
            f"Invalid MAC address {value!r}. Please use format: AA:BB:CC:DD:EE:FF"
        )
    return candidate.upper()


# ── Connection endpoints ──────────────────────────────────────────


@dataclass(frozen=True)
class SerialEndpoint:
    path: str
    baud_rate: int = DEFAULT_BAUDRATE
    kind: ClassVar[ConnectionKind] = ConnectionKind.SERIAL

    @property
    def address(self) -> str:
        return self.path


@dataclass(frozen=True)
class BLEEndpoint:
    mac_address: str
    kind: ClassVar[ConnectionKind] = ConnectionKind.BLE

    def __post_init__(self) -> None:
        object.__setattr__(self, "mac_address", normalize_mac(self.mac_address))

    @property
    def address(self) -> str:
        return self.mac_address


@dataclass(frozen=True)
class TCPEndpoint:
    host: str
    port: int = DEFAULT_TCP_PORT
    kind: ClassVar[ConnectionKind] = ConnectionKind.TCP

    @property
    def address(self) -> str:
        return self.host


ConnectionEndpoint = Union[SerialEndpoint, BLEEndpoint, TCPEndpoint]


# ── MQTT ──────────────────────────────────────────────────────────


@dataclass
class MqttSettings:
    broker: str = DEFAULT_MQTT_BROKER
    port: int = DEFAULT_MQTT_PORT
    username: str | None = None
    password: str | None = None
    topic_prefix: str = DEFAULT_MQTT_PREFIX
    qos: int = DEFAULT_MQTT_QOS
    tls_enabled: bool = False

    def __post_init__(self) -> None:
        if self.qos not in VALID_QOS:
            raise ValidationError(f"MQTT QoS must be 0, 1, or 2 (got {self.qos})")
        if self.tls_enabled:
            self._apply_tls_port()

    @property
    def has_credentials(self) -> bool:
        return bool(self.username)

    def enable_tls(self) -> bool:
        """Turn on TLS.  Returns True if the port was rewritten to the TLS default."""
        self.tls_enabled = True
        return self._apply_tls_port()

    def _apply_tls_port(self) -> bool:
        if self.port == DEFAULT_MQTT_PORT:
            self.port = DEFAULT_MQTT_TLS_PORT
            return True
        return False


# ── Provisioning context ──────────────────────────────────────────


@dataclass
class ProvisioningContext:
    """Everything one provisioning run has learned so far.

    Stage functions take a context and return an updated copy; nothing is
    shared between runs.
    """

    session: RemoteSession
    install_dir: str = DEFAULT_INSTALL_DIR
    endpoint: ConnectionEndpoint | None = None
    mqtt: MqttSettings = field(default_factory=MqttSettings)
    log_level: str = "INFO"
    connection_kind: ConnectionKind | None = None

    @property
    def venv_python(self) -> str:
        return f"{self.install_dir}/venv/bin/python"

    @property
    def config_path(self) -> str:
        return f"{self.install_dir}/config.json"
