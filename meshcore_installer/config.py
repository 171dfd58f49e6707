"""Installer defaults, overridable through ``MESHCORE_*`` environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# Bridge defaults
DEFAULT_INSTALL_DIR = "/opt/meshcore-mqtt"
DEFAULT_REPO_URL = "https://github.com/pushc6/meshcore-mqtt.git"
DEFAULT_SSH_USER = "root"
DEFAULT_CONNECT_TIMEOUT = 10.0

DEFAULT_SERIAL_PORT = "/dev/ttyACM0"
DEFAULT_BAUDRATE = 115200
DEFAULT_TCP_HOST = "192.168.1.100"
DEFAULT_TCP_PORT = 5000

DEFAULT_MQTT_BROKER = "localhost"
DEFAULT_MQTT_PORT = 1883
DEFAULT_MQTT_TLS_PORT = 8883
DEFAULT_MQTT_PREFIX = "meshcore"
DEFAULT_MQTT_QOS = 0

# BLE discovery
DEFAULT_SCAN_SECONDS = 10.0
PRIORITY_KEYWORDS: tuple[str, ...] = ("MESH", "LORA", "HELTEC", "RAK", "NODE", "COMPANION")
OTHER_DEVICE_LIMIT = 10

SERVICE_NAME = "meshcore-mqtt"
SERVICE_UNIT_PATH = f"/etc/systemd/system/{SERVICE_NAME}.service"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r (not a number), using %s", name, raw, default)
        return default


def _env_int(name: str, default: int | None) -> int | None:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r (not an integer), using %s", name, raw, default)
        return default


@dataclass
class InstallerConfig:
    """Tunables for one provisioning run."""

    install_dir: str = DEFAULT_INSTALL_DIR
    repo_url: str = DEFAULT_REPO_URL
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    scan_seconds: float = DEFAULT_SCAN_SECONDS
    priority_keywords: tuple[str, ...] = field(default=PRIORITY_KEYWORDS)
    other_device_limit: int = OTHER_DEVICE_LIMIT
    max_prompt_attempts: int | None = None  # None = re-prompt forever
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> InstallerConfig:
        keywords = PRIORITY_KEYWORDS
        raw_keywords = os.environ.get("MESHCORE_BLE_KEYWORDS", "")
        if raw_keywords.strip():
            keywords = tuple(k.strip().upper() for k in raw_keywords.split(",") if k.strip())

        return cls(
            install_dir=os.environ.get("MESHCORE_INSTALL_DIR", DEFAULT_INSTALL_DIR),
            repo_url=os.environ.get("MESHCORE_REPO_URL", DEFAULT_REPO_URL),
            connect_timeout=_env_float("MESHCORE_CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT),
            scan_seconds=_env_float("MESHCORE_SCAN_SECONDS", DEFAULT_SCAN_SECONDS),
            priority_keywords=keywords,
            other_device_limit=_env_int("MESHCORE_BLE_OTHER_LIMIT", OTHER_DEVICE_LIMIT),
            max_prompt_attempts=_env_int("MESHCORE_PROMPT_ATTEMPTS", None),
            log_level=os.environ.get("MESHCORE_BRIDGE_LOG_LEVEL", "INFO").upper(),
        )
