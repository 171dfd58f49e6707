"""Bridge configuration and systemd unit rendering."""

from __future__ import annotations

import json
from typing import Any

from meshcore_installer.config import SERVICE_NAME
from meshcore_installer.models import (
    ConnectionEndpoint,
    MqttSettings,
    ProvisioningContext,
    SerialEndpoint,
    TCPEndpoint,
)

BRIDGE_EVENTS: tuple[str, ...] = (
    "CONTACT_MSG_RECV",
    "CHANNEL_MSG_RECV",
    "BATTERY",
    "DEVICE_INFO",
    "NEW_CONTACT",
    "ADVERTISEMENT",
    "TELEMETRY_RESPONSE",
)


def _mqtt_section(mqtt: MqttSettings) -> dict[str, Any]:
    section: dict[str, Any] = {"broker": mqtt.broker, "port": mqtt.port}
    if mqtt.has_credentials:
        section["username"] = mqtt.username
        section["password"] = mqtt.password or ""
    section.update({
        "topic_prefix": mqtt.topic_prefix,
        "qos": mqtt.qos,
        "retain": False,
        "tls_enabled": mqtt.tls_enabled,
    })
    return section


def _meshcore_section(endpoint: ConnectionEndpoint) -> dict[str, Any]:
    section: dict[str, Any] = {
        "connection_type": endpoint.kind.value,
        "address": endpoint.address,
    }
    if isinstance(endpoint, SerialEndpoint):
        section["baudrate"] = endpoint.baud_rate
    elif isinstance(endpoint, TCPEndpoint):
        section["port"] = endpoint.port
    section.update({
        "timeout": 10,
        "auto_fetch_restart_delay": 5,
        "message_initial_delay": 15.0,
        "message_send_delay": 15.0,
        "events": list(BRIDGE_EVENTS),
    })
    return section


def build_bridge_config(ctx: ProvisioningContext) -> dict[str, Any]:
    """Assemble the meshcore-mqtt config dict from a finished context."""
    if ctx.endpoint is None:
        raise ValueError("Connection endpoint has not been configured")
    return {
        "mqtt": _mqtt_section(ctx.mqtt),
        "meshcore": _meshcore_section(ctx.endpoint),
        "log_level": ctx.log_level,
    }


def render_bridge_config(ctx: ProvisioningContext) -> str:
    return json.dumps(build_bridge_config(ctx), indent=2) + "\n"


def render_service_unit(install_dir: str) -> str:
    return _SYSTEMD_UNIT.format(install_dir=install_dir)


def service_management_commands(target: str) -> dict[str, str]:
    """Copy-pasteable ssh commands for managing the deployed service."""
    return {
        "Start": f"ssh {target} 'systemctl start {SERVICE_NAME}'",
        "Stop": f"ssh {target} 'systemctl stop {SERVICE_NAME}'",
        "Logs": f"ssh {target} 'journalctl -u {SERVICE_NAME} -f'",
        "Status": f"ssh {target} 'systemctl status {SERVICE_NAME}'",
    }


# ── Systemd unit template ─────────────────────────────────────────

_SYSTEMD_UNIT = """\
[Unit]
Description=MeshCore MQTT Bridge
After=network-online.target bluetooth.target
Wants=network-online.target

[Service]
Type=simple
User=root
WorkingDirectory={install_dir}
ExecStart={install_dir}/venv/bin/python -m meshcore_mqtt.main --config-file {install_dir}/config.json
Restart=on-failure
RestartSec=10

[Install]
WantedBy=multi-user.target
"""
