"""Tests for bridge config and systemd unit rendering."""

from __future__ import annotations

import json

import pytest

from meshcore_installer.artifacts import (
    BRIDGE_EVENTS,
    build_bridge_config,
    render_bridge_config,
    render_service_unit,
    service_management_commands,
)
from meshcore_installer.models import (
    BLEEndpoint,
    MqttSettings,
    ProvisioningContext,
    SerialEndpoint,
    TCPEndpoint,
)
from meshcore_installer.remote.session import MockSession


def _ctx(endpoint, mqtt=None, **kwargs):
    return ProvisioningContext(
        session=MockSession(),
        endpoint=endpoint,
        mqtt=mqtt or MqttSettings(),
        **kwargs,
    )


class TestBridgeConfig:
    def test_serial(self):
        config = build_bridge_config(_ctx(SerialEndpoint("/dev/ttyACM0", 115200)))
        assert config["meshcore"]["connection_type"] == "serial"
        assert config["meshcore"]["address"] == "/dev/ttyACM0"
        assert config["meshcore"]["baudrate"] == 115200
        assert "port" not in config["meshcore"]
        assert config["log_level"] == "INFO"

    def test_ble(self):
        config = build_bridge_config(_ctx(BLEEndpoint("aa:bb:cc:dd:ee:ff")))
        meshcore = config["meshcore"]
        assert meshcore["connection_type"] == "ble"
        assert meshcore["address"] == "AA:BB:CC:DD:EE:FF"
        assert "baudrate" not in meshcore
        assert "port" not in meshcore

    def test_tcp(self):
        config = build_bridge_config(_ctx(TCPEndpoint("192.168.1.100", 5000)))
        assert config["meshcore"]["connection_type"] == "tcp"
        assert config["meshcore"]["port"] == 5000
        assert "baudrate" not in config["meshcore"]

    def test_fixed_bridge_fields(self):
        meshcore = build_bridge_config(_ctx(SerialEndpoint("/dev/ttyUSB0")))["meshcore"]
        assert meshcore["timeout"] == 10
        assert meshcore["auto_fetch_restart_delay"] == 5
        assert meshcore["message_initial_delay"] == 15.0
        assert meshcore["message_send_delay"] == 15.0
        assert meshcore["events"] == list(BRIDGE_EVENTS)
        assert "TELEMETRY_RESPONSE" in meshcore["events"]

    def test_mqtt_without_credentials(self):
        mqtt = build_bridge_config(_ctx(SerialEndpoint("/dev/ttyUSB0")))["mqtt"]
        assert mqtt == {
            "broker": "localhost",
            "port": 1883,
            "topic_prefix": "meshcore",
            "qos": 0,
            "retain": False,
            "tls_enabled": False,
        }

    def test_mqtt_with_credentials_and_tls(self):
        settings = MqttSettings(broker="mqtt.example.net", username="bridge", password="s3cret", qos=1)
        settings.enable_tls()
        mqtt = build_bridge_config(_ctx(SerialEndpoint("/dev/ttyUSB0"), settings))["mqtt"]
        assert mqtt["username"] == "bridge"
        assert mqtt["password"] == "s3cret"
        assert mqtt["port"] == 8883
        assert mqtt["tls_enabled"] is True
        assert mqtt["qos"] == 1

    def test_log_level(self):
        config = build_bridge_config(_ctx(SerialEndpoint("/dev/ttyUSB0"), log_level="DEBUG"))
        assert config["log_level"] == "DEBUG"

    def test_requires_endpoint(self):
        with pytest.raises(ValueError):
            build_bridge_config(_ctx(None))

    def test_rendered_json(self):
        text = render_bridge_config(_ctx(TCPEndpoint("10.0.0.9", 4000)))
        assert text.endswith("}\n")
        assert json.loads(text)["meshcore"]["address"] == "10.0.0.9"
        assert list(json.loads(text)) == ["mqtt", "meshcore", "log_level"]


class TestServiceUnit:
    def test_unit_contents(self):
        unit = render_service_unit("/opt/meshcore-mqtt")
        assert "Description=MeshCore MQTT Bridge" in unit
        assert "After=network-online.target bluetooth.target" in unit
        assert (
            "ExecStart=/opt/meshcore-mqtt/venv/bin/python -m meshcore_mqtt.main "
            "--config-file /opt/meshcore-mqtt/config.json"
        ) in unit
        assert "WorkingDirectory=/opt/meshcore-mqtt" in unit
        assert "Restart=on-failure" in unit
        assert "RestartSec=10" in unit
        assert "WantedBy=multi-user.target" in unit

    def test_custom_install_dir(self):
        unit = render_service_unit("/srv/bridge")
        assert "/srv/bridge/venv/bin/python" in unit
        assert "/opt/meshcore-mqtt" not in unit

    def test_management_commands(self):
        commands = service_management_commands("pi@10.0.0.2")
        assert list(commands) == ["Start", "Stop", "Logs", "Status"]
        assert commands["Logs"] == "ssh pi@10.0.0.2 'journalctl -u meshcore-mqtt -f'"
