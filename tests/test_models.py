"""Tests for endpoints, MQTT settings and configuration defaults."""

from __future__ import annotations

import pytest

from meshcore_installer.config import InstallerConfig, PRIORITY_KEYWORDS
from meshcore_installer.errors import ValidationError
from meshcore_installer.models import (
    BLEEndpoint,
    ConnectionKind,
    MqttSettings,
    ProvisioningContext,
    SerialEndpoint,
    TCPEndpoint,
    normalize_mac,
)
from meshcore_installer.remote.session import MockSession


class TestMacAddress:
    @pytest.mark.parametrize("value", [
        "AA:BB:CC:DD:EE:FF",
        "aa:bb:cc:dd:ee:ff",
        "01:23:45:67:89:Ab",
        "  C0:FF:EE:00:11:22  ",
    ])
    def test_accepts(self, value):
        assert normalize_mac(value) == value.strip().upper()

    @pytest.mark.parametrize("value", [
        "",
        "AA:BB:CC:DD:EE",
        "AA:BB:CC:DD:EE:FF:00",
        "AA-BB-CC-DD-EE-FF",
        "AABBCCDDEEFF",
        "GG:BB:CC:DD:EE:FF",
        "A:BB:CC:DD:EE:FF",
    ])
    def test_rejects(self, value):
        with pytest.raises(ValidationError, match="AA:BB:CC:DD:EE:FF"):
            normalize_mac(value)

    def test_ble_endpoint_normalizes(self):
        endpoint = BLEEndpoint("aa:bb:cc:dd:ee:ff")
        assert endpoint.mac_address == "AA:BB:CC:DD:EE:FF"
        assert endpoint.address == "AA:BB:CC:DD:EE:FF"

    def test_ble_endpoint_rejects_invalid(self):
        with pytest.raises(ValidationError):
            BLEEndpoint("nope")


class TestEndpoints:
    def test_serial(self):
        endpoint = SerialEndpoint("/dev/ttyACM0")
        assert endpoint.kind is ConnectionKind.SERIAL
        assert endpoint.address == "/dev/ttyACM0"
        assert endpoint.baud_rate == 115200

    def test_tcp(self):
        endpoint = TCPEndpoint("10.0.0.5", 4403)
        assert endpoint.kind is ConnectionKind.TCP
        assert endpoint.address == "10.0.0.5"
        assert endpoint.port == 4403

    def test_kind_values(self):
        assert [k.value for k in ConnectionKind] == ["serial", "ble", "tcp"]


class TestMqttSettings:
    def test_defaults(self):
        mqtt = MqttSettings()
        assert mqtt.broker == "localhost"
        assert mqtt.port == 1883
        assert mqtt.topic_prefix == "meshcore"
        assert mqtt.qos == 0
        assert not mqtt.tls_enabled
        assert not mqtt.has_credentials

    def test_tls_rewrites_default_port(self):
        mqtt = MqttSettings()
        assert mqtt.enable_tls() is True
        assert mqtt.port == 8883
        assert mqtt.tls_enabled

    def test_tls_rewrite_is_idempotent(self):
        mqtt = MqttSettings()
        mqtt.enable_tls()
        assert mqtt.enable_tls() is False
        assert mqtt.port == 8883

    def test_tls_keeps_custom_port(self):
        mqtt = MqttSettings(port=9001)
        assert mqtt.enable_tls() is False
        assert mqtt.port == 9001

    def test_tls_at_construction(self):
        assert MqttSettings(tls_enabled=True).port == 8883

    @pytest.mark.parametrize("qos", [-1, 3, 10])
    def test_invalid_qos(self, qos):
        with pytest.raises(ValidationError):
            MqttSettings(qos=qos)

    def test_credentials(self):
        assert MqttSettings(username="bridge", password="pw").has_credentials


class TestProvisioningContext:
    def test_paths(self):
        ctx = ProvisioningContext(session=MockSession(), install_dir="/srv/mc")
        assert ctx.config_path == "/srv/mc/config.json"
        assert ctx.venv_python == "/srv/mc/venv/bin/python"
        assert ctx.endpoint is None
        assert ctx.connection_kind is None

    def test_mqtt_not_shared(self):
        a = ProvisioningContext(session=MockSession())
        b = ProvisioningContext(session=MockSession())
        a.mqtt.enable_tls()
        assert b.mqtt.port == 1883


class TestInstallerConfig:
    def test_defaults(self, monkeypatch):
        for name in (
            "MESHCORE_INSTALL_DIR", "MESHCORE_REPO_URL", "MESHCORE_CONNECT_TIMEOUT",
            "MESHCORE_SCAN_SECONDS", "MESHCORE_BLE_KEYWORDS", "MESHCORE_BLE_OTHER_LIMIT",
            "MESHCORE_PROMPT_ATTEMPTS", "MESHCORE_BRIDGE_LOG_LEVEL",
        ):
            monkeypatch.delenv(name, raising=False)
        config = InstallerConfig.from_env()
        assert config.install_dir == "/opt/meshcore-mqtt"
        assert config.repo_url.endswith("meshcore-mqtt.git")
        assert config.connect_timeout == 10.0
        assert config.scan_seconds == 10.0
        assert config.priority_keywords == PRIORITY_KEYWORDS
        assert config.other_device_limit == 10
        assert config.max_prompt_attempts is None
        assert config.log_level == "INFO"

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("MESHCORE_INSTALL_DIR", "/srv/bridge")
        monkeypatch.setenv("MESHCORE_SCAN_SECONDS", "4.5")
        monkeypatch.setenv("MESHCORE_BLE_KEYWORDS", "t-beam, wio")
        monkeypatch.setenv("MESHCORE_BLE_OTHER_LIMIT", "3")
        monkeypatch.setenv("MESHCORE_PROMPT_ATTEMPTS", "5")
        monkeypatch.setenv("MESHCORE_BRIDGE_LOG_LEVEL", "debug")
        config = InstallerConfig.from_env()
        assert config.install_dir == "/srv/bridge"
        assert config.scan_seconds == 4.5
        assert config.priority_keywords == ("T-BEAM", "WIO")
        assert config.other_device_limit == 3
        assert config.max_prompt_attempts == 5
        assert config.log_level == "DEBUG"

    def test_bad_number_falls_back(self, monkeypatch):
        monkeypatch.setenv("MESHCORE_CONNECT_TIMEOUT", "soon")
        monkeypatch.setenv("MESHCORE_BLE_OTHER_LIMIT", "many")
        config = InstallerConfig.from_env()
        assert config.connect_timeout == 10.0
        assert config.other_device_limit == 10
