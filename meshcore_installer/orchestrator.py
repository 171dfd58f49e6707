"""Provisioning orchestrator.

Drives the target device through a fixed, linear sequence of stages:

  1. connect               SSH in and run a liveness probe
  2. install_dependencies  system packages via apt, dnf or pacman
  3. sync_repository       clone or update meshcore-mqtt, build its venv
  4. select_connection     serial, BLE or TCP
  5. configure_connection  discover and pick the concrete endpoint
  6. configure_mqtt        broker, credentials, topic prefix, QoS, TLS
  7. assemble_config       write config.json
  8. deploy_service        install the systemd unit, reload and enable
  9. summarize             report, optionally start the service

Each stage takes a ProvisioningContext and returns an updated copy.  A
failure in a non-interactive stage aborts the run; interactive stages
re-prompt instead.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
from dataclasses import dataclass, replace
from typing import Awaitable, Callable

from meshcore_installer.artifacts import (
    render_bridge_config,
    render_service_unit,
    service_management_commands,
)
from meshcore_installer.config import (
    DEFAULT_BAUDRATE,
    DEFAULT_MQTT_BROKER,
    DEFAULT_MQTT_PORT,
    DEFAULT_MQTT_PREFIX,
    DEFAULT_MQTT_QOS,
    DEFAULT_MQTT_TLS_PORT,
    DEFAULT_SERIAL_PORT,
    DEFAULT_SSH_USER,
    DEFAULT_TCP_HOST,
    DEFAULT_TCP_PORT,
    SERVICE_NAME,
    SERVICE_UNIT_PATH,
    InstallerConfig,
)
from meshcore_installer.discovery import DeviceDiscovery
from meshcore_installer.errors import ScanError, SessionConnectionError, ValidationError
from meshcore_installer.menu import MANUAL_ENTRY, Prompter, non_blank
from meshcore_installer.models import (
    VALID_QOS,
    BLEEndpoint,
    ConnectionKind,
    MqttSettings,
    ProvisioningContext,
    SerialEndpoint,
    TCPEndpoint,
    normalize_mac,
)
from meshcore_installer.remote.session import RemoteSession, SSHSession

logger = logging.getLogger(__name__)

Stage = Callable[[ProvisioningContext], Awaitable[ProvisioningContext]]


@dataclass(frozen=True)
class PackageManager:
    name: str
    binary: str
    install_commands: tuple[str, ...]


# Probed in this order; the first one present wins.
PACKAGE_MANAGERS: tuple[PackageManager, ...] = (
    PackageManager(
        "apt",
        "apt-get",
        (
            "DEBIAN_FRONTEND=noninteractive apt-get update -qq",
            "DEBIAN_FRONTEND=noninteractive apt-get install -y -qq "
            "python3 python3-venv python3-pip git bluez",
        ),
    ),
    PackageManager("dnf", "dnf", ("dnf install -y -q python3 python3-pip git bluez",)),
    PackageManager("pacman", "pacman", ("pacman -Sy --noconfirm python python-pip git bluez",)),
)

CONNECTION_CHOICES: tuple[tuple[str, ConnectionKind], ...] = (
    ("Serial (USB) - Recommended", ConnectionKind.SERIAL),
    ("BLE (Bluetooth Low Energy)", ConnectionKind.BLE),
    ("TCP (Network)", ConnectionKind.TCP),
)


@dataclass
class StageRecord:
    name: str
    detail: str = ""
    status: str = "pending"  # pending, running, done, failed, skipped
    error: str = ""


class Provisioner:
    """Provisions the meshcore-mqtt bridge onto one remote device."""

    def __init__(
        self,
        config: InstallerConfig | None = None,
        prompter: Prompter | None = None,
        session_factory: Callable[..., RemoteSession] = SSHSession,
        discovery_factory: Callable[..., DeviceDiscovery] = DeviceDiscovery,
        log_delay: float = 2.0,
    ) -> None:
        self.config = config or InstallerConfig()
        self.prompter = prompter or Prompter(max_attempts=self.config.max_prompt_attempts)
        self.console = self.prompter.console
        self._session_factory = session_factory
        self._discovery_factory = discovery_factory
        self.log_delay = log_delay
        self.stages: list[StageRecord] = []
        self._progress_callbacks: list[Callable[[StageRecord], None]] = []

    def on_progress(self, callback: Callable[[StageRecord], None]) -> None:
        """Register a callback fired on every stage status change."""
        self._progress_callbacks.append(callback)

    async def run(self) -> ProvisioningContext:
        """Run every stage in order and return the final context."""
        self.console.banner("MeshCore MQTT Bridge - Remote Installer")
        ctx = self.collect_target()

        pipeline: list[tuple[StageRecord, Stage]] = [
            (StageRecord("connect", "Connecting via SSH"), self.connect),
            (StageRecord("install_deps", "Installing system packages"), self.install_dependencies),
            (StageRecord("sync_repo", "Installing meshcore-mqtt"), self.sync_repository),
            (StageRecord("select_connection", "Choosing connection type"), self.select_connection_kind),
            (StageRecord("configure_connection", "Configuring connection"), self.configure_connection),
            (StageRecord("configure_mqtt", "Configuring MQTT"), self.configure_mqtt),
            (StageRecord("assemble_config", "Writing configuration"), self.assemble_config),
            (StageRecord("deploy_service", "Installing systemd service"), self.deploy_service),
            (StageRecord("summarize", "Summary"), self.summarize),
        ]
        self.stages = [record for record, _ in pipeline]

        try:
            for record, stage in pipeline:
                self._update_stage(record, "running")
                ctx = await stage(ctx)
                self._update_stage(record, "done")
        except Exception as e:
            logger.debug("Provisioning of %s failed", ctx.session.host, exc_info=True)
            for record in self.stages:
                if record.status == "running":
                    self._update_stage(record, "failed", str(e))
                elif record.status == "pending":
                    record.status = "skipped"
            raise
        finally:
            await ctx.session.close()

        return ctx

    # ── Stages ─────────────────────────────────────────────────────

    def collect_target(self) -> ProvisioningContext:
        """Ask for the device's SSH details and build an unconnected session."""
        self.console.step("Remote Device Configuration")
        self.console.info("Enter the connection details for your Raspberry Pi or Linux device.")
        self.console.line()

        host = self.prompter.ask_validated("Device IP address", non_blank)
        user = self.prompter.ask_validated("SSH username", non_blank, default=DEFAULT_SSH_USER)
        password = self.prompter.ask_secret("SSH password")

        session = self._session_factory(
            host, user, password, connect_timeout=self.config.connect_timeout
        )
        return ProvisioningContext(
            session=session,
            install_dir=self.config.install_dir,
            log_level=self.config.log_level,
        )

    async def connect(self, ctx: ProvisioningContext) -> ProvisioningContext:
        session = ctx.session
        self.console.info("Testing connection...")
        await session.connect()
        probe = await session.run("echo connected")
        if "connected" not in probe.stdout:
            raise SessionConnectionError(
                f"Unexpected reply from {session.user}@{session.host}: {probe.stdout.strip()!r}"
            )
        self.console.success(f"Connected to {session.host}")
        return ctx

    async def install_dependencies(self, ctx: ProvisioningContext) -> ProvisioningContext:
        self.console.step("Installing dependencies on remote device...")
        manager = await detect_package_manager(ctx.session)
        if manager is None:
            logger.warning("No supported package manager on %s; skipping system packages", ctx.session.host)
            self.console.warn(
                "No supported package manager (apt, dnf, pacman) found. "
                "Skipping system packages; make sure python3, venv, pip, git and bluez are installed."
            )
            return ctx

        self.console.info(f"Using {manager.name}")
        for command in manager.install_commands:
            result = await ctx.session.run(command, check=False)
            if not result.ok:
                # Package installs are best effort; the repository sync surfaces real gaps.
                logger.warning("%s exited %d: %s", command, result.exit_status, result.stderr.strip())
                self.console.warn(f"{manager.name} exited with status {result.exit_status}, continuing")
        self.console.success("Dependencies installed")
        return ctx

    async def sync_repository(self, ctx: ProvisioningContext) -> ProvisioningContext:
        self.console.step("Installing meshcore-mqtt on remote device...")
        install_dir = self.prompter.ask_validated(
            "Installation directory", non_blank, default=ctx.install_dir
        )
        quoted = shlex.quote(install_dir)

        exists = await ctx.session.run(f"test -d {quoted}", check=False)
        if exists.ok:
            self.console.info(f"Updating existing checkout in {install_dir}")
            await ctx.session.run(f"cd {quoted} && git pull")
        else:
            self.console.info(f"Cloning {self.config.repo_url}")
            await ctx.session.run(f"git clone {shlex.quote(self.config.repo_url)} {quoted}")

        self.console.info("Creating virtual environment and installing requirements...")
        await ctx.session.run(
            f"cd {quoted} && python3 -m venv venv && "
            "venv/bin/pip install --upgrade pip -q && "
            "venv/bin/pip install -r requirements.txt -q"
        )
        self.console.success("Repository cloned and dependencies installed")
        return replace(ctx, install_dir=install_dir)

    async def select_connection_kind(self, ctx: ProvisioningContext) -> ProvisioningContext:
        self.console.step("MeshCore Connection Type")
        self.console.line()
        kind = self.prompter.select(list(CONNECTION_CHOICES), title="Select connection type")
        logger.info("Connection type: %s", kind.value)
        return replace(ctx, connection_kind=kind)

    async def configure_connection(self, ctx: ProvisioningContext) -> ProvisioningContext:
        discovery = self._discovery_factory(
            ctx.session,
            ctx.install_dir,
            keywords=self.config.priority_keywords,
            other_limit=self.config.other_device_limit,
        )
        if ctx.connection_kind is ConnectionKind.SERIAL:
            return await self.configure_serial(ctx, discovery)
        if ctx.connection_kind is ConnectionKind.BLE:
            return await self.configure_ble(ctx, discovery)
        if ctx.connection_kind is ConnectionKind.TCP:
            return await self.configure_tcp(ctx)
        raise ValueError(f"Connection type not selected: {ctx.connection_kind!r}")

    async def configure_serial(
        self, ctx: ProvisioningContext, discovery: DeviceDiscovery
    ) -> ProvisioningContext:
        self.console.step("Serial Configuration")
        self.console.info("Detecting serial ports on remote device...")
        paths = await discovery.list_serial_paths()

        path = None
        if paths:
            self.console.line("Available serial ports:")
            self.console.line()
            choice = self.prompter.select(
                [(p, p) for p in paths],
                allow_manual_entry=True,
                title="Select serial port",
                manual_label="Enter path manually",
            )
            if choice is not MANUAL_ENTRY:
                path = choice
                self.console.success(f"Selected: {path}")
        else:
            self.console.warn("No serial ports detected. Make sure your device is connected.")

        if path is None:
            path = self.prompter.ask_validated("Serial port", non_blank, default=DEFAULT_SERIAL_PORT)

        self.console.line()
        baud_rate = self.prompter.ask_int("Baud rate", DEFAULT_BAUDRATE, minimum=1)
        return replace(ctx, endpoint=SerialEndpoint(path=path, baud_rate=baud_rate))

    async def configure_ble(
        self, ctx: ProvisioningContext, discovery: DeviceDiscovery
    ) -> ProvisioningContext:
        self.console.step("BLE Configuration")

        if self.prompter.yes_no("Scan for BLE devices on remote?", default=True):
            seconds = self.config.scan_seconds
            self.console.info(f"Scanning for BLE devices (this takes about {seconds:g} seconds)...")
            try:
                ranked = await discovery.scan_ble(seconds)
            except ScanError as exc:
                logger.warning("BLE scan on %s failed: %s", ctx.session.host, exc)
                self.console.warn(f"BLE scan failed: {exc}")
            else:
                if len(ranked):
                    self.console.line("Found devices:")
                    self.console.line()
                    items = [
                        (c.label + ("  <-- Likely MeshCore" if ranked.is_priority(c) else ""), c)
                        for c in ranked
                    ]
                    choice = self.prompter.select(
                        items,
                        allow_manual_entry=True,
                        title="Select device",
                        manual_label="Enter MAC address manually",
                    )
                    if choice is not MANUAL_ENTRY:
                        try:
                            endpoint = BLEEndpoint(choice.address)
                        except ValidationError as exc:
                            logger.warning("Scanned address %r rejected: %s", choice.address, exc)
                            self.console.warn(
                                f"{choice.address} is not a usable MAC address; enter it manually."
                            )
                        else:
                            self.console.success(f"Selected: {choice.display_name} ({choice.address})")
                            return replace(ctx, endpoint=endpoint)
                else:
                    self.console.warn("No devices found. You'll need to enter the MAC address manually.")

        self.console.line()
        self.console.line("Enter the BLE MAC address of your MeshCore device")
        self.console.info("Format: AA:BB:CC:DD:EE:FF")
        mac = self.prompter.ask_validated("BLE MAC Address", normalize_mac)
        return replace(ctx, endpoint=BLEEndpoint(mac))

    async def configure_tcp(self, ctx: ProvisioningContext) -> ProvisioningContext:
        self.console.step("TCP Configuration")
        host = self.prompter.ask_validated(
            "MeshCore device IP address", non_blank, default=DEFAULT_TCP_HOST
        )
        port = self.prompter.ask_int("TCP port", DEFAULT_TCP_PORT, minimum=1, maximum=65535)
        return replace(ctx, endpoint=TCPEndpoint(host=host, port=port))

    async def configure_mqtt(self, ctx: ProvisioningContext) -> ProvisioningContext:
        self.console.step("MQTT Broker Configuration")
        prompter = self.prompter

        broker = prompter.ask_validated("MQTT broker address", non_blank, default=DEFAULT_MQTT_BROKER)
        port = prompter.ask_int("MQTT port", DEFAULT_MQTT_PORT, minimum=1, maximum=65535)

        username = password = None
        if prompter.yes_no("Does your MQTT broker require authentication?", default=False):
            username = prompter.ask_validated("MQTT username", non_blank)
            password = prompter.ask_secret("MQTT password")

        topic_prefix = prompter.ask_validated("MQTT topic prefix", non_blank, default=DEFAULT_MQTT_PREFIX)
        qos = prompter.ask_int("MQTT QoS (0, 1, or 2)", DEFAULT_MQTT_QOS, choices=VALID_QOS)

        mqtt = MqttSettings(
            broker=broker,
            port=port,
            username=username,
            password=password,
            topic_prefix=topic_prefix,
            qos=qos,
        )
        if prompter.yes_no("Enable TLS/SSL for MQTT?", default=False):
            if mqtt.enable_tls():
                self.console.info(f"Port changed to {DEFAULT_MQTT_TLS_PORT} for TLS")
        return replace(ctx, mqtt=mqtt)

    async def assemble_config(self, ctx: ProvisioningContext) -> ProvisioningContext:
        self.console.step("Generating configuration...")
        await ctx.session.copy_file(render_bridge_config(ctx), ctx.config_path)
        self.console.success(f"Configuration saved to {ctx.config_path}")
        return ctx

    async def deploy_service(self, ctx: ProvisioningContext) -> ProvisioningContext:
        self.console.step("Creating systemd service...")
        await ctx.session.copy_file(render_service_unit(ctx.install_dir), SERVICE_UNIT_PATH)
        await ctx.session.run(f"systemctl daemon-reload && systemctl enable {SERVICE_NAME}")
        self.console.success("Systemd service created and enabled")
        return ctx

    async def summarize(self, ctx: ProvisioningContext) -> ProvisioningContext:
        session = ctx.session
        target = f"{session.user}@{session.host}"
        console = self.console

        console.line()
        console.banner("Installation Complete!")
        console.line()
        console.line(f"Device:            {target}")
        console.line(f"Install directory: {ctx.install_dir}")
        if ctx.endpoint is not None:
            console.line(f"Connection type:   {ctx.endpoint.kind.value}")
            console.line(f"Device address:    {ctx.endpoint.address}")
        console.line(f"MQTT broker:       {ctx.mqtt.broker}:{ctx.mqtt.port}")
        console.line()
        console.line("Commands:")
        for name, command in service_management_commands(target).items():
            console.line(f"  {name + ':':<8} {command}")
        console.line()

        if self.prompter.yes_no("Start the service now?", default=True):
            await session.run(f"systemctl start {SERVICE_NAME}")
            console.success("Service started")
            console.line()
            console.info("Recent logs:")
            if self.log_delay:
                await asyncio.sleep(self.log_delay)
            logs = await session.run(f"journalctl -u {SERVICE_NAME} -n 20 --no-pager", check=False)
            for line in logs.stdout.splitlines():
                console.line(line)
        return ctx

    # ── Helpers ────────────────────────────────────────────────────

    def _update_stage(self, record: StageRecord, status: str, error: str = "") -> None:
        record.status = status
        if error:
            record.error = error
        logger.info("Stage %s: %s", record.name, status)
        for cb in self._progress_callbacks:
            try:
                cb(record)
            except Exception:
                logger.exception("Error in provisioning progress callback")


async def detect_package_manager(session: RemoteSession) -> PackageManager | None:
    """Return the first package manager present on the device, or None."""
    for manager in PACKAGE_MANAGERS:
        probe = await session.run(f"command -v {manager.binary}", check=False)
        if probe.ok:
            logger.info("Detected package manager %s on %s", manager.name, session.host)
            return manager
    return None
