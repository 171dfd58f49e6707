"""MeshCore MQTT Bridge remote installer.

Provisions the meshcore-mqtt bridge onto a Linux device over SSH:
system packages, repository checkout, radio connection discovery,
MQTT settings, config file and systemd service.
"""

__version__ = "0.1.0"
