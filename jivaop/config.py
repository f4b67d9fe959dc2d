"""Driver configuration filled from command-line flags."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Config:
    """Parameters that identify and locate a CSI driver instance."""

    # Name the driver is registered under at CSI.
    driver_name: str = ""
    # Either "controller" or "node".
    plugin_type: str = ""
    # Version of the controller or node driver.
    version: str = ""
    # Socket on which the kubelet or external provisioner makes requests.
    endpoint: str = ""
    # Identifies the node a node driver runs on.
    node_id: str = ""


def default_config() -> Config:
    """Return a new, empty configuration."""
    return Config()