"""Shared domain models for proxyprovisioner."""

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

from .constants import (
    DEFAULT_IMAGE,
    DEFAULT_TEST_URL,
    DEFAULT_WG_IMAGE,
    RESTART_POLICY,
    TRANSPORT_PROTOCOL,
    WG_WEB_UI_PORT,
)


@dataclass(frozen=True)
class Credential:
    login: str
    password: str = field(repr=False)


class InstanceFiles:
    """Per-instance run files kept next to the instance data."""

    instance_name: str
    data_dir: str

    @property
    def lock_path(self) -> str:
        return os.path.join(self.data_dir, f"{self.instance_name}.lock")

    @property
    def manifest_path(self) -> str:
        return os.path.join(self.data_dir, f"{self.instance_name}.manifest.json")


@dataclass(frozen=True)
class ProvisioningRequest(InstanceFiles):
    """Validated inputs for one HTTP proxy provisioning run."""

    instance_name: str
    host: str
    bandwidth_bps: int
    data_dir: str
    credentials: Tuple[Credential, ...]
    requested_port: Optional[int] = None
    port: Optional[int] = None
    test_url: str = DEFAULT_TEST_URL
    image: str = DEFAULT_IMAGE

    @property
    def config_path(self) -> str:
        return os.path.join(self.data_dir, f"{self.instance_name}.cfg")


@dataclass(frozen=True)
class VpnRequest(InstanceFiles):
    """Validated inputs for one AmneziaWG provisioning run."""

    instance_name: str
    host: str
    data_dir: str
    port: int
    client_subnet: str
    web_password: str = field(repr=False)
    image: str = DEFAULT_WG_IMAGE
    web_ui_port: int = WG_WEB_UI_PORT


@dataclass(frozen=True)
class PortMapping:
    port: int
    protocol: str = TRANSPORT_PROTOCOL

    def publish_arg(self) -> str:
        return f"{self.port}:{self.port}/{self.protocol}"


@dataclass(frozen=True)
class VolumeMount:
    source: str
    target: str
    read_only: bool = True

    def volume_arg(self) -> str:
        suffix = ":ro" if self.read_only else ""
        return f"{self.source}:{self.target}{suffix}"


@dataclass(frozen=True)
class LaunchSpec:
    """Everything `docker run` is given. Capabilities and devices are never inferred."""

    name: str
    image: str
    ports: Tuple[PortMapping, ...]
    volumes: Tuple[VolumeMount, ...] = ()
    restart_policy: str = RESTART_POLICY
    capabilities: Tuple[str, ...] = ()
    devices: Tuple[str, ...] = ()
    environment: Tuple[Tuple[str, str], ...] = ()


@dataclass(frozen=True)
class ProvisioningReport:
    host: str
    port: int
    credentials: Tuple[Credential, ...]
    probe_status: str


@dataclass(frozen=True)
class VpnReport:
    host: str
    port: int
    client_subnet: str
    web_ui_port: int
    data_dir: str

    @property
    def web_ui_url(self) -> str:
        return f"http://{self.host}:{self.web_ui_port}"
