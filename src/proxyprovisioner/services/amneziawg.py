"""AmneziaWG (amnezia-wg-easy) launch preparation."""

from typing import Tuple

import bcrypt

from proxyprovisioner.constants import (
    WG_CAPABILITIES,
    WG_CONTAINER_DATA_PATH,
    WG_DEVICES,
    WG_PROTOCOL,
)
from proxyprovisioner.models import LaunchSpec, PortMapping, VolumeMount, VpnRequest


class AmneziaWGService:
    """Builds the amnezia-wg-easy launch. The plain web password never leaves this object."""

    def __init__(self, logger, filesystem_service, bcrypt_module=bcrypt):
        self.logger = logger
        self.filesystem_service = filesystem_service
        self.bcrypt = bcrypt_module

    def hash_password(self, password: str) -> str:
        hashed = self.bcrypt.hashpw(password.encode("utf-8"), self.bcrypt.gensalt())
        return hashed.decode("utf-8")

    def prepare_data_dir(self, request: VpnRequest) -> str:
        self.filesystem_service.ensure_private_dir(request.data_dir)
        self.logger.info("Using %s for WireGuard state", request.data_dir)
        return request.data_dir

    def published_ports(self, request: VpnRequest) -> Tuple[PortMapping, ...]:
        return (
            PortMapping(request.port, WG_PROTOCOL),
            PortMapping(request.web_ui_port, "tcp"),
        )

    def environment(self, request: VpnRequest, password_hash: str) -> Tuple[Tuple[str, str], ...]:
        return (
            ("WG_HOST", request.host),
            ("WG_PORT", str(request.port)),
            ("WG_DEFAULT_ADDRESS", request.client_subnet),
            ("PASSWORD_HASH", password_hash),
        )

    def build_launch_spec(self, request: VpnRequest, password_hash: str) -> LaunchSpec:
        return LaunchSpec(
            name=request.instance_name,
            image=request.image,
            ports=self.published_ports(request),
            volumes=(VolumeMount(request.data_dir, WG_CONTAINER_DATA_PATH, read_only=False),),
            capabilities=WG_CAPABILITIES,
            devices=WG_DEVICES,
            environment=self.environment(request, password_hash),
        )
