"""3proxy configuration rendering service."""

from typing import List

from proxyprovisioner.errors import ProvisionerError
from proxyprovisioner.models import ProvisioningRequest


class ConfigSynthesizer:
    """Renders a ProvisioningRequest into the 3proxy config file.

    The directive order is fixed so identical requests render byte-identical
    files.
    """

    MAX_CONNECTIONS = 200
    DNS_CACHE_SIZE = 65536
    TIMEOUTS = (1, 5, 30, 60, 180, 1800, 15, 60)
    PASSWORD_TYPE = "CL"
    MASK = "****"

    def __init__(self, logger, filesystem_service):
        self.logger = logger
        self.filesystem_service = filesystem_service

    def build_lines(self, request: ProvisioningRequest) -> List[str]:
        if request.port is None:
            raise ProvisionerError("Cannot render config before a port is allocated.")
        if not request.credentials:
            raise ProvisionerError("Cannot render config without credentials.")

        users = " ".join(
            f"{credential.login}:{self.PASSWORD_TYPE}:{credential.password}"
            for credential in request.credentials
        )
        lines = [
            f"maxconn {self.MAX_CONNECTIONS}",
            f"nscache {self.DNS_CACHE_SIZE}",
            "timeouts " + " ".join(str(value) for value in self.TIMEOUTS),
            "auth strong",
            f"users {users}",
        ]
        lines.extend(f"allow {credential.login}" for credential in request.credentials)

        # 0 means no ceiling.
        if request.bandwidth_bps > 0:
            lines.append(f"bandlimin {request.bandwidth_bps} * *")
            lines.append(f"bandlimout {request.bandwidth_bps} * *")

        lines.append(f"proxy -p{request.port} -a")
        return lines

    def render(self, request: ProvisioningRequest) -> str:
        return "\n".join(self.build_lines(request)) + "\n"

    def write(self, request: ProvisioningRequest) -> str:
        content = self.render(request)
        self.filesystem_service.ensure_private_dir(request.data_dir)
        self.filesystem_service.atomic_write(request.config_path, content)
        self.logger.info("Wrote proxy config to %s", request.config_path)
        return request.config_path

    def numbered_dump(self, config_path: str) -> List[str]:
        """Return the config with line numbers and passwords masked."""
        try:
            with open(config_path, "r", encoding="utf-8") as file_obj:
                raw_lines = file_obj.read().splitlines()
        except OSError as exc:
            return [f"<could not read {config_path}: {exc}>"]

        return [
            f"{number:6d}  {self._mask(line)}" for number, line in enumerate(raw_lines, start=1)
        ]

    def _mask(self, line: str) -> str:
        if not line.startswith("users "):
            return line

        masked = []
        for entry in line.split()[1:]:
            login, _, rest = entry.partition(":")
            password_type, _, _ = rest.partition(":")
            masked.append(f"{login}:{password_type}:{self.MASK}")
        return "users " + " ".join(masked)
