"""Best-effort host firewall integration."""

import shutil
from typing import Callable

from proxyprovisioner.constants import TRANSPORT_PROTOCOL
from proxyprovisioner.errors import CommandError


class FirewallService:
    """Opens the proxy port in ufw when ufw is installed and active.

    Firewall management is a convenience: every failure is logged and dropped.
    """

    ACTIVE_MARKER = "Status: active"

    def __init__(self, logger, run_cmd: Callable, which: Callable = shutil.which):
        self.logger = logger
        self.run_cmd = run_cmd
        self.which = which

    def is_active(self) -> bool:
        if self.which("ufw") is None:
            return False
        result = self.run_cmd(["ufw", "status"], check=False, capture_output=True)
        return result.returncode == 0 and self.ACTIVE_MARKER in (result.stdout or "")

    def open_port(self, port: int, protocol: str = TRANSPORT_PROTOCOL) -> bool:
        try:
            if not self.is_active():
                self.logger.debug("ufw not installed or inactive; leaving firewall untouched.")
                return False
            self.run_cmd(["ufw", "allow", f"{port}/{protocol}"], capture_output=True)
        except CommandError as exc:
            self.logger.warning("Could not open port %s/%s in ufw: %s", port, protocol, exc)
            return False

        self.logger.info("Opened %s/%s in ufw.", port, protocol)
        return True
