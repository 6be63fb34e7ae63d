"""Listening-port discovery and allocation."""

from typing import Callable, Optional, Set, Tuple

from proxyprovisioner.constants import MAX_PORT, MIN_PORT, PORT_SCAN_RANGE, TRANSPORT_PROTOCOL
from proxyprovisioner.errors import NoFreePortError, ValidationError
from proxyprovisioner.errors_catalog import actionable_error


class PortAllocator:
    """Picks a free port by reading the host's listening-socket table."""

    LOCAL_ADDRESS_COLUMN = 3
    SS_PROTOCOL_FLAGS = {"tcp": "-t", "udp": "-u"}

    def __init__(self, logger, run_cmd: Callable, scan_range: Tuple[int, int] = PORT_SCAN_RANGE):
        self.logger = logger
        self.run_cmd = run_cmd
        self.scan_range = scan_range

    def listening_ports(self, protocol: str = TRANSPORT_PROTOCOL) -> Set[int]:
        flag = self.SS_PROTOCOL_FLAGS[protocol]
        result = self.run_cmd(["ss", "-H", flag, "-l", "-n"], capture_output=True)
        return self.parse_listening_ports(result.stdout or "")

    @classmethod
    def parse_listening_ports(cls, output: str) -> Set[int]:
        """Extract local ports from ``ss -H`` output.

        The local address column looks like ``0.0.0.0:22``, ``*:80``,
        ``[::]:443`` or ``127.0.0.53%lo:53``; the port is whatever follows the
        last colon.
        """
        ports: Set[int] = set()
        for line in output.splitlines():
            columns = line.split()
            if len(columns) <= cls.LOCAL_ADDRESS_COLUMN:
                continue
            local_address = columns[cls.LOCAL_ADDRESS_COLUMN]
            _, separator, port = local_address.rpartition(":")
            if separator and port.isascii() and port.isdigit():
                ports.add(int(port))
        return ports

    def allocate(
        self, requested_port: Optional[int] = None, protocol: str = TRANSPORT_PROTOCOL
    ) -> int:
        occupied = self.listening_ports(protocol)

        if requested_port is not None:
            if not MIN_PORT <= requested_port <= MAX_PORT:
                raise ValidationError(
                    f"port must be between {MIN_PORT} and {MAX_PORT}, got {requested_port}."
                )
            if requested_port in occupied:
                raise NoFreePortError(
                    actionable_error("port_in_use", port=requested_port, protocol=protocol.upper())
                )
            self.logger.info("Using requested port %s/%s", requested_port, protocol)
            return requested_port

        start, end = self.scan_range
        for port in range(start, end + 1):
            if port not in occupied:
                self.logger.info("Selected free port %s", port)
                return port

        raise NoFreePortError(actionable_error("no_free_port", start=start, end=end))
