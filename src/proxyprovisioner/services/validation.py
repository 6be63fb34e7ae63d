"""Input validation helpers for proxyprovisioner."""

import ipaddress
import os
import re
from typing import Iterable, List, Tuple, Union
from urllib.parse import urlparse

from proxyprovisioner.constants import MAX_PORT, MIN_PORT
from proxyprovisioner.errors import ValidationError
from proxyprovisioner.errors_catalog import actionable_error
from proxyprovisioner.models import Credential


class ValidationService:
    """Validates raw user input before anything touches the host."""

    CREDENTIAL_SEPARATOR = ":"
    ENTRY_SEPARATOR = ","
    INSTANCE_NAME_PATTERN = re.compile(r"[a-zA-Z0-9][a-zA-Z0-9_.-]*")
    FORBIDDEN_CREDENTIAL_CHARS = re.compile(r"[:,\s]")
    CLIENT_SUBNET_PATTERN = re.compile(r"([0-9]{1,3})\.([0-9]{1,3})\.([0-9]{1,3})\.x")
    PRIVATE_NETWORKS = tuple(
        ipaddress.ip_network(cidr)
        for cidr in ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "127.0.0.0/8", "::1/128")
    )

    def validate_credential(self, login: str, password: str) -> Credential:
        entry = f"{login}{self.CREDENTIAL_SEPARATOR}..."
        if not login or not password:
            raise ValidationError(actionable_error("invalid_user_entry", entry=entry))
        if self.FORBIDDEN_CREDENTIAL_CHARS.search(login) or self.FORBIDDEN_CREDENTIAL_CHARS.search(
            password
        ):
            raise ValidationError(actionable_error("invalid_user_entry", entry=entry))
        return Credential(login=login, password=password)

    def parse_credentials(self, raw: Union[str, Iterable[str], None]) -> Tuple[Credential, ...]:
        """Parse ``login:password`` entries, comma separated or as a list."""
        if raw is None:
            raise ValidationError(actionable_error("missing_users"))

        if isinstance(raw, str):
            entries = raw.split(self.ENTRY_SEPARATOR)
        else:
            entries = [str(item) for item in raw]

        credentials: List[Credential] = []
        seen_logins = set()
        for entry in entries:
            entry = entry.strip()
            if not entry:
                continue

            parts = entry.split(self.CREDENTIAL_SEPARATOR)
            if len(parts) != 2:
                # Only the login is echoed back; the password may be in the tail.
                raise ValidationError(
                    actionable_error("invalid_user_entry", entry=f"{parts[0]}:...")
                )

            credential = self.validate_credential(parts[0], parts[1])
            if credential.login in seen_logins:
                raise ValidationError(f"Duplicate proxy login: {credential.login}")
            seen_logins.add(credential.login)
            credentials.append(credential)

        if not credentials:
            raise ValidationError(actionable_error("missing_users"))
        return tuple(credentials)

    def parse_port(self, value, label: str = "port") -> int:
        port = self._parse_non_negative_int(value, label)
        if not MIN_PORT <= port <= MAX_PORT:
            raise ValidationError(f"{label} must be between {MIN_PORT} and {MAX_PORT}, got {port}.")
        return port

    def parse_bandwidth_mbit(self, value) -> int:
        """Return the bandwidth ceiling in bits per second."""
        mbit = self._parse_non_negative_int(value, "bandwidth (Mbps)")
        return mbit * 1000 * 1000

    def parse_positive_int(self, value, label: str) -> int:
        number = self._parse_non_negative_int(value, label)
        if number <= 0:
            raise ValidationError(f"{label} must be a positive integer.")
        return number

    def validate_instance_name(self, name: str) -> str:
        if not name or not self.INSTANCE_NAME_PATTERN.fullmatch(name):
            raise ValidationError(
                f"Invalid instance name '{name}'. Use letters, digits, '_', '.' or '-' "
                "and start with a letter or digit."
            )
        return name

    def validate_test_url(self, url: str) -> str:
        parsed = urlparse(url)
        if parsed.scheme.lower() not in {"http", "https"} or not parsed.netloc:
            raise ValidationError(f"Probe URL must be an http(s) URL, got '{url}'.")
        return url

    def validate_client_subnet(self, value: str) -> str:
        """Accept the amnezia-wg-easy address template, e.g. ``10.48.0.x``."""
        value = (value or "").strip()
        match = self.CLIENT_SUBNET_PATTERN.fullmatch(value)
        if not match or any(int(octet) > 255 for octet in match.groups()):
            raise ValidationError(
                f"Client subnet must look like 10.48.0.x (three octets then 'x'), got '{value}'."
            )
        return value

    def validate_web_password(self, password) -> str:
        if password is None or not str(password):
            raise ValidationError("Web UI password cannot be empty.")
        return str(password)

    def validate_host(self, host: str) -> str:
        host = (host or "").strip()
        if not host or any(char.isspace() for char in host):
            raise ValidationError(f"Invalid proxy host '{host}'.")
        return host

    def is_private_address(self, host: str) -> bool:
        try:
            address = ipaddress.ip_address(host)
        except ValueError:
            return False
        return any(address in network for network in self.PRIVATE_NETWORKS)

    def ensure_writable_location(self, path: str):
        """Check ``path`` or its nearest existing ancestor is a writable directory."""
        candidate = os.path.abspath(path)
        while not os.path.exists(candidate):
            parent = os.path.dirname(candidate)
            if parent == candidate:
                break
            candidate = parent

        if not os.path.isdir(candidate):
            raise ValidationError(f"Data directory path is not a directory: {candidate}")
        if not os.access(candidate, os.W_OK | os.X_OK):
            raise ValidationError(f"Data directory is not writable: {candidate}")

    @staticmethod
    def _parse_non_negative_int(value, label: str) -> int:
        if isinstance(value, bool):
            raise ValidationError(f"{label} must be a non-negative integer.")
        if isinstance(value, int):
            number = value
        else:
            text = str(value).strip()
            if not re.fullmatch(r"[0-9]+", text):
                raise ValidationError(f"{label} must be a non-negative integer, got '{value}'.")
            number = int(text)
        if number < 0:
            raise ValidationError(f"{label} must be a non-negative integer, got '{value}'.")
        return number
