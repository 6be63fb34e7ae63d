"""Resolves provisioning inputs from flags, environment, config file and prompts."""

import os
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import click

from proxyprovisioner.constants import (
    DEFAULT_BANDWIDTH_MBIT,
    DEFAULT_DATA_DIR,
    DEFAULT_IMAGE,
    DEFAULT_INSTANCE_NAME,
    DEFAULT_TEST_URL,
    DEFAULT_WG_CLIENT_SUBNET,
    DEFAULT_WG_DATA_DIR,
    DEFAULT_WG_IMAGE,
    DEFAULT_WG_INSTANCE_NAME,
    DEFAULT_WG_PORT,
)
from proxyprovisioner.errors import CommandError, ValidationError
from proxyprovisioner.errors_catalog import actionable_error
from proxyprovisioner.models import Credential, ProvisioningRequest, VpnRequest
from proxyprovisioner.services.validation import ValidationService


class ClickPrompter:
    """Terminal prompts. Secrets are read without echo."""

    def ask(self, text: str, hide_input: bool = False, default: Optional[str] = None) -> str:
        return click.prompt(text, hide_input=hide_input, default=default, show_default=default is not None)


class InputResolver:
    """Builds one validated request (proxy or VPN) from layered sources.

    Precedence per field: CLI flag > environment variable > config file >
    interactive prompt > built-in default.
    """

    ENV_KEYS = {
        "name": "PROXY_NAME",
        "port": "PROXY_PORT",
        "users": "PROXY_USERS",
        "host": "PROXY_HOST",
        "data_dir": "DATA_DIR",
        "bandwidth_mbit": "PROXY_BANDWIDTH_MBIT",
        "test_url": "PROXY_TEST_URL",
        "image": "PROXY_IMAGE",
    }

    # Names used by the amnezia-wg-easy container itself.
    VPN_ENV_KEYS = {
        "name": "PROXY_NAME",
        "port": "WG_PORT",
        "host": "WG_HOST",
        "data_dir": "DATA_DIR",
        "client_subnet": "WG_DEFAULT_ADDRESS",
        "web_password": "WEB_PASS",
        "image": "PROXY_IMAGE",
    }

    def __init__(
        self,
        logger,
        validation_service: Optional[ValidationService] = None,
        environ: Optional[Mapping[str, str]] = None,
        prompter=None,
        interactive: bool = False,
        host_detector: Optional[Callable[[], Optional[str]]] = None,
    ):
        self.logger = logger
        self.validation_service = validation_service or ValidationService()
        self.environ = os.environ if environ is None else environ
        self.prompter = prompter or ClickPrompter()
        self.interactive = interactive
        self.host_detector = host_detector
        self.sources: Dict[str, str] = {}

    def lookup(
        self,
        key: str,
        cli_values: Mapping[str, Any],
        config_values: Mapping[str, Any],
        env_keys: Optional[Mapping[str, str]] = None,
    ) -> Tuple[Any, Optional[str]]:
        value = cli_values.get(key)
        if value is not None:
            return value, "flag"

        env_key = (self.ENV_KEYS if env_keys is None else env_keys).get(key)
        if env_key:
            env_value = self.environ.get(env_key)
            if env_value:
                return env_value, "env"

        if config_values.get(key) is not None:
            return config_values[key], "config"

        return None, None

    def resolve(
        self,
        cli_values: Mapping[str, Any],
        config_values: Optional[Mapping[str, Any]] = None,
    ) -> ProvisioningRequest:
        config_values = config_values or {}
        validation = self.validation_service

        # Credentials first: nothing below may run with a bad user list.
        credentials = self._resolve_credentials(cli_values, config_values)

        name = self._value("name", cli_values, config_values, DEFAULT_INSTANCE_NAME)
        validation.validate_instance_name(str(name))

        raw_port = self._value("port", cli_values, config_values, None)
        requested_port = None if raw_port in (None, "") else validation.parse_port(raw_port)

        bandwidth_bps = validation.parse_bandwidth_mbit(
            self._value("bandwidth_mbit", cli_values, config_values, DEFAULT_BANDWIDTH_MBIT)
        )
        test_url = validation.validate_test_url(
            str(self._value("test_url", cli_values, config_values, DEFAULT_TEST_URL))
        )
        image = str(self._value("image", cli_values, config_values, DEFAULT_IMAGE))

        data_dir = os.path.abspath(
            os.path.expanduser(str(self._value("data_dir", cli_values, config_values, DEFAULT_DATA_DIR)))
        )
        validation.ensure_writable_location(data_dir)

        host = self._resolve_public_host(cli_values, config_values)

        self.logger.debug("Resolved input sources: %s", self.sources)
        return ProvisioningRequest(
            instance_name=str(name),
            host=host,
            bandwidth_bps=bandwidth_bps,
            data_dir=data_dir,
            credentials=credentials,
            requested_port=requested_port,
            test_url=test_url,
            image=image,
        )

    def resolve_vpn(
        self,
        cli_values: Mapping[str, Any],
        config_values: Optional[Mapping[str, Any]] = None,
    ) -> VpnRequest:
        """Build a VpnRequest for the AmneziaWG profile. Same precedence as ``resolve``."""
        config_values = config_values or {}
        validation = self.validation_service
        env_keys = self.VPN_ENV_KEYS

        web_password = self._resolve_web_password(cli_values, config_values)

        name = self._value("name", cli_values, config_values, DEFAULT_WG_INSTANCE_NAME, env_keys)
        validation.validate_instance_name(str(name))

        port = validation.parse_port(
            self._value("port", cli_values, config_values, DEFAULT_WG_PORT, env_keys), "WG_PORT"
        )
        client_subnet = validation.validate_client_subnet(
            str(
                self._value(
                    "client_subnet", cli_values, config_values, DEFAULT_WG_CLIENT_SUBNET, env_keys
                )
            )
        )
        image = str(self._value("image", cli_values, config_values, DEFAULT_WG_IMAGE, env_keys))

        data_dir = os.path.abspath(
            os.path.expanduser(
                str(self._value("data_dir", cli_values, config_values, DEFAULT_WG_DATA_DIR, env_keys))
            )
        )
        validation.ensure_writable_location(data_dir)

        host = self._resolve_public_host(cli_values, config_values, env_keys)

        self.logger.debug("Resolved input sources: %s", self.sources)
        return VpnRequest(
            instance_name=str(name),
            host=host,
            data_dir=data_dir,
            port=port,
            client_subnet=client_subnet,
            web_password=web_password,
            image=image,
        )

    def _value(self, key: str, cli_values, config_values, default, env_keys=None):
        value, source = self.lookup(key, cli_values, config_values, env_keys)
        if value is None:
            self.sources[key] = "default"
            return default
        self.sources[key] = source
        return value

    def _resolve_credentials(self, cli_values, config_values) -> Tuple[Credential, ...]:
        raw_users, source = self.lookup("users", cli_values, config_values)
        if raw_users is not None:
            self.sources["users"] = source
            return self.validation_service.parse_credentials(raw_users)

        if not self.interactive:
            raise ValidationError(actionable_error("missing_users"))

        self.sources["users"] = "prompt"
        return self._prompt_credentials()

    def _resolve_web_password(self, cli_values, config_values) -> str:
        password, source = self.lookup("web_password", cli_values, config_values, self.VPN_ENV_KEYS)
        if password is not None:
            self.sources["web_password"] = source
            return self.validation_service.validate_web_password(password)

        if not self.interactive:
            raise ValidationError(actionable_error("missing_web_password"))

        self.sources["web_password"] = "prompt"
        return self.validation_service.validate_web_password(
            self.prompter.ask("Web UI password (stored as a bcrypt hash)", hide_input=True)
        )

    def _prompt_credentials(self) -> Tuple[Credential, ...]:
        count = self.validation_service.parse_positive_int(
            self.prompter.ask("How many users to create"), "user count"
        )

        credentials: List[Credential] = []
        for index in range(1, count + 1):
            login = self.prompter.ask(f"User {index} login")
            password = self.prompter.ask(f"User {index} password", hide_input=True)
            credential = self.validation_service.validate_credential(login, password)
            if any(existing.login == credential.login for existing in credentials):
                raise ValidationError(f"Duplicate proxy login: {credential.login}")
            credentials.append(credential)
        return tuple(credentials)

    def _resolve_host(self, cli_values, config_values, env_keys=None) -> str:
        host, source = self.lookup("host", cli_values, config_values, env_keys)
        if host:
            self.sources["host"] = source
            return str(host)

        detected = None
        if self.host_detector is not None:
            try:
                detected = self.host_detector()
            except CommandError as exc:
                self.logger.warning("Could not detect host address: %s", exc)
        if detected:
            self.sources["host"] = "detected"
            return detected

        if self.interactive:
            self.sources["host"] = "prompt"
            return self.prompter.ask("Public host or IP of this server")

        host_env = (self.ENV_KEYS if env_keys is None else env_keys)["host"]
        raise ValidationError(
            f"Could not detect the public host address. Pass `--host` or set {host_env}."
        )

    def _resolve_public_host(self, cli_values, config_values, env_keys=None) -> str:
        validation = self.validation_service
        host = validation.validate_host(self._resolve_host(cli_values, config_values, env_keys))
        if validation.is_private_address(host):
            self.logger.warning(
                "NOTE: host %s is a private address and is not publicly reachable.", host
            )
        return host
