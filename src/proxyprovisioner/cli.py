import logging
import os
import sys

import click
from rich.console import Console
from rich.logging import RichHandler

from .constants import (
    AMNEZIAWG_PROFILE,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_SETTLE_SECONDS,
    HTTP_PROXY_PROFILE,
    PROFILES,
)
from .core import AmneziaWGProvisioner, Provisioner
from .errors import ProvisionerError
from .services.config_loader import ConfigLoader

DEFAULT_CONFIG_FILE = ".proxyprovisioner.yml"


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=Console(stderr=True),
            rich_tracebacks=True,
            show_level=False,
            show_path=False,
        )
    ],
)


@click.command()
@click.option(
    "--profile",
    required=False,
    type=click.Choice(PROFILES),
    help=f"What to provision (default: {HTTP_PROXY_PROFILE}).",
)
@click.option("--users", required=False, help='Proxy users as "u1:p1,u2:p2" (env: PROXY_USERS).')
@click.option(
    "--port",
    required=False,
    help="Listening port (env: PROXY_PORT). Omit to pick a free port in 20000-40000. "
    "amneziawg: UDP port (env: WG_PORT, default: 53100).",
)
@click.option("--host", required=False, help="Public host or IP reported to clients (env: PROXY_HOST).")
@click.option("--name", required=False, help="Container name (env: PROXY_NAME, default: simple-proxy).")
@click.option(
    "--data-dir",
    required=False,
    type=click.Path(),
    help="Directory for the rendered config (env: DATA_DIR, default: /root/.proxy-3proxy).",
)
@click.option(
    "--bandwidth-mbit",
    required=False,
    help="Bandwidth ceiling for the whole proxy in Mbps, 0 for none (env: PROXY_BANDWIDTH_MBIT, default: 10).",
)
@click.option(
    "--test-url",
    required=False,
    help="URL fetched through the proxy after launch (env: PROXY_TEST_URL).",
)
@click.option("--image", required=False, help="Container image (env: PROXY_IMAGE, default: 3proxy/3proxy).")
@click.option(
    "--client-subnet",
    required=False,
    help="amneziawg only: client address template (env: WG_DEFAULT_ADDRESS, default: 10.48.0.x). "
    "The web UI password is read from WEB_PASS, the config file or a hidden prompt.",
)
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
)
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
@click.option("--no-input", is_flag=True, default=False, help="Never prompt, even on a terminal.")
@click.option(
    "--skip-firewall",
    is_flag=True,
    default=None,
    help="Do not open the port in ufw.",
)
@click.option(
    "--allow-non-root",
    is_flag=True,
    default=None,
    help="Skip the root check (the user must still be able to manage Docker).",
)
@click.option(
    "--settle-seconds",
    required=False,
    type=float,
    default=None,
    help="Delay before checking the container state.",
)
@click.option(
    "--probe-timeout",
    required=False,
    type=float,
    default=None,
    help="Timeout in seconds for the request sent through the proxy.",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=None,
    help="Resolve inputs and pick a port, then print the plan without writing or starting anything.",
)
def main(
    profile,
    users,
    port,
    host,
    name,
    data_dir,
    bandwidth_mbit,
    test_url,
    image,
    client_subnet,
    config,
    verbose,
    log_file,
    no_input,
    skip_firewall,
    allow_non_root,
    settle_seconds,
    probe_timeout,
    dry_run,
):
    """Provision a 3proxy HTTP proxy (or an AmneziaWG server) in Docker and print its connection details."""
    logger = logging.getLogger("proxyprovisioner")

    try:
        config_loader = ConfigLoader()
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
            if os.path.exists(default_config_path):
                resolved_config = default_config_path

        config_values = config_loader.load(resolved_config)
    except ProvisionerError as exc:
        raise click.ClickException(str(exc)) from exc

    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    log_file = _resolve_option(log_file, config_values, "log_file")
    skip_firewall = bool(_resolve_option(skip_firewall, config_values, "skip_firewall", default=False))
    allow_non_root = bool(
        _resolve_option(allow_non_root, config_values, "allow_non_root", default=False)
    )
    settle_seconds = float(
        _resolve_option(settle_seconds, config_values, "settle_seconds", default=DEFAULT_SETTLE_SECONDS)
    )
    probe_timeout = float(
        _resolve_option(probe_timeout, config_values, "probe_timeout", default=DEFAULT_PROBE_TIMEOUT)
    )
    dry_run = bool(_resolve_option(dry_run, config_values, "dry_run", default=False))
    profile = _resolve_option(profile, config_values, "profile", default=HTTP_PROXY_PROFILE)
    if profile not in PROFILES:
        raise click.ClickException(
            f"Unknown profile '{profile}' in config file. Choose one of: {', '.join(PROFILES)}."
        )

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)

    cli_values = {
        "users": users,
        "port": port,
        "host": host,
        "name": name,
        "data_dir": data_dir,
        "bandwidth_mbit": bandwidth_mbit,
        "test_url": test_url,
        "image": image,
        "client_subnet": client_subnet,
    }

    provisioner_class = AmneziaWGProvisioner if profile == AMNEZIAWG_PROFILE else Provisioner
    provisioner = provisioner_class(
        cli_values=cli_values,
        config_values=config_values,
        interactive=not no_input and sys.stdin.isatty(),
        skip_firewall=skip_firewall,
        allow_non_root=allow_non_root,
        settle_seconds=settle_seconds,
        probe_timeout=probe_timeout,
        dry_run=dry_run,
    )

    raise SystemExit(provisioner.run())


if __name__ == "__main__":
    main()
