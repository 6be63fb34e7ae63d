"""Actionable error catalog for proxyprovisioner."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "missing_users": {
        "what": "No proxy users were provided.",
        "next": "Pass `--users \"u1:p1,u2:p2\"`, set PROXY_USERS, or run from a terminal to be prompted.",
    },
    "invalid_user_entry": {
        "what": "Invalid user entry: {entry} (expected login:password).",
        "next": "Use non-empty logins and passwords without `:`, `,` or whitespace.",
    },
    "port_in_use": {
        "what": "{protocol} port {port} is already in use.",
        "next": "Choose another `--port` or omit it to pick a free port automatically.",
    },
    "no_free_port": {
        "what": "No free TCP port found in {start}-{end}.",
        "next": "Free a port in that range or pass an explicit `--port`.",
    },
    "engine_unavailable": {
        "what": "Docker is not installed or not running.",
        "next": "Install Docker manually (https://docs.docker.com/engine/install/) and re-run.",
    },
    "instance_not_running": {
        "what": "Container {name} is not running (state={state}).",
        "next": "Inspect the diagnostics below, fix the cause and re-run.",
    },
    "lock_held": {
        "what": "Another provisioning run holds the lock {path}.",
        "next": "Wait for the other run to finish before re-running for the same instance name.",
    },
    "missing_web_password": {
        "what": "No web UI password was provided.",
        "next": "Set WEB_PASS, add `web_password` to the config file, or run from a terminal to be prompted.",
    },
    "not_root": {
        "what": "This command must be run as root.",
        "next": "Re-run with sudo, or pass `--allow-non-root` if your user can manage Docker.",
    },
}


def actionable_error(code: str, **kwargs: object) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
