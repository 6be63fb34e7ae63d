"""Post-launch health checks for the proxy container."""

import time
from typing import Optional
from urllib.parse import quote

import requests

from proxyprovisioner.constants import DEFAULT_PROBE_TIMEOUT, DEFAULT_SETTLE_SECONDS
from proxyprovisioner.errors import LaunchError, ProbeWarning
from proxyprovisioner.errors_catalog import actionable_error
from proxyprovisioner.models import Credential


class HealthVerifier:
    """Separates "the container is up" (required) from "the proxy relays traffic" (best effort)."""

    RUNNING = "running"

    def __init__(
        self,
        logger,
        console,
        docker_runtime_service,
        config_synthesizer,
        requests_module=requests,
        settle_seconds: float = DEFAULT_SETTLE_SECONDS,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
    ):
        self.logger = logger
        self.console = console
        self.docker_runtime_service = docker_runtime_service
        self.config_synthesizer = config_synthesizer
        self.requests = requests_module
        self.settle_seconds = settle_seconds
        self.probe_timeout = probe_timeout

    def verify_running(self, name: str, config_path: Optional[str] = None) -> str:
        if self.settle_seconds > 0:
            time.sleep(self.settle_seconds)

        state = self.docker_runtime_service.status(name)
        is_running = state == self.RUNNING
        self.docker_runtime_service.mark_running(is_running)
        if not is_running:
            diagnostics = []
            if config_path:
                diagnostics.append("Config:")
                diagnostics.extend(self.config_synthesizer.numbered_dump(config_path))
            diagnostics.append("Logs:")
            diagnostics.extend(self.docker_runtime_service.recent_logs(name))
            raise LaunchError(
                actionable_error("instance_not_running", name=name, state=state),
                diagnostics=diagnostics,
            )

        self.console.print(f"[green]Container {name} is running.[/green]")
        return state

    @staticmethod
    def proxy_url(port: int, credential: Credential, host: str = "127.0.0.1") -> str:
        login = quote(credential.login, safe="")
        password = quote(credential.password, safe="")
        return f"http://{login}:{password}@{host}:{port}"

    def probe(self, port: int, credential: Credential, url: str) -> str:
        """Fetch ``url`` through the new proxy. Raises ProbeWarning on any failure."""
        proxy = self.proxy_url(port, credential)
        proxies = {"http": proxy, "https": proxy}
        self.logger.info("Probing %s through 127.0.0.1:%s as %s", url, port, credential.login)

        try:
            response = self.requests.get(url, proxies=proxies, timeout=self.probe_timeout)
            response.raise_for_status()
        except self.requests.RequestException as exc:
            # Messages may embed the proxy URL, so only the exception type is surfaced.
            raise ProbeWarning(
                f"Proxy probe to {url} failed ({type(exc).__name__})."
            ) from exc
        return "ok"
