"""Container engine installation and readiness."""

import os
import shutil
import tempfile
import time
from enum import Enum
from typing import Callable, List, Tuple

import requests

from proxyprovisioner.constants import (
    APT_LOCK_RETURNCODE,
    DOCKER_APT_PACKAGE,
    DOCKER_BOOTSTRAP_URL,
    DPKG_LOCK_FILES,
    LOG_TAIL_LINES,
)
from proxyprovisioner.errors import CommandError, ResourceUnavailableError
from proxyprovisioner.errors_catalog import actionable_error


class EngineState(str, Enum):
    ABSENT = "EngineAbsent"
    INSTALLING = "EngineInstalling"
    READY = "EngineReady"


class EngineService:
    """Makes sure Docker is installed, enabled and active."""

    APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}

    def __init__(
        self,
        logger,
        console,
        run_cmd: Callable,
        requests_module=requests,
        which: Callable = shutil.which,
        lock_wait_seconds: float = 300.0,
        lock_poll_seconds: float = 2.0,
    ):
        self.logger = logger
        self.console = console
        self.run_cmd = run_cmd
        self.requests = requests_module
        self.which = which
        self.lock_wait_seconds = lock_wait_seconds
        self.lock_poll_seconds = lock_poll_seconds
        self.state = EngineState.ABSENT
        self.transitions: List[Tuple[EngineState, EngineState]] = []

    def _transition(self, new_state: EngineState):
        self.logger.debug("Engine state: %s -> %s", self.state.value, new_state.value)
        self.transitions.append((self.state, new_state))
        self.state = new_state

    def ensure_engine(self) -> EngineState:
        if self.which("docker") is None:
            self.console.print("[yellow]Docker not found. Installing...[/yellow]")
            self._transition(EngineState.INSTALLING)
            self._install()
        else:
            self.logger.info("Docker found.")

        self._ensure_running()
        self._transition(EngineState.READY)
        self.console.print("[green]Docker is running.[/green]")
        return self.state

    def _install(self):
        failures: List[str] = []

        if self.which("apt-get") is not None:
            try:
                self._install_with_package_manager()
            except CommandError as exc:
                self.logger.warning("Package manager install of Docker failed: %s", exc)
                failures.append(str(exc))
            else:
                if self.which("docker") is not None:
                    return
                failures.append(f"{DOCKER_APT_PACKAGE} installed but `docker` is still not on PATH.")
        else:
            failures.append("apt-get is not available.")

        try:
            self._install_with_bootstrap_script()
        except (CommandError, self.requests.RequestException, OSError) as exc:
            self.logger.warning("Docker bootstrap script failed: %s", exc)
            failures.append(str(exc))
        else:
            if self.which("docker") is not None:
                return
            failures.append("Bootstrap script finished but `docker` is still not on PATH.")

        raise ResourceUnavailableError(actionable_error("engine_unavailable"), diagnostics=failures)

    def wait_for_package_manager(self):
        """Block until no process holds the dpkg locks, up to ``lock_wait_seconds``."""
        if self.which("fuser") is None:
            return

        deadline = time.monotonic() + self.lock_wait_seconds
        while self._package_manager_busy():
            if time.monotonic() >= deadline:
                raise ResourceUnavailableError(
                    f"Package manager is still busy after {self.lock_wait_seconds:.0f}s."
                )
            self.logger.info("APT is busy, waiting %.0fs...", self.lock_poll_seconds)
            time.sleep(self.lock_poll_seconds)

    def _package_manager_busy(self) -> bool:
        for lock_file in DPKG_LOCK_FILES:
            result = self.run_cmd(["fuser", lock_file], check=False, capture_output=True)
            if result.returncode == 0:
                return True
        return False

    def _install_with_package_manager(self):
        self.logger.info("Installing %s with apt-get...", DOCKER_APT_PACKAGE)
        self.wait_for_package_manager()
        for cmd in (
            ["apt-get", "update", "-y", "-q"],
            ["apt-get", "install", "-y", "-q", DOCKER_APT_PACKAGE],
        ):
            self.run_cmd(
                cmd,
                capture_output=True,
                env=self.APT_ENV,
                retry_count=3,
                retry_backoff_seconds=self.lock_poll_seconds,
                retry_on_returncodes=[APT_LOCK_RETURNCODE],
            )

    def _install_with_bootstrap_script(self):
        self.logger.info("Installing Docker with %s...", DOCKER_BOOTSTRAP_URL)
        response = self.requests.get(DOCKER_BOOTSTRAP_URL, timeout=60)
        response.raise_for_status()

        fd, script_path = tempfile.mkstemp(prefix="get-docker-", suffix=".sh")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                file_obj.write(response.text)
            self.run_cmd(["sh", script_path], capture_output=True)
        finally:
            try:
                os.remove(script_path)
            except OSError:
                pass

    def _ensure_running(self):
        if self.which("systemctl") is not None:
            try:
                self.run_cmd(["systemctl", "enable", "--now", "docker"], capture_output=True)
            except CommandError as exc:
                raise ResourceUnavailableError(
                    f"Docker failed to start: {exc}", diagnostics=self.engine_logs()
                ) from exc

            result = self.run_cmd(
                ["systemctl", "is-active", "--quiet", "docker"], check=False, capture_output=True
            )
            if result.returncode != 0:
                raise ResourceUnavailableError(
                    "Docker service is not active.", diagnostics=self.engine_logs()
                )
            return

        result = self.run_cmd(["docker", "info"], check=False, capture_output=True)
        if result.returncode != 0:
            raise ResourceUnavailableError(
                "Docker daemon is not reachable (`docker info` failed).",
                diagnostics=(result.stderr or "").strip().splitlines()[-LOG_TAIL_LINES:],
            )

    def engine_logs(self) -> List[str]:
        if self.which("journalctl") is None:
            return []
        try:
            result = self.run_cmd(
                ["journalctl", "-u", "docker", "-n", str(LOG_TAIL_LINES), "--no-pager"],
                check=False,
                capture_output=True,
            )
        except CommandError as exc:
            return [str(exc)]
        return (result.stdout or "").strip().splitlines()
