"""Docker container lifecycle for the proxy instance."""

from enum import Enum
from typing import Callable, List, Optional, Tuple

from proxyprovisioner.constants import LOG_TAIL_LINES, PULL_RETRY_BACKOFF_SECONDS, PULL_RETRY_COUNT
from proxyprovisioner.errors import CommandError, LaunchError
from proxyprovisioner.models import LaunchSpec


class InstanceState(str, Enum):
    ABSENT = "InstanceAbsent"
    REMOVING = "InstanceRemoving"
    STARTING = "InstanceStarting"
    RUNNING = "InstanceRunning"
    FAILED = "InstanceFailed"


class DockerRuntimeService:
    """Reconciles, starts and inspects the named proxy container."""

    def __init__(self, logger, console, run_cmd: Callable):
        self.logger = logger
        self.console = console
        self.run_cmd = run_cmd
        self.state: Optional[InstanceState] = None
        self.transitions: List[Tuple[Optional[InstanceState], InstanceState]] = []

    def _transition(self, new_state: InstanceState):
        previous = self.state.value if self.state else "<unknown>"
        self.logger.debug("Instance state: %s -> %s", previous, new_state.value)
        self.transitions.append((self.state, new_state))
        self.state = new_state

    def instance_exists(self, name: str) -> bool:
        result = self.run_cmd(
            ["docker", "ps", "-a", "--filter", f"name={name}", "--format", "{{.Names}}"],
            capture_output=True,
        )
        # The name filter is a substring match; keep exact names only.
        return name in (result.stdout or "").split()

    def reconcile(self, name: str) -> bool:
        """Remove any container called ``name``. Returns True when one was removed."""
        if not self.instance_exists(name):
            self._transition(InstanceState.ABSENT)
            self.logger.info("No existing container named %s.", name)
            return False

        self._transition(InstanceState.REMOVING)
        self.console.print(f"[yellow]Removing existing container {name}...[/yellow]")
        try:
            self.run_cmd(["docker", "rm", "-f", name], capture_output=True)
        except CommandError as exc:
            self._transition(InstanceState.FAILED)
            raise LaunchError(f"Could not remove existing container {name}: {exc}") from exc

        if self.instance_exists(name):
            self._transition(InstanceState.FAILED)
            raise LaunchError(f"Container {name} still exists after forced removal.")

        self._transition(InstanceState.ABSENT)
        return True

    def pull_image(self, image: str) -> bool:
        try:
            self.run_cmd(
                ["docker", "pull", image],
                capture_output=True,
                retry_count=PULL_RETRY_COUNT,
                retry_backoff_seconds=PULL_RETRY_BACKOFF_SECONDS,
            )
        except CommandError as exc:
            self.logger.warning("Could not pull %s, using a cached image if present: %s", image, exc)
            return False
        return True

    def build_run_command(self, launch_spec: LaunchSpec) -> List[str]:
        cmd = [
            "docker",
            "run",
            "-d",
            "--name",
            launch_spec.name,
            "--restart",
            launch_spec.restart_policy,
        ]
        for mapping in launch_spec.ports:
            cmd.extend(["-p", mapping.publish_arg()])
        for volume in launch_spec.volumes:
            cmd.extend(["-v", volume.volume_arg()])
        for capability in launch_spec.capabilities:
            cmd.append(f"--cap-add={capability}")
        for device in launch_spec.devices:
            cmd.append(f"--device={device}")
        for key, value in launch_spec.environment:
            cmd.extend(["-e", f"{key}={value}"])
        cmd.append(launch_spec.image)
        return cmd

    def start(self, launch_spec: LaunchSpec) -> str:
        self._transition(InstanceState.STARTING)
        published = ", ".join(f"{mapping.port}/{mapping.protocol}" for mapping in launch_spec.ports)
        self.console.print(f"[blue]Starting container {launch_spec.name} on {published}...[/blue]")
        try:
            result = self.run_cmd(self.build_run_command(launch_spec), capture_output=True)
        except CommandError as exc:
            self._transition(InstanceState.FAILED)
            raise LaunchError(
                f"Could not start container {launch_spec.name}: {exc}",
                diagnostics=self.recent_logs(launch_spec.name),
            ) from exc

        container_id = (result.stdout or "").strip()
        self.logger.debug("Started container %s (%s)", launch_spec.name, container_id[:12])
        return container_id

    def status(self, name: str) -> str:
        result = self.run_cmd(
            ["docker", "inspect", "-f", "{{.State.Status}}", name],
            check=False,
            capture_output=True,
        )
        if result.returncode != 0:
            return "unknown"
        return (result.stdout or "").strip() or "unknown"

    def mark_running(self, is_running: bool):
        self._transition(InstanceState.RUNNING if is_running else InstanceState.FAILED)

    def recent_logs(self, name: str, tail: int = LOG_TAIL_LINES) -> List[str]:
        try:
            result = self.run_cmd(
                ["docker", "logs", "--tail", str(tail), name],
                check=False,
                capture_output=True,
            )
        except CommandError as exc:
            return [str(exc)]
        output = "\n".join(part for part in (result.stdout, result.stderr) if part)
        return output.strip().splitlines()
