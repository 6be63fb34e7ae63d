import logging
import os
import subprocess
import uuid
from contextlib import ExitStack
from dataclasses import replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import requests
from rich.console import Console
from rich.markup import escape

from .constants import (
    CONTAINER_CONFIG_PATH,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_SETTLE_SECONDS,
    TRANSPORT_PROTOCOL,
    WG_PROTOCOL,
)
from .errors import ProbeWarning, ProvisionerError, ValidationError
from .errors_catalog import actionable_error
from .models import (
    LaunchSpec,
    PortMapping,
    ProvisioningReport,
    ProvisioningRequest,
    VolumeMount,
    VpnReport,
    VpnRequest,
)
from .services.amneziawg import AmneziaWGService
from .services.command_runner import CommandRunner
from .services.config_synthesizer import ConfigSynthesizer
from .services.docker_runtime import DockerRuntimeService
from .services.engine import EngineService
from .services.filesystem import FileSystemService
from .services.firewall import FirewallService
from .services.health import HealthVerifier
from .services.input_resolver import InputResolver
from .services.manifest import ManifestService
from .services.port_allocator import PortAllocator
from .services.reporter import Reporter
from .services.validation import ValidationService

console = Console(stderr=True)
logger = logging.getLogger("proxyprovisioner")

Step = Tuple[str, Callable[[], Any]]


class Provisioner:
    """Runs the provisioning pipeline once, stopping at the first fatal error.

    resolve inputs -> allocate port -> write config -> ensure engine ->
    replace container -> verify running -> probe -> firewall -> report.
    Profiles change the order by overriding ``steps``.
    """

    def __init__(
        self,
        cli_values: Optional[Mapping[str, Any]] = None,
        config_values: Optional[Mapping[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
        interactive: bool = False,
        prompter=None,
        skip_firewall: bool = False,
        allow_non_root: bool = False,
        settle_seconds: float = DEFAULT_SETTLE_SECONDS,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
        dry_run: bool = False,
    ):
        self.cli_values = dict(cli_values or {})
        self.config_values = dict(config_values or {})
        self.skip_firewall = skip_firewall
        self.allow_non_root = allow_non_root
        self.dry_run = dry_run

        self.run_id = uuid.uuid4().hex[:10]
        self.request: Optional[ProvisioningRequest] = None
        self.current_step_name: Optional[str] = None
        self.probe_status: Optional[str] = None
        self._exit_stack = ExitStack()

        self.command_runner = CommandRunner(logger=logger)
        self.filesystem_service = FileSystemService(logger=logger, console=console)
        self.validation_service = ValidationService()
        self.input_resolver = InputResolver(
            logger=logger,
            validation_service=self.validation_service,
            environ=environ,
            prompter=prompter,
            interactive=interactive,
            host_detector=self.detect_host,
        )
        self.port_allocator = PortAllocator(logger=logger, run_cmd=self._run_cmd)
        self.config_synthesizer = ConfigSynthesizer(
            logger=logger,
            filesystem_service=self.filesystem_service,
        )
        self.engine_service = EngineService(
            logger=logger,
            console=console,
            run_cmd=self._run_cmd,
            requests_module=requests,
        )
        self.docker_runtime_service = DockerRuntimeService(
            logger=logger,
            console=console,
            run_cmd=self._run_cmd,
        )
        self.health_verifier = HealthVerifier(
            logger=logger,
            console=console,
            docker_runtime_service=self.docker_runtime_service,
            config_synthesizer=self.config_synthesizer,
            requests_module=requests,
            settle_seconds=settle_seconds,
            probe_timeout=probe_timeout,
        )
        self.firewall_service = FirewallService(logger=logger, run_cmd=self._run_cmd)
        self.reporter = Reporter()
        self.manifest_service = ManifestService(
            logger=logger,
            filesystem_service=self.filesystem_service,
        )

    def _run_step(self, name: str, callback, *args, **kwargs):
        self.manifest_service.step_started(name)
        self.current_step_name = name

        try:
            result = callback(*args, **kwargs)
        except Exception as exc:
            self.manifest_service.step_finished(name, "failed", error=str(exc))
            raise

        self.manifest_service.step_finished(name, "success")
        self.current_step_name = None
        return result

    def _run_cmd(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
        **kwargs,
    ) -> subprocess.CompletedProcess:
        return self.command_runner.run(cmd, check=check, capture_output=capture_output, **kwargs)

    def detect_host(self) -> Optional[str]:
        result = self._run_cmd(["hostname", "-I"], capture_output=True)
        addresses = (result.stdout or "").split()
        return addresses[0] if addresses else None

    def resolve_inputs(self) -> ProvisioningRequest:
        console.print("[blue]Resolving inputs...[/blue]")
        self.request = self.input_resolver.resolve(self.cli_values, self.config_values)
        logger.info(
            "Instance %s, host %s, %s user(s), data dir %s",
            self.request.instance_name,
            self.request.host,
            len(self.request.credentials),
            self.request.data_dir,
        )
        return self.request

    def check_privileges(self):
        if self.allow_non_root:
            return
        if os.geteuid() != 0:
            raise ValidationError(actionable_error("not_root"))

    def manifest_metadata(self) -> Dict[str, Any]:
        return {
            "instance_name": self.request.instance_name,
            "host": self.request.host,
            "image": self.request.image,
            "data_dir": self.request.data_dir,
            "bandwidth_bps": self.request.bandwidth_bps,
            "requested_port": self.request.requested_port,
            "user_count": len(self.request.credentials),
        }

    def acquire_lock(self):
        self._exit_stack.enter_context(self.filesystem_service.exclusive_lock(self.request.lock_path))
        self.manifest_service.bind(self.request.manifest_path, metadata=self.manifest_metadata())

    def allocate_port(self) -> int:
        port = self.port_allocator.allocate(self.request.requested_port)
        self.request = replace(self.request, port=port)
        self.manifest_service.update_metadata(port=port)
        return port

    def write_config(self) -> str:
        return self.config_synthesizer.write(self.request)

    def ensure_engine(self):
        return self.engine_service.ensure_engine()

    def reconcile_instance(self) -> bool:
        return self.docker_runtime_service.reconcile(self.request.instance_name)

    def pull_image(self) -> bool:
        return self.docker_runtime_service.pull_image(self.request.image)

    def build_launch_spec(self) -> LaunchSpec:
        return LaunchSpec(
            name=self.request.instance_name,
            image=self.request.image,
            ports=(PortMapping(self.request.port, TRANSPORT_PROTOCOL),),
            volumes=(VolumeMount(self.request.config_path, CONTAINER_CONFIG_PATH),),
        )

    def start_instance(self) -> str:
        return self.docker_runtime_service.start(self.build_launch_spec())

    def verify_running(self) -> str:
        return self.health_verifier.verify_running(
            self.request.instance_name,
            self.request.config_path,
        )

    def probe_proxy(self) -> str:
        try:
            status = self.health_verifier.probe(
                self.request.port,
                self.request.credentials[0],
                self.request.test_url,
            )
        except ProbeWarning as exc:
            logger.warning("%s The container is running; check egress or the proxy logs.", exc)
            status = "failed"
        self.probe_status = status
        self.manifest_service.update_metadata(probe_status=status)
        return status

    def open_firewall(self) -> bool:
        if self.skip_firewall:
            logger.info("Skipping firewall configuration.")
            return False
        return self.firewall_service.open_port(self.request.port)

    def report(self):
        self.reporter.emit(
            ProvisioningReport(
                host=self.request.host,
                port=self.request.port,
                credentials=self.request.credentials,
                probe_status=self.probe_status,
            )
        )

    def record_states(self):
        for component, service in (
            ("engine", self.engine_service),
            ("instance", self.docker_runtime_service),
        ):
            if service.transitions:
                self.manifest_service.record_states(component, service.transitions)

    def print_plan(self):
        console.print("[bold]Dry run: nothing was written or started.[/bold]")
        console.print(f"Config file: {self.request.config_path}", markup=False)
        console.print(
            " ".join(self.docker_runtime_service.build_run_command(self.build_launch_spec())),
            markup=False,
        )

    def steps(self) -> List[Step]:
        return [
            ("check_privileges", self.check_privileges),
            ("acquire_lock", self.acquire_lock),
            ("allocate_port", self.allocate_port),
            ("write_config", self.write_config),
            ("ensure_engine", self.ensure_engine),
            ("reconcile_instance", self.reconcile_instance),
            ("pull_image", self.pull_image),
            ("start_instance", self.start_instance),
            ("verify_running", self.verify_running),
            ("probe_proxy", self.probe_proxy),
            ("open_firewall", self.open_firewall),
            ("report", self.report),
        ]

    def dry_run_steps(self) -> List[Step]:
        return [("allocate_port", self.allocate_port)]

    def run(self) -> int:
        exit_code = 1
        manifest_status = "failed"
        manifest_error: Optional[str] = None
        self.manifest_service.start_run(self.run_id)

        try:
            logger.info("Starting proxyprovisioner...")
            self._run_step("resolve_inputs", self.resolve_inputs)

            steps = self.dry_run_steps() if self.dry_run else self.steps()
            for name, callback in steps:
                self._run_step(name, callback)

            if self.dry_run:
                self.print_plan()
                manifest_status = "dry_run"
            else:
                manifest_status = "success"
            exit_code = 0
            return exit_code

        except KeyboardInterrupt:
            console.print("[bold red]Operation cancelled by user.[/bold red]")
            logger.info("Operation cancelled by user")
            manifest_status = "aborted"
            manifest_error = "Operation cancelled by user."
            return exit_code
        except ProvisionerError as exc:
            console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}", highlight=False)
            for line in exc.diagnostics:
                console.print(line, markup=False, highlight=False)
            logger.debug("Step %s failed: %s", self.current_step_name or "run", exc)
            manifest_error = str(exc)
            return exit_code
        except Exception as exc:
            console.print(f"[bold red]Unexpected error:[/bold red] {escape(str(exc))}")
            logger.exception("Unexpected error")
            manifest_error = str(exc)
            return exit_code
        finally:
            self.record_states()
            self.manifest_service.finalize(manifest_status, error=manifest_error)
            self._exit_stack.close()


class AmneziaWGProvisioner(Provisioner):
    """Provisions an amnezia-wg-easy WireGuard server instead of the HTTP proxy.

    The old container is removed before the port check because it may still
    hold the UDP port. There is no relay check; the web UI is reported instead.
    """

    HASH_PLACEHOLDER = "<bcrypt-hash>"
    WEB_UI_PROTOCOL = "tcp"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.request: Optional[VpnRequest] = None
        self.password_hash: Optional[str] = None
        self.amneziawg_service = AmneziaWGService(
            logger=logger,
            filesystem_service=self.filesystem_service,
        )

    def resolve_inputs(self) -> VpnRequest:
        console.print("[blue]Resolving inputs...[/blue]")
        self.request = self.input_resolver.resolve_vpn(self.cli_values, self.config_values)
        logger.info(
            "Instance %s, host %s, port %s/%s, clients %s, data dir %s",
            self.request.instance_name,
            self.request.host,
            self.request.port,
            WG_PROTOCOL,
            self.request.client_subnet,
            self.request.data_dir,
        )
        return self.request

    def manifest_metadata(self) -> Dict[str, Any]:
        return {
            "instance_name": self.request.instance_name,
            "host": self.request.host,
            "image": self.request.image,
            "data_dir": self.request.data_dir,
            "port": self.request.port,
            "web_ui_port": self.request.web_ui_port,
            "client_subnet": self.request.client_subnet,
        }

    def allocate_port(self) -> int:
        self.port_allocator.allocate(self.request.port, protocol=WG_PROTOCOL)
        self.port_allocator.allocate(self.request.web_ui_port, protocol=self.WEB_UI_PROTOCOL)
        return self.request.port

    def prepare_data_dir(self) -> str:
        return self.amneziawg_service.prepare_data_dir(self.request)

    def hash_web_password(self):
        self.password_hash = self.amneziawg_service.hash_password(self.request.web_password)

    def build_launch_spec(self) -> LaunchSpec:
        if self.password_hash is None:
            raise ProvisionerError("Cannot launch before the web password is hashed.")
        return self.amneziawg_service.build_launch_spec(self.request, self.password_hash)

    def verify_running(self) -> str:
        return self.health_verifier.verify_running(self.request.instance_name)

    def open_firewall(self) -> bool:
        if self.skip_firewall:
            logger.info("Skipping firewall configuration.")
            return False
        opened = self.firewall_service.open_port(self.request.port, WG_PROTOCOL)
        web_opened = self.firewall_service.open_port(self.request.web_ui_port, self.WEB_UI_PROTOCOL)
        return opened and web_opened

    def report(self):
        self.reporter.emit(
            VpnReport(
                host=self.request.host,
                port=self.request.port,
                client_subnet=self.request.client_subnet,
                web_ui_port=self.request.web_ui_port,
                data_dir=self.request.data_dir,
            )
        )

    def print_plan(self):
        launch_spec = self.amneziawg_service.build_launch_spec(self.request, self.HASH_PLACEHOLDER)
        console.print("[bold]Dry run: nothing was written or started.[/bold]")
        console.print(f"Data directory: {self.request.data_dir}", markup=False)
        console.print(
            " ".join(self.docker_runtime_service.build_run_command(launch_spec)),
            markup=False,
        )

    def steps(self) -> List[Step]:
        return [
            ("check_privileges", self.check_privileges),
            ("acquire_lock", self.acquire_lock),
            ("ensure_engine", self.ensure_engine),
            ("reconcile_instance", self.reconcile_instance),
            ("allocate_port", self.allocate_port),
            ("prepare_data_dir", self.prepare_data_dir),
            ("hash_web_password", self.hash_web_password),
            ("pull_image", self.pull_image),
            ("start_instance", self.start_instance),
            ("verify_running", self.verify_running),
            ("open_firewall", self.open_firewall),
            ("report", self.report),
        ]

    def dry_run_steps(self) -> List[Step]:
        return []
