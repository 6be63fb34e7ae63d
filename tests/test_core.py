import json
import subprocess

import proxyprovisioner.core as core_module
from proxyprovisioner.core import AmneziaWGProvisioner, Provisioner
from proxyprovisioner.errors import CommandError


class FakeHost:
    """Plays the part of ss, docker and systemctl for a whole provisioning run."""

    def __init__(self, listening=(20000, 20001), containers=(), container_state="running"):
        self.listening = list(listening)
        self.containers = set(containers)
        self.container_state = container_state
        self.calls = []

    def run(self, cmd, check=True, capture_output=False, **_kwargs):
        self.calls.append(cmd)
        stdout = ""
        returncode = 0

        if cmd[:2] == ["ss", "-H"]:
            stdout = "".join(
                f"LISTEN 0 4096 0.0.0.0:{port} 0.0.0.0:*\n" for port in self.listening
            )
        elif cmd[:3] == ["docker", "ps", "-a"]:
            stdout = "\n".join(sorted(self.containers))
        elif cmd[:3] == ["docker", "rm", "-f"]:
            self.containers.discard(cmd[3])
        elif cmd[:2] == ["docker", "run"]:
            self.containers.add(cmd[cmd.index("--name") + 1])
            stdout = "0123456789abcdef\n"
        elif cmd[:2] == ["docker", "inspect"]:
            stdout = f"{self.container_state}\n"
        elif cmd[:2] == ["docker", "logs"]:
            stdout = "3proxy: exited\n"
        elif cmd[:2] == ["ufw", "status"]:
            stdout = "Status: inactive\n"

        if check and returncode != 0:
            raise CommandError(f"Command failed ({returncode}): {' '.join(cmd)}", returncode=returncode)
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr="")

    def docker_commands(self, verb):
        return [cmd for cmd in self.calls if cmd[:2] == ["docker", verb]]


class FakeResponse:
    def raise_for_status(self):
        return None


class FakeRequestsModule:
    class RequestException(Exception):
        pass

    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error:
            raise self.error
        return FakeResponse()


def _provisioner(tmp_path, host, requests_module=None, **overrides):
    cli_values = {
        "users": "alice:pw1,bob:pw2",
        "host": "203.0.113.5",
        "data_dir": str(tmp_path / "data"),
    }
    cli_values.update(overrides.pop("cli_values", {}))
    options = {"allow_non_root": True, "settle_seconds": 0}
    options.update(overrides)

    provisioner = Provisioner(cli_values=cli_values, environ={}, **options)
    provisioner.command_runner = host
    provisioner.engine_service.which = lambda name: f"/usr/bin/{name}"
    provisioner.firewall_service.which = lambda name: f"/usr/sbin/{name}"
    provisioner.health_verifier.requests = requests_module or FakeRequestsModule()
    return provisioner


def test_run_provisions_proxy_on_first_free_port(tmp_path, capsys):
    host = FakeHost()

    exit_code = _provisioner(tmp_path, host).run()

    assert exit_code == 0
    config_path = tmp_path / "data" / "simple-proxy.cfg"
    config_lines = config_path.read_text(encoding="utf-8").splitlines()
    assert "proxy -p20002 -a" in config_lines
    assert config_lines.count("allow alice") == 1
    assert config_lines.count("allow bob") == 1
    assert oct(config_path.stat().st_mode & 0o777) == "0o600"

    run_cmd = host.docker_commands("run")[0]
    assert "20002:20002/tcp" in run_cmd
    assert f"{config_path}:/etc/3proxy/3proxy.cfg:ro" in run_cmd
    assert host.containers == {"simple-proxy"}

    assert capsys.readouterr().out.splitlines() == [
        "ProxyHost=203.0.113.5",
        "ProxyPort=20002",
        "ProxyLogin=alice",
        "ProxyPass=pw1",
        "ProxyLogin=bob",
        "ProxyPass=pw2",
        "ProxyTest=ok",
    ]


def test_run_manifest_records_steps_without_secrets(tmp_path):
    exit_code = _provisioner(tmp_path, FakeHost()).run()

    assert exit_code == 0
    manifest_path = tmp_path / "data" / "simple-proxy.manifest.json"
    raw = manifest_path.read_text(encoding="utf-8")
    data = json.loads(raw)

    assert data["status"] == "success"
    assert data["metadata"]["port"] == 20002
    assert data["metadata"]["user_count"] == 2
    assert data["steps"][-1]["name"] == "report"
    assert data["states"]["engine"] == ["EngineAbsent", "EngineReady"]
    assert data["states"]["instance"] == ["InstanceAbsent", "InstanceStarting", "InstanceRunning"]
    assert "pw1" not in raw
    assert "alice" not in raw


def test_run_fails_when_requested_port_in_use(tmp_path, capsys):
    host = FakeHost(listening=(22, 8080))

    exit_code = _provisioner(tmp_path, host, cli_values={"port": "8080"}).run()

    assert exit_code == 1
    assert not (tmp_path / "data" / "simple-proxy.cfg").exists()
    assert host.docker_commands("run") == []
    assert "8080 is already in use" in capsys.readouterr().err


def test_run_leaves_existing_config_untouched_when_port_in_use(tmp_path):
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    config_path = data_dir / "simple-proxy.cfg"
    previous = b"users old:CL:secret\nproxy -p20000 -a\n"
    config_path.write_bytes(previous)
    host = FakeHost(listening=(22, 8080))

    exit_code = _provisioner(tmp_path, host, cli_values={"port": "8080"}).run()

    assert exit_code == 1
    assert config_path.read_bytes() == previous
    assert host.docker_commands("run") == []


def test_run_reports_failed_probe_but_succeeds(tmp_path, capsys):
    requests_module = FakeRequestsModule(error=FakeRequestsModule.RequestException("timed out"))

    exit_code = _provisioner(tmp_path, FakeHost(), requests_module=requests_module).run()

    assert exit_code == 0
    assert capsys.readouterr().out.splitlines()[-1] == "ProxyTest=failed"


def test_run_replaces_existing_container(tmp_path):
    host = FakeHost(containers={"simple-proxy"})

    exit_code = _provisioner(tmp_path, host).run()

    assert exit_code == 0
    assert ["docker", "rm", "-f", "simple-proxy"] in host.calls
    assert host.calls.index(["docker", "rm", "-f", "simple-proxy"]) < host.calls.index(
        host.docker_commands("run")[0]
    )
    assert host.containers == {"simple-proxy"}


def test_run_fails_with_masked_config_when_container_exits(tmp_path, capsys):
    host = FakeHost(container_state="exited")

    exit_code = _provisioner(tmp_path, host).run()

    captured = capsys.readouterr()
    assert exit_code == 1
    assert "state=exited" in captured.err
    assert "users alice:CL:**** bob:CL:****" in captured.err
    assert "3proxy: exited" in captured.err
    assert "pw1" not in captured.err
    assert "ProxyHost=" not in captured.out


def test_dry_run_writes_nothing(tmp_path, capsys):
    host = FakeHost()

    exit_code = _provisioner(tmp_path, host, dry_run=True).run()

    assert exit_code == 0
    assert not (tmp_path / "data").exists()
    assert host.docker_commands("run") == []
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "docker run -d --name simple-proxy" in captured.err


def test_run_requires_root(tmp_path, monkeypatch, capsys):
    monkeypatch.setattr(core_module.os, "geteuid", lambda: 1000)
    host = FakeHost()

    exit_code = _provisioner(tmp_path, host, allow_non_root=False).run()

    assert exit_code == 1
    assert "must be run as root" in capsys.readouterr().err
    assert host.calls == []


def test_run_without_users_fails_before_touching_host(tmp_path, capsys):
    host = FakeHost()
    provisioner = Provisioner(
        cli_values={"host": "203.0.113.5", "data_dir": str(tmp_path / "data")},
        environ={},
        allow_non_root=True,
        settle_seconds=0,
    )
    provisioner.command_runner = host

    exit_code = provisioner.run()

    assert exit_code == 1
    assert "No proxy users were provided." in capsys.readouterr().err
    assert host.calls == []


def test_run_prints_bracketed_input_literally(tmp_path, capsys):
    host = FakeHost()

    exit_code = _provisioner(tmp_path, host, cli_values={"users": "[/bold]:a:b"}).run()

    assert exit_code == 1
    err = capsys.readouterr().err
    assert "Invalid user entry: [/bold]:..." in err
    assert host.calls == []


def test_run_prints_command_stderr_with_brackets_literally(tmp_path, capsys):
    class FailingRunHost(FakeHost):
        def run(self, cmd, check=True, capture_output=False, **kwargs):
            if cmd[:2] == ["docker", "run"]:
                raise CommandError(
                    "Command failed (125): docker run\n[error] port is already allocated",
                    returncode=125,
                )
            return super().run(cmd, check=check, capture_output=capture_output, **kwargs)

    exit_code = _provisioner(tmp_path, FailingRunHost()).run()

    assert exit_code == 1
    assert "[error] port is already allocated" in capsys.readouterr().err


def _vpn_provisioner(tmp_path, host, **overrides):
    cli_values = {"host": "203.0.113.5", "data_dir": str(tmp_path / "wg")}
    cli_values.update(overrides.pop("cli_values", {}))
    options = {"allow_non_root": True, "settle_seconds": 0}
    options.update(overrides)

    provisioner = AmneziaWGProvisioner(
        cli_values=cli_values, environ={"WEB_PASS": "s3cret"}, **options
    )
    provisioner.command_runner = host
    provisioner.engine_service.which = lambda name: f"/usr/bin/{name}"
    provisioner.firewall_service.which = lambda name: f"/usr/sbin/{name}"
    return provisioner


def test_vpn_run_launches_amneziawg_with_explicit_privileges(tmp_path, capsys):
    host = FakeHost()

    exit_code = _vpn_provisioner(tmp_path, host).run()

    assert exit_code == 0
    assert ["ss", "-H", "-u", "-l", "-n"] in host.calls
    assert ["ss", "-H", "-t", "-l", "-n"] in host.calls

    run_cmd = host.docker_commands("run")[0]
    assert "53100:53100/udp" in run_cmd
    assert "51821:51821/tcp" in run_cmd
    assert f"{tmp_path / 'wg'}:/etc/wireguard" in run_cmd
    assert "--cap-add=NET_ADMIN" in run_cmd
    assert "--cap-add=SYS_MODULE" in run_cmd
    assert "--device=/dev/net/tun" in run_cmd
    assert "WG_HOST=203.0.113.5" in run_cmd
    assert "WG_PORT=53100" in run_cmd
    assert "WG_DEFAULT_ADDRESS=10.48.0.x" in run_cmd
    assert any(arg.startswith("PASSWORD_HASH=$2") for arg in run_cmd)
    assert "s3cret" not in " ".join(run_cmd)
    assert run_cmd[-1] == "ghcr.io/w0rng/amnezia-wg-easy"

    captured = capsys.readouterr()
    assert captured.out.splitlines() == [
        "WgHost=203.0.113.5",
        "WgPort=53100",
        "WgDefaultAddress=10.48.0.x",
        "WgWebUI=http://203.0.113.5:51821",
        f"WgDataDir={tmp_path / 'wg'}",
    ]
    assert "s3cret" not in captured.out + captured.err


def test_vpn_manifest_keeps_password_and_hash_out(tmp_path):
    host = FakeHost()

    exit_code = _vpn_provisioner(tmp_path, host).run()

    assert exit_code == 0
    raw = (tmp_path / "wg" / "amnezia-wg-easy.manifest.json").read_text(encoding="utf-8")
    data = json.loads(raw)
    password_hash = next(
        arg for arg in host.docker_commands("run")[0] if arg.startswith("PASSWORD_HASH=")
    ).split("=", 1)[1]

    assert data["status"] == "success"
    assert data["metadata"]["port"] == 53100
    assert data["metadata"]["client_subnet"] == "10.48.0.x"
    assert [step["name"] for step in data["steps"]] == [
        "resolve_inputs",
        "check_privileges",
        "acquire_lock",
        "ensure_engine",
        "reconcile_instance",
        "allocate_port",
        "prepare_data_dir",
        "hash_web_password",
        "pull_image",
        "start_instance",
        "verify_running",
        "open_firewall",
        "report",
    ]
    assert "s3cret" not in raw
    assert password_hash not in raw


def test_vpn_run_removes_old_container_before_checking_udp_port(tmp_path):
    host = FakeHost(containers={"amnezia-wg-easy"})

    exit_code = _vpn_provisioner(tmp_path, host).run()

    assert exit_code == 0
    assert host.calls.index(["docker", "rm", "-f", "amnezia-wg-easy"]) < host.calls.index(
        ["ss", "-H", "-u", "-l", "-n"]
    )


def test_vpn_run_fails_when_udp_port_in_use(tmp_path, capsys):
    host = FakeHost(listening=(53100,))

    exit_code = _vpn_provisioner(tmp_path, host).run()

    assert exit_code == 1
    assert "UDP port 53100 is already in use" in capsys.readouterr().err
    assert host.docker_commands("run") == []


def test_vpn_run_reports_logs_only_when_container_exits(tmp_path, capsys):
    host = FakeHost(container_state="exited")

    exit_code = _vpn_provisioner(tmp_path, host).run()

    captured = capsys.readouterr()
    assert exit_code == 1
    assert "state=exited" in captured.err
    assert "Config:" not in captured.err
    assert "WgHost=" not in captured.out


def test_vpn_dry_run_shows_placeholder_instead_of_hash(tmp_path, capsys):
    host = FakeHost()

    exit_code = _vpn_provisioner(tmp_path, host, dry_run=True).run()

    assert exit_code == 0
    assert not (tmp_path / "wg").exists()
    assert host.calls == []
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "docker run -d --name amnezia-wg-easy" in captured.err
    assert "PASSWORD_HASH=<bcrypt-hash>" in captured.err
    assert "s3cret" not in captured.err
