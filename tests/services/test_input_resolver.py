import pytest

from proxyprovisioner.errors import CommandError, ValidationError
from proxyprovisioner.services.input_resolver import InputResolver


class DummyLogger:
    def __init__(self):
        self.warnings = []

    def warning(self, message, *args, **_kwargs):
        self.warnings.append(message % args)

    def debug(self, *_args, **_kwargs):
        return None


class ScriptedPrompter:
    def __init__(self, answers):
        self.answers = list(answers)
        self.calls = []

    def ask(self, text, hide_input=False, default=None):
        self.calls.append((text, hide_input))
        return self.answers.pop(0)


def _resolver(tmp_path, environ=None, prompter=None, interactive=False, host_detector=None):
    return InputResolver(
        logger=DummyLogger(),
        environ=environ or {},
        prompter=prompter,
        interactive=interactive,
        host_detector=host_detector or (lambda: "203.0.113.5"),
    )


def test_flag_beats_environment_and_config(tmp_path):
    resolver = _resolver(tmp_path, environ={"PROXY_NAME": "from-env", "PROXY_USERS": "env:pw"})

    request = resolver.resolve(
        {"name": "from-flag", "users": "alice:pw1", "data_dir": str(tmp_path)},
        {"name": "from-config"},
    )

    assert request.instance_name == "from-flag"
    assert [credential.login for credential in request.credentials] == ["alice"]
    assert resolver.sources["name"] == "flag"


def test_environment_beats_config(tmp_path):
    resolver = _resolver(
        tmp_path,
        environ={"PROXY_NAME": "from-env", "PROXY_BANDWIDTH_MBIT": "5", "DATA_DIR": str(tmp_path)},
    )

    request = resolver.resolve(
        {"users": "alice:pw1"},
        {"name": "from-config", "bandwidth_mbit": 20},
    )

    assert request.instance_name == "from-env"
    assert request.bandwidth_bps == 5_000_000
    assert request.data_dir == str(tmp_path)


def test_config_and_defaults_fill_remaining_fields(tmp_path):
    resolver = _resolver(tmp_path)

    request = resolver.resolve(
        {"users": "alice:pw1", "data_dir": str(tmp_path)},
        {"port": 3128},
    )

    assert request.requested_port == 3128
    assert request.instance_name == "simple-proxy"
    assert request.bandwidth_bps == 10_000_000
    assert request.test_url == "https://ifconfig.me"
    assert request.image == "3proxy/3proxy"
    assert request.port is None
    assert request.config_path == str(tmp_path / "simple-proxy.cfg")


def test_missing_users_is_fatal_without_terminal(tmp_path):
    resolver = _resolver(tmp_path, interactive=False)

    with pytest.raises(ValidationError, match="No proxy users"):
        resolver.resolve({"data_dir": str(tmp_path)})


def test_bad_credentials_fail_before_host_detection(tmp_path):
    def host_detector():
        raise AssertionError("host detection must not run for invalid users")

    resolver = _resolver(tmp_path, host_detector=host_detector)

    with pytest.raises(ValidationError, match="Invalid user entry"):
        resolver.resolve({"users": "alice:p:w", "data_dir": str(tmp_path)})


def test_interactive_prompts_hide_passwords(tmp_path):
    prompter = ScriptedPrompter(["2", "alice", "pw1", "bob", "pw2"])
    resolver = _resolver(tmp_path, prompter=prompter, interactive=True)

    request = resolver.resolve({"data_dir": str(tmp_path)})

    assert [credential.login for credential in request.credentials] == ["alice", "bob"]
    password_prompts = [hidden for text, hidden in prompter.calls if "password" in text]
    login_prompts = [hidden for text, hidden in prompter.calls if "login" in text]
    assert password_prompts == [True, True]
    assert login_prompts == [False, False]


def test_interactive_rejects_colon_in_password(tmp_path):
    prompter = ScriptedPrompter(["1", "alice", "pw:1"])
    resolver = _resolver(tmp_path, prompter=prompter, interactive=True)

    with pytest.raises(ValidationError, match="Invalid user entry"):
        resolver.resolve({"data_dir": str(tmp_path)})


def test_interactive_rejects_non_positive_user_count(tmp_path):
    prompter = ScriptedPrompter(["0"])
    resolver = _resolver(tmp_path, prompter=prompter, interactive=True)

    with pytest.raises(ValidationError, match="user count"):
        resolver.resolve({"data_dir": str(tmp_path)})


def test_host_detection_failure_is_fatal_without_terminal(tmp_path):
    def host_detector():
        raise CommandError("Required command not found: hostname.")

    resolver = _resolver(tmp_path, host_detector=host_detector)

    with pytest.raises(ValidationError, match="detect the public host"):
        resolver.resolve({"users": "alice:pw1", "data_dir": str(tmp_path)})


def test_private_host_only_logs_a_note(tmp_path):
    logger = DummyLogger()
    resolver = InputResolver(logger=logger, environ={}, host_detector=lambda: "10.0.0.4")

    request = resolver.resolve({"users": "alice:pw1", "data_dir": str(tmp_path)})

    assert request.host == "10.0.0.4"
    assert any("private address" in message for message in logger.warnings)


def test_public_host_logs_no_note(tmp_path):
    logger = DummyLogger()
    resolver = InputResolver(logger=logger, environ={}, host_detector=lambda: "203.0.113.5")

    resolver.resolve({"users": "alice:pw1", "data_dir": str(tmp_path)})

    assert logger.warnings == []


def test_vpn_reads_wireguard_environment(tmp_path):
    resolver = _resolver(
        tmp_path,
        environ={
            "WG_HOST": "198.51.100.20",
            "WG_PORT": "53200",
            "WG_DEFAULT_ADDRESS": "10.66.0.x",
            "WEB_PASS": "s3cret",
            "PROXY_PORT": "3128",
        },
    )

    request = resolver.resolve_vpn({"data_dir": str(tmp_path)})

    assert request.host == "198.51.100.20"
    assert request.port == 53200
    assert request.client_subnet == "10.66.0.x"
    assert request.web_password == "s3cret"
    assert request.web_ui_port == 51821
    assert request.instance_name == "amnezia-wg-easy"
    assert resolver.sources["web_password"] == "env"
    assert "s3cret" not in repr(request)


def test_vpn_defaults(tmp_path):
    request = _resolver(tmp_path).resolve_vpn({"data_dir": str(tmp_path)}, {"web_password": "pw"})

    assert request.port == 53100
    assert request.client_subnet == "10.48.0.x"
    assert request.image == "ghcr.io/w0rng/amnezia-wg-easy"


def test_vpn_prompts_for_hidden_web_password(tmp_path):
    prompter = ScriptedPrompter(["s3cret"])
    resolver = _resolver(tmp_path, prompter=prompter, interactive=True)

    request = resolver.resolve_vpn({"data_dir": str(tmp_path)})

    assert request.web_password == "s3cret"
    assert prompter.calls == [("Web UI password (stored as a bcrypt hash)", True)]


def test_vpn_missing_web_password_is_fatal_without_terminal(tmp_path):
    resolver = _resolver(tmp_path)

    with pytest.raises(ValidationError, match="No web UI password was provided"):
        resolver.resolve_vpn({"data_dir": str(tmp_path)})


@pytest.mark.parametrize("port", ["80", "70000", "abc"])
def test_vpn_rejects_out_of_range_port(tmp_path, port):
    resolver = _resolver(tmp_path)

    with pytest.raises(ValidationError, match="WG_PORT"):
        resolver.resolve_vpn({"port": port, "data_dir": str(tmp_path)}, {"web_password": "pw"})


def test_vpn_host_detection_failure_names_wireguard_variable(tmp_path):
    resolver = _resolver(tmp_path, host_detector=lambda: None)

    with pytest.raises(ValidationError, match="WG_HOST"):
        resolver.resolve_vpn({"data_dir": str(tmp_path)}, {"web_password": "pw"})
