"""Configuration loader for proxyprovisioner."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from proxyprovisioner.errors import ValidationError


class ConfigLoader:
    """Loads YAML configuration files used beneath flags and environment variables."""

    SUPPORTED_KEYS = {
        "name",
        "port",
        "host",
        "users",
        "data_dir",
        "bandwidth_mbit",
        "test_url",
        "image",
        "verbose",
        "log_file",
        "skip_firewall",
        "allow_non_root",
        "settle_seconds",
        "probe_timeout",
        "dry_run",
        "profile",
        "client_subnet",
        "web_password",
    }

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise ValidationError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise ValidationError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise ValidationError("Config file must contain a YAML mapping at the root.")

        # Accept the flag spelling (`data-dir`) as well as the key spelling (`data_dir`).
        parsed = {str(key).replace("-", "_"): value for key, value in parsed.items()}

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise ValidationError(f"Unknown configuration keys: {unknown_list}")

        return parsed
