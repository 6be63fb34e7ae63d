"""Subprocess execution service for proxyprovisioner."""

import os
import subprocess
import time
from typing import Dict, Iterable, List, Optional

from proxyprovisioner.errors import CommandError


class CommandRunner:
    """Runs host commands (docker, ss, apt-get, ufw...) with consistent error handling.

    Failures surface as CommandError carrying the return code and stderr so
    callers can attach them to diagnostics. Transient failures (network pulls,
    a busy package manager) may be retried with ``retry_count``.
    """

    def __init__(self, logger, default_timeout: Optional[float] = None):
        self.logger = logger
        self.default_timeout = default_timeout

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
        timeout: Optional[float] = None,
        env: Optional[Dict[str, str]] = None,
        retry_count: int = 0,
        retry_backoff_seconds: float = 0.0,
        retry_on_returncodes: Optional[Iterable[int]] = None,
    ) -> subprocess.CompletedProcess:
        cmd_str = " ".join(cmd)
        attempts = max(1, retry_count + 1)
        retry_codes = set(retry_on_returncodes or [])
        run_env = {**os.environ, **env} if env else None

        for attempt in range(1, attempts + 1):
            last_attempt = attempt == attempts
            self.logger.debug("Executing (%s/%s): %s", attempt, attempts, cmd_str)

            try:
                result = self._execute(cmd, capture_output, timeout, run_env)
            except subprocess.TimeoutExpired as exc:
                if last_attempt:
                    raise CommandError(f"Command timed out after {exc.timeout}s: {cmd_str}") from exc
                self._wait_before_retry("timed out", cmd_str, retry_backoff_seconds)
                continue

            if result.returncode == 0:
                return result

            stderr = (result.stderr or "").strip() if capture_output else ""
            message = self._failure_message(result.returncode, cmd_str, stderr)
            retryable = not retry_codes or result.returncode in retry_codes
            if not last_attempt and retryable:
                self._wait_before_retry(message, cmd_str, retry_backoff_seconds)
                continue

            if check:
                raise CommandError(message, returncode=result.returncode, stderr=stderr)
            self.logger.debug(message)
            return result

        raise CommandError(f"Command failed after retries: {cmd_str}")

    def _execute(self, cmd, capture_output, timeout, env) -> subprocess.CompletedProcess:
        try:
            result = subprocess.run(
                cmd,
                text=True,
                capture_output=capture_output,
                timeout=timeout if timeout is not None else self.default_timeout,
                env=env,
            )
        except FileNotFoundError as exc:
            raise CommandError(
                f"Required command not found: {cmd[0]}. Please install it and try again."
            ) from exc
        except OSError as exc:
            raise CommandError(f"Failed to execute command: {' '.join(cmd)}. {exc}") from exc

        if capture_output and result.stdout:
            self.logger.debug("Command output: %s", result.stdout.strip())
        return result

    def _wait_before_retry(self, reason: str, cmd_str: str, backoff_seconds: float):
        self.logger.warning("Retrying in %.1fs (%s): %s", backoff_seconds, reason, cmd_str)
        time.sleep(backoff_seconds)

    @staticmethod
    def _failure_message(returncode: int, cmd_str: str, stderr: str) -> str:
        message = f"Command failed ({returncode}): {cmd_str}"
        if stderr:
            message = f"{message}\n{stderr}"
        return message
