"""Filesystem helpers for proxyprovisioner."""

import fcntl
import logging
import os
import tempfile
from contextlib import contextmanager
from typing import Iterator

from rich.console import Console

from proxyprovisioner.constants import CONFIG_FILE_MODE, DATA_DIR_MODE
from proxyprovisioner.errors import ProvisionerError, ResourceUnavailableError
from proxyprovisioner.errors_catalog import actionable_error


class FileSystemService:
    """Encapsulates file and directory side effects."""

    def __init__(self, logger: logging.Logger, console: Console):
        self.logger = logger
        self.console = console

    def ensure_private_dir(self, path: str, mode: int = DATA_DIR_MODE):
        try:
            os.makedirs(path, mode=mode, exist_ok=True)
        except OSError as exc:
            raise ProvisionerError(f"Could not create directory '{path}': {exc}") from exc

    def atomic_write(self, path: str, content: str, mode: int = CONFIG_FILE_MODE):
        """Write ``content`` so readers see either the old file or the complete new one.

        The temp file lives in the target directory so ``os.replace`` stays on one
        filesystem, and it is restricted to ``mode`` before any byte is written.
        """
        directory = os.path.dirname(os.path.abspath(path))
        suffix = os.path.splitext(path)[1]
        fd, temp_path = tempfile.mkstemp(prefix=".tmp-", suffix=suffix, dir=directory)
        try:
            os.fchmod(fd, mode)
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as file_obj:
                file_obj.write(content)
                file_obj.flush()
                os.fsync(file_obj.fileno())
            os.replace(temp_path, path)
            os.chmod(path, mode)
        except OSError as exc:
            raise ProvisionerError(f"Could not write '{path}': {exc}") from exc
        finally:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass

    @contextmanager
    def exclusive_lock(self, lock_path: str) -> Iterator[str]:
        """Hold a non-blocking ``flock`` on ``lock_path`` for the duration of the block."""
        self.ensure_private_dir(os.path.dirname(os.path.abspath(lock_path)))
        file_obj = open(lock_path, "a+", encoding="utf-8")
        try:
            try:
                fcntl.flock(file_obj.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except OSError as exc:
                raise ResourceUnavailableError(actionable_error("lock_held", path=lock_path)) from exc

            self.logger.debug("Acquired lock %s", lock_path)
            try:
                yield lock_path
            finally:
                fcntl.flock(file_obj.fileno(), fcntl.LOCK_UN)
                self.logger.debug("Released lock %s", lock_path)
        finally:
            file_obj.close()
