"""Run manifest generation service."""

import json
import os
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Tuple

from proxyprovisioner.errors import ProvisionerError


class ManifestService:
    """Records step timings, lifecycle states and non-secret run metadata as JSON.

    Steps are collected in memory from the start of the run; the file is only
    written once ``bind`` has been given a path (the data directory is not known
    before inputs are resolved). Logins and passwords never go in here.
    """

    def __init__(self, logger, filesystem_service, manifest_file: Optional[str] = None):
        self.logger = logger
        self.filesystem_service = filesystem_service
        self.manifest_file = manifest_file
        self.manifest: Dict[str, Any] = {
            "run_id": None,
            "status": "running",
            "started_at": None,
            "finished_at": None,
            "duration_seconds": None,
            "metadata": {},
            "states": {},
            "steps": [],
            "error": None,
        }

    def start_run(self, run_id: str):
        self.manifest.update(run_id=run_id, status="running", started_at=self._now())

    def bind(self, manifest_file: str, metadata: Dict[str, Any]):
        self.manifest_file = manifest_file
        self.update_metadata(**metadata)

    def update_metadata(self, **values: Any):
        self.manifest["metadata"].update(values)
        self.write()

    def record_states(self, component: str, transitions: Iterable[Tuple[Any, Any]]):
        """Store a state machine's history as a list of state names, oldest first."""
        history = []
        for previous, current in transitions:
            if not history and previous is not None:
                history.append(self._state_name(previous))
            history.append(self._state_name(current))
        self.manifest["states"][component] = history
        self.write()

    def step_started(self, step_name: str):
        self.manifest["steps"].append(
            {"name": step_name, "status": "running", "started_at": self._now()}
        )
        self.write()

    def step_finished(self, step_name: str, status: str, error: Optional[str] = None):
        step = self._open_step(step_name)
        if step is not None:
            step["finished_at"] = self._now()
            step["status"] = status
            step["duration_seconds"] = self._duration(step["started_at"], step["finished_at"])
            if error:
                step["error"] = error
        self.write()

    def finalize(self, status: str, error: Optional[str] = None):
        finished_at = self._now()
        self.manifest.update(status=status, finished_at=finished_at, error=error)
        if self.manifest["started_at"]:
            self.manifest["duration_seconds"] = self._duration(
                self.manifest["started_at"], finished_at
            )
        self.write()

    def write(self):
        if not self.manifest_file or not os.path.isdir(os.path.dirname(self.manifest_file) or "."):
            return

        content = json.dumps(self.manifest, indent=2, sort_keys=True) + "\n"
        try:
            self.filesystem_service.atomic_write(self.manifest_file, content)
        except ProvisionerError as exc:
            # Manifest failures do not fail the run.
            self.logger.warning("Could not write manifest file: %s", exc)

    def _open_step(self, step_name: str) -> Optional[Dict[str, Any]]:
        for step in reversed(self.manifest["steps"]):
            if step["name"] == step_name and step["status"] == "running":
                return step
        return None

    @staticmethod
    def _state_name(state: Any) -> str:
        return getattr(state, "value", str(state))

    @staticmethod
    def _duration(started_at: str, finished_at: str) -> float:
        elapsed = datetime.fromisoformat(finished_at) - datetime.fromisoformat(started_at)
        return elapsed.total_seconds()

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()
