from __future__ import annotations

import fcntl
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Iterator

from pydantic import BaseModel, TypeAdapter, ValidationError

from .gate_config import GATE_PROGRESSION
from .models import GATE_STATUS_TRANSITIONS, Gate, GateStatus, GateType, Project, ProofArtifact
from .sandbox import is_valid_project_id, validate_project_id

logger = logging.getLogger(__name__)

_LOCK_SUFFIX = ".lock"
_GATE_LIST = TypeAdapter(list[Gate])


# ---------------------------------------------------------------------------
# File helpers
# ---------------------------------------------------------------------------


@contextmanager
def _locked_file(path: Path) -> Iterator[None]:
    """Hold an exclusive ``fcntl`` lock on a ``.lock`` sidecar of *path*.

    The data file itself is replaced via ``os.replace`` while the lock is
    held, so the lock must live on a separate file.
    """
    lock_path = path.with_suffix(path.suffix + _LOCK_SUFFIX)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+", encoding="utf-8") as lock_handle:
        fcntl.flock(lock_handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)


def _atomic_write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def _safe_read_json(path: Path, label: str) -> str:
    """Return the text of a JSON record.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is empty or not UTF-8.
    """
    if not path.is_file():
        raise FileNotFoundError(f"{label} not found: {path}")
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise ValueError(f"{label} at {path} contains invalid UTF-8 data") from exc
    if not text.strip():
        raise ValueError(f"{label} at {path} is empty")
    return text


def _load_model(path: Path, model: type[BaseModel], label: str) -> Any:
    text = _safe_read_json(path, label)
    try:
        return model.model_validate_json(text)
    except ValidationError as exc:
        raise ValueError(f"{label} at {path} failed validation: {exc}") from exc


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# GateStateStore
# ---------------------------------------------------------------------------


class GateStateStore:
    """Filesystem store for projects, gates, and proof artifacts.

    Layout under ``root``::

        projects/<project>/project.json
        projects/<project>/gates.json
        projects/<project>/artifacts/<artifact_id>.json

    All of a project's gates live in one file so that a gate transition and
    the creation of the next gate happen in a single locked write.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self.projects_dir = root / "projects"
        self.projects_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def project_dir(self, project_id: str) -> Path:
        return self.projects_dir / validate_project_id(project_id)

    def project_path(self, project_id: str) -> Path:
        return self.project_dir(project_id) / "project.json"

    def gates_path(self, project_id: str) -> Path:
        return self.project_dir(project_id) / "gates.json"

    def artifacts_dir(self, project_id: str) -> Path:
        return self.project_dir(project_id) / "artifacts"

    def _project_dirs(self) -> list[Path]:
        return sorted(path for path in self.projects_dir.iterdir() if path.is_dir())

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(self, project: Project) -> Project:
        """Persist a new project.

        Raises:
            ValueError: If a project with the same ID already exists.
        """
        path = self.project_path(project.id)
        with _locked_file(path):
            if path.exists():
                raise ValueError(f"project {project.id} already exists")
            _atomic_write_text(path, project.model_dump_json(indent=2))
        logger.info("Created project %s for owner %s", project.id, project.owner_id)
        return project

    def get_project(self, project_id: str) -> Project:
        """Raises FileNotFoundError if the project does not exist, ValueError if corrupt."""
        if not is_valid_project_id(project_id):
            raise FileNotFoundError(f"project {project_id!r} not found")
        project = _load_model(self.project_path(project_id), Project, f"project {project_id}")
        if project.id != project_id:
            raise FileNotFoundError(f"project {project_id!r} not found (directory holds {project.id!r})")
        return project

    def find_project(self, project_id: str) -> Project | None:
        try:
            return self.get_project(project_id)
        except FileNotFoundError:
            return None

    def set_current_gate(self, project_id: str, current_gate: str) -> Project:
        path = self.project_path(project_id)
        with _locked_file(path):
            project = _load_model(path, Project, f"project {project_id}")
            project.current_gate = current_gate
            _atomic_write_text(path, project.model_dump_json(indent=2))
        return project

    def list_projects(self) -> list[Project]:
        projects: list[Project] = []
        for directory in self._project_dirs():
            path = directory / "project.json"
            if path.is_file():
                projects.append(_load_model(path, Project, f"project at {directory.name}"))
        return projects

    # ------------------------------------------------------------------
    # Gates
    # ------------------------------------------------------------------

    def _read_gates(self, path: Path) -> dict[GateType, Gate]:
        if not path.exists():
            return {}
        text = _safe_read_json(path, "gate list")
        try:
            gates = _GATE_LIST.validate_json(text)
        except ValidationError as exc:
            raise ValueError(f"gate list at {path} failed validation: {exc}") from exc
        return {gate.gate_type: gate for gate in gates}

    def _write_gates(self, path: Path, gates: dict[GateType, Gate]) -> None:
        ordered = [gates[gate_type] for gate_type in GATE_PROGRESSION if gate_type in gates]
        _atomic_write_text(path, json.dumps([gate.model_dump(mode="json") for gate in ordered], indent=2))

    @contextmanager
    def gate_transaction(self, project_id: str) -> Iterator[dict[GateType, Gate]]:
        """Yield the project's gates keyed by type under an exclusive lock.

        Mutations to the yielded mapping are written back atomically when the
        block exits normally and discarded if it raises.
        """
        path = self.gates_path(project_id)
        with _locked_file(path):
            gates = self._read_gates(path)
            yield gates
            self._write_gates(path, gates)

    def list_gates_for_project(self, project_id: str) -> list[Gate]:
        path = self.gates_path(project_id)
        with _locked_file(path):
            gates = self._read_gates(path)
        return [gates[gate_type] for gate_type in GATE_PROGRESSION if gate_type in gates]

    def find_gate_by_type(self, project_id: str, gate_type: GateType) -> Gate | None:
        path = self.gates_path(project_id)
        with _locked_file(path):
            return self._read_gates(path).get(gate_type)

    def find_gate(self, gate_id: str) -> Gate | None:
        for directory in self._project_dirs():
            path = directory / "gates.json"
            if not path.is_file():
                continue
            with _locked_file(path):
                gates = self._read_gates(path)
            for gate in gates.values():
                if gate.id == gate_id:
                    return gate
        return None

    def create_gate(self, gate: Gate) -> Gate:
        """Persist a new gate.

        Raises:
            ValueError: If the project already has a gate of the same type.
        """
        with self.gate_transaction(gate.project_id) as gates:
            if gate.gate_type in gates:
                raise ValueError(f"project {gate.project_id} already has a {gate.gate_type.value} gate")
            gates[gate.gate_type] = gate
        logger.info("Created gate %s (%s) for project %s", gate.id, gate.gate_type.value, gate.project_id)
        return gate

    def update_gate_status(self, gate: Gate, status: GateStatus, **changes: Any) -> Gate:
        """Move a gate to ``status`` under the project lock, applying ``changes``.

        Raises:
            FileNotFoundError: If the gate no longer exists.
            ValueError: If the status change is not allowed from the stored status.
        """
        with self.gate_transaction(gate.project_id) as gates:
            current = gates.get(gate.gate_type)
            if current is None or current.id != gate.id:
                raise FileNotFoundError(f"gate {gate.id} not found for project {gate.project_id}")
            if status not in GATE_STATUS_TRANSITIONS[current.status]:
                raise ValueError(
                    f"Illegal gate status transition for {gate.id}: {current.status.value} -> {status.value}"
                )
            updated = current.model_copy(update={**changes, "status": status, "updated_at": _utcnow()})
            gates[gate.gate_type] = updated
        return updated

    # ------------------------------------------------------------------
    # Proof artifacts
    # ------------------------------------------------------------------

    def save_artifact(self, artifact: ProofArtifact) -> ProofArtifact:
        path = self.artifacts_dir(artifact.project_id) / f"{artifact.id}.json"
        with _locked_file(path):
            _atomic_write_text(path, artifact.model_dump_json(indent=2))
        return artifact

    def _artifact_path(self, artifact_id: str) -> Path | None:
        for directory in self._project_dirs():
            path = directory / "artifacts" / f"{artifact_id}.json"
            if path.is_file():
                return path
        return None

    def find_artifact(self, artifact_id: str) -> ProofArtifact | None:
        path = self._artifact_path(artifact_id)
        if path is None:
            return None
        return _load_model(path, ProofArtifact, f"proof artifact {artifact_id}")

    def list_artifacts(
        self,
        project_id: str,
        *,
        gate_id: str | None = None,
        gate_type: GateType | None = None,
    ) -> list[ProofArtifact]:
        """Return the project's artifacts, newest first, optionally filtered."""
        directory = self.artifacts_dir(project_id)
        if not directory.is_dir():
            return []
        artifacts = [
            _load_model(path, ProofArtifact, f"proof artifact {path.stem}") for path in sorted(directory.glob("*.json"))
        ]
        if gate_id is not None:
            artifacts = [artifact for artifact in artifacts if artifact.gate_id == gate_id]
        if gate_type is not None:
            artifacts = [artifact for artifact in artifacts if artifact.gate_type == gate_type]
        return sorted(artifacts, key=lambda artifact: artifact.created_at, reverse=True)

    def delete_artifact(self, artifact_id: str) -> bool:
        path = self._artifact_path(artifact_id)
        if path is None:
            return False
        with _locked_file(path):
            path.unlink(missing_ok=True)
        path.with_suffix(path.suffix + _LOCK_SUFFIX).unlink(missing_ok=True)
        logger.info("Deleted proof artifact %s", artifact_id)
        return True
