from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Union

import pytest

from proofgate.gates import GateStateMachine
from proofgate.models import CommandResult
from proofgate.notifications import RecordingNotificationSink
from proofgate.proof_store import ProofArtifactService
from proofgate.sandbox import Workspace
from proofgate.settings import RuntimeSettings
from proofgate.state_store import GateStateStore

Response = Union[CommandResult, Callable[[str], CommandResult]]


def ok(stdout: str = "", stderr: str = "") -> CommandResult:
    return CommandResult(stdout=stdout, stderr=stderr, exit_code=0, success=True)


def failed(stderr: str = "", stdout: str = "", exit_code: int = 1) -> CommandResult:
    return CommandResult(stdout=stdout, stderr=stderr, exit_code=exit_code, success=False)


@dataclass(frozen=True)
class RecordedCall:
    command: str
    working_dir: str
    env: dict[str, str] | None


class ScriptedExecutor:
    """Command executor that answers from a script and records every call.

    Responses are looked up by ``(working_dir, command)`` first, then by
    ``command``; anything unscripted succeeds with empty output. A callable
    response receives the working directory, so it can write report files
    before returning.
    """

    def __init__(self, responses: dict[object, Response] | None = None) -> None:
        self.responses: dict[object, Response] = dict(responses or {})
        self.calls: list[RecordedCall] = []

    async def run(
        self,
        project_id: str,
        command: str,
        *,
        timeout_ms: int | None = None,
        env: dict[str, str] | None = None,
        working_dir: str = ".",
    ) -> CommandResult:
        self.calls.append(RecordedCall(command=command, working_dir=working_dir, env=env))
        response = self.responses.get((working_dir, command), self.responses.get(command))
        if response is None:
            return ok()
        if callable(response):
            return response(working_dir)
        return response

    def commands(self) -> list[str]:
        return [call.command for call in self.calls]


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "PROOFGATE_WORKSPACE_ROOT",
        "PROOFGATE_STATE_STORE_ROOT",
        "PROOFGATE_COVERAGE_THRESHOLD",
        "PROOFGATE_APPROVAL_KEYWORDS",
        "PROOFGATE_AMBIGUOUS_REPLIES",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def settings(tmp_path: Path) -> RuntimeSettings:
    return RuntimeSettings(
        workspace_root=str(tmp_path / "workspaces"),
        state_store_root=str(tmp_path / "state"),
        preview_probe_ports=(1,),
        preview_probe_timeout_ms=100,
    )


@pytest.fixture()
def workspace(tmp_path: Path) -> Workspace:
    return Workspace(tmp_path / "workspaces")


@pytest.fixture()
def store(tmp_path: Path) -> GateStateStore:
    return GateStateStore(tmp_path / "state")


@pytest.fixture()
def proofs(store: GateStateStore, workspace: Workspace, settings: RuntimeSettings) -> ProofArtifactService:
    return ProofArtifactService(store, workspace, settings)


@pytest.fixture()
def sink() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture()
def machine(
    store: GateStateStore,
    proofs: ProofArtifactService,
    sink: RecordingNotificationSink,
    settings: RuntimeSettings,
) -> GateStateMachine:
    return GateStateMachine(store, proofs, sink=sink, settings=settings)


@pytest.fixture()
def write_package(workspace: Workspace) -> Callable[..., None]:
    def _write(project_id: str, scripts: dict[str, str], working_dir: str = ".") -> None:
        path = "package.json" if working_dir == "." else f"{working_dir}/package.json"
        workspace.write_file(project_id, path, json.dumps({"name": project_id, "scripts": scripts}))

    return _write
