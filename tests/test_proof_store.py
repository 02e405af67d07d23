from __future__ import annotations

import json

import pytest

from proofgate.errors import ForbiddenError, NotFoundError, PathTraversalError
from proofgate.gates import GateStateMachine
from proofgate.models import (
    CreateProofArtifactRequest,
    Gate,
    GateType,
    LintResult,
    PassFail,
    ProofType,
    TestResult,
)
from proofgate.proof_store import ProofArtifactService
from proofgate.sandbox import Workspace
from proofgate.state_store import GateStateStore
from proofgate.validators import hash_bytes

OWNER = "user-1"
PROJECT = "shop"


@pytest.fixture()
def gate(machine: GateStateMachine, store: GateStateStore) -> Gate:
    machine.initialize_project(PROJECT, OWNER)
    found = store.find_gate_by_type(PROJECT, GateType.G1_PENDING)
    assert found is not None
    return found


def _request(proof_type: ProofType, file_path: str, gate: Gate | None = None, **extra: object) -> CreateProofArtifactRequest:
    return CreateProofArtifactRequest(
        project_id=PROJECT,
        proof_type=proof_type,
        file_path=file_path,
        gate_id=gate.id if gate is not None else None,
        **extra,
    )


def test_create_hashes_file_and_inherits_gate_type(proofs: ProofArtifactService, workspace: Workspace, gate: Gate) -> None:
    workspace.write_file(PROJECT, "reports/test.log", "Tests: 4 passed, 4 total\n")

    artifact = proofs.create(_request(ProofType.TEST_OUTPUT, "reports/test.log", gate), OWNER)

    assert artifact.file_hash == hash_bytes(b"Tests: 4 passed, 4 total\n")
    assert artifact.gate_type == GateType.G1_PENDING
    assert artifact.pass_fail == PassFail.INFO
    assert not artifact.verified
    stored = proofs.find_one(artifact.id, OWNER)
    assert (stored.id, stored.file_hash, stored.file_path) == (artifact.id, artifact.file_hash, "reports/test.log")


def test_create_with_auto_validate_records_verdict(proofs: ProofArtifactService, workspace: Workspace, gate: Gate) -> None:
    workspace.write_file(PROJECT, "reports/test.log", "Tests: 1 failed, 3 passed, 4 total\n")

    artifact = proofs.create(_request(ProofType.TEST_OUTPUT, "reports/test.log", gate, auto_validate=True), OWNER)

    assert artifact.pass_fail == PassFail.FAIL
    assert artifact.verified
    assert artifact.verified_by == OWNER
    assert "Errors:" in artifact.content_summary


def test_ownership_is_enforced(proofs: ProofArtifactService, workspace: Workspace, gate: Gate) -> None:
    workspace.write_file(PROJECT, "reports/lint.txt", "✖ 0 problems (0 errors, 0 warnings)\n")
    artifact = proofs.create(_request(ProofType.LINT_OUTPUT, "reports/lint.txt", gate), OWNER)

    with pytest.raises(ForbiddenError):
        proofs.create(_request(ProofType.LINT_OUTPUT, "reports/lint.txt", gate), "intruder")
    with pytest.raises(ForbiddenError):
        proofs.validate(artifact.id, "intruder")
    with pytest.raises(ForbiddenError):
        proofs.delete(artifact.id, "intruder")
    with pytest.raises(NotFoundError):
        proofs.validate("PROOF-missing", OWNER)
    with pytest.raises(NotFoundError):
        proofs.find_all("no-such-project", OWNER)


def test_create_rejects_missing_file_and_traversal(proofs: ProofArtifactService, gate: Gate) -> None:
    with pytest.raises(NotFoundError):
        proofs.create(_request(ProofType.TEST_OUTPUT, "reports/missing.log", gate), OWNER)
    with pytest.raises(PathTraversalError):
        proofs.create(_request(ProofType.TEST_OUTPUT, "../../etc/passwd", gate), OWNER)


def test_revalidate_picks_up_changed_file(proofs: ProofArtifactService, workspace: Workspace, gate: Gate) -> None:
    workspace.write_file(PROJECT, "audit.json", json.dumps({"metadata": {"vulnerabilities": {"critical": 0, "high": 0}}}))
    artifact = proofs.create(_request(ProofType.SECURITY_SCAN, "audit.json", gate, auto_validate=True), OWNER)
    assert artifact.pass_fail == PassFail.PASS

    workspace.write_file(PROJECT, "audit.json", json.dumps({"metadata": {"vulnerabilities": {"critical": 0, "high": 2}}}))
    result = proofs.revalidate(artifact.id, OWNER)

    assert result.validation.verdict == PassFail.FAIL
    assert result.file_hash != artifact.file_hash
    stored = proofs.find_one(artifact.id, OWNER)
    assert stored.pass_fail == PassFail.FAIL
    assert stored.file_hash == result.file_hash


def test_validate_all_for_gate_is_idempotent(proofs: ProofArtifactService, workspace: Workspace, gate: Gate) -> None:
    workspace.write_file(PROJECT, "test.log", "Tests: 8 passed, 8 total\n")
    workspace.write_file(PROJECT, "axe.json", json.dumps({"violations": [{"impact": "minor"}]}))
    workspace.write_file(PROJECT, "lint.txt", "✖ 1 problem (1 error, 0 warnings)\n")
    for proof_type, path in (
        (ProofType.TEST_OUTPUT, "test.log"),
        (ProofType.ACCESSIBILITY_SCAN, "axe.json"),
        (ProofType.LINT_OUTPUT, "lint.txt"),
    ):
        proofs.create(_request(proof_type, path, gate), OWNER)

    first = proofs.validate_all_for_gate(gate.id, OWNER)
    second = proofs.validate_all_for_gate(gate.id, OWNER)

    assert (first.total_artifacts, first.passed, first.failed, first.warnings) == (3, 1, 1, 1)
    assert not first.all_passed
    assert first.failing_proof_types == ["lint_output"]
    assert [item.validation for item in first.results] == [item.validation for item in second.results]
    assert [item.file_hash for item in first.results] == [item.file_hash for item in second.results]
    assert (second.passed, second.failed, second.warnings) == (1, 1, 1)


def test_validate_all_for_gate_without_artifacts_is_not_passed(proofs: ProofArtifactService, gate: Gate) -> None:
    summary = proofs.validate_all_for_gate(gate.id, OWNER)
    assert summary.total_artifacts == 0
    assert not summary.all_passed


def test_record_validation_writes_canonical_report(proofs: ProofArtifactService, workspace: Workspace, gate: Gate) -> None:
    result = TestResult(success=True, tests_passed=6, tests_total=6)

    artifact = proofs.record_validation(PROJECT, gate.id, ProofType.TEST_OUTPUT, result, OWNER)

    assert artifact.file_path.startswith(".proofs/G1_PENDING/test_output-RUN-")
    assert artifact.pass_fail == PassFail.PASS
    assert artifact.verified
    stored = json.loads(workspace.read_file(PROJECT, artifact.file_path))
    assert stored["kind"] == "unit_tests"
    assert stored["tests_passed"] == 6

    lint = proofs.record_validation(PROJECT, None, ProofType.LINT_OUTPUT, LintResult(success=False, error_count=4), OWNER)
    assert lint.file_path.startswith(".proofs/ungated/")
    assert lint.pass_fail == PassFail.FAIL


def test_find_all_filters_and_delete(proofs: ProofArtifactService, workspace: Workspace, gate: Gate) -> None:
    workspace.write_file(PROJECT, "note.md", "Verified manually")
    gated = proofs.create(_request(ProofType.MANUAL_VERIFICATION, "note.md", gate), OWNER)
    labelled = proofs.create(_request(ProofType.MANUAL_VERIFICATION, "note.md", gate_type=GateType.G9_PENDING), OWNER)

    assert {artifact.id for artifact in proofs.find_all(PROJECT, OWNER)} == {gated.id, labelled.id}
    assert [artifact.id for artifact in proofs.find_all(PROJECT, OWNER, GateType.G9_PENDING)] == [labelled.id]
    assert [artifact.id for artifact in proofs.artifacts_for_gate(gate.id, OWNER)] == [gated.id]

    assert proofs.delete(gated.id, OWNER) == {"message": "Proof artifact deleted successfully"}
    with pytest.raises(NotFoundError):
        proofs.find_one(gated.id, OWNER)
