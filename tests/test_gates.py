from __future__ import annotations

import asyncio
import json
import random

import pytest

from proofgate.approval import ApprovalDecision, KeywordApprovalPolicy
from proofgate.errors import (
    ForbiddenError,
    InvalidApprovalError,
    InvalidTransitionError,
    NotFoundError,
    PreconditionFailedError,
    ProofValidationError,
)
from proofgate.gate_config import GATE_PROGRESSION, get_gate_config
from proofgate.gates import GateStateMachine, GateTransitionResult
from proofgate.models import (
    PROJECT_COMPLETE,
    CreateProofArtifactRequest,
    Gate,
    GateStatus,
    GateType,
    ProjectType,
    ProofType,
)
from proofgate.notifications import GATE_APPROVED, GATE_READY, GATE_REJECTED, RecordingNotificationSink
from proofgate.proof_store import ProofArtifactService
from proofgate.sandbox import Workspace
from proofgate.settings import RuntimeSettings
from proofgate.state_store import GateStateStore

OWNER = "owner-1"
PROJECT = "shop"

PASSING_PROOFS: dict[ProofType, tuple[str, str]] = {
    ProofType.SPEC_VALIDATION: ("openapi.json", json.dumps({"openapi": "3.0.0", "paths": {"/items": {}}})),
    ProofType.BUILD_OUTPUT: ("build.log", "vite v5 building for production\nbuilt in 1.4s\n"),
    ProofType.LINT_OUTPUT: ("lint.txt", "✖ 0 problems (0 errors, 0 warnings)\n"),
    ProofType.TEST_OUTPUT: ("test.log", "Tests:       9 passed, 9 total\n"),
    ProofType.COVERAGE_REPORT: ("coverage.txt", "All files |   91.2 |   80 |   88 |   91.2 |\n"),
    ProofType.SECURITY_SCAN: ("audit.json", json.dumps({"metadata": {"vulnerabilities": {"critical": 0, "high": 0, "moderate": 1, "low": 0}}})),
    ProofType.DEPLOYMENT_LOG: ("deploy.log", "Deployment succeeded\n"),
    ProofType.SMOKE_TEST: ("smoke.log", "GET /health HTTP/1.1 200 OK\n"),
    ProofType.MANUAL_VERIFICATION: ("verified.md", "Walked through checkout on production\n"),
}


def _attach(proofs: ProofArtifactService, workspace: Workspace, gate: Gate, proof_type: ProofType, content: str | None = None) -> None:
    name, default = PASSING_PROOFS[proof_type]
    path = f"proofs/{gate.gate_type.value}/{name}"
    workspace.write_file(gate.project_id, path, default if content is None else content)
    proofs.create(
        CreateProofArtifactRequest(project_id=gate.project_id, proof_type=proof_type, file_path=path, gate_id=gate.id),
        OWNER,
    )


def _attach_required(proofs: ProofArtifactService, workspace: Workspace, gate: Gate) -> None:
    attached = {artifact.proof_type for artifact in proofs.artifacts_for_gate(gate.id, OWNER)}
    for proof_type in get_gate_config(ProjectType.TRADITIONAL, gate.gate_type).required_proofs:
        if proof_type not in attached:
            _attach(proofs, workspace, gate, proof_type)


def _approve(machine: GateStateMachine, gate: Gate, notes: str = "approve") -> GateTransitionResult:
    return asyncio.run(machine.request_approval(gate.id, OWNER, True, notes))


def _advance_to(machine: GateStateMachine, proofs: ProofArtifactService, workspace: Workspace, target: GateType) -> Gate:
    while True:
        gate = machine.get_current_gate(PROJECT)
        assert gate is not None
        if gate.gate_type == target:
            return gate
        _attach_required(proofs, workspace, gate)
        _approve(machine, gate)


def _gate_types(machine: GateStateMachine) -> list[GateType]:
    return [gate.gate_type for gate in machine.get_project_gates(PROJECT)]


def test_initialize_project_creates_first_gate(machine: GateStateMachine, store: GateStateStore) -> None:
    project = machine.initialize_project(PROJECT, OWNER, name="Shop")
    assert project.current_gate == GateType.G1_PENDING.value
    assert _gate_types(machine) == [GateType.G1_PENDING]

    gate = machine.get_current_gate(PROJECT)
    assert gate is not None
    assert gate.status == GateStatus.PENDING
    assert not gate.requires_proof
    assert gate.description == get_gate_config(ProjectType.TRADITIONAL, GateType.G1_PENDING).description

    machine.initialize_project(PROJECT, OWNER)
    assert _gate_types(machine) == [GateType.G1_PENDING]
    with pytest.raises(ForbiddenError):
        machine.initialize_project(PROJECT, "someone-else")


def test_initialize_project_refuses_ids_that_need_rewriting(machine: GateStateMachine, store: GateStateStore) -> None:
    machine.initialize_project("team-app", OWNER)
    with pytest.raises(ValueError):
        machine.initialize_project("team/app", "intruder")
    assert store.get_project("team-app").owner_id == OWNER
    assert store.find_project("team app") is None


def test_ambiguous_reply_is_refused(machine: GateStateMachine) -> None:
    machine.initialize_project(PROJECT, OWNER)
    gate = machine.get_current_gate(PROJECT)
    assert gate is not None

    for reply in ("ok", "OK.", "sure", "fine", "alright", "", "looks nice", "not approved"):
        with pytest.raises(InvalidApprovalError):
            _approve(machine, gate, reply)
    assert machine.get_current_gate(PROJECT).status == GateStatus.PENDING
    assert _gate_types(machine) == [GateType.G1_PENDING]


@pytest.mark.parametrize("reply", ["approve", "approved", "Approved!", "yes, ship it", "LGTM"])
def test_explicit_approval_proceeds(machine: GateStateMachine, sink: RecordingNotificationSink, reply: str) -> None:
    machine.initialize_project(PROJECT, OWNER)
    gate = machine.get_current_gate(PROJECT)
    assert gate is not None

    result = _approve(machine, gate, reply)

    assert result.gate.status == GateStatus.APPROVED
    assert result.gate.approved_by == OWNER
    assert result.gate.approved_at is not None
    assert result.next_gate is not None
    assert result.next_gate.gate_type == GateType.G1_COMPLETE
    assert result.next_gate.status == GateStatus.PENDING
    assert not result.project_complete
    assert machine.store.get_project(PROJECT).current_gate == GateType.G1_COMPLETE.value
    assert sink.named(GATE_APPROVED)[0].payload["nextGate"] == GateType.G1_COMPLETE.value


def test_injected_policy_replaces_keyword_vocabulary(
    store: GateStateStore, proofs: ProofArtifactService, settings: RuntimeSettings
) -> None:
    class AnythingGoes:
        def interpret(self, text: str) -> ApprovalDecision:
            return ApprovalDecision(True)

    machine = GateStateMachine(store, proofs, policy=AnythingGoes(), settings=settings, sink=RecordingNotificationSink())
    machine.initialize_project(PROJECT, OWNER)
    gate = machine.get_current_gate(PROJECT)
    assert gate is not None
    assert _approve(machine, gate, "ok").gate.status == GateStatus.APPROVED


def test_keyword_policy_reasons() -> None:
    policy = KeywordApprovalPolicy(("approve", "yes"), ("ok",))
    assert policy.interpret("Yes please").valid
    ambiguous = policy.interpret(" ok ")
    assert not ambiguous.valid
    assert ambiguous.reason.startswith('"ok" is not a clear approval')
    assert not policy.interpret("don't approve yet").valid


def test_unknown_gate_and_other_owner(machine: GateStateMachine) -> None:
    machine.initialize_project(PROJECT, OWNER)
    gate = machine.get_current_gate(PROJECT)
    assert gate is not None

    with pytest.raises(NotFoundError):
        asyncio.run(machine.request_approval("GATE-missing", OWNER, True, "approve"))
    with pytest.raises(ForbiddenError):
        asyncio.run(machine.request_approval(gate.id, "intruder", True, "approve"))


def test_predecessor_must_be_approved_even_by_direct_id(machine: GateStateMachine, store: GateStateStore) -> None:
    machine.initialize_project(PROJECT, OWNER)
    skipped = store.create_gate(Gate(project_id=PROJECT, gate_type=GateType.G2_PENDING))

    with pytest.raises(PreconditionFailedError, match="previous gate G1_COMPLETE not approved"):
        asyncio.run(machine.request_approval(skipped.id, OWNER, True, "approve"))
    assert not machine.can_transition(skipped.id)
    assert store.find_gate_by_type(PROJECT, GateType.G2_PENDING).status == GateStatus.PENDING


def test_already_approved_gate_cannot_be_approved_again(machine: GateStateMachine) -> None:
    machine.initialize_project(PROJECT, OWNER)
    gate = machine.get_current_gate(PROJECT)
    assert gate is not None
    _approve(machine, gate)

    with pytest.raises(PreconditionFailedError, match="already approved"):
        _approve(machine, gate)
    assert _gate_types(machine) == [GateType.G1_PENDING, GateType.G1_COMPLETE]


def test_transition_to_review_emits_gate_ready(machine: GateStateMachine, sink: RecordingNotificationSink) -> None:
    machine.initialize_project(PROJECT, OWNER)
    gate = machine.get_current_gate(PROJECT)
    assert gate is not None

    reviewed = machine.transition_to_review(gate.id, OWNER)

    assert reviewed.status == GateStatus.IN_REVIEW
    event = sink.named(GATE_READY)[0]
    assert event.payload["gateType"] == GateType.G1_PENDING.value
    assert event.payload["requiresProof"] is False
    with pytest.raises(InvalidTransitionError):
        machine.transition_to_review(gate.id, OWNER)
    assert _approve(machine, reviewed).gate.status == GateStatus.APPROVED


def test_missing_and_failing_proofs_block_approval(
    machine: GateStateMachine, proofs: ProofArtifactService, workspace: Workspace
) -> None:
    machine.initialize_project(PROJECT, OWNER)
    gate = _advance_to(machine, proofs, workspace, GateType.G3_PENDING)
    assert gate.requires_proof

    with pytest.raises(ProofValidationError) as missing:
        _approve(machine, gate)
    assert missing.value.failing_proof_types == ["spec_validation"]
    assert "missing: spec_validation" in str(missing.value)

    _attach(proofs, workspace, gate, ProofType.SPEC_VALIDATION, content=json.dumps({"openapi": "3.0.0"}))
    with pytest.raises(ProofValidationError) as failing:
        _approve(machine, gate)
    assert failing.value.failing_proof_types == ["spec_validation"]
    assert "failing: spec_validation" in str(failing.value)
    assert machine.get_current_gate(PROJECT).gate_type == GateType.G3_PENDING

    workspace.write_file(PROJECT, "proofs/G3_PENDING/openapi.json", PASSING_PROOFS[ProofType.SPEC_VALIDATION][1])
    result = _approve(machine, gate)
    assert result.gate.status == GateStatus.APPROVED
    assert result.next_gate is not None and result.next_gate.gate_type == GateType.G3_COMPLETE


def test_failing_optional_proof_still_blocks(
    machine: GateStateMachine, proofs: ProofArtifactService, workspace: Workspace
) -> None:
    machine.initialize_project(PROJECT, OWNER)
    gate = _advance_to(machine, proofs, workspace, GateType.G3_COMPLETE)
    _attach(proofs, workspace, gate, ProofType.LINT_OUTPUT, content="✖ 2 problems (2 errors, 0 warnings)\n")

    with pytest.raises(ProofValidationError) as refused:
        _approve(machine, gate)
    assert refused.value.failing_proof_types == ["lint_output"]


def test_reject_then_reopen(machine: GateStateMachine, sink: RecordingNotificationSink) -> None:
    machine.initialize_project(PROJECT, OWNER)
    gate = machine.get_current_gate(PROJECT)
    assert gate is not None

    result = asyncio.run(machine.request_approval(gate.id, OWNER, False, "Scope is missing the admin area"))

    assert result.gate.status == GateStatus.REJECTED
    assert result.gate.blocking_reason == "Scope is missing the admin area"
    assert result.next_gate is None
    assert _gate_types(machine) == [GateType.G1_PENDING]
    assert sink.named(GATE_REJECTED)[0].payload["status"] == "REJECTED"

    with pytest.raises(InvalidTransitionError):
        _approve(machine, gate)

    reopened = machine.reopen_gate(gate.id, OWNER)
    assert reopened.status == GateStatus.PENDING
    assert reopened.revision == 2
    assert reopened.blocking_reason is None
    assert _approve(machine, reopened).gate.status == GateStatus.APPROVED


def test_block_and_reopen_rules(machine: GateStateMachine) -> None:
    machine.initialize_project(PROJECT, OWNER)
    gate = machine.get_current_gate(PROJECT)
    assert gate is not None

    with pytest.raises(InvalidTransitionError):
        machine.reopen_gate(gate.id, OWNER)

    blocked = asyncio.run(machine.request_approval(gate.id, OWNER, False, "", block=True)).gate
    assert blocked.status == GateStatus.BLOCKED
    assert blocked.blocking_reason == "Blocked by reviewer"

    with pytest.raises(ForbiddenError):
        machine.reopen_gate(gate.id, "intruder")
    assert machine.reopen_gate(gate.id, OWNER, notes="Unblocked after vendor call").review_notes == "Unblocked after vendor call"


def test_full_progression_completes_project(
    machine: GateStateMachine, proofs: ProofArtifactService, workspace: Workspace, sink: RecordingNotificationSink
) -> None:
    machine.initialize_project(PROJECT, OWNER)
    last: GateTransitionResult | None = None
    for expected in GATE_PROGRESSION:
        gate = machine.get_current_gate(PROJECT)
        assert gate is not None
        assert gate.gate_type == expected
        _attach_required(proofs, workspace, gate)
        last = _approve(machine, gate)

    assert last is not None
    assert last.project_complete
    assert last.next_gate is None
    assert machine.get_current_gate(PROJECT) is None
    assert machine.store.get_project(PROJECT).current_gate == PROJECT_COMPLETE
    assert _gate_types(machine) == list(GATE_PROGRESSION)
    assert all(gate.status == GateStatus.APPROVED for gate in machine.get_project_gates(PROJECT))
    approvals = sink.named(GATE_APPROVED)
    assert len(approvals) == len(GATE_PROGRESSION)
    assert approvals[-1].payload["projectComplete"] is True


def test_random_operation_sequences_preserve_ordering(
    machine: GateStateMachine, proofs: ProofArtifactService, workspace: Workspace
) -> None:
    rng = random.Random(20240611)
    machine.initialize_project(PROJECT, OWNER)

    for _ in range(120):
        gates = machine.get_project_gates(PROJECT)
        target = rng.choice(gates)
        action = rng.choice(["approve", "approve", "reject", "reopen", "review", "ambiguous"])
        try:
            if action == "approve":
                _attach_required(proofs, workspace, target)
                _approve(machine, target)
            elif action == "ambiguous":
                _approve(machine, target, "ok")
            elif action == "reject":
                asyncio.run(machine.request_approval(target.id, OWNER, False, "again", block=rng.random() < 0.5))
            elif action == "reopen":
                machine.reopen_gate(target.id, OWNER)
            else:
                machine.transition_to_review(target.id, OWNER)
        except PreconditionFailedError:
            pass

        gates = machine.get_project_gates(PROJECT)
        statuses = [gate.status for gate in gates]
        assert [gate.gate_type for gate in gates] == list(GATE_PROGRESSION[: len(gates)])
        approved = [status == GateStatus.APPROVED for status in statuses]
        assert approved == sorted(approved, reverse=True)
        if len(gates) < len(GATE_PROGRESSION) or not all(approved):
            assert approved.count(False) == 1
            assert not approved[-1]


def test_concurrent_approvals_commit_once(machine: GateStateMachine, sink: RecordingNotificationSink) -> None:
    machine.initialize_project(PROJECT, OWNER)
    gate = machine.get_current_gate(PROJECT)
    assert gate is not None

    async def race() -> list[object]:
        return await asyncio.gather(
            machine.request_approval(gate.id, OWNER, True, "approve"),
            machine.request_approval(gate.id, OWNER, True, "approved"),
            return_exceptions=True,
        )

    outcomes = asyncio.run(race())

    successes = [item for item in outcomes if isinstance(item, GateTransitionResult)]
    failures = [item for item in outcomes if isinstance(item, PreconditionFailedError)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert _gate_types(machine) == [GateType.G1_PENDING, GateType.G1_COMPLETE]
    assert len(sink.named(GATE_APPROVED)) == 1


def test_can_transition(machine: GateStateMachine) -> None:
    machine.initialize_project(PROJECT, OWNER)
    gate = machine.get_current_gate(PROJECT)
    assert gate is not None
    assert machine.can_transition(gate.id)
    assert machine.can_transition(gate.id, GateStatus.IN_REVIEW)
    _approve(machine, gate)
    assert not machine.can_transition(gate.id)
    assert not machine.can_transition("GATE-missing")
