"""Gate state machine.

Gate steps are approved strictly in ``GATE_PROGRESSION`` order. An approval
request runs as a LangGraph flow::

    load -> check_predecessor -> interpret -> verify_proofs -> commit
                              \\-> reject

Precondition failures raise from the node that detects them and propagate out
of ``request_approval`` unchanged. Approvals for one project are serialized by
an ``asyncio.Lock`` in-process and by the store's ``fcntl`` lock across
processes; the commit re-reads the gate and its predecessor under that lock.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any, TypedDict

from langgraph.graph import END, START, StateGraph
from pydantic import BaseModel

from .approval import ApprovalPolicy, KeywordApprovalPolicy
from .errors import (
    ForbiddenError,
    InvalidApprovalError,
    InvalidTransitionError,
    NotFoundError,
    PreconditionFailedError,
    ProofValidationError,
)
from .gate_config import FINAL_GATE, GATE_PROGRESSION, get_gate_config, next_gate_type, previous_gate_type
from .models import (
    GATE_STATUS_TRANSITIONS,
    PROJECT_COMPLETE,
    Gate,
    GateStatus,
    GateType,
    Project,
    ProjectType,
)
from .notifications import GATE_APPROVED, GATE_READY, GATE_REJECTED, LoggingNotificationSink, NotificationSink, emit_event
from .proof_store import ProofArtifactService
from .settings import RuntimeSettings
from .state_store import GateStateStore

logger = logging.getLogger(__name__)


class GateTransitionResult(BaseModel):
    gate: Gate
    next_gate: Gate | None = None
    project_complete: bool = False


class ApprovalState(TypedDict, total=False):
    gate_id: str
    user_id: str
    approved: bool
    notes: str
    block: bool
    gate: Gate
    project: Project
    result: GateTransitionResult


def _utcnow() -> datetime:
    return datetime.now(UTC)


class GateStateMachine:
    def __init__(
        self,
        store: GateStateStore,
        proofs: ProofArtifactService,
        *,
        sink: NotificationSink | None = None,
        policy: ApprovalPolicy | None = None,
        settings: RuntimeSettings | None = None,
    ) -> None:
        self.store = store
        self.proofs = proofs
        self.settings = settings if settings is not None else RuntimeSettings.from_env()
        self.sink = sink if sink is not None else LoggingNotificationSink()
        self.policy = policy if policy is not None else KeywordApprovalPolicy.from_settings(self.settings)
        self._locks: dict[str, asyncio.Lock] = {}
        self._locks_loop: asyncio.AbstractEventLoop | None = None
        self.graph = self._build_graph().compile()

    def _build_graph(self) -> StateGraph:
        graph = StateGraph(ApprovalState)
        graph.add_node("load", self._load_node)
        graph.add_node("check_predecessor", self._check_predecessor_node)
        graph.add_node("interpret", self._interpret_node)
        graph.add_node("verify_proofs", self._verify_proofs_node)
        graph.add_node("commit", self._commit_node)
        graph.add_node("reject", self._reject_node)

        graph.add_edge(START, "load")
        graph.add_edge("load", "check_predecessor")
        graph.add_conditional_edges(
            "check_predecessor",
            self._decision_route,
            {
                "approve": "interpret",
                "reject": "reject",
            },
        )
        graph.add_edge("interpret", "verify_proofs")
        graph.add_edge("verify_proofs", "commit")
        graph.add_edge("commit", END)
        graph.add_edge("reject", END)
        return graph

    def _project_lock(self, project_id: str) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._locks_loop is not loop:
            self._locks = {}
            self._locks_loop = loop
        return self._locks.setdefault(project_id, asyncio.Lock())

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _require_gate(self, gate_id: str) -> Gate:
        gate = self.store.find_gate(gate_id)
        if gate is None:
            raise NotFoundError(f"Gate {gate_id} not found")
        return gate

    def _require_owner(self, project_id: str, user_id: str) -> Project:
        project = self.store.find_project(project_id)
        if project is None:
            raise NotFoundError(f"Project {project_id} not found")
        if project.owner_id != user_id:
            raise ForbiddenError("You can only transition gates for your own projects")
        return project

    def _new_gate(self, project: Project, gate_type: GateType) -> Gate:
        config = get_gate_config(project.project_type, gate_type)
        return Gate(
            project_id=project.id,
            gate_type=gate_type,
            description=config.description,
            passing_criteria=config.passing_criteria,
            requires_proof=config.requires_proof,
        )

    def _set_status(self, gate: Gate, status: GateStatus, **changes: Any) -> Gate:
        try:
            return self.store.update_gate_status(gate, status, **changes)
        except FileNotFoundError as exc:
            raise NotFoundError(f"Gate {gate.id} not found") from exc
        except ValueError as exc:
            raise InvalidTransitionError(str(exc)) from exc

    def get_project_gates(self, project_id: str) -> list[Gate]:
        return self.store.list_gates_for_project(project_id)

    def get_current_gate(self, project_id: str) -> Gate | None:
        """Return the earliest gate step that is not yet APPROVED, or None once the project is complete."""
        for gate in self.store.list_gates_for_project(project_id):
            if gate.status != GateStatus.APPROVED:
                return gate
        return None

    def can_transition(self, gate_id: str, target: GateStatus = GateStatus.APPROVED) -> bool:
        gate = self.store.find_gate(gate_id)
        if gate is None or target not in GATE_STATUS_TRANSITIONS[gate.status]:
            return False
        if target != GateStatus.APPROVED:
            return True
        predecessor_type = previous_gate_type(gate.gate_type)
        if predecessor_type is None:
            return True
        predecessor = self.store.find_gate_by_type(gate.project_id, predecessor_type)
        return predecessor is not None and predecessor.status == GateStatus.APPROVED

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    def initialize_project(
        self,
        project_id: str,
        owner_id: str,
        *,
        name: str = "",
        project_type: ProjectType = ProjectType.TRADITIONAL,
    ) -> Project:
        """Create the project and its first gate step.

        Calling again for an existing project by the same owner only ensures
        the first gate exists.
        """
        project = self.store.find_project(project_id)
        if project is None:
            project = self.store.create_project(
                Project(
                    id=project_id,
                    owner_id=owner_id,
                    name=name or project_id,
                    project_type=project_type,
                    current_gate=GATE_PROGRESSION[0].value,
                )
            )
        elif project.owner_id != owner_id:
            raise ForbiddenError(f"Project {project_id} belongs to another owner")

        with self.store.gate_transaction(project_id) as gates:
            if GATE_PROGRESSION[0] not in gates:
                gates[GATE_PROGRESSION[0]] = self._new_gate(project, GATE_PROGRESSION[0])
                logger.info("Initialized %s for project %s", GATE_PROGRESSION[0].value, project_id)
        return project

    def transition_to_review(self, gate_id: str, user_id: str | None = None) -> Gate:
        gate = self._require_gate(gate_id)
        if user_id is not None:
            self._require_owner(gate.project_id, user_id)
        if gate.status != GateStatus.PENDING:
            raise InvalidTransitionError(f"Gate {gate.gate_type.value} is {gate.status.value}, not PENDING")
        updated = self._set_status(gate, GateStatus.IN_REVIEW)
        emit_event(
            self.sink,
            GATE_READY,
            gate.project_id,
            gateId=updated.id,
            gateType=updated.gate_type.value,
            description=updated.description,
            passingCriteria=updated.passing_criteria,
            requiresProof=updated.requires_proof,
        )
        return updated

    def reopen_gate(self, gate_id: str, user_id: str, notes: str | None = None) -> Gate:
        """Return a REJECTED or BLOCKED gate to PENDING as a new revision."""
        gate = self._require_gate(gate_id)
        self._require_owner(gate.project_id, user_id)
        if gate.status not in (GateStatus.REJECTED, GateStatus.BLOCKED):
            raise InvalidTransitionError(f"Only rejected or blocked gates can be reopened, {gate.gate_type.value} is {gate.status.value}")
        updated = self._set_status(
            gate,
            GateStatus.PENDING,
            revision=gate.revision + 1,
            blocking_reason=None,
            review_notes=notes if notes is not None else gate.review_notes,
        )
        logger.info("Reopened %s for project %s as revision %d", gate.gate_type.value, gate.project_id, updated.revision)
        return updated

    async def request_approval(
        self,
        gate_id: str,
        user_id: str,
        approved: bool,
        notes: str = "",
        *,
        block: bool = False,
    ) -> GateTransitionResult:
        """Approve or reject a gate step.

        Raises:
            NotFoundError: If the gate or its project does not exist.
            ForbiddenError: If ``user_id`` does not own the project.
            PreconditionFailedError: If the previous step is not APPROVED or
                this step already is.
            InvalidApprovalError: If ``notes`` is not an explicit approval.
            ProofValidationError: If required proofs are missing or failing.
        """
        gate = self._require_gate(gate_id)
        async with self._project_lock(gate.project_id):
            state = await self.graph.ainvoke(
                {
                    "gate_id": gate_id,
                    "user_id": user_id,
                    "approved": approved,
                    "notes": notes,
                    "block": block,
                }
            )
        return state["result"]

    # ------------------------------------------------------------------
    # Graph nodes
    # ------------------------------------------------------------------

    async def _load_node(self, state: ApprovalState) -> dict[str, Any]:
        gate = self._require_gate(state["gate_id"])
        project = self._require_owner(gate.project_id, state["user_id"])
        return {"gate": gate, "project": project}

    def _predecessor_error(self, gates: dict[GateType, Gate], gate: Gate) -> PreconditionFailedError | None:
        current = gates.get(gate.gate_type)
        if current is None or current.id != gate.id:
            return PreconditionFailedError(f"Gate {gate.id} is no longer current for {gate.gate_type.value}")
        if current.status == GateStatus.APPROVED:
            return PreconditionFailedError(f"Gate {gate.gate_type.value} is already approved")
        predecessor_type = previous_gate_type(gate.gate_type)
        if predecessor_type is not None:
            predecessor = gates.get(predecessor_type)
            if predecessor is None or predecessor.status != GateStatus.APPROVED:
                return PreconditionFailedError(
                    f"Cannot transition {gate.gate_type.value}: previous gate {predecessor_type.value} not approved"
                )
        return None

    async def _check_predecessor_node(self, state: ApprovalState) -> dict[str, Any]:
        gate = state["gate"]
        with self.store.gate_transaction(gate.project_id) as gates:
            error = self._predecessor_error(gates, gate)
        if error is not None:
            logger.warning("Refused transition of %s for project %s: %s", gate.gate_type.value, gate.project_id, error)
            raise error
        return {}

    def _decision_route(self, state: ApprovalState) -> str:
        return "approve" if state["approved"] else "reject"

    async def _interpret_node(self, state: ApprovalState) -> dict[str, Any]:
        decision = self.policy.interpret(state.get("notes", ""))
        if not decision.valid:
            logger.warning("Ambiguous approval for gate %s: %r", state["gate_id"], state.get("notes", ""))
            raise InvalidApprovalError(decision.reason)
        gate = state["gate"]
        if GateStatus.APPROVED not in GATE_STATUS_TRANSITIONS[gate.status]:
            raise InvalidTransitionError(
                f"Gate {gate.gate_type.value} is {gate.status.value}; reopen it before requesting approval"
            )
        return {}

    async def _verify_proofs_node(self, state: ApprovalState) -> dict[str, Any]:
        gate = state["gate"]
        if not gate.requires_proof:
            return {}
        config = get_gate_config(state["project"].project_type, gate.gate_type)
        attached = {artifact.proof_type for artifact in self.proofs.artifacts_for_gate(gate.id, state["user_id"])}
        missing = [proof_type.value for proof_type in config.required_proofs if proof_type not in attached]

        failing: list[str] = []
        if attached:
            summary = self.proofs.validate_all_for_gate(gate.id, state["user_id"])
            failing = summary.failing_proof_types

        problems = sorted(set(missing) | set(failing))
        if problems:
            parts = []
            if missing:
                parts.append(f"missing: {', '.join(sorted(missing))}")
            if failing:
                parts.append(f"failing: {', '.join(failing)}")
            message = f"Proof validation failed for {gate.gate_type.value} ({'; '.join(parts)})"
            logger.warning("%s on project %s", message, gate.project_id)
            raise ProofValidationError(message, problems)
        return {}

    async def _commit_node(self, state: ApprovalState) -> dict[str, Any]:
        gate = state["gate"]
        project = state["project"]
        next_type = next_gate_type(gate.gate_type)
        next_gate: Gate | None = None

        with self.store.gate_transaction(gate.project_id) as gates:
            error = self._predecessor_error(gates, gate)
            if error is not None:
                raise error
            current = gates[gate.gate_type]
            if GateStatus.APPROVED not in GATE_STATUS_TRANSITIONS[current.status]:
                raise InvalidTransitionError(f"Gate {gate.gate_type.value} moved to {current.status.value} concurrently")
            now = _utcnow()
            approved = current.model_copy(
                update={
                    "status": GateStatus.APPROVED,
                    "approved_at": now,
                    "approved_by": state["user_id"],
                    "review_notes": state.get("notes") or current.review_notes,
                    "updated_at": now,
                }
            )
            gates[gate.gate_type] = approved
            if next_type is not None:
                next_gate = gates.get(next_type)
                if next_gate is None:
                    next_gate = self._new_gate(project, next_type)
                    gates[next_type] = next_gate

        project_complete = gate.gate_type == FINAL_GATE
        self.store.set_current_gate(project.id, PROJECT_COMPLETE if project_complete else next_type.value)
        logger.info("Approved %s for project %s by %s", gate.gate_type.value, project.id, state["user_id"])
        emit_event(
            self.sink,
            GATE_APPROVED,
            project.id,
            gateId=approved.id,
            gateType=approved.gate_type.value,
            approvedBy=state["user_id"],
            nextGate=next_gate.gate_type.value if next_gate is not None else None,
            projectComplete=project_complete,
        )
        return {"result": GateTransitionResult(gate=approved, next_gate=next_gate, project_complete=project_complete)}

    async def _reject_node(self, state: ApprovalState) -> dict[str, Any]:
        gate = state["gate"]
        status = GateStatus.BLOCKED if state.get("block") else GateStatus.REJECTED
        reason = (state.get("notes") or "").strip() or f"{status.value.title()} by reviewer"
        updated = self._set_status(gate, status, blocking_reason=reason, review_notes=reason)
        logger.info("%s %s for project %s: %s", status.value.title(), gate.gate_type.value, gate.project_id, reason)
        emit_event(
            self.sink,
            GATE_REJECTED,
            gate.project_id,
            gateId=updated.id,
            gateType=updated.gate_type.value,
            status=status.value,
            blockingReason=reason,
        )
        return {"result": GateTransitionResult(gate=updated)}
