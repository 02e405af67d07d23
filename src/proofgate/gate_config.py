"""Canonical gate progression and per-step configuration.

Steps are approved strictly in ``GATE_PROGRESSION`` order. Each step carries a
description, its passing criteria, whether proof artifacts are required, and
which proof types must be attached and passing before approval.
"""

from __future__ import annotations

from dataclasses import dataclass

from .models import GateStep, GateType, ProjectType, ProofType

GATE_PROGRESSION: tuple[GateType, ...] = tuple(
    GateType.of(number, step) for number in range(1, 10) for step in (GateStep.PENDING, GateStep.COMPLETE)
)

FINAL_GATE = GateType.G9_COMPLETE


@dataclass(frozen=True)
class GateStepConfig:
    description: str
    passing_criteria: str
    requires_proof: bool
    required_proofs: tuple[ProofType, ...] = ()


_TRADITIONAL: dict[GateType, GateStepConfig] = {
    GateType.G1_PENDING: GateStepConfig(
        "Project scope approval - intake questionnaire complete",
        "User has approved project scope, vision, goals, and constraints",
        requires_proof=False,
    ),
    GateType.G1_COMPLETE: GateStepConfig(
        "Intake complete, requirements gathered",
        "User has reviewed and approved the intake summary",
        requires_proof=False,
    ),
    GateType.G2_PENDING: GateStepConfig(
        "PRD creation in progress",
        "Product requirements document with user stories is complete",
        requires_proof=False,
    ),
    GateType.G2_COMPLETE: GateStepConfig(
        "PRD approved",
        "User has reviewed and approved the PRD",
        requires_proof=False,
    ),
    GateType.G3_PENDING: GateStepConfig(
        "Architecture and specifications in progress",
        "OpenAPI spec, database schema, and validation schemas exist and validate",
        requires_proof=True,
        required_proofs=(ProofType.SPEC_VALIDATION,),
    ),
    GateType.G3_COMPLETE: GateStepConfig(
        "Architecture approved, specs locked",
        "User has reviewed and approved the architecture and specs",
        requires_proof=True,
    ),
    GateType.G4_PENDING: GateStepConfig(
        "Design in progress",
        "Design options have been produced and one has been selected",
        requires_proof=False,
    ),
    GateType.G4_COMPLETE: GateStepConfig(
        "Design approved",
        "User has reviewed and approved the final design",
        requires_proof=False,
    ),
    GateType.G5_PENDING: GateStepConfig(
        "Development in progress",
        "Frontend and backend build cleanly and lint without errors",
        requires_proof=True,
        required_proofs=(ProofType.BUILD_OUTPUT, ProofType.LINT_OUTPUT),
    ),
    GateType.G5_COMPLETE: GateStepConfig(
        "Development approved",
        "User has reviewed the running application",
        requires_proof=True,
    ),
    GateType.G6_PENDING: GateStepConfig(
        "Testing in progress",
        "Unit, integration, and end-to-end tests pass with coverage at or above threshold",
        requires_proof=True,
        required_proofs=(ProofType.TEST_OUTPUT, ProofType.COVERAGE_REPORT),
    ),
    GateType.G6_COMPLETE: GateStepConfig(
        "Testing approved",
        "User has reviewed the test results",
        requires_proof=True,
    ),
    GateType.G7_PENDING: GateStepConfig(
        "Security review in progress",
        "Security scan reports zero critical and zero high vulnerabilities",
        requires_proof=True,
        required_proofs=(ProofType.SECURITY_SCAN,),
    ),
    GateType.G7_COMPLETE: GateStepConfig(
        "Security approved",
        "User has reviewed the security findings",
        requires_proof=True,
    ),
    GateType.G8_PENDING: GateStepConfig(
        "Staging deployment in progress",
        "Staging deployment succeeded and smoke tests pass",
        requires_proof=True,
        required_proofs=(ProofType.DEPLOYMENT_LOG, ProofType.SMOKE_TEST),
    ),
    GateType.G8_COMPLETE: GateStepConfig(
        "Staging approved",
        "User has verified the staging environment",
        requires_proof=True,
    ),
    GateType.G9_PENDING: GateStepConfig(
        "Production deployment in progress",
        "Production deployment succeeded, smoke tests pass, and release was verified manually",
        requires_proof=True,
        required_proofs=(ProofType.DEPLOYMENT_LOG, ProofType.SMOKE_TEST, ProofType.MANUAL_VERIFICATION),
    ),
    GateType.G9_COMPLETE: GateStepConfig(
        "Production approved",
        "User has signed off on the production release",
        requires_proof=True,
    ),
}

# ML projects swap the G6 evidence for model-evaluation reports recorded as test output.
_AI_ML_OVERRIDES: dict[GateType, GateStepConfig] = {
    GateType.G6_PENDING: GateStepConfig(
        "Model evaluation and testing in progress",
        "Evaluation and unit test suites pass",
        requires_proof=True,
        required_proofs=(ProofType.TEST_OUTPUT,),
    ),
}

GATE_CONFIG: dict[ProjectType, dict[GateType, GateStepConfig]] = {
    ProjectType.TRADITIONAL: _TRADITIONAL,
    ProjectType.AI_ML: {**_TRADITIONAL, **_AI_ML_OVERRIDES},
    ProjectType.HYBRID: _TRADITIONAL,
}


def get_gate_config(project_type: ProjectType, gate_type: GateType) -> GateStepConfig:
    return GATE_CONFIG[project_type][gate_type]


def previous_gate_type(gate_type: GateType) -> GateType | None:
    """Return the step that must be APPROVED before ``gate_type``, or None for the first step."""
    index = GATE_PROGRESSION.index(gate_type)
    return GATE_PROGRESSION[index - 1] if index > 0 else None


def next_gate_type(gate_type: GateType) -> GateType | None:
    index = GATE_PROGRESSION.index(gate_type)
    if index == len(GATE_PROGRESSION) - 1:
        return None
    return GATE_PROGRESSION[index + 1]
