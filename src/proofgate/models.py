from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(UTC)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


# ---------------------------------------------------------------------------
# Gates
# ---------------------------------------------------------------------------


class GateStatus(str, Enum):
    PENDING = "PENDING"
    IN_REVIEW = "IN_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    BLOCKED = "BLOCKED"


GATE_STATUS_TRANSITIONS: dict[GateStatus, set[GateStatus]] = {
    GateStatus.PENDING: {GateStatus.IN_REVIEW, GateStatus.APPROVED, GateStatus.REJECTED, GateStatus.BLOCKED},
    GateStatus.IN_REVIEW: {GateStatus.APPROVED, GateStatus.REJECTED, GateStatus.BLOCKED},
    GateStatus.REJECTED: {GateStatus.PENDING},
    GateStatus.BLOCKED: {GateStatus.PENDING},
    GateStatus.APPROVED: set(),
}


class GateStep(str, Enum):
    PENDING = "PENDING"
    COMPLETE = "COMPLETE"


class GateType(str, Enum):
    """One lifecycle step of a numbered gate (``G<n>_<step>``)."""

    G1_PENDING = "G1_PENDING"
    G1_COMPLETE = "G1_COMPLETE"
    G2_PENDING = "G2_PENDING"
    G2_COMPLETE = "G2_COMPLETE"
    G3_PENDING = "G3_PENDING"
    G3_COMPLETE = "G3_COMPLETE"
    G4_PENDING = "G4_PENDING"
    G4_COMPLETE = "G4_COMPLETE"
    G5_PENDING = "G5_PENDING"
    G5_COMPLETE = "G5_COMPLETE"
    G6_PENDING = "G6_PENDING"
    G6_COMPLETE = "G6_COMPLETE"
    G7_PENDING = "G7_PENDING"
    G7_COMPLETE = "G7_COMPLETE"
    G8_PENDING = "G8_PENDING"
    G8_COMPLETE = "G8_COMPLETE"
    G9_PENDING = "G9_PENDING"
    G9_COMPLETE = "G9_COMPLETE"

    @property
    def number(self) -> int:
        return int(self.value[1])

    @property
    def step(self) -> GateStep:
        return GateStep(self.value.split("_", 1)[1])

    @classmethod
    def of(cls, number: int, step: GateStep | str) -> "GateType":
        if not 1 <= number <= 9:
            raise ValueError(f"gate number must be within 1..9, got {number}")
        return cls(f"G{number}_{GateStep(step).value}")


class Gate(BaseModel):
    id: str = Field(default_factory=lambda: new_id("GATE"))
    project_id: str
    gate_type: GateType
    status: GateStatus = GateStatus.PENDING
    description: str = ""
    passing_criteria: str = ""
    review_notes: str | None = None
    blocking_reason: str | None = None
    requires_proof: bool = False
    approved_at: datetime | None = None
    approved_by: str | None = None
    revision: int = 1
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class ProjectType(str, Enum):
    TRADITIONAL = "traditional"
    AI_ML = "ai_ml"
    HYBRID = "hybrid"


PROJECT_COMPLETE = "PROJECT_COMPLETE"


class Project(BaseModel):
    id: str
    owner_id: str
    name: str = ""
    project_type: ProjectType = ProjectType.TRADITIONAL
    current_gate: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_complete(self) -> bool:
        return self.current_gate == PROJECT_COMPLETE


# ---------------------------------------------------------------------------
# Proof artifacts
# ---------------------------------------------------------------------------


class ProofType(str, Enum):
    TEST_OUTPUT = "test_output"
    COVERAGE_REPORT = "coverage_report"
    LINT_OUTPUT = "lint_output"
    SECURITY_SCAN = "security_scan"
    BUILD_OUTPUT = "build_output"
    SPEC_VALIDATION = "spec_validation"
    LIGHTHOUSE_REPORT = "lighthouse_report"
    ACCESSIBILITY_SCAN = "accessibility_scan"
    DEPLOYMENT_LOG = "deployment_log"
    SMOKE_TEST = "smoke_test"
    SCREENSHOT = "screenshot"
    MANUAL_VERIFICATION = "manual_verification"


class PassFail(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARNING = "warning"
    INFO = "info"


class ProofArtifact(BaseModel):
    id: str = Field(default_factory=lambda: new_id("PROOF"))
    project_id: str
    gate_id: str | None = None
    gate_type: GateType | None = None
    proof_type: ProofType
    file_path: str
    file_hash: str
    content_summary: str = ""
    pass_fail: PassFail = PassFail.INFO
    verified: bool = False
    verified_at: datetime | None = None
    verified_by: str | None = None
    created_by: str
    created_at: datetime = Field(default_factory=_utcnow)

    def public_record(self) -> dict[str, Any]:
        """Return the collaborator-facing view of this artifact."""
        return {
            "proofType": self.proof_type.value,
            "filePath": self.file_path,
            "fileHash": self.file_hash,
            "contentSummary": self.content_summary,
            "passFail": self.pass_fail.value,
        }


class CreateProofArtifactRequest(BaseModel):
    project_id: str
    proof_type: ProofType
    file_path: str
    gate_id: str | None = None
    gate_type: GateType | None = None
    content_summary: str = ""
    auto_validate: bool = False


class ValidationOutcome(BaseModel):
    """Verdict of one proof validator over one file."""

    model_config = ConfigDict(frozen=True)

    passed: bool
    verdict: PassFail
    summary: str
    details: dict[str, Any] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)


class ArtifactValidation(BaseModel):
    artifact_id: str
    proof_type: ProofType
    file_hash: str
    validation: ValidationOutcome


class GateValidationSummary(BaseModel):
    gate_id: str
    total_artifacts: int
    passed: int
    failed: int
    warnings: int
    all_passed: bool
    results: list[ArtifactValidation] = Field(default_factory=list)

    @property
    def failing_proof_types(self) -> list[str]:
        return sorted({item.proof_type.value for item in self.results if item.validation.verdict == PassFail.FAIL})


# ---------------------------------------------------------------------------
# Command and pipeline results
# ---------------------------------------------------------------------------


class CommandResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    stdout: str = ""
    stderr: str = ""
    exit_code: int
    success: bool
    timed_out: bool = False
    duration_ms: int = 0

    @property
    def combined_output(self) -> str:
        return f"{self.stdout}\n{self.stderr}"


class CoverageSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    lines: float = 0.0
    statements: float = 0.0
    functions: float = 0.0
    branches: float = 0.0

    @property
    def headline(self) -> float:
        """Line coverage, the figure coverage thresholds are judged against."""
        return self.lines


class VulnerabilityCounts(BaseModel):
    model_config = ConfigDict(frozen=True)

    critical: int = 0
    high: int = 0
    moderate: int = 0
    low: int = 0

    @property
    def total(self) -> int:
        return self.critical + self.high + self.moderate + self.low

    @property
    def blocking(self) -> int:
        return self.critical + self.high


class _CheckResult(BaseModel):
    success: bool
    output: str = ""
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    duration_ms: int = 0
    skipped: bool = False


class InstallResult(_CheckResult):
    kind: Literal["install"] = "install"


class BuildResult(_CheckResult):
    kind: Literal["type_check", "build"] = "build"


class TestResult(_CheckResult):
    __test__ = False

    kind: Literal["unit_tests"] = "unit_tests"
    tests_passed: int = 0
    tests_failed: int = 0
    tests_total: int = 0
    coverage: CoverageSummary | None = None


class IntegrationTestResult(_CheckResult):
    kind: Literal["integration_tests"] = "integration_tests"
    applicable: bool = True
    test_files: list[str] = Field(default_factory=list)
    tests_passed: int = 0
    tests_failed: int = 0
    tests_total: int = 0


class E2ETestResult(_CheckResult):
    kind: Literal["e2e_tests"] = "e2e_tests"
    tests_passed: int = 0
    tests_failed: int = 0
    tests_skipped: int = 0
    tests_total: int = 0
    preview_url: str | None = None
    report_source: Literal["json", "text", "none"] = "none"


class LintResult(_CheckResult):
    kind: Literal["lint"] = "lint"
    error_count: int = 0
    warning_count: int = 0
    fixable_errors: int = 0
    fixable_warnings: int = 0


class SecurityScanResult(_CheckResult):
    kind: Literal["security"] = "security"
    vulnerabilities: VulnerabilityCounts = Field(default_factory=VulnerabilityCounts)

    @property
    def total_vulnerabilities(self) -> int:
        return self.vulnerabilities.total


PipelineResult = Annotated[
    Union[
        InstallResult,
        BuildResult,
        TestResult,
        IntegrationTestResult,
        E2ETestResult,
        LintResult,
        SecurityScanResult,
    ],
    Field(discriminator="kind"),
]


class FullValidationResult(BaseModel):
    install: InstallResult
    type_check: BuildResult
    build: BuildResult
    tests: TestResult
    lint: LintResult
    security: SecurityScanResult
    overall_success: bool

    def results(self) -> list[_CheckResult]:
        return [self.install, self.type_check, self.build, self.tests, self.lint, self.security]


class ProjectStructure(str, Enum):
    FULLSTACK = "fullstack"
    FRONTEND_ONLY = "frontend-only"
    BACKEND_ONLY = "backend-only"
    MONOLITH = "monolith"


class ProjectLayout(BaseModel):
    model_config = ConfigDict(frozen=True)

    structure: ProjectStructure
    working_dir: str
    subprojects: tuple[str, ...] = ()


class SubprojectValidation(BaseModel):
    name: str
    install: InstallResult
    build: BuildResult
    success: bool


class FullstackValidationResult(BaseModel):
    structure: ProjectStructure
    subprojects: list[SubprojectValidation] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    overall_success: bool


class SuiteOutcome(BaseModel):
    success: bool
    errors: list[str] = Field(default_factory=list)


class TestSuiteReport(BaseModel):
    __test__ = False

    unit_tests: dict[str, SuiteOutcome] = Field(default_factory=dict)
    integration_tests: dict[str, SuiteOutcome] = Field(default_factory=dict)
    e2e_tests: SuiteOutcome
    needs_frontend_fix: bool = False
    needs_backend_fix: bool = False
    success: bool


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class GateEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    project_id: str
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_utcnow)
