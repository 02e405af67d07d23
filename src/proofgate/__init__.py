from importlib.metadata import version

from .approval import ApprovalDecision, ApprovalPolicy, KeywordApprovalPolicy
from .cache import TTLCache
from .errors import (
    ForbiddenError,
    InvalidApprovalError,
    InvalidTransitionError,
    NotFoundError,
    PathTraversalError,
    PreconditionFailedError,
    ProofGateError,
    ProofValidationError,
)
from .gate_config import FINAL_GATE, GATE_PROGRESSION, get_gate_config
from .gates import GateStateMachine, GateTransitionResult
from .models import (
    PROJECT_COMPLETE,
    BuildResult,
    CommandResult,
    E2ETestResult,
    FullstackValidationResult,
    FullValidationResult,
    Gate,
    GateStatus,
    GateType,
    GateValidationSummary,
    InstallResult,
    IntegrationTestResult,
    LintResult,
    PassFail,
    Project,
    ProjectType,
    ProofArtifact,
    ProofType,
    SecurityScanResult,
    TestResult,
    TestSuiteReport,
    ValidationOutcome,
)
from .notifications import LoggingNotificationSink, NotificationSink, RecordingNotificationSink
from .pipeline import BuildPipeline
from .preview import PreviewRegistry
from .proof_store import ProofArtifactService
from .runner import CommandRunner
from .sandbox import SandboxPath, Workspace
from .settings import RuntimeSettings
from .state_store import GateStateStore


def get_version() -> str:
    try:
        return version(__name__)
    except Exception:
        return "0.0.0"


__all__ = [
    "ApprovalDecision",
    "ApprovalPolicy",
    "BuildPipeline",
    "BuildResult",
    "CommandResult",
    "CommandRunner",
    "E2ETestResult",
    "FINAL_GATE",
    "ForbiddenError",
    "FullValidationResult",
    "FullstackValidationResult",
    "GATE_PROGRESSION",
    "Gate",
    "GateStateMachine",
    "GateStateStore",
    "GateStatus",
    "GateTransitionResult",
    "GateType",
    "GateValidationSummary",
    "InstallResult",
    "IntegrationTestResult",
    "InvalidApprovalError",
    "InvalidTransitionError",
    "KeywordApprovalPolicy",
    "LintResult",
    "LoggingNotificationSink",
    "NotFoundError",
    "NotificationSink",
    "PROJECT_COMPLETE",
    "PassFail",
    "PathTraversalError",
    "PreconditionFailedError",
    "PreviewRegistry",
    "Project",
    "ProjectType",
    "ProofArtifact",
    "ProofArtifactService",
    "ProofGateError",
    "ProofType",
    "ProofValidationError",
    "RecordingNotificationSink",
    "RuntimeSettings",
    "SandboxPath",
    "SecurityScanResult",
    "TTLCache",
    "TestResult",
    "TestSuiteReport",
    "ValidationOutcome",
    "Workspace",
    "get_gate_config",
    "get_version",
]
