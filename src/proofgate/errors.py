"""Exception taxonomy for gate transitions and proof handling.

Precondition and data errors propagate to the caller unchanged. Tool execution
and parse failures never surface as exceptions; the pipeline folds them into
result objects instead.
"""

from __future__ import annotations


class ProofGateError(Exception):
    """Base class for all errors raised by proofgate services."""


class NotFoundError(ProofGateError):
    """Raised when a gate, artifact, or project does not exist."""


class ForbiddenError(ProofGateError):
    """Raised when the caller does not own the project the record belongs to."""


class PreconditionFailedError(ProofGateError):
    """Raised when a transition is attempted before its preconditions hold."""


class InvalidApprovalError(PreconditionFailedError):
    """Raised when approval text is ambiguous or not an explicit approval."""


class InvalidTransitionError(PreconditionFailedError):
    """Raised when a gate status change is not allowed from its current status."""


class ProofValidationError(PreconditionFailedError):
    """Raised when required proof artifacts are missing or fail re-validation."""

    def __init__(self, message: str, failing_proof_types: list[str]) -> None:
        super().__init__(message)
        self.failing_proof_types = failing_proof_types


class PathTraversalError(ProofGateError):
    """Raised when a relative path would resolve outside a project sandbox."""
