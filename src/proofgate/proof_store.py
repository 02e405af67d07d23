from __future__ import annotations

import logging
from datetime import UTC, datetime

from pydantic import BaseModel

from .canonical import to_canonical_json
from .errors import ForbiddenError, NotFoundError
from .models import (
    ArtifactValidation,
    CreateProofArtifactRequest,
    Gate,
    GateType,
    GateValidationSummary,
    PassFail,
    Project,
    ProofArtifact,
    ProofType,
    ValidationOutcome,
    new_id,
)
from .sandbox import Workspace
from .settings import RuntimeSettings
from .state_store import GateStateStore
from .validators import hash_file, validate_artifact

logger = logging.getLogger(__name__)

PROOFS_DIR = ".proofs"


def _summary_with_errors(outcome: ValidationOutcome) -> str:
    if not outcome.errors:
        return outcome.summary
    return outcome.summary + "\n\nErrors:\n" + "\n".join(outcome.errors)


class ProofArtifactService:
    """Owner-scoped create, validate, list, and delete of proof artifacts.

    Artifact files live in the project's sandbox and are referenced by
    sandbox-relative path. Every validation re-reads and re-hashes the file,
    so a verdict always describes the bytes currently on disk.
    """

    def __init__(self, store: GateStateStore, workspace: Workspace, settings: RuntimeSettings | None = None) -> None:
        self.store = store
        self.workspace = workspace
        self.settings = settings if settings is not None else RuntimeSettings.from_env()

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    def _owned_project(self, project_id: str, user_id: str, action: str) -> Project:
        project = self.store.find_project(project_id)
        if project is None:
            raise NotFoundError("Project not found")
        if project.owner_id != user_id:
            raise ForbiddenError(f"You can only {action} proof artifacts for your own projects")
        return project

    def _owned_artifact(self, artifact_id: str, user_id: str, action: str) -> ProofArtifact:
        artifact = self.store.find_artifact(artifact_id)
        if artifact is None:
            raise NotFoundError("Proof artifact not found")
        self._owned_project(artifact.project_id, user_id, action)
        return artifact

    def _owned_gate(self, gate_id: str, user_id: str, action: str) -> Gate:
        gate = self.store.find_gate(gate_id)
        if gate is None:
            raise NotFoundError("Gate not found")
        self._owned_project(gate.project_id, user_id, action)
        return gate

    # ------------------------------------------------------------------
    # Create / validate
    # ------------------------------------------------------------------

    def create(self, request: CreateProofArtifactRequest, user_id: str) -> ProofArtifact:
        """Hash the referenced file and register it as a proof artifact.

        Raises:
            NotFoundError: If the project, gate, or file does not exist.
            ForbiddenError: If ``user_id`` does not own the project.
            PathTraversalError: If ``file_path`` leaves the project sandbox.
        """
        self._owned_project(request.project_id, user_id, "create")
        path = self.workspace.resolve(request.project_id, request.file_path)
        if not path.absolute.is_file():
            raise NotFoundError(f"Proof file not found: {request.file_path}")

        gate_type = request.gate_type
        if request.gate_id is not None:
            gate = self.store.find_gate(request.gate_id)
            if gate is None or gate.project_id != request.project_id:
                raise NotFoundError("Gate not found")
            gate_type = gate_type or gate.gate_type

        artifact = ProofArtifact(
            project_id=request.project_id,
            gate_id=request.gate_id,
            gate_type=gate_type,
            proof_type=request.proof_type,
            file_path=str(path),
            file_hash=hash_file(path.absolute),
            content_summary=request.content_summary,
            created_by=user_id,
        )
        if request.auto_validate:
            outcome = validate_artifact(request.proof_type, path.absolute, self.settings)
            artifact = self._apply_outcome(artifact, outcome, artifact.file_hash, user_id)

        self.store.save_artifact(artifact)
        logger.info(
            "Created %s artifact %s for project %s (%s)",
            artifact.proof_type.value,
            artifact.id,
            artifact.project_id,
            artifact.pass_fail.value,
        )
        return artifact

    def _apply_outcome(
        self, artifact: ProofArtifact, outcome: ValidationOutcome, file_hash: str, user_id: str
    ) -> ProofArtifact:
        return artifact.model_copy(
            update={
                "pass_fail": outcome.verdict,
                "content_summary": _summary_with_errors(outcome),
                "file_hash": file_hash,
                "verified": True,
                "verified_at": datetime.now(UTC),
                "verified_by": user_id,
            }
        )

    def _revalidate(self, artifact: ProofArtifact, user_id: str) -> ArtifactValidation:
        path = self.workspace.resolve(artifact.project_id, artifact.file_path).absolute
        outcome = validate_artifact(artifact.proof_type, path, self.settings)
        try:
            file_hash = hash_file(path)
        except OSError:
            file_hash = artifact.file_hash
        updated = self._apply_outcome(artifact, outcome, file_hash, user_id)
        self.store.save_artifact(updated)
        if file_hash != artifact.file_hash:
            logger.warning("Proof file %s for artifact %s changed since it was recorded", artifact.file_path, artifact.id)
        return ArtifactValidation(
            artifact_id=artifact.id, proof_type=artifact.proof_type, file_hash=file_hash, validation=outcome
        )

    def validate(self, artifact_id: str, user_id: str) -> ArtifactValidation:
        artifact = self._owned_artifact(artifact_id, user_id, "validate")
        return self._revalidate(artifact, user_id)

    revalidate = validate

    def validate_all_for_gate(self, gate_id: str, user_id: str) -> GateValidationSummary:
        """Re-validate every artifact attached to a gate.

        ``all_passed`` requires at least one artifact and no failures; warning
        and info verdicts do not block.
        """
        gate = self._owned_gate(gate_id, user_id, "validate")
        results = [self._revalidate(artifact, user_id) for artifact in self.store.list_artifacts(gate.project_id, gate_id=gate_id)]

        failed = sum(1 for item in results if item.validation.verdict == PassFail.FAIL)
        warnings = sum(1 for item in results if item.validation.verdict == PassFail.WARNING)
        passed = len(results) - failed - warnings
        logger.info("Validated %d artifacts for gate %s: %d passed, %d failed", len(results), gate_id, passed, failed)
        return GateValidationSummary(
            gate_id=gate_id,
            total_artifacts=len(results),
            passed=passed,
            failed=failed,
            warnings=warnings,
            all_passed=failed == 0 and len(results) > 0,
            results=results,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_all(self, project_id: str, user_id: str, gate_type: GateType | None = None) -> list[ProofArtifact]:
        self._owned_project(project_id, user_id, "view")
        return self.store.list_artifacts(project_id, gate_type=gate_type)

    def find_one(self, artifact_id: str, user_id: str) -> ProofArtifact:
        return self._owned_artifact(artifact_id, user_id, "view")

    def artifacts_for_gate(self, gate_id: str, user_id: str) -> list[ProofArtifact]:
        gate = self._owned_gate(gate_id, user_id, "view")
        return self.store.list_artifacts(gate.project_id, gate_id=gate_id)

    def delete(self, artifact_id: str, user_id: str) -> dict[str, str]:
        artifact = self._owned_artifact(artifact_id, user_id, "delete")
        self.store.delete_artifact(artifact.id)
        return {"message": "Proof artifact deleted successfully"}

    # ------------------------------------------------------------------
    # Pipeline results
    # ------------------------------------------------------------------

    def record_validation(
        self,
        project_id: str,
        gate_id: str | None,
        proof_type: ProofType,
        result: BaseModel,
        user_id: str,
    ) -> ProofArtifact:
        """Write a pipeline result as a canonical JSON report and register it.

        The report lands under ``.proofs/`` in the project sandbox and is
        validated immediately, so the artifact's verdict reflects the result.
        """
        self._owned_project(project_id, user_id, "create")
        gate = None
        if gate_id is not None:
            gate = self.store.find_gate(gate_id)
            if gate is None or gate.project_id != project_id:
                raise NotFoundError("Gate not found")

        folder = gate.gate_type.value if gate is not None else "ungated"
        relative_path = f"{PROOFS_DIR}/{folder}/{proof_type.value}-{new_id('RUN')}.json"
        self.workspace.write_file(project_id, relative_path, to_canonical_json(result) + "\n")
        return self.create(
            CreateProofArtifactRequest(
                project_id=project_id,
                proof_type=proof_type,
                file_path=relative_path,
                gate_id=gate_id,
                gate_type=gate.gate_type if gate is not None else None,
                auto_validate=True,
            ),
            user_id,
        )
