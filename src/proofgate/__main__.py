"""Entry point for `python -m proofgate` and the `proofgate` CLI script."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from pathlib import Path

from proofgate.errors import ProofGateError
from proofgate.gates import GateStateMachine
from proofgate.models import FullValidationResult, Gate, GateType, ProjectType, ProofType
from proofgate.pipeline import BuildPipeline
from proofgate.preview import PreviewRegistry
from proofgate.proof_store import ProofArtifactService
from proofgate.runner import CommandRunner
from proofgate.sandbox import Workspace
from proofgate.settings import RuntimeSettings
from proofgate.state_store import GateStateStore


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="proofgate", description="Drive gate approvals and proof validation for a project")
    parser.add_argument(
        "--workspace-root",
        type=Path,
        default=None,
        help="Root directory holding one sandbox per project (default: PROOFGATE_WORKSPACE_ROOT)",
    )
    parser.add_argument(
        "--state-root",
        type=Path,
        default=None,
        help="Root directory of the gate state store (default: PROOFGATE_STATE_STORE_ROOT)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    init = commands.add_parser("init", help="Create a project and its first gate")
    init.add_argument("project_id")
    init.add_argument("--owner", required=True)
    init.add_argument("--name", default="")
    init.add_argument(
        "--project-type",
        type=lambda value: value.lower(),
        default=ProjectType.TRADITIONAL.value,
        choices=[item.value for item in ProjectType],
    )

    status = commands.add_parser("status", help="List the project's gates")
    status.add_argument("project_id")

    review = commands.add_parser("review", help="Move the current gate to IN_REVIEW")
    review.add_argument("project_id")
    review.add_argument("--user", required=True)
    review.add_argument("--gate", type=GateType, default=None, help="Gate type (default: current gate)")

    for name, help_text in (("approve", "Approve the current gate"), ("reject", "Reject the current gate")):
        decision = commands.add_parser(name, help=help_text)
        decision.add_argument("project_id")
        decision.add_argument("--user", required=True)
        decision.add_argument("--notes", default="", help="Approval text or rejection reason")
        decision.add_argument("--gate", type=GateType, default=None, help="Gate type (default: current gate)")
        if name == "reject":
            decision.add_argument("--block", action="store_true", help="Mark the gate BLOCKED instead of REJECTED")

    validate = commands.add_parser("validate", help="Install, then run type check, build, tests, lint, and audit")
    validate.add_argument("project_id")
    validate.add_argument("--working-dir", default=".")
    validate.add_argument("--record", action="store_true", help="Record results as proof artifacts on the current gate")
    validate.add_argument("--user", default=None, help="Project owner, required with --record")

    fullstack = commands.add_parser("fullstack", help="Install and build every sub-project")
    fullstack.add_argument("project_id")

    e2e = commands.add_parser("e2e", help="Run Playwright tests against the live preview")
    e2e.add_argument("project_id")
    e2e.add_argument("--working-dir", default=".")
    e2e.add_argument("--preview-port", type=int, default=None, help="Port of an already running preview server")

    args = parser.parse_args(argv)
    if args.command == "validate" and args.record and not args.user:
        parser.error("--record requires --user")
    return args


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _select_gate(machine: GateStateMachine, project_id: str, gate_type: GateType | None) -> Gate:
    if gate_type is not None:
        gate = machine.store.find_gate_by_type(project_id, gate_type)
        if gate is None:
            raise ProofGateError(f"Project {project_id} has no {gate_type.value} gate")
        return gate
    gate = machine.get_current_gate(project_id)
    if gate is None:
        raise ProofGateError(f"Project {project_id} has no open gate")
    return gate


def _record_results(
    proofs: ProofArtifactService, project_id: str, gate: Gate | None, result: FullValidationResult, user_id: str
) -> None:
    gate_id = gate.id if gate is not None else None
    recorded = [
        (ProofType.BUILD_OUTPUT, result.build),
        (ProofType.TEST_OUTPUT, result.tests),
        (ProofType.COVERAGE_REPORT, result.tests),
        (ProofType.LINT_OUTPUT, result.lint),
        (ProofType.SECURITY_SCAN, result.security),
    ]
    for proof_type, check in recorded:
        artifact = proofs.record_validation(project_id, gate_id, proof_type, check, user_id)
        print(f"recorded {proof_type.value}={artifact.pass_fail.value} ({artifact.file_path})")


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Roots must be in the environment before any settings object is built.
    if args.workspace_root is not None:
        os.environ["PROOFGATE_WORKSPACE_ROOT"] = str(args.workspace_root.resolve())
    if args.state_root is not None:
        os.environ["PROOFGATE_STATE_STORE_ROOT"] = str(args.state_root.resolve())

    try:
        settings = RuntimeSettings.from_env()
    except ValueError as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1

    workspace = Workspace(settings.workspace_root_path)
    store = GateStateStore(settings.state_store_path)
    proofs = ProofArtifactService(store, workspace, settings)
    machine = GateStateMachine(store, proofs, settings=settings)
    previews = PreviewRegistry()
    pipeline = BuildPipeline(workspace, CommandRunner(workspace, settings), settings, previews=previews)

    try:
        if args.command == "init":
            project = machine.initialize_project(
                args.project_id, args.owner, name=args.name, project_type=ProjectType(args.project_type)
            )
            print(f"project={project.id} current_gate={project.current_gate}")
            return 0

        if args.command == "status":
            project = store.get_project(args.project_id)
            print(f"project={project.id} current_gate={project.current_gate}")
            for gate in machine.get_project_gates(args.project_id):
                print(f"{gate.gate_type.value}\t{gate.status.value}\trevision={gate.revision}\t{gate.id}")
            return 0

        if args.command == "review":
            gate = _select_gate(machine, args.project_id, args.gate)
            updated = machine.transition_to_review(gate.id, args.user)
            print(f"{updated.gate_type.value}={updated.status.value}")
            return 0

        if args.command in ("approve", "reject"):
            gate = _select_gate(machine, args.project_id, args.gate)
            outcome = asyncio.run(
                machine.request_approval(
                    gate.id,
                    args.user,
                    approved=args.command == "approve",
                    notes=args.notes,
                    block=getattr(args, "block", False),
                )
            )
            print(f"{outcome.gate.gate_type.value}={outcome.gate.status.value}")
            if outcome.next_gate is not None:
                print(f"next_gate={outcome.next_gate.gate_type.value}")
            if outcome.project_complete:
                print("project_complete=True")
            return 0

        if args.command == "validate":
            result = asyncio.run(pipeline.run_full_validation(args.project_id, args.working_dir))
            _print_json(result.model_dump(mode="json"))
            if args.record:
                _record_results(proofs, args.project_id, machine.get_current_gate(args.project_id), result, args.user)
            print(f"overall_success={result.overall_success}")
            return 0 if result.overall_success else 1

        if args.command == "fullstack":
            fullstack_result = asyncio.run(pipeline.validate_fullstack_project(args.project_id))
            _print_json(fullstack_result.model_dump(mode="json"))
            return 0 if fullstack_result.overall_success else 1

        if args.command == "e2e":
            if args.preview_port is not None:
                previews.register(args.project_id, args.preview_port, settings.preview_host)
            e2e_result = asyncio.run(pipeline.run_e2e_tests(args.project_id, args.working_dir))
            _print_json(e2e_result.model_dump(mode="json"))
            return 0 if e2e_result.success else 1
    except (ProofGateError, OSError, ValueError) as exc:
        logging.error("%s failed: %s", args.command, exc)
        return 1

    logging.error("Unknown command: %s", args.command)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
