"""Per-proof-type validators.

Each validator is a pure function of a file's bytes (and its name, for format
detection) returning a ``ValidationOutcome``. Validators never raise: an
unreadable file or malformed report is a failed outcome carrying the reason.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from pathlib import Path
from typing import Any, Callable

import yaml

from .models import CoverageSummary, PassFail, ProofType, ValidationOutcome, VulnerabilityCounts
from .parsers import (
    BUNDLER_FATAL_RES,
    load_json,
    parse_axe_violations,
    parse_coverage_summary,
    parse_coverage_text,
    parse_lighthouse_scores,
    parse_lint_output,
    parse_npm_audit,
    parse_test_output_text,
    parse_test_results_json,
)
from .settings import RuntimeSettings

logger = logging.getLogger(__name__)

_HASH_CHUNK_BYTES = 1024 * 1024

_JEST_FAIL_MARKER_RE = re.compile(r"^\s*FAIL\s+\S", re.MULTILINE)
_TESTS_FAILED_RE = re.compile(r"\bTests failed\b", re.IGNORECASE)

_BUILD_SUCCESS_RES = (
    re.compile(r"build successful", re.IGNORECASE),
    re.compile(r"compiled successfully", re.IGNORECASE),
    re.compile(r"built in \d", re.IGNORECASE),
    re.compile(r"built at:", re.IGNORECASE),
    re.compile(r"Done in", re.IGNORECASE),
)
_BUILD_ERROR_RES = (
    re.compile(r"compilation error", re.IGNORECASE),
    re.compile(r"ERROR in", re.IGNORECASE),
    re.compile(r"error TS\d+:"),
    *BUNDLER_FATAL_RES,
)

_DEPLOY_SUCCESS_RES = (
    re.compile(r"deploy(?:ment)?\s+(?:succeeded|successful|complete(?:d)?)", re.IGNORECASE),
    re.compile(r"successfully deployed", re.IGNORECASE),
    re.compile(r"deployed to\s+\S+", re.IGNORECASE),
    re.compile(r"deployment is live", re.IGNORECASE),
)
_DEPLOY_FAILURE_RES = (
    re.compile(r"deploy(?:ment)?\s+failed", re.IGNORECASE),
    re.compile(r"\bcrash(?:ed)?\b", re.IGNORECASE),
    re.compile(r"^\s*ERROR\b.*$", re.MULTILINE),
    re.compile(r"exit(?:ed)? (?:with )?code [1-9]\d*", re.IGNORECASE),
    re.compile(r"\b(?:rolled|rolling) back\b", re.IGNORECASE),
)

_SMOKE_SUCCESS_RES = (
    re.compile(r"smoke tests?\s+(?:passed|succeeded|ok)", re.IGNORECASE),
    re.compile(r"HTTP/\d(?:\.\d)?\s+2\d\d"),
    re.compile(r"status(?:\s+code)?\s*[:=]?\s*2\d\d\b", re.IGNORECASE),
    re.compile(r"\bhealthy\b", re.IGNORECASE),
)
_SMOKE_FAILURE_RES = (
    re.compile(r"smoke tests?\s+failed", re.IGNORECASE),
    re.compile(r"HTTP/\d(?:\.\d)?\s+[45]\d\d"),
    re.compile(r"status(?:\s+code)?\s*[:=]?\s*[45]\d\d\b", re.IGNORECASE),
    re.compile(r"connection refused", re.IGNORECASE),
    re.compile(r"timed out", re.IGNORECASE),
    re.compile(r"\bunhealthy\b", re.IGNORECASE),
)

Validator = Callable[[bytes, str, RuntimeSettings], ValidationOutcome]


def hash_file(path: Path) -> str:
    """Return the hex SHA-256 digest of the file at ``path``."""
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(_HASH_CHUNK_BYTES), b""):
            digest.update(chunk)
    return digest.hexdigest()


def hash_bytes(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def _text(content: bytes) -> str:
    return content.decode("utf-8", errors="replace")


def _outcome(passed: bool, summary: str, details: dict[str, Any] | None = None, errors: list[str] | None = None) -> ValidationOutcome:
    return ValidationOutcome(
        passed=passed,
        verdict=PassFail.PASS if passed else PassFail.FAIL,
        summary=summary,
        details=details or {},
        errors=errors or [],
    )


def _matches(patterns: tuple[re.Pattern[str], ...], text: str) -> list[str]:
    found: list[str] = []
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            found.append(match.group(0).strip())
    return found


def _pipeline_report(text: str, *kinds: str) -> dict[str, Any] | None:
    """Return a recorded pipeline result of one of ``kinds``, if ``text`` is one."""
    payload = load_json(text)
    if isinstance(payload, dict) and payload.get("kind") in kinds and "success" in payload:
        return payload
    return None


# ---------------------------------------------------------------------------
# Validators
# ---------------------------------------------------------------------------


def validate_test_output(content: bytes, name: str, settings: RuntimeSettings) -> ValidationOutcome:
    text = _text(content)
    report = _pipeline_report(text, "unit_tests", "integration_tests", "e2e_tests")
    if report is not None:
        passed_count = int(report.get("tests_passed") or 0)
        failed_count = int(report.get("tests_failed") or 0)
        passed = bool(report["success"]) and failed_count == 0 and passed_count > 0
        details = {"passCount": passed_count, "failCount": failed_count, "total": int(report.get("tests_total") or 0)}
        if passed:
            return _outcome(True, f"{passed_count} tests passed", details)
        return _outcome(False, f"{failed_count} tests failed, {passed_count} passed", details, list(report.get("errors") or []))

    counts = parse_test_results_json(text) or parse_test_output_text(text)
    errors: list[str] = []
    if counts.failed:
        errors.append(f"{counts.failed} tests failed")
    for marker in (_JEST_FAIL_MARKER_RE, _TESTS_FAILED_RE):
        match = marker.search(text)
        if match:
            errors.append(match.group(0).strip())
    if counts.passed == 0 and not errors:
        errors.append("No passing tests found in output")

    details = {"passCount": counts.passed, "failCount": counts.failed, "total": counts.total}
    if errors:
        return _outcome(False, f"{counts.failed} tests failed, {counts.passed} passed", details, errors)
    return _outcome(True, f"{counts.passed} tests passed", details)


def validate_coverage_report(content: bytes, name: str, settings: RuntimeSettings) -> ValidationOutcome:
    """Judge line coverage against the configured threshold (inclusive)."""
    text = _text(content)
    threshold = settings.coverage_threshold_pct
    report = _pipeline_report(text, "unit_tests")
    summary = None
    if report is not None and isinstance(report.get("coverage"), dict):
        summary = CoverageSummary.model_validate(report["coverage"])
    elif report is None:
        summary = parse_coverage_summary(text)
    if summary is not None:
        coverage = summary.headline
        details: dict[str, Any] = {"coverage": coverage, "threshold": threshold, **summary.model_dump()}
    else:
        pct = parse_coverage_text(text)
        if pct is None:
            return _outcome(False, "No coverage percentage found", {"threshold": threshold}, ["Coverage report has no recognizable totals"])
        coverage = pct
        details = {"coverage": coverage, "threshold": threshold}

    passed = coverage >= threshold
    errors = [] if passed else [f"Coverage {coverage}% is below threshold {threshold}%"]
    return _outcome(passed, f"Code coverage: {coverage}% (threshold: {threshold}%)", details, errors)


def _eslint_json_counts(text: str) -> tuple[int, int] | None:
    payload = load_json(text)
    if not isinstance(payload, list) or not all(isinstance(item, dict) for item in payload):
        return None
    if payload and not any("errorCount" in item for item in payload):
        return None
    errors = sum(int(item.get("errorCount") or 0) for item in payload)
    warnings = sum(int(item.get("warningCount") or 0) for item in payload)
    return errors, warnings


def validate_lint_output(content: bytes, name: str, settings: RuntimeSettings) -> ValidationOutcome:
    text = _text(content)
    report = _pipeline_report(text, "lint")
    if report is not None:
        counts: tuple[int, int] | None = (int(report.get("error_count") or 0), int(report.get("warning_count") or 0))
    else:
        counts = _eslint_json_counts(text)
    if counts is None:
        summary = parse_lint_output(text)
        counts = (summary.error_count, summary.warning_count)
    errors, warnings = counts
    passed = errors == 0
    return _outcome(
        passed,
        f"Linting: {errors} errors, {warnings} warnings",
        {"errors": errors, "warnings": warnings},
        [] if passed else [f"{errors} linting errors found"],
    )


def validate_security_scan(content: bytes, name: str, settings: RuntimeSettings) -> ValidationOutcome:
    text = _text(content)
    report = _pipeline_report(text, "security")
    if report is not None and isinstance(report.get("vulnerabilities"), dict):
        counts = VulnerabilityCounts.model_validate(report["vulnerabilities"])
    else:
        counts = parse_npm_audit(text)
    passed = counts.blocking == 0
    return _outcome(
        passed,
        f"Security: {counts.critical} critical, {counts.high} high, {counts.moderate} moderate, {counts.low} low",
        counts.model_dump(),
        [] if passed else [f"{counts.blocking} critical/high vulnerabilities found"],
    )


def validate_build_output(content: bytes, name: str, settings: RuntimeSettings) -> ValidationOutcome:
    text = _text(content)
    report = _pipeline_report(text, "build", "type_check")
    if report is not None:
        if report["success"] and not report.get("errors"):
            return _outcome(True, "Build completed successfully", {"kind": report["kind"]})
        return _outcome(False, "Build failed", {"kind": report["kind"]}, list(report.get("errors") or ["build failed"]))

    errors = _matches(_BUILD_ERROR_RES, text)
    succeeded = bool(_matches(_BUILD_SUCCESS_RES, text))
    if errors:
        return _outcome(False, "Build failed", errors=list(dict.fromkeys(errors)))
    if not succeeded:
        return _outcome(False, "Build status unknown", errors=["No build success marker found"])
    return _outcome(True, "Build completed successfully")


def _check_openapi(document: Any) -> list[str]:
    if not isinstance(document, dict):
        return []
    if "openapi" not in document and "swagger" not in document:
        return []
    if not isinstance(document.get("paths"), dict):
        return ["OpenAPI document has no 'paths' object"]
    return []


def _check_prisma(text: str) -> list[str]:
    errors: list[str] = []
    if not re.search(r"^\s*datasource\s+\w+\s*\{", text, re.MULTILINE):
        errors.append("Prisma schema has no datasource block")
    if not re.search(r"^\s*model\s+\w+\s*\{", text, re.MULTILINE):
        errors.append("Prisma schema defines no models")
    if text.count("{") != text.count("}"):
        errors.append("Prisma schema has unbalanced braces")
    return errors


def validate_spec(content: bytes, name: str, settings: RuntimeSettings) -> ValidationOutcome:
    """Check specification syntax by file extension.

    JSON and YAML must parse; a document declaring ``openapi`` or ``swagger``
    must also carry a ``paths`` object. Prisma schemas get a structural check.
    """
    text = _text(content)
    suffix = Path(name).suffix.lower()
    if suffix == ".json":
        try:
            document = json.loads(text)
        except json.JSONDecodeError as exc:
            return _outcome(False, "Specification validation failed", errors=[f"Invalid JSON: {exc}"])
        label = "JSON"
    elif suffix in (".yaml", ".yml"):
        try:
            document = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            return _outcome(False, "Specification validation failed", errors=[f"Invalid YAML: {exc}"])
        label = "YAML"
    elif suffix == ".prisma":
        errors = _check_prisma(text)
        if errors:
            return _outcome(False, "Prisma validation failed", errors=errors)
        return _outcome(True, "Valid Prisma schema")
    else:
        return ValidationOutcome(passed=True, verdict=PassFail.INFO, summary="Specification format not validated")

    errors = _check_openapi(document)
    if errors:
        return _outcome(False, "OpenAPI validation failed", errors=errors)
    if isinstance(document, dict) and ("openapi" in document or "swagger" in document):
        return _outcome(True, "Valid OpenAPI specification", {"paths": len(document["paths"])})
    return _outcome(True, f"Valid {label} specification")


def validate_lighthouse_report(content: bytes, name: str, settings: RuntimeSettings) -> ValidationOutcome:
    scores = parse_lighthouse_scores(_text(content))
    threshold = settings.lighthouse_threshold
    if scores is None:
        return _outcome(False, "Lighthouse report has no categories", errors=["Report is not a Lighthouse JSON document"])
    failing = sorted(key for key, score in scores.items() if score < threshold)
    rendered = ", ".join(f"{key}={round(score * 100)}" for key, score in sorted(scores.items()))
    errors = [f"{key} score {scores[key]:.2f} is below {threshold:.2f}" for key in failing]
    return _outcome(not failing, f"Lighthouse: {rendered}", {"scores": scores, "threshold": threshold}, errors)


def validate_accessibility_scan(content: bytes, name: str, settings: RuntimeSettings) -> ValidationOutcome:
    counts = parse_axe_violations(_text(content))
    if counts is None:
        return _outcome(False, "Accessibility report has no violations list", errors=["Report is not an axe-core JSON document"])
    blocking = counts["critical"] + counts["serious"]
    minor = counts["moderate"] + counts["minor"]
    summary = (
        f"Accessibility: {counts['critical']} critical, {counts['serious']} serious, "
        f"{counts['moderate']} moderate, {counts['minor']} minor"
    )
    if blocking:
        return _outcome(False, summary, counts, [f"{blocking} critical/serious accessibility violations"])
    if minor:
        return ValidationOutcome(passed=True, verdict=PassFail.WARNING, summary=summary, details=counts)
    return _outcome(True, summary, counts)


def _pattern_verdict(
    text: str,
    success: tuple[re.Pattern[str], ...],
    failure: tuple[re.Pattern[str], ...],
    label: str,
) -> ValidationOutcome:
    failures = _matches(failure, text)
    successes = _matches(success, text)
    if failures:
        return _outcome(False, f"{label} failed", {"markers": successes}, failures)
    if not successes:
        return _outcome(False, f"{label} status unknown", errors=[f"No {label.lower()} success marker found"])
    return _outcome(True, f"{label} succeeded", {"markers": successes})


def validate_deployment_log(content: bytes, name: str, settings: RuntimeSettings) -> ValidationOutcome:
    return _pattern_verdict(_text(content), _DEPLOY_SUCCESS_RES, _DEPLOY_FAILURE_RES, "Deployment")


def validate_smoke_test(content: bytes, name: str, settings: RuntimeSettings) -> ValidationOutcome:
    text = _text(content)
    if _pipeline_report(text, "e2e_tests") is not None:
        return validate_test_output(content, name, settings)
    counts = parse_test_results_json(text)
    if counts is None:
        counts = parse_test_output_text(text)
    if counts.source != "none":
        passed = counts.failed == 0 and counts.passed > 0
        errors = [] if passed else [f"{counts.failed} smoke tests failed, {counts.passed} passed"]
        return _outcome(passed, f"Smoke tests: {counts.passed} passed, {counts.failed} failed", {"passCount": counts.passed, "failCount": counts.failed}, errors)
    return _pattern_verdict(text, _SMOKE_SUCCESS_RES, _SMOKE_FAILURE_RES, "Smoke test")


def validate_screenshot(content: bytes, name: str, settings: RuntimeSettings) -> ValidationOutcome:
    if not content:
        return _outcome(False, "Screenshot file is empty", errors=["Screenshot file is empty"])
    return ValidationOutcome(
        passed=True,
        verdict=PassFail.INFO,
        summary=f"Screenshot captured ({len(content)} bytes); visual review required",
        details={"bytes": len(content)},
    )


def validate_manual_verification(content: bytes, name: str, settings: RuntimeSettings) -> ValidationOutcome:
    note = _text(content).strip()
    if not note:
        return _outcome(False, "Manual verification note is empty", errors=["Manual verification note is empty"])
    first_line = note.splitlines()[0]
    return _outcome(True, f"Manually verified: {first_line[:120]}", {"characters": len(note)})


VALIDATORS: dict[ProofType, Validator] = {
    ProofType.TEST_OUTPUT: validate_test_output,
    ProofType.COVERAGE_REPORT: validate_coverage_report,
    ProofType.LINT_OUTPUT: validate_lint_output,
    ProofType.SECURITY_SCAN: validate_security_scan,
    ProofType.BUILD_OUTPUT: validate_build_output,
    ProofType.SPEC_VALIDATION: validate_spec,
    ProofType.LIGHTHOUSE_REPORT: validate_lighthouse_report,
    ProofType.ACCESSIBILITY_SCAN: validate_accessibility_scan,
    ProofType.DEPLOYMENT_LOG: validate_deployment_log,
    ProofType.SMOKE_TEST: validate_smoke_test,
    ProofType.SCREENSHOT: validate_screenshot,
    ProofType.MANUAL_VERIFICATION: validate_manual_verification,
}


def validate_content(
    proof_type: ProofType,
    content: bytes,
    name: str,
    settings: RuntimeSettings | None = None,
) -> ValidationOutcome:
    effective = settings if settings is not None else RuntimeSettings()
    validator = VALIDATORS[proof_type]
    try:
        return validator(content, name, effective)
    except (ValueError, TypeError, KeyError, OverflowError, RecursionError) as exc:
        logger.warning("Validator for %s could not interpret %s: %s", proof_type.value, name, exc)
        return _outcome(False, f"Could not interpret {proof_type.value} report", errors=[str(exc)])


def validate_artifact(proof_type: ProofType, path: Path, settings: RuntimeSettings | None = None) -> ValidationOutcome:
    """Read ``path`` and run the validator registered for ``proof_type``."""
    try:
        content = path.read_bytes()
    except OSError as exc:
        logger.warning("Could not read %s artifact %s: %s", proof_type.value, path, exc)
        label = proof_type.value.replace("_", " ")
        return _outcome(False, f"Failed to read {label}", errors=[str(exc)])
    return validate_content(proof_type, content, path.name, settings)
