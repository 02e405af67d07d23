from __future__ import annotations

import json
from pathlib import Path

import pytest

from proofgate.canonical import to_canonical_bytes
from proofgate.models import (
    BuildResult,
    CoverageSummary,
    LintResult,
    PassFail,
    ProofType,
    SecurityScanResult,
    TestResult,
    VulnerabilityCounts,
)
from proofgate.settings import RuntimeSettings
from proofgate.validators import hash_bytes, hash_file, validate_artifact, validate_content

SETTINGS = RuntimeSettings()


def _coverage_json(lines_pct: float) -> bytes:
    entry = {"total": 100, "covered": 0, "pct": lines_pct}
    return json.dumps({"total": {"lines": entry, "statements": entry, "functions": entry, "branches": entry}}).encode()


@pytest.mark.parametrize(("pct", "expected"), [(79.9, PassFail.FAIL), (80.0, PassFail.PASS), (100.0, PassFail.PASS)])
def test_coverage_threshold_is_inclusive(pct: float, expected: PassFail) -> None:
    outcome = validate_content(ProofType.COVERAGE_REPORT, _coverage_json(pct), "coverage-summary.json", SETTINGS)
    assert outcome.verdict == expected
    assert outcome.details["coverage"] == pct


def test_coverage_threshold_follows_settings() -> None:
    lenient = RuntimeSettings(coverage_threshold_pct=50.0)
    outcome = validate_content(ProofType.COVERAGE_REPORT, _coverage_json(60.0), "coverage-summary.json", lenient)
    assert outcome.passed


def test_coverage_text_report_and_unrecognized_input() -> None:
    table = b"All files |   85.4 |   70 |   90 |   85.4 |\n"
    assert validate_content(ProofType.COVERAGE_REPORT, table, "coverage.txt", SETTINGS).passed
    outcome = validate_content(ProofType.COVERAGE_REPORT, b"hello", "coverage.txt", SETTINGS)
    assert outcome.verdict == PassFail.FAIL
    assert outcome.summary == "No coverage percentage found"


def _audit(critical: int, high: int, moderate: int, low: int) -> bytes:
    vulnerabilities = {"critical": critical, "high": high, "moderate": moderate, "low": low}
    return json.dumps({"metadata": {"vulnerabilities": vulnerabilities}}).encode()


def test_security_scan_passes_with_only_moderate_and_low() -> None:
    outcome = validate_content(ProofType.SECURITY_SCAN, _audit(0, 0, 3, 5), "audit.json", SETTINGS)
    assert outcome.verdict == PassFail.PASS
    assert outcome.details == {"critical": 0, "high": 0, "moderate": 3, "low": 5}


@pytest.mark.parametrize("counts", [(1, 0, 0, 0), (0, 1, 0, 0), (1, 0, 2, 9)])
def test_security_scan_fails_on_critical_or_high(counts: tuple[int, int, int, int]) -> None:
    outcome = validate_content(ProofType.SECURITY_SCAN, _audit(*counts), "audit.json", SETTINGS)
    assert outcome.verdict == PassFail.FAIL
    assert outcome.errors


def test_test_output_requires_a_pass_and_no_failures() -> None:
    passing = b"Tests:       12 passed, 12 total\n"
    assert validate_content(ProofType.TEST_OUTPUT, passing, "test.log", SETTINGS).passed

    failing = b"FAIL src/cart.test.ts\nTests:       1 failed, 11 passed, 12 total\n"
    outcome = validate_content(ProofType.TEST_OUTPUT, failing, "test.log", SETTINGS)
    assert not outcome.passed
    assert "1 tests failed" in outcome.errors

    empty = validate_content(ProofType.TEST_OUTPUT, b"no tests ran", "test.log", SETTINGS)
    assert not empty.passed
    assert empty.errors == ["No passing tests found in output"]


def test_test_output_reads_jest_json() -> None:
    raw = json.dumps({"numPassedTests": 4, "numFailedTests": 0, "numTotalTests": 4}).encode()
    outcome = validate_content(ProofType.TEST_OUTPUT, raw, "test-results.json", SETTINGS)
    assert outcome.passed
    assert outcome.details == {"passCount": 4, "failCount": 0, "total": 4}


def test_lint_output_accepts_stylish_and_eslint_json() -> None:
    assert validate_content(ProofType.LINT_OUTPUT, b"\xe2\x9c\x96 2 problems (0 errors, 2 warnings)\n", "lint.txt", SETTINGS).passed
    eslint = json.dumps([{"filePath": "/a.ts", "errorCount": 1, "warningCount": 0}, {"filePath": "/b.ts", "errorCount": 0, "warningCount": 3}])
    outcome = validate_content(ProofType.LINT_OUTPUT, eslint.encode(), "eslint.json", SETTINGS)
    assert not outcome.passed
    assert outcome.details == {"errors": 1, "warnings": 3}


def test_build_output_patterns() -> None:
    assert validate_content(ProofType.BUILD_OUTPUT, b"vite v5 building...\n\xe2\x9c\x93 built in 2.31s\n", "build.log", SETTINGS).passed
    broken = validate_content(ProofType.BUILD_OUTPUT, b"src/a.ts(1,2): error TS2304: Cannot find name 'x'.\n", "build.log", SETTINGS)
    assert not broken.passed
    unknown = validate_content(ProofType.BUILD_OUTPUT, b"starting\n", "build.log", SETTINGS)
    assert unknown.summary == "Build status unknown"


def test_recorded_pipeline_results_are_understood() -> None:
    tests = TestResult(
        success=True,
        tests_passed=9,
        tests_total=9,
        coverage=CoverageSummary(lines=82.0, statements=80.0, functions=75.0, branches=60.0),
    )
    report = to_canonical_bytes(tests)
    assert validate_content(ProofType.TEST_OUTPUT, report, "tests.json", SETTINGS).passed
    coverage = validate_content(ProofType.COVERAGE_REPORT, report, "tests.json", SETTINGS)
    assert coverage.passed
    assert coverage.details["coverage"] == 82.0

    failed_build = to_canonical_bytes(BuildResult(success=False, errors=["error TS2304: Cannot find name 'x'."]))
    assert validate_content(ProofType.BUILD_OUTPUT, failed_build, "build.json", SETTINGS).errors == [
        "error TS2304: Cannot find name 'x'."
    ]

    lint = to_canonical_bytes(LintResult(success=False, error_count=2, warning_count=1))
    assert not validate_content(ProofType.LINT_OUTPUT, lint, "lint.json", SETTINGS).passed

    audit = to_canonical_bytes(SecurityScanResult(success=True, vulnerabilities=VulnerabilityCounts(moderate=3, low=5)))
    assert validate_content(ProofType.SECURITY_SCAN, audit, "audit.json", SETTINGS).passed


def test_spec_validation_by_extension() -> None:
    openapi = b"openapi: 3.0.0\ninfo:\n  title: Shop\n  version: '1'\npaths:\n  /items: {}\n"
    outcome = validate_content(ProofType.SPEC_VALIDATION, openapi, "openapi.yaml", SETTINGS)
    assert outcome.passed
    assert outcome.summary == "Valid OpenAPI specification"

    no_paths = validate_content(ProofType.SPEC_VALIDATION, b'{"openapi": "3.1.0"}', "openapi.json", SETTINGS)
    assert not no_paths.passed

    bad_yaml = validate_content(ProofType.SPEC_VALIDATION, b"a: [1, 2\n", "schema.yml", SETTINGS)
    assert not bad_yaml.passed
    assert bad_yaml.errors[0].startswith("Invalid YAML")

    bad_json = validate_content(ProofType.SPEC_VALIDATION, b"{", "schema.json", SETTINGS)
    assert bad_json.errors[0].startswith("Invalid JSON")

    prisma = b'datasource db {\n  provider = "postgresql"\n}\nmodel User {\n  id Int @id\n}\n'
    assert validate_content(ProofType.SPEC_VALIDATION, prisma, "schema.prisma", SETTINGS).passed

    other = validate_content(ProofType.SPEC_VALIDATION, b"anything", "notes.md", SETTINGS)
    assert other.verdict == PassFail.INFO


def test_lighthouse_every_category_must_meet_threshold() -> None:
    good = json.dumps({"categories": {"performance": {"score": 0.8}, "accessibility": {"score": 0.97}}}).encode()
    assert validate_content(ProofType.LIGHTHOUSE_REPORT, good, "lh.json", SETTINGS).passed
    bad = json.dumps({"categories": {"performance": {"score": 0.79}, "accessibility": {"score": 0.97}}}).encode()
    outcome = validate_content(ProofType.LIGHTHOUSE_REPORT, bad, "lh.json", SETTINGS)
    assert not outcome.passed
    assert len(outcome.errors) == 1


def test_accessibility_scan_verdicts() -> None:
    def axe(*impacts: str) -> bytes:
        return json.dumps({"violations": [{"id": f"rule-{index}", "impact": impact} for index, impact in enumerate(impacts)]}).encode()

    assert validate_content(ProofType.ACCESSIBILITY_SCAN, axe(), "axe.json", SETTINGS).verdict == PassFail.PASS
    assert validate_content(ProofType.ACCESSIBILITY_SCAN, axe("minor", "moderate"), "axe.json", SETTINGS).verdict == PassFail.WARNING
    assert validate_content(ProofType.ACCESSIBILITY_SCAN, axe("serious"), "axe.json", SETTINGS).verdict == PassFail.FAIL


def test_deployment_log_and_smoke_test_patterns() -> None:
    assert validate_content(ProofType.DEPLOYMENT_LOG, b"Build complete\nDeployment succeeded\n", "deploy.log", SETTINGS).passed
    rolled_back = b"Deployment succeeded\nHealth check failed, rolling back\n"
    assert not validate_content(ProofType.DEPLOYMENT_LOG, rolled_back, "deploy.log", SETTINGS).passed

    assert validate_content(ProofType.SMOKE_TEST, b"GET /health -> HTTP/1.1 200 OK\n", "smoke.log", SETTINGS).passed
    assert not validate_content(ProofType.SMOKE_TEST, b"GET /health -> HTTP/1.1 503\n", "smoke.log", SETTINGS).passed
    assert validate_content(ProofType.SMOKE_TEST, b"  5 passing (1s)\n", "smoke.log", SETTINGS).passed


def test_screenshot_and_manual_verification() -> None:
    screenshot = validate_content(ProofType.SCREENSHOT, b"\x89PNG\r\n\x1a\n....", "home.png", SETTINGS)
    assert screenshot.verdict == PassFail.INFO
    assert validate_content(ProofType.SCREENSHOT, b"", "home.png", SETTINGS).verdict == PassFail.FAIL

    note = validate_content(ProofType.MANUAL_VERIFICATION, b"Checked checkout on staging\nAll good", "verify.md", SETTINGS)
    assert note.passed
    assert note.summary == "Manually verified: Checked checkout on staging"
    assert not validate_content(ProofType.MANUAL_VERIFICATION, b"  \n", "verify.md", SETTINGS).passed


def test_validate_artifact_reports_unreadable_file(tmp_path: Path) -> None:
    outcome = validate_artifact(ProofType.TEST_OUTPUT, tmp_path / "missing.log", SETTINGS)
    assert outcome.verdict == PassFail.FAIL
    assert outcome.summary == "Failed to read test output"


def test_hash_file_matches_hash_bytes(tmp_path: Path) -> None:
    path = tmp_path / "report.txt"
    path.write_bytes(b"proof")
    assert hash_file(path) == hash_bytes(b"proof")
    assert len(hash_file(path)) == 64


def test_reports_with_non_finite_numbers_fail_without_raising() -> None:
    tests = b'{"kind": "unit_tests", "success": true, "tests_passed": 1e400, "tests_failed": 0}'
    outcome = validate_content(ProofType.TEST_OUTPUT, tests, "tests.json", SETTINGS)
    assert outcome.verdict == PassFail.FAIL
    assert outcome.summary == "Could not interpret test_output report"

    lint = b'{"kind": "lint", "success": true, "error_count": NaN}'
    assert validate_content(ProofType.LINT_OUTPUT, lint, "lint.json", SETTINGS).verdict == PassFail.FAIL

    eslint = b'[{"filePath": "/a.ts", "errorCount": Infinity, "warningCount": 0}]'
    assert validate_content(ProofType.LINT_OUTPUT, eslint, "eslint.json", SETTINGS).verdict == PassFail.FAIL

    deep = b"[" * 100_000
    assert validate_content(ProofType.SPEC_VALIDATION, deep, "schema.json", SETTINGS).verdict == PassFail.FAIL
