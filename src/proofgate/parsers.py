"""Pure parsers that turn raw tool output into structured counts.

Every parser is side-effect free and total: malformed or missing input yields
zero counts rather than an exception. Where a tool can emit a JSON report, the
JSON parser is tried first and the regex parser is only the fallback.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any

from .models import CoverageSummary, VulnerabilityCounts

logger = logging.getLogger(__name__)

TS_ERROR_RE = re.compile(r"error TS\d+:.*$", re.MULTILINE)
TS_LOCATED_ERROR_RE = re.compile(r"^.*\(\d+,\d+\): error TS\d+:.*$", re.MULTILINE)
TS_COLON_ERROR_RE = re.compile(r"^.*:\d+:\d+ - error TS\d+:.*$", re.MULTILINE)
GENERIC_BUILD_ERROR_RE = re.compile(r"^ERROR.*$", re.MULTILINE)
BUNDLER_FATAL_RES = (
    re.compile(r"^.*Module not found.*$", re.MULTILINE),
    re.compile(r"^.*SyntaxError:.*$", re.MULTILINE),
    re.compile(r"^.*\bBuild failed\b.*$", re.MULTILINE | re.IGNORECASE),
    re.compile(r"^.*Could not resolve .* from .*$", re.MULTILINE),
)

PASSING_RE = re.compile(r"(\d+)\s+(?:passing|passed)\b", re.IGNORECASE)
FAILING_RE = re.compile(r"(\d+)\s+(?:failing|failed)\b", re.IGNORECASE)
SKIPPED_RE = re.compile(r"(\d+)\s+(?:skipped|pending)\b", re.IGNORECASE)
JEST_TESTS_LINE_RE = re.compile(r"^\s*Tests:\s*(.+)$", re.MULTILINE)
TOTAL_RE = re.compile(r"(\d+)\s+total\b", re.IGNORECASE)

LINT_SUMMARY_RE = re.compile(r"(\d+)\s+errors?,\s*(\d+)\s+warnings?", re.IGNORECASE)
LINT_FIXABLE_RE = re.compile(r"(\d+)\s+errors?\s+and\s+(\d+)\s+warnings?\s+potentially fixable", re.IGNORECASE)
LINT_ISSUE_LINE_RE = re.compile(r"^\s*\d+:\d+\s+(error|warning)\s+", re.IGNORECASE)

COVERAGE_TEXT_RES = (
    re.compile(r"All files\s*\|\s*(\d+(?:\.\d+)?)"),
    re.compile(r"Total\s*\|\s*(\d+(?:\.\d+)?)"),
    re.compile(r"Lines\s*:\s*(\d+(?:\.\d+)?)%"),
    re.compile(r"Statements\s*:\s*(\d+(?:\.\d+)?)%"),
)

_SEVERITIES = ("critical", "high", "moderate", "low")


@dataclass(frozen=True)
class TestCounts:
    __test__ = False

    passed: int = 0
    failed: int = 0
    skipped: int = 0
    total: int = 0
    source: str = "none"


@dataclass(frozen=True)
class LintSummary:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    error_count: int = 0
    warning_count: int = 0
    fixable_errors: int = 0
    fixable_warnings: int = 0


# ---------------------------------------------------------------------------
# Generic helpers
# ---------------------------------------------------------------------------


def _to_float(value: Any) -> float:
    """Coerce a report field to a finite float; NaN, infinities and junk become 0.0."""
    if isinstance(value, bool):
        return 0.0
    if not isinstance(value, (int, float, str)):
        return 0.0
    try:
        parsed = float(value)
    except (ValueError, OverflowError):
        return 0.0
    return parsed if math.isfinite(parsed) else 0.0


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return max(value, 0)
    return max(int(_to_float(value)), 0)


def _first_int(pattern: re.Pattern[str], text: str) -> int:
    match = pattern.search(text)
    return _to_int(match.group(1)) if match else 0


def load_json(raw: str) -> Any | None:
    """Parse ``raw`` as JSON, returning None instead of raising."""
    if not raw or not raw.strip():
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError, RecursionError):
        return None


def extract_json_object(raw: str) -> dict[str, Any] | None:
    """Return the first JSON object embedded in ``raw``.

    Reporters frequently print banners or npm lifecycle lines around their
    JSON; this scans for the first ``{`` that starts a decodable object.
    """
    direct = load_json(raw)
    if isinstance(direct, dict):
        return direct
    if not raw:
        return None
    decoder = json.JSONDecoder()
    index = raw.find("{")
    while index != -1:
        try:
            value, _ = decoder.raw_decode(raw, index)
        except (ValueError, RecursionError):
            index = raw.find("{", index + 1)
            continue
        if isinstance(value, dict):
            return value
        index = raw.find("{", index + 1)
    return None


# ---------------------------------------------------------------------------
# Install / build / type-check
# ---------------------------------------------------------------------------


def parse_npm_errors(output: str) -> list[str]:
    """Collect npm error lines (``npm ERR!`` / ``npm error``) and other error lines."""
    errors: list[str] = []
    for line in output.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if "ERR!" in stripped or re.search(r"\berror\b", stripped, re.IGNORECASE):
            errors.append(stripped)
    return errors


def parse_warnings(output: str) -> list[str]:
    warnings: list[str] = []
    for line in output.splitlines():
        stripped = line.strip()
        if "WARN" in stripped or re.search(r"\bwarning\b", stripped, re.IGNORECASE):
            warnings.append(stripped)
    return warnings


def parse_build_errors(output: str) -> list[str]:
    """Find compiler and bundler error lines in combined build output."""
    errors: list[str] = []
    errors.extend(match.group(0).strip() for match in TS_ERROR_RE.finditer(output))
    errors.extend(match.group(0).strip() for match in GENERIC_BUILD_ERROR_RE.finditer(output))
    for pattern in BUNDLER_FATAL_RES:
        errors.extend(match.group(0).strip() for match in pattern.finditer(output))
    return list(dict.fromkeys(error for error in errors if error))


def parse_typescript_errors(output: str) -> list[str]:
    errors = [match.group(0).strip() for match in TS_LOCATED_ERROR_RE.finditer(output)]
    errors.extend(match.group(0).strip() for match in TS_COLON_ERROR_RE.finditer(output))
    if not errors:
        # tsc --pretty false on a project without file locations
        errors = [match.group(0).strip() for match in TS_ERROR_RE.finditer(output)]
    return list(dict.fromkeys(errors))


# ---------------------------------------------------------------------------
# Unit tests and coverage
# ---------------------------------------------------------------------------


def parse_test_results_json(raw: str) -> TestCounts | None:
    """Parse a Jest/Vitest ``--json`` results document.

    Returns None when ``raw`` is not a JSON object carrying any of the
    ``numPassedTests``/``numFailedTests``/``numTotalTests`` keys.
    """
    payload = extract_json_object(raw)
    if payload is None:
        return None
    keys = ("numPassedTests", "numFailedTests", "numTotalTests")
    if not any(key in payload for key in keys):
        return None
    passed = _to_int(payload.get("numPassedTests"))
    failed = _to_int(payload.get("numFailedTests"))
    skipped = _to_int(payload.get("numPendingTests")) + _to_int(payload.get("numTodoTests"))
    total = _to_int(payload.get("numTotalTests")) if "numTotalTests" in payload else passed + failed + skipped
    return TestCounts(passed=passed, failed=failed, skipped=skipped, total=total, source="json")


def parse_test_output_text(output: str) -> TestCounts:
    """Extract pass/fail counts from mocha, Jest, or Vitest console output."""
    jest_line = JEST_TESTS_LINE_RE.search(output)
    if jest_line:
        summary = jest_line.group(1)
        passed = _first_int(PASSING_RE, summary)
        failed = _first_int(FAILING_RE, summary)
        skipped = _first_int(SKIPPED_RE, summary)
        total = _first_int(TOTAL_RE, summary) or passed + failed + skipped
        return TestCounts(passed=passed, failed=failed, skipped=skipped, total=total, source="text")

    passed = _first_int(PASSING_RE, output)
    failed = _first_int(FAILING_RE, output)
    skipped = _first_int(SKIPPED_RE, output)
    source = "text" if (passed or failed or skipped) else "none"
    return TestCounts(passed=passed, failed=failed, skipped=skipped, total=passed + failed + skipped, source=source)


def parse_test_results(results_json: str | None, output: str) -> TestCounts:
    if results_json:
        parsed = parse_test_results_json(results_json)
        if parsed is not None:
            return parsed
        logger.warning("Could not parse test results JSON, falling back to console output")
    return parse_test_output_text(output)


def parse_coverage_summary(raw: str) -> CoverageSummary | None:
    """Parse an istanbul ``coverage-summary.json`` document."""
    payload = extract_json_object(raw)
    if payload is None:
        return None
    total = payload.get("total")
    if not isinstance(total, dict):
        return None

    def pct(key: str) -> float:
        entry = total.get(key)
        return _to_float(entry.get("pct")) if isinstance(entry, dict) else 0.0

    return CoverageSummary(
        lines=pct("lines"),
        statements=pct("statements"),
        functions=pct("functions"),
        branches=pct("branches"),
    )


def parse_coverage_text(output: str) -> float | None:
    """Return the first overall coverage percentage found in a text report."""
    for pattern in COVERAGE_TEXT_RES:
        match = pattern.search(output)
        if match:
            return _to_float(match.group(1))
    return None


# ---------------------------------------------------------------------------
# Lint
# ---------------------------------------------------------------------------


def parse_lint_output(output: str) -> LintSummary:
    """Parse ESLint stylish output.

    The ``N problems (E errors, W warnings)`` summary wins over line counting
    when present, since stylish output repeats file headers and context lines.
    """
    errors: list[str] = []
    warnings: list[str] = []
    for line in output.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        issue = LINT_ISSUE_LINE_RE.match(line)
        if issue:
            (errors if issue.group(1).lower() == "error" else warnings).append(stripped)

    summary = LINT_SUMMARY_RE.search(output)
    error_count = _to_int(summary.group(1)) if summary else len(errors)
    warning_count = _to_int(summary.group(2)) if summary else len(warnings)

    fixable = LINT_FIXABLE_RE.search(output)
    return LintSummary(
        errors=errors,
        warnings=warnings,
        error_count=error_count,
        warning_count=warning_count,
        fixable_errors=_to_int(fixable.group(1)) if fixable else 0,
        fixable_warnings=_to_int(fixable.group(2)) if fixable else 0,
    )


# ---------------------------------------------------------------------------
# Security
# ---------------------------------------------------------------------------


def parse_npm_audit_json(raw: str) -> VulnerabilityCounts | None:
    payload = extract_json_object(raw)
    if payload is None:
        return None
    metadata = payload.get("metadata")
    if not isinstance(metadata, dict):
        return None
    vulnerabilities = metadata.get("vulnerabilities")
    if not isinstance(vulnerabilities, dict):
        return None
    return VulnerabilityCounts(**{severity: _to_int(vulnerabilities.get(severity)) for severity in _SEVERITIES})


def parse_npm_audit_text(output: str) -> VulnerabilityCounts:
    counts = {
        severity: _first_int(re.compile(rf"(\d+)\s+{severity}\b", re.IGNORECASE), output) for severity in _SEVERITIES
    }
    return VulnerabilityCounts(**counts)


def parse_npm_audit(output: str) -> VulnerabilityCounts:
    parsed = parse_npm_audit_json(output)
    if parsed is not None:
        return parsed
    return parse_npm_audit_text(output)


# ---------------------------------------------------------------------------
# End-to-end (Playwright)
# ---------------------------------------------------------------------------


def _walk_playwright_specs(suites: Any) -> tuple[int, int]:
    passed = failed = 0
    pending = [suites]
    while pending:
        level = pending.pop()
        if not isinstance(level, list):
            continue
        for suite in level:
            if not isinstance(suite, dict):
                continue
            specs = suite.get("specs")
            for spec in specs if isinstance(specs, list) else ():
                if not isinstance(spec, dict):
                    continue
                if spec.get("ok") is True:
                    passed += 1
                else:
                    failed += 1
            pending.append(suite.get("suites"))
    return passed, failed


def parse_playwright_json(raw: str) -> TestCounts | None:
    """Parse a Playwright ``--reporter=json`` document.

    ``stats.expected`` counts passing tests, ``stats.unexpected`` failing ones,
    ``stats.flaky`` tests that passed on retry. When ``stats`` is absent the
    spec tree is walked and each ``ok`` flag counted instead.
    """
    payload = extract_json_object(raw)
    if payload is None:
        return None
    stats = payload.get("stats")
    if isinstance(stats, dict) and any(key in stats for key in ("expected", "unexpected", "skipped")):
        passed = _to_int(stats.get("expected")) + _to_int(stats.get("flaky"))
        failed = _to_int(stats.get("unexpected"))
        skipped = _to_int(stats.get("skipped"))
        return TestCounts(passed=passed, failed=failed, skipped=skipped, total=passed + failed + skipped, source="json")
    if "suites" in payload:
        passed, failed = _walk_playwright_specs(payload.get("suites"))
        return TestCounts(passed=passed, failed=failed, total=passed + failed, source="json")
    return None


def parse_playwright_report(output: str) -> TestCounts:
    parsed = parse_playwright_json(output)
    if parsed is not None:
        return parsed
    return parse_test_output_text(output)


# ---------------------------------------------------------------------------
# Report documents used by proof validators
# ---------------------------------------------------------------------------


def parse_lighthouse_scores(raw: str) -> dict[str, float] | None:
    """Return ``{category_id: score}`` from a Lighthouse JSON report."""
    payload = extract_json_object(raw)
    if payload is None:
        return None
    categories = payload.get("categories")
    if not isinstance(categories, dict) or not categories:
        return None
    scores: dict[str, float] = {}
    for key, category in categories.items():
        score = category.get("score") if isinstance(category, dict) else None
        scores[str(key)] = _to_float(score)
    return scores


def parse_axe_violations(raw: str) -> dict[str, int] | None:
    """Count axe-core violations by impact (critical, serious, moderate, minor)."""
    payload = load_json(raw)
    if isinstance(payload, list):
        payload = payload[0] if payload and isinstance(payload[0], dict) else None
    if not isinstance(payload, dict):
        payload = extract_json_object(raw)
    if payload is None or not isinstance(payload.get("violations"), list):
        return None
    counts = {"critical": 0, "serious": 0, "moderate": 0, "minor": 0}
    for violation in payload["violations"]:
        if not isinstance(violation, dict):
            continue
        impact = str(violation.get("impact") or "minor").lower()
        if impact in counts:
            counts[impact] += 1
    return counts
