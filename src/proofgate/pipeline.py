"""Build and proof-validation pipeline.

``BuildPipeline`` drives the project toolchain (npm, tsc, the test runner,
ESLint, npm audit, Playwright) inside a project's sandbox and folds every
outcome into a typed result object. Tool failures, timeouts, and unparseable
output never escape as exceptions; only a caller-supplied ``working_dir`` that
leaves the sandbox raises ``PathTraversalError``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import posixpath
import re
from typing import Any, TypeVar

from .cache import TTLCache
from .models import (
    BuildResult,
    CommandResult,
    CoverageSummary,
    E2ETestResult,
    FullstackValidationResult,
    FullValidationResult,
    InstallResult,
    IntegrationTestResult,
    LintResult,
    ProjectLayout,
    ProjectStructure,
    SecurityScanResult,
    SubprojectValidation,
    SuiteOutcome,
    TestResult,
    TestSuiteReport,
    _CheckResult,
)
from .notifications import G6_TEST_FAILURE, LoggingNotificationSink, NotificationSink, emit_event
from .parsers import (
    parse_build_errors,
    parse_coverage_summary,
    parse_coverage_text,
    parse_lint_output,
    parse_npm_audit_json,
    parse_npm_audit_text,
    parse_npm_errors,
    parse_playwright_json,
    parse_test_output_text,
    parse_test_results,
    parse_test_results_json,
    parse_typescript_errors,
    parse_warnings,
)
from .preview import PreviewRegistry, find_live_preview
from .runner import CommandExecutor
from .sandbox import Workspace
from .settings import RuntimeSettings

logger = logging.getLogger(__name__)

SKIPPED_INSTALL_FAILED = "Skipped (install failed)"
NO_BUILD_SCRIPT = "No build script found, skipping build"
NO_TEST_SCRIPT = "No test script configured in package.json"
NO_TESTS_EXECUTED = "Test script is configured but no tests were executed"

INSTALL_COMMAND = "npm install"
TYPE_CHECK_COMMAND = "npx tsc --noEmit"
BUILD_COMMAND = "npm run build"
TEST_COMMAND = "npm test -- --coverage --json --outputFile=test-results.json"
INTEGRATION_COMMAND = "npm run test:integration"
LINT_COMMAND = "npm run lint"
AUDIT_COMMAND = "npm audit --json"
BROWSER_INSTALL_COMMAND = "npx playwright install --with-deps chromium"
E2E_COMMAND = "npx playwright test --reporter=json"

TEST_RESULTS_FILE = "test-results.json"
COVERAGE_SUMMARY_FILE = "coverage/coverage-summary.json"
INTEGRATION_SCRIPT = "test:integration"
PLAYWRIGHT_CONFIGS = ("playwright.config.ts", "playwright.config.js", "playwright.config.mjs", "playwright.config.cjs")
E2E_SPEC_DIRS = ("e2e", "tests/e2e")
BROWSER_CACHE_KEY = "playwright:chromium"

_E2E_SPEC_RE = re.compile(r"\.(?:e2e-spec|spec|test)\.[cm]?[jt]sx?$")
_INTEGRATION_FILE_RE = re.compile(
    r"(?:^|/)(?:integration|__integration__)/[^/]+\.[cm]?[jt]sx?$|\.integration\.(?:test|spec)\.[cm]?[jt]sx?$"
)

R = TypeVar("R", bound=_CheckResult)


def _skipped(result_cls: type[R], reason: str, **fields: Any) -> R:
    return result_cls(success=False, skipped=True, output=reason, errors=[reason], **fields)


def _failure_reason(result: CommandResult, command: str) -> str:
    if result.timed_out:
        return result.stderr.strip() or f"{command} timed out"
    detail = result.stderr.strip().splitlines()
    if detail:
        return detail[-1]
    return f"{command} exited with code {result.exit_code}"


class BuildPipeline:
    def __init__(
        self,
        workspace: Workspace,
        executor: CommandExecutor,
        settings: RuntimeSettings | None = None,
        *,
        sink: NotificationSink | None = None,
        previews: PreviewRegistry | None = None,
        browser_cache: TTLCache[bool] | None = None,
    ) -> None:
        self.workspace = workspace
        self.executor = executor
        self.settings = settings if settings is not None else RuntimeSettings.from_env()
        self.sink = sink if sink is not None else LoggingNotificationSink()
        self.previews = previews if previews is not None else PreviewRegistry()
        self.browser_cache = (
            browser_cache if browser_cache is not None else TTLCache(self.settings.browser_install_ttl_seconds)
        )

    # ------------------------------------------------------------------
    # Workspace helpers
    # ------------------------------------------------------------------

    def _check_working_dir(self, project_id: str, working_dir: str) -> None:
        self.workspace.resolve(project_id, working_dir)

    async def _run(
        self,
        project_id: str,
        command: str,
        *,
        timeout_ms: int,
        working_dir: str = ".",
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        try:
            return await self.executor.run(
                project_id, command, timeout_ms=timeout_ms, env=env, working_dir=working_dir
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("Executor failed for %r in project %s", command, project_id)
            return CommandResult(stdout="", stderr=str(exc), exit_code=1, success=False)

    def _read_optional(self, project_id: str, relative_path: str) -> str | None:
        try:
            if not self.workspace.file_exists(project_id, relative_path):
                return None
            return self.workspace.read_file(project_id, relative_path)
        except OSError as exc:
            logger.warning("Could not read %s in project %s: %s", relative_path, project_id, exc)
            return None

    def _package_scripts(self, project_id: str, working_dir: str) -> dict[str, Any]:
        raw = self._read_optional(project_id, posixpath.join(working_dir, "package.json"))
        if raw is None:
            return {}
        try:
            package = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("package.json in %s/%s is not valid JSON", project_id, working_dir)
            return {}
        scripts = package.get("scripts") if isinstance(package, dict) else None
        return scripts if isinstance(scripts, dict) else {}

    def has_script(self, project_id: str, script: str, working_dir: str = ".") -> bool:
        value = self._package_scripts(project_id, working_dir).get(script)
        return isinstance(value, str) and bool(value.strip())

    # ------------------------------------------------------------------
    # Individual checks
    # ------------------------------------------------------------------

    async def install_dependencies(self, project_id: str, working_dir: str = ".") -> InstallResult:
        self._check_working_dir(project_id, working_dir)
        logger.info("Installing dependencies for project %s in %s", project_id, working_dir)
        result = await self._run(
            project_id, INSTALL_COMMAND, timeout_ms=self.settings.install_timeout_ms, working_dir=working_dir
        )
        errors = parse_npm_errors(result.stderr) if not result.success else []
        if not result.success and not errors:
            errors = [_failure_reason(result, INSTALL_COMMAND)]
        return InstallResult(
            success=result.success,
            output=result.stdout,
            errors=errors,
            warnings=parse_warnings(result.stderr),
            duration_ms=result.duration_ms,
        )

    async def run_type_check(self, project_id: str, working_dir: str = ".") -> BuildResult:
        self._check_working_dir(project_id, working_dir)
        logger.info("Running type check for project %s in %s", project_id, working_dir)
        result = await self._run(
            project_id, TYPE_CHECK_COMMAND, timeout_ms=self.settings.type_check_timeout_ms, working_dir=working_dir
        )
        errors = parse_typescript_errors(result.combined_output)
        if not result.success and not errors:
            errors = [_failure_reason(result, TYPE_CHECK_COMMAND)]
        return BuildResult(
            kind="type_check",
            success=result.success and not errors,
            output=result.stdout,
            errors=errors,
            duration_ms=result.duration_ms,
        )

    async def run_build(self, project_id: str, working_dir: str = ".") -> BuildResult:
        self._check_working_dir(project_id, working_dir)
        if not self.has_script(project_id, "build", working_dir):
            logger.info("No build script for project %s in %s", project_id, working_dir)
            return BuildResult(success=True, skipped=True, output=NO_BUILD_SCRIPT)

        logger.info("Running build for project %s in %s", project_id, working_dir)
        result = await self._run(
            project_id, BUILD_COMMAND, timeout_ms=self.settings.build_timeout_ms, working_dir=working_dir
        )
        errors = parse_build_errors(result.combined_output)
        if not result.success and not errors:
            errors = [_failure_reason(result, BUILD_COMMAND)]
        return BuildResult(
            success=result.success and not errors,
            output=result.stdout,
            errors=errors,
            warnings=parse_warnings(result.combined_output),
            duration_ms=result.duration_ms,
        )

    def _read_coverage(self, project_id: str, working_dir: str, output: str) -> CoverageSummary | None:
        raw = self._read_optional(project_id, posixpath.join(working_dir, COVERAGE_SUMMARY_FILE))
        if raw is not None:
            summary = parse_coverage_summary(raw)
            if summary is not None:
                return summary
            logger.warning("Could not parse coverage summary for project %s", project_id)
        pct = parse_coverage_text(output)
        if pct is None:
            return None
        return CoverageSummary(lines=pct, statements=pct, functions=pct, branches=pct)

    async def run_tests(self, project_id: str, working_dir: str = ".") -> TestResult:
        """Run the unit test script with coverage.

        A missing ``test`` script and a run that executed zero tests are both
        failures: a project cannot pass the testing gate without tests.
        """
        self._check_working_dir(project_id, working_dir)
        if not self.has_script(project_id, "test", working_dir):
            logger.warning("Project %s has no test script in %s", project_id, working_dir)
            return TestResult(success=False, output=NO_TEST_SCRIPT, errors=[NO_TEST_SCRIPT])

        results_path = posixpath.join(working_dir, TEST_RESULTS_FILE)
        try:
            self.workspace.resolve(project_id, results_path).absolute.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove stale %s in project %s: %s", results_path, project_id, exc)

        logger.info("Running tests for project %s in %s", project_id, working_dir)
        result = await self._run(
            project_id, TEST_COMMAND, timeout_ms=self.settings.test_timeout_ms, working_dir=working_dir
        )
        counts = parse_test_results(self._read_optional(project_id, results_path), result.combined_output)
        coverage = self._read_coverage(project_id, working_dir, result.stdout)

        errors: list[str] = []
        warnings: list[str] = []
        if counts.failed > 0:
            errors.append(f"{counts.failed} tests failed")
        if counts.total == 0:
            errors.append(NO_TESTS_EXECUTED)
        if not result.success and not errors:
            errors.append(_failure_reason(result, TEST_COMMAND))
        if coverage is not None and coverage.headline < self.settings.coverage_threshold_pct:
            warnings.append(
                f"Line coverage {coverage.headline:.1f}% is below the {self.settings.coverage_threshold_pct:.1f}% threshold"
            )

        return TestResult(
            success=result.success and counts.failed == 0 and counts.total > 0,
            output=result.stdout,
            errors=errors,
            warnings=warnings,
            duration_ms=result.duration_ms,
            tests_passed=counts.passed,
            tests_failed=counts.failed,
            tests_total=counts.total,
            coverage=coverage,
        )

    def _integration_test_files(self, project_id: str, working_dir: str) -> list[str]:
        return [path for path in self.workspace.list_files(project_id, working_dir) if _INTEGRATION_FILE_RE.search(path)]

    async def run_integration_tests(self, project_id: str, working_dir: str = ".") -> IntegrationTestResult:
        self._check_working_dir(project_id, working_dir)
        test_files = self._integration_test_files(project_id, working_dir)
        if not test_files:
            return IntegrationTestResult(
                success=True, applicable=False, skipped=True, output="No integration tests found"
            )
        if not self.has_script(project_id, INTEGRATION_SCRIPT, working_dir):
            message = f"{len(test_files)} integration test files found but no {INTEGRATION_SCRIPT} script is configured"
            logger.warning("Project %s: %s", project_id, message)
            return IntegrationTestResult(success=True, skipped=True, test_files=test_files, warnings=[message])

        logger.info("Running integration tests for project %s in %s", project_id, working_dir)
        result = await self._run(
            project_id, INTEGRATION_COMMAND, timeout_ms=self.settings.test_timeout_ms, working_dir=working_dir
        )
        counts = parse_test_results_json(result.stdout) or parse_test_output_text(result.combined_output)

        errors: list[str] = []
        if counts.failed > 0:
            errors.append(f"{counts.failed} integration tests failed")
        if counts.total == 0:
            errors.append("Integration test script ran but no tests were executed")
        if not result.success and not errors:
            errors.append(_failure_reason(result, INTEGRATION_COMMAND))
        return IntegrationTestResult(
            success=result.success and counts.failed == 0 and counts.total > 0,
            output=result.stdout,
            errors=errors,
            duration_ms=result.duration_ms,
            test_files=test_files,
            tests_passed=counts.passed,
            tests_failed=counts.failed,
            tests_total=counts.total,
        )

    def _e2e_spec_files(self, project_id: str, working_dir: str) -> list[str]:
        found: list[str] = []
        for directory in E2E_SPEC_DIRS:
            base = posixpath.join(working_dir, directory)
            found.extend(path for path in self.workspace.list_files(project_id, base) if _E2E_SPEC_RE.search(path))
        return list(dict.fromkeys(found))

    async def _ensure_browsers(self, project_id: str, working_dir: str) -> CommandResult | None:
        """Install the Playwright browser once per cache TTL; return the failed result, if any."""
        if self.browser_cache.get(BROWSER_CACHE_KEY):
            return None
        result = await self._run(
            project_id,
            BROWSER_INSTALL_COMMAND,
            timeout_ms=self.settings.install_timeout_ms,
            working_dir=working_dir,
        )
        if not result.success:
            return result
        self.browser_cache.put(BROWSER_CACHE_KEY, True)
        return None

    async def run_e2e_tests(self, project_id: str, working_dir: str = ".") -> E2ETestResult:
        """Run Playwright end-to-end tests against the project's live preview.

        Preconditions are checked in order (live preview, Playwright config, a
        clean build, spec files, installed browsers) and the first one missing
        is reported as the failure.
        """
        self._check_working_dir(project_id, working_dir)

        preview = await find_live_preview(project_id, self.previews, self.settings)
        if preview is None:
            return E2ETestResult(
                success=False, errors=["No live preview server is running; start the preview before E2E tests"]
            )

        if not any(
            self.workspace.file_exists(project_id, posixpath.join(working_dir, name)) for name in PLAYWRIGHT_CONFIGS
        ):
            return E2ETestResult(
                success=False,
                preview_url=preview.url,
                errors=[f"No Playwright config found ({', '.join(PLAYWRIGHT_CONFIGS)})"],
            )

        build = await self.run_build(project_id, working_dir)
        if not build.success:
            return E2ETestResult(
                success=False,
                preview_url=preview.url,
                errors=["Frontend build failed; E2E tests require a clean build", *build.errors],
            )

        spec_files = self._e2e_spec_files(project_id, working_dir)
        if not spec_files:
            return E2ETestResult(
                success=False,
                preview_url=preview.url,
                errors=[f"No E2E spec files found under {', '.join(d + '/' for d in E2E_SPEC_DIRS)}"],
            )

        install_failure = await self._ensure_browsers(project_id, working_dir)
        if install_failure is not None:
            return E2ETestResult(
                success=False,
                preview_url=preview.url,
                output=install_failure.stdout,
                errors=["Playwright browser install failed", _failure_reason(install_failure, BROWSER_INSTALL_COMMAND)],
            )

        logger.info("Running E2E tests for project %s against %s", project_id, preview.url)
        result = await self._run(
            project_id,
            E2E_COMMAND,
            timeout_ms=self.settings.e2e_timeout_ms,
            working_dir=working_dir,
            env={"BASE_URL": preview.url, "PLAYWRIGHT_BASE_URL": preview.url},
        )
        counts = parse_playwright_json(result.stdout)
        if counts is None:
            logger.warning("Playwright JSON report missing for project %s, parsing console output", project_id)
            counts = parse_test_output_text(result.combined_output)

        errors: list[str] = []
        if counts.failed > 0:
            errors.append(f"{counts.failed} E2E tests failed")
        if counts.total == 0:
            errors.append("Playwright ran but no E2E tests were executed")
        if not result.success and not errors:
            errors.append(_failure_reason(result, E2E_COMMAND))
        return E2ETestResult(
            success=result.success and counts.failed == 0 and counts.passed > 0,
            output=result.stdout,
            errors=errors,
            duration_ms=result.duration_ms,
            tests_passed=counts.passed,
            tests_failed=counts.failed,
            tests_skipped=counts.skipped,
            tests_total=counts.total,
            preview_url=preview.url,
            report_source=counts.source,
        )

    async def run_lint(self, project_id: str, working_dir: str = ".") -> LintResult:
        self._check_working_dir(project_id, working_dir)
        logger.info("Running linter for project %s in %s", project_id, working_dir)
        result = await self._run(
            project_id, LINT_COMMAND, timeout_ms=self.settings.lint_timeout_ms, working_dir=working_dir
        )
        summary = parse_lint_output(result.combined_output)
        errors = list(summary.errors)
        if summary.error_count > len(errors):
            errors.append(f"{summary.error_count} lint errors")
        crashed = not result.success and summary.error_count == 0
        if crashed:
            errors.append(_failure_reason(result, LINT_COMMAND))
        return LintResult(
            success=summary.error_count == 0 and not crashed,
            output=result.stdout,
            errors=errors,
            warnings=summary.warnings,
            duration_ms=result.duration_ms,
            error_count=summary.error_count,
            warning_count=summary.warning_count,
            fixable_errors=summary.fixable_errors,
            fixable_warnings=summary.fixable_warnings,
        )

    async def run_security_scan(self, project_id: str, working_dir: str = ".") -> SecurityScanResult:
        """Audit dependencies; any critical or high vulnerability fails the scan.

        ``npm audit`` exits non-zero whenever it finds anything, so the verdict
        comes from the parsed report, not the exit code.
        """
        self._check_working_dir(project_id, working_dir)
        logger.info("Running security scan for project %s in %s", project_id, working_dir)
        result = await self._run(
            project_id, AUDIT_COMMAND, timeout_ms=self.settings.security_timeout_ms, working_dir=working_dir
        )
        vulnerabilities = parse_npm_audit_json(result.stdout)
        report_found = vulnerabilities is not None
        if vulnerabilities is None:
            vulnerabilities = parse_npm_audit_text(result.combined_output)
            report_found = result.success or vulnerabilities.total > 0

        errors: list[str] = []
        if vulnerabilities.critical:
            errors.append(f"{vulnerabilities.critical} critical vulnerabilities found")
        if vulnerabilities.high:
            errors.append(f"{vulnerabilities.high} high vulnerabilities found")
        if result.timed_out or not report_found:
            errors.append(_failure_reason(result, AUDIT_COMMAND))
        warnings: list[str] = []
        if vulnerabilities.moderate:
            warnings.append(f"{vulnerabilities.moderate} moderate vulnerabilities found")
        if vulnerabilities.low:
            warnings.append(f"{vulnerabilities.low} low vulnerabilities found")

        return SecurityScanResult(
            success=vulnerabilities.blocking == 0 and report_found and not result.timed_out,
            output=result.stdout,
            errors=errors,
            warnings=warnings,
            duration_ms=result.duration_ms,
            vulnerabilities=vulnerabilities,
        )

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    async def run_full_validation(self, project_id: str, working_dir: str = ".") -> FullValidationResult:
        """Install, then run every other check concurrently.

        When the install fails nothing else is invoked and every dependent
        check is reported as skipped.
        """
        self._check_working_dir(project_id, working_dir)
        logger.info("Running full validation for project %s in %s", project_id, working_dir)
        install = await self.install_dependencies(project_id, working_dir)
        if not install.success:
            logger.warning("Install failed for project %s; skipping remaining checks", project_id)
            return FullValidationResult(
                install=install,
                type_check=_skipped(BuildResult, SKIPPED_INSTALL_FAILED, kind="type_check"),
                build=_skipped(BuildResult, SKIPPED_INSTALL_FAILED),
                tests=_skipped(TestResult, SKIPPED_INSTALL_FAILED),
                lint=_skipped(LintResult, SKIPPED_INSTALL_FAILED),
                security=_skipped(SecurityScanResult, SKIPPED_INSTALL_FAILED),
                overall_success=False,
            )

        type_check, build, tests, lint, security = await asyncio.gather(
            self.run_type_check(project_id, working_dir),
            self.run_build(project_id, working_dir),
            self.run_tests(project_id, working_dir),
            self.run_lint(project_id, working_dir),
            self.run_security_scan(project_id, working_dir),
        )
        overall = all(item.success for item in (install, type_check, build, tests, lint, security))
        return FullValidationResult(
            install=install,
            type_check=type_check,
            build=build,
            tests=tests,
            lint=lint,
            security=security,
            overall_success=overall,
        )

    def detect_project_structure(self, project_id: str) -> ProjectLayout:
        has_frontend = self.workspace.file_exists(project_id, "frontend/package.json")
        has_backend = self.workspace.file_exists(project_id, "backend/package.json")
        if has_frontend and has_backend:
            layout = ProjectLayout(
                structure=ProjectStructure.FULLSTACK, working_dir="frontend", subprojects=("frontend", "backend")
            )
        elif has_frontend:
            layout = ProjectLayout(
                structure=ProjectStructure.FRONTEND_ONLY, working_dir="frontend", subprojects=("frontend",)
            )
        elif has_backend:
            layout = ProjectLayout(
                structure=ProjectStructure.BACKEND_ONLY, working_dir="backend", subprojects=("backend",)
            )
        else:
            layout = ProjectLayout(structure=ProjectStructure.MONOLITH, working_dir=".", subprojects=(".",))
        logger.debug("Detected %s layout for project %s", layout.structure.value, project_id)
        return layout

    async def _validate_subproject(self, project_id: str, name: str) -> SubprojectValidation:
        install = await self.install_dependencies(project_id, name)
        if install.success:
            build = await self.run_build(project_id, name)
        else:
            build = _skipped(BuildResult, SKIPPED_INSTALL_FAILED)
        return SubprojectValidation(name=name, install=install, build=build, success=install.success and build.success)

    async def validate_fullstack_project(self, project_id: str) -> FullstackValidationResult:
        """Install and build every sub-project of the detected layout.

        Sub-projects of a split layout are validated concurrently; errors are
        prefixed with the sub-project name so the caller can route fixes.
        """
        layout = self.detect_project_structure(project_id)
        logger.info("Validating %s project %s", layout.structure.value, project_id)
        subprojects = await asyncio.gather(*(self._validate_subproject(project_id, name) for name in layout.subprojects))

        errors: list[str] = []
        for sub in subprojects:
            if sub.success:
                continue
            label = "root" if sub.name == "." else sub.name
            failed = sub.install if not sub.install.success else sub.build
            step = "install" if failed is sub.install else "build"
            messages = failed.errors or [f"{step} failed"]
            errors.extend(f"{label}: {message}" for message in messages)
        return FullstackValidationResult(
            structure=layout.structure,
            subprojects=list(subprojects),
            errors=errors,
            overall_success=all(sub.success for sub in subprojects),
        )

    async def run_test_suite(self, project_id: str) -> TestSuiteReport:
        """Run unit, integration, and E2E tests for every side of the project.

        On any failure a ``g6:test_failure`` event is emitted naming which side
        (frontend, backend, or both) needs a fix.
        """
        layout = self.detect_project_structure(project_id)
        unit: dict[str, SuiteOutcome] = {}
        integration: dict[str, SuiteOutcome] = {}
        for name in layout.subprojects:
            label = "root" if name == "." else name
            unit_result = await self.run_tests(project_id, name)
            unit[label] = SuiteOutcome(success=unit_result.success, errors=unit_result.errors)
            integration_result = await self.run_integration_tests(project_id, name)
            integration[label] = SuiteOutcome(success=integration_result.success, errors=integration_result.errors)

        if layout.structure == ProjectStructure.BACKEND_ONLY:
            e2e = SuiteOutcome(success=True)
        else:
            e2e_result = await self.run_e2e_tests(project_id, layout.working_dir)
            e2e = SuiteOutcome(success=e2e_result.success, errors=e2e_result.errors)

        def side_failed(label: str) -> bool:
            return any(not outcome[label].success for outcome in (unit, integration) if label in outcome)

        needs_backend_fix = side_failed("backend") or side_failed("root")
        needs_frontend_fix = side_failed("frontend") or side_failed("root") or not e2e.success
        report = TestSuiteReport(
            unit_tests=unit,
            integration_tests=integration,
            e2e_tests=e2e,
            needs_frontend_fix=needs_frontend_fix,
            needs_backend_fix=needs_backend_fix,
            success=not (needs_frontend_fix or needs_backend_fix),
        )
        if not report.success:
            logger.warning(
                "Test suite failed for project %s: backend fix needed=%s, frontend fix needed=%s",
                project_id,
                needs_backend_fix,
                needs_frontend_fix,
            )
            emit_event(
                self.sink,
                G6_TEST_FAILURE,
                project_id,
                unitTests={key: value.model_dump() for key, value in unit.items()},
                integrationTests={key: value.model_dump() for key, value in integration.items()},
                e2eTests=e2e.model_dump(),
                needsBackendFix=needs_backend_fix,
                needsFrontendFix=needs_frontend_fix,
            )
        return report
