from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


DEFAULT_APPROVAL_KEYWORDS = ("approve", "approved", "yes", "lgtm", "accept")
DEFAULT_AMBIGUOUS_REPLIES = ("ok", "okay", "k", "sure", "fine", "alright")
DEFAULT_PREVIEW_PROBE_PORTS = (3100, 3101, 3102, 3103, 3104, 5173, 5174, 5175)


@dataclass(frozen=True)
class RuntimeSettings:
    """Runtime settings loaded from environment with fail-fast validation."""

    workspace_root: str = "workspaces"
    state_store_root: str = "state_store"
    install_timeout_ms: int = 300_000
    type_check_timeout_ms: int = 120_000
    build_timeout_ms: int = 300_000
    test_timeout_ms: int = 300_000
    e2e_timeout_ms: int = 300_000
    lint_timeout_ms: int = 120_000
    security_timeout_ms: int = 120_000
    default_command_timeout_ms: int = 120_000
    coverage_threshold_pct: float = 80.0
    lighthouse_threshold: float = 0.80
    preview_host: str = "127.0.0.1"
    preview_probe_ports: tuple[int, ...] = DEFAULT_PREVIEW_PROBE_PORTS
    preview_probe_timeout_ms: int = 500
    browser_install_ttl_seconds: int = 3_600
    approval_keywords: tuple[str, ...] = DEFAULT_APPROVAL_KEYWORDS
    ambiguous_replies: tuple[str, ...] = DEFAULT_AMBIGUOUS_REPLIES
    extra_env: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        return cls(
            workspace_root=os.getenv("PROOFGATE_WORKSPACE_ROOT", "workspaces"),
            state_store_root=os.getenv("PROOFGATE_STATE_STORE_ROOT", "state_store"),
            install_timeout_ms=_get_env_int("PROOFGATE_INSTALL_TIMEOUT_MS", default=300_000, minimum=1_000),
            type_check_timeout_ms=_get_env_int("PROOFGATE_TYPE_CHECK_TIMEOUT_MS", default=120_000, minimum=1_000),
            build_timeout_ms=_get_env_int("PROOFGATE_BUILD_TIMEOUT_MS", default=300_000, minimum=1_000),
            test_timeout_ms=_get_env_int("PROOFGATE_TEST_TIMEOUT_MS", default=300_000, minimum=1_000),
            e2e_timeout_ms=_get_env_int("PROOFGATE_E2E_TIMEOUT_MS", default=300_000, minimum=1_000),
            lint_timeout_ms=_get_env_int("PROOFGATE_LINT_TIMEOUT_MS", default=120_000, minimum=1_000),
            security_timeout_ms=_get_env_int("PROOFGATE_SECURITY_TIMEOUT_MS", default=120_000, minimum=1_000),
            default_command_timeout_ms=_get_env_int("PROOFGATE_COMMAND_TIMEOUT_MS", default=120_000, minimum=1_000),
            coverage_threshold_pct=_get_env_float("PROOFGATE_COVERAGE_THRESHOLD", default=80.0, minimum=0.0, maximum=100.0),
            lighthouse_threshold=_get_env_float("PROOFGATE_LIGHTHOUSE_THRESHOLD", default=0.80, minimum=0.0, maximum=1.0),
            preview_host=os.getenv("PROOFGATE_PREVIEW_HOST", "127.0.0.1"),
            preview_probe_ports=_get_env_ports("PROOFGATE_PREVIEW_PROBE_PORTS", default=DEFAULT_PREVIEW_PROBE_PORTS),
            preview_probe_timeout_ms=_get_env_int("PROOFGATE_PREVIEW_PROBE_TIMEOUT_MS", default=500, minimum=50),
            browser_install_ttl_seconds=_get_env_int("PROOFGATE_BROWSER_INSTALL_TTL", default=3_600, minimum=0),
            approval_keywords=_get_env_words("PROOFGATE_APPROVAL_KEYWORDS", default=DEFAULT_APPROVAL_KEYWORDS),
            ambiguous_replies=_get_env_words("PROOFGATE_AMBIGUOUS_REPLIES", default=DEFAULT_AMBIGUOUS_REPLIES),
        ).normalized()

    @property
    def workspace_root_path(self) -> Path:
        return Path(self.workspace_root).resolve()

    @property
    def state_store_path(self) -> Path:
        return Path(self.state_store_root).resolve()

    def normalized(self) -> "RuntimeSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        if not self.workspace_root.strip():
            raise ValueError("PROOFGATE_WORKSPACE_ROOT must be non-empty")
        if not self.state_store_root.strip():
            raise ValueError("PROOFGATE_STATE_STORE_ROOT must be non-empty")
        if not self.preview_host.strip():
            raise ValueError("PROOFGATE_PREVIEW_HOST must be non-empty")

        keywords = tuple(dict.fromkeys(word.strip().lower() for word in self.approval_keywords if word.strip()))
        if not keywords:
            raise ValueError("PROOFGATE_APPROVAL_KEYWORDS must contain at least one keyword")
        ambiguous = tuple(dict.fromkeys(word.strip().lower() for word in self.ambiguous_replies if word.strip()))
        overlap = set(keywords) & set(ambiguous)
        if overlap:
            raise ValueError(
                f"approval keywords and ambiguous replies overlap: {', '.join(sorted(overlap))}"
            )
        if not self.preview_probe_ports:
            raise ValueError("PROOFGATE_PREVIEW_PROBE_PORTS must list at least one port")

        return RuntimeSettings(
            workspace_root=self.workspace_root,
            state_store_root=self.state_store_root,
            install_timeout_ms=self.install_timeout_ms,
            type_check_timeout_ms=self.type_check_timeout_ms,
            build_timeout_ms=self.build_timeout_ms,
            test_timeout_ms=self.test_timeout_ms,
            e2e_timeout_ms=self.e2e_timeout_ms,
            lint_timeout_ms=self.lint_timeout_ms,
            security_timeout_ms=self.security_timeout_ms,
            default_command_timeout_ms=self.default_command_timeout_ms,
            coverage_threshold_pct=self.coverage_threshold_pct,
            lighthouse_threshold=self.lighthouse_threshold,
            preview_host=self.preview_host.strip(),
            preview_probe_ports=tuple(dict.fromkeys(self.preview_probe_ports)),
            preview_probe_timeout_ms=self.preview_probe_timeout_ms,
            browser_install_ttl_seconds=self.browser_install_ttl_seconds,
            approval_keywords=keywords,
            ambiguous_replies=ambiguous,
            extra_env=dict(self.extra_env),
        )


def _get_env_int(name: str, default: int, minimum: int, maximum: int = 10_000_000) -> int:
    """Parse an integer from an environment variable with bounds checking.

    Args:
        name: Environment variable name.
        default: Value to return if the variable is unset.
        minimum: Inclusive lower bound.
        maximum: Inclusive upper bound.

    Returns:
        The parsed integer, guaranteed to be within [minimum, maximum].

    Raises:
        ValueError: If the value is not an integer or is outside bounds.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed


def _get_env_float(name: str, default: float, minimum: float, maximum: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got: {raw!r}") from exc
    if not minimum <= parsed <= maximum:
        raise ValueError(f"{name} must be within [{minimum}, {maximum}], got: {parsed}")
    return parsed


def _get_env_ports(name: str, default: tuple[int, ...]) -> tuple[int, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    ports: list[int] = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            port = int(chunk)
        except ValueError as exc:
            raise ValueError(f"{name} must be a comma-separated list of ports, got: {raw!r}") from exc
        if not 1 <= port <= 65_535:
            raise ValueError(f"{name} contains an out-of-range port: {port}")
        ports.append(port)
    return tuple(ports)


def _get_env_words(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    return tuple(word.strip() for word in raw.split(",") if word.strip())
