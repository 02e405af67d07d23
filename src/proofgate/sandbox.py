"""Project-scoped workspace filesystem.

Every project owns one sandbox directory under the workspace root. Paths inside
it are represented by ``SandboxPath`` values, which can only be produced by
``SandboxPath.for_root`` and ``SandboxPath.join``; the join resolves the
candidate and rejects anything that lands outside the sandbox root.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from .errors import PathTraversalError

logger = logging.getLogger(__name__)

_IGNORED_DIRS = frozenset({"node_modules", ".git", "dist", "build", "coverage", ".proofs"})
_PROJECT_ID_RE = re.compile(r"[A-Za-z0-9](?:[A-Za-z0-9._-]{0,126}[A-Za-z0-9_])?")


@dataclass(frozen=True)
class SandboxPath:
    """A location inside a sandbox root, validated at construction."""

    root: Path
    relative: PurePosixPath

    @classmethod
    def for_root(cls, root: Path) -> "SandboxPath":
        return cls(root.resolve(), PurePosixPath("."))

    def join(self, *parts: str) -> "SandboxPath":
        """Return a new path below this one.

        Raises:
            PathTraversalError: If any part is absolute or the joined path
                resolves outside the sandbox root (including via symlinks).
        """
        candidate = self.relative
        for part in parts:
            if not part:
                continue
            pure = PurePosixPath(part.replace("\\", "/"))
            if pure.is_absolute() or re.match(r"^[A-Za-z]:", part):
                raise PathTraversalError(f"Absolute paths are not allowed in the sandbox: {part!r}")
            candidate = candidate / pure

        resolved = (self.root / candidate).resolve()
        try:
            inside = resolved.relative_to(self.root)
        except ValueError as exc:
            raise PathTraversalError(
                f"Path {str(candidate)!r} resolves outside the sandbox root {self.root}"
            ) from exc
        return SandboxPath(self.root, PurePosixPath(inside.as_posix()) if inside.parts else PurePosixPath("."))

    @property
    def absolute(self) -> Path:
        return self.root / self.relative

    @property
    def is_root(self) -> bool:
        return self.relative == PurePosixPath(".")

    def __str__(self) -> str:
        return self.relative.as_posix()


def is_valid_project_id(project_id: str) -> bool:
    return _PROJECT_ID_RE.fullmatch(project_id) is not None


def validate_project_id(project_id: str) -> str:
    """Return ``project_id`` unchanged if it is usable as a directory name.

    IDs are never rewritten, so two distinct IDs can never share a sandbox or
    a state directory.

    Raises:
        ValueError: If the ID is empty, longer than 128 characters, or uses
            anything but letters, digits, ``.``, ``_`` and ``-`` (with a letter
            or digit first and no trailing ``.`` or ``-``).
    """
    if not is_valid_project_id(project_id):
        raise ValueError(
            f"invalid project_id {project_id!r}: use 1-128 letters, digits, '.', '_' or '-', "
            "starting with a letter or digit"
        )
    return project_id


class Workspace:
    """Filesystem access scoped to per-project sandbox directories."""

    def __init__(self, root: Path) -> None:
        self.root = root.resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def project_root(self, project_id: str) -> SandboxPath:
        path = self.root / validate_project_id(project_id)
        path.mkdir(parents=True, exist_ok=True)
        return SandboxPath.for_root(path)

    def resolve(self, project_id: str, relative_path: str = ".") -> SandboxPath:
        return self.project_root(project_id).join(relative_path)

    def file_exists(self, project_id: str, relative_path: str) -> bool:
        return self.resolve(project_id, relative_path).absolute.is_file()

    def dir_exists(self, project_id: str, relative_path: str) -> bool:
        return self.resolve(project_id, relative_path).absolute.is_dir()

    def read_file(self, project_id: str, relative_path: str) -> str:
        path = self.resolve(project_id, relative_path).absolute
        return path.read_text(encoding="utf-8", errors="replace")

    def read_bytes(self, project_id: str, relative_path: str) -> bytes:
        return self.resolve(project_id, relative_path).absolute.read_bytes()

    def write_file(self, project_id: str, relative_path: str, content: str) -> SandboxPath:
        target = self.resolve(project_id, relative_path)
        if target.is_root:
            raise PathTraversalError("Cannot write to the sandbox root itself")
        target.absolute.parent.mkdir(parents=True, exist_ok=True)
        target.absolute.write_text(content, encoding="utf-8")
        logger.debug("Wrote %s in project %s", target, project_id)
        return target

    def list_files(self, project_id: str, relative_path: str = ".", pattern: str = "**/*") -> list[str]:
        """Return sandbox-relative POSIX paths of files matching ``pattern``.

        Dependency, VCS, and build output directories are skipped.
        """
        base = self.resolve(project_id, relative_path)
        if not base.absolute.is_dir():
            return []
        project_root = base.root
        found: list[str] = []
        for path in base.absolute.glob(pattern):
            if not path.is_file():
                continue
            rel = path.relative_to(project_root)
            if any(part in _IGNORED_DIRS for part in rel.parts):
                continue
            found.append(rel.as_posix())
        return sorted(found)
