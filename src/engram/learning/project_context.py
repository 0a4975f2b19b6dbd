"""Project context: what a workspace looks like to the learning pipeline.

The pipeline only needs a textual summary of the project (its dependencies
and file-type distribution) to fingerprint learned patterns. The summary has
a fixed layout that ``parse_context_summary`` reads back::

    Project: /path/to/root
    Dependencies:
    react@18.2.0
    File types:
    .ts: 12
    .json: 2
"""

from __future__ import annotations

import json
import time
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol, runtime_checkable

from engram.core.logging import get_logger

_logger = get_logger("learning.project_context")

DEPENDENCIES_HEADER = "Dependencies:"
FILE_TYPES_HEADER = "File types:"

# Directories never descended into while scanning
SKIPPED_DIRS = frozenset({
    ".git", ".hg", ".svn", "node_modules", ".venv", "venv", "__pycache__",
    ".mypy_cache", ".pytest_cache",
})

DIRECTORY = "directory"


class FileChangeType(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass
class FileChange:
    """A change to a file, with its path relative to the project root."""

    file_path: str
    type: FileChangeType
    content: str | None = None


@dataclass
class FileInfo:
    last_modified: float
    type: str


@dataclass
class StructureValidation:
    is_valid: bool
    reason: str | None = None


@runtime_checkable
class ProjectContextProvider(Protocol):
    """What the learning pipeline needs from a project."""

    def get_current_context(self) -> str: ...

    def validate_structure(self, path: str, operation: str) -> StructureValidation: ...


def parse_context_summary(summary: str) -> tuple[dict[str, str], list[str]]:
    """Parse a context summary into dependencies and file types.

    Returns:
        A ``{name: version}`` map from the ``Dependencies:`` section and the
        list of extensions from the ``File types:`` section, in order.
        Lines that do not fit their section are ignored.
    """
    dependencies: dict[str, str] = {}
    file_types: list[str] = []
    section: str | None = None

    for raw in summary.splitlines():
        line = raw.strip()
        if line == DEPENDENCIES_HEADER:
            section = "dependencies"
            continue
        if line == FILE_TYPES_HEADER:
            section = "file_types"
            continue

        if section == "dependencies" and "@" in line:
            name, _, version = line.rpartition("@")
            if name.strip():
                dependencies[name.strip()] = version.strip()
        elif section == "file_types" and ":" in line:
            file_types.append(line.split(":", 1)[0].strip())

    return dependencies, file_types


def _parse_package_json(content: str) -> dict[str, str] | None:
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    deps: dict[str, str] = {}
    for key in ("dependencies", "devDependencies"):
        section = data.get(key)
        if isinstance(section, dict):
            deps.update({str(k): str(v) for k, v in section.items()})
    return deps


def _parse_requirements(content: str) -> dict[str, str]:
    deps: dict[str, str] = {}
    for raw in content.splitlines():
        line = raw.split("#", 1)[0].strip()
        if not line or line.startswith("-"):
            continue
        for separator in ("==", ">=", "~=", "<=", ">", "<"):
            if separator in line:
                name, _, version = line.partition(separator)
                deps[name.strip()] = version.strip()
                break
        else:
            deps[line] = "*"
    return deps


class ProjectContext:
    """Tracks a project's files and dependencies.

    Attributes:
        root: Project root directory.
        files: Relative path to file info, directories included.
        dependencies: Dependency name to version, from package.json and
            requirements.txt.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        self.files: dict[str, FileInfo] = {}
        self.dependencies: dict[str, str] = {}

    def analyze(self) -> None:
        """Scan the project tree and read its dependency manifests."""
        self.files.clear()
        self._scan(self.root)

        deps: dict[str, str] = {}
        package_json = self.root / "package.json"
        if package_json.is_file():
            parsed = _parse_package_json(package_json.read_text(encoding="utf-8"))
            if parsed is None:
                _logger.warning("invalid_package_json", path=str(package_json))
            else:
                deps.update(parsed)
        requirements = self.root / "requirements.txt"
        if requirements.is_file():
            deps.update(_parse_requirements(requirements.read_text(encoding="utf-8")))
        self.dependencies = deps

        _logger.debug(
            "project_analyzed",
            root=str(self.root),
            files=len(self.files),
            dependencies=len(deps),
        )

    def _scan(self, directory: Path) -> None:
        for entry in sorted(directory.iterdir()):
            relative = entry.relative_to(self.root).as_posix()
            if entry.is_dir():
                if entry.name in SKIPPED_DIRS:
                    continue
                self.files[relative] = FileInfo(last_modified=time.time(), type=DIRECTORY)
                self._scan(entry)
            elif entry.is_file():
                self.files[relative] = FileInfo(
                    last_modified=entry.stat().st_mtime,
                    type=entry.suffix or "file",
                )

    def update_context(self, changes: Iterable[FileChange]) -> None:
        """Apply file changes to the tracked structure.

        Manifest changes with content also refresh the dependency map.
        """
        for change in changes:
            kind = FileChangeType(change.type)
            if kind == FileChangeType.DELETED:
                self.files.pop(change.file_path, None)
                continue

            path = self.root / change.file_path
            mtime = path.stat().st_mtime if path.exists() else time.time()
            self.files[change.file_path] = FileInfo(
                last_modified=mtime,
                type=Path(change.file_path).suffix or "file",
            )

            if change.content is None:
                continue
            if change.file_path == "package.json":
                parsed = _parse_package_json(change.content)
                if parsed is not None:
                    self.dependencies = parsed
            elif change.file_path == "requirements.txt":
                self.dependencies = _parse_requirements(change.content)

    def file_type_counts(self) -> dict[str, int]:
        counts = Counter(info.type for info in self.files.values() if info.type != DIRECTORY)
        return dict(sorted(counts.items()))

    def get_current_context(self) -> str:
        """Render the project summary read by the learning pipeline."""
        lines = [f"Project: {self.root}", DEPENDENCIES_HEADER]
        lines.extend(f"{name}@{version}" for name, version in sorted(self.dependencies.items()))
        lines.append(FILE_TYPES_HEADER)
        lines.extend(f"{ext}: {count}" for ext, count in self.file_type_counts().items())
        return "\n".join(lines)

    def validate_structure(self, path: str, operation: str) -> StructureValidation:
        """Check whether a file operation makes sense for this project.

        Args:
            path: Target path, relative to the root or absolute.
            operation: One of "create", "modify", "delete".
        """
        root = self.root.resolve()
        target = (root / path).resolve()
        if target != root and root not in target.parents:
            return StructureValidation(False, f"Path escapes project root: {path}")

        if operation == "create":
            if target.exists():
                return StructureValidation(False, f"File already exists: {path}")
        elif operation in ("modify", "delete"):
            if not target.exists():
                return StructureValidation(False, f"File does not exist: {path}")
        else:
            return StructureValidation(False, f"Unknown operation: {operation}")

        return StructureValidation(True)


__all__ = [
    "FileChange",
    "FileChangeType",
    "FileInfo",
    "ProjectContext",
    "ProjectContextProvider",
    "StructureValidation",
    "parse_context_summary",
]
