"""Configuration defaults, env vars, and path resolution for taskweave."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from taskweave.git_ops import repository_root


TASKMASTER_DIR = ".taskmaster"
TASKS_FILE = ".taskmaster/tasks/tasks.json"
LEGACY_TASKS_FILE = "tasks/tasks.json"
STATE_FILE = ".taskmaster/state.json"
COMPLEXITY_REPORT_FILE = ".taskmaster/reports/task-complexity-report.json"

PROJECT_MARKERS: tuple[str, ...] = (TASKMASTER_DIR, ".git", "pyproject.toml", "package.json")

DEFAULT_MAX_GRAPH_DEPTH = 5


@dataclass
class Config:
    """Runtime configuration handed explicitly to every operation."""

    project_root: Path | None = None
    tasks_file: str = ""
    state_file: str = ""
    complexity_report: str = ""
    max_graph_depth: int = DEFAULT_MAX_GRAPH_DEPTH
    verbose: bool = False

    def __post_init__(self) -> None:
        if self.project_root is None:
            self.project_root = find_project_root()
        self.project_root = Path(self.project_root)
        if not self.tasks_file:
            self.tasks_file = os.environ.get("TASKWEAVE_TASKS_FILE", "")
        if not self.state_file:
            self.state_file = os.environ.get("TASKWEAVE_STATE_FILE", "") or STATE_FILE
        if not self.complexity_report:
            self.complexity_report = COMPLEXITY_REPORT_FILE
        env_depth = os.environ.get("TASKWEAVE_MAX_GRAPH_DEPTH")
        if env_depth:
            try:
                self.max_graph_depth = int(env_depth)
            except ValueError:
                pass
        if self.max_graph_depth < 0:
            self.max_graph_depth = DEFAULT_MAX_GRAPH_DEPTH

    @property
    def tasks_path(self) -> Path:
        """Tasks document location, falling back to the legacy layout when only it exists."""
        assert self.project_root is not None
        if self.tasks_file:
            p = Path(self.tasks_file)
            return p if p.is_absolute() else self.project_root / p
        preferred = self.project_root / TASKS_FILE
        legacy = self.project_root / LEGACY_TASKS_FILE
        if not preferred.exists() and legacy.exists():
            return legacy
        return preferred

    @property
    def state_path(self) -> Path:
        assert self.project_root is not None
        p = Path(self.state_file)
        return p if p.is_absolute() else self.project_root / p

    @property
    def complexity_report_path(self) -> Path:
        assert self.project_root is not None
        p = Path(self.complexity_report)
        return p if p.is_absolute() else self.project_root / p


def resolve_repo_root() -> Path:
    """Return the git repository root, falling back to cwd."""
    return repository_root() or Path.cwd()


def find_project_root(
    start: Path | None = None,
    markers: tuple[str, ...] = PROJECT_MARKERS,
) -> Path:
    """Walk upward from *start* until a directory holds one of *markers*."""
    current = (start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        if any((candidate / marker).exists() for marker in markers):
            return candidate
    if start is not None:
        return current
    return resolve_repo_root()
