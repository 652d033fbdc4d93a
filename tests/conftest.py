"""Shared fixtures for taskweave tests.

File handling in tests:
- Use tmp_path for any directory or file creation so tests are isolated and cleaned up.
- Use taskweave.io_utils read_json/write_json for consistent UTF-8 I/O.
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Any

import pytest

from taskweave import log
from taskweave.config import Config
from taskweave.io_utils import write_text
from taskweave.tasks import io as store
from taskweave.tasks.model import (
    Subtask,
    Tag,
    TaggedDocument,
    TagMetadata,
    Task,
    TaskPriority,
    TaskStatus,
    parse_ref,
)


@pytest.fixture(autouse=True)
def _isolate(monkeypatch: pytest.MonkeyPatch):
    """Keep env overrides and log flags from leaking between tests."""
    for var in ("TASKWEAVE_TASKS_FILE", "TASKWEAVE_STATE_FILE", "TASKWEAVE_MAX_GRAPH_DEPTH"):
        monkeypatch.delenv(var, raising=False)
    yield
    log.set_silent(False)
    log.set_verbose(False)


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """Create a minimal git repo for testing."""
    subprocess.run(["git", "init"], cwd=tmp_path, capture_output=True, check=True)
    subprocess.run(
        ["git", "config", "user.name", "Test"], cwd=tmp_path, capture_output=True
    )
    subprocess.run(
        ["git", "config", "user.email", "test@test"], cwd=tmp_path, capture_output=True
    )
    write_text(tmp_path / "README.md", "# Test")
    subprocess.run(["git", "add", "README.md"], cwd=tmp_path, capture_output=True)
    subprocess.run(
        ["git", "commit", "-m", "Initial"], cwd=tmp_path, capture_output=True
    )
    return tmp_path


def _make_subtask(
    id: int,
    title: str = "",
    status: str = "pending",
    dependencies: list[Any] | None = None,
) -> Subtask:
    return Subtask(
        id=id,
        title=title or f"Subtask {id}",
        status=TaskStatus(status),
        dependencies=[parse_ref(d) for d in dependencies] if dependencies is not None else None,
    )


def _make_task(
    id: int,
    title: str = "",
    status: str = "pending",
    priority: str | None = None,
    dependencies: Any = (),
    subtasks: list[Subtask] | None = None,
) -> Task:
    """Build a Task; ``dependencies=None`` leaves the field absent."""
    return Task(
        id=id,
        title=title or f"Task {id}",
        description=f"Description of task {id}",
        status=TaskStatus(status),
        priority=TaskPriority(priority) if priority else None,
        dependencies=[parse_ref(d) for d in dependencies] if dependencies is not None else None,
        subtasks=subtasks or [],
    )


@pytest.fixture
def make_task():
    """Factory fixture that creates Task instances."""
    return _make_task


@pytest.fixture
def make_subtask():
    """Factory fixture that creates Subtask instances."""
    return _make_subtask


@pytest.fixture
def project(tmp_path: Path) -> Config:
    """An empty project root with a ``.taskmaster`` directory."""
    (tmp_path / ".taskmaster").mkdir()
    return Config(project_root=tmp_path)


@pytest.fixture
def seed():
    """Write ``{tag: [tasks]}`` as the project's tasks document."""

    def _seed(cfg: Config, tags: dict[str, list[Task]]) -> TaggedDocument:
        doc = TaggedDocument(
            {
                name: Tag(
                    tasks=tasks,
                    metadata=TagMetadata(
                        created="2024-01-01T00:00:00.000Z",
                        updated="2024-01-01T00:00:00.000Z",
                        description=f"{name} tasks",
                    ),
                )
                for name, tasks in tags.items()
            }
        )
        store.save(cfg.tasks_path, doc)
        return doc

    return _seed
