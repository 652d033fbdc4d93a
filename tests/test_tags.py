"""Tests for taskweave.tags.TagContext: the tag lifecycle."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from taskweave.config import Config
from taskweave.errors import (
    CancelledError,
    ConfirmationRequiredError,
    NotFoundError,
    ReservedNameError,
    ValidationError,
)
from taskweave.io_utils import read_json, read_text, write_text
from taskweave.state import update_branch_tag_mapping
from taskweave.tags import TagContext, validate_tag_name
from taskweave.tasks import io as store
from taskweave.tasks.model import TaskStatus


class _Confirmer:
    """Scripted two-step confirmer."""

    def __init__(self, answer: bool = True, typed: str | None = None) -> None:
        self.answer = answer
        self.typed = typed
        self.asked: list[tuple[str, int]] = []

    def confirm(self, tag: str, task_count: int) -> bool:
        self.asked.append((tag, task_count))
        return self.answer

    def confirm_name(self, tag: str) -> str:
        return tag if self.typed is None else self.typed


@pytest.fixture
def ctx(project: Config, seed, make_task) -> TagContext:
    seed(
        project,
        {
            "master": [make_task(1, status="done"), make_task(2, dependencies=[1]), make_task(3)],
            "feature": [make_task(1)],
        },
    )
    return TagContext(project)


def _load(ctx: TagContext):
    return store.load(ctx.cfg.tasks_path)


# ═══════════════════════════════════════════════════════════════════
#  Names
# ═══════════════════════════════════════════════════════════════════


class TestTagNames:
    @pytest.mark.parametrize("name", ["master", "Main", "DEFAULT"])
    def test_reserved(self, name):
        with pytest.raises(ReservedNameError):
            validate_tag_name(name)

    @pytest.mark.parametrize("name", ["has space", "slash/name", "dot.name", ""])
    def test_invalid_characters(self, name):
        with pytest.raises(ValidationError):
            validate_tag_name(name)

    def test_valid(self):
        assert validate_tag_name("feat_2-login") == "feat_2-login"


# ═══════════════════════════════════════════════════════════════════
#  Create and copy
# ═══════════════════════════════════════════════════════════════════


class TestCreateTag:
    def test_empty(self, ctx: TagContext):
        result = ctx.create_tag("sprint-1")
        assert result["tagName"] == "sprint-1"
        assert result["created"] is True
        assert result["tasksCopied"] == 0
        assert result["sourceTag"] is None
        tag = _load(ctx).tags["sprint-1"]
        assert tag.tasks == []
        assert tag.metadata.description.startswith("Tag created on ")

    def test_description(self, ctx: TagContext):
        ctx.create_tag("sprint-1", description="First sprint")
        assert _load(ctx).tags["sprint-1"].metadata.description == "First sprint"

    def test_copy_from_current(self, ctx: TagContext):
        result = ctx.create_tag("snapshot", copy_from_current=True)
        assert result["sourceTag"] == "master"
        assert result["tasksCopied"] == 3
        doc = _load(ctx)
        assert doc.tags["snapshot"].tasks == doc.tags["master"].tasks

    def test_copy_from_tag(self, ctx: TagContext):
        result = ctx.create_tag("feature-2", copy_from_tag="feature")
        assert result["sourceTag"] == "feature"
        assert result["tasksCopied"] == 1

    def test_copy_from_missing_tag(self, ctx: TagContext):
        before = read_text(ctx.cfg.tasks_path)
        with pytest.raises(NotFoundError):
            ctx.create_tag("x", copy_from_tag="ghost")
        assert read_text(ctx.cfg.tasks_path) == before

    def test_duplicate(self, ctx: TagContext):
        with pytest.raises(ValidationError, match="already exists"):
            ctx.create_tag("feature")

    def test_reserved(self, ctx: TagContext):
        with pytest.raises(ReservedNameError):
            ctx.create_tag("main")


class TestCopyTag:
    def test_copy_records_source(self, ctx: TagContext):
        result = ctx.copy_tag("master", "backup")
        assert result["tasksCopied"] == 3
        md = _load(ctx).tags["backup"].metadata
        assert md.extra["copiedFrom"]["tag"] == "master"

    def test_copy_is_isolated(self, ctx: TagContext):
        """Mutating the copy never changes the source."""
        ctx.copy_tag("master", "backup")
        doc = _load(ctx)
        doc.tags["backup"].tasks[1].status = TaskStatus.DONE
        doc.tags["backup"].tasks[1].title = "changed"
        store.save(ctx.cfg.tasks_path, doc)
        master = _load(ctx).tags["master"].tasks
        assert master[1].status is TaskStatus.PENDING
        assert master[1].title == "Task 2"

    def test_copy_missing_source(self, ctx: TagContext):
        with pytest.raises(NotFoundError):
            ctx.copy_tag("ghost", "backup")

    def test_copy_onto_existing(self, ctx: TagContext):
        with pytest.raises(ValidationError):
            ctx.copy_tag("master", "feature")


# ═══════════════════════════════════════════════════════════════════
#  Delete
# ═══════════════════════════════════════════════════════════════════


class TestDeleteTag:
    def test_master_always_forbidden(self, ctx: TagContext):
        with pytest.raises(ValidationError, match="master"):
            ctx.delete_tag("master", force=True)
        assert "master" in _load(ctx)

    def test_missing(self, ctx: TagContext):
        with pytest.raises(NotFoundError):
            ctx.delete_tag("ghost", force=True)

    def test_empty_tag_needs_no_confirmation(self, ctx: TagContext):
        ctx.create_tag("empty")
        result = ctx.delete_tag("empty")
        assert result["deleted"] is True
        assert result["tasksDeleted"] == 0
        assert "empty" not in _load(ctx)

    def test_non_empty_requires_confirmation(self, ctx: TagContext):
        with pytest.raises(ConfirmationRequiredError):
            ctx.delete_tag("feature")
        assert "feature" in _load(ctx)

    def test_confirmed(self, ctx: TagContext):
        confirmer = _Confirmer()
        result = ctx.delete_tag("feature", confirm=confirmer)
        assert confirmer.asked == [("feature", 1)]
        assert result["tasksDeleted"] == 1
        assert "feature" not in _load(ctx)

    def test_declined(self, ctx: TagContext):
        with pytest.raises(CancelledError):
            ctx.delete_tag("feature", confirm=_Confirmer(answer=False))
        assert "feature" in _load(ctx)

    def test_wrong_name_typed(self, ctx: TagContext):
        with pytest.raises(CancelledError):
            ctx.delete_tag("feature", confirm=_Confirmer(typed="featur"))
        assert "feature" in _load(ctx)

    def test_force(self, ctx: TagContext):
        assert ctx.delete_tag("feature", force=True)["deleted"] is True

    def test_deleting_active_tag_switches_to_master(self, ctx: TagContext):
        ctx.use_tag("feature")
        result = ctx.delete_tag("feature", force=True)
        assert result["wasCurrentTag"] is True
        assert result["switchedToMaster"] is True
        assert ctx.resolve_current_tag() == "master"
        assert read_json(ctx.cfg.state_path)["currentTag"] == "master"

    def test_deleting_other_tag_keeps_current(self, ctx: TagContext):
        ctx.create_tag("other")
        ctx.use_tag("other")
        result = ctx.delete_tag("feature", force=True)
        assert result["wasCurrentTag"] is False
        assert ctx.resolve_current_tag() == "other"

    def test_delete_many(self, ctx: TagContext):
        ctx.create_tag("a")
        ctx.create_tag("b")
        results = ctx.delete_tags(["a", "b"])
        assert [r["tagName"] for r in results] == ["a", "b"]
        assert _load(ctx).names() == ["master", "feature"]

    def test_repeated_name_deleted_once(self, ctx: TagContext):
        ctx.create_tag("a")
        results = ctx.delete_tags(["a", "a"], force=True)
        assert [r["tagName"] for r in results] == ["a"]
        assert "a" not in _load(ctx)


# ═══════════════════════════════════════════════════════════════════
#  Use, rename, list
# ═══════════════════════════════════════════════════════════════════


class TestUseTag:
    def test_switch(self, ctx: TagContext):
        result = ctx.use_tag("feature")
        assert result == {
            "previousTag": "master",
            "currentTag": "feature",
            "switched": True,
            "taskCount": 1,
            "nextTask": result["nextTask"],
        }
        assert result["nextTask"]["id"] == 1
        assert ctx.resolve_current_tag() == "feature"

    def test_next_task_prefers_fewer_dependencies(self, ctx: TagContext):
        assert ctx.use_tag("master")["nextTask"]["id"] == 3

    def test_missing(self, ctx: TagContext):
        with pytest.raises(NotFoundError):
            ctx.use_tag("ghost")
        assert ctx.resolve_current_tag() == "master"


class TestRenameTag:
    def test_rename(self, ctx: TagContext):
        result = ctx.rename_tag("feature", "feature-v2")
        assert result["renamed"] is True
        doc = _load(ctx)
        assert "feature" not in doc
        assert doc.tags["feature-v2"].metadata.extra["renamed"]["from"] == "feature"
        assert doc.names() == ["master", "feature-v2"]

    def test_rename_to_existing_changes_nothing(self, ctx: TagContext):
        ctx.create_tag("other")
        before = read_text(ctx.cfg.tasks_path)
        with pytest.raises(ValidationError, match="already exists"):
            ctx.rename_tag("feature", "other")
        assert read_text(ctx.cfg.tasks_path) == before

    def test_rename_master_forbidden(self, ctx: TagContext):
        with pytest.raises(ValidationError):
            ctx.rename_tag("master", "trunk")

    def test_rename_to_reserved(self, ctx: TagContext):
        with pytest.raises(ReservedNameError):
            ctx.rename_tag("feature", "default")

    def test_rename_current_updates_state(self, ctx: TagContext):
        ctx.use_tag("feature")
        result = ctx.rename_tag("feature", "feature-v2")
        assert result["wasCurrentTag"] is True
        assert ctx.resolve_current_tag() == "feature-v2"

    def test_rename_missing(self, ctx: TagContext):
        with pytest.raises(NotFoundError):
            ctx.rename_tag("ghost", "spirit")


class TestListTags:
    def test_current_first_then_by_name(self, ctx: TagContext):
        ctx.create_tag("alpha")
        ctx.create_tag("zeta")
        ctx.use_tag("zeta")
        result = ctx.list_tags()
        assert [t["name"] for t in result["tags"]] == ["zeta", "alpha", "feature", "master"]
        assert result["currentTag"] == "zeta"
        assert result["totalTags"] == 4

    def test_counts(self, ctx: TagContext):
        master = next(t for t in ctx.list_tags()["tags"] if t["name"] == "master")
        assert master["taskCount"] == 3
        assert master["completedTasks"] == 1
        assert "created" not in master

    def test_show_metadata(self, ctx: TagContext):
        master = ctx.list_tags(show_metadata=True)["tags"][0]
        assert master["description"] == "master tasks"
        assert master["created"] == "2024-01-01T00:00:00.000Z"


class TestResolveTag:
    def test_override_wins(self, ctx: TagContext):
        assert ctx.resolve_tag("feature") == "feature"

    def test_malformed_state_resolves_to_master(self, ctx: TagContext):
        write_text(ctx.cfg.state_path, "{ not json")
        assert ctx.resolve_current_tag() == "master"


# ═══════════════════════════════════════════════════════════════════
#  Git branch integration
# ═══════════════════════════════════════════════════════════════════


class TestBranchTags:
    def test_outside_git_is_a_no_op(self, ctx: TagContext):
        result = ctx.switch_branch_tag(create_if_missing=True)
        assert result == {"switched": False, "reason": "not_git_repo"}
        assert ctx.resolve_current_tag() == "master"

    def _repo_ctx(self, git_repo: Path, branch: str | None = None) -> TagContext:
        if branch:
            subprocess.run(["git", "checkout", "-B", branch], cwd=git_repo, capture_output=True, check=True)
        return TagContext(Config(project_root=git_repo))

    def test_default_branch_is_not_a_tag(self, git_repo: Path):
        ctx = self._repo_ctx(git_repo, "main")
        assert ctx.switch_branch_tag()["reason"] == "invalid_branch_for_tag"

    def test_missing_tag_without_create(self, git_repo: Path):
        ctx = self._repo_ctx(git_repo, "feature/login")
        result = ctx.switch_branch_tag()
        assert result["switched"] is False
        assert result["reason"] == "tag_not_found"
        assert result["tagName"] == "feature-login"

    def test_create_if_missing(self, git_repo: Path):
        ctx = self._repo_ctx(git_repo, "feature/login")
        result = ctx.switch_branch_tag(create_if_missing=True)
        assert result["switched"] is True
        assert result["created"] is True
        assert ctx.resolve_current_tag() == "feature-login"
        assert ctx.get_tag_for_branch("feature/login") == "feature-login"

    def test_existing_tag_is_used(self, git_repo: Path):
        ctx = self._repo_ctx(git_repo, "feature/login")
        ctx.create_tag("feature-login")
        result = ctx.switch_branch_tag()
        assert result["switched"] is True
        assert result["created"] is False
        assert ctx.get_tag_for_branch("feature/login") == "feature-login"

    def test_stale_mapping_creates_branch_tag(self, git_repo: Path):
        ctx = self._repo_ctx(git_repo, "feature/login")
        update_branch_tag_mapping(ctx.cfg.state_path, "feature/login", "gone")
        result = ctx.switch_branch_tag(create_if_missing=True)
        assert result["created"] is True
        assert result["tagName"] == "feature-login"
        assert ctx.resolve_current_tag() == "feature-login"
        assert ctx.get_tag_for_branch("feature/login") == "feature-login"

    def test_stale_mapping_falls_back_to_existing_branch_tag(self, git_repo: Path):
        ctx = self._repo_ctx(git_repo, "feature/login")
        ctx.create_tag("feature-login")
        update_branch_tag_mapping(ctx.cfg.state_path, "feature/login", "gone")
        result = ctx.switch_branch_tag()
        assert result["switched"] is True
        assert result["tagName"] == "feature-login"
        assert ctx.get_tag_for_branch("feature/login") == "feature-login"

    def test_create_tag_from_branch(self, ctx: TagContext):
        result = ctx.create_tag_from_branch("fix/Crash-On-Start", copy_from_current=True)
        assert result["tagName"] == "fix-crash-on-start"
        assert result["tasksCopied"] == 3
        assert result["autoSwitched"] is False
        assert ctx.get_tag_for_branch("fix/Crash-On-Start") == "fix-crash-on-start"

    def test_create_tag_from_reserved_branch(self, ctx: TagContext):
        with pytest.raises(ValidationError):
            ctx.create_tag_from_branch("develop")
