"""Unit tests for taskweave.git_ops against real temporary git repos."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from taskweave import git_ops


# ── Repository detection ─────────────────────────────────────────────


class TestRepository:
    def test_is_git_repository(self, git_repo: Path) -> None:
        assert git_ops.is_git_repository(git_repo)

    def test_plain_directory_is_not_a_repo(self, tmp_path: Path) -> None:
        assert not git_ops.is_git_repository(tmp_path)
        assert git_ops.current_branch(tmp_path) is None
        assert git_ops.repository_root(tmp_path) is None

    def test_current_branch(self, git_repo: Path) -> None:
        # `git init` may name the default branch "main" or "master".
        assert git_ops.current_branch(git_repo)

    def test_current_branch_after_checkout(self, git_repo: Path) -> None:
        subprocess.run(["git", "checkout", "-b", "feature/login"], cwd=git_repo, capture_output=True, check=True)
        assert git_ops.current_branch(git_repo) == "feature/login"

    def test_detached_head_has_no_branch(self, git_repo: Path) -> None:
        subprocess.run(["git", "checkout", "--detach"], cwd=git_repo, capture_output=True, check=True)
        assert git_ops.current_branch(git_repo) is None

    def test_repository_root(self, git_repo: Path) -> None:
        sub = git_repo / "pkg"
        sub.mkdir()
        assert git_ops.repository_root(sub).resolve() == git_repo.resolve()


# ── Branch name sanitising ───────────────────────────────────────────


class TestSanitize:
    @pytest.mark.parametrize(
        ("branch", "tag"),
        [
            ("feature/Auth", "feature-auth"),
            ("fix//double--dash", "fix-double-dash"),
            ("-leading/trailing-", "leading-trailing"),
            ("release@1.2", "release-1-2"),
            ("under_score", "under_score"),
            ("", "unknown-branch"),
            ("///", "unknown-branch"),
        ],
    )
    def test_sanitize(self, branch: str, tag: str) -> None:
        assert git_ops.sanitize_branch_name_for_tag(branch) == tag

    def test_truncates_to_fifty(self) -> None:
        assert len(git_ops.sanitize_branch_name_for_tag("x" * 80)) == git_ops.MAX_TAG_LENGTH

    @pytest.mark.parametrize("branch", ["main", "master", "develop", "dev", "HEAD", "", "///"])
    def test_reserved_or_empty_branches_invalid(self, branch: str) -> None:
        assert not git_ops.is_valid_branch_for_tag(branch)

    def test_feature_branch_valid(self) -> None:
        assert git_ops.is_valid_branch_for_tag("feature/login")
