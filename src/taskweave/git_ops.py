"""Git helpers for branch-to-tag mapping."""

from __future__ import annotations

import re
import subprocess
from pathlib import Path

RESERVED_BRANCHES: tuple[str, ...] = ("main", "master", "develop", "dev", "head")
MAX_TAG_LENGTH = 50
UNKNOWN_BRANCH_TAG = "unknown-branch"


def _git(*args: str, cwd: Path | None = None) -> subprocess.CompletedProcess[str] | None:
    """Run a git command; ``None`` when git itself is unavailable."""
    try:
        return subprocess.run(
            ["git", *args],
            capture_output=True,
            text=True,
            cwd=cwd,
            check=False,
        )
    except (FileNotFoundError, NotADirectoryError):
        return None


def is_git_repository(cwd: Path | None = None) -> bool:
    r = _git("rev-parse", "--is-inside-work-tree", cwd=cwd)
    return r is not None and r.returncode == 0 and r.stdout.strip() == "true"


def current_branch(cwd: Path | None = None) -> str | None:
    """Return the checked-out branch name, or ``None`` outside a repo / when detached."""
    r = _git("rev-parse", "--abbrev-ref", "HEAD", cwd=cwd)
    if r is None or r.returncode != 0:
        r = _git("symbolic-ref", "--short", "HEAD", cwd=cwd)
        if r is None or r.returncode != 0:
            return None
    name = r.stdout.strip()
    if not name or name == "HEAD":
        return None
    return name


def repository_root(cwd: Path | None = None) -> Path | None:
    r = _git("rev-parse", "--show-toplevel", cwd=cwd)
    if r is None or r.returncode != 0:
        return None
    return Path(r.stdout.strip())


def sanitize_branch_name_for_tag(branch: str) -> str:
    """Convert a branch name to a valid tag name (``feature/Auth`` -> ``feature-auth``)."""
    if not branch:
        return UNKNOWN_BRANCH_TAG
    slug = re.sub(r"[^a-zA-Z0-9_-]", "-", branch)
    slug = re.sub(r"-+", "-", slug).strip("-").lower()
    return slug[:MAX_TAG_LENGTH] or UNKNOWN_BRANCH_TAG


def is_valid_branch_for_tag(branch: str) -> bool:
    if not branch:
        return False
    if branch.lower() in RESERVED_BRANCHES:
        return False
    return sanitize_branch_name_for_tag(branch) != UNKNOWN_BRANCH_TAG
