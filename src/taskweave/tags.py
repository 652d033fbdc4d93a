"""Tag lifecycle: create, use, rename, copy, delete and list tags.

Every mutation is one read-modify-write pass over the whole tasks document;
changes to the current tag are written to ``state.json`` before the
operation returns.
"""

from __future__ import annotations

import copy
import re
from typing import Any, Protocol

from taskweave import git_ops, log
from taskweave.config import Config
from taskweave.errors import CancelledError, ConfirmationRequiredError, NotFoundError, ReservedNameError, ValidationError
from taskweave.scheduler import describe_task, find_next_task
from taskweave.state import get_tag_for_branch, read_state, switch_current_tag, update_branch_tag_mapping
from taskweave.tasks import io as store
from taskweave.tasks.model import MASTER_TAG, RESERVED_TAG_NAMES, Tag, TaggedDocument, TagMetadata, now_iso

TAG_NAME_RE = re.compile(r"^[a-zA-Z0-9_-]+$")


def validate_tag_name(name: Any, what: str = "Tag name") -> str:
    """Check format and reserved words. Raises :class:`ValidationError`."""
    if not name or not isinstance(name, str):
        raise ValidationError(f"{what} is required and must be a string")
    if not TAG_NAME_RE.match(name):
        raise ValidationError(f"{what} can only contain letters, numbers, hyphens, and underscores")
    if name.lower() in RESERVED_TAG_NAMES:
        raise ReservedNameError(f'"{name}" is a reserved tag name')
    return name


def resolve_tag(cfg: Config, override: str | None = None) -> str:
    """Explicit override first, then ``state.json``, then ``master``."""
    if override:
        return override
    return read_state(cfg.state_path).current_tag or MASTER_TAG


class DeleteConfirmer(Protocol):
    """Two-step confirmation for deleting a non-empty tag."""

    def confirm(self, tag: str, task_count: int) -> bool: ...

    def confirm_name(self, tag: str) -> str: ...


class TagContext:
    def __init__(self, cfg: Config) -> None:
        self.cfg = cfg

    # ── helpers ──────────────────────────────────────────────────

    def _load(self) -> TaggedDocument:
        return store.load(self.cfg.tasks_path)

    def _save(self, doc: TaggedDocument) -> None:
        store.save(self.cfg.tasks_path, doc)

    def _switch(self, tag: str) -> None:
        switch_current_tag(self.cfg.state_path, tag)

    def resolve_current_tag(self) -> str:
        return resolve_tag(self.cfg)

    def resolve_tag(self, override: str | None = None) -> str:
        return resolve_tag(self.cfg, override)

    # ── create / copy ────────────────────────────────────────────

    def create_tag(
        self,
        name: str,
        *,
        copy_from_current: bool = False,
        copy_from_tag: str | None = None,
        description: str | None = None,
    ) -> dict[str, Any]:
        validate_tag_name(name)
        doc = self._load()
        if name in doc:
            raise ValidationError(f'Tag "{name}" already exists')

        source: str | None = None
        tasks = []
        if copy_from_tag or copy_from_current:
            source = copy_from_tag or self.resolve_current_tag()
            src = doc.get(source)
            if src is None:
                if copy_from_tag:
                    raise NotFoundError(f'Source tag "{copy_from_tag}" does not exist')
                log.warn(f'Current tag "{source}" not found; creating an empty tag')
            else:
                tasks = copy.deepcopy(src.tasks)
            log.info(f'Copying {len(tasks)} tasks from tag "{source}"')

        ts = now_iso()
        desc = description or f"Tag created on {ts[:10]}"
        doc.tags[name] = Tag(tasks=tasks, metadata=TagMetadata(created=ts, updated=ts, description=desc))
        self._save(doc)
        log.success(f'Created tag "{name}"')
        return {
            "tagName": name,
            "created": True,
            "tasksCopied": len(tasks),
            "sourceTag": source,
            "description": desc,
        }

    def copy_tag(self, source: str, target: str, *, description: str | None = None) -> dict[str, Any]:
        if not source or not isinstance(source, str):
            raise ValidationError("Source tag name is required and must be a string")
        validate_tag_name(target, "Target tag name")
        doc = self._load()
        src = doc.get(source)
        if src is None:
            raise NotFoundError(f'Source tag "{source}" does not exist')
        if target in doc:
            raise ValidationError(f'Target tag "{target}" already exists')

        ts = now_iso()
        desc = description or f'Copy of "{source}" created on {ts[:10]}'
        doc.tags[target] = Tag(
            tasks=copy.deepcopy(src.tasks),
            metadata=TagMetadata(
                created=ts,
                updated=ts,
                description=desc,
                extra={"copiedFrom": {"tag": source, "date": ts}},
            ),
        )
        self._save(doc)
        log.success(f'Copied tag "{source}" to "{target}"')
        return {
            "sourceName": source,
            "targetName": target,
            "copied": True,
            "tasksCopied": len(src.tasks),
            "description": desc,
        }

    # ── delete ───────────────────────────────────────────────────

    def delete_tags(
        self,
        names: list[str],
        *,
        force: bool = False,
        confirm: DeleteConfirmer | None = None,
    ) -> list[dict[str, Any]]:
        """Delete every tag in *names* in one pass over the document.

        ``master`` can never be deleted. Non-empty tags need *confirm* to
        approve twice unless *force* is set.
        """
        if not names:
            raise ValidationError("At least one tag name is required")
        names = list(dict.fromkeys(names))
        for name in names:
            if not name or not isinstance(name, str):
                raise ValidationError("Tag name is required and must be a string")
            if name == MASTER_TAG:
                raise ValidationError('Cannot delete the "master" tag')

        doc = self._load()
        for name in names:
            if name not in doc:
                raise NotFoundError(f'Tag "{name}" does not exist')

        remaining = [n for n in doc.names() if n not in names]
        if not remaining and not force:
            raise ValidationError("Refusing to delete every tag in the project (use force to override)")

        current = self.resolve_current_tag()
        for name in names:
            count = len(doc.tags[name].tasks)
            if force or count == 0:
                continue
            if confirm is None:
                raise ConfirmationRequiredError(
                    f'Tag "{name}" has {count} tasks; confirmation or force is required to delete it'
                )
            if not confirm.confirm(name, count):
                raise CancelledError("Tag deletion cancelled")
            if confirm.confirm_name(name) != name:
                raise CancelledError("Tag deletion cancelled - tag name confirmation did not match")

        results = []
        for name in names:
            removed = doc.tags.pop(name)
            results.append(
                {
                    "tagName": name,
                    "deleted": True,
                    "tasksDeleted": len(removed.tasks),
                    "wasCurrentTag": name == current,
                    "switchedToMaster": name == current,
                }
            )
        self._save(doc)
        if current in names:
            self._switch(MASTER_TAG)
            log.info('Switched current tag to "master"')
        for r in results:
            log.success(f'Deleted tag "{r["tagName"]}"')
        return results

    def delete_tag(self, name: str, *, force: bool = False, confirm: DeleteConfirmer | None = None) -> dict[str, Any]:
        return self.delete_tags([name], force=force, confirm=confirm)[0]

    # ── use / rename ─────────────────────────────────────────────

    def use_tag(self, name: str) -> dict[str, Any]:
        if not name or not isinstance(name, str):
            raise ValidationError("Tag name is required and must be a string")
        doc = self._load()
        tag = doc.get(name)
        if tag is None:
            raise NotFoundError(f'Tag "{name}" does not exist')
        previous = self.resolve_current_tag()
        self._switch(name)
        next_task = find_next_task(tag.tasks)
        log.success(f'Switched to tag "{name}"')
        return {
            "previousTag": previous,
            "currentTag": name,
            "switched": True,
            "taskCount": len(tag.tasks),
            "nextTask": describe_task(next_task) if next_task else None,
        }

    def rename_tag(self, old: str, new: str) -> dict[str, Any]:
        if not old or not isinstance(old, str):
            raise ValidationError("Old tag name is required and must be a string")
        if old == MASTER_TAG:
            raise ValidationError('Cannot rename the "master" tag')
        validate_tag_name(new, "New tag name")
        doc = self._load()
        if old not in doc:
            raise NotFoundError(f'Tag "{old}" does not exist')
        if new in doc:
            raise ValidationError(f'Tag "{new}" already exists')

        current = self.resolve_current_tag()
        tag = doc.tags[old]
        tag.metadata.extra["renamed"] = {"from": old, "date": now_iso()}
        doc.tags = {(new if k == old else k): v for k, v in doc.tags.items()}
        self._save(doc)
        if current == old:
            self._switch(new)
            log.info(f'Updated current tag reference to "{new}"')
        log.success(f'Renamed tag "{old}" to "{new}"')
        return {
            "oldName": old,
            "newName": new,
            "renamed": True,
            "taskCount": len(tag.tasks),
            "wasCurrentTag": current == old,
        }

    # ── list ─────────────────────────────────────────────────────

    def list_tags(self, *, show_metadata: bool = False) -> dict[str, Any]:
        doc = self._load()
        current = self.resolve_current_tag()
        rows = []
        for name, tag in doc.tags.items():
            row: dict[str, Any] = {
                "name": name,
                "isCurrent": name == current,
                "taskCount": len(tag.tasks),
                "completedTasks": tag.completed_count(),
            }
            if show_metadata:
                row["created"] = tag.metadata.created
                row["updated"] = tag.metadata.updated
                row["description"] = tag.metadata.description
            rows.append(row)
        rows.sort(key=lambda r: (not r["isCurrent"], r["name"]))
        return {"tags": rows, "currentTag": current, "totalTags": len(rows)}

    # ── git branch integration ───────────────────────────────────

    def get_tag_for_branch(self, branch: str) -> str | None:
        return get_tag_for_branch(self.cfg.state_path, branch)

    def create_tag_from_branch(
        self,
        branch: str,
        *,
        copy_from_current: bool = False,
        copy_from_tag: str | None = None,
        description: str | None = None,
        auto_switch: bool = False,
    ) -> dict[str, Any]:
        if not branch or not isinstance(branch, str):
            raise ValidationError("Branch name is required and must be a string")
        if not git_ops.is_valid_branch_for_tag(branch):
            raise ValidationError(f'Branch "{branch}" cannot be converted to a valid tag name')
        tag_name = git_ops.sanitize_branch_name_for_tag(branch)
        result = self.create_tag(
            tag_name,
            copy_from_current=copy_from_current,
            copy_from_tag=copy_from_tag,
            description=description or f'Tag created from git branch "{branch}"',
        )
        update_branch_tag_mapping(self.cfg.state_path, branch, tag_name)
        log.info(f"Updated branch-tag mapping: {branch} -> {tag_name}")
        if auto_switch:
            self._switch(tag_name)
        return {**result, "branchName": branch, "mappingUpdated": True, "autoSwitched": auto_switch}

    def switch_branch_tag(self, *, create_if_missing: bool = False, copy_from_current: bool = False) -> dict[str, Any]:
        """Switch to the tag mapped to the checked-out git branch.

        Outside a git repository (or on a branch that cannot name a tag) this
        is a no-op that reports why.
        """
        root = self.cfg.project_root
        if not git_ops.is_git_repository(root):
            log.debug("Not in a git repository; branch tag switch skipped")
            return {"switched": False, "reason": "not_git_repo"}
        branch = git_ops.current_branch(root)
        if not branch:
            return {"switched": False, "reason": "no_current_branch"}
        if not git_ops.is_valid_branch_for_tag(branch):
            return {"switched": False, "reason": "invalid_branch_for_tag", "branchName": branch}

        mapped = self.get_tag_for_branch(branch)
        doc = self._load()
        # a mapping to a deleted tag falls back to the branch-derived name
        tag_name = mapped if mapped and mapped in doc else git_ops.sanitize_branch_name_for_tag(branch)
        if tag_name in doc:
            result = self.use_tag(tag_name)
            if mapped != tag_name:
                update_branch_tag_mapping(self.cfg.state_path, branch, tag_name)
            return {**result, "created": False, "branchName": branch, "tagName": tag_name}
        if create_if_missing:
            result = self.create_tag_from_branch(branch, copy_from_current=copy_from_current, auto_switch=True)
            return {**result, "switched": True, "created": True}
        log.warn(f'Tag "{tag_name}" for branch "{branch}" does not exist')
        return {"switched": False, "reason": "tag_not_found", "branchName": branch, "tagName": tag_name}
