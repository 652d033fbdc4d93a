"""Store: load and save the whole tagged tasks document.

The document is always written in full. A legacy single-namespace file
(``{"tasks": [...]}``) is presented as the ``master`` tag and only rewritten
in the tagged shape on the next save.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from taskweave import log
from taskweave.errors import NotFoundError, ParseError
from taskweave.io_utils import PathLike, read_json, write_json
from taskweave.tasks.model import (
    MASTER_DESCRIPTION,
    MASTER_TAG,
    DependencyRef,
    Subtask,
    Tag,
    TaggedDocument,
    TagMetadata,
    Task,
    TaskRef,
    now_iso,
)
from taskweave.tasks.validate import parse_tag


def is_legacy_shape(raw: Any) -> bool:
    """Return ``True`` for the pre-tag format: a top-level ``tasks`` list."""
    return isinstance(raw, dict) and isinstance(raw.get("tasks"), list) and MASTER_TAG not in raw


def upgrade_legacy(raw: dict[str, Any]) -> dict[str, Any]:
    metadata = raw.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}
    return {MASTER_TAG: {"tasks": raw["tasks"], "metadata": {"description": MASTER_DESCRIPTION, **metadata}}}


def default_document() -> TaggedDocument:
    ts = now_iso()
    return TaggedDocument(
        {MASTER_TAG: Tag(metadata=TagMetadata(created=ts, updated=ts, description=MASTER_DESCRIPTION))}
    )


def _file_created(path: Path) -> str:
    try:
        mtime = path.stat().st_mtime
    except OSError:
        return now_iso()
    return datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _fill_metadata(doc: TaggedDocument, created_fallback: str) -> None:
    for name, tag in doc.tags.items():
        md = tag.metadata
        if not md.created:
            md.created = created_fallback
        if not md.updated:
            md.updated = md.created
        if not md.description:
            md.description = MASTER_DESCRIPTION if name == MASTER_TAG else f"Tag created on {md.created[:10]}"


# ── Codec ────────────────────────────────────────────────────────────


def document_from_dict(raw: Any) -> TaggedDocument:
    """Build a document from parsed JSON; legacy shape is upgraded here."""
    if not isinstance(raw, dict):
        raise ParseError("tasks document must be a JSON object keyed by tag name")
    if is_legacy_shape(raw):
        log.debug("Legacy tasks file detected; presenting it as the 'master' tag")
        raw = upgrade_legacy(raw)
    tags = {name: parse_tag(value, name) for name, value in raw.items()}
    return TaggedDocument(tags)


def ref_to_json(ref: DependencyRef, *, in_subtask: bool = False) -> int | str:
    """Task refs are bare ints, except inside a subtask where a bare int reads as a sibling."""
    if isinstance(ref, TaskRef) and not in_subtask:
        return ref.id
    return str(ref)


def _record_to_dict(rec: Task | Subtask) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": rec.id,
        "title": rec.title,
        "description": rec.description,
        "details": rec.details,
        "testStrategy": rec.test_strategy,
        "status": rec.status.value,
    }
    if rec.priority is not None:
        out["priority"] = rec.priority.value
    if rec.dependencies is not None:
        in_subtask = isinstance(rec, Subtask)
        out["dependencies"] = [ref_to_json(r, in_subtask=in_subtask) for r in rec.dependencies]
    return out


def subtask_to_dict(st: Subtask) -> dict[str, Any]:
    return {**_record_to_dict(st), **st.extra}


def task_to_dict(task: Task) -> dict[str, Any]:
    out = _record_to_dict(task)
    out["subtasks"] = [subtask_to_dict(st) for st in task.subtasks]
    return {**out, **task.extra}


def metadata_to_dict(md: TagMetadata) -> dict[str, Any]:
    return {"created": md.created, "updated": md.updated, "description": md.description, **md.extra}


def document_to_dict(doc: TaggedDocument) -> dict[str, Any]:
    return {
        name: {"tasks": [task_to_dict(t) for t in tag.tasks], "metadata": metadata_to_dict(tag.metadata)}
        for name, tag in doc.tags.items()
    }


# ── Store operations ─────────────────────────────────────────────────


def load(path: PathLike, tag: str | None = None) -> TaggedDocument:
    """Read the tagged document at *path*.

    A missing file yields a default document holding an empty ``master`` tag.
    When *tag* is given it must exist in the document.
    """
    p = Path(path)
    if not p.exists():
        log.debug(f"No tasks file at {p}; starting from an empty document")
        doc = default_document()
    else:
        try:
            raw = read_json(p)
        except json.JSONDecodeError as exc:
            raise ParseError(f"Could not parse tasks file {p}: {exc}") from None
        except (OSError, UnicodeDecodeError) as exc:
            raise ParseError(f"Could not read tasks file {p}: {exc}") from None
        try:
            doc = document_from_dict(raw)
        except ParseError as exc:
            raise ParseError(f"Invalid tasks file {p}: {exc.message}") from None
        _fill_metadata(doc, _file_created(p))

    if tag is not None and tag not in doc:
        raise NotFoundError(f'Tag "{tag}" does not exist')
    return doc


def save(path: PathLike, doc: TaggedDocument) -> None:
    """Serialize and write the entire multi-tag document."""
    doc.ensure_master()
    write_json(path, document_to_dict(doc))
    log.debug(f"Saved {len(doc.tags)} tag(s) to {path}")


def get_tag(doc: TaggedDocument, name: str) -> Tag:
    tag = doc.get(name)
    if tag is None:
        raise NotFoundError(f'Tag "{name}" does not exist')
    return tag


def tasks_for(doc: TaggedDocument, name: str) -> list[Task]:
    return get_tag(doc, name).tasks
