"""Record schema: turn raw JSON values into entities, rejecting malformed records.

All field checks for the persisted format live here so the rest of the code
can rely on typed :mod:`taskweave.tasks.model` records.
"""

from __future__ import annotations

from typing import Any

from taskweave.errors import ParseError, ValidationError
from taskweave.tasks.model import (
    DependencyRef,
    State,
    Subtask,
    Tag,
    TagMetadata,
    Task,
    TaskPriority,
    TaskStatus,
    parse_ref,
    parse_subtask_dependency,
)

TASK_KEYS = frozenset(
    {"id", "title", "description", "details", "testStrategy", "status", "priority", "dependencies", "subtasks"}
)
SUBTASK_KEYS = TASK_KEYS - {"subtasks"}
METADATA_KEYS = frozenset({"created", "updated", "description"})
STATE_KEYS = frozenset({"currentTag", "lastSwitched", "branchTagMapping", "migrationNoticeShown"})


# ── Scalar fields ────────────────────────────────────────────────────


def parse_status(raw: Any) -> TaskStatus:
    """Parse a status string. Raises :class:`ValidationError`."""
    if isinstance(raw, TaskStatus):
        return raw
    try:
        return TaskStatus(str(raw).strip().lower())
    except ValueError:
        allowed = ", ".join(s.value for s in TaskStatus if s is not TaskStatus.COMPLETED)
        raise ValidationError(f"Invalid status {raw!r}. Valid statuses: {allowed}.") from None


def parse_priority(raw: Any) -> TaskPriority | None:
    """Parse a priority (case-insensitive); ``None``/empty means unset."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, TaskPriority):
        return raw
    try:
        return TaskPriority(str(raw).strip().lower())
    except ValueError:
        allowed = ", ".join(p.value for p in TaskPriority)
        raise ValidationError(f"Invalid priority {raw!r}. Valid priorities: {allowed}.") from None


def parse_id(raw: Any, what: str = "task id") -> int:
    """Parse a positive integer id from an int or numeric string."""
    if isinstance(raw, bool):
        raise ValidationError(f"Invalid {what}: {raw!r}")
    try:
        value = int(str(raw).strip()) if isinstance(raw, str) else int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {what}: {raw!r}") from None
    if value <= 0 or (isinstance(raw, float) and raw != value):
        raise ValidationError(f"Invalid {what}: {raw!r}")
    return value


def _text(raw: dict[str, Any], key: str, path: str, *, required: bool = False) -> str:
    value = raw.get(key)
    if value is None:
        if required:
            raise ParseError(f"{path}.{key}: required field is missing")
        return ""
    if not isinstance(value, str):
        raise ParseError(f"{path}.{key}: expected a string, got {type(value).__name__}")
    return value


def _record_id(raw: dict[str, Any], path: str) -> int:
    value = raw.get("id")
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ParseError(f"{path}.id: expected a positive integer, got {value!r}")
    return value


def _status_field(raw: dict[str, Any], path: str) -> TaskStatus:
    value = raw.get("status")
    if value is None:
        return TaskStatus.PENDING
    try:
        return parse_status(value)
    except ValidationError as exc:
        raise ParseError(f"{path}.status: {exc.message}") from None


def _priority_field(raw: dict[str, Any], path: str) -> TaskPriority | None:
    try:
        return parse_priority(raw.get("priority"))
    except ValidationError as exc:
        raise ParseError(f"{path}.priority: {exc.message}") from None


def _dependencies(raw: dict[str, Any], path: str, owner_id: int | None) -> list[DependencyRef] | None:
    if "dependencies" not in raw or raw["dependencies"] is None:
        return None
    value = raw["dependencies"]
    if not isinstance(value, list):
        raise ParseError(f"{path}.dependencies: expected a list")
    refs: list[DependencyRef] = []
    for i, item in enumerate(value):
        try:
            ref = parse_ref(item) if owner_id is None else parse_subtask_dependency(item, owner_id)
        except ValueError:
            raise ParseError(f"{path}.dependencies[{i}]: malformed dependency id {item!r}") from None
        refs.append(ref)
    return refs


def _extra(raw: dict[str, Any], known: frozenset[str]) -> dict[str, Any]:
    return {k: v for k, v in raw.items() if k not in known}


# ── Records ──────────────────────────────────────────────────────────


def parse_subtask(raw: Any, owner_id: int, path: str) -> Subtask:
    if not isinstance(raw, dict):
        raise ParseError(f"{path}: expected an object")
    return Subtask(
        id=_record_id(raw, path),
        title=_text(raw, "title", path),
        description=_text(raw, "description", path),
        details=_text(raw, "details", path),
        test_strategy=_text(raw, "testStrategy", path),
        status=_status_field(raw, path),
        priority=_priority_field(raw, path),
        dependencies=_dependencies(raw, path, owner_id),
        extra=_extra(raw, SUBTASK_KEYS),
    )


def parse_task(raw: Any, path: str) -> Task:
    if not isinstance(raw, dict):
        raise ParseError(f"{path}: expected an object")
    task_id = _record_id(raw, path)
    raw_subtasks = raw.get("subtasks") or []
    if not isinstance(raw_subtasks, list):
        raise ParseError(f"{path}.subtasks: expected a list")
    subtasks = [parse_subtask(st, task_id, f"{path}.subtasks[{i}]") for i, st in enumerate(raw_subtasks)]
    seen: set[int] = set()
    for st in subtasks:
        if st.id in seen:
            raise ParseError(f"{path}.subtasks: duplicate subtask id {st.id}")
        seen.add(st.id)
    return Task(
        id=task_id,
        title=_text(raw, "title", path, required=True),
        description=_text(raw, "description", path),
        details=_text(raw, "details", path),
        test_strategy=_text(raw, "testStrategy", path),
        status=_status_field(raw, path),
        priority=_priority_field(raw, path),
        dependencies=_dependencies(raw, path, None),
        subtasks=subtasks,
        extra=_extra(raw, TASK_KEYS),
    )


def parse_metadata(raw: Any, path: str) -> TagMetadata:
    if raw is None:
        return TagMetadata()
    if not isinstance(raw, dict):
        raise ParseError(f"{path}: expected an object")
    return TagMetadata(
        created=_text(raw, "created", path),
        updated=_text(raw, "updated", path),
        description=_text(raw, "description", path),
        extra=_extra(raw, METADATA_KEYS),
    )


def parse_tag(raw: Any, path: str) -> Tag:
    if not isinstance(raw, dict):
        raise ParseError(f"{path}: expected an object with a 'tasks' list")
    raw_tasks = raw.get("tasks")
    if raw_tasks is None:
        raw_tasks = []
    if not isinstance(raw_tasks, list):
        raise ParseError(f"{path}.tasks: expected a list")
    tasks = [parse_task(t, f"{path}.tasks[{i}]") for i, t in enumerate(raw_tasks)]
    seen: set[int] = set()
    for t in tasks:
        if t.id in seen:
            raise ParseError(f"{path}.tasks: duplicate task id {t.id}")
        seen.add(t.id)
    return Tag(tasks=tasks, metadata=parse_metadata(raw.get("metadata"), f"{path}.metadata"))


def parse_state(raw: Any) -> State:
    """Parse ``state.json`` content. Raises ``ValueError`` when malformed."""
    if not isinstance(raw, dict):
        raise ValueError("state must be a JSON object")
    current = raw.get("currentTag") or "master"
    if not isinstance(current, str):
        raise ValueError("currentTag must be a string")
    mapping = raw.get("branchTagMapping") or {}
    if not isinstance(mapping, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in mapping.items()
    ):
        raise ValueError("branchTagMapping must map branch names to tag names")
    last = raw.get("lastSwitched")
    if last is not None and not isinstance(last, str):
        raise ValueError("lastSwitched must be an ISO-8601 string")
    return State(
        current_tag=current,
        last_switched=last,
        branch_tag_mapping=dict(mapping),
        migration_notice_shown=bool(raw.get("migrationNoticeShown", False)),
        extra=_extra(raw, STATE_KEYS),
    )
