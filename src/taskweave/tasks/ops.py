"""Task operations on a single tag.

Each operation loads the whole document, validates every precondition,
mutates the resolved tag in memory and saves once. A failed precondition
raises before anything is written.
"""

from __future__ import annotations

import json
from typing import Any, Iterable

from taskweave import graph, log
from taskweave.config import Config
from taskweave.errors import CircularDependencyError, NotFoundError, ValidationError
from taskweave.io_utils import read_json
from taskweave.scheduler import describe_task, find_next_task
from taskweave.tags import resolve_tag
from taskweave.tasks import io as store
from taskweave.tasks.model import (
    DEFAULT_PRIORITY,
    DONE_STATUSES,
    DependencyRef,
    Subtask,
    SubtaskRef,
    Tag,
    TaggedDocument,
    Task,
    TaskRef,
    TaskStatus,
    parse_ref,
    ref_sort_key,
)
from taskweave.tasks.validate import parse_id, parse_priority, parse_status


def _open(cfg: Config, tag: str | None) -> tuple[TaggedDocument, str, Tag]:
    name = resolve_tag(cfg, tag)
    doc = store.load(cfg.tasks_path, name)
    return doc, name, doc.tags[name]


def _commit(cfg: Config, doc: TaggedDocument, tag: Tag) -> None:
    tag.touch()
    store.save(cfg.tasks_path, doc)


def _ref(raw: Any, what: str = "task id") -> DependencyRef:
    try:
        return parse_ref(raw)
    except ValueError:
        raise ValidationError(f"Invalid {what}: {raw!r}") from None


def _require_record(tasks: list[Task], ref: DependencyRef, what: str = "Task") -> graph.Record:
    record = graph.find_record(tasks, ref)
    if record is None:
        raise NotFoundError(f"{what} {ref} does not exist")
    return record


def _checked_dependencies(candidates: Iterable[Any], tasks: list[Task]) -> list[DependencyRef]:
    check = graph.validate_dependencies(candidates, tasks)
    for bad in check.invalid:
        log.warn(f"Ignoring invalid dependency {bad!r}: no such task or subtask")
    return sorted(check.valid, key=ref_sort_key)


# ── Tasks and subtasks ───────────────────────────────────────────────


def add_task(
    cfg: Config,
    *,
    title: str,
    description: str,
    details: str = "",
    test_strategy: str = "",
    dependencies: Iterable[Any] = (),
    priority: str | None = None,
    tag: str | None = None,
) -> dict[str, Any]:
    if not title or not title.strip():
        raise ValidationError("Task title is required")
    prio = parse_priority(priority) or DEFAULT_PRIORITY
    doc, name, current = _open(cfg, tag)

    task = Task(
        id=current.next_task_id(),
        title=title.strip(),
        description=description or "",
        details=details or "",
        test_strategy=test_strategy or "",
        status=TaskStatus.PENDING,
        priority=prio,
        dependencies=_checked_dependencies(dependencies, current.tasks),
    )
    current.tasks.append(task)
    _commit(cfg, doc, current)
    log.success(f"Added task {task.id}: {task.title}")
    return {"taskId": task.id, "tag": name, "task": store.task_to_dict(task)}


def _rewrite_refs(tasks: list[Task], old: DependencyRef, new: DependencyRef) -> None:
    for _, record in graph.iter_records(tasks):
        if record.dependencies and old in record.dependencies:
            record.dependencies = sorted({new if d == old else d for d in record.dependencies}, key=ref_sort_key)


def add_subtask(
    cfg: Config,
    parent_id: Any,
    *,
    existing_task_id: Any = None,
    title: str | None = None,
    description: str = "",
    details: str = "",
    test_strategy: str = "",
    dependencies: Iterable[Any] = (),
    status: str | None = None,
    tag: str | None = None,
) -> dict[str, Any]:
    """Add a new subtask to *parent_id*, or convert *existing_task_id* into one.

    A converted task keeps its fields and dependencies; references to it
    elsewhere in the tag are rewritten to the new ``parent.child`` form.
    """
    pid = parse_id(parent_id, "parent task id")
    doc, name, current = _open(cfg, tag)
    parent = current.get_task(pid)
    if parent is None:
        raise NotFoundError(f"Parent task {pid} does not exist")

    converted = False
    if existing_task_id is not None:
        eid = parse_id(existing_task_id, "task id")
        if eid == pid:
            raise CircularDependencyError(f"Task {pid} cannot be made a subtask of itself")
        existing = current.get_task(eid)
        if existing is None:
            raise NotFoundError(f"Task {eid} does not exist")
        if existing.subtasks:
            raise ValidationError(f"Task {eid} has subtasks of its own and cannot be converted")
        if graph.detect_circular(current.tasks, pid, eid):
            raise CircularDependencyError(
                f"Converting task {eid} into a subtask of task {pid} would create a circular dependency"
            )
        subtask = Subtask(
            id=parent.next_subtask_id(),
            title=existing.title,
            description=existing.description,
            details=existing.details,
            test_strategy=existing.test_strategy,
            status=existing.status,
            priority=existing.priority,
            dependencies=existing.dependencies,
            extra=existing.extra,
        )
        current.tasks.remove(existing)
        parent.subtasks.append(subtask)
        _rewrite_refs(current.tasks, TaskRef(eid), SubtaskRef(pid, subtask.id))
        converted = True
        log.success(f"Converted task {eid} to subtask {pid}.{subtask.id}")
    else:
        if not title or not title.strip():
            raise ValidationError("Subtask title is required")
        subtask = Subtask(
            id=parent.next_subtask_id(),
            title=title.strip(),
            description=description or "",
            details=details or "",
            test_strategy=test_strategy or "",
            status=parse_status(status) if status else TaskStatus.PENDING,
            dependencies=_checked_dependencies(dependencies, current.tasks),
        )
        parent.subtasks.append(subtask)
        log.success(f"Added subtask {pid}.{subtask.id}: {subtask.title}")

    _commit(cfg, doc, current)
    return {
        "parentId": pid,
        "subtaskId": f"{pid}.{subtask.id}",
        "converted": converted,
        "tag": name,
        "subtask": store.subtask_to_dict(subtask),
    }


def remove_task(cfg: Config, ids: Iterable[Any], *, tag: str | None = None) -> dict[str, Any]:
    """Remove tasks and ``parent.child`` subtasks; absent ids are reported, not raised."""
    refs = [_ref(raw) for raw in ids]
    if not refs:
        raise ValidationError("At least one task id is required")
    doc, name, current = _open(cfg, tag)

    results: list[dict[str, Any]] = []
    removed: set[DependencyRef] = set()
    for ref in refs:
        if isinstance(ref, TaskRef):
            task = current.get_task(ref.id)
            if task is None:
                results.append({"id": str(ref), "skipped": True, "reason": f"Task {ref} not found"})
                continue
            current.tasks.remove(task)
            title = task.title
        else:
            parent = current.get_task(ref.parent)
            st = parent.get_subtask(ref.child) if parent else None
            if parent is None or st is None:
                results.append({"id": str(ref), "skipped": True, "reason": f"Subtask {ref} not found"})
                continue
            parent.subtasks.remove(st)
            title = st.title
        removed.add(ref)
        results.append({"id": str(ref), "removed": True, "title": title})
        log.success(f"Removed {ref}: {title}")

    stripped = 0
    if removed:
        stripped = graph.strip_references(current.tasks, removed)
        if stripped:
            log.info(f"Removed {stripped} reference(s) to deleted items")
        _commit(cfg, doc, current)
    return {
        "tag": name,
        "results": results,
        "removedCount": len(removed),
        "referencesRemoved": stripped,
    }


def remove_subtask(
    cfg: Config,
    subtask_id: Any,
    *,
    convert_to_task: bool = False,
    tag: str | None = None,
) -> dict[str, Any]:
    """Remove subtask ``parent.child``, or turn it back into a standalone task.

    A converted subtask keeps its fields and dependencies, inherits the
    parent's priority and gains a dependency on the parent. References to the
    subtask elsewhere in the tag follow it to the new task id; without
    conversion they are dropped.
    """
    ref = _ref(subtask_id, "subtask id")
    if not isinstance(ref, SubtaskRef):
        raise ValidationError(f"Invalid subtask id {subtask_id!r}: expected \"parentId.subtaskId\"")
    doc, name, current = _open(cfg, tag)
    parent = current.get_task(ref.parent)
    if parent is None:
        raise NotFoundError(f"Parent task {ref.parent} does not exist")
    st = parent.get_subtask(ref.child)
    if st is None:
        raise NotFoundError(f"Subtask {ref} does not exist")
    parent.subtasks.remove(st)

    converted: Task | None = None
    if convert_to_task:
        converted = Task(
            id=current.next_task_id(),
            title=st.title,
            description=st.description,
            details=st.details,
            test_strategy=st.test_strategy,
            status=st.status,
            priority=parent.priority or DEFAULT_PRIORITY,
            dependencies=list(st.dependencies or []),
            extra=st.extra,
        )
        current.tasks.append(converted)
        new_ref = TaskRef(converted.id)
        _rewrite_refs(current.tasks, ref, new_ref)
        owner = TaskRef(parent.id)
        if owner in converted.dependencies:
            log.debug(f"Task {converted.id} already depends on {owner}")
        elif graph.would_create_cycle(current.tasks, new_ref, owner):
            log.warn(f"Task {converted.id} does not depend on {owner}: task {owner} already depends on it")
        else:
            converted.dependencies = sorted([*converted.dependencies, owner], key=ref_sort_key)
        log.success(f"Converted subtask {ref} to task {converted.id}: {converted.title}")
    else:
        stripped = graph.strip_references(current.tasks, {ref})
        if stripped:
            log.info(f"Removed {stripped} reference(s) to {ref}")
        log.success(f"Removed subtask {ref}: {st.title}")

    _commit(cfg, doc, current)
    return {
        "tag": name,
        "subtaskId": str(ref),
        "converted": converted is not None,
        "task": store.task_to_dict(converted) if converted else None,
    }


def clear_subtasks(
    cfg: Config,
    ids: Iterable[Any] = (),
    *,
    all_tasks: bool = False,
    tag: str | None = None,
) -> dict[str, Any]:
    """Drop every subtask of the given tasks (or of every task with *all_tasks*)."""
    task_ids = [parse_id(raw) for raw in ids]
    if not task_ids and not all_tasks:
        raise ValidationError("At least one task id is required")
    doc, name, current = _open(cfg, tag)
    if all_tasks:
        task_ids = [t.id for t in current.tasks]

    results: list[dict[str, Any]] = []
    removed: set[DependencyRef] = set()
    for tid in task_ids:
        task = current.get_task(tid)
        if task is None:
            results.append({"id": tid, "skipped": True, "reason": f"Task {tid} not found"})
            continue
        count = len(task.subtasks)
        removed.update(SubtaskRef(tid, st.id) for st in task.subtasks)
        task.subtasks = []
        results.append({"id": tid, "title": task.title, "subtasksCleared": count})
        if count:
            log.success(f"Cleared {count} subtask(s) from task {tid}")
        else:
            log.info(f"Task {tid} has no subtasks to clear")

    if removed:
        graph.strip_references(current.tasks, removed)
        _commit(cfg, doc, current)
    return {
        "tag": name,
        "results": results,
        "clearedCount": sum(1 for r in results if r.get("subtasksCleared")),
    }


def set_task_status(cfg: Config, ids: Iterable[Any], status: str, *, tag: str | None = None) -> dict[str, Any]:
    """Set *status* on every task/subtask in *ids*. Done tasks also complete their subtasks."""
    new_status = parse_status(status)
    refs = [_ref(raw) for raw in ids]
    if not refs:
        raise ValidationError("At least one task id is required")
    doc, name, current = _open(cfg, tag)
    records = [(ref, _require_record(current.tasks, ref)) for ref in refs]

    updated = []
    for ref, record in records:
        old = record.status
        record.status = new_status
        updated.append({"id": str(ref), "oldStatus": old.value, "newStatus": new_status.value})
        if isinstance(record, Task) and new_status in DONE_STATUSES:
            for st in record.subtasks:
                if not st.is_done:
                    st.status = TaskStatus.DONE
        log.success(f"{ref}: {old.value} -> {new_status.value}")

    _commit(cfg, doc, current)
    return {"tag": name, "status": new_status.value, "updated": updated}


# ── Dependencies ─────────────────────────────────────────────────────


def add_dependency(cfg: Config, task_id: Any, dependency_id: Any, *, tag: str | None = None) -> dict[str, Any]:
    owner = _ref(task_id)
    dep = _ref(dependency_id, "dependency id")
    doc, name, current = _open(cfg, tag)
    record = _require_record(current.tasks, owner)
    _require_record(current.tasks, dep, "Dependency target")

    if owner == dep:
        raise ValidationError(f"{owner} cannot depend on itself")
    if record.dependencies and dep in record.dependencies:
        log.warn(f"{owner} already depends on {dep}")
        return {"taskId": str(owner), "dependencyId": str(dep), "added": False, "reason": "already_exists"}
    if graph.would_create_cycle(current.tasks, owner, dep):
        raise CircularDependencyError(f"Adding dependency {dep} to {owner} would create a circular dependency")

    record.dependencies = sorted([*(record.dependencies or []), dep], key=ref_sort_key)
    _commit(cfg, doc, current)
    log.success(f"{owner} now depends on {dep}")
    return {"taskId": str(owner), "dependencyId": str(dep), "added": True, "tag": name}


def remove_dependency(cfg: Config, task_id: Any, dependency_id: Any, *, tag: str | None = None) -> dict[str, Any]:
    owner = _ref(task_id)
    dep = _ref(dependency_id, "dependency id")
    doc, name, current = _open(cfg, tag)
    record = _require_record(current.tasks, owner)

    if not record.dependencies or dep not in record.dependencies:
        log.info(f"{owner} does not depend on {dep}; nothing to remove")
        return {"taskId": str(owner), "dependencyId": str(dep), "removed": False, "reason": "not_found"}

    record.dependencies = [d for d in record.dependencies if d != dep]
    _commit(cfg, doc, current)
    log.success(f"Removed dependency {dep} from {owner}")
    return {"taskId": str(owner), "dependencyId": str(dep), "removed": True, "tag": name}


def validate_dependencies(cfg: Config, *, tag: str | None = None) -> dict[str, Any]:
    _, name, current = _open(cfg, tag)
    issues = graph.validate_task_dependencies(current.tasks)
    if issues:
        log.warn(f"Found {len(issues)} dependency issue(s) in tag '{name}'")
        for issue in issues:
            log.warn(f"  {issue.message}")
    else:
        log.success(f"All dependencies in tag '{name}' are valid")
    return {"tag": name, "valid": not issues, "issues": [i.to_dict() for i in issues]}


def fix_dependencies(cfg: Config, *, tag: str | None = None) -> dict[str, Any]:
    doc, name, current = _open(cfg, tag)
    stats = graph.fix_dependencies(current.tasks)
    if stats.total:
        _commit(cfg, doc, current)
        log.success(f"Fixed {stats.total} dependency issue(s) in tag '{name}'")
    else:
        log.info(f"No dependency issues to fix in tag '{name}'")
    return {"tag": name, "changed": stats.total > 0, "stats": stats.to_dict()}


def dependency_tree(cfg: Config, task_id: Any, *, tag: str | None = None) -> dict[str, Any]:
    """Dependency chain of one task, as tree lines and as AI context text."""
    tid = parse_id(task_id)
    _, name, current = _open(cfg, tag)
    task = current.get_task(tid)
    if task is None:
        raise NotFoundError(f"Task {tid} does not exist")
    node = graph.build_graph(current.tasks, tid, max_depth=cfg.max_graph_depth)
    assert node is not None
    roots = [r.id for r in task.dependencies or [] if isinstance(r, TaskRef)]
    return {
        "tag": name,
        "taskId": tid,
        "chain": graph.format_dependency_chain(node, max_depth=cfg.max_graph_depth),
        "context": graph.dependency_context(current.tasks, roots, max_depth=cfg.max_graph_depth),
    }


# ── Views ────────────────────────────────────────────────────────────


def _status_counts(records: list[Task] | list[Subtask]) -> dict[str, Any]:
    total = len(records)
    done = sum(1 for r in records if r.is_done)
    return {
        "total": total,
        "completed": done,
        "inProgress": sum(1 for r in records if r.status is TaskStatus.IN_PROGRESS),
        "pending": sum(1 for r in records if r.status is TaskStatus.PENDING),
        "review": sum(1 for r in records if r.status is TaskStatus.REVIEW),
        "deferred": sum(1 for r in records if r.status is TaskStatus.DEFERRED),
        "cancelled": sum(1 for r in records if r.status is TaskStatus.CANCELLED),
        "completionPercentage": done / total * 100 if total else 0.0,
    }


def _summary(task: Task) -> dict[str, Any]:
    data = store.task_to_dict(task)
    data.pop("details", None)
    for st in data["subtasks"]:
        st.pop("details", None)
    return data


def list_tasks(cfg: Config, *, status: str | None = None, tag: str | None = None) -> dict[str, Any]:
    """Tasks of one tag, optionally filtered by status, with completion stats.

    *status* may be ``"all"`` or a comma-separated list of statuses. Listed
    tasks omit ``details``; stats always cover the whole tag.
    """
    wanted: set[TaskStatus] | None = None
    if status and status.strip().lower() != "all":
        wanted = {parse_status(s) for s in status.split(",") if s.strip()}
        if TaskStatus.DONE in wanted:
            wanted.add(TaskStatus.COMPLETED)
    _, name, current = _open(cfg, tag)
    tasks = [t for t in current.tasks if wanted is None or t.status in wanted]
    subtasks = [st for t in current.tasks for st in t.subtasks]
    return {
        "tag": name,
        "filter": status or "all",
        "tasks": [_summary(t) for t in tasks],
        "stats": {**_status_counts(current.tasks), "subtasks": _status_counts(subtasks)},
    }


def show_task(cfg: Config, task_id: Any, *, tag: str | None = None) -> dict[str, Any]:
    """One task (``3``) or subtask (``3.1``) in full."""
    ref = _ref(task_id)
    _, name, current = _open(cfg, tag)
    record = _require_record(current.tasks, ref)
    if isinstance(ref, TaskRef):
        assert isinstance(record, Task)
        return {"tag": name, "isSubtask": False, "task": describe_task(record, _load_complexity_report(cfg))}
    parent = current.get_task(ref.parent)
    assert parent is not None and isinstance(record, Subtask)
    return {
        "tag": name,
        "isSubtask": True,
        "task": store.subtask_to_dict(record),
        "parentTask": {"id": parent.id, "title": parent.title, "status": parent.status.value},
    }


# ── Scheduling ───────────────────────────────────────────────────────


def _load_complexity_report(cfg: Config) -> dict[str, Any] | None:
    path = cfg.complexity_report_path
    if not path.exists():
        return None
    try:
        report = read_json(path)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        log.debug(f"Ignoring unreadable complexity report {path}: {exc}")
        return None
    return report if isinstance(report, dict) else None


def next_task(
    cfg: Config,
    *,
    tag: str | None = None,
    complexity_report: dict[str, Any] | None = None,
) -> dict[str, Any]:
    _, name, current = _open(cfg, tag)
    task = find_next_task(current.tasks)
    if task is None:
        log.info(f"No eligible task in tag '{name}'")
        return {"tag": name, "nextTask": None}
    report = complexity_report if complexity_report is not None else _load_complexity_report(cfg)
    return {"tag": name, "nextTask": describe_task(task, report)}
