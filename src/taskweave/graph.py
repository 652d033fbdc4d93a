"""Dependency graph: id validation, cycle detection, traversal and repair.

Every walk in this module uses an explicit worklist and a visited set, so
cyclic input always terminates. The single ``max_depth`` limit applies to
traversal, context assembly and display alike.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

from taskweave import log
from taskweave.config import DEFAULT_MAX_GRAPH_DEPTH
from taskweave.tasks.model import (
    DependencyRef,
    Subtask,
    SubtaskRef,
    Task,
    TaskRef,
    parse_ref,
    ref_exists,
)

DEFAULT_MAX_DEPTH = DEFAULT_MAX_GRAPH_DEPTH

Record = Task | Subtask


# ── Record indexing ──────────────────────────────────────────────────


def iter_records(tasks: list[Task]) -> Iterator[tuple[DependencyRef, Record]]:
    """Yield ``(ref, record)`` for every task and subtask, in file order."""
    for task in tasks:
        yield TaskRef(task.id), task
        for st in task.subtasks:
            yield SubtaskRef(task.id, st.id), st


def record_index(tasks: list[Task]) -> dict[DependencyRef, Record]:
    return dict(iter_records(tasks))


def find_record(tasks: list[Task], ref: DependencyRef) -> Record | None:
    for task in tasks:
        if isinstance(ref, TaskRef) and task.id == ref.id:
            return task
        if isinstance(ref, SubtaskRef) and task.id == ref.parent:
            return task.get_subtask(ref.child)
    return None


# ── Validation of candidate ids ──────────────────────────────────────


@dataclass
class DependencyCheck:
    valid: list[DependencyRef] = field(default_factory=list)
    invalid: list[Any] = field(default_factory=list)


def validate_dependencies(candidate_ids: Iterable[Any], existing_tasks: list[Task]) -> DependencyCheck:
    """Split *candidate_ids* into refs that exist and ids that do not.

    Never raises: non-numeric and absent ids are returned in ``invalid`` for
    the caller to warn about and drop.
    """
    check = DependencyCheck()
    for raw in candidate_ids:
        try:
            ref = parse_ref(raw)
        except ValueError:
            check.invalid.append(raw)
            continue
        if not ref_exists(existing_tasks, ref):
            check.invalid.append(raw)
            continue
        if ref not in check.valid:
            check.valid.append(ref)
    return check


# ── Traversal subgraphs ──────────────────────────────────────────────


@dataclass
class GraphNode:
    id: int
    title: str
    description: str
    depth: int
    dependencies: list[GraphNode] = field(default_factory=list)


@dataclass
class GraphBuild:
    graphs: list[GraphNode]
    visited: set[int]
    depth_map: dict[int, int]


def _record_depth(depth_map: dict[int, int], task_id: int, depth: int) -> None:
    if task_id not in depth_map or depth < depth_map[task_id]:
        depth_map[task_id] = depth


def build_graph(
    tasks: list[Task],
    root_id: int,
    visited: set[int] | None = None,
    depth_map: dict[int, int] | None = None,
    depth: int = 0,
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> GraphNode | None:
    """Build the dependency subgraph reachable from *root_id*.

    Returns ``None`` at once when the root was already visited, is unknown,
    or lies beyond *max_depth*. The walk is breadth-first, so every id is
    attached (and recorded in *depth_map*) at the shallowest depth it is
    reachable from this root.
    """
    if visited is None:
        visited = set()
    if depth_map is None:
        depth_map = {}
    index = {t.id: t for t in tasks}
    if root_id in visited or root_id not in index or depth > max_depth:
        return None

    root_task = index[root_id]
    root = GraphNode(root_task.id, root_task.title, root_task.description, depth)
    visited.add(root_id)
    _record_depth(depth_map, root_id, depth)

    queue: deque[tuple[GraphNode, Task]] = deque([(root, root_task)])
    while queue:
        node, task = queue.popleft()
        if node.depth >= max_depth:
            continue
        for ref in task.dependencies or []:
            if not isinstance(ref, TaskRef):
                continue
            dep = index.get(ref.id)
            if dep is None or dep.id in visited:
                continue
            visited.add(dep.id)
            child = GraphNode(dep.id, dep.title, dep.description, node.depth + 1)
            _record_depth(depth_map, dep.id, child.depth)
            node.dependencies.append(child)
            queue.append((child, dep))
    return root


def build_graphs(tasks: list[Task], root_ids: Iterable[int], *, max_depth: int = DEFAULT_MAX_DEPTH) -> GraphBuild:
    """Build subgraphs for several roots sharing one visited set and depth map."""
    visited: set[int] = set()
    depth_map: dict[int, int] = {}
    graphs: list[GraphNode] = []
    for root_id in root_ids:
        graph = build_graph(tasks, root_id, visited, depth_map, max_depth=max_depth)
        if graph is not None:
            graphs.append(graph)
    return GraphBuild(graphs=graphs, visited=visited, depth_map=depth_map)


def format_dependency_chain(node: GraphNode, *, max_depth: int = DEFAULT_MAX_DEPTH) -> list[str]:
    """Render *node* as tree lines (``└── Task 3: title``)."""
    lines: list[str] = []
    stack: list[tuple[GraphNode, str, bool, int]] = [(node, "", True, 0)]
    while stack:
        current, prefix, is_last, level = stack.pop()
        if level > max_depth:
            continue
        connector = "└── " if is_last else "├── "
        lines.append(f"{prefix}{connector}Task {current.id}: {current.title}")
        child_prefix = prefix + ("    " if is_last else "│   ")
        children = current.dependencies
        for i in range(len(children) - 1, -1, -1):
            stack.append((children[i], child_prefix, i == len(children) - 1, level + 1))
    return lines


def _truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def dependency_context(tasks: list[Task], root_ids: list[int], *, max_depth: int = DEFAULT_MAX_DEPTH) -> str:
    """Assemble the plain-text dependency context handed to the AI collaborator."""
    built = build_graphs(tasks, root_ids, max_depth=max_depth)
    if not built.visited:
        return ""

    by_id = {t.id: t for t in tasks}
    related = sorted(
        (by_id[i] for i in built.visited if i in by_id),
        key=lambda t: (built.depth_map.get(t.id, 0), t.id),
    )
    parts = [f"This task relates to a dependency structure with {len(related)} related tasks in the chain."]

    direct = [t for t in tasks if t.id in root_ids]
    if direct:
        parts.append("Direct dependencies:\n" + "\n".join(f"- Task {t.id}: {t.title} - {t.description}" for t in direct))

    indirect = [t for t in related if t.id not in root_ids]
    if indirect:
        block = "\n".join(f"- Task {t.id}: {t.title} - {t.description}" for t in indirect[:5])
        if len(indirect) > 5:
            block += f"\n- ... and {len(indirect) - 5} more indirect dependencies"
        parts.append("Indirect dependencies (dependencies of dependencies):\n" + block)

    details: list[str] = ["Detailed information about dependencies:"]
    for t in related[:8]:
        marker = " [DIRECT DEPENDENCY]" if t.id in root_ids else ""
        entry = f"------ Task {t.id}{marker}: {t.title} ------\nDescription: {t.description}"
        if t.dependencies:
            entry += f"\nDependencies: {', '.join(str(r) for r in t.dependencies)}"
        if t.details:
            entry += f"\nImplementation Details: {_truncate(t.details, 400)}"
        details.append(entry)
    parts.append("\n\n".join(details))

    if built.graphs:
        chain: list[str] = ["Dependency Chain Visualization:"]
        for graph in built.graphs:
            chain.extend(format_dependency_chain(graph, max_depth=max_depth))
        parts.append("\n".join(chain))

    return "\n\n".join(parts)


# ── Cycle detection ──────────────────────────────────────────────────


def _reaches(index: dict[DependencyRef, Record], start: Iterable[DependencyRef], target: DependencyRef) -> bool:
    """Return ``True`` if *target* is reachable from any ref in *start*."""
    seen: set[DependencyRef] = set()
    stack = list(start)
    while stack:
        ref = stack.pop()
        if ref == target:
            return True
        if ref in seen:
            continue
        seen.add(ref)
        record = index.get(ref)
        if record is not None and record.dependencies:
            stack.extend(record.dependencies)
    return False


def would_create_cycle(tasks: list[Task], owner: DependencyRef, dependency: DependencyRef) -> bool:
    """Return ``True`` if making *owner* depend on *dependency* closes a cycle."""
    if owner == dependency:
        return True
    return _reaches(record_index(tasks), [dependency], owner)


def detect_circular(tasks: list[Task], parent_id: int, child_id: int) -> bool:
    """Return ``True`` if turning task *child_id* into a subtask of *parent_id* closes a cycle.

    That is the case when the parent is the child, or when the parent (or any
    of its subtasks) depends, directly or transitively, on the child task or
    on one of the child's subtasks.
    """
    if parent_id == child_id:
        return True
    index = record_index(tasks)
    parent = index.get(TaskRef(parent_id))
    if parent is None:
        return False

    def touches_child(ref: DependencyRef) -> bool:
        if isinstance(ref, TaskRef):
            return ref.id == child_id
        return ref.parent == child_id

    seen: set[DependencyRef] = set()
    stack: list[DependencyRef] = [TaskRef(parent_id)]
    while stack:
        ref = stack.pop()
        if ref in seen:
            continue
        seen.add(ref)
        record = index.get(ref)
        if record is None:
            continue
        for dep in record.dependencies or []:
            if touches_child(dep):
                return True
            stack.append(dep)
        if isinstance(record, Task):
            stack.extend(SubtaskRef(record.id, st.id) for st in record.subtasks)
    return False


# ── Whole-tag validation and repair ──────────────────────────────────


@dataclass
class DependencyIssue:
    type: str
    task_id: str
    message: str
    dependency_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type, "taskId": self.task_id, "message": self.message}
        if self.dependency_id is not None:
            out["dependencyId"] = self.dependency_id
        return out


def validate_task_dependencies(tasks: list[Task]) -> list[DependencyIssue]:
    """Report self, missing and circular dependencies for tasks and subtasks."""
    index = record_index(tasks)
    issues: list[DependencyIssue] = []
    for ref, record in index.items():
        kind = "Task" if isinstance(ref, TaskRef) else "Subtask"
        deps = record.dependencies or []
        for dep in deps:
            if dep == ref:
                issues.append(DependencyIssue("self", str(ref), f"{kind} {ref} depends on itself"))
            elif dep not in index:
                issues.append(
                    DependencyIssue("missing", str(ref), f"{kind} {ref} depends on non-existent task {dep}", str(dep))
                )
        if _reaches(index, [d for d in deps if d != ref], ref):
            issues.append(DependencyIssue("circular", str(ref), f"{kind} {ref} is part of a circular dependency chain"))
    return issues


@dataclass
class FixStats:
    non_existent_removed: int = 0
    self_removed: int = 0
    duplicates_removed: int = 0
    circular_fixed: int = 0
    tasks_fixed: int = 0
    subtasks_fixed: int = 0

    @property
    def total(self) -> int:
        return self.non_existent_removed + self.self_removed + self.duplicates_removed + self.circular_fixed

    def to_dict(self) -> dict[str, int]:
        return {
            "nonExistentDependenciesRemoved": self.non_existent_removed,
            "selfDependenciesRemoved": self.self_removed,
            "duplicateDependenciesRemoved": self.duplicates_removed,
            "circularDependenciesFixed": self.circular_fixed,
            "tasksFixed": self.tasks_fixed,
            "subtasksFixed": self.subtasks_fixed,
        }


def fix_dependencies(tasks: list[Task]) -> FixStats:
    """Repair *tasks* in place so :func:`validate_task_dependencies` reports nothing."""
    stats = FixStats()
    index = record_index(tasks)
    changed: set[DependencyRef] = set()

    for ref, record in index.items():
        if not record.dependencies:
            continue
        kept: list[DependencyRef] = []
        for dep in record.dependencies:
            if dep in kept:
                log.debug(f"Removing duplicate dependency {dep} from {ref}")
                stats.duplicates_removed += 1
            elif dep == ref:
                log.debug(f"Removing self-dependency from {ref}")
                stats.self_removed += 1
            elif dep not in index:
                log.debug(f"Removing non-existent dependency {dep} from {ref}")
                stats.non_existent_removed += 1
            else:
                kept.append(dep)
                continue
            changed.add(ref)
        record.dependencies = kept

    # One ordered pass breaks every cycle: when the first member of a cycle
    # is visited, its edge into the cycle still reaches back to it.
    for ref, record in index.items():
        for dep in list(record.dependencies or []):
            if _reaches(index, [dep], ref):
                log.debug(f"Breaking circular dependency: removing {dep} from {ref}")
                assert record.dependencies is not None
                record.dependencies.remove(dep)
                stats.circular_fixed += 1
                changed.add(ref)

    stats.tasks_fixed = sum(1 for r in changed if isinstance(r, TaskRef))
    stats.subtasks_fixed = sum(1 for r in changed if isinstance(r, SubtaskRef))
    return stats


def strip_references(tasks: list[Task], removed: set[DependencyRef]) -> int:
    """Drop dependencies on *removed* refs (and on subtasks of removed tasks)."""
    removed_tasks = {r.id for r in removed if isinstance(r, TaskRef)}

    def dangling(dep: DependencyRef) -> bool:
        if dep in removed:
            return True
        return isinstance(dep, SubtaskRef) and dep.parent in removed_tasks

    count = 0
    for _, record in iter_records(tasks):
        if not record.dependencies:
            continue
        kept = [d for d in record.dependencies if not dangling(d)]
        count += len(record.dependencies) - len(kept)
        record.dependencies = kept
    return count
