"""Next-task selection over a tag's task list."""

from __future__ import annotations

from typing import Any

from taskweave.tasks.io import task_to_dict
from taskweave.tasks.model import ACTIONABLE_STATUSES, DependencyRef, SubtaskRef, Task, TaskPriority, TaskRef

PRIORITY_VALUES: dict[TaskPriority, int] = {
    TaskPriority.HIGH: 3,
    TaskPriority.MEDIUM: 2,
    TaskPriority.LOW: 1,
}
UNSET_PRIORITY_VALUE = 2


def priority_rank(task: Task) -> int:
    if task.priority is None:
        return UNSET_PRIORITY_VALUE
    return PRIORITY_VALUES.get(task.priority, UNSET_PRIORITY_VALUE)


def completed_refs(tasks: list[Task]) -> set[DependencyRef]:
    done: set[DependencyRef] = set()
    for t in tasks:
        if t.is_done:
            done.add(TaskRef(t.id))
        for st in t.subtasks:
            if st.is_done:
                done.add(SubtaskRef(t.id, st.id))
    return done


def is_eligible(task: Task, completed: set[DependencyRef]) -> bool:
    """Pending/in-progress with a present, fully satisfied ``dependencies`` list.

    A task whose ``dependencies`` field is absent altogether is never eligible.
    """
    if task.status not in ACTIONABLE_STATUSES:
        return False
    if task.dependencies is None:
        return False
    return all(dep in completed for dep in task.dependencies)


def _sort_key(task: Task) -> tuple[int, int, int]:
    return (-priority_rank(task), len(task.dependencies or []), task.id)


def find_next_task(tasks: list[Task]) -> Task | None:
    """Return the single best task to work on next, or ``None``.

    Order: priority (high first), then fewest dependencies, then lowest id.
    Pure: *tasks* is not modified.
    """
    completed = completed_refs(tasks)
    eligible = [t for t in tasks if is_eligible(t, completed)]
    if not eligible:
        return None
    return min(eligible, key=_sort_key)


def complexity_score(task_id: int, report: dict[str, Any] | None) -> int | float | None:
    """Look up a display-only complexity score in a complexity report."""
    if not report:
        return None
    for entry in report.get("complexityAnalysis") or []:
        if isinstance(entry, dict) and entry.get("taskId") == task_id:
            return entry.get("complexityScore")
    return None


def describe_task(task: Task, report: dict[str, Any] | None = None) -> dict[str, Any]:
    """Serialise *task* for output, annotated with its complexity score if known."""
    data = task_to_dict(task)
    score = complexity_score(task.id, report)
    if score is not None:
        data["complexityScore"] = score
    return data
