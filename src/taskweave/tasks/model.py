"""Entity model: tasks, subtasks, tags, the tagged document and side-state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union


MASTER_TAG = "master"
RESERVED_TAG_NAMES: tuple[str, ...] = ("master", "main", "default")
MASTER_DESCRIPTION = "Tasks live here by default"

# Legacy files store sibling subtask references as bare ints inside a
# subtask's dependency list. Below this value a bare int is read as a sibling.
SIBLING_ID_THRESHOLD = 100


class TaskStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"
    IN_PROGRESS = "in-progress"
    REVIEW = "review"
    DEFERRED = "deferred"
    CANCELLED = "cancelled"
    COMPLETED = "completed"  # legacy alias of DONE, accepted on read


DONE_STATUSES = frozenset({TaskStatus.DONE, TaskStatus.COMPLETED})
ACTIONABLE_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.IN_PROGRESS})


class TaskPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


DEFAULT_PRIORITY = TaskPriority.MEDIUM


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ── Dependency references ────────────────────────────────────────────


@dataclass(frozen=True, order=True)
class TaskRef:
    """Reference to a top-level task by id."""

    id: int

    def __str__(self) -> str:
        return str(self.id)


@dataclass(frozen=True, order=True)
class SubtaskRef:
    """Reference to subtask *child* of task *parent* (written ``"parent.child"``)."""

    parent: int
    child: int

    def __str__(self) -> str:
        return f"{self.parent}.{self.child}"


DependencyRef = Union[TaskRef, SubtaskRef]


def _positive_int(raw: str) -> int:
    value = int(raw)
    if value <= 0:
        raise ValueError(f"id must be positive: {raw!r}")
    return value


def parse_ref(raw: Any) -> DependencyRef:
    """Parse ``3``, ``"3"`` or ``"3.2"`` into a ref. Raises ``ValueError``."""
    if isinstance(raw, (TaskRef, SubtaskRef)):
        return raw
    if isinstance(raw, bool):
        raise ValueError(f"not a task id: {raw!r}")
    if isinstance(raw, int):
        if raw <= 0:
            raise ValueError(f"id must be positive: {raw!r}")
        return TaskRef(raw)
    if isinstance(raw, str):
        text = raw.strip()
        if "." in text:
            parent, _, child = text.partition(".")
            return SubtaskRef(_positive_int(parent), _positive_int(child))
        return TaskRef(_positive_int(text))
    raise ValueError(f"not a task id: {raw!r}")


def parse_subtask_dependency(raw: Any, owner_id: int) -> DependencyRef:
    """Parse one entry of a subtask's dependency list.

    A bare int below :data:`SIBLING_ID_THRESHOLD` is the legacy spelling of a
    sibling reference and becomes ``SubtaskRef(owner_id, raw)``.
    """
    if isinstance(raw, int) and not isinstance(raw, bool) and 0 < raw < SIBLING_ID_THRESHOLD:
        return SubtaskRef(owner_id, raw)
    return parse_ref(raw)


def ref_sort_key(ref: DependencyRef) -> tuple[int, int, int]:
    """Tasks before subtasks, then numerically."""
    if isinstance(ref, TaskRef):
        return (0, ref.id, 0)
    return (1, ref.parent, ref.child)


# ── Records ──────────────────────────────────────────────────────────


@dataclass
class Subtask:
    id: int
    title: str = ""
    description: str = ""
    details: str = ""
    test_strategy: str = ""
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority | None = None
    dependencies: list[DependencyRef] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_done(self) -> bool:
        return self.status in DONE_STATUSES


@dataclass
class Task:
    id: int
    title: str = ""
    description: str = ""
    details: str = ""
    test_strategy: str = ""
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority | None = None
    dependencies: list[DependencyRef] | None = None
    subtasks: list[Subtask] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_done(self) -> bool:
        return self.status in DONE_STATUSES

    def get_subtask(self, subtask_id: int) -> Subtask | None:
        for st in self.subtasks:
            if st.id == subtask_id:
                return st
        return None

    def next_subtask_id(self) -> int:
        return max((st.id for st in self.subtasks), default=0) + 1


@dataclass
class TagMetadata:
    created: str = ""
    updated: str = ""
    description: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class Tag:
    tasks: list[Task] = field(default_factory=list)
    metadata: TagMetadata = field(default_factory=TagMetadata)

    def get_task(self, task_id: int) -> Task | None:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None

    def next_task_id(self) -> int:
        return max((t.id for t in self.tasks), default=0) + 1

    def completed_count(self) -> int:
        return sum(1 for t in self.tasks if t.is_done)

    def touch(self) -> None:
        self.metadata.updated = now_iso()


def ref_exists(tasks: list[Task], ref: DependencyRef) -> bool:
    """Return ``True`` if *ref* names a task or subtask present in *tasks*."""
    for t in tasks:
        if isinstance(ref, TaskRef) and t.id == ref.id:
            return True
        if isinstance(ref, SubtaskRef) and t.id == ref.parent:
            return t.get_subtask(ref.child) is not None
    return False


@dataclass
class TaggedDocument:
    """Mapping of tag name to :class:`Tag`; ``master`` is always present."""

    tags: dict[str, Tag] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.ensure_master()

    def ensure_master(self) -> None:
        if MASTER_TAG not in self.tags:
            self.tags[MASTER_TAG] = Tag(metadata=TagMetadata(description=MASTER_DESCRIPTION))

    def __contains__(self, name: object) -> bool:
        return name in self.tags

    def get(self, name: str) -> Tag | None:
        return self.tags.get(name)

    def names(self) -> list[str]:
        return list(self.tags)


@dataclass
class State:
    """Contents of ``state.json``."""

    current_tag: str = MASTER_TAG
    last_switched: str | None = None
    branch_tag_mapping: dict[str, str] = field(default_factory=dict)
    migration_notice_shown: bool = False
    extra: dict[str, Any] = field(default_factory=dict)
