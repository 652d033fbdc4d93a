"""taskweave CLI: tag and task management over ``.taskmaster/tasks/tasks.json``.

Installed as the ``taskweave`` console_script. Every command calls the core
through :func:`taskweave.errors.run_command` and exits 1 on a failed envelope.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import click

from taskweave import __version__
from taskweave.config import Config


CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])


@dataclass
class CliContext:
    cfg: Config
    tag: str | None
    as_json: bool


def _split_ids(values: tuple[str, ...] | list[str]) -> list[str]:
    """Accept ``3 4.1`` as well as ``3,4.1``."""
    ids: list[str] = []
    for value in values:
        ids.extend(part.strip() for part in value.split(",") if part.strip())
    return ids


def _emit(
    ctx: click.Context,
    envelope: dict[str, Any],
    render: Callable[[Any], None] | None = None,
) -> None:
    state: CliContext = ctx.obj
    if state.as_json:
        click.echo(json.dumps(envelope, indent=2, ensure_ascii=False))
    elif envelope["success"] and render is not None:
        render(envelope["data"])
    if not envelope["success"]:
        ctx.exit(1)


class ClickConfirmer:
    """Two-step delete confirmation: a yes/no question, then typing the tag name."""

    def confirm(self, tag: str, task_count: int) -> bool:
        return click.confirm(
            f'Tag "{tag}" contains {task_count} task(s). Delete it permanently?',
            default=False,
        )

    def confirm_name(self, tag: str) -> str:
        return click.prompt(f'Type "{tag}" to confirm', default="", show_default=False)


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option("--file", "-f", "tasks_file", default="", help="Tasks file (default: .taskmaster/tasks/tasks.json)")
@click.option("--project-root", default="", help="Project root (default: nearest .taskmaster/.git ancestor)")
@click.option("--tag", default=None, help="Operate on this tag instead of the current one")
@click.option("--json", "as_json", is_flag=True, help="Print the result envelope as JSON")
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.version_option(__version__, prog_name="taskweave")
@click.pass_context
def main(
    ctx: click.Context,
    tasks_file: str,
    project_root: str,
    tag: str | None,
    as_json: bool,
    verbose: bool,
) -> None:
    """taskweave: tagged task lists with dependency-aware scheduling.

    \b
    EXAMPLES:
      taskweave add-tag feature-auth --copy-from-current
      taskweave use-tag feature-auth
      taskweave add-task --title "Login form" --dependencies 1,2
      taskweave add-dependency --id 3 --depends-on 2.1
      taskweave next
    """
    from taskweave import log as tlog

    tlog.set_verbose(verbose)
    tlog.set_silent(as_json)

    cfg = Config(
        project_root=Path(project_root) if project_root else None,
        tasks_file=tasks_file,
        verbose=verbose,
    )
    ctx.obj = CliContext(cfg=cfg, tag=tag, as_json=as_json)


def _tags(ctx: click.Context):
    from taskweave.tags import TagContext

    return TagContext(ctx.obj.cfg)


# ── Tag commands ─────────────────────────────────────────────────


@main.command("tags")
@click.option("--show-metadata", is_flag=True, help="Include created/updated dates and descriptions")
@click.pass_context
def list_tags_cmd(ctx: click.Context, show_metadata: bool) -> None:
    """List all tags, current tag first."""
    from rich.markup import escape
    from rich.table import Table

    from taskweave import log as tlog
    from taskweave.errors import run_command

    def render(data: dict[str, Any]) -> None:
        table = Table(show_header=True, header_style="bold")
        table.add_column("Tag")
        table.add_column("Tasks", justify="right")
        table.add_column("Completed", justify="right")
        if show_metadata:
            table.add_column("Created")
            table.add_column("Description")
        for row in data["tags"]:
            name = f"[green]* {row['name']}[/green]" if row["isCurrent"] else f"  {row['name']}"
            cells = [name, str(row["taskCount"]), str(row["completedTasks"])]
            if show_metadata:
                cells += [row.get("created", "")[:10], escape(row.get("description", ""))]
            table.add_row(*cells)
        tlog.console.print(table)

    _emit(ctx, run_command(_tags(ctx).list_tags, show_metadata=show_metadata), render)


@main.command("add-tag")
@click.argument("name", required=False)
@click.option("--copy-from-current", is_flag=True, help="Copy tasks from the current tag")
@click.option("--copy-from", "copy_from", default=None, help="Copy tasks from this tag")
@click.option("--from-branch", is_flag=True, help="Name the tag after the current git branch")
@click.option("--description", "-d", default=None, help="Tag description")
@click.pass_context
def add_tag_cmd(
    ctx: click.Context,
    name: str | None,
    copy_from_current: bool,
    copy_from: str | None,
    from_branch: bool,
    description: str | None,
) -> None:
    """Create a new tag, empty or copied from another tag."""
    from taskweave import git_ops
    from taskweave.errors import ValidationError, fail, run_command

    tags = _tags(ctx)
    if from_branch:
        branch = git_ops.current_branch(ctx.obj.cfg.project_root)
        if not branch:
            envelope = fail(ValidationError.code, "Could not determine the current git branch")
        else:
            envelope = run_command(
                tags.create_tag_from_branch,
                branch,
                copy_from_current=copy_from_current,
                copy_from_tag=copy_from,
                description=description,
            )
    elif not name:
        raise click.UsageError("Provide a tag name or use --from-branch.")
    else:
        envelope = run_command(
            tags.create_tag,
            name,
            copy_from_current=copy_from_current,
            copy_from_tag=copy_from,
            description=description,
        )
    _emit(ctx, envelope)


@main.command("use-tag")
@click.argument("name")
@click.pass_context
def use_tag_cmd(ctx: click.Context, name: str) -> None:
    """Switch the current tag."""
    from taskweave import log as tlog
    from taskweave.errors import run_command

    def render(data: dict[str, Any]) -> None:
        nxt = data["nextTask"]
        tlog.info(f"{data['taskCount']} task(s) in '{data['currentTag']}'")
        if nxt:
            tlog.info(f"Next task: {nxt['id']} - {nxt['title']}")

    _emit(ctx, run_command(_tags(ctx).use_tag, name), render)


@main.command("rename-tag")
@click.argument("old")
@click.argument("new")
@click.pass_context
def rename_tag_cmd(ctx: click.Context, old: str, new: str) -> None:
    """Rename a tag (``master`` cannot be renamed)."""
    from taskweave.errors import run_command

    _emit(ctx, run_command(_tags(ctx).rename_tag, old, new))


@main.command("copy-tag")
@click.argument("source")
@click.argument("target")
@click.option("--description", "-d", default=None, help="Description for the new tag")
@click.pass_context
def copy_tag_cmd(ctx: click.Context, source: str, target: str, description: str | None) -> None:
    """Copy every task of SOURCE into a new tag TARGET."""
    from taskweave.errors import run_command

    _emit(ctx, run_command(_tags(ctx).copy_tag, source, target, description=description))


@main.command("delete-tag")
@click.argument("names", nargs=-1, required=True)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompts")
@click.pass_context
def delete_tag_cmd(ctx: click.Context, names: tuple[str, ...], yes: bool) -> None:
    """Delete one or more tags and all of their tasks."""
    from taskweave.errors import run_command

    confirmer = None if ctx.obj.as_json else ClickConfirmer()
    _emit(ctx, run_command(_tags(ctx).delete_tags, list(names), force=yes, confirm=confirmer))


@main.command("switch-branch-tag")
@click.option("--create", is_flag=True, help="Create the tag if it does not exist")
@click.option("--copy-from-current", is_flag=True, help="Copy tasks from the current tag when creating")
@click.pass_context
def switch_branch_tag_cmd(ctx: click.Context, create: bool, copy_from_current: bool) -> None:
    """Switch to the tag mapped to the current git branch."""
    from taskweave import log as tlog
    from taskweave.errors import run_command

    def render(data: dict[str, Any]) -> None:
        if not data.get("switched"):
            tlog.warn(f"Tag not switched ({data.get('reason', 'unknown')})")

    _emit(
        ctx,
        run_command(_tags(ctx).switch_branch_tag, create_if_missing=create, copy_from_current=copy_from_current),
        render,
    )


# ── Task commands ────────────────────────────────────────────────


@main.command("next")
@click.pass_context
def next_cmd(ctx: click.Context) -> None:
    """Show the next task to work on."""
    from rich.markup import escape

    from taskweave import log as tlog
    from taskweave.errors import run_command
    from taskweave.tasks import ops

    def render(data: dict[str, Any]) -> None:
        task = data["nextTask"]
        if task is None:
            return
        tlog.console.print(f"[bold]Next task:[/bold] [cyan]{task['id']}[/cyan] {escape(task['title'])}")
        tlog.console.print(f"Priority: {task.get('priority', 'medium')}")
        if task.get("dependencies"):
            tlog.console.print(f"Dependencies: {', '.join(str(d) for d in task['dependencies'])}")
        if "complexityScore" in task:
            tlog.console.print(f"Complexity: {task['complexityScore']}")
        if task.get("description"):
            tlog.console.print(escape(task["description"]))

    _emit(ctx, run_command(ops.next_task, ctx.obj.cfg, tag=ctx.obj.tag), render)


_STATUS_STYLES = {
    "done": "green",
    "completed": "green",
    "in-progress": "yellow",
    "review": "magenta",
    "deferred": "dim",
    "cancelled": "red",
}


def _status_cell(status: str) -> str:
    style = _STATUS_STYLES.get(status)
    return f"[{style}]{status}[/{style}]" if style else status


@main.command("list")
@click.option("--status", "-s", default=None, help="Filter by status (comma-separated, or 'all')")
@click.option("--with-subtasks", is_flag=True, help="Show subtasks under their parent")
@click.pass_context
def list_cmd(ctx: click.Context, status: str | None, with_subtasks: bool) -> None:
    """List the tasks of the current tag."""
    from rich.markup import escape
    from rich.table import Table

    from taskweave import log as tlog
    from taskweave.errors import run_command
    from taskweave.tasks import ops

    def render(data: dict[str, Any]) -> None:
        table = Table(show_header=True, header_style="bold")
        table.add_column("ID", justify="right")
        table.add_column("Title")
        table.add_column("Status")
        table.add_column("Priority")
        table.add_column("Dependencies")
        for task in data["tasks"]:
            deps = ", ".join(str(d) for d in task.get("dependencies") or [])
            table.add_row(
                str(task["id"]),
                escape(task["title"]),
                _status_cell(task["status"]),
                task.get("priority", ""),
                deps or "-",
            )
            if with_subtasks:
                for st in task["subtasks"]:
                    table.add_row(
                        f"{task['id']}.{st['id']}",
                        f"  └ {escape(st['title'])}",
                        _status_cell(st["status"]),
                        st.get("priority", ""),
                        ", ".join(str(d) for d in st.get("dependencies") or []) or "-",
                    )
        tlog.console.print(table)
        stats = data["stats"]
        tlog.console.print(
            f"{stats['completed']}/{stats['total']} tasks done ({stats['completionPercentage']:.0f}%), "
            f"{stats['subtasks']['completed']}/{stats['subtasks']['total']} subtasks done"
        )

    _emit(ctx, run_command(ops.list_tasks, ctx.obj.cfg, status=status, tag=ctx.obj.tag), render)


@main.command("show")
@click.argument("task_id")
@click.pass_context
def show_cmd(ctx: click.Context, task_id: str) -> None:
    """Show one task or subtask (e.g. ``show 3`` or ``show 3.1``)."""
    from rich.markup import escape

    from taskweave import log as tlog
    from taskweave.errors import run_command
    from taskweave.tasks import ops

    def render(data: dict[str, Any]) -> None:
        task = data["task"]
        label = f"{data['parentTask']['id']}.{task['id']}" if data["isSubtask"] else str(task["id"])
        tlog.console.print(f"[bold]Task {label}:[/bold] {escape(task['title'])}")
        tlog.console.print(f"Status: {_status_cell(task['status'])}")
        if task.get("priority"):
            tlog.console.print(f"Priority: {task['priority']}")
        if task.get("dependencies"):
            tlog.console.print(f"Dependencies: {', '.join(str(d) for d in task['dependencies'])}")
        if data["isSubtask"]:
            parent = data["parentTask"]
            tlog.console.print(f"Parent: {parent['id']} {escape(parent['title'])}")
        for key in ("description", "details", "testStrategy"):
            if task.get(key):
                tlog.console.print(f"\n[bold]{key}[/bold]\n{escape(task[key])}")
        for st in task.get("subtasks", []):
            tlog.console.print(f"  {task['id']}.{st['id']} {_status_cell(st['status'])} {escape(st['title'])}")

    _emit(ctx, run_command(ops.show_task, ctx.obj.cfg, task_id, tag=ctx.obj.tag), render)


@main.command("add-task")
@click.option("--title", "-t", required=True, help="Task title")
@click.option("--description", "-d", default="", help="Task description")
@click.option("--details", default="", help="Implementation details")
@click.option("--test-strategy", default="", help="How to verify the task")
@click.option("--dependencies", default="", help="Comma-separated ids (e.g. 1,2,3.1)")
@click.option("--priority", "-p", default=None, help="high, medium or low (default: medium)")
@click.pass_context
def add_task_cmd(
    ctx: click.Context,
    title: str,
    description: str,
    details: str,
    test_strategy: str,
    dependencies: str,
    priority: str | None,
) -> None:
    """Add a task to the current tag."""
    from taskweave.errors import run_command
    from taskweave.tasks import ops

    envelope = run_command(
        ops.add_task,
        ctx.obj.cfg,
        title=title,
        description=description,
        details=details,
        test_strategy=test_strategy,
        dependencies=_split_ids([dependencies]),
        priority=priority,
        tag=ctx.obj.tag,
    )
    _emit(ctx, envelope)


@main.command("add-subtask")
@click.option("--parent", "-p", "parent_id", required=True, help="Parent task id")
@click.option("--task-id", "-i", "existing_task_id", default=None, help="Convert this existing task into the subtask")
@click.option("--title", "-t", default=None, help="Subtask title")
@click.option("--description", "-d", default="", help="Subtask description")
@click.option("--details", default="", help="Implementation details")
@click.option("--dependencies", default="", help="Comma-separated ids (e.g. 2,1.1)")
@click.option("--status", "-s", default=None, help="Initial status (default: pending)")
@click.pass_context
def add_subtask_cmd(
    ctx: click.Context,
    parent_id: str,
    existing_task_id: str | None,
    title: str | None,
    description: str,
    details: str,
    dependencies: str,
    status: str | None,
) -> None:
    """Add a subtask, or convert an existing task into one."""
    from taskweave.errors import run_command
    from taskweave.tasks import ops

    if existing_task_id is None and not title:
        raise click.UsageError("Provide --title for a new subtask or --task-id to convert a task.")
    envelope = run_command(
        ops.add_subtask,
        ctx.obj.cfg,
        parent_id,
        existing_task_id=existing_task_id,
        title=title,
        description=description,
        details=details,
        dependencies=_split_ids([dependencies]),
        status=status,
        tag=ctx.obj.tag,
    )
    _emit(ctx, envelope)


@main.command("remove-task")
@click.argument("ids", nargs=-1, required=True)
@click.pass_context
def remove_task_cmd(ctx: click.Context, ids: tuple[str, ...]) -> None:
    """Remove tasks or subtasks (e.g. ``remove-task 3 4.1``)."""
    from taskweave import log as tlog
    from taskweave.errors import run_command
    from taskweave.tasks import ops

    def render(data: dict[str, Any]) -> None:
        for r in data["results"]:
            if r.get("skipped"):
                tlog.warn(r["reason"])

    _emit(ctx, run_command(ops.remove_task, ctx.obj.cfg, _split_ids(ids), tag=ctx.obj.tag), render)


@main.command("remove-subtask")
@click.argument("subtask_id")
@click.option("--convert", is_flag=True, help="Turn the subtask into a standalone task instead of deleting it")
@click.pass_context
def remove_subtask_cmd(ctx: click.Context, subtask_id: str, convert: bool) -> None:
    """Remove a subtask (e.g. ``remove-subtask 3.1``)."""
    from taskweave.errors import run_command
    from taskweave.tasks import ops

    _emit(
        ctx,
        run_command(ops.remove_subtask, ctx.obj.cfg, subtask_id, convert_to_task=convert, tag=ctx.obj.tag),
    )


@main.command("clear-subtasks")
@click.argument("ids", nargs=-1)
@click.option("--all", "all_tasks", is_flag=True, help="Clear the subtasks of every task in the tag")
@click.pass_context
def clear_subtasks_cmd(ctx: click.Context, ids: tuple[str, ...], all_tasks: bool) -> None:
    """Remove every subtask of the given tasks."""
    from taskweave import log as tlog
    from taskweave.errors import run_command
    from taskweave.tasks import ops

    if not ids and not all_tasks:
        raise click.UsageError("Provide task ids or use --all.")

    def render(data: dict[str, Any]) -> None:
        for r in data["results"]:
            if r.get("skipped"):
                tlog.warn(r["reason"])

    _emit(
        ctx,
        run_command(ops.clear_subtasks, ctx.obj.cfg, _split_ids(ids), all_tasks=all_tasks, tag=ctx.obj.tag),
        render,
    )


@main.command("set-status")
@click.argument("ids", nargs=-1, required=True)
@click.option("--status", "-s", required=True, help="pending, in-progress, review, done, deferred or cancelled")
@click.pass_context
def set_status_cmd(ctx: click.Context, ids: tuple[str, ...], status: str) -> None:
    """Set the status of tasks or subtasks."""
    from taskweave.errors import run_command
    from taskweave.tasks import ops

    _emit(ctx, run_command(ops.set_task_status, ctx.obj.cfg, _split_ids(ids), status, tag=ctx.obj.tag))


# ── Dependency commands ──────────────────────────────────────────


@main.command("add-dependency")
@click.option("--id", "-i", "task_id", required=True, help="Task or subtask that gains the dependency")
@click.option("--depends-on", "-d", "dependency_id", required=True, help="Task or subtask it depends on")
@click.pass_context
def add_dependency_cmd(ctx: click.Context, task_id: str, dependency_id: str) -> None:
    """Make one task depend on another."""
    from taskweave.errors import run_command
    from taskweave.tasks import ops

    _emit(ctx, run_command(ops.add_dependency, ctx.obj.cfg, task_id, dependency_id, tag=ctx.obj.tag))


@main.command("remove-dependency")
@click.option("--id", "-i", "task_id", required=True, help="Task or subtask that loses the dependency")
@click.option("--depends-on", "-d", "dependency_id", required=True, help="Dependency to remove")
@click.pass_context
def remove_dependency_cmd(ctx: click.Context, task_id: str, dependency_id: str) -> None:
    """Remove a dependency edge."""
    from taskweave.errors import run_command
    from taskweave.tasks import ops

    _emit(ctx, run_command(ops.remove_dependency, ctx.obj.cfg, task_id, dependency_id, tag=ctx.obj.tag))


@main.command("validate-dependencies")
@click.pass_context
def validate_dependencies_cmd(ctx: click.Context) -> None:
    """Report self, missing and circular dependencies."""
    from taskweave.errors import run_command
    from taskweave.tasks import ops

    _emit(ctx, run_command(ops.validate_dependencies, ctx.obj.cfg, tag=ctx.obj.tag))


@main.command("fix-dependencies")
@click.pass_context
def fix_dependencies_cmd(ctx: click.Context) -> None:
    """Remove invalid dependencies and break cycles."""
    from taskweave.errors import run_command
    from taskweave.tasks import ops

    _emit(ctx, run_command(ops.fix_dependencies, ctx.obj.cfg, tag=ctx.obj.tag))


@main.command("deps")
@click.argument("task_id")
@click.pass_context
def deps_cmd(ctx: click.Context, task_id: str) -> None:
    """Show the dependency chain of a task."""
    from rich.markup import escape

    from taskweave import log as tlog
    from taskweave.errors import run_command
    from taskweave.tasks import ops

    def render(data: dict[str, Any]) -> None:
        for line in data["chain"]:
            tlog.console.print(escape(line))

    _emit(ctx, run_command(ops.dependency_tree, ctx.obj.cfg, task_id, tag=ctx.obj.tag), render)
