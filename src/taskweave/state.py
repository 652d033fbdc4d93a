"""Side-state (``state.json``): current tag and branch-to-tag mapping.

A missing or malformed state file is never fatal; readers fall back to
defaults so the current tag resolves to ``master``.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from taskweave import log
from taskweave.io_utils import PathLike, read_json, write_json
from taskweave.tasks.model import State, now_iso
from taskweave.tasks.validate import parse_state


def read_state(path: PathLike) -> State:
    p = Path(path)
    if not p.exists():
        return State()
    try:
        return parse_state(read_json(p))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, ValueError) as exc:
        log.warn(f"Ignoring malformed state file {p}: {exc}")
        return State()


def state_to_dict(state: State) -> dict[str, Any]:
    return {
        "currentTag": state.current_tag,
        "lastSwitched": state.last_switched,
        "branchTagMapping": dict(state.branch_tag_mapping),
        "migrationNoticeShown": state.migration_notice_shown,
        **state.extra,
    }


def write_state(path: PathLike, state: State) -> None:
    write_json(path, state_to_dict(state))


def switch_current_tag(path: PathLike, tag: str) -> State:
    state = read_state(path)
    state.current_tag = tag
    state.last_switched = now_iso()
    write_state(path, state)
    log.debug(f"Current tag set to '{tag}'")
    return state


def update_branch_tag_mapping(path: PathLike, branch: str, tag: str) -> State:
    state = read_state(path)
    state.branch_tag_mapping[branch] = tag
    write_state(path, state)
    return state


def get_tag_for_branch(path: PathLike, branch: str) -> str | None:
    return read_state(path).branch_tag_mapping.get(branch)
