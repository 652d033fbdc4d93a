"""UTF-8 text and JSON file helpers shared by the store and the side-state."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

PathLike = Path | str


def read_text(path: PathLike, errors: str = "strict") -> str:
    """Read path as text with UTF-8 encoding."""
    p = path if isinstance(path, Path) else Path(path)
    return p.read_text(encoding="utf-8", errors=errors)


def write_text(path: PathLike, text: str) -> None:
    """Write text to path with UTF-8 encoding."""
    p = path if isinstance(path, Path) else Path(path)
    p.write_text(text, encoding="utf-8")


def read_json(path: PathLike) -> Any:
    """Parse a JSON file. Raises ``FileNotFoundError`` / ``json.JSONDecodeError``."""
    return json.loads(read_text(path))


def dump_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def replace_text(path: PathLike, text: str) -> None:
    """Rewrite *path* in full via a sibling temp file and ``os.replace``.

    Readers see either the old content or the new content, never a torn file.
    Concurrent writers are not arbitrated: the last replace wins.
    """
    p = path if isinstance(path, Path) else Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{p.name}.", suffix=".tmp", dir=p.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
        # os.replace overwrites destination if it exists (required on Windows)
        os.replace(tmp_name, p)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def write_json(path: PathLike, data: Any) -> None:
    replace_text(path, dump_json(data))
