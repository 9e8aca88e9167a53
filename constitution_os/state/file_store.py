from __future__ import annotations

import json
import os
import uuid
from pathlib import Path
from typing import Any, Callable, Dict

from ..contracts.errors import invalid_state


def read_json(path: Path, fallback: Callable[[], Dict[str, Any]]) -> Any:
    """Missing or blank file -> fallback(). Unparseable content is an error, not a reset."""
    if not path.exists():
        return fallback()
    raw = path.read_text(encoding="utf-8")
    if not raw.strip():
        return fallback()
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise invalid_state("STATE_JSON_INVALID", f"{path}: {e}") from e


def write_json_atomic(path: Path, data: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # unique per writer so a stale tmp from a crashed process is never reused
    tmp = path.with_name(f"{path.name}.tmp-{os.getpid()}-{uuid.uuid4().hex[:8]}")
    try:
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, allow_nan=False)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    finally:
        tmp.unlink(missing_ok=True)


def append_jsonl(path: Path, entry: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    line = json.dumps(entry, ensure_ascii=False, allow_nan=False) + "\n"
    with open(path, "a", encoding="utf-8") as f:
        f.write(line)
        f.flush()
        os.fsync(f.fileno())


def ensure_file(path: Path) -> None:
    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch()
