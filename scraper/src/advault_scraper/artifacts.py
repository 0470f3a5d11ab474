"""Local artifact helpers: per-job directories, debug excerpts, atomic JSON files."""

from __future__ import annotations

import json
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .logging import jlog

RAW_EXCERPT_LIMIT = 5000


@dataclass(frozen=True)
class JobDirs:
    root: Path
    rendered: Path
    debug: Path


def job_dirs(output_dir: str | os.PathLike[str], job_id: str) -> JobDirs:
    """Create (if needed) and return the directory layout for one job."""

    root = Path(output_dir) / job_id
    dirs = JobDirs(root=root, rendered=root / "rendered", debug=root / "debug")
    for path in (dirs.root, dirs.rendered, dirs.debug):
        path.mkdir(parents=True, exist_ok=True)
    return dirs


def dump_raw_excerpt(path: str | os.PathLike[str], raw: Any, *, limit: int = RAW_EXCERPT_LIMIT) -> Path | None:
    """Write the first ``limit`` characters of an undecodable payload for inspection.

    Best effort: a failing debug write is logged and never masks the original
    decoding error.
    """

    target = Path(path)
    text = raw if isinstance(raw, str) else json.dumps(raw, default=str)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text[:limit], encoding="utf-8")
    except OSError as exc:
        jlog("error", event="raw_excerpt_write_error", path=str(target), error=str(exc))
        return None
    jlog("info", event="raw_excerpt_saved", path=str(target), chars=min(len(text), limit))
    return target


def write_json_atomic(path: str | os.PathLike[str], payload: Any, *, backup: bool = False) -> None:
    """Replace ``path`` with ``payload`` so readers never see a half-written file."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = target.with_name(target.name + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
    os.replace(tmp, target)
    if backup:
        shutil.copyfile(target, backup_path(target))


def backup_path(path: str | os.PathLike[str]) -> Path:
    target = Path(path)
    return target.with_name(f"{target.stem}-backup{target.suffix}")


def read_json(path: str | os.PathLike[str]) -> Any:
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)


__all__ = ["RAW_EXCERPT_LIMIT", "JobDirs", "backup_path", "dump_raw_excerpt", "job_dirs", "read_json", "write_json_atomic"]
