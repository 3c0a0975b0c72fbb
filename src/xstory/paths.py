"""Output path helpers for xstory runs."""

from __future__ import annotations

import os
import re
from datetime import datetime
from pathlib import Path

__all__ = [
    "DEFAULT_OUTPUT_ROOT",
    "default_output_root",
    "ensure_directory",
    "resolve_output_path",
    "run_directory",
]

DEFAULT_OUTPUT_ROOT = Path("outputs") / "xstory"


def default_output_root() -> Path:
    override = os.getenv("XSTORY_OUTPUT_ROOT")
    return Path(override) if override else DEFAULT_OUTPUT_ROOT


def _normalise(path: Path | str) -> Path:
    return Path(path).expanduser()


def ensure_directory(path: Path | str) -> Path:
    resolved = _normalise(path)
    resolved.mkdir(parents=True, exist_ok=True)
    return resolved


def resolve_output_path(path: Path | str | None = None, *, create: bool = True) -> Path:
    candidate = _normalise(path or default_output_root())
    if create:
        candidate.mkdir(parents=True, exist_ok=True)
    return candidate


def run_directory(root: Path | str, pipeline_id: str, *, now: datetime | None = None) -> Path:
    """Timestamped directory for one pipeline run under *root*."""

    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    safe_id = re.sub(r"[^A-Za-z0-9_-]+", "_", pipeline_id).strip("_") or "run"
    return ensure_directory(_normalise(root) / f"{safe_id}-{stamp}")
