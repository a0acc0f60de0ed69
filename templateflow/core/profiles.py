from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv


load_dotenv(override=False)

ROOT_ENV = "TEMPLATEFLOW_ROOT"
WORK_DIR_ENV = "TEMPLATEFLOW_WORK_DIR"


def _project_root() -> Path:
    env = os.getenv(ROOT_ENV)
    if env:
        return Path(env)
    # In source layout, this file is under <root>/templateflow/core
    return Path(__file__).resolve().parents[2]


def _config_dir() -> Path:
    return _project_root() / "templateflow" / "config"


def _work_dir() -> Path:
    env = os.getenv(WORK_DIR_ENV)
    if env:
        return Path(env).expanduser()
    return _project_root() / "templateflow" / "work"


def ensure_work_dirs() -> dict[str, Path]:
    """Create the writable runtime directories and return them by name."""

    base = _work_dir()
    cache = base / "cache" / "templates"
    out = base / "out"
    tmp = base / "tmp"
    logs = base / "logs"
    for p in (cache, out, tmp, logs):
        p.mkdir(parents=True, exist_ok=True)
    return {"cache": cache, "out": out, "tmp": tmp, "logs": logs}


def resolve_config_path(path: str | Path) -> Path:
    p = Path(path)
    if p.is_absolute():
        return p
    # Support paths with or without leading 'templateflow/'
    parts = p.parts
    if parts and parts[0] == "templateflow":
        return _project_root() / p
    return _config_dir() / p
