from __future__ import annotations

import faulthandler
import os
import socket
import sys
import tempfile
import threading
import traceback
from pathlib import Path
from types import FrameType
from typing import Dict

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Logs and work dirs must not land inside the source tree during tests.
_SESSION_DIR = Path(tempfile.mkdtemp(prefix="templateflow-tests-"))
os.environ.setdefault("TEMPLATEFLOW_WORK_DIR", str(_SESSION_DIR / "work"))
os.environ.setdefault("TEMPLATEFLOW_IO_LOG_DIR", str(_SESSION_DIR / "logs"))

faulthandler.enable()  # Ensure crashes emit tracebacks.
socket.setdefaulttimeout(10)

_CONFIG_ENV = (
    "TEMPLATEFLOW_CACHE_DIR",
    "TEMPLATEFLOW_CACHE_TTL_SEC",
    "TEMPLATEFLOW_STORE_URL",
    "TEMPLATEFLOW_STORE_ROOT",
    "TEMPLATEFLOW_STORE_TOKEN",
    "TEMPLATEFLOW_TIMEOUT_SEC",
    "TEMPLATEFLOW_RETRY_ATTEMPTS",
    "TEMPLATEFLOW_RETRY_BACKOFF_MS",
    "TEMPLATEFLOW_QUALITY_HINT",
    "TEMPLATEFLOW_LOG_LEVEL",
    "TEMPLATEFLOW_LOG_MAX_BYTES",
    "TEMPLATEFLOW_LOG_BACKUPS",
)


@pytest.fixture(autouse=True)
def _isolated_config_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _CONFIG_ENV:
        monkeypatch.delenv(name, raising=False)


def _snapshot_thread_stacks() -> Dict[int, str]:
    frames: Dict[int, FrameType] = sys._current_frames()  # type: ignore[attr-defined]
    stacks: Dict[int, str] = {}
    for ident, frame in frames.items():
        stacks[ident] = "".join(traceback.format_stack(frame))
    return stacks


@pytest.fixture(autouse=True, scope="session")
def _thread_diagnostics() -> None:
    """Dump live non-daemon threads (e.g. upload workers) at the end of the session."""

    yield

    stacks = _snapshot_thread_stacks()
    lingering: list[threading.Thread] = []
    for thread in threading.enumerate():
        if thread.daemon or thread is threading.current_thread():
            continue
        thread.join(timeout=2)
        if thread.is_alive():
            lingering.append(thread)

    if lingering:
        print("\n[pytest] lingering threads detected:", file=sys.stderr)
        for thread in lingering:
            stack = stacks.get(thread.ident, "<no stack>\n")
            print(
                f"- Thread {thread.name} (ident={thread.ident}) still alive after tests", file=sys.stderr
            )
            print(stack, file=sys.stderr)
