"""
L4 Execution — Core subprocess runner.

The SINGLE PLACE where build commands are spawned.  Output is merged
(stdout + stderr), streamed line by line to an optional callback, and
the tail is kept for error reports.
"""

from __future__ import annotations

import logging
import os
import subprocess
import threading
import time
from collections import deque
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

TAIL_LINES = 200


def _run_subprocess(
    cmd: list[str],
    *,
    cwd: str | None = None,
    timeout: int = 3600,
    env_overrides: dict[str, str] | None = None,
    on_line: Callable[[str], None] | None = None,
) -> dict[str, Any]:
    """Run a command to completion, streaming its output.

    Args:
        cmd: Command list.
        cwd: Working directory for the command.
        timeout: Seconds before the process is killed.
        env_overrides: Extra env vars.
        on_line: Called with every output line (without newline).

    Returns:
        ``{"ok": True, "exit_code": 0, "output": "...", "elapsed_ms": N}``
        on success, ``{"ok": False, "exit_code": N | None, "error": "...",
        "output": "..."}`` on failure.  ``output`` is the last
        ``TAIL_LINES`` lines.
    """
    env = os.environ.copy()
    if env_overrides:
        env.update(env_overrides)

    logger.info("Running: %s (cwd=%s)", " ".join(cmd), cwd)
    start = time.monotonic()

    try:
        proc = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            cwd=cwd,
            env=env,
        )
    except OSError as e:
        return {"ok": False, "exit_code": None, "error": str(e), "output": ""}

    timed_out = threading.Event()

    def _kill() -> None:
        timed_out.set()
        proc.kill()

    timer = threading.Timer(timeout, _kill)
    timer.daemon = True
    tail: deque[str] = deque(maxlen=TAIL_LINES)

    timer.start()
    try:
        if proc.stdout:
            for line in proc.stdout:
                line = line.rstrip("\n")
                tail.append(line)
                if on_line:
                    on_line(line)
        proc.wait()
    except BaseException:
        proc.kill()
        proc.wait()
        raise
    finally:
        timer.cancel()

    elapsed_ms = int((time.monotonic() - start) * 1000)
    output = "\n".join(tail)

    if timed_out.is_set():
        return {
            "ok": False,
            "exit_code": None,
            "error": f"Command timed out ({timeout}s)",
            "output": output,
            "elapsed_ms": elapsed_ms,
        }

    if proc.returncode == 0:
        return {"ok": True, "exit_code": 0, "output": output, "elapsed_ms": elapsed_ms}

    return {
        "ok": False,
        "exit_code": proc.returncode,
        "error": f"Command failed (exit {proc.returncode})",
        "output": output,
        "elapsed_ms": elapsed_ms,
    }
