from __future__ import annotations

import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Optional

from solution_upgrader.core.errors import ExecutionFailure

logger = logging.getLogger(__name__)


EXECUTOR_LOG_NAME = "executor.log"


def expand_command(command: list[str], *, config: Path, solution: Path, workdir: Path) -> list[str]:
    values = {"config": str(config), "solution": str(solution), "workdir": str(workdir)}
    return [part.format(**values) for part in command]


def _build_env() -> dict[str, str]:
    """Environment for the executor: the current interpreter's bin dir first on PATH."""
    env = dict(os.environ)
    bin_dir = str(Path(sys.executable).parent)
    env["PATH"] = bin_dir + os.pathsep + env.get("PATH", "")
    return env


def start_executor(
    command: list[str],
    *,
    config: Path,
    solution: Path,
    workdir: Path,
) -> Optional[subprocess.Popen]:
    """Start the external executor detached from our output; None if no command is set.

    The executor's stdout/stderr go to ``executor.log`` in the work directory so a
    chatty executor can never block on a full pipe.
    """
    if not command:
        logger.info("No executor command configured; waiting for an external executor.")
        return None

    args = expand_command(command, config=config, solution=solution, workdir=workdir)
    log_path = workdir / EXECUTOR_LOG_NAME
    logger.debug("Starting executor: %s", " ".join(args))
    try:
        workdir.mkdir(parents=True, exist_ok=True)
        with open(log_path, "w", encoding="utf-8") as log:
            return subprocess.Popen(
                args,
                cwd=str(workdir),
                stdout=log,
                stderr=subprocess.STDOUT,
                env=_build_env(),
            )
    except OSError as e:
        raise ExecutionFailure(
            code="E_EXECUTOR_START",
            message=f"could not start executor '{args[0]}': {e}",
            file=str(workdir),
        ) from e


def stop_executor(proc: Optional[subprocess.Popen], grace_s: float = 5.0) -> None:
    if proc is None or proc.poll() is not None:
        return
    logger.info("Stopping executor (pid %s)...", proc.pid)
    proc.terminate()
    try:
        proc.wait(timeout=grace_s)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()
