"""Wait for the out-of-process executor through sentinel files.

Protocol (the executor is the only writer of both files):

- ``progress.log``: free-form text, overwritten as work advances. Advisory only.
- ``result.log``: written once when the executor finishes. ``success`` means the
  upgrade succeeded; anything else, including an empty file, is the failure detail.

We delete a stale ``result.log`` before the executor starts, poll until a new one
appears, wait one more interval so the write is flushed, then read it.
"""

from __future__ import annotations

import asyncio
import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from solution_upgrader.core.errors import ExecutionFailure, ExecutionTimeout
from solution_upgrader.core.execute.executor import stop_executor

logger = logging.getLogger(__name__)


SUCCESS_TOKEN = "success"
PROGRESS_FILE_NAME = "progress.log"
RESULT_FILE_NAME = "result.log"
CANCEL_FILE_NAME = "cancel"

ProgressFn = Callable[[str], None]


@dataclass(frozen=True)
class ExecutionResult:
    ok: bool
    detail: str
    progress: list[str] = field(default_factory=list)


def read_shared(path: Path) -> str:
    # Python opens files with read/write sharing on Windows, so a concurrent
    # writer is never locked out.
    with open(path, encoding="utf-8", errors="replace", newline="") as f:
        return f.read()


class ExecutionSynchronizer:
    def __init__(
        self,
        workdir: str | Path,
        *,
        poll_interval: float = 0.5,
        timeout: Optional[float] = None,
        on_progress: Optional[ProgressFn] = None,
        process: Optional[subprocess.Popen] = None,
        exit_grace: float = 5.0,
    ) -> None:
        self.workdir = Path(workdir)
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.on_progress = on_progress
        self.process = process
        # How long a finished executor gets to exit on its own before it is stopped.
        self.exit_grace = exit_grace
        self._last_progress = ""
        self._progress: list[str] = []

    @property
    def progress_file(self) -> Path:
        return self.workdir / PROGRESS_FILE_NAME

    @property
    def result_file(self) -> Path:
        return self.workdir / RESULT_FILE_NAME

    @property
    def cancel_file(self) -> Path:
        return self.workdir / CANCEL_FILE_NAME

    def reset(self) -> None:
        """Remove sentinels left by a previous run. Call before starting the executor."""
        self.workdir.mkdir(parents=True, exist_ok=True)
        self.result_file.unlink(missing_ok=True)
        self.cancel_file.unlink(missing_ok=True)
        self._last_progress = ""
        self._progress = []

    def _relay_progress(self) -> None:
        if not self.progress_file.exists():
            return
        try:
            text = read_shared(self.progress_file)
        except OSError:
            # Mid-write; the next tick will see it.
            return
        text = text.replace("\r\n", "").replace("\n", "")
        if not text or text == self._last_progress:
            return
        self._last_progress = text
        self._progress.append(text)
        logger.info(text)
        if self.on_progress is not None:
            self.on_progress(text)

    async def _poll(self) -> ExecutionResult:
        logger.info("Waiting for operation to complete...")
        while not self.result_file.exists():
            self._relay_progress()
            await asyncio.sleep(self.poll_interval)

        await asyncio.sleep(self.poll_interval)
        try:
            content = read_shared(self.result_file)
        except OSError as e:
            raise ExecutionFailure(
                code="E_EXECUTION_FAILED",
                message=f"could not read result: {e}",
                file=str(self.result_file),
            ) from e

        if content == SUCCESS_TOKEN:
            logger.info("Operation completed successfully!")
            return ExecutionResult(ok=True, detail=content, progress=list(self._progress))

        logger.error("Error occurred while upgrading packages. %s", content)
        return ExecutionResult(ok=False, detail=content, progress=list(self._progress))

    def signal_stop(self) -> None:
        """Write the ``cancel`` sentinel for executors that watch the work directory."""
        try:
            self.workdir.mkdir(parents=True, exist_ok=True)
            self.cancel_file.write_text("cancel", encoding="utf-8")
        except OSError as e:
            logger.warning("Could not write cancel sentinel: %s", e)

    async def release_process(self, *, stop: bool) -> None:
        """Reap the executor we launched, terminating it if asked or if it lingers."""
        proc = self.process
        if proc is None or proc.poll() is not None:
            return
        if not stop:
            try:
                await asyncio.to_thread(proc.wait, self.exit_grace)
                return
            except subprocess.TimeoutExpired:
                logger.warning(
                    "Executor (pid %s) still running %gs after reporting; stopping it.",
                    proc.pid,
                    self.exit_grace,
                )
        await asyncio.to_thread(stop_executor, proc)

    async def wait(self) -> ExecutionResult:
        """Block until ``result.log`` appears; honour ``timeout`` and task cancellation.

        A launched executor is reaped before this returns or raises.
        """
        stop = True
        try:
            if self.timeout is None:
                result = await self._poll()
            else:
                result = await asyncio.wait_for(self._poll(), timeout=self.timeout)
            stop = False
            return result
        except asyncio.TimeoutError as e:
            self.signal_stop()
            raise ExecutionTimeout(
                code="E_EXECUTION_TIMEOUT",
                message=f"executor did not finish within {self.timeout:g}s",
                file=str(self.result_file),
            ) from e
        except asyncio.CancelledError:
            self.signal_stop()
            raise
        finally:
            await self.release_process(stop=stop)

    def run_in_background(self) -> asyncio.Task[ExecutionResult]:
        return asyncio.create_task(self.wait())

    async def ensure_success(self) -> ExecutionResult:
        result = await self.wait()
        if not result.ok:
            raise ExecutionFailure(
                code="E_EXECUTION_FAILED",
                message=f"Upgrade failed: {result.detail}",
                file=str(self.result_file),
            )
        return result
