from __future__ import annotations

import subprocess
import tempfile
import time
from dataclasses import dataclass
from enum import Enum
from typing import IO

from vigil.engine.errors import EngineUnavailableError
from vigil.logging_setup import get_logger

logger = get_logger(__name__)


class ProcessState(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    KILLED = "killed"


@dataclass(frozen=True)
class ProcessOutcome:
    state: ProcessState
    returncode: int | None
    stdout: str
    stderr: str
    elapsed_seconds: float

    @property
    def succeeded(self) -> bool:
        return self.state == ProcessState.COMPLETED and self.returncode == 0


def _read_back(handle: IO[bytes]) -> str:
    handle.seek(0)
    return handle.read().decode("utf-8", errors="replace")


def run_polled(
    command: list[str],
    *,
    timeout_seconds: float,
    poll_interval_seconds: float = 0.1,
    input_text: str | None = None,
    env: dict[str, str] | None = None,
) -> ProcessOutcome:
    """Run ``command`` and poll it until it exits or ``timeout_seconds`` elapses.

    Output is spooled to temporary files so a chatty child can never block on
    a full pipe while we sleep between polls. On timeout the child is killed
    and reaped; the returned state is ``KILLED``.
    """
    with (
        tempfile.TemporaryFile() as stdin_file,
        tempfile.TemporaryFile() as stdout_file,
        tempfile.TemporaryFile() as stderr_file,
    ):
        if input_text is not None:
            stdin_file.write(input_text.encode("utf-8"))
            stdin_file.seek(0)
        try:
            process = subprocess.Popen(
                command,
                stdin=stdin_file if input_text is not None else subprocess.DEVNULL,
                stdout=stdout_file,
                stderr=stderr_file,
                env=env,
            )
        except FileNotFoundError as exc:
            raise EngineUnavailableError(command[0]) from exc

        state = ProcessState.RUNNING
        started = time.monotonic()
        while state == ProcessState.RUNNING:
            if process.poll() is not None:
                state = ProcessState.COMPLETED
            elif time.monotonic() - started > timeout_seconds:
                state = ProcessState.TIMED_OUT
            else:
                time.sleep(poll_interval_seconds)

        if state == ProcessState.TIMED_OUT:
            logger.warning(
                "Killing %s after %.1fs timeout (pid=%s)",
                command[0],
                timeout_seconds,
                process.pid,
            )
            process.kill()
            process.wait()
            state = ProcessState.KILLED

        elapsed = time.monotonic() - started
        return ProcessOutcome(
            state=state,
            returncode=process.returncode,
            stdout=_read_back(stdout_file),
            stderr=_read_back(stderr_file),
            elapsed_seconds=elapsed,
        )
