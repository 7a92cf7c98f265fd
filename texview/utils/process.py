"""
External process execution with a polled wall-clock timeout.

Processes are always launched from an argument vector (never through a shell)
with their working directory pinned to the caller's working area. Output is
spooled to anonymous temporary files rather than pipes, so a chatty child can
never block on a full pipe while the parent is polling, and partial output is
still available after a timeout.
"""

import os
import subprocess
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, List, Mapping, Optional, Sequence

from loguru import logger


class ProcessError(RuntimeError):
    """Base class for process runner failures."""

    def __init__(self, message: str, program: str):
        self.program = program
        super().__init__(message)


class ProcessSpawnError(ProcessError):
    """The program is missing or could not be launched."""

    def __init__(self, program: str, reason: str):
        self.reason = reason
        super().__init__(f"Failed to spawn {program}: {reason}", program)


class ProcessTimeoutError(ProcessError):
    """
    The program exceeded its wall-clock budget and was terminated.

    Attributes:
        timeout: Budget in seconds
        stdout: Output captured before termination
        stderr: Error output captured before termination
        terminated: False if the process survived kill() and may be orphaned
    """

    def __init__(
        self, program: str, timeout: float, stdout: str, stderr: str, terminated: bool = True
    ):
        self.timeout = timeout
        self.stdout = stdout
        self.stderr = stderr
        self.terminated = terminated
        super().__init__(f"{program} timed out after {timeout:g} seconds", program)


@dataclass(frozen=True)
class ProcessOutcome:
    """
    Result of a process that exited on its own.

    Attributes:
        args: Full argument vector that was executed
        returncode: Exit status
        stdout: Decoded standard output
        stderr: Decoded standard error
        elapsed: Wall-clock seconds from spawn to exit
    """

    args: List[str]
    returncode: int
    stdout: str
    stderr: str
    elapsed: float

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _read_spool(spool: IO[bytes]) -> str:
    spool.flush()
    spool.seek(0)
    # Replace invalid UTF-8 bytes instead of crashing (TeX logs are not always UTF-8)
    return spool.read().decode("utf-8", errors="replace")


def _terminate(proc: subprocess.Popen, grace: float) -> bool:
    """Terminate, then kill, a running process. Returns False if it would not die."""
    proc.terminate()
    try:
        proc.wait(timeout=grace)
        return True
    except subprocess.TimeoutExpired:
        pass

    proc.kill()
    try:
        proc.wait(timeout=grace)
        return True
    except subprocess.TimeoutExpired:
        logger.warning(f"Process {proc.pid} ignored kill(); it may be left orphaned")
        return False


def run_process(
    program: str,
    args: Sequence[str],
    working_dir: Path,
    timeout: float,
    poll_interval: float = 0.1,
    env: Optional[Mapping[str, str]] = None,
    termination_grace: float = 2.0,
) -> ProcessOutcome:
    """
    Run one external program to completion or until its timeout expires.

    The process inherits the current environment plus the entries in env, reads
    from /dev/null, and is polled every poll_interval seconds. Once the elapsed
    time reaches timeout it is terminated (then killed after termination_grace).

    Args:
        program: Executable name or path
        args: Arguments (passed as a vector, never shell-interpolated)
        working_dir: Directory the process runs in
        timeout: Wall-clock budget in seconds
        poll_interval: Seconds between liveness checks
        env: Extra environment variables for the child
        termination_grace: Seconds to wait after terminate() and after kill()

    Returns:
        ProcessOutcome for a process that exited by itself (any exit status)

    Raises:
        ProcessSpawnError: If the program is missing or cannot be executed
        ProcessTimeoutError: If the program exceeded timeout (carries partial output)
    """
    argv = [program, *args]
    child_env = {**os.environ, **(env or {})}

    with tempfile.TemporaryFile() as stdout_spool, tempfile.TemporaryFile() as stderr_spool:
        try:
            proc = subprocess.Popen(
                argv,
                cwd=str(working_dir),
                env=child_env,
                stdin=subprocess.DEVNULL,
                stdout=stdout_spool,
                stderr=stderr_spool,
                shell=False,
            )
        except OSError as e:
            raise ProcessSpawnError(program, e.strerror or str(e)) from e

        start = time.monotonic()
        while proc.poll() is None:
            if time.monotonic() - start >= timeout:
                terminated = _terminate(proc, termination_grace)
                raise ProcessTimeoutError(
                    program,
                    timeout,
                    stdout=_read_spool(stdout_spool),
                    stderr=_read_spool(stderr_spool),
                    terminated=terminated,
                )
            time.sleep(poll_interval)

        return ProcessOutcome(
            args=argv,
            returncode=proc.returncode,
            stdout=_read_spool(stdout_spool),
            stderr=_read_spool(stderr_spool),
            elapsed=time.monotonic() - start,
        )
