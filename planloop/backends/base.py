"""
Agent backend interface.

A backend knows how to run one agent invocation, either:
- non-interactively, producing an event stream for the interpreter, or
- interactively, inheriting the caller's terminal (no interpretation).

The executor and stream interpreter never depend on which backend is used.
"""

import logging
import subprocess
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """Raised when the agent process cannot be started or run."""


class BinaryNotFoundError(BackendError):
    """Raised when the agent binary cannot be located."""

    def __init__(self, binary: str, hint: str = ""):
        message = f"{binary} not found in PATH"
        if hint:
            message = f"{message}\n\n{hint}"
        super().__init__(message)
        self.binary = binary
        self.hint = hint


@dataclass
class ExecuteOptions:
    """Options for one agent invocation."""
    prompt: str
    context_files: List[str] = field(default_factory=list)
    model: str = ""
    allowed_tools: List[str] = field(default_factory=list)
    work_dir: Optional[Union[str, Path]] = None
    inactivity_timeout_mins: int = 0  # 0 disables the watchdog


class AgentProcess:
    """A running agent subprocess whose stdout (bytes) is the event stream.

    Reading goes through readline(); close() waits for the process and
    returns its exit code. When an inactivity timeout is set, a watchdog
    kills the process if no output arrives for that long.
    """

    def __init__(self, process: subprocess.Popen, inactivity_timeout_secs: float = 0):
        self.process = process
        self.timed_out = False
        self._last_activity = time.monotonic()
        self._stopped = threading.Event()
        self._watchdog = None
        if inactivity_timeout_secs > 0:
            self._watchdog = threading.Thread(
                target=self._watch, args=(inactivity_timeout_secs,), daemon=True
            )
            self._watchdog.start()

    def _watch(self, timeout: float) -> None:
        interval = min(5.0, timeout)
        while not self._stopped.wait(interval):
            if time.monotonic() - self._last_activity > timeout:
                logger.warning(f"Agent produced no output for {timeout:.0f}s, terminating")
                self.timed_out = True
                self.process.kill()
                return

    def readline(self, limit: int = -1):
        line = self.process.stdout.readline(limit)
        self._last_activity = time.monotonic()
        return line

    def kill(self) -> None:
        if self.process.poll() is None:
            self.process.kill()

    def close(self) -> int:
        """Stop reading and wait for the process. Returns the exit code."""
        self._stopped.set()
        if self.process.stdout is not None:
            self.process.stdout.close()
        return self.process.wait()

    def __enter__(self) -> "AgentProcess":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.kill()
        self.close()


class Backend:
    """Base class for agent backends."""

    name = "base"

    def execute(self, options: ExecuteOptions) -> AgentProcess:
        """Start a non-interactive invocation and return its event stream."""
        raise NotImplementedError

    def execute_interactive(self, options: ExecuteOptions) -> int:
        """Run an interactive session on the caller's terminal. Returns exit code."""
        raise NotImplementedError
