"""
Claude Code CLI backend.

Non-interactive runs use:

    claude --model M -p PROMPT --allowedTools a,b --output-format stream-json --verbose FILES...

Interactive runs drop -p and the output format and inherit the terminal.
"""

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import List

from planloop.backends.base import (
    AgentProcess,
    Backend,
    BackendError,
    BinaryNotFoundError,
    ExecuteOptions,
)

logger = logging.getLogger(__name__)

COMMON_LOCATIONS = [
    "~/.claude/local/claude",
    "/usr/local/bin/claude",
    "/opt/homebrew/bin/claude",
]

NOT_FOUND_HINT = """To fix, add to your ~/.zshrc or ~/.bashrc:
  export PATH="$HOME/.claude/local:$PATH"

Then restart your terminal, or run:
  source ~/.zshrc

Alternatively, set the full path in .planloop/config.yaml:
  claude:
    binary: /path/to/claude"""


def resolve_binary(binary: str) -> str:
    """Find the claude binary: absolute path, PATH, then common locations.

    Returns the input unchanged when nothing is found so the start failure
    carries the remediation hint.
    """
    if os.path.isabs(binary):
        return binary

    found = shutil.which(binary)
    if found:
        return found

    for candidate in COMMON_LOCATIONS:
        path = Path(candidate).expanduser()
        if path.exists():
            return str(path)

    return binary


class ClaudeBackend(Backend):
    """Runs the Claude Code CLI."""

    name = "claude"

    def __init__(self, binary: str = "claude"):
        self.binary = resolve_binary(binary or "claude")

    def build_args(self, options: ExecuteOptions, interactive: bool = False) -> List[str]:
        args = []
        if options.model:
            args += ["--model", options.model]
        if not interactive and options.prompt:
            args += ["-p", options.prompt]
        if options.allowed_tools:
            args += ["--allowedTools", ",".join(options.allowed_tools)]
        if not interactive:
            args += ["--output-format", "stream-json", "--verbose"]
        args += list(options.context_files)
        return args

    def execute(self, options: ExecuteOptions) -> AgentProcess:
        cmd = [self.binary] + self.build_args(options)
        logger.debug(f"Starting agent: {self.binary} ({len(cmd) - 1} args)")
        try:
            process = subprocess.Popen(
                cmd,
                cwd=str(options.work_dir) if options.work_dir else None,
                stdout=subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise BinaryNotFoundError("claude", NOT_FOUND_HINT) from e
        except OSError as e:
            raise BackendError(f"Failed to start claude: {e}") from e

        return AgentProcess(process, inactivity_timeout_secs=options.inactivity_timeout_mins * 60)

    def execute_interactive(self, options: ExecuteOptions) -> int:
        cmd = [self.binary] + self.build_args(options, interactive=True)
        try:
            return subprocess.run(
                cmd,
                cwd=str(options.work_dir) if options.work_dir else None,
            ).returncode
        except FileNotFoundError as e:
            raise BinaryNotFoundError("claude", NOT_FOUND_HINT) from e
        except OSError as e:
            raise BackendError(f"Failed to start claude: {e}") from e
