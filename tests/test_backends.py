"""
Tests for agent backends.
"""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from planloop.backends import BackendError, ExecuteOptions, get_backend
from planloop.backends.base import AgentProcess, BinaryNotFoundError
from planloop.backends.claude import ClaudeBackend, resolve_binary
from planloop.config import WorkspaceConfig


def options(**kwargs):
    defaults = dict(
        prompt="Do the plan",
        context_files=["a.json", "b.json"],
        model="sonnet",
        allowed_tools=["Read", "Edit"],
        work_dir="/tmp/project",
    )
    defaults.update(kwargs)
    return ExecuteOptions(**defaults)


class TestClaudeArgs:
    """Command line construction."""

    def test_headless_args(self):
        """Headless runs stream JSON and pass the prompt with -p."""
        backend = ClaudeBackend(binary="/usr/bin/claude")
        assert backend.build_args(options()) == [
            "--model", "sonnet",
            "-p", "Do the plan",
            "--allowedTools", "Read,Edit",
            "--output-format", "stream-json", "--verbose",
            "a.json", "b.json",
        ]

    def test_interactive_args(self):
        """Interactive runs drop -p and the output format."""
        backend = ClaudeBackend(binary="/usr/bin/claude")
        args = backend.build_args(options(), interactive=True)
        assert "-p" not in args
        assert "--output-format" not in args
        assert args[-2:] == ["a.json", "b.json"]

    def test_absolute_binary_kept(self):
        """Absolute paths are used as given."""
        assert resolve_binary("/opt/claude") == "/opt/claude"

    def test_path_lookup(self):
        """Relative names are looked up on PATH."""
        with patch("planloop.backends.claude.shutil.which", return_value="/found/claude"):
            assert resolve_binary("claude") == "/found/claude"


class TestClaudeExecute:
    """Process start."""

    def test_execute_starts_process(self):
        """execute runs the binary in the work dir with stdout piped as bytes."""
        fake = MagicMock()
        fake.stdout.readline.return_value = b""
        fake.wait.return_value = 0
        with patch("planloop.backends.claude.subprocess.Popen", return_value=fake) as popen:
            process = ClaudeBackend(binary="/usr/bin/claude").execute(options())
            assert process.close() == 0

        cmd = popen.call_args[0][0]
        assert cmd[0] == "/usr/bin/claude"
        assert popen.call_args[1]["cwd"] == "/tmp/project"
        assert popen.call_args[1]["stdout"] == subprocess.PIPE
        assert "text" not in popen.call_args[1]

    def test_missing_binary(self):
        """A missing binary raises with a remediation hint."""
        with patch("planloop.backends.claude.subprocess.Popen", side_effect=FileNotFoundError()):
            with pytest.raises(BinaryNotFoundError) as exc:
                ClaudeBackend(binary="/nope/claude").execute(options())
        assert "config.yaml" in str(exc.value)

    def test_interactive_returns_exit_code(self):
        """Interactive runs return the process exit code."""
        with patch("planloop.backends.claude.subprocess.run") as run:
            run.return_value.returncode = 3
            assert ClaudeBackend(binary="/usr/bin/claude").execute_interactive(options()) == 3


class TestAgentProcess:
    """Process wrapper."""

    def test_close_returns_exit_code(self):
        """close waits and returns the exit code."""
        proc = MagicMock()
        proc.wait.return_value = 2
        assert AgentProcess(proc).close() == 2
        proc.stdout.close.assert_called_once()

    def test_exit_kills_on_error(self):
        """Leaving the context on an exception kills a running process."""
        proc = MagicMock()
        proc.poll.return_value = None
        with pytest.raises(RuntimeError):
            with AgentProcess(proc):
                raise RuntimeError("boom")
        proc.kill.assert_called_once()

    def test_exit_does_not_kill_on_success(self):
        """A normal exit waits for the process instead of killing it."""
        proc = MagicMock()
        proc.poll.return_value = None
        with AgentProcess(proc):
            pass
        proc.kill.assert_not_called()
        proc.wait.assert_called_once()


class TestGetBackend:
    """Backend selection."""

    def test_claude_selected(self):
        """The default config selects the Claude backend."""
        config = WorkspaceConfig()
        config.claude.binary = "/usr/bin/claude"
        backend = get_backend(config)
        assert isinstance(backend, ClaudeBackend)
        assert backend.binary == "/usr/bin/claude"

    def test_unknown_backend(self):
        """An unknown backend name is an error."""
        config = WorkspaceConfig(backend="nonesuch")
        with pytest.raises(BackendError):
            get_backend(config)
