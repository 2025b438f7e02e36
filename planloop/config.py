"""
planloop configuration.

Workspace settings are stored in .planloop/config.yaml:

    backend: claude
    model: sonnet
    claude:
      binary: claude
      allowed_tools: [Read, Write, Edit, Bash, ...]
    build:
      default_loop_iterations: 10
      inactivity_timeout_mins: 60
      token_threshold: 120000
      signals:
        iteration_complete: "###ITERATION_COMPLETE###"
        complete: "###PLANLOOP_COMPLETE###"
        plan_complete: "###PLAN_COMPLETE###"

Missing keys fall back to defaults. Per-invocation options (model override,
loop size, retry budget) are collected once into an ExecutorConfig that is
passed explicitly to the executor.
"""

from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from planloop.workspace import config_path, planning_path

DEFAULT_ALLOWED_TOOLS = [
    "Read", "Write", "Edit", "Bash", "Glob", "Grep",
    "Task", "TodoWrite", "WebFetch", "WebSearch",
]

# Tools granted to the post-run analysis agent
ANALYSIS_ALLOWED_TOOLS = ["Read", "Write", "Edit", "Glob", "Grep", "Bash"]

# Tools granted to the agent that checks a blocker claim
BLOCKER_ALLOWED_TOOLS = ["Read", "Glob", "Grep", "Bash"]


class ConfigError(Exception):
    """Raised when config.yaml exists but cannot be read."""


def _setting(data: Dict[str, Any], key: str, default: Any) -> Any:
    """Value for key, or the default when absent or null. 0 is a real value."""
    value = data.get(key)
    return default if value is None else value


@dataclass
class SignalsConfig:
    """Completion sentinels scanned for in agent output."""
    iteration_complete: str = "###ITERATION_COMPLETE###"
    complete: str = "###PLANLOOP_COMPLETE###"
    plan_complete: str = "###PLAN_COMPLETE###"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignalsConfig":
        defaults = cls()
        return cls(
            iteration_complete=data.get("iteration_complete") or defaults.iteration_complete,
            complete=data.get("complete") or defaults.complete,
            plan_complete=data.get("plan_complete") or defaults.plan_complete,
        )


@dataclass
class ClaudeConfig:
    """Claude Code CLI settings."""
    binary: str = "claude"
    allowed_tools: List[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_TOOLS))


@dataclass
class BuildConfig:
    """Execution loop settings."""
    default_loop_iterations: int = 10
    inactivity_timeout_mins: int = 60
    token_threshold: int = 120000
    signals: SignalsConfig = field(default_factory=SignalsConfig)


@dataclass
class WorkspaceConfig:
    """Workspace-level configuration."""
    backend: str = "claude"
    model: str = "sonnet"
    claude: ClaudeConfig = field(default_factory=ClaudeConfig)
    build: BuildConfig = field(default_factory=BuildConfig)

    def to_dict(self) -> dict:
        return {
            "backend": self.backend,
            "model": self.model,
            "claude": asdict(self.claude),
            "build": asdict(self.build),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WorkspaceConfig":
        claude_data = data.get("claude") or {}
        build_data = data.get("build") or {}
        defaults = BuildConfig()
        return cls(
            backend=data.get("backend") or "claude",
            model=data.get("model") or "sonnet",
            claude=ClaudeConfig(
                binary=claude_data.get("binary") or "claude",
                allowed_tools=list(claude_data.get("allowed_tools") or DEFAULT_ALLOWED_TOOLS),
            ),
            build=BuildConfig(
                default_loop_iterations=_setting(build_data, "default_loop_iterations", defaults.default_loop_iterations),
                inactivity_timeout_mins=_setting(build_data, "inactivity_timeout_mins", defaults.inactivity_timeout_mins),
                token_threshold=_setting(build_data, "token_threshold", defaults.token_threshold),
                signals=SignalsConfig.from_dict(build_data.get("signals") or {}),
            ),
        )


def load_config(root: Union[str, Path]) -> WorkspaceConfig:
    """Load workspace configuration. Returns defaults if not found."""
    config_file = config_path(root)

    if not config_file.exists():
        return WorkspaceConfig()

    try:
        with open(config_file) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to read {config_file}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Failed to read {config_file}: expected a mapping")
    return WorkspaceConfig.from_dict(data)


def save_config(root: Union[str, Path], config: WorkspaceConfig) -> None:
    """Save workspace configuration."""
    config_file = config_path(root)
    config_file.parent.mkdir(parents=True, exist_ok=True)

    with open(config_file, "w") as f:
        yaml.dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)


@dataclass
class ExecutorConfig:
    """Options for one executor invocation.

    Built once per command and passed by reference; nothing here is global.
    """
    work_dir: Path
    planning_dir: Path
    model: str = "sonnet"
    max_retries: Optional[int] = None  # None means "same as loop iterations"
    skip_analysis: bool = False
    allowed_tools: List[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_TOOLS))
    signals: SignalsConfig = field(default_factory=SignalsConfig)
    token_threshold: int = 120000
    inactivity_timeout_mins: int = 60
    interactive_manual: bool = True  # False stops the loop at manual plans

    @classmethod
    def from_workspace(
        cls,
        root: Union[str, Path],
        config: Optional[WorkspaceConfig] = None,
        model: Optional[str] = None,
        max_retries: Optional[int] = None,
        skip_analysis: bool = False,
        interactive_manual: bool = True,
    ) -> "ExecutorConfig":
        """Build executor options from workspace config plus CLI overrides."""
        root = Path(root)
        config = config or load_config(root)
        return cls(
            work_dir=root,
            planning_dir=planning_path(root),
            model=model or config.model,
            max_retries=max_retries,
            skip_analysis=skip_analysis,
            allowed_tools=list(config.claude.allowed_tools),
            signals=config.build.signals,
            token_threshold=config.build.token_threshold,
            inactivity_timeout_mins=config.build.inactivity_timeout_mins,
            interactive_manual=interactive_manual,
        )
