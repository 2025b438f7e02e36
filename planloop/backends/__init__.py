"""
Agent backends.

Usage:
    from planloop.backends import get_backend

    backend = get_backend(config)
    process = backend.execute(ExecuteOptions(prompt="..."))
"""

from planloop.backends.base import (
    AgentProcess,
    Backend,
    BackendError,
    BinaryNotFoundError,
    ExecuteOptions,
)
from planloop.backends.claude import ClaudeBackend

BACKENDS = {
    "claude": ClaudeBackend,
}


def get_backend(config) -> Backend:
    """Create the backend named in the workspace config."""
    backend_cls = BACKENDS.get(config.backend)
    if backend_cls is None:
        raise BackendError(
            f"Unknown backend '{config.backend}' (available: {', '.join(sorted(BACKENDS))})"
        )
    if backend_cls is ClaudeBackend:
        return ClaudeBackend(binary=config.claude.binary)
    return backend_cls()


__all__ = [
    "AgentProcess", "Backend", "BackendError", "BinaryNotFoundError",
    "ExecuteOptions", "ClaudeBackend", "BACKENDS", "get_backend",
]
