"""
Prompt templates.

Templates ship in planloop/templates/. A workspace can override any of them
by placing a file with the same relative name in .planloop/prompts/.

Templates may include other templates with a line of the form:

    @includes/signals.md

Includes resolve the same way (workspace first, then built-in) and expand
recursively. An include already being expanded further up the chain is
replaced with a CIRCULAR REFERENCE comment instead of recursing.
"""

import re
from pathlib import Path
from typing import List, Optional, Tuple, Union

from planloop.workspace import prompts_path

BUILTIN_DIR = Path(__file__).parent / "templates"

INCLUDE_PATTERN = re.compile(r"^@(\S+\.md)[ \t]*$", re.MULTILINE)
PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*\}\}")


class PromptNotFoundError(Exception):
    """Raised when a template exists neither in the workspace nor built-in."""


def _normalize(name: str) -> str:
    return name if name.endswith(".md") else name + ".md"


class PromptProvider:
    """Resolves prompt templates with workspace overrides."""

    def __init__(self, workspace_dir: Optional[Union[str, Path]] = None, builtin_dir: Path = BUILTIN_DIR):
        self.workspace_dir = Path(workspace_dir) if workspace_dir else None
        self.builtin_dir = builtin_dir

    def _locate(self, name: str) -> Optional[Path]:
        if self.workspace_dir is not None:
            override = prompts_path(self.workspace_dir) / name
            if override.is_file():
                return override
        builtin = self.builtin_dir / name
        if builtin.is_file():
            return builtin
        return None

    def _expand(self, content: str, stack: Tuple[str, ...]) -> str:
        def replace(match: "re.Match") -> str:
            ref = match.group(1)
            if ref in stack:
                return f"<!-- CIRCULAR REFERENCE: {ref} -->"
            path = self._locate(ref)
            if path is None:
                return f"<!-- REFERENCE NOT FOUND: {ref} -->"
            return self._expand(path.read_text(), stack + (ref,))

        return INCLUDE_PATTERN.sub(replace, content)

    def get(self, name: str) -> str:
        """Return a template with all @includes expanded.

        Raises:
            PromptNotFoundError: if the template does not exist
        """
        name = _normalize(name)
        path = self._locate(name)
        if path is None:
            raise PromptNotFoundError(f"Prompt {name} not found in workspace or built-in templates")
        return self._expand(path.read_text(), (name,))

    def render(self, name: str, **values) -> str:
        """Return a template with {{key}} placeholders substituted.

        Unknown placeholders are left as-is.
        """
        text = self.get(name)

        def replace(match: "re.Match") -> str:
            key = match.group(1)
            if key in values:
                return str(values[key])
            return match.group(0)

        return PLACEHOLDER_PATTERN.sub(replace, text)

    def exists(self, name: str) -> bool:
        return self._locate(_normalize(name)) is not None

    def list_available(self) -> List[str]:
        """Relative names of all built-in templates."""
        return sorted(
            str(p.relative_to(self.builtin_dir))
            for p in self.builtin_dir.rglob("*.md")
        )
