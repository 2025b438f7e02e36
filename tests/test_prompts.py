"""
Tests for prompt templates, overrides and includes.
"""

import pytest

from planloop.prompts import PromptNotFoundError, PromptProvider
from planloop.workspace import prompts_path


@pytest.fixture
def builtin(tmp_path):
    path = tmp_path / "builtin"
    (path / "includes").mkdir(parents=True)
    (path / "main.md").write_text("Header\n@includes/part.md\nFooter {{name}} {{other}}\n")
    (path / "includes" / "part.md").write_text("Part body")
    return path


class TestPromptProvider:
    """Resolution order and expansion."""

    def test_builtin_with_include(self, builtin):
        """Includes are expanded inline."""
        text = PromptProvider(builtin_dir=builtin).get("main")
        assert "Header\nPart body\nFooter" in text

    def test_workspace_override(self, tmp_path, builtin):
        """A workspace template wins over the built-in one."""
        override = prompts_path(tmp_path / "ws")
        override.mkdir(parents=True)
        (override / "main.md").write_text("Custom")
        assert PromptProvider(tmp_path / "ws", builtin_dir=builtin).get("main.md") == "Custom"

    def test_include_override(self, tmp_path, builtin):
        """Includes resolve through the workspace too."""
        override = prompts_path(tmp_path / "ws") / "includes"
        override.mkdir(parents=True)
        (override / "part.md").write_text("Overridden part")
        text = PromptProvider(tmp_path / "ws", builtin_dir=builtin).get("main")
        assert "Overridden part" in text

    def test_circular_reference(self, builtin):
        """A self-including template renders a marker instead of recursing."""
        (builtin / "loop.md").write_text("A\n@loop.md\n")
        text = PromptProvider(builtin_dir=builtin).get("loop")
        assert "<!-- CIRCULAR REFERENCE: loop.md -->" in text

    def test_missing_reference(self, builtin):
        """A missing include renders a marker."""
        (builtin / "broken.md").write_text("@includes/gone.md\n")
        text = PromptProvider(builtin_dir=builtin).get("broken")
        assert "<!-- REFERENCE NOT FOUND: includes/gone.md -->" in text

    def test_missing_template(self, builtin):
        """A template found nowhere raises."""
        with pytest.raises(PromptNotFoundError):
            PromptProvider(builtin_dir=builtin).get("nothing")

    def test_render_placeholders(self, builtin):
        """Known placeholders are filled, unknown ones kept."""
        text = PromptProvider(builtin_dir=builtin).render("main", name="demo")
        assert "Footer demo {{other}}" in text

    def test_list_available(self, builtin):
        """Built-in templates are listed by relative name."""
        assert PromptProvider(builtin_dir=builtin).list_available() == ["includes/part.md", "main.md"]


class TestBuiltinTemplates:
    """Shipped templates render without leftover placeholders."""

    def test_execute_template(self):
        """The execute prompt mentions the plan and signals."""
        text = PromptProvider().render(
            "execute",
            plan_path="/p/01-01.json",
            summary_path="/p/01-01-summary.json",
            phase_number=1,
            phase_name="Core",
            plan_number="01",
            plan_complete_signal="###PLAN_COMPLETE###",
            complete_signal="###PLANLOOP_COMPLETE###",
            retry_guidance="### RETRY ATTEMPT 2",
        )
        assert "/p/01-01.json" in text
        assert "###PLAN_COMPLETE###" in text
        assert "### RETRY ATTEMPT 2" in text
        assert "manual" in text
        assert "{{" not in text
        assert "REFERENCE NOT FOUND" not in text

    def test_all_builtins_load(self):
        """Every shipped template expands without missing includes."""
        provider = PromptProvider()
        for name in provider.list_available():
            assert "REFERENCE NOT FOUND" not in provider.get(name)

    def test_blocker_template(self):
        """The blocker check names the claim and both verdict markers."""
        text = PromptProvider().render("blocker", claim="need AWS credentials", plan_path="/p/01-01.json")
        assert "need AWS credentials" in text
        assert "###BLOCKER_VALID:" in text
        assert "###BLOCKER_INVALID:" in text
        assert "{{" not in text

    def test_manual_template(self):
        """The manual session prompt points at the summary file."""
        text = PromptProvider().render(
            "manual",
            plan_path="/p/01-99.json",
            summary_path="/p/01-99-summary.json",
            phase_number=1,
            phase_name="Core",
            plan_number="99",
        )
        assert "/p/01-99-summary.json" in text
        assert "{{" not in text
