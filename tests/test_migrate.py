"""
Tests for importing the legacy flat backlog.
"""

import json

import pytest

from planloop.migrate import (
    IMPORTED_PHASE_NAME,
    check_migration_needed,
    item_to_plan,
    migrate_backlog,
    read_backlog,
)
from planloop.models.backlog import BacklogItem
from planloop.state import load_phases, load_roadmap, summary_file
from planloop.verifier import verify_plans
from planloop.workspace import backlog_path


BACKLOG = [
    {
        "id": "F1",
        "title": "User login",
        "description": "Email and password login",
        "steps": ["Add form", "Add session"],
        "acceptance_criteria": ["pytest tests/test_login.py passes"],
        "passes": True,
    },
    {
        "title": "Password reset",
        "description": "Reset by email link",
        "acceptance_criteria": ["reset email is sent", "link expires after 1h"],
    },
]


def write_backlog(workspace, data):
    backlog_path(workspace).write_text(json.dumps(data))


class TestReadBacklog:
    """Legacy document shapes."""

    def test_list_document(self, tmp_path):
        """A bare list is read; missing ids fall back to the position."""
        path = tmp_path / "backlog.json"
        path.write_text(json.dumps(BACKLOG))
        items = read_backlog(path)
        assert [i.id for i in items] == ["F1", "2"]
        assert items[0].passes
        assert not items[1].passes

    def test_wrapped_document(self, tmp_path):
        """{"features": [...]} is accepted."""
        path = tmp_path / "backlog.json"
        path.write_text(json.dumps({"features": BACKLOG}))
        assert len(read_backlog(path)) == 2

    def test_invalid_document(self, tmp_path):
        """A scalar document is rejected."""
        path = tmp_path / "backlog.json"
        path.write_text("42")
        with pytest.raises(ValueError):
            read_backlog(path)


class TestItemToPlan:
    """Backlog item conversion."""

    def test_plan_shape(self):
        """One auto task carrying steps and acceptance criteria."""
        item = BacklogItem.from_dict(BACKLOG[0])
        plan = item_to_plan(item, "03-imported-backlog", "01")
        (task,) = plan.tasks
        assert task.name == "User login"
        assert "- Add session" in task.action
        assert task.verify == "pytest tests/test_login.py passes"
        assert plan.verification == ["pytest tests/test_login.py passes"]
        assert plan.plan_id == "03-01"


class TestMigrateBacklog:
    """Importing into the roadmap."""

    def test_no_backlog(self, workspace):
        """Without a backlog nothing happens."""
        needed, reason = check_migration_needed(workspace)
        assert not needed
        assert "No backlog" in reason
        assert migrate_backlog(workspace)["migrated"] is False

    def test_import_appends_phase(self, workspace, planning_dir, write_plans):
        """Items become plans in a new phase after existing ones."""
        write_plans("Core", 1)
        write_backlog(workspace, BACKLOG)

        result = migrate_backlog(workspace)

        assert result["migrated"]
        assert result["phase"] == 2
        assert result["plans_created"] == 2
        assert result["plans_complete"] == 1

        phase = load_roadmap(planning_dir).get_phase(2)
        assert phase.name == IMPORTED_PHASE_NAME
        assert phase.plans == ["01", "02"]
        assert phase.status == "in_progress"

        loaded = load_phases(planning_dir)[1]
        done, pending = loaded.plans
        assert done.completed
        assert summary_file(done.path).exists()
        assert not pending.completed

    def test_imported_plans_verify_cleanly(self, workspace, planning_dir):
        """Imported plans carry no blocker issues."""
        write_backlog(workspace, BACKLOG)
        migrate_backlog(workspace)
        plans = load_phases(planning_dir)[0].plans
        assert verify_plans(plans).blockers == 0

    def test_all_passing_completes_phase(self, workspace, planning_dir):
        """A fully passing backlog imports as a complete phase."""
        write_backlog(workspace, [dict(BACKLOG[0])])
        migrate_backlog(workspace)
        assert load_roadmap(planning_dir).phases[0].status == "complete"

    def test_second_run_is_noop(self, workspace, planning_dir):
        """Migration runs once."""
        write_backlog(workspace, BACKLOG)
        migrate_backlog(workspace)
        result = migrate_backlog(workspace)
        assert result["migrated"] is False
        assert "Already migrated" in result["message"]
        assert len(load_roadmap(planning_dir).phases) == 1

    def test_empty_backlog(self, workspace):
        """An empty backlog creates nothing."""
        write_backlog(workspace, [])
        result = migrate_backlog(workspace)
        assert result["migrated"] is False
        assert "empty" in result["message"]
