"""
Unit tests for the pure workflow engine (``bugtracker/services/workflow.py``).

No HTTP and no database: bugs are stand-in objects carrying the attributes
the engine reads (id, status, created_by_id, assignee_ids, checklist).

Covers:
    - status parsing from codes, display labels and compact labels
    - the direct status transition rules
    - checklist parsing and status derivation
    - create / update payload normalisation
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone

import pytest

from bugtracker.core.exceptions import ValidationError
from bugtracker.models.bug import STATUS_LABEL_SETS
from bugtracker.services import workflow
from bugtracker.services.permission import PermissionDenied, Principal
from bugtracker.services.workflow import ChecklistEntry

ADMIN = Principal(user_id=1, role="admin")
TESTER = Principal(user_id=2, role="tester")
DEV = Principal(user_id=3, role="developer")
OTHER_DEV = Principal(user_id=4, role="developer")

RESOLUTION = STATUS_LABEL_SETS["resolution"]


@dataclass
class FakeBug:
    status: str = "open"
    id: int = 99
    created_by_id: int = 2
    assignee_ids: set = field(default_factory=lambda: {3})
    checklist: list = field(default_factory=list)


def _items(*flags):
    return [ChecklistEntry(text=f"step{i + 1}", completed=f) for i, f in enumerate(flags)]


# ═════════════════════════════════════════════════════════════════════════════
# Status parsing
# ═════════════════════════════════════════════════════════════════════════════


class TestParseStatus:
    @pytest.mark.parametrize("raw", ["in_progress", "In Progress", "InProgress", "inprogress", " IN PROGRESS "])
    def test_in_progress_spellings(self, raw):
        assert workflow.parse_status(raw) == "in_progress"

    def test_resolution_labels_map_to_codes(self):
        assert workflow.parse_status("Resolved", RESOLUTION) == "closed"
        assert workflow.parse_status("Pending", RESOLUTION) == "open"

    def test_resolution_label_not_valid_under_default_set(self):
        # codes always work; "Pending" only under the resolution table
        assert workflow.parse_status("closed", RESOLUTION) == "closed"
        with pytest.raises(ValidationError):
            workflow.parse_status("Pending")

    @pytest.mark.parametrize("raw", ["Rejected", "done", "", None, 3])
    def test_unknown_or_missing_rejected(self, raw):
        with pytest.raises(ValidationError) as exc:
            workflow.parse_status(raw)
        assert "status" in exc.value.details

    def test_compact_label(self):
        assert workflow.compact_label("In Progress") == "InProgress"

    def test_resolve_label_set(self):
        assert workflow.resolve_label_set(None)["closed"] == "Closed"
        assert workflow.resolve_label_set("resolution")["closed"] == "Resolved"
        with pytest.raises(ValueError):
            workflow.resolve_label_set("nope")


# ═════════════════════════════════════════════════════════════════════════════
# Direct status transitions
# ═════════════════════════════════════════════════════════════════════════════


class TestPlanStatusUpdate:
    def test_assigned_developer_starts_work(self):
        change = workflow.plan_status_update(FakeBug(), "In Progress", DEV)
        assert change.old == "open"
        assert change.new == "in_progress"
        assert change.changed

    @pytest.mark.parametrize("principal", [TESTER, OTHER_DEV])
    def test_non_assigned_principals_forbidden(self, principal):
        with pytest.raises(PermissionDenied):
            workflow.plan_status_update(FakeBug(), "In Progress", principal)

    def test_admin_cannot_move_to_in_progress(self):
        with pytest.raises(PermissionDenied):
            workflow.plan_status_update(FakeBug(), "in_progress", ADMIN)

    def test_close_blocked_by_incomplete_checklist(self):
        bug = FakeBug(status="in_progress", checklist=_items(True, False))
        with pytest.raises(ValidationError) as exc:
            workflow.plan_status_update(bug, "Closed", DEV)
        assert exc.value.details["pending"] == ["step2"]

    def test_close_with_complete_checklist(self):
        bug = FakeBug(status="in_progress", checklist=_items(True, True))
        assert workflow.plan_status_update(bug, "Closed", DEV).new == "closed"

    def test_close_with_empty_checklist_allowed(self):
        assert workflow.plan_status_update(FakeBug(), "closed", DEV).new == "closed"

    def test_developer_cannot_reopen(self):
        bug = FakeBug(status="closed", checklist=_items(True))
        with pytest.raises(PermissionDenied):
            workflow.plan_status_update(bug, "Open", DEV)

    def test_admin_reopens(self):
        bug = FakeBug(status="closed", checklist=_items(True))
        change = workflow.plan_status_update(bug, "Open", ADMIN)
        assert (change.old, change.new) == ("closed", "open")

    def test_same_status_is_a_noop(self):
        change = workflow.plan_status_update(FakeBug(status="closed"), "closed", ADMIN)
        assert not change.changed

    def test_invalid_status_checked_after_permission(self):
        with pytest.raises(PermissionDenied):
            workflow.plan_status_update(FakeBug(), "Bogus", TESTER)
        with pytest.raises(ValidationError):
            workflow.plan_status_update(FakeBug(), "Bogus", DEV)


# ═════════════════════════════════════════════════════════════════════════════
# Checklist parsing + derivation
# ═════════════════════════════════════════════════════════════════════════════


class TestChecklist:
    def test_strings_and_objects_accepted(self):
        entries = workflow.parse_checklist(
            ["  step1 ", {"text": "step2", "completed": True}], keep_completed=True,
        )
        assert entries == [ChecklistEntry("step1", False), ChecklistEntry("step2", True)]

    def test_creation_forces_incomplete(self):
        entries = workflow.parse_checklist([{"text": "a", "completed": True}], keep_completed=False)
        assert entries[0].completed is False

    @pytest.mark.parametrize("bad", [
        [{"completed": True}],
        [{"text": "a", "completed": "yes"}],
        [{"text": "a", "done": True, "completed": 1}],
        [42],
        ["   "],
        "not-a-list",
    ])
    def test_malformed_entries_rejected(self, bad):
        with pytest.raises(ValidationError):
            workflow.parse_checklist(bad, keep_completed=True)

    def test_error_names_the_index(self):
        with pytest.raises(ValidationError) as exc:
            workflow.parse_checklist(["ok", {"text": ""}], keep_completed=True)
        assert "checklist[1]" in str(exc.value)

    @pytest.mark.parametrize("flags,expected", [
        ((), "open"),
        ((False, False), "open"),
        ((True, False), "in_progress"),
        ((True, True), "closed"),
    ])
    def test_derive_status(self, flags, expected):
        assert workflow.derive_status(_items(*flags)) == expected

    def test_plan_checklist_update_closes_when_all_done(self):
        entries, change = workflow.plan_checklist_update(
            FakeBug(status="in_progress"),
            [{"text": "a", "completed": True}], DEV,
        )
        assert len(entries) == 1
        assert change.new == "closed"
        assert change.closed_by_checklist is True

    def test_plan_checklist_update_leaves_terminal_status(self):
        _, change = workflow.plan_checklist_update(
            FakeBug(status="closed"), [{"text": "a", "completed": False}], ADMIN,
        )
        assert not change.changed

    def test_plan_checklist_update_forbidden_for_reporter(self):
        with pytest.raises(PermissionDenied):
            workflow.plan_checklist_update(FakeBug(), ["a"], TESTER)

    def test_plan_checklist_update_requires_checklist(self):
        bug = FakeBug(status="in_progress")
        with pytest.raises(ValidationError) as exc:
            workflow.plan_checklist_update(bug, None, DEV)
        assert exc.value.details == {"checklist": "required"}

    def test_absent_checklist_is_empty_only_at_creation(self):
        assert workflow.parse_checklist(None, keep_completed=False) == []
        with pytest.raises(ValidationError):
            workflow.normalize_bug_update({"checklist": None})


# ═════════════════════════════════════════════════════════════════════════════
# Payload normalisation
# ═════════════════════════════════════════════════════════════════════════════


def _payload(**overrides):
    data = {
        "title": "  Crash on save  ",
        "description": "Stack trace attached",
        "priority": "high",
        "severity": "CRITICAL",
        "assigned_to": [3, 3, 4],
        "checklist": ["reproduce", {"text": "fix"}],
        "attachments": ["a.png", "  ", 5],
        "due_date": "2030-01-15T10:00:00Z",
    }
    data.update(overrides)
    return data


class TestNormalizeNewBug:
    def test_normalises_payload(self):
        values = workflow.normalize_new_bug(_payload(), TESTER)
        assert values["title"] == "Crash on save"
        assert values["priority"] == "High"
        assert values["severity"] == "Critical"
        assert values["assignee_ids"] == [3, 4]
        assert [e.completed for e in values["checklist"]] == [False, False]
        assert values["attachments"] == ["a.png"]
        assert values["status"] == "open"
        assert values["created_by_id"] == TESTER.user_id
        assert values["due_date"] == datetime(2030, 1, 15, 10, tzinfo=timezone.utc)

    @pytest.mark.parametrize("principal", [ADMIN, DEV])
    def test_only_testers_create(self, principal):
        with pytest.raises(PermissionDenied):
            workflow.normalize_new_bug(_payload(), principal)

    @pytest.mark.parametrize("overrides,field_name", [
        ({"title": "   "}, "title"),
        ({"description": ""}, "description"),
        ({"priority": "Urgent"}, "priority"),
        ({"severity": None}, "severity"),
        ({"due_date": "next tuesday"}, "due_date"),
        ({"assigned_to": [True]}, "assigned_to"),
    ])
    def test_field_rules(self, overrides, field_name):
        with pytest.raises(ValidationError) as exc:
            workflow.normalize_new_bug(_payload(**overrides), TESTER)
        assert field_name in exc.value.details

    def test_assignee_requirement_is_configurable(self):
        with pytest.raises(ValidationError):
            workflow.normalize_new_bug(_payload(assigned_to=[]), TESTER)
        values = workflow.normalize_new_bug(_payload(assigned_to=[]), TESTER, require_assignee=False)
        assert values["assignee_ids"] == []


class TestNormalizeBugUpdate:
    def test_only_present_fields_returned(self):
        values = workflow.normalize_bug_update({"priority": "low", "ignored": 1})
        assert values == {"priority": "Low"}

    def test_status_enum_checked_with_labels(self):
        values = workflow.normalize_bug_update({"status": "Resolved"}, labels=RESOLUTION)
        assert values["status"] == "closed"
        with pytest.raises(ValidationError):
            workflow.normalize_bug_update({"status": "Rejected"})

    def test_checklist_keeps_completed_flags(self):
        values = workflow.normalize_bug_update({"checklist": [{"text": "a", "completed": True}]})
        assert values["checklist"][0].completed is True
