"""Tests for the pure task and assignment state machine (no database)."""

import pytest

from app.core.exceptions import Conflict, ValidationFailed
from app.services.lifecycle import (
    ASSIGNMENT_TRANSITIONS,
    AssignmentEvent,
    AssignmentStatus,
    TaskStatus,
    aggregate_review_outcome,
    assignable_statuses,
    can_revoke,
    is_assignable,
    next_assignment_status,
    normalize_max_assignees,
    open_slots,
    review_event,
    submission_advances_task,
)


@pytest.mark.parametrize(
    "current,event,expected",
    [
        ("assigned", AssignmentEvent.ACCEPT, AssignmentStatus.ACCEPTED),
        ("assigned", AssignmentEvent.START, AssignmentStatus.IN_PROGRESS),
        ("accepted", AssignmentEvent.START, AssignmentStatus.IN_PROGRESS),
        ("accepted", AssignmentEvent.SUBMIT, AssignmentStatus.SUBMITTED),
        ("in_progress", AssignmentEvent.SUBMIT, AssignmentStatus.SUBMITTED),
        ("submitted", AssignmentEvent.APPROVE, AssignmentStatus.COMPLETED),
        ("submitted", AssignmentEvent.REJECT, AssignmentStatus.REJECTED),
    ],
)
def test_legal_edges(current, event, expected):
    assert next_assignment_status(current, event) is expected


def test_every_unlisted_edge_is_a_conflict():
    for state in AssignmentStatus:
        for event in AssignmentEvent:
            if (state, event) in ASSIGNMENT_TRANSITIONS:
                continue
            with pytest.raises(Conflict):
                next_assignment_status(state.value, event)


def test_assigned_cannot_be_submitted_directly():
    with pytest.raises(Conflict):
        next_assignment_status("assigned", AssignmentEvent.SUBMIT)


def test_unknown_status_is_a_conflict():
    with pytest.raises(Conflict):
        next_assignment_status("archived", AssignmentEvent.ACCEPT)


def test_review_event_maps_actions():
    assert review_event("approve") is AssignmentEvent.APPROVE
    assert review_event("reject") is AssignmentEvent.REJECT
    with pytest.raises(ValidationFailed):
        review_event("maybe")


def test_group_tasks_stay_assignable_while_submitted():
    assert is_assignable("group", TaskStatus.SUBMITTED.value)
    assert not is_assignable("individual", TaskStatus.SUBMITTED.value)
    for task_type in ("individual", "group"):
        assert "completed" not in assignable_statuses(task_type)
        assert "rejected" not in assignable_statuses(task_type)
        assert is_assignable(task_type, "not_started")
        assert is_assignable(task_type, "in_progress")


@pytest.mark.parametrize(
    "status,allowed",
    [
        ("assigned", True),
        ("accepted", True),
        ("in_progress", True),
        ("rejected", True),
        ("submitted", False),
        ("completed", False),
    ],
)
def test_can_revoke(status, allowed):
    assert can_revoke(status) is allowed


def test_individual_tasks_always_have_one_slot():
    assert normalize_max_assignees("individual", 5) == 1
    assert normalize_max_assignees("individual", None) == 1
    assert normalize_max_assignees("group", 4) == 4
    assert normalize_max_assignees("group", None) == 1
    with pytest.raises(ValidationFailed):
        normalize_max_assignees("group", 51)


def test_open_slots_never_negative():
    assert open_slots(3, 1) == 2
    assert open_slots(2, 5) == 0


def test_submission_advances_individual_task_immediately():
    assert submission_advances_task("individual", ["submitted"])


def test_group_submission_waits_for_everyone():
    assert not submission_advances_task("group", ["submitted", "accepted"])
    assert submission_advances_task("group", ["submitted", "completed", "rejected"])


def test_any_completed_assignment_completes_the_task():
    assert aggregate_review_outcome(["completed", "submitted"]) is TaskStatus.COMPLETED
    assert aggregate_review_outcome(["rejected", "completed"]) is TaskStatus.COMPLETED


def test_task_rejected_only_when_everyone_is_rejected():
    assert aggregate_review_outcome(["rejected", "rejected"]) is TaskStatus.REJECTED
    assert aggregate_review_outcome(["rejected", "submitted"]) is None
    assert aggregate_review_outcome([]) is None
