"""Task and assignment state machine.

Pure rules with no database access. The engine in ``app.services.tasks``
loads rows, asks these functions what is allowed, and writes the result.

Assignment edges are a closed table: anything not listed in
``ASSIGNMENT_TRANSITIONS`` raises ``Conflict``.
"""

from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

from app.core.exceptions import Conflict, ValidationFailed

TASK_COMPLETION_POINTS = 10
MAX_GROUP_ASSIGNEES = 50


class TaskStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class TaskType(str, Enum):
    INDIVIDUAL = "individual"
    GROUP = "group"


class AssignmentStatus(str, Enum):
    ASSIGNED = "assigned"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    COMPLETED = "completed"
    REJECTED = "rejected"


class AssignmentEvent(str, Enum):
    ACCEPT = "accept"
    START = "start"
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"


class ReviewAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class SubtaskStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ASSIGNMENT_TRANSITIONS: Dict[Tuple[AssignmentStatus, AssignmentEvent], AssignmentStatus] = {
    (AssignmentStatus.ASSIGNED, AssignmentEvent.ACCEPT): AssignmentStatus.ACCEPTED,
    (AssignmentStatus.ASSIGNED, AssignmentEvent.START): AssignmentStatus.IN_PROGRESS,
    (AssignmentStatus.ACCEPTED, AssignmentEvent.START): AssignmentStatus.IN_PROGRESS,
    (AssignmentStatus.ACCEPTED, AssignmentEvent.SUBMIT): AssignmentStatus.SUBMITTED,
    (AssignmentStatus.IN_PROGRESS, AssignmentEvent.SUBMIT): AssignmentStatus.SUBMITTED,
    (AssignmentStatus.SUBMITTED, AssignmentEvent.APPROVE): AssignmentStatus.COMPLETED,
    (AssignmentStatus.SUBMITTED, AssignmentEvent.REJECT): AssignmentStatus.REJECTED,
}

# Plain string sets so raw column values can be tested for membership.
SUBMITTABLE: FrozenSet[str] = frozenset(
    current.value for (current, event) in ASSIGNMENT_TRANSITIONS if event is AssignmentEvent.SUBMIT
)
SETTLED: FrozenSet[str] = frozenset({AssignmentStatus.COMPLETED.value, AssignmentStatus.REJECTED.value})
HANDED_IN: FrozenSet[str] = SETTLED | {AssignmentStatus.SUBMITTED.value}
LOCKED_FOR_REVOKE: FrozenSet[str] = frozenset({AssignmentStatus.SUBMITTED.value, AssignmentStatus.COMPLETED.value})
TASK_CLOSED: FrozenSet[str] = frozenset({TaskStatus.COMPLETED.value, TaskStatus.REJECTED.value})

_ASSIGNABLE: Dict[TaskType, FrozenSet[str]] = {
    TaskType.INDIVIDUAL: frozenset({TaskStatus.NOT_STARTED.value, TaskStatus.IN_PROGRESS.value}),
    TaskType.GROUP: frozenset({TaskStatus.NOT_STARTED.value, TaskStatus.IN_PROGRESS.value, TaskStatus.SUBMITTED.value}),
}


def next_assignment_status(current: str, event: AssignmentEvent) -> AssignmentStatus:
    try:
        state = AssignmentStatus(current)
    except ValueError:
        raise Conflict(f"Unknown assignment status '{current}'")
    target = ASSIGNMENT_TRANSITIONS.get((state, AssignmentEvent(event)))
    if target is None:
        raise Conflict(f"Cannot {AssignmentEvent(event).value} an assignment in status '{state.value}'")
    return target


def review_event(action: str) -> AssignmentEvent:
    try:
        action = ReviewAction(action)
    except ValueError:
        raise ValidationFailed('Action must be either "approve" or "reject"')
    return AssignmentEvent.APPROVE if action is ReviewAction.APPROVE else AssignmentEvent.REJECT


def assignable_statuses(task_type: str) -> FrozenSet[str]:
    return _ASSIGNABLE[TaskType(task_type)]


def is_assignable(task_type: str, task_status: str) -> bool:
    return task_status in assignable_statuses(task_type)


def can_revoke(assignment_status: str) -> bool:
    return assignment_status not in LOCKED_FOR_REVOKE


def normalize_max_assignees(task_type: str, requested: Optional[int]) -> int:
    if TaskType(task_type) is TaskType.INDIVIDUAL:
        return 1
    value = requested or 1
    if not 1 <= value <= MAX_GROUP_ASSIGNEES:
        raise ValidationFailed(f"max_assignees must be between 1 and {MAX_GROUP_ASSIGNEES}")
    return value


def open_slots(max_assignees: int, current_count: int) -> int:
    return max(max_assignees - current_count, 0)


def submission_advances_task(task_type: str, statuses: Iterable[str]) -> bool:
    """Individual tasks move to submitted at once; group tasks wait for everyone."""
    if TaskType(task_type) is TaskType.INDIVIDUAL:
        return True
    return all(status in HANDED_IN for status in statuses)


def aggregate_review_outcome(statuses: Iterable[str]) -> Optional[TaskStatus]:
    """Task status after a per-assignee review, or None to leave it alone.

    One approved assignment completes the whole task, even while other
    assignments are still pending. The task is rejected only once every
    assignment has been rejected.
    """
    statuses = list(statuses)
    if AssignmentStatus.COMPLETED.value in statuses:
        return TaskStatus.COMPLETED
    if statuses and all(status in SETTLED for status in statuses):
        return TaskStatus.REJECTED
    return None
