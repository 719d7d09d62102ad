"""Outbound task events and their delivery as in-app notifications.

Engine operations publish ``TaskEvent`` objects onto a per-request
``NotificationOutbox`` after their transaction commits. The router hands the
queued events to ``dispatch_events`` as a background task, which writes one
``Notification`` row per recipient in its own session. Delivery is best
effort: a failure is logged and never reaches the state transition that
produced the event.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import AsyncSessionLocal
from app.models.community import CommunityMember
from app.models.notification import Notification

logger = logging.getLogger(__name__)

TASK_CREATED = "task_created"
TASK_ASSIGNED = "task_assigned"
TASK_SELF_ASSIGNED = "task_self_assigned"
TASK_SUBMITTED = "task_submitted"
TASK_APPROVED = "task_approved"
TASK_REJECTED = "task_rejected"
TASK_UPDATED = "task_updated"
TASK_DELETED = "task_deleted"


@dataclass
class TaskEvent:
    type: str
    task_id: Optional[int]
    task_title: str
    actor_name: str
    community_id: int
    community_name: str
    recipient_ids: List[int] = field(default_factory=list)
    priority: str = "medium"
    reason: Optional[str] = None


class NotificationOutbox:
    """Events collected while handling one request."""

    def __init__(self):
        self.events: List[TaskEvent] = []

    def publish(self, event: TaskEvent) -> None:
        if not event.recipient_ids:
            return
        self.events.append(event)

    def drain(self) -> List[TaskEvent]:
        events, self.events = self.events, []
        return events


def render(event: TaskEvent) -> tuple[str, str]:
    """Title and message text for an event."""
    title = f'"{event.task_title}"'
    where = f"in {event.community_name}."
    if event.type == TASK_CREATED:
        return "New Task Available", f"A new task {title} has been created by {event.actor_name} {where}"
    if event.type == TASK_ASSIGNED:
        return "Task Assigned", f"You have been assigned to task {title} by {event.actor_name} {where}"
    if event.type == TASK_SELF_ASSIGNED:
        return "Task Self-Assigned", f"{event.actor_name} has self-assigned to task {title} {where}"
    if event.type == TASK_SUBMITTED:
        return "Task Submitted for Review", f"{event.actor_name} has submitted task {title} for review {where}"
    if event.type == TASK_APPROVED:
        return (
            "Task Approved",
            f"Congratulations! Your submission for task {title} has been approved by {event.actor_name} {where}",
        )
    if event.type == TASK_REJECTED:
        message = f"Your submission for task {title} has been rejected by {event.actor_name} {where}"
        if event.reason:
            message = f"{message} Reason: {event.reason}"
        return "Task Rejected", message
    if event.type == TASK_UPDATED:
        return (
            "Task Updated",
            f"Task {title} has been updated by {event.actor_name} {where} Please review the changes.",
        )
    if event.type == TASK_DELETED:
        return "Task Deleted", f"Task {title} has been deleted by {event.actor_name} {where}"
    raise ValueError(f"Unknown task event type: {event.type}")


def build_notifications(event: TaskEvent) -> List[Notification]:
    title, message = render(event)
    return [
        Notification(
            user_id=user_id,
            title=title,
            message=message,
            type=event.type,
            related_id=event.task_id,
            priority=event.priority,
            community_id=event.community_id,
        )
        for user_id in dict.fromkeys(event.recipient_ids)
    ]


async def dispatch_events(events: Iterable[TaskEvent], session_factory=None) -> int:
    """Persist notifications for each event. Returns how many were written."""
    session_factory = session_factory or AsyncSessionLocal
    written = 0
    for event in events:
        try:
            async with session_factory() as db:
                rows = build_notifications(event)
                db.add_all(rows)
                await db.commit()
                written += len(rows)
        except Exception:
            logger.exception("Failed to deliver %s notifications for task %s", event.type, event.task_id)
    return written


async def community_admin_ids(db: AsyncSession, community_id: int) -> List[int]:
    result = await db.execute(
        select(CommunityMember.user_id)
        .where(CommunityMember.community_id == community_id)
        .where(CommunityMember.role == "community_admin")
        .where(CommunityMember.is_active.is_(True))
    )
    return [row[0] for row in result.fetchall()]


async def community_member_ids(db: AsyncSession, community_id: int, exclude: Iterable[int] = ()) -> List[int]:
    query = (
        select(CommunityMember.user_id)
        .where(CommunityMember.community_id == community_id)
        .where(CommunityMember.is_active.is_(True))
    )
    excluded = list(exclude)
    if excluded:
        query = query.where(CommunityMember.user_id.not_in(excluded))
    result = await db.execute(query)
    return [row[0] for row in result.fetchall()]
