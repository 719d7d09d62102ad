"""Outbox delivery: rendering, persistence and failure isolation."""

from sqlalchemy import select

from app.database import AsyncSessionLocal
from app.models.notification import Notification
from app.services import notifications as events
from app.services.notifications import NotificationOutbox, TaskEvent, dispatch_events, render

from conftest import make_user


def _event(event_type=events.TASK_ASSIGNED, recipients=(1,), **extra):
    return TaskEvent(
        type=event_type,
        task_id=7,
        task_title="Fix the gate",
        actor_name="Ada",
        community_id=3,
        community_name="Riverside Gardeners",
        recipient_ids=list(recipients),
        **extra,
    )


def test_outbox_drops_events_without_recipients():
    outbox = NotificationOutbox()
    outbox.publish(_event(recipients=()))
    outbox.publish(_event(recipients=(4,)))

    drained = outbox.drain()

    assert [e.recipient_ids for e in drained] == [[4]]
    assert outbox.drain() == []


def test_render_includes_actor_task_and_community():
    title, message = render(_event())
    assert title == "Task Assigned"
    assert message == 'You have been assigned to task "Fix the gate" by Ada in Riverside Gardeners.'


def test_render_rejection_carries_reason():
    _, message = render(_event(events.TASK_REJECTED, reason="blurry photo"))
    assert message.endswith("Reason: blurry photo")


async def test_dispatch_writes_one_row_per_recipient(db):
    amara = await make_user(db, "Amara")
    bo = await make_user(db, "Bo")

    written = await dispatch_events([
        _event(events.TASK_SUBMITTED, recipients=(amara.id, bo.id, amara.id), priority="high"),
    ])

    assert written == 2
    rows = (await db.execute(select(Notification).order_by(Notification.user_id))).scalars().all()
    assert [r.user_id for r in rows] == [amara.id, bo.id]
    assert {r.type for r in rows} == {"task_submitted"}
    assert {r.priority for r in rows} == {"high"}
    assert all(r.related_id == 7 and not r.is_read for r in rows)


async def test_dispatch_failure_is_logged_not_raised(db, caplog):
    amara = await make_user(db, "Amara")

    class BrokenSession:
        async def __aenter__(self):
            raise RuntimeError("database unavailable")

        async def __aexit__(self, *exc):
            return False

    written = await dispatch_events([_event(recipients=(amara.id,))], session_factory=BrokenSession)

    assert written == 0
    assert "Failed to deliver task_assigned notifications" in caplog.text


async def test_one_bad_event_does_not_block_the_rest(db):
    amara = await make_user(db, "Amara")

    written = await dispatch_events(
        [_event("task_exploded", recipients=(amara.id,)), _event(recipients=(amara.id,))],
        session_factory=AsyncSessionLocal,
    )

    assert written == 1
