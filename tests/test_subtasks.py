"""Subtask bookkeeping: positions and the counters cached on the parent task."""

import pytest
from sqlalchemy import select

from app.core.exceptions import Forbidden, NotFound, ValidationFailed
from app.models.task import Task
from app.services import subtasks as service

from conftest import add_member, make_community, make_task, make_user


@pytest.fixture
async def setup(db):
    admin = await make_user(db, "Ada Admin")
    community = await make_community(db, admin)
    member = await make_user(db, "Amara")
    await add_member(db, community, member)
    task = await make_task(db, community, admin)
    return admin, member, task


async def counters(db, task_id):
    result = await db.execute(
        select(Task.subtask_count, Task.completed_subtask_count).where(Task.id == task_id)
    )
    return tuple(result.one())


async def test_new_subtasks_append_after_the_highest_position(db, setup):
    _, member, task = setup

    first = await service.create_subtask(db, task.id, member, "Buy seeds")
    placed = await service.create_subtask(db, task.id, member, "Dig rows", position=7)
    appended = await service.create_subtask(db, task.id, member, "Plant")

    assert first.position == 1
    assert placed.position == 7
    assert appended.position == 8
    assert await counters(db, task.id) == (3, 0)


async def test_completion_counter_moves_only_on_real_edges(db, setup):
    _, member, task = setup
    subtask = await service.create_subtask(db, task.id, member, "Buy seeds")

    done = await service.update_subtask(db, subtask.id, member, {"status": "completed"})
    assert done.completed_at is not None
    assert done.completed_by == member.id
    assert await counters(db, task.id) == (1, 1)

    # Completed again: no edge, no change
    await service.update_subtask(db, subtask.id, member, {"status": "completed", "description": "organic"})
    assert await counters(db, task.id) == (1, 1)

    reopened = await service.update_subtask(db, subtask.id, member, {"status": "in_progress"})
    assert reopened.completed_at is None
    assert reopened.completed_by is None
    assert await counters(db, task.id) == (1, 0)


async def test_deleting_completed_subtask_decrements_both_counters(db, setup):
    _, member, task = setup
    keep = await service.create_subtask(db, task.id, member, "Buy seeds")
    gone = await service.create_subtask(db, task.id, member, "Dig rows")
    await service.update_subtask(db, gone.id, member, {"status": "completed"})
    assert await counters(db, task.id) == (2, 1)

    await service.delete_subtask(db, gone.id, member)

    assert await counters(db, task.id) == (1, 0)
    remaining, progress = await service.list_subtasks(db, task.id, member)
    assert [s.id for s in remaining] == [keep.id]
    assert progress == {"total": 1, "completed": 0, "percentage": 0}


async def test_counters_never_go_negative(db, setup):
    _, member, task = setup
    subtask = await service.create_subtask(db, task.id, member, "Buy seeds")
    await service.update_subtask(db, subtask.id, member, {"status": "completed"})

    stored = await db.get(Task, task.id)
    stored.subtask_count = 0
    stored.completed_subtask_count = 0
    await db.commit()

    await service.delete_subtask(db, subtask.id, member)
    assert await counters(db, task.id) == (0, 0)


async def test_reorder_reindexes_and_ignores_foreign_ids(db, setup):
    admin, member, task = setup
    a = await service.create_subtask(db, task.id, member, "A")
    b = await service.create_subtask(db, task.id, member, "B")
    c = await service.create_subtask(db, task.id, member, "C")
    other_task = await make_task(db, task.community, admin, title="Other")
    stranger = await service.create_subtask(db, other_task.id, member, "Elsewhere")

    ordered = await service.reorder_subtasks(db, task.id, [c.id, stranger.id, a.id, b.id], member)

    assert [(s.id, s.position) for s in ordered] == [(c.id, 0), (a.id, 2), (b.id, 3)]
    untouched, _ = await service.list_subtasks(db, other_task.id, member)
    assert untouched[0].position == 1


async def test_progress_percentage_is_rounded(db, setup):
    _, member, task = setup
    ids = [(await service.create_subtask(db, task.id, member, f"Step {i}")).id for i in range(3)]
    await service.update_subtask(db, ids[0], member, {"status": "completed"})

    _, progress = await service.list_subtasks(db, task.id, member)

    assert progress == {"total": 3, "completed": 1, "percentage": 33}


async def test_subtasks_require_membership(db, setup):
    _, member, task = setup
    outsider = await make_user(db, "Outsider")

    with pytest.raises(Forbidden):
        await service.create_subtask(db, task.id, outsider, "Sneak in")
    with pytest.raises(Forbidden):
        await service.list_subtasks(db, task.id, outsider)


async def test_subtask_validation_and_lookup(db, setup):
    _, member, task = setup
    with pytest.raises(ValidationFailed):
        await service.create_subtask(db, task.id, member, "   ")
    with pytest.raises(NotFound):
        await service.update_subtask(db, 31337, member, {"status": "completed"})
    with pytest.raises(NotFound):
        await service.create_subtask(db, 31337, member, "Orphan")


async def test_unknown_assignee_is_refused(db, setup):
    admin, member, task = setup

    with pytest.raises(NotFound):
        await service.create_subtask(db, task.id, admin, "Buy seeds", assigned_to=99999)
    assert await counters(db, task.id) == (0, 0)

    subtask = await service.create_subtask(db, task.id, admin, "Buy seeds", assigned_to=member.id)
    assert subtask.assigned_to == member.id
    with pytest.raises(NotFound):
        await service.update_subtask(db, subtask.id, admin, {"assigned_to": 99999})


async def test_update_trims_title_and_ignores_null_status(db, setup):
    _, member, task = setup
    subtask = await service.create_subtask(db, task.id, member, "Buy seeds")

    updated = await service.update_subtask(db, subtask.id, member, {"title": "  Buy bulbs ", "status": None})

    assert updated.title == "Buy bulbs"
    assert updated.status == "not_started"
