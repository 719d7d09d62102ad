"""Community tags and the tag sets attached to tasks."""

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from app.core.exceptions import Conflict, Forbidden, NotFound, ValidationFailed
from app.models.tag import TaskTagAssignment
from app.services import tags as service
from app.services import tasks as engine
from app.services.notifications import NotificationOutbox

from conftest import add_member, auth_headers, make_community, make_task, make_user


@pytest.fixture
async def garden(db):
    admin = await make_user(db, "Ada Admin")
    community = await make_community(db, admin)
    member = await make_user(db, "Amara")
    await add_member(db, community, member)
    return admin, member, community


async def tag_links(db, task_id):
    result = await db.execute(
        select(func.count(TaskTagAssignment.id)).where(TaskTagAssignment.task_id == task_id)
    )
    return result.scalar_one()


async def test_member_creates_tag_with_default_color(db, garden):
    _, member, community = garden

    tag = await service.create_tag(db, member, community.id, "  Weeding ")

    assert tag.name == "Weeding"
    assert tag.color == "#3B82F6"
    assert tag.creator.id == member.id


async def test_tag_names_are_unique_per_community(db, garden):
    admin, member, community = garden
    other = await make_community(db, admin, name="Hillside Beekeepers")
    await service.create_tag(db, member, community.id, "Weeding")

    with pytest.raises(Conflict):
        await service.create_tag(db, admin, community.id, "Weeding")
    elsewhere = await service.create_tag(db, admin, other.id, "Weeding")
    assert elsewhere.community_id == other.id


async def test_outsiders_cannot_create_tags(db, garden):
    _, _, community = garden
    outsider = await make_user(db, "Zed")

    with pytest.raises(Forbidden):
        await service.create_tag(db, outsider, community.id, "Weeding")


async def test_list_defaults_to_first_community(db, garden):
    _, member, community = garden
    await service.create_tag(db, member, community.id, "Watering")
    await service.create_tag(db, member, community.id, "Compost")

    tags = await service.list_tags(db, member)

    assert [t.name for t in tags] == ["Compost", "Watering"]

    loner = await make_user(db, "Loner")
    with pytest.raises(ValidationFailed):
        await service.list_tags(db, loner)


async def test_only_community_admins_edit_and_delete(db, garden):
    admin, member, community = garden
    tag = await service.create_tag(db, member, community.id, "Weeding")
    await service.create_tag(db, member, community.id, "Pruning")

    with pytest.raises(Forbidden):
        await service.update_tag(db, tag.id, member, {"color": "#00FF00"})
    with pytest.raises(Conflict):
        await service.update_tag(db, tag.id, admin, {"name": "Pruning"})

    renamed = await service.update_tag(db, tag.id, admin, {"name": "Mulching", "color": "#00FF00"})
    assert (renamed.name, renamed.color) == ("Mulching", "#00FF00")

    with pytest.raises(Forbidden):
        await service.delete_tag(db, tag.id, member)
    await service.delete_tag(db, tag.id, admin)
    with pytest.raises(NotFound):
        await service.delete_tag(db, tag.id, admin)


async def test_assigning_tags_replaces_the_set(db, garden):
    admin, member, community = garden
    task = await make_task(db, community, admin)
    weeding = await service.create_tag(db, member, community.id, "Weeding")
    urgent = await service.create_tag(db, member, community.id, "Urgent")
    shade = await service.create_tag(db, member, community.id, "Shade")

    first = await service.assign_tags_to_task(db, task.id, [weeding.id, urgent.id, weeding.id], member)
    assert [t.name for t in first] == ["Urgent", "Weeding"]

    second = await service.assign_tags_to_task(db, task.id, [shade.id], member)
    assert [t.name for t in second] == ["Shade"]
    assert await tag_links(db, task.id) == 1

    cleared = await service.assign_tags_to_task(db, task.id, [], member)
    assert cleared == []
    assert await service.tags_for_task(db, task.id, member) == []


async def test_tags_must_exist_and_share_the_task_community(db, garden):
    admin, member, community = garden
    task = await make_task(db, community, admin)
    other = await make_community(db, admin, name="Hillside Beekeepers")
    foreign = await service.create_tag(db, admin, other.id, "Honey")

    with pytest.raises(NotFound):
        await service.assign_tags_to_task(db, task.id, [99999], member)
    with pytest.raises(ValidationFailed):
        await service.assign_tags_to_task(db, task.id, [foreign.id], admin)
    assert await tag_links(db, task.id) == 0


async def test_tasks_by_tag_pages_newest_first(db, garden):
    admin, member, community = garden
    tag = await service.create_tag(db, member, community.id, "Weeding")
    older = await make_task(db, community, admin, title="Weed the beds")
    newer = await make_task(db, community, admin, title="Weed the path")
    await make_task(db, community, admin, title="Untagged chore")
    for task in (older, newer):
        await service.assign_tags_to_task(db, task.id, [tag.id], member)

    found, tasks, total = await service.tasks_by_tag(db, tag.id, member)
    assert found.id == tag.id
    assert total == 2
    assert [t.id for t in tasks] == [newer.id, older.id]

    _, page, total = await service.tasks_by_tag(db, tag.id, member, limit=1, offset=1)
    assert [t.id for t in page] == [older.id]
    assert total == 2


async def test_deleting_task_or_tag_drops_the_links(db, garden):
    admin, member, community = garden
    task = await make_task(db, community, admin)
    kept = await make_task(db, community, admin, title="Water the seedlings")
    tag = await service.create_tag(db, member, community.id, "Weeding")
    await service.assign_tags_to_task(db, task.id, [tag.id], member)
    await service.assign_tags_to_task(db, kept.id, [tag.id], member)

    await engine.delete_task(db, task.id, admin, NotificationOutbox())
    assert await tag_links(db, task.id) == 0

    await service.delete_tag(db, tag.id, admin)
    assert await tag_links(db, kept.id) == 0


async def test_tag_routes(client: AsyncClient, db, garden) -> None:
    admin, member, community = garden
    task = await make_task(db, community, admin)
    headers = auth_headers(member)

    created = await client.post(
        "/tags", json={"name": "Weeding", "color": "#22AA44", "community_id": community.id}, headers=headers
    )
    assert created.status_code == 201
    tag_id = created.json()["id"]
    assert created.json()["creator"]["name"] == "Amara"

    bad_color = await client.post(
        "/tags", json={"name": "Pruning", "color": "green", "community_id": community.id}, headers=headers
    )
    assert bad_color.status_code == 422

    duplicate = await client.post("/tags", json={"name": "Weeding", "community_id": community.id}, headers=headers)
    assert duplicate.status_code == 409

    listing = await client.get("/tags", params={"community_id": community.id}, headers=headers)
    assert listing.json()["total"] == 1

    tagged = await client.post(f"/tags/task/{task.id}", json={"tag_ids": [tag_id]}, headers=headers)
    assert tagged.status_code == 200
    assert [t["name"] for t in tagged.json()["tags"]] == ["Weeding"]

    by_tag = await client.get(f"/tags/{tag_id}/tasks", headers=headers)
    assert by_tag.json()["tag"]["color"] == "#22AA44"
    assert [t["id"] for t in by_tag.json()["tasks"]] == [task.id]

    refused = await client.delete(f"/tags/{tag_id}", headers=headers)
    assert refused.status_code == 403
    deleted = await client.delete(f"/tags/{tag_id}", headers=auth_headers(admin))
    assert deleted.status_code == 200
    assert (await client.get(f"/tags/task/{task.id}", headers=headers)).json()["tags"] == []
