"""Pytest configuration and fixtures for the Loomio backend.

The settings object is built at import time, so the database URL is pointed
at a throwaway SQLite file before anything under ``app`` is imported. Tables
are recreated for every test.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone

_DB_DIR = tempfile.mkdtemp(prefix="loomio-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import create_access_token
from app.database import AsyncSessionLocal, Base, engine
from app.main import app
from app.models.community import Community, CommunityMember
from app.models.task import Task
from app.models.user import User
from app.schemas.task import TaskCreate
from app.services import tasks as engine_ops
from app.services.notifications import NotificationOutbox

_counter = {"n": 0}


def _next() -> int:
    _counter["n"] += 1
    return _counter["n"]


@pytest.fixture(autouse=True)
async def _schema():
    """Fresh tables per test; connections are dropped so no loop outlives its test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest.fixture
async def db() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
async def client() -> AsyncClient:
    """Async HTTP client against the FastAPI app (ASGI)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def outbox() -> NotificationOutbox:
    return NotificationOutbox()


async def make_user(db: AsyncSession, name: str = None, role: str = "member") -> User:
    n = _next()
    user = User(
        email=f"user{n}@loomio.app",
        name=name or f"User {n}",
        role=role,
        hashed_password=None,
    )
    db.add(user)
    await db.commit()
    return user


async def make_community(db: AsyncSession, admin: User, name: str = "Riverside Gardeners") -> Community:
    n = _next()
    community = Community(name=name, code=f"C{n:05d}"[:6], created_by=admin.id)
    db.add(community)
    await db.flush()
    db.add(CommunityMember(user_id=admin.id, community_id=community.id, role="community_admin"))
    await db.commit()
    return community


async def add_member(db: AsyncSession, community: Community, user: User, role: str = "member") -> CommunityMember:
    membership = CommunityMember(user_id=user.id, community_id=community.id, role=role)
    db.add(membership)
    await db.commit()
    return membership


async def make_task(
    db: AsyncSession,
    community: Community,
    admin: User,
    task_type: str = "individual",
    max_assignees: int = 1,
    deadline: datetime = None,
    assignee_ids=(),
    title: str = "Clear the compost bins",
) -> Task:
    task_in = TaskCreate(
        title=title,
        community_id=community.id,
        task_type=task_type,
        max_assignees=max_assignees,
        deadline=deadline,
        assignee_ids=list(assignee_ids),
    )
    task = await engine_ops.create_task(db, task_in, admin, NotificationOutbox())
    await db.commit()
    return task


def future(days: int = 7) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}
