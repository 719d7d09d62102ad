# app/main.py
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import exc as sa_exc

from app.config import settings
from app.core.exceptions import register_exception_handlers
from app.database import Base, engine
from app.models import community, contribution, notification, subtask, tag, task, user  # noqa: F401  register tables
from app.routers import auth, community as community_router, leaderboard, notification as notification_router
from app.routers import subtask as subtask_router, tag as tag_router, task as task_router

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Loomio - Community Task Management", version="1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_origins != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include Routers
app.include_router(auth.router)
app.include_router(community_router.router)
app.include_router(task_router.router)
app.include_router(subtask_router.router)
app.include_router(tag_router.router)
app.include_router(notification_router.router)
app.include_router(leaderboard.router)

# Create DB Tables (for local runs; use Alembic in prod)
@app.on_event("startup")
async def startup_event():
    # ignore duplicate-object errors from previous partial runs.
    async with engine.begin() as conn:
        try:
            await conn.run_sync(Base.metadata.create_all)
        except sa_exc.IntegrityError as e:
            msg = str(getattr(e, "orig", e))
            if "duplicate key value violates unique constraint" in msg or "already exists" in msg:
                logger.warning("Ignored duplicate DDL error during create_all: %s", msg)
            else:
                raise

@app.get("/")
def read_root():
    return {"message": "Welcome to the Loomio API"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True)
