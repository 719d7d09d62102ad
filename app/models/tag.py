from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import relationship
from app.database import Base

class TaskTag(Base):
    __tablename__ = "task_tags"

    id = Column(Integer, primary_key=True, index=True)
    community_id = Column(Integer, ForeignKey("communities.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    color = Column(String(20), nullable=False, default="#3B82F6")  # hex, e.g. #3B82F6
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    creator = relationship("User")
    assignments = relationship("TaskTagAssignment", back_populates="tag", cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (UniqueConstraint("community_id", "name", name="uq_task_tag_community_name"),)


class TaskTagAssignment(Base):
    __tablename__ = "task_tag_assignments"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    tag_id = Column(Integer, ForeignKey("task_tags.id", ondelete="CASCADE"), nullable=False, index=True)
    assigned_at = Column(DateTime(timezone=True), server_default=func.now())

    tag = relationship("TaskTag", back_populates="assignments")

    __table_args__ = (UniqueConstraint("task_id", "tag_id", name="uq_task_tag_assignment"),)
