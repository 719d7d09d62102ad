from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import relationship
from app.database import Base

class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    community_id = Column(Integer, ForeignKey("communities.id"), nullable=False, index=True)
    assigned_by = Column(Integer, ForeignKey("users.id"), nullable=False)   # Who created it
    status = Column(String, nullable=False, default="not_started")  # not_started, in_progress, submitted, completed, cancelled, rejected
    priority = Column(String, nullable=False, default="medium")     # low, medium, high, urgent
    task_type = Column(String, nullable=False, default="individual")  # individual, group
    max_assignees = Column(Integer, nullable=False, default=1)
    deadline = Column(DateTime(timezone=True), nullable=True)
    estimated_hours = Column(Integer, nullable=True)

    submitted_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    review_notes = Column(Text, nullable=True)
    completion_date = Column(DateTime(timezone=True), nullable=True)

    # Denormalized from live Subtask rows
    subtask_count = Column(Integer, nullable=False, default=0)
    completed_subtask_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    creator = relationship("User", foreign_keys=[assigned_by])
    reviewer = relationship("User", foreign_keys=[reviewed_by])
    community = relationship("Community")
    assignments = relationship(
        "TaskAssignment",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="TaskAssignment.id",
    )
    subtasks = relationship("Subtask", back_populates="parent_task", cascade="all, delete-orphan")


class TaskAssignment(Base):
    __tablename__ = "task_assignments"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String, nullable=False, default="assigned")  # assigned, accepted, in_progress, submitted, completed, rejected
    notes = Column(Text, nullable=True)

    assigned_at = Column(DateTime(timezone=True), server_default=func.now())
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)

    submission_link = Column(String(500), nullable=True)
    submission_notes = Column(Text, nullable=True)
    review_notes = Column(Text, nullable=True)
    reviewed_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    task = relationship("Task", back_populates="assignments")
    user = relationship("User", foreign_keys=[user_id])

    __table_args__ = (UniqueConstraint("task_id", "user_id", name="uq_task_assignment_task_user"),)
