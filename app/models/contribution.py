from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, CheckConstraint, func
from app.database import Base

class Contribution(Base):
    """Insert-only point ledger. `User.points` caches the running sum."""

    __tablename__ = "contributions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True)
    community_id = Column(Integer, ForeignKey("communities.id"), nullable=False, index=True)
    points = Column(Integer, nullable=False)
    type = Column(String, nullable=False)  # task_completion, event_attendance, discussion_participation, other
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (CheckConstraint("points >= 0", name="ck_contribution_points_non_negative"),)
