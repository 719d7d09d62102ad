from sqlalchemy import Column, Integer, String, Boolean, DateTime, func
from app.database import Base

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    hashed_password = Column(String(255), nullable=True)
    role = Column(String, nullable=False, default="member", server_default="member")  # platform_admin, member
    is_active = Column(Boolean, nullable=False, default=True)

    # Cached totals; Contribution rows are the ledger behind `points`
    points = Column(Integer, nullable=False, default=0, server_default="0")
    current_streak = Column(Integer, nullable=False, default=0, server_default="0")

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def display_name(self) -> str:
        return self.name or self.email.split("@")[0]
