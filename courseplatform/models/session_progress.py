"""Session progress model definitions."""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from courseplatform.database import Base


class SessionProgress(Base):
    """Tracks whether a user completed a session. One row per user and session."""
    __tablename__ = "session_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "session_id", name="session_progress_user_id_session_id_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    session_id = Column(String, ForeignKey("sessions.id"), nullable=False)
    completed = Column(Boolean, nullable=False, default=False)

    user = relationship("User", back_populates="session_progress")
    session = relationship("Session", back_populates="progress")
