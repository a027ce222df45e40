"""Course session (lesson) model definitions."""

import uuid

from sqlalchemy import Column, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from courseplatform.database import Base


def _new_session_id() -> str:
    return str(uuid.uuid4())


class Session(Base):
    """Represents one video lesson of a course."""
    __tablename__ = "sessions"

    id = Column(String, primary_key=True, default=_new_session_id)
    title = Column(String, nullable=False)
    video_url = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, index=True)

    course = relationship("Course", back_populates="sessions")
    progress = relationship("SessionProgress", back_populates="session")
