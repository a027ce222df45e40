"""Rating model definitions."""

from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from courseplatform.database import Base, UTCDateTime


class Rating(Base):
    """A user's star rating of a course. One per user and course."""
    __tablename__ = "ratings"
    __table_args__ = (
        UniqueConstraint("user_id", "course_id", name="ratings_user_id_course_id_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, index=True)
    stars = Column(Integer, nullable=False)
    review = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    user = relationship("User", back_populates="ratings")
    course = relationship("Course", back_populates="ratings")
    comments = relationship("Comment", back_populates="rating")
