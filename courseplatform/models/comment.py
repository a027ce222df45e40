"""Comment model definitions."""

from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship

from courseplatform.database import Base, UTCDateTime


class Comment(Base):
    """A reply posted under a rating."""
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    rating_id = Column(Integer, ForeignKey("ratings.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    user = relationship("User", back_populates="comments")
    rating = relationship("Rating", back_populates="comments")
