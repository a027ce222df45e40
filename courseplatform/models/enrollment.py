"""Enrollment model definitions."""

from sqlalchemy import Column, ForeignKey, Integer
from sqlalchemy.orm import relationship

from courseplatform.database import Base


class Enrollment(Base):
    """Records that a user joined a course."""
    __tablename__ = "enrollments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, index=True)

    user = relationship("User", back_populates="enrollments")
    course = relationship("Course", back_populates="enrollments")
