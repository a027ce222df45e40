"""Scalar input schemas for create and update data.

Relation keys are split off before validation, so these models only describe
the columns a caller may write directly. Foreign keys are optional here
because the same link can be given through a nested ``connect``; missing
required links are reported by the write layer.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, field_validator

from courseplatform.models.user import Role


class _Input(BaseModel):
    model_config = ConfigDict(extra="forbid")


class _Timestamped(_Input):
    created_at: datetime | None = None

    @field_validator("created_at")
    @classmethod
    def created_at_in_utc(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class UserCreate(_Input):
    id: int | None = None
    name: str
    email: str
    password: str | None = None
    role: Role | None = None


class UserUpdate(_Input):
    id: int | None = None
    name: str | None = None
    email: str | None = None
    password: str | None = None
    role: Role | None = None


class CourseCreate(_Input):
    id: int | None = None
    title: str
    description: str
    category: str
    thumbnail: str | None = None
    instructor_id: int | None = None


class CourseUpdate(_Input):
    id: int | None = None
    title: str | None = None
    description: str | None = None
    category: str | None = None
    thumbnail: str | None = None
    instructor_id: int | None = None


class SessionCreate(_Input):
    id: str | None = None
    title: str
    video_url: str
    content: str
    course_id: int | None = None


class SessionUpdate(_Input):
    id: str | None = None
    title: str | None = None
    video_url: str | None = None
    content: str | None = None
    course_id: int | None = None


class SessionProgressCreate(_Input):
    id: int | None = None
    user_id: int | None = None
    session_id: str | None = None
    completed: bool | None = None


class SessionProgressUpdate(_Input):
    id: int | None = None
    user_id: int | None = None
    session_id: str | None = None
    completed: bool | None = None


class EnrollmentCreate(_Input):
    id: int | None = None
    user_id: int | None = None
    course_id: int | None = None


class EnrollmentUpdate(EnrollmentCreate):
    pass


class RatingCreate(_Timestamped):
    id: int | None = None
    user_id: int | None = None
    course_id: int | None = None
    stars: int
    review: str | None = None


class RatingUpdate(_Timestamped):
    id: int | None = None
    user_id: int | None = None
    course_id: int | None = None
    stars: int | None = None
    review: str | None = None


class CommentCreate(_Timestamped):
    id: int | None = None
    user_id: int | None = None
    rating_id: int | None = None
    content: str


class CommentUpdate(_Timestamped):
    id: int | None = None
    user_id: int | None = None
    rating_id: int | None = None
    content: str | None = None


INPUT_SCHEMAS: dict[str, tuple[type[BaseModel], type[BaseModel]]] = {
    "User": (UserCreate, UserUpdate),
    "Course": (CourseCreate, CourseUpdate),
    "Session": (SessionCreate, SessionUpdate),
    "SessionProgress": (SessionProgressCreate, SessionProgressUpdate),
    "Enrollment": (EnrollmentCreate, EnrollmentUpdate),
    "Rating": (RatingCreate, RatingUpdate),
    "Comment": (CommentCreate, CommentUpdate),
}
