# models.py
# ==========================================================
# SQLModel tables for the course feedback store
# Profiles ↔ Courses ↔ Forms ↔ Questions ↔ Responses ↔ Answers
# Table names mirror the Supabase schema.
# ==========================================================

from datetime import datetime, timezone
from typing import Optional
import uuid

from sqlalchemy import Column, ForeignKey, JSON, String, UniqueConstraint
from sqlmodel import Field, SQLModel

ROLES = ("student", "teacher", "admin")
QUESTION_TYPES = ("rating", "text", "multiple_choice")


def _new_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes from clients are read as UTC; aware ones are converted."""
    if value.tzinfo is None or value.utcoffset() is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------- Profile ----------------------
class Profile(SQLModel, table=True):
    """
    Application-level mirror of a Supabase auth account.
    `id` always equals the auth user id; rows are kept in sync by the
    database trigger or by the admin provisioning code paths.
    """

    __tablename__ = "profiles"

    id: str = Field(primary_key=True)
    email: Optional[str] = Field(default=None, index=True)
    full_name: Optional[str] = None
    role: str = Field(default="student", index=True)
    department: Optional[str] = None
    employee_id: Optional[str] = None
    enrollment_number: Optional[str] = None
    year: Optional[int] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# ---------------------- Course ----------------------
class Course(SQLModel, table=True):
    __tablename__ = "courses"

    id: str = Field(default_factory=_new_id, primary_key=True)
    course_code: str = Field(unique=True, index=True)
    course_name: str
    department: Optional[str] = None
    year: Optional[int] = None
    semester: Optional[int] = None
    credits: int = 0
    description: Optional[str] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# ---------------------- Course assignment ----------------------
class CourseAssignment(SQLModel, table=True):
    """
    Links a teacher to a course. Nothing here stops two teachers from being
    assigned to the same course; readers take the first row they get.
    """

    __tablename__ = "course_assignments"

    id: str = Field(default_factory=_new_id, primary_key=True)
    course_id: str = Field(foreign_key="courses.id", index=True)
    teacher_id: str = Field(foreign_key="profiles.id", index=True)
    created_at: datetime = Field(default_factory=utc_now)


# ---------------------- Feedback form ----------------------
class FeedbackForm(SQLModel, table=True):
    __tablename__ = "feedback_forms"

    id: str = Field(default_factory=_new_id, primary_key=True)
    course_id: str = Field(foreign_key="courses.id", index=True)
    title: str
    description: Optional[str] = None
    academic_year: str
    semester: int = 1
    is_active: bool = True
    start_date: datetime
    end_date: datetime
    created_by: Optional[str] = Field(default=None, foreign_key="profiles.id")
    created_at: datetime = Field(default_factory=utc_now, index=True)


# ---------------------- Feedback question ----------------------
class FeedbackQuestion(SQLModel, table=True):
    __tablename__ = "feedback_questions"

    id: str = Field(default_factory=_new_id, primary_key=True)
    form_id: str = Field(foreign_key="feedback_forms.id", index=True)
    question_text: str
    question_type: str = "rating"  # one of QUESTION_TYPES
    options: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    order_number: int = 1
    is_required: bool = False


# ---------------------- Feedback response ----------------------
class FeedbackResponse(SQLModel, table=True):
    """
    One student's submission for a (form, course, teacher) tuple.
    Resubmitting overwrites the row through the unique constraint below.
    """

    __tablename__ = "feedback_responses"
    __table_args__ = (
        UniqueConstraint(
            "form_id",
            "course_id",
            "teacher_id",
            "student_id",
            name="feedback_responses_submission_key",
        ),
    )

    id: str = Field(default_factory=_new_id, primary_key=True)
    form_id: str = Field(foreign_key="feedback_forms.id", index=True)
    course_id: str = Field(foreign_key="courses.id", index=True)
    teacher_id: Optional[str] = Field(default=None, foreign_key="profiles.id", index=True)
    student_id: str = Field(index=True)
    is_anonymous: bool = False
    submitted_at: datetime = Field(default_factory=utc_now)


# ---------------------- Feedback answer ----------------------
class FeedbackAnswer(SQLModel, table=True):
    """Owned by its response; replaced wholesale on every resubmission."""

    __tablename__ = "feedback_answers"

    id: str = Field(default_factory=_new_id, primary_key=True)
    response_id: str = Field(
        sa_column=Column(
            String,
            ForeignKey("feedback_responses.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    question_id: str = Field(foreign_key="feedback_questions.id")
    answer_rating: Optional[float] = None
    answer_text: Optional[str] = None
