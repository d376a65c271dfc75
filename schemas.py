# schemas.py
# ==========================================================
# Pydantic schemas for the course feedback API
# Request payloads keep the camelCase keys the web client sends.
# ==========================================================

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field


# ---------------------- Auth Schemas ----------------------
class SignInPayload(BaseModel):
    email: str
    password: str


class SignUpPayload(BaseModel):
    email: str
    password: str
    role: str = "student"
    full_name: str
    department: Optional[str] = None
    enrollment_number: Optional[str] = None
    employee_id: Optional[str] = None
    year: Optional[int] = None


class ViewerOut(BaseModel):
    id: str
    email: Optional[str] = None
    role: Optional[str] = None
    full_name: Optional[str] = None


class SignInOut(BaseModel):
    user: ViewerOut
    access_token: str
    redirect_to: str


# ---------------------- Feedback Submission ----------------------
class FeedbackSubmitPayload(BaseModel):
    """Raw submission body; values are validated by the submission pipeline."""

    courseCode: Optional[str] = None
    courseName: Optional[str] = None
    instructorName: Optional[str] = None
    rating: Any = None
    comments: Optional[str] = None
    isAnonymous: Optional[bool] = False


class FeedbackSubmitOut(BaseModel):
    message: str
    responseId: str


# ---------------------- Teacher Provisioning ----------------------
class TeacherCreatePayload(BaseModel):
    fullName: Optional[str] = None
    employeeId: Optional[str] = None
    department: Optional[str] = None


class TeacherSummary(BaseModel):
    id: str
    email: str
    full_name: str
    employee_id: str
    department: str


class TeacherCredentials(BaseModel):
    username: str
    email: str
    password: str


class TeacherCreateOut(BaseModel):
    message: str
    user: TeacherSummary
    credentials: TeacherCredentials


# ---------------------- Teacher Forms ----------------------
class QuestionDraft(BaseModel):
    question_text: str = ""
    question_type: str = "text"
    is_required: bool = False
    options: Optional[List[str]] = None


class FormCreatePayload(BaseModel):
    title: str = ""
    description: Optional[str] = None
    course_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    questions: List[QuestionDraft] = Field(default_factory=list)


class QuestionOut(BaseModel):
    id: str
    question_text: str
    question_type: str
    order_number: int
    is_required: bool
    options: Optional[List[str]] = None


class FormOut(BaseModel):
    id: str
    course_id: str
    title: str
    description: Optional[str] = None
    academic_year: str
    is_active: bool
    start_date: datetime
    end_date: datetime
    created_by: Optional[str] = None
    questions: List[QuestionOut] = Field(default_factory=list)


# ---------------------- Analytics ----------------------
class RatingBucket(BaseModel):
    rating: int
    count: int
    bar_width: float


class CourseSummary(BaseModel):
    code: str
    name: str
    department: Optional[str] = None
    responses: int
    average_rating: Optional[float] = None


class TeacherBreakdown(BaseModel):
    teacher: str
    responses: int
    average_rating: Optional[float] = None


class CommentOut(BaseModel):
    id: str
    comment: str
    rating: Optional[float] = None
    course_code: Optional[str] = None
    course_name: Optional[str] = None
    teacher_name: Optional[str] = None
    is_anonymous: bool = False
    submitted_at: datetime


class AnalyticsOut(BaseModel):
    role: str
    course_filter: Optional[str] = None
    total_responses: int
    rated_responses: int
    average_rating: Optional[float] = None
    latest_submitted_at: Optional[datetime] = None
    rating_distribution: List[RatingBucket]
    courses: List[CourseSummary]
    recent_comments: List[CommentOut]
    teacher_breakdown: Optional[List[TeacherBreakdown]] = None
