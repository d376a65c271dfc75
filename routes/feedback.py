# routes/feedback.py

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError
from sqlmodel import Session, col, select

from db import get_session
from errors import InvalidArgument
from feedback_pipeline import submit_feedback
from models import Course, CourseAssignment, FeedbackForm, FeedbackResponse, Profile, utc_now
from schemas import FeedbackSubmitOut, FeedbackSubmitPayload
from security import Viewer, require_page_viewer, require_role

logger = logging.getLogger(__name__)

router = APIRouter(tags=["feedback"])


@router.post("/api/feedback/submit", response_model=FeedbackSubmitOut)
async def submit(
    request: Request,
    session: Session = Depends(get_session),
    viewer: Viewer = Depends(require_role("student")),
):
    """Record (or overwrite) the caller's feedback for a course."""

    payload = await _extract_payload(request)
    result = submit_feedback(
        session,
        viewer,
        course_code=payload.courseCode,
        course_name=payload.courseName,
        instructor_name=payload.instructorName,
        rating=payload.rating,
        comments=payload.comments,
        is_anonymous=bool(payload.isAnonymous),
    )
    return FeedbackSubmitOut(message=result.message, responseId=result.response_id)


@router.get("/feedback")
def feedback_page(
    session: Session = Depends(get_session),
    viewer: Viewer = Depends(require_page_viewer),
):
    """Active courses a student can leave feedback for, with the assigned teacher's name."""

    courses = session.exec(
        select(Course).where(Course.is_active == True).order_by(col(Course.course_code))  # noqa: E712
    ).all()

    teacher_names: dict[str, str | None] = {}
    rows = session.exec(
        select(CourseAssignment, Profile).join(
            Profile, col(Profile.id) == col(CourseAssignment.teacher_id)
        )
    ).all()
    for assignment, teacher in rows:
        teacher_names.setdefault(assignment.course_id, teacher.full_name)

    return {
        "student": {"id": viewer.user_id, "full_name": viewer.full_name},
        "courses": [
            {
                "id": course.id,
                "course_code": course.course_code,
                "course_name": course.course_name,
                "department": course.department,
                "instructor_name": teacher_names.get(course.id),
            }
            for course in courses
        ],
    }


@router.get("/student")
def student_dashboard(
    session: Session = Depends(get_session),
    viewer: Viewer = Depends(require_page_viewer),
):
    """Open feedback forms plus the student's own submissions, newest first."""

    now = utc_now()
    forms = session.exec(
        select(FeedbackForm, Course)
        .join(Course, col(Course.id) == col(FeedbackForm.course_id))
        .where(
            FeedbackForm.is_active == True,  # noqa: E712
            col(FeedbackForm.start_date) <= now,
            col(FeedbackForm.end_date) >= now,
        )
        .order_by(col(FeedbackForm.created_at).desc())
    ).all()

    responses = session.exec(
        select(FeedbackResponse, Course, FeedbackForm)
        .join(Course, col(Course.id) == col(FeedbackResponse.course_id), isouter=True)
        .join(FeedbackForm, col(FeedbackForm.id) == col(FeedbackResponse.form_id), isouter=True)
        .where(FeedbackResponse.student_id == viewer.user_id)
        .order_by(col(FeedbackResponse.submitted_at).desc())
    ).all()

    return {
        "profile": {"id": viewer.user_id, "full_name": viewer.full_name, "email": viewer.email},
        "available_forms": [
            {
                "id": form.id,
                "title": form.title,
                "description": form.description,
                "course_code": course.course_code,
                "course_name": course.course_name,
                "end_date": form.end_date,
            }
            for form, course in forms
        ],
        "my_responses": [
            {
                "id": response.id,
                "course_code": course.course_code if course else None,
                "course_name": course.course_name if course else None,
                "form_title": form.title if form else None,
                "is_anonymous": response.is_anonymous,
                "submitted_at": response.submitted_at,
            }
            for response, course, form in responses
        ],
    }


# --------------------------------------------------------------------------- #
# Helpers
# --------------------------------------------------------------------------- #
async def _extract_payload(request: Request) -> FeedbackSubmitPayload:
    try:
        payload_dict = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise InvalidArgument("Invalid JSON payload.") from exc
    if not isinstance(payload_dict, dict):
        raise InvalidArgument("JSON payload must be an object.")

    try:
        return FeedbackSubmitPayload(**payload_dict)
    except ValidationError as exc:
        logger.info("Rejected feedback payload: %s", exc.errors())
        raise InvalidArgument("Invalid feedback payload.") from exc
