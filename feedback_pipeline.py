"""
Student feedback submission.

A submission names a course by code (and optionally the instructor by name).
Everything it needs in the store is resolved or created on the way: the
course, the teacher attribution, an active feedback form and its default
rating/comment questions. The response row is then upserted on
(form, course, teacher, student) and its answers are replaced wholesale.

Steps commit one at a time and nothing is rolled back across steps. Every
resolve-or-create step re-checks the store first, so re-running a failed
submission converges on the same rows.
"""

from __future__ import annotations

import logging
import math
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterator

from sqlalchemy import delete, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from errors import Forbidden, InvalidArgument, Unauthenticated, UpstreamFailure
from models import (
    Course,
    CourseAssignment,
    FeedbackAnswer,
    FeedbackForm,
    FeedbackQuestion,
    FeedbackResponse,
    Profile,
    as_utc,
    utc_now,
)
from security import Viewer

logger = logging.getLogger(__name__)

DEFAULT_FORM_TITLE = "Course Feedback"
DEFAULT_RATING_QUESTION = "How would you rate this course overall?"
DEFAULT_COMMENT_QUESTION = "Share any additional comments for the instructor."

FORM_LEAD_TIME = timedelta(days=7)
FORM_LIFETIME = timedelta(days=180)

RATING_ERROR = "Rating must be between 1 and 5."
SUBMISSION_KEY = ("form_id", "course_id", "teacher_id", "student_id")


@dataclass(frozen=True)
class FeedbackSubmission:
    course_code: str
    course_name: str | None
    instructor_name: str | None
    rating: float
    comment: str | None
    is_anonymous: bool


@dataclass(frozen=True)
class DefaultQuestions:
    rating_question_id: str
    comment_question_id: str


@dataclass(frozen=True)
class SubmissionResult:
    response_id: str
    course_id: str
    form_id: str
    teacher_id: str | None
    message: str = "Feedback saved successfully."


def academic_year_for(moment: datetime) -> str:
    """July onwards belongs to the year that starts now; earlier months to the previous one."""
    year = moment.year
    if moment.month >= 7:
        return f"{year}-{year + 1}"
    return f"{year - 1}-{year}"


def parse_rating(value: Any) -> float:
    if value is None or isinstance(value, bool):
        raise InvalidArgument(RATING_ERROR)
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise InvalidArgument(RATING_ERROR)
    try:
        rating = float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidArgument(RATING_ERROR) from exc

    if not math.isfinite(rating) or rating < 1 or rating > 5:
        raise InvalidArgument(RATING_ERROR)
    return rating


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def validate_submission(
    *,
    course_code: str | None,
    course_name: str | None = None,
    instructor_name: str | None = None,
    rating: Any = None,
    comments: str | None = None,
    is_anonymous: bool = False,
) -> FeedbackSubmission:
    code = _clean(course_code)
    if not code:
        raise InvalidArgument("Course code is required.")

    return FeedbackSubmission(
        course_code=code,
        course_name=_clean(course_name),
        instructor_name=_clean(instructor_name),
        rating=parse_rating(rating),
        comment=_clean(comments),
        is_anonymous=bool(is_anonymous),
    )


@contextmanager
def _store_step(session: Session, action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        session.rollback()
        message = str(getattr(exc, "orig", None) or exc)
        logger.error("Feedback store step failed (%s): %s", action, message)
        raise UpstreamFailure(f"Failed to {action}: {message}") from exc


# --------------------------------------------------------------------------- #
# Resolve-or-create steps
# --------------------------------------------------------------------------- #
def ensure_course(session: Session, course_code: str, course_name: str | None, *, now: datetime) -> str:
    with _store_step(session, "look up course"):
        existing = session.exec(select(Course).where(Course.course_code == course_code)).first()
    if existing:
        return existing.id

    course = Course(
        course_code=course_code,
        course_name=course_name or course_code,
        department="General",
        year=1,
        semester=1,
        credits=0,
        description="Auto-generated from feedback submission",
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    course_id = course.id
    with _store_step(session, "create course record"):
        session.add(course)
        session.commit()

    logger.info("Auto-created course %s (%s) from a feedback submission", course_code, course_id)
    return course_id


def resolve_teacher_id(session: Session, course_id: str, instructor_name: str | None) -> str | None:
    """
    First course assignment wins; otherwise a teacher profile whose full name
    matches `instructor_name` case-insensitively. None leaves the response
    unattributed.
    """
    with _store_step(session, "resolve teacher assignment"):
        assignment = session.exec(
            select(CourseAssignment).where(CourseAssignment.course_id == course_id)
        ).first()
    if assignment and assignment.teacher_id:
        return assignment.teacher_id

    if not instructor_name:
        return None

    with _store_step(session, "look up teacher profile"):
        teacher = session.exec(
            select(Profile).where(
                Profile.role == "teacher",
                func.lower(Profile.full_name) == instructor_name.lower(),
            )
        ).first()
    return teacher.id if teacher else None


def ensure_feedback_form(
    session: Session,
    course_id: str,
    created_by: str | None,
    *,
    now: datetime,
) -> str:
    with _store_step(session, "fetch feedback form"):
        existing = session.exec(
            select(FeedbackForm)
            .where(
                FeedbackForm.course_id == course_id,
                FeedbackForm.is_active == True,  # noqa: E712
            )
            .order_by(col(FeedbackForm.created_at).desc())
        ).first()
    if existing:
        return existing.id

    form = FeedbackForm(
        course_id=course_id,
        title=DEFAULT_FORM_TITLE,
        description="Auto-generated feedback form",
        academic_year=academic_year_for(now),
        semester=1,
        is_active=True,
        start_date=now - FORM_LEAD_TIME,
        end_date=now + FORM_LIFETIME,
        created_by=created_by,
        created_at=now,
    )
    form_id = form.id
    with _store_step(session, "create feedback form"):
        session.add(form)
        session.commit()

    logger.info("Auto-created feedback form %s for course %s", form_id, course_id)
    return form_id


def ensure_default_questions(session: Session, form_id: str) -> DefaultQuestions:
    """Make sure the form has a rating and a text question. Other questions are left alone."""
    with _store_step(session, "fetch feedback questions"):
        existing = session.exec(
            select(FeedbackQuestion)
            .where(FeedbackQuestion.form_id == form_id)
            .order_by(col(FeedbackQuestion.order_number))
        ).all()

    rating_question = next((q for q in existing if q.question_type == "rating"), None)
    comment_question = next((q for q in existing if q.question_type == "text"), None)

    created: list[FeedbackQuestion] = []
    if rating_question is None:
        rating_question = FeedbackQuestion(
            form_id=form_id,
            question_text=DEFAULT_RATING_QUESTION,
            question_type="rating",
            order_number=1,
            is_required=False,
        )
        created.append(rating_question)
    if comment_question is None:
        comment_question = FeedbackQuestion(
            form_id=form_id,
            question_text=DEFAULT_COMMENT_QUESTION,
            question_type="text",
            order_number=2,
            is_required=False,
        )
        created.append(comment_question)

    ids = DefaultQuestions(
        rating_question_id=rating_question.id,
        comment_question_id=comment_question.id,
    )

    if created:
        with _store_step(session, "create default feedback questions"):
            session.add_all(created)
            session.commit()
        logger.info("Added %s default question(s) to form %s", len(created), form_id)

    return ids


# --------------------------------------------------------------------------- #
# Response + answers
# --------------------------------------------------------------------------- #
def _dialect_insert(session: Session):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise UpstreamFailure(f"Feedback upsert is not supported on the {dialect} dialect.")


def upsert_response(
    session: Session,
    *,
    form_id: str,
    course_id: str,
    teacher_id: str | None,
    student_id: str,
    is_anonymous: bool,
    now: datetime,
) -> str:
    """Insert the response, or refresh `is_anonymous`/`submitted_at` on the existing one."""
    if teacher_id is None:
        return _upsert_unattributed_response(
            session,
            form_id=form_id,
            course_id=course_id,
            student_id=student_id,
            is_anonymous=is_anonymous,
            now=now,
        )

    table = FeedbackResponse.__table__
    insert = _dialect_insert(session)
    stmt = insert(table).values(
        id=str(uuid.uuid4()),
        form_id=form_id,
        course_id=course_id,
        teacher_id=teacher_id,
        student_id=student_id,
        is_anonymous=is_anonymous,
        submitted_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=list(SUBMISSION_KEY),
        set_={
            "is_anonymous": stmt.excluded.is_anonymous,
            "submitted_at": stmt.excluded.submitted_at,
        },
    ).returning(table.c.id)

    with _store_step(session, "store feedback response"):
        response_id = session.execute(stmt).scalar_one()
        session.commit()
    return response_id


def _upsert_unattributed_response(
    session: Session,
    *,
    form_id: str,
    course_id: str,
    student_id: str,
    is_anonymous: bool,
    now: datetime,
) -> str:
    # NULL never conflicts in a unique index, so look the row up explicitly.
    with _store_step(session, "store feedback response"):
        response = session.exec(
            select(FeedbackResponse).where(
                FeedbackResponse.form_id == form_id,
                FeedbackResponse.course_id == course_id,
                col(FeedbackResponse.teacher_id).is_(None),
                FeedbackResponse.student_id == student_id,
            )
        ).first()
        if response is None:
            response = FeedbackResponse(
                form_id=form_id,
                course_id=course_id,
                teacher_id=None,
                student_id=student_id,
            )
        response.is_anonymous = is_anonymous
        response.submitted_at = now
        response_id = response.id
        session.add(response)
        session.commit()
    return response_id


def replace_answers(
    session: Session,
    response_id: str,
    questions: DefaultQuestions,
    submission: FeedbackSubmission,
) -> None:
    answers = [
        FeedbackAnswer(
            response_id=response_id,
            question_id=questions.rating_question_id,
            answer_rating=submission.rating,
        )
    ]
    if submission.comment:
        answers.append(
            FeedbackAnswer(
                response_id=response_id,
                question_id=questions.comment_question_id,
                answer_text=submission.comment,
            )
        )

    with _store_step(session, "store feedback answers"):
        session.execute(delete(FeedbackAnswer).where(FeedbackAnswer.response_id == response_id))
        session.add_all(answers)
        session.commit()


# --------------------------------------------------------------------------- #
# Entry point
# --------------------------------------------------------------------------- #
def submit_feedback(
    session: Session,
    viewer: Viewer | None,
    *,
    course_code: str | None,
    course_name: str | None = None,
    instructor_name: str | None = None,
    rating: Any = None,
    comments: str | None = None,
    is_anonymous: bool = False,
    now: datetime | None = None,
) -> SubmissionResult:
    if viewer is None:
        raise Unauthenticated("Not authenticated")
    if viewer.role != "student":
        raise Forbidden("Only students can submit feedback")

    submission = validate_submission(
        course_code=course_code,
        course_name=course_name,
        instructor_name=instructor_name,
        rating=rating,
        comments=comments,
        is_anonymous=is_anonymous,
    )
    now = as_utc(now) if now else utc_now()

    course_id = ensure_course(session, submission.course_code, submission.course_name, now=now)
    teacher_id = resolve_teacher_id(session, course_id, submission.instructor_name)
    form_id = ensure_feedback_form(session, course_id, teacher_id, now=now)
    questions = ensure_default_questions(session, form_id)
    response_id = upsert_response(
        session,
        form_id=form_id,
        course_id=course_id,
        teacher_id=teacher_id,
        student_id=viewer.user_id,
        is_anonymous=submission.is_anonymous,
        now=now,
    )
    replace_answers(session, response_id, questions, submission)

    logger.info(
        "Stored feedback %s from %s for course %s (teacher=%s)",
        response_id,
        viewer.user_id,
        submission.course_code,
        teacher_id,
    )
    return SubmissionResult(
        response_id=response_id,
        course_id=course_id,
        form_id=form_id,
        teacher_id=teacher_id,
    )
