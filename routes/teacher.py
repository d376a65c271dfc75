# routes/teacher.py
# ==========================================================
# Teacher dashboard, received feedback and custom form builder.
# ==========================================================

import logging
from collections import defaultdict
from datetime import timedelta

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from db import get_session
from errors import Forbidden, InvalidArgument, UpstreamFailure
from feedback_pipeline import academic_year_for
from models import (
    QUESTION_TYPES,
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
from schemas import FormCreatePayload, FormOut, QuestionOut
from security import Viewer, require_page_viewer, require_role

logger = logging.getLogger(__name__)

router = APIRouter(tags=["teacher"])

DEFAULT_FORM_WINDOW = timedelta(days=30)


def _assigned_courses(session: Session, teacher_id: str) -> list[Course]:
    return list(
        session.exec(
            select(Course)
            .join(CourseAssignment, col(CourseAssignment.course_id) == col(Course.id))
            .where(CourseAssignment.teacher_id == teacher_id)
            .order_by(col(Course.course_code))
        ).all()
    )


def _course_out(course: Course) -> dict:
    return {
        "id": course.id,
        "course_code": course.course_code,
        "course_name": course.course_name,
        "department": course.department,
        "year": course.year,
        "semester": course.semester,
    }


def _form_out(form: FeedbackForm, questions: list[FeedbackQuestion]) -> FormOut:
    return FormOut(
        id=form.id,
        course_id=form.course_id,
        title=form.title,
        description=form.description,
        academic_year=form.academic_year,
        is_active=form.is_active,
        start_date=form.start_date,
        end_date=form.end_date,
        created_by=form.created_by,
        questions=[
            QuestionOut(
                id=q.id,
                question_text=q.question_text,
                question_type=q.question_type,
                order_number=q.order_number,
                is_required=q.is_required,
                options=(q.options or {}).get("options"),
            )
            for q in sorted(questions, key=lambda q: q.order_number)
        ],
    )


# ----------------------------------------------------------
# GET /teacher
# ----------------------------------------------------------
@router.get("/teacher")
def teacher_dashboard(
    session: Session = Depends(get_session),
    viewer: Viewer = Depends(require_page_viewer),
):
    profile = session.get(Profile, viewer.user_id)
    return {
        "profile": {
            "id": viewer.user_id,
            "full_name": viewer.full_name,
            "email": viewer.email,
            "department": profile.department if profile else None,
            "employee_id": profile.employee_id if profile else None,
        },
        "courses": [_course_out(course) for course in _assigned_courses(session, viewer.user_id)],
    }


# ----------------------------------------------------------
# GET /teacher/feedback
# Responses attributed to the signed-in teacher
# ----------------------------------------------------------
@router.get("/teacher/feedback")
def teacher_feedback(
    session: Session = Depends(get_session),
    viewer: Viewer = Depends(require_page_viewer),
):
    rows = session.exec(
        select(FeedbackResponse, Course, FeedbackForm, Profile)
        .join(Course, col(Course.id) == col(FeedbackResponse.course_id), isouter=True)
        .join(FeedbackForm, col(FeedbackForm.id) == col(FeedbackResponse.form_id), isouter=True)
        .join(Profile, col(Profile.id) == col(FeedbackResponse.student_id), isouter=True)
        .where(FeedbackResponse.teacher_id == viewer.user_id)
        .order_by(col(FeedbackResponse.submitted_at).desc())
    ).all()

    answers = answer_details(session, [response.id for response, _, _, _ in rows])

    return {
        "total_responses": len(rows),
        "responses": [
            {
                "id": response.id,
                "course_code": course.course_code if course else None,
                "course_name": course.course_name if course else None,
                "form_title": form.title if form else None,
                "student_name": None if response.is_anonymous or not student else student.full_name,
                "is_anonymous": response.is_anonymous,
                "submitted_at": response.submitted_at,
                "answers": answers.get(response.id, []),
            }
            for response, course, form, student in rows
        ],
    }


def answer_details(session: Session, response_ids: list[str]) -> dict[str, list[dict]]:
    grouped: dict[str, list[dict]] = defaultdict(list)
    if not response_ids:
        return grouped
    rows = session.exec(
        select(FeedbackAnswer, FeedbackQuestion)
        .join(FeedbackQuestion, col(FeedbackQuestion.id) == col(FeedbackAnswer.question_id), isouter=True)
        .where(col(FeedbackAnswer.response_id).in_(response_ids))
        .order_by(col(FeedbackQuestion.order_number))
    ).all()
    for answer, question in rows:
        grouped[answer.response_id].append(
            {
                "question_text": question.question_text if question else None,
                "question_type": question.question_type if question else None,
                "answer_rating": answer.answer_rating,
                "answer_text": answer.answer_text,
            }
        )
    return grouped


# ----------------------------------------------------------
# GET /teacher/forms
# ----------------------------------------------------------
@router.get("/teacher/forms")
def teacher_forms(
    session: Session = Depends(get_session),
    viewer: Viewer = Depends(require_page_viewer),
):
    courses = _assigned_courses(session, viewer.user_id)
    course_ids = [course.id for course in courses]

    forms: list[FeedbackForm] = []
    questions: dict[str, list[FeedbackQuestion]] = defaultdict(list)
    if course_ids:
        forms = list(
            session.exec(
                select(FeedbackForm)
                .where(col(FeedbackForm.course_id).in_(course_ids))
                .order_by(col(FeedbackForm.created_at).desc())
            ).all()
        )
        form_ids = [form.id for form in forms]
        if form_ids:
            for question in session.exec(
                select(FeedbackQuestion).where(col(FeedbackQuestion.form_id).in_(form_ids))
            ).all():
                questions[question.form_id].append(question)

    return {
        "courses": [_course_out(course) for course in courses],
        "forms": [_form_out(form, questions[form.id]) for form in forms],
    }


# ----------------------------------------------------------
# POST /api/teacher/forms
# Teacher builds a custom form for one of their courses
# ----------------------------------------------------------
@router.post("/api/teacher/forms", response_model=FormOut, status_code=201)
def create_form(
    payload: FormCreatePayload,
    session: Session = Depends(get_session),
    viewer: Viewer = Depends(require_role("teacher")),
):
    title = payload.title.strip()
    if not title:
        raise InvalidArgument("Form title is required")
    if not payload.course_id:
        raise InvalidArgument("Please select a course")
    if not payload.questions:
        raise InvalidArgument("Add at least one question")
    if any(not q.question_text.strip() for q in payload.questions):
        raise InvalidArgument("All questions must have text")
    if any(q.question_type not in QUESTION_TYPES for q in payload.questions):
        raise InvalidArgument(f"Question type must be one of {', '.join(QUESTION_TYPES)}")

    if payload.course_id not in {course.id for course in _assigned_courses(session, viewer.user_id)}:
        raise Forbidden("You can only create forms for courses assigned to you")

    now = utc_now()
    start_date = as_utc(payload.start_date) if payload.start_date else now
    end_date = as_utc(payload.end_date) if payload.end_date else start_date + DEFAULT_FORM_WINDOW
    if end_date <= start_date:
        raise InvalidArgument("End date must be after the start date")

    form = FeedbackForm(
        course_id=payload.course_id,
        title=title,
        description=(payload.description or "").strip() or None,
        academic_year=academic_year_for(now),
        semester=1,
        is_active=True,
        start_date=start_date,
        end_date=end_date,
        created_by=viewer.user_id,
        created_at=now,
    )
    questions = [
        FeedbackQuestion(
            form_id=form.id,
            question_text=draft.question_text.strip(),
            question_type=draft.question_type,
            options={"options": draft.options} if draft.options else None,
            is_required=draft.is_required,
            order_number=index,
        )
        for index, draft in enumerate(payload.questions, start=1)
    ]

    try:
        session.add(form)
        session.flush()
        session.add_all(questions)
        session.commit()
        session.refresh(form)
        for question in questions:
            session.refresh(question)
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("Failed to create form '%s' for course %s", title, payload.course_id)
        raise UpstreamFailure(f"Failed to create form: {exc}") from exc

    logger.info("Teacher %s created form %s with %s questions", viewer.user_id, form.id, len(questions))
    return _form_out(form, questions)
