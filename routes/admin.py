# routes/admin.py
# ==========================================================
# Admin dashboard, institution-wide feedback and teacher provisioning.
# ==========================================================

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import aliased
from sqlmodel import Session, col, select

from analytics import AnswerRow, average_rating, extract_rating
from db import get_session
from identity import SupabaseIdentityProvider, get_identity_provider
from models import Course, FeedbackForm, FeedbackResponse, Profile
from provisioning import provision_teacher
from routes.teacher import answer_details
from schemas import TeacherCreateOut, TeacherCreatePayload, TeacherCredentials, TeacherSummary
from security import Viewer, require_page_viewer, require_role

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin"])


def _count(session: Session, stmt) -> int:
    return int(session.exec(stmt).one())


# ----------------------------------------------------------
# GET /admin
# ----------------------------------------------------------
@router.get("/admin")
def admin_dashboard(
    session: Session = Depends(get_session),
    viewer: Viewer = Depends(require_page_viewer),
):
    return {
        "profile": {"id": viewer.user_id, "full_name": viewer.full_name, "email": viewer.email},
        "stats": {
            "total_courses": _count(session, select(func.count()).select_from(Course)),
            "total_students": _count(
                session, select(func.count()).select_from(Profile).where(Profile.role == "student")
            ),
            "total_teachers": _count(
                session, select(func.count()).select_from(Profile).where(Profile.role == "teacher")
            ),
            "active_forms": _count(
                session,
                select(func.count())
                .select_from(FeedbackForm)
                .where(FeedbackForm.is_active == True),  # noqa: E712
            ),
        },
    }


# ----------------------------------------------------------
# GET /admin/feedback
# Every response, with student identity hidden when anonymous
# ----------------------------------------------------------
@router.get("/admin/feedback")
def admin_feedback(
    session: Session = Depends(get_session),
    viewer: Viewer = Depends(require_page_viewer),
):
    student = aliased(Profile)
    teacher = aliased(Profile)
    rows = session.exec(
        select(FeedbackResponse, Course, FeedbackForm, student, teacher)
        .join(Course, col(Course.id) == col(FeedbackResponse.course_id), isouter=True)
        .join(FeedbackForm, col(FeedbackForm.id) == col(FeedbackResponse.form_id), isouter=True)
        .join(student, student.id == FeedbackResponse.student_id, isouter=True)
        .join(teacher, teacher.id == FeedbackResponse.teacher_id, isouter=True)
        .order_by(col(FeedbackResponse.submitted_at).desc())
    ).all()

    answers = answer_details(session, [row[0].id for row in rows])

    ratings = []
    responses = []
    for response, course, form, student_profile, teacher_profile in rows:
        response_answers = answers.get(response.id, [])
        rating = extract_rating(
            AnswerRow(answer_rating=a["answer_rating"], answer_text=a["answer_text"])
            for a in response_answers
        )
        if rating is not None:
            ratings.append(rating)
        hide_student = response.is_anonymous or student_profile is None
        responses.append(
            {
                "id": response.id,
                "course_code": course.course_code if course else None,
                "course_name": course.course_name if course else None,
                "form_title": form.title if form else None,
                "student_name": None if hide_student else student_profile.full_name,
                "enrollment_number": None if hide_student else student_profile.enrollment_number,
                "teacher_name": teacher_profile.full_name if teacher_profile else None,
                "teacher_employee_id": teacher_profile.employee_id if teacher_profile else None,
                "is_anonymous": response.is_anonymous,
                "submitted_at": response.submitted_at,
                "rating": rating,
                "answers": response_answers,
            }
        )

    return {
        "total_responses": len(responses),
        "average_rating": average_rating(ratings),
        "responses": responses,
    }


# ----------------------------------------------------------
# GET /admin/teachers
# ----------------------------------------------------------
@router.get("/admin/teachers")
def admin_teachers(
    session: Session = Depends(get_session),
    viewer: Viewer = Depends(require_page_viewer),
):
    teachers = session.exec(
        select(Profile).where(Profile.role == "teacher").order_by(col(Profile.full_name))
    ).all()
    return {
        "teachers": [
            {
                "id": t.id,
                "email": t.email,
                "full_name": t.full_name,
                "employee_id": t.employee_id,
                "department": t.department,
                "created_at": t.created_at,
            }
            for t in teachers
        ]
    }


# ----------------------------------------------------------
# POST /api/admin/create-teacher
# ----------------------------------------------------------
@router.post("/api/admin/create-teacher", response_model=TeacherCreateOut)
def create_teacher(
    payload: TeacherCreatePayload,
    session: Session = Depends(get_session),
    provider: SupabaseIdentityProvider = Depends(get_identity_provider),
    viewer: Viewer = Depends(require_role("admin")),
):
    """Create a teacher account and hand the generated credentials back to the admin."""

    teacher = provision_teacher(
        session,
        provider,
        full_name=payload.fullName,
        employee_id=payload.employeeId,
        department=payload.department,
    )
    logger.info("Admin %s created teacher account %s", viewer.user_id, teacher.user_id)

    return TeacherCreateOut(
        message=f"Teacher account created successfully for {teacher.full_name}",
        user=TeacherSummary(
            id=teacher.user_id,
            email=teacher.email,
            full_name=teacher.full_name,
            employee_id=teacher.employee_id,
            department=teacher.department,
        ),
        credentials=TeacherCredentials(
            username=teacher.username,
            email=teacher.email,
            password=teacher.password,
        ),
    )
