# routes/profile.py
# ==========================================================
# Profile page for every role, plus the public testimonials list.
# ==========================================================

from fastapi import APIRouter, Depends
from sqlmodel import Session

from analytics import build_feedback_analytics, student_snapshot
from db import get_session
from models import Profile
from security import Viewer, require_page_viewer

router = APIRouter(tags=["profile"])

REVIEWS = [
    {
        "name": "Ananya Kulkarni",
        "role": "Student, Computer Engineering",
        "quote": "Submitting feedback takes a minute and I can finally stay anonymous when I want to.",
        "rating": 5,
    },
    {
        "name": "Prof. Rahul Deshmukh",
        "role": "Faculty, Electronics",
        "quote": "The per-course averages show me which units need another pass before exams.",
        "rating": 5,
    },
    {
        "name": "Sneha Patil",
        "role": "Student, Information Technology",
        "quote": "I like that I can change my feedback later instead of filing a new one.",
        "rating": 4,
    },
    {
        "name": "Dr. Meera Joshi",
        "role": "Head of Department, Mechanical",
        "quote": "One dashboard for every teacher in the department saves us a week each semester.",
        "rating": 5,
    },
]


@router.get("/profile")
def profile_page(
    session: Session = Depends(get_session),
    viewer: Viewer = Depends(require_page_viewer),
):
    """Profile details; students get their submission count, staff get a feedback summary."""

    profile = session.get(Profile, viewer.user_id)
    details = {
        "id": viewer.user_id,
        "email": viewer.email,
        "full_name": viewer.full_name,
        "role": viewer.role,
        "department": profile.department if profile else None,
        "employee_id": profile.employee_id if profile else None,
        "enrollment_number": profile.enrollment_number if profile else None,
        "year": profile.year if profile else None,
    }

    if viewer.role == "student":
        return {"profile": details, "activity": student_snapshot(session, viewer.user_id)}

    analytics = build_feedback_analytics(session, viewer)
    return {
        "profile": details,
        "activity": {
            "total_responses": analytics.total_responses,
            "average_rating": analytics.average_rating,
            "courses": len(analytics.courses),
        },
    }


@router.get("/reviews")
def reviews_page(viewer: Viewer = Depends(require_page_viewer)):
    return {"reviews": REVIEWS}
