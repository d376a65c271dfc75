"""
Read-only feedback analytics for teachers and admins.

Responses are fetched with their course and teacher rows, answers are fetched
in one batch and folded back onto their response, and the flattened rows are
summarised: totals, average rating, 1-5 histogram, per-course cards, recent
comments and (admins only) a per-teacher breakdown.
"""

from __future__ import annotations

import logging
import math
from collections import OrderedDict, defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Sequence

from sqlalchemy.orm import aliased
from sqlmodel import Session, col, select

from errors import Forbidden
from models import Course, CourseAssignment, FeedbackAnswer, FeedbackQuestion, FeedbackResponse, Profile
from schemas import AnalyticsOut, CommentOut, CourseSummary, RatingBucket, TeacherBreakdown
from security import Viewer

logger = logging.getLogger(__name__)

RATING_SCALE = (1, 2, 3, 4, 5)
COMMENT_LIMIT = 8
MIN_BAR_WIDTH = 6.0
UNASSIGNED = "Unassigned"


@dataclass(frozen=True)
class AnswerRow:
    answer_rating: float | None
    answer_text: str | None
    question_type: str | None = None


@dataclass(frozen=True)
class ResponseRow:
    id: str
    submitted_at: datetime
    course_code: str | None = None
    course_name: str | None = None
    department: str | None = None
    teacher_id: str | None = None
    teacher_name: str | None = None
    is_anonymous: bool = False
    rating: float | None = None
    comment: str | None = None


@dataclass(frozen=True)
class CourseInfo:
    code: str
    name: str | None
    department: str | None


def _is_rating(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def extract_rating(answers: Iterable[AnswerRow]) -> float | None:
    """The first finite `answer_rating` is the response's rating."""
    for answer in answers:
        if _is_rating(answer.answer_rating):
            return answer.answer_rating
    return None


def extract_comment(answers: Iterable[AnswerRow]) -> str | None:
    for answer in answers:
        if isinstance(answer.answer_text, str) and answer.answer_text.strip():
            return answer.answer_text
    return None


def average_rating(ratings: Sequence[float]) -> float | None:
    if not ratings:
        return None
    return round(sum(ratings) / len(ratings), 2)


def bar_width(count: int, total: int) -> float:
    if not total:
        return 0.0
    return max(MIN_BAR_WIDTH, count / total * 100)


# --------------------------------------------------------------------------- #
# Fetching
# --------------------------------------------------------------------------- #
def assigned_courses(session: Session, teacher_id: str) -> list[CourseInfo]:
    rows = session.exec(
        select(Course)
        .join(CourseAssignment, col(CourseAssignment.course_id) == col(Course.id))
        .where(CourseAssignment.teacher_id == teacher_id)
    ).all()
    return [CourseInfo(code=c.course_code, name=c.course_name, department=c.department) for c in rows]


def _answers_by_response(session: Session, response_ids: list[str]) -> dict[str, list[AnswerRow]]:
    grouped: dict[str, list[AnswerRow]] = defaultdict(list)
    if not response_ids:
        return grouped

    rows = session.exec(
        select(FeedbackAnswer, FeedbackQuestion)
        .join(
            FeedbackQuestion,
            col(FeedbackQuestion.id) == col(FeedbackAnswer.question_id),
            isouter=True,
        )
        .where(col(FeedbackAnswer.response_id).in_(response_ids))
        .order_by(col(FeedbackQuestion.order_number), col(FeedbackAnswer.id))
    ).all()
    for answer, question in rows:
        grouped[answer.response_id].append(
            AnswerRow(
                answer_rating=answer.answer_rating,
                answer_text=answer.answer_text,
                question_type=question.question_type if question else None,
            )
        )
    return grouped


def fetch_responses(
    session: Session,
    *,
    teacher_id: str | None = None,
    course_codes: Sequence[str] | None = None,
) -> list[ResponseRow]:
    """Flattened responses, newest first, optionally scoped to a teacher and course codes."""
    teacher = aliased(Profile)
    stmt = (
        select(FeedbackResponse, Course, teacher)
        .join(Course, col(Course.id) == col(FeedbackResponse.course_id), isouter=True)
        .join(teacher, teacher.id == FeedbackResponse.teacher_id, isouter=True)
        .order_by(col(FeedbackResponse.submitted_at).desc())
    )
    if teacher_id is not None:
        stmt = stmt.where(FeedbackResponse.teacher_id == teacher_id)
    if course_codes is not None:
        stmt = stmt.where(col(Course.course_code).in_(list(course_codes)))

    rows = session.exec(stmt).all()
    answers = _answers_by_response(session, [response.id for response, _, _ in rows])

    flattened: list[ResponseRow] = []
    for response, course, teacher_profile in rows:
        response_answers = answers.get(response.id, [])
        flattened.append(
            ResponseRow(
                id=response.id,
                submitted_at=response.submitted_at,
                course_code=course.course_code if course else None,
                course_name=course.course_name if course else None,
                department=course.department if course else None,
                teacher_id=response.teacher_id,
                teacher_name=teacher_profile.full_name if teacher_profile else None,
                is_anonymous=bool(response.is_anonymous),
                rating=extract_rating(response_answers),
                comment=extract_comment(response_answers),
            )
        )
    return flattened


# --------------------------------------------------------------------------- #
# Summaries
# --------------------------------------------------------------------------- #
def summarize_responses(
    responses: Sequence[ResponseRow],
    *,
    role: str,
    course_filter: str | None = None,
    known_courses: Sequence[CourseInfo] = (),
) -> AnalyticsOut:
    ratings = [r.rating for r in responses if r.rating is not None]
    total = len(responses)

    histogram = {value: 0 for value in RATING_SCALE}
    for rating in ratings:
        if float(rating).is_integer() and int(rating) in histogram:
            histogram[int(rating)] += 1

    known = {course.code: course for course in known_courses}
    course_groups: "OrderedDict[str, list[ResponseRow]]" = OrderedDict()
    for response in responses:
        course_groups.setdefault(response.course_code or UNASSIGNED, []).append(response)

    courses = []
    for code, rows in course_groups.items():
        fallback = known.get(code)
        name = rows[0].course_name or (fallback.name if fallback else None)
        department = rows[0].department or (fallback.department if fallback else None)
        courses.append(
            CourseSummary(
                code=code,
                name=name or code,
                department=department,
                responses=len(rows),
                average_rating=average_rating([r.rating for r in rows if r.rating is not None]),
            )
        )

    teacher_breakdown = None
    if role == "admin":
        teacher_groups: "OrderedDict[str, list[ResponseRow]]" = OrderedDict()
        for response in responses:
            teacher_groups.setdefault(response.teacher_name or UNASSIGNED, []).append(response)
        teacher_breakdown = [
            TeacherBreakdown(
                teacher=name,
                responses=len(rows),
                average_rating=average_rating([r.rating for r in rows if r.rating is not None]),
            )
            for name, rows in teacher_groups.items()
        ]

    comments = [
        CommentOut(
            id=r.id,
            comment=r.comment,
            rating=r.rating,
            course_code=r.course_code,
            course_name=r.course_name,
            teacher_name=r.teacher_name if role == "admin" else None,
            is_anonymous=r.is_anonymous,
            submitted_at=r.submitted_at,
        )
        for r in responses
        if r.comment
    ][:COMMENT_LIMIT]

    return AnalyticsOut(
        role=role,
        course_filter=course_filter,
        total_responses=total,
        rated_responses=len(ratings),
        average_rating=average_rating(ratings),
        latest_submitted_at=responses[0].submitted_at if responses else None,
        rating_distribution=[
            RatingBucket(rating=value, count=count, bar_width=bar_width(count, total))
            for value, count in histogram.items()
        ],
        courses=courses,
        recent_comments=comments,
        teacher_breakdown=teacher_breakdown,
    )


def build_feedback_analytics(
    session: Session,
    viewer: Viewer,
    course_code: str | None = None,
) -> AnalyticsOut:
    """
    Teachers only ever see responses attributed to them, limited to the
    requested course or else to the courses they are assigned. Admins see
    everything, optionally limited to one course code.
    """
    if viewer.role not in ("teacher", "admin"):
        raise Forbidden("Analytics are available to teachers and admins only")

    course_code = (course_code or "").strip() or None
    known = assigned_courses(session, viewer.user_id)

    if viewer.role == "teacher":
        if course_code:
            codes: list[str] | None = [course_code]
        elif known:
            codes = [course.code for course in known]
        else:
            codes = None
        responses = fetch_responses(session, teacher_id=viewer.user_id, course_codes=codes)
    else:
        responses = fetch_responses(session, course_codes=[course_code] if course_code else None)

    logger.debug(
        "Analytics for %s (%s): %s responses, filter=%s",
        viewer.user_id,
        viewer.role,
        len(responses),
        course_code,
    )
    return summarize_responses(
        responses,
        role=viewer.role,
        course_filter=course_code,
        known_courses=known,
    )


def student_snapshot(session: Session, student_id: str) -> dict[str, object]:
    submitted = session.exec(
        select(FeedbackResponse)
        .where(FeedbackResponse.student_id == student_id)
        .order_by(col(FeedbackResponse.submitted_at).desc())
    ).all()
    return {
        "total_submitted": len(submitted),
        "last_submitted_at": submitted[0].submitted_at if submitted else None,
    }
