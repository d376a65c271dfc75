import math
from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import Session, select

from db import engine
from errors import InvalidArgument
from feedback_pipeline import (
    DEFAULT_COMMENT_QUESTION,
    DEFAULT_RATING_QUESTION,
    academic_year_for,
    parse_rating,
    validate_submission,
)
from models import Course, FeedbackAnswer, FeedbackForm, FeedbackQuestion, FeedbackResponse, as_utc

SUBMIT_URL = "/api/feedback/submit"


def _all(model):
    with Session(engine) as session:
        return session.exec(select(model)).all()


def _payload(**overrides):
    payload = {
        "courseCode": "CS301",
        "courseName": "Operating Systems",
        "instructorName": None,
        "rating": 4,
        "comments": "Clear lectures",
        "isAnonymous": False,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def student(make_profile):
    return make_profile("student", full_name="Riya Sharma", enrollment_number="S1001")


# --------------------------------------------------------------------------- #
# Validation helpers
# --------------------------------------------------------------------------- #
@pytest.mark.parametrize("value", [1, 2, 3, 4, 5, "3", 4.5])
def test_parse_rating_accepts_values_in_range(value):
    assert parse_rating(value) == float(value)


@pytest.mark.parametrize("value", [0, 6, -1, math.nan, math.inf, "abc", "", None, True])
def test_parse_rating_rejects_out_of_range_or_non_numeric(value):
    with pytest.raises(InvalidArgument, match="between 1 and 5"):
        parse_rating(value)


def test_validate_submission_requires_course_code():
    with pytest.raises(InvalidArgument, match="Course code is required"):
        validate_submission(course_code="   ", rating=3)


def test_validate_submission_treats_blank_comment_as_absent():
    submission = validate_submission(course_code=" CS301 ", rating=3, comments="   ")
    assert submission.course_code == "CS301"
    assert submission.comment is None


@pytest.mark.parametrize(
    "moment, expected",
    [
        (datetime(2024, 7, 1), "2024-2025"),
        (datetime(2024, 12, 31), "2024-2025"),
        (datetime(2025, 1, 15), "2024-2025"),
        (datetime(2025, 6, 30), "2024-2025"),
    ],
)
def test_academic_year_rolls_over_in_july(moment, expected):
    assert academic_year_for(moment) == expected


# --------------------------------------------------------------------------- #
# Endpoint
# --------------------------------------------------------------------------- #
def test_submission_auto_provisions_course_form_and_questions(client, student, auth_headers):
    resp = client.post(SUBMIT_URL, json=_payload(), headers=auth_headers(student))
    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "Feedback saved successfully."
    assert body["responseId"]

    courses = _all(Course)
    assert [c.course_code for c in courses] == ["CS301"]
    assert courses[0].course_name == "Operating Systems"
    assert courses[0].department == "General"

    forms = _all(FeedbackForm)
    assert len(forms) == 1
    assert forms[0].is_active
    assert forms[0].start_date < datetime.now(timezone.utc) < forms[0].end_date

    questions = sorted(_all(FeedbackQuestion), key=lambda q: q.order_number)
    assert [(q.question_type, q.question_text) for q in questions] == [
        ("rating", DEFAULT_RATING_QUESTION),
        ("text", DEFAULT_COMMENT_QUESTION),
    ]


def test_second_submission_reuses_provisioned_rows(client, student, auth_headers):
    headers = auth_headers(student)
    client.post(SUBMIT_URL, json=_payload(), headers=headers)
    client.post(SUBMIT_URL, json=_payload(rating=2), headers=headers)

    assert len(_all(Course)) == 1
    assert len(_all(FeedbackForm)) == 1
    assert len(_all(FeedbackQuestion)) == 2


def test_resubmission_overwrites_response_and_answers(client, student, auth_headers, make_profile, make_course):
    teacher = make_profile("teacher", full_name="Anil Kapoor")
    make_course("CS301", "Operating Systems", teacher_id=teacher.id)
    headers = auth_headers(student)

    first = client.post(SUBMIT_URL, json=_payload(rating=5, comments="Great"), headers=headers)
    second = client.post(
        SUBMIT_URL,
        json=_payload(rating=2, comments="Too fast", isAnonymous=True),
        headers=headers,
    )
    assert first.status_code == second.status_code == 200
    assert first.json()["responseId"] == second.json()["responseId"]

    responses = _all(FeedbackResponse)
    assert len(responses) == 1
    assert responses[0].teacher_id == teacher.id
    assert responses[0].is_anonymous is True

    answers = _all(FeedbackAnswer)
    assert len(answers) == 2
    assert {a.answer_rating for a in answers if a.answer_rating is not None} == {2.0}
    assert {a.answer_text for a in answers if a.answer_text is not None} == {"Too fast"}


def test_unattributed_resubmission_does_not_duplicate(client, student, auth_headers):
    headers = auth_headers(student)
    client.post(SUBMIT_URL, json=_payload(instructorName="Nobody Known"), headers=headers)
    client.post(SUBMIT_URL, json=_payload(instructorName="Nobody Known", rating=1), headers=headers)

    responses = _all(FeedbackResponse)
    assert len(responses) == 1
    assert responses[0].teacher_id is None
    assert [a.answer_rating for a in _all(FeedbackAnswer) if a.answer_rating is not None] == [1.0]


def test_resubmission_without_comment_removes_previous_comment(client, student, auth_headers):
    headers = auth_headers(student)
    client.post(SUBMIT_URL, json=_payload(comments="Needs more labs"), headers=headers)
    client.post(SUBMIT_URL, json=_payload(comments="   "), headers=headers)

    answers = _all(FeedbackAnswer)
    assert len(answers) == 1
    assert answers[0].answer_text is None
    assert answers[0].answer_rating == 4.0


def test_instructor_name_matches_teacher_case_insensitively(client, student, auth_headers, make_profile):
    teacher = make_profile("teacher", full_name="Meera Joshi")
    resp = client.post(SUBMIT_URL, json=_payload(instructorName="meera JOSHI"), headers=auth_headers(student))
    assert resp.status_code == 200

    response = _all(FeedbackResponse)[0]
    assert response.teacher_id == teacher.id
    assert _all(FeedbackForm)[0].created_by == teacher.id


def test_course_assignment_wins_over_instructor_name(client, student, auth_headers, make_profile, make_course):
    assigned = make_profile("teacher", full_name="Assigned Teacher")
    make_profile("teacher", full_name="Named Teacher")
    make_course("CS301", teacher_id=assigned.id)

    client.post(SUBMIT_URL, json=_payload(instructorName="Named Teacher"), headers=auth_headers(student))
    assert _all(FeedbackResponse)[0].teacher_id == assigned.id


def test_existing_custom_questions_are_left_untouched(client, student, auth_headers, make_profile, make_course):
    teacher = make_profile("teacher")
    make_course("CS301", teacher_id=teacher.id)
    form_resp = client.post(
        "/api/teacher/forms",
        json={
            "title": "Mid-term check",
            "course_id": _all(Course)[0].id,
            "questions": [{"question_text": "Pace?", "question_type": "multiple_choice", "options": ["Slow", "Fast"]}],
        },
        headers=auth_headers(teacher),
    )
    assert form_resp.status_code == 201

    client.post(SUBMIT_URL, json=_payload(), headers=auth_headers(student))

    questions = _all(FeedbackQuestion)
    assert sorted(q.question_type for q in questions) == ["multiple_choice", "rating", "text"]
    assert len(_all(FeedbackForm)) == 1


@pytest.mark.parametrize("rating", [0, 6, -1, "NaN", "five"])
def test_out_of_range_rating_is_rejected(client, student, auth_headers, rating):
    resp = client.post(SUBMIT_URL, json=_payload(rating=rating), headers=auth_headers(student))
    assert resp.status_code == 400
    assert resp.json() == {"error": "Rating must be between 1 and 5."}
    assert _all(FeedbackResponse) == []


def test_missing_course_code_is_rejected(client, student, auth_headers):
    resp = client.post(SUBMIT_URL, json=_payload(courseCode="  "), headers=auth_headers(student))
    assert resp.status_code == 400
    assert resp.json()["error"] == "Course code is required."
    assert _all(Course) == []


def test_malformed_json_is_rejected(client, student, auth_headers):
    headers = {**auth_headers(student), "Content-Type": "application/json"}
    resp = client.post(SUBMIT_URL, content="{not json", headers=headers)
    assert resp.status_code == 400


def test_unauthenticated_submission_is_rejected(client):
    resp = client.post(SUBMIT_URL, json=_payload())
    assert resp.status_code == 401
    assert "error" in resp.json()


def test_expired_token_counts_as_unauthenticated(client, student, auth_headers):
    resp = client.post(SUBMIT_URL, json=_payload(), headers=auth_headers(student, expires_in=-60))
    assert resp.status_code == 401


@pytest.mark.parametrize("role", ["teacher", "admin"])
def test_non_student_submission_is_forbidden(client, make_profile, auth_headers, role):
    profile = make_profile(role)
    resp = client.post(SUBMIT_URL, json=_payload(), headers=auth_headers(profile))
    assert resp.status_code == 403
    assert _all(Course) == []


def test_profile_role_overrides_token_metadata(client, make_profile, auth_headers):
    teacher = make_profile("teacher")
    resp = client.post(SUBMIT_URL, json=_payload(), headers=auth_headers(teacher.id, role="student"))
    assert resp.status_code == 403


def test_metadata_role_is_used_when_profile_missing(client, auth_headers):
    resp = client.post(SUBMIT_URL, json=_payload(), headers=auth_headers("no-profile-user", role="student"))
    assert resp.status_code == 200
    assert _all(FeedbackResponse)[0].student_id == "no-profile-user"


def test_stored_timestamps_are_utc_aware(client, student, auth_headers):
    before = datetime.now(timezone.utc)
    resp = client.post(SUBMIT_URL, json=_payload(), headers=auth_headers(student))
    assert resp.status_code == 200

    response = _all(FeedbackResponse)[0]
    assert response.submitted_at.utcoffset() == timedelta(0)
    assert response.submitted_at >= before - timedelta(seconds=1)
    assert _all(Course)[0].created_at.utcoffset() == timedelta(0)


def test_as_utc_reads_naive_values_as_utc():
    naive = datetime(2025, 3, 1, 9, 30)
    assert as_utc(naive) == datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)

    ist = timezone(timedelta(hours=5, minutes=30))
    assert as_utc(datetime(2025, 3, 1, 15, 0, tzinfo=ist)) == datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)
