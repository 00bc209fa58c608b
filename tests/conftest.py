import os
# Ensure the app factory picks the Testing config & SQLite memory DB
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")

from datetime import datetime, timedelta, timezone

import pytest
from campus_feedback import create_app
from campus_feedback.extensions import db
from campus_feedback.models import FeedbackPeriod, FeedbackSubmission, Subject, User
from campus_feedback.services.question_templates import MIDTERM_QUESTIONS

NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def app():
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "WTF_CSRF_ENABLED": False,
        "RATELIMIT_ENABLED": False,
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def ctx(app):
    with app.app_context():
        yield


@pytest.fixture(autouse=True)
def _db_clean(app):
    # Clean BEFORE each test
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()
    yield
    # And AFTER each test (keeps state hermetic even if a test fails mid-transaction)
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()


# ---------------------------------------------------------------------------
# Factories (call inside an app context)
# ---------------------------------------------------------------------------

_seq = {"n": 0}


def _next():
    _seq["n"] += 1
    return _seq["n"]


def make_user(role="student", branch="CSE", year=2, section="A", name=None, password="secret-pass", **kw):
    n = _next()
    user = User(
        name=name or f"Student {n}",
        email=kw.pop("email", f"user{n}@college.test"),
        roll_number=kw.pop("roll_number", f"232P4R{n:04d}" if role == "student" else None),
        role=role,
        branch=branch,
        year=year,
        section=section,
        is_active=True,
        **kw,
    )
    user.set_password(password)
    db.session.add(user)
    db.session.flush()
    return user


def make_subject(name=None, instructor="Dr. Rao", branches=("CSE",), year=2, code=None, department="CS"):
    n = _next()
    subject = Subject(
        name=name or f"Subject {n}",
        code=code or f"SUB{n:03d}",
        instructor=instructor,
        department=department,
        branches=list(branches),
        sections=["A", "B"],
        year=year,
        term=1,
        questions=[q.text for q in MIDTERM_QUESTIONS],
    )
    db.session.add(subject)
    db.session.flush()
    return subject


def make_period(feedback_type="midterm", term=1, academic_year="2024-25", start=None, end=None,
                status="active", is_active=True, branches=(), years=(), subjects=()):
    start = start or NOW - timedelta(days=5)
    end = end or NOW + timedelta(days=5)
    period = FeedbackPeriod(
        title=f"{feedback_type} term {term}",
        description="collection window",
        feedback_type=feedback_type,
        term=term,
        academic_year=academic_year,
        start_date=start,
        end_date=end,
        branches=list(branches),
        years=list(years),
        subjects=list(subjects),
        status=status,
        is_active=is_active,
    )
    db.session.add(period)
    db.session.flush()
    return period


def rating_answers(ratings, comments=()):
    """Answer list over the midterm template texts; ratings cycle through the rating questions."""
    rating_qs = [q for q in MIDTERM_QUESTIONS if q.type == "rating"]
    comment_qs = [q for q in MIDTERM_QUESTIONS if q.type == "comment"]
    answers = [
        {"question": rating_qs[i % len(rating_qs)].text, "type": "rating", "answer": r,
         "category": rating_qs[i % len(rating_qs)].category}
        for i, r in enumerate(ratings)
    ]
    for i, text in enumerate(comments):
        answers.append({"question": comment_qs[i % len(comment_qs)].text, "type": "comment", "comment": text})
    return answers


def make_submission(student, subject, ratings, feedback_type="midterm", term=1, academic_year="2024-25",
                    created_at=None, comments=()):
    """Insert a stored submission directly, bypassing the collection gate."""
    answers = rating_answers(ratings, comments)
    values = [a["answer"] for a in answers if a["type"] == "rating"]
    sub = FeedbackSubmission(
        student_id=student.id,
        subject_id=subject.id,
        feedback_type=feedback_type,
        term=term,
        academic_year=academic_year,
        answers=answers,
        average_rating=round(sum(values) / len(values), 1) if values else 0.0,
        created_at=created_at or NOW,
    )
    db.session.add(sub)
    db.session.flush()
    return sub
