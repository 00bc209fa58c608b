from datetime import timedelta

import pytest

from campus_feedback.extensions import db
from campus_feedback.models import FeedbackPeriod, FeedbackSubmission
from campus_feedback.models.types import utcnow

from conftest import make_period, make_submission, make_subject, make_user, rating_answers


def _seed(app, fn):
    with app.app_context():
        out = fn()
        db.session.commit()
        return out


def _login(client, ident, password="secret-pass"):
    key = "email" if "@" in ident else "roll_number"
    r = client.post("/auth/login", json={key: ident, "password": password})
    assert r.status_code == 200, r.get_json()
    return r


@pytest.fixture()
def live_world(app):
    def build():
        now = utcnow()
        student = make_user(branch="CSE", year=2)
        admin = make_user(role="admin", section=None)
        subject = make_subject(branches=("CSE",), year=2)
        period = make_period(start=now - timedelta(days=1), end=now + timedelta(days=1))
        return {"student": student.email, "roll": student.roll_number, "admin": admin.email,
                "subject_id": subject.id, "period_id": period.id}
    return _seed(app, build)


def test_healthz(client):
    assert client.get("/healthz").get_json() == {"status": "ok"}


def test_login_by_roll_number_and_me(client, live_world):
    r = _login(client, live_world["roll"])
    assert r.get_json()["user"]["role"] == "student"
    assert client.get("/auth/me").get_json()["user"]["email"] == live_world["student"]
    client.post("/auth/logout")
    assert client.get("/auth/me", headers={"Accept": "application/json"}).status_code == 401


def test_login_rejects_bad_password(client, live_world):
    r = client.post("/auth/login", json={"email": live_world["student"], "password": "nope"})
    assert r.status_code == 401 and r.get_json()["error"] == "invalid_credentials"
    assert client.post("/auth/login", json={}).status_code == 400


def test_submit_flow_and_duplicate(app, client, live_world):
    _login(client, live_world["student"])
    body = {"subjectId": live_world["subject_id"], "feedbackType": "midterm",
            "answers": rating_answers([5, 4, 3, 5, 5, 4, 3, 5], ["Clear notes"])}

    r = client.post("/feedback", json=body)
    assert r.status_code == 201
    assert r.get_json()["average_rating"] == 4.3

    dup = client.post("/feedback", json=body)
    assert dup.status_code == 409
    payload = dup.get_json()
    assert payload["error"] == "conflict" and payload["rule"] == "one_submission_per_student_subject_type_term"

    mine = client.get("/feedback/mine").get_json()
    assert len(mine) == 1
    with app.app_context():
        assert db.session.query(FeedbackSubmission).count() == 1


def test_submit_validation_error_shape(client, live_world):
    _login(client, live_world["student"])
    r = client.post("/feedback", json={"subjectId": live_world["subject_id"], "feedbackType": "midterm",
                                       "answers": rating_answers([5] * 3)})
    assert r.status_code == 400
    assert r.get_json() == {
        "error": "validation_error",
        "message": "At least 8 answers are required",
        "code": 400,
        "field": "answers",
        "rule": "min_answers",
    }


def test_available_periods_for_student(client, live_world):
    _login(client, live_world["student"])
    [row] = client.get("/feedback/available").get_json()
    assert row["id"] == live_world["period_id"]
    assert [s["id"] for s in row["applicable_subjects"]] == [live_world["subject_id"]]


def test_question_template_endpoint(client):
    data = client.get("/feedback/questions/midterm").get_json()
    assert set(data["categories"]) == {"Teaching Quality", "Faculty Engagement", "Course Delivery", "Comments"}
    assert client.get("/feedback/questions/weekly").status_code == 400


def test_reports_require_login_and_role(client, live_world):
    headers = {"Accept": "application/json"}
    assert client.get("/reports/dashboard", headers=headers).status_code == 401
    _login(client, live_world["student"])
    r = client.get("/reports/dashboard", headers=headers)
    assert r.status_code == 403 and r.get_json()["error"] == "forbidden"


def test_period_lifecycle_over_http(app, client, live_world):
    _login(client, live_world["admin"])
    now = utcnow()
    body = {
        "title": "Endterm", "description": "Course feedback", "feedbackType": "endterm", "term": 1,
        "academicYear": "2024-25", "startDate": (now - timedelta(hours=1)).isoformat(),
        "endDate": (now + timedelta(days=3)).isoformat(),
    }
    created = client.post("/periods", json=body)
    assert created.status_code == 201
    pid = created.get_json()["id"]

    again = client.post("/periods", json=dict(body, title="Another"))
    assert again.status_code == 409 and again.get_json()["existing"]["id"] == pid

    assert client.post(f"/periods/{pid}/deactivate").get_json()["is_active"] is False
    assert client.post(f"/periods/{pid}/complete").status_code == 200
    blocked = client.post(f"/periods/{pid}/activate")
    assert blocked.status_code == 422 and blocked.get_json()["rule"] == "terminal_state"

    with app.app_context():
        assert db.session.get(FeedbackPeriod, pid).status == "completed"


def test_period_stats_endpoint(client, live_world):
    _login(client, live_world["admin"])
    data = client.get(f"/periods/{live_world['period_id']}/stats").get_json()
    assert data["statistics"]["totalStudents"] == 1
    assert data["statistics"]["pendingFeedbacks"] == 1
    assert client.get("/periods/999").status_code == 404


def test_report_filters_and_bad_filter(app, client, live_world):
    def add():
        student = make_user(branch="CSE")
        subject = make_subject(branches=("CSE",))
        make_submission(student, subject, [4] * 8)
    _seed(app, add)

    _login(client, live_world["admin"])
    overview = client.get("/reports/overview?branch=CSE&year=all").get_json()
    assert overview["totalFeedbacks"] == 1 and overview["filters"] == {"branch": "CSE"}
    bad = client.get("/reports/overview?year=eleven")
    assert bad.status_code == 400 and bad.get_json()["field"] == "year"
    assert client.get("/reports/group/weekday").status_code == 400


def test_export_csv(app, client, live_world):
    def add():
        student = make_user(name="Csv Person")
        make_submission(student, make_subject(), [5] * 8)
    _seed(app, add)

    _login(client, live_world["admin"])
    r = client.get("/reports/export.csv")
    assert r.status_code == 200
    assert r.headers["Content-Type"].startswith("text/csv")
    assert "attachment;" in r.headers["Content-Disposition"]
    lines = r.get_data(as_text=True).strip().splitlines()
    assert lines[0].startswith("submissionId,studentName,studentEmail")
    assert "Csv Person" in lines[1]


def test_anonymous_report_open_to_faculty(app, client):
    def build():
        faculty = make_user(role="faculty", section=None)
        subject = make_subject()
        make_submission(make_user(name="Hidden Name"), subject, [4] * 8, comments=["Good"])
        return faculty.email, subject.id
    email, subject_id = _seed(app, build)

    _login(client, email)
    r = client.get(f"/reports/subjects/{subject_id}/anonymous")
    assert r.status_code == 200
    assert "Hidden Name" not in r.get_data(as_text=True)
    assert client.get(f"/reports/subjects/{subject_id}", headers={"Accept": "application/json"}).status_code == 403
