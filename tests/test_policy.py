from flask import Flask
from werkzeug.exceptions import Forbidden, Unauthorized

import pytest

from campus_feedback.services import policy


class DummyUser:
    def __init__(self, uid, auth=True, role="student", active=True):
        self.id, self.is_authenticated, self.role, self.is_active = uid, auth, role, active


def make_app():
    app = Flask(__name__); app.config.update(SECRET_KEY="x", TESTING=True)
    return app


@pytest.fixture(autouse=True)
def _restore_current_user():
    original = policy.current_user
    yield
    policy.current_user = original


def test_login_required_unauth_json():
    app = make_app()
    @policy.login_required_json
    def v(): return "ok", 200
    policy.current_user = DummyUser(None, auth=False)
    with app.test_request_context("/x", headers={"Accept": "application/json"}):
        r = v(); assert r[1] == 401 and r[0].json["error"] == "unauthorized"


def test_login_required_ok():
    app = make_app()
    @policy.login_required_json
    def v(): return "ok", 200
    policy.current_user = DummyUser(7)
    with app.test_request_context("/x", headers={"Accept": "application/json"}):
        assert v() == ("ok", 200)


def test_role_required_forbidden():
    app = make_app()
    @policy.role_required(*policy.REPORT_ROLES)
    def v(): return "ok", 200
    policy.current_user = DummyUser(7, role="student")
    with app.test_request_context("/x", headers={"Accept": "application/json"}):
        r = v(); assert r[1] == 403 and r[0].json["error"] == "forbidden"


def test_role_required_inactive_account_forbidden():
    app = make_app()
    @policy.role_required("admin")
    def v(): return "ok", 200
    policy.current_user = DummyUser(7, role="admin", active=False)
    with app.test_request_context("/x", headers={"Accept": "application/json"}):
        r = v(); assert r[1] == 403


def test_role_required_ok():
    app = make_app()
    @policy.role_required(*policy.REPORT_ROLES)
    def v(): return "ok", 200
    policy.current_user = DummyUser(7, role="dean")
    with app.test_request_context("/x", headers={"Accept": "application/json"}):
        assert v() == ("ok", 200)


def test_non_json_request_aborts():
    app = make_app()
    @policy.role_required("admin")
    def v(): return "ok", 200
    policy.current_user = DummyUser(None, auth=False)
    with app.test_request_context("/x"):
        with pytest.raises(Unauthorized):
            v()
    policy.current_user = DummyUser(3, role="hod")
    with app.test_request_context("/x"):
        with pytest.raises(Forbidden):
            v()


def test_json_suffix_counts_as_json():
    app = make_app()
    @policy.role_required("admin")
    def v(): return "ok", 200
    policy.current_user = DummyUser(3, role="faculty")
    with app.test_request_context("/reports/export.json"):
        r = v(); assert r[1] == 403
