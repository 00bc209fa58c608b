from functools import wraps
from flask import abort, request, jsonify
from flask_login import current_user
from campus_feedback.models.user import ROLE_ADMIN, ROLE_DEAN, ROLE_HOD, ROLE_STUDENT

# Roles that may read institution-wide reports
REPORT_ROLES = (ROLE_ADMIN, ROLE_DEAN, ROLE_HOD)
PERIOD_ADMIN_ROLES = (ROLE_ADMIN,)
SETTINGS_ROLES = (ROLE_ADMIN,)
STUDENT_ROLES = (ROLE_STUDENT,)


def login_required_json(fn):
    @wraps(fn)
    def _wrap(*args, **kwargs):
        if not getattr(current_user, "is_authenticated", False):
            return _abort_smart(401)
        return fn(*args, **kwargs)
    return _wrap


def role_required(*roles):
    def deco(fn):
        @wraps(fn)
        def _wrap(*args, **kwargs):
            if not getattr(current_user, "is_authenticated", False):
                return _abort_smart(401)
            if not getattr(current_user, "is_active", True):
                return _abort_smart(403)
            if getattr(current_user, "role", None) not in roles:
                return _abort_smart(403)
            return fn(*args, **kwargs)
        return _wrap
    return deco


def _abort_smart(code: int):
    # JSON APIs get a JSON body; everything else falls through to the error handlers
    accept = (request.headers.get("Accept") or "").lower()
    if "application/json" in accept or request.is_json or request.path.endswith(".json"):
        return jsonify({"error": {401: "unauthorized", 403: "forbidden", 404: "not_found"}[code], "code": code}), code
    abort(code)
