from flask import request, jsonify
from flask_login import login_user, logout_user, current_user
from sqlalchemy import func
from campus_feedback.extensions import db, limiter
from campus_feedback.models.user import User
from campus_feedback.observability import log_event
from campus_feedback.services.policy import login_required_json
from . import bp


def _login_identity_scope():
    data_json = request.get_json(silent=True) or {}
    ident = (data_json.get("email") or data_json.get("roll_number") or request.form.get("email") or "").strip().lower()
    # Keep a stable scope even if the identifier is blank
    return f"login-id:{ident or 'missing'}"


@bp.post("/login")
@limiter.limit("10 per minute; 100 per hour")              # per-IP (anon -> IP via _rate_limit_key)
@limiter.limit("5 per minute; 20 per hour", key_func=_login_identity_scope)  # per-account
def login_post():
    data = request.get_json(silent=True) or request.form
    ident = (data.get("email") or data.get("roll_number") or "").strip()
    password = data.get("password") or ""

    if not ident or not password:
        return jsonify({"error": "validation_error", "message": "Email (or roll number) and password are required", "code": 400}), 400

    user = db.session.execute(
        db.select(User).where(
            (func.lower(User.email) == ident.lower()) | (func.upper(User.roll_number) == ident.upper())
        )
    ).scalars().first()

    if not user or not user.check_password(password) or not user.is_active:
        return jsonify({"error": "invalid_credentials", "code": 401}), 401

    login_user(user)
    log_event("login", user_id=user.id, role=user.role)
    return jsonify({"user": user.to_dict(), "password_reset_required": bool(user.password_reset_required)}), 200


@bp.post("/logout")
def logout_post():
    if current_user.is_authenticated:
        logout_user()
    return jsonify({"ok": True}), 200


@bp.get("/me")
@login_required_json
def me():
    return jsonify({"user": current_user.to_dict()}), 200
