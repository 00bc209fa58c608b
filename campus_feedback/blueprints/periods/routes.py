from flask import request, jsonify
from flask_login import current_user
from campus_feedback.extensions import db
from campus_feedback.services import periods as period_service
from campus_feedback.services.policy import PERIOD_ADMIN_ROLES, REPORT_ROLES, role_required
from . import bp


@bp.get("")
@role_required(*REPORT_ROLES)
def list_periods():
    rows = period_service.list_periods(
        db.session,
        status=(request.args.get("status") or "").strip() or None,
        feedback_type=(request.args.get("feedback_type") or "").strip() or None,
        term=(request.args.get("term") or "").strip() or None,
        academic_year=(request.args.get("academic_year") or "").strip() or None,
    )
    return jsonify([p.to_dict() for p in rows]), 200


@bp.post("")
@role_required(*PERIOD_ADMIN_ROLES)
def create_period():
    period = period_service.create_period(db.session, request.get_json(silent=True) or {}, created_by_id=current_user.id)
    db.session.commit()
    return jsonify(period.to_dict()), 201


@bp.get("/<int:period_id>")
@role_required(*REPORT_ROLES)
def get_period(period_id: int):
    return jsonify(period_service.get_period(db.session, period_id).to_dict()), 200


@bp.patch("/<int:period_id>")
@role_required(*PERIOD_ADMIN_ROLES)
def update_period(period_id: int):
    period = period_service.update_period(db.session, period_id, request.get_json(silent=True) or {})
    db.session.commit()
    return jsonify(period.to_dict()), 200


@bp.post("/<int:period_id>/<action>")
@role_required(*PERIOD_ADMIN_ROLES)
def transition(period_id: int, action: str):
    period = period_service.transition(db.session, period_id, action)
    db.session.commit()
    return jsonify(period.to_dict()), 200


@bp.delete("/<int:period_id>")
@role_required(*PERIOD_ADMIN_ROLES)
def delete_period(period_id: int):
    period_service.delete_period(db.session, period_id)
    db.session.commit()
    return jsonify({"ok": True, "deleted": period_id}), 200


@bp.get("/<int:period_id>/stats")
@role_required(*REPORT_ROLES)
def period_stats(period_id: int):
    data = period_service.period_statistics(db.session, period_id)
    # Persist the refreshed denormalized counters
    db.session.commit()
    return jsonify(data), 200
