from flask import request, jsonify
from flask_login import current_user
from campus_feedback.errors import ValidationError
from campus_feedback.extensions import db
from campus_feedback.services import settings as settings_service
from campus_feedback.services.policy import SETTINGS_ROLES, role_required
from . import bp


@bp.get("/system")
@role_required(*SETTINGS_ROLES)
def get_system_settings():
    return jsonify(settings_service.get_settings(db.session)), 200


@bp.put("/system")
@role_required(*SETTINGS_ROLES)
def put_system_settings():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Invalid payload", field="settings")
    row = settings_service.update_settings(db.session, payload.get("settings", payload), updated_by_id=current_user.id)
    db.session.commit()
    return jsonify(row.to_dict()), 200
