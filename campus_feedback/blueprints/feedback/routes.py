from flask import request, jsonify
from flask_login import current_user
from campus_feedback.errors import ValidationError
from campus_feedback.extensions import db, limiter
from campus_feedback.services import submissions as submission_service
from campus_feedback.services.periods import active_periods_for_student
from campus_feedback.services.policy import STUDENT_ROLES, role_required
from campus_feedback.services.question_templates import questions_by_category, questions_for, RATING_SCALE
from campus_feedback.utils.helpers import safe_int
from . import bp


@bp.post("")
@role_required(*STUDENT_ROLES)
@limiter.limit("30 per hour")
def submit():
    data = request.get_json(silent=True) or {}
    subject_id = safe_int(data.get("subject_id", data.get("subjectId")))
    if subject_id is None:
        raise ValidationError("subject_id is required", field="subject_id")

    submission = submission_service.submit_feedback(
        db.session,
        current_user,
        subject_id,
        data.get("feedback_type") or data.get("feedbackType"),
        data.get("answers"),
    )
    db.session.commit()
    return jsonify(submission.to_dict()), 201


@bp.get("/mine")
@role_required(*STUDENT_ROLES)
def mine():
    subject_id = safe_int(request.args.get("subject_id"))
    return jsonify(submission_service.list_student_feedback(db.session, current_user.id, subject_id=subject_id)), 200


@bp.get("/available")
@role_required(*STUDENT_ROLES)
def available():
    """Live periods for the current student, with the subjects they can review."""
    return jsonify(active_periods_for_student(db.session, current_user)), 200


@bp.get("/questions/<feedback_type>")
def questions(feedback_type):
    qs = questions_for(feedback_type)
    return jsonify({
        "feedback_type": feedback_type,
        "rating_scale": RATING_SCALE,
        "categories": {
            cat: [{"id": q.id, "question": q.text, "type": q.type, "required": q.required} for q in items]
            for cat, items in questions_by_category(qs).items()
        },
    }), 200
