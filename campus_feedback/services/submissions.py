"""
Submission path: settings check -> collectible-period gate -> answer
validation -> insert. The (student, subject, type, term) unique constraint
decides duplicates at flush time.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from campus_feedback.errors import ConflictError, NotFoundError, PolicyError, ValidationError
from campus_feedback.models import FeedbackSubmission, Subject, SystemSettings
from campus_feedback.models.feedback import ANSWER_COMMENT, ANSWER_RATING, FEEDBACK_TYPES
from campus_feedback.models.user import ROLE_STUDENT
from campus_feedback.observability import log_event
from campus_feedback.utils.validators import clean_str
from . import statistics as stats
from .periods import StudentContext, find_collectible_period
from .question_templates import category_for

MIN_ANSWERS = 8
MAX_COMMENT_LENGTH = 2000


def _min_rating_answers() -> int:
    try:
        return int(current_app.config.get("MIN_RATING_ANSWERS", MIN_ANSWERS))
    except RuntimeError:
        return MIN_ANSWERS


def ensure_feedback_open(session: Session) -> None:
    settings = SystemSettings.current(session)
    if settings is None:
        return
    if settings.maintenance_mode:
        raise PolicyError("The system is under maintenance; try again later", rule="maintenance_mode")
    if not settings.feedback_enabled:
        raise PolicyError("Feedback collection is currently disabled", rule="feedback_disabled")


def _rating(value, index: int) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"answers[{index}].answer must be an integer 1-5", field="answers")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"answers[{index}].answer must be an integer 1-5", field="answers") from None
    if not number.is_integer() or not 1 <= number <= 5:
        raise ValidationError(f"answers[{index}].answer must be an integer 1-5", field="answers")
    return int(number)


def validate_answers(answers: Any, feedback_type: str) -> List[dict]:
    """
    Normalize the ordered answer list. Rating answers carry an integer 1..5;
    comment text passes through untouched apart from trimming and length.
    """
    if not isinstance(answers, (list, tuple)):
        raise ValidationError("answers must be a list", field="answers")
    if len(answers) < MIN_ANSWERS:
        raise ValidationError(f"At least {MIN_ANSWERS} answers are required", field="answers", rule="min_answers")

    cleaned = []
    for i, raw in enumerate(answers):
        if not isinstance(raw, Mapping):
            raise ValidationError(f"answers[{i}] must be an object", field="answers")
        question = clean_str(raw.get("question"), max_len=500)
        if not question:
            raise ValidationError(f"answers[{i}].question is required", field="answers")
        kind = str(raw.get("type") or ANSWER_RATING).strip().lower()
        if kind not in (ANSWER_RATING, ANSWER_COMMENT):
            raise ValidationError(f"answers[{i}].type must be 'rating' or 'comment'", field="answers")

        item = {"question": question, "type": kind}
        category = clean_str(raw.get("category"), max_len=64) or category_for(feedback_type, question)
        if category:
            item["category"] = category
        if kind == ANSWER_RATING:
            item["answer"] = _rating(raw.get("answer"), i)
        else:
            comment = raw.get("comment")
            if comment is None:
                comment = raw.get("answer")
            item["comment"] = "" if comment is None else str(comment).strip()[:MAX_COMMENT_LENGTH]
        cleaned.append(item)

    minimum = _min_rating_answers()
    ratings = sum(1 for a in cleaned if a["type"] == ANSWER_RATING)
    if ratings < minimum:
        raise ValidationError(
            f"At least {minimum} rating answers are required, got {ratings}",
            field="answers",
            rule="min_rating_answers",
        )
    return cleaned


def derived_average(answers: Iterable[Mapping]) -> float:
    """Stored average: mean of rating answers, half-up to 1 decimal."""
    ratings = [a["answer"] for a in answers if a.get("type") == ANSWER_RATING and a.get("answer") is not None]
    return stats.round_half_up(stats.mean(ratings), 1)


def submit_feedback(session: Session, student, subject_id: int, feedback_type: str, answers: Any,
                    *, now: Optional[datetime] = None) -> FeedbackSubmission:
    if getattr(student, "role", ROLE_STUDENT) != ROLE_STUDENT:
        raise PolicyError("Only students can submit feedback", rule="student_only")

    feedback_type = (feedback_type or "").strip().lower()
    if feedback_type not in FEEDBACK_TYPES:
        raise ValidationError(f"feedback_type must be one of {list(FEEDBACK_TYPES)}", field="feedback_type")

    subject = session.get(Subject, subject_id)
    if subject is None:
        raise NotFoundError(f"Subject {subject_id} not found", field="subject_id")

    ensure_feedback_open(session)

    period = find_collectible_period(
        session, StudentContext.from_user(student), subject.id, now, feedback_type=feedback_type
    )
    if period is None:
        raise PolicyError(
            f"No active {feedback_type} feedback period covers this subject right now",
            field="subject_id",
            rule="no_collectible_period",
        )

    cleaned = validate_answers(answers, feedback_type)
    submission = FeedbackSubmission(
        student_id=student.id,
        subject_id=subject.id,
        feedback_type=feedback_type,
        term=period.term,
        academic_year=period.academic_year,
        answers=cleaned,
        average_rating=derived_average(cleaned),
    )
    if now is not None:
        submission.created_at = now
    session.add(submission)
    try:
        session.flush()
    except IntegrityError as e:
        session.rollback()
        raise ConflictError(
            "Feedback already submitted for this subject, feedback type and term",
            field="subject_id",
            rule="one_submission_per_student_subject_type_term",
        ) from e

    log_event("feedback_submitted", submission_id=submission.id, subject_id=subject.id,
              feedback_type=feedback_type, term=period.term, period_id=period.id)
    return submission


def list_student_feedback(session: Session, student_id: int, *, subject_id: Optional[int] = None) -> List[dict]:
    q = (
        session.query(FeedbackSubmission, Subject)
        .join(Subject, Subject.id == FeedbackSubmission.subject_id)
        .filter(FeedbackSubmission.student_id == student_id)
    )
    if subject_id is not None:
        q = q.filter(FeedbackSubmission.subject_id == subject_id)
    rows = []
    for submission, subject in q.order_by(FeedbackSubmission.created_at.desc()).all():
        row = submission.to_dict()
        row["subject"] = {"id": subject.id, "name": subject.name, "code": subject.code, "instructor": subject.instructor}
        rows.append(row)
    return rows
