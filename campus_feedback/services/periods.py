"""
Feedback period lifecycle.

States: draft -> active -> completed | cancelled, with `is_active` as an
orthogonal pause flag on active periods. Only one period may be live
(status=active AND is_active) per (feedback_type, term, academic_year); the
partial unique index `ux_feedback_periods_live_key` enforces it in the
database, and every write path here maps an index violation to ConflictError.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from campus_feedback.errors import ConflictError, NotFoundError, PolicyError, ValidationError
from campus_feedback.models import FeedbackPeriod, FeedbackSubmission, Subject, User
from campus_feedback.models.feedback import FEEDBACK_TYPES, TERMS
from campus_feedback.models.feedback_period import (
    DEFAULT_INSTRUCTIONS,
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    STATUS_CHOICES,
    STATUS_COMPLETED,
    STATUS_DRAFT,
    TERMINAL_STATUSES,
)
from campus_feedback.models.types import as_utc, utcnow
from campus_feedback.models.user import BRANCHES, ROLE_STUDENT, YEARS
from campus_feedback.observability import log_event
from campus_feedback.utils.helpers import parse_datetime
from campus_feedback.utils.validators import clean_str, is_valid_academic_year

ACTION_ACTIVATE = "activate"
ACTION_DEACTIVATE = "deactivate"
ACTION_COMPLETE = "complete"
ACTION_CANCEL = "cancel"
ACTIONS = (ACTION_ACTIVATE, ACTION_DEACTIVATE, ACTION_COMPLETE, ACTION_CANCEL)

FALLBACK_ACADEMIC_YEAR = "2024-25"

# Grouping key of live data; frozen once a period leaves draft
KEY_FIELDS = ("feedback_type", "term")
EDITABLE_FIELDS = (
    "title", "description", "instructions", "academic_year", "start_date", "end_date",
    "branches", "years", "subjects",
) + KEY_FIELDS

_ALIASES = {
    "feedbackType": "feedback_type",
    "academicYear": "academic_year",
    "startDate": "start_date",
    "endDate": "end_date",
}


@dataclass(frozen=True)
class StudentContext:
    """What the eligibility gate needs to know about a student."""
    branch: Optional[str] = None
    year: Optional[int] = None
    student_id: Optional[int] = None

    @classmethod
    def from_user(cls, user) -> "StudentContext":
        return cls(branch=user.branch, year=user.year, student_id=user.id)


# ---------------------------------------------------------------------------
# Payload validation
# ---------------------------------------------------------------------------

def _normalize_keys(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {_ALIASES.get(k, k): v for k, v in (data or {}).items()}


def _default_academic_year() -> str:
    try:
        return current_app.config.get("DEFAULT_ACADEMIC_YEAR") or FALLBACK_ACADEMIC_YEAR
    except RuntimeError:
        return FALLBACK_ACADEMIC_YEAR


def _feedback_type(value) -> str:
    s = str(value or "").strip().lower()
    if s not in FEEDBACK_TYPES:
        raise ValidationError(f"feedback_type must be one of {list(FEEDBACK_TYPES)}", field="feedback_type")
    return s


def _term(value) -> int:
    try:
        term = int(value)
    except (TypeError, ValueError):
        raise ValidationError("term must be numeric", field="term") from None
    if term not in TERMS:
        raise ValidationError(f"term must be one of {list(TERMS)}", field="term")
    return term


def _academic_year(value) -> str:
    s = (value or "").strip() if isinstance(value, str) else value
    if not s or not is_valid_academic_year(s):
        raise ValidationError("academic_year must look like '2024-25'", field="academic_year")
    return s


def _branches(value) -> list:
    items = list(value or [])
    unknown = [b for b in items if b not in BRANCHES]
    if unknown:
        raise ValidationError(f"Unknown branches: {unknown}", field="branches")
    return sorted(set(items))


def _years(value) -> list:
    try:
        items = sorted({int(y) for y in (value or [])})
    except (TypeError, ValueError):
        raise ValidationError("years must be numeric", field="years") from None
    if any(y not in YEARS for y in items):
        raise ValidationError(f"years must be within {list(YEARS)}", field="years")
    return items


def _subject_ids(value) -> list:
    try:
        return sorted({int(s) for s in (value or [])})
    except (TypeError, ValueError):
        raise ValidationError("subjects must be a list of subject ids", field="subjects") from None


def _required_text(value, field: str, max_len: int = 255) -> str:
    s = clean_str(value, max_len=max_len)
    if not s:
        raise ValidationError(f"{field} is required", field=field)
    return s


_PARSERS = {
    "title": lambda v: _required_text(v, "title"),
    "description": lambda v: _required_text(v, "description", max_len=5000),
    "instructions": lambda v: clean_str(v, max_len=5000) or DEFAULT_INSTRUCTIONS,
    "feedback_type": _feedback_type,
    "term": _term,
    "academic_year": _academic_year,
    "start_date": lambda v: parse_datetime(v, "start_date"),
    "end_date": lambda v: parse_datetime(v, "end_date"),
    "branches": _branches,
    "years": _years,
    "subjects": _subject_ids,
}


def _check_dates(start: datetime, end: datetime) -> None:
    if start >= end:
        raise ValidationError("End date must be after start date", field="end_date", rule="start_before_end")


def validate_period_payload(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Clean a create payload; raises ValidationError on the first bad field."""
    raw = _normalize_keys(data)
    for field in ("title", "description", "feedback_type", "term", "start_date", "end_date"):
        if raw.get(field) in (None, ""):
            raise ValidationError(f"{field} is required", field=field)

    cleaned = {name: parser(raw.get(name)) for name, parser in _PARSERS.items() if name != "academic_year"}
    cleaned["academic_year"] = _academic_year(raw.get("academic_year") or _default_academic_year())
    _check_dates(cleaned["start_date"], cleaned["end_date"])
    return cleaned


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def get_period(session: Session, period_id: int) -> FeedbackPeriod:
    period = session.get(FeedbackPeriod, period_id)
    if not period:
        raise NotFoundError(f"Feedback period {period_id} not found", field="period_id")
    return period


def live_period_for(session: Session, feedback_type: str, term: int, academic_year: str,
                    exclude_id: Optional[int] = None) -> Optional[FeedbackPeriod]:
    q = session.query(FeedbackPeriod).filter(
        FeedbackPeriod.feedback_type == feedback_type,
        FeedbackPeriod.term == term,
        FeedbackPeriod.academic_year == academic_year,
        FeedbackPeriod.status == STATUS_ACTIVE,
        FeedbackPeriod.is_active.is_(True),
    )
    if exclude_id is not None:
        q = q.filter(FeedbackPeriod.id != exclude_id)
    return q.first()


def list_periods(session: Session, *, status: Optional[str] = None, feedback_type: Optional[str] = None,
                 term: Optional[int] = None, academic_year: Optional[str] = None) -> List[FeedbackPeriod]:
    q = session.query(FeedbackPeriod)
    if status:
        if status not in STATUS_CHOICES:
            raise ValidationError(f"status must be one of {list(STATUS_CHOICES)}", field="status")
        q = q.filter(FeedbackPeriod.status == status)
    if feedback_type:
        q = q.filter(FeedbackPeriod.feedback_type == _feedback_type(feedback_type))
    if term not in (None, ""):
        q = q.filter(FeedbackPeriod.term == _term(term))
    if academic_year:
        q = q.filter(FeedbackPeriod.academic_year == academic_year)
    return q.order_by(FeedbackPeriod.created_at.desc(), FeedbackPeriod.id.desc()).all()


def count_submissions_for(session: Session, period: FeedbackPeriod) -> int:
    return (
        session.query(func.count(FeedbackSubmission.id))
        .filter(
            FeedbackSubmission.feedback_type == period.feedback_type,
            FeedbackSubmission.term == period.term,
            FeedbackSubmission.academic_year == period.academic_year,
        )
        .scalar()
    ) or 0


def _conflict(existing: FeedbackPeriod, message: str) -> ConflictError:
    return ConflictError(
        message,
        field="feedback_type",
        rule="one_live_period_per_type_term_year",
        existing={
            "id": existing.id,
            "title": existing.title,
            "start_date": existing.start_date.isoformat() if existing.start_date else None,
            "end_date": existing.end_date.isoformat() if existing.end_date else None,
        },
    )


def _flush_or_conflict(session: Session, period: FeedbackPeriod, message: Optional[str] = None,
                       *, field: str = "feedback_type", rule: str = "one_live_period_per_type_term_year") -> None:
    """Flush pending changes; a constraint violation rolls back and becomes ConflictError."""
    feedback_type, term, academic_year = period.key
    if message is None:
        message = f"Another {feedback_type} feedback period is already active for term {term} ({academic_year})"
    try:
        session.flush()
    except IntegrityError as e:
        session.rollback()
        raise ConflictError(message, field=field, rule=rule) from e


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def create_period(session: Session, data: Mapping[str, Any], *, created_by_id: Optional[int] = None,
                  now: Optional[datetime] = None) -> FeedbackPeriod:
    fields = validate_period_payload(data)
    now = as_utc(now) if now else utcnow()

    existing = live_period_for(session, fields["feedback_type"], fields["term"], fields["academic_year"])
    if existing:
        raise _conflict(
            existing,
            f"An active {fields['feedback_type']} feedback period already exists for term {fields['term']}",
        )

    period = FeedbackPeriod(
        **fields,
        status=STATUS_ACTIVE if fields["start_date"] <= now else STATUS_DRAFT,
        is_active=True,
        created_by_id=created_by_id,
    )
    session.add(period)
    _flush_or_conflict(session, period)

    log_event("period_created", period_id=period.id, feedback_type=period.feedback_type,
              term=period.term, academic_year=period.academic_year, status=period.status)
    return period


def update_period(session: Session, period_id: int, updates: Mapping[str, Any]) -> FeedbackPeriod:
    period = get_period(session, period_id)
    raw = _normalize_keys(updates)

    if "status" in raw or "is_active" in raw:
        raise ValidationError("Use a lifecycle transition to change status", field="status", rule="use_transition")
    unknown = sorted(set(raw) - set(EDITABLE_FIELDS))
    if unknown:
        raise ValidationError(f"Unknown or read-only fields: {unknown}", field=unknown[0])

    cleaned = {name: _PARSERS[name](value) for name, value in raw.items()}

    if period.status != STATUS_DRAFT:
        for field in KEY_FIELDS:
            if field in cleaned and cleaned[field] != getattr(period, field):
                raise PolicyError(
                    "Cannot change feedback type or term once a period has been activated",
                    field=field,
                    rule="immutable_after_activation",
                )

    _check_dates(cleaned.get("start_date", period.start_date), cleaned.get("end_date", period.end_date))

    if period.is_live and "academic_year" in cleaned and cleaned["academic_year"] != period.academic_year:
        existing = live_period_for(session, period.feedback_type, period.term, cleaned["academic_year"],
                                   exclude_id=period.id)
        if existing:
            raise _conflict(existing, "Another live period already uses that academic year for this type and term")

    for name, value in cleaned.items():
        setattr(period, name, value)
    _flush_or_conflict(
        session, period,
        f"Update of feedback period {period_id} conflicts with an existing record",
        field=sorted(cleaned)[0] if cleaned else "period_id",
        rule="update_conflict",
    )
    log_event("period_updated", period_id=period.id, fields=sorted(cleaned))
    return period


def transition(session: Session, period_id: int, action: str, *, now: Optional[datetime] = None) -> FeedbackPeriod:
    """Apply a lifecycle action. Terminal periods reject every action."""
    period = get_period(session, period_id)
    action = (action or "").strip().lower()
    if action not in ACTIONS:
        raise ValidationError(f"Invalid action {action!r}; expected one of {list(ACTIONS)}", field="action")

    if period.status in TERMINAL_STATUSES:
        raise PolicyError(
            f"Feedback period is {period.status}; no further transitions are allowed",
            field="status",
            rule="terminal_state",
        )

    previous = (period.status, bool(period.is_active))

    if action == ACTION_ACTIVATE:
        if period.is_live:
            raise PolicyError("Feedback period is already active", field="status", rule="already_active")
        # Re-checked at transition time: another period may have gone live since creation
        existing = live_period_for(session, *period.key, exclude_id=period.id)
        if existing:
            raise _conflict(
                existing,
                f"Cannot activate: another {period.feedback_type} feedback period is already active for this term",
            )
        period.status = STATUS_ACTIVE
        period.is_active = True
    elif action == ACTION_DEACTIVATE:
        if not period.is_live:
            raise PolicyError("Only a running active period can be paused", field="status", rule="not_active")
        period.is_active = False
    elif action == ACTION_COMPLETE:
        if period.status != STATUS_ACTIVE:
            raise PolicyError("Only an active period can be completed", field="status", rule="not_active")
        period.status = STATUS_COMPLETED
        period.is_active = False
    else:
        period.status = STATUS_CANCELLED
        period.is_active = False

    _flush_or_conflict(session, period)
    log_event("period_transition", period_id=period.id, action=action,
              from_status=previous[0], from_is_active=previous[1],
              to_status=period.status, to_is_active=bool(period.is_active))
    return period


def delete_period(session: Session, period_id: int) -> None:
    period = get_period(session, period_id)
    submissions = count_submissions_for(session, period)
    if submissions > 0 and period.status != STATUS_DRAFT:
        raise PolicyError(
            "Cannot delete feedback period with submitted feedbacks. Complete or cancel it instead.",
            field="period_id",
            rule="has_submissions",
            submissions=submissions,
        )
    session.delete(period)
    session.flush()
    log_event("period_deleted", period_id=period_id)


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------

def _covers_student(period: FeedbackPeriod, student: StudentContext) -> bool:
    if period.branches and student.branch not in period.branches:
        return False
    if period.years and student.year not in period.years:
        return False
    return True


def _in_scope(period: FeedbackPeriod, student: StudentContext, subject_id: Optional[int]) -> bool:
    if not _covers_student(period, student):
        return False
    return not period.subjects or subject_id in period.subjects


def find_collectible_period(session: Session, student: StudentContext, subject_id: Optional[int],
                            now: Optional[datetime] = None, *, feedback_type: Optional[str] = None) -> Optional[FeedbackPeriod]:
    now = as_utc(now) if now else utcnow()
    q = session.query(FeedbackPeriod).filter(
        FeedbackPeriod.status == STATUS_ACTIVE,
        FeedbackPeriod.is_active.is_(True),
        FeedbackPeriod.start_date <= now,
        FeedbackPeriod.end_date >= now,
    )
    if feedback_type:
        q = q.filter(FeedbackPeriod.feedback_type == feedback_type)
    for period in q.order_by(FeedbackPeriod.start_date.desc(), FeedbackPeriod.id.desc()).all():
        if _in_scope(period, student, subject_id):
            return period
    return None


def is_collectible(session: Session, student: StudentContext, subject_id: Optional[int],
                   now: Optional[datetime] = None, *, feedback_type: Optional[str] = None) -> bool:
    """The single gate the submission path consults."""
    return find_collectible_period(session, student, subject_id, now, feedback_type=feedback_type) is not None


def _subject_applies(subject: Subject, branch: Optional[str], year: Optional[int]) -> bool:
    return subject.serves_branch(branch) and (not year or subject.year == year)


def active_periods_for_student(session: Session, student, now: Optional[datetime] = None) -> List[dict]:
    """
    Live, in-window periods that cover the student, each with the subjects the
    student may review. Periods with nothing applicable are left out.
    """
    now = as_utc(now) if now else utcnow()
    ctx = StudentContext.from_user(student)
    periods = (
        session.query(FeedbackPeriod)
        .filter(
            FeedbackPeriod.status == STATUS_ACTIVE,
            FeedbackPeriod.is_active.is_(True),
            FeedbackPeriod.start_date <= now,
            FeedbackPeriod.end_date >= now,
        )
        .order_by(FeedbackPeriod.end_date.asc(), FeedbackPeriod.id.asc())
        .all()
    )

    out = []
    for period in periods:
        if not _covers_student(period, ctx):
            continue
        if period.subjects:
            candidates = session.query(Subject).filter(Subject.id.in_(period.subjects)).all()
        else:
            candidates = session.query(Subject).order_by(Subject.name.asc()).all()
        applicable = [s for s in candidates if _subject_applies(s, ctx.branch, ctx.year)]
        if not applicable:
            continue
        row = period.to_dict()
        row["applicable_subjects"] = [s.to_dict() for s in applicable]
        out.append(row)
    return out


def _scoped_subjects(session: Session, period: FeedbackPeriod) -> List[Subject]:
    if period.subjects:
        return session.query(Subject).filter(Subject.id.in_(period.subjects)).order_by(Subject.name.asc()).all()
    subjects = session.query(Subject).order_by(Subject.name.asc()).all()
    return [
        s for s in subjects
        if (not period.branches or set(period.branches) & set(s.branches or []))
        and (not period.years or s.year in period.years)
    ]


def _scoped_student_count(session: Session, period: FeedbackPeriod) -> int:
    q = session.query(func.count(User.id)).filter(User.role == ROLE_STUDENT)
    if period.branches:
        q = q.filter(User.branch.in_(period.branches))
    if period.years:
        q = q.filter(User.year.in_(period.years))
    return q.scalar() or 0


def period_statistics(session: Session, period_id: int, now: Optional[datetime] = None) -> dict:
    """
    Completion figures for one period. Also refreshes the period's
    denormalized `statistics` counters (caller commits).
    """
    period = get_period(session, period_id)
    now = as_utc(now) if now else utcnow()

    total = count_submissions_for(session, period)
    subjects = _scoped_subjects(session, period)
    counts = dict(
        session.query(FeedbackSubmission.subject_id, func.count(FeedbackSubmission.id))
        .filter(
            FeedbackSubmission.feedback_type == period.feedback_type,
            FeedbackSubmission.term == period.term,
            FeedbackSubmission.academic_year == period.academic_year,
        )
        .group_by(FeedbackSubmission.subject_id)
        .all()
    )
    subject_stats = [
        {
            "subject": {"id": s.id, "name": s.name, "code": s.code, "instructor": s.instructor},
            "feedbackCount": counts.get(s.id, 0),
        }
        for s in subjects
    ]

    total_students = _scoped_student_count(session, period)
    # Same simplification as the dashboard: every scoped student owes every scoped subject
    expected = total_students * len(subjects)
    period.statistics = {
        "totalStudents": total_students,
        "completedFeedbacks": total,
        "pendingFeedbacks": max(expected - total, 0),
    }
    session.flush()

    days_remaining = 0
    if period.status == STATUS_ACTIVE:
        days_remaining = max(math.ceil((period.end_date - now).total_seconds() / 86400), 0)

    return {
        "period": {
            "id": period.id,
            "title": period.title,
            "feedbackType": period.feedback_type,
            "term": period.term,
            "academicYear": period.academic_year,
            "status": period.status,
        },
        "statistics": {
            "totalFeedbacks": total,
            "subjectStats": subject_stats,
            "startDate": period.start_date.isoformat(),
            "endDate": period.end_date.isoformat(),
            "daysRemaining": days_remaining,
            **period.statistics,
        },
    }
