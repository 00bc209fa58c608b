"""
Report filter struct and its translation to store criteria.

Scalar dimensions become SQLAlchemy criteria (`to_criteria`); set-valued
dimensions (a subject serving several branches) and respondent attributes
are evaluated in Python on joined records (`matches_record`).
"""
from __future__ import annotations

from dataclasses import dataclass, asdict, fields
from datetime import datetime
from typing import Any, Mapping, Optional

from campus_feedback.errors import ValidationError
from campus_feedback.models import FeedbackSubmission, Subject
from campus_feedback.models.feedback import FEEDBACK_TYPES, TERMS
from campus_feedback.models.user import SECTIONS, YEARS
from campus_feedback.utils.helpers import parse_datetime

_ALL = ("", "all")

# request key -> dataclass field (camelCase accepted for API callers)
_ALIASES = {
    "feedbackType": "feedback_type",
    "subjectId": "subject_id",
    "subject": "subject_id",
    "academicYear": "academic_year",
    "startDate": "start_date",
    "endDate": "end_date",
}


@dataclass(frozen=True)
class ReportFilter:
    year: Optional[int] = None
    term: Optional[int] = None
    branch: Optional[str] = None
    section: Optional[str] = None
    feedback_type: Optional[str] = None
    subject_id: Optional[int] = None
    academic_year: Optional[str] = None
    instructor: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "ReportFilter":
        data = data or {}
        known = {f.name for f in fields(cls)}
        raw = {}
        for key, value in data.items():
            name = _ALIASES.get(key, key)
            if name in known:
                raw[name] = value

        return cls(
            year=_int_in(raw.get("year"), "year", YEARS),
            term=_int_in(raw.get("term"), "term", TERMS),
            branch=_text(raw.get("branch")),
            section=_choice(raw.get("section"), "section", SECTIONS, upper=True),
            feedback_type=_choice(raw.get("feedback_type"), "feedback_type", FEEDBACK_TYPES),
            subject_id=_int_in(raw.get("subject_id"), "subject_id"),
            academic_year=_text(raw.get("academic_year")),
            instructor=_text(raw.get("instructor")),
            start_date=_date(raw.get("start_date"), "start_date"),
            end_date=_date(raw.get("end_date"), "end_date", end_of_day=True),
        )

    def replace(self, **changes) -> "ReportFilter":
        values = asdict(self)
        values.update(changes)
        return ReportFilter(**values)

    def is_empty(self) -> bool:
        return all(v is None for v in asdict(self).values())

    def to_dict(self) -> dict:
        out = {}
        for k, v in asdict(self).items():
            if v is None:
                continue
            out[k] = v.isoformat() if isinstance(v, datetime) else v
        return out


def _is_absent(value) -> bool:
    return value is None or (isinstance(value, str) and value.strip().lower() in _ALL)


def _text(value) -> Optional[str]:
    if _is_absent(value):
        return None
    return str(value).strip()


def _int_in(value, field: str, allowed=None) -> Optional[int]:
    if _is_absent(value):
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be numeric", field=field)
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be numeric, got {value!r}", field=field) from None
    if allowed is not None and number not in allowed:
        raise ValidationError(f"{field} must be one of {list(allowed)}", field=field)
    return number


def _choice(value, field: str, allowed, upper: bool = False) -> Optional[str]:
    if _is_absent(value):
        return None
    s = str(value).strip()
    s = s.upper() if upper else s.lower()
    if s not in allowed:
        raise ValidationError(f"{field} must be one of {list(allowed)}", field=field)
    return s


def _date(value, field: str, end_of_day: bool = False) -> Optional[datetime]:
    if _is_absent(value):
        return None
    return parse_datetime(value, field, end_of_day=end_of_day)


def to_criteria(flt: ReportFilter) -> list:
    """
    SQLAlchemy criteria for the scalar dimensions. Subject-column criteria
    assume the query joins Subject.
    """
    criteria = []
    if flt.feedback_type is not None:
        criteria.append(FeedbackSubmission.feedback_type == flt.feedback_type)
    if flt.term is not None:
        criteria.append(FeedbackSubmission.term == flt.term)
    if flt.academic_year is not None:
        criteria.append(FeedbackSubmission.academic_year == flt.academic_year)
    if flt.subject_id is not None:
        criteria.append(FeedbackSubmission.subject_id == flt.subject_id)
    if flt.start_date is not None:
        criteria.append(FeedbackSubmission.created_at >= flt.start_date)
    if flt.end_date is not None:
        criteria.append(FeedbackSubmission.created_at <= flt.end_date)
    if flt.year is not None:
        criteria.append(Subject.year == flt.year)
    if flt.instructor is not None:
        criteria.append(Subject.instructor == flt.instructor)
    return criteria


def matches_subject(flt: ReportFilter, subject) -> bool:
    """Subject-level predicate; branch is a membership test against the subject's set."""
    if subject is None:
        return False
    if flt.branch is not None and flt.branch not in (subject.branches or []):
        return False
    if flt.year is not None and subject.year != flt.year:
        return False
    if flt.instructor is not None and subject.instructor != flt.instructor:
        return False
    if flt.subject_id is not None and subject.id != flt.subject_id:
        return False
    return True


def matches_record(flt: ReportFilter, record) -> bool:
    """Predicate over an EnrichedSubmission for the dimensions SQL does not cover."""
    if flt.branch is not None and flt.branch not in record.subject_branches:
        return False
    if flt.section is not None and record.student_section != flt.section:
        return False
    return True
