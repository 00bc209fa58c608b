"""
Aggregation engine.

Submissions are joined to their subject and student explicitly
(`join_submissions`) so every statistic below runs on plain records and never
depends on the store's own join facility. Values stay full precision here;
the report layer rounds.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy.orm import Session

from campus_feedback.errors import ValidationError
from campus_feedback.models import FeedbackSubmission, Subject, User
from campus_feedback.models.feedback import ANSWER_RATING
from . import statistics as stats
from .filters import ReportFilter, matches_record, to_criteria

logger = logging.getLogger(__name__)

# Minimum submissions before a subject/instructor/question may be ranked
MIN_SAMPLE_SIZE = 3

DIM_SUBJECT = "subject"
DIM_INSTRUCTOR = "instructor"
DIM_BRANCH = "branch"
DIM_SECTION = "section"
DIM_MONTH = "month"
DIM_QUESTION = "question"

UNKNOWN_BRANCH = "Unknown"
UNASSIGNED = "Unassigned"


@dataclass(frozen=True)
class EnrichedSubmission:
    id: int
    feedback_type: str
    term: int
    academic_year: str
    created_at: Optional[datetime]
    answers: tuple
    rating_mean: float
    rating_count: int

    subject_id: int
    subject_name: str
    subject_code: Optional[str]
    instructor: Optional[str]
    department: Optional[str]
    subject_branches: tuple
    subject_year: Optional[int]

    student_id: Optional[int]
    student_name: Optional[str]
    student_email: Optional[str]
    student_roll_number: Optional[str]
    student_branch: Optional[str]
    student_section: Optional[str]
    student_year: Optional[int]


def rating_values(answers: Iterable[Mapping]) -> List[float]:
    values = []
    for a in answers or ():
        if a.get("type", ANSWER_RATING) != ANSWER_RATING:
            continue
        if a.get("answer") is None:
            continue
        values.append(float(a["answer"]))
    return values


def submission_mean(answers: Iterable[Mapping]) -> float:
    """Full-precision mean of the rating answers; the stored average is only a cache."""
    return stats.mean(rating_values(answers))


def join_submissions(submissions: Iterable, subjects_by_id: Mapping[int, object], users_by_id: Mapping[int, object]) -> List[EnrichedSubmission]:
    """
    Enrich raw submissions with denormalized subject/student attributes.
    Submissions whose subject no longer exists are dropped; a missing student
    leaves the identity fields empty.
    """
    out = []
    for s in submissions:
        subject = subjects_by_id.get(s.subject_id)
        if subject is None:
            continue
        student = users_by_id.get(s.student_id)
        ratings = rating_values(s.answers)
        out.append(EnrichedSubmission(
            id=s.id,
            feedback_type=s.feedback_type,
            term=s.term,
            academic_year=s.academic_year,
            created_at=s.created_at,
            answers=tuple(s.answers or ()),
            rating_mean=stats.mean(ratings),
            rating_count=len(ratings),
            subject_id=subject.id,
            subject_name=subject.name,
            subject_code=subject.code,
            instructor=subject.instructor,
            department=subject.department,
            subject_branches=tuple(subject.branches or ()),
            subject_year=subject.year,
            student_id=getattr(student, "id", s.student_id),
            student_name=getattr(student, "name", None),
            student_email=getattr(student, "email", None),
            student_roll_number=getattr(student, "roll_number", None),
            student_branch=getattr(student, "branch", None),
            student_section=getattr(student, "section", None),
            student_year=getattr(student, "year", None),
        ))
    return out


def load_records(session: Session, flt: Optional[ReportFilter] = None) -> List[EnrichedSubmission]:
    """Read submissions matching `flt` and join them. Read-only."""
    flt = flt or ReportFilter()
    query = (
        session.query(FeedbackSubmission)
        .join(Subject, Subject.id == FeedbackSubmission.subject_id)
    )
    for criterion in to_criteria(flt):
        query = query.filter(criterion)
    submissions = query.order_by(FeedbackSubmission.created_at.asc(), FeedbackSubmission.id.asc()).all()
    if not submissions:
        return []

    subject_ids = {s.subject_id for s in submissions}
    student_ids = {s.student_id for s in submissions}
    subjects = {s.id: s for s in session.query(Subject).filter(Subject.id.in_(subject_ids)).all()}
    users = {u.id: u for u in session.query(User).filter(User.id.in_(student_ids)).all()}

    records = [r for r in join_submissions(submissions, subjects, users) if matches_record(flt, r)]
    logger.debug("load_records filter=%s matched=%d", flt.to_dict(), len(records))
    return records


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------

def _subject_meta(r: EnrichedSubmission) -> dict:
    return {
        "subjectId": r.subject_id,
        "subjectName": r.subject_name,
        "subjectCode": r.subject_code,
        "instructor": r.instructor,
        "department": r.department,
        "branches": list(r.subject_branches),
    }


def _month_key(r: EnrichedSubmission) -> str:
    return r.created_at.strftime("%Y-%m") if r.created_at else UNASSIGNED


# dimension -> (key function, metadata function, label key)
_DIMENSIONS: Dict[str, tuple] = {
    DIM_SUBJECT: (lambda r: r.subject_id, _subject_meta, "subjectName"),
    DIM_INSTRUCTOR: (lambda r: r.instructor or UNASSIGNED, lambda r: {"instructor": r.instructor or UNASSIGNED}, "instructor"),
    DIM_BRANCH: (lambda r: r.student_branch or UNKNOWN_BRANCH, lambda r: {"branch": r.student_branch or UNKNOWN_BRANCH}, "branch"),
    DIM_SECTION: (lambda r: r.student_section or UNASSIGNED, lambda r: {"section": r.student_section or UNASSIGNED}, "section"),
    DIM_MONTH: (_month_key, lambda r: {"month": _month_key(r)}, "month"),
}

GROUPINGS = tuple(_DIMENSIONS) + (DIM_QUESTION,)


def group_stats(values: Sequence[float]) -> dict:
    """Per-group statistics block shared by every grouping."""
    summary = stats.summarize(values)
    return {
        "count": summary["count"],
        "averageRating": summary["mean"],
        "minRating": summary["min"],
        "maxRating": summary["max"],
        "stdDev": summary["std_dev"],
        "consistency": summary["consistency"],
        "distribution": summary["distribution"],
    }


def empty_group_stats() -> dict:
    return group_stats([])


def aggregate(records: Sequence[EnrichedSubmission], dimension: str) -> List[dict]:
    """
    Group records by `dimension` and compute statistics over each
    submission's rating mean. Month groups come out chronologically; every
    other grouping is ranked by averageRating descending, ties by label.
    """
    if dimension == DIM_QUESTION:
        return question_analysis(records)
    try:
        key_fn, meta_fn, label_key = _DIMENSIONS[dimension]
    except KeyError:
        raise ValidationError(f"Unsupported grouping {dimension!r}", field="group_by") from None

    buckets: Dict[object, List[EnrichedSubmission]] = {}
    for r in records:
        buckets.setdefault(key_fn(r), []).append(r)

    groups = []
    for key, members in buckets.items():
        row = meta_fn(members[0])
        row.update(group_stats([m.rating_mean for m in members]))
        if dimension == DIM_INSTRUCTOR:
            row["subjects"] = sorted({m.subject_name for m in members})
            row["departments"] = sorted({m.department for m in members if m.department})
        groups.append(row)

    if dimension == DIM_MONTH:
        groups.sort(key=lambda g: g["month"])
    else:
        groups.sort(key=lambda g: (-g["averageRating"], str(g.get(label_key) or "")))
    return groups


def overall(records: Sequence[EnrichedSubmission]) -> dict:
    return group_stats([r.rating_mean for r in records])


def question_analysis(records: Sequence[EnrichedSubmission]) -> List[dict]:
    """
    Cross-subject analysis per distinct question text.

    Two levels: raw ratings -> per-subject mean, then the overall average,
    variance and consistency are computed over those per-subject means, not
    over individual student ratings.
    """
    per_question: Dict[str, Dict[int, List[float]]] = {}
    categories: Dict[str, Optional[str]] = {}
    subject_meta: Dict[int, EnrichedSubmission] = {}

    for r in records:
        subject_meta.setdefault(r.subject_id, r)
        for a in r.answers:
            if a.get("type", ANSWER_RATING) != ANSWER_RATING or a.get("answer") is None:
                continue
            text = a.get("question") or ""
            per_question.setdefault(text, {}).setdefault(r.subject_id, []).append(float(a["answer"]))
            if a.get("category") and not categories.get(text):
                categories[text] = a.get("category")

    results = []
    for text, by_subject in per_question.items():
        subjects = []
        raw: List[float] = []
        for sid, ratings in by_subject.items():
            meta = subject_meta[sid]
            raw.extend(ratings)
            subjects.append({
                "subjectId": sid,
                "subjectName": meta.subject_name,
                "subjectCode": meta.subject_code,
                "instructor": meta.instructor,
                "averageRating": stats.mean(ratings),
                "responseCount": len(ratings),
            })
        subjects.sort(key=lambda s: (-s["averageRating"], s["subjectName"] or ""))

        means = [s["averageRating"] for s in subjects]
        avg = stats.mean(means)
        dev = stats.std_dev(means, avg)
        highest, lowest = max(means), min(means)
        results.append({
            "question": text,
            "category": categories.get(text),
            "count": len(raw),
            "averageRating": avg,
            "overallAverage": avg,
            "totalResponses": len(raw),
            "subjectCount": len(subjects),
            "variance": stats.variance(means, avg),
            "stdDev": dev,
            "consistency": stats.consistency(dev),
            "performanceRange": {
                "highest": highest,
                "lowest": lowest,
                "range": highest - lowest,
            },
            "distribution": stats.distribution(raw),
            "subjects": subjects,
        })

    results.sort(key=lambda q: (-q["overallAverage"], q["question"]))
    return results


def category_analysis(records: Sequence[EnrichedSubmission]) -> List[dict]:
    """Raw rating statistics per question category (uncategorized answers are skipped)."""
    buckets: Dict[str, List[float]] = {}
    for r in records:
        for a in r.answers:
            if a.get("type", ANSWER_RATING) != ANSWER_RATING or a.get("answer") is None:
                continue
            if not a.get("category"):
                continue
            buckets.setdefault(a["category"], []).append(float(a["answer"]))
    rows = []
    for category, values in buckets.items():
        row = {"category": category}
        row.update(group_stats(values))
        rows.append(row)
    rows.sort(key=lambda c: (-c["averageRating"], c["category"]))
    return rows


def top_performing(groups: Sequence[dict], limit: Optional[int] = None, *, count_key: str = "count",
                   rating_key: str = "averageRating", min_count: int = MIN_SAMPLE_SIZE) -> List[dict]:
    """Groups with at least `min_count` submissions, best first."""
    eligible = [g for g in groups if g.get(count_key, 0) >= min_count]
    eligible.sort(key=lambda g: -g[rating_key])
    return eligible[:limit] if limit else eligible


def bottom_performing(groups: Sequence[dict], limit: Optional[int] = None, *, count_key: str = "count",
                      rating_key: str = "averageRating", min_count: int = MIN_SAMPLE_SIZE) -> List[dict]:
    eligible = [g for g in groups if g.get(count_key, 0) >= min_count]
    eligible.sort(key=lambda g: g[rating_key])
    return eligible[:limit] if limit else eligible


def rating_distribution(records: Sequence[EnrichedSubmission]) -> Dict[int, int]:
    """Submission-level distribution: each submission's mean falls in one band."""
    return stats.distribution(r.rating_mean for r in records)
