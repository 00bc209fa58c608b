"""
Report assembler.

Thin composition over the aggregation engine. Every function here is
read-only and returns plain dicts/lists; rounding happens here and only here:
subject, dashboard and overview averages to 1 decimal, question analysis,
standard deviations and percentages to 2.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence

from flask import current_app
from sqlalchemy import func
from sqlalchemy.orm import Session

from campus_feedback.errors import NotFoundError
from campus_feedback.models import FeedbackPeriod, Subject, User
from campus_feedback.models.feedback import ANSWER_COMMENT
from campus_feedback.models.types import as_utc, utcnow
from campus_feedback.models.user import ROLE_FACULTY, ROLE_STUDENT
from campus_feedback.utils.helpers import format_duration
from . import aggregation as agg
from . import statistics as stats
from .filters import ReportFilter, matches_subject

AVERAGE_PLACES = 1
DETAIL_PLACES = 2

_DEFAULTS = {
    "TOP_PERFORMERS_LIMIT": 10,
    "RECENT_FEEDBACK_LIMIT": 10,
    "TREND_MONTHS": 6,
}


def _setting(name: str) -> int:
    try:
        return int(current_app.config.get(name, _DEFAULTS[name]))
    except RuntimeError:
        return _DEFAULTS[name]


def _r1(value) -> float:
    return stats.round_half_up(value, AVERAGE_PLACES)


def _r2(value) -> float:
    return stats.round_half_up(value, DETAIL_PLACES)


def _percentages(counts: dict) -> dict:
    return {band: _r2(p) for band, p in stats.distribution_percentages(counts).items()}


def _present_group(group: dict) -> dict:
    """Round one aggregation group for display and expose totalFeedbacks."""
    out = dict(group)
    out["totalFeedbacks"] = group["count"]
    out["averageRating"] = _r1(group["averageRating"])
    out["minRating"] = _r1(group["minRating"])
    out["maxRating"] = _r1(group["maxRating"])
    out["stdDev"] = _r2(group["stdDev"])
    out["distributionPercentages"] = _percentages(group["distribution"])
    return out


def _present_question(q: dict) -> dict:
    out = dict(q)
    out["averageRating"] = _r2(q["averageRating"])
    out["overallAverage"] = _r2(q["overallAverage"])
    out["variance"] = _r2(q["variance"])
    out["stdDev"] = _r2(q["stdDev"])
    out["performanceRange"] = {k: _r2(v) for k, v in q["performanceRange"].items()}
    out["subjects"] = [dict(s, averageRating=_r2(s["averageRating"])) for s in q["subjects"]]
    return out


def _present_category(c: dict) -> dict:
    return {
        "category": c["category"],
        "responseCount": c["count"],
        "averageRating": _r2(c["averageRating"]),
        "stdDev": _r2(c["stdDev"]),
        "consistency": c["consistency"],
    }


def _overall_block(records: Sequence[agg.EnrichedSubmission]) -> dict:
    summary = agg.overall(records)
    return {
        "totalFeedbacks": summary["count"],
        "averageRating": _r1(summary["averageRating"]),
        "stdDev": _r2(summary["stdDev"]),
        "consistency": summary["consistency"],
        "ratingDistribution": summary["distribution"],
        "distributionPercentages": _percentages(summary["distribution"]),
    }


def _subject_header(subject: Subject) -> dict:
    return {
        "id": subject.id,
        "name": subject.name,
        "code": subject.code,
        "instructor": subject.instructor,
        "department": subject.department,
        "branches": list(subject.branches or []),
        "year": subject.year,
        "term": subject.term,
    }


def _get_subject(session: Session, subject_id: int) -> Subject:
    subject = session.get(Subject, subject_id)
    if subject is None:
        raise NotFoundError(f"Subject {subject_id} not found", field="subject_id")
    return subject


def _comments(records: Iterable[agg.EnrichedSubmission]) -> List[dict]:
    out = []
    for r in records:
        for a in r.answers:
            if a.get("type") != ANSWER_COMMENT:
                continue
            text = (a.get("comment") or "").strip()
            if text:
                out.append({"question": a.get("question"), "comment": text})
    return out


# ---------------------------------------------------------------------------
# Caller-facing reports
# ---------------------------------------------------------------------------

def get_subject_summary(session: Session, subject_id: int, flt: Optional[ReportFilter] = None) -> dict:
    subject = _get_subject(session, subject_id)
    flt = (flt or ReportFilter()).replace(subject_id=subject.id)
    records = agg.load_records(session, flt)

    questions = agg.question_analysis(records)
    return {
        "subject": _subject_header(subject),
        "filters": flt.to_dict(),
        **_overall_block(records),
        "questionBreakdown": [
            {
                "question": q["question"],
                "category": q["category"],
                "averageRating": _r2(q["overallAverage"]),
                "responseCount": q["totalResponses"],
                "distribution": q["distribution"],
            }
            for q in questions
        ],
        "categoryBreakdown": [_present_category(c) for c in agg.category_analysis(records)],
        "byFeedbackType": {
            ft: _r1(stats.mean([r.rating_mean for r in records if r.feedback_type == ft]))
            for ft in sorted({r.feedback_type for r in records})
        },
    }


def get_cumulative_overview(session: Session, flt: Optional[ReportFilter] = None) -> dict:
    flt = flt or ReportFilter()
    records = agg.load_records(session, flt)
    subjects = [_present_group(g) for g in agg.aggregate(records, agg.DIM_SUBJECT)]
    limit = _setting("TOP_PERFORMERS_LIMIT")
    return {
        "filters": flt.to_dict(),
        **_overall_block(records),
        "totalSubjects": len(subjects),
        "subjects": subjects,
        "topPerforming": agg.top_performing(subjects, limit, count_key="totalFeedbacks"),
        "needsAttention": agg.bottom_performing(subjects, limit, count_key="totalFeedbacks"),
    }


def get_question_analysis(session: Session, flt: Optional[ReportFilter] = None) -> dict:
    flt = flt or ReportFilter()
    records = agg.load_records(session, flt)
    questions = [_present_question(q) for q in agg.question_analysis(records)]
    ranked = [q for q in questions if q["totalResponses"] >= agg.MIN_SAMPLE_SIZE]
    # Under ten ranked questions each list takes at most one half
    edge = min(5, len(ranked) // 2)
    return {
        "filters": flt.to_dict(),
        "totalFeedbacks": len(records),
        "totalQuestions": len(questions),
        "questions": questions,
        "strongest": ranked[:edge],
        "weakest": list(reversed(ranked[len(ranked) - edge:])),
        "categories": [_present_category(c) for c in agg.category_analysis(records)],
    }


def get_section_stats(session: Session, flt: Optional[ReportFilter] = None) -> dict:
    flt = flt or ReportFilter()
    records = agg.load_records(session, flt)
    sections = []
    for group in agg.aggregate(records, agg.DIM_SECTION):
        row = _present_group(group)
        members = [r for r in records if (r.student_section or agg.UNASSIGNED) == group["section"]]
        row["students"] = len({r.student_id for r in members})
        row["subjects"] = [_present_group(g) for g in agg.aggregate(members, agg.DIM_SUBJECT)]
        sections.append(row)
    return {
        "filters": flt.to_dict(),
        **_overall_block(records),
        "sections": sections,
    }


def _scoped_subjects(session: Session, flt: ReportFilter) -> List[Subject]:
    return [s for s in session.query(Subject).all() if matches_subject(flt, s)]


def _scoped_student_count(session: Session, flt: ReportFilter) -> int:
    q = session.query(func.count(User.id)).filter(User.role == ROLE_STUDENT)
    if flt.branch is not None:
        q = q.filter(User.branch == flt.branch)
    if flt.year is not None:
        q = q.filter(User.year == flt.year)
    if flt.section is not None:
        q = q.filter(User.section == flt.section)
    return q.scalar() or 0


def get_dashboard_stats(session: Session, flt: Optional[ReportFilter] = None) -> dict:
    """
    Headline numbers. Completion assumes every in-scope student owes feedback
    for every in-scope subject, capped at 100%.
    """
    flt = flt or ReportFilter()
    records = agg.load_records(session, flt)
    total_students = _scoped_student_count(session, flt)
    total_subjects = len(_scoped_subjects(session, flt))
    total_faculty = session.query(func.count(User.id)).filter(User.role == ROLE_FACULTY).scalar() or 0

    expected = total_students * total_subjects
    completion = min((len(records) / expected) * 100.0, 100.0) if expected else 0.0

    subjects = [_present_group(g) for g in agg.aggregate(records, agg.DIM_SUBJECT)]
    recent = sorted(records, key=lambda r: (r.created_at, r.id), reverse=True)
    recent = recent[: _setting("RECENT_FEEDBACK_LIMIT")]

    return {
        "filters": flt.to_dict(),
        "totalStudents": total_students,
        "totalFaculty": total_faculty,
        "totalSubjects": total_subjects,
        "totalFeedbacks": len(records),
        "averageRating": _r1(agg.overall(records)["averageRating"]),
        "feedbackCompletion": _r2(completion),
        "ratingDistribution": agg.rating_distribution(records),
        "topSubjects": agg.top_performing(subjects, _setting("TOP_PERFORMERS_LIMIT"), count_key="totalFeedbacks"),
        "recentFeedback": [
            {
                "id": r.id,
                "subjectName": r.subject_name,
                "subjectCode": r.subject_code,
                "feedbackType": r.feedback_type,
                "term": r.term,
                "averageRating": _r1(r.rating_mean),
                "createdAt": r.created_at.isoformat() if r.created_at else None,
            }
            for r in recent
        ],
    }


def get_instructor_performance(session: Session, flt: Optional[ReportFilter] = None) -> dict:
    flt = flt or ReportFilter()
    records = agg.load_records(session, flt)
    instructors = [_present_group(g) for g in agg.aggregate(records, agg.DIM_INSTRUCTOR)]
    return {
        "filters": flt.to_dict(),
        "instructors": instructors,
        "topPerforming": agg.top_performing(instructors, _setting("TOP_PERFORMERS_LIMIT"), count_key="totalFeedbacks"),
    }


def get_branch_report(session: Session, flt: Optional[ReportFilter] = None) -> dict:
    """Respondent-branch breakdown; each branch also lists its subjects."""
    flt = flt or ReportFilter()
    records = agg.load_records(session, flt)
    branches = []
    for group in agg.aggregate(records, agg.DIM_BRANCH):
        row = _present_group(group)
        members = [r for r in records if (r.student_branch or agg.UNKNOWN_BRANCH) == group["branch"]]
        row["students"] = len({r.student_id for r in members})
        row["subjects"] = [_present_group(g) for g in agg.aggregate(members, agg.DIM_SUBJECT)]
        branches.append(row)
    return {
        "filters": flt.to_dict(),
        **_overall_block(records),
        "branches": branches,
    }


def _month_start(dt: datetime) -> datetime:
    return dt.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _months_back(dt: datetime, months: int) -> datetime:
    index = dt.year * 12 + (dt.month - 1) - months
    return dt.replace(year=index // 12, month=index % 12 + 1)


def get_trend_report(session: Session, flt: Optional[ReportFilter] = None, *, now: Optional[datetime] = None,
                     months: Optional[int] = None) -> dict:
    """
    Month-by-month series. Without an explicit start date the window is the
    last `months` calendar months including the current one; months with no
    submissions appear with zero counts.
    """
    flt = flt or ReportFilter()
    now = as_utc(now) if now else utcnow()
    months = months or _setting("TREND_MONTHS")
    if flt.start_date is None:
        flt = flt.replace(start_date=_months_back(_month_start(now), months - 1))

    records = agg.load_records(session, flt)
    by_month = {g["month"]: g for g in agg.aggregate(records, agg.DIM_MONTH)}

    series = []
    cursor = _month_start(flt.start_date)
    last = _month_start(flt.end_date or now)
    while cursor <= last:
        label = cursor.strftime("%Y-%m")
        group = by_month.pop(label, None) or dict(agg.empty_group_stats(), month=label)
        series.append(_present_group(group))
        cursor = _months_back(cursor, -1)

    return {
        "filters": flt.to_dict(),
        "months": series,
        **_overall_block(records),
    }


def get_period_report(session: Session, period_id: int) -> dict:
    period = session.get(FeedbackPeriod, period_id)
    if period is None:
        raise NotFoundError(f"Feedback period {period_id} not found", field="period_id")
    flt = ReportFilter(feedback_type=period.feedback_type, term=period.term, academic_year=period.academic_year)
    records = agg.load_records(session, flt)
    if period.subjects:
        allowed = set(period.subjects)
        records = [r for r in records if r.subject_id in allowed]

    return {
        "period": period.to_dict(),
        **_overall_block(records),
        "subjects": [_present_group(g) for g in agg.aggregate(records, agg.DIM_SUBJECT)],
        "branches": [_present_group(g) for g in agg.aggregate(records, agg.DIM_BRANCH)],
        "questions": [_present_question(q) for q in agg.question_analysis(records)],
    }


def get_anonymous_faculty_report(session: Session, subject_id: int, flt: Optional[ReportFilter] = None) -> dict:
    """
    Aggregate statistics and unattributed comments for one subject. No
    student identity and no per-submission rows ever appear in the output.
    """
    subject = _get_subject(session, subject_id)
    flt = (flt or ReportFilter()).replace(subject_id=subject.id)
    records = agg.load_records(session, flt)

    comments = sorted(_comments(records), key=lambda c: (c["question"] or "", c["comment"]))
    return {
        "subject": {
            "name": subject.name,
            "code": subject.code,
            "instructor": subject.instructor,
            "department": subject.department,
        },
        "feedbackType": flt.feedback_type,
        "term": flt.term,
        "academicYear": flt.academic_year,
        **_overall_block(records),
        "questions": [
            {
                "question": q["question"],
                "category": q["category"],
                "averageRating": _r2(q["overallAverage"]),
                "responseCount": q["totalResponses"],
                "distribution": q["distribution"],
                "distributionPercentages": _percentages(q["distribution"]),
            }
            for q in agg.question_analysis(records)
        ],
        "categories": [_present_category(c) for c in agg.category_analysis(records)],
        "comments": comments,
    }


def get_detailed_export(session: Session, flt: Optional[ReportFilter] = None, *, now: Optional[datetime] = None) -> dict:
    """Non-anonymous per-submission rows for administrators."""
    flt = flt or ReportFilter()
    now = as_utc(now) if now else utcnow()
    records = agg.load_records(session, flt)

    rows = []
    for r in records:
        submitted = r.created_at
        rows.append({
            "submissionId": r.id,
            "studentName": r.student_name,
            "studentEmail": r.student_email,
            "rollNumber": r.student_roll_number,
            "branch": r.student_branch,
            "section": r.student_section,
            "year": r.student_year,
            "subjectName": r.subject_name,
            "subjectCode": r.subject_code,
            "instructor": r.instructor,
            "feedbackType": r.feedback_type,
            "term": r.term,
            "academicYear": r.academic_year,
            "averageRating": _r2(r.rating_mean),
            "ratingCount": r.rating_count,
            "submittedAt": submitted.isoformat() if submitted else None,
            "timeSinceSubmission": format_duration(now - submitted) if submitted else None,
            "answers": [dict(a) for a in r.answers],
        })

    stamps = [r.created_at for r in records if r.created_at]
    first = min(stamps) if stamps else None
    last = max(stamps) if stamps else None
    return {
        "filters": flt.to_dict(),
        "generatedAt": now.isoformat(),
        "totalSubmissions": len(rows),
        "firstSubmission": first.isoformat() if first else None,
        "lastSubmission": last.isoformat() if last else None,
        "submissionSpan": format_duration(last - first) if first else format_duration(timedelta(0)),
        "rows": rows,
    }


EXPORT_COLUMNS = (
    "submissionId", "studentName", "studentEmail", "rollNumber", "branch", "section", "year",
    "subjectName", "subjectCode", "instructor", "feedbackType", "term", "academicYear",
    "averageRating", "ratingCount", "submittedAt", "timeSinceSubmission",
)
