from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from campus_feedback.errors import ValidationError
from campus_feedback.extensions import db
from campus_feedback.services import aggregation as agg
from campus_feedback.services.filters import ReportFilter

from conftest import make_submission, make_subject, make_user

Q = "How clearly does the faculty explain concepts?"


def _sub(id, subject_id, student_id, ratings, question=Q, created_at=None):
    return SimpleNamespace(
        id=id, subject_id=subject_id, student_id=student_id, feedback_type="midterm", term=1,
        academic_year="2024-25", created_at=created_at or datetime(2025, 3, 1, tzinfo=timezone.utc),
        answers=[{"question": question, "type": "rating", "answer": r, "category": "Teaching Quality"} for r in ratings],
    )


def _subject(id, name, instructor="Dr. Rao", branches=("CSE",)):
    return SimpleNamespace(id=id, name=name, code=f"S{id}", instructor=instructor, department="CS",
                           branches=list(branches), year=2)


def _student(id, branch="CSE", section="A"):
    return SimpleNamespace(id=id, name=f"Student {id}", email=f"s{id}@x.test", roll_number=f"R{id}",
                           branch=branch, section=section, year=2)


def test_join_drops_missing_subject_and_keeps_missing_student():
    subs = [_sub(1, 10, 100, [5]), _sub(2, 99, 100, [4]), _sub(3, 10, 555, [3])]
    records = agg.join_submissions(subs, {10: _subject(10, "Maths")}, {100: _student(100)})
    assert [r.id for r in records] == [1, 3]
    assert records[0].subject_name == "Maths" and records[0].student_branch == "CSE"
    assert records[1].student_name is None and records[1].student_id == 555


def test_question_variance_is_over_subject_means():
    # per-subject means 4.0, 3.0, 5.0 -> average 4.0, sample variance 1.0, stdDev 1.0 -> Low
    subjects = {i: _subject(i, f"S{i}") for i in (1, 2, 3)}
    subs = [
        _sub(1, 1, 100, [4]), _sub(2, 1, 101, [4]),
        _sub(3, 2, 100, [2]), _sub(4, 2, 101, [4]),
        _sub(5, 3, 100, [5]),
    ]
    records = agg.join_submissions(subs, subjects, {100: _student(100), 101: _student(101)})
    [q] = agg.question_analysis(records)
    assert q["question"] == Q
    assert q["overallAverage"] == pytest.approx(4.0)
    assert q["variance"] == pytest.approx(1.0)
    assert q["stdDev"] == pytest.approx(1.0)
    assert q["consistency"] == "Low"
    assert q["performanceRange"] == {"highest": 5.0, "lowest": 3.0, "range": 2.0}
    assert q["subjectCount"] == 3 and q["totalResponses"] == 5
    assert q["count"] == 5 and q["averageRating"] == q["overallAverage"]
    assert [s["subjectId"] for s in q["subjects"]] == [3, 1, 2]


def test_subject_grouping_ranks_by_average_then_name():
    subjects = {1: _subject(1, "Beta"), 2: _subject(2, "Alpha"), 3: _subject(3, "Gamma")}
    subs = [_sub(1, 1, 100, [4]), _sub(2, 2, 100, [4]), _sub(3, 3, 100, [5])]
    groups = agg.aggregate(agg.join_submissions(subs, subjects, {100: _student(100)}), agg.DIM_SUBJECT)
    assert [g["subjectName"] for g in groups] == ["Gamma", "Alpha", "Beta"]
    assert groups[0]["count"] == 1 and groups[0]["averageRating"] == 5.0


def test_branch_grouping_uses_respondent_branch():
    subjects = {1: _subject(1, "Maths", branches=("CSE", "AIML"))}
    students = {100: _student(100, branch="AIML"), 101: _student(101, branch="CSE"), 102: _student(102, branch=None)}
    subs = [_sub(1, 1, 100, [5]), _sub(2, 1, 101, [3]), _sub(3, 1, 102, [4])]
    groups = agg.aggregate(agg.join_submissions(subs, subjects, students), agg.DIM_BRANCH)
    assert {g["branch"] for g in groups} == {"AIML", "CSE", agg.UNKNOWN_BRANCH}


def test_month_grouping_is_chronological():
    subjects = {1: _subject(1, "Maths")}
    subs = [
        _sub(1, 1, 100, [5], created_at=datetime(2025, 3, 2, tzinfo=timezone.utc)),
        _sub(2, 1, 100, [1], created_at=datetime(2025, 1, 9, tzinfo=timezone.utc)),
    ]
    groups = agg.aggregate(agg.join_submissions(subs, subjects, {}), agg.DIM_MONTH)
    assert [g["month"] for g in groups] == ["2025-01", "2025-03"]


def test_instructor_grouping_lists_subjects():
    subjects = {1: _subject(1, "Maths", instructor="Dr. A"), 2: _subject(2, "Physics", instructor="Dr. A")}
    subs = [_sub(1, 1, 100, [4]), _sub(2, 2, 100, [5])]
    [g] = agg.aggregate(agg.join_submissions(subs, subjects, {}), agg.DIM_INSTRUCTOR)
    assert g["instructor"] == "Dr. A" and g["subjects"] == ["Maths", "Physics"] and g["count"] == 2


@pytest.mark.parametrize("dimension", agg.GROUPINGS)
def test_every_grouping_reports_count_and_average(dimension):
    subjects = {1: _subject(1, "Maths")}
    records = agg.join_submissions([_sub(1, 1, 100, [4, 4])], subjects, {100: _student(100)})
    groups = agg.aggregate(records, dimension)
    assert groups
    for g in groups:
        assert g["count"] >= 1
        assert g["averageRating"] == pytest.approx(4.0)


@pytest.mark.parametrize("dimension", agg.GROUPINGS)
def test_empty_input_is_well_formed_for_every_grouping(dimension):
    assert agg.aggregate([], dimension) == []
    summary = agg.overall([])
    assert summary["count"] == 0 and summary["averageRating"] == 0


def test_unknown_grouping_is_validation_error():
    with pytest.raises(ValidationError) as exc:
        agg.aggregate([], "weekday")
    assert exc.value.field == "group_by"


def test_top_performing_respects_sample_floor():
    groups = [
        {"subjectName": "Two", "count": 2, "averageRating": 5.0},
        {"subjectName": "Three", "count": 3, "averageRating": 3.5},
    ]
    top = agg.top_performing(groups)
    assert [g["subjectName"] for g in top] == ["Three"]
    assert agg.bottom_performing(groups) == top


def test_load_records_filters_by_subject_branch_set(ctx):
    student = make_user(branch="AIML", section="B")
    shared = make_subject(name="Shared", branches=("CSE", "AIML"))
    cse_only = make_subject(name="CSE only", branches=("CSE",))
    make_submission(student, shared, [5] * 8)
    make_submission(student, cse_only, [3] * 8)

    records = agg.load_records(db.session, ReportFilter(branch="AIML"))
    assert [r.subject_name for r in records] == ["Shared"]
    assert agg.load_records(db.session, ReportFilter(section="A")) == []
    assert len(agg.load_records(db.session, ReportFilter(section="B"))) == 2


def test_load_records_recomputes_full_precision_mean(ctx):
    student = make_user()
    subject = make_subject()
    make_submission(student, subject, [5, 4, 3, 5, 5, 4, 3, 5])
    [record] = agg.load_records(db.session)
    assert record.rating_mean == 4.25
    assert record.rating_count == 8


def test_load_records_zero_matches(ctx):
    assert agg.load_records(db.session, ReportFilter(term=4, feedback_type="endterm")) == []
