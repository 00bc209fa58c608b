from datetime import timedelta

import pytest

from campus_feedback.errors import ConflictError, NotFoundError, PolicyError, ValidationError
from campus_feedback.extensions import db
from campus_feedback.models import FeedbackSubmission, SystemSettings
from campus_feedback.services import submissions as svc

from conftest import NOW, make_period, make_subject, make_user, rating_answers


def _answers(ratings=(5, 4, 3, 5, 5, 4, 3, 5), comments=("Great pace",)):
    return rating_answers(list(ratings), comments)


def test_derived_average_half_up():
    answers = [{"type": "rating", "answer": a} for a in (5, 4, 3, 5)] + [{"type": "comment", "comment": "ok"}]
    assert svc.derived_average(answers) == 4.3


def test_submit_tags_period_context_and_average(ctx):
    student, subject = make_user(), make_subject()
    make_period(term=2, academic_year="2024-25")
    sub = svc.submit_feedback(db.session, student, subject.id, "midterm", _answers(), now=NOW)
    assert sub.term == 2 and sub.academic_year == "2024-25"
    # (5+4+3+5+5+4+3+5)/8 = 4.25 -> 4.3
    assert sub.average_rating == 4.3
    assert sub.answers[-1] == {"question": sub.answers[-1]["question"], "type": "comment",
                               "category": "Comments", "comment": "Great pace"}


def test_category_filled_from_template(ctx):
    student, subject = make_user(), make_subject()
    make_period()
    answers = [{k: v for k, v in a.items() if k != "category"} for a in _answers(comments=())]
    sub = svc.submit_feedback(db.session, student, subject.id, "midterm", answers, now=NOW)
    assert sub.answers[0]["category"] == "Teaching Quality"


def test_duplicate_submission_conflicts_and_leaves_store_unchanged(ctx):
    student, subject = make_user(), make_subject()
    make_period()
    svc.submit_feedback(db.session, student, subject.id, "midterm", _answers(), now=NOW)
    db.session.commit()

    with pytest.raises(ConflictError):
        svc.submit_feedback(db.session, student, subject.id, "midterm", _answers(ratings=[1] * 8), now=NOW)
    rows = db.session.query(FeedbackSubmission).all()
    assert len(rows) == 1 and rows[0].average_rating == 4.3


def test_other_type_same_term_is_a_separate_submission(ctx):
    student, subject = make_user(), make_subject()
    make_period(feedback_type="midterm")
    make_period(feedback_type="endterm")
    svc.submit_feedback(db.session, student, subject.id, "midterm", _answers(), now=NOW)
    svc.submit_feedback(db.session, student, subject.id, "endterm", _answers(), now=NOW)
    assert db.session.query(FeedbackSubmission).count() == 2


def test_requires_collectible_period(ctx):
    student, subject = make_user(branch="CSE"), make_subject()
    make_period(branches=["Civil"])
    with pytest.raises(PolicyError) as exc:
        svc.submit_feedback(db.session, student, subject.id, "midterm", _answers(), now=NOW)
    assert exc.value.rule == "no_collectible_period"

    with pytest.raises(PolicyError):
        svc.submit_feedback(db.session, student, subject.id, "midterm", _answers(), now=NOW + timedelta(days=30))


@pytest.mark.parametrize("answers,rule", [
    (rating_answers([5] * 7), "min_answers"),
    (rating_answers([5] * 7, ["a", "b"]), "min_rating_answers"),
])
def test_answer_count_rules(ctx, answers, rule):
    student, subject = make_user(), make_subject()
    make_period()
    with pytest.raises(ValidationError) as exc:
        svc.submit_feedback(db.session, student, subject.id, "midterm", answers, now=NOW)
    assert exc.value.rule == rule


@pytest.mark.parametrize("bad", [0, 6, 3.5, "x", None, True])
def test_rating_values_must_be_integers_1_to_5(ctx, bad):
    answers = _answers()
    answers[0]["answer"] = bad
    with pytest.raises(ValidationError):
        svc.validate_answers(answers, "midterm")


def test_unknown_subject_and_non_student(ctx):
    make_period()
    with pytest.raises(NotFoundError):
        svc.submit_feedback(db.session, make_user(), 4242, "midterm", _answers(), now=NOW)
    faculty = make_user(role="faculty")
    with pytest.raises(PolicyError):
        svc.submit_feedback(db.session, faculty, make_subject().id, "midterm", _answers(), now=NOW)


def test_settings_can_close_collection(ctx):
    student, subject = make_user(), make_subject()
    make_period()
    db.session.add(SystemSettings(feedback_enabled=False, maintenance_mode=False))
    db.session.flush()
    with pytest.raises(PolicyError) as exc:
        svc.submit_feedback(db.session, student, subject.id, "midterm", _answers(), now=NOW)
    assert exc.value.rule == "feedback_disabled"


def test_list_student_feedback(ctx):
    student, subject = make_user(), make_subject(name="Maths")
    make_period()
    svc.submit_feedback(db.session, student, subject.id, "midterm", _answers(), now=NOW)
    [row] = svc.list_student_feedback(db.session, student.id)
    assert row["subject"]["name"] == "Maths" and row["average_rating"] == 4.3
