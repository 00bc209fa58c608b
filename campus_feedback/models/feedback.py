from sqlalchemy import CheckConstraint, Index, UniqueConstraint, func
from campus_feedback.extensions import db
from .types import JSONType, UTCDateTime, utcnow

FEEDBACK_MIDTERM = "midterm"
FEEDBACK_ENDTERM = "endterm"
FEEDBACK_TYPES = (FEEDBACK_MIDTERM, FEEDBACK_ENDTERM)

ANSWER_RATING = "rating"
ANSWER_COMMENT = "comment"

TERMS = (1, 2, 3, 4)


class FeedbackSubmission(db.Model):
    """
    One student's answer set for one subject/feedback type/term.
    Never updated after insert; average_rating is a cache of the answers.
    """
    __tablename__ = "feedback_submissions"

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    subject_id = db.Column(db.Integer, db.ForeignKey("subjects.id", ondelete="RESTRICT"), nullable=False, index=True)

    feedback_type = db.Column(db.String(16), nullable=False)
    term = db.Column(db.Integer, nullable=False)
    academic_year = db.Column(db.String(16), nullable=False)

    answers = db.Column(JSONType, nullable=False, default=list)
    average_rating = db.Column(db.Float, nullable=False, default=0.0)

    created_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "student_id", "subject_id", "feedback_type", "term",
            name="uq_feedback_submissions_student_subject_type_term",
        ),
        CheckConstraint("feedback_type IN ('midterm','endterm')", name="ck_feedback_submissions_type_valid"),
        CheckConstraint("term BETWEEN 1 AND 4", name="ck_feedback_submissions_term_valid"),
        Index("ix_feedback_submissions_period_key", "feedback_type", "term", "academic_year"),
        Index("ix_feedback_submissions_created_at", "created_at"),
    )

    def rating_values(self) -> list:
        return [
            a.get("answer") for a in (self.answers or [])
            if a.get("type", ANSWER_RATING) == ANSWER_RATING and a.get("answer") is not None
        ]

    def __repr__(self) -> str:
        return (
            f"<FeedbackSubmission id={self.id} student_id={self.student_id} subject_id={self.subject_id} "
            f"type={self.feedback_type!r} term={self.term}>"
        )

    def to_dict(self) -> dict:
        return dict(
            id=self.id,
            student_id=self.student_id,
            subject_id=self.subject_id,
            feedback_type=self.feedback_type,
            term=self.term,
            academic_year=self.academic_year,
            answers=list(self.answers or []),
            average_rating=self.average_rating,
            created_at=self.created_at.isoformat() if self.created_at else None,
        )
