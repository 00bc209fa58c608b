from sqlalchemy import CheckConstraint, Index, func, text
from campus_feedback.extensions import db
from .types import JSONType, UTCDateTime, utcnow

STATUS_DRAFT = "draft"
STATUS_ACTIVE = "active"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
STATUS_CHOICES = (STATUS_DRAFT, STATUS_ACTIVE, STATUS_COMPLETED, STATUS_CANCELLED)
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_CANCELLED)

DEFAULT_INSTRUCTIONS = "Please provide your honest feedback to help us improve."


def _empty_statistics():
    return {"totalStudents": 0, "completedFeedbacks": 0, "pendingFeedbacks": 0}


class FeedbackPeriod(db.Model):
    __tablename__ = "feedback_periods"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False)
    instructions = db.Column(db.Text, nullable=False, default=DEFAULT_INSTRUCTIONS)

    feedback_type = db.Column(db.String(16), nullable=False)
    academic_year = db.Column(db.String(16), nullable=False)
    term = db.Column(db.Integer, nullable=False)

    start_date = db.Column(UTCDateTime, nullable=False)
    end_date = db.Column(UTCDateTime, nullable=False)

    # Empty list means "all"
    branches = db.Column(JSONType, nullable=False, default=list)
    years = db.Column(JSONType, nullable=False, default=list)
    subjects = db.Column(JSONType, nullable=False, default=list)

    status = db.Column(db.String(16), nullable=False, default=STATUS_DRAFT, server_default=text("'draft'"))
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    statistics = db.Column(JSONType, nullable=False, default=_empty_statistics)

    created_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    __table_args__ = (
        # At most one LIVE period per (type, term, academic year); paused or
        # finished rows are free to share the key.
        Index(
            "ux_feedback_periods_live_key",
            "feedback_type", "term", "academic_year",
            unique=True,
            postgresql_where=text("is_active = TRUE AND status = 'active'"),
            sqlite_where=text("is_active = 1 AND status = 'active'"),
        ),
        Index("ix_feedback_periods_dates", "start_date", "end_date"),
        Index("ix_feedback_periods_status_active", "status", "is_active"),
        CheckConstraint("start_date < end_date", name="ck_feedback_periods_dates_ordered"),
        CheckConstraint(
            "status IN ('draft','active','completed','cancelled')",
            name="ck_feedback_periods_status_valid",
        ),
    )

    @property
    def is_live(self) -> bool:
        return self.status == STATUS_ACTIVE and bool(self.is_active)

    @property
    def key(self) -> tuple:
        return (self.feedback_type, self.term, self.academic_year)

    def __repr__(self) -> str:
        return (
            f"<FeedbackPeriod id={self.id} type={self.feedback_type!r} term={self.term} "
            f"year={self.academic_year!r} status={self.status!r} is_active={self.is_active}>"
        )

    def to_dict(self) -> dict:
        return dict(
            id=self.id,
            title=self.title,
            description=self.description,
            instructions=self.instructions,
            feedback_type=self.feedback_type,
            academic_year=self.academic_year,
            term=self.term,
            start_date=self.start_date.isoformat() if self.start_date else None,
            end_date=self.end_date.isoformat() if self.end_date else None,
            branches=list(self.branches or []),
            years=list(self.years or []),
            subjects=list(self.subjects or []),
            status=self.status,
            is_active=bool(self.is_active),
            created_by_id=self.created_by_id,
            statistics=dict(self.statistics or _empty_statistics()),
            created_at=self.created_at.isoformat() if self.created_at else None,
            updated_at=self.updated_at.isoformat() if self.updated_at else None,
        )
