from sqlalchemy import func
from campus_feedback.extensions import db
from .types import UTCDateTime, utcnow


class SystemSettings(db.Model):
    """
    Append-only settings history; the newest row is in force.
    """
    __tablename__ = "system_settings"

    id = db.Column(db.Integer, primary_key=True)
    feedback_enabled = db.Column(db.Boolean, nullable=False, default=True)
    maintenance_mode = db.Column(db.Boolean, nullable=False, default=False)
    allow_anonymous_feedback = db.Column(db.Boolean, nullable=False, default=False)
    updated_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now(), index=True)

    @classmethod
    def current(cls, session):
        """Settings in force, or None when nothing was ever saved."""
        return session.query(cls).order_by(cls.updated_at.desc(), cls.id.desc()).first()

    def to_dict(self):
        return dict(
            id=self.id,
            feedback_enabled=self.feedback_enabled,
            maintenance_mode=self.maintenance_mode,
            allow_anonymous_feedback=self.allow_anonymous_feedback,
            updated_by_id=self.updated_by_id,
            updated_at=self.updated_at.isoformat() if self.updated_at else None,
        )
