from sqlalchemy import Index, func
from campus_feedback.extensions import db
from .types import JSONType, UTCDateTime, utcnow


class Subject(db.Model):
    __tablename__ = "subjects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, index=True)
    instructor = db.Column(db.String(255), nullable=True, index=True)
    department = db.Column(db.String(64), nullable=True)

    # A subject may serve several branches and sections
    branches = db.Column(JSONType, nullable=False, default=list)
    sections = db.Column(JSONType, nullable=False, default=list)

    year = db.Column(db.Integer, nullable=True)
    term = db.Column(db.Integer, nullable=True)
    questions = db.Column(JSONType, nullable=False, default=list)

    created_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())

    __table_args__ = (
        Index("ix_subjects_name", func.lower(name)),
    )

    def serves_branch(self, branch) -> bool:
        return branch in (self.branches or [])

    def __repr__(self) -> str:
        return f"<Subject id={self.id} code={self.code!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return dict(
            id=self.id,
            name=self.name,
            code=self.code,
            instructor=self.instructor,
            department=self.department,
            branches=list(self.branches or []),
            sections=list(self.sections or []),
            year=self.year,
            term=self.term,
            questions=list(self.questions or []),
        )
