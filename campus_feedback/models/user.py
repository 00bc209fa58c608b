from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from sqlalchemy import CheckConstraint, Index, func
from campus_feedback.extensions import db, login_manager
from .types import UTCDateTime, utcnow

# Keep simple text+CHECK for evolvable roles (no DB enum migration pain)
ROLE_STUDENT = "student"
ROLE_FACULTY = "faculty"
ROLE_HOD = "hod"
ROLE_DEAN = "dean"
ROLE_ADMIN = "admin"
ROLE_CHOICES = (ROLE_STUDENT, ROLE_FACULTY, ROLE_HOD, ROLE_DEAN, ROLE_ADMIN)

SECTIONS = ("A", "B", "C", "D", "E", "F")
YEARS = (1, 2, 3, 4)

BRANCHES = (
    "CSE",
    "AIML",
    "DS",
    "Computer Science",
    "Electronics",
    "Mechanical",
    "Civil",
    "Electrical",
    "Information Technology",
    "Chemical",
    "Aerospace",
    "Biotechnology",
    "MCA Regular",
    "MCA DS",
    "MBA Finance",
    "MBA Marketing",
    "MBA HR",
)

ROLL_NUMBER_PREFIX = "232P4R"


class User(db.Model, UserMixin):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=False, unique=True)
    roll_number = db.Column(db.String(32), nullable=True, unique=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, server_default=ROLE_STUDENT, default=ROLE_STUDENT)

    department = db.Column(db.String(64), nullable=True)
    branch = db.Column(db.String(64), nullable=True, index=True)
    year = db.Column(db.Integer, nullable=True)
    section = db.Column(db.String(2), nullable=True, default="A")

    password_reset_required = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())
    updated_at = db.Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(
            "role IN ('student','faculty','hod','dean','admin')",
            name="ck_users_role_valid",
        ),
        Index("ix_users_role_branch", "role", "branch"),
    )

    # helpers
    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def get_id(self) -> str:
        return str(self.id)

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role!r}>"

    def to_dict(self) -> dict:
        return dict(
            id=self.id,
            name=self.name,
            email=self.email,
            roll_number=self.roll_number,
            role=self.role,
            department=self.department,
            branch=self.branch,
            year=self.year,
            section=self.section,
        )

@login_manager.user_loader
def load_user(user_id: str):
    try:
        return db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        return None
