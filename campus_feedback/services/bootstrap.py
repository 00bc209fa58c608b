"""
One-time initialization and roster import.

`ensure_admin` is idempotent: it only acts when no admin exists. Imports read
CSV/XLSX through pandas, normalize the columns and upsert by natural key
(email for students, code for subjects).
"""
from __future__ import annotations

import logging
import re
import secrets
from pathlib import Path
from typing import Optional, Tuple

import pandas as pd
from sqlalchemy import func
from sqlalchemy.orm import Session

from campus_feedback.errors import ValidationError
from campus_feedback.models import Subject, User
from campus_feedback.models.user import BRANCHES, ROLE_ADMIN, ROLE_STUDENT, ROLL_NUMBER_PREFIX, SECTIONS, YEARS
from campus_feedback.observability import log_event
from campus_feedback.utils.validators import clean_str, is_valid_email
from .question_templates import MIDTERM_QUESTIONS

logger = logging.getLogger("campus_feedback.importer")

_ROLL_RE = re.compile(rf"^{ROLL_NUMBER_PREFIX}(\d{{4}})$")

STUDENT_COLUMNS = {
    "Name": "name",
    "Email": "email",
    "Roll Number": "roll_number",
    "Branch": "branch",
    "Year": "year",
    "Section": "section",
    "Password": "password",
}

SUBJECT_COLUMNS = {
    "Name": "name",
    "Subject": "name",
    "Code": "code",
    "Instructor": "instructor",
    "Department": "department",
    "Branches": "branches",
    "Branch": "branches",
    "Sections": "sections",
    "Year": "year",
    "Term": "term",
}


def ensure_admin(session: Session, email: str, password: str, name: str = "Administrator") -> Tuple[User, bool]:
    """Create the first admin unless one already exists. Returns (admin, created)."""
    existing = session.query(User).filter(User.role == ROLE_ADMIN).order_by(User.id.asc()).first()
    if existing:
        return existing, False

    email = (email or "").strip().lower()
    if not is_valid_email(email):
        raise ValidationError("A valid admin email is required", field="email")
    if not password or len(password) < 8:
        raise ValidationError("Admin password must be at least 8 characters", field="password")
    if session.query(User).filter(func.lower(User.email) == email).count():
        raise ValidationError("A non-admin user already uses that email", field="email")

    admin = User(name=name, email=email, role=ROLE_ADMIN, is_active=True, password_reset_required=False)
    admin.set_password(password)
    session.add(admin)
    session.flush()
    log_event("admin_bootstrapped", user_id=admin.id)
    return admin, True


def next_roll_number(session: Session) -> str:
    """Next roll number in the institution format, after the highest one in use."""
    highest = 0
    rows = session.query(User.roll_number).filter(User.roll_number.like(f"{ROLL_NUMBER_PREFIX}%")).all()
    for (roll,) in rows:
        m = _ROLL_RE.match(roll or "")
        if m:
            highest = max(highest, int(m.group(1)))
    return f"{ROLL_NUMBER_PREFIX}{highest + 1:04d}"


def read_table(path) -> pd.DataFrame:
    """Load a CSV or Excel sheet; every cell comes back as text."""
    path = Path(path)
    if not path.exists():
        raise ValidationError(f"File not found: {path}", field="path")
    if path.suffix.lower() in (".xlsx", ".xls"):
        df = pd.read_excel(path, dtype=str)
    elif path.suffix.lower() == ".csv":
        df = pd.read_csv(path, dtype=str)
    else:
        raise ValidationError("Only .csv, .xlsx and .xls files are supported", field="path")
    return df.where(pd.notna(df), None)


def _normalize(df: pd.DataFrame, mapping: dict) -> pd.DataFrame:
    renamed = {}
    for col in df.columns:
        key = str(col).strip()
        renamed[col] = mapping.get(key) or mapping.get(key.title()) or key.lower().replace(" ", "_")
    df = df.rename(columns=renamed)
    return df.loc[:, ~df.columns.duplicated()]


def _cell(row, name):
    value = row.get(name)
    s = clean_str(value)
    if s is None or s.lower() in ("nan", "none"):
        return None
    return s


def _int_cell(row, name, allowed) -> Optional[int]:
    s = _cell(row, name)
    if s is None:
        return None
    try:
        number = int(float(s))
    except ValueError:
        return None
    return number if number in allowed else None


def _list_cell(row, name) -> list:
    s = _cell(row, name)
    if not s:
        return []
    return [part.strip() for part in re.split(r"[;,|]", s) if part.strip()]


def import_students(session: Session, path, *, default_password: Optional[str] = None) -> dict:
    """
    Upsert students by email. Rows with an invalid email or unknown branch are
    skipped and reported; missing roll numbers are generated.
    """
    df = _normalize(read_table(path), STUDENT_COLUMNS)
    if "email" not in df.columns:
        raise ValidationError("Student sheet needs an Email column", field="email")

    stats = {"inserted": 0, "updated": 0, "skipped": 0, "errors": []}
    for idx, row in enumerate(df.to_dict(orient="records"), start=2):
        email = (_cell(row, "email") or "").lower()
        if not is_valid_email(email):
            stats["skipped"] += 1
            stats["errors"].append(f"row {idx}: invalid email")
            continue
        branch = _cell(row, "branch")
        if branch and branch not in BRANCHES:
            stats["skipped"] += 1
            stats["errors"].append(f"row {idx}: unknown branch {branch!r}")
            continue

        section = (_cell(row, "section") or "A").upper()
        if section not in SECTIONS:
            section = "A"

        user = session.query(User).filter(func.lower(User.email) == email).one_or_none()
        if user is None:
            user = User(email=email, role=ROLE_STUDENT, is_active=True, password_reset_required=True)
            user.set_password(_cell(row, "password") or default_password or secrets.token_urlsafe(12))
            session.add(user)
            stats["inserted"] += 1
        elif user.role != ROLE_STUDENT:
            stats["skipped"] += 1
            stats["errors"].append(f"row {idx}: {email} is not a student account")
            continue
        else:
            stats["updated"] += 1

        user.name = _cell(row, "name") or user.name
        user.branch = branch or user.branch
        user.year = _int_cell(row, "year", YEARS) or user.year
        user.section = section
        roll = _cell(row, "roll_number")
        if roll:
            user.roll_number = roll.upper()
        elif not user.roll_number:
            session.flush()
            user.roll_number = next_roll_number(session)
        session.flush()

    logger.info("import_students path=%s inserted=%d updated=%d skipped=%d",
                path, stats["inserted"], stats["updated"], stats["skipped"])
    return stats


def import_subjects(session: Session, path) -> dict:
    """Upsert subjects by code; new subjects get the default question set."""
    df = _normalize(read_table(path), SUBJECT_COLUMNS)
    missing = [c for c in ("name", "code") if c not in df.columns]
    if missing:
        raise ValidationError(f"Subject sheet is missing columns: {missing}", field=missing[0])

    default_questions = [q.text for q in MIDTERM_QUESTIONS]
    stats = {"inserted": 0, "updated": 0, "skipped": 0, "errors": []}
    for idx, row in enumerate(df.to_dict(orient="records"), start=2):
        name, code = _cell(row, "name"), _cell(row, "code")
        if not name or not code:
            stats["skipped"] += 1
            stats["errors"].append(f"row {idx}: name and code are required")
            continue
        branches = _list_cell(row, "branches")
        unknown = [b for b in branches if b not in BRANCHES]
        if unknown:
            stats["skipped"] += 1
            stats["errors"].append(f"row {idx}: unknown branches {unknown}")
            continue

        subject = session.query(Subject).filter(Subject.code == code.upper()).one_or_none()
        if subject is None:
            subject = Subject(code=code.upper(), questions=default_questions)
            session.add(subject)
            stats["inserted"] += 1
        else:
            stats["updated"] += 1

        subject.name = name
        subject.instructor = _cell(row, "instructor") or subject.instructor
        subject.department = _cell(row, "department") or subject.department
        subject.branches = branches or list(subject.branches or [])
        subject.sections = [s.upper() for s in _list_cell(row, "sections")] or list(subject.sections or [])
        subject.year = _int_cell(row, "year", YEARS) or subject.year
        subject.term = _int_cell(row, "term", (1, 2, 3, 4)) or subject.term
        session.flush()

    logger.info("import_subjects path=%s inserted=%d updated=%d skipped=%d",
                path, stats["inserted"], stats["updated"], stats["skipped"])
    return stats
