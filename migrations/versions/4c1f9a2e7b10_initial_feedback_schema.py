"""initial feedback schema: users, subjects, submissions, periods, settings

Revision ID: 4c1f9a2e7b10
Revises:
Create Date: 2025-11-03 09:12:41.204518

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '4c1f9a2e7b10'
down_revision = None
branch_labels = None
depends_on = None

JSON = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")
TS = sa.DateTime(timezone=True)


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("roll_number", sa.String(length=32), nullable=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="student"),
        sa.Column("department", sa.String(length=64), nullable=True),
        sa.Column("branch", sa.String(length=64), nullable=True),
        sa.Column("year", sa.Integer(), nullable=True),
        sa.Column("section", sa.String(length=2), nullable=True),
        sa.Column("password_reset_required", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", TS, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", TS, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.CheckConstraint("role IN ('student','faculty','hod','dean','admin')", name="ck_users_role_valid"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
        sa.UniqueConstraint("roll_number"),
    )
    op.create_index("ix_users_branch", "users", ["branch"])
    op.create_index("ix_users_role_branch", "users", ["role", "branch"])

    op.create_table(
        "subjects",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=True),
        sa.Column("instructor", sa.String(length=255), nullable=True),
        sa.Column("department", sa.String(length=64), nullable=True),
        sa.Column("branches", JSON, nullable=False),
        sa.Column("sections", JSON, nullable=False),
        sa.Column("year", sa.Integer(), nullable=True),
        sa.Column("term", sa.Integer(), nullable=True),
        sa.Column("questions", JSON, nullable=False),
        sa.Column("created_at", TS, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_subjects_code", "subjects", ["code"])
    op.create_index("ix_subjects_instructor", "subjects", ["instructor"])
    op.create_index("ix_subjects_name", "subjects", [sa.text("lower(name)")])

    op.create_table(
        "feedback_submissions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("subject_id", sa.Integer(), nullable=False),
        sa.Column("feedback_type", sa.String(length=16), nullable=False),
        sa.Column("term", sa.Integer(), nullable=False),
        sa.Column("academic_year", sa.String(length=16), nullable=False),
        sa.Column("answers", JSON, nullable=False),
        sa.Column("average_rating", sa.Float(), nullable=False),
        sa.Column("created_at", TS, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.CheckConstraint("feedback_type IN ('midterm','endterm')", name="ck_feedback_submissions_type_valid"),
        sa.CheckConstraint("term BETWEEN 1 AND 4", name="ck_feedback_submissions_term_valid"),
        sa.ForeignKeyConstraint(["student_id"], ["users.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["subject_id"], ["subjects.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        # One submission per student/subject/type/term; concurrent duplicates fail here
        sa.UniqueConstraint(
            "student_id", "subject_id", "feedback_type", "term",
            name="uq_feedback_submissions_student_subject_type_term",
        ),
    )
    op.create_index("ix_feedback_submissions_student_id", "feedback_submissions", ["student_id"])
    op.create_index("ix_feedback_submissions_subject_id", "feedback_submissions", ["subject_id"])
    op.create_index("ix_feedback_submissions_period_key", "feedback_submissions", ["feedback_type", "term", "academic_year"])
    op.create_index("ix_feedback_submissions_created_at", "feedback_submissions", ["created_at"])

    op.create_table(
        "feedback_periods",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("instructions", sa.Text(), nullable=False),
        sa.Column("feedback_type", sa.String(length=16), nullable=False),
        sa.Column("academic_year", sa.String(length=16), nullable=False),
        sa.Column("term", sa.Integer(), nullable=False),
        sa.Column("start_date", TS, nullable=False),
        sa.Column("end_date", TS, nullable=False),
        sa.Column("branches", JSON, nullable=False),
        sa.Column("years", JSON, nullable=False),
        sa.Column("subjects", JSON, nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'draft'")),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_by_id", sa.Integer(), nullable=True),
        sa.Column("statistics", JSON, nullable=False),
        sa.Column("created_at", TS, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", TS, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.CheckConstraint("start_date < end_date", name="ck_feedback_periods_dates_ordered"),
        sa.CheckConstraint(
            "status IN ('draft','active','completed','cancelled')",
            name="ck_feedback_periods_status_valid",
        ),
        sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_feedback_periods_dates", "feedback_periods", ["start_date", "end_date"])
    op.create_index("ix_feedback_periods_status_active", "feedback_periods", ["status", "is_active"])
    # At most one live period per (type, term, academic year)
    op.create_index(
        "ux_feedback_periods_live_key",
        "feedback_periods",
        ["feedback_type", "term", "academic_year"],
        unique=True,
        postgresql_where=sa.text("is_active = TRUE AND status = 'active'"),
        sqlite_where=sa.text("is_active = 1 AND status = 'active'"),
    )

    op.create_table(
        "system_settings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("feedback_enabled", sa.Boolean(), nullable=False),
        sa.Column("maintenance_mode", sa.Boolean(), nullable=False),
        sa.Column("allow_anonymous_feedback", sa.Boolean(), nullable=False),
        sa.Column("updated_by_id", sa.Integer(), nullable=True),
        sa.Column("updated_at", TS, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["updated_by_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_system_settings_updated_at", "system_settings", ["updated_at"])


def downgrade():
    op.drop_index("ix_system_settings_updated_at", table_name="system_settings")
    op.drop_table("system_settings")

    op.drop_index("ux_feedback_periods_live_key", table_name="feedback_periods")
    op.drop_index("ix_feedback_periods_status_active", table_name="feedback_periods")
    op.drop_index("ix_feedback_periods_dates", table_name="feedback_periods")
    op.drop_table("feedback_periods")

    op.drop_index("ix_feedback_submissions_created_at", table_name="feedback_submissions")
    op.drop_index("ix_feedback_submissions_period_key", table_name="feedback_submissions")
    op.drop_index("ix_feedback_submissions_subject_id", table_name="feedback_submissions")
    op.drop_index("ix_feedback_submissions_student_id", table_name="feedback_submissions")
    op.drop_table("feedback_submissions")

    op.drop_index("ix_subjects_name", table_name="subjects")
    op.drop_index("ix_subjects_instructor", table_name="subjects")
    op.drop_index("ix_subjects_code", table_name="subjects")
    op.drop_table("subjects")

    op.drop_index("ix_users_role_branch", table_name="users")
    op.drop_index("ix_users_branch", table_name="users")
    op.drop_table("users")
