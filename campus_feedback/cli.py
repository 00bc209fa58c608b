import click
from flask import current_app
from flask.cli import with_appcontext
from campus_feedback.errors import FeedbackError
from campus_feedback.extensions import db
from campus_feedback.services import bootstrap as bootstrap_service
from campus_feedback.services import periods as period_service
from campus_feedback.services import settings as settings_service


@click.group()
def bootstrap():
    """Bootstrap helpers."""


@bootstrap.command("admin")
@click.option("--email", default=None, help="Defaults to BOOTSTRAP_ADMIN_EMAIL")
@click.option("--password", default=None, help="Defaults to BOOTSTRAP_ADMIN_PASSWORD")
@click.option("--name", default="Administrator")
@with_appcontext
def bootstrap_admin(email, password, name):
    email = email or current_app.config.get("BOOTSTRAP_ADMIN_EMAIL")
    password = password or current_app.config.get("BOOTSTRAP_ADMIN_PASSWORD")
    try:
        admin, created = bootstrap_service.ensure_admin(db.session, email, password, name=name)
    except FeedbackError as e:
        db.session.rollback()
        raise click.ClickException(e.message)
    db.session.commit()
    if created:
        click.echo(f"Admin created id={admin.id} email={admin.email}")
    else:
        click.echo(f"Admin already exists id={admin.id} email={admin.email}; nothing to do")


@click.group("import")
def import_group():
    """Roster import (CSV or Excel)."""


def _report(kind, stats):
    click.echo(f"{kind}: inserted={stats['inserted']} updated={stats['updated']} skipped={stats['skipped']}")
    for err in stats["errors"]:
        click.echo(f"  {err}", err=True)


@import_group.command("students")
@click.argument("path", type=click.Path(dir_okay=False))
@click.option("--default-password", default=None, help="Initial password for new students without one")
@with_appcontext
def import_students(path, default_password):
    try:
        stats = bootstrap_service.import_students(db.session, path, default_password=default_password)
    except FeedbackError as e:
        db.session.rollback()
        raise click.ClickException(e.message)
    db.session.commit()
    _report("students", stats)


@import_group.command("subjects")
@click.argument("path", type=click.Path(dir_okay=False))
@with_appcontext
def import_subjects(path):
    try:
        stats = bootstrap_service.import_subjects(db.session, path)
    except FeedbackError as e:
        db.session.rollback()
        raise click.ClickException(e.message)
    db.session.commit()
    _report("subjects", stats)


@click.group()
def periods():
    """Feedback period ops."""


@periods.command("list")
@click.option("--status", default=None)
@click.option("--academic-year", default=None)
@with_appcontext
def periods_list(status, academic_year):
    try:
        rows = period_service.list_periods(db.session, status=status, academic_year=academic_year)
    except FeedbackError as e:
        raise click.ClickException(e.message)
    if not rows:
        click.echo("No feedback periods")
        return
    for p in rows:
        live = "live" if p.is_live else ("paused" if p.status == "active" else "-")
        click.echo(
            f"{p.id}\t{p.feedback_type}\tterm={p.term}\t{p.academic_year}\t{p.status}\t{live}\t"
            f"{p.start_date:%Y-%m-%d} -> {p.end_date:%Y-%m-%d}\t{p.title}"
        )


@periods.command("transition")
@click.argument("period_id", type=int)
@click.argument("action", type=click.Choice(period_service.ACTIONS))
@with_appcontext
def periods_transition(period_id, action):
    try:
        period = period_service.transition(db.session, period_id, action)
    except FeedbackError as e:
        db.session.rollback()
        raise click.ClickException(e.message)
    db.session.commit()
    click.echo(f"Period {period.id} -> status={period.status} is_active={period.is_active}")


@click.group("settings")
def settings_group():
    """System settings (feedback switch, maintenance mode)."""


@settings_group.command("show")
@with_appcontext
def settings_show():
    for key, value in settings_service.get_settings(db.session).items():
        click.echo(f"{key}={value}")


@settings_group.command("set")
@click.option("--feedback/--no-feedback", "feedback_enabled", default=None, help="Open or close feedback collection")
@click.option("--maintenance/--no-maintenance", "maintenance_mode", default=None)
@click.option("--anonymous/--no-anonymous", "allow_anonymous_feedback", default=None)
@with_appcontext
def settings_set(**flags):
    updates = {k: v for k, v in flags.items() if v is not None}
    try:
        row = settings_service.update_settings(db.session, updates)
    except FeedbackError as e:
        db.session.rollback()
        raise click.ClickException(e.message)
    db.session.commit()
    click.echo(
        f"Settings {row.id}: feedback_enabled={row.feedback_enabled} "
        f"maintenance_mode={row.maintenance_mode} allow_anonymous_feedback={row.allow_anonymous_feedback}"
    )


def register_cli(app):
    app.cli.add_command(bootstrap)
    app.cli.add_command(import_group)
    app.cli.add_command(periods)
    app.cli.add_command(settings_group)
