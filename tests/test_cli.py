import pytest

from campus_feedback.extensions import db
from campus_feedback.models import Subject, User

from conftest import make_period, make_user


@pytest.fixture()
def runner(app):
    return app.test_cli_runner()


def test_bootstrap_admin_is_idempotent(app, runner):
    r = runner.invoke(args=["bootstrap", "admin", "--email", "Root@College.test", "--password", "long-enough"])
    assert r.exit_code == 0, r.output
    assert "Admin created" in r.output

    again = runner.invoke(args=["bootstrap", "admin", "--email", "other@college.test", "--password", "long-enough"])
    assert again.exit_code == 0 and "nothing to do" in again.output

    with app.app_context():
        admins = db.session.query(User).filter_by(role="admin").all()
        assert [a.email for a in admins] == ["root@college.test"]
        assert admins[0].check_password("long-enough")


def test_bootstrap_admin_rejects_short_password(runner):
    r = runner.invoke(args=["bootstrap", "admin", "--email", "root@college.test", "--password", "short"])
    assert r.exit_code != 0
    assert "at least 8 characters" in r.output


def test_import_students_csv(app, runner, tmp_path):
    sheet = tmp_path / "students.csv"
    sheet.write_text(
        "Name,Email,Roll Number,Branch,Year,Section\n"
        "Ravi,ravi@college.test,232p4r0042,AIML,3,A\n"
        "Asha,asha@college.test,,CSE,2,b\n"
        "Bad,not-an-email,,CSE,2,A\n"
        "Odd,odd@college.test,,Astrology,2,A\n"
    )
    r = runner.invoke(args=["import", "students", str(sheet), "--default-password", "welcome-123"])
    assert r.exit_code == 0, r.output
    assert "inserted=2 updated=0 skipped=2" in r.output

    with app.app_context():
        asha = db.session.query(User).filter_by(email="asha@college.test").one()
        ravi = db.session.query(User).filter_by(email="ravi@college.test").one()
        assert asha.section == "B" and asha.year == 2 and asha.password_reset_required
        assert asha.roll_number == "232P4R0043"
        assert ravi.roll_number == "232P4R0042"
        assert asha.check_password("welcome-123")

    rerun = runner.invoke(args=["import", "students", str(sheet)])
    assert "inserted=0 updated=2 skipped=2" in rerun.output


def test_import_subjects_csv(app, runner, tmp_path):
    sheet = tmp_path / "subjects.csv"
    sheet.write_text(
        "Name,Code,Instructor,Department,Branches,Sections,Year,Term\n"
        "Data Structures,cs201,Dr. Rao,CS,CSE;AIML,A;B,2,1\n"
        "Broken,,Dr. X,CS,CSE,A,2,1\n"
    )
    r = runner.invoke(args=["import", "subjects", str(sheet)])
    assert r.exit_code == 0, r.output
    assert "inserted=1 updated=0 skipped=1" in r.output

    with app.app_context():
        subject = db.session.query(Subject).filter_by(code="CS201").one()
        assert subject.branches == ["CSE", "AIML"] and subject.sections == ["A", "B"]
        assert len(subject.questions) == 10


def test_import_rejects_unsupported_file(runner, tmp_path):
    sheet = tmp_path / "students.txt"
    sheet.write_text("Email\n")
    r = runner.invoke(args=["import", "students", str(sheet)])
    assert r.exit_code != 0 and "Only .csv" in r.output


def test_periods_list_and_transition(app, runner):
    with app.app_context():
        make_user()
        pid = make_period().id
        db.session.commit()

    listed = runner.invoke(args=["periods", "list"])
    assert listed.exit_code == 0
    assert f"{pid}\tmidterm\tterm=1\t2024-25\tactive\tlive" in listed.output

    paused = runner.invoke(args=["periods", "transition", str(pid), "deactivate"])
    assert "is_active=False" in paused.output

    done = runner.invoke(args=["periods", "transition", str(pid), "cancel"])
    assert "status=cancelled" in done.output
    blocked = runner.invoke(args=["periods", "transition", str(pid), "activate"])
    assert blocked.exit_code != 0


def test_periods_list_empty(runner):
    r = runner.invoke(args=["periods", "list"])
    assert "No feedback periods" in r.output
