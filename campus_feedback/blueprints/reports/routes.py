import csv, io
from datetime import datetime, timezone
from flask import request, jsonify, make_response
from campus_feedback.extensions import db
from campus_feedback.services import aggregation as agg
from campus_feedback.services import reports as report_service
from campus_feedback.services.filters import ReportFilter
from campus_feedback.services.policy import REPORT_ROLES, role_required
from campus_feedback.models.user import ROLE_FACULTY
from . import bp


def _filters() -> ReportFilter:
    return ReportFilter.from_mapping(request.args.to_dict())


@bp.get("/subjects/<int:subject_id>")
@role_required(*REPORT_ROLES)
def subject_summary(subject_id: int):
    return jsonify(report_service.get_subject_summary(db.session, subject_id, _filters())), 200


@bp.get("/overview")
@role_required(*REPORT_ROLES)
def overview():
    return jsonify(report_service.get_cumulative_overview(db.session, _filters())), 200


@bp.get("/questions")
@role_required(*REPORT_ROLES)
def questions():
    return jsonify(report_service.get_question_analysis(db.session, _filters())), 200


@bp.get("/sections")
@role_required(*REPORT_ROLES)
def sections():
    return jsonify(report_service.get_section_stats(db.session, _filters())), 200


@bp.get("/dashboard")
@role_required(*REPORT_ROLES)
def dashboard():
    return jsonify(report_service.get_dashboard_stats(db.session, _filters())), 200


@bp.get("/instructors")
@role_required(*REPORT_ROLES)
def instructors():
    return jsonify(report_service.get_instructor_performance(db.session, _filters())), 200


@bp.get("/branches")
@role_required(*REPORT_ROLES)
def branches():
    return jsonify(report_service.get_branch_report(db.session, _filters())), 200


@bp.get("/trends")
@role_required(*REPORT_ROLES)
def trends():
    months = request.args.get("months", type=int)
    return jsonify(report_service.get_trend_report(db.session, _filters(), months=months)), 200


@bp.get("/group/<dimension>")
@role_required(*REPORT_ROLES)
def grouped(dimension: str):
    """Raw grouped statistics for any supported dimension (full precision)."""
    records = agg.load_records(db.session, _filters())
    return jsonify({"groupBy": dimension, "groups": agg.aggregate(records, dimension)}), 200


@bp.get("/periods/<int:period_id>")
@role_required(*REPORT_ROLES)
def period_report(period_id: int):
    return jsonify(report_service.get_period_report(db.session, period_id)), 200


@bp.get("/subjects/<int:subject_id>/anonymous")
@role_required(*(REPORT_ROLES + (ROLE_FACULTY,)))
def anonymous(subject_id: int):
    return jsonify(report_service.get_anonymous_faculty_report(db.session, subject_id, _filters())), 200


@bp.get("/export")
@role_required(*REPORT_ROLES)
def export_json():
    return jsonify(report_service.get_detailed_export(db.session, _filters())), 200


@bp.get("/export.csv")
@role_required(*REPORT_ROLES)
def export_csv():
    data = report_service.get_detailed_export(db.session, _filters())

    buf = io.StringIO(newline="")
    w = csv.writer(buf)
    w.writerow(report_service.EXPORT_COLUMNS)
    for row in data["rows"]:
        w.writerow([row.get(col) for col in report_service.EXPORT_COLUMNS])
    csv_str = buf.getvalue()
    buf.close()

    stamp = datetime.now(timezone.utc).strftime("%Y%m%d")
    resp = make_response(csv_str)
    resp.headers["Content-Type"] = "text/csv; charset=utf-8"
    resp.headers["Content-Disposition"] = f'attachment; filename="feedback_export_{stamp}.csv"'
    return resp
