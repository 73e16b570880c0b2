# backend/kasir/routes/reports.py
"""
Reporting, export and dashboard routes. Read-only; recomputed per request.
"""

from flask import Blueprint, request, jsonify, Response, current_app

from ..services import reporting_service, export_service
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..validation import ValidationError
from ..decorators import require_auth, require_role


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")
dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api")


@reports_bp.get("")
@require_auth
def report_route():
    """
    Query params:
    - type: overview | sales | products | inventory (default overview)
    - start_date / end_date: ISO dates; a date-only end_date covers the whole day
    - category_id: inventory report only
    """
    try:
        data = reporting_service.build_report(
            request.args.get("type"),
            start=request.args.get("start_date"),
            end=request.args.get("end_date"),
            category_id=request.args.get("category_id", type=int),
        )
        return jsonify(data), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to build report")
        return jsonify({"error": "Internal server error"}), 500


@reports_bp.get("/export")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def export_route():
    """
    Query params: type (transactions | products), format (excel | csv),
    start_date, end_date. Served as an attachment named <type>_<YYYY-MM-DD>.<ext>.
    """
    try:
        export = export_service.export_data(
            request.args.get("type"),
            request.args.get("format"),
            start=request.args.get("start_date"),
            end=request.args.get("end_date"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to export data")
        return jsonify({"error": "Internal server error"}), 500

    return Response(
        export.content,
        mimetype=export.mimetype,
        headers={"Content-Disposition": f'attachment; filename="{export.filename}"'},
    )


@dashboard_bp.get("/dashboard/stats")
@require_auth
def dashboard_stats_route():
    return jsonify(reporting_service.dashboard_stats()), 200


@dashboard_bp.get("/sales/summary")
@require_auth
def sales_summary_route():
    return jsonify(reporting_service.sales_summary()), 200
