from flask import Blueprint, current_app, jsonify, request

from ..services import reporting_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/summary")
def summary_report():
    days = request.args.get("days", 7, type=int)
    top = request.args.get("top", 5, type=int)

    try:
        report = reporting_service.summary(
            days=days,
            top_limit=top,
            low_stock_limit=current_app.config.get("LOW_STOCK_REPORT_LIMIT", 50),
        )
        return jsonify(report), 200
    except reporting_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400
