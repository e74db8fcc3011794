from flask import Blueprint, jsonify, request

from salesdesk.services import reporting_service
from salesdesk.validation import ServiceError


reports_bp = Blueprint("reports", __name__, url_prefix="/reports")


@reports_bp.get("/salespeople")
def salesperson_report():
    start = request.args.get("startDate")
    end = request.args.get("endDate")

    try:
        report = reporting_service.salesperson_performance(start=start, end=end)
        return jsonify(report), 200
    except ServiceError as exc:
        return jsonify(exc.to_dict()), exc.http_status


@reports_bp.get("/items")
def item_report():
    start = request.args.get("startDate")
    end = request.args.get("endDate")

    try:
        report = reporting_service.item_performance(start=start, end=end)
        return jsonify(report), 200
    except ServiceError as exc:
        return jsonify(exc.to_dict()), exc.http_status


@reports_bp.get("/dashboard")
def dashboard_report():
    return jsonify(reporting_service.dashboard_summary()), 200
