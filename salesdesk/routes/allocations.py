# Overview: Flask API routes for allocations, end-of-day settlement and allocation analytics.

# salesdesk/routes/allocations.py
"""
Allocation routes.

End-of-day is a batch with per-tuple outcomes:
- 200 when every tuple settled
- 207 when at least one tuple failed (the others stay settled)
The body is a flat array in request order: the updated allocation for each
settled tuple, an error object (no "id") for each failed one. ?detail=true
returns the batch envelope with totals instead.
"""
from flask import Blueprint, current_app, jsonify, request

from ..models import Allocation
from ..services import allocation_service, end_of_day_service, reporting_service
from ..time_utils import day_bounds, parse_iso_date
from ..validation import (
    ModelValidationPolicy,
    ServiceError,
    ValidationError,
    coerce_int,
    enforce_rules_allocation,
    validate_payload,
)

# Display fields clients echo back from GET; accepted and dropped
_ALLOCATION_DISPLAY_FIELDS = frozenset({
    "id", "salespersonName", "itemName", "itemPrice", "date", "settledAt",
    "returnedQuantity", "expectedPayment", "paymentDifference",
    "createdAt", "updatedAt",
})

ALLOCATION_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "salespersonId": "salesperson_id",
        "itemId": "item_id",
        "quantity": "quantity",
        "allocationDate": "allocation_date",
    },
    required_on_create=frozenset({"salespersonId", "itemId", "quantity"}),
    read_only_fields=_ALLOCATION_DISPLAY_FIELDS | {"status", "soldQuantity", "paymentReceived"},
)

ALLOCATION_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "quantity": "quantity",
        "soldQuantity": "sold_quantity",
        "paymentReceived": "payment_received_cents",
        "status": "status",
    },
    read_only_fields=_ALLOCATION_DISPLAY_FIELDS | {"salespersonId", "itemId", "allocationDate"},
)

allocations_bp = Blueprint("allocations", __name__, url_prefix="/allocations")


def _date_arg(name: str):
    try:
        return parse_iso_date(request.args.get(name))
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date (YYYY-MM-DD)", field=name)


def _int_arg(name: str):
    raw = request.args.get(name)
    if raw is None or raw.strip() == "":
        return None
    return coerce_int(raw, name)


@allocations_bp.get("")
def list_allocations():
    """
    List allocations, newest first.

    Query params (all optional, combinable):
    - salespersonId, itemId: int (anything else is a 400)
    - status: ALLOCATED | SOLD | RETURNED
    - startDate, endDate: YYYY-MM-DD, both inclusive
    """
    try:
        start_day = _date_arg("startDate")
        end_day = _date_arg("endDate")
        allocations = allocation_service.list_allocations(
            salesperson_id=_int_arg("salespersonId"),
            item_id=_int_arg("itemId"),
            status=request.args.get("status") or None,
            start=day_bounds(start_day)[0] if start_day else None,
            end=day_bounds(end_day)[1] if end_day else None,
        )
    except ServiceError as e:
        return jsonify(e.to_dict()), e.http_status

    return jsonify([a.to_dict() for a in allocations]), 200


@allocations_bp.get("/<int:allocation_id>")
def get_allocation(allocation_id: int):
    try:
        return jsonify(allocation_service.get_allocation(allocation_id).to_dict()), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.http_status


@allocations_bp.post("")
def create_allocation_route():
    payload = request.get_json(silent=True)

    try:
        patch = validate_payload(
            model=Allocation, payload=payload, policy=ALLOCATION_CREATE_POLICY, partial=False
        )
        enforce_rules_allocation(patch)
        allocation = allocation_service.allocate(
            salesperson_id=patch["salesperson_id"],
            item_id=patch["item_id"],
            quantity=patch["quantity"],
            allocation_date=patch.get("allocation_date"),
        )
    except ServiceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create allocation")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(allocation.to_dict()), 201


@allocations_bp.put("/<int:allocation_id>")
def update_allocation_route(allocation_id: int):
    payload = request.get_json(silent=True)

    try:
        patch = validate_payload(
            model=Allocation, payload=payload, policy=ALLOCATION_UPDATE_POLICY, partial=True
        )
        enforce_rules_allocation(patch)
        allocation = allocation_service.update_allocation(
            allocation_id=allocation_id,
            quantity=patch.get("quantity"),
            sold_quantity=patch.get("sold_quantity"),
            payment_received_cents=patch.get("payment_received_cents"),
            status=patch.get("status"),
        )
    except ServiceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update allocation")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(allocation.to_dict()), 200


@allocations_bp.delete("/<int:allocation_id>")
def delete_allocation_route(allocation_id: int):
    try:
        summary = allocation_service.delete_allocation(allocation_id=allocation_id)
    except ServiceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to delete allocation")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"ok": True, **summary}), 200


@allocations_bp.post("/end-of-day/<int:salesperson_id>")
def end_of_day_route(salesperson_id: int):
    """
    Body: [{"allocationId": 1, "soldQuantity": 15, "paymentReceived": 150}, ...]
    """
    payload = request.get_json(silent=True)
    detail = request.args.get("detail", "false").lower() == "true"

    try:
        batch = end_of_day_service.process_end_of_day(salesperson_id=salesperson_id, entries=payload)
    except ServiceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to process end of day")
        return jsonify({"error": "Internal server error"}), 500

    http_status = 200 if batch.all_succeeded else 207
    body = batch.to_dict() if detail else batch.to_list()
    return jsonify(body), http_status


@allocations_bp.get("/summary/date/<day>")
def daily_summary_route(day: str):
    try:
        return jsonify(reporting_service.daily_summary(day=day)), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.http_status


@allocations_bp.get("/summary/date-range")
def date_range_summary_route():
    try:
        report = reporting_service.date_range_summary(
            start=request.args.get("startDate"),
            end=request.args.get("endDate"),
        )
        return jsonify(report), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.http_status


@allocations_bp.get("/analytics/quantity-sold/item/<int:item_id>")
def item_quantity_sold_route(item_id: int):
    try:
        report = reporting_service.item_quantity_sold(
            item_id=item_id,
            start=request.args.get("startDate"),
            end=request.args.get("endDate"),
        )
        return jsonify(report), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.http_status


@allocations_bp.get("/analytics/revenue/salesperson/<int:salesperson_id>")
def salesperson_revenue_route(salesperson_id: int):
    try:
        report = reporting_service.salesperson_revenue(
            salesperson_id=salesperson_id,
            start=request.args.get("startDate"),
            end=request.args.get("endDate"),
        )
        return jsonify(report), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.http_status


@allocations_bp.get("/analytics/revenue/all-salespeople")
def revenue_by_salesperson_route():
    try:
        report = reporting_service.salesperson_performance(
            start=request.args.get("startDate"),
            end=request.args.get("endDate"),
        )
        return jsonify(report), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.http_status
