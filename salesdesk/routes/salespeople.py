# Overview: Flask API routes for salespeople; parses input and returns JSON responses.

from flask import Blueprint, current_app, jsonify, request

from ..models import Salesperson
from ..services import salesperson_service
from ..validation import ModelValidationPolicy, ServiceError, validate_payload

# totalSales / itemsAllocated are ledger-managed; clients echo them back on
# PUT, so they are accepted and dropped rather than rejected.
SALESPERSON_POLICY = ModelValidationPolicy(
    writable_fields={"name": "name", "phone": "phone"},
    required_on_create=frozenset({"name"}),
    read_only_fields=frozenset({
        "id", "totalSales", "itemsAllocated", "isActive", "createdAt", "updatedAt",
    }),
)

salespeople_bp = Blueprint("salespeople", __name__, url_prefix="/salespeople")


@salespeople_bp.get("")
def list_salespeople():
    include_inactive = request.args.get("includeInactive", "false").lower() == "true"
    people = salesperson_service.list_salespeople(include_inactive=include_inactive)
    return jsonify([p.to_dict() for p in people]), 200


@salespeople_bp.get("/<int:salesperson_id>")
def get_salesperson(salesperson_id: int):
    try:
        return salesperson_service.get_salesperson(salesperson_id).to_dict()
    except ServiceError as e:
        return e.to_dict(), e.http_status


@salespeople_bp.post("")
def create_salesperson_route():
    payload = request.get_json(silent=True)

    try:
        patch = validate_payload(
            model=Salesperson, payload=payload, policy=SALESPERSON_POLICY, partial=False
        )
        created = salesperson_service.create_salesperson(patch=patch)
    except ServiceError as e:
        return e.to_dict(), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create salesperson")
        return {"error": "Internal server error"}, 500

    return created.to_dict(), 201


@salespeople_bp.put("/<int:salesperson_id>")
def update_salesperson_route(salesperson_id: int):
    payload = request.get_json(silent=True)

    try:
        patch = validate_payload(
            model=Salesperson, payload=payload, policy=SALESPERSON_POLICY, partial=True
        )
        updated = salesperson_service.update_salesperson(salesperson_id=salesperson_id, patch=patch)
    except ServiceError as e:
        return e.to_dict(), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update salesperson")
        return {"error": "Internal server error"}, 500

    return updated.to_dict(), 200


@salespeople_bp.delete("/<int:salesperson_id>")
def delete_salesperson_route(salesperson_id: int):
    try:
        salesperson_service.delete_salesperson(salesperson_id=salesperson_id)
    except ServiceError as e:
        return e.to_dict(), e.http_status
    except Exception:
        current_app.logger.exception("Failed to delete salesperson")
        return {"error": "Internal server error"}, 500

    return {"ok": True}, 200
