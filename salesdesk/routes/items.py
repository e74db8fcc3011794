# Overview: Flask API routes for items; parses input and returns JSON responses.

# salesdesk/routes/items.py
"""
Item routes.

Stock is never written directly from a request: a 'stock' value in PUT is an
administrative override and goes through item_service.adjust_stock().
"""
from flask import Blueprint, current_app, jsonify, request

from ..models import Item
from ..services import item_service
from ..validation import (
    ModelValidationPolicy,
    ServiceError,
    enforce_rules_item,
    validate_payload,
)

ITEM_POLICY = ModelValidationPolicy(
    writable_fields={
        "name": "name",
        "description": "description",
        "price": "price_cents",
        "stock": "stock",
        "minStock": "min_stock",
        "category": "category",
        "sku": "sku",
    },
    required_on_create=frozenset({"name", "sku", "price"}),
    read_only_fields=frozenset({"id", "isActive", "lowStock", "createdAt", "updatedAt"}),
)

items_bp = Blueprint("items", __name__, url_prefix="/items")


def _flag(name: str) -> bool:
    return request.args.get(name, "false").lower() == "true"


@items_bp.get("")
def list_items():
    """
    List items.

    Query params:
    - includeInactive: bool (optional) - include soft-deleted items
    - category: str (optional)
    """
    items = item_service.list_items(
        include_inactive=_flag("includeInactive"),
        category=request.args.get("category") or None,
    )
    return jsonify([i.to_dict() for i in items]), 200


@items_bp.get("/low-stock")
def list_low_stock_items():
    """Active items at or below their minStock threshold."""
    return jsonify([i.to_dict() for i in item_service.list_low_stock_items()]), 200


@items_bp.get("/<int:item_id>")
def get_item(item_id: int):
    try:
        return item_service.get_item(item_id).to_dict()
    except ServiceError as e:
        return e.to_dict(), e.http_status


@items_bp.post("")
def create_item_route():
    payload = request.get_json(silent=True)

    try:
        patch = validate_payload(model=Item, payload=payload, policy=ITEM_POLICY, partial=False)
        enforce_rules_item(patch)
        created = item_service.create_item(patch=patch)
    except ServiceError as e:
        return e.to_dict(), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create item")
        return {"error": "Internal server error"}, 500

    return created.to_dict(), 201


@items_bp.put("/<int:item_id>")
def update_item_route(item_id: int):
    payload = request.get_json(silent=True)

    try:
        patch = validate_payload(model=Item, payload=payload, policy=ITEM_POLICY, partial=True)
        enforce_rules_item(patch)
        updated = item_service.update_item(item_id=item_id, patch=patch)
    except ServiceError as e:
        return e.to_dict(), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update item")
        return {"error": "Internal server error"}, 500

    return updated.to_dict(), 200


@items_bp.delete("/<int:item_id>")
def delete_item_route(item_id: int):
    """Soft-delete. Refused (409) while the item has outstanding allocations."""
    try:
        item_service.delete_item(item_id=item_id)
    except ServiceError as e:
        return e.to_dict(), e.http_status
    except Exception:
        current_app.logger.exception("Failed to delete item")
        return {"error": "Internal server error"}, 500

    return {"ok": True}, 200
