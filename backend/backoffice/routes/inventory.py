# backend/backoffice/routes/inventory.py
"""
Inventory routes: stock input/output/adjustments and ledger reads.

All routes require an acting user (see require_acting_user).

Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- start_date/end_date filtering is inclusive on created_at.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..models import StockMovement
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    ServiceError,
    ValidationError,
    enforce_rules_inventory_movement,
    enforce_rules_inventory_adjust,
)
from ..decorators import require_acting_user
from ..services import inventory_service, ledger_service
from .common import error_response, datetime_arg, page_args, page_response


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

INVENTORY_MOVEMENT_POLICY = ModelValidationPolicy(
    writable_fields={
        "product_id",
        "quantity",
        "unit_cost",
        "reason",
        "note",
        "document_reference",
        "reference_id",
        "location",
    },
    required_on_create={"product_id", "quantity", "unit_cost"},
)


def _movement_body(result: dict) -> dict:
    return {
        "movement": result["movement"].to_dict(),
        "product_id": result["product_id"],
        "stock": result["stock"],
    }


def _register_movement(register, default_reason: str):
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(
        model=StockMovement,
        payload=payload,
        policy=INVENTORY_MOVEMENT_POLICY,
    )
    enforce_rules_inventory_movement(patch)

    return register(
        product_id=patch["product_id"],
        quantity=patch["quantity"],
        unit_cost=patch["unit_cost"],
        user_id=g.current_user.id,
        reason=patch.get("reason") or default_reason,
        note=patch.get("note"),
        document_reference=patch.get("document_reference"),
        reference_id=patch.get("reference_id"),
        location=patch.get("location"),
    )


@inventory_bp.post("/input")
@require_acting_user
def register_input_route():
    """Receive stock. Default reason: purchase."""
    try:
        result = _register_movement(inventory_service.register_input, "purchase")
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to register inventory input")
        return jsonify({"error": "Internal server error"}), 500

    current_app.logger.info(
        "Inventory input product=%s qty=%s stock=%s user=%s",
        result["product_id"], result["movement"].quantity, result["stock"], g.current_user.id,
    )
    return jsonify(_movement_body(result)), 201


@inventory_bp.post("/output")
@require_acting_user
def register_output_route():
    """
    Take stock out. Default reason: sale.

    400 with kind "insufficient_stock" (details: current_stock,
    requested_quantity) when there is not enough stock.
    """
    try:
        result = _register_movement(inventory_service.register_output, "sale")
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to register inventory output")
        return jsonify({"error": "Internal server error"}), 500

    current_app.logger.info(
        "Inventory output product=%s qty=%s stock=%s user=%s",
        result["product_id"], result["movement"].quantity, result["stock"], g.current_user.id,
    )
    return jsonify(_movement_body(result)), 201


@inventory_bp.post("/adjustments")
@require_acting_user
def register_adjustment_route():
    """Stock-count correction: {"product_id", "quantity_delta", "unit_cost"?, "reason"?, "note"?}."""
    payload = request.get_json(silent=True) or {}

    try:
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")
        missing = sorted(f for f in ("product_id", "quantity_delta") if payload.get(f) is None)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        if isinstance(payload["quantity_delta"], bool) or not isinstance(payload["quantity_delta"], int):
            raise ValidationError("quantity_delta must be an integer")
        enforce_rules_inventory_adjust(payload)

        result = inventory_service.register_adjustment(
            product_id=payload["product_id"],
            quantity_delta=payload["quantity_delta"],
            user_id=g.current_user.id,
            unit_cost=payload.get("unit_cost"),
            reason=payload.get("reason") or "adjustment",
            note=payload.get("note"),
            location=payload.get("location"),
        )
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to register inventory adjustment")
        return jsonify({"error": "Internal server error"}), 500

    current_app.logger.info(
        "Inventory adjustment product=%s delta=%s stock=%s user=%s",
        result["product_id"], payload["quantity_delta"], result["stock"], g.current_user.id,
    )
    return jsonify(_movement_body(result)), 201


@inventory_bp.get("/movements")
@require_acting_user
def list_movements_route():
    """Ledger search: product_id, movement_type, start_date, end_date, limit, offset."""
    try:
        page = inventory_service.get_inventory_movements(
            product_id=request.args.get("product_id", type=int),
            movement_type=request.args.get("movement_type") or None,
            start_date=datetime_arg("start_date"),
            end_date=datetime_arg("end_date"),
            **page_args(),
        )
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list inventory movements")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(page_response(page, "movements")), 200


@inventory_bp.get("/products/<int:product_id>/movements")
@require_acting_user
def product_movements_route(product_id: int):
    try:
        page = inventory_service.get_product_inventory_movements(product_id, **page_args())
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list product movements")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(page_response(page, "movements", current_stock=page["current_stock"])), 200


@inventory_bp.get("/products/<int:product_id>/reconcile")
@require_acting_user
def reconcile_product_route(product_id: int):
    """Compare the stock projection with the ledger sum. Read-only."""
    try:
        report = ledger_service.rebuild_stock(product_id)
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reconcile product stock")
        return jsonify({"error": "Internal server error"}), 500

    if not report["consistent"]:
        current_app.logger.warning(
            "Stock drift product=%s projected=%s ledger=%s",
            product_id, report["projected_stock"], report["ledger_stock"],
        )
    return jsonify(report), 200
