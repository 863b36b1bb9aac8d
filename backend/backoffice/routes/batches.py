# backend/backoffice/routes/batches.py
"""Batch receiving routes."""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import batch_service
from ..validation import ServiceError, ValidationError
from ..decorators import require_acting_user
from .common import error_response, page_args, page_response


batches_bp = Blueprint("batches", __name__, url_prefix="/api/batches")


@batches_bp.post("")
@require_acting_user
def create_batch_route():
    """Body: {"product_id", "quantity", "unit_cost", "lot_code"?, "note"?}."""
    payload = request.get_json(silent=True) or {}

    try:
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")
        missing = sorted(f for f in ("product_id", "quantity", "unit_cost") if payload.get(f) is None)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        batch = batch_service.create_batch(
            product_id=payload["product_id"],
            quantity=payload["quantity"],
            unit_cost=payload["unit_cost"],
            user_id=g.current_user.id,
            lot_code=payload.get("lot_code"),
            note=payload.get("note"),
        )
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create batch")
        return jsonify({"error": "Internal server error"}), 500

    current_app.logger.info(
        "Batch %s received product=%s qty=%s user=%s",
        batch.id, batch.product_id, batch.initial_quantity, g.current_user.id,
    )
    return jsonify({"batch": batch.to_dict()}), 201


@batches_bp.get("")
@require_acting_user
def list_batches_route():
    try:
        page = batch_service.list_batches(
            product_id=request.args.get("product_id", type=int),
            **page_args(),
        )
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list batches")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(page_response(page, "batches")), 200


@batches_bp.get("/<int:batch_id>")
@require_acting_user
def get_batch_route(batch_id: int):
    try:
        batch = batch_service.get_batch(batch_id)
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load batch")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"batch": batch.to_dict()}), 200
