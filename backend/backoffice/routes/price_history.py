# backend/backoffice/routes/price_history.py
"""
Price timeline routes.

POST /api/price-history closes the open interval for (product, price_type)
and opens a new one; the rest are reads.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..models import PriceHistory
from ..services import price_history_service
from ..time_utils import utcnow
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    ServiceError,
    ValidationError,
    enforce_rules_price_change,
)
from ..decorators import require_acting_user
from .common import error_response, datetime_arg, page_args, page_response


price_history_bp = Blueprint("price_history", __name__, url_prefix="/api")

PRICE_CHANGE_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "price_type", "value", "start_date"},
    required_on_create={"product_id", "price_type", "value"},
)


@price_history_bp.post("/price-history")
@require_acting_user
def register_price_change_route():
    """Body: {"product_id", "price_type": cost|retail|wholesale, "value", "start_date"?}."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=PriceHistory, payload=payload, policy=PRICE_CHANGE_POLICY)
        enforce_rules_price_change(patch)

        entry = price_history_service.register_price_change(
            product_id=patch["product_id"],
            price_type=patch["price_type"],
            value=patch["value"],
            user_id=g.current_user.id,
            start_date=patch.get("start_date"),
        )
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to register price change")
        return jsonify({"error": "Internal server error"}), 500

    current_app.logger.info(
        "Price change product=%s type=%s value=%s user=%s",
        entry.product_id, entry.price_type, entry.value, g.current_user.id,
    )
    return jsonify({"price": entry.to_dict()}), 201


@price_history_bp.get("/price-history")
@require_acting_user
def list_price_history_route():
    """Filters: product_id, price_type, start_date, end_date (on interval start), limit, offset."""
    try:
        page = price_history_service.get_price_history(
            product_id=request.args.get("product_id", type=int),
            price_type=request.args.get("price_type") or None,
            start_date=datetime_arg("start_date"),
            end_date=datetime_arg("end_date"),
            **page_args(),
        )
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list price history")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(page_response(page, "prices")), 200


@price_history_bp.get("/products/<int:product_id>/price-history")
@require_acting_user
def product_price_history_route(product_id: int):
    try:
        page = price_history_service.get_product_price_history(product_id, **page_args())
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list product price history")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(page_response(page, "prices", current_prices=page["current_prices"])), 200


@price_history_bp.get("/products/<int:product_id>/price-at")
@require_acting_user
def price_at_route(product_id: int):
    """?price_type=retail&at=<ISO-8601>; at defaults to now. 404 when no interval covers it."""
    try:
        price_type = request.args.get("price_type")
        if not price_type:
            raise ValidationError("price_type is required")
        at = datetime_arg("at") or utcnow()
        entry = price_history_service.get_price_at(product_id, price_type, at)
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to look up price")
        return jsonify({"error": "Internal server error"}), 500

    if entry is None:
        return jsonify({"error": "No price recorded for that date", "kind": "not_found"}), 404
    return jsonify({"price": entry.to_dict()}), 200
