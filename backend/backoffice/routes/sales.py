# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/backoffice/routes/sales.py
"""Sales API routes"""

from flask import Blueprint, request, jsonify, g, current_app

from ..models import Sale
from ..services import sales_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    ServiceError,
    ValidationError,
)
from ..decorators import require_acting_user
from .common import error_response, datetime_arg, page_args, page_response


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")

SALE_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "client_name",
        "client_document",
        "client_phone",
        "client_email",
        "tax_amount",
        "discount_amount",
        "notes",
        "sale_type",
        "document_number",
        "payment_method",
    },
    required_on_create={"client_name"},
)


@sales_bp.post("")
@require_acting_user
def create_sale_route():
    """
    Create a completed sale.

    Body: client fields, "items": [{"product_id", "quantity", "unit_price"?,
    "discount"?}], tax_amount, discount_amount, sale_type, payment_method.

    400 with kind "insufficient_stock" and details.items listing every line
    that cannot be served.
    """
    payload = request.get_json(silent=True) or {}

    try:
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")
        header = dict(payload)
        items = header.pop("items", None)
        patch = validate_payload(model=Sale, payload=header, policy=SALE_CREATE_POLICY)

        sale = sales_service.create_sale(
            user_id=g.current_user.id,
            client_name=patch["client_name"],
            items=items,
            client_document=patch.get("client_document"),
            client_phone=patch.get("client_phone"),
            client_email=patch.get("client_email"),
            tax_amount=patch.get("tax_amount") or 0,
            discount_amount=patch.get("discount_amount") or 0,
            notes=patch.get("notes"),
            sale_type=patch.get("sale_type") or "retail",
            document_number=patch.get("document_number"),
            payment_method=patch.get("payment_method"),
        )
    except ServiceError as e:
        if e.kind == "insufficient_stock":
            current_app.logger.info("Sale rejected for insufficient stock: %s", e.details)
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500

    current_app.logger.info(
        "Sale %s created by user %s total=%.2f items=%s",
        sale.id, g.current_user.id, sale.total_amount, len(sale.items),
    )
    return jsonify({"sale": sale.to_dict()}), 201


@sales_bp.get("")
@require_acting_user
def list_sales_route():
    """Filters: user_id, client_name, status, sale_type, start_date, end_date, limit, offset."""
    try:
        page = sales_service.get_sales(
            user_id=request.args.get("user_id", type=int),
            client_name=request.args.get("client_name") or None,
            status=request.args.get("status") or None,
            sale_type=request.args.get("sale_type") or None,
            start_date=datetime_arg("start_date"),
            end_date=datetime_arg("end_date"),
            **page_args(),
        )
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(page_response(page, "sales")), 200


@sales_bp.get("/<int:sale_id>")
@require_acting_user
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale_by_id(sale_id)
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load sale")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.post("/<int:sale_id>/cancel")
@require_acting_user
def cancel_sale_route(sale_id: int):
    """
    Cancel a sale and restore its stock.

    409 when the sale is already cancelled or one of its products is no
    longer available.
    """
    try:
        sale = sales_service.cancel_sale(sale_id, g.current_user.id)
    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return jsonify({"error": "Internal server error"}), 500

    current_app.logger.info("Sale %s cancelled by user %s", sale.id, g.current_user.id)
    return jsonify({"sale": sale.to_dict()}), 200
