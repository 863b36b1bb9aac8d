# Overview: Service-layer operations for single-product stock movements.

# backend/backoffice/services/inventory_service.py

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import Product, StockMovement
from ..models.inventory import MOVEMENT_KINDS
from ..validation import NotFoundError, ValidationError, resolve_page
from .ledger_service import record_movement, get_locked_product
from .concurrency import run_in_transaction
"""
Inventory Service (single-movement operations)

- register_input / register_output / register_adjustment each run as one
  DB transaction: validate, lock the product row, append the movement,
  move the stock projection, commit.
- Any failure rolls the whole thing back and re-raises the ledger's error
  kind unchanged (NotFoundError, ValidationError, InsufficientStockError).
- Reads return newest movements first with limit/offset paging and a total.
"""


def _movement_result(movement: StockMovement) -> dict:
    return {
        "movement": movement,
        "product_id": movement.product_id,
        "stock": movement.current_stock,
    }


def register_input(
    *,
    product_id: int,
    quantity: int,
    unit_cost: float,
    user_id: int,
    reason: str = "purchase",
    note: str | None = None,
    document_reference: str | None = None,
    reference_id: str | None = None,
    location: str | None = None,
) -> dict:
    """
    Receive stock. Returns {"movement", "product_id", "stock"} where stock is
    the product's stock after the movement.
    """
    def _op():
        movement = record_movement(
            product_id=product_id,
            movement_type="input",
            quantity=quantity,
            unit_cost=unit_cost,
            reason=reason,
            user_id=user_id,
            note=note,
            document_reference=document_reference,
            reference_id=reference_id,
            location=location,
        )
        return _movement_result(movement)

    return run_in_transaction(_op, failure_message="Failed to register inventory input")


def register_output(
    *,
    product_id: int,
    quantity: int,
    unit_cost: float,
    user_id: int,
    reason: str = "sale",
    note: str | None = None,
    document_reference: str | None = None,
    reference_id: str | None = None,
    location: str | None = None,
) -> dict:
    """
    Take stock out. Fails with InsufficientStockError (current vs requested)
    when the locked stock is lower than quantity; nothing is written then.
    """
    def _op():
        movement = record_movement(
            product_id=product_id,
            movement_type="output",
            quantity=quantity,
            unit_cost=unit_cost,
            reason=reason,
            user_id=user_id,
            note=note,
            document_reference=document_reference,
            reference_id=reference_id,
            location=location,
        )
        return _movement_result(movement)

    return run_in_transaction(_op, failure_message="Failed to register inventory output")


def register_adjustment(
    *,
    product_id: int,
    quantity_delta: int,
    user_id: int,
    unit_cost: float | None = None,
    reason: str = "adjustment",
    note: str | None = None,
    location: str | None = None,
) -> dict:
    """
    Stock-count correction. A positive delta is recorded as adjustment_add,
    a negative one as adjustment_subtract. unit_cost defaults to the
    product's current cost.
    """
    if isinstance(quantity_delta, bool) or not isinstance(quantity_delta, int):
        raise ValidationError("quantity_delta must be an integer")
    if quantity_delta == 0:
        raise ValidationError("quantity_delta must be non-zero")

    movement_type = "adjustment_add" if quantity_delta > 0 else "adjustment_subtract"

    def _op():
        cost = unit_cost
        if cost is None:
            cost = get_locked_product(product_id).cost
        movement = record_movement(
            product_id=product_id,
            movement_type=movement_type,
            quantity=abs(quantity_delta),
            unit_cost=cost,
            reason=reason,
            user_id=user_id,
            note=note,
            location=location,
        )
        return _movement_result(movement)

    return run_in_transaction(_op, failure_message="Failed to register inventory adjustment")


def get_inventory_movements(
    *,
    product_id: int | None = None,
    movement_type: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int | None = None,
    offset: int | None = None,
) -> dict:
    """Ledger search. Date bounds are inclusive on created_at."""
    limit, offset = resolve_page(limit, offset)

    q = db.session.query(StockMovement)
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if movement_type is not None:
        if movement_type not in MOVEMENT_KINDS:
            raise ValidationError(f"unknown movement type: {movement_type}")
        q = q.filter(StockMovement.movement_type == movement_type)
    if start_date is not None:
        q = q.filter(StockMovement.created_at >= start_date)
    if end_date is not None:
        q = q.filter(StockMovement.created_at <= end_date)

    total = q.count()
    rows = (
        q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return {"items": rows, "total": total, "limit": limit, "offset": offset}


def get_product_inventory_movements(
    product_id: int, *, limit: int | None = None, offset: int | None = None
) -> dict:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})

    page = get_inventory_movements(product_id=product_id, limit=limit, offset=offset)
    page["current_stock"] = product.stock
    return page


