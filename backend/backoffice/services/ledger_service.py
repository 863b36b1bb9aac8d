# Overview: Stock ledger writes and the rebuild of stock projections from the ledger.

from __future__ import annotations

from ..extensions import db
from ..models import Product, StockMovement
from ..models.inventory import MOVEMENT_KINDS, MOVEMENT_REASONS, STOCK_OUT
from ..validation import (
    NotFoundError,
    ValidationError,
    InsufficientStockError,
    require_positive_int,
    require_amount,
    require_user,
)
from .concurrency import lock_for_update, run_in_transaction
"""
Stock Ledger Invariants (authoritative)

- StockMovement rows are append-only; corrections are new rows.
- quantity is always > 0; MOVEMENT_KINDS gives the direction of each kind.
- Each movement snapshots the projection: current_stock = previous_stock + direction * quantity.
- Product.stock moves by exactly the same signed delta in the same DB transaction.
- A decreasing movement that would take Product.stock below zero is refused
  before anything is written.
- record_movement() never commits; the calling service owns the transaction.

Reconciliation rule:
    Product.stock == baseline + SUM(direction * quantity)
where baseline is previous_stock of the product's first movement (the stock
it had before the ledger started tracking it).
"""


def signed_delta(movement_type: str, quantity: int) -> int:
    try:
        direction = MOVEMENT_KINDS[movement_type]
    except KeyError:
        raise ValidationError(f"unknown movement type: {movement_type}")
    return direction * quantity


def get_locked_product(product_id: int) -> Product:
    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def record_movement(
    *,
    product_id: int,
    movement_type: str,
    quantity: int,
    unit_cost: float,
    reason: str,
    user_id: int,
    note: str | None = None,
    document_reference: str | None = None,
    reference_id: str | None = None,
    location: str | None = None,
    sale_id: int | None = None,
    batch_id: int | None = None,
) -> StockMovement:
    """
    Append one movement and move the product's stock projection with it.

    The product row is read under SELECT ... FOR UPDATE, so the stock
    compared here is the stock the UPDATE will be applied to.
    """
    require_positive_int(quantity, "quantity")
    unit_cost = require_amount(unit_cost, "unit_cost")
    require_user(user_id)
    if reason not in MOVEMENT_REASONS:
        raise ValidationError(f"unknown movement reason: {reason}")
    delta = signed_delta(movement_type, quantity)

    product = get_locked_product(product_id)

    previous_stock = product.stock
    if MOVEMENT_KINDS[movement_type] == STOCK_OUT and previous_stock < quantity:
        raise InsufficientStockError(
            "Insufficient stock",
            details={
                "product_id": product.id,
                "current_stock": previous_stock,
                "requested_quantity": quantity,
            },
        )

    movement = StockMovement(
        product_id=product.id,
        user_id=user_id,
        movement_type=movement_type,
        reason=reason,
        quantity=quantity,
        unit_cost=unit_cost,
        total_cost=quantity * unit_cost,
        note=note,
        document_reference=document_reference,
        reference_id=reference_id,
        previous_stock=previous_stock,
        current_stock=previous_stock + delta,
        location=location,
        sale_id=sale_id,
        batch_id=batch_id,
    )
    product.stock = previous_stock + delta

    db.session.add(movement)
    db.session.flush()
    return movement


def rebuild_stock(product_id: int) -> dict:
    """
    Recompute a product's stock from its ledger and compare it with the
    stored projection. Read-only.
    """
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})

    movements = (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id)
        .order_by(StockMovement.id.asc())
        .all()
    )

    if not movements:
        baseline = product.stock
    else:
        baseline = movements[0].previous_stock

    ledger_stock = baseline
    chain_breaks = []
    for mv in movements:
        if mv.previous_stock != ledger_stock:
            chain_breaks.append({
                "movement_id": mv.id,
                "expected_previous_stock": ledger_stock,
                "recorded_previous_stock": mv.previous_stock,
            })
        ledger_stock += mv.signed_quantity

    return {
        "product_id": product.id,
        "projected_stock": product.stock,
        "ledger_stock": ledger_stock,
        "baseline": baseline,
        "movement_count": len(movements),
        "chain_breaks": chain_breaks,
        "consistent": product.stock == ledger_stock and not chain_breaks,
    }


def reconcile_stock(product_id: int, *, fix: bool = False) -> dict:
    """
    Rebuild a product's stock from the ledger; with fix=True, rewrite the
    projection to the ledger value and commit.
    """
    def _op():
        report = rebuild_stock(product_id)
        report["fixed"] = False
        if fix and report["projected_stock"] != report["ledger_stock"]:
            if report["ledger_stock"] < 0:
                raise ValidationError(
                    "ledger sums to negative stock; projection left unchanged",
                    details=report,
                )
            product = get_locked_product(product_id)
            product.stock = report["ledger_stock"]
            report["fixed"] = True
        return report

    return run_in_transaction(_op, failure_message="Failed to reconcile stock")
