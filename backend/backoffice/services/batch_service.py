# Overview: Receiving stock as a batch (lot) together with its input movement.

from __future__ import annotations

from ..extensions import db
from ..models import Batch, Product
from ..validation import (
    NotFoundError,
    require_positive_int,
    require_amount,
    require_user,
    resolve_page,
)
from .ledger_service import get_locked_product, record_movement
from .concurrency import run_in_transaction


def create_batch(
    *,
    product_id: int,
    quantity: int,
    unit_cost: float,
    user_id: int,
    lot_code: str | None = None,
    note: str | None = None,
) -> Batch:
    """Insert the batch and its "input" movement in one transaction."""
    require_positive_int(quantity, "quantity")
    unit_cost = require_amount(unit_cost, "unit_cost")
    require_user(user_id)

    def _op():
        product = get_locked_product(product_id)

        batch = Batch(
            product_id=product.id,
            user_id=user_id,
            lot_code=lot_code,
            initial_quantity=quantity,
            available_quantity=quantity,
            unit_cost=unit_cost,
            note=note,
        )
        db.session.add(batch)
        db.session.flush()

        record_movement(
            product_id=product.id,
            movement_type="input",
            quantity=quantity,
            unit_cost=unit_cost,
            reason="purchase",
            user_id=user_id,
            note=note or (f"Batch {lot_code}" if lot_code else None),
            document_reference=f"batch:{batch.id}",
            reference_id=str(batch.id),
            batch_id=batch.id,
        )
        return batch

    return run_in_transaction(_op, failure_message="Failed to create batch")


def get_batch(batch_id: int) -> Batch:
    batch = db.session.get(Batch, batch_id)
    if batch is None:
        raise NotFoundError("Batch not found", details={"batch_id": batch_id})
    return batch


def list_batches(
    *, product_id: int | None = None, limit: int | None = None, offset: int | None = None
) -> dict:
    limit, offset = resolve_page(limit, offset)

    q = db.session.query(Batch)
    if product_id is not None:
        if db.session.get(Product, product_id) is None:
            raise NotFoundError("Product not found", details={"product_id": product_id})
        q = q.filter(Batch.product_id == product_id)

    total = q.count()
    rows = (
        q.order_by(Batch.created_at.desc(), Batch.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return {"items": rows, "total": total, "limit": limit, "offset": offset}
