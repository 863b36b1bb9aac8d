# Overview: Price timeline writes (close the open interval, open the next) and price lookups.

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import Product, PriceHistory
from ..models.pricing import PRICE_FIELDS
from ..time_utils import normalize_datetime, utcnow, to_utc_z
from ..validation import (
    NotFoundError,
    ValidationError,
    ConflictError,
    require_amount,
    require_user,
    resolve_page,
)
from .ledger_service import get_locked_product
from .concurrency import run_in_transaction
"""
Price Timeline Invariants

- For one (product_id, price_type) there is at most one row with end_date NULL.
- Closed rows never overlap: each was closed at the start of its successor.
- The open row's value is mirrored on the product (PRICE_FIELDS).
- A new start_date earlier than the open row's start is refused (Conflict);
  the timeline is only ever extended forward.
"""


def _require_price_type(price_type: str) -> str:
    if price_type not in PRICE_FIELDS:
        raise ValidationError(
            f"price_type must be one of: {', '.join(PRICE_FIELDS)}",
            details={"price_type": price_type},
        )
    return price_type


def _open_entries_query(product_id: int, price_type: str):
    return (
        db.session.query(PriceHistory)
        .filter(
            PriceHistory.product_id == product_id,
            PriceHistory.price_type == price_type,
            PriceHistory.end_date.is_(None),
        )
        .order_by(PriceHistory.start_date.desc(), PriceHistory.id.desc())
    )


def register_price_change(
    *,
    product_id: int,
    price_type: str,
    value: float,
    user_id: int,
    start_date: datetime | None = None,
) -> PriceHistory:
    """
    Close the open interval for (product, price_type) at start_date, open a
    new one with the given value, and mirror it on the product. One
    transaction; a failure leaves the previous interval open.
    """
    _require_price_type(price_type)
    value = require_amount(value, "value")
    require_user(user_id)
    start = normalize_datetime(start_date) if start_date is not None else utcnow()

    def _op():
        # Serializes concurrent price changes of the same product
        product = get_locked_product(product_id)

        current = _open_entries_query(product.id, price_type).first()
        if current is not None:
            if start < current.start_date:
                raise ConflictError(
                    "start_date is earlier than the active price's start",
                    details={
                        "active_price_id": current.id,
                        "active_start_date": to_utc_z(current.start_date),
                        "start_date": to_utc_z(start),
                    },
                )
            current.end_date = start
            db.session.flush()

        entry = PriceHistory(
            product_id=product.id,
            user_id=user_id,
            price_type=price_type,
            value=value,
            start_date=start,
            end_date=None,
        )
        db.session.add(entry)
        setattr(product, PRICE_FIELDS[price_type], value)
        db.session.flush()
        return entry

    return run_in_transaction(_op, failure_message="Failed to register price change")


def get_price_history(
    *,
    product_id: int | None = None,
    price_type: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int | None = None,
    offset: int | None = None,
) -> dict:
    """Timeline search. Date bounds apply to the interval start; newest start first."""
    limit, offset = resolve_page(limit, offset)

    q = db.session.query(PriceHistory)
    if product_id is not None:
        q = q.filter(PriceHistory.product_id == product_id)
    if price_type is not None:
        _require_price_type(price_type)
        q = q.filter(PriceHistory.price_type == price_type)
    if start_date is not None:
        q = q.filter(PriceHistory.start_date >= start_date)
    if end_date is not None:
        q = q.filter(PriceHistory.start_date <= end_date)

    total = q.count()
    rows = (
        q.order_by(PriceHistory.start_date.desc(), PriceHistory.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return {"items": rows, "total": total, "limit": limit, "offset": offset}


def get_product_price_history(
    product_id: int, *, limit: int | None = None, offset: int | None = None
) -> dict:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})

    page = get_price_history(product_id=product_id, limit=limit, offset=offset)
    page["current_prices"] = {
        field: getattr(product, field) for field in PRICE_FIELDS.values()
    }
    return page


def get_price_at(product_id: int, price_type: str, at: datetime) -> PriceHistory | None:
    """The entry whose [start_date, end_date) contains at, or None."""
    _require_price_type(price_type)
    if db.session.get(Product, product_id) is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    at = normalize_datetime(at)

    return (
        db.session.query(PriceHistory)
        .filter(
            PriceHistory.product_id == product_id,
            PriceHistory.price_type == price_type,
            PriceHistory.start_date <= at,
            db.or_(PriceHistory.end_date.is_(None), PriceHistory.end_date > at),
        )
        .order_by(PriceHistory.start_date.desc(), PriceHistory.id.desc())
        .first()
    )


def find_overlapping_open_entries() -> list[dict]:
    """(product_id, price_type) pairs that have more than one open interval."""
    rows = (
        db.session.query(
            PriceHistory.product_id,
            PriceHistory.price_type,
            db.func.count(PriceHistory.id),
        )
        .filter(PriceHistory.end_date.is_(None))
        .group_by(PriceHistory.product_id, PriceHistory.price_type)
        .having(db.func.count(PriceHistory.id) > 1)
        .order_by(PriceHistory.product_id, PriceHistory.price_type)
        .all()
    )
    return [
        {"product_id": product_id, "price_type": price_type, "open_entries": count}
        for product_id, price_type, count in rows
    ]
