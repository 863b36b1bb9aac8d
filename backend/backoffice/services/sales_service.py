"""
Sales Service - single-transaction sale processing

create_sale() validates every line, locks the products involved, checks
stock for all lines, writes the header, items and one "output" movement
per line, and commits. A failure anywhere rolls all of it back, so a sale
header without items (or items without movements) is never visible.

cancel_sale() is the one-way completed -> cancelled transition; it restores
stock with one "return_in" movement per item.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy.orm import joinedload, selectinload

from ..extensions import db
from ..models import Sale, SaleItem, Product
from ..models.sales import (
    SALE_STATUS_COMPLETED,
    SALE_STATUS_CANCELLED,
    SALE_STATUSES,
    SALE_TYPE_RETAIL,
    SALE_TYPE_WHOLESALE,
    SALE_TYPES,
)
from ..time_utils import utcnow
from ..validation import (
    NotFoundError,
    ValidationError,
    ConflictError,
    InsufficientStockError,
    require_positive_int,
    require_amount,
    require_user,
    resolve_page,
)
from .ledger_service import record_movement
from .concurrency import lock_for_update, run_in_transaction


def _clean_text(value, field: str, *, required: bool = False) -> str | None:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    value = value.strip()
    if not value:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    return value


def _validate_lines(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("A sale needs at least one item")

    lines = []
    for idx, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{idx}] must be an object")
        product_id = require_positive_int(raw.get("product_id"), f"items[{idx}].product_id")
        quantity = require_positive_int(raw.get("quantity"), f"items[{idx}].quantity")

        unit_price = raw.get("unit_price")
        if unit_price is not None:
            unit_price = require_amount(unit_price, f"items[{idx}].unit_price")

        discount = require_amount(raw.get("discount", 0), f"items[{idx}].discount")
        if discount > 100:
            raise ValidationError(f"items[{idx}].discount must be between 0 and 100")

        lines.append({
            "product_id": product_id,
            "quantity": quantity,
            "unit_price": unit_price,
            "discount": discount,
        })
    return lines


def _to_cents(amount: float) -> float:
    return round(amount, 2)


def _default_unit_price(product: Product, sale_type: str) -> float:
    if sale_type == SALE_TYPE_WHOLESALE:
        return product.wholesale_price
    return product.retail_price


def _load_sale(sale_id: int) -> Sale | None:
    return (
        db.session.query(Sale)
        .options(
            selectinload(Sale.items).joinedload(SaleItem.product),
            joinedload(Sale.user),
            joinedload(Sale.cancelled_by),
        )
        .filter(Sale.id == sale_id)
        .first()
    )


def create_sale(
    *,
    user_id: int,
    client_name: str,
    items: list[dict],
    client_document: str | None = None,
    client_phone: str | None = None,
    client_email: str | None = None,
    tax_amount: float = 0,
    discount_amount: float = 0,
    notes: str | None = None,
    sale_type: str = SALE_TYPE_RETAIL,
    document_number: str | None = None,
    payment_method: str | None = None,
) -> Sale:
    """
    Create a completed sale and take its stock out.

    items: [{"product_id", "quantity", "unit_price"?, "discount"?}]. When
    unit_price is omitted the product's retail or wholesale price is used,
    per sale_type. discount is a percentage (0-100) of the line.

    Raises NotFoundError on the first unknown product, and
    InsufficientStockError with details {"items": [...]} listing every line
    that cannot be served once all lines have been checked.
    """
    require_user(user_id)
    client_name = _clean_text(client_name, "client_name", required=True)
    client_document = _clean_text(client_document, "client_document")
    client_phone = _clean_text(client_phone, "client_phone")
    client_email = _clean_text(client_email, "client_email")
    notes = _clean_text(notes, "notes")
    document_number = _clean_text(document_number, "document_number")
    payment_method = (
        _clean_text(payment_method, "payment_method")
        or current_app.config.get("DEFAULT_PAYMENT_METHOD", "efectivo")
    )

    if sale_type not in SALE_TYPES:
        raise ValidationError(f"sale_type must be one of: {', '.join(SALE_TYPES)}")
    tax_amount = require_amount(tax_amount, "tax_amount")
    discount_amount = require_amount(discount_amount, "discount_amount")
    lines = _validate_lines(items)

    def _op():
        # Unknown products abort before anything is locked or checked
        for line in lines:
            if db.session.get(Product, line["product_id"]) is None:
                raise NotFoundError(
                    "Product not found", details={"product_id": line["product_id"]}
                )

        # Lock in ascending id order so two sales never wait on each other in a cycle
        product_ids = sorted({line["product_id"] for line in lines})
        locked = lock_for_update(
            db.session.query(Product).filter(Product.id.in_(product_ids)).order_by(Product.id)
        ).all()
        products = {p.id: p for p in locked}
        if len(products) != len(product_ids):
            missing = next(pid for pid in product_ids if pid not in products)
            raise NotFoundError("Product not found", details={"product_id": missing})

        remaining = {pid: p.stock for pid, p in products.items()}
        insufficient = []
        for line in lines:
            product = products[line["product_id"]]
            available = remaining[product.id]
            if available < line["quantity"]:
                insufficient.append({
                    "product_id": product.id,
                    "product_name": product.name,
                    "requested": line["quantity"],
                    "available": available,
                })
            else:
                remaining[product.id] = available - line["quantity"]

        if insufficient:
            raise InsufficientStockError(
                "Insufficient stock for one or more items",
                details={"items": insufficient},
            )

        subtotal = 0.0
        priced = []
        for line in lines:
            product = products[line["product_id"]]
            unit_price = line["unit_price"]
            if unit_price is None:
                unit_price = _default_unit_price(product, sale_type)
            total_price = _to_cents(line["quantity"] * unit_price * (1 - line["discount"] / 100))
            subtotal += total_price
            priced.append((line, product, unit_price, total_price))

        subtotal = _to_cents(subtotal)
        total_amount = _to_cents(subtotal + tax_amount - discount_amount)
        if total_amount < 0:
            raise ValidationError(
                "Sale total cannot be negative",
                details={
                    "subtotal": subtotal,
                    "tax_amount": tax_amount,
                    "discount_amount": discount_amount,
                },
            )

        sale = Sale(
            date=utcnow(),
            user_id=user_id,
            client_name=client_name,
            client_document=client_document,
            client_phone=client_phone,
            client_email=client_email,
            subtotal=subtotal,
            tax_amount=tax_amount,
            discount_amount=discount_amount,
            total_amount=total_amount,
            notes=notes,
            status=SALE_STATUS_COMPLETED,
            sale_type=sale_type,
            document_number=document_number,
            payment_method=payment_method,
        )
        db.session.add(sale)
        db.session.flush()

        for line, product, unit_price, total_price in priced:
            db.session.add(SaleItem(
                sale_id=sale.id,
                product_id=product.id,
                quantity=line["quantity"],
                unit_price=unit_price,
                unit_cost=product.cost,
                discount=line["discount"],
                total_price=total_price,
            ))
            record_movement(
                product_id=product.id,
                movement_type="output",
                quantity=line["quantity"],
                unit_cost=product.cost,
                reason="sale",
                user_id=user_id,
                note=f"Sale #{sale.id}",
                document_reference=str(sale.id),
                reference_id=str(sale.id),
                sale_id=sale.id,
            )

        return sale.id

    sale_id = run_in_transaction(_op, failure_message="Failed to create sale")
    return _load_sale(sale_id)


def cancel_sale(sale_id: int, user_id: int) -> Sale:
    """
    Cancel a completed sale and put its stock back.

    Not idempotent: a second call fails with ConflictError. Fails closed
    with ConflictError, changing nothing, when an item's product is gone
    or inactive.
    """
    require_user(user_id)

    def _op():
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise NotFoundError("Sale not found", details={"sale_id": sale_id})
        if sale.status == SALE_STATUS_CANCELLED:
            raise ConflictError("Sale is already cancelled", details={"sale_id": sale.id})
        if sale.status != SALE_STATUS_COMPLETED:
            raise ConflictError(
                f"Cannot cancel a sale with status {sale.status}",
                details={"sale_id": sale.id, "status": sale.status},
            )

        for item in sale.items:
            product = db.session.get(Product, item.product_id)
            if product is None or not product.is_active:
                raise ConflictError(
                    "Cannot cancel sale: product is no longer available",
                    details={"sale_id": sale.id, "product_id": item.product_id},
                )

        sale.status = SALE_STATUS_CANCELLED
        sale.cancelled_at = utcnow()
        sale.cancelled_by_user_id = user_id

        for item in sale.items:
            record_movement(
                product_id=item.product_id,
                movement_type="return_in",
                quantity=item.quantity,
                unit_cost=item.unit_cost,
                reason="return",
                user_id=user_id,
                note=f"Cancellation of sale #{sale.id}",
                document_reference=str(sale.id),
                reference_id=str(sale.id),
                sale_id=sale.id,
            )

        db.session.flush()
        return sale.id

    cancelled_id = run_in_transaction(_op, failure_message="Failed to cancel sale")
    return _load_sale(cancelled_id)


def get_sale_by_id(sale_id: int) -> Sale:
    sale = _load_sale(sale_id)
    if sale is None:
        raise NotFoundError("Sale not found", details={"sale_id": sale_id})
    return sale


def get_sales(
    *,
    user_id: int | None = None,
    client_name: str | None = None,
    status: str | None = None,
    sale_type: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int | None = None,
    offset: int | None = None,
) -> dict:
    """Sale search, newest first. client_name matches case-insensitively anywhere in the name."""
    limit, offset = resolve_page(limit, offset)

    q = db.session.query(Sale)
    if user_id is not None:
        q = q.filter(Sale.user_id == user_id)
    if client_name:
        q = q.filter(Sale.client_name.icontains(client_name.strip(), autoescape=True))
    if status is not None:
        if status not in SALE_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(SALE_STATUSES)}")
        q = q.filter(Sale.status == status)
    if sale_type is not None:
        if sale_type not in SALE_TYPES:
            raise ValidationError(f"sale_type must be one of: {', '.join(SALE_TYPES)}")
        q = q.filter(Sale.sale_type == sale_type)
    if start_date is not None:
        q = q.filter(Sale.date >= start_date)
    if end_date is not None:
        q = q.filter(Sale.date <= end_date)

    total = q.count()
    rows = (
        q.options(
            selectinload(Sale.items).joinedload(SaleItem.product),
            joinedload(Sale.user),
            joinedload(Sale.cancelled_by),
        )
        .order_by(Sale.date.desc(), Sale.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return {"items": rows, "total": total, "limit": limit, "offset": offset}
