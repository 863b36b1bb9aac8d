from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from backoffice.time_utils import to_utc_z, utcnow
from backoffice.validation import ConflictError

# Stock direction per movement kind. quantity is always positive on the row;
# the kind alone decides whether it adds to or takes from the projection.
STOCK_IN = 1
STOCK_OUT = -1

MOVEMENT_KINDS = {
    "input": STOCK_IN,
    "output": STOCK_OUT,
    "adjustment_add": STOCK_IN,
    "adjustment_subtract": STOCK_OUT,
    "return_in": STOCK_IN,
    "return_out": STOCK_OUT,
    "transfer_in": STOCK_IN,
    "transfer_out": STOCK_OUT,
}

MOVEMENT_REASONS = (
    "purchase",
    "sale",
    "adjustment",
    "return",
    "transfer",
    "initial",
    "damaged",
    "expired",
    "other",
)


class Product(db.Model):
    """
    Product master data.

    Created and edited by the product catalogue component. The inventory and
    pricing services own four of its columns as projections:

    - stock: running sum of the stock ledger (StockMovement)
    - cost / retail_price / wholesale_price: value of the open PriceHistory
      entry for that price kind

    version_id is an optimistic counter. Every UPDATE of the row is issued as
    "... WHERE id = :id AND version_id = :seen", so a writer holding a stale
    copy matches zero rows and the flush fails instead of overwriting stock.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)

    cost = db.Column(db.Float, nullable=False, default=0.0)
    retail_price = db.Column(db.Float, nullable=False, default=0.0)
    wholesale_price = db.Column(db.Float, nullable=False, default=0.0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock}>"

    def is_low_stock(self) -> bool:
        return self.stock <= self.min_stock

    def to_summary(self) -> dict:
        return {"id": self.id, "sku": self.sku, "name": self.name}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "stock": self.stock,
            "min_stock": self.min_stock,
            "is_low_stock": self.is_low_stock(),
            "cost": self.cost,
            "retail_price": self.retail_price,
            "wholesale_price": self.wholesale_price,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Stock ledger entry. Append-only: rows are never updated or deleted,
    corrections are new movements.

    previous_stock/current_stock snapshot the product projection around the
    movement, so current_stock == previous_stock + direction * quantity.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        db.CheckConstraint("unit_cost >= 0", name="ck_stock_movements_unit_cost_non_negative"),
        db.Index("ix_stock_movements_product_created", "product_id", "created_at"),
        db.Index("ix_stock_movements_reference", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(32), nullable=False, index=True)
    reason = db.Column(db.String(32), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_cost = db.Column(db.Float, nullable=False, default=0.0)
    total_cost = db.Column(db.Float, nullable=False, default=0.0)

    note = db.Column(db.Text, nullable=True)
    document_reference = db.Column(db.String(128), nullable=True)
    reference_id = db.Column(db.String(64), nullable=True)

    previous_stock = db.Column(db.Integer, nullable=False)
    current_stock = db.Column(db.Integer, nullable=False)

    # Opaque tag; no per-location stock is kept
    location = db.Column(db.String(64), nullable=True)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    product = db.relationship("Product")
    user = db.relationship("User")

    @property
    def direction(self) -> int:
        return MOVEMENT_KINDS[self.movement_type]

    @property
    def signed_quantity(self) -> int:
        return self.direction * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "user_id": self.user_id,
            "movement_type": self.movement_type,
            "reason": self.reason,
            "quantity": self.quantity,
            "unit_cost": self.unit_cost,
            "total_cost": self.total_cost,
            "note": self.note,
            "document_reference": self.document_reference,
            "reference_id": self.reference_id,
            "previous_stock": self.previous_stock,
            "current_stock": self.current_stock,
            "location": self.location,
            "sale_id": self.sale_id,
            "batch_id": self.batch_id,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(StockMovement, "before_update")
def _refuse_movement_update(mapper, connection, target):
    raise ConflictError("stock movements are append-only and cannot be modified")


@event.listens_for(StockMovement, "before_delete")
def _refuse_movement_delete(mapper, connection, target):
    raise ConflictError("stock movements are append-only and cannot be deleted")


class Batch(db.Model):
    """
    A received lot of one product with its own unit cost.

    Receiving a batch also records an "input" movement pointing back at it,
    in the same transaction.
    """
    __tablename__ = "batches"
    __table_args__ = (
        db.CheckConstraint("initial_quantity > 0", name="ck_batches_initial_positive"),
        db.CheckConstraint("available_quantity >= 0", name="ck_batches_available_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    lot_code = db.Column(db.String(64), nullable=True)
    initial_quantity = db.Column(db.Integer, nullable=False)
    available_quantity = db.Column(db.Integer, nullable=False)
    unit_cost = db.Column(db.Float, nullable=False, default=0.0)
    note = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    product = db.relationship("Product", backref=db.backref("batches", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "user_id": self.user_id,
            "lot_code": self.lot_code,
            "initial_quantity": self.initial_quantity,
            "available_quantity": self.available_quantity,
            "unit_cost": self.unit_cost,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
