from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z, utcnow

SALE_STATUS_PENDING = "pending"  # reserved; the create path never produces it
SALE_STATUS_COMPLETED = "completed"
SALE_STATUS_CANCELLED = "cancelled"
SALE_STATUSES = (SALE_STATUS_PENDING, SALE_STATUS_COMPLETED, SALE_STATUS_CANCELLED)

SALE_TYPE_RETAIL = "retail"
SALE_TYPE_WHOLESALE = "wholesale"
SALE_TYPES = (SALE_TYPE_RETAIL, SALE_TYPE_WHOLESALE)


class Sale(db.Model):
    """
    Sale header.

    Written once, already "completed", at the end of the transaction that
    also writes its items and their stock movements. The only later change
    is the one-way transition to "cancelled".

    Invariants: total_amount == subtotal + tax_amount - discount_amount and
    subtotal == sum(item.total_price).
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_status_date", "status", "date"),
        db.Index("ix_sales_client_name", "client_name"),
        db.CheckConstraint("total_amount >= 0", name="ck_sales_total_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    client_name = db.Column(db.String(255), nullable=False)
    client_document = db.Column(db.String(64), nullable=True)
    client_phone = db.Column(db.String(32), nullable=True)
    client_email = db.Column(db.String(255), nullable=True)

    subtotal = db.Column(db.Float, nullable=False, default=0.0)
    tax_amount = db.Column(db.Float, nullable=False, default=0.0)
    discount_amount = db.Column(db.Float, nullable=False, default=0.0)
    total_amount = db.Column(db.Float, nullable=False, default=0.0)

    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_COMPLETED, index=True)
    sale_type = db.Column(db.String(16), nullable=False, default=SALE_TYPE_RETAIL)

    # External invoice / ticket number, free text
    document_number = db.Column(db.String(64), nullable=True)
    payment_method = db.Column(db.String(32), nullable=False)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", foreign_keys=[user_id])
    cancelled_by = db.relationship("User", foreign_keys=[cancelled_by_user_id])
    items = db.relationship(
        "SaleItem",
        back_populates="sale",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="SaleItem.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Sale id={self.id} status={self.status} total={self.total_amount}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "date": to_utc_z(self.date),
            "user_id": self.user_id,
            "user": self.user.to_summary() if self.user else None,
            "client_name": self.client_name,
            "client_document": self.client_document,
            "client_phone": self.client_phone,
            "client_email": self.client_email,
            "subtotal": self.subtotal,
            "tax_amount": self.tax_amount,
            "discount_amount": self.discount_amount,
            "total_amount": self.total_amount,
            "notes": self.notes,
            "status": self.status,
            "sale_type": self.sale_type,
            "document_number": self.document_number,
            "payment_method": self.payment_method,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancelled_by": self.cancelled_by.to_summary() if self.cancelled_by else None,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """
    One line of a sale. Prices and cost are snapshots taken when the sale was
    made; later price changes never touch them.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        db.CheckConstraint("discount >= 0 AND discount <= 100", name="ck_sale_items_discount_range"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Float, nullable=False)
    unit_cost = db.Column(db.Float, nullable=False, default=0.0)
    # Percentage, 0-100
    discount = db.Column(db.Float, nullable=False, default=0.0)
    total_price = db.Column(db.Float, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product": self.product.to_summary() if self.product else None,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "unit_cost": self.unit_cost,
            "discount": self.discount,
            "total_price": self.total_price,
            "created_at": to_utc_z(self.created_at),
        }
