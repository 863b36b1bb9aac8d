from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z, utcnow

# Price kind -> Product column that mirrors the open entry's value
PRICE_FIELDS = {
    "cost": "cost",
    "retail": "retail_price",
    "wholesale": "wholesale_price",
}


class PriceHistory(db.Model):
    """
    One validity interval [start_date, end_date) of a product price.

    For a (product_id, price_type) pair at most one row has end_date NULL:
    that row is the current price. The rule is kept by the price history
    service, which closes the open row before inserting its successor; the
    schema does not enforce it.
    """
    __tablename__ = "price_history"
    __table_args__ = (
        db.CheckConstraint("value >= 0", name="ck_price_history_value_non_negative"),
        db.Index("ix_price_history_product_type_end", "product_id", "price_type", "end_date"),
        db.Index("ix_price_history_product_type_start", "product_id", "price_type", "start_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    price_type = db.Column(db.String(16), nullable=False)
    value = db.Column(db.Float, nullable=False)

    start_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    end_date = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")
    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product": self.product.to_summary() if self.product else None,
            "user_id": self.user_id,
            "user": self.user.to_summary() if self.user else None,
            "price_type": self.price_type,
            "value": self.value,
            "start_date": to_utc_z(self.start_date),
            "end_date": to_utc_z(self.end_date) if self.end_date else None,
            "created_at": to_utc_z(self.created_at),
        }
