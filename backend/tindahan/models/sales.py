from __future__ import annotations

from ..extensions import db
from ..money import from_cents
from ..time_utils import to_utc_z

PAYMENT_METHODS = ("cash", "credit", "gcash", "paymaya")

SALE_STATUSES = ("completed", "unpaid", "cancelled")


class Sale(db.Model):
    """
    Sale document.

    LIFECYCLE:
    - completed: paid at commit (cash, gcash, paymaya) or later via mark-paid
    - unpaid: committed on credit; stock is already decremented
    - cancelled: terminal; stock restored, lines kept as history

    total_cents is computed server-side from product prices at commit time and
    always equals the sum of line totals.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_status_created", "status", "created_at"),
        db.Index("ix_sales_customer", "customer_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    payment_method = db.Column(db.String(16), nullable=False)
    customer_name = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="completed", index=True)

    total_cents = db.Column(db.Integer, nullable=False, default=0)

    # Timestamps
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Cancellation audit trail
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship("SaleLine", backref="sale", order_by="SaleLine.id", lazy=True)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "payment_method": self.payment_method,
            "paymentMethod": self.payment_method,
            "customer_name": self.customer_name,
            "status": self.status,
            "total": from_cents(self.total_cents),
            "total_cents": self.total_cents,
            "created_at": to_utc_z(self.created_at),
            "timestamp": to_utc_z(self.created_at),
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancellation_reason": self.cancellation_reason,
            "version_id": self.version_id,
        }
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
        return data


class SaleLine(db.Model):
    """Line item with name and price snapshots taken at commit."""
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_lines_quantity_pos"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    # Nulled when the product is deleted; name/price snapshots remain
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)

    name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "price": from_cents(self.unit_price_cents),
            "unit_price_cents": self.unit_price_cents,
            "line_total": from_cents(self.line_total_cents),
            "line_total_cents": self.line_total_cents,
        }
