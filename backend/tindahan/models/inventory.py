from __future__ import annotations

from ..extensions import db
from ..money import from_cents
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data and authoritative stock level.

    STOCK DESIGN:
    Product.quantity is the canonical on-hand total. Every change to it goes
    through services.stock_service under a row lock and appends a
    StockMovement in the same DB transaction.

    Low-stock and out-of-stock flags are derived on read from quantity and
    min_stock; they are never stored.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("barcode", name="uq_products_barcode"),
        db.CheckConstraint("quantity >= 0", name="ck_products_quantity_nonneg"),
        db.CheckConstraint("price_cents >= 0", name="ck_products_price_nonneg"),
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_category", "category"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)

    # Authoritative storage in cents (API speaks pesos)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=5)

    barcode = db.Column(db.String(64), nullable=True)
    category = db.Column(db.String(120), nullable=True)
    brand = db.Column(db.String(120), nullable=True)
    description = db.Column(db.Text, nullable=True)
    image_url = db.Column(db.String(512), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    batches = db.relationship(
        "ExpirationBatch",
        backref="product",
        cascade="all, delete-orphan",
        order_by="ExpirationBatch.expiration_date",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_out_of_stock(self) -> bool:
        return self.quantity == 0

    @property
    def is_low_stock(self) -> bool:
        return 0 < self.quantity <= self.min_stock

    @property
    def active_batches(self) -> list["ExpirationBatch"]:
        return [b for b in self.batches if b.is_active]

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "price": from_cents(self.price_cents),
            "price_cents": self.price_cents,
            "quantity": self.quantity,
            "min_stock": self.min_stock,
            "barcode": self.barcode,
            "category": self.category,
            "brand": self.brand,
            "description": self.description,
            "image_url": self.image_url,
            "is_low_stock": self.is_low_stock,
            "is_out_of_stock": self.is_out_of_stock,
            "expiration_batches": [b.to_dict() for b in self.active_batches],
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ExpirationBatch(db.Model):
    """
    A quantity of a product tagged with an expiration date.

    A batch is active while it has quantity left and has not been dismissed.
    Active batches are unique per (product_id, expiration_date); restocking an
    existing date adds to that batch.
    """
    __tablename__ = "expiration_batches"
    __table_args__ = (
        db.Index("ix_batches_product_date", "product_id", "expiration_date"),
        db.CheckConstraint("quantity >= 0", name="ck_batches_quantity_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    expiration_date = db.Column(db.Date, nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)

    # Set when the alert was cleared without pulling stock
    dismissed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def is_active(self) -> bool:
        return self.quantity > 0 and self.dismissed_at is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "expiration_date": self.expiration_date.isoformat(),
            "quantity": self.quantity,
            "dismissed_at": to_utc_z(self.dismissed_at),
        }


class StockMovement(db.Model):
    """
    Append-only stock audit trail.

    KINDS: CREATE, EDIT, RESTOCK, SALE, SALE_CANCEL, EXPIRY_PULL, EXPIRY_CLEAR, IMPORT.
    quantity_delta is signed; EXPIRY_CLEAR always records 0.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_movements_product_occurred", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Nulled when the product is deleted; the history stays
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)

    kind = db.Column(db.String(32), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)
    note = db.Column(db.String(255), nullable=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    expiration_date = db.Column(db.Date, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "kind": self.kind,
            "quantity_delta": self.quantity_delta,
            "note": self.note,
            "sale_id": self.sale_id,
            "expiration_date": self.expiration_date.isoformat() if self.expiration_date else None,
            "occurred_at": to_utc_z(self.occurred_at),
        }
