from __future__ import annotations

from ..extensions import db
from ..money import from_cents
from ..time_utils import to_utc_z

CHANNELS = ("cash", "gcash", "paymaya")


class CashChannel(db.Model):
    """
    Running balance of one payment bucket (cash drawer, GCash, PayMaya).

    balance_cents always equals the signed sum of the channel's
    CashTransaction rows. Balances are allowed to go negative through manual
    removals.
    """
    __tablename__ = "cash_channels"

    name = db.Column(db.String(16), primary_key=True)
    balance_cents = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "balance": from_cents(self.balance_cents),
            "balance_cents": self.balance_cents,
            "updated_at": to_utc_z(self.updated_at),
        }


class CashTransaction(db.Model):
    """Append-only channel log. amount_cents is always positive; direction gives the sign."""
    __tablename__ = "cash_transactions"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_cash_tx_amount_pos"),
        db.Index("ix_cash_tx_channel_occurred", "channel", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    channel = db.Column(db.String(16), db.ForeignKey("cash_channels.name"), nullable=False)

    # add | remove
    direction = db.Column(db.String(8), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=True)
    reference_sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    @property
    def signed_amount_cents(self) -> int:
        return self.amount_cents if self.direction == "add" else -self.amount_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "channel": self.channel,
            "payment_method": self.channel,
            "transaction_type": self.direction,
            "amount": from_cents(self.signed_amount_cents),
            "amount_cents": self.amount_cents,
            "description": self.reason,
            "reference_id": self.reference_sale_id,
            "timestamp": to_utc_z(self.occurred_at),
        }
