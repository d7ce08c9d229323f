# Overview: Cash channel ledger; running balances for cash, GCash and PayMaya.

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..errors import ValidationError
from ..models import CashChannel, CashTransaction
from ..models.cash import CHANNELS
from ..time_utils import utcnow
from ..validation import MAX_AMOUNT_CENTS, clean_text
from .concurrency import begin_write, lock_channels, run_with_retry
"""
Cash Channel Invariants (authoritative)

- Three independent channels: cash, gcash, paymaya. Credit sales never touch them.
- Each change appends a CashTransaction with a positive amount and a direction;
  balance_cents always equals the signed sum of its channel's log.
- Negative balances are allowed: manual removals are never rejected for
  lack of funds.
- Channel rows are locked in name order; stock locks are never taken here.
"""

DIRECTIONS = ("add", "remove")


def _validate_channel(channel: str) -> None:
    if channel not in CHANNELS:
        raise ValidationError(
            f"Unknown cash channel: {channel}",
            fields={"channel": f"must be one of: {', '.join(CHANNELS)}"},
        )


def _validate_direction(direction: str) -> None:
    if direction not in DIRECTIONS:
        raise ValidationError(
            "transaction_type must be 'add' or 'remove'",
            fields={"transaction_type": "must be 'add' or 'remove'"},
        )


def _validate_amount(amount_cents, field: str = "amount") -> None:
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise ValidationError(f"{field} must be greater than 0", fields={field: "must be greater than 0"})
    if amount_cents > MAX_AMOUNT_CENTS:
        limit = f"₱{MAX_AMOUNT_CENTS / 100:,.2f}"
        raise ValidationError(f"{field} cannot exceed {limit}", fields={field: f"cannot exceed {limit}"})


def _clean_reason(reason) -> str | None:
    try:
        return clean_text(reason, "description")
    except ValueError as exc:
        raise ValidationError(str(exc), fields={"description": str(exc)})


def get_balances() -> dict[str, int]:
    """Balance in cents for every channel (missing rows read as 0)."""
    balances = {name: 0 for name in CHANNELS}
    for channel in db.session.query(CashChannel).all():
        balances[channel.name] = channel.balance_cents
    return balances


def ensure_channels() -> None:
    """Create the three channel rows if they do not exist. Caller commits."""
    existing = {name for (name,) in db.session.query(CashChannel.name).all()}
    for name in CHANNELS:
        if name not in existing:
            db.session.add(CashChannel(name=name, balance_cents=0))


def post_entries(
    amounts_by_channel: dict[str, int],
    direction: str,
    reason: str | None,
    reference_sale_id: int | None = None,
) -> list[CashTransaction]:
    """
    Apply one log entry per channel inside the caller's transaction.

    Used directly by the sale engine so the channel credit commits together
    with the stock decrement.
    """
    _validate_direction(direction)
    for channel, amount in amounts_by_channel.items():
        _validate_channel(channel)
        _validate_amount(amount)

    channels = lock_channels(amounts_by_channel.keys())
    now = utcnow()
    entries = []
    for name in sorted(amounts_by_channel):
        amount = amounts_by_channel[name]
        channel = channels[name]
        channel.balance_cents += amount if direction == "add" else -amount
        entry = CashTransaction(
            channel=name,
            direction=direction,
            amount_cents=amount,
            reason=reason,
            reference_sale_id=reference_sale_id,
            occurred_at=now,
        )
        db.session.add(entry)
        entries.append(entry)
    return entries


def apply_transaction(
    channel: str,
    direction: str,
    amount_cents: int,
    reason: str | None,
    reference_sale_id: int | None = None,
) -> dict[str, int]:
    """Single-channel add/remove. Returns the updated balances of all three channels."""
    return apply_update({channel: amount_cents}, direction, reason, reference_sale_id)


def apply_update(
    amounts_by_channel: dict[str, int],
    direction: str,
    reason: str | None,
    reference_sale_id: int | None = None,
) -> dict[str, int]:
    """
    Manual multi-channel update (POST /cash/update).

    Zero amounts are skipped; each remaining amount becomes its own log entry
    sharing reason and reference. All entries commit together.
    """
    _validate_direction(direction)
    reason = _clean_reason(reason)
    for channel, amount in amounts_by_channel.items():
        _validate_channel(channel)
        if isinstance(amount, int) and not isinstance(amount, bool) and amount < 0:
            raise ValidationError(
                f"{channel} amount must not be negative",
                fields={channel: "must not be negative"},
            )
    nonzero = {c: a for c, a in amounts_by_channel.items() if a}
    if not nonzero:
        raise ValidationError("Provide a non-zero amount for at least one channel")
    for channel, amount in nonzero.items():
        _validate_amount(amount, channel)

    def _op():
        begin_write()
        post_entries(nonzero, direction, reason, reference_sale_id)
        db.session.commit()
        return get_balances()

    balances = run_with_retry(_op)
    current_app.logger.info(
        "Cash %s %s (reason=%r ref=%s)", direction, nonzero, reason, reference_sale_id
    )
    return balances


def list_transactions(
    start: datetime | None = None,
    end: datetime | None = None,
    channel: str | None = None,
) -> list[CashTransaction]:
    q = db.session.query(CashTransaction)
    if start:
        q = q.filter(CashTransaction.occurred_at >= start)
    if end:
        q = q.filter(CashTransaction.occurred_at < end)
    if channel:
        _validate_channel(channel)
        q = q.filter(CashTransaction.channel == channel)
    return q.order_by(CashTransaction.occurred_at.desc(), CashTransaction.id.desc()).all()
