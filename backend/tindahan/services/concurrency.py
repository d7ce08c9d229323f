# Overview: Locking and retry primitives for the ledger store.

from __future__ import annotations

import time
from typing import Iterable

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Product, CashChannel


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() covers it there.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Start the write transaction up front on SQLite.

    SQLite has no row locks, so check-then-act sequences take the database
    write lock before their first read. Other backends rely on
    lock_for_update() and this is a no-op.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def lock_products(product_ids: Iterable[int]) -> dict[int, Product]:
    """
    Lock product rows in ascending id order and return them by id.

    The fixed order keeps two sales sharing products from deadlocking.
    Missing ids are simply absent from the result.
    """
    ids = sorted(set(product_ids))
    if not ids:
        return {}
    rows = lock_for_update(
        db.session.query(Product).filter(Product.id.in_(ids)).order_by(Product.id.asc())
    ).all()
    return {p.id: p for p in rows}


def lock_channels(names: Iterable[str]) -> dict[str, CashChannel]:
    """Lock cash channel rows in name order, creating any that do not exist yet."""
    wanted = sorted(set(names))
    rows = lock_for_update(
        db.session.query(CashChannel).filter(CashChannel.name.in_(wanted)).order_by(CashChannel.name.asc())
    ).all()
    found = {c.name: c for c in rows}
    for name in wanted:
        if name not in found:
            channel = CashChannel(name=name, balance_cents=0)
            db.session.add(channel)
            found[name] = channel
    if len(found) != len(rows):
        db.session.flush()
    return found


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other exception rolls the session back
    and propagates untouched.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc
