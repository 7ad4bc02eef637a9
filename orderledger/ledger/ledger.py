"""Supplier ledger: registry, append-only adjustments and balance recalculation.

A supplier's ``balance`` is a cache. It is always rebuilt as the sum of its
orders' ``supplier_balance_delta`` plus its adjustments' ``delta``, never
moved incrementally, so any drift heals on the next recalculation.
"""

from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from orderledger.db.models import ADJUSTMENT_KINDS, Order, Supplier, SupplierAdjustment
from orderledger.errors import NotFoundError, ValidationError
from orderledger.finance.finance import ZERO, round_money, to_amount
from orderledger.logging_config import get_logger
from orderledger.metrics import (
    adjustment_duration_seconds,
    ledger_recalc_duration_seconds,
    measure_duration,
)

logger = get_logger(__name__)

DEFAULT_ADJUSTMENT_NOTES = {
    "payout": "Payout to supplier",
    "payment": "Payment from supplier",
    "set": "Manual balance change",
}


def supplier_to_dict(supplier: Supplier) -> dict:
    return {
        "id": supplier.id,
        "name": supplier.name,
        "balance": round_money(supplier.balance),
    }


def create_supplier(db: Session, name: str) -> Supplier:
    """Register a supplier with a zero balance.

    Args:
        db (Session): SQLAlchemy Session object.
        name (str): Supplier name; surrounding whitespace is stripped.

    Returns:
        Supplier: The new supplier, flushed so its id is set.

    Raises:
        ValidationError: If the name is blank.
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("Supplier name is required")
    supplier = Supplier(name=name, balance=ZERO)
    db.add(supplier)
    db.flush()
    logger.info(f"Created supplier {supplier.id}: {name}")
    return supplier


def get_supplier(db: Session, supplier_id: int) -> Supplier:
    supplier = db.get(Supplier, supplier_id)
    if supplier is None:
        raise NotFoundError(f"Supplier {supplier_id} not found")
    return supplier


def list_suppliers(db: Session) -> List[Supplier]:
    return db.query(Supplier).order_by(Supplier.id.asc()).all()


def list_adjustments(db: Session, supplier_id: int) -> List[SupplierAdjustment]:
    """Return a supplier's adjustment history, oldest first."""
    get_supplier(db, supplier_id)
    return (
        db.query(SupplierAdjustment)
        .filter(SupplierAdjustment.supplier_id == supplier_id)
        .order_by(SupplierAdjustment.id.asc())
        .all()
    )


def _orders_total(db: Session, supplier_id: int) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(Order.supplier_balance_delta), 0))
        .filter(Order.supplier_id == supplier_id)
        .scalar()
    )
    return to_amount(total)


def _adjustments_total(db: Session, supplier_id: int) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(SupplierAdjustment.delta), 0))
        .filter(SupplierAdjustment.supplier_id == supplier_id)
        .scalar()
    )
    return to_amount(total)


@measure_duration(ledger_recalc_duration_seconds)
def recalc_supplier_balance(db: Session, supplier_id: int) -> Decimal:
    """Rebuild one supplier's balance from its orders and adjustments.

    The supplier row is locked first (FOR UPDATE, where the database
    supports it) so concurrent recalculations for the same supplier
    serialize instead of overwriting each other.

    Args:
        db (Session): SQLAlchemy Session object.
        supplier_id (int): Supplier to recalculate.

    Returns:
        Decimal: The new balance, rounded to cents.

    Raises:
        NotFoundError: If the supplier does not exist.
    """
    # Pending order/adjustment writes must be visible to the sums below.
    db.flush()
    supplier = (
        db.query(Supplier).filter(Supplier.id == supplier_id).with_for_update().first()
    )
    if supplier is None:
        raise NotFoundError(f"Supplier {supplier_id} not found")

    balance = round_money(_orders_total(db, supplier_id) + _adjustments_total(db, supplier_id))
    previous = round_money(supplier.balance)
    supplier.balance = balance
    db.flush()

    if previous != balance:
        logger.info(
            f"Supplier {supplier_id} balance {previous} -> {balance}",
            extra={"context": {"supplier_id": supplier_id, "balance": balance}},
        )
    return balance


def recalc_supplier_balances(db: Session, supplier_ids: Iterable[Optional[int]]) -> Dict[int, Decimal]:
    """Recalculate each distinct, non-empty supplier id once."""
    balances: Dict[int, Decimal] = {}
    for supplier_id in supplier_ids:
        if not supplier_id or supplier_id in balances:
            continue
        balances[supplier_id] = recalc_supplier_balance(db, supplier_id)
    return balances


def recalc_all_supplier_balances(db: Session) -> Dict[int, Decimal]:
    ids = [row.id for row in db.query(Supplier.id).order_by(Supplier.id.asc()).all()]
    return recalc_supplier_balances(db, ids)


@measure_duration(adjustment_duration_seconds)
def add_adjustment(db: Session, supplier_id: int, delta, kind: str, note: str = "") -> Decimal:
    """Append an immutable adjustment row and recalculate the balance.

    Args:
        db (Session): SQLAlchemy Session object.
        supplier_id (int): Supplier being adjusted.
        delta: Signed balance movement; rounded to cents before storage.
        kind (str): 'payout', 'payment' or 'set'.
        note (str): Free-text note.

    Returns:
        Decimal: The supplier's new balance.

    Raises:
        ValidationError: If ``kind`` is unknown.
        NotFoundError: If the supplier does not exist.
    """
    if kind not in ADJUSTMENT_KINDS:
        raise ValidationError(f"Invalid adjustment kind: {kind!r}")
    get_supplier(db, supplier_id)

    adjustment = SupplierAdjustment(
        supplier_id=supplier_id,
        delta=round_money(delta),
        kind=kind,
        note=note or "",
    )
    db.add(adjustment)
    db.flush()
    logger.info(f"Added {kind} adjustment {adjustment.delta} for supplier {supplier_id}")
    return recalc_supplier_balance(db, supplier_id)


def adjust_supplier_balance(db: Session, supplier_id: int, kind: str, amount, note: Optional[str] = None) -> Decimal:
    """Translate a user-facing balance operation into an adjustment delta.

    - ``payout``: we paid the supplier, balance moves up by ``amount``.
    - ``payment``: the supplier paid us, balance moves down by ``amount``.
    - ``set``: ``amount`` is the target balance; the stored delta is the
      difference from the freshly recalculated current balance.

    Returns:
        Decimal: The supplier's new balance.

    Raises:
        ValidationError: On an unknown kind or a non-positive payout/payment.
        NotFoundError: If the supplier does not exist.
    """
    if kind not in ADJUSTMENT_KINDS:
        raise ValidationError(f"Invalid adjustment kind: {kind!r}")
    note = note or DEFAULT_ADJUSTMENT_NOTES[kind]
    value = round_money(amount)

    if kind == "set":
        current = recalc_supplier_balance(db, supplier_id)
        return add_adjustment(db, supplier_id, value - current, kind, note)

    if value <= 0:
        raise ValidationError("Amount must be > 0")
    delta = value if kind == "payout" else -value
    return add_adjustment(db, supplier_id, delta, kind, note)
