"""Order lifecycle: validation, persistence and ledger recalculation.

Every write of an order's financial inputs goes through ``_apply_financials``
so the cached ``profit`` and ``supplier_balance_delta`` columns can never
disagree with the engine. Each mutation ends with a recalculation of the
affected supplier balance(s) in the same session.
"""

import re
import time
from datetime import date, datetime
from typing import List, Mapping, Optional

import pandas as pd
from sqlalchemy.orm import Session

from orderledger.config import FinanceConfig
from orderledger.db.models import Order, Supplier
from orderledger.errors import NotFoundError, ValidationError
from orderledger.finance.finance import (
    SALE_EXEMPT_STATUSES,
    FinancialResult,
    OrderStatus,
    compute_financials,
    get_field,
    parse_status,
    round_money,
    to_amount,
)
from orderledger.ledger.ledger import recalc_supplier_balance, recalc_supplier_balances
from orderledger.logging_config import get_logger
from orderledger.metrics import (
    measure_duration,
    normalize_duration_seconds,
    order_create_duration_seconds,
    order_delete_duration_seconds,
    order_update_duration_seconds,
    validation_failures_total,
)

logger = get_logger(__name__)

_ISO_PREFIX = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_DOTTED = re.compile(r"^(\d{2})\.(\d{2})\.(\d{4})$")


def generate_order_number() -> str:
    """Default display number: '№' followed by the epoch time in milliseconds."""
    return f"№{int(time.time() * 1000)}"


def normalize_date(value) -> Optional[date]:
    """Parse an order date, dropping any time component.

    Accepts date/datetime objects, 'YYYY-MM-DD' (optionally followed by a
    time), 'DD.MM.YYYY', and anything else pandas can parse.

    Returns:
        Optional[date]: The calendar date, or None when unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None
    try:
        match = _ISO_PREFIX.match(text)
        if match:
            return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        match = _DOTTED.match(text)
        if match:
            return date(int(match.group(3)), int(match.group(2)), int(match.group(1)))
    except ValueError:
        return None

    parsed = pd.to_datetime(text, errors="coerce")
    if pd.isna(parsed):
        return None
    return parsed.date()


def _supplier_id(payload: Mapping) -> Optional[int]:
    raw = get_field(payload, "supplier_id")
    if raw is None or isinstance(raw, bool):
        return None
    amount = to_amount(raw)
    if amount <= 0 or amount != amount.to_integral_value():
        return None
    return int(amount)


def _reject(message: str):
    validation_failures_total.inc()
    logger.warning(f"Order rejected: {message}")
    raise ValidationError(message)


def validate_order(db: Session, payload: Mapping) -> date:
    """Check an order payload before anything is written.

    Args:
        db (Session): SQLAlchemy Session object.
        payload (Mapping): Raw order fields.

    Returns:
        date: The normalized order date.

    Raises:
        ValidationError: On a bad date, a missing or unknown supplier, an
            unknown status, or a missing sale where one is required.
    """
    order_date = normalize_date(payload.get("date"))
    if order_date is None:
        _reject("Invalid date")

    supplier_id = _supplier_id(payload)
    if supplier_id is None:
        _reject("Supplier is required")

    raw_status = get_field(payload, "status")
    status = parse_status(raw_status)
    if status is None:
        _reject(f"Unknown status: {raw_status!r}")

    is_return = bool(get_field(payload, "is_return")) or status is OrderStatus.RETURNED
    if not is_return and status not in SALE_EXEMPT_STATUSES:
        if to_amount(get_field(payload, "sale")) <= 0:
            _reject("Sale must be > 0")

    if db.get(Supplier, supplier_id) is None:
        _reject(f"Supplier {supplier_id} not found")

    return order_date


def _text(payload: Mapping, key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _apply_financials(order: Order, result: FinancialResult) -> None:
    order.sale = result.sale
    order.cost = result.cost
    order.prosail = result.prosail
    order.prosail_paid = result.prosail_paid
    order.prepay = result.prepay
    order.return_delivery = result.return_delivery
    order.promo_pay = result.promo_pay
    order.our_logistics = result.our_logistics
    order.shipped_by_supplier = result.shipped_by_supplier
    order.is_return = result.is_return
    order.status = result.status.value
    order.profit = result.profit
    order.supplier_balance_delta = result.supplier_balance_delta


def _apply_completion(order: Order, previous_status: Optional[str]) -> None:
    completed = OrderStatus.COMPLETED.value
    if order.status == completed and previous_status != completed:
        order.completed_at = datetime.now()
    elif order.status != completed:
        order.completed_at = None


def _apply_details(order: Order, payload: Mapping, order_date: date) -> None:
    order.date = order_date
    order.title = _text(payload, "title")
    order.note = _text(payload, "note")
    order.traffic_source = _text(payload, "traffic_source")
    order.cancel_reason = _text(payload, "cancel_reason")


def order_payload(order: Order) -> dict:
    """Engine input rebuilt from a stored row."""
    return {
        "sale": order.sale,
        "cost": order.cost,
        "prosail": order.prosail,
        "prosail_paid": order.prosail_paid,
        "prepay": order.prepay,
        "return_delivery": order.return_delivery,
        "promo_pay": order.promo_pay,
        "our_logistics": order.our_logistics,
        "shipped_by_supplier": order.shipped_by_supplier,
        "is_return": order.is_return,
        "status": order.status,
    }


def order_to_dict(order: Order) -> dict:
    return {
        "id": order.id,
        "order_number": order.order_number,
        "title": order.title,
        "note": order.note,
        "date": order.date.isoformat() if order.date else None,
        "sale": round_money(order.sale),
        "cost": round_money(order.cost),
        "prosail": round_money(order.prosail),
        "prosail_paid": round_money(order.prosail_paid),
        "prepay": round_money(order.prepay),
        "return_delivery": round_money(order.return_delivery),
        "supplier_id": order.supplier_id,
        "promo_pay": bool(order.promo_pay),
        "our_logistics": bool(order.our_logistics),
        "shipped_by_supplier": bool(order.shipped_by_supplier),
        "is_return": bool(order.is_return),
        "status": order.status,
        "traffic_source": order.traffic_source,
        "cancel_reason": order.cancel_reason,
        "completed_at": order.completed_at.isoformat() if order.completed_at else None,
        "profit": round_money(order.profit),
        "supplier_balance_delta": round_money(order.supplier_balance_delta),
    }


def get_order(db: Session, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def list_orders(db: Session, start=None, end=None) -> List[Order]:
    """Orders in an optional inclusive date range, newest first."""
    query = db.query(Order)
    start_date = normalize_date(start)
    end_date = normalize_date(end)
    if start_date:
        query = query.filter(Order.date >= start_date)
    if end_date:
        query = query.filter(Order.date <= end_date)
    return query.order_by(Order.date.desc(), Order.id.desc()).all()


@measure_duration(order_create_duration_seconds)
def create_order(db: Session, payload: Mapping, config: Optional[FinanceConfig] = None) -> Order:
    """Validate, compute and insert an order, then recalculate its supplier.

    Args:
        db (Session): SQLAlchemy Session object.
        payload (Mapping): Raw order fields.
        config (FinanceConfig, optional): Financial constants; read from the
            environment when omitted.

    Returns:
        Order: The persisted order.

    Raises:
        ValidationError: If the payload is rejected. Nothing is written.
    """
    order_date = validate_order(db, payload)
    result = compute_financials(payload, config or FinanceConfig.from_env())

    order = Order(
        order_number=_text(payload, "order_number") or generate_order_number(),
        supplier_id=_supplier_id(payload),
    )
    _apply_details(order, payload, order_date)
    _apply_financials(order, result)
    _apply_completion(order, None)
    db.add(order)
    db.flush()

    recalc_supplier_balance(db, order.supplier_id)
    logger.info(
        f"Created order {order.id} for supplier {order.supplier_id}",
        extra={"context": {"profit": order.profit, "delta": order.supplier_balance_delta}},
    )
    return order


@measure_duration(order_update_duration_seconds)
def update_order(db: Session, order_id: int, payload: Mapping, config: Optional[FinanceConfig] = None) -> Order:
    """Replace an order's fields and recompute its financials.

    When the order moves to another supplier both the old and the new
    supplier are recalculated, so the old one loses the order's
    contribution and the new one gains it.

    Raises:
        NotFoundError: If the order does not exist.
        ValidationError: If the payload is rejected. Nothing is written.
    """
    order = get_order(db, order_id)
    order_date = validate_order(db, payload)
    result = compute_financials(payload, config or FinanceConfig.from_env())

    old_supplier_id = order.supplier_id
    previous_status = order.status

    order.supplier_id = _supplier_id(payload)
    order.order_number = _text(payload, "order_number") or order.order_number or generate_order_number()
    _apply_details(order, payload, order_date)
    _apply_financials(order, result)
    _apply_completion(order, previous_status)
    db.flush()

    recalc_supplier_balances(db, [old_supplier_id, order.supplier_id])
    if old_supplier_id != order.supplier_id:
        logger.info(f"Order {order.id} moved from supplier {old_supplier_id} to {order.supplier_id}")
    logger.info(f"Updated order {order.id}")
    return order


@measure_duration(order_delete_duration_seconds)
def delete_order(db: Session, order_id: int) -> None:
    """Delete an order and remove its contribution from the supplier balance.

    Raises:
        NotFoundError: If the order does not exist.
    """
    order = get_order(db, order_id)
    supplier_id = order.supplier_id
    db.delete(order)
    db.flush()
    recalc_supplier_balance(db, supplier_id)
    logger.info(f"Deleted order {order_id} of supplier {supplier_id}")


@measure_duration(normalize_duration_seconds)
def normalize_existing_orders(db: Session, config: Optional[FinanceConfig] = None) -> int:
    """Recompute every stored order from its own row and rebuild balances.

    Dates are normalized, financial columns are rewritten through the same
    path as create/update, then every touched supplier is recalculated.
    Running it twice leaves the data unchanged.

    Returns:
        int: Number of orders processed.
    """
    config = config or FinanceConfig.from_env()
    touched = []
    orders = db.query(Order).order_by(Order.id.asc()).all()
    for order in orders:
        order.date = normalize_date(order.date) or order.date
        _apply_financials(order, compute_financials(order_payload(order), config))
        touched.append(order.supplier_id)
    db.flush()

    recalc_supplier_balances(db, touched)
    logger.info(f"Normalized {len(orders)} orders across {len(set(touched))} suppliers")
    return len(orders)
