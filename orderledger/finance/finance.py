"""Order financial engine.

``compute_financials`` turns an order's raw commercial facts into its
realized profit and the signed movement it causes on the supplier's
balance. It is pure: no I/O, no globals, never raises on bad numbers.
"""

from dataclasses import dataclass, asdict
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, localcontext
from enum import Enum
from typing import Any, Mapping, Optional

from orderledger.config import FinanceConfig

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Largest decimal exponent a double can hold; bigger inputs count as infinite.
MAX_EXPONENT = 308


class OrderStatus(str, Enum):
    ACCEPTED = "Accepted"
    COMPLETED = "Completed"
    ON_BACKORDER = "OnBackorder"
    DECLINED = "Declined"
    RETURNED = "Returned"
    CANCELLED = "Cancelled"


ORDER_STATUS_VALUES = tuple(s.value for s in OrderStatus)

# Statuses for which an order may legitimately carry no sale amount.
SALE_EXEMPT_STATUSES = frozenset(
    {OrderStatus.DECLINED, OrderStatus.CANCELLED, OrderStatus.ON_BACKORDER}
)

# Labels written by the first deployments of the shop.
LEGACY_STATUS_LABELS = {
    "прийнято": OrderStatus.ACCEPTED,
    "виконано": OrderStatus.COMPLETED,
    "під замовлення": OrderStatus.ON_BACKORDER,
    "відмова": OrderStatus.DECLINED,
    "повернення": OrderStatus.RETURNED,
    "скасовано": OrderStatus.CANCELLED,
}

_STATUS_LOOKUP = {s.value.lower(): s for s in OrderStatus}
_STATUS_LOOKUP.update({s.name.lower(): s for s in OrderStatus})
_STATUS_LOOKUP.update(LEGACY_STATUS_LABELS)

# Canonical key -> accepted payload keys, first match wins.
FIELD_ALIASES = {
    "sale": ("sale",),
    "cost": ("cost",),
    "prosail": ("prosail",),
    "prosail_paid": ("prosail_paid", "prosailPaid"),
    "prepay": ("prepay",),
    "return_delivery": ("return_delivery", "returnDelivery"),
    "promo_pay": ("promo_pay", "promoPay"),
    "our_logistics": ("our_logistics", "ourLogistics", "our_ttn", "ourTTN"),
    "shipped_by_supplier": (
        "shipped_by_supplier",
        "shippedBySupplier",
        "from_supplier",
        "fromSupplier",
    ),
    "is_return": ("is_return", "isReturn"),
    "status": ("status",),
    "supplier_id": ("supplier_id", "supplierId"),
}


def to_amount(value: Any) -> Decimal:
    """Parse ``value`` as a number; anything unparseable or non-finite is 0.

    Args:
        value: Raw input (Decimal, int, float, numeric string, bool, None ...).

    Returns:
        Decimal: Parsed amount, unrounded.
    """
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, bool):
        amount = Decimal(int(value))
    elif isinstance(value, int):
        amount = Decimal(value)
    else:
        text = str(value).strip()
        if not text:
            return Decimal(0)
        try:
            amount = Decimal(text)
        except InvalidOperation:
            return Decimal(0)
    if not amount.is_finite() or amount.adjusted() > MAX_EXPONENT:
        return Decimal(0)
    return amount


def round_money(value: Any) -> Decimal:
    """Round to cents, halves away from zero. Negative zero becomes 0.00."""
    amount = to_amount(value)
    with localcontext() as ctx:
        # Room for every integer digit plus the two cents digits.
        ctx.prec = max(ctx.prec, amount.adjusted() + 3)
        rounded = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    if rounded == 0:
        return ZERO
    return rounded


def parse_status(value: Any) -> Optional[OrderStatus]:
    """Map a raw status to ``OrderStatus``.

    Blank means Accepted. Returns None for a label nobody recognizes.
    """
    if isinstance(value, OrderStatus):
        return value
    text = str(value).strip() if value is not None else ""
    if not text:
        return OrderStatus.ACCEPTED
    return _STATUS_LOOKUP.get(text.lower())


def get_field(payload: Mapping, name: str, default: Any = None) -> Any:
    for key in FIELD_ALIASES.get(name, (name,)):
        if key in payload:
            return payload[key]
    return default


@dataclass(frozen=True)
class FinancialResult:
    """Normalized financial snapshot of one order, ready to persist."""

    sale: Decimal
    cost: Decimal
    prosail: Decimal
    prosail_paid: Decimal
    prepay: Decimal
    return_delivery: Decimal
    profit: Decimal
    supplier_balance_delta: Decimal
    promo_pay: bool
    our_logistics: bool
    shipped_by_supplier: bool
    is_return: bool
    status: OrderStatus

    def as_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


def compute_financials(payload: Mapping, config: Optional[FinanceConfig] = None) -> FinancialResult:
    """Derive profit and supplier balance movement for one order.

    Precedence: a return (``is_return`` or status Returned) wins over every
    status; then Declined, OnBackorder and Cancelled have their own rules;
    Accepted, Completed and anything unrecognized use the normal sale rule.

    Args:
        payload (Mapping): Raw order fields. Legacy camelCase keys are accepted.
        config (FinanceConfig, optional): Financial constants. Defaults to
            ``FinanceConfig()``.

    Returns:
        FinancialResult: Rounded amounts, flags and status.
    """
    config = config or FinanceConfig()

    sale = round_money(get_field(payload, "sale"))
    cost = round_money(get_field(payload, "cost"))
    prosail = round_money(get_field(payload, "prosail"))
    prepay = round_money(get_field(payload, "prepay"))
    return_delivery = round_money(get_field(payload, "return_delivery"))

    promo_pay = bool(get_field(payload, "promo_pay"))
    our_logistics = bool(get_field(payload, "our_logistics"))
    shipped_by_supplier = bool(get_field(payload, "shipped_by_supplier"))

    status = parse_status(get_field(payload, "status")) or OrderStatus.ACCEPTED
    is_return = bool(get_field(payload, "is_return")) or status is OrderStatus.RETURNED

    supplier_delivery_cost = (
        to_amount(config.supplier_delivery_compensation) if shipped_by_supplier else Decimal(0)
    )

    if is_return:
        # Sale and pro-sale fee are voided; the fee already paid stays a loss.
        # A stored return only carries that fee in prosail_paid.
        fee_paid = prosail or round_money(get_field(payload, "prosail_paid"))
        return FinancialResult(
            sale=ZERO,
            cost=cost,
            prosail=ZERO,
            prosail_paid=fee_paid,
            prepay=prepay,
            return_delivery=return_delivery,
            profit=round_money(-(return_delivery + fee_paid)),
            supplier_balance_delta=round_money(-return_delivery - supplier_delivery_cost),
            promo_pay=promo_pay,
            our_logistics=our_logistics,
            shipped_by_supplier=shipped_by_supplier,
            is_return=True,
            status=status,
        )

    delivery_cost = to_amount(config.our_delivery_price) if our_logistics else Decimal(0)
    promo_fee = (
        sale * to_amount(config.promo_fee_percent) * CENT if promo_pay else Decimal(0)
    )

    if status is OrderStatus.DECLINED:
        profit = -(delivery_cost + return_delivery)
        delta = Decimal(0)
    elif status is OrderStatus.ON_BACKORDER:
        profit = prepay - prosail - delivery_cost
        delta = Decimal(0)
    elif status is OrderStatus.CANCELLED:
        profit = Decimal(0)
        delta = Decimal(0)
    else:
        profit = sale - cost - prosail - promo_fee - delivery_cost - supplier_delivery_cost
        if shipped_by_supplier:
            delta = sale - cost
        elif our_logistics or promo_pay:
            # We collected the money, so we owe the supplier the wholesale cost.
            delta = -cost
        else:
            delta = sale - cost

    return FinancialResult(
        sale=sale,
        cost=cost,
        prosail=prosail,
        prosail_paid=prosail,
        prepay=prepay,
        return_delivery=return_delivery,
        profit=round_money(profit),
        supplier_balance_delta=round_money(delta),
        promo_pay=promo_pay,
        our_logistics=our_logistics,
        shipped_by_supplier=shipped_by_supplier,
        is_return=False,
        status=status,
    )
