"""Database ORM models for the order ledger.

This module defines the SQLAlchemy models:
Supplier, Order, SupplierAdjustment and ManualMonth.
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    Enum,
    Date,
    DateTime,
    Numeric,
    Boolean,
    Text,
    ForeignKey,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import declarative_base

from orderledger.finance.finance import ORDER_STATUS_VALUES

Base = declarative_base()

ADJUSTMENT_KINDS = ("payout", "payment", "set")


class Supplier(Base):
    """ORM model for suppliers table.

    Attributes:
        id (int): Primary key.
        name (str): Name of the supplier.
        balance (Decimal): Cached running balance; positive means the supplier
            owes us, negative means we owe the supplier. Always rebuilt from
            orders and adjustments by the ledger.
    """

    __tablename__ = "suppliers"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    balance = Column(Numeric(14, 2), nullable=False, default=0)


class Order(Base):
    """ORM model for orders table.

    Monetary inputs are stored rounded to cents. ``profit`` and
    ``supplier_balance_delta`` are engine outputs cached for reporting;
    ``prosail_paid`` keeps the fee paid on the original sale when a return
    voids ``prosail``.
    """

    __tablename__ = "orders"
    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String)
    title = Column(Text)
    note = Column(Text)
    date = Column(Date, nullable=False, index=True)

    sale = Column(Numeric(12, 2), nullable=False, default=0)
    cost = Column(Numeric(12, 2), nullable=False, default=0)
    prosail = Column(Numeric(12, 2), nullable=False, default=0)
    prosail_paid = Column(Numeric(12, 2), nullable=False, default=0)
    prepay = Column(Numeric(12, 2), nullable=False, default=0)
    return_delivery = Column(Numeric(12, 2), nullable=False, default=0)

    supplier_id = Column(
        Integer, ForeignKey("suppliers.id"), nullable=False, index=True
    )

    promo_pay = Column(Boolean, nullable=False, default=False)
    our_logistics = Column(Boolean, nullable=False, default=False)
    shipped_by_supplier = Column(Boolean, nullable=False, default=False)
    is_return = Column(Boolean, nullable=False, default=False)

    status = Column(
        Enum(*ORDER_STATUS_VALUES, name="order_status"), nullable=False, default="Accepted"
    )
    traffic_source = Column(String)
    cancel_reason = Column(Text)
    completed_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    profit = Column(Numeric(12, 2), nullable=False, default=0)
    supplier_balance_delta = Column(Numeric(12, 2), nullable=False, default=0)


class SupplierAdjustment(Base):
    """ORM model for supplier_adjustments table. Rows are never edited.

    Attributes:
        id (int): Primary key.
        supplier_id (int): Foreign key referencing suppliers.id.
        delta (Decimal): Signed balance movement.
        kind (str): 'payout', 'payment' or 'set'.
        note (str): Free-text note.
        created_at (datetime): Insertion timestamp.
    """

    __tablename__ = "supplier_adjustments"
    id = Column(Integer, primary_key=True, index=True)
    supplier_id = Column(
        Integer, ForeignKey("suppliers.id"), nullable=False, index=True
    )
    delta = Column(Numeric(12, 2), nullable=False)
    kind = Column(Enum(*ADJUSTMENT_KINDS, name="adjustment_kind"), nullable=False)
    note = Column(Text)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)


class ManualMonth(Base):
    """ORM model for manual_months table: hand-entered totals for one month.

    Attributes:
        id (int): Primary key.
        month (str): Month key, 'YYYY-MM', unique.
        revenue (Decimal): Revenue for the month.
        profit (Decimal): Profit for the month.
        orders (int): Order count for the month.
    """

    __tablename__ = "manual_months"
    id = Column(Integer, primary_key=True, index=True)
    month = Column(String(7), nullable=False, unique=True)
    revenue = Column(Numeric(14, 2), nullable=False, default=0)
    profit = Column(Numeric(14, 2), nullable=False, default=0)
    orders = Column(Integer, nullable=False, default=0)
