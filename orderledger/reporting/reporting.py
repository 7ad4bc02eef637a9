"""Revenue, profit and supplier debt statistics.

Everything here reads the cached ``profit`` / ``supplier_balance_delta``
columns and supplier balances; nothing is recomputed. Amounts are returned as
floats rounded to cents, ready for JSON.
"""

import re
from datetime import date, timedelta
from typing import Iterable, List, Optional

import pandas as pd
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from orderledger.db.models import ManualMonth, Order, Supplier
from orderledger.errors import ValidationError
from orderledger.finance.finance import round_money, to_amount
from orderledger.logging_config import get_logger
from orderledger.metrics import measure_duration, report_duration_seconds
from orderledger.orders.orders import normalize_date

logger = get_logger(__name__)

DEFAULT_DAILY_PLAN = 3000
DEFAULT_WEEKENDS = (0,)
DEFAULT_LOOKBACK_DAYS = 60
TOP_SUPPLIERS = 7
UNKNOWN_SOURCE = "Unknown"

_MONTH = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

# Dialects with INSERT ... ON CONFLICT DO UPDATE.
_UPSERT_INSERTS = {"postgresql": postgresql_insert, "sqlite": sqlite_insert}


def _money(value) -> float:
    return float(round_money(value))


def _margin(revenue, profit) -> float:
    revenue = to_amount(revenue)
    if not revenue:
        return 0.0
    return _money(to_amount(profit) / revenue * 100)


def _weekday(day: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return day.isoweekday() % 7


def _date_filtered(query, start=None, end=None):
    start_date = normalize_date(start)
    end_date = normalize_date(end)
    if start_date:
        query = query.filter(Order.date >= start_date)
    if end_date:
        query = query.filter(Order.date <= end_date)
    return query


def _orders_frame(db: Session, start=None, end=None) -> pd.DataFrame:
    rows = _date_filtered(
        db.query(Order.date, Order.sale, Order.profit, Order.traffic_source), start, end
    ).all()
    df = pd.DataFrame(rows, columns=["date", "sale", "profit", "traffic_source"])
    df["sale"] = df["sale"].map(lambda v: float(to_amount(v))).astype(float)
    df["profit"] = df["profit"].map(lambda v: float(to_amount(v))).astype(float)
    df["traffic_source"] = df["traffic_source"].fillna(UNKNOWN_SOURCE)
    return df


@measure_duration(report_duration_seconds)
def total_revenue(db: Session, start=None, end=None) -> dict:
    """Sum of sales, returns excluded."""
    total = (
        _date_filtered(db.query(func.coalesce(func.sum(Order.sale), 0)), start, end)
        .filter(Order.is_return.is_(False))
        .scalar()
    )
    return {"total_sales": _money(total)}


@measure_duration(report_duration_seconds)
def total_profit(db: Session, start=None, end=None) -> dict:
    total = _date_filtered(db.query(func.coalesce(func.sum(Order.profit), 0)), start, end).scalar()
    return {"total_profit": _money(total)}


@measure_duration(report_duration_seconds)
def supplier_debts(db: Session) -> dict:
    """What suppliers owe us and what we owe suppliers, both as positive figures.

    ``net_balance`` is the sum of all balances: positive when suppliers owe us
    more than we owe them.
    """
    owe_us = (
        db.query(func.coalesce(func.sum(Supplier.balance), 0))
        .filter(Supplier.balance > 0)
        .scalar()
    )
    we_owe = (
        db.query(func.coalesce(func.sum(Supplier.balance), 0))
        .filter(Supplier.balance < 0)
        .scalar()
    )
    return {
        "suppliers_owe": _money(owe_us),
        "we_owe": _money(abs(to_amount(we_owe))),
        "net_balance": _money(to_amount(owe_us) + to_amount(we_owe)),
    }


@measure_duration(report_duration_seconds)
def daily_stats(
    db: Session,
    plan=DEFAULT_DAILY_PLAN,
    weekends: Optional[Iterable[int]] = None,
    start=None,
    end=None,
    today: Optional[date] = None,
) -> dict:
    """Per-day results against a daily profit plan.

    Args:
        db (Session): SQLAlchemy Session object.
        plan: Daily profit target; 0 or unparseable falls back to 3000.
        weekends (Iterable[int], optional): Non-working weekdays, 0 = Sunday.
            Values outside 0-6 are ignored; empty means Sunday only.
        start, end: Inclusive date range. ``end`` defaults to ``today``,
            ``start`` to 60 days before the current date.
        today (date, optional): Reference day, for tests. Defaults to
            ``end`` or the current date.

    Returns:
        dict: ``plan_target``, ``shortfall`` (unmet plan summed over past
        working days that had orders), ``today``, ``month`` and ``days``.
    """
    plan_target = to_amount(plan) or to_amount(DEFAULT_DAILY_PLAN)
    weekend_set = {int(d) for d in (weekends or ()) if str(d).strip().isdigit() and 0 <= int(d) <= 6}
    if not weekend_set:
        weekend_set = set(DEFAULT_WEEKENDS)

    end_date = normalize_date(end)
    today = today or end_date or date.today()
    end_date = end_date or today
    start_date = normalize_date(start) or (date.today() - timedelta(days=DEFAULT_LOOKBACK_DAYS))

    df = _orders_frame(db, start_date, end_date)
    days = []
    by_date = {}
    if not df.empty:
        df["date"] = df["date"].map(normalize_date)
        df = df.dropna(subset=["date"])
        grouped = df.groupby("date").agg(
            revenue=("sale", "sum"), profit=("profit", "sum"), count=("sale", "size")
        )
        for day, row in grouped.sort_index().iterrows():
            by_date[day] = {
                "revenue": row["revenue"],
                "profit": row["profit"],
                "count": int(row["count"]),
                "sources": {},
            }
        for (day, source), count in df.groupby(["date", "traffic_source"]).size().items():
            by_date[day]["sources"][source] = int(count)

    shortfall = to_amount(0)
    for day, data in by_date.items():
        if day >= today or _weekday(day) in weekend_set:
            continue
        shortfall += max(to_amount(0), plan_target - to_amount(data["profit"]))

    today_data = by_date.get(today, {"revenue": 0, "profit": 0, "count": 0, "sources": {}})
    remaining = max(to_amount(0), plan_target - to_amount(today_data["profit"]) + shortfall)

    working_days = sum(
        1
        for offset in range((end_date - start_date).days + 1)
        if _weekday(start_date + timedelta(days=offset)) not in weekend_set
    )

    for day, data in by_date.items():
        days.append(
            {
                "date": day.isoformat(),
                "revenue": _money(data["revenue"]),
                "profit": _money(data["profit"]),
                "count": data["count"],
                "margin": _margin(data["revenue"], data["profit"]),
                "is_sunday": _weekday(day) == 0,
                "is_weekend": _weekday(day) in weekend_set,
                "sources": data["sources"],
            }
        )

    return {
        "plan_target": _money(plan_target),
        "shortfall": _money(shortfall),
        "today": {
            "date": today.isoformat(),
            "revenue": _money(today_data["revenue"]),
            "profit": _money(today_data["profit"]),
            "count": today_data["count"],
            "remaining": _money(remaining),
            "sources": today_data["sources"],
        },
        "month": {
            "expected": _money(plan_target * working_days),
            "revenue": _money(sum(d["revenue"] for d in by_date.values())),
            "profit": _money(sum(d["profit"] for d in by_date.values())),
            "orders": sum(d["count"] for d in by_date.values()),
            "working_days": working_days,
        },
        "days": days,
    }


def _monthly_rows(db: Session, start=None, end=None) -> List[dict]:
    df = _orders_frame(db, start, end)
    monthly = {}
    if not df.empty:
        df["label"] = pd.to_datetime(df["date"]).dt.strftime("%Y-%m")
        grouped = df.groupby("label").agg(
            revenue=("sale", "sum"), profit=("profit", "sum"), orders=("sale", "size")
        )
        for label, row in grouped.iterrows():
            monthly[label] = {
                "label": label,
                "revenue": row["revenue"],
                "profit": row["profit"],
                "orders": int(row["orders"]),
            }

    # Hand-entered months replace whatever the orders table has for them.
    for manual in db.query(ManualMonth).order_by(ManualMonth.month.asc()).all():
        monthly[manual.month] = {
            "label": manual.month,
            "revenue": manual.revenue,
            "profit": manual.profit,
            "orders": int(manual.orders or 0),
        }

    start_date = normalize_date(start)
    end_date = normalize_date(end)
    rows = []
    for label in sorted(monthly):
        first_day = date.fromisoformat(f"{label}-01")
        if start_date and first_day < start_date:
            continue
        if end_date and first_day > end_date:
            continue
        m = monthly[label]
        rows.append(
            {
                "label": label,
                "revenue": _money(m["revenue"]),
                "profit": _money(m["profit"]),
                "orders": m["orders"],
                "avg_check": _money(to_amount(m["revenue"]) / m["orders"]) if m["orders"] else 0.0,
                "margin": _margin(m["revenue"], m["profit"]),
            }
        )
    return rows


@measure_duration(report_duration_seconds)
def stats_series(db: Session, start=None, end=None) -> dict:
    """Chart series: daily totals, monthly totals, supplier balances and performance."""
    df = _orders_frame(db, start, end)
    revenue_profit = []
    if not df.empty:
        daily = df.groupby("date").agg(revenue=("sale", "sum"), profit=("profit", "sum"))
        for day, row in daily.sort_index().iterrows():
            revenue_profit.append(
                {
                    "label": day.isoformat() if hasattr(day, "isoformat") else str(day),
                    "revenue": _money(row["revenue"]),
                    "profit": _money(row["profit"]),
                }
            )

    suppliers = (
        db.query(Supplier.name, Supplier.balance)
        .order_by(Supplier.balance.desc())
        .limit(TOP_SUPPLIERS)
        .all()
    )

    perf = (
        db.query(
            Supplier.name,
            func.coalesce(func.sum(Order.sale), 0).label("revenue"),
            func.coalesce(func.sum(Order.profit), 0).label("profit"),
        )
        .outerjoin(Order, Order.supplier_id == Supplier.id)
        .group_by(Supplier.id, Supplier.name)
        .all()
    )
    suppliers_perf = sorted(
        (
            {
                "name": row.name,
                "revenue": _money(row.revenue),
                "profit": _money(row.profit),
                "margin": _margin(row.revenue, row.profit),
            }
            for row in perf
        ),
        key=lambda r: r["profit"],
        reverse=True,
    )

    revenue = to_amount(df["sale"].sum()) if not df.empty else to_amount(0)
    profit = to_amount(df["profit"].sum()) if not df.empty else to_amount(0)
    orders = int(len(df))

    return {
        "revenue_profit": revenue_profit,
        "monthly": _monthly_rows(db, start, end),
        "suppliers": [{"name": s.name, "balance": _money(s.balance)} for s in suppliers],
        "suppliers_perf": suppliers_perf,
        "overall": {
            "revenue": _money(revenue),
            "profit": _money(profit),
            "orders": orders,
            "avg_check": _money(revenue / orders) if orders else 0.0,
        },
    }


def upsert_manual_month(db: Session, month: str, revenue=0, profit=0, orders=0) -> ManualMonth:
    """Insert or replace the hand-entered totals for one 'YYYY-MM' month.

    Raises:
        ValidationError: If ``month`` is not 'YYYY-MM'.
    """
    month = (month or "").strip()
    if not _MONTH.match(month):
        raise ValidationError("Month must be in YYYY-MM format")

    values = {
        "revenue": round_money(revenue),
        "profit": round_money(profit),
        "orders": int(to_amount(orders)),
    }

    insert = _UPSERT_INSERTS.get(db.get_bind().dialect.name)
    if insert is None:
        record = db.query(ManualMonth).filter_by(month=month).first()
        if record is None:
            record = ManualMonth(month=month)
            db.add(record)
        for key, value in values.items():
            setattr(record, key, value)
        db.flush()
    else:
        stmt = insert(ManualMonth).values(month=month, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[ManualMonth.month],
            set_={key: stmt.excluded[key] for key in values},
        )
        db.flush()
        db.execute(stmt)
        # The row may already sit in the identity map with the old totals.
        record = (
            db.query(ManualMonth).filter_by(month=month).populate_existing().one()
        )
    logger.info(f"Saved manual month {month}")
    return record


def list_manual_months(db: Session) -> List[dict]:
    return [
        {
            "month": m.month,
            "revenue": _money(m.revenue),
            "profit": _money(m.profit),
            "orders": m.orders,
        }
        for m in db.query(ManualMonth).order_by(ManualMonth.month.desc()).all()
    ]
