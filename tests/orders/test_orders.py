"""Tests for the order lifecycle coordinator."""

import unittest
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy.sql import func

from tests.conftest import BaseTestCase
from orderledger.config import FinanceConfig
from orderledger.db.models import Order, Supplier, SupplierAdjustment
from orderledger.errors import NotFoundError, ValidationError
from orderledger.finance.finance import to_amount
from orderledger.ledger.ledger import add_adjustment, create_supplier, recalc_supplier_balance
from orderledger.orders.orders import (
    create_order,
    delete_order,
    generate_order_number,
    get_order,
    list_orders,
    normalize_date,
    normalize_existing_orders,
    order_to_dict,
    update_order,
    validate_order,
)

CONFIG = FinanceConfig()


class TestNormalizeDate(unittest.TestCase):
    """Date parsing for order input."""

    def test_formats(self):
        self.assertEqual(normalize_date("2024-03-05"), date(2024, 3, 5))
        self.assertEqual(normalize_date("2024-03-05T23:10:00Z"), date(2024, 3, 5))
        self.assertEqual(normalize_date("05.03.2024"), date(2024, 3, 5))
        self.assertEqual(normalize_date(datetime(2024, 3, 5, 10, 0)), date(2024, 3, 5))
        self.assertEqual(normalize_date(date(2024, 3, 5)), date(2024, 3, 5))
        self.assertEqual(normalize_date("March 5, 2024"), date(2024, 3, 5))

    def test_invalid(self):
        for raw in (None, "", "  ", "not a date", "2024-13-45", "31.02.2024"):
            with self.subTest(raw=raw):
                self.assertIsNone(normalize_date(raw))

    def test_generated_number(self):
        self.assertTrue(generate_order_number().startswith("№"))


class TestOrderLifecycle(BaseTestCase):
    """Create, update and delete keep supplier balances consistent."""

    def setUp(self):
        super().setUp()
        self.supplier_a = create_supplier(self.db, "Supplier A")
        self.supplier_b = create_supplier(self.db, "Supplier B")

    def payload(self, **overrides):
        data = {
            "date": "2024-05-10",
            "supplier_id": self.supplier_a.id,
            "sale": 1000,
            "cost": 600,
            "prosail": 50,
            "status": "Accepted",
        }
        data.update(overrides)
        return data

    def balance(self, supplier):
        self.db.flush()
        return Decimal(self.db.get(Supplier, supplier.id).balance)

    def assert_ledger_consistent(self):
        self.db.flush()
        for supplier in self.db.query(Supplier).all():
            orders_total = to_amount(
                self.db.query(func.coalesce(func.sum(Order.supplier_balance_delta), 0))
                .filter(Order.supplier_id == supplier.id)
                .scalar()
            )
            adjustments_total = to_amount(
                self.db.query(func.coalesce(func.sum(SupplierAdjustment.delta), 0))
                .filter(SupplierAdjustment.supplier_id == supplier.id)
                .scalar()
            )
            self.assertEqual(
                Decimal(supplier.balance).quantize(Decimal("0.01")),
                (orders_total + adjustments_total).quantize(Decimal("0.01")),
                f"supplier {supplier.id}",
            )

    def test_create_order_persists_engine_output(self):
        order = create_order(self.db, self.payload(note="  gift wrap "), CONFIG)

        self.assertIsNotNone(order.id)
        self.assertEqual(order.date, date(2024, 5, 10))
        self.assertEqual(Decimal(order.profit), Decimal("350.00"))
        self.assertEqual(Decimal(order.supplier_balance_delta), Decimal("400.00"))
        self.assertEqual(order.status, "Accepted")
        self.assertEqual(order.note, "gift wrap")
        self.assertTrue(order.order_number.startswith("№"))
        self.assertIsNone(order.completed_at)
        self.assertEqual(self.balance(self.supplier_a), Decimal("400.00"))

    def test_create_order_keeps_given_number(self):
        order = create_order(self.db, self.payload(order_number=" 1234 "), CONFIG)
        self.assertEqual(order.order_number, "1234")

    def test_create_our_logistics_order(self):
        create_order(self.db, self.payload(our_logistics=True, promo_pay=True), CONFIG)
        self.assertEqual(self.balance(self.supplier_a), Decimal("-600.00"))

    def test_create_uses_injected_config(self):
        order = create_order(
            self.db,
            self.payload(our_logistics=True),
            FinanceConfig(our_delivery_price=Decimal("100")),
        )
        self.assertEqual(Decimal(order.profit), Decimal("250.00"))

    def test_completed_order_gets_timestamp(self):
        order = create_order(self.db, self.payload(status="Completed"), CONFIG)
        self.assertIsNotNone(order.completed_at)

        stamp = order.completed_at
        update_order(self.db, order.id, self.payload(status="Completed", note="x"), CONFIG)
        self.assertEqual(order.completed_at, stamp)

        update_order(self.db, order.id, self.payload(status="Accepted"), CONFIG)
        self.assertIsNone(order.completed_at)

    def test_zero_sale_rejected_for_accepted(self):
        with self.assertRaises(ValidationError):
            create_order(self.db, self.payload(sale=0), CONFIG)
        self.assertEqual(self.db.query(Order).count(), 0)
        self.assertEqual(self.balance(self.supplier_a), Decimal("0.00"))

    def test_zero_sale_allowed_for_cancelled(self):
        order = create_order(self.db, self.payload(sale=0, status="Cancelled"), CONFIG)
        self.assertEqual(Decimal(order.profit), Decimal("0.00"))
        self.assertEqual(self.balance(self.supplier_a), Decimal("0.00"))

    def test_zero_sale_allowed_for_returns_and_backorders(self):
        create_order(self.db, self.payload(sale=0, is_return=True, return_delivery=30), CONFIG)
        create_order(self.db, self.payload(sale=0, status="Returned"), CONFIG)
        create_order(self.db, self.payload(sale=0, status="OnBackorder", prepay=100), CONFIG)
        create_order(self.db, self.payload(sale=0, status="Declined"), CONFIG)
        self.assertEqual(self.db.query(Order).count(), 4)

    def test_negative_sale_rejected(self):
        with self.assertRaises(ValidationError):
            create_order(self.db, self.payload(sale=-5), CONFIG)

    def test_validation_errors(self):
        cases = {
            "missing date": self.payload(date=None),
            "bad date": self.payload(date="someday"),
            "missing supplier": self.payload(supplier_id=None),
            "non-numeric supplier": self.payload(supplier_id="abc"),
            "fractional supplier": self.payload(supplier_id=1.5),
            "unknown supplier": self.payload(supplier_id=999),
            "unknown status": self.payload(status="Lost"),
        }
        for name, payload in cases.items():
            with self.subTest(name=name):
                with self.assertRaises(ValidationError):
                    validate_order(self.db, payload)

    def test_validate_returns_normalized_date(self):
        self.assertEqual(
            validate_order(self.db, self.payload(date="10.05.2024", supplier_id=str(self.supplier_a.id))),
            date(2024, 5, 10),
        )

    def test_update_recomputes_financials(self):
        order = create_order(self.db, self.payload(), CONFIG)

        update_order(self.db, order.id, self.payload(our_logistics=True), CONFIG)

        self.assertEqual(Decimal(order.profit), Decimal("290.00"))
        self.assertEqual(Decimal(order.supplier_balance_delta), Decimal("-600.00"))
        self.assertEqual(self.balance(self.supplier_a), Decimal("-600.00"))

    def test_update_keeps_order_number_when_blank(self):
        order = create_order(self.db, self.payload(order_number="A-1"), CONFIG)
        update_order(self.db, order.id, self.payload(order_number=""), CONFIG)
        self.assertEqual(order.order_number, "A-1")

    def test_update_reassigns_supplier(self):
        order = create_order(self.db, self.payload(), CONFIG)
        add_adjustment(self.db, self.supplier_a.id, Decimal("25"), "payout")
        add_adjustment(self.db, self.supplier_b.id, Decimal("-10"), "payment")
        a_before = self.balance(self.supplier_a)
        b_before = self.balance(self.supplier_b)
        self.assertEqual(Decimal(order.supplier_balance_delta), Decimal("400.00"))

        update_order(self.db, order.id, self.payload(supplier_id=self.supplier_b.id), CONFIG)

        self.assertEqual(order.supplier_id, self.supplier_b.id)
        self.assertEqual(self.balance(self.supplier_a), a_before - Decimal("400.00"))
        self.assertEqual(self.balance(self.supplier_b), b_before + Decimal("400.00"))
        self.assert_ledger_consistent()

    def test_update_from_own_dict_keeps_return_fee(self):
        order = create_order(
            self.db, self.payload(sale=0, is_return=True, prosail=50, return_delivery=30), CONFIG
        )
        self.assertEqual(Decimal(order.profit), Decimal("-80.00"))

        update_order(self.db, order.id, {**order_to_dict(order), "note": "called customer"}, CONFIG)

        self.assertEqual(order.note, "called customer")
        self.assertEqual(Decimal(order.profit), Decimal("-80.00"))
        self.assertEqual(Decimal(order.prosail_paid), Decimal("50.00"))
        self.assertEqual(self.balance(self.supplier_a), Decimal("-30.00"))

    def test_update_from_own_dict_is_stable(self):
        order = create_order(self.db, self.payload(our_logistics=True, status="Completed"), CONFIG)
        before = order_to_dict(order)

        update_order(self.db, order.id, before, CONFIG)

        self.assertEqual(order_to_dict(order), before)

    def test_legacy_supplier_key(self):
        payload = self.payload()
        del payload["supplier_id"]
        payload["supplierId"] = self.supplier_b.id

        order = create_order(self.db, payload, CONFIG)

        self.assertEqual(order.supplier_id, self.supplier_b.id)
        self.assertEqual(self.balance(self.supplier_b), Decimal("400.00"))

    def test_update_missing_order(self):
        with self.assertRaises(NotFoundError):
            update_order(self.db, 12345, self.payload(), CONFIG)

    def test_update_invalid_payload_leaves_order(self):
        order = create_order(self.db, self.payload(), CONFIG)
        with self.assertRaises(ValidationError):
            update_order(self.db, order.id, self.payload(sale=0), CONFIG)
        self.assertEqual(Decimal(order.sale), Decimal("1000.00"))
        self.assertEqual(self.balance(self.supplier_a), Decimal("400.00"))

    def test_delete_order(self):
        keep = create_order(self.db, self.payload(sale=500, cost=300), CONFIG)
        gone = create_order(self.db, self.payload(), CONFIG)
        self.assertEqual(self.balance(self.supplier_a), Decimal("600.00"))

        delete_order(self.db, gone.id)

        self.assertEqual(self.balance(self.supplier_a), Decimal("200.00"))
        with self.assertRaises(NotFoundError):
            get_order(self.db, gone.id)
        self.assertIs(get_order(self.db, keep.id), keep)

    def test_delete_missing_order(self):
        with self.assertRaises(NotFoundError):
            delete_order(self.db, 777)

    def test_ledger_stays_consistent_over_mixed_operations(self):
        first = create_order(self.db, self.payload(), CONFIG)
        second = create_order(
            self.db, self.payload(supplier_id=self.supplier_b.id, promo_pay=True), CONFIG
        )
        third = create_order(self.db, self.payload(is_return=True, return_delivery=30), CONFIG)
        self.assert_ledger_consistent()

        add_adjustment(self.db, self.supplier_b.id, Decimal("600"), "payout")
        update_order(self.db, first.id, self.payload(supplier_id=self.supplier_b.id, status="Cancelled"), CONFIG)
        self.assert_ledger_consistent()

        update_order(self.db, second.id, self.payload(supplier_id=self.supplier_a.id), CONFIG)
        delete_order(self.db, third.id)
        self.assert_ledger_consistent()

        self.assertEqual(self.balance(self.supplier_a), Decimal("400.00"))
        self.assertEqual(self.balance(self.supplier_b), Decimal("600.00"))

    def test_list_orders_filters_by_date(self):
        create_order(self.db, self.payload(date="2024-04-30"), CONFIG)
        may = create_order(self.db, self.payload(date="2024-05-15"), CONFIG)
        june = create_order(self.db, self.payload(date="2024-06-01"), CONFIG)

        self.assertEqual(len(list_orders(self.db)), 3)
        self.assertEqual(
            [o.id for o in list_orders(self.db, start="2024-05-01")], [june.id, may.id]
        )
        self.assertEqual(
            [o.id for o in list_orders(self.db, start="01.05.2024", end="2024-05-31")], [may.id]
        )

    def test_order_to_dict(self):
        order = create_order(self.db, self.payload(title="Lamp", traffic_source="instagram"), CONFIG)
        data = order_to_dict(order)
        self.assertEqual(data["date"], "2024-05-10")
        self.assertEqual(data["title"], "Lamp")
        self.assertEqual(data["traffic_source"], "instagram")
        self.assertEqual(data["profit"], Decimal("350.00"))
        self.assertEqual(data["supplier_balance_delta"], Decimal("400.00"))
        self.assertFalse(data["is_return"])

    def test_normalize_existing_orders_repairs_cached_columns(self):
        order = create_order(self.db, self.payload(), CONFIG)
        returned = create_order(self.db, self.payload(is_return=True, return_delivery=30), CONFIG)
        order.profit = Decimal("1.00")
        order.supplier_balance_delta = Decimal("0.00")
        self.supplier_a.balance = Decimal("99.00")
        self.db.flush()

        self.assertEqual(normalize_existing_orders(self.db, CONFIG), 2)

        self.assertEqual(Decimal(order.profit), Decimal("350.00"))
        self.assertEqual(Decimal(returned.profit), Decimal("-80.00"))
        self.assertEqual(self.balance(self.supplier_a), Decimal("370.00"))

    def test_normalize_existing_orders_is_idempotent(self):
        create_order(self.db, self.payload(is_return=True, prosail=50, return_delivery=30), CONFIG)
        create_order(self.db, self.payload(status="OnBackorder", prepay=200, our_logistics=True), CONFIG)
        before = [order_to_dict(o) for o in list_orders(self.db)]

        normalize_existing_orders(self.db, CONFIG)
        normalize_existing_orders(self.db, CONFIG)

        after = [order_to_dict(o) for o in list_orders(self.db)]
        self.assertEqual(before, after)
        recalc_supplier_balance(self.db, self.supplier_a.id)
        self.assert_ledger_consistent()


if __name__ == '__main__':
    unittest.main()
