import io
import json
import os
import tempfile
import threading
from datetime import date, datetime, timedelta
from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.db import IntegrityError, OperationalError, connection
from django.test import (
    SimpleTestCase,
    TestCase,
    TransactionTestCase,
    skipUnlessDBFeature,
)
from django.test.utils import CaptureQueriesContext
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from . import ledger
from .catalog import CatalogService
from .events import (
    Event,
    EventPublisher,
    Group,
    NullTransport,
    SignalTransport,
    store_event,
)
from .exceptions import (
    DuplicateBarcode,
    Forbidden,
    InsufficientStock,
    InvalidInput,
    InvalidState,
    LockContention,
)
from .models import (
    Currency,
    DiscountType,
    Order,
    OrderItem,
    PriceHistory,
    Product,
    Refund,
    RefundItem,
    StockHistory,
)
from .orders import OrderService
from .pricing import (
    LineRequest,
    convert,
    money,
    quote_order,
    remaining_final_amount,
    settlement_price,
)
from .refunds import RefundService, ReturnRequest


class RecordingTransport:
    def __init__(self):
        self.sent = []

    def send(self, group, event, payload):
        self.sent.append((group, event, payload))

    def events(self):
        return [event for _, event, _ in self.sent]


class FailingTransport:
    def send(self, group, event, payload):
        raise RuntimeError("socket gateway is down")


def line(product, quantity, **extra):
    return LineRequest(product_id=product.pk, quantity=Decimal(str(quantity)), **extra)


class StoreTestCase(TestCase):
    def setUp(self):
        super().setUp()
        self.user_model = get_user_model()
        self.owner = self.user_model.objects.create_user(
            username="owner", password="pass1234", role=self.user_model.Roles.OWNER
        )
        self.cashier = self.user_model.objects.create_user(
            username="cashier", password="pass1234", role=self.user_model.Roles.CASHIER
        )
        self.seller = self.user_model.objects.create_user(
            username="seller", password="pass1234", role=self.user_model.Roles.SELLER
        )
        self.other_seller = self.user_model.objects.create_user(
            username="seller2", password="pass1234", role=self.user_model.Roles.SELLER
        )
        self.transport = RecordingTransport()
        self.publisher = EventPublisher(self.transport)
        self.orders = OrderService(self.publisher)
        self.refunds = RefundService(self.publisher)
        self.catalog = CatalogService(self.publisher)

    def make_product(self, name="Cola 1L", price="1000", stock="10", **extra):
        return Product.objects.create(
            name=name, price=Decimal(price), stock=Decimal(stock), **extra
        )

    def stock_of(self, product):
        product.refresh_from_db()
        return product.stock

    def completed_order(self, product, quantity, **options):
        order = self.orders.create(self.seller, [line(product, quantity)], **options)
        return self.orders.change_status(order.pk, self.cashier, Order.Status.COMPLETED)


class PricingTests(SimpleTestCase):
    def product(self, pk=1, price="1000", currency=Currency.UZS, **extra):
        return Product(
            id=pk, name=f"P{pk}", price=Decimal(price), currency=currency, **extra
        )

    def test_convert_between_currencies(self):
        self.assertEqual(
            convert(Decimal("2"), Currency.USD, Currency.UZS, Decimal("12500")),
            Decimal("25000"),
        )
        self.assertEqual(
            convert(Decimal("25000"), Currency.UZS, Currency.USD, Decimal("12500")),
            Decimal("2"),
        )
        self.assertEqual(
            convert(Decimal("7"), Currency.UZS, Currency.UZS, Decimal("0")), Decimal("7")
        )

    def test_convert_rejects_non_positive_rate(self):
        with self.assertRaises(InvalidInput):
            convert(Decimal("2"), Currency.USD, Currency.UZS, Decimal("0"))

    def test_money_rounds_half_up(self):
        self.assertEqual(money(Decimal("0.005")), Decimal("0.01"))
        self.assertEqual(money(Decimal("2.344")), Decimal("2.34"))

    def test_active_discount_wins_over_price(self):
        now = timezone.now()
        product = self.product(
            discount_price=Decimal("800"),
            discount_start=now - timedelta(days=1),
            discount_end=now + timedelta(days=1),
        )
        self.assertEqual(settlement_price(product, Currency.UZS, 1, at=now), Decimal("800"))

    def test_expired_discount_is_ignored(self):
        now = timezone.now()
        product = self.product(
            discount_price=Decimal("800"),
            discount_start=now - timedelta(days=3),
            discount_end=now - timedelta(days=1),
        )
        self.assertEqual(settlement_price(product, Currency.UZS, 1, at=now), Decimal("1000"))

    def test_explicit_price_overrides_catalog(self):
        product = self.product()
        quote = quote_order(
            [LineRequest(product_id=1, quantity=Decimal("2"), price=Decimal("700"))],
            {1: product},
            Currency.UZS,
            Decimal("1"),
        )
        priced = quote.lines[0]
        self.assertEqual(priced.price, Decimal("700.00"))
        self.assertEqual(priced.original_price, Decimal("1000.00"))
        self.assertEqual(quote.total_amount, Decimal("2000.00"))
        self.assertEqual(quote.final_amount, Decimal("1400.00"))

    def test_manual_percent_discount_per_line(self):
        quote = quote_order(
            [
                LineRequest(
                    product_id=1,
                    quantity=Decimal("3"),
                    manual_discount_value=Decimal("10"),
                    manual_discount_type=DiscountType.PERCENT,
                )
            ],
            {1: self.product()},
            Currency.UZS,
            Decimal("1"),
        )
        self.assertEqual(quote.lines[0].price, Decimal("900.00"))
        self.assertEqual(quote.final_amount, Decimal("2700.00"))

    def test_explicit_price_is_not_discounted_again(self):
        quote = quote_order(
            [
                LineRequest(
                    product_id=1,
                    quantity=Decimal("1"),
                    price=Decimal("900"),
                    manual_discount_value=Decimal("100"),
                )
            ],
            {1: self.product()},
            Currency.UZS,
            Decimal("1"),
        )
        priced = quote.lines[0]
        self.assertEqual(priced.price, Decimal("900.00"))
        self.assertEqual(priced.manual_discount_value, Decimal("100"))
        self.assertEqual(priced.manual_discount_type, DiscountType.FIXED)
        self.assertEqual(quote.final_amount, Decimal("900.00"))

    def test_global_percent_discount(self):
        quote = quote_order(
            [LineRequest(product_id=1, quantity=Decimal("3"))],
            {1: self.product()},
            Currency.UZS,
            Decimal("1"),
            discount_value=Decimal("10"),
            discount_type=DiscountType.PERCENT,
        )
        self.assertEqual(quote.items_total, Decimal("3000.00"))
        self.assertEqual(quote.discount_amount, Decimal("300.00"))
        self.assertEqual(quote.final_amount, Decimal("2700.00"))

    def test_usd_product_in_uzs_order(self):
        product = self.product(price="2.50", currency=Currency.USD)
        quote = quote_order(
            [LineRequest(product_id=1, quantity=Decimal("2"))],
            {1: product},
            Currency.UZS,
            Decimal("12500"),
        )
        self.assertEqual(quote.lines[0].price, Decimal("31250.00"))
        self.assertEqual(quote.final_amount, Decimal("62500.00"))

    def test_discount_larger_than_total_is_rejected(self):
        with self.assertRaises(InvalidInput):
            quote_order(
                [LineRequest(product_id=1, quantity=Decimal("1"))],
                {1: self.product()},
                Currency.UZS,
                Decimal("1"),
                discount_value=Decimal("1500"),
                discount_type=DiscountType.FIXED,
            )

    def test_remaining_final_amount_is_clamped(self):
        self.assertEqual(
            remaining_final_amount([Decimal("100.00")], Decimal("300.00")), Decimal("0")
        )
        self.assertEqual(
            remaining_final_amount(
                [Decimal("1000.00"), Decimal("500.00")], Decimal("300.00")
            ),
            Decimal("1200.00"),
        )


class OrderCreateTests(StoreTestCase):
    def test_create_takes_stock_and_journals_it(self):
        product = self.make_product(price="1000", stock="10")

        order = self.orders.create(self.seller, [line(product, 4)])

        self.assertEqual(self.stock_of(product), Decimal("6"))
        self.assertEqual(order.status, Order.Status.DRAFT)
        self.assertEqual(order.final_amount, Decimal("4000.00"))
        self.assertEqual(order.items.count(), 1)
        entries = StockHistory.objects.filter(product=product)
        self.assertEqual(entries.count(), 1)
        entry = entries.get()
        self.assertEqual((entry.old_stock, entry.new_stock), (Decimal("10"), Decimal("6")))
        self.assertEqual(entry.reason, StockHistory.Reason.SALE)
        self.assertEqual(entry.movement_type, StockHistory.MovementType.OUTBOUND)
        self.assertEqual(entry.order_id, order.pk)
        self.assertEqual(entry.note, f"sale: order #{order.pk}")

    def test_insufficient_stock_leaves_nothing_behind(self):
        product = self.make_product(stock="2")

        with self.assertRaises(InsufficientStock) as ctx:
            self.orders.create(self.seller, [line(product, 5)])

        self.assertIn(str(product.pk), str(ctx.exception.detail))
        self.assertEqual(self.stock_of(product), Decimal("2"))
        self.assertFalse(Order.objects.exists())
        self.assertFalse(OrderItem.objects.exists())
        self.assertFalse(StockHistory.objects.exists())

    def test_one_short_line_aborts_the_whole_order(self):
        plenty = self.make_product(name="Water", stock="50")
        scarce = self.make_product(name="Juice", stock="1")

        with self.assertRaises(InsufficientStock):
            self.orders.create(self.seller, [line(plenty, 5), line(scarce, 2)])

        self.assertEqual(self.stock_of(plenty), Decimal("50"))
        self.assertFalse(StockHistory.objects.exists())

    def test_empty_order_is_invalid(self):
        with self.assertRaises(InvalidInput):
            self.orders.create(self.seller, [])

    def test_unknown_product_is_invalid(self):
        with self.assertRaises(InvalidInput) as ctx:
            self.orders.create(
                self.seller, [LineRequest(product_id=9999, quantity=Decimal("1"))]
            )
        self.assertIn("9999", str(ctx.exception.detail))

    def test_inactive_or_deleted_product_is_invalid(self):
        inactive = self.make_product(name="Old", is_active=False)
        deleted = self.make_product(name="Gone", is_deleted=True)
        for product in (inactive, deleted):
            with self.assertRaises(InvalidInput):
                self.orders.create(self.seller, [line(product, 1)])
        self.assertFalse(Order.objects.exists())

    def test_same_product_twice_is_invalid(self):
        product = self.make_product()
        with self.assertRaises(InvalidInput):
            self.orders.create(self.seller, [line(product, 1), line(product, 2)])

    def test_global_discount_and_options_are_stored(self):
        product = self.make_product(price="1000", stock="10")
        order = self.orders.create(
            self.seller,
            [line(product, 5)],
            discount_value=Decimal("500"),
            discount_type=DiscountType.FIXED,
            customer_name="Aziz",
            payment_method=Order.PaymentMethod.CARD,
            order_type=Order.OrderType.WHOLESALE,
        )
        order.refresh_from_db()
        self.assertEqual(order.total_amount, Decimal("5000.00"))
        self.assertEqual(order.discount_amount, Decimal("500.00"))
        self.assertEqual(order.final_amount, Decimal("4500.00"))
        self.assertEqual(order.payment_method, Order.PaymentMethod.CARD)
        self.assertEqual(order.order_type, Order.OrderType.WHOLESALE)
        self.assertEqual(order.customer_name, "Aziz")

    def test_final_amount_matches_stored_lines(self):
        first = self.make_product(name="Tea", price="333.33", stock="10")
        second = self.make_product(name="Sugar", price="1250", stock="10")
        order = self.orders.create(
            self.seller,
            [line(first, 3), line(second, 2)],
            discount_value=Decimal("7"),
            discount_type=DiscountType.PERCENT,
        )
        order.refresh_from_db()
        lines_total = sum(item.total_price for item in order.items.all())
        self.assertEqual(
            order.final_amount, max(Decimal("0"), lines_total - order.discount_amount)
        )


class OrderEditTests(StoreTestCase):
    def test_edit_moves_only_the_net_difference(self):
        product = self.make_product(stock="10")
        order = self.orders.create(self.seller, [line(product, 3)])

        order = self.orders.edit(order.pk, self.seller, [line(product, 1)])

        self.assertEqual(self.stock_of(product), Decimal("9"))
        edits = StockHistory.objects.filter(reason=StockHistory.Reason.ORDER_EDIT)
        self.assertEqual(edits.count(), 1)
        self.assertEqual(edits.get().delta, Decimal("2"))
        self.assertEqual(order.final_amount, Decimal("1000.00"))
        self.assertEqual(order.items.get().quantity, Decimal("1"))

    def test_edit_swapping_products(self):
        first = self.make_product(name="Bread", stock="10")
        second = self.make_product(name="Milk", stock="10")
        order = self.orders.create(self.seller, [line(first, 3)])

        self.orders.edit(order.pk, self.seller, [line(second, 2)])

        self.assertEqual(self.stock_of(first), Decimal("10"))
        self.assertEqual(self.stock_of(second), Decimal("8"))
        self.assertEqual(
            StockHistory.objects.filter(reason=StockHistory.Reason.ORDER_EDIT).count(), 2
        )
        self.assertEqual(list(order.items.values_list("product_id", flat=True)), [second.pk])

    def test_unchanged_lines_write_no_ledger_rows(self):
        product = self.make_product(stock="10")
        order = self.orders.create(self.seller, [line(product, 2)])

        self.orders.edit(
            order.pk, self.seller, [line(product, 2)], customer_name="Walk-in"
        )

        self.assertFalse(
            StockHistory.objects.filter(reason=StockHistory.Reason.ORDER_EDIT).exists()
        )
        order.refresh_from_db()
        self.assertEqual(order.customer_name, "Walk-in")

    def test_edit_beyond_stock_is_rejected_and_rolled_back(self):
        product = self.make_product(stock="10")
        order = self.orders.create(self.seller, [line(product, 3)])

        with self.assertRaises(InsufficientStock):
            self.orders.edit(order.pk, self.seller, [line(product, 11)])

        self.assertEqual(self.stock_of(product), Decimal("7"))
        self.assertEqual(order.items.get().quantity, Decimal("3"))

    def test_edit_may_use_the_quantity_the_order_already_holds(self):
        product = self.make_product(stock="5")
        order = self.orders.create(self.seller, [line(product, 5)])

        self.orders.edit(order.pk, self.seller, [line(product, 5)], discount_value=Decimal("100"))

        self.assertEqual(self.stock_of(product), Decimal("0"))

    def test_edit_keeps_omitted_discount(self):
        product = self.make_product(price="1000", stock="10")
        order = self.orders.create(
            self.seller,
            [line(product, 2)],
            discount_value=Decimal("10"),
            discount_type=DiscountType.PERCENT,
        )

        order = self.orders.edit(order.pk, self.seller, [line(product, 4)])

        self.assertEqual(order.discount_type, DiscountType.PERCENT)
        self.assertEqual(order.discount_amount, Decimal("400.00"))
        self.assertEqual(order.final_amount, Decimal("3600.00"))

    def test_only_draft_orders_are_editable(self):
        product = self.make_product()
        order = self.completed_order(product, 1)
        with self.assertRaises(InvalidState):
            self.orders.edit(order.pk, self.owner, [line(product, 2)])

    def test_seller_cannot_edit_someone_elses_order(self):
        product = self.make_product()
        order = self.orders.create(self.seller, [line(product, 1)])

        with self.assertRaises(Forbidden):
            self.orders.edit(order.pk, self.other_seller, [line(product, 2)])

        self.orders.edit(order.pk, self.owner, [line(product, 2)])
        self.assertEqual(self.stock_of(product), Decimal("8"))


class OrderStatusTests(StoreTestCase):
    def test_cancel_restores_every_line(self):
        first = self.make_product(name="P1", stock="20")
        second = self.make_product(name="P2", stock="20")
        order = self.orders.create(self.seller, [line(first, 3), line(second, 1)])
        Product.objects.filter(pk=first.pk).update(stock=Decimal("10"))
        Product.objects.filter(pk=second.pk).update(stock=Decimal("5"))

        order = self.orders.change_status(order.pk, self.cashier, Order.Status.CANCELLED)

        self.assertEqual(order.status, Order.Status.CANCELLED)
        self.assertEqual(order.cashier, self.cashier)
        self.assertEqual(self.stock_of(first), Decimal("13"))
        self.assertEqual(self.stock_of(second), Decimal("6"))
        restores = StockHistory.objects.filter(reason=StockHistory.Reason.CANCELLATION)
        self.assertEqual(restores.count(), 2)
        self.assertTrue(all(entry.note == f"cancellation: order #{order.pk}" for entry in restores))

    def test_complete_stamps_cashier_and_time(self):
        product = self.make_product()
        order = self.completed_order(product, 2)
        self.assertEqual(order.status, Order.Status.COMPLETED)
        self.assertEqual(order.cashier, self.cashier)
        self.assertIsNotNone(order.completed_at)
        self.assertEqual(self.stock_of(product), Decimal("8"))

    def test_terminal_orders_cannot_move(self):
        product = self.make_product()
        order = self.completed_order(product, 1)
        for target in (Order.Status.COMPLETED, Order.Status.CANCELLED, Order.Status.DRAFT):
            with self.assertRaises(InvalidState):
                self.orders.change_status(order.pk, self.cashier, target)

    def test_refund_statuses_are_not_set_directly(self):
        product = self.make_product()
        order = self.orders.create(self.seller, [line(product, 1)])
        for target in (Order.Status.PARTIALLY_REFUNDED, Order.Status.FULLY_REFUNDED):
            with self.assertRaises(InvalidState):
                self.orders.change_status(order.pk, self.cashier, target)

    def test_cancelled_order_cannot_be_cancelled_twice(self):
        product = self.make_product(stock="10")
        order = self.orders.create(self.seller, [line(product, 4)])
        self.orders.change_status(order.pk, self.cashier, Order.Status.CANCELLED)

        with self.assertRaises(InvalidState):
            self.orders.change_status(order.pk, self.cashier, Order.Status.CANCELLED)
        self.assertEqual(self.stock_of(product), Decimal("10"))

    def test_mark_printed(self):
        product = self.make_product()
        order = self.orders.create(self.seller, [line(product, 1)])
        order = self.orders.mark_printed(order.pk)
        self.assertTrue(order.is_printed)


class RefundTests(StoreTestCase):
    def test_partial_refund(self):
        product = self.make_product(price="1000", stock="10")
        order = self.completed_order(product, 5)

        refund = self.refunds.refund(
            order.pk, self.owner, [ReturnRequest(product.pk, Decimal("2"))], reason="broken"
        )

        order.refresh_from_db()
        item = order.items.get()
        self.assertEqual(item.quantity, Decimal("3"))
        self.assertEqual(item.total_price, Decimal("3000.00"))
        self.assertEqual(self.stock_of(product), Decimal("7"))
        self.assertEqual(refund.total_amount, Decimal("2000.00"))
        self.assertEqual(refund.reason, "broken")
        self.assertEqual(refund.items.get().quantity, Decimal("2"))
        self.assertEqual(order.status, Order.Status.PARTIALLY_REFUNDED)
        self.assertEqual(order.final_amount, Decimal("3000.00"))
        entry = StockHistory.objects.get(reason=StockHistory.Reason.REFUND)
        self.assertEqual(entry.note, f"return: order #{order.pk}")
        self.assertEqual(entry.delta, Decimal("2"))

    def test_full_refund_after_partial(self):
        product = self.make_product(price="1000", stock="10")
        order = self.completed_order(product, 5)
        self.refunds.refund(order.pk, self.owner, [ReturnRequest(product.pk, Decimal("2"))])

        self.refunds.refund(order.pk, self.owner, [ReturnRequest(product.pk, Decimal("3"))])

        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.FULLY_REFUNDED)
        self.assertEqual(order.final_amount, Decimal("0"))
        self.assertFalse(order.items.exists())
        self.assertEqual(self.stock_of(product), Decimal("10"))
        self.assertEqual(Refund.objects.filter(order=order).count(), 2)

    def test_refund_cannot_exceed_what_is_left(self):
        product = self.make_product(stock="10")
        order = self.completed_order(product, 5)
        self.refunds.refund(order.pk, self.owner, [ReturnRequest(product.pk, Decimal("4"))])

        with self.assertRaises(InvalidInput):
            self.refunds.refund(
                order.pk, self.owner, [ReturnRequest(product.pk, Decimal("2"))]
            )

        self.assertEqual(self.stock_of(product), Decimal("9"))
        self.assertEqual(Refund.objects.count(), 1)

    def test_products_not_on_the_order_are_skipped(self):
        sold = self.make_product(name="Sold", stock="10")
        other = self.make_product(name="Other", stock="10")
        order = self.completed_order(sold, 2)

        refund = self.refunds.refund(
            order.pk, self.owner, [ReturnRequest(other.pk, Decimal("1"))]
        )

        self.assertIsNone(refund)
        self.assertEqual(self.stock_of(other), Decimal("10"))
        self.assertFalse(Refund.objects.exists())
        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.PARTIALLY_REFUNDED)

    def test_refund_keeps_global_discount(self):
        product = self.make_product(price="1000", stock="10")
        order = self.completed_order(
            product, 5, discount_value=Decimal("500"), discount_type=DiscountType.FIXED
        )

        self.refunds.refund(order.pk, self.owner, [ReturnRequest(product.pk, Decimal("2"))])

        order.refresh_from_db()
        self.assertEqual(order.final_amount, Decimal("2500.00"))

    def test_draft_order_can_be_refunded(self):
        product = self.make_product(price="1000", stock="10")
        order = self.orders.create(self.seller, [line(product, 3)])

        refund = self.refunds.refund(
            order.pk, self.owner, [ReturnRequest(product.pk, Decimal("1"))]
        )

        self.assertEqual(refund.total_amount, Decimal("1000.00"))
        self.assertEqual(self.stock_of(product), Decimal("8"))
        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.PARTIALLY_REFUNDED)
        self.assertEqual(order.final_amount, Decimal("2000.00"))
        self.assertEqual(order.items.get().quantity, Decimal("2"))
        with self.assertRaises(InvalidState):
            self.orders.edit(order.pk, self.seller, [line(product, 1)])

    def test_cancelled_order_cannot_be_refunded(self):
        product = self.make_product(stock="10")
        order = self.orders.create(self.seller, [line(product, 1)])
        self.orders.change_status(order.pk, self.cashier, Order.Status.CANCELLED)

        with self.assertRaises(InvalidState):
            self.refunds.refund(
                order.pk, self.owner, [ReturnRequest(product.pk, Decimal("1"))]
            )
        self.assertEqual(self.stock_of(product), Decimal("10"))

    def test_failed_journal_write_rolls_back_restored_stock(self):
        product = self.make_product(price="1000", stock="10")
        order = self.completed_order(product, 5)
        ledger_rows = StockHistory.objects.count()

        with mock.patch.object(
            RefundItem.objects, "bulk_create", side_effect=IntegrityError("refund item")
        ):
            with self.assertRaises(IntegrityError):
                self.refunds.refund(
                    order.pk, self.owner, [ReturnRequest(product.pk, Decimal("2"))]
                )

        self.assertEqual(self.stock_of(product), Decimal("5"))
        self.assertEqual(order.items.get().quantity, Decimal("5"))
        self.assertEqual(StockHistory.objects.count(), ledger_rows)
        self.assertFalse(Refund.objects.exists())
        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.COMPLETED)
        self.assertEqual(order.final_amount, Decimal("5000.00"))

    def test_fully_refunded_order_is_final(self):
        product = self.make_product(stock="10")
        order = self.completed_order(product, 1)
        self.refunds.refund(order.pk, self.owner, [ReturnRequest(product.pk, Decimal("1"))])

        with self.assertRaises(InvalidState):
            self.refunds.refund(
                order.pk, self.owner, [ReturnRequest(product.pk, Decimal("1"))]
            )


class LedgerTests(StoreTestCase):
    def test_ledger_explains_every_stock_change(self):
        product = self.catalog.create_product(
            self.owner, name="Rice 1kg", price=Decimal("9000"), stock=Decimal("20")
        )
        order = self.orders.create(self.seller, [line(product, 6)])
        self.orders.edit(order.pk, self.seller, [line(product, 4)])
        self.orders.change_status(order.pk, self.cashier, Order.Status.COMPLETED)
        self.refunds.refund(order.pk, self.owner, [ReturnRequest(product.pk, Decimal("1"))])
        self.catalog.add_stock(product.pk, self.owner, Decimal("5"))

        entries = StockHistory.objects.filter(product=product)
        self.assertEqual(sum(entry.delta for entry in entries), self.stock_of(product))
        for entry in entries:
            self.assertEqual(entry.new_stock - entry.old_stock, entry.delta)
        self.assertEqual(self.stock_of(product), Decimal("22"))

    def test_ledger_rows_are_append_only(self):
        product = self.make_product()
        self.orders.create(self.seller, [line(product, 1)])
        entry = StockHistory.objects.get()

        entry.note = "tampered"
        with self.assertRaises(ValueError):
            entry.save()
        with self.assertRaises(ValueError):
            entry.delete()

    def test_refund_rows_are_append_only(self):
        product = self.make_product()
        order = self.completed_order(product, 2)
        refund = self.refunds.refund(
            order.pk, self.owner, [ReturnRequest(product.pk, Decimal("1"))]
        )
        with self.assertRaises(ValueError):
            refund.save()
        with self.assertRaises(ValueError):
            refund.items.get().delete()

    def test_history_filters_by_whole_days(self):
        product = self.make_product()
        today = timezone.localdate()
        for days_ago in (0, 1, 5):
            StockHistory.objects.create(
                product=product,
                movement_type=StockHistory.MovementType.INBOUND,
                reason=StockHistory.Reason.RESTOCK,
                quantity=Decimal("1"),
                old_stock=Decimal("0"),
                new_stock=Decimal("1"),
                created_at=timezone.make_aware(
                    datetime.combine(today - timedelta(days=days_ago), datetime.min.time())
                )
                + timedelta(hours=12),
            )

        rows = ledger.history(start_date=today - timedelta(days=1), end_date=today)
        self.assertEqual(rows.count(), 2)
        self.assertGreater(rows[0].created_at, rows[1].created_at)
        self.assertEqual(ledger.history(product_id=product.pk).count(), 3)

    def test_history_rejects_inverted_range(self):
        with self.assertRaises(InvalidInput):
            ledger.history(start_date=date(2024, 5, 2), end_date=date(2024, 5, 1))

    def test_lock_timeout_surfaces_as_contention(self):
        product = self.make_product(stock="10")
        with self.assertRaises(LockContention):
            with ledger.unit_of_work():
                Product.objects.filter(pk=product.pk).update(stock=Decimal("3"))
                raise OperationalError("database is locked")
        self.assertEqual(self.stock_of(product), Decimal("10"))

    def test_other_database_errors_pass_through(self):
        with self.assertRaises(OperationalError):
            with ledger.unit_of_work():
                raise OperationalError("disk I/O error")

    def test_lock_products_loads_rows_in_id_order(self):
        second = self.make_product(name="B")
        first = self.make_product(name="A")

        with ledger.unit_of_work(), CaptureQueriesContext(connection) as queries:
            products = ledger.lock_products([first.pk, second.pk, first.pk])

        self.assertEqual(list(products), sorted([first.pk, second.pk]))
        selects = [q["sql"] for q in queries if q["sql"].startswith("SELECT")]
        self.assertEqual(len([sql for sql in selects if "store_product" in sql]), 1)

    @skipUnlessDBFeature("has_select_for_update")
    def test_lock_products_takes_row_locks(self):
        product = self.make_product()

        with ledger.unit_of_work(), CaptureQueriesContext(connection) as queries:
            ledger.lock_products([product.pk])

        self.assertTrue(any("FOR UPDATE" in q["sql"] for q in queries))


class ConcurrentOrderTests(TransactionTestCase):
    def setUp(self):
        if connection.vendor != "postgresql":
            self.skipTest("needs row locks shared between connections")
        user_model = get_user_model()
        self.sellers = [
            user_model.objects.create_user(
                username=f"seller{index}", password="pass1234", role=user_model.Roles.SELLER
            )
            for index in range(2)
        ]
        self.product = Product.objects.create(
            name="Last one", price=Decimal("1000"), stock=Decimal("1")
        )

    def test_last_unit_is_sold_once(self):
        barrier = threading.Barrier(len(self.sellers))
        outcomes = []

        def place_order(seller):
            service = OrderService(EventPublisher(NullTransport()))
            try:
                barrier.wait()
                service.create(seller, [line(self.product, 1)])
                outcomes.append("sold")
            except InsufficientStock:
                outcomes.append("out of stock")
            finally:
                connection.close()

        threads = [
            threading.Thread(target=place_order, args=(seller,)) for seller in self.sellers
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sorted(outcomes), ["out of stock", "sold"])
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, Decimal("0"))
        self.assertEqual(Order.objects.count(), 1)
        self.assertEqual(StockHistory.objects.filter(product=self.product).count(), 1)


class SeedCatalogTests(TestCase):
    def write_catalog(self, data):
        handle = tempfile.NamedTemporaryFile(
            "w", suffix=".json", delete=False, encoding="utf-8"
        )
        with handle:
            json.dump(data, handle)
        self.addCleanup(os.remove, handle.name)
        return handle.name

    def test_seed_creates_products_with_journaled_stock(self):
        Product.objects.create(name="Existing", price=Decimal("1"), barcode="100")
        path = self.write_catalog(
            {
                "categories": ["Drinks"],
                "products": [
                    {"name": "Cola", "barcode": "200", "category": "Drinks",
                     "price": "12000", "stock": "24"},
                    {"name": "Dup", "barcode": "100", "price": "5"},
                    {"name": "Chips", "category": "Snacks", "price": "8000"},
                ],
            }
        )

        out = io.StringIO()
        call_command("seed_catalog", path, stdout=out)
        self.assertIn("1 skipped", out.getvalue())

        cola = Product.objects.get(barcode="200")
        self.assertEqual(cola.stock, Decimal("24"))
        self.assertEqual(cola.category.name, "Drinks")
        self.assertEqual(
            StockHistory.objects.get(product=cola).reason, StockHistory.Reason.INITIAL
        )
        self.assertFalse(Product.objects.filter(name="Dup").exists())
        self.assertEqual(Product.objects.get(name="Chips").category.name, "Snacks")


class CatalogTests(StoreTestCase):
    def test_create_product_journals_initial_stock(self):
        product = self.catalog.create_product(
            self.owner, name="Flour", price=Decimal("7000"), barcode="478001", stock=Decimal("5")
        )
        self.assertEqual(product.stock, Decimal("5"))
        entry = StockHistory.objects.get(product=product)
        self.assertEqual(entry.reason, StockHistory.Reason.INITIAL)
        self.assertEqual(entry.note, "initial receipt")
        self.assertEqual(entry.added_by, self.owner)

    def test_create_without_stock_writes_no_ledger_row(self):
        product = self.catalog.create_product(self.owner, name="Salt", price=Decimal("3000"))
        self.assertFalse(StockHistory.objects.filter(product=product).exists())

    def test_duplicate_barcode_is_a_conflict(self):
        self.catalog.create_product(
            self.owner, name="Flour", price=Decimal("7000"), barcode="478001"
        )
        with self.assertRaises(DuplicateBarcode):
            self.catalog.create_product(
                self.owner, name="Flour 2", price=Decimal("7000"), barcode="478001"
            )
        other = self.make_product(name="Oil", barcode="478002")
        with self.assertRaises(DuplicateBarcode):
            self.catalog.update_product(other.pk, self.owner, barcode="478001")

    def test_barcode_taken_after_the_check_is_a_conflict(self):
        self.make_product(name="Flour", barcode="478001")
        other = self.make_product(name="Oil", barcode="478002")

        # A concurrent insert the check cannot see yet.
        with mock.patch("store.catalog.ensure_barcode_free"):
            with self.assertRaises(DuplicateBarcode):
                self.catalog.create_product(
                    self.owner, name="Flour 2", price=Decimal("7000"), barcode="478001"
                )
            with self.assertRaises(DuplicateBarcode):
                self.catalog.update_product(other.pk, self.owner, barcode="478001")

        self.assertEqual(Product.objects.filter(barcode="478001").count(), 1)
        other.refresh_from_db()
        self.assertEqual(other.barcode, "478002")

    def test_price_change_is_recorded(self):
        product = self.make_product(price="1000")
        self.catalog.update_product(product.pk, self.owner, price=Decimal("1200"), name="Cola")

        history = PriceHistory.objects.get(product=product)
        self.assertEqual((history.old_price, history.new_price), (Decimal("1000"), Decimal("1200")))
        self.assertEqual(history.changed_by, self.owner)
        product.refresh_from_db()
        self.assertEqual(product.name, "Cola")

    def test_stock_is_not_writable_through_update(self):
        product = self.make_product(stock="10")
        with self.assertRaises(InvalidInput):
            self.catalog.update_product(product.pk, self.owner, stock=Decimal("99"))
        self.assertEqual(self.stock_of(product), Decimal("10"))

    def test_add_stock_with_new_price(self):
        product = self.make_product(price="1000", stock="4")

        self.catalog.add_stock(product.pk, self.owner, Decimal("6"), new_price=Decimal("1100"))

        product.refresh_from_db()
        self.assertEqual(product.stock, Decimal("10"))
        self.assertEqual(product.price, Decimal("1100"))
        entry = StockHistory.objects.get(product=product)
        self.assertEqual(entry.reason, StockHistory.Reason.RESTOCK)
        self.assertEqual(entry.note, "restock")
        self.assertEqual(entry.new_price, Decimal("1100"))
        self.assertTrue(PriceHistory.objects.filter(product=product).exists())

    def test_add_stock_requires_positive_quantity(self):
        product = self.make_product()
        with self.assertRaises(InvalidInput):
            self.catalog.add_stock(product.pk, self.owner, Decimal("0"))

    def test_discounts(self):
        product = self.make_product(price="1000")
        end = timezone.now() + timedelta(days=7)

        product = self.catalog.set_discount(product.pk, percent=Decimal("10"), end=end)
        self.assertEqual(product.discount_price, Decimal("900.00"))
        self.assertTrue(product.discount_active())

        with self.assertRaises(InvalidInput):
            self.catalog.set_discount(product.pk, fixed_price=Decimal("1000"), end=end)
        with self.assertRaises(InvalidInput):
            self.catalog.set_discount(
                product.pk, fixed_price=Decimal("500"), end=timezone.now() - timedelta(days=1)
            )

        product = self.catalog.remove_discount(product.pk)
        self.assertIsNone(product.discount_price)
        self.assertFalse(product.discount_active())

    def test_discounted_product_sells_at_discount(self):
        product = self.make_product(price="1000", stock="10")
        self.catalog.set_discount(
            product.pk, fixed_price=Decimal("750"), end=timezone.now() + timedelta(days=1)
        )
        order = self.orders.create(self.seller, [line(product, 2)])
        self.assertEqual(order.final_amount, Decimal("1500.00"))
        self.assertEqual(order.total_amount, Decimal("2000.00"))

    def test_deleted_product_is_kept_but_not_sellable(self):
        product = self.make_product()
        self.catalog.delete_product(product.pk)
        product.refresh_from_db()
        self.assertTrue(product.is_deleted)
        self.assertFalse(product.is_active)
        with self.assertRaises(InvalidInput):
            self.orders.create(self.seller, [line(product, 1)])


class EventTests(StoreTestCase):
    def test_events_wait_for_commit(self):
        product = self.make_product()
        self.orders.create(self.seller, [line(product, 1)])
        self.assertEqual(self.transport.sent, [])

    def test_create_broadcasts_new_order_and_stock(self):
        product = self.make_product(stock="10")
        with self.captureOnCommitCallbacks(execute=True):
            order = self.orders.create(self.seller, [line(product, 4)])

        new_order = [sent for sent in self.transport.sent if sent[1] == Event.NEW_ORDER]
        self.assertEqual(new_order[0][0], Group.CASHIERS)
        self.assertEqual(new_order[0][2]["id"], order.pk)
        group, _, payload = next(
            sent for sent in self.transport.sent if sent[1] == Event.STOCK_UPDATE
        )
        self.assertEqual(group, Group.EVERYONE)
        self.assertEqual(payload["action"], "subtract")
        self.assertEqual(payload["items"][0]["id"], product.pk)
        self.assertEqual(Decimal(payload["items"][0]["stock"]), Decimal("6"))

    def test_failed_operation_broadcasts_nothing(self):
        product = self.make_product(stock="1")
        with self.captureOnCommitCallbacks(execute=True):
            with self.assertRaises(InsufficientStock):
                self.orders.create(self.seller, [line(product, 3)])
        self.assertEqual(self.transport.sent, [])

    def test_status_and_refund_events(self):
        product = self.make_product(stock="10")
        order = self.orders.create(self.seller, [line(product, 2)])
        with self.captureOnCommitCallbacks(execute=True):
            self.orders.change_status(order.pk, self.cashier, Order.Status.COMPLETED)
        self.assertIn((Group.CASHIERS, Event.ORDER_STATUS_CHANGE), [s[:2] for s in self.transport.sent])

        self.transport.sent.clear()
        with self.captureOnCommitCallbacks(execute=True):
            self.refunds.refund(order.pk, self.owner, [ReturnRequest(product.pk, Decimal("1"))])
        self.assertEqual(
            self.transport.events(),
            [Event.ORDER_UPDATED, Event.STOCK_UPDATE, Event.ORDER_STATUS_CHANGE],
        )

    def test_broken_transport_does_not_fail_the_order(self):
        orders = OrderService(EventPublisher(FailingTransport()))
        product = self.make_product(stock="10")

        with self.assertLogs("store.events", level="ERROR"):
            with self.captureOnCommitCallbacks(execute=True):
                order = orders.create(self.seller, [line(product, 1)])

        self.assertTrue(Order.objects.filter(pk=order.pk).exists())
        self.assertEqual(self.stock_of(product), Decimal("9"))

    def test_signal_transport_reaches_receivers(self):
        received = []

        def listener(sender, group, event, payload, **kwargs):
            received.append((group, event, payload))

        def broken(sender, **kwargs):
            raise RuntimeError("gateway failed")

        store_event.connect(listener)
        store_event.connect(broken)
        self.addCleanup(store_event.disconnect, listener)
        self.addCleanup(store_event.disconnect, broken)

        with self.assertLogs("store.events", level="ERROR"):
            SignalTransport().send(Group.SELLERS, Event.PRODUCT_UPDATED, {"id": 1})

        self.assertEqual(received, [(Group.SELLERS, Event.PRODUCT_UPDATED, {"id": 1})])


class StoreAPITestCase(StoreTestCase):
    def setUp(self):
        super().setUp()
        self.client = APIClient()

    def login(self, user):
        self.client.force_authenticate(user=user)


class OrderAPITests(StoreAPITestCase):
    def test_seller_creates_order(self):
        product = self.make_product(price="1000", stock="10")
        self.login(self.seller)

        response = self.client.post(
            reverse("order-list"),
            {"items": [{"product": product.pk, "quantity": "4"}]},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["final_amount"], "4000.00")
        self.assertEqual(response.data["status"], Order.Status.DRAFT)
        self.assertEqual(response.data["seller"]["id"], self.seller.pk)
        self.assertEqual(len(response.data["items"]), 1)
        self.assertEqual(self.stock_of(product), Decimal("6"))

    def test_insufficient_stock_is_409(self):
        product = self.make_product(stock="2")
        self.login(self.seller)

        response = self.client.post(
            reverse("order-list"),
            {"items": [{"product": product.pk, "quantity": "5"}]},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["error"], "insufficient_stock")
        self.assertIn(product.name, response.data["message"])

    def test_validation_errors_are_rendered_uniformly(self):
        self.login(self.seller)
        response = self.client.post(reverse("order-list"), {"items": []}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"], "invalid_input")
        self.assertIn("items", response.data["fields"])

    def test_anonymous_requests_are_rejected(self):
        response = self.client.get(reverse("order-list"))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data["error"], "not_authenticated")

    def test_seller_sees_only_own_open_orders(self):
        product = self.make_product(stock="50")
        mine = self.orders.create(self.seller, [line(product, 1)])
        self.orders.create(self.other_seller, [line(product, 1)])
        refunded = self.completed_order(product, 1)
        self.refunds.refund(refunded.pk, self.owner, [ReturnRequest(product.pk, Decimal("1"))])

        self.login(self.seller)
        response = self.client.get(reverse("order-list"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([row["id"] for row in response.data], [mine.pk])

        self.login(self.owner)
        response = self.client.get(reverse("order-list"))
        self.assertEqual(len(response.data), 2)

    def test_edit_through_patch(self):
        product = self.make_product(stock="10")
        order = self.orders.create(self.seller, [line(product, 3)])
        self.login(self.seller)

        response = self.client.patch(
            reverse("order-detail", args=[order.pk]),
            {"items": [{"product": product.pk, "quantity": "1"}]},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["final_amount"], "1000.00")
        self.assertEqual(self.stock_of(product), Decimal("9"))

    def test_seller_cannot_patch_foreign_order(self):
        product = self.make_product(stock="10")
        order = self.orders.create(self.other_seller, [line(product, 3)])
        self.login(self.seller)

        response = self.client.patch(
            reverse("order-detail", args=[order.pk]),
            {"items": [{"product": product.pk, "quantity": "1"}]},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data["error"], "forbidden")

    def test_status_change_is_for_front_desk(self):
        product = self.make_product(stock="10")
        order = self.orders.create(self.seller, [line(product, 1)])
        url = reverse("order-change-status", args=[order.pk])

        self.login(self.seller)
        response = self.client.post(url, {"status": "completed"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data["error"], "permission_denied")

        self.login(self.cashier)
        response = self.client.post(url, {"status": "completed"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], Order.Status.COMPLETED)
        self.assertEqual(response.data["cashier"]["id"], self.cashier.pk)

        response = self.client.post(url, {"status": "cancelled"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["error"], "invalid_state")

    def test_missing_order_is_404(self):
        self.login(self.cashier)
        response = self.client.post(
            reverse("order-change-status", args=[424242]),
            {"status": "completed"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data["error"], "not_found")

    def test_print(self):
        product = self.make_product()
        order = self.orders.create(self.seller, [line(product, 1)])
        self.login(self.seller)
        response = self.client.post(reverse("order-mark-printed", args=[order.pk]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data["is_printed"])

    def test_refund_endpoint(self):
        product = self.make_product(price="1000", stock="10")
        order = self.completed_order(product, 5)
        url = reverse("order-refund", args=[order.pk])
        payload = {"items": [{"product": product.pk, "quantity": "2"}], "reason": "damaged"}

        self.login(self.cashier)
        response = self.client.post(url, payload, format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.login(self.owner)
        response = self.client.post(url, payload, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["refund"]["total_amount"], "2000.00")
        self.assertEqual(response.data["order"]["status"], Order.Status.PARTIALLY_REFUNDED)

        response = self.client.get(reverse("refund-list"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]["items"][0]["quantity"], "2.000")


class CatalogAPITests(StoreAPITestCase):
    def test_owner_creates_product_with_initial_stock(self):
        self.login(self.owner)
        response = self.client.post(
            reverse("product-list"),
            {"name": "Yogurt", "price": "8000", "barcode": "4780555", "initial_stock": "12"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["stock"], "12.000")
        self.assertTrue(
            StockHistory.objects.filter(
                product_id=response.data["id"], reason=StockHistory.Reason.INITIAL
            ).exists()
        )

    def test_seller_reads_but_cannot_write_catalog(self):
        self.make_product()
        self.login(self.seller)
        self.assertEqual(self.client.get(reverse("product-list")).status_code, status.HTTP_200_OK)
        response = self.client.post(
            reverse("product-list"), {"name": "X", "price": "1"}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_hidden_products_only_on_request(self):
        self.make_product(name="Visible")
        self.make_product(name="Hidden", is_active=False)
        self.make_product(name="Deleted", is_deleted=True)
        self.login(self.owner)

        names = [row["name"] for row in self.client.get(reverse("product-list")).data]
        self.assertEqual(names, ["Visible"])
        response = self.client.get(reverse("product-list"), {"include_inactive": "true"})
        self.assertEqual(sorted(row["name"] for row in response.data), ["Hidden", "Visible"])

    def test_quick_search_needs_two_characters(self):
        self.make_product(name="Coffee", barcode="47801")
        self.login(self.cashier)

        response = self.client.get(reverse("product-quick-search"), {"q": "c"})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"], "invalid_input")

        response = self.client.get(reverse("product-quick-search"), {"q": "coff"})
        self.assertEqual([row["name"] for row in response.data], ["Coffee"])

    def test_add_stock_and_discount_endpoints(self):
        product = self.make_product(price="1000", stock="1")
        self.login(self.owner)

        response = self.client.post(
            reverse("product-add-stock", args=[product.pk]), {"quantity": "4"}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["stock"], "5.000")

        end = (timezone.now() + timedelta(days=2)).isoformat()
        response = self.client.post(
            reverse("product-discount", args=[product.pk]),
            {"percent": "20", "end": end},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["discount_price"], "800.00")

        response = self.client.delete(reverse("product-discount", args=[product.pk]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIsNone(response.data["discount_price"])

    def test_trending_ranks_completed_sales(self):
        cola = self.make_product(name="Cola", stock="10")
        tea = self.make_product(name="Tea", stock="10")
        bread = self.make_product(name="Bread", stock="10")
        self.make_product(name="Salt", stock="10")
        self.make_product(name="Hidden", stock="10", is_active=False)
        Product.objects.filter(pk=bread.pk).update(
            created_at=timezone.now() - timedelta(days=1)
        )
        self.completed_order(cola, 3)
        self.completed_order(tea, 1)
        self.orders.create(self.seller, [line(bread, 5)])
        self.login(self.seller)

        response = self.client.get(reverse("product-trending"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(
            [(row["name"], row["total_sold"]) for row in response.data],
            [("Cola", "3.000"), ("Tea", "1.000"), ("Salt", "0.000"), ("Bread", "0.000")],
        )
        response = self.client.get(reverse("product-trending"), {"limit": "2"})
        self.assertEqual([row["id"] for row in response.data], [cola.pk, tea.pk])
        response = self.client.get(reverse("product-trending"), {"limit": "zero"})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_delete_is_soft(self):
        product = self.make_product()
        self.login(self.owner)
        response = self.client.delete(reverse("product-detail", args=[product.pk]))
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertTrue(Product.objects.filter(pk=product.pk, is_deleted=True).exists())

    def test_duplicate_barcode_is_409(self):
        self.make_product(name="First", barcode="111")
        self.login(self.owner)
        response = self.client.post(
            reverse("product-list"),
            {"name": "Second", "price": "100", "barcode": "111"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["error"], "duplicate_barcode")


class StockHistoryAPITests(StoreAPITestCase):
    def setUp(self):
        super().setUp()
        self.product = self.make_product(stock="100")
        for _ in range(5):
            self.orders.create(self.seller, [line(self.product, 1)])

    def test_paginated_newest_first(self):
        self.login(self.cashier)
        response = self.client.get(reverse("stock-history-list"), {"limit": 2, "page": 2})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(
            response.data["pagination"],
            {"total": 5, "page": 2, "limit": 2, "total_pages": 3, "has_more": True},
        )
        self.assertEqual(len(response.data["results"]), 2)
        ids = [row["id"] for row in response.data["results"]]
        self.assertEqual(ids, sorted(ids, reverse=True))

    def test_date_filter_and_validation(self):
        self.login(self.owner)
        today = timezone.localdate()
        response = self.client.get(
            reverse("stock-history-list"),
            {"start_date": today.isoformat(), "end_date": today.isoformat()},
        )
        self.assertEqual(response.data["pagination"]["total"], 5)

        response = self.client.get(
            reverse("stock-history-list"),
            {
                "start_date": today.isoformat(),
                "end_date": (today - timedelta(days=1)).isoformat(),
            },
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"], "invalid_input")

    def test_sellers_cannot_read_history(self):
        self.login(self.seller)
        response = self.client.get(reverse("stock-history-list"))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
