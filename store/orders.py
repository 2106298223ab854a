"""
Order transactions: create, edit, status change and printing.

Each operation is one unit of work. Product rows are locked before their
stock is checked, so two concurrent orders for the same product cannot both
pass the check against the same quantity.
"""

import logging
from decimal import Decimal

from django.utils import timezone

from . import status as order_status
from .events import Event, Group, get_default_publisher
from .exceptions import Forbidden, InvalidInput, NotFound
from .ledger import (
    apply_stock_changes,
    ensure_available,
    lock_products,
    stock_changes_payload,
    unit_of_work,
)
from .models import Currency, DiscountType, Order, OrderItem, StockHistory
from .pricing import quote_order

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def order_event_payload(order):
    return {
        "id": order.pk,
        "seller_id": order.seller_id,
        "customer_name": order.customer_name,
        "status": order.status,
        "total_amount": str(order.total_amount),
        "final_amount": str(order.final_amount),
        "created_at": order.created_at.isoformat() if order.created_at else None,
    }


def lock_order(order_id):
    try:
        return Order.objects.select_for_update().get(pk=order_id)
    except Order.DoesNotExist:
        raise NotFound(f"Order #{order_id} not found.")


def check_lines(requests):
    requests = list(requests)
    if not requests:
        raise InvalidInput("An order needs at least one item.")
    seen = set()
    for request in requests:
        if request.product_id in seen:
            raise InvalidInput(
                f"Product {request.product_id} is listed more than once."
            )
        seen.add(request.product_id)
        if Decimal(request.quantity) <= 0:
            raise InvalidInput(
                f"Quantity for product {request.product_id} must be positive."
            )
    return requests


def ensure_sellable(requests, products):
    for request in requests:
        product = products.get(request.product_id)
        if product is None or not product.is_sellable:
            raise InvalidInput(
                f"Product {request.product_id} does not exist or is not for sale."
            )


def build_items(order, quote):
    return [
        OrderItem(
            order=order,
            product_id=line.product_id,
            quantity=line.quantity,
            price=line.price,
            original_price=line.original_price,
            total_price=line.total_price,
            manual_discount_value=line.manual_discount_value,
            manual_discount_type=line.manual_discount_type,
        )
        for line in quote.lines
    ]


def quantities_by_product(rows):
    quantities = {}
    for row in rows:
        quantities[row.product_id] = quantities.get(row.product_id, ZERO) + row.quantity
    return quantities


class OrderService:
    def __init__(self, publisher=None):
        self.publisher = publisher or get_default_publisher()

    def create(
        self,
        seller,
        items,
        *,
        currency=Currency.UZS,
        exchange_rate=Decimal("1"),
        partner=None,
        customer_name="",
        discount_value=ZERO,
        discount_type=DiscountType.FIXED,
        payment_method=Order.PaymentMethod.CASH,
        order_type=Order.OrderType.RETAIL,
    ):
        """Create a draft order and take its items out of stock."""
        requests = check_lines(items)
        with unit_of_work():
            products = lock_products(request.product_id for request in requests)
            ensure_sellable(requests, products)
            quote = quote_order(
                requests, products, currency, exchange_rate, discount_value, discount_type
            )
            deltas = {request.product_id: -request.quantity for request in requests}
            ensure_available(products, deltas)

            order = Order.objects.create(
                seller=seller,
                partner=partner,
                customer_name=customer_name or "",
                currency=currency,
                exchange_rate=exchange_rate,
                total_amount=quote.total_amount,
                discount_value=quote.discount_value,
                discount_type=quote.discount_type,
                discount_amount=quote.discount_amount,
                final_amount=quote.final_amount,
                status=Order.Status.DRAFT,
                payment_method=payment_method,
                order_type=order_type,
            )
            OrderItem.objects.bulk_create(build_items(order, quote))
            entries = apply_stock_changes(
                products,
                deltas,
                actor=seller,
                reason=StockHistory.Reason.SALE,
                note=f"sale: order #{order.pk}",
                order=order,
            )

            self.publisher.publish(
                Event.NEW_ORDER, order_event_payload(order), Group.CASHIERS
            )
            self.publisher.publish(
                Event.STOCK_UPDATE,
                {"action": "subtract", "items": stock_changes_payload(entries)},
            )
        logger.info(
            "Order #%s created by %s: %s items, final %s %s",
            order.pk,
            seller.pk,
            len(requests),
            order.final_amount,
            order.currency,
        )
        return order

    def edit(
        self,
        order_id,
        actor,
        items,
        *,
        currency=None,
        exchange_rate=None,
        discount_value=None,
        discount_type=None,
        customer_name=None,
        payment_method=None,
        order_type=None,
    ):
        """Replace a draft order's lines, moving only the net stock difference."""
        requests = check_lines(items)
        with unit_of_work():
            order = lock_order(order_id)
            order_status.ensure_editable(order)
            if actor.is_seller and order.seller_id != actor.pk:
                raise Forbidden(f"Order #{order.pk} belongs to another seller.")

            old = quantities_by_product(order.items.select_for_update())
            new = {request.product_id: request.quantity for request in requests}
            deltas = {}
            for product_id in set(old) | set(new):
                change = new.get(product_id, ZERO) - old.get(product_id, ZERO)
                if change:
                    deltas[product_id] = -change

            products = lock_products(set(old) | set(new))
            ensure_sellable(requests, products)

            if currency is not None:
                order.currency = currency
            if exchange_rate is not None:
                order.exchange_rate = exchange_rate
            if discount_value is not None:
                order.discount_value = discount_value
            if discount_type is not None:
                order.discount_type = discount_type
            quote = quote_order(
                requests,
                products,
                order.currency,
                order.exchange_rate,
                order.discount_value,
                order.discount_type,
            )

            entries = apply_stock_changes(
                products,
                deltas,
                actor=actor,
                reason=StockHistory.Reason.ORDER_EDIT,
                note=f"order edit: order #{order.pk}",
                order=order,
            )
            order.items.all().delete()
            OrderItem.objects.bulk_create(build_items(order, quote))

            if customer_name is not None:
                order.customer_name = customer_name
            if payment_method is not None:
                order.payment_method = payment_method
            if order_type is not None:
                order.order_type = order_type
            order.total_amount = quote.total_amount
            order.discount_value = quote.discount_value
            order.discount_type = quote.discount_type
            order.discount_amount = quote.discount_amount
            order.final_amount = quote.final_amount
            order.save()

            payload = order_event_payload(order)
            payload["updated_by"] = actor.pk
            self.publisher.publish(Event.ORDER_UPDATED, payload)
            if entries:
                self.publisher.publish(
                    Event.STOCK_UPDATE,
                    {"action": "adjust", "items": stock_changes_payload(entries)},
                )
        logger.info(
            "Order #%s edited by %s: %s stock changes", order.pk, actor.pk, len(entries)
        )
        return order

    def change_status(self, order_id, actor, target):
        """Complete or cancel a draft order. Cancelling returns its stock."""
        with unit_of_work():
            order = lock_order(order_id)
            order_status.ensure_direct_transition(order, target)

            entries = []
            if target == Order.Status.CANCELLED:
                restore = quantities_by_product(order.items.all())
                products = lock_products(restore)
                entries = apply_stock_changes(
                    products,
                    restore,
                    actor=actor,
                    reason=StockHistory.Reason.CANCELLATION,
                    note=f"cancellation: order #{order.pk}",
                    order=order,
                )

            order.status = target
            order.cashier = actor
            update_fields = ["status", "cashier", "updated_at"]
            if target == Order.Status.COMPLETED:
                order.completed_at = timezone.now()
                update_fields.append("completed_at")
            order.save(update_fields=update_fields)

            change = {"id": order.pk, "status": order.status}
            if target == Order.Status.CANCELLED:
                self.publisher.publish(
                    Event.STOCK_UPDATE,
                    {"action": "add", "items": stock_changes_payload(entries)},
                )
                self.publisher.publish(Event.ORDER_STATUS_CHANGE, change)
            else:
                self.publisher.publish(
                    Event.ORDER_STATUS_CHANGE, change, Group.CASHIERS
                )
        logger.info("Order #%s set to %s by %s", order.pk, target, actor.pk)
        return order

    def mark_printed(self, order_id):
        with unit_of_work():
            order = lock_order(order_id)
            order.is_printed = True
            order.save(update_fields=["is_printed", "updated_at"])
            self.publisher.publish(
                Event.ORDER_PRINTED, order_event_payload(order), Group.CASHIERS
            )
        return order
