"""
Refunds of sold goods.

Returned quantities go back to stock, shrink (or remove) the order's lines
and are journaled as an immutable ``Refund`` with its items. The order's
status and final amount are then derived from what is left on it.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from . import status as order_status
from .events import Event, get_default_publisher
from .exceptions import InvalidInput
from .ledger import apply_stock_changes, lock_products, stock_changes_payload, unit_of_work
from .models import Order, Refund, RefundItem, StockHistory
from .orders import lock_order, order_event_payload
from .pricing import money, remaining_final_amount

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass(frozen=True)
class ReturnRequest:
    product_id: int
    quantity: Decimal


class RefundService:
    def __init__(self, publisher=None):
        self.publisher = publisher or get_default_publisher()

    def refund(self, order_id, actor, items, reason=""):
        """Return items of an order. Returns the ``Refund`` or ``None``.

        Products that are not on the order are skipped without error.
        """
        items = list(items)
        with unit_of_work():
            order = lock_order(order_id)
            order_status.ensure_refundable(order)

            lines = {item.product_id: item for item in order.items.select_for_update()}
            products = lock_products(
                request.product_id for request in items if request.product_id in lines
            )

            total = ZERO
            refund_items = []
            entries = []
            for request in items:
                line = lines.get(request.product_id)
                if line is None:
                    logger.debug(
                        "Order #%s has no line for product %s, skipped",
                        order.pk,
                        request.product_id,
                    )
                    continue
                quantity = Decimal(request.quantity)
                if quantity <= 0 or quantity > line.quantity:
                    raise InvalidInput(
                        f"Cannot return {quantity} of product {line.product_id}: "
                        f"order #{order.pk} holds {line.quantity}."
                    )

                total += money(line.price * quantity)
                entries += apply_stock_changes(
                    products,
                    {line.product_id: quantity},
                    actor=actor,
                    reason=StockHistory.Reason.REFUND,
                    note=f"return: order #{order.pk}",
                    order=order,
                )

                remaining = line.quantity - quantity
                if remaining <= 0:
                    line.delete()
                    del lines[line.product_id]
                else:
                    line.quantity = remaining
                    line.total_price = money(line.price * remaining)
                    line.save(update_fields=["quantity", "total_price", "updated_at"])
                refund_items.append(
                    RefundItem(product_id=line.product_id, quantity=quantity, price=line.price)
                )

            refund = None
            if total > 0:
                refund = Refund.objects.create(
                    order=order, total_amount=total, reason=reason or "", refunded_by=actor
                )
                for refund_item in refund_items:
                    refund_item.refund = refund
                RefundItem.objects.bulk_create(refund_items)

            if lines:
                target = Order.Status.PARTIALLY_REFUNDED
                final_amount = remaining_final_amount(
                    (line.total_price for line in lines.values()), order.discount_amount
                )
            else:
                target = Order.Status.FULLY_REFUNDED
                final_amount = ZERO
            order_status.ensure_refund_transition(order, target)
            order.status = target
            order.final_amount = final_amount
            order.save(update_fields=["status", "final_amount", "updated_at"])

            self.publisher.publish(Event.ORDER_UPDATED, order_event_payload(order))
            self.publisher.publish(
                Event.STOCK_UPDATE,
                {"action": "add", "items": stock_changes_payload(entries)},
            )
            self.publisher.publish(
                Event.ORDER_STATUS_CHANGE, {"id": order.pk, "status": order.status}
            )
        logger.info(
            "Order #%s refunded %s by %s, now %s",
            order.pk,
            total,
            actor.pk,
            order.status,
        )
        return refund
