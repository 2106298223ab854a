"""
Stock ledger.

Every change of ``Product.stock`` goes through :func:`apply_stock_changes`,
which writes exactly one ``StockHistory`` row per product it touches. Callers
must run inside :func:`unit_of_work` and pass products obtained from
:func:`lock_products`.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, time

from django.conf import settings
from django.db import OperationalError, connection, transaction
from django.utils import timezone

from .exceptions import InsufficientStock, InvalidInput, LockContention
from .models import Product, StockHistory

logger = logging.getLogger(__name__)

LOCK_NOT_AVAILABLE = "55P03"


def _lock_timeout_ms():
    return int(getattr(settings, "STORE_LOCK_TIMEOUT_MS", 5000))


def _is_lock_contention(exc):
    cause = exc.__cause__
    code = getattr(cause, "sqlstate", None) or getattr(cause, "pgcode", None)
    if code == LOCK_NOT_AVAILABLE:
        return True
    return "database is locked" in str(exc)


@contextmanager
def unit_of_work():
    """One atomic transaction with a bounded wait on row locks.

    Lock timeouts surface as ``LockContention``; any exception rolls back
    every write made inside the block.
    """
    try:
        with transaction.atomic():
            if connection.vendor == "postgresql":
                with connection.cursor() as cursor:
                    cursor.execute(
                        "SELECT set_config('lock_timeout', %s, true)",
                        [f"{_lock_timeout_ms()}ms"],
                    )
            yield
    except OperationalError as exc:
        if _is_lock_contention(exc):
            logger.warning("Row lock not granted in time: %s", exc)
            raise LockContention() from exc
        raise


def lock_products(product_ids):
    """Lock the given product rows, in id order, until the transaction ends."""
    ids = sorted(set(product_ids))
    if not ids:
        return {}
    products = Product.objects.select_for_update().filter(pk__in=ids).order_by("pk")
    return {product.pk: product for product in products}


def ensure_available(products, deltas):
    """Validate a whole delta set before anything is written."""
    for product_id, delta in sorted(deltas.items()):
        product = products[product_id]
        if product.stock + delta < 0:
            raise InsufficientStock(
                f"Insufficient stock for {product.name} (id {product.pk}): "
                f"available {product.stock}, requested {-delta}."
            )


def apply_stock_changes(
    products, deltas, *, actor, reason, note="", order=None, new_prices=None
):
    """Apply signed per-product deltas and journal them.

    ``products`` maps id to a locked product, ``deltas`` maps id to a signed
    ``Decimal``. Zero deltas are skipped. Returns the written ledger rows.
    """
    ensure_available(products, deltas)
    new_prices = new_prices or {}
    entries = []
    now = timezone.now()
    for product_id, delta in sorted(deltas.items()):
        if not delta:
            continue
        product = products[product_id]
        old_stock = product.stock
        product.stock = old_stock + delta
        update_fields = ["stock", "updated_at"]
        new_price = new_prices.get(product_id)
        if new_price is not None:
            product.price = new_price
            update_fields.append("price")
        product.save(update_fields=update_fields)
        entries.append(
            StockHistory.objects.create(
                product=product,
                movement_type=(
                    StockHistory.MovementType.INBOUND
                    if delta > 0
                    else StockHistory.MovementType.OUTBOUND
                ),
                reason=reason,
                quantity=abs(delta),
                old_stock=old_stock,
                new_stock=product.stock,
                new_price=new_price,
                order=order,
                added_by=actor,
                note=note,
                created_at=now,
            )
        )
    return entries


def stock_changes_payload(entries):
    """Broadcast shape of a batch of ledger rows."""
    return [
        {
            "id": entry.product_id,
            "quantity": str(entry.quantity),
            "delta": str(entry.delta),
            "stock": str(entry.new_stock),
        }
        for entry in entries
    ]


def _day_bound(value, end=False):
    if isinstance(value, datetime):
        moment = value
    else:
        moment = datetime.combine(value, time.max if end else time.min)
    if timezone.is_naive(moment):
        moment = timezone.make_aware(moment)
    return moment


def history(start_date=None, end_date=None, product_id=None):
    """Ledger rows, newest first; dates are inclusive whole days."""
    queryset = StockHistory.objects.select_related("product", "added_by", "order")
    if start_date and end_date and start_date > end_date:
        raise InvalidInput("start_date must not be after end_date.")
    if start_date:
        queryset = queryset.filter(created_at__gte=_day_bound(start_date))
    if end_date:
        queryset = queryset.filter(created_at__lte=_day_bound(end_date, end=True))
    if product_id:
        queryset = queryset.filter(product_id=product_id)
    return queryset.order_by("-created_at", "-id")
