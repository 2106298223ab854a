"""
Catalog operations that touch stock or prices.

Plain category/partner CRUD lives in the viewsets; everything here either
writes the stock ledger, the price history or product discount fields.
"""

import logging
from contextlib import contextmanager
from decimal import Decimal

from django.db import IntegrityError, transaction
from django.utils import timezone

from .events import Event, get_default_publisher
from .exceptions import DuplicateBarcode, InvalidInput, NotFound
from .ledger import apply_stock_changes, stock_changes_payload, unit_of_work
from .models import Currency, PriceHistory, Product, StockHistory
from .pricing import HUNDRED, money

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

EDITABLE_FIELDS = (
    "name",
    "barcode",
    "unit",
    "category",
    "currency",
    "price",
    "incoming_price",
    "discount_price",
    "is_active",
)


def product_payload(product):
    return {
        "id": product.pk,
        "name": product.name,
        "barcode": product.barcode,
        "currency": product.currency,
        "price": str(product.price),
        "discount_price": (
            str(product.discount_price) if product.discount_price is not None else None
        ),
        "stock": str(product.stock),
        "is_active": product.is_active,
    }


def lock_product(product_id):
    try:
        return Product.objects.select_for_update().get(pk=product_id)
    except Product.DoesNotExist:
        raise NotFound(f"Product {product_id} not found.")


def barcode_taken(barcode, exclude_id=None):
    queryset = Product.objects.filter(barcode=barcode)
    if exclude_id is not None:
        queryset = queryset.exclude(pk=exclude_id)
    return queryset.exists()


def ensure_barcode_free(barcode, exclude_id=None):
    if barcode_taken(barcode, exclude_id):
        raise DuplicateBarcode(f"Barcode {barcode} is already used by another product.")


@contextmanager
def saving_barcode(barcode, exclude_id=None):
    """Report a unique barcode violation raised by the save as a conflict.

    The check in ``ensure_barcode_free`` cannot see a concurrent insert that
    has not committed yet; the unique index does.
    """
    try:
        with transaction.atomic():
            yield
    except IntegrityError as exc:
        if barcode and barcode_taken(barcode, exclude_id):
            raise DuplicateBarcode(
                f"Barcode {barcode} is already used by another product."
            ) from exc
        raise


class CatalogService:
    def __init__(self, publisher=None):
        self.publisher = publisher or get_default_publisher()

    def create_product(
        self,
        actor,
        *,
        name,
        price,
        currency=Currency.UZS,
        barcode=None,
        category=None,
        unit="pcs",
        incoming_price=ZERO,
        discount_price=None,
        stock=ZERO,
    ):
        stock = Decimal(stock or ZERO)
        if stock < 0:
            raise InvalidInput("Initial stock cannot be negative.")
        barcode = barcode or None
        with unit_of_work():
            if barcode:
                ensure_barcode_free(barcode)
            with saving_barcode(barcode):
                product = Product.objects.create(
                    name=name,
                    barcode=barcode,
                    category=category,
                    unit=unit,
                    currency=currency,
                    price=price,
                    incoming_price=incoming_price if incoming_price is not None else price,
                    discount_price=discount_price,
                )
            apply_stock_changes(
                {product.pk: product},
                {product.pk: stock},
                actor=actor,
                reason=StockHistory.Reason.INITIAL,
                note="initial receipt",
            )
            self.publisher.publish(Event.PRODUCT_CREATED, product_payload(product))
        logger.info("Product %s created with stock %s", product.pk, product.stock)
        return product

    def update_product(self, product_id, actor, **changes):
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise InvalidInput(f"Fields cannot be changed here: {', '.join(sorted(unknown))}.")
        with unit_of_work():
            product = lock_product(product_id)
            if "barcode" in changes:
                changes["barcode"] = changes["barcode"] or None
                if changes["barcode"]:
                    ensure_barcode_free(changes["barcode"], exclude_id=product.pk)
            new_price = changes.get("price")
            if new_price is not None and Decimal(new_price) != product.price:
                PriceHistory.objects.create(
                    product=product,
                    old_price=product.price,
                    new_price=new_price,
                    currency=changes.get("currency", product.currency),
                    changed_by=actor,
                )
            for field, value in changes.items():
                setattr(product, field, value)
            with saving_barcode(product.barcode, exclude_id=product.pk):
                product.save()
            self.publisher.publish(Event.PRODUCT_UPDATED, product_payload(product))
        return product

    def add_stock(self, product_id, actor, quantity, new_price=None):
        """Receive goods; optionally reprice the product at the same time."""
        quantity = Decimal(quantity)
        if quantity <= 0:
            raise InvalidInput("Restock quantity must be positive.")
        with unit_of_work():
            product = lock_product(product_id)
            new_prices = {}
            if new_price is not None and Decimal(new_price) > 0:
                new_prices[product.pk] = Decimal(new_price)
                if new_prices[product.pk] != product.price:
                    PriceHistory.objects.create(
                        product=product,
                        old_price=product.price,
                        new_price=new_price,
                        currency=product.currency,
                        changed_by=actor,
                    )
            entries = apply_stock_changes(
                {product.pk: product},
                {product.pk: quantity},
                actor=actor,
                reason=StockHistory.Reason.RESTOCK,
                note="restock",
                new_prices=new_prices,
            )
            self.publisher.publish(
                Event.STOCK_UPDATE,
                {"action": "add", "items": stock_changes_payload(entries)},
            )
            self.publisher.publish(Event.PRODUCT_UPDATED, product_payload(product))
        logger.info("Product %s restocked by %s, now %s", product.pk, quantity, product.stock)
        return product

    def set_discount(self, product_id, *, end, percent=None, fixed_price=None, start=None):
        if (percent is None) == (fixed_price is None):
            raise InvalidInput("Give either a percent or a fixed discount price.")
        start = start or timezone.now()
        if end <= start:
            raise InvalidInput("Discount must end after it starts.")
        with unit_of_work():
            product = lock_product(product_id)
            if percent is not None:
                discount_price = money(product.price - product.price * Decimal(percent) / HUNDRED)
            else:
                discount_price = money(fixed_price)
            if discount_price <= 0 or discount_price >= product.price:
                raise InvalidInput(
                    f"Discount price {discount_price} must be positive and below "
                    f"the price {product.price}."
                )
            product.discount_price = discount_price
            product.discount_start = start
            product.discount_end = end
            product.save(
                update_fields=["discount_price", "discount_start", "discount_end", "updated_at"]
            )
            self.publisher.publish(Event.PRODUCT_UPDATED, product_payload(product))
        return product

    def remove_discount(self, product_id):
        with unit_of_work():
            product = lock_product(product_id)
            product.discount_price = None
            product.discount_start = None
            product.discount_end = None
            product.save(
                update_fields=["discount_price", "discount_start", "discount_end", "updated_at"]
            )
            self.publisher.publish(Event.PRODUCT_UPDATED, product_payload(product))
        return product

    def delete_product(self, product_id):
        """Soft delete: the row stays for order and ledger history."""
        with unit_of_work():
            product = lock_product(product_id)
            product.is_deleted = True
            product.is_active = False
            product.save(update_fields=["is_deleted", "is_active", "updated_at"])
            self.publisher.publish(Event.PRODUCT_DELETED, {"id": product.pk})
        return product
