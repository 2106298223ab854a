from decimal import Decimal

from django.conf import settings
from django.db import models
from django.utils import timezone

MONEY = {"max_digits": 18, "decimal_places": 2}
QUANTITY = {"max_digits": 14, "decimal_places": 3}
ZERO = Decimal("0")


class TimeStampedModel(models.Model):
    """Abstract base model adding created/updated timestamps."""

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class AppendOnlyModel(models.Model):
    """Journal rows: written once, never updated or deleted."""

    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError(f"{type(self).__name__} rows are append-only")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError(f"{type(self).__name__} rows are append-only")


class Currency(models.TextChoices):
    UZS = "UZS", "UZS"
    USD = "USD", "USD"


class DiscountType(models.TextChoices):
    PERCENT = "percent", "Percent"
    FIXED = "fixed", "Fixed"


class Category(TimeStampedModel):
    """Product categories for organization and filtering."""

    name = models.CharField(max_length=150, unique=True)
    description = models.TextField(blank=True)

    class Meta:
        ordering = ["name"]
        verbose_name_plural = "Categories"

    def __str__(self):
        return self.name


class Product(TimeStampedModel):
    """A sellable catalog item.

    ``price`` and ``incoming_price`` are stored in the product's native
    ``currency``; orders convert them to their settlement currency.
    ``stock`` is only ever changed through the stock ledger.
    """

    name = models.CharField(max_length=255)
    barcode = models.CharField(max_length=64, unique=True, null=True, blank=True)
    category = models.ForeignKey(
        Category,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="products",
    )
    unit = models.CharField(max_length=20, default="pcs")
    currency = models.CharField(
        max_length=3, choices=Currency.choices, default=Currency.UZS
    )
    price = models.DecimalField(**MONEY)
    incoming_price = models.DecimalField(**MONEY, default=ZERO)
    discount_price = models.DecimalField(**MONEY, null=True, blank=True)
    discount_start = models.DateTimeField(null=True, blank=True)
    discount_end = models.DateTimeField(null=True, blank=True)
    stock = models.DecimalField(**QUANTITY, default=ZERO)
    is_active = models.BooleanField(default=True)
    is_deleted = models.BooleanField(default=False)

    class Meta:
        ordering = ["-created_at"]
        indexes = [models.Index(fields=["name"], name="store_product_name_idx")]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(stock__gte=0), name="store_product_stock_non_negative"
            ),
        ]

    def __str__(self):
        return self.name

    @property
    def is_sellable(self):
        return self.is_active and not self.is_deleted

    def discount_active(self, at=None):
        """True when a positive discount price applies at the given moment."""
        if not self.discount_price or self.discount_price <= 0:
            return False
        at = at or timezone.now()
        if self.discount_start and at < self.discount_start:
            return False
        if self.discount_end and at > self.discount_end:
            return False
        return True


class PriceHistory(models.Model):
    product = models.ForeignKey(
        Product, on_delete=models.CASCADE, related_name="price_history"
    )
    old_price = models.DecimalField(**MONEY)
    new_price = models.DecimalField(**MONEY)
    currency = models.CharField(max_length=3, choices=Currency.choices)
    changed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="price_changes",
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-created_at"]
        verbose_name_plural = "Price history"

    def __str__(self):
        return f"{self.product_id}: {self.old_price} -> {self.new_price}"


class Partner(TimeStampedModel):
    """Customer or trade partner an order can be attributed to."""

    name = models.CharField(max_length=255)
    phone = models.CharField(max_length=24, blank=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


class Order(TimeStampedModel):
    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        COMPLETED = "completed", "Completed"
        CANCELLED = "cancelled", "Cancelled"
        PARTIALLY_REFUNDED = "partially_refunded", "Partially refunded"
        FULLY_REFUNDED = "fully_refunded", "Fully refunded"

    class PaymentMethod(models.TextChoices):
        CASH = "cash", "Cash"
        CARD = "card", "Card"
        TRANSFER = "transfer", "Transfer"
        DEBT = "debt", "Debt"

    class OrderType(models.TextChoices):
        RETAIL = "retail", "Retail"
        WHOLESALE = "wholesale", "Wholesale"

    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="orders"
    )
    cashier = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="processed_orders",
    )
    partner = models.ForeignKey(
        Partner,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="orders",
    )
    customer_name = models.CharField(max_length=255, blank=True)
    currency = models.CharField(
        max_length=3, choices=Currency.choices, default=Currency.UZS
    )
    exchange_rate = models.DecimalField(
        max_digits=14, decimal_places=4, default=Decimal("1")
    )
    total_amount = models.DecimalField(**MONEY, default=ZERO)
    discount_value = models.DecimalField(**MONEY, default=ZERO)
    discount_type = models.CharField(
        max_length=10, choices=DiscountType.choices, default=DiscountType.FIXED
    )
    discount_amount = models.DecimalField(**MONEY, default=ZERO)
    final_amount = models.DecimalField(**MONEY, default=ZERO)
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.DRAFT
    )
    payment_method = models.CharField(
        max_length=10, choices=PaymentMethod.choices, default=PaymentMethod.CASH
    )
    order_type = models.CharField(
        max_length=10, choices=OrderType.choices, default=OrderType.RETAIL
    )
    is_printed = models.BooleanField(default=False)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status"], name="store_order_status_idx"),
            models.Index(fields=["seller", "status"], name="store_order_seller_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(final_amount__gte=0),
                name="store_order_final_amount_non_negative",
            ),
        ]

    def __str__(self):
        return f"Order #{self.pk}"


class OrderItem(TimeStampedModel):
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(
        Product, on_delete=models.PROTECT, related_name="order_items"
    )
    quantity = models.DecimalField(**QUANTITY)
    price = models.DecimalField(**MONEY, help_text="Unit price actually charged")
    original_price = models.DecimalField(
        **MONEY, help_text="Catalog unit price in the order currency"
    )
    total_price = models.DecimalField(**MONEY)
    manual_discount_value = models.DecimalField(**MONEY, default=ZERO)
    manual_discount_type = models.CharField(
        max_length=10, choices=DiscountType.choices, default=DiscountType.FIXED
    )

    class Meta:
        ordering = ["order", "id"]

    def __str__(self):
        return f"{self.order} - {self.product_id} x {self.quantity}"


class Refund(AppendOnlyModel):
    order = models.ForeignKey(Order, on_delete=models.PROTECT, related_name="refunds")
    total_amount = models.DecimalField(**MONEY)
    reason = models.CharField(max_length=255, blank=True)
    refunded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="refunds",
    )

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"Refund #{self.pk} for order #{self.order_id}"


class RefundItem(AppendOnlyModel):
    refund = models.ForeignKey(Refund, on_delete=models.PROTECT, related_name="items")
    product = models.ForeignKey(
        Product, on_delete=models.PROTECT, related_name="refund_items"
    )
    quantity = models.DecimalField(**QUANTITY)
    price = models.DecimalField(**MONEY)

    class Meta:
        ordering = ["refund", "id"]

    def __str__(self):
        return f"{self.refund} - {self.product_id} x {self.quantity}"


class StockHistory(AppendOnlyModel):
    """One row per stock change of one product."""

    class MovementType(models.TextChoices):
        INBOUND = "in", "Inbound"
        OUTBOUND = "out", "Outbound"

    class Reason(models.TextChoices):
        INITIAL = "initial", "Initial receipt"
        RESTOCK = "restock", "Restock"
        SALE = "sale", "Sale"
        ORDER_EDIT = "order_edit", "Order edit"
        CANCELLATION = "cancellation", "Cancellation"
        REFUND = "refund", "Refund"

    product = models.ForeignKey(
        Product, on_delete=models.PROTECT, related_name="stock_history"
    )
    movement_type = models.CharField(max_length=3, choices=MovementType.choices)
    reason = models.CharField(max_length=20, choices=Reason.choices)
    quantity = models.DecimalField(**QUANTITY)
    old_stock = models.DecimalField(**QUANTITY)
    new_stock = models.DecimalField(**QUANTITY)
    new_price = models.DecimalField(**MONEY, null=True, blank=True)
    order = models.ForeignKey(
        Order,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="stock_history",
    )
    added_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="stock_history",
    )
    note = models.CharField(max_length=255, blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        verbose_name_plural = "Stock history"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gt=0), name="store_stockhistory_quantity_positive"
            ),
        ]

    def __str__(self):
        return f"{self.movement_type} {self.quantity} of {self.product_id}"

    @property
    def delta(self):
        if self.movement_type == self.MovementType.OUTBOUND:
            return -self.quantity
        return self.quantity
