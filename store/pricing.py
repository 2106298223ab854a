"""
Order pricing.

Pure functions over already loaded products: no queries, no writes. Every
amount is a ``Decimal``; money is rounded to 0.01 (ROUND_HALF_UP) at each
stored step, so a stored order can always be re-added from its stored lines.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from django.utils import timezone

from .exceptions import InvalidInput
from .models import Currency, DiscountType

TWOPLACES = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0")


def money(value):
    return Decimal(value).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LineRequest:
    product_id: int
    quantity: Decimal
    price: Decimal | None = None
    manual_discount_value: Decimal = ZERO
    manual_discount_type: str = DiscountType.FIXED


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    quantity: Decimal
    price: Decimal
    original_price: Decimal
    total_price: Decimal
    original_total: Decimal
    manual_discount_value: Decimal
    manual_discount_type: str


@dataclass(frozen=True)
class Quote:
    lines: tuple
    total_amount: Decimal
    items_total: Decimal
    discount_value: Decimal
    discount_type: str
    discount_amount: Decimal
    final_amount: Decimal


def convert(amount, source, target, rate):
    """Convert ``amount`` from ``source`` to ``target`` currency.

    ``rate`` is the number of UZS per one USD.
    """
    if source == target:
        return Decimal(amount)
    rate = Decimal(rate)
    if rate <= 0:
        raise InvalidInput(f"Exchange rate must be positive, got {rate}.")
    if source == Currency.USD and target == Currency.UZS:
        return amount * rate
    if source == Currency.UZS and target == Currency.USD:
        return amount / rate
    raise InvalidInput(f"Unsupported currency pair {source}/{target}.")


def catalog_unit_price(product, at=None):
    """Price a product sells at in its native currency, discount included."""
    if product.discount_active(at):
        return product.discount_price
    return product.price


def apply_manual_discount(unit_price, value, discount_type):
    if not value:
        return unit_price
    if discount_type == DiscountType.PERCENT:
        return unit_price - unit_price * Decimal(value) / HUNDRED
    return unit_price - Decimal(value)


def settlement_price(product, currency, rate, override=None, at=None):
    """The single place a product's unit price in an order currency is resolved.

    Priority: explicit override, active catalog discount, selling price. The
    override is given in the product's native currency like catalog prices.
    """
    native = override if override is not None else catalog_unit_price(product, at)
    return convert(native, product.currency, currency, rate)


def price_line(request, product, currency, rate, at=None):
    unit = settlement_price(product, currency, rate, override=request.price, at=at)
    # An explicit price is the sold price; the manual discount is only recorded.
    if request.price is None:
        unit = apply_manual_discount(
            unit, request.manual_discount_value, request.manual_discount_type
        )
    unit = money(unit)
    if unit < 0:
        raise InvalidInput(
            f"Manual discount on product {product.pk} ({product.name}) exceeds its price."
        )
    original = money(convert(product.price, product.currency, currency, rate))
    quantity = Decimal(request.quantity)
    return PricedLine(
        product_id=product.pk,
        quantity=quantity,
        price=unit,
        original_price=original,
        total_price=money(unit * quantity),
        original_total=money(original * quantity),
        manual_discount_value=Decimal(request.manual_discount_value or ZERO),
        manual_discount_type=request.manual_discount_type or DiscountType.FIXED,
    )


def discount_amount(items_total, value, discount_type):
    value = Decimal(value or ZERO)
    if value <= 0:
        return ZERO
    if discount_type == DiscountType.PERCENT:
        return money(items_total * value / HUNDRED)
    return money(value)


def quote_order(
    requests,
    products,
    currency,
    rate,
    discount_value=ZERO,
    discount_type=DiscountType.FIXED,
    at=None,
):
    """Price a full line set.

    ``products`` maps product id to product. Raises ``InvalidInput`` when the
    global discount would push the final amount below zero.
    """
    at = at or timezone.now()
    lines = tuple(
        price_line(request, products[request.product_id], currency, rate, at)
        for request in requests
    )
    items_total = sum((line.total_price for line in lines), ZERO)
    total_amount = sum((line.original_total for line in lines), ZERO)
    discount = discount_amount(items_total, discount_value, discount_type)
    final_amount = items_total - discount
    if final_amount < 0:
        raise InvalidInput(
            f"Discount {discount} exceeds the order total {items_total}."
        )
    return Quote(
        lines=lines,
        total_amount=total_amount,
        items_total=items_total,
        discount_value=Decimal(discount_value or ZERO),
        discount_type=discount_type or DiscountType.FIXED,
        discount_amount=discount,
        final_amount=final_amount,
    )


def remaining_final_amount(line_totals, discount):
    """Final amount after a refund shrank the order; clamped at zero."""
    return max(ZERO, sum(line_totals, ZERO) - Decimal(discount or ZERO))
