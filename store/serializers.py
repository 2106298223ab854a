from decimal import Decimal

from django.conf import settings
from rest_framework import serializers

from accounts.serializers import UserBriefSerializer
from .models import (
    Category,
    Currency,
    DiscountType,
    Order,
    OrderItem,
    Partner,
    Product,
    Refund,
    RefundItem,
    StockHistory,
)
from .pricing import LineRequest
from .refunds import ReturnRequest

MIN_QUANTITY = Decimal("0.01")


def default_currency():
    return getattr(settings, "STORE_DEFAULT_CURRENCY", Currency.UZS)


class CategorySerializer(serializers.ModelSerializer):
    class Meta:
        model = Category
        fields = ["id", "name", "description", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]


class PartnerSerializer(serializers.ModelSerializer):
    class Meta:
        model = Partner
        fields = ["id", "name", "phone", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]


class ProductSerializer(serializers.ModelSerializer):
    category_name = serializers.CharField(
        source="category.name", read_only=True, allow_null=True
    )
    discount_active = serializers.SerializerMethodField()

    class Meta:
        model = Product
        fields = [
            "id",
            "name",
            "barcode",
            "category",
            "category_name",
            "unit",
            "currency",
            "price",
            "incoming_price",
            "discount_price",
            "discount_start",
            "discount_end",
            "discount_active",
            "stock",
            "is_active",
            "is_deleted",
            "created_at",
            "updated_at",
        ]
        read_only_fields = [
            "id",
            "discount_start",
            "discount_end",
            "stock",
            "is_deleted",
            "created_at",
            "updated_at",
        ]
        # Uniqueness is checked by the catalog service under a lock.
        extra_kwargs = {"barcode": {"validators": []}}

    def get_discount_active(self, obj) -> bool:
        return obj.discount_active()

    def validate_price(self, value):
        if value <= 0:
            raise serializers.ValidationError("Price must be positive.")
        return value


class TrendingProductSerializer(ProductSerializer):
    total_sold = serializers.DecimalField(
        max_digits=14, decimal_places=3, read_only=True
    )

    class Meta(ProductSerializer.Meta):
        fields = ProductSerializer.Meta.fields + ["total_sold"]
        read_only_fields = fields


class ProductCreateSerializer(ProductSerializer):
    initial_stock = serializers.DecimalField(
        max_digits=14,
        decimal_places=3,
        min_value=Decimal("0"),
        required=False,
        write_only=True,
    )

    class Meta(ProductSerializer.Meta):
        fields = ProductSerializer.Meta.fields + ["initial_stock"]


class AddStockSerializer(serializers.Serializer):
    quantity = serializers.DecimalField(
        max_digits=14, decimal_places=3, min_value=MIN_QUANTITY
    )
    new_price = serializers.DecimalField(
        max_digits=18, decimal_places=2, min_value=Decimal("0"), required=False
    )


class SetDiscountSerializer(serializers.Serializer):
    percent = serializers.DecimalField(
        max_digits=5,
        decimal_places=2,
        min_value=Decimal("0.01"),
        max_value=Decimal("99.99"),
        required=False,
    )
    fixed_price = serializers.DecimalField(
        max_digits=18, decimal_places=2, min_value=Decimal("0.01"), required=False
    )
    start = serializers.DateTimeField(required=False)
    end = serializers.DateTimeField()

    def validate(self, attrs):
        if ("percent" in attrs) == ("fixed_price" in attrs):
            raise serializers.ValidationError(
                "Provide exactly one of percent or fixed_price."
            )
        return attrs


class OrderItemSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(
        source="product.name", read_only=True, allow_null=True
    )

    class Meta:
        model = OrderItem
        fields = [
            "id",
            "product",
            "product_name",
            "quantity",
            "price",
            "original_price",
            "total_price",
            "manual_discount_value",
            "manual_discount_type",
        ]
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    items = OrderItemSerializer(many=True, read_only=True)
    seller = UserBriefSerializer(read_only=True)
    cashier = UserBriefSerializer(read_only=True)
    partner_name = serializers.CharField(
        source="partner.name", read_only=True, allow_null=True
    )

    class Meta:
        model = Order
        fields = [
            "id",
            "seller",
            "cashier",
            "partner",
            "partner_name",
            "customer_name",
            "currency",
            "exchange_rate",
            "total_amount",
            "discount_value",
            "discount_type",
            "discount_amount",
            "final_amount",
            "status",
            "payment_method",
            "order_type",
            "is_printed",
            "completed_at",
            "items",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class OrderItemWriteSerializer(serializers.Serializer):
    product = serializers.IntegerField(min_value=1)
    quantity = serializers.DecimalField(
        max_digits=14, decimal_places=3, min_value=MIN_QUANTITY
    )
    price = serializers.DecimalField(
        max_digits=18, decimal_places=2, min_value=Decimal("0"), required=False
    )
    manual_discount_value = serializers.DecimalField(
        max_digits=18, decimal_places=2, min_value=Decimal("0"), required=False
    )
    manual_discount_type = serializers.ChoiceField(
        choices=DiscountType.choices, required=False
    )

    def to_line_request(self, data):
        return LineRequest(
            product_id=data["product"],
            quantity=data["quantity"],
            price=data.get("price"),
            manual_discount_value=data.get("manual_discount_value") or Decimal("0"),
            manual_discount_type=data.get("manual_discount_type") or DiscountType.FIXED,
        )


class OrderWriteSerializer(serializers.Serializer):
    """Validated payload for the order service; never saves by itself."""

    items = OrderItemWriteSerializer(many=True, allow_empty=False)
    currency = serializers.ChoiceField(choices=Currency.choices, required=False)
    exchange_rate = serializers.DecimalField(
        max_digits=14, decimal_places=4, min_value=Decimal("0.0001"), required=False
    )
    discount_value = serializers.DecimalField(
        max_digits=18, decimal_places=2, min_value=Decimal("0"), required=False
    )
    discount_type = serializers.ChoiceField(
        choices=DiscountType.choices, required=False
    )
    customer_name = serializers.CharField(
        max_length=255, required=False, allow_blank=True
    )
    payment_method = serializers.ChoiceField(
        choices=Order.PaymentMethod.choices, required=False
    )
    order_type = serializers.ChoiceField(
        choices=Order.OrderType.choices, required=False
    )

    def line_requests(self):
        item_serializer = OrderItemWriteSerializer()
        return [
            item_serializer.to_line_request(item)
            for item in self.validated_data["items"]
        ]

    def options(self):
        return {
            key: value
            for key, value in self.validated_data.items()
            if key not in ("items", "partner")
        }


class OrderCreateSerializer(OrderWriteSerializer):
    partner = serializers.PrimaryKeyRelatedField(
        queryset=Partner.objects.all(), required=False, allow_null=True
    )

    def options(self):
        options = super().options()
        options.setdefault("currency", default_currency())
        options["partner"] = self.validated_data.get("partner")
        return options


class OrderStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Order.Status.choices)


class RefundItemWriteSerializer(serializers.Serializer):
    product = serializers.IntegerField(min_value=1)
    quantity = serializers.DecimalField(
        max_digits=14, decimal_places=3, min_value=MIN_QUANTITY
    )


class RefundWriteSerializer(serializers.Serializer):
    items = RefundItemWriteSerializer(many=True, allow_empty=False)
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True)

    def return_requests(self):
        return [
            ReturnRequest(product_id=item["product"], quantity=item["quantity"])
            for item in self.validated_data["items"]
        ]


class RefundItemSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(
        source="product.name", read_only=True, allow_null=True
    )

    class Meta:
        model = RefundItem
        fields = ["id", "product", "product_name", "quantity", "price"]
        read_only_fields = fields


class RefundSerializer(serializers.ModelSerializer):
    items = RefundItemSerializer(many=True, read_only=True)
    refunded_by = UserBriefSerializer(read_only=True)

    class Meta:
        model = Refund
        fields = [
            "id",
            "order",
            "total_amount",
            "reason",
            "refunded_by",
            "items",
            "created_at",
        ]
        read_only_fields = fields


class StockHistorySerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(
        source="product.name", read_only=True, allow_null=True
    )
    added_by = UserBriefSerializer(read_only=True)
    delta = serializers.DecimalField(max_digits=14, decimal_places=3, read_only=True)

    class Meta:
        model = StockHistory
        fields = [
            "id",
            "product",
            "product_name",
            "movement_type",
            "reason",
            "quantity",
            "delta",
            "old_stock",
            "new_stock",
            "new_price",
            "order",
            "added_by",
            "note",
            "created_at",
        ]
        read_only_fields = fields


class StockHistoryFilterSerializer(serializers.Serializer):
    start_date = serializers.DateField(required=False)
    end_date = serializers.DateField(required=False)
    product = serializers.IntegerField(min_value=1, required=False)
