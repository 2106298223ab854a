import logging
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.db.models import DecimalField, Prefetch, Q, Sum, Value
from django.db.models.functions import Coalesce
from drf_spectacular.utils import OpenApiExample, OpenApiParameter, extend_schema
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from accounts.permissions import RolePermission
from . import ledger
from .catalog import CatalogService
from .exceptions import InvalidInput
from .models import Category, Order, OrderItem, Partner, Product, Refund
from .orders import OrderService
from .pagination import HistoryPagination
from .refunds import RefundService
from .serializers import (
    AddStockSerializer,
    CategorySerializer,
    OrderCreateSerializer,
    OrderSerializer,
    OrderStatusSerializer,
    OrderWriteSerializer,
    PartnerSerializer,
    ProductCreateSerializer,
    ProductSerializer,
    RefundSerializer,
    RefundWriteSerializer,
    SetDiscountSerializer,
    StockHistoryFilterSerializer,
    StockHistorySerializer,
    TrendingProductSerializer,
)

logger = logging.getLogger(__name__)

User = get_user_model()

ALL_ROLES = [User.Roles.OWNER, User.Roles.ADMIN, User.Roles.CASHIER, User.Roles.SELLER]
MANAGERS = [User.Roles.OWNER, User.Roles.ADMIN]
FRONT_DESK = [User.Roles.OWNER, User.Roles.ADMIN, User.Roles.CASHIER]

CATALOG_WRITES = {
    "create": MANAGERS,
    "update": MANAGERS,
    "partial_update": MANAGERS,
    "destroy": MANAGERS,
}

TRUTHY = ("1", "true", "yes")

TRENDING_LIMIT = 20


def order_queryset():
    return Order.objects.select_related("seller", "cashier", "partner").prefetch_related(
        Prefetch("items", queryset=OrderItem.objects.select_related("product"))
    )


@extend_schema(tags=["categories"])
class CategoryViewSet(viewsets.ModelViewSet):
    queryset = Category.objects.all().order_by("name")
    serializer_class = CategorySerializer
    permission_classes = [permissions.IsAuthenticated, RolePermission]
    allowed_roles = ALL_ROLES
    action_roles = CATALOG_WRITES


@extend_schema(tags=["partners"])
class PartnerViewSet(viewsets.ModelViewSet):
    queryset = Partner.objects.all().order_by("name")
    serializer_class = PartnerSerializer
    permission_classes = [permissions.IsAuthenticated, RolePermission]
    allowed_roles = ALL_ROLES
    action_roles = {"destroy": MANAGERS}

    def get_queryset(self):
        queryset = super().get_queryset()
        query = self.request.query_params.get("search")
        if query:
            queryset = queryset.filter(Q(name__icontains=query) | Q(phone__icontains=query))
        return queryset


@extend_schema(tags=["products"])
class ProductViewSet(viewsets.ModelViewSet):
    """Catalog. Stock only moves through add-stock and orders."""

    queryset = Product.objects.select_related("category").filter(is_deleted=False)
    serializer_class = ProductSerializer
    permission_classes = [permissions.IsAuthenticated, RolePermission]
    allowed_roles = ALL_ROLES
    action_roles = {
        **CATALOG_WRITES,
        "add_stock": MANAGERS,
        "discount": MANAGERS,
    }

    def get_serializer_class(self):
        if self.action == "create":
            return ProductCreateSerializer
        return ProductSerializer

    def get_queryset(self):
        queryset = super().get_queryset()
        if self.action != "list":
            return queryset
        params = self.request.query_params
        if params.get("include_inactive", "").lower() not in TRUTHY:
            queryset = queryset.filter(is_active=True)
        query = params.get("search")
        if query:
            queryset = queryset.filter(
                Q(name__icontains=query) | Q(barcode__icontains=query)
            )
        category = params.get("category")
        if category:
            queryset = queryset.filter(category_id=category)
        return queryset.order_by("name")

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        data["stock"] = data.pop("initial_stock", None)
        data.pop("is_active", None)
        product = CatalogService().create_product(request.user, **data)
        return Response(ProductSerializer(product).data, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        partial = kwargs.pop("partial", False)
        instance = self.get_object()
        serializer = self.get_serializer(instance, data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        product = CatalogService().update_product(
            instance.pk, request.user, **serializer.validated_data
        )
        return Response(ProductSerializer(product).data)

    def destroy(self, request, *args, **kwargs):
        instance = self.get_object()
        CatalogService().delete_product(instance.pk)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(
        description="Quick lookup by name or barcode for the sales screen",
        parameters=[OpenApiParameter("q", str, required=True)],
        responses={200: ProductSerializer(many=True)},
    )
    @action(detail=False, methods=["get"], url_path="quick-search")
    def quick_search(self, request):
        query = request.query_params.get("q", "").strip()
        if len(query) < 2:
            raise InvalidInput("Search needs at least 2 characters.")
        queryset = self.get_queryset().filter(is_active=True).filter(
            Q(name__icontains=query) | Q(barcode__icontains=query)
        )
        serializer = self.get_serializer(queryset.order_by("name")[:20], many=True)
        return Response(serializer.data)

    @extend_schema(
        description="Best sellers by quantity on completed orders, newest first on ties",
        parameters=[OpenApiParameter("limit", int, required=False)],
        responses={200: TrendingProductSerializer(many=True)},
    )
    @action(detail=False, methods=["get"], url_path="trending")
    def trending(self, request):
        try:
            limit = int(request.query_params.get("limit", TRENDING_LIMIT))
        except ValueError:
            raise InvalidInput("limit must be a whole number.")
        if limit < 1:
            raise InvalidInput("limit must be positive.")
        queryset = (
            self.get_queryset()
            .filter(is_active=True)
            .annotate(
                total_sold=Coalesce(
                    Sum(
                        "order_items__quantity",
                        filter=Q(order_items__order__status=Order.Status.COMPLETED),
                    ),
                    Value(Decimal("0")),
                    output_field=DecimalField(max_digits=14, decimal_places=3),
                )
            )
            .order_by("-total_sold", "-created_at")
        )
        serializer = TrendingProductSerializer(queryset[:limit], many=True)
        return Response(serializer.data)

    @extend_schema(
        request=AddStockSerializer,
        responses={200: ProductSerializer},
        examples=[
            OpenApiExample("Restock", value={"quantity": "12", "new_price": "15000.00"})
        ],
        description="Receive goods into stock, optionally setting a new selling price.",
    )
    @action(detail=True, methods=["post"], url_path="add-stock")
    def add_stock(self, request, pk=None):
        product = self.get_object()
        serializer = AddStockSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        product = CatalogService().add_stock(
            product.pk,
            request.user,
            serializer.validated_data["quantity"],
            new_price=serializer.validated_data.get("new_price"),
        )
        return Response(ProductSerializer(product).data)

    @extend_schema(
        request=SetDiscountSerializer,
        responses={200: ProductSerializer},
        description="POST sets a time-boxed discount, DELETE removes it.",
    )
    @action(detail=True, methods=["post", "delete"], url_path="discount")
    def discount(self, request, pk=None):
        product = self.get_object()
        service = CatalogService()
        if request.method == "DELETE":
            product = service.remove_discount(product.pk)
        else:
            serializer = SetDiscountSerializer(data=request.data)
            serializer.is_valid(raise_exception=True)
            product = service.set_discount(product.pk, **serializer.validated_data)
        return Response(ProductSerializer(product).data)


@extend_schema(tags=["orders"])
class OrderViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """
    Orders move through draft -> completed/cancelled; any order that is not
    cancelled or fully refunded can go through the refund flow. Sellers only
    ever see their own orders.
    """

    serializer_class = OrderSerializer
    permission_classes = [permissions.IsAuthenticated, RolePermission]
    allowed_roles = ALL_ROLES
    action_roles = {
        "change_status": FRONT_DESK,
        "refund": MANAGERS,
    }

    def get_queryset(self):
        queryset = order_queryset()
        user = self.request.user
        if user.is_seller:
            queryset = queryset.filter(seller=user)
        if self.action == "list":
            queryset = queryset.exclude(status=Order.Status.FULLY_REFUNDED)
            wanted = self.request.query_params.get("status")
            if wanted:
                queryset = queryset.filter(status=wanted)
        return queryset.order_by("-created_at", "-id")

    def _render(self, order, code=status.HTTP_200_OK):
        return Response(OrderSerializer(order_queryset().get(pk=order.pk)).data, status=code)

    @extend_schema(
        request=OrderCreateSerializer,
        responses={201: OrderSerializer},
        examples=[
            OpenApiExample(
                "Cash sale",
                value={
                    "items": [
                        {"product": 1, "quantity": "2"},
                        {"product": 7, "quantity": "1", "manual_discount_value": "500"},
                    ],
                    "currency": "UZS",
                    "discount_value": "1000",
                    "discount_type": "fixed",
                },
            )
        ],
    )
    def create(self, request, *args, **kwargs):
        serializer = OrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = OrderService().create(
            request.user, serializer.line_requests(), **serializer.options()
        )
        return self._render(order, status.HTTP_201_CREATED)

    @extend_schema(
        request=OrderWriteSerializer,
        responses={200: OrderSerializer},
        description="Replace the lines of a draft order. Omitted options keep their values.",
    )
    def partial_update(self, request, pk=None):
        serializer = OrderWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = OrderService().edit(
            pk, request.user, serializer.line_requests(), **serializer.options()
        )
        return self._render(order)

    @extend_schema(request=OrderStatusSerializer, responses={200: OrderSerializer})
    @action(detail=True, methods=["post"], url_path="status")
    def change_status(self, request, pk=None):
        serializer = OrderStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = OrderService().change_status(
            pk, request.user, serializer.validated_data["status"]
        )
        return self._render(order)

    @extend_schema(request=None, responses={200: OrderSerializer})
    @action(detail=True, methods=["post"], url_path="print")
    def mark_printed(self, request, pk=None):
        order = self.get_object()
        order = OrderService().mark_printed(order.pk)
        return self._render(order)

    @extend_schema(
        request=RefundWriteSerializer,
        description="Return items of a completed order to stock.",
    )
    @action(detail=True, methods=["post"], url_path="refund")
    def refund(self, request, pk=None):
        serializer = RefundWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        refund = RefundService().refund(
            pk,
            request.user,
            serializer.return_requests(),
            reason=serializer.validated_data.get("reason", ""),
        )
        order = order_queryset().get(pk=pk)
        return Response(
            {
                "refund": RefundSerializer(refund).data if refund else None,
                "order": OrderSerializer(order).data,
            },
            status=status.HTTP_201_CREATED if refund else status.HTTP_200_OK,
        )


@extend_schema(tags=["refunds"])
class RefundViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Refund.objects.select_related("order", "refunded_by").prefetch_related(
        "items__product"
    )
    serializer_class = RefundSerializer
    permission_classes = [permissions.IsAuthenticated, RolePermission]
    allowed_roles = MANAGERS

    def get_queryset(self):
        queryset = super().get_queryset()
        order = self.request.query_params.get("order")
        if order:
            queryset = queryset.filter(order_id=order)
        return queryset.order_by("-created_at", "-id")


@extend_schema(
    tags=["stock-history"],
    parameters=[
        OpenApiParameter("start_date", str, description="YYYY-MM-DD, inclusive"),
        OpenApiParameter("end_date", str, description="YYYY-MM-DD, inclusive"),
        OpenApiParameter("product", int),
        OpenApiParameter("page", int),
        OpenApiParameter("limit", int),
    ],
)
class StockHistoryViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    """Read-only view of the stock ledger, newest first."""

    serializer_class = StockHistorySerializer
    pagination_class = HistoryPagination
    permission_classes = [permissions.IsAuthenticated, RolePermission]
    allowed_roles = FRONT_DESK

    def get_queryset(self):
        filters = StockHistoryFilterSerializer(data=self.request.query_params)
        filters.is_valid(raise_exception=True)
        return ledger.history(
            start_date=filters.validated_data.get("start_date"),
            end_date=filters.validated_data.get("end_date"),
            product_id=filters.validated_data.get("product"),
        )
