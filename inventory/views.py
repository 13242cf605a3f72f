"""
Inventory API Views.

Implements:
- Category and Product catalog endpoints (soft delete)
- Balance endpoints: stock movements, reservations, location
- Read projections: low/out-of-stock, valuation, dashboard
"""
from django.db.models import F, Q
from rest_framework import generics
from rest_framework.views import APIView

from core.params import bool_param, int_param, ordering_param
from core.responses import CREATED, DELETED, UPDATED, created_response, success_response
from transactions.models import StockTransaction
from transactions.serializers import StockTransactionSerializer
from transactions.services import apply_movement
from . import selectors, services
from .models import Category, Inventory, Product
from .serializers import (
    CategorySerializer,
    InventorySerializer,
    LocationSerializer,
    LowStockSerializer,
    ProductSerializer,
    ReservationSerializer,
    StockMovementSerializer,
)

PRODUCT_ORDERING = ('name', 'sku', 'price', 'created_at', 'updated_at', 'minimum_stock')
INVENTORY_ORDERING = ('current_stock', 'reserved_stock', 'location', 'last_updated', 'product__name')


class EnvelopeRetrieveMixin:
    """Wrap single-object GET responses in the success envelope."""

    def retrieve(self, request, *args, **kwargs):
        return success_response(self.get_serializer(self.get_object()).data)


# =============================================================================
# Category Views
# =============================================================================

class CategoryListCreateView(generics.ListCreateAPIView):
    """
    GET: List active categories
    POST: Create a new category
    """
    queryset = Category.objects.filter(is_active=True)
    serializer_class = CategorySerializer

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        category = services.create_category(serializer.validated_data)
        return created_response(self.get_serializer(category).data, CREATED)


class CategoryDetailView(EnvelopeRetrieveMixin, generics.RetrieveUpdateDestroyAPIView):
    """
    GET: Retrieve a category
    PUT/PATCH: Update a category
    DELETE: Deactivate a category (refused while it has active products)
    """
    queryset = Category.objects.filter(is_active=True)
    serializer_class = CategorySerializer

    def update(self, request, *args, **kwargs):
        partial = kwargs.pop('partial', False)
        serializer = self.get_serializer(self.get_object(), data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        category = services.update_category(serializer.instance.id, serializer.validated_data)
        return success_response(self.get_serializer(category).data, UPDATED)

    def destroy(self, request, *args, **kwargs):
        category = services.deactivate_category(self.get_object().id)
        return success_response({'id': category.id}, DELETED)


class CategoryStatsView(APIView):
    """GET: Product and stock totals for one category."""

    def get(self, request, pk):
        return success_response(selectors.category_stats(services.get_category(pk)))


# =============================================================================
# Product Views
# =============================================================================

class ProductListCreateView(generics.ListCreateAPIView):
    """
    GET: List products with category and balance
    POST: Create a product (optionally with initial_stock)

    Query Parameters:
        - search: Matches name, SKU, barcode or description
        - category_id: Filter by category
        - is_active: true/false (default true)
        - ordering: name, sku, price, created_at, updated_at, minimum_stock
    """
    serializer_class = ProductSerializer

    def get_queryset(self):
        queryset = Product.objects.select_related('category', 'inventory')

        is_active = bool_param(self.request, 'is_active')
        queryset = queryset.filter(is_active=True if is_active is None else is_active)

        search = self.request.query_params.get('search', '').strip()
        if search:
            queryset = queryset.filter(
                Q(name__icontains=search) |
                Q(sku__icontains=search) |
                Q(barcode__icontains=search) |
                Q(description__icontains=search)
            )

        category_id = self.request.query_params.get('category_id')
        if category_id:
            queryset = queryset.filter(category_id=int_param(self.request, 'category_id', 0))

        return queryset.order_by(ordering_param(self.request, PRODUCT_ORDERING, 'name'), 'id')

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        product = services.create_product(serializer.validated_data)
        product = Product.objects.select_related('category', 'inventory').get(id=product.id)
        return created_response(self.get_serializer(product).data, 'Product created successfully')


class ProductDetailView(EnvelopeRetrieveMixin, generics.RetrieveUpdateDestroyAPIView):
    """
    GET: Retrieve a product
    PUT/PATCH: Update a product
    DELETE: Deactivate a product
    """
    serializer_class = ProductSerializer

    def get_queryset(self):
        return Product.objects.select_related('category', 'inventory')

    def update(self, request, *args, **kwargs):
        partial = kwargs.pop('partial', False)
        serializer = self.get_serializer(self.get_object(), data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        product = services.update_product(serializer.instance.id, serializer.validated_data)
        product = self.get_queryset().get(id=product.id)
        return success_response(self.get_serializer(product).data, 'Product updated successfully')

    def destroy(self, request, *args, **kwargs):
        product = services.deactivate_product(self.get_object().id)
        return success_response({'id': product.id}, 'Product deleted successfully')


class ProductBySkuView(EnvelopeRetrieveMixin, generics.RetrieveAPIView):
    serializer_class = ProductSerializer
    lookup_field = 'sku'

    def get_queryset(self):
        return Product.objects.select_related('category', 'inventory').filter(is_active=True)

    def get_object(self):
        self.kwargs['sku'] = self.kwargs['sku'].upper()
        return super().get_object()


class ProductByBarcodeView(EnvelopeRetrieveMixin, generics.RetrieveAPIView):
    serializer_class = ProductSerializer
    lookup_field = 'barcode'

    def get_queryset(self):
        return Product.objects.select_related('category', 'inventory').filter(is_active=True)


# =============================================================================
# Inventory Views
# =============================================================================

class InventoryListView(generics.ListAPIView):
    """
    GET: List balances of active products

    Query Parameters:
        - search: Matches product name or SKU
        - category_id: Filter by category
        - location: Exact location tag
        - low_stock: true to show balances at or below minimum stock
        - out_of_stock: true to show empty balances
        - ordering: current_stock, reserved_stock, location, last_updated, product__name
    """
    serializer_class = InventorySerializer

    def get_queryset(self):
        queryset = Inventory.objects.select_related('product', 'product__category').filter(
            product__is_active=True
        )

        search = self.request.query_params.get('search', '').strip()
        if search:
            queryset = queryset.filter(Q(product__name__icontains=search) | Q(product__sku__icontains=search))

        category_id = self.request.query_params.get('category_id')
        if category_id:
            queryset = queryset.filter(product__category_id=int_param(self.request, 'category_id', 0))

        location = self.request.query_params.get('location')
        if location:
            queryset = queryset.filter(location=location)

        if bool_param(self.request, 'low_stock'):
            queryset = queryset.filter(current_stock__lte=F('product__minimum_stock'))
        if bool_param(self.request, 'out_of_stock'):
            queryset = queryset.filter(current_stock=0)

        return queryset.order_by(ordering_param(self.request, INVENTORY_ORDERING, 'product__name'), 'id')


class ProductInventoryView(APIView):
    """GET: Balance for one product."""

    def get(self, request, product_id):
        return success_response(InventorySerializer(services.get_balance(product_id)).data)


class StockMovementView(APIView):
    """
    POST: Apply one stock movement to a product's balance.

    Subclasses fix the movement kind. For adjustments, quantity is the
    absolute target balance.
    """
    kind = None
    message = 'Stock updated successfully'

    def post(self, request, product_id):
        serializer = StockMovementSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = apply_movement(
            product_id,
            self.kind,
            data['quantity'],
            reference_number=data.get('reference_number'),
            notes=data.get('notes'),
            location=data.get('location'),
        )
        inventory = services.get_balance(product_id)
        return success_response({
            'inventory': InventorySerializer(inventory).data,
            'transaction': StockTransactionSerializer(result.transaction).data,
        }, self.message)


class AddStockView(StockMovementView):
    kind = StockTransaction.Kind.IN
    message = 'Stock added successfully'


class RemoveStockView(StockMovementView):
    kind = StockTransaction.Kind.OUT
    message = 'Stock removed successfully'


class AdjustStockView(StockMovementView):
    kind = StockTransaction.Kind.ADJUSTMENT
    message = 'Stock adjusted successfully'


class ReserveStockView(APIView):
    """POST: Reserve part of the available stock."""

    def post(self, request, product_id):
        serializer = ReservationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        inventory = services.reserve_stock(product_id, serializer.validated_data['quantity'])
        return success_response(InventorySerializer(inventory).data, 'Stock reserved successfully')


class ReleaseStockView(APIView):
    """POST: Release reserved stock."""

    def post(self, request, product_id):
        serializer = ReservationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        inventory = services.release_stock(product_id, serializer.validated_data['quantity'])
        return success_response(InventorySerializer(inventory).data, 'Reserved stock released successfully')


class LocationView(APIView):
    """PUT/PATCH: Change the storage location tag."""

    def put(self, request, product_id):
        serializer = LocationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        inventory = services.set_location(product_id, serializer.validated_data['location'])
        return success_response(InventorySerializer(inventory).data, 'Location updated successfully')

    patch = put


class LowStockView(generics.ListAPIView):
    serializer_class = LowStockSerializer
    list_message = 'Low stock items retrieved successfully'

    def get_queryset(self):
        return selectors.low_stock_items()


class OutOfStockView(generics.ListAPIView):
    serializer_class = InventorySerializer
    list_message = 'Out of stock items retrieved successfully'

    def get_queryset(self):
        return selectors.out_of_stock_items()


class ValuationView(APIView):
    def get(self, request):
        return success_response(selectors.inventory_valuation())


# =============================================================================
# Dashboard Views
# =============================================================================

def _transactions_data(entries):
    return StockTransactionSerializer(entries, many=True).data


class DashboardView(APIView):
    """GET: Stats, alerts, recent movements, category rollup and top movers."""

    def get(self, request):
        snapshot = selectors.dashboard_snapshot()
        snapshot['low_stock_alerts'] = LowStockSerializer(snapshot['low_stock_alerts'], many=True).data
        snapshot['recent_transactions'] = _transactions_data(snapshot['recent_transactions'])
        return success_response(snapshot, 'Dashboard data retrieved successfully')


class DashboardStatsView(APIView):
    def get(self, request):
        return success_response(selectors.inventory_stats())


class DashboardAlertsView(APIView):
    def get(self, request):
        return success_response({
            'low_stock': LowStockSerializer(selectors.low_stock_items(), many=True).data,
            'out_of_stock': InventorySerializer(selectors.out_of_stock_items(), many=True).data,
        })


class DashboardTransactionsView(APIView):
    def get(self, request):
        from transactions.selectors import recent_transactions

        limit = int_param(request, 'limit', 10, maximum=100)
        return success_response(_transactions_data(recent_transactions(limit)))


class DashboardTrendsView(APIView):
    def get(self, request):
        days = int_param(request, 'days', 30, maximum=365)
        return success_response(selectors.stock_movement_trends(days))


class DashboardCategoriesView(APIView):
    def get(self, request):
        return success_response(selectors.category_stock_rollup())


class DashboardTopProductsView(APIView):
    """
    Query Parameters:
        - limit: Number of products (default 5)
        - type: Movement kind to rank by (default OUT)
        - days: Only count movements from the last N days
    """

    def get(self, request):
        from transactions.selectors import check_kind

        kind = request.query_params.get('type', StockTransaction.Kind.OUT).upper()
        check_kind(kind)
        limit = int_param(request, 'limit', 5, maximum=100)
        days = int_param(request, 'days', 0, minimum=0) or None
        return success_response(selectors.top_movers(limit=limit, kind=kind, days=days))
