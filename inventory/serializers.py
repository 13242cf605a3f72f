"""
Serializers for inventory models.
Provides data validation and JSON conversion for API endpoints.
"""
from rest_framework import serializers

from .models import Category, Inventory, Product


class CategorySerializer(serializers.ModelSerializer):
    """Serializer for Category model."""
    product_count = serializers.SerializerMethodField()

    class Meta:
        model = Category
        fields = ['id', 'name', 'description', 'is_active', 'product_count', 'created_at', 'updated_at']
        read_only_fields = ['id', 'is_active', 'created_at', 'updated_at']
        extra_kwargs = {'name': {'validators': []}}

    def get_product_count(self, obj):
        """Get count of active products in this category."""
        return obj.products.filter(is_active=True).count()


class CategoryMinimalSerializer(serializers.ModelSerializer):
    """Minimal serializer for nested category representation."""
    class Meta:
        model = Category
        fields = ['id', 'name']


class BalanceMinimalSerializer(serializers.ModelSerializer):
    available_stock = serializers.IntegerField(read_only=True)

    class Meta:
        model = Inventory
        fields = ['current_stock', 'reserved_stock', 'available_stock', 'location', 'last_updated']


class ProductSerializer(serializers.ModelSerializer):
    """
    Serializer for Product model with nested category and balance.

    SKU/barcode uniqueness is checked by the service layer so clashes are
    reported as conflicts rather than validation errors.
    """
    category = CategoryMinimalSerializer(read_only=True)
    category_id = serializers.IntegerField(write_only=True)
    inventory = BalanceMinimalSerializer(read_only=True)
    initial_stock = serializers.IntegerField(write_only=True, required=False, min_value=0, default=0)
    location = serializers.CharField(write_only=True, required=False, allow_blank=True, max_length=100)

    class Meta:
        model = Product
        fields = [
            'id', 'sku', 'barcode', 'name', 'description',
            'category', 'category_id', 'unit', 'price', 'cost_price',
            'minimum_stock', 'maximum_stock', 'is_active', 'inventory',
            'initial_stock', 'location',
            'created_at', 'updated_at'
        ]
        read_only_fields = ['id', 'is_active', 'created_at', 'updated_at']
        extra_kwargs = {
            'sku': {'validators': [], 'min_length': 3},
            'barcode': {'validators': [], 'allow_null': True, 'required': False},
        }

    def validate(self, attrs):
        minimum = attrs.get('minimum_stock', getattr(self.instance, 'minimum_stock', 0))
        maximum = attrs.get('maximum_stock', getattr(self.instance, 'maximum_stock', 1000))
        if maximum <= minimum:
            raise serializers.ValidationError(
                {'maximum_stock': 'Maximum stock must be greater than minimum stock'}
            )
        if 'category_id' in attrs:
            attrs['category'] = attrs.pop('category_id')
        return attrs


class ProductMinimalSerializer(serializers.ModelSerializer):
    """Minimal serializer for nested representations."""
    class Meta:
        model = Product
        fields = ['id', 'sku', 'name', 'unit', 'minimum_stock']


class InventorySerializer(serializers.ModelSerializer):
    """
    Balance with nested product.
    Uses select_related('product__category') in view.
    """
    product = ProductMinimalSerializer(read_only=True)
    category_name = serializers.CharField(source='product.category.name', read_only=True)
    available_stock = serializers.IntegerField(read_only=True)
    is_low_stock = serializers.BooleanField(read_only=True)
    is_out_of_stock = serializers.BooleanField(read_only=True)

    class Meta:
        model = Inventory
        fields = [
            'id', 'product', 'category_name',
            'current_stock', 'reserved_stock', 'available_stock', 'location',
            'is_low_stock', 'is_out_of_stock',
            'last_updated', 'created_at'
        ]
        read_only_fields = fields


class LowStockSerializer(InventorySerializer):
    shortage = serializers.IntegerField(read_only=True)

    class Meta(InventorySerializer.Meta):
        fields = InventorySerializer.Meta.fields + ['shortage']
        read_only_fields = fields


# =============================================================================
# Input serializers
# =============================================================================

class StockMovementSerializer(serializers.Serializer):
    quantity = serializers.IntegerField(min_value=1)
    reference_number = serializers.CharField(required=False, allow_blank=True, max_length=100)
    notes = serializers.CharField(required=False, allow_blank=True)
    location = serializers.CharField(required=False, allow_blank=True, max_length=100)


class ReservationSerializer(serializers.Serializer):
    quantity = serializers.IntegerField(min_value=1)


class LocationSerializer(serializers.Serializer):
    location = serializers.CharField(allow_blank=True, max_length=100)
