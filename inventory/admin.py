"""
Django Admin configuration for inventory models.

Balances are read-only here; stock only moves through the stock mutator.
Products and categories are deactivated, never deleted, so ledger history
keeps its product.
"""
from django.contrib import admin
from .models import Category, Product, Inventory


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ['id', 'name', 'is_active', 'product_count', 'created_at']
    list_filter = ['is_active']
    search_fields = ['name']
    ordering = ['name']

    def has_delete_permission(self, request, obj=None):
        return False

    def product_count(self, obj):
        return obj.products.filter(is_active=True).count()
    product_count.short_description = 'Active Products'


class InventoryInline(admin.StackedInline):
    model = Inventory
    can_delete = False
    readonly_fields = ['current_stock', 'reserved_stock', 'last_updated']
    fields = ['current_stock', 'reserved_stock', 'location', 'last_updated']


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ['id', 'sku', 'name', 'price', 'category', 'minimum_stock', 'is_active', 'created_at']
    list_filter = ['category', 'unit', 'is_active', 'created_at']
    search_fields = ['sku', 'barcode', 'name', 'description']
    ordering = ['name']
    raw_id_fields = ['category']
    inlines = [InventoryInline]

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Inventory)
class InventoryAdmin(admin.ModelAdmin):
    list_display = ['id', 'product', 'current_stock', 'reserved_stock', 'location', 'is_low_stock', 'last_updated']
    list_filter = ['location', 'last_updated']
    search_fields = ['product__name', 'product__sku', 'location']
    ordering = ['product__name']
    raw_id_fields = ['product']
    readonly_fields = ['current_stock', 'reserved_stock', 'last_updated', 'created_at']

    def has_add_permission(self, request):
        return False

    def is_low_stock(self, obj):
        return obj.is_low_stock
    is_low_stock.boolean = True
    is_low_stock.short_description = 'Low Stock'
