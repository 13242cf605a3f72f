"""
Django Admin configuration for the stock ledger (read-only).
"""
from django.contrib import admin
from .models import StockTransaction


@admin.register(StockTransaction)
class StockTransactionAdmin(admin.ModelAdmin):
    list_display = [
        'id', 'product', 'transaction_type', 'quantity',
        'previous_stock', 'new_stock', 'reference_number', 'transaction_date'
    ]
    list_filter = ['transaction_type', 'transaction_date']
    search_fields = ['product__name', 'product__sku', 'reference_number']
    ordering = ['-transaction_date']
    raw_id_fields = ['product']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
