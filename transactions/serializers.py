"""
Serializers for ledger entries.
"""
from rest_framework import serializers

from inventory.serializers import ProductMinimalSerializer
from .models import StockTransaction


class StockTransactionSerializer(serializers.ModelSerializer):
    """
    Ledger entry with product details.
    Uses select_related('product') in view.
    """
    product = ProductMinimalSerializer(read_only=True)
    signed_quantity = serializers.IntegerField(read_only=True)

    class Meta:
        model = StockTransaction
        fields = [
            'id', 'product', 'transaction_type', 'quantity', 'signed_quantity',
            'previous_stock', 'new_stock', 'reference_number', 'notes',
            'transaction_date', 'created_at'
        ]
        read_only_fields = fields
