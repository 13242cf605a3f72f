"""
Read-only queries over the stock ledger.
"""
from typing import Dict, Optional

from django.db.models import Count, QuerySet, Sum

from core.exceptions import InventoryValidationError, NotFoundError
from inventory.models import Inventory
from .models import StockTransaction

ORDERING_FIELDS = ('transaction_date', 'quantity', 'transaction_type', 'created_at')


def check_kind(kind: str) -> None:
    if kind not in StockTransaction.Kind.values:
        raise InventoryValidationError(
            f"Invalid transaction type: {kind}",
            errors={'transaction_type': [f"Must be one of {', '.join(StockTransaction.Kind.values)}."]},
        )


def query_transactions(
    product_id: Optional[int] = None,
    kind: Optional[str] = None,
    start_date=None,
    end_date=None,
    reference_number: Optional[str] = None,
    ordering: str = '-transaction_date',
) -> QuerySet:
    """
    Filter and sort ledger entries.

    Raises:
        InventoryValidationError: On an unknown kind or ordering field
    """
    queryset = StockTransaction.objects.select_related('product', 'product__category')

    if product_id is not None:
        queryset = queryset.filter(product_id=product_id)
    if kind:
        check_kind(kind)
        queryset = queryset.filter(transaction_type=kind)
    if start_date:
        queryset = queryset.filter(transaction_date__gte=start_date)
    if end_date:
        queryset = queryset.filter(transaction_date__lte=end_date)
    if reference_number:
        queryset = queryset.filter(reference_number__icontains=reference_number)

    ordering = ordering or '-transaction_date'
    if ordering.lstrip('-') not in ORDERING_FIELDS:
        raise InventoryValidationError(
            f"Invalid ordering: {ordering}",
            errors={'ordering': [f"Must be one of {', '.join(ORDERING_FIELDS)} (optionally prefixed with '-')."]},
        )
    tiebreak = '-id' if ordering.startswith('-') else 'id'
    return queryset.order_by(ordering, tiebreak)


def transaction_summary(start_date=None, end_date=None) -> Dict[str, Dict[str, int]]:
    """Count and total quantity per kind; kinds with no entries report zeros."""
    queryset = StockTransaction.objects.all()
    if start_date:
        queryset = queryset.filter(transaction_date__gte=start_date)
    if end_date:
        queryset = queryset.filter(transaction_date__lte=end_date)

    summary = {kind: {'count': 0, 'total_quantity': 0} for kind in StockTransaction.Kind.values}
    rows = (
        queryset.order_by()
        .values('transaction_type')
        .annotate(count=Count('id'), total_quantity=Sum('quantity'))
    )
    for row in rows:
        summary[row['transaction_type']] = {
            'count': row['count'],
            'total_quantity': row['total_quantity'] or 0,
        }
    return summary


def recent_transactions(limit: int = 10) -> QuerySet:
    return StockTransaction.objects.select_related('product').order_by('-transaction_date', '-id')[:limit]


def replay_balance(product_id: int) -> Dict:
    """
    Rebuild a product's balance from its ledger, starting at zero.

    IN adds, OUT subtracts, ADJUSTMENT jumps to the recorded target. Also
    checks that each entry's previous_stock continues the chain.

    Raises:
        NotFoundError: If the product has no balance row
    """
    try:
        inventory = Inventory.objects.get(product_id=product_id)
    except Inventory.DoesNotExist:
        raise NotFoundError(f"Inventory record not found for product {product_id}")

    balance = 0
    chain_intact = True
    entries = 0
    for entry in StockTransaction.objects.filter(product_id=product_id).order_by('id'):
        if entry.previous_stock != balance:
            chain_intact = False
        if entry.transaction_type == StockTransaction.Kind.IN:
            balance += entry.quantity
        elif entry.transaction_type == StockTransaction.Kind.OUT:
            balance -= entry.quantity
        else:
            balance = entry.new_stock
        entries += 1

    return {
        'product_id': product_id,
        'stored_stock': inventory.current_stock,
        'replayed_stock': balance,
        'entries': entries,
        'chain_intact': chain_intact,
        'consistent': chain_intact and balance == inventory.current_stock,
    }
