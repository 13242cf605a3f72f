"""
Read projections over balances and the ledger.

Every function recomputes from current rows; nothing is cached. Only
active products are counted.
"""
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from django.db.models import Count, F, Q, QuerySet, Sum
from django.db.models.functions import TruncDate
from django.utils import timezone

from transactions.models import StockTransaction
from transactions.selectors import recent_transactions
from .models import Category, Inventory

ZERO = Decimal('0.00')


def _active_balances() -> QuerySet:
    return Inventory.objects.select_related('product', 'product__category').filter(product__is_active=True)


def low_stock_items() -> QuerySet:
    """Balances at or below their product's minimum, lowest first."""
    return (
        _active_balances()
        .filter(current_stock__lte=F('product__minimum_stock'))
        .annotate(shortage=F('product__minimum_stock') - F('current_stock'))
        .order_by('current_stock', 'product__name')
    )


def out_of_stock_items() -> QuerySet:
    return _active_balances().filter(current_stock=0).order_by('-last_updated')


def inventory_valuation() -> Dict:
    """Retail and cost value of stock on hand."""
    total_value = ZERO
    total_cost = ZERO
    total_units = 0
    items = 0
    rows = _active_balances().values_list('current_stock', 'product__price', 'product__cost_price')
    for current, price, cost_price in rows:
        items += 1
        total_units += current
        total_value += (price or ZERO) * current
        total_cost += (cost_price or ZERO) * current

    return {
        'total_items': items,
        'total_units': total_units,
        'total_value': total_value,
        'total_cost_value': total_cost,
        'potential_profit': total_value - total_cost,
    }


def inventory_stats() -> Dict:
    balances = _active_balances()
    totals = balances.aggregate(
        total_products=Count('id'),
        total_stock=Sum('current_stock'),
        reserved_stock=Sum('reserved_stock'),
        low_stock=Count('id', filter=Q(current_stock__lte=F('product__minimum_stock'), current_stock__gt=0)),
        out_of_stock=Count('id', filter=Q(current_stock=0)),
    )
    total_products = totals['total_products']
    total_stock = totals['total_stock'] or 0
    reserved = totals['reserved_stock'] or 0

    return {
        'total_products': total_products,
        'total_categories': Category.objects.filter(is_active=True).count(),
        'total_stock': total_stock,
        'reserved_stock': reserved,
        'available_stock': total_stock - reserved,
        'average_stock': round(total_stock / total_products, 2) if total_products else 0,
        'low_stock_count': totals['low_stock'],
        'out_of_stock_count': totals['out_of_stock'],
        'total_value': inventory_valuation()['total_value'],
    }


def category_stock_rollup() -> List[Dict]:
    """Per active category: product count, units on hand and retail value."""
    rollup = {
        category.id: {
            'category_id': category.id,
            'category_name': category.name,
            'product_count': 0,
            'total_stock': 0,
            'total_value': ZERO,
        }
        for category in Category.objects.filter(is_active=True)
    }
    rows = _active_balances().values_list('product__category_id', 'current_stock', 'product__price')
    for category_id, current, price in rows:
        entry = rollup.get(category_id)
        if entry is None:
            continue
        entry['product_count'] += 1
        entry['total_stock'] += current
        entry['total_value'] += (price or ZERO) * current

    return sorted(rollup.values(), key=lambda row: (-row['total_stock'], row['category_name']))


def category_stats(category: Category) -> Dict:
    balances = _active_balances().filter(product__category=category)
    totals = balances.aggregate(
        product_count=Count('id'),
        total_stock=Sum('current_stock'),
        low_stock=Count('id', filter=Q(current_stock__lte=F('product__minimum_stock'), current_stock__gt=0)),
        out_of_stock=Count('id', filter=Q(current_stock=0)),
    )
    total_value = sum(
        ((price or ZERO) * current for current, price in balances.values_list('current_stock', 'product__price')),
        ZERO,
    )
    return {
        'category_id': category.id,
        'category_name': category.name,
        'product_count': totals['product_count'],
        'total_stock': totals['total_stock'] or 0,
        'total_value': total_value,
        'low_stock_count': totals['low_stock'],
        'out_of_stock_count': totals['out_of_stock'],
    }


def top_movers(limit: int = 5, kind: str = StockTransaction.Kind.OUT, days: Optional[int] = None) -> List[Dict]:
    """Products ranked by the summed ledger quantity of one movement kind."""
    queryset = StockTransaction.objects.filter(transaction_type=kind, product__is_active=True)
    if days:
        queryset = queryset.filter(transaction_date__gte=timezone.now() - timedelta(days=days))

    rows = (
        queryset.order_by()
        .values('product_id', 'product__name', 'product__sku')
        .annotate(total_quantity=Sum('quantity'), movement_count=Count('id'))
        .order_by('-total_quantity', 'product__name')[:limit]
    )
    return [
        {
            'product_id': row['product_id'],
            'name': row['product__name'],
            'sku': row['product__sku'],
            'total_quantity': row['total_quantity'],
            'movement_count': row['movement_count'],
        }
        for row in rows
    ]


def stock_movement_trends(days: int = 30) -> List[Dict]:
    """Daily quantity per movement kind over the last `days` days."""
    since = timezone.now() - timedelta(days=days)
    rows = (
        StockTransaction.objects.filter(transaction_date__gte=since)
        .order_by()
        .annotate(date=TruncDate('transaction_date'))
        .values('date', 'transaction_type')
        .annotate(total=Sum('quantity'))
        .order_by('date')
    )

    trends: Dict = {}
    for row in rows:
        day = trends.setdefault(
            row['date'],
            {'date': row['date'], **{kind: 0 for kind in StockTransaction.Kind.values}},
        )
        day[row['transaction_type']] = row['total'] or 0
    return list(trends.values())


def dashboard_snapshot() -> Dict:
    return {
        'stats': inventory_stats(),
        'low_stock_alerts': list(low_stock_items()[:10]),
        'recent_transactions': list(recent_transactions(10)),
        'category_stock': category_stock_rollup(),
        'top_products': top_movers(),
    }
