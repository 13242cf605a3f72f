"""
Ledger API Views (read-only).

Implements:
- GET /transactions/ - Filtered, sorted, paginated ledger
- GET /transactions/{id}/ - One entry
- GET /transactions/product/{product_id}/ - Ledger for one product
- GET /transactions/type/{kind}/ - Ledger for one movement kind
- GET /transactions/summary/ - Count and quantity per kind
- GET /transactions/product/{product_id}/verify/ - Replay vs stored balance

Movements are created through the inventory stock endpoints only.
"""
from rest_framework import generics
from rest_framework.views import APIView

from core.params import datetime_param, int_param
from core.responses import success_response
from inventory.services import get_balance
from . import selectors
from .models import StockTransaction
from .serializers import StockTransactionSerializer


class TransactionListView(generics.ListAPIView):
    """
    Query Parameters:
        - product_id: Filter by product
        - transaction_type: IN, OUT or ADJUSTMENT
        - start_date / end_date: ISO date or datetime bounds (inclusive)
        - reference_number: Substring match
        - ordering: transaction_date, quantity, transaction_type, created_at
    """
    serializer_class = StockTransactionSerializer
    list_message = 'Transactions retrieved successfully'

    def filters(self):
        params = self.request.query_params
        kind = params.get('transaction_type')
        return {
            'product_id': int_param(self.request, 'product_id', None),
            'kind': kind.upper() if kind else None,
            'start_date': datetime_param(self.request, 'start_date'),
            'end_date': datetime_param(self.request, 'end_date', end_of_day=True),
            'reference_number': params.get('reference_number'),
            'ordering': params.get('ordering') or '-transaction_date',
        }

    def get_queryset(self):
        return selectors.query_transactions(**self.filters())


class TransactionDetailView(generics.RetrieveAPIView):
    serializer_class = StockTransactionSerializer
    queryset = StockTransaction.objects.select_related('product')

    def retrieve(self, request, *args, **kwargs):
        return success_response(self.get_serializer(self.get_object()).data)


class ProductTransactionListView(TransactionListView):
    def filters(self):
        get_balance(self.kwargs['product_id'])
        return dict(super().filters(), product_id=self.kwargs['product_id'])


class TypeTransactionListView(TransactionListView):
    def filters(self):
        return dict(super().filters(), kind=self.kwargs['kind'].upper())


class TransactionSummaryView(APIView):
    def get(self, request):
        summary = selectors.transaction_summary(
            start_date=datetime_param(request, 'start_date'),
            end_date=datetime_param(request, 'end_date', end_of_day=True),
        )
        return success_response(summary, 'Transaction summary retrieved successfully')


class LedgerVerifyView(APIView):
    """GET: Rebuild the balance from the ledger and compare it to the stored one."""

    def get(self, request, product_id):
        return success_response(selectors.replay_balance(product_id))
