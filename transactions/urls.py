"""
URL routing for ledger API endpoints.
"""
from django.urls import path
from . import views

app_name = 'transactions'

urlpatterns = [
    path('transactions/', views.TransactionListView.as_view(), name='transaction-list'),
    path('transactions/summary/', views.TransactionSummaryView.as_view(), name='transaction-summary'),
    path('transactions/<int:pk>/', views.TransactionDetailView.as_view(), name='transaction-detail'),
    path(
        'transactions/product/<int:product_id>/',
        views.ProductTransactionListView.as_view(),
        name='product-transactions',
    ),
    path(
        'transactions/product/<int:product_id>/verify/',
        views.LedgerVerifyView.as_view(),
        name='product-ledger-verify',
    ),
    path('transactions/type/<str:kind>/', views.TypeTransactionListView.as_view(), name='type-transactions'),
]
