"""
URL routing for inventory API endpoints.
"""
from django.urls import path
from . import views

app_name = 'inventory'

urlpatterns = [
    # Categories
    path('categories/', views.CategoryListCreateView.as_view(), name='category-list'),
    path('categories/<int:pk>/', views.CategoryDetailView.as_view(), name='category-detail'),
    path('categories/<int:pk>/stats/', views.CategoryStatsView.as_view(), name='category-stats'),

    # Products
    path('products/', views.ProductListCreateView.as_view(), name='product-list'),
    path('products/<int:pk>/', views.ProductDetailView.as_view(), name='product-detail'),
    path('products/sku/<str:sku>/', views.ProductBySkuView.as_view(), name='product-by-sku'),
    path('products/barcode/<str:barcode>/', views.ProductByBarcodeView.as_view(), name='product-by-barcode'),

    # Inventory
    path('inventory/', views.InventoryListView.as_view(), name='inventory-list'),
    path('inventory/low-stock/', views.LowStockView.as_view(), name='low-stock'),
    path('inventory/out-of-stock/', views.OutOfStockView.as_view(), name='out-of-stock'),
    path('inventory/valuation/', views.ValuationView.as_view(), name='valuation'),
    path('inventory/product/<int:product_id>/', views.ProductInventoryView.as_view(), name='product-inventory'),
    path('inventory/product/<int:product_id>/add-stock/', views.AddStockView.as_view(), name='add-stock'),
    path('inventory/product/<int:product_id>/remove-stock/', views.RemoveStockView.as_view(), name='remove-stock'),
    path('inventory/product/<int:product_id>/adjust-stock/', views.AdjustStockView.as_view(), name='adjust-stock'),
    path('inventory/product/<int:product_id>/reserve/', views.ReserveStockView.as_view(), name='reserve-stock'),
    path('inventory/product/<int:product_id>/release/', views.ReleaseStockView.as_view(), name='release-stock'),
    path('inventory/product/<int:product_id>/location/', views.LocationView.as_view(), name='location'),

    # Dashboard
    path('dashboard/', views.DashboardView.as_view(), name='dashboard'),
    path('dashboard/stats/', views.DashboardStatsView.as_view(), name='dashboard-stats'),
    path('dashboard/alerts/', views.DashboardAlertsView.as_view(), name='dashboard-alerts'),
    path('dashboard/transactions/', views.DashboardTransactionsView.as_view(), name='dashboard-transactions'),
    path('dashboard/trends/', views.DashboardTrendsView.as_view(), name='dashboard-trends'),
    path('dashboard/categories/', views.DashboardCategoriesView.as_view(), name='dashboard-categories'),
    path('dashboard/top-products/', views.DashboardTopProductsView.as_view(), name='dashboard-top-products'),
]
