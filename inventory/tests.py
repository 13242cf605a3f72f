"""
Tests for the balance store, catalog services, read projections and the
inventory API.

Test Cases:
1. Reserve / release keep reserved_stock within available stock
2. Product creation books initial stock through the ledger
3. SKU / barcode conflicts and category soft delete rules
4. Low-stock, out-of-stock, valuation and dashboard projections
5. HTTP envelope and status codes
"""
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

from django.db import IntegrityError, OperationalError, transaction
from django.test import TestCase
from rest_framework import status
from rest_framework.test import APITestCase

from core.exceptions import (
    BusinessRuleViolation,
    ConflictError,
    InventoryValidationError,
    NotFoundError,
)
from inventory import selectors, services
from inventory.models import Category, Inventory, Product
from notifications import events
from notifications.hub import ALL, QueueSubscriber, hub
from transactions.models import StockTransaction
from transactions.services import add_stock, remove_stock


def make_product(category, sku, stock=0, minimum_stock=0, price='10.00', cost_price=None, **kwargs):
    """Product with a balance row holding `stock` units (fixture shortcut, no ledger entry)."""
    product = Product.objects.create(
        sku=sku,
        name=kwargs.pop('name', f'Product {sku}'),
        category=category,
        price=Decimal(price),
        cost_price=Decimal(cost_price) if cost_price else None,
        minimum_stock=minimum_stock,
        **kwargs
    )
    Inventory.objects.create(product=product, current_stock=stock)
    return product


class BalanceStoreTestCase(TestCase):
    """Test cases for reserve / release / location."""

    def setUp(self):
        self.category = Category.objects.create(name='Electronics')
        self.product = make_product(self.category, 'CBL-001', stock=10)

    def test_get_balance(self):
        inventory = services.get_balance(self.product.id)

        self.assertEqual(inventory.current_stock, 10)
        self.assertEqual(inventory.available_stock, 10)

    def test_get_balance_missing(self):
        with self.assertRaises(NotFoundError):
            services.get_balance(99999)

    def test_reserve_reduces_available_stock(self):
        """
        Given: 10 in stock, none reserved
        When: Reserving 4
        Then: reserved 4, available 6, current untouched
        """
        inventory = services.reserve_stock(self.product.id, 4)

        self.assertEqual(inventory.reserved_stock, 4)
        self.assertEqual(inventory.available_stock, 6)
        self.assertEqual(inventory.current_stock, 10)
        self.assertFalse(StockTransaction.objects.exists())

    def test_reserve_beyond_available_rejected(self):
        """
        Given: current 10, reserved 8
        When: Reserving 3
        Then: BusinessRuleViolation and state unchanged
        """
        services.reserve_stock(self.product.id, 8)

        with self.assertRaises(BusinessRuleViolation):
            services.reserve_stock(self.product.id, 3)

        inventory = Inventory.objects.get(product=self.product)
        self.assertEqual(inventory.reserved_stock, 8)

    def test_reserve_all_available(self):
        inventory = services.reserve_stock(self.product.id, 10)
        self.assertEqual(inventory.available_stock, 0)

    def test_release(self):
        services.reserve_stock(self.product.id, 5)
        inventory = services.release_stock(self.product.id, 2)

        self.assertEqual(inventory.reserved_stock, 3)

    def test_release_more_than_reserved_rejected(self):
        services.reserve_stock(self.product.id, 2)

        with self.assertRaises(BusinessRuleViolation):
            services.release_stock(self.product.id, 3)

        self.assertEqual(Inventory.objects.get(product=self.product).reserved_stock, 2)

    def test_invalid_quantity(self):
        for quantity in (0, -2, False):
            with self.subTest(quantity=quantity):
                with self.assertRaises(InventoryValidationError):
                    services.reserve_stock(self.product.id, quantity)
                with self.assertRaises(InventoryValidationError):
                    services.release_stock(self.product.id, quantity)

    def test_reserve_missing_product(self):
        with self.assertRaises(NotFoundError):
            services.reserve_stock(99999, 1)

    def test_reserve_and_release_refuse_inactive_product(self):
        """
        Given: A deactivated product with 3 units reserved
        When: Reserving or releasing
        Then: NotFoundError and the reservation is unchanged
        """
        services.reserve_stock(self.product.id, 3)
        Product.objects.filter(id=self.product.id).update(is_active=False)

        with self.assertRaises(NotFoundError):
            services.reserve_stock(self.product.id, 1)
        with self.assertRaises(NotFoundError):
            services.release_stock(self.product.id, 1)

        self.assertEqual(Inventory.objects.get(product=self.product).reserved_stock, 3)

    def test_only_lock_waits_count_as_contention(self):
        timed_out = OperationalError('canceling statement due to lock timeout')
        timed_out.__cause__ = SimpleNamespace(sqlstate=services.LOCK_NOT_AVAILABLE)

        self.assertTrue(services.is_lock_contention(timed_out))
        self.assertTrue(services.is_lock_contention(OperationalError('database is locked')))
        self.assertFalse(services.is_lock_contention(OperationalError('server closed the connection unexpectedly')))
        self.assertFalse(services.is_lock_contention(OperationalError('no such table: inventory_inventory')))

    def test_non_lock_database_error_propagates(self):
        lost = OperationalError('server closed the connection unexpectedly')
        with patch('inventory.services.lock_active_balance', side_effect=lost):
            with self.assertRaises(OperationalError):
                services.reserve_stock(self.product.id, 1)

    def test_set_location_trims(self):
        inventory = services.set_location(self.product.id, '  Shelf B-2 ')
        self.assertEqual(inventory.location, 'Shelf B-2')

    def test_reserved_never_exceeds_current_in_database(self):
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Inventory.objects.filter(product=self.product).update(reserved_stock=11)


class CatalogServiceTestCase(TestCase):
    def setUp(self):
        hub.clear()
        self.category = Category.objects.create(name='Tools')

    def tearDown(self):
        hub.clear()

    def product_data(self, **overrides):
        data = {
            'sku': 'ham-01',
            'name': 'Claw Hammer',
            'category': self.category.id,
            'price': Decimal('12.50'),
            'minimum_stock': 2,
            'maximum_stock': 50,
        }
        data.update(overrides)
        return data

    def test_create_product_with_initial_stock(self):
        """
        Given: initial_stock 15
        When: Creating a product
        Then: Balance 15 and one IN entry referenced INITIAL-<SKU>
        """
        product = services.create_product(self.product_data(initial_stock=15, location='A1'))

        self.assertEqual(product.sku, 'HAM-01')
        inventory = Inventory.objects.get(product=product)
        self.assertEqual(inventory.current_stock, 15)
        self.assertEqual(inventory.location, 'A1')

        entry = StockTransaction.objects.get(product=product)
        self.assertEqual(entry.transaction_type, StockTransaction.Kind.IN)
        self.assertEqual(entry.quantity, 15)
        self.assertEqual(entry.reference_number, 'INITIAL-HAM-01')
        self.assertEqual(entry.notes, 'Initial stock entry')

    def test_create_product_without_stock(self):
        product = services.create_product(self.product_data())

        self.assertEqual(Inventory.objects.get(product=product).current_stock, 0)
        self.assertFalse(StockTransaction.objects.filter(product=product).exists())

    def test_product_created_event_after_commit(self):
        subscriber = QueueSubscriber()
        hub.join(subscriber, ALL)

        with self.captureOnCommitCallbacks(execute=True):
            product = services.create_product(self.product_data())

        message = subscriber.get(timeout=0)
        self.assertEqual(message.event, events.PRODUCT_CREATED)
        self.assertEqual(message.data['id'], product.id)

    def test_duplicate_sku_conflicts(self):
        services.create_product(self.product_data())

        with self.assertRaises(ConflictError):
            services.create_product(self.product_data(sku='HAM-01 ', name='Other'))

    def test_duplicate_barcode_conflicts(self):
        services.create_product(self.product_data(barcode='4006381333931'))

        with self.assertRaises(ConflictError):
            services.create_product(self.product_data(sku='HAM-02', barcode='4006381333931'))

    def test_blank_barcodes_do_not_conflict(self):
        services.create_product(self.product_data(barcode=''))
        services.create_product(self.product_data(sku='HAM-02', barcode=''))

        self.assertEqual(Product.objects.filter(barcode__isnull=True).count(), 2)

    def test_create_in_missing_category(self):
        with self.assertRaises(NotFoundError):
            services.create_product(self.product_data(category=99999))
        self.assertFalse(Product.objects.exists())

    def test_update_product_revalidates_sku(self):
        services.create_product(self.product_data())
        other = services.create_product(self.product_data(sku='SAW-01', name='Saw'))

        with self.assertRaises(ConflictError):
            services.update_product(other.id, {'sku': 'ham-01'})

        updated = services.update_product(other.id, {'name': 'Hand Saw', 'minimum_stock': 3})
        self.assertEqual(updated.name, 'Hand Saw')
        self.assertEqual(updated.sku, 'SAW-01')

    def test_update_rejects_max_below_min(self):
        product = services.create_product(self.product_data())

        with self.assertRaises(InventoryValidationError):
            services.update_product(product.id, {'maximum_stock': 1})

    def test_deactivate_product(self):
        product = services.create_product(self.product_data(initial_stock=3))
        services.deactivate_product(product.id)

        product.refresh_from_db()
        self.assertFalse(product.is_active)
        self.assertTrue(StockTransaction.objects.filter(product=product).exists())

    def test_category_delete_refused_with_active_products(self):
        services.create_product(self.product_data())

        with self.assertRaises(BusinessRuleViolation):
            services.deactivate_category(self.category.id)

        self.category.refresh_from_db()
        self.assertTrue(self.category.is_active)

    def test_category_soft_delete(self):
        product = services.create_product(self.product_data())
        services.deactivate_product(product.id)

        services.deactivate_category(self.category.id)

        self.category.refresh_from_db()
        self.assertFalse(self.category.is_active)
        self.assertTrue(Category.objects.filter(id=self.category.id).exists())

    def test_category_name_conflict(self):
        with self.assertRaises(ConflictError):
            services.create_category({'name': ' tools '})


class ProjectionTestCase(TestCase):
    def setUp(self):
        self.tools = Category.objects.create(name='Tools')
        self.paint = Category.objects.create(name='Paint')

        self.hammer = make_product(self.tools, 'HAM-1', stock=20, minimum_stock=5, price='10.00', cost_price='6.00')
        self.drill = make_product(self.tools, 'DRL-1', stock=3, minimum_stock=5, price='100.00', cost_price='70.00')
        self.white = make_product(self.paint, 'WHT-1', stock=0, minimum_stock=2, price='25.00')
        self.retired = make_product(self.paint, 'OLD-1', stock=0, minimum_stock=2, is_active=False)

    def test_low_stock_items(self):
        """Test: Balances at or below minimum, lowest first, with shortage."""
        items = list(selectors.low_stock_items())

        self.assertEqual([i.product_id for i in items], [self.white.id, self.drill.id])
        self.assertEqual(items[0].shortage, 2)
        self.assertEqual(items[1].shortage, 2)

    def test_out_of_stock_items_skip_inactive(self):
        self.assertEqual([i.product_id for i in selectors.out_of_stock_items()], [self.white.id])

    def test_valuation(self):
        valuation = selectors.inventory_valuation()

        self.assertEqual(valuation['total_value'], Decimal('500.00'))
        self.assertEqual(valuation['total_cost_value'], Decimal('330.00'))
        self.assertEqual(valuation['potential_profit'], Decimal('170.00'))
        self.assertEqual(valuation['total_units'], 23)
        self.assertEqual(valuation['total_items'], 3)

    def test_stats(self):
        Inventory.objects.filter(product=self.hammer).update(reserved_stock=5)

        stats = selectors.inventory_stats()

        self.assertEqual(stats['total_products'], 3)
        self.assertEqual(stats['total_stock'], 23)
        self.assertEqual(stats['reserved_stock'], 5)
        self.assertEqual(stats['available_stock'], 18)
        self.assertEqual(stats['low_stock_count'], 1)
        self.assertEqual(stats['out_of_stock_count'], 1)
        self.assertEqual(stats['total_categories'], 2)

    def test_category_rollup(self):
        rollup = {row['category_name']: row for row in selectors.category_stock_rollup()}

        self.assertEqual(rollup['Tools']['product_count'], 2)
        self.assertEqual(rollup['Tools']['total_stock'], 23)
        self.assertEqual(rollup['Tools']['total_value'], Decimal('500.00'))
        self.assertEqual(rollup['Paint']['product_count'], 1)

    def test_top_movers(self):
        remove_stock(self.hammer.id, 4)
        remove_stock(self.hammer.id, 4)
        remove_stock(self.drill.id, 1)
        add_stock(self.drill.id, 50)

        movers = selectors.top_movers(limit=5)

        self.assertEqual([m['product_id'] for m in movers], [self.hammer.id, self.drill.id])
        self.assertEqual(movers[0]['total_quantity'], 8)
        self.assertEqual(movers[0]['movement_count'], 2)

        received = selectors.top_movers(kind=StockTransaction.Kind.IN)
        self.assertEqual(received[0]['total_quantity'], 50)

    def test_trends(self):
        add_stock(self.hammer.id, 5)
        remove_stock(self.hammer.id, 2)

        [today] = selectors.stock_movement_trends(days=7)

        self.assertEqual(today['IN'], 5)
        self.assertEqual(today['OUT'], 2)
        self.assertEqual(today['ADJUSTMENT'], 0)

    def test_projections_reflect_latest_state(self):
        self.assertEqual(selectors.inventory_stats()['total_stock'], 23)
        add_stock(self.white.id, 7)
        self.assertEqual(selectors.inventory_stats()['total_stock'], 30)


class InventoryAPITestCase(APITestCase):
    def setUp(self):
        hub.clear()
        self.category = Category.objects.create(name='Garden')
        self.product = make_product(self.category, 'HOSE-1', stock=10, minimum_stock=3)

    def tearDown(self):
        hub.clear()

    def stock_url(self, action):
        return f'/api/inventory/product/{self.product.id}/{action}/'

    def test_create_product(self):
        payload = {
            'sku': 'rake-1',
            'name': 'Leaf Rake',
            'category_id': self.category.id,
            'price': '15.00',
            'minimum_stock': 1,
            'maximum_stock': 40,
            'initial_stock': 6,
        }
        response = self.client.post('/api/products/', payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        body = response.data
        self.assertTrue(body['success'])
        self.assertEqual(body['data']['sku'], 'RAKE-1')
        self.assertEqual(body['data']['inventory']['current_stock'], 6)
        self.assertIn('timestamp', body)

    def test_create_duplicate_sku_is_conflict(self):
        payload = {'sku': 'hose-1', 'name': 'Hose', 'category_id': self.category.id, 'price': '1.00'}
        response = self.client.post('/api/products/', payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertFalse(response.data['success'])
        self.assertEqual(response.data['error'], 'CONFLICT')

    def test_create_invalid_product(self):
        payload = {'sku': 'X', 'name': 'Hose', 'category_id': self.category.id, 'price': '-1'}
        response = self.client.post('/api/products/', payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'VALIDATION_ERROR')
        self.assertIn('sku', response.data['errors'])

    def test_product_lookup_by_sku(self):
        response = self.client.get('/api/products/sku/hose-1/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['id'], self.product.id)

        response = self.client.get('/api/products/sku/NOPE/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'NOT_FOUND')

    def test_product_list_search(self):
        make_product(self.category, 'SPRK-1', name='Sprinkler')

        response = self.client.get('/api/products/', {'search': 'sprink'})

        self.assertEqual(response.data['pagination']['total'], 1)
        self.assertEqual(response.data['data'][0]['sku'], 'SPRK-1')

    def test_add_remove_adjust(self):
        response = self.client.post(self.stock_url('add-stock'), {'quantity': 5}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['inventory']['current_stock'], 15)
        self.assertEqual(response.data['data']['transaction']['transaction_type'], 'IN')

        response = self.client.post(self.stock_url('remove-stock'), {'quantity': 7}, format='json')
        self.assertEqual(response.data['data']['inventory']['current_stock'], 8)

        response = self.client.post(self.stock_url('adjust-stock'), {'quantity': 2}, format='json')
        self.assertEqual(response.data['data']['inventory']['current_stock'], 2)
        self.assertEqual(response.data['data']['transaction']['quantity'], 6)

    def test_insufficient_stock_is_409(self):
        response = self.client.post(self.stock_url('remove-stock'), {'quantity': 11}, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'BUSINESS_RULE_VIOLATION')
        self.assertEqual(Inventory.objects.get(product=self.product).current_stock, 10)

    def test_zero_quantity_is_400(self):
        response = self.client.post(self.stock_url('add-stock'), {'quantity': 0}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'VALIDATION_ERROR')

    def test_missing_product_is_404(self):
        response = self.client.post('/api/inventory/product/99999/add-stock/', {'quantity': 1}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_contention_is_retryable_409(self):
        from core.exceptions import ContentionError

        with patch('inventory.views.apply_movement', side_effect=ContentionError()):
            response = self.client.post(self.stock_url('add-stock'), {'quantity': 1}, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'CONTENTION')
        self.assertTrue(response.data['retryable'])

    def test_unexpected_error_is_generic_500(self):
        with patch('inventory.views.apply_movement', side_effect=KeyError('secret')):
            with self.assertLogs('core.exceptions', level='ERROR'):
                response = self.client.post(self.stock_url('add-stock'), {'quantity': 1}, format='json')

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data['error'], 'SERVER_ERROR')
        self.assertEqual(response.data['message'], 'Internal server error occurred')
        self.assertNotIn('detail', response.data)

    def test_non_lock_database_error_is_generic_500(self):
        """
        Given: The database connection drops during a stock movement
        When: Posting add-stock
        Then: A logged SERVER_ERROR 500, not a retryable CONTENTION 409
        """
        lost = OperationalError('server closed the connection unexpectedly')
        with patch('transactions.services.lock_active_balance', side_effect=lost):
            with self.assertLogs('core.exceptions', level='ERROR'):
                response = self.client.post(self.stock_url('add-stock'), {'quantity': 1}, format='json')

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data['error'], 'SERVER_ERROR')
        self.assertNotIn('retryable', response.data)

    def test_reserve_and_release(self):
        response = self.client.post(self.stock_url('reserve'), {'quantity': 4}, format='json')
        self.assertEqual(response.data['data']['available_stock'], 6)

        response = self.client.post(self.stock_url('reserve'), {'quantity': 7}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

        response = self.client.post(self.stock_url('release'), {'quantity': 4}, format='json')
        self.assertEqual(response.data['data']['reserved_stock'], 0)

    def test_location(self):
        response = self.client.put(self.stock_url('location'), {'location': 'Shed'}, format='json')
        self.assertEqual(response.data['data']['location'], 'Shed')

    def test_low_stock_and_dashboard(self):
        self.client.post(self.stock_url('remove-stock'), {'quantity': 8}, format='json')

        response = self.client.get('/api/inventory/low-stock/')
        self.assertEqual(response.data['pagination']['total'], 1)
        self.assertEqual(response.data['data'][0]['shortage'], 1)

        response = self.client.get('/api/dashboard/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        data = response.data['data']
        self.assertEqual(data['stats']['total_stock'], 2)
        self.assertEqual(len(data['low_stock_alerts']), 1)
        self.assertEqual(data['recent_transactions'][0]['transaction_type'], 'OUT')
        self.assertEqual(data['top_products'][0]['total_quantity'], 8)

    def test_dashboard_endpoints(self):
        for path in ('stats', 'alerts', 'transactions', 'trends', 'categories', 'top-products', ''):
            with self.subTest(path=path):
                url = f'/api/dashboard/{path}/' if path else '/api/dashboard/'
                response = self.client.get(url)
                self.assertEqual(response.status_code, status.HTTP_200_OK)
                self.assertTrue(response.data['success'])

        response = self.client.get('/api/dashboard/top-products/', {'type': 'lost'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_category_delete_with_products_is_409(self):
        response = self.client.delete(f'/api/categories/{self.category.id}/')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'BUSINESS_RULE_VIOLATION')

    def test_category_stats(self):
        response = self.client.get(f'/api/categories/{self.category.id}/stats/')

        self.assertEqual(response.data['data']['product_count'], 1)
        self.assertEqual(response.data['data']['total_stock'], 10)

    def test_health(self):
        response = self.client.get('/health/')
        self.assertEqual(response.json()['status'], 'healthy')
