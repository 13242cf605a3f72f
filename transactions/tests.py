"""
Tests for the stock mutator and the ledger.

Test Cases:
1. IN / OUT / ADJUSTMENT update the balance and append one ledger entry
2. Rejected movements leave balance and ledger unchanged
3. Input validation (quantity, kind, inactive product)
4. Ledger entries cannot be edited or deleted
5. Post-commit fan-out and stock alerts
6. Ledger queries and balance replay
7. Concurrent movements on one product serialize
"""
import threading
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from django.db import connection, transaction
from django.db.models import ProtectedError
from django.test import TestCase, TransactionTestCase
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from core.exceptions import (
    BusinessRuleViolation,
    ContentionError,
    InventoryValidationError,
    NotFoundError,
)
from inventory.models import Category, Inventory, Product
from notifications import events
from notifications.hub import ALL, QueueSubscriber, hub, product_group, role_group
from notifications.tasks import LOW_STOCK, OUT_OF_STOCK, send_stock_alert
from transactions.models import ImmutableLedgerError, StockTransaction
from transactions.selectors import (
    query_transactions,
    recent_transactions,
    replay_balance,
    transaction_summary,
)
from transactions.services import add_stock, adjust_stock, apply_movement, remove_stock

IN = StockTransaction.Kind.IN
OUT = StockTransaction.Kind.OUT
ADJUSTMENT = StockTransaction.Kind.ADJUSTMENT


def make_product(category, sku, stock=0, minimum_stock=0, price='10.00', **kwargs):
    """Product with a balance row holding `stock` units (fixture shortcut, no ledger entry)."""
    product = Product.objects.create(
        sku=sku,
        name=kwargs.pop('name', f'Product {sku}'),
        category=category,
        price=Decimal(price),
        minimum_stock=minimum_stock,
        maximum_stock=kwargs.pop('maximum_stock', 1000),
        **kwargs
    )
    Inventory.objects.create(product=product, current_stock=stock)
    return product


class StockMovementTestCase(TestCase):
    """Test cases for apply_movement."""

    def setUp(self):
        self.category = Category.objects.create(name='Hardware')
        self.product = make_product(self.category, 'BOLT-001', stock=20, minimum_stock=5)
        self.inventory = self.product.inventory

    def test_stock_in_increases_balance(self):
        """
        Given: Balance of 20
        When: Applying IN 5
        Then: Balance is 25 and one IN entry of 5 is written
        """
        result = apply_movement(self.product.id, IN, 5, reference_number='PO-1')

        self.inventory.refresh_from_db()
        self.assertEqual(self.inventory.current_stock, 25)
        self.assertEqual(result.previous_stock, 20)
        self.assertEqual(result.delta, 5)
        self.assertEqual(result.new_stock, 25)

        entries = StockTransaction.objects.filter(product=self.product)
        self.assertEqual(entries.count(), 1)
        entry = entries.get()
        self.assertEqual(entry.transaction_type, IN)
        self.assertEqual(entry.quantity, 5)
        self.assertEqual(entry.previous_stock, 20)
        self.assertEqual(entry.new_stock, 25)
        self.assertEqual(entry.reference_number, 'PO-1')

    def test_stock_out_decreases_balance(self):
        remove_stock(self.product.id, 8)

        self.inventory.refresh_from_db()
        self.assertEqual(self.inventory.current_stock, 12)
        entry = StockTransaction.objects.get(product=self.product)
        self.assertEqual(entry.transaction_type, OUT)
        self.assertEqual(entry.quantity, 8)
        self.assertEqual(entry.signed_quantity, -8)

    def test_stock_out_of_entire_balance(self):
        """Test: Removing exactly the balance leaves zero."""
        remove_stock(self.product.id, 20)

        self.inventory.refresh_from_db()
        self.assertEqual(self.inventory.current_stock, 0)

    def test_insufficient_stock_rejected(self):
        """
        Given: Balance of 3
        When: Applying OUT 5
        Then: BusinessRuleViolation, balance stays 3, no ledger entry
        """
        Inventory.objects.filter(pk=self.inventory.pk).update(current_stock=3)

        with self.assertRaises(BusinessRuleViolation) as context:
            apply_movement(self.product.id, OUT, 5)

        self.assertIn('Insufficient stock', context.exception.message)
        self.inventory.refresh_from_db()
        self.assertEqual(self.inventory.current_stock, 3)
        self.assertFalse(StockTransaction.objects.filter(product=self.product).exists())

    def test_adjustment_sets_absolute_target(self):
        """
        Given: Balance of 20
        When: Applying ADJUSTMENT 4
        Then: Balance is 4 (not 24), entry records magnitude 16
        """
        result = adjust_stock(self.product.id, 4, notes='Cycle count')

        self.inventory.refresh_from_db()
        self.assertEqual(self.inventory.current_stock, 4)
        self.assertEqual(result.delta, -16)
        entry = result.transaction
        self.assertEqual(entry.transaction_type, ADJUSTMENT)
        self.assertEqual(entry.quantity, 16)
        self.assertEqual(entry.previous_stock, 20)
        self.assertEqual(entry.new_stock, 4)
        self.assertEqual(entry.notes, 'Cycle count')

    def test_adjustment_upwards(self):
        result = adjust_stock(self.product.id, 50)

        self.assertEqual(result.delta, 30)
        self.assertEqual(result.transaction.quantity, 30)

    def test_movement_updates_location(self):
        add_stock(self.product.id, 1, location='  Aisle 7  ')

        self.inventory.refresh_from_db()
        self.assertEqual(self.inventory.location, 'Aisle 7')

    def test_invalid_quantities_rejected(self):
        """Test: Zero, negative, bool and non-integer quantities are validation errors."""
        for quantity in (0, -1, True, 2.5, '3', None):
            with self.subTest(quantity=quantity):
                with self.assertRaises(InventoryValidationError):
                    apply_movement(self.product.id, IN, quantity)

        self.inventory.refresh_from_db()
        self.assertEqual(self.inventory.current_stock, 20)
        self.assertEqual(StockTransaction.objects.count(), 0)

    def test_unknown_kind_rejected(self):
        with self.assertRaises(InventoryValidationError) as context:
            apply_movement(self.product.id, 'TRANSFER', 1)

        self.assertIn('transaction_type', context.exception.errors)

    def test_missing_product(self):
        with self.assertRaises(NotFoundError):
            apply_movement(99999, IN, 1)

    def test_inactive_product(self):
        self.product.is_active = False
        self.product.save()

        with self.assertRaises(NotFoundError):
            apply_movement(self.product.id, IN, 1)
        self.assertEqual(StockTransaction.objects.count(), 0)

    def test_out_cannot_cut_into_reserved_stock(self):
        """
        Given: Balance 20 with 15 reserved
        When: Removing 10
        Then: BusinessRuleViolation, nothing written
        """
        Inventory.objects.filter(pk=self.inventory.pk).update(reserved_stock=15)

        with self.assertRaises(BusinessRuleViolation):
            remove_stock(self.product.id, 10)

        self.inventory.refresh_from_db()
        self.assertEqual(self.inventory.current_stock, 20)
        self.assertEqual(StockTransaction.objects.count(), 0)

    def test_outer_rollback_discards_balance_and_entry(self):
        """Test: A movement inside a failed outer transaction leaves no trace."""
        with self.assertRaises(RuntimeError):
            with transaction.atomic():
                add_stock(self.product.id, 5)
                raise RuntimeError('boom')

        self.inventory.refresh_from_db()
        self.assertEqual(self.inventory.current_stock, 20)
        self.assertEqual(StockTransaction.objects.count(), 0)

    def test_lock_error_reported_as_contention(self):
        from django.db import OperationalError

        with patch('transactions.services.lock_active_balance', side_effect=OperationalError('database is locked')):
            with self.assertRaises(ContentionError) as context:
                add_stock(self.product.id, 1)

        self.assertTrue(context.exception.retryable)
        self.assertEqual(StockTransaction.objects.count(), 0)

    def test_other_database_errors_are_not_contention(self):
        """
        Given: The database connection drops while locking the balance
        When: Applying a movement
        Then: The OperationalError propagates instead of a retryable ContentionError
        """
        from django.db import OperationalError

        lost = OperationalError('server closed the connection unexpectedly')
        with patch('transactions.services.lock_active_balance', side_effect=lost):
            with self.assertRaises(OperationalError):
                add_stock(self.product.id, 1)

        self.assertEqual(StockTransaction.objects.count(), 0)

    def test_adjustment_to_current_level_rejected(self):
        """
        Given: Balance of 20
        When: Adjusting to 20
        Then: BusinessRuleViolation and no ledger entry or event
        """
        subscriber = QueueSubscriber()
        hub.join(subscriber, ALL)
        try:
            with self.captureOnCommitCallbacks(execute=True):
                with self.assertRaises(BusinessRuleViolation) as context:
                    adjust_stock(self.product.id, 20)
        finally:
            hub.leave(subscriber)

        self.assertEqual(context.exception.message, 'Stock is already at the requested level')
        self.assertEqual(StockTransaction.objects.count(), 0)
        self.assertEqual(subscriber.pending(), 0)


class LedgerImmutabilityTestCase(TestCase):
    def setUp(self):
        category = Category.objects.create(name='Ledger')
        self.product = make_product(category, 'LEDG-01', stock=10)
        self.entry = add_stock(self.product.id, 2).transaction

    def test_entry_cannot_be_modified(self):
        self.entry.quantity = 99
        with self.assertRaises(ImmutableLedgerError):
            self.entry.save()

    def test_entry_cannot_be_deleted(self):
        with self.assertRaises(ImmutableLedgerError):
            self.entry.delete()

    def test_bulk_update_and_delete_refused(self):
        with self.assertRaises(ImmutableLedgerError):
            StockTransaction.objects.filter(id=self.entry.id).update(quantity=1)
        with self.assertRaises(ImmutableLedgerError):
            StockTransaction.objects.all().delete()

        self.entry.refresh_from_db()
        self.assertEqual(self.entry.quantity, 2)

    def test_product_with_history_cannot_be_deleted(self):
        """
        Given: A product with ledger entries
        When: Hard-deleting the product
        Then: ProtectedError and the ledger is untouched
        """
        add_stock(self.product.id, 3)

        with self.assertRaises(ProtectedError):
            with transaction.atomic():
                self.product.delete()

        self.assertEqual(StockTransaction.objects.filter(product_id=self.product.id).count(), 2)
        self.assertTrue(Product.objects.filter(id=self.product.id).exists())


class MovementNotificationTestCase(TestCase):
    """Post-commit fan-out of stock movements."""

    def setUp(self):
        hub.clear()
        self.category = Category.objects.create(name='Alerts')
        self.product = make_product(self.category, 'ALRT-01', stock=20, minimum_stock=5)

        self.everyone = QueueSubscriber(name='everyone')
        self.watcher = QueueSubscriber(name='watcher')
        self.manager = QueueSubscriber(name='manager')
        hub.join(self.everyone, ALL)
        hub.join(self.watcher, product_group(self.product.id))
        hub.join(self.manager, role_group('manager'))

    def tearDown(self):
        hub.clear()

    def drain(self, subscriber):
        messages = []
        while subscriber.pending():
            messages.append(subscriber.get(timeout=0))
        return messages

    def test_events_wait_for_commit(self):
        """
        Given: A subscriber on the product group
        When: A movement commits
        Then: stock_updated is delivered only once the commit callbacks run
        """
        with self.captureOnCommitCallbacks(execute=False) as callbacks:
            add_stock(self.product.id, 3)

        self.assertEqual(self.watcher.pending(), 0)
        for callback in callbacks:
            callback()

        [message] = self.drain(self.watcher)
        self.assertEqual(message.event, events.STOCK_UPDATED)
        self.assertEqual(message.data['current_stock'], 23)
        self.assertEqual(message.data['previous_stock'], 20)
        self.assertEqual(message.data['kind'], IN)
        self.assertEqual(message.data['quantity'], 3)

    def test_rejected_movement_emits_nothing(self):
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            with self.assertRaises(BusinessRuleViolation):
                remove_stock(self.product.id, 500)

        self.assertEqual(len(callbacks), 0)
        self.assertEqual(self.everyone.pending(), 0)

    def test_low_stock_alert_goes_to_alert_roles(self):
        """
        Given: minimum_stock 5, balance 20
        When: Removing 16 (balance 4)
        Then: managers get low_stock_alert, "all" gets stock_updated only
        """
        with patch.object(send_stock_alert, 'delay') as mock_delay:
            with self.captureOnCommitCallbacks(execute=True):
                remove_stock(self.product.id, 16)

        [alert] = self.drain(self.manager)
        self.assertEqual(alert.event, events.LOW_STOCK_ALERT)
        self.assertEqual(alert.data, {'product_id': self.product.id, 'current_stock': 4, 'minimum_stock': 5})

        everyone_events = [m.event for m in self.drain(self.everyone)]
        self.assertEqual(everyone_events, [events.STOCK_UPDATED])
        mock_delay.assert_called_once_with(self.product.id, LOW_STOCK, 4, 5)

    def test_out_of_stock_alert(self):
        with patch.object(send_stock_alert, 'delay') as mock_delay:
            with self.captureOnCommitCallbacks(execute=True):
                remove_stock(self.product.id, 20)

        everyone_events = [m.event for m in self.drain(self.everyone)]
        self.assertEqual(everyone_events, [events.STOCK_UPDATED, events.OUT_OF_STOCK_ALERT])
        self.assertEqual(self.manager.pending(), 0)
        mock_delay.assert_called_once_with(self.product.id, OUT_OF_STOCK, 0, 5)

    def test_no_alert_above_minimum(self):
        with patch.object(send_stock_alert, 'delay') as mock_delay:
            with self.captureOnCommitCallbacks(execute=True):
                remove_stock(self.product.id, 10)

        self.assertEqual(self.manager.pending(), 0)
        mock_delay.assert_not_called()

    def test_dashboard_gets_transaction_created(self):
        dashboard = QueueSubscriber(name='dashboard')
        hub.join(dashboard, 'dashboard')

        with self.captureOnCommitCallbacks(execute=True):
            entry = add_stock(self.product.id, 2, reference_number='PO-9').transaction

        received = {m.event: m.data for m in self.drain(dashboard)}
        self.assertIn(events.STOCK_UPDATED, received)
        self.assertEqual(received[events.TRANSACTION_CREATED]['id'], entry.id)
        self.assertEqual(received[events.TRANSACTION_CREATED]['reference_number'], 'PO-9')

    def test_failing_subscriber_does_not_fail_movement(self):
        class Broken(QueueSubscriber):
            def deliver(self, message):
                raise RuntimeError('socket closed badly')

        hub.join(Broken(name='broken'), ALL)

        with self.captureOnCommitCallbacks(execute=True):
            result = add_stock(self.product.id, 1)

        self.assertEqual(result.new_stock, 21)
        self.assertEqual(self.everyone.pending(), 1)

    def test_alert_queue_failure_is_logged(self):
        with patch.object(send_stock_alert, 'delay', side_effect=ConnectionError('broker down')):
            with self.assertLogs('transactions.services', level='ERROR'):
                with self.captureOnCommitCallbacks(execute=True):
                    remove_stock(self.product.id, 20)

        self.product.inventory.refresh_from_db()
        self.assertEqual(self.product.inventory.current_stock, 0)


class LedgerQueryTestCase(TestCase):
    def setUp(self):
        category = Category.objects.create(name='Queries')
        self.bolt = make_product(category, 'BOLT-10', stock=0)
        self.nut = make_product(category, 'NUT-10', stock=0)

        add_stock(self.bolt.id, 10, reference_number='PO-100')
        remove_stock(self.bolt.id, 3, reference_number='SO-1')
        adjust_stock(self.bolt.id, 5)
        add_stock(self.nut.id, 4)

    def test_filter_by_product_and_kind(self):
        self.assertEqual(query_transactions(product_id=self.bolt.id).count(), 3)
        self.assertEqual(query_transactions(kind=IN).count(), 2)
        self.assertEqual(query_transactions(product_id=self.bolt.id, kind=OUT).get().quantity, 3)

    def test_filter_by_reference_and_dates(self):
        self.assertEqual(query_transactions(reference_number='po-').count(), 1)

        tomorrow = timezone.now() + timedelta(days=1)
        self.assertEqual(query_transactions(start_date=tomorrow).count(), 0)
        self.assertEqual(query_transactions(end_date=tomorrow).count(), 4)

    def test_ordering(self):
        quantities = list(query_transactions(ordering='quantity').values_list('quantity', flat=True))
        self.assertEqual(quantities, sorted(quantities))

        newest_first = list(query_transactions().values_list('id', flat=True))
        self.assertEqual(newest_first, sorted(newest_first, reverse=True))

    def test_invalid_ordering_and_kind(self):
        with self.assertRaises(InventoryValidationError):
            query_transactions(ordering='product__price')
        with self.assertRaises(InventoryValidationError):
            query_transactions(kind='LOST')

    def test_summary_includes_unused_kinds(self):
        summary = transaction_summary()

        self.assertEqual(summary[IN], {'count': 2, 'total_quantity': 14})
        self.assertEqual(summary[OUT], {'count': 1, 'total_quantity': 3})
        self.assertEqual(summary[ADJUSTMENT], {'count': 1, 'total_quantity': 2})

        tomorrow = timezone.now() + timedelta(days=1)
        empty = transaction_summary(start_date=tomorrow)
        self.assertEqual(empty[OUT], {'count': 0, 'total_quantity': 0})

    def test_recent_transactions(self):
        recent = list(recent_transactions(limit=2))
        self.assertEqual(len(recent), 2)
        self.assertEqual(recent[0].product_id, self.nut.id)

    def test_replay_matches_stored_balance(self):
        """
        Test: Replaying IN 10, OUT 3, ADJUSTMENT 5 from zero gives the stored 5.
        """
        report = replay_balance(self.bolt.id)

        self.assertEqual(report['replayed_stock'], 5)
        self.assertEqual(report['stored_stock'], 5)
        self.assertEqual(report['entries'], 3)
        self.assertTrue(report['consistent'])

    def test_replay_detects_drift(self):
        Inventory.objects.filter(product=self.bolt).update(current_stock=42)

        report = replay_balance(self.bolt.id)
        self.assertFalse(report['consistent'])
        self.assertEqual(report['replayed_stock'], 5)


class TransactionAPITestCase(APITestCase):
    def setUp(self):
        category = Category.objects.create(name='API')
        self.product = make_product(category, 'API-001', stock=0)
        add_stock(self.product.id, 10)
        remove_stock(self.product.id, 4)

    def test_list_is_paginated_envelope(self):
        response = self.client.get('/api/transactions/', {'limit': 1})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['success'])
        self.assertEqual(len(response.data['data']), 1)
        self.assertEqual(response.data['pagination']['total'], 2)
        self.assertTrue(response.data['pagination']['has_next'])

    def test_list_filters(self):
        response = self.client.get('/api/transactions/', {'transaction_type': 'out'})
        self.assertEqual([row['transaction_type'] for row in response.data['data']], [OUT])

        response = self.client.get('/api/transactions/type/IN/')
        self.assertEqual(response.data['pagination']['total'], 1)

    def test_invalid_ordering_is_validation_error(self):
        response = self.client.get('/api/transactions/', {'ordering': 'notes'})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'VALIDATION_ERROR')

    def test_invalid_date_is_validation_error(self):
        response = self.client.get('/api/transactions/', {'start_date': 'yesterday'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_product_id_filter_must_be_numeric(self):
        response = self.client.get('/api/transactions/', {'product_id': 'abc'})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('product_id', response.data['errors'])

        response = self.client.get('/api/transactions/', {'product_id': self.product.id})
        self.assertEqual(response.data['pagination']['total'], 2)

    def test_product_ledger_and_missing_product(self):
        response = self.client.get(f'/api/transactions/product/{self.product.id}/')
        self.assertEqual(response.data['pagination']['total'], 2)

        response = self.client.get('/api/transactions/product/99999/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'NOT_FOUND')

    def test_detail_and_summary(self):
        entry = StockTransaction.objects.filter(product=self.product).first()
        response = self.client.get(f'/api/transactions/{entry.id}/')
        self.assertEqual(response.data['data']['id'], entry.id)

        response = self.client.get('/api/transactions/summary/')
        self.assertEqual(response.data['data'][IN]['total_quantity'], 10)
        self.assertEqual(response.data['data'][ADJUSTMENT]['count'], 0)

    def test_verify_endpoint(self):
        response = self.client.get(f'/api/transactions/product/{self.product.id}/verify/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['data']['consistent'])
        self.assertEqual(response.data['data']['replayed_stock'], 6)

    def test_ledger_is_read_only_over_http(self):
        entry = StockTransaction.objects.first()
        self.assertEqual(self.client.post('/api/transactions/', {}).status_code, 405)
        self.assertEqual(self.client.delete(f'/api/transactions/{entry.id}/').status_code, 405)


class ConcurrentMovementTestCase(TransactionTestCase):
    """
    Concurrent movements on one balance.
    Uses TransactionTestCase for proper multi-threading support.
    """

    def setUp(self):
        hub.clear()
        self.category = Category.objects.create(name='Concurrent')
        self.product = make_product(self.category, 'RACE-01', stock=10)

    def tearDown(self):
        hub.clear()

    def run_threads(self, target, count):
        threads = [threading.Thread(target=target, args=(i,)) for i in range(count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

    def test_concurrent_removals_do_not_oversell(self):
        """
        Given: 10 units in stock
        When: Two concurrent OUT 6 movements
        Then: Exactly one succeeds, the other is refused for insufficient
              stock (not a lock timeout), final balance 4, one ledger entry
        """
        results = {}

        def remove(key):
            try:
                remove_stock(self.product.id, 6)
                results[key] = 'ok'
            except (BusinessRuleViolation, ContentionError) as e:
                results[key] = e.kind
            finally:
                connection.close()

        self.run_threads(remove, 2)

        self.assertEqual(sorted(results.values()), ['BUSINESS_RULE_VIOLATION', 'ok'])
        inventory = Inventory.objects.get(product=self.product)
        self.assertEqual(inventory.current_stock, 4)
        self.assertEqual(StockTransaction.objects.filter(product=self.product).count(), 1)

    def test_concurrent_additions_all_recorded(self):
        """
        Given: 10 units in stock
        When: Five concurrent IN 1 movements
        Then: Balance is 15 and the ledger replays to it
        """
        errors = []

        def add(_):
            try:
                add_stock(self.product.id, 1)
            except Exception as e:
                errors.append(e)
            finally:
                connection.close()

        self.run_threads(add, 5)

        self.assertEqual(errors, [])
        inventory = Inventory.objects.get(product=self.product)
        self.assertEqual(inventory.current_stock, 15)
        self.assertEqual(StockTransaction.objects.filter(product=self.product).count(), 5)

        entries = StockTransaction.objects.filter(product=self.product).order_by('id')
        self.assertEqual([e.previous_stock for e in entries], [10, 11, 12, 13, 14])


class DailyReportTaskTestCase(TestCase):
    def test_report_for_today(self):
        from transactions.tasks import generate_daily_movement_report

        category = Category.objects.create(name='Reports')
        product = make_product(category, 'REP-01', stock=0)
        add_stock(product.id, 9)
        remove_stock(product.id, 2)

        with self.assertLogs('transactions.tasks', level='INFO') as logs:
            result = generate_daily_movement_report(timezone.localdate().isoformat())

        self.assertEqual(result['summary'][IN], {'count': 1, 'total_quantity': 9})
        self.assertEqual(result['summary'][OUT], {'count': 1, 'total_quantity': 2})
        self.assertIn('DAILY STOCK MOVEMENT REPORT', logs.output[0])

    def test_report_defaults_to_yesterday(self):
        from transactions.tasks import generate_daily_movement_report

        result = generate_daily_movement_report()

        expected = (timezone.localdate() - timedelta(days=1)).isoformat()
        self.assertEqual(result['date'], expected)
        self.assertEqual(result['summary'][ADJUSTMENT]['count'], 0)
