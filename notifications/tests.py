"""
Tests for the subscriber hub, event routing, the Redis relay, the event
stream endpoint and alert tasks.
"""
import json
import threading
from decimal import Decimal
from unittest.mock import MagicMock

import redis
from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework import status
from rest_framework.test import APIClient

from inventory.models import Category, Product
from notifications import events
from notifications.hub import (
    ALL,
    DASHBOARD,
    Message,
    QueueSubscriber,
    SubscriberHub,
    hub,
    product_group,
    role_group,
)
from notifications.relay import RedisRelay
from notifications.tasks import LOW_STOCK, OUT_OF_STOCK, send_stock_alert


class SubscriberHubTestCase(SimpleTestCase):
    def setUp(self):
        self.hub = SubscriberHub()

    def test_delivers_once_per_subscriber(self):
        """
        Given: A subscriber in both "all" and "product:1"
        When: Publishing to both groups
        Then: It receives the event exactly once
        """
        subscriber = QueueSubscriber()
        self.hub.join(subscriber, ALL)
        self.hub.join(subscriber, product_group(1))

        delivered = self.hub.publish('stock_updated', {'product_id': 1}, [ALL, product_group(1)])

        self.assertEqual(delivered, 1)
        self.assertEqual(subscriber.pending(), 1)

    def test_only_addressed_groups_receive(self):
        inside = QueueSubscriber()
        outside = QueueSubscriber()
        self.hub.join(inside, DASHBOARD)
        self.hub.join(outside, product_group(2))

        self.hub.publish('transaction_created', {}, [DASHBOARD])

        self.assertEqual(inside.pending(), 1)
        self.assertEqual(outside.pending(), 0)

    def test_publish_without_subscribers(self):
        self.assertEqual(self.hub.publish('stock_updated', {}, ['product:404']), 0)

    def test_slow_subscriber_is_skipped(self):
        """
        Given: A subscriber whose queue holds one event and is full
        When: Two more events are published
        Then: Others still receive them and the slow one counts drops
        """
        slow = QueueSubscriber(maxsize=1)
        fast = QueueSubscriber()
        self.hub.join(slow, ALL)
        self.hub.join(fast, ALL)

        self.hub.publish('a', {}, [ALL])
        with self.assertLogs('notifications.hub', level='WARNING'):
            delivered = self.hub.publish('b', {}, [ALL])
        self.hub.publish('c', {}, [ALL])

        self.assertEqual(delivered, 1)
        self.assertEqual(fast.pending(), 3)
        self.assertEqual(slow.pending(), 1)
        self.assertEqual(slow.dropped, 2)
        self.assertIn(slow, self.hub.members(ALL))

    def test_closed_subscriber_is_removed(self):
        subscriber = QueueSubscriber()
        self.hub.join(subscriber, ALL)
        self.hub.join(subscriber, DASHBOARD)
        subscriber.close()

        self.assertEqual(self.hub.publish('a', {}, [ALL]), 0)
        self.assertEqual(self.hub.groups(), {})

    def test_failing_subscriber_does_not_stop_delivery(self):
        broken = MagicMock()
        broken.deliver.side_effect = RuntimeError('boom')
        healthy = QueueSubscriber()
        self.hub.join(broken, ALL)
        self.hub.join(healthy, ALL)

        with self.assertLogs('notifications.hub', level='ERROR'):
            delivered = self.hub.publish('a', {}, [ALL])

        self.assertEqual(delivered, 1)
        self.assertEqual(healthy.pending(), 1)

    def test_leave_one_group_and_all_groups(self):
        subscriber = QueueSubscriber()
        self.hub.join(subscriber, ALL)
        self.hub.join(subscriber, role_group('admin'))

        self.hub.leave(subscriber, role_group('admin'))
        self.assertEqual(self.hub.groups(), {ALL: 1})

        self.hub.leave(subscriber)
        self.assertEqual(self.hub.groups(), {})

    def test_membership_changes_during_publish(self):
        """
        Test: Subscribers joining and leaving while events are published
        never break delivery.
        """
        stop = threading.Event()
        errors = []

        def churn():
            try:
                while not stop.is_set():
                    subscriber = QueueSubscriber(maxsize=1000)
                    self.hub.join(subscriber, ALL)
                    self.hub.leave(subscriber)
            except Exception as e:
                errors.append(e)

        steady = QueueSubscriber(maxsize=1000)
        self.hub.join(steady, ALL)
        workers = [threading.Thread(target=churn) for _ in range(3)]
        for worker in workers:
            worker.start()
        try:
            for i in range(200):
                self.hub.publish('tick', {'i': i}, [ALL])
        finally:
            stop.set()
            for worker in workers:
                worker.join()

        self.assertEqual(errors, [])
        self.assertEqual(steady.pending(), 200)

    def test_relays_receive_every_event(self):
        relay = MagicMock()
        self.hub.add_relay(relay)

        self.hub.publish('a', {'x': 1}, [ALL, ALL, DASHBOARD])

        message, groups = relay.call_args.args
        self.assertEqual(message.event, 'a')
        self.assertEqual(groups, [ALL, DASHBOARD])

        self.hub.remove_relay(relay)
        self.hub.publish('b', {}, [ALL])
        self.assertEqual(relay.call_count, 1)

    def test_message_frames(self):
        message = Message('stock_updated', {'price': Decimal('1.50')})

        self.assertEqual(json.loads(message.as_json())['data'], {'price': '1.50'})
        self.assertTrue(message.as_sse().startswith('event: stock_updated\ndata: '))
        self.assertTrue(message.as_sse().endswith('\n\n'))


class EventRoutingTestCase(SimpleTestCase):
    def setUp(self):
        hub.clear()
        self.subscribers = {}
        for group in (ALL, DASHBOARD, product_group(7), role_group('admin'), role_group('manager'), role_group('clerk')):
            subscriber = QueueSubscriber()
            hub.join(subscriber, group)
            self.subscribers[group] = subscriber

    def tearDown(self):
        hub.clear()

    def receivers(self):
        return sorted(group for group, sub in self.subscribers.items() if sub.pending())

    def test_stock_updated_routing(self):
        events.emit_stock_update(7, 12, 10, 'IN', 2)
        self.assertEqual(self.receivers(), sorted([ALL, DASHBOARD, product_group(7)]))

    def test_low_stock_alert_routing(self):
        events.emit_low_stock_alert(7, 1, 5)
        self.assertEqual(self.receivers(), sorted([role_group('admin'), role_group('manager')]))

    @override_settings(NOTIFICATIONS_ALERT_ROLES=['clerk'])
    def test_alert_roles_are_configurable(self):
        events.emit_low_stock_alert(7, 1, 5)
        self.assertEqual(self.receivers(), [role_group('clerk')])

    def test_out_of_stock_routing(self):
        events.emit_out_of_stock_alert(7)
        self.assertEqual(self.receivers(), [ALL])

    def test_product_events_routing(self):
        events.emit_product_created({'id': 7})
        self.assertEqual(self.receivers(), sorted([ALL, DASHBOARD]))

        for subscriber in self.subscribers.values():
            while subscriber.get(timeout=0):
                pass
        events.emit_product_updated({'id': 7})
        self.assertEqual(self.receivers(), sorted([ALL, product_group(7)]))

    def test_emit_never_raises(self):
        hub.add_relay(MagicMock(side_effect=RuntimeError('relay down')))
        with self.assertLogs('notifications.hub', level='ERROR'):
            self.assertEqual(events.emit_out_of_stock_alert(7), 1)


class RedisRelayTestCase(SimpleTestCase):
    def setUp(self):
        self.client = MagicMock()
        self.client.publish.return_value = 2
        self.relay = RedisRelay('redis://localhost:6379/0', 'stockledger', client=self.client)

    def tearDown(self):
        self.relay.shutdown()

    def test_publishes_json_per_group(self):
        message = Message('stock_updated', {'product_id': 3})

        receivers = self.relay.publish(message, [ALL, product_group(3)])

        self.assertEqual(receivers, 4)
        channels = [c.args[0] for c in self.client.publish.call_args_list]
        self.assertEqual(channels, ['stockledger:all', 'stockledger:product:3'])
        payload = json.loads(self.client.publish.call_args.args[1])
        self.assertEqual(payload['event'], 'stock_updated')

    def test_redis_errors_are_logged(self):
        self.client.publish.side_effect = redis.ConnectionError('refused')

        with self.assertLogs('notifications.relay', level='ERROR'):
            self.assertEqual(self.relay.publish(Message('a', {}), [ALL]), 0)

    def test_call_publishes_in_background(self):
        self.relay(Message('a', {}), [DASHBOARD])
        self.relay.shutdown(wait=True)

        self.client.publish.assert_called_once()

    def test_full_backlog_drops_events(self):
        """
        Given: A relay with room for one queued event whose Redis publish hangs
        When: Three events are relayed
        Then: One is in flight, one waits, the third is dropped and counted
        """
        started = threading.Event()
        release = threading.Event()

        def slow_publish(channel, payload):
            started.set()
            release.wait(5)
            return 1

        client = MagicMock()
        client.publish.side_effect = slow_publish
        relay = RedisRelay('redis://localhost:6379/0', 'stockledger', client=client, maxsize=1)
        try:
            relay(Message('first', {}), [ALL])
            self.assertTrue(started.wait(5))
            relay(Message('second', {}), [ALL])
            with self.assertLogs('notifications.relay', level='WARNING'):
                relay(Message('third', {}), [ALL])

            self.assertEqual(relay.dropped, 1)
            self.assertEqual(relay.pending(), 1)
        finally:
            release.set()
            relay.shutdown(wait=True)

        self.assertEqual(client.publish.call_count, 2)

    def test_closed_relay_ignores_events(self):
        self.relay.shutdown()
        self.relay(Message('late', {}), [ALL])

        self.client.publish.assert_not_called()


class StockAlertTaskTestCase(TestCase):
    def setUp(self):
        category = Category.objects.create(name='Tasks')
        self.product = Product.objects.create(
            sku='TASK-1', name='Task Product', category=category, price=Decimal('1.00'), minimum_stock=5
        )

    def test_low_stock_notice(self):
        with self.assertLogs('notifications.tasks', level='WARNING') as logs:
            result = send_stock_alert(self.product.id, LOW_STOCK, 2, 5)

        self.assertEqual(result['status'], 'success')
        self.assertEqual(result['alert'], LOW_STOCK)
        self.assertIn('LOW STOCK', logs.output[0])
        self.assertIn('Shortage: 3', logs.output[0])

    def test_out_of_stock_notice(self):
        with self.assertLogs('notifications.tasks', level='WARNING') as logs:
            send_stock_alert(self.product.id, OUT_OF_STOCK, 0, 5)

        self.assertIn('OUT OF STOCK', logs.output[0])

    def test_missing_product(self):
        result = send_stock_alert(99999, LOW_STOCK, 0, 5)
        self.assertEqual(result['status'], 'error')


class EventStreamAPITestCase(SimpleTestCase):
    """The stream endpoint never touches the database."""
    client_class = APIClient

    def setUp(self):
        hub.clear()

    def tearDown(self):
        hub.clear()

    def test_stream_joins_requested_groups(self):
        """
        Given: A client subscribing to product:1 with role admin
        When: An event is published to product:1
        Then: The stream yields it as an SSE frame and the client left
              every group once the response is closed
        """
        response = self.client.get('/api/notifications/stream/', {'groups': 'product:1', 'role': 'admin'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response['Content-Type'], 'text/event-stream')
        self.assertEqual(hub.groups(), {ALL: 1, 'product:1': 1, 'role:admin': 1})

        chunks = iter(response.streaming_content)
        self.assertTrue(next(chunks).startswith(b': subscribed to all,product:1,role:admin'))

        hub.publish('stock_updated', {'product_id': 1}, [product_group(1)])
        frame = next(chunks).decode()
        self.assertTrue(frame.startswith('event: stock_updated\n'))

        response.close()
        self.assertEqual(hub.groups(), {})

    def test_stream_accepts_event_stream_clients(self):
        response = self.client.get('/api/notifications/stream/', HTTP_ACCEPT='text/event-stream')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        response.close()

    def test_invalid_group_rejected(self):
        response = self.client.get('/api/notifications/stream/', {'groups': 'product:abc'})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.json()['error'], 'VALIDATION_ERROR')
        self.assertEqual(hub.groups(), {})

    def test_groups_endpoint(self):
        subscriber = QueueSubscriber()
        hub.join(subscriber, DASHBOARD)

        response = self.client.get('/api/notifications/groups/')

        self.assertEqual(response.data['data'], {DASHBOARD: 1})
