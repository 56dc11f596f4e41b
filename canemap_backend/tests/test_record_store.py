"""
Unit Tests for the live record cache
Covers initial load, push updates, the unordered fallback and teardown
"""

import threading
import unittest
from datetime import datetime

from canemap_backend.tests.fakes import InMemoryDocumentStore
from canemap_backend.utils.errors import FailedPrecondition, Unavailable
from canemap_backend.utils.field_name_resolver import UNKNOWN_FIELD
from canemap_backend.utils.record_store import RecordStore, RecordStoreState


def seed_records(store):
    store.seed('fields', 'f1', {'field_name': 'North Block', 'userId': 'u1'})
    store.seed('records', 'r1', {'userId': 'u1', 'fieldId': 'f1', 'operation': 'Planting',
                                 'recordDate': datetime(2024, 5, 1), 'createdAt': datetime(2024, 5, 1)})
    store.seed('records', 'r2', {'userId': 'u1', 'fieldId': 'f1', 'operation': 'Harvesting',
                                 'recordDate': datetime(2024, 6, 1), 'createdAt': datetime(2024, 4, 1)})
    store.seed('records', 'r3', {'userId': 'u1', 'fieldId': 'gone', 'operation': 'Weeding',
                                 'createdAt': datetime(2024, 5, 15)})
    store.seed('records', 'other', {'userId': 'u2', 'fieldId': 'f1',
                                    'createdAt': datetime(2024, 6, 2)})
    store.seed('bought_items', 'b1', {'recordId': 'r1', 'itemName': 'Urea', 'totalCost': 30})
    store.seed('vehicle_updates', 'v1', {'recordId': 'r2', 'fuelCost': 100})


class TestRecordStore(unittest.TestCase):

    def setUp(self):
        self.store = InMemoryDocumentStore()
        seed_records(self.store)
        self.record_store = RecordStore(self.store, field_name_cache={})

    def test_initial_load(self):
        self.record_store.initialize('u1')

        records = self.record_store.current_list()
        # Record date wins over creation time when ordering
        self.assertEqual([r['id'] for r in records], ['r2', 'r3', 'r1'])
        self.assertEqual(self.record_store.state, RecordStoreState.LIVE)
        self.assertFalse(self.record_store.degraded)

        by_id = {r['id']: r for r in records}
        self.assertEqual(by_id['r1']['fieldName'], 'North Block')
        self.assertEqual(by_id['r3']['fieldName'], UNKNOWN_FIELD)
        self.assertEqual(by_id['r1']['boughtItems'][0]['itemName'], 'Urea')
        self.assertIsNone(by_id['r1']['vehicleUpdate'])
        self.assertEqual(by_id['r2']['vehicleUpdate']['fuelCost'], 100)

    def test_push_update_replaces_list(self):
        self.record_store.initialize('u1')
        before = self.record_store.current_list()

        self.store.put('records', {'userId': 'u1', 'fieldId': 'f1', 'operation': 'Irrigation',
                                   'recordDate': datetime(2024, 7, 1)}, doc_id='r4')

        after = self.record_store.current_list()
        self.assertEqual([r['id'] for r in after], ['r4', 'r2', 'r3', 'r1'])
        # The previous snapshot is never mutated in place
        self.assertEqual(len(before), 3)
        self.assertIsInstance(after, tuple)
        self.assertTrue(self.record_store.contains('r4'))

    def test_ordered_subscription_rejected_falls_back(self):
        """
        Scenario: the ordered subscription is rejected for a missing index
        Expected: unordered re-subscribe, same final order, degraded flag set
        """
        store = InMemoryDocumentStore(reject_ordered={'records'})
        seed_records(store)
        record_store = RecordStore(store, field_name_cache={})

        record_store.initialize('u1')

        self.assertTrue(record_store.degraded)
        self.assertEqual(record_store.state, RecordStoreState.LIVE)
        self.assertEqual([r['id'] for r in record_store.current_list()], ['r2', 'r3', 'r1'])
        self.assertEqual(store.calls.count(('subscribe', 'records')), 2)

        store.put('records', {'userId': 'u1', 'createdAt': datetime(2024, 8, 1)}, doc_id='r5')
        self.assertEqual(record_store.current_list()[0]['id'], 'r5')

    def test_fallback_is_attempted_only_once(self):
        self.store.fail('subscribe', 'records', FailedPrecondition("index missing"))
        self.store.fail('subscribe', 'records', FailedPrecondition("index still missing"))

        with self.assertRaises(Unavailable):
            self.record_store.initialize('u1')

        self.assertEqual(self.store.calls.count(('subscribe', 'records')), 2)
        self.assertEqual(self.record_store.state, RecordStoreState.FAILED)
        self.assertEqual(self.record_store.current_list(), ())

    def test_unavailable_store_is_surfaced(self):
        self.store.fail('subscribe', 'records', Unavailable("store down"))
        with self.assertRaises(Unavailable):
            self.record_store.initialize('u1')
        self.assertEqual(self.store.calls.count(('subscribe', 'records')), 1)

    def test_unsubscribe_stops_updates(self):
        self.record_store.initialize('u1')
        self.record_store.unsubscribe()

        self.assertEqual(self.record_store.state, RecordStoreState.UNSUBSCRIBED)
        self.assertEqual(self.store.subscriber_count, 0)

        self.store.put('records', {'userId': 'u1', 'createdAt': datetime(2024, 8, 1)}, doc_id='r6')
        self.assertEqual(self.record_store.current_list(), ())

    def test_in_flight_derivation_discarded_after_unsubscribe(self):
        self.record_store.initialize('u1')
        generation = self.record_store.generation

        # Tear down while the next snapshot is still loading children
        self.store.on('get_many', 'bought_items', self.record_store.unsubscribe)
        self.store.put('records', {'userId': 'u1', 'createdAt': datetime(2024, 8, 1)}, doc_id='r7')

        self.assertEqual(self.record_store.current_list(), ())
        self.assertEqual(self.record_store.generation, generation)
        self.assertFalse(self.record_store.contains('r7'))

    def test_malformed_timestamp_does_not_abort_derivation(self):
        self.store.seed('records', 'bad', {'userId': 'u1', 'fieldId': 'f1',
                                      'createdAt': {'seconds': 'n/a'}})

        self.record_store.initialize('u1')

        # Unreadable dates count as undated and sort last
        self.assertEqual([r['id'] for r in self.record_store.current_list()], ['r2', 'r3', 'r1', 'bad'])
        self.assertIsNone(self.record_store.last_error)
        self.assertEqual(self.record_store.state, RecordStoreState.LIVE)

    def test_last_completed_derivation_wins(self):
        """
        Scenario: a push derivation stalls while a later push finishes first
        Expected: the old list is served until a swap, and the stalled
        derivation, finishing last, replaces the cache with its whole snapshot
        """
        self.record_store.initialize('u1')
        generation = self.record_store.generation
        before = self.record_store.current_list()

        entered = threading.Event()
        release = threading.Event()
        stalled = []
        lock = threading.Lock()

        def stall_first_push():
            with lock:
                first = not stalled
                stalled.append(True)
            if first:
                entered.set()
                release.wait(5)

        self.store.on('get_many', 'bought_items', stall_first_push)
        slow = threading.Thread(target=self.store.put, args=(
            'records', {'userId': 'u1', 'fieldId': 'f1', 'recordDate': datetime(2024, 7, 1)}),
            kwargs={'doc_id': 'r4'})
        slow.start()
        self.assertTrue(entered.wait(5))
        self.assertEqual(self.record_store.current_list(), before)

        self.store.put('records', {'userId': 'u1', 'fieldId': 'f1',
                                   'recordDate': datetime(2024, 8, 1)}, doc_id='r5')
        self.assertEqual([r['id'] for r in self.record_store.current_list()],
                         ['r5', 'r4', 'r2', 'r3', 'r1'])

        release.set()
        slow.join(5)
        self.assertFalse(slow.is_alive())

        after = self.record_store.current_list()
        self.assertIsInstance(after, tuple)
        self.assertEqual([r['id'] for r in after], ['r4', 'r2', 'r3', 'r1'])
        self.assertEqual(self.record_store.generation, generation + 2)
        self.assertEqual(self.record_store.state, RecordStoreState.LIVE)

    def test_reinitialize_replaces_subscription(self):
        self.record_store.initialize('u1')
        self.record_store.initialize('u2')
        self.assertEqual(self.store.subscriber_count, 1)
        self.assertEqual([r['id'] for r in self.record_store.current_list()], ['other'])


if __name__ == '__main__':
    unittest.main()
