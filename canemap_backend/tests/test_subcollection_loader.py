import unittest

from canemap_backend.tests.fakes import InMemoryDocumentStore
from canemap_backend.utils.errors import Unavailable
from canemap_backend.utils.subcollection_loader import SubcollectionLoader


class TestSubcollectionLoader(unittest.TestCase):

    def setUp(self):
        self.store = InMemoryDocumentStore()
        self.store.seed('bought_items', 'b1', {'recordId': 'r1', 'itemName': 'Urea', 'totalCost': 30})
        self.store.seed('bought_items', 'b2', {'recordId': 'r1', 'itemName': 'Potash', 'totalCost': 20})
        self.store.seed('vehicle_updates', 'v1', {'recordId': 'r1', 'fuelCost': 100})
        self.store.seed('vehicle_updates', 'v2', {'recordId': 'r1', 'fuelCost': 999})
        self.store.seed('bought_items', 'b3', {'recordId': 'r2', 'itemName': 'Seeds', 'totalCost': 5})
        self.loader = SubcollectionLoader(self.store)

    def test_load_children(self):
        bought_items, vehicle_update = self.loader.load('r1')
        self.assertEqual(sorted(item['id'] for item in bought_items), ['b1', 'b2'])
        # First vehicle update wins
        self.assertEqual(vehicle_update['id'], 'v1')

    def test_missing_children(self):
        self.assertEqual(self.loader.load('r3'), ([], None))

    def test_each_fetch_fails_independently(self):
        self.store.fail('get_many', 'vehicle_updates', Unavailable("store down"))
        bought_items, vehicle_update = self.loader.load('r1')
        self.assertEqual(len(bought_items), 2)
        self.assertIsNone(vehicle_update)

    def test_load_many(self):
        children = self.loader.load_many(['r1', 'r2', 'r3'])
        self.assertEqual(set(children), {'r1', 'r2', 'r3'})
        self.assertEqual(children['r2'][0][0]['itemName'], 'Seeds')
        self.assertIsNone(children['r2'][1])
        self.assertEqual(children['r3'], ([], None))


if __name__ == '__main__':
    unittest.main()
