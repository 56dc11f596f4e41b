"""
Loads a record's nested line items: bought items (0..n) and the vehicle
update (first of 0..n). Each sub-fetch fails independently to an empty
result.
"""
import logging

from canemap_backend.config.environment import (
    BOUGHT_ITEMS_COLLECTION,
    PARENT_RECORD_KEY,
    VEHICLE_UPDATES_COLLECTION,
)
from canemap_backend.utils.parallel_query_helper import fetch_collections_parallel, map_parallel

logger = logging.getLogger(__name__)


class SubcollectionLoader:

    def __init__(self, store):
        self.store = store

    def load(self, record_id):
        """
        Returns:
            Tuple of (bought_items, vehicle_update) where vehicle_update may be None
        """
        query = {PARENT_RECORD_KEY: record_id}
        results = fetch_collections_parallel(
            {
                'bought_items': lambda: self.store.get_many(BOUGHT_ITEMS_COLLECTION, query),
                'vehicle_updates': lambda: self.store.get_many(VEHICLE_UPDATES_COLLECTION, query),
            },
            max_workers=2,
            defaults={'bought_items': [], 'vehicle_updates': []},
        )

        bought_items = list(results.get('bought_items') or [])
        vehicle_updates = list(results.get('vehicle_updates') or [])

        if len(vehicle_updates) > 1:
            # First one wins; multi-trip aggregation is not modelled
            logger.warning(
                f"Record {record_id} has {len(vehicle_updates)} vehicle updates, using the first"
            )

        return bought_items, (vehicle_updates[0] if vehicle_updates else None)

    def load_many(self, record_ids):
        """
        Load children for many records concurrently.

        Returns:
            Dict of {record_id: (bought_items, vehicle_update)}
        """
        record_ids = list(record_ids)
        loaded = map_parallel(self.load, record_ids)
        return dict(zip(record_ids, loaded))
