"""
Resolves field identifiers to display names.

The cache is injected (any mutable mapping) and lives as long as the
RecordStore session that owns it. It is never evicted: the key space is
bounded by the user's own fields.
"""
import logging

from canemap_backend.config.environment import FIELDS_COLLECTION
from canemap_backend.utils.parallel_query_helper import fetch_collections_parallel

logger = logging.getLogger(__name__)

UNKNOWN_FIELD = 'Unknown Field'

# Field documents written by different app versions use different name keys
FIELD_NAME_KEYS = ('field_name', 'fieldName', 'name')


def field_display_name(field_doc):
    """Return the display name of a field document, or None"""
    if not field_doc:
        return None
    for key in FIELD_NAME_KEYS:
        value = field_doc.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


class FieldNameResolver:
    """resolve(field_id) -> name, never raises"""

    def __init__(self, store, cache=None):
        self.store = store
        self.cache = cache if cache is not None else {}

    def resolve(self, field_id):
        if not field_id:
            return UNKNOWN_FIELD

        cached = self.cache.get(field_id)
        if cached is not None:
            return cached

        try:
            name = field_display_name(self.store.get_one(FIELDS_COLLECTION, field_id))
        except Exception as e:
            logger.debug(f"Error fetching field {field_id}: {e}")
            return UNKNOWN_FIELD

        if name is None:
            return UNKNOWN_FIELD

        # Only real names are cached so a later-named field is picked up on the next miss
        self.cache[field_id] = name
        return name

    def prime(self, field_id, field_doc):
        """Seed the cache from a field document fetched elsewhere"""
        name = field_display_name(field_doc)
        if field_id and name:
            self.cache[field_id] = name

    def resolve_many(self, field_ids):
        """
        Resolve a batch of identifiers, fetching all cache misses in parallel.

        Returns:
            Dict of {field_id: name}
        """
        unique_ids = {fid for fid in field_ids if fid}
        misses = {fid for fid in unique_ids if fid not in self.cache}

        fetched = {}
        if misses:
            fetched = fetch_collections_parallel(
                {fid: (lambda fid=fid: self.resolve(fid)) for fid in misses},
                defaults={fid: UNKNOWN_FIELD for fid in misses},
            )

        return {
            fid: self.cache.get(fid) or fetched.get(fid, UNKNOWN_FIELD)
            for fid in unique_ids
        }
