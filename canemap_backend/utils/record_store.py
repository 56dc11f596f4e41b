"""
RecordStore - live, locally cached view of one user's records.

Lifecycle:
    uninitialized -> subscribing -> live <-> reloading -> unsubscribed

Every push snapshot is re-derived in full: field names are resolved and
children loaded for all records concurrently, the result is sorted newest
first and swapped in as one immutable tuple. Readers never see a partial
list. Derivations may finish out of order; the last one to finish wins.

If the ordered subscription is rejected (missing index), the store
re-subscribes once without ordering and sorts client-side.
"""
import logging
import threading
import time

from canemap_backend.config.environment import RECORDS_COLLECTION
from canemap_backend.utils.errors import (
    FailedPrecondition,
    OperationCancelled,
    RecordsError,
    Unavailable,
)
from canemap_backend.utils.field_name_resolver import UNKNOWN_FIELD, FieldNameResolver
from canemap_backend.utils.parallel_query_helper import fetch_collections_parallel
from canemap_backend.utils.record_dates import sort_key
from canemap_backend.utils.subcollection_loader import SubcollectionLoader

logger = logging.getLogger(__name__)

RECORDS_ORDER = [('createdAt', -1)]


class RecordStoreState:
    """Store lifecycle states"""
    UNINITIALIZED = 'uninitialized'
    SUBSCRIBING = 'subscribing'
    LIVE = 'live'
    RELOADING = 'reloading'
    UNSUBSCRIBED = 'unsubscribed'
    FAILED = 'failed'


def derive_records(docs, resolver, loader, token=None):
    """
    Attach field names and children to raw record documents, newest first.

    Field names and children are fetched concurrently across all records.
    """
    docs = [doc for doc in docs if doc and doc.get('id')]
    if token:
        token.raise_if_cancelled()

    fetched = fetch_collections_parallel(
        {
            'names': lambda: resolver.resolve_many(doc.get('fieldId') for doc in docs),
            'children': lambda: loader.load_many(doc['id'] for doc in docs),
        },
        max_workers=2,
        defaults={'names': {}, 'children': {}},
    )
    if token:
        token.raise_if_cancelled()

    names = fetched['names']
    children = fetched['children']

    records = []
    for doc in docs:
        bought_items, vehicle_update = children.get(doc['id'], ([], None))
        record = dict(doc)
        record['fieldName'] = names.get(doc.get('fieldId'), UNKNOWN_FIELD)
        record['boughtItems'] = bought_items
        record['vehicleUpdate'] = vehicle_update
        records.append(record)

    records.sort(key=sort_key, reverse=True)
    return records


class RecordStore:

    def __init__(self, store, resolver=None, loader=None, field_name_cache=None):
        self.store = store
        self.resolver = resolver or FieldNameResolver(store, cache=field_name_cache)
        self.loader = loader or SubcollectionLoader(store)

        self._lock = threading.Lock()
        self._records = ()
        self._handle = None
        self._fallback_used = False

        self.state = RecordStoreState.UNINITIALIZED
        self.user_id = None
        self.degraded = False
        self.last_error = None
        self.generation = 0

    # ==================== LIFECYCLE ====================

    def initialize(self, user_id):
        """
        Open the push subscription for ``user_id``.

        Raises:
            Unavailable: if the store is unreachable, or the unordered
                fallback subscription also fails
        """
        if self._handle is not None:
            self.unsubscribe()

        with self._lock:
            self.user_id = user_id
            self._records = ()
            self._fallback_used = False
            self.degraded = False
            self.last_error = None
            self.state = RecordStoreState.SUBSCRIBING

        try:
            handle = self.store.subscribe(
                RECORDS_COLLECTION,
                self._filter(),
                self._on_snapshot,
                self._on_error,
                order_by=RECORDS_ORDER,
            )
        except FailedPrecondition as e:
            handle = self._subscribe_unordered(e)
        except RecordsError as e:
            self._fail(e)
            raise

        self._install(handle)
        return handle

    def unsubscribe(self):
        """Stop future cache replacement; in-flight derivations are discarded"""
        with self._lock:
            handle = self._handle
            self._handle = None
            self._records = ()
            self.state = RecordStoreState.UNSUBSCRIBED
        if handle is not None:
            handle.cancel()

    # ==================== READS ====================

    def current_list(self):
        """The latest derived records, newest first. Never blocks on I/O."""
        return self._records

    def find(self, record_id):
        for record in self._records:
            if record.get('id') == record_id:
                return record
        return None

    def contains(self, record_id):
        return self.find(record_id) is not None

    @property
    def is_live(self):
        return self.state in (RecordStoreState.LIVE, RecordStoreState.RELOADING)

    # ==================== SUBSCRIPTION PLUMBING ====================

    def _filter(self):
        return {'userId': self.user_id}

    def _install(self, handle):
        with self._lock:
            torn_down = self.state == RecordStoreState.UNSUBSCRIBED
            previous = None
            if not torn_down:
                previous, self._handle = self._handle, handle

        if torn_down:
            handle.cancel()
        elif previous is not None and previous is not handle:
            previous.cancel()

    def _subscribe_unordered(self, cause):
        with self._lock:
            if self._fallback_used:
                error = Unavailable("Records subscription failed after unordered fallback",
                                    user_id=self.user_id)
                self.state = RecordStoreState.FAILED
                self.last_error = error
                raise error
            self._fallback_used = True
            self.degraded = True

        logger.warning(f"Ordered records subscription rejected ({cause.message}), "
                       f"retrying without ordering")
        try:
            return self.store.subscribe(
                RECORDS_COLLECTION,
                self._filter(),
                self._on_snapshot,
                self._on_error,
                order_by=None,
            )
        except RecordsError as e:
            logger.error(f"Fallback records subscription also failed: {e.message}")
            error = Unavailable("Records subscription failed after unordered fallback",
                                user_id=self.user_id, cause=e.message)
            self._fail(error)
            raise error from e

    def _fail(self, error):
        with self._lock:
            self.state = RecordStoreState.FAILED
            self.last_error = error

    def _on_snapshot(self, docs, token):
        if token.cancelled:
            return

        with self._lock:
            if self.state == RecordStoreState.LIVE:
                self.state = RecordStoreState.RELOADING

        start = time.perf_counter()
        try:
            records = derive_records(docs, self.resolver, self.loader, token)
        except OperationCancelled:
            return
        except Exception as e:
            logger.error(f"Failed to derive records for user {self.user_id}: {e}")
            with self._lock:
                self.last_error = e
                if self.state == RecordStoreState.RELOADING:
                    self.state = RecordStoreState.LIVE
            return

        with self._lock:
            if token.cancelled or self.state == RecordStoreState.UNSUBSCRIBED:
                return
            self._records = tuple(records)
            self.generation += 1
            self.state = RecordStoreState.LIVE

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(f"Loaded {len(records)} records{' (fallback)' if self.degraded else ''} "
                    f"in {elapsed_ms:.2f}ms")

    def _on_error(self, error):
        if isinstance(error, FailedPrecondition):
            with self._lock:
                if self.state == RecordStoreState.UNSUBSCRIBED:
                    return
            try:
                handle = self._subscribe_unordered(error)
            except Unavailable:
                return
            self._install(handle)
            return

        logger.error(f"Records subscription error for user {self.user_id}: {error}")
        self._fail(error)
