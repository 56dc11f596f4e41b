"""
Document store used by the records engine.

Collections hold plain dict documents keyed by a string ``id``. Push updates
are delivered through subscriptions: every change to the watched collection
re-runs the subscribed query and hands the full snapshot to the callback.

MongoDocumentStore is the production implementation; push delivery comes
from MongoDB change streams consumed on a daemon thread.
"""
import logging
import threading

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import (
    AutoReconnect,
    ConnectionFailure,
    NetworkTimeout,
    OperationFailure,
    PyMongoError,
    ServerSelectionTimeoutError,
)

from canemap_backend.config.environment import CHANGE_STREAM_MAX_AWAIT_MS
from canemap_backend.utils.errors import (
    FailedPrecondition,
    NotFound,
    OperationCancelled,
    PermissionDenied,
    RecordsError,
    Unavailable,
)

logger = logging.getLogger(__name__)

# Server error codes that mean "this query shape is not servable as written"
_PRECONDITION_CODES = {2, 96, 291, 292}
_AUTH_CODES = {13, 18}


class CancellationToken:
    """Shared cancel flag threaded through every step derived from a subscription"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self):
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise OperationCancelled("Subscription was cancelled")


class SubscriptionHandle:
    """Returned by subscribe(); cancel() stops all future snapshot delivery"""

    def __init__(self, token, on_cancel=None):
        self.token = token
        self._on_cancel = on_cancel

    @property
    def active(self):
        return not self.token.cancelled

    def cancel(self):
        if self.token.cancelled:
            return
        self.token.cancel()
        if self._on_cancel:
            self._on_cancel()


def translate_error(exc, **context):
    """Map a PyMongo exception onto the records error taxonomy"""
    if isinstance(exc, RecordsError):
        return exc

    if isinstance(exc, (ServerSelectionTimeoutError, NetworkTimeout, AutoReconnect, ConnectionFailure)):
        return Unavailable(f"Document store unavailable: {exc}", **context)

    if isinstance(exc, OperationFailure):
        message = str(exc)
        if exc.code in _AUTH_CODES:
            return PermissionDenied(
                f"Document store refused the operation: {message}",
                reason=PermissionDenied.INSUFFICIENT_RIGHTS,
                **context,
            )
        if exc.code in _PRECONDITION_CODES or 'index' in message.lower():
            return FailedPrecondition(f"Query rejected by document store: {message}", **context)

    if isinstance(exc, PyMongoError):
        return Unavailable(f"Document store error: {exc}", **context)

    return exc


def normalize_doc(doc):
    """Return a copy with ``_id`` exposed as a string ``id``"""
    if doc is None:
        return None
    doc = dict(doc)
    if '_id' in doc:
        doc['id'] = str(doc.pop('_id'))
    return doc


def _as_key(doc_id):
    if isinstance(doc_id, ObjectId):
        return doc_id
    if isinstance(doc_id, str) and ObjectId.is_valid(doc_id):
        return ObjectId(doc_id)
    return doc_id


def _sort_spec(order_by):
    return [(key, DESCENDING if direction < 0 else ASCENDING) for key, direction in order_by]


def change_pipeline(filter):
    """
    Change stream stages that only pass events for documents matching ``filter``.

    Deletes carry no full document, so every delete still triggers a re-query.
    """
    if not filter:
        return []
    matches = {f"fullDocument.{key}": value for key, value in filter.items()}
    return [{'$match': {'$or': [matches, {'operationType': 'delete'}]}}]


class MongoDocumentStore:
    """Document store backed by a PyMongo database"""

    def __init__(self, mongo_db, max_await_time_ms=CHANGE_STREAM_MAX_AWAIT_MS):
        self.db = mongo_db
        self.max_await_time_ms = max_await_time_ms

    # ==================== READS ====================

    def get_one(self, collection, doc_id):
        try:
            doc = self.db[collection].find_one({'_id': _as_key(doc_id)})
        except PyMongoError as e:
            raise translate_error(e, collection=collection, id=doc_id)
        return normalize_doc(doc)

    def get_many(self, collection, filter=None, order_by=None):
        try:
            cursor = self.db[collection].find(dict(filter or {}))
            if order_by:
                cursor = cursor.sort(_sort_spec(order_by))
            return [normalize_doc(doc) for doc in cursor]
        except PyMongoError as e:
            raise translate_error(e, collection=collection)

    # ==================== WRITES ====================

    def put(self, collection, fields, doc_id=None):
        document = dict(fields)
        document.pop('id', None)
        try:
            if doc_id is None:
                result = self.db[collection].insert_one(document)
                return str(result.inserted_id)
            key = _as_key(doc_id)
            self.db[collection].replace_one({'_id': key}, document, upsert=True)
            return str(key)
        except PyMongoError as e:
            raise translate_error(e, collection=collection, id=doc_id)

    def update(self, collection, doc_id, fields):
        try:
            result = self.db[collection].update_one({'_id': _as_key(doc_id)}, {'$set': dict(fields)})
        except PyMongoError as e:
            raise translate_error(e, collection=collection, id=doc_id)
        if result.matched_count == 0:
            raise NotFound(f"{collection}/{doc_id} does not exist", collection=collection, id=doc_id)

    def delete(self, collection, doc_id):
        try:
            result = self.db[collection].delete_one({'_id': _as_key(doc_id)})
        except PyMongoError as e:
            raise translate_error(e, collection=collection, id=doc_id)
        if result.deleted_count == 0:
            raise NotFound(f"{collection}/{doc_id} does not exist", collection=collection, id=doc_id)

    # ==================== PUSH SUBSCRIPTIONS ====================

    def subscribe(self, collection, filter, on_snapshot, on_error=None, order_by=None):
        """
        Deliver the query result now and again after every change to ``collection``.

        The initial query runs synchronously so a rejected ``order_by`` surfaces
        as FailedPrecondition from this call. Later failures go to ``on_error``.

        Args:
            collection: Collection name
            filter: Equality filter dict
            on_snapshot: callable(docs, token)
            on_error: callable(RecordsError)
            order_by: Optional list of (key, direction) with direction 1 or -1

        Returns:
            SubscriptionHandle
        """
        token = CancellationToken()
        docs = self.get_many(collection, filter, order_by)
        handle = SubscriptionHandle(token)

        on_snapshot(docs, token)

        watcher = threading.Thread(
            target=self._watch,
            args=(collection, filter, order_by, on_snapshot, on_error, token),
            name=f"watch-{collection}",
            daemon=True,
        )
        watcher.start()
        return handle

    def _watch(self, collection, filter, order_by, on_snapshot, on_error, token):
        try:
            with self.db[collection].watch(
                pipeline=change_pipeline(filter),
                full_document='updateLookup',
                max_await_time_ms=self.max_await_time_ms,
            ) as stream:
                while stream.alive and not token.cancelled:
                    change = stream.try_next()
                    if change is None:
                        continue
                    if token.cancelled:
                        break
                    docs = self.get_many(collection, filter, order_by)
                    if not token.cancelled:
                        on_snapshot(docs, token)
        except OperationCancelled:
            pass
        except (RecordsError, PyMongoError) as e:
            if token.cancelled:
                return
            error = translate_error(e, collection=collection)
            logger.error(f"Subscription on '{collection}' failed: {error}")
            if on_error:
                on_error(error)
