"""
In-memory stand-ins for the document store, artifact store and notifier.

InMemoryDocumentStore delivers push snapshots synchronously after every
write, which keeps subscription tests deterministic.
"""
from datetime import datetime
import copy
import itertools
import threading

from canemap_backend.services.document_store import CancellationToken, SubscriptionHandle
from canemap_backend.utils.errors import FailedPrecondition, NotFound, RecordsError, UploadFailure


def _order_key(value):
    if value is None:
        return (0, datetime.min)
    return (1, value)


class InMemoryDocumentStore:

    def __init__(self, reject_ordered=()):
        self.collections = {}
        self.reject_ordered = set(reject_ordered)
        self.calls = []
        self.hooks = {}

        self._failures = {}
        self._subscribers = []
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    # ==================== TEST CONTROLS ====================

    def seed(self, collection, doc_id, fields):
        self.collections.setdefault(collection, {})[doc_id] = copy.deepcopy(dict(fields))
        return doc_id

    def fail(self, method, collection, error, times=1):
        """Raise ``error`` on the next ``times`` calls (None means every call)"""
        self._failures.setdefault((method, collection), []).append([error, times])

    def on(self, method, collection, hook):
        """Run ``hook()`` at the start of every matching call"""
        self.hooks[(method, collection)] = hook

    def _enter(self, method, collection):
        self.calls.append((method, collection))
        hook = self.hooks.get((method, collection))
        if hook:
            hook()

        with self._lock:
            queue = self._failures.get((method, collection))
            if not queue:
                return
            entry = queue[0]
            error, times = entry
            if times is not None:
                entry[1] -= 1
                if entry[1] <= 0:
                    queue.pop(0)
        raise error

    def _doc(self, collection, doc_id):
        doc = self.collections.get(collection, {}).get(doc_id)
        if doc is None:
            return None
        result = copy.deepcopy(doc)
        result['id'] = doc_id
        return result

    # ==================== STORE API ====================

    def get_one(self, collection, doc_id):
        self._enter('get_one', collection)
        with self._lock:
            return self._doc(collection, doc_id)

    def get_many(self, collection, filter=None, order_by=None):
        self._enter('get_many', collection)
        if order_by and collection in self.reject_ordered:
            raise FailedPrecondition(f"The query on '{collection}' requires an index")

        with self._lock:
            docs = [self._doc(collection, doc_id) for doc_id in self.collections.get(collection, {})]

        docs = [doc for doc in docs
                if all(doc.get(key) == value for key, value in (filter or {}).items())]
        for key, direction in reversed(order_by or []):
            docs.sort(key=lambda doc: _order_key(doc.get(key)), reverse=direction < 0)
        return docs

    def put(self, collection, fields, doc_id=None):
        self._enter('put', collection)
        with self._lock:
            doc_id = doc_id or f"{collection}-{next(self._ids)}"
            document = copy.deepcopy(dict(fields))
            document.pop('id', None)
            self.collections.setdefault(collection, {})[doc_id] = document
        self._publish(collection)
        return doc_id

    def update(self, collection, doc_id, fields):
        self._enter('update', collection)
        with self._lock:
            document = self.collections.get(collection, {}).get(doc_id)
            if document is None:
                raise NotFound(f"{collection}/{doc_id} does not exist", collection=collection, id=doc_id)
            document.update(copy.deepcopy(dict(fields)))
        self._publish(collection)

    def delete(self, collection, doc_id):
        self._enter('delete', collection)
        with self._lock:
            if self.collections.get(collection, {}).pop(doc_id, None) is None:
                raise NotFound(f"{collection}/{doc_id} does not exist", collection=collection, id=doc_id)
        self._publish(collection)

    def subscribe(self, collection, filter, on_snapshot, on_error=None, order_by=None):
        self._enter('subscribe', collection)
        token = CancellationToken()
        docs = self.get_many(collection, filter, order_by)

        subscriber = (collection, filter, order_by, on_snapshot, on_error, token)
        with self._lock:
            self._subscribers.append(subscriber)

        def remove():
            with self._lock:
                if subscriber in self._subscribers:
                    self._subscribers.remove(subscriber)

        handle = SubscriptionHandle(token, on_cancel=remove)
        on_snapshot(docs, token)
        return handle

    @property
    def subscriber_count(self):
        with self._lock:
            return len(self._subscribers)

    def _publish(self, collection):
        with self._lock:
            subscribers = [s for s in self._subscribers if s[0] == collection]

        for _collection, filter, order_by, on_snapshot, on_error, token in subscribers:
            if token.cancelled:
                continue
            try:
                docs = self.get_many(collection, filter, order_by)
            except RecordsError as e:
                if on_error:
                    on_error(e)
                continue
            on_snapshot(docs, token)


class RecordingArtifactStore:

    def __init__(self, error=None):
        self.uploads = []
        self.error = error

    def upload(self, path, data, content_type='application/pdf'):
        if self.error is not None:
            raise self.error
        self.uploads.append({'path': path, 'data': data, 'content_type': content_type})
        return f"gs://test-bucket/{path}"


class RecordingNotifier:

    def __init__(self, error=None):
        self.events = []
        self.error = error

    def publish(self, event):
        if self.error is not None:
            raise self.error
        self.events.append(event)
        return f"notification-{len(self.events)}"


class RecordingFirebaseService:

    def __init__(self, succeed=True):
        self.sent = []
        self.succeed = succeed

    def send_role_notification(self, role, title, body, data=None):
        self.sent.append(('role', role, title, body, data))
        return self.succeed

    def send_user_notification(self, user_id, title, body, data=None):
        self.sent.append(('user', user_id, title, body, data))
        return self.succeed


class FailingPDFGenerator:

    def generate_field_report(self, document):
        raise RuntimeError("renderer crashed")


def upload_failure():
    return UploadFailure("Failed to store the report file", cause="bucket unreachable")
