import unittest
from unittest.mock import MagicMock

from bson import ObjectId
from pymongo.errors import AutoReconnect, OperationFailure, PyMongoError, ServerSelectionTimeoutError

from canemap_backend.services.document_store import (
    CancellationToken,
    MongoDocumentStore,
    SubscriptionHandle,
    change_pipeline,
    normalize_doc,
    translate_error,
)
from canemap_backend.utils.errors import (
    FailedPrecondition,
    NotFound,
    OperationCancelled,
    PermissionDenied,
    Unavailable,
)


class TestTranslateError(unittest.TestCase):

    def test_connection_errors_are_unavailable(self):
        self.assertIsInstance(translate_error(ServerSelectionTimeoutError("no servers")), Unavailable)
        self.assertIsInstance(translate_error(AutoReconnect("reconnecting")), Unavailable)

    def test_auth_failures(self):
        error = translate_error(OperationFailure("not authorized", code=13), collection='records')
        self.assertIsInstance(error, PermissionDenied)
        self.assertEqual(error.reason, PermissionDenied.INSUFFICIENT_RIGHTS)
        self.assertEqual(error.context['collection'], 'records')

    def test_rejected_query_shapes(self):
        self.assertIsInstance(translate_error(OperationFailure("bad sort", code=2)), FailedPrecondition)
        self.assertIsInstance(
            translate_error(OperationFailure("Sort exceeded memory limit, add an index", code=292)),
            FailedPrecondition,
        )

    def test_other_errors(self):
        self.assertIsInstance(translate_error(PyMongoError("boom")), Unavailable)
        original = NotFound("gone")
        self.assertIs(translate_error(original), original)


class TestSubscriptionPrimitives(unittest.TestCase):

    def test_normalize_doc(self):
        oid = ObjectId()
        doc = {'_id': oid, 'name': 'North Block'}
        normalized = normalize_doc(doc)
        self.assertEqual(normalized, {'id': str(oid), 'name': 'North Block'})
        self.assertIn('_id', doc)
        self.assertIsNone(normalize_doc(None))

    def test_cancel_is_idempotent(self):
        cancelled = []
        token = CancellationToken()
        handle = SubscriptionHandle(token, on_cancel=lambda: cancelled.append(True))

        self.assertTrue(handle.active)
        handle.cancel()
        handle.cancel()

        self.assertFalse(handle.active)
        self.assertEqual(cancelled, [True])
        with self.assertRaises(OperationCancelled):
            token.raise_if_cancelled()


class TestChangeStreamScope(unittest.TestCase):

    def test_pipeline_matches_owner_and_deletes(self):
        pipeline = change_pipeline({'userId': 'u1'})
        self.assertEqual(pipeline, [{'$match': {'$or': [
            {'fullDocument.userId': 'u1'},
            {'operationType': 'delete'},
        ]}}])
        self.assertEqual(change_pipeline({}), [])

    def test_watch_is_scoped_to_the_subscription_filter(self):
        db = MagicMock()
        stream = db.__getitem__.return_value.watch.return_value.__enter__.return_value
        stream.alive = False
        store = MongoDocumentStore(db, max_await_time_ms=50)

        store._watch('records', {'userId': 'u1'}, None, MagicMock(), None, CancellationToken())

        db.__getitem__.assert_called_with('records')
        db.__getitem__.return_value.watch.assert_called_once_with(
            pipeline=change_pipeline({'userId': 'u1'}),
            full_document='updateLookup',
            max_await_time_ms=50,
        )


if __name__ == '__main__':
    unittest.main()
