"""
DeletionCoordinator - removes a record and its children while push updates
keep arriving for the same collection.

Per record id:  idle -> deleting -> done | failed

Only one delete per record id may be in flight; duplicates are rejected
immediately. Ownership and existence are always re-read from the store,
never taken from the cache. "Not found" is reconciled against the cache:
if the cache agrees the record is gone, the delete already happened.
"""
import logging

from canemap_backend.config.environment import (
    BOUGHT_ITEMS_COLLECTION,
    PARENT_RECORD_KEY,
    RECORDS_COLLECTION,
    VEHICLE_UPDATES_COLLECTION,
)
from canemap_backend.utils.errors import (
    DeletionNotConfirmed,
    NotFound,
    PartialFailure,
    PermissionDenied,
    RecordsError,
)
from canemap_backend.utils.parallel_query_helper import map_parallel
from canemap_backend.utils.single_flight import SingleFlightGuard

logger = logging.getLogger(__name__)

DELETE_OPERATION = 'delete_record'

# Owner key written by different client versions
OWNER_KEYS = ('userId', 'user_id', 'user_uid')

CHILD_COLLECTIONS = (BOUGHT_ITEMS_COLLECTION, VEHICLE_UPDATES_COLLECTION)


class DeletionStatus:
    IDLE = 'idle'
    DELETING = 'deleting'
    DONE = 'done'
    FAILED = 'failed'


def record_owner(record):
    for key in OWNER_KEYS:
        value = record.get(key)
        if value:
            return str(value)
    return None


class DeletionCoordinator:

    def __init__(self, store, record_store, guard=None, verify_after_delete=True):
        self.store = store
        self.record_store = record_store
        self.guard = guard or SingleFlightGuard()
        self.verify_after_delete = verify_after_delete
        self._outcomes = {}

    def status(self, record_id):
        if self.guard.is_in_flight(DELETE_OPERATION, record_id):
            return DeletionStatus.DELETING
        return self._outcomes.get(record_id, DeletionStatus.IDLE)

    def delete(self, record_id, caller_id):
        """
        Delete ``record_id`` on behalf of ``caller_id``.

        Returns:
            dict describing the outcome ('deleted' or 'already_deleted')

        Raises:
            AlreadyInFlight: another delete for this id is running
            NotFound: the store has no such record but the cache still does
            PermissionDenied: wrong owner, or the store refused the delete
            DeletionNotConfirmed: the record was still there after deletion
            Unavailable / FailedPrecondition: store failures
        """
        with self.guard.hold(DELETE_OPERATION, record_id):
            try:
                result = self._delete(record_id, str(caller_id))
            except RecordsError:
                self._outcomes[record_id] = DeletionStatus.FAILED
                raise
            self._outcomes[record_id] = DeletionStatus.DONE
            return result

    # ==================== PROTOCOL ====================

    def _already_deleted(self, record_id):
        logger.info(f"Record {record_id} was already deleted")
        return {'recordId': record_id, 'status': 'already_deleted'}

    def _delete(self, record_id, caller_id):
        try:
            current = self.store.get_one(RECORDS_COLLECTION, record_id)
        except NotFound:
            if not self.record_store.contains(record_id):
                return self._already_deleted(record_id)
            raise

        if current is None:
            if not self.record_store.contains(record_id):
                return self._already_deleted(record_id)
            raise NotFound("Record not found. It may have already been deleted.",
                           record_id=record_id)

        owner = record_owner(current)
        if owner != caller_id:
            logger.error(f"Permission denied deleting {record_id}: owner {owner}, caller {caller_id}")
            raise PermissionDenied(
                "This record belongs to a different user. You can only delete your own records.",
                reason=PermissionDenied.WRONG_OWNER,
                record_id=record_id,
            )

        child_report = self._delete_children(record_id)

        try:
            self.store.delete(RECORDS_COLLECTION, record_id)
        except NotFound:
            if not self.record_store.contains(record_id):
                return self._already_deleted(record_id)
            raise
        except RecordsError as e:
            if self._gone_everywhere(record_id):
                logger.info(f"Record {record_id} was deleted despite error: {e.message}")
                return self._already_deleted(record_id)
            raise

        if self.verify_after_delete:
            self._verify_deleted(record_id)

        logger.info(f"Record deleted successfully: {record_id} - "
                    f"{child_report['boughtItemsDeleted']} bought items, "
                    f"{child_report['vehicleUpdatesDeleted']} vehicle updates")

        result = {'recordId': record_id, 'status': 'deleted'}
        result.update(child_report)
        return result

    def _gone_everywhere(self, record_id):
        try:
            still_there = self.store.get_one(RECORDS_COLLECTION, record_id) is not None
        except RecordsError:
            return False
        return not still_there and not self.record_store.contains(record_id)

    def _verify_deleted(self, record_id):
        try:
            survivor = self.store.get_one(RECORDS_COLLECTION, record_id)
        except RecordsError as e:
            logger.debug(f"Could not verify deletion of {record_id}: {e.message}")
            return
        if survivor is not None:
            logger.warning(f"Record still exists after deletion attempt: {record_id}")
            raise DeletionNotConfirmed(
                "Record deletion may have failed. Please refresh and try again.",
                record_id=record_id,
            )

    def _delete_children(self, record_id):
        """
        Delete every child document individually. Failures are collected,
        logged as a PartialFailure and never abort the parent delete.
        """
        counts = {}
        failures = []

        for collection in CHILD_COLLECTIONS:
            try:
                children = self.store.get_many(collection, {PARENT_RECORD_KEY: record_id})
            except RecordsError as e:
                logger.debug(f"Could not access {collection} for {record_id}: {e.message}")
                counts[collection] = 0
                continue

            outcomes = map_parallel(lambda child, c=collection: self._delete_child(c, child), children)
            counts[collection] = sum(1 for error in outcomes if error is None)
            failures.extend(error for error in outcomes if error is not None)

        partial = None
        if failures:
            partial = PartialFailure(
                f"{len(failures)} child item(s) failed to delete but the record was processed",
                failures=failures,
                record_id=record_id,
            )
            logger.warning(f"{partial.message}: {failures}")

        return {
            'boughtItemsDeleted': counts.get(BOUGHT_ITEMS_COLLECTION, 0),
            'vehicleUpdatesDeleted': counts.get(VEHICLE_UPDATES_COLLECTION, 0),
            'childFailures': partial.failures if partial else [],
        }

    def _delete_child(self, collection, child):
        try:
            self.store.delete(collection, child['id'])
        except NotFound:
            return None
        except RecordsError as e:
            return {'collection': collection, 'id': child.get('id'), 'error': e.message}
        return None
