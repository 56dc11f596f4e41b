"""
ReportAssembler - gathers one field's full operational history into a Report.

assemble(field_id):
    1. field profile (NotFound if the field does not exist)
    2. every record for the field, ordered newest first; a rejected ordered
       query falls back once to an unordered query plus a client-side sort
    3. children for all records, in parallel
    4. growth timeline: records grouped by status (earliest date, count)
    5. cost subtotals kept per source so the document can show a breakdown
"""
import logging
from datetime import datetime

from canemap_backend.config.environment import FIELDS_COLLECTION, RECORDS_COLLECTION
from canemap_backend.utils.cost_classifier import (
    BOUGHT_ITEMS,
    TASK,
    VEHICLE,
    CostBreakdown,
    CostClassifier,
)
from canemap_backend.utils.deletion_coordinator import record_owner
from canemap_backend.utils.errors import FailedPrecondition, NotFound, PermissionDenied, RecordsError, Unavailable
from canemap_backend.utils.field_name_resolver import UNKNOWN_FIELD, field_display_name
from canemap_backend.utils.record_dates import record_date, sort_key
from canemap_backend.utils.record_store import RECORDS_ORDER
from canemap_backend.utils.subcollection_loader import SubcollectionLoader

logger = logging.getLogger(__name__)

UNSPECIFIED_STATUS = 'Unspecified'


def status_label(record):
    status = record.get('status')
    if isinstance(status, str) and status.strip():
        return status.strip()
    return UNSPECIFIED_STATUS


class Report:
    """Assembled, field-scoped aggregation prior to rendering"""

    def __init__(self, field_id, field, records, timeline, breakdowns, generated_at=None):
        self.field_id = field_id
        self.field = field
        self.records = records
        self.timeline = timeline
        self.breakdowns = breakdowns
        self.generated_at = generated_at or datetime.utcnow()

        self.totals = CostBreakdown()
        for breakdown in breakdowns:
            self.totals.merge(breakdown)

    @property
    def field_name(self):
        return field_display_name(self.field) or UNKNOWN_FIELD

    @property
    def owner_id(self):
        return record_owner(self.field)

    @property
    def record_count(self):
        return len(self.records)

    @property
    def summary(self):
        return {
            'totalTaskCost': round(self.totals.sources[TASK], 2),
            'totalBoughtItemsCost': round(self.totals.sources[BOUGHT_ITEMS], 2),
            'totalVehicleCost': round(self.totals.sources[VEHICLE], 2),
            'grandTotal': round(self.totals.grand_total, 2),
        }

    def groups(self):
        """Records grouped by status, in timeline order"""
        grouped = {entry['status']: [] for entry in self.timeline}
        for record, breakdown in zip(self.records, self.breakdowns):
            grouped.setdefault(status_label(record), []).append((record, breakdown))
        return grouped

    def to_dict(self):
        return {
            'fieldId': self.field_id,
            'fieldName': self.field_name,
            'field': self.field,
            'recordCount': self.record_count,
            'timeline': [
                {
                    'status': entry['status'],
                    'count': entry['count'],
                    'earliestDate': entry['earliestDate'].isoformat() if entry['earliestDate'] else None,
                }
                for entry in self.timeline
            ],
            'summary': self.summary,
            'costBreakdown': self.totals.to_dict(),
            'generatedAt': self.generated_at.isoformat() + 'Z',
        }


def build_timeline(records):
    """
    Group records by status.

    Returns:
        List of {'status', 'count', 'earliestDate'} ordered by earliest date;
        groups without any dated record come last.
    """
    groups = {}
    for record in records:
        label = status_label(record)
        entry = groups.setdefault(label, {'status': label, 'count': 0, 'earliestDate': None})
        entry['count'] += 1
        when = record_date(record)
        if when is not None and (entry['earliestDate'] is None or when < entry['earliestDate']):
            entry['earliestDate'] = when

    return sorted(
        groups.values(),
        key=lambda entry: (entry['earliestDate'] is None, entry['earliestDate'] or datetime.min),
    )


class ReportAssembler:

    def __init__(self, store, loader=None, classifier=None):
        self.store = store
        self.loader = loader or SubcollectionLoader(store)
        self.classifier = classifier or CostClassifier()

    def assemble(self, field_id, owner_id=None):
        """
        Raises:
            NotFound: the field does not exist
            PermissionDenied: ``owner_id`` is given and does not own the field
            Unavailable: the store is unreachable, or the unordered fallback failed
        """
        field = self.store.get_one(FIELDS_COLLECTION, field_id)
        if field is None:
            raise NotFound("Field not found", field_id=field_id)

        field_owner = record_owner(field)
        if owner_id is not None and field_owner is not None and field_owner != str(owner_id):
            raise PermissionDenied("You can only create reports for your own fields.",
                                   reason=PermissionDenied.WRONG_OWNER, field_id=field_id)

        docs = self._fetch_records(field_id)
        children = self.loader.load_many(doc['id'] for doc in docs)
        field_name = field_display_name(field) or UNKNOWN_FIELD

        records = []
        for doc in docs:
            bought_items, vehicle_update = children.get(doc['id'], ([], None))
            record = dict(doc)
            record['fieldName'] = field_name
            record['boughtItems'] = bought_items
            record['vehicleUpdate'] = vehicle_update
            records.append(record)
        records.sort(key=sort_key, reverse=True)

        breakdowns = [self.classifier.classify(record) for record in records]
        report = Report(field_id, field, records, build_timeline(records), breakdowns)

        logger.info(f"Assembled report for field {field_id}: {report.record_count} records, "
                    f"grand total {report.summary['grandTotal']:,.2f}")
        return report

    def _fetch_records(self, field_id):
        query = {'fieldId': field_id}
        try:
            return self.store.get_many(RECORDS_COLLECTION, query, order_by=RECORDS_ORDER)
        except FailedPrecondition as e:
            logger.warning(f"Ordered records query rejected for field {field_id} ({e.message}), "
                           f"retrying without ordering")

        try:
            docs = self.store.get_many(RECORDS_COLLECTION, query)
        except RecordsError as e:
            logger.error(f"Fallback records query failed for field {field_id}: {e.message}")
            raise Unavailable("Could not load records for this field",
                              field_id=field_id, cause=e.message) from e
        return sorted(docs, key=sort_key, reverse=True)
