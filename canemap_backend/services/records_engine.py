"""
RecordsEngine - the operations the HTTP layer calls.

One RecordsSession per signed-in user holds that user's RecordStore, its
field-name cache and its report pipeline. The single-flight guard is
shared by every session so duplicate deletes and submissions are caught
across requests.
"""
import logging
import threading

from canemap_backend.config.environment import FIELDS_COLLECTION, REVIEWER_ROLE, USERS_COLLECTION
from canemap_backend.utils.cost_classifier import CostClassifier, summarize
from canemap_backend.utils.deletion_coordinator import DeletionCoordinator
from canemap_backend.utils.errors import RecordsError
from canemap_backend.utils.field_name_resolver import UNKNOWN_FIELD, field_display_name
from canemap_backend.utils.filter_engine import FilterState, apply_filter
from canemap_backend.utils.record_store import RecordStore
from canemap_backend.utils.report_assembler import ReportAssembler
from canemap_backend.utils.report_renderer import render_csv
from canemap_backend.utils.single_flight import SingleFlightGuard
from canemap_backend.utils.submission_pipeline import SubmissionPipeline

logger = logging.getLogger(__name__)

# User document keys naming the reviewer assigned to a handler
ASSIGNED_REVIEWER_KEYS = ('assignedSRA', 'sraOfficer')


class RecordsSession:
    """Per-user state: live records, filter, deletion and report pipeline"""

    def __init__(self, user_id, record_store, deletion, pipeline):
        self.user_id = user_id
        self.record_store = record_store
        self.deletion = deletion
        self.pipeline = pipeline
        self.filter_state = FilterState()

    def close(self):
        self.record_store.unsubscribe()


class RecordsEngine:

    def __init__(self, store, artifact_store, notifier, pdf_generator=None,
                 classifier=None, reviewer_role=REVIEWER_ROLE):
        self.store = store
        self.artifact_store = artifact_store
        self.notifier = notifier
        self.pdf_generator = pdf_generator
        self.classifier = classifier or CostClassifier()
        self.reviewer_role = reviewer_role
        self.guard = SingleFlightGuard()

        self._sessions = {}
        self._lock = threading.Lock()

    # ==================== SESSIONS ====================

    def initialize_record_store(self, user_id):
        """
        Open (or reopen) the live record subscription for ``user_id``.

        Raises:
            Unavailable: the subscription could not be established
        """
        user_id = str(user_id)
        self.close(user_id)

        record_store = RecordStore(self.store, field_name_cache={})
        session = RecordsSession(
            user_id,
            record_store,
            DeletionCoordinator(self.store, record_store, guard=self.guard),
            SubmissionPipeline(
                ReportAssembler(self.store, loader=record_store.loader, classifier=self.classifier),
                self.artifact_store,
                self.store,
                self.notifier,
                guard=self.guard,
                pdf_generator=self.pdf_generator,
                reviewer_role=self.reviewer_role,
            ),
        )

        record_store.initialize(user_id)
        with self._lock:
            self._sessions[user_id] = session

        logger.info(f"Record store initialized for user {user_id} "
                    f"({len(record_store.current_list())} records{', degraded' if record_store.degraded else ''})")
        return session

    def session(self, user_id, create=True):
        user_id = str(user_id)
        with self._lock:
            session = self._sessions.get(user_id)
        if session is None and create:
            session = self.initialize_record_store(user_id)
        return session

    def close(self, user_id):
        """Tear down the user's subscription (logout / navigation away)"""
        with self._lock:
            session = self._sessions.pop(str(user_id), None)
        if session is not None:
            session.close()
            logger.info(f"Record store closed for user {user_id}")
        return session is not None

    def close_all(self):
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()

    # ==================== OPERATIONS ====================

    def apply_filter(self, user_id, state):
        """Filter the user's cached records; the state is kept for export and send"""
        session = self.session(user_id)
        session.filter_state = state
        return apply_filter(session.record_store.current_list(), state, classifier=self.classifier)

    def current_view(self, user_id):
        session = self.session(user_id)
        return apply_filter(session.record_store.current_list(), session.filter_state,
                            classifier=self.classifier)

    def breakdown(self, record):
        return self.classifier.classify(record)

    def summarize(self, records):
        return summarize(records, self.classifier)

    def delete_record(self, user_id, record_id):
        session = self.session(user_id)
        return session.deletion.delete(record_id, session.user_id)

    def preview_report(self, user_id, field_id):
        session = self.session(user_id)
        session.pipeline.select_field(field_id)
        return session.pipeline.preview(field_id, session.user_id)

    def submit_report(self, user_id, field_id):
        session = self.session(user_id)
        return session.pipeline.submit(session.user_id, field_id)

    def list_fields(self, user_id):
        """The user's fields as [{'id', 'name'}], also seeding the name cache"""
        session = self.session(user_id)
        fields = self.store.get_many(FIELDS_COLLECTION, {'userId': session.user_id})
        result = []
        for field in fields:
            session.record_store.resolver.prime(field['id'], field)
            result.append({'id': field['id'], 'name': field_display_name(field) or UNKNOWN_FIELD})
        return sorted(result, key=lambda f: f['name'].lower())

    def send_view(self, user_id, state=None):
        """
        Send the CSV of the filtered view to reviewers.

        Raises:
            ValueError: the view is empty
        """
        records = self.apply_filter(user_id, state) if state is not None else self.current_view(user_id)
        if not records:
            raise ValueError("No records to send. Please adjust the filters to select records.")

        user_id = str(user_id)
        assigned = self._assigned_reviewer(user_id)
        event = {
            'role': self.reviewer_role,
            'type': 'records_report',
            'title': 'Records Report Received',
            'message': f"Handler has sent {len(records)} record(s) for review.",
            'relatedIds': {'senderId': user_id},
            'extra': {
                'csvData': render_csv(records, self.classifier),
                'recordCount': len(records),
                'sentBy': user_id,
            },
        }
        if assigned:
            event['userId'] = assigned

        notification_id = self.notifier.publish(event)
        return {'notificationId': notification_id, 'recordCount': len(records), 'assignedReviewer': assigned}

    def _assigned_reviewer(self, user_id):
        try:
            user = self.store.get_one(USERS_COLLECTION, user_id)
        except RecordsError as e:
            logger.warning(f"Could not load user {user_id} for reviewer lookup: {e.message}")
            return None
        if not user:
            return None
        for key in ASSIGNED_REVIEWER_KEYS:
            if user.get(key):
                return str(user[key])
        return None
