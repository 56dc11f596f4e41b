"""
SubmissionPipeline - sends an assembled field report to the reviewer role.

    field_selected -> previewing -> sending -> sent
    (a failed send returns to previewing)

Sending renders the PDF from the Report already held for the preview, then
uploads it, writes the report metadata and notifies reviewers. A failure
at any stage puts the pipeline back into previewing with the same Report,
so the owner can retry without re-fetching. Notification failures are
logged and do not fail the submission.
"""
import logging
from datetime import datetime

from canemap_backend.config.environment import (
    FIELD_REPORTS_COLLECTION,
    REPORT_STORAGE_PREFIX,
    REVIEWER_ROLE,
)
from canemap_backend.utils.errors import RecordsError, RenderFailure
from canemap_backend.utils.pdf_generator import PDFGenerator
from canemap_backend.utils.report_renderer import build_document, render_document_html
from canemap_backend.utils.single_flight import SingleFlightGuard

logger = logging.getLogger(__name__)

SUBMIT_OPERATION = 'submit_report'
REPORT_TYPE = 'field_operations'


class SubmissionState:
    FIELD_SELECTED = 'field_selected'
    PREVIEWING = 'previewing'
    SENDING = 'sending'
    SENT = 'sent'
    FAILED = 'failed'


class ReportStatus:
    PENDING_REVIEW = 'pending_review'
    APPROVED = 'approved'
    REJECTED = 'rejected'

    ALL = (PENDING_REVIEW, APPROVED, REJECTED)


def artifact_path(owner_id, field_id, when, prefix=REPORT_STORAGE_PREFIX):
    return f"{prefix}/{owner_id}/{field_id}/{when.strftime('%Y%m%d_%H%M%S')}.pdf"


class SubmissionPipeline:

    def __init__(self, assembler, artifact_store, store, notifier, guard=None,
                 pdf_generator=None, reviewer_role=REVIEWER_ROLE):
        self.assembler = assembler
        self.artifact_store = artifact_store
        self.store = store
        self.notifier = notifier
        self.guard = guard or SingleFlightGuard()
        self.pdf_generator = pdf_generator or PDFGenerator()
        self.reviewer_role = reviewer_role

        self.state = None
        self.field_id = None
        self.report = None
        self.document = None
        self.last_error = None
        self.last_submission = None

    def select_field(self, field_id):
        self.field_id = field_id
        self.report = None
        self.document = None
        self.last_error = None
        self.state = SubmissionState.FIELD_SELECTED

    def preview(self, field_id=None, owner_id=None):
        """
        Assemble the report for the selected field and return the HTML preview.

        Raises:
            NotFound / Unavailable: from assembly; the pipeline stays in
                field_selected (nothing to preview)
        """
        if field_id is not None and (field_id != self.field_id or self.report is None):
            self.select_field(field_id)
        if self.field_id is None:
            raise ValueError("No field selected")

        if self.report is None:
            try:
                self.report = self.assembler.assemble(self.field_id, owner_id=owner_id)
            except RecordsError as e:
                self.last_error = e
                self.state = SubmissionState.FIELD_SELECTED
                raise
            self.document = build_document(self.report)

        self.state = SubmissionState.PREVIEWING
        return render_document_html(self.document)

    def submit(self, owner_id, field_id=None):
        """
        Render, upload, persist metadata and notify reviewers.

        Returns:
            dict: the stored report metadata including its id

        Raises:
            AlreadyInFlight: a submission for this owner and field is running
            RenderFailure / UploadFailure / RecordsError: the stage that failed;
                the pipeline is back in previewing with the report intact
        """
        field_id = field_id or self.field_id
        with self.guard.hold(SUBMIT_OPERATION, f"{owner_id}:{field_id}"):
            if self.report is None or self.field_id != field_id:
                self.preview(field_id, owner_id)

            self.state = SubmissionState.SENDING
            logger.info(f"Submitting report for field {field_id} by {owner_id}")
            try:
                metadata = self._send(owner_id)
            except RecordsError as e:
                self.last_error = e
                self.state = SubmissionState.PREVIEWING
                logger.error(f"Report submission failed for field {field_id}: {e.message}; "
                             f"returning to preview")
                raise

            self.last_error = None
            self.last_submission = metadata
            self.state = SubmissionState.SENT
            logger.info(f"Report {metadata['id']} submitted for field {field_id}")
            return metadata

    def _send(self, owner_id):
        report = self.report
        now = datetime.utcnow()

        try:
            pdf_bytes = self.pdf_generator.generate_field_report(self.document)
        except Exception as e:
            raise RenderFailure("Failed to render the report", field_id=report.field_id,
                                cause=str(e)) from e
        logger.info(f"Rendered report PDF for field {report.field_id} ({len(pdf_bytes)} bytes)")

        path = artifact_path(owner_id, report.field_id, now)
        url = self.artifact_store.upload(path, pdf_bytes, content_type='application/pdf')
        logger.info(f"Stored report artifact at {path}")

        metadata = {
            'handlerId': owner_id,
            'userId': owner_id,
            'fieldId': report.field_id,
            'fieldName': report.field_name,
            'reportType': REPORT_TYPE,
            'recordCount': report.record_count,
            'summary': report.summary,
            'costBreakdown': report.totals.to_dict(),
            'artifactPath': path,
            'artifactUrl': url,
            'status': ReportStatus.PENDING_REVIEW,
            'submittedDate': now,
            'createdAt': now,
        }
        report_id = self.store.put(FIELD_REPORTS_COLLECTION, metadata)
        metadata['id'] = report_id
        logger.info(f"Report metadata written: {report_id}")

        self._notify_reviewers(report, report_id)
        return metadata

    def _notify_reviewers(self, report, report_id):
        try:
            self.notifier.publish({
                'role': self.reviewer_role,
                'type': 'report_submitted',
                'title': 'New Report Submitted',
                'message': (f"A new field operations report for {report.field_name} "
                            f"has been submitted and requires review."),
                'relatedIds': {'reportId': report_id, 'fieldId': report.field_id},
            })
        except Exception as e:
            logger.warning(f"Failed to notify reviewers about report {report_id} (non-critical): {e}")
