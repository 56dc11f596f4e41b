"""
Field Reports Blueprint - submitted report metadata for owners and the reviewer role
"""
from flask import Blueprint, request, jsonify
from datetime import datetime
from functools import wraps
import logging

from canemap_backend.blueprints.responses import (
    records_error_response,
    unexpected_error_response,
)
from canemap_backend.config.environment import FIELD_REPORTS_COLLECTION, REVIEWER_ROLE
from canemap_backend.utils.errors import FailedPrecondition, NotFound, RecordsError, Unavailable
from canemap_backend.utils.record_dates import to_datetime
from canemap_backend.utils.submission_pipeline import ReportStatus

logger = logging.getLogger(__name__)

REPORTS_ORDER = [('submittedDate', -1)]

STATUS_LABELS = {
    ReportStatus.PENDING_REVIEW: 'Pending Review',
    ReportStatus.APPROVED: 'Approved',
    ReportStatus.REJECTED: 'Rejected',
}


def _submitted_key(report):
    return to_datetime(report.get('submittedDate')) or to_datetime(report.get('createdAt')) or datetime.min


def fetch_reports(store, query):
    """
    Reports matching ``query``, newest first.

    Returns:
        Tuple of (reports, degraded) where degraded means the ordered query
        was rejected and the list was sorted here instead
    """
    try:
        return store.get_many(FIELD_REPORTS_COLLECTION, query, order_by=REPORTS_ORDER), False
    except FailedPrecondition as e:
        logger.warning(f"Ordered reports query rejected ({e.message}), retrying without ordering")

    try:
        reports = store.get_many(FIELD_REPORTS_COLLECTION, query)
    except RecordsError as e:
        raise Unavailable("Could not load reports", cause=e.message) from e
    return sorted(reports, key=_submitted_key, reverse=True), True


def init_field_reports_blueprint(store, notifier, token_required, serialize_doc, reviewer_role=REVIEWER_ROLE):
    """Initialize the field reports blueprint with the document store and notification sink"""
    field_reports_bp = Blueprint('field_reports', __name__, url_prefix='/api/field-reports')

    def reviewer_required(f):
        @wraps(f)
        def decorated(current_user, *args, **kwargs):
            if current_user.get('role') not in (reviewer_role, 'admin'):
                return jsonify({
                    'success': False,
                    'message': 'Reviewer access required',
                    'errors': {'permission': ['insufficient_rights']}
                }), 403
            return f(current_user, *args, **kwargs)
        return decorated

    @field_reports_bp.route('/', methods=['GET'])
    @token_required
    def get_my_reports(current_user):
        """Reports submitted by the current user, newest first"""
        try:
            reports, degraded = fetch_reports(store, {'handlerId': str(current_user['id'])})
            return jsonify({
                'success': True,
                'data': {
                    'reports': [serialize_doc(r) for r in reports],
                    'count': len(reports),
                    'degraded': degraded,
                },
                'message': 'Reports retrieved successfully'
            })
        except RecordsError as e:
            return records_error_response(e, 'Failed to retrieve reports')
        except Exception as e:
            return unexpected_error_response(e, 'Failed to retrieve reports')

    @field_reports_bp.route('/review', methods=['GET'])
    @token_required
    @reviewer_required
    def get_reports_for_review(current_user):
        """All submitted reports, optionally filtered by status"""
        try:
            status = request.args.get('status')
            if status and status not in ReportStatus.ALL:
                return jsonify({
                    'success': False,
                    'message': 'Validation failed',
                    'errors': {'status': [f"Status must be one of: {', '.join(ReportStatus.ALL)}"]}
                }), 400

            query = {'status': status} if status else {}
            reports, degraded = fetch_reports(store, query)
            return jsonify({
                'success': True,
                'data': {
                    'reports': [serialize_doc(r) for r in reports],
                    'count': len(reports),
                    'degraded': degraded,
                },
                'message': 'Reports retrieved successfully'
            })
        except RecordsError as e:
            return records_error_response(e, 'Failed to retrieve reports')
        except Exception as e:
            return unexpected_error_response(e, 'Failed to retrieve reports')

    @field_reports_bp.route('/<report_id>/status', methods=['POST'])
    @token_required
    @reviewer_required
    def update_report_status(current_user, report_id):
        """Approve, reject or reopen a report and tell its owner"""
        try:
            data = request.get_json(silent=True) or {}
            status = data.get('status')
            remarks = (data.get('remarks') or '').strip()

            if status not in ReportStatus.ALL:
                return jsonify({
                    'success': False,
                    'message': 'Validation failed',
                    'errors': {'status': [f"Status must be one of: {', '.join(ReportStatus.ALL)}"]}
                }), 400

            report = store.get_one(FIELD_REPORTS_COLLECTION, report_id)
            if report is None:
                raise NotFound("Report not found", report_id=report_id)

            reviewer_id = str(current_user['id'])
            now = datetime.utcnow()
            update = {
                'status': status,
                'remarks': remarks or None,
                'reviewedBy': reviewer_id,
                'reviewedAt': now,
                'updatedAt': now,
            }
            store.update(FIELD_REPORTS_COLLECTION, report_id, update)
            report.update(update)
            logger.info(f"Report {report_id} status updated to {status} by {reviewer_id}")

            owner_id = report.get('handlerId') or report.get('userId')
            if owner_id:
                try:
                    message = (f"Your report for {report.get('fieldName') or 'your field'} "
                               f"is now {STATUS_LABELS[status].lower()}.")
                    if remarks:
                        message += f" Remarks: {remarks}"
                    notifier.publish({
                        'userId': owner_id,
                        'type': 'report_reviewed',
                        'title': f"Report {STATUS_LABELS[status]}",
                        'message': message,
                        'relatedIds': {'reportId': report_id},
                    })
                except Exception as e:
                    logger.warning(f"Failed to notify owner of report {report_id} (non-critical): {e}")

            return jsonify({
                'success': True,
                'data': serialize_doc(report),
                'message': f"Report marked as {STATUS_LABELS[status]}"
            })
        except RecordsError as e:
            return records_error_response(e, 'Failed to update report status')
        except Exception as e:
            return unexpected_error_response(e, 'Failed to update report status')

    @field_reports_bp.route('/statistics', methods=['GET'])
    @token_required
    @reviewer_required
    def get_report_statistics(current_user):
        """Report counts per status"""
        try:
            reports = store.get_many(FIELD_REPORTS_COLLECTION, {})
            stats = {'total': len(reports)}
            stats.update({status: 0 for status in ReportStatus.ALL})
            for report in reports:
                status = report.get('status') or ReportStatus.PENDING_REVIEW
                if status in stats:
                    stats[status] += 1

            return jsonify({
                'success': True,
                'data': stats,
                'message': 'Report statistics retrieved successfully'
            })
        except RecordsError as e:
            return records_error_response(e, 'Failed to retrieve report statistics')
        except Exception as e:
            return unexpected_error_response(e, 'Failed to retrieve report statistics')

    return field_reports_bp
