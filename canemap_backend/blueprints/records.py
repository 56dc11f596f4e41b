"""
Records Blueprint - live records view, filtering, export, deletion and field reports
"""
from flask import Blueprint, request, jsonify, make_response
from datetime import datetime

from canemap_backend.blueprints.responses import (
    records_error_response,
    unexpected_error_response,
    validation_error_response,
)
from canemap_backend.utils.errors import RecordsError
from canemap_backend.utils.filter_engine import FilterState
from canemap_backend.utils.report_renderer import render_csv, render_print_html

SUBMIT_RATE_LIMIT = "10 per minute"


def init_records_blueprint(engine, token_required, serialize_doc, limiter=None):
    """Initialize the records blueprint with the records engine"""
    records_bp = Blueprint('records', __name__, url_prefix='/api/records')

    submit_limit = limiter.limit(SUBMIT_RATE_LIMIT) if limiter else (lambda f: f)

    def _user_id(current_user):
        return str(current_user['id'])

    def _record_json(record):
        breakdown = engine.breakdown(record)
        data = serialize_doc(record)
        data['costBreakdown'] = breakdown.to_dict()
        data['grandTotal'] = round(breakdown.grand_total, 2)
        return data

    def _view_from_request(user_id):
        # Query args replace the kept filter; without args the last filter applies
        if request.args:
            return engine.apply_filter(user_id, FilterState.from_args(request.args))
        return engine.current_view(user_id)

    # ==================== SESSION ====================

    @records_bp.route('/session', methods=['POST'])
    @token_required
    def open_session(current_user):
        """Open the live records subscription for the current user"""
        try:
            session = engine.initialize_record_store(_user_id(current_user))
            record_store = session.record_store
            return jsonify({
                'success': True,
                'data': {
                    'state': record_store.state,
                    'recordCount': len(record_store.current_list()),
                    'degraded': record_store.degraded,
                },
                'message': 'Records subscription started'
            })
        except RecordsError as e:
            return records_error_response(e, 'Failed to load records')
        except Exception as e:
            return unexpected_error_response(e, 'Failed to load records')

    @records_bp.route('/session', methods=['DELETE'])
    @token_required
    def close_session(current_user):
        """Tear down the subscription (logout or navigation away)"""
        closed = engine.close(_user_id(current_user))
        return jsonify({
            'success': True,
            'data': {'closed': closed},
            'message': 'Records subscription closed' if closed else 'No active records subscription'
        })

    # ==================== VIEW ====================

    @records_bp.route('/', methods=['GET'])
    @token_required
    def get_records(current_user):
        """
        Get the filtered records view.

        Query params: date (all|today|week|month|custom), start, end, field,
        operation, task_type, cost_category (all|fuel|labor|other),
        cost_min, cost_max
        """
        try:
            user_id = _user_id(current_user)
            state = FilterState.from_args(request.args)
            records = engine.apply_filter(user_id, state)
            session = engine.session(user_id)

            return jsonify({
                'success': True,
                'data': {
                    'records': [_record_json(record) for record in records],
                    'count': len(records),
                    'totalCount': len(session.record_store.current_list()),
                    'summary': engine.summarize(records).to_dict(),
                    'filters': state.to_dict(),
                    'degraded': session.record_store.degraded,
                },
                'message': 'Records retrieved successfully'
            })
        except ValueError as e:
            return validation_error_response(e)
        except RecordsError as e:
            return records_error_response(e, 'Failed to retrieve records')
        except Exception as e:
            return unexpected_error_response(e, 'Failed to retrieve records')

    @records_bp.route('/fields', methods=['GET'])
    @token_required
    def get_fields(current_user):
        """Fields of the current user for the field filter"""
        try:
            fields = engine.list_fields(_user_id(current_user))
            return jsonify({
                'success': True,
                'data': {'fields': fields},
                'message': 'Fields retrieved successfully'
            })
        except RecordsError as e:
            return records_error_response(e, 'Failed to retrieve fields')
        except Exception as e:
            return unexpected_error_response(e, 'Failed to retrieve fields')

    @records_bp.route('/export.csv', methods=['GET'])
    @token_required
    def export_csv(current_user):
        """Export the filtered view as CSV"""
        try:
            records = _view_from_request(_user_id(current_user))
            if not records:
                return jsonify({
                    'success': False,
                    'message': 'No records to export',
                    'errors': {'general': ['The current view is empty']}
                }), 404

            response = make_response(render_csv(records, engine.classifier))
            response.headers['Content-Type'] = 'text/csv; charset=utf-8'
            response.headers['Content-Disposition'] = (
                f'attachment; filename=records_{datetime.utcnow().strftime("%Y-%m-%d")}.csv'
            )
            return response
        except ValueError as e:
            return validation_error_response(e)
        except RecordsError as e:
            return records_error_response(e, 'Failed to export records')
        except Exception as e:
            return unexpected_error_response(e, 'Failed to export records')

    @records_bp.route('/print', methods=['GET'])
    @token_required
    def print_records(current_user):
        """Printable HTML page of the filtered view"""
        try:
            records = _view_from_request(_user_id(current_user))
            if not records:
                return jsonify({
                    'success': False,
                    'message': 'No records to print',
                    'errors': {'general': ['The current view is empty']}
                }), 404

            response = make_response(render_print_html(records, engine.classifier))
            response.headers['Content-Type'] = 'text/html; charset=utf-8'
            return response
        except ValueError as e:
            return validation_error_response(e)
        except RecordsError as e:
            return records_error_response(e, 'Failed to print records')
        except Exception as e:
            return unexpected_error_response(e, 'Failed to print records')

    @records_bp.route('/send-view', methods=['POST'])
    @token_required
    def send_view(current_user):
        """Send the filtered view as CSV to the reviewers"""
        try:
            user_id = _user_id(current_user)
            payload = request.get_json(silent=True) or {}
            state = FilterState.from_args(payload['filters']) if payload.get('filters') else None

            result = engine.send_view(user_id, state)
            return jsonify({
                'success': True,
                'data': result,
                'message': f"Successfully sent {result['recordCount']} record(s) for review"
            })
        except ValueError as e:
            return validation_error_response(e)
        except RecordsError as e:
            return records_error_response(e, 'Failed to send records for review')
        except Exception as e:
            return unexpected_error_response(e, 'Failed to send records for review')

    # ==================== DELETE ====================

    @records_bp.route('/<record_id>', methods=['DELETE'])
    @token_required
    def delete_record(current_user, record_id):
        """Delete a record and its bought items / vehicle update"""
        try:
            result = engine.delete_record(_user_id(current_user), record_id)
            message = ('Record deleted successfully' if result['status'] == 'deleted'
                       else 'Record was already deleted')
            if result.get('childFailures'):
                message += f" ({len(result['childFailures'])} related item(s) could not be removed)"
            return jsonify({
                'success': True,
                'data': result,
                'message': message
            })
        except RecordsError as e:
            return records_error_response(e)
        except Exception as e:
            return unexpected_error_response(e, 'Failed to delete record')

    # ==================== FIELD REPORTS ====================

    @records_bp.route('/reports/<field_id>/preview', methods=['GET'])
    @token_required
    def preview_report(current_user, field_id):
        """Assemble a field report and return its HTML preview"""
        try:
            user_id = _user_id(current_user)
            html = engine.preview_report(user_id, field_id)
            if request.args.get('format') == 'html':
                response = make_response(html)
                response.headers['Content-Type'] = 'text/html; charset=utf-8'
                return response

            report = engine.session(user_id).pipeline.report
            return jsonify({
                'success': True,
                'data': {
                    'report': serialize_doc(report.to_dict()),
                    'html': html,
                },
                'message': 'Report preview generated'
            })
        except RecordsError as e:
            return records_error_response(e, 'Failed to generate report preview')
        except Exception as e:
            return unexpected_error_response(e, 'Failed to generate report preview')

    @records_bp.route('/reports/<field_id>/submit', methods=['POST'])
    @token_required
    @submit_limit
    def submit_report(current_user, field_id):
        """Render, store and send the field report to the reviewers"""
        try:
            metadata = engine.submit_report(_user_id(current_user), field_id)
            return jsonify({
                'success': True,
                'data': serialize_doc(metadata),
                'message': 'Report submitted for review'
            }), 201
        except RecordsError as e:
            return records_error_response(e, 'Failed to submit report')
        except Exception as e:
            return unexpected_error_response(e, 'Failed to submit report')

    return records_bp
