from flask import Blueprint, request, jsonify

from services.errors import DiscoveryError
from services.workflow import get_workflow

workflow_bp = Blueprint('workflow', __name__, url_prefix='/api/workflow')


def state_response(state, warnings=None):
    """Serialize the workflow record with the current stage's payload."""
    data = {
        'case_id': state.case_id,
        'stage': int(state.stage),
        'stage_name': state.stage.label,
        'payload': state.stage_payload(),
        'state': state.to_dict()
    }
    if warnings is not None:
        data['warnings'] = warnings
    return data


@workflow_bp.errorhandler(DiscoveryError)
def handle_discovery_error(error):
    return jsonify(error.to_dict()), error.http_status


@workflow_bp.route('/<case_id>', methods=['GET'])
def open_workflow(case_id):
    """Load (and resume) the workflow for a case."""
    state = get_workflow().open(case_id, user_id=request.args.get('user_id'))
    return jsonify(state_response(state))


@workflow_bp.route('/<case_id>/next', methods=['POST'])
def next_stage(case_id):
    """Advance to the next stage if its guard passes."""
    state, warnings = get_workflow().advance(case_id)
    return jsonify(state_response(state, warnings))


@workflow_bp.route('/<case_id>/previous', methods=['POST'])
def previous_stage(case_id):
    """Step back one stage without discarding anything."""
    state = get_workflow().go_back(case_id)
    return jsonify(state_response(state))


@workflow_bp.route('/<case_id>/draft', methods=['PUT'])
def save_draft(case_id):
    """
    Queue draft fields; they are persisted once edits pause.

    JSON body (any of):
    - case_type
    - narration_notes
    """
    data = request.get_json(silent=True) or {}
    if not data:
        return jsonify({'error': 'No data provided'}), 400

    pending = get_workflow().save_draft(case_id, **data)
    return jsonify({'status': 'pending', 'draft': pending}), 202


@workflow_bp.route('/<case_id>/client', methods=['PUT'])
def select_client(case_id):
    """Choose the client who will answer the questionnaire."""
    data = request.get_json(silent=True) or {}
    client_id = data.get('client_id')
    if not client_id:
        return jsonify({'error': 'client_id is required'}), 400

    state = get_workflow().select_client(case_id, client_id)
    return jsonify(state_response(state))


@workflow_bp.route('/<case_id>/close', methods=['POST'])
def close_workflow(case_id):
    """Stop polling and drop unsaved drafts when the lawyer leaves the case."""
    get_workflow().close(case_id)
    return jsonify({'message': 'Workflow closed', 'case_id': case_id})
