from flask import Blueprint, request, jsonify

from services.errors import DiscoveryError, ValidationError
from services.workflow import get_workflow

strategy_bp = Blueprint('strategy', __name__, url_prefix='/api/strategy')


@strategy_bp.errorhandler(DiscoveryError)
def handle_discovery_error(error):
    return jsonify(error.to_dict()), error.http_status


@strategy_bp.route('/<case_id>', methods=['GET'])
def get_strategy(case_id):
    """Get narratives, objection options and current selections."""
    return jsonify(get_workflow().strategy.status(case_id))


@strategy_bp.route('/<case_id>/narratives', methods=['POST'])
def generate_narratives(case_id):
    """
    Generate case narratives from the client's answers.

    Optional JSON body:
    - regenerate: Replace the existing batch (default False)
    """
    data = request.get_json(silent=True) or {}
    workflow = get_workflow()
    narratives = workflow.generate_narratives(case_id, regenerate=bool(data.get('regenerate')))
    state = workflow.get_state(case_id)

    return jsonify({
        'narratives': [n.to_dict() for n in narratives],
        'selected_narrative_id': state.selected_narrative_id
    })


@strategy_bp.route('/<case_id>/narratives/selected', methods=['PUT'])
def select_narrative(case_id):
    """Choose the narrative objections are written around."""
    data = request.get_json(silent=True) or {}
    narrative_id = data.get('narrative_id')
    if not narrative_id:
        return jsonify({'error': 'narrative_id is required'}), 400

    narrative = get_workflow().strategy.select_narrative(case_id, narrative_id)
    return jsonify({'selected_narrative_id': narrative.id, 'narrative': narrative.to_dict()})


@strategy_bp.route('/<case_id>/objections', methods=['POST'])
def generate_objections(case_id):
    """Generate objection options for every request (no-op if they exist)."""
    sets, warnings = get_workflow().strategy.generate_objections(case_id)
    return jsonify({
        'request_objections': [s.to_dict() for s in sets],
        'warnings': warnings
    })


@strategy_bp.route('/<case_id>/objections/regenerate', methods=['POST'])
def regenerate_objections(case_id):
    """Discard all objection options and generate a fresh set."""
    sets, warnings = get_workflow().strategy.regenerate_all(case_id)
    return jsonify({
        'request_objections': [s.to_dict() for s in sets],
        'warnings': warnings
    })


@strategy_bp.route('/<case_id>/requests/<int:request_index>/options/<int:option_index>/regenerate', methods=['POST'])
def regenerate_option(case_id, request_index, option_index):
    """Regenerate a single option for a single request."""
    objection_set = get_workflow().strategy.regenerate_option(case_id, request_index, option_index)
    return jsonify({'request_objection': objection_set.to_dict()})


@strategy_bp.route('/<case_id>/requests/<int:request_index>/options/<int:option_index>', methods=['PUT'])
def edit_option(case_id, request_index, option_index):
    """Manually edit an option's text."""
    data = request.get_json(silent=True) or {}
    objection_set = get_workflow().strategy.edit_option(case_id, request_index, option_index, data.get('text', ''))
    return jsonify({'request_objection': objection_set.to_dict()})


@strategy_bp.route('/<case_id>/requests/<int:request_index>/options/<int:option_index>/ai-edit', methods=['POST'])
def ai_edit_option(case_id, request_index, option_index):
    """Rewrite an option with a free-form instruction."""
    data = request.get_json(silent=True) or {}
    objection_set = get_workflow().strategy.ai_edit_option(
        case_id, request_index, option_index, data.get('instruction', '')
    )
    return jsonify({'request_objection': objection_set.to_dict()})


@strategy_bp.route('/<case_id>/requests/<int:request_index>/direct-answer', methods=['POST'])
def generate_direct_answer(case_id, request_index):
    """Draft a direct answer for a request and select it."""
    objection_set = get_workflow().strategy.generate_direct_answer(case_id, request_index)
    return jsonify({'request_objection': objection_set.to_dict()})


@strategy_bp.route('/<case_id>/requests/<int:request_index>/selection', methods=['PUT'])
def select_response(case_id, request_index):
    """
    Choose the response used for a request.

    JSON body:
    - kind: "objection" or "direct"
    - option_index: Required when kind is "objection"
    """
    data = request.get_json(silent=True) or {}
    option_index = data.get('option_index')
    if option_index is not None and (isinstance(option_index, bool) or not isinstance(option_index, int)):
        raise ValidationError("option_index must be an integer")

    objection_set = get_workflow().strategy.select_response(
        case_id, request_index, data.get('kind', ''), option_index
    )
    return jsonify({'request_objection': objection_set.to_dict()})
