from flask import Blueprint, request, jsonify

from services.errors import DiscoveryError
from services.workflow import get_workflow

questionnaire_bp = Blueprint('questionnaire', __name__, url_prefix='/api/questionnaire')


@questionnaire_bp.errorhandler(DiscoveryError)
def handle_discovery_error(error):
    return jsonify(error.to_dict()), error.http_status


# Lawyer side

@questionnaire_bp.route('/<case_id>/questions', methods=['GET'])
def get_questions(case_id):
    """Get the client-facing questions for a case."""
    questions = get_workflow().compiler.list_questions(case_id)
    return jsonify({
        'case_id': case_id,
        'total_questions': len(questions),
        'questions': [q.to_dict() for q in questions]
    })


@questionnaire_bp.route('/<case_id>/questions/<question_id>', methods=['PUT'])
def edit_question(case_id, question_id):
    """Manually edit one question's client-facing text."""
    data = request.get_json(silent=True) or {}
    question = get_workflow().compiler.edit(case_id, question_id, data.get('question', ''))
    return jsonify({'question': question.to_dict()})


@questionnaire_bp.route('/<case_id>/questions/<question_id>/ai-edit', methods=['POST'])
def ai_edit_question(case_id, question_id):
    """Rewrite one question with a free-form instruction."""
    data = request.get_json(silent=True) or {}
    question = get_workflow().compiler.ai_edit(case_id, question_id, data.get('instruction', ''))
    return jsonify({'question': question.to_dict()})


@questionnaire_bp.route('/<case_id>/questions/ai-edit', methods=['POST'])
def bulk_ai_edit(case_id):
    """Apply one instruction to every question."""
    data = request.get_json(silent=True) or {}
    questions, warnings = get_workflow().compiler.bulk_ai_edit(case_id, data.get('instruction', ''))
    return jsonify({
        'questions': [q.to_dict() for q in questions],
        'warnings': warnings
    })


@questionnaire_bp.route('/<case_id>/questions/<question_id>/reset', methods=['POST'])
def reset_question(case_id, question_id):
    """Restore a question to its last generated text."""
    question = get_workflow().compiler.reset(case_id, question_id)
    return jsonify({'question': question.to_dict()})


@questionnaire_bp.route('/<case_id>/send', methods=['POST'])
def send_questionnaire(case_id):
    """Send the questionnaire to the selected client."""
    data = request.get_json(silent=True) or {}
    questionnaire, warnings = get_workflow().send_questionnaire(case_id, lawyer_id=data.get('lawyer_id'))
    return jsonify({
        'questionnaire': questionnaire.to_dict(),
        'warnings': warnings
    }), 201


@questionnaire_bp.route('/<case_id>/update', methods=['PUT'])
def update_questionnaire(case_id):
    """Push edited questions into the already-sent questionnaire."""
    questionnaire = get_workflow().update_questionnaire(case_id)
    return jsonify({'questionnaire': questionnaire.to_dict()})


@questionnaire_bp.route('/<case_id>/status', methods=['GET'])
def questionnaire_status(case_id):
    """Progress of the case's questionnaire (polled by the lawyer view)."""
    workflow = get_workflow()
    state = workflow.get_state(case_id)
    progress = workflow.questionnaires.poll(state.questionnaire_id)
    progress['has_client_responded'] = state.has_client_responded
    return jsonify(progress)


@questionnaire_bp.route('/<case_id>/reminder', methods=['POST'])
def send_reminder(case_id):
    """Text the client a reminder with the number of unanswered questions."""
    result = get_workflow().questionnaires.send_reminder(case_id)
    return jsonify(result)


# Client side

@questionnaire_bp.route('/client/<questionnaire_id>/answers/<question_id>', methods=['PUT'])
def save_answer(questionnaire_id, question_id):
    """Save the client's answer to one question."""
    data = request.get_json(silent=True) or {}
    if 'response' not in data:
        return jsonify({'error': 'response is required'}), 400

    progress = get_workflow().questionnaires.save_answer(questionnaire_id, question_id, data['response'])
    return jsonify(progress)
