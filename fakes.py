"""
Test doubles shared by the test modules: a scripted Claude service, a
recording SMS sender and a workflow wired over temporary local stores.
"""
import os
import threading
from collections import defaultdict

from models import FORM_INTERROGATORIES, REQUESTS_FOR_ADMISSIONS
from services.claude_service import ClaudeAPIError
from services.document_generator import DocumentGenerator
from services.file_store import LocalFileStore
from services.job_manager import JobManager
from services.record_store import LocalRepository
from services.workflow import build_workflow

CASE_ID = 'case-1'
CLIENT_ID = 'client-1'
LAWYER_ID = 'lawyer-1'


def api_error(message='Claude is unavailable'):
    return ClaudeAPIError(message=message, error_code='API_ERROR', retryable=True)


class FakeClaude:
    """
    Deterministic stand-in for ClaudeService.

    Extraction turns every non-empty line of the document into a question.
    Objection options embed a per-slot counter so regenerations are visible.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.calls = defaultdict(int)
        self.extract_error = None
        self.deadlines = {}
        self.simplify_failures = set()
        self.simplify_all_fail = False
        self.narratives = [
            {'title': 'Minor collision', 'description': 'The impact was minor.', 'strength': 'moderate'},
            {'title': 'Defendant at fault', 'description': 'Defendant ran the light.', 'strength': 'strong'},
            {'title': 'Sudden stop', 'description': 'Plaintiff stopped without warning.', 'strength': 'weak'},
        ]
        self.narrative_error = None
        self.objection_failures = set()
        self._option_versions = defaultdict(int)

    def _count(self, name):
        with self._lock:
            self.calls[name] += 1

    def is_available(self):
        return True

    def extract_discovery_document(self, document_text, category_label):
        self._count('extract')
        if self.extract_error:
            raise self.extract_error
        lines = [line.strip() for line in document_text.splitlines() if line.strip()]
        return {
            'document_type': category_label,
            'propounding_party': 'Defendant',
            'responding_party': 'Plaintiff',
            'case_number': 'CV-123',
            'set_number': 'ONE',
            'service_date': None,
            'response_deadline': self.deadlines.get(category_label),
            'questions': [{'id': str(i), 'text': line} for i, line in enumerate(lines, 1)]
        }

    def simplify_questions(self, questions, case_context=""):
        self._count('simplify')
        if self.simplify_all_fail:
            return {}
        return {
            q['id']: f"Simple: {q['text']}"
            for q in questions
            if q['id'] not in self.simplify_failures
        }

    def generate_narratives(self, answers, case_context=""):
        self._count('narratives')
        if self.narrative_error:
            raise self.narrative_error
        return [dict(n) for n in self.narratives]

    def generate_objection_option(self, request_text, client_answer, narrative_description, option_index):
        self._count('objection')
        if (request_text, option_index) in self.objection_failures:
            raise api_error()
        with self._lock:
            self._option_versions[(request_text, option_index)] += 1
            version = self._option_versions[(request_text, option_index)]
        return f"Objection {option_index + 1} to {request_text} v{version}"

    def generate_direct_answer(self, request_text, client_answer):
        self._count('direct')
        return f"Direct answer: {client_answer}"

    def edit_question(self, question_text, instruction):
        self._count('edit_question')
        return f"{question_text} ({instruction})"

    def edit_objection(self, objection_text, instruction):
        self._count('edit_objection')
        return f"{objection_text} ({instruction})"


class RecordingSms:
    """Records every send; fails every send while `fail` is set."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to_phone, message_type, context=None):
        self.sent.append({'to': to_phone, 'type': message_type, 'context': context or {}})
        if self.fail:
            return {'success': False, 'error': 'carrier rejected message'}
        return {'success': True, 'error': None, 'message_id': str(len(self.sent))}

    def of_type(self, message_type):
        return [m for m in self.sent if m['type'] == message_type]


def seed_directory(repository, client_phone='5551234567', lawyer_phone='5559876543'):
    repository.insert('cases', [{
        'id': CASE_ID,
        'name': 'Smith v. Jones',
        'case_number': 'CV-123',
        'case_type': 'Personal Injury',
        'description': 'Rear-end collision at an intersection.'
    }])
    repository.insert('clients', [{
        'id': CLIENT_ID,
        'first_name': 'Jane',
        'last_name': 'Smith',
        'phone': client_phone
    }])
    repository.insert('profiles', [{
        'id': LAWYER_ID,
        'first_name': 'Alex',
        'last_name': 'Doe',
        'phone': lawyer_phone
    }])


def make_workflow(tmpdir, claude=None, sms=None, poll_interval=60, draft_delay=60, repository=None):
    """A workflow over in-memory records and files under tmpdir."""
    repository = repository or LocalRepository()
    if repository.get('cases', {'id': CASE_ID}) is None:
        seed_directory(repository)

    return build_workflow(
        repository=repository,
        file_store=LocalFileStore(os.path.join(tmpdir, 'uploads')),
        claude=claude or FakeClaude(),
        sms=sms or RecordingSms(),
        jobs=JobManager(),
        generator=DocumentGenerator(os.path.join(tmpdir, 'templates')),
        poll_interval=poll_interval,
        draft_delay=draft_delay
    )


DEFAULT_DOCUMENTS = {
    FORM_INTERROGATORIES: 'State your full name.',
    REQUESTS_FOR_ADMISSIONS: 'Admit that you were driving.',
}


def upload(workflow, documents=None, case_id=CASE_ID):
    for category, text in (documents or DEFAULT_DOCUMENTS).items():
        workflow.intake.submit(case_id, category, text.encode('utf-8'), 'text/plain',
                               file_name=f"{category}.txt", user_id=LAWYER_ID)


def drive_to_question_review(workflow, documents=None, case_id=CASE_ID):
    workflow.open(case_id, LAWYER_ID)
    upload(workflow, documents, case_id)
    workflow.advance(case_id)
    workflow.save_draft(case_id, case_type='Personal Injury')
    workflow.advance(case_id)
    workflow.select_client(case_id, CLIENT_ID)
    workflow.advance(case_id)


def answer_all(workflow, case_id=CASE_ID):
    state = workflow.get_state(case_id)
    for question in state.client_questions:
        workflow.questionnaires.save_answer(
            state.questionnaire_id, question.id, f"Answer to {question.original}"
        )


def drive_to_strategy(workflow, documents=None, case_id=CASE_ID):
    drive_to_question_review(workflow, documents, case_id)
    workflow.send_questionnaire(case_id)
    answer_all(workflow, case_id)
    return workflow.advance(case_id)
