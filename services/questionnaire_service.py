"""
Questionnaire distribution and sync.

The lawyer side sends the questionnaire and polls its progress; the client
side saves answers. Completion notifies the lawyer exactly once, guarded by
the persisted `completion_notified_at` field on the questionnaire row.
"""
import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from config import Config
from models import (
    CATEGORY_LABELS, STATUS_COMPLETED, STATUS_IN_PROGRESS, STATUS_PENDING,
    ClientAnswer, ClientQuestionnaire, QuestionResponse, utc_now
)
from services.errors import NotFoundError, NotificationError, ValidationError
from services.intake import DiscoveryIntake
from services.record_store import Repository, get_repository
from services.sms_service import SmsService, sms_service
from services.state_store import CaseDirectory, WorkflowStateStore

logger = logging.getLogger(__name__)

QUESTIONNAIRES_TABLE = 'client_questionnaires'
RESPONSES_TABLE = 'client_responses'


class QuestionnaireService:

    def __init__(
        self,
        states: WorkflowStateStore,
        intake: DiscoveryIntake,
        directory: CaseDirectory,
        repository: Optional[Repository] = None,
        sms: Optional[SmsService] = None
    ):
        self.states = states
        self.intake = intake
        self.directory = directory
        self._repository = repository
        self.sms = sms or sms_service
        self._completion_lock = threading.Lock()

    @property
    def repository(self) -> Repository:
        if self._repository is None:
            self._repository = get_repository()
        return self._repository

    # Lawyer side

    def get(self, questionnaire_id: str) -> ClientQuestionnaire:
        row = self.repository.get(QUESTIONNAIRES_TABLE, {'id': questionnaire_id})
        if not row:
            raise NotFoundError(f"Questionnaire {questionnaire_id} not found",
                                details={'questionnaire_id': questionnaire_id})
        return ClientQuestionnaire.from_dict(row)

    def find_active(self, case_id: str, client_id: Optional[str]) -> Optional[ClientQuestionnaire]:
        """The most recent questionnaire for (case, client), if any."""
        if not client_id:
            return None
        rows = self.repository.select(
            QUESTIONNAIRES_TABLE,
            {'case_id': case_id, 'client_id': client_id},
            order_by='-created_at'
        )
        return ClientQuestionnaire.from_dict(rows[0]) if rows else None

    def send(self, case_id: str, lawyer_id: Optional[str] = None) -> Tuple[ClientQuestionnaire, List[str]]:
        """
        Create the questionnaire with one empty response per question and text the client.

        Sending again for the same client returns the existing questionnaire
        without creating another or re-notifying.
        """
        state = self.states.load(case_id)
        if not state.client_questions:
            raise ValidationError("There are no questions to send")
        if not state.selected_client_id:
            raise ValidationError("Select a client before sending the questionnaire")

        existing = self.find_active(case_id, state.selected_client_id)
        if existing:
            with self.states.editing(case_id) as state:
                state.questionnaire_id = existing.id
            return existing, ["A questionnaire was already sent to this client"]

        case = self.directory.get_case(case_id)
        client = self.directory.get_client(state.selected_client_id)
        records = self.intake.list(case_id)
        deadlines = [r.response_deadline for r in records if r.response_deadline]
        types = ', '.join(CATEGORY_LABELS[r.document_category] for r in records)
        case_name = self.directory.case_name(case)

        questionnaire = ClientQuestionnaire.create_new(
            case_id,
            state.selected_client_id,
            lawyer_id=lawyer_id or state.user_id,
            title=f"{case_name} - {types}" if types else case_name,
            case_name=case_name,
            case_number=self.directory.case_number(case),
            discovery_type=types,
            questions=list(state.client_questions),
            total_questions=len(state.client_questions),
            response_deadline=min(deadlines) if deadlines else None
        )

        self.repository.insert(QUESTIONNAIRES_TABLE, [questionnaire.to_dict()])
        self.repository.insert(RESPONSES_TABLE, [
            QuestionResponse.create_empty(questionnaire.id, q).to_dict()
            for q in questionnaire.questions
        ])

        with self.states.editing(case_id) as state:
            state.questionnaire_id = questionnaire.id
            state.has_client_responded = False
            state.client_responses = []

        logger.info(f"[{case_id}] Sent questionnaire {questionnaire.id} with {questionnaire.total_questions} questions")

        warnings = []
        warning = self._notify_client(questionnaire, client, 'questionnaire_sent', {
            'question_count': questionnaire.total_questions
        })
        if warning:
            warnings.append(warning)
        return questionnaire, warnings

    def poll(self, questionnaire_id: Optional[str]) -> Dict[str, Any]:
        """Read-only progress; tolerates a questionnaire that doesn't exist yet."""
        if not questionnaire_id:
            return {'questionnaire_id': None, 'status': None, 'completed': 0, 'total': 0}
        row = self.repository.get(QUESTIONNAIRES_TABLE, {'id': questionnaire_id})
        if not row:
            return {'questionnaire_id': questionnaire_id, 'status': None, 'completed': 0, 'total': 0}
        return ClientQuestionnaire.from_dict(row).progress()

    def update(self, case_id: str) -> ClientQuestionnaire:
        """
        Push the lawyer's current questions into the sent questionnaire.

        Response rows keep their answers; only question text changes, and
        questions without a row get an empty one.
        """
        state = self.states.load(case_id)
        if not state.questionnaire_id:
            raise ValidationError("No questionnaire has been sent for this case")
        questionnaire = self.get(state.questionnaire_id)

        rows = self.repository.select(RESPONSES_TABLE, {'questionnaire_id': questionnaire.id})
        by_question = {str(r['question_id']): QuestionResponse.from_dict(r) for r in rows}

        new_rows = []
        for question in state.client_questions:
            response = by_question.get(question.id)
            if response is None:
                new_rows.append(QuestionResponse.create_empty(questionnaire.id, question).to_dict())
            elif response.question_text != question.question:
                self.repository.update(
                    RESPONSES_TABLE,
                    {'question_text': question.question, 'updated_at': utc_now()},
                    {'id': response.id}
                )
        if new_rows:
            self.repository.insert(RESPONSES_TABLE, new_rows)

        questionnaire.questions = list(state.client_questions)
        questionnaire.total_questions = len(state.client_questions)
        questionnaire.updated_at = utc_now()
        self.repository.update(QUESTIONNAIRES_TABLE, {
            'questions': [q.to_dict() for q in questionnaire.questions],
            'total_questions': questionnaire.total_questions,
            'updated_at': questionnaire.updated_at
        }, {'id': questionnaire.id})

        logger.info(f"[{case_id}] Updated questionnaire {questionnaire.id} ({len(new_rows)} new questions)")
        return self._recount(questionnaire.id)

    def send_reminder(self, case_id: str) -> Dict[str, Any]:
        """Text the client how many questions remain. Failure is reported, not raised."""
        state = self.states.load(case_id)
        if not state.questionnaire_id:
            raise ValidationError("No questionnaire has been sent for this case")
        questionnaire = self.get(state.questionnaire_id)
        if questionnaire.status == STATUS_COMPLETED:
            raise ValidationError("The client has already completed this questionnaire")

        client = self.directory.get_client(questionnaire.client_id)
        remaining = questionnaire.total_questions - questionnaire.completed_questions
        warning = self._notify_client(questionnaire, client, 'reminder', {
            'question_count': questionnaire.total_questions,
            'remaining_questions': remaining
        })
        return {'sent': warning is None, 'remaining': remaining, 'warnings': [warning] if warning else []}

    def get_responses(self, questionnaire_id: str) -> List[QuestionResponse]:
        """Responses in questionnaire question order."""
        questionnaire = self.get(questionnaire_id)
        rows = self.repository.select(RESPONSES_TABLE, {'questionnaire_id': questionnaire_id})
        by_question = {str(r['question_id']): QuestionResponse.from_dict(r) for r in rows}
        return [by_question[q.id] for q in questionnaire.questions if q.id in by_question]

    def collect_answers(self, questionnaire_id: str) -> List[ClientAnswer]:
        """Snapshot of the client's answers for the strategy stage."""
        return [
            ClientAnswer(
                question_id=r.question_id,
                question=r.question_text,
                response=r.response_text or '',
                submitted_at=r.updated_at
            )
            for r in self.get_responses(questionnaire_id)
        ]

    # Client side

    def save_answer(self, questionnaire_id: str, question_id: str, text: Optional[str]) -> Dict[str, Any]:
        """
        Save one answer and recount progress.

        The save that completes the questionnaire notifies the lawyer; later
        saves, retries and concurrent saves never notify again.
        """
        if text is not None and not isinstance(text, str):
            raise ValidationError("The answer must be text",
                                  details={'question_id': question_id})

        row =self.repository.get(RESPONSES_TABLE, {'questionnaire_id': questionnaire_id,
                                                    'question_id': question_id})
        if not row:
            raise NotFoundError(f"Question {question_id} is not part of this questionnaire",
                                details={'questionnaire_id': questionnaire_id, 'question_id': question_id})

        self.repository.update(
            RESPONSES_TABLE,
            {'response_text': text, 'updated_at': utc_now()},
            {'id': row['id']}
        )
        questionnaire = self._recount(questionnaire_id)

        result = questionnaire.progress()
        result['warnings'] = []
        if questionnaire.status == STATUS_COMPLETED:
            warning = self._notify_completion(questionnaire_id)
            if warning:
                result['warnings'].append(warning)
        return result

    def _recount(self, questionnaire_id: str) -> ClientQuestionnaire:
        questionnaire = self.get(questionnaire_id)
        question_ids = {q.id for q in questionnaire.questions}
        rows = self.repository.select(RESPONSES_TABLE, {'questionnaire_id': questionnaire_id})
        answered = sum(
            1 for r in rows
            if str(r['question_id']) in question_ids and QuestionResponse.from_dict(r).answered
        )

        total = questionnaire.total_questions
        if total and answered >= total:
            status = STATUS_COMPLETED
        elif answered:
            status = STATUS_IN_PROGRESS
        else:
            status = STATUS_PENDING

        changes = {'completed_questions': answered, 'status': status, 'updated_at': utc_now()}
        if status == STATUS_COMPLETED and not questionnaire.completed_at:
            changes['completed_at'] = utc_now()
        self.repository.update(QUESTIONNAIRES_TABLE, changes, {'id': questionnaire_id})

        questionnaire.completed_questions = answered
        questionnaire.status = status
        questionnaire.completed_at = changes.get('completed_at', questionnaire.completed_at)
        return questionnaire

    def _notify_completion(self, questionnaire_id: str) -> Optional[str]:
        """Claim the completion guard, text the lawyer, release the guard on failure."""
        with self._completion_lock:
            # Conditional update: only one caller can move the guard off null
            claimed = self.repository.update(
                QUESTIONNAIRES_TABLE,
                {'completion_notified_at': utc_now()},
                {'id': questionnaire_id, 'completion_notified_at': None}
            )
        if not claimed:
            return None
        questionnaire = ClientQuestionnaire.from_dict(claimed[0])

        lawyer = self.directory.get_profile(questionnaire.lawyer_id)
        phone = (lawyer or {}).get('phone')
        if not phone:
            logger.warning(f"Questionnaire {questionnaire_id} completed but the lawyer has no phone number")
            return None

        client = self.directory.find_client(questionnaire.client_id)
        try:
            self._send_sms(phone, 'completion', {
                'client_name': self.directory.display_name(client) or 'Your client',
                'case_name': questionnaire.case_name,
                'question_count': questionnaire.total_questions,
                'lawyer_id': questionnaire.lawyer_id,
                'client_id': questionnaire.client_id,
                'case_id': questionnaire.case_id,
                'questionnaire_id': questionnaire_id
            })
        except NotificationError as e:
            # Release the guard so a later save can retry
            self.repository.update(QUESTIONNAIRES_TABLE, {'completion_notified_at': None}, {'id': questionnaire_id})
            logger.warning(f"Completion notification failed for questionnaire {questionnaire_id}: {e.message}")
            return f"The lawyer could not be notified: {e.details.get('reason')}"

        logger.info(f"Completion notification sent for questionnaire {questionnaire_id}")
        return None

    def _send_sms(self, phone: str, message_type: str, context: Dict[str, Any]) -> None:
        result = self.sms.send(phone, message_type, context)
        if not result.get('success'):
            raise NotificationError(
                f"{message_type} SMS failed: {result.get('error')}",
                details={'message_type': message_type, 'reason': result.get('error')}
            )

    def _notify_client(self, questionnaire: ClientQuestionnaire, client: Dict[str, Any],
                       message_type: str, extra: Dict[str, Any]) -> Optional[str]:
        """Text the client; returns a warning string on failure instead of raising."""
        phone = client.get('phone')
        if not phone:
            logger.warning(f"Client {questionnaire.client_id} has no phone number, skipping {message_type} SMS")
            return "The client has no phone number on file, so no text message was sent"

        lawyer = self.directory.get_profile(questionnaire.lawyer_id)
        context = {
            'client_name': client.get('first_name') or self.directory.display_name(client),
            'lawyer_name': self.directory.display_name(lawyer),
            'case_name': questionnaire.case_name,
            'deadline': questionnaire.response_deadline,
            'login_link': Config.CLIENT_PORTAL_URL,
            'lawyer_id': questionnaire.lawyer_id,
            'client_id': questionnaire.client_id,
            'case_id': questionnaire.case_id,
            'questionnaire_id': questionnaire.id
        }
        context.update(extra)

        try:
            self._send_sms(phone, message_type, context)
        except NotificationError as e:
            logger.warning(f"[{questionnaire.case_id}] {e.message}")
            return f"Text message could not be sent: {e.details.get('reason')}"
        return None
