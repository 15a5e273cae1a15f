"""
Builds the client-facing question set from every extracted discovery document.
"""
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional, Tuple

from config import Config
from models import ClientFacingQuestion, DiscoveryDocumentRecord
from services.claude_service import ClaudeAPIError, ClaudeService, claude_service
from services.debug import DebugTimer, debug_log
from services.errors import GenerationError, NotFoundError, ValidationError
from services.intake import DiscoveryIntake
from services.job_manager import JobManager, job_manager
from services.state_store import WorkflowStateStore

logger = logging.getLogger(__name__)


def source_questions(records: List[DiscoveryDocumentRecord]) -> List[dict]:
    """
    Flatten records into [{id, text, category}] in category order.

    Ids are "{category}-{question id}", suffixed if a document repeats a number.
    """
    questions = []
    seen = set()
    for record in records:
        for question in record.questions:
            qid = f"{record.document_category}-{question.id}"
            if qid in seen:
                n = 2
                while f"{qid}-{n}" in seen:
                    n += 1
                qid = f"{qid}-{n}"
            seen.add(qid)
            questions.append({'id': qid, 'text': question.text, 'category': record.document_category})
    return questions


class QuestionnaireCompiler:

    def __init__(
        self,
        states: WorkflowStateStore,
        intake: DiscoveryIntake,
        claude: Optional[ClaudeService] = None,
        jobs: Optional[JobManager] = None
    ):
        self.states = states
        self.intake = intake
        self.claude = claude or claude_service
        self.jobs = jobs or job_manager

    def compile(self, case_id: str, complaint_context: str = "") -> Tuple[List[ClientFacingQuestion], List[str]]:
        """
        Produce the client-facing questions for a case.

        A no-op when questions already exist, so revisiting the stage never
        regenerates over the lawyer's edits. Questions whose simplification
        failed keep their legal text and are reported in the warnings.
        """
        existing = self.states.load(case_id).client_questions
        if existing:
            debug_log("Compile skipped, questions exist", case_id=case_id, count=len(existing))
            return existing, []

        with self.jobs.busy(case_id, 'compile'):
            records = self.intake.list(case_id)
            sources = source_questions(records)
            if not sources:
                raise ValidationError("No discovery questions to compile. Upload at least one document.")

            try:
                with DebugTimer("Question simplification", case_id=case_id, questions=len(sources)):
                    simplified = self.claude.simplify_questions(
                        [{'id': q['id'], 'text': q['text']} for q in sources],
                        complaint_context
                    )
            except ClaudeAPIError as e:
                raise GenerationError(f"Could not simplify questions: {e.message}",
                                      retryable=e.retryable, details={'error_code': e.error_code}) from e

            if not simplified:
                raise GenerationError("Could not simplify any questions. Please try again.")

            warnings = []
            questions = []
            for source in sources:
                text = simplified.get(source['id'])
                if text is None:
                    warnings.append(f"Question {source['id']} could not be simplified; using the original text")
                    text = source['text']
                questions.append(ClientFacingQuestion(
                    id=source['id'],
                    question=text,
                    original=source['text'],
                    generated=text,
                    category=source['category']
                ))

            with self.states.editing(case_id) as state:
                if state.client_questions:
                    return state.client_questions, []
                state.client_questions = questions

        logger.info(f"[{case_id}] Compiled {len(questions)} client questions ({len(warnings)} fell back)")
        return questions, warnings

    def list_questions(self, case_id: str) -> List[ClientFacingQuestion]:
        return self.states.load(case_id).client_questions

    def edit(self, case_id: str, question_id: str, text: str) -> ClientFacingQuestion:
        """Manually replace a question's client-facing text."""
        text = (text or '').strip()
        if not text:
            raise ValidationError("Question text cannot be empty")

        with self.states.editing(case_id) as state:
            question = self._find(state, question_id)
            question.question = text
            question.edited = text != question.generated
        return question

    def ai_edit(self, case_id: str, question_id: str, instruction: str) -> ClientFacingQuestion:
        """Rewrite one question following a free-form instruction."""
        instruction = (instruction or '').strip()
        if not instruction:
            raise ValidationError("An edit instruction is required")

        current = self._find(self.states.load(case_id), question_id)
        with self.jobs.busy(case_id, f"ai_edit_{question_id}"):
            try:
                text = self.claude.edit_question(current.question, instruction)
            except ClaudeAPIError as e:
                raise GenerationError(f"Could not edit the question: {e.message}",
                                      retryable=e.retryable, details={'question_id': question_id}) from e

            with self.states.editing(case_id) as state:
                question = self._find(state, question_id)
                question.question = text
                question.edited = text != question.generated
        return question

    def bulk_ai_edit(self, case_id: str, instruction: str) -> Tuple[List[ClientFacingQuestion], List[str]]:
        """Apply one instruction to every question; failed questions stay as they were."""
        instruction = (instruction or '').strip()
        if not instruction:
            raise ValidationError("An edit instruction is required")

        current = self.states.load(case_id).client_questions
        if not current:
            raise ValidationError("There are no questions to edit")

        edited = {}
        warnings = []
        with self.jobs.busy(case_id, 'bulk_ai_edit'):
            num_workers = min(len(current), Config.MAX_PARALLEL_WORKERS)
            with ThreadPoolExecutor(max_workers=num_workers) as executor:
                future_to_id = {
                    executor.submit(self.claude.edit_question, q.question, instruction): q.id
                    for q in current
                }
                for future in as_completed(future_to_id):
                    question_id = future_to_id[future]
                    try:
                        edited[question_id] = future.result(timeout=120)
                    except ClaudeAPIError as e:
                        logger.warning(f"[{case_id}] AI edit failed for {question_id}: {e.message}")
                        warnings.append(f"Question {question_id} could not be edited: {e.message}")
                    except Exception as e:
                        logger.error(f"[{case_id}] AI edit failed unexpectedly for {question_id}: {e}")
                        warnings.append(f"Question {question_id} could not be edited")

            with self.states.editing(case_id) as state:
                for question in state.client_questions:
                    if question.id in edited:
                        question.question = edited[question.id]
                        question.edited = question.question != question.generated
                questions = state.client_questions

        return questions, warnings

    def reset(self, case_id: str, question_id: str) -> ClientFacingQuestion:
        """Restore a question to its last generated text."""
        with self.states.editing(case_id) as state:
            question = self._find(state, question_id)
            question.question = question.generated
            question.edited = False
        return question

    @staticmethod
    def _find(state, question_id: str) -> ClientFacingQuestion:
        question = state.find_question(question_id)
        if not question:
            raise NotFoundError(f"Question {question_id} not found", details={'question_id': question_id})
        return question
