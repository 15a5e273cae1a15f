"""
The discovery response workflow: one persisted record per case, moved
through ordered stages by explicit transition functions.

    UPLOAD -> CASE_INFO -> CLIENT_SELECT -> QUESTION_REVIEW
           -> AWAITING_CLIENT -> STRATEGY_REVIEW -> GENERATE

Forward transitions are guarded; going back is always allowed and never
deletes anything. While a case sits in AWAITING_CLIENT a background poller
watches the questionnaire and records the client's answers on completion.
"""
import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from config import Config
from models import STATUS_COMPLETED, ClientQuestionnaire, Stage, WorkflowState
from services.claude_service import ClaudeService
from services.document_generator import DocumentGenerator, document_generator
from services.errors import GenerationError, ValidationError
from services.extraction import ExtractionAdapter
from services.file_store import FileStore
from services.intake import DiscoveryIntake
from services.job_manager import JobManager
from services.questionnaire_compiler import QuestionnaireCompiler
from services.questionnaire_service import QuestionnaireService
from services.record_store import Repository
from services.response_assembly import ResponseAssembler
from services.scheduling import Debouncer, PeriodicPoller
from services.sms_service import SmsService
from services.state_store import CaseDirectory, WorkflowStateStore
from services.strategy_engine import StrategyEngine

logger = logging.getLogger(__name__)

DRAFT_FIELDS = ('case_type', 'narration_notes')


class DiscoveryWorkflow:

    def __init__(
        self,
        states: WorkflowStateStore,
        directory: CaseDirectory,
        intake: DiscoveryIntake,
        compiler: QuestionnaireCompiler,
        questionnaires: QuestionnaireService,
        strategy: StrategyEngine,
        assembler: ResponseAssembler,
        generator: Optional[DocumentGenerator] = None,
        poll_interval: Optional[float] = None,
        draft_delay: Optional[float] = None
    ):
        self.states = states
        self.directory = directory
        self.intake = intake
        self.compiler = compiler
        self.questionnaires = questionnaires
        self.strategy = strategy
        self.assembler = assembler
        self.generator = generator or document_generator
        self.poll_interval = poll_interval if poll_interval is not None else Config.POLL_INTERVAL_SECONDS
        self.draft_delay = draft_delay if draft_delay is not None else Config.DRAFT_DEBOUNCE_SECONDS

        self._lock = threading.Lock()
        self._watchers: Dict[str, PeriodicPoller] = {}
        self._debouncers: Dict[str, Debouncer] = {}
        self._drafts: Dict[str, Dict[str, Any]] = {}

    # Loading and closing

    def open(self, case_id: str, user_id: Optional[str] = None) -> WorkflowState:
        """
        Load a case's workflow, resuming at AWAITING_CLIENT if a questionnaire
        was already sent to the selected client.
        """
        case = self.directory.get_case(case_id)

        with self.states.editing(case_id, user_id) as state:
            if state.detected_case_type is None:
                state.detected_case_type = self.directory.detected_case_type(case)
            if not state.case_type:
                state.case_type = state.detected_case_type
            self._resume_from_questionnaire(state)

        if state.stage == Stage.AWAITING_CLIENT:
            self._start_watcher(case_id, state.questionnaire_id)
        return state

    def close(self, case_id: str) -> None:
        """Stop the questionnaire watcher and drop unsaved drafts for the case."""
        self._stop_watcher(case_id)
        with self._lock:
            debouncer = self._debouncers.pop(case_id, None)
            self._drafts.pop(case_id, None)
        if debouncer:
            debouncer.cancel()
        logger.info(f"[{case_id}] Workflow closed")

    def shutdown(self) -> None:
        with self._lock:
            case_ids = set(self._watchers) | set(self._debouncers)
        for case_id in case_ids:
            self.close(case_id)

    def get_state(self, case_id: str) -> WorkflowState:
        state = self.states.load(case_id)
        self._apply_pending_drafts(case_id, state)
        return state

    def _resume_from_questionnaire(self, state: WorkflowState) -> Optional[ClientQuestionnaire]:
        questionnaire = self.questionnaires.find_active(state.case_id, state.selected_client_id)
        if not questionnaire:
            # A questionnaire belongs to one client; a different client starts unsent
            if state.questionnaire_id:
                logger.info(f"[{state.case_id}] Client changed, dropping questionnaire {state.questionnaire_id}")
            state.questionnaire_id = None
            state.has_client_responded = False
            state.client_responses = []
            return None

        state.questionnaire_id = questionnaire.id
        if not state.client_questions and questionnaire.questions:
            state.client_questions = list(questionnaire.questions)
        if state.stage < Stage.QUESTION_REVIEW:
            logger.info(f"[{state.case_id}] Questionnaire {questionnaire.id} exists, resuming at awaiting_client")
            state.stage = Stage.AWAITING_CLIENT
        return questionnaire

    # Transitions

    def advance(self, case_id: str) -> Tuple[WorkflowState, List[str]]:
        """Move to the next stage if the current stage's guard passes."""
        self.flush_drafts(case_id)
        state = self.states.load(case_id)
        warnings: List[str] = []

        if state.stage == Stage.UPLOAD:
            if not self.intake.has_any(case_id):
                raise ValidationError("Upload at least one discovery document to continue")
            next_stage = Stage.CASE_INFO

        elif state.stage == Stage.CASE_INFO:
            if not state.case_type:
                raise ValidationError("Select a case type to continue")
            next_stage = Stage.CLIENT_SELECT

        elif state.stage == Stage.CLIENT_SELECT:
            if not state.selected_client_id:
                raise ValidationError("Select a client to continue")
            _, compile_warnings = self.compiler.compile(case_id, self._case_context(case_id, state))
            warnings.extend(compile_warnings)
            next_stage = Stage.QUESTION_REVIEW

        elif state.stage == Stage.QUESTION_REVIEW:
            if not self.questionnaires.find_active(case_id, state.selected_client_id):
                raise ValidationError("Send the questionnaire to the client to continue")
            next_stage = Stage.AWAITING_CLIENT

        elif state.stage == Stage.AWAITING_CLIENT:
            if not self.check_client_completion(case_id):
                raise ValidationError("Please wait for the client to complete the questionnaire")
            next_stage = Stage.STRATEGY_REVIEW

        elif state.stage == Stage.STRATEGY_REVIEW:
            next_stage = Stage.GENERATE

        else:
            raise ValidationError("Already at the final stage")

        state = self._move_to(case_id, next_stage)

        if next_stage == Stage.STRATEGY_REVIEW and not state.case_narratives:
            try:
                self.strategy.generate_narratives(case_id, case_context=self._case_context(case_id, state))
            except GenerationError as e:
                logger.warning(f"[{case_id}] Narrative generation failed on entering strategy review: {e.message}")
                warnings.append(e.message)
            state = self.states.load(case_id)

        return state, warnings

    def go_back(self, case_id: str) -> WorkflowState:
        """Step back one stage. Nothing is deleted."""
        self.flush_drafts(case_id)
        state = self.states.load(case_id)
        return self._move_to(case_id, Stage(max(state.stage - 1, Stage.UPLOAD)))

    def _move_to(self, case_id: str, stage: Stage) -> WorkflowState:
        with self.states.editing(case_id) as state:
            previous = state.stage
            state.stage = stage

        if stage == Stage.AWAITING_CLIENT and not state.has_client_responded:
            self._start_watcher(case_id, state.questionnaire_id)
        elif previous == Stage.AWAITING_CLIENT:
            self._stop_watcher(case_id)

        logger.info(f"[{case_id}] Stage {previous.label} -> {stage.label}")
        return state

    # Lawyer inputs

    def select_client(self, case_id: str, client_id: str) -> WorkflowState:
        self.directory.get_client(client_id)
        with self.states.editing(case_id) as state:
            state.selected_client_id = client_id
            self._resume_from_questionnaire(state)

        if state.stage == Stage.AWAITING_CLIENT:
            self._start_watcher(case_id, state.questionnaire_id)
        return state

    def save_draft(self, case_id: str, **fields) -> Dict[str, Any]:
        """
        Queue draft field changes (case type, narration notes).

        Writes are debounced per case; only the latest value of each field
        is persisted once edits pause.
        """
        unknown = set(fields) - set(DRAFT_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown draft fields: {', '.join(sorted(unknown))}",
                                  details={'allowed': list(DRAFT_FIELDS)})

        with self._lock:
            pending = self._drafts.setdefault(case_id, {})
            pending.update(fields)
            debouncer = self._debouncers.get(case_id)
            if debouncer is None:
                debouncer = self._debouncers[case_id] = Debouncer(self.draft_delay)
            snapshot = dict(pending)

        debouncer.call(lambda: self._write_draft(case_id))
        return snapshot

    def flush_drafts(self, case_id: str) -> None:
        with self._lock:
            debouncer = self._debouncers.get(case_id)
        if debouncer and debouncer.pending:
            debouncer.flush()

    def _write_draft(self, case_id: str) -> None:
        with self._lock:
            fields = self._drafts.pop(case_id, None)
        if not fields:
            return
        with self.states.editing(case_id) as state:
            for name, value in fields.items():
                setattr(state, name, value)
        logger.debug(f"[{case_id}] Saved draft fields: {', '.join(sorted(fields))}")

    def _apply_pending_drafts(self, case_id: str, state: WorkflowState) -> None:
        with self._lock:
            fields = dict(self._drafts.get(case_id) or {})
        for name, value in fields.items():
            setattr(state, name, value)

    # Questionnaire

    def send_questionnaire(self, case_id: str, lawyer_id: Optional[str] = None) -> Tuple[ClientQuestionnaire, List[str]]:
        questionnaire, warnings = self.questionnaires.send(case_id, lawyer_id)
        state = self.states.load(case_id)
        if state.stage < Stage.AWAITING_CLIENT:
            self._move_to(case_id, Stage.AWAITING_CLIENT)
        return questionnaire, warnings

    def update_questionnaire(self, case_id: str) -> ClientQuestionnaire:
        questionnaire = self.questionnaires.update(case_id)
        state = self.states.load(case_id)
        if state.stage < Stage.AWAITING_CLIENT:
            self._move_to(case_id, Stage.AWAITING_CLIENT)
        return questionnaire

    def check_client_completion(self, case_id: str) -> bool:
        """
        Poll the questionnaire once; on completion, record the client's answers.

        Returns True once the client has responded.
        """
        state = self.states.load(case_id)
        progress = self.questionnaires.poll(state.questionnaire_id)
        if progress['status'] != STATUS_COMPLETED:
            return False

        answers = self.questionnaires.collect_answers(state.questionnaire_id)
        with self.states.editing(case_id) as state:
            state.has_client_responded = True
            state.client_responses = answers
        logger.info(f"[{case_id}] Client completed questionnaire {state.questionnaire_id}")
        return True

    def _start_watcher(self, case_id: str, questionnaire_id: Optional[str]) -> None:
        if not questionnaire_id:
            return
        with self._lock:
            watcher = self._watchers.get(case_id)
            if watcher and watcher.running:
                return
            watcher = PeriodicPoller(
                self.poll_interval,
                lambda: self.check_client_completion(case_id),
                name=f"questionnaire-{case_id}"
            )
            self._watchers[case_id] = watcher
        watcher.start()

    def _stop_watcher(self, case_id: str) -> None:
        with self._lock:
            watcher = self._watchers.pop(case_id, None)
        if watcher:
            watcher.cancel()

    def is_watching(self, case_id: str) -> bool:
        with self._lock:
            watcher = self._watchers.get(case_id)
        return bool(watcher and watcher.running)

    # Strategy

    def generate_narratives(self, case_id: str, regenerate: bool = False):
        state = self.states.load(case_id)
        return self.strategy.generate_narratives(
            case_id, regenerate=regenerate, case_context=self._case_context(case_id, state)
        )

    # Output

    def assemble(self, case_id: str) -> Dict[str, Any]:
        readiness = self.assembler.readiness(case_id)
        return {'text': self.assembler.assemble(case_id), **readiness}

    def export_docx(self, case_id: str) -> str:
        header, sections = self.assembler.build(case_id)
        return self.generator.generate_response(header, sections)

    def _case_context(self, case_id: str, state: WorkflowState) -> str:
        case = self.directory.get_case(case_id)
        lines = [f"Case: {self.directory.case_name(case)}"]
        case_type = state.case_type or state.detected_case_type
        if case_type:
            lines.append(f"Case type: {case_type}")
        if case.get('description'):
            lines.append(f"Summary: {case['description']}")
        return "\n".join(lines)


def build_workflow(
    repository: Optional[Repository] = None,
    file_store: Optional[FileStore] = None,
    claude: Optional[ClaudeService] = None,
    sms: Optional[SmsService] = None,
    jobs: Optional[JobManager] = None,
    generator: Optional[DocumentGenerator] = None,
    poll_interval: Optional[float] = None,
    draft_delay: Optional[float] = None
) -> DiscoveryWorkflow:
    """Wire the workflow and its stages over one repository."""
    states = WorkflowStateStore(repository)
    directory = CaseDirectory(repository)
    intake = DiscoveryIntake(repository, file_store, ExtractionAdapter(claude), jobs)
    questionnaires = QuestionnaireService(states, intake, directory, repository, sms)
    strategy = StrategyEngine(states, claude, jobs)

    return DiscoveryWorkflow(
        states=states,
        directory=directory,
        intake=intake,
        compiler=QuestionnaireCompiler(states, intake, claude, jobs),
        questionnaires=questionnaires,
        strategy=strategy,
        assembler=ResponseAssembler(states, directory),
        generator=generator,
        poll_interval=poll_interval,
        draft_delay=draft_delay
    )


# Global instance
_workflow = None


def get_workflow() -> DiscoveryWorkflow:
    global _workflow
    if _workflow is None:
        _workflow = build_workflow()
    return _workflow


def configure_workflow(workflow: Optional[DiscoveryWorkflow]) -> None:
    """Replace the global workflow (tests and alternative wiring)."""
    global _workflow
    if _workflow is not None and _workflow is not workflow:
        _workflow.shutdown()
    _workflow = workflow
