"""
Strategy and objection generation.

Narratives are generated in one batch from the client's answers. With a
narrative selected, each request gets three objection options, one per
fixed focus, generated concurrently; a failed option leaves its slot empty
and never blocks its siblings. Every generation call depends only on the
request text, its client answer, the selected narrative and the focus, so
re-issuing one only overwrites the slot it targets.
"""
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Dict, List, Optional, Tuple

from config import Config
from models import OBJECTION_OPTION_COUNT, CaseNarrative, RequestObjectionSet, WorkflowState
from services.claude_service import ClaudeAPIError, ClaudeService, claude_service
from services.debug import DebugTimer, debug_log
from services.errors import GenerationError, NotFoundError, ValidationError
from services.job_manager import JobManager, job_manager
from services.state_store import WorkflowStateStore

logger = logging.getLogger(__name__)

KIND_OBJECTION = 'objection'
KIND_DIRECT = 'direct'


def pick_default_narrative(narratives: List[CaseNarrative]) -> Optional[str]:
    """First strong narrative, else the first one."""
    for narrative in narratives:
        if narrative.strength == 'strong':
            return narrative.id
    return narratives[0].id if narratives else None


def request_inputs(state: WorkflowState) -> List[Dict[str, str]]:
    """
    The requests in response order, each with its legal text and client answer.

    Requests follow the client's answers; the legal text comes from the
    matching client-facing question when it is still present.
    """
    requests = []
    for answer in state.client_responses:
        question = state.find_question(answer.question_id)
        requests.append({
            'question_id': answer.question_id,
            'request_text': question.original if question else answer.question,
            'category': question.category if question else '',
            'answer': answer.response or ''
        })
    return requests


class StrategyEngine:

    def __init__(
        self,
        states: WorkflowStateStore,
        claude: Optional[ClaudeService] = None,
        jobs: Optional[JobManager] = None
    ):
        self.states = states
        self.claude = claude or claude_service
        self.jobs = jobs or job_manager

    # Narratives

    def generate_narratives(self, case_id: str, regenerate: bool = False,
                            case_context: str = "") -> List[CaseNarrative]:
        """
        Generate the narrative batch, auto-selecting the default one.

        Without `regenerate` this is a no-op once narratives exist. With it,
        the whole batch is replaced; objections are left alone.
        """
        state = self.states.load(case_id)
        if state.case_narratives and not regenerate:
            return state.case_narratives
        if not state.client_responses:
            raise ValidationError("No client responses are available yet")

        answers = [{'question': a.question, 'response': a.response} for a in state.client_responses]

        with self.jobs.busy(case_id, 'narratives'):
            try:
                with DebugTimer("Narrative generation", case_id=case_id, answers=len(answers)):
                    raw = self.claude.generate_narratives(answers, case_context)
            except ClaudeAPIError as e:
                raise GenerationError(f"Could not generate case narratives: {e.message}",
                                      retryable=e.retryable, details={'error_code': e.error_code}) from e

            narratives = [
                CaseNarrative.from_dict({**item, 'id': f"narrative_{uuid.uuid4().hex[:8]}"})
                for item in raw
                if item.get('title') or item.get('description')
            ]
            if not narratives:
                raise GenerationError("No case narratives were generated. Please try again.")

            with self.states.editing(case_id) as state:
                state.case_narratives = narratives
                state.selected_narrative_id = pick_default_narrative(narratives)

        logger.info(f"[{case_id}] Generated {len(narratives)} narratives, selected {state.selected_narrative_id}")
        return narratives

    def select_narrative(self, case_id: str, narrative_id: str) -> CaseNarrative:
        with self.states.editing(case_id) as state:
            for narrative in state.case_narratives:
                if narrative.id == narrative_id:
                    state.selected_narrative_id = narrative_id
                    return narrative
            raise NotFoundError(f"Narrative {narrative_id} not found", details={'narrative_id': narrative_id})

    # Objections

    def generate_objections(self, case_id: str) -> Tuple[List[RequestObjectionSet], List[str]]:
        """Generate objection options for every request; a no-op once they exist."""
        state = self.states.load(case_id)
        if state.request_objections:
            return state.request_objections, []
        return self._generate_all(case_id)

    def regenerate_all(self, case_id: str) -> Tuple[List[RequestObjectionSet], List[str]]:
        """Discard every objection set and generate a fresh batch."""
        return self._generate_all(case_id)

    def _generate_all(self, case_id: str) -> Tuple[List[RequestObjectionSet], List[str]]:
        state = self.states.load(case_id)
        narrative = self._require_narrative(state)
        requests = request_inputs(state)
        if not requests:
            raise ValidationError("No client responses are available yet")

        sets = [RequestObjectionSet(request_index=i, question_id=r['question_id']) for i, r in enumerate(requests)]
        warnings = []

        with self.jobs.busy(case_id, 'objections'):
            tasks = [(i, k) for i in range(len(requests)) for k in range(OBJECTION_OPTION_COUNT)]
            num_workers = min(len(tasks), Config.MAX_PARALLEL_WORKERS)
            logger.info(f"[{case_id}] Generating {len(tasks)} objection options with {num_workers} workers")

            with ThreadPoolExecutor(max_workers=num_workers) as executor:
                future_to_slot = {
                    executor.submit(
                        self.claude.generate_objection_option,
                        requests[i]['request_text'],
                        requests[i]['answer'],
                        narrative.description,
                        k
                    ): (i, k)
                    for i, k in tasks
                }

                for future in as_completed(future_to_slot):
                    i, k = future_to_slot[future]
                    try:
                        sets[i].objections[k] = future.result(timeout=120)
                    except ClaudeAPIError as e:
                        logger.warning(f"[{case_id}] Option {k + 1} for request {i + 1} failed: {e.message}")
                        warnings.append(f"Request {i + 1}, option {k + 1} could not be generated")
                    except Exception as e:
                        logger.error(f"[{case_id}] Option {k + 1} for request {i + 1} failed unexpectedly: {e}")
                        warnings.append(f"Request {i + 1}, option {k + 1} could not be generated")

            with self.states.editing(case_id) as state:
                state.request_objections = sets

        debug_log("Objections generated", case_id=case_id, requests=len(sets), failures=len(warnings))
        return sets, sorted(warnings)

    def regenerate_option(self, case_id: str, request_index: int, option_index: int) -> RequestObjectionSet:
        """Replace exactly one option; everything else in the set is untouched."""
        state = self.states.load(case_id)
        narrative = self._require_narrative(state)
        request = self._request(state, request_index)
        self._objection_set(state, request_index)
        self._check_option_index(option_index)

        with self.jobs.busy(case_id, f"option_{request_index}_{option_index}"):
            try:
                text = self.claude.generate_objection_option(
                    request['request_text'], request['answer'], narrative.description, option_index
                )
            except ClaudeAPIError as e:
                raise GenerationError(
                    f"Could not regenerate option {option_index + 1}: {e.message}",
                    retryable=e.retryable,
                    details={'request_index': request_index, 'option_index': option_index}
                ) from e

            with self.states.editing(case_id) as state:
                objection_set = self._objection_set(state, request_index)
                objection_set.objections[option_index] = text
        return objection_set

    def generate_direct_answer(self, case_id: str, request_index: int) -> RequestObjectionSet:
        """Draft and store a direct answer, then make it the selected response."""
        state = self.states.load(case_id)
        request = self._request(state, request_index)
        self._objection_set(state, request_index)

        with self.jobs.busy(case_id, f"direct_{request_index}"):
            try:
                text = self.claude.generate_direct_answer(request['request_text'], request['answer'])
            except ClaudeAPIError as e:
                raise GenerationError(f"Could not generate a direct answer: {e.message}",
                                      retryable=e.retryable, details={'request_index': request_index}) from e

            with self.states.editing(case_id) as state:
                objection_set = self._objection_set(state, request_index)
                objection_set.direct_answer = text
                objection_set.use_direct_answer = True
                objection_set.selected_objection_index = None
        return objection_set

    def select_response(self, case_id: str, request_index: int, kind: str,
                        option_index: Optional[int] = None) -> RequestObjectionSet:
        """
        Record which response assembly uses for a request.

        Choosing one kind clears the other's selection but keeps its text.
        """
        with self.states.editing(case_id) as state:
            objection_set = self._objection_set(state, request_index)
            if kind == KIND_DIRECT:
                if not objection_set.direct_answer:
                    raise ValidationError("Generate a direct answer before selecting it")
                objection_set.use_direct_answer = True
                objection_set.selected_objection_index = None
            elif kind == KIND_OBJECTION:
                self._check_option_index(option_index)
                if not objection_set.objections[option_index]:
                    raise ValidationError(f"Option {option_index + 1} is empty; regenerate it before selecting")
                objection_set.selected_objection_index = option_index
                objection_set.use_direct_answer = False
            else:
                raise ValidationError(f"Unknown response kind: {kind}",
                                      details={'allowed': [KIND_OBJECTION, KIND_DIRECT]})
        return objection_set

    def edit_option(self, case_id: str, request_index: int, option_index: int, text: str) -> RequestObjectionSet:
        """Manually replace one option's text."""
        text = (text or '').strip()
        if not text:
            raise ValidationError("Objection text cannot be empty")
        self._check_option_index(option_index)

        with self.states.editing(case_id) as state:
            objection_set = self._objection_set(state, request_index)
            objection_set.objections[option_index] = text
        return objection_set

    def ai_edit_option(self, case_id: str, request_index: int, option_index: int,
                       instruction: str) -> RequestObjectionSet:
        """Rewrite one option following a free-form instruction."""
        instruction = (instruction or '').strip()
        if not instruction:
            raise ValidationError("An edit instruction is required")
        self._check_option_index(option_index)

        current = self._objection_set(self.states.load(case_id), request_index).objections[option_index]
        if not current:
            raise ValidationError(f"Option {option_index + 1} is empty; regenerate it before editing")

        with self.jobs.busy(case_id, f"option_{request_index}_{option_index}"):
            try:
                text = self.claude.edit_objection(current, instruction)
            except ClaudeAPIError as e:
                raise GenerationError(
                    f"Could not edit option {option_index + 1}: {e.message}",
                    retryable=e.retryable,
                    details={'request_index': request_index, 'option_index': option_index}
                ) from e

            with self.states.editing(case_id) as state:
                objection_set = self._objection_set(state, request_index)
                objection_set.objections[option_index] = text
        return objection_set

    def status(self, case_id: str) -> Dict[str, Any]:
        state = self.states.load(case_id)
        resolved = sum(1 for s in state.request_objections if s.selected_response())
        return {
            'case_narratives': [n.to_dict() for n in state.case_narratives],
            'selected_narrative_id': state.selected_narrative_id,
            'request_objections': [s.to_dict() for s in state.request_objections],
            'resolved': resolved,
            'total': len(state.request_objections)
        }

    # Helpers

    @staticmethod
    def _require_narrative(state: WorkflowState) -> CaseNarrative:
        narrative = state.selected_narrative()
        if not narrative:
            raise ValidationError("Select a case narrative first")
        return narrative

    @staticmethod
    def _request(state: WorkflowState, request_index: int) -> Dict[str, str]:
        requests = request_inputs(state)
        if not 0 <= request_index < len(requests):
            raise NotFoundError(f"Request {request_index} not found", details={'request_index': request_index})
        return requests[request_index]

    @staticmethod
    def _objection_set(state: WorkflowState, request_index: int) -> RequestObjectionSet:
        if not state.request_objections:
            raise ValidationError("Generate objections first")
        for objection_set in state.request_objections:
            if objection_set.request_index == request_index:
                return objection_set
        raise NotFoundError(f"Request {request_index} not found", details={'request_index': request_index})

    @staticmethod
    def _check_option_index(option_index: Optional[int]) -> None:
        if option_index is None or not 0 <= option_index < OBJECTION_OPTION_COUNT:
            raise ValidationError(f"Option index must be between 0 and {OBJECTION_OPTION_COUNT - 1}")
