from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional, Dict, Any
from datetime import datetime, timezone
import uuid


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


# Discovery categories, in the order questions are compiled and assembled
FORM_INTERROGATORIES = 'form_interrogatories'
REQUESTS_FOR_ADMISSIONS = 'requests_for_admissions'
REQUESTS_FOR_PRODUCTION = 'requests_for_production'
SPECIAL_INTERROGATORIES = 'special_interrogatories'

DISCOVERY_CATEGORIES = [
    FORM_INTERROGATORIES,
    REQUESTS_FOR_ADMISSIONS,
    REQUESTS_FOR_PRODUCTION,
    SPECIAL_INTERROGATORIES,
]

CATEGORY_LABELS = {
    FORM_INTERROGATORIES: 'Form Interrogatories',
    REQUESTS_FOR_ADMISSIONS: 'Requests for Admissions',
    REQUESTS_FOR_PRODUCTION: 'Requests for Production',
    SPECIAL_INTERROGATORIES: 'Special Interrogatories',
}

# Headings used in the assembled response document
REQUEST_HEADINGS = {
    FORM_INTERROGATORIES: 'FORM INTERROGATORY',
    REQUESTS_FOR_ADMISSIONS: 'REQUEST FOR ADMISSION',
    REQUESTS_FOR_PRODUCTION: 'REQUEST FOR PRODUCTION',
    SPECIAL_INTERROGATORIES: 'SPECIAL INTERROGATORY',
}

# Questionnaire status values
STATUS_PENDING = 'pending'
STATUS_IN_PROGRESS = 'in_progress'
STATUS_COMPLETED = 'completed'

NARRATIVE_STRENGTHS = ('strong', 'moderate', 'weak')
OBJECTION_OPTION_COUNT = 3


class Stage(IntEnum):
    """Ordered workflow stages for a discovery response."""
    UPLOAD = 1
    CASE_INFO = 2
    CLIENT_SELECT = 3
    QUESTION_REVIEW = 4
    AWAITING_CLIENT = 5
    STRATEGY_REVIEW = 6
    GENERATE = 7

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass
class Question:
    """A single question extracted from a discovery document."""
    id: str
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'text': self.text}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Question':
        return cls(id=str(data.get('id', '')), text=data.get('text', ''))


@dataclass
class DiscoveryDocumentRecord:
    """Extracted data for one uploaded discovery document, one per (case, category)."""
    case_id: str
    document_category: str
    file_name: str = ""
    file_path: str = ""
    file_size: int = 0
    file_type: str = ""
    document_type: str = ""
    propounding_party: str = ""
    responding_party: str = ""
    case_number: Optional[str] = None
    set_number: Optional[str] = None
    service_date: Optional[str] = None
    response_deadline: Optional[str] = None
    questions: List[Question] = field(default_factory=list)
    user_id: Optional[str] = None
    updated_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'case_id': self.case_id,
            'document_category': self.document_category,
            'file_name': self.file_name,
            'file_path': self.file_path,
            'file_size': self.file_size,
            'file_type': self.file_type,
            'document_type': self.document_type,
            'propounding_party': self.propounding_party,
            'responding_party': self.responding_party,
            'case_number': self.case_number,
            'set_number': self.set_number,
            'service_date': self.service_date,
            'response_deadline': self.response_deadline,
            'questions': [q.to_dict() for q in self.questions],
            'user_id': self.user_id,
            'updated_at': self.updated_at
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DiscoveryDocumentRecord':
        return cls(
            case_id=data['case_id'],
            document_category=data['document_category'],
            file_name=data.get('file_name') or '',
            file_path=data.get('file_path') or '',
            file_size=data.get('file_size') or 0,
            file_type=data.get('file_type') or '',
            document_type=data.get('document_type') or '',
            propounding_party=data.get('propounding_party') or '',
            responding_party=data.get('responding_party') or '',
            case_number=data.get('case_number'),
            set_number=data.get('set_number'),
            service_date=data.get('service_date'),
            response_deadline=data.get('response_deadline'),
            questions=[Question.from_dict(q) for q in data.get('questions') or []],
            user_id=data.get('user_id'),
            updated_at=data.get('updated_at') or utc_now()
        )


@dataclass
class ClientFacingQuestion:
    """
    A simplified, client-answerable version of a discovery question.

    `original` is the legal text; `generated` is the last text produced by
    the compiler or an explicit regeneration, which reset() restores.
    """
    id: str
    question: str
    original: str
    generated: str
    category: str = ""
    edited: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'question': self.question,
            'original': self.original,
            'generated': self.generated,
            'category': self.category,
            'edited': self.edited
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ClientFacingQuestion':
        question = data.get('question', '')
        return cls(
            id=str(data['id']),
            question=question,
            original=data.get('original', question),
            generated=data.get('generated', question),
            category=data.get('category', ''),
            edited=data.get('edited', False)
        )


@dataclass
class ClientQuestionnaire:
    """The questionnaire sent to a client for one case."""
    id: str
    case_id: str
    client_id: str
    lawyer_id: Optional[str] = None
    title: str = ""
    case_name: str = ""
    case_number: Optional[str] = None
    discovery_type: str = ""
    questions: List[ClientFacingQuestion] = field(default_factory=list)
    status: str = STATUS_PENDING
    total_questions: int = 0
    completed_questions: int = 0
    response_deadline: Optional[str] = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    completed_at: Optional[str] = None
    completion_notified_at: Optional[str] = None

    @classmethod
    def create_new(cls, case_id: str, client_id: str, **kwargs) -> 'ClientQuestionnaire':
        return cls(id=str(uuid.uuid4()), case_id=case_id, client_id=client_id, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'case_id': self.case_id,
            'client_id': self.client_id,
            'lawyer_id': self.lawyer_id,
            'title': self.title,
            'case_name': self.case_name,
            'case_number': self.case_number,
            'discovery_type': self.discovery_type,
            'questions': [q.to_dict() for q in self.questions],
            'status': self.status,
            'total_questions': self.total_questions,
            'completed_questions': self.completed_questions,
            'response_deadline': self.response_deadline,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
            'completed_at': self.completed_at,
            'completion_notified_at': self.completion_notified_at
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ClientQuestionnaire':
        return cls(
            id=data['id'],
            case_id=data['case_id'],
            client_id=data['client_id'],
            lawyer_id=data.get('lawyer_id'),
            title=data.get('title') or '',
            case_name=data.get('case_name') or '',
            case_number=data.get('case_number'),
            discovery_type=data.get('discovery_type') or '',
            questions=[ClientFacingQuestion.from_dict(q) for q in data.get('questions') or []],
            status=data.get('status', STATUS_PENDING),
            total_questions=data.get('total_questions', 0),
            completed_questions=data.get('completed_questions', 0),
            response_deadline=data.get('response_deadline'),
            created_at=data.get('created_at') or utc_now(),
            updated_at=data.get('updated_at') or utc_now(),
            completed_at=data.get('completed_at'),
            completion_notified_at=data.get('completion_notified_at')
        )

    def progress(self) -> Dict[str, Any]:
        return {
            'questionnaire_id': self.id,
            'status': self.status,
            'completed': self.completed_questions,
            'total': self.total_questions
        }


@dataclass
class QuestionResponse:
    """A client's answer to one questionnaire question."""
    id: str
    questionnaire_id: str
    question_id: str
    question_text: str
    response_text: Optional[str] = None
    updated_at: str = field(default_factory=utc_now)

    @classmethod
    def create_empty(cls, questionnaire_id: str, question: ClientFacingQuestion) -> 'QuestionResponse':
        return cls(
            id=str(uuid.uuid4()),
            questionnaire_id=questionnaire_id,
            question_id=question.id,
            question_text=question.question
        )

    @property
    def answered(self) -> bool:
        return bool(self.response_text and self.response_text.strip())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'questionnaire_id': self.questionnaire_id,
            'question_id': self.question_id,
            'question_text': self.question_text,
            'response_text': self.response_text,
            'updated_at': self.updated_at
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'QuestionResponse':
        return cls(
            id=data['id'],
            questionnaire_id=data['questionnaire_id'],
            question_id=str(data['question_id']),
            question_text=data.get('question_text') or '',
            response_text=data.get('response_text'),
            updated_at=data.get('updated_at') or utc_now()
        )


@dataclass
class CaseNarrative:
    """A candidate case strategy generated from the client's answers."""
    id: str
    title: str
    description: str
    strength: str = 'moderate'
    key_points: List[str] = field(default_factory=list)
    recommended_objections: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'strength': self.strength,
            'key_points': self.key_points,
            'recommended_objections': self.recommended_objections
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CaseNarrative':
        strength = data.get('strength', 'moderate')
        if strength not in NARRATIVE_STRENGTHS:
            strength = 'moderate'
        return cls(
            id=str(data['id']),
            title=data.get('title', ''),
            description=data.get('description', ''),
            strength=strength,
            key_points=list(data.get('key_points') or []),
            recommended_objections=list(data.get('recommended_objections') or [])
        )


@dataclass
class RequestObjectionSet:
    """
    Response candidates for one request: three objection options, an
    optional direct answer, and the choice used for assembly.
    """
    request_index: int
    question_id: str
    objections: List[Optional[str]] = field(default_factory=lambda: [None] * OBJECTION_OPTION_COUNT)
    selected_objection_index: Optional[int] = None
    direct_answer: Optional[str] = None
    use_direct_answer: bool = False

    def selected_response(self) -> Optional[str]:
        """Return the text that assembly should use, or None if unresolved."""
        if self.use_direct_answer:
            return self.direct_answer or None
        if self.selected_objection_index is not None:
            return self.objections[self.selected_objection_index] or None
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'request_index': self.request_index,
            'question_id': self.question_id,
            'objections': list(self.objections),
            'selected_objection_index': self.selected_objection_index,
            'direct_answer': self.direct_answer,
            'use_direct_answer': self.use_direct_answer
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RequestObjectionSet':
        objections = list(data.get('objections') or [])
        objections += [None] * (OBJECTION_OPTION_COUNT - len(objections))
        return cls(
            request_index=data['request_index'],
            question_id=str(data.get('question_id', '')),
            objections=objections[:OBJECTION_OPTION_COUNT],
            selected_objection_index=data.get('selected_objection_index'),
            direct_answer=data.get('direct_answer'),
            use_direct_answer=data.get('use_direct_answer', False)
        )


@dataclass
class ClientAnswer:
    """Snapshot of a client answer as used by the strategy stage."""
    question_id: str
    question: str
    response: str
    submitted_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'question_id': self.question_id,
            'question': self.question,
            'response': self.response,
            'submitted_at': self.submitted_at
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ClientAnswer':
        return cls(
            question_id=str(data['question_id']),
            question=data.get('question', ''),
            response=data.get('response', ''),
            submitted_at=data.get('submitted_at')
        )


@dataclass
class WorkflowState:
    """The persisted discovery-response workflow for one case."""
    case_id: str
    user_id: Optional[str] = None
    stage: Stage = Stage.UPLOAD
    case_type: Optional[str] = None
    detected_case_type: Optional[str] = None
    selected_client_id: Optional[str] = None
    client_questions: List[ClientFacingQuestion] = field(default_factory=list)
    questionnaire_id: Optional[str] = None
    has_client_responded: bool = False
    client_responses: List[ClientAnswer] = field(default_factory=list)
    case_narratives: List[CaseNarrative] = field(default_factory=list)
    selected_narrative_id: Optional[str] = None
    request_objections: List[RequestObjectionSet] = field(default_factory=list)
    narration_notes: str = ""
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def selected_narrative(self) -> Optional[CaseNarrative]:
        for narrative in self.case_narratives:
            if narrative.id == self.selected_narrative_id:
                return narrative
        return None

    def find_question(self, question_id: str) -> Optional[ClientFacingQuestion]:
        for question in self.client_questions:
            if question.id == question_id:
                return question
        return None

    def stage_payload(self) -> Dict[str, Any]:
        """The slice of state the current stage works on."""
        if self.stage == Stage.UPLOAD:
            return {}
        if self.stage == Stage.CASE_INFO:
            return {'case_type': self.case_type, 'detected_case_type': self.detected_case_type}
        if self.stage == Stage.CLIENT_SELECT:
            return {'selected_client_id': self.selected_client_id}
        if self.stage == Stage.QUESTION_REVIEW:
            return {'client_questions': [q.to_dict() for q in self.client_questions]}
        if self.stage == Stage.AWAITING_CLIENT:
            return {
                'questionnaire_id': self.questionnaire_id,
                'has_client_responded': self.has_client_responded
            }
        if self.stage == Stage.STRATEGY_REVIEW:
            return {
                'case_narratives': [n.to_dict() for n in self.case_narratives],
                'selected_narrative_id': self.selected_narrative_id,
                'request_objections': [r.to_dict() for r in self.request_objections],
                'narration_notes': self.narration_notes
            }
        return {'request_objections': [r.to_dict() for r in self.request_objections]}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'case_id': self.case_id,
            'user_id': self.user_id,
            'stage': int(self.stage),
            'case_type': self.case_type,
            'detected_case_type': self.detected_case_type,
            'selected_client_id': self.selected_client_id,
            'client_questions': [q.to_dict() for q in self.client_questions],
            'questionnaire_id': self.questionnaire_id,
            'has_client_responded': self.has_client_responded,
            'client_responses': [a.to_dict() for a in self.client_responses],
            'case_narratives': [n.to_dict() for n in self.case_narratives],
            'selected_narrative_id': self.selected_narrative_id,
            'request_objections': [r.to_dict() for r in self.request_objections],
            'narration_notes': self.narration_notes,
            'created_at': self.created_at,
            'updated_at': self.updated_at
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkflowState':
        return cls(
            case_id=data['case_id'],
            user_id=data.get('user_id'),
            stage=Stage(data.get('stage', Stage.UPLOAD)),
            case_type=data.get('case_type'),
            detected_case_type=data.get('detected_case_type'),
            selected_client_id=data.get('selected_client_id'),
            client_questions=[ClientFacingQuestion.from_dict(q) for q in data.get('client_questions') or []],
            questionnaire_id=data.get('questionnaire_id'),
            has_client_responded=data.get('has_client_responded', False),
            client_responses=[ClientAnswer.from_dict(a) for a in data.get('client_responses') or []],
            case_narratives=[CaseNarrative.from_dict(n) for n in data.get('case_narratives') or []],
            selected_narrative_id=data.get('selected_narrative_id'),
            request_objections=[RequestObjectionSet.from_dict(r) for r in data.get('request_objections') or []],
            narration_notes=data.get('narration_notes') or '',
            created_at=data.get('created_at') or utc_now(),
            updated_at=data.get('updated_at') or utc_now()
        )

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = utc_now()
