import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Optional

from models import WorkflowState
from services.errors import NotFoundError
from services.record_store import Repository, get_repository

logger = logging.getLogger(__name__)

RESPONSE_DATA_TABLE = 'discovery_response_data'
CASES_TABLE = 'cases'
CLIENTS_TABLE = 'clients'
PROFILES_TABLE = 'profiles'


class WorkflowStateStore:
    """Loads and saves the one workflow record per case."""

    def __init__(self, repository: Optional[Repository] = None):
        self._repository = repository
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @property
    def repository(self) -> Repository:
        if self._repository is None:
            self._repository = get_repository()
        return self._repository

    def lock(self, case_id: str) -> threading.RLock:
        with self._locks_guard:
            if case_id not in self._locks:
                self._locks[case_id] = threading.RLock()
            return self._locks[case_id]

    def get(self, case_id: str) -> Optional[WorkflowState]:
        row = self.repository.get(RESPONSE_DATA_TABLE, {'case_id': case_id})
        return WorkflowState.from_dict(row) if row else None

    def load(self, case_id: str, user_id: Optional[str] = None) -> WorkflowState:
        """Get the saved state, or a fresh unsaved one at the first stage."""
        state = self.get(case_id)
        if state is None:
            state = WorkflowState(case_id=case_id, user_id=user_id)
        elif user_id and not state.user_id:
            state.user_id = user_id
        return state

    def save(self, state: WorkflowState) -> WorkflowState:
        state.touch()
        self.repository.upsert_by_key(RESPONSE_DATA_TABLE, state.to_dict(), ['case_id'])
        return state

    @contextmanager
    def editing(self, case_id: str, user_id: Optional[str] = None):
        """
        Load, mutate and save a case's state under its lock.

        Nothing is saved if the block raises.
        """
        with self.lock(case_id):
            state = self.load(case_id, user_id)
            yield state
            self.save(state)


class CaseDirectory:
    """Read-only access to the case, client and lawyer rows the engine uses."""

    def __init__(self, repository: Optional[Repository] = None):
        self._repository = repository

    @property
    def repository(self) -> Repository:
        if self._repository is None:
            self._repository = get_repository()
        return self._repository

    def get_case(self, case_id: str) -> Dict[str, Any]:
        case = self.repository.get(CASES_TABLE, {'id': case_id})
        if not case:
            raise NotFoundError(f"Case {case_id} not found", details={'case_id': case_id})
        return case

    def find_client(self, client_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if not client_id:
            return None
        return self.repository.get(CLIENTS_TABLE, {'id': client_id})

    def get_client(self, client_id: str) -> Dict[str, Any]:
        client = self.find_client(client_id)
        if not client:
            raise NotFoundError(f"Client {client_id} not found", details={'client_id': client_id})
        return client

    def get_profile(self, user_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if not user_id:
            return None
        return self.repository.get(PROFILES_TABLE, {'id': user_id})

    @staticmethod
    def display_name(person: Optional[Dict[str, Any]]) -> str:
        if not person:
            return ''
        name = f"{person.get('first_name') or ''} {person.get('last_name') or ''}".strip()
        return name or person.get('name') or person.get('email') or ''

    @staticmethod
    def detected_case_type(case: Dict[str, Any]) -> Optional[str]:
        """Case type from the case row, else from its complaint data. No default."""
        if case.get('case_type'):
            return case['case_type']
        complaint = case.get('complaint_data') or {}
        if isinstance(complaint, dict) and complaint.get('caseType'):
            return complaint['caseType']
        return None

    @staticmethod
    def case_name(case: Dict[str, Any]) -> str:
        return case.get('name') or case.get('case_name') or 'Untitled case'

    @staticmethod
    def case_number(case: Dict[str, Any]) -> Optional[str]:
        return case.get('case_number')
