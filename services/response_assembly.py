"""
Assembles the final discovery response from persisted workflow state.

Assembly is a pure function of stored state: no dates, no generation calls.
Unresolved requests render with a placeholder rather than failing; the
readiness check is separate and only gates finalizing.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from models import REQUEST_HEADINGS
from services.state_store import CaseDirectory, WorkflowStateStore
from services.strategy_engine import request_inputs

NO_RESPONSE_PLACEHOLDER = 'No response selected'
DEFAULT_HEADING = 'REQUEST'


@dataclass
class AssembledRequest:
    heading: str
    number: int
    text: str
    response: str
    resolved: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            'heading': self.heading,
            'number': self.number,
            'text': self.text,
            'response': self.response,
            'resolved': self.resolved
        }


class ResponseAssembler:

    def __init__(self, states: WorkflowStateStore, directory: CaseDirectory):
        self.states = states
        self.directory = directory

    def build(self, case_id: str) -> Tuple[Dict[str, Any], List[AssembledRequest]]:
        """Case header fields and the per-request sections, in request order."""
        case = self.directory.get_case(case_id)
        state = self.states.load(case_id)
        sets = {s.request_index: s for s in state.request_objections}

        counters: Dict[str, int] = {}
        sections = []
        for index, request in enumerate(request_inputs(state)):
            heading = REQUEST_HEADINGS.get(request['category'], DEFAULT_HEADING)
            counters[heading] = counters.get(heading, 0) + 1

            objection_set = sets.get(index)
            response = objection_set.selected_response() if objection_set else None
            sections.append(AssembledRequest(
                heading=heading,
                number=counters[heading],
                text=request['request_text'],
                response=response or NO_RESPONSE_PLACEHOLDER,
                resolved=response is not None
            ))

        header = {
            'case_name': self.directory.case_name(case),
            'case_number': self.directory.case_number(case) or 'N/A'
        }
        return header, sections

    def assemble(self, case_id: str) -> str:
        header, sections = self.build(case_id)
        text = f"DISCOVERY RESPONSES\n{header['case_name']}\nCase Number: {header['case_number']}\n\n"
        for section in sections:
            text += (
                f"{section.heading} NO. {section.number}:\n"
                f"\t{section.text}\n\n"
                f"RESPONSE TO {section.heading} NO. {section.number}:\n"
                f"\t{section.response}\n\n"
            )
        return text

    def readiness(self, case_id: str) -> Dict[str, Any]:
        _, sections = self.build(case_id)
        unresolved = [i for i, s in enumerate(sections) if not s.resolved]
        return {
            'ready': bool(sections) and not unresolved,
            'resolved': len(sections) - len(unresolved),
            'total': len(sections),
            'unresolved_requests': unresolved
        }

    def is_ready(self, case_id: str) -> bool:
        return self.readiness(case_id)['ready']
