import json
import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from functools import wraps
from typing import List, Dict, Any, Optional, Callable

from anthropic import Anthropic, APIError, RateLimitError, APIConnectionError

from config import Config

# Configure logging
logger = logging.getLogger(__name__)


class ClaudeAPIError(Exception):
    """Structured error for Claude API failures."""

    def __init__(self, message: str, error_code: str, retryable: bool = False, details: Optional[Dict] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.retryable = retryable
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'error': self.message,
            'error_code': self.error_code,
            'retryable': self.retryable,
            'details': self.details
        }


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0
) -> Callable:
    """
    Decorator that retries a function with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential backoff calculation
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except RateLimitError as e:
                    last_exception = e
                    if attempt < max_retries:
                        delay = min(base_delay * (exponential_base ** attempt), max_delay)
                        logger.warning(f"Rate limited on attempt {attempt + 1}/{max_retries + 1}, "
                                     f"retrying in {delay:.1f}s: {e}")
                        time.sleep(delay)
                    else:
                        logger.error(f"Rate limit exceeded after {max_retries + 1} attempts")
                        raise ClaudeAPIError(
                            message="Claude API rate limit exceeded. Please try again later.",
                            error_code="RATE_LIMIT_EXCEEDED",
                            retryable=True,
                            details={'attempts': max_retries + 1}
                        ) from e
                except APIConnectionError as e:
                    last_exception = e
                    if attempt < max_retries:
                        delay = min(base_delay * (exponential_base ** attempt), max_delay)
                        logger.warning(f"Connection error on attempt {attempt + 1}/{max_retries + 1}, "
                                     f"retrying in {delay:.1f}s: {e}")
                        time.sleep(delay)
                    else:
                        logger.error(f"Connection failed after {max_retries + 1} attempts")
                        raise ClaudeAPIError(
                            message="Unable to connect to Claude API. Please check your connection.",
                            error_code="CONNECTION_ERROR",
                            retryable=True,
                            details={'attempts': max_retries + 1}
                        ) from e
                except APIError as e:
                    # Non-retryable API errors (e.g., invalid request, auth errors)
                    logger.error(f"Claude API error: {e}")
                    raise ClaudeAPIError(
                        message=f"Claude API error: {str(e)}",
                        error_code="API_ERROR",
                        retryable=False,
                        details={'original_error': str(e)}
                    ) from e

            if last_exception:
                raise last_exception

        return wrapper
    return decorator


# Fixed rhetorical focus of each of the three objection options, in slot order
OBJECTION_FOCUSES = [
    (
        'vagueness and ambiguity',
        'Focus on terms that are vague, ambiguous, or undefined. Object to unclear language '
        'and lack of specific factual predicates.'
    ),
    (
        'prematurity and insufficient discovery',
        'Focus on the need for additional discovery, investigation, or expert analysis before responding.'
    ),
    (
        'expert opinion and improper characterization',
        'Focus on requests that call for expert opinion, legal conclusions, or improper characterizations.'
    ),
]

# Preambles the model sometimes adds in front of generated legal text
_PREAMBLE_PATTERNS = [
    re.compile(r'^\*\*Option \d+:.*?\*\*\n*', re.IGNORECASE),
    re.compile(r'^Okay,.*?:\n*', re.IGNORECASE),
    re.compile(r'^Here (?:is|are).*?:\n*', re.IGNORECASE),
]


def clean_generated_text(text: str) -> str:
    """Strip model preambles and stray bold markers from generated text."""
    text = text.strip()
    for pattern in _PREAMBLE_PATTERNS:
        text = pattern.sub('', text)
    if text.startswith('**'):
        text = text[2:]
    if text.endswith('**'):
        text = text[:-2]
    return text.strip()


class ClaudeService:
    """Service for Claude API interactions."""

    # Tool definitions for structured outputs
    EXTRACT_DISCOVERY_TOOL = {
        "name": "submit_discovery_document",
        "description": "Submit the structured data extracted from a discovery request document",
        "input_schema": {
            "type": "object",
            "properties": {
                "document_type": {
                    "type": "string",
                    "description": "The document's own title, e.g. 'Special Interrogatories, Set One'"
                },
                "propounding_party": {
                    "type": "string",
                    "description": "The party propounding the requests, exactly as written"
                },
                "responding_party": {
                    "type": "string",
                    "description": "The party the requests are directed to, exactly as written"
                },
                "case_number": {
                    "type": "string",
                    "description": "Case number exactly as it appears, or empty string if absent"
                },
                "set_number": {
                    "type": "string",
                    "description": "Set number as an ordinal word (ONE, TWO, ...), or empty string if absent"
                },
                "service_date": {
                    "type": "string",
                    "description": "Date of service in YYYY-MM-DD format, or empty string if absent"
                },
                "response_deadline": {
                    "type": "string",
                    "description": "Response due date in YYYY-MM-DD format, or empty string if absent"
                },
                "questions": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "id": {
                                "type": "string",
                                "description": "The request number as printed (e.g. '1', '2.1', '17')"
                            },
                            "text": {
                                "type": "string",
                                "description": "The verbatim text of the request"
                            }
                        },
                        "required": ["id", "text"]
                    },
                    "description": "Every numbered request, in document order"
                }
            },
            "required": ["document_type", "propounding_party", "responding_party", "questions"]
        }
    }

    SIMPLIFY_QUESTIONS_TOOL = {
        "name": "submit_client_questions",
        "description": "Submit client-friendly rewrites of discovery questions",
        "input_schema": {
            "type": "object",
            "properties": {
                "questions": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "id": {
                                "type": "string",
                                "description": "The id of the question being rewritten, unchanged"
                            },
                            "question": {
                                "type": "string",
                                "description": "The plain-language question for the client"
                            }
                        },
                        "required": ["id", "question"]
                    }
                }
            },
            "required": ["questions"]
        }
    }

    NARRATIVES_TOOL = {
        "name": "submit_case_narratives",
        "description": "Submit candidate case narrative strategies built from the client's answers",
        "input_schema": {
            "type": "object",
            "properties": {
                "narratives": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "title": {"type": "string", "description": "Short name for the strategy"},
                            "description": {
                                "type": "string",
                                "description": "Two to four sentences describing the theory of the case"
                            },
                            "strength": {
                                "type": "string",
                                "enum": ["strong", "moderate", "weak"],
                                "description": "How well the client's answers support this narrative"
                            },
                            "key_points": {
                                "type": "array",
                                "items": {"type": "string"},
                                "description": "Short supporting statements drawn from the answers"
                            },
                            "recommended_objections": {
                                "type": "array",
                                "items": {"type": "string"},
                                "description": "Objection grounds that fit this narrative"
                            }
                        },
                        "required": ["title", "description", "strength", "key_points", "recommended_objections"]
                    }
                }
            },
            "required": ["narratives"]
        }
    }

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or Config.ANTHROPIC_API_KEY
        self.model = Config.CLAUDE_MODEL
        self.client = None

        if self.api_key:
            self.client = Anthropic(api_key=self.api_key)

    def is_available(self) -> bool:
        """Check if Claude API is available."""
        return self.client is not None

    def _require_client(self) -> None:
        if not self.is_available():
            raise ClaudeAPIError(
                message="Claude API is not configured. Set ANTHROPIC_API_KEY.",
                error_code="NOT_CONFIGURED",
                retryable=False
            )

    def extract_discovery_document(self, document_text: str, category_label: str) -> Dict[str, Any]:
        """
        Extract structured data from the text of a discovery request document.

        Unlike complaint intake, there is no regex fallback here: a failed
        extraction raises so the caller can leave the prior record untouched.

        Args:
            document_text: Full text of the uploaded document
            category_label: Declared category, e.g. "Requests for Admissions"

        Returns:
            {"document_type", "propounding_party", "responding_party", "case_number",
             "set_number", "service_date", "response_deadline", "questions": [{"id", "text"}]}
        """
        self._require_client()

        prompt = f"""You are a legal assistant extracting structured data from a discovery request document.
The lawyer has identified this document as: {category_label}

## Document Text:
{document_text}

## Instructions:
1. Identify the document's title, the propounding party and the responding party exactly as written.
2. Extract the case number and the set number if present.
3. Extract the date of service and the response deadline if stated. Use YYYY-MM-DD. Leave a field empty rather than guessing.
4. Extract EVERY numbered request. Copy each request's text VERBATIM: do not fix spelling, grammar or punctuation.
   Do not include the "REQUEST NO. X:" header in the text, and skip definitions, instructions and signature blocks.
5. Use the number printed on each request as its id.

Call the submit_discovery_document tool with the extracted information.
"""

        response = self._call_claude_api(
            prompt=prompt,
            tools=[self.EXTRACT_DISCOVERY_TOOL],
            tool_name="submit_discovery_document",
            max_tokens=8000
        )
        result = self._tool_input(response, "submit_discovery_document")

        questions = []
        for i, item in enumerate(result.get("questions") or []):
            text = (item.get("text") or "").strip()
            if text:
                questions.append({"id": str(item.get("id") or i + 1), "text": text})

        return {
            "document_type": result.get("document_type") or category_label,
            "propounding_party": result.get("propounding_party") or "",
            "responding_party": result.get("responding_party") or "",
            "case_number": result.get("case_number") or None,
            "set_number": result.get("set_number") or None,
            "service_date": result.get("service_date") or None,
            "response_deadline": result.get("response_deadline") or None,
            "questions": questions
        }

    def simplify_questions(
        self,
        questions: List[Dict[str, str]],
        case_context: str = ""
    ) -> Dict[str, str]:
        """
        Rewrite discovery questions in plain language for the client.

        Questions are processed in parallel chunks of Config.SIMPLIFY_CHUNK_SIZE.
        A failed chunk is logged and left out of the result, so callers
        can fall back to the legal text for exactly those questions.

        Args:
            questions: [{"id": ..., "text": ...}] in compile order
            case_context: Optional case summary to ground the phrasing

        Returns:
            {question_id: simplified_text} for every question that succeeded
        """
        self._require_client()

        if not questions:
            return {}

        chunk_size = max(Config.SIMPLIFY_CHUNK_SIZE, 1)
        chunks = [questions[i:i + chunk_size] for i in range(0, len(questions), chunk_size)]

        if len(chunks) == 1:
            return self._simplify_chunk(chunks[0], case_context)

        all_results = {}
        num_workers = min(len(chunks), Config.MAX_PARALLEL_WORKERS)
        logger.info(f"Simplifying {len(questions)} questions in {len(chunks)} chunks with {num_workers} workers")

        with ThreadPoolExecutor(max_workers=num_workers) as executor:
            future_to_chunk = {
                executor.submit(self._simplify_chunk, chunk, case_context): i
                for i, chunk in enumerate(chunks)
            }

            for future in as_completed(future_to_chunk):
                chunk_idx = future_to_chunk[future]
                try:
                    all_results.update(future.result(timeout=120))
                except ClaudeAPIError as e:
                    logger.warning(f"Simplification chunk {chunk_idx} failed with API error: {e.message}")
                except Exception as e:
                    logger.error(f"Simplification chunk {chunk_idx} failed unexpectedly: {e}")

        return all_results

    def _simplify_chunk(self, questions: List[Dict[str, str]], case_context: str) -> Dict[str, str]:
        """Simplify one chunk of questions in a single call."""
        questions_text = "\n".join(f"[{q['id']}] {q['text']}" for q in questions)
        context_text = f"\n## Case Context:\n{case_context}\n" if case_context else ""

        prompt = f"""You are helping a lawyer prepare client-friendly discovery questions.
{context_text}
## Discovery Questions (id in brackets):
{questions_text}

## Instructions:
Rewrite each question so the client can answer it without legal training.
- Keep the factual scope of the original question; do not add or drop subjects.
- Use plain, direct language addressed to the client ("you").
- Do not answer the question or add commentary.
- Return one rewritten question per id, keeping each id exactly as given.

Call the submit_client_questions tool.
"""

        response = self._call_claude_api(
            prompt=prompt,
            tools=[self.SIMPLIFY_QUESTIONS_TOOL],
            tool_name="submit_client_questions",
            max_tokens=8000
        )
        result = self._tool_input(response, "submit_client_questions")

        known_ids = {str(q['id']) for q in questions}
        simplified = {}
        for item in result.get("questions") or []:
            qid = str(item.get("id", ""))
            text = (item.get("question") or "").strip()
            if qid in known_ids and text:
                simplified[qid] = text
        return simplified

    def generate_narratives(self, answers: List[Dict[str, str]], case_context: str = "") -> List[Dict[str, Any]]:
        """
        Generate candidate case narratives from the client's answers in one batch.

        Args:
            answers: [{"question": ..., "response": ...}]
            case_context: Optional case summary

        Returns:
            List of narrative dicts (title, description, strength, key_points, recommended_objections)
        """
        self._require_client()

        answers_text = "\n\n".join(
            f"Q{i + 1}: {a['question']}\nA{i + 1}: {a.get('response') or '(no answer)'}"
            for i, a in enumerate(answers)
        )
        context_text = f"\n## Case Context:\n{case_context}\n" if case_context else ""

        prompt = f"""You are a defense attorney planning responses to discovery requests.
{context_text}
## Client's Answers to the Discovery Questionnaire:
{answers_text}

## Instructions:
Propose three distinct case narrative strategies that could frame the responses consistently.
For each narrative:
- Give it a short title and a two to four sentence description of the theory.
- Rate its strength (strong, moderate, weak) by how well the client's answers support it.
- List the key points from the answers that support it.
- List the objection grounds that fit it.

Call the submit_case_narratives tool.
"""

        response = self._call_claude_api(
            prompt=prompt,
            tools=[self.NARRATIVES_TOOL],
            tool_name="submit_case_narratives",
            max_tokens=4000
        )
        result = self._tool_input(response, "submit_case_narratives")
        return list(result.get("narratives") or [])

    def generate_objection_option(
        self,
        request_text: str,
        client_answer: str,
        narrative_description: str,
        option_index: int
    ) -> str:
        """
        Draft one objection with the fixed focus of the given option slot.

        The output depends only on the arguments, so re-issuing the call is
        safe and only overwrites the targeted slot.
        """
        self._require_client()

        focus, instructions = OBJECTION_FOCUSES[option_index]

        prompt = f"""You are a defense attorney. Draft ONE objection to this discovery request.

DISCOVERY REQUEST: {request_text}

CLIENT'S RESPONSE: {client_answer}

CASE STRATEGY: {narrative_description}

OBJECTION FOCUS: {focus}
{instructions}

REQUIREMENTS:
1. Start with "Objection."
2. State specific objection grounds clearly
3. Include: "Subject to and without waiving the foregoing objections, Responding Party responds as follows:"
4. Provide a substantive response after that phrase
5. Be professional and legally sound
6. Return ONLY the objection text - no preamble, no options list, no explanations

EXAMPLE FORMAT:
Objection. [Specific grounds]. Subject to and without waiving the foregoing objections, Responding Party responds as follows: [Response]"""

        return self._generate_text(prompt, max_tokens=1000)

    def generate_direct_answer(self, request_text: str, client_answer: str) -> str:
        """Draft a direct admit/deny answer from the client's response."""
        self._require_client()

        prompt = f"""You are a defense attorney drafting responses to discovery requests.

DISCOVERY REQUEST: {request_text}

Client's Response: {client_answer}

Based on the client's response, generate an appropriate direct answer (admit, deny, or cannot admit or deny with explanation).

Format your response as:
"[Admit/Deny/Cannot admit or deny]. [If needed, add brief explanation]"

Keep it concise and legally appropriate. Return only the answer."""

        return self._generate_text(prompt, max_tokens=500)

    def edit_question(self, question_text: str, instruction: str) -> str:
        """Apply a lawyer's free-form instruction to one client-facing question."""
        self._require_client()

        prompt = f"""You are helping a lawyer prepare client-friendly discovery questions.

Original Question: {question_text}

User's Instruction: {instruction}

Please modify the question according to the user's instruction while keeping it clear and appropriate for a client to answer. Return only the modified question, nothing else."""

        return self._generate_text(prompt, max_tokens=500)

    def edit_objection(self, objection_text: str, instruction: str) -> str:
        """Apply a lawyer's free-form instruction to one objection option."""
        self._require_client()

        prompt = f"""You are a defense attorney editing an objection to a discovery request.

Current Objection:
{objection_text}

User's Instruction: {instruction}

Modify the objection according to the user's instruction while keeping it legally sound and professional.

Return ONLY the modified objection text, no preamble or explanation."""

        return self._generate_text(prompt, max_tokens=1000)

    def _generate_text(self, prompt: str, max_tokens: int) -> str:
        """Run a plain completion and return cleaned text, raising if nothing came back."""
        response = self._call_claude_api_simple(prompt, max_tokens=max_tokens)
        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        text = clean_generated_text(text)
        if not text:
            raise ClaudeAPIError(
                message="Claude returned an empty response",
                error_code="EMPTY_RESPONSE",
                retryable=True
            )
        return text

    @staticmethod
    def _tool_input(response, tool_name: str) -> Dict[str, Any]:
        """Return the input of the named tool call, raising if the model didn't call it."""
        for block in response.content:
            if block.type == "tool_use" and block.name == tool_name:
                result = block.input
                if isinstance(result, str):
                    result = json.loads(result)
                return result

        logger.warning(f"No tool use found in response for {tool_name}")
        raise ClaudeAPIError(
            message=f"Claude did not return structured output ({tool_name})",
            error_code="NO_TOOL_USE",
            retryable=True
        )

    @retry_with_backoff(max_retries=3, base_delay=1.0, max_delay=30.0)
    def _call_claude_api(
        self,
        prompt: str,
        tools: List[Dict],
        tool_name: str,
        max_tokens: int = 4000
    ):
        """
        Make a Claude API call with retry logic.

        This method is decorated with retry_with_backoff to handle transient errors.
        """
        return self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            tools=tools,
            tool_choice={"type": "tool", "name": tool_name},
            messages=[{"role": "user", "content": prompt}]
        )

    @retry_with_backoff(max_retries=3, base_delay=1.0, max_delay=30.0)
    def _call_claude_api_simple(self, prompt: str, max_tokens: int = 1000):
        """
        Make a simple Claude API call (no tools) with retry logic.
        """
        return self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            messages=[{"role": "user", "content": prompt}]
        )


# Singleton instance
claude_service = ClaudeService()
