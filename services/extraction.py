"""
Extraction adapter: document bytes in, structured discovery data out.

Wraps text reading and the Claude extraction call. Any failure surfaces as
ExtractionError; nothing is ever fabricated in place of a failed extraction.
"""
import logging
from typing import Any, Dict, Optional

from models import CATEGORY_LABELS
from services.claude_service import ClaudeAPIError, ClaudeService, claude_service
from services.debug import DebugTimer
from services.errors import ExtractionError
from services.pdf_parser import DocumentTextReader

logger = logging.getLogger(__name__)


class ExtractionAdapter:

    def __init__(self, claude: Optional[ClaudeService] = None, reader: Optional[DocumentTextReader] = None):
        self.claude = claude or claude_service
        self.reader = reader or DocumentTextReader()

    def extract(self, file_bytes: bytes, mime_type: str, category: str) -> Dict[str, Any]:
        """
        Extract a discovery document.

        Returns:
            {document_type, propounding_party, responding_party, case_number,
             set_number, service_date, response_deadline, questions: [{id, text}]}

        Raises:
            ExtractionError: the document could not be read or extracted
        """
        label = CATEGORY_LABELS.get(category, category)

        try:
            text = self.reader.read(file_bytes, mime_type)
        except ValueError as e:
            raise ExtractionError(str(e), retryable=False, details={'category': category}) from e
        except Exception as e:
            logger.error(f"Could not read {label} document: {e}")
            raise ExtractionError(
                f"Could not read the {label} document",
                retryable=False,
                details={'category': category, 'reason': str(e)}
            ) from e

        if not text.strip():
            raise ExtractionError(
                f"No text could be read from the {label} document",
                retryable=False,
                details={'category': category}
            )

        try:
            with DebugTimer("Discovery extraction", category=category, chars=len(text)):
                result = self.claude.extract_discovery_document(text, label)
        except ClaudeAPIError as e:
            logger.warning(f"Extraction failed for {label}: {e.message}")
            raise ExtractionError(
                f"Extraction failed for {label}: {e.message}",
                retryable=e.retryable,
                details={'category': category, 'error_code': e.error_code}
            ) from e

        if not result.get('questions'):
            raise ExtractionError(
                f"No requests were found in the {label} document",
                retryable=True,
                details={'category': category}
            )

        logger.info(f"Extracted {len(result['questions'])} requests from {label} document")
        return result
