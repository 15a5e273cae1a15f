import io
import logging
import re

from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = 'application/pdf'
TEXT_MIME_TYPE = 'text/plain'
SUPPORTED_MIME_TYPES = (PDF_MIME_TYPE, TEXT_MIME_TYPE)

MIME_EXTENSIONS = {
    PDF_MIME_TYPE: 'pdf',
    TEXT_MIME_TYPE: 'txt',
}


class DocumentTextReader:
    """Read the text layer of an uploaded discovery document."""

    def read(self, file_bytes: bytes, mime_type: str) -> str:
        if mime_type == TEXT_MIME_TYPE:
            return self._clean_text(file_bytes.decode('utf-8', errors='replace'))
        if mime_type == PDF_MIME_TYPE:
            return self._read_pdf(file_bytes)
        raise ValueError(f"Unsupported document type: {mime_type}")

    def _read_pdf(self, file_bytes: bytes) -> str:
        text = ""
        try:
            reader = PdfReader(io.BytesIO(file_bytes))
            for page in reader.pages:
                page_text = page.extract_text()
                if page_text:
                    text += page_text + "\n"
        except (PdfReadError, ValueError) as e:
            logger.warning(f"PyPDF2 could not read document, trying pdfplumber: {e}")

        if text.strip():
            return self._clean_text(text)

        # Fallback to pdfplumber for PDFs PyPDF2 reads poorly
        import pdfplumber

        with pdfplumber.open(io.BytesIO(file_bytes)) as pdf:
            for page in pdf.pages:
                page_text = page.extract_text()
                if page_text:
                    text += page_text + "\n"

        return self._clean_text(text)

    def _clean_text(self, text: str) -> str:
        """Drop page-number artifacts and collapse runs of blank lines."""
        text = re.sub(r'Page\s+\d+\s+of\s+\d+', '', text, flags=re.IGNORECASE)
        text = re.sub(r'\n\s*\n\s*\n+', '\n\n', text)
        return text.strip()


def extract_document_text(file_bytes: bytes, mime_type: str) -> str:
    """
    Extract text from a discovery document.

    Args:
        file_bytes: Raw file content
        mime_type: application/pdf or text/plain

    Returns:
        The document text, possibly empty for image-only PDFs
    """
    return DocumentTextReader().read(file_bytes, mime_type)
