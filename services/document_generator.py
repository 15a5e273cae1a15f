import logging
import os
import tempfile
from datetime import datetime
from typing import Any, Dict, List, Optional

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Pt
from docxtpl import DocxTemplate

from config import Config
from services.response_assembly import AssembledRequest

logger = logging.getLogger(__name__)

TEMPLATE_NAME = 'discovery_response.docx'


def create_response_template(template_path: str) -> str:
    """
    Build the default Word template with docxtpl placeholders.

    Each jinja tag sits in its own run so docxtpl can render it.
    """
    doc = Document()

    style = doc.styles['Normal']
    style.font.name = 'Times New Roman'
    style.font.size = Pt(12)

    title = doc.add_heading('DISCOVERY RESPONSES', 0)
    title.alignment = WD_ALIGN_PARAGRAPH.CENTER

    doc.add_paragraph('{{ case_name }}').alignment = WD_ALIGN_PARAGRAPH.CENTER
    doc.add_paragraph('Case Number: {{ case_number }}').alignment = WD_ALIGN_PARAGRAPH.CENTER
    doc.add_paragraph()

    doc.add_paragraph('{%p for request in requests %}')
    doc.add_paragraph().add_run('{{ request.heading }} NO. {{ request.number }}:').bold = True
    doc.add_paragraph('{{ request.text }}')
    doc.add_paragraph().add_run('RESPONSE TO {{ request.heading }} NO. {{ request.number }}:').bold = True
    doc.add_paragraph('{{ request.response }}')
    doc.add_paragraph('{%p endfor %}')

    doc.add_paragraph()
    doc.add_paragraph('DATED: {{ date }}')

    os.makedirs(os.path.dirname(template_path) or '.', exist_ok=True)
    doc.save(template_path)
    logger.info(f"Created discovery response template at {template_path}")
    return template_path


class DocumentGenerator:
    """Generate Word documents for discovery responses."""

    def __init__(self, template_dir: Optional[str] = None):
        self.template_dir = template_dir or Config.WORD_TEMPLATE_FOLDER

    @property
    def template_path(self) -> str:
        return os.path.join(self.template_dir, TEMPLATE_NAME)

    def generate_response(self, header: Dict[str, Any], sections: List[AssembledRequest]) -> str:
        """
        Render the assembled response into a .docx file.

        Args:
            header: {"case_name", "case_number"}
            sections: Assembled requests in order

        Returns:
            Path to the generated temp file; the caller removes it
        """
        template_path = self.template_path
        if not os.path.exists(template_path):
            create_response_template(template_path)

        context = {
            'case_name': header['case_name'],
            'case_number': header['case_number'],
            'date': datetime.now().strftime('%B %d, %Y'),
            'requests': [s.to_dict() for s in sections]
        }

        doc = DocxTemplate(template_path)
        # Request and response text is free-form; escape it for the document XML
        doc.render(context, autoescape=True)

        temp_file = tempfile.NamedTemporaryFile(delete=False, suffix='.docx')
        doc.save(temp_file.name)
        temp_file.close()

        return temp_file.name


# Global instance
document_generator = DocumentGenerator()
