import logging
import os
from datetime import datetime

from flask import Blueprint, jsonify, send_file

from services.errors import DiscoveryError
from services.workflow import get_workflow

logger = logging.getLogger(__name__)

generate_bp = Blueprint('generate', __name__, url_prefix='/api/generate')

DOCX_MIMETYPE = 'application/vnd.openxmlformats-officedocument.wordprocessingml.document'


@generate_bp.errorhandler(DiscoveryError)
def handle_discovery_error(error):
    return jsonify(error.to_dict()), error.http_status


@generate_bp.route('/<case_id>', methods=['GET'])
def assemble_response(case_id):
    """
    Assemble the final response text.

    Requests without a selected response get a placeholder; `ready` is
    False until every request is resolved.
    """
    return jsonify(get_workflow().assemble(case_id))


@generate_bp.route('/<case_id>/docx', methods=['GET'])
def download_docx(case_id):
    """Render the assembled response into a Word document."""
    workflow = get_workflow()
    file_path = workflow.export_docx(case_id)

    case = workflow.directory.get_case(case_id)
    base_filename = f"{workflow.directory.case_name(case)} DISCOVERY RESPONSES"
    # Sanitize filename (remove invalid characters)
    safe_filename = "".join(c for c in base_filename if c.isalnum() or c in " '-").strip()
    download_name = f"{datetime.now().strftime('%Y.%m.%d')} {safe_filename}.docx"

    response = send_file(
        file_path,
        as_attachment=True,
        download_name=download_name,
        mimetype=DOCX_MIMETYPE
    )

    # Clean up temp file after sending
    @response.call_on_close
    def cleanup():
        try:
            os.unlink(file_path)
        except OSError as e:
            logger.warning(f"Failed to cleanup temporary file {file_path}: {e}")

    return response
