from flask import Blueprint, request, jsonify
from werkzeug.utils import secure_filename

from models import CATEGORY_LABELS
from services.errors import DiscoveryError
from services.job_manager import JobStatus
from services.pdf_parser import PDF_MIME_TYPE, TEXT_MIME_TYPE
from services.workflow import get_workflow

discovery_bp = Blueprint('discovery', __name__, url_prefix='/api/discovery')

ALLOWED_EXTENSIONS = {
    'pdf': PDF_MIME_TYPE,
    'txt': TEXT_MIME_TYPE,
}


def allowed_file(filename):
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in ALLOWED_EXTENSIONS


@discovery_bp.errorhandler(DiscoveryError)
def handle_discovery_error(error):
    return jsonify(error.to_dict()), error.http_status


@discovery_bp.route('/<case_id>/upload', methods=['POST'])
def upload_document(case_id):
    """
    Upload a discovery document for one category.

    Returns immediately with 202 Accepted. Use /upload/status/{job_id} to poll for completion.

    Expects multipart/form-data with:
    - file: PDF or plain-text document
    - category: form_interrogatories | requests_for_admissions |
                requests_for_production | special_interrogatories
    - user_id: Optional uploading lawyer
    """
    if 'file' not in request.files:
        return jsonify({'error': 'No file provided'}), 400

    file = request.files['file']

    if file.filename == '':
        return jsonify({'error': 'No file selected'}), 400

    if not allowed_file(file.filename):
        return jsonify({'error': 'Invalid file type. Only PDF and text files are allowed.'}), 400

    category = request.form.get('category')
    if not category:
        return jsonify({'error': 'category is required'}), 400

    filename = secure_filename(file.filename)
    mime_type = ALLOWED_EXTENSIONS[filename.rsplit('.', 1)[1].lower()]

    job = get_workflow().intake.start_submit_job(
        case_id,
        category,
        file.read(),
        mime_type,
        file_name=filename,
        user_id=request.form.get('user_id')
    )

    return jsonify({
        'status': 'processing',
        'job_id': job.id,
        'case_id': case_id,
        'category': category,
        'message': f'{CATEGORY_LABELS[category]} uploaded, extracting in background...'
    }), 202


@discovery_bp.route('/<case_id>/upload/status/<job_id>', methods=['GET'])
def get_upload_status(case_id, job_id):
    """Progress while extracting, the stored record when complete."""
    job = get_workflow().intake.jobs.get_job(job_id)

    if not job or job.case_id != case_id:
        return jsonify({'error': 'Job not found'}), 404

    response = {
        'job_id': job_id,
        'case_id': case_id,
        'status': job.status.value,
        'progress': job.progress,
        'message': job.message
    }

    if job.status == JobStatus.COMPLETED and job.result:
        response.update(job.result)
    elif job.status == JobStatus.FAILED:
        response['error'] = job.error

    return jsonify(response)


@discovery_bp.route('/<case_id>/documents', methods=['GET'])
def list_documents(case_id):
    """Get every uploaded discovery document for a case."""
    records = get_workflow().intake.list(case_id)

    return jsonify({
        'case_id': case_id,
        'categories': [r.document_category for r in records],
        'total_questions': sum(len(r.questions) for r in records),
        'documents': [r.to_dict() for r in records]
    })


@discovery_bp.route('/<case_id>/documents/<category>', methods=['DELETE'])
def remove_document(case_id, category):
    """Remove a category's document and its stored file."""
    get_workflow().intake.remove(case_id, category)
    return jsonify({'message': f'{CATEGORY_LABELS[category]} removed', 'category': category})


@discovery_bp.route('/<case_id>/documents/<category>/regenerate', methods=['POST'])
def regenerate_document(case_id, category):
    """Re-run extraction on the stored file for a category."""
    record = get_workflow().intake.regenerate(case_id, category)
    return jsonify({'message': 'Extraction complete', 'document': record.to_dict()})
