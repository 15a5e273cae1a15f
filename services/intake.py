"""
Discovery intake: upload, extract and persist one document per category.

Records are keyed by (case_id, document_category). A new upload for the
same category replaces the previous record; a failed extraction leaves the
previous record and file exactly as they were.
"""
import logging
import threading
import time
from typing import List, Optional

from models import DISCOVERY_CATEGORIES, CATEGORY_LABELS, DiscoveryDocumentRecord, Question, utc_now
from services.errors import DiscoveryError, NotFoundError, ValidationError
from services.extraction import ExtractionAdapter
from services.file_store import FileStore, get_file_store
from services.job_manager import Job, JobManager, job_manager
from services.pdf_parser import MIME_EXTENSIONS, SUPPORTED_MIME_TYPES
from services.record_store import Repository, get_repository

logger = logging.getLogger(__name__)

DOCUMENTS_TABLE = 'discovery_responses'
DOCUMENT_KEY = ['case_id', 'document_category']


def storage_path(case_id: str, category: str, mime_type: str) -> str:
    timestamp = int(time.time() * 1000)
    return f"cases/{case_id}/discovery/{category}_{timestamp}.{MIME_EXTENSIONS[mime_type]}"


class DiscoveryIntake:

    def __init__(
        self,
        repository: Optional[Repository] = None,
        file_store: Optional[FileStore] = None,
        extractor: Optional[ExtractionAdapter] = None,
        jobs: Optional[JobManager] = None
    ):
        self._repository = repository
        self._file_store = file_store
        self.extractor = extractor or ExtractionAdapter()
        self.jobs = jobs or job_manager

    @property
    def repository(self) -> Repository:
        if self._repository is None:
            self._repository = get_repository()
        return self._repository

    @property
    def file_store(self) -> FileStore:
        if self._file_store is None:
            self._file_store = get_file_store()
        return self._file_store

    def _validate(self, category: str, file_bytes: Optional[bytes] = None, mime_type: Optional[str] = None) -> None:
        if category not in DISCOVERY_CATEGORIES:
            raise ValidationError(
                f"Unknown discovery category: {category}",
                details={'allowed': DISCOVERY_CATEGORIES}
            )
        if file_bytes is not None and not file_bytes:
            raise ValidationError("Uploaded file is empty")
        if mime_type is not None and mime_type not in SUPPORTED_MIME_TYPES:
            raise ValidationError(
                f"Unsupported file type: {mime_type}",
                details={'allowed': list(SUPPORTED_MIME_TYPES)}
            )

    def get(self, case_id: str, category: str) -> Optional[DiscoveryDocumentRecord]:
        row = self.repository.get(DOCUMENTS_TABLE, {'case_id': case_id, 'document_category': category})
        return DiscoveryDocumentRecord.from_dict(row) if row else None

    def list(self, case_id: str) -> List[DiscoveryDocumentRecord]:
        """Present records in category order."""
        rows = self.repository.select(DOCUMENTS_TABLE, {'case_id': case_id})
        records = [DiscoveryDocumentRecord.from_dict(r) for r in rows]
        records.sort(key=lambda r: DISCOVERY_CATEGORIES.index(r.document_category)
                     if r.document_category in DISCOVERY_CATEGORIES else len(DISCOVERY_CATEGORIES))
        return records

    def has_any(self, case_id: str) -> bool:
        return bool(self.repository.select(DOCUMENTS_TABLE, {'case_id': case_id}))

    def submit(
        self,
        case_id: str,
        category: str,
        file_bytes: bytes,
        mime_type: str,
        file_name: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> DiscoveryDocumentRecord:
        """
        Extract and store a discovery document, replacing the category's prior record.

        Raises:
            ValidationError: empty file, unknown category or unsupported type
            ExtractionError: extraction failed; prior data is untouched
        """
        self._validate(category, file_bytes, mime_type)
        label = CATEGORY_LABELS[category]
        logger.info(f"[{case_id}] Submitting {label} ({len(file_bytes)} bytes)")

        extracted = self.extractor.extract(file_bytes, mime_type, category)

        previous = self.get(case_id, category)
        path = self.file_store.upload(storage_path(case_id, category, mime_type), file_bytes, mime_type)

        record = DiscoveryDocumentRecord(
            case_id=case_id,
            document_category=category,
            file_name=file_name or f"{category}.{MIME_EXTENSIONS[mime_type]}",
            file_path=path,
            file_size=len(file_bytes),
            file_type=mime_type,
            user_id=user_id
        )
        self._apply_extraction(record, extracted)
        self.repository.upsert_by_key(DOCUMENTS_TABLE, record.to_dict(), DOCUMENT_KEY)

        if previous and previous.file_path and previous.file_path != path:
            try:
                self.file_store.delete([previous.file_path])
            except DiscoveryError as e:
                logger.warning(f"[{case_id}] Could not delete replaced file {previous.file_path}: {e.message}")

        logger.info(f"[{case_id}] Stored {label} with {len(record.questions)} requests")
        return record

    def regenerate(self, case_id: str, category: str) -> DiscoveryDocumentRecord:
        """Re-run extraction on the stored file, replacing structured fields only."""
        self._validate(category)
        record = self.get(case_id, category)
        if not record:
            raise NotFoundError(f"No {CATEGORY_LABELS[category]} uploaded for this case")

        file_bytes = self.file_store.download(record.file_path)
        extracted = self.extractor.extract(file_bytes, record.file_type, category)

        self._apply_extraction(record, extracted)
        self.repository.upsert_by_key(DOCUMENTS_TABLE, record.to_dict(), DOCUMENT_KEY)
        logger.info(f"[{case_id}] Regenerated {CATEGORY_LABELS[category]}: {len(record.questions)} requests")
        return record

    def remove(self, case_id: str, category: str) -> None:
        """Delete the category's record and its stored file."""
        self._validate(category)
        record = self.get(case_id, category)
        if not record:
            raise NotFoundError(f"No {CATEGORY_LABELS[category]} uploaded for this case")

        if record.file_path:
            self.file_store.delete([record.file_path])
        self.repository.delete(DOCUMENTS_TABLE, {'case_id': case_id, 'document_category': category})
        logger.info(f"[{case_id}] Removed {CATEGORY_LABELS[category]}")

    def start_submit_job(
        self,
        case_id: str,
        category: str,
        file_bytes: bytes,
        mime_type: str,
        file_name: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> Job:
        """
        Validate and run submit() in a background thread.

        Raises BusyError if this category is already being extracted for the case.
        """
        self._validate(category, file_bytes, mime_type)
        job = self.jobs.create_job(case_id, f"extract_{category}", total_steps=1)
        self.jobs.set_running(job.id, f"Extracting {CATEGORY_LABELS[category]}...")

        thread = threading.Thread(
            target=self._run_submit_job,
            args=(job.id, case_id, category, file_bytes, mime_type, file_name, user_id),
            daemon=True
        )
        thread.start()
        return job

    def _run_submit_job(self, job_id, case_id, category, file_bytes, mime_type, file_name, user_id) -> None:
        start_time = time.time()
        logger.info(f"[{job_id}] Starting extraction of {category} for case {case_id}")
        try:
            record = self.submit(case_id, category, file_bytes, mime_type, file_name, user_id)
        except DiscoveryError as e:
            logger.warning(f"[{job_id}] Extraction failed: {e.message}")
            self.jobs.set_failed(job_id, e.message)
            return
        except Exception as e:
            logger.error(f"[{job_id}] Extraction failed: {e}", exc_info=True)
            self.jobs.set_failed(job_id, str(e))
            return

        logger.info(f"[{job_id}] Extraction complete in {time.time() - start_time:.1f}s")
        self.jobs.set_completed(job_id, {'document': record.to_dict()},
                                f"Found {len(record.questions)} requests")

    @staticmethod
    def _apply_extraction(record: DiscoveryDocumentRecord, extracted: dict) -> None:
        record.document_type = extracted.get('document_type') or CATEGORY_LABELS[record.document_category]
        record.propounding_party = extracted.get('propounding_party') or ''
        record.responding_party = extracted.get('responding_party') or ''
        record.case_number = extracted.get('case_number')
        record.set_number = extracted.get('set_number')
        record.service_date = extracted.get('service_date')
        record.response_deadline = extracted.get('response_deadline')
        record.questions = [Question.from_dict(q) for q in extracted.get('questions') or []]
        record.updated_at = utc_now()
