"""
Tests for discovery document intake and extraction
"""
import os
import shutil
import tempfile
import time
import unittest

from fakes import CASE_ID, FakeClaude, api_error, make_workflow
from models import (
    FORM_INTERROGATORIES, REQUESTS_FOR_ADMISSIONS, REQUESTS_FOR_PRODUCTION,
    SPECIAL_INTERROGATORIES
)
from services.errors import BusyError, ExtractionError, NotFoundError, ValidationError
from services.extraction import ExtractionAdapter
from services.intake import storage_path
from services.job_manager import JobStatus
from services.pdf_parser import DocumentTextReader


class TestDiscoveryIntake(unittest.TestCase):
    """Test cases for uploading and extracting discovery documents"""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.claude = FakeClaude()
        self.workflow = make_workflow(self.tmpdir, claude=self.claude)
        self.intake = self.workflow.intake

    def tearDown(self):
        self.workflow.shutdown()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def submit(self, category, text):
        return self.intake.submit(CASE_ID, category, text.encode('utf-8'), 'text/plain', file_name='doc.txt')

    def test_submit_stores_record_and_file(self):
        """Test a submitted document is extracted, stored and its file kept"""
        record = self.submit(FORM_INTERROGATORIES, 'State your name.\nState your address.')

        self.assertEqual(len(record.questions), 2)
        self.assertEqual(record.questions[0].text, 'State your name.')
        self.assertEqual(record.file_type, 'text/plain')
        self.assertTrue(record.file_path.startswith(f'cases/{CASE_ID}/discovery/{FORM_INTERROGATORIES}_'))
        self.assertEqual(self.intake.file_store.download(record.file_path), b'State your name.\nState your address.')

        stored = self.intake.get(CASE_ID, FORM_INTERROGATORIES)
        self.assertEqual(stored.to_dict(), record.to_dict())

    def test_resubmit_replaces_record(self):
        """Test a second upload for a category replaces the first"""
        first = self.submit(REQUESTS_FOR_PRODUCTION, 'Produce all photos.')
        time.sleep(0.01)
        second = self.submit(REQUESTS_FOR_PRODUCTION, 'Produce all receipts.\nProduce all bills.')

        records = self.intake.list(CASE_ID)
        self.assertEqual(len(records), 1)
        self.assertEqual(len(records[0].questions), 2)
        self.assertEqual(records[0].file_path, second.file_path)
        self.assertNotEqual(first.file_path, second.file_path)
        self.assertFalse(os.path.exists(os.path.join(self.intake.file_store.root, first.file_path)))

    def test_failed_extraction_keeps_previous_record(self):
        """Test a failed extraction leaves the prior record and file untouched"""
        original = self.submit(FORM_INTERROGATORIES, 'State your name.')
        self.claude.extract_error = api_error()

        with self.assertRaises(ExtractionError):
            self.submit(FORM_INTERROGATORIES, 'Something else entirely.')

        stored = self.intake.get(CASE_ID, FORM_INTERROGATORIES)
        self.assertEqual(stored.to_dict(), original.to_dict())
        self.assertEqual(self.intake.file_store.download(original.file_path), b'State your name.')

    def test_list_is_in_category_order(self):
        """Test records are listed in category order regardless of upload order"""
        self.submit(SPECIAL_INTERROGATORIES, 'Describe the accident.')
        self.submit(REQUESTS_FOR_ADMISSIONS, 'Admit you were speeding.')
        self.submit(FORM_INTERROGATORIES, 'State your name.')

        categories = [r.document_category for r in self.intake.list(CASE_ID)]
        self.assertEqual(categories, [FORM_INTERROGATORIES, REQUESTS_FOR_ADMISSIONS, SPECIAL_INTERROGATORIES])

    def test_rejects_empty_file_and_unknown_category(self):
        """Test validation of the upload inputs"""
        with self.assertRaises(ValidationError):
            self.intake.submit(CASE_ID, FORM_INTERROGATORIES, b'', 'text/plain')
        with self.assertRaises(ValidationError):
            self.intake.submit(CASE_ID, 'depositions', b'Question', 'text/plain')
        with self.assertRaises(ValidationError):
            self.intake.submit(CASE_ID, FORM_INTERROGATORIES, b'Question', 'image/png')
        self.assertEqual(self.claude.calls['extract'], 0)

    def test_regenerate_reextracts_stored_file(self):
        """Test regenerate re-runs extraction and keeps file fields"""
        record = self.submit(FORM_INTERROGATORIES, 'State your name.')
        self.claude.deadlines['Form Interrogatories'] = '2026-11-30'

        regenerated = self.intake.regenerate(CASE_ID, FORM_INTERROGATORIES)

        self.assertEqual(regenerated.file_path, record.file_path)
        self.assertEqual(regenerated.response_deadline, '2026-11-30')
        self.assertEqual(self.claude.calls['extract'], 2)

    def test_remove_deletes_record_and_file(self):
        """Test removing a category deletes its record and stored file"""
        record = self.submit(FORM_INTERROGATORIES, 'State your name.')

        self.intake.remove(CASE_ID, FORM_INTERROGATORIES)

        self.assertIsNone(self.intake.get(CASE_ID, FORM_INTERROGATORIES))
        self.assertFalse(self.intake.has_any(CASE_ID))
        self.assertFalse(os.path.exists(os.path.join(self.intake.file_store.root, record.file_path)))
        with self.assertRaises(NotFoundError):
            self.intake.remove(CASE_ID, FORM_INTERROGATORIES)

    def test_background_submit_job(self):
        """Test the background job completes with the stored record"""
        job = self.intake.start_submit_job(CASE_ID, FORM_INTERROGATORIES, b'State your name.', 'text/plain')

        for _ in range(100):
            if not self.intake.jobs.get_job(job.id).active:
                break
            time.sleep(0.02)

        finished = self.intake.jobs.get_job(job.id)
        self.assertEqual(finished.status, JobStatus.COMPLETED)
        self.assertEqual(finished.result['document']['document_category'], FORM_INTERROGATORIES)

    def test_concurrent_submit_for_same_category_is_busy(self):
        """Test a second extraction of the same category is rejected while one runs"""
        self.intake.jobs.create_job(CASE_ID, f'extract_{FORM_INTERROGATORIES}')

        with self.assertRaises(BusyError):
            self.intake.start_submit_job(CASE_ID, FORM_INTERROGATORIES, b'State your name.', 'text/plain')

    def test_storage_path_format(self):
        """Test storage paths are keyed by case, category and extension"""
        path = storage_path('abc', REQUESTS_FOR_PRODUCTION, 'application/pdf')
        self.assertTrue(path.startswith('cases/abc/discovery/requests_for_production_'))
        self.assertTrue(path.endswith('.pdf'))


class TestExtractionAdapter(unittest.TestCase):
    """Test cases for turning document bytes into structured data"""

    def test_no_questions_is_an_error(self):
        """Test an extraction that finds no requests fails"""
        claude = FakeClaude()
        adapter = ExtractionAdapter(claude)

        with self.assertRaises(ExtractionError):
            adapter.extract(b'   \n  ', 'text/plain', FORM_INTERROGATORIES)

    def test_unsupported_type_is_not_retryable(self):
        """Test unsupported mime types fail without calling Claude"""
        claude = FakeClaude()
        adapter = ExtractionAdapter(claude)

        with self.assertRaises(ExtractionError) as ctx:
            adapter.extract(b'data', 'image/png', FORM_INTERROGATORIES)
        self.assertFalse(ctx.exception.retryable)
        self.assertEqual(claude.calls['extract'], 0)

    def test_claude_failure_becomes_extraction_error(self):
        """Test API errors surface as retryable extraction errors"""
        claude = FakeClaude()
        claude.extract_error = api_error()

        with self.assertRaises(ExtractionError) as ctx:
            ExtractionAdapter(claude).extract(b'State your name.', 'text/plain', FORM_INTERROGATORIES)
        self.assertTrue(ctx.exception.retryable)


class TestDocumentTextReader(unittest.TestCase):
    """Test cases for reading document text"""

    def test_plain_text_is_cleaned(self):
        """Test page markers and blank runs are removed"""
        text = DocumentTextReader().read(b'Line one\nPage 1 of 3\n\n\n\nLine two\n', 'text/plain')
        self.assertEqual(text, 'Line one\n\nLine two')

    def test_unsupported_type(self):
        """Test unsupported types raise ValueError"""
        with self.assertRaises(ValueError):
            DocumentTextReader().read(b'data', 'application/msword')


if __name__ == '__main__':
    unittest.main()
