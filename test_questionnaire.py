"""
Tests for compiling, editing, sending and answering the client questionnaire
"""
import shutil
import tempfile
import unittest

from fakes import (
    CASE_ID, CLIENT_ID, LAWYER_ID, FakeClaude, RecordingSms, answer_all,
    drive_to_question_review, make_workflow, upload
)
from models import (
    FORM_INTERROGATORIES, REQUESTS_FOR_ADMISSIONS, STATUS_COMPLETED, STATUS_IN_PROGRESS,
    STATUS_PENDING, DiscoveryDocumentRecord, Question
)
from services.errors import BusyError, GenerationError, NotFoundError, ValidationError
from services.questionnaire_compiler import source_questions
from services.questionnaire_service import QUESTIONNAIRES_TABLE, RESPONSES_TABLE

FIVE_QUESTIONS = {
    REQUESTS_FOR_ADMISSIONS: 'Admit you ran the red light.\nAdmit you were speeding.',
    FORM_INTERROGATORIES: 'State your full name.\nState your address.\nDescribe your injuries.',
}


class TestQuestionnaireCompiler(unittest.TestCase):
    """Test cases for building client-facing questions"""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.claude = FakeClaude()
        self.workflow = make_workflow(self.tmpdir, claude=self.claude)
        self.compiler = self.workflow.compiler
        self.workflow.open(CASE_ID, LAWYER_ID)

    def tearDown(self):
        self.workflow.shutdown()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_compile_in_category_order(self):
        """Test 3 interrogatories and 2 production requests compile to 5 questions in order"""
        upload(self.workflow, FIVE_QUESTIONS)

        questions, warnings = self.compiler.compile(CASE_ID)

        self.assertEqual(warnings, [])
        self.assertEqual(len(questions), 5)
        self.assertEqual([q.category for q in questions], [FORM_INTERROGATORIES] * 3 + [REQUESTS_FOR_ADMISSIONS] * 2)
        self.assertEqual(questions[0].original, 'State your full name.')
        self.assertEqual(questions[0].question, 'Simple: State your full name.')
        self.assertTrue(all(not q.edited for q in questions))
        self.assertEqual(len({q.id for q in questions}), 5)

    def test_compile_is_idempotent(self):
        """Test compiling again never regenerates over existing questions"""
        upload(self.workflow, FIVE_QUESTIONS)
        first, _ = self.compiler.compile(CASE_ID)
        self.compiler.edit(CASE_ID, first[0].id, 'What is your name?')

        second, _ = self.compiler.compile(CASE_ID)

        self.assertEqual(self.claude.calls['simplify'], 1)
        self.assertEqual(second[0].question, 'What is your name?')
        self.assertEqual([q.id for q in second], [q.id for q in first])

    def test_partial_simplification_falls_back_to_legal_text(self):
        """Test a question that could not be simplified keeps its original text"""
        upload(self.workflow, FIVE_QUESTIONS)
        self.claude.simplify_failures = {f'{FORM_INTERROGATORIES}-2'}

        questions, warnings = self.compiler.compile(CASE_ID)

        self.assertEqual(len(warnings), 1)
        self.assertEqual(questions[1].question, 'State your address.')
        self.assertEqual(questions[1].generated, 'State your address.')

    def test_total_simplification_failure(self):
        """Test compile fails and stores nothing when nothing was simplified"""
        upload(self.workflow, FIVE_QUESTIONS)
        self.claude.simplify_all_fail = True

        with self.assertRaises(GenerationError):
            self.compiler.compile(CASE_ID)
        self.assertEqual(self.compiler.list_questions(CASE_ID), [])

    def test_compile_without_documents(self):
        """Test compile requires at least one uploaded document"""
        with self.assertRaises(ValidationError):
            self.compiler.compile(CASE_ID)

    def test_compile_rejected_while_running(self):
        """Test a second compile for the same case is rejected"""
        upload(self.workflow, FIVE_QUESTIONS)
        self.workflow.compiler.jobs.create_job(CASE_ID, 'compile')

        with self.assertRaises(BusyError):
            self.compiler.compile(CASE_ID)

    def test_edit_and_reset(self):
        """Test manual edits mark the question and reset restores the generated text"""
        upload(self.workflow, FIVE_QUESTIONS)
        questions, _ = self.compiler.compile(CASE_ID)
        qid = questions[0].id

        edited = self.compiler.edit(CASE_ID, qid, 'What is your legal name?')
        self.assertTrue(edited.edited)

        reset = self.compiler.reset(CASE_ID, qid)
        self.assertFalse(reset.edited)
        self.assertEqual(reset.question, questions[0].generated)

        # Editing back to the generated text is not an edit
        self.assertFalse(self.compiler.edit(CASE_ID, qid, questions[0].generated).edited)

    def test_edit_validation(self):
        """Test empty text and unknown questions are rejected"""
        upload(self.workflow, FIVE_QUESTIONS)
        questions, _ = self.compiler.compile(CASE_ID)

        with self.assertRaises(ValidationError):
            self.compiler.edit(CASE_ID, questions[0].id, '   ')
        with self.assertRaises(NotFoundError):
            self.compiler.edit(CASE_ID, 'missing', 'text')

    def test_ai_edit_single_and_bulk(self):
        """Test instruction-driven edits apply to one or all questions"""
        upload(self.workflow, FIVE_QUESTIONS)
        questions, _ = self.compiler.compile(CASE_ID)

        one = self.compiler.ai_edit(CASE_ID, questions[0].id, 'shorter')
        self.assertEqual(one.question, 'Simple: State your full name. (shorter)')
        self.assertTrue(one.edited)

        edited, warnings = self.compiler.bulk_ai_edit(CASE_ID, 'friendlier')
        self.assertEqual(warnings, [])
        self.assertTrue(all(q.question.endswith('(friendlier)') for q in edited))

    def test_source_question_ids_are_unique(self):
        """Test repeated numbers within a document get distinct ids"""
        record = DiscoveryDocumentRecord(
            case_id=CASE_ID,
            document_category=FORM_INTERROGATORIES,
            questions=[Question('1', 'First'), Question('1', 'Second')]
        )
        ids = [q['id'] for q in source_questions([record])]
        self.assertEqual(ids, [f'{FORM_INTERROGATORIES}-1', f'{FORM_INTERROGATORIES}-1-2'])


class TestQuestionnaireService(unittest.TestCase):
    """Test cases for sending the questionnaire and syncing answers"""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.sms = RecordingSms()
        self.workflow = make_workflow(self.tmpdir, sms=self.sms)
        self.service = self.workflow.questionnaires
        self.repository = self.service.repository
        drive_to_question_review(self.workflow, FIVE_QUESTIONS)

    def tearDown(self):
        self.workflow.shutdown()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def send(self):
        questionnaire, warnings = self.workflow.send_questionnaire(CASE_ID)
        return questionnaire, warnings

    def completion_messages(self):
        return self.sms.of_type('completion')

    def test_send_creates_questionnaire_and_texts_client(self):
        """Test sending creates one empty response per question and notifies the client"""
        questionnaire, warnings = self.send()

        self.assertEqual(warnings, [])
        self.assertEqual(questionnaire.total_questions, 5)
        self.assertEqual(questionnaire.status, STATUS_PENDING)
        self.assertEqual(questionnaire.lawyer_id, LAWYER_ID)
        self.assertEqual(questionnaire.client_id, CLIENT_ID)
        self.assertEqual(questionnaire.title, 'Smith v. Jones - Form Interrogatories, Requests for Admissions')
        self.assertEqual(len(self.repository.select(RESPONSES_TABLE, {'questionnaire_id': questionnaire.id})), 5)

        sent = self.sms.of_type('questionnaire_sent')
        self.assertEqual(len(sent), 1)
        self.assertEqual(sent[0]['context']['question_count'], 5)
        self.assertEqual(self.workflow.get_state(CASE_ID).questionnaire_id, questionnaire.id)

    def test_send_twice_returns_existing(self):
        """Test re-sending to the same client neither duplicates nor re-texts"""
        first, _ = self.send()
        second, warnings = self.service.send(CASE_ID)

        self.assertEqual(first.id, second.id)
        self.assertEqual(len(warnings), 1)
        self.assertEqual(len(self.repository.select(QUESTIONNAIRES_TABLE)), 1)
        self.assertEqual(len(self.sms.of_type('questionnaire_sent')), 1)

    def test_sms_failure_does_not_block_send(self):
        """Test a failed text still leaves the questionnaire sent"""
        self.sms.fail = True

        questionnaire, warnings = self.send()

        self.assertEqual(len(warnings), 1)
        self.assertEqual(self.service.get(questionnaire.id).id, questionnaire.id)

    def test_progress_then_single_completion(self):
        """Test 4 of 5 answers is in progress and the fifth completes and notifies once"""
        questionnaire, _ = self.send()
        questions = questionnaire.questions

        for question in questions[:4]:
            progress = self.service.save_answer(questionnaire.id, question.id, 'An answer')
        self.assertEqual(progress['status'], STATUS_IN_PROGRESS)
        self.assertEqual(progress['completed'], 4)
        self.assertEqual(self.completion_messages(), [])

        progress = self.service.save_answer(questionnaire.id, questions[4].id, 'Last answer')
        self.assertEqual(progress['status'], STATUS_COMPLETED)
        self.assertEqual(len(self.completion_messages()), 1)
        completed_at = self.service.get(questionnaire.id).completed_at
        self.assertIsNotNone(completed_at)

        # Later saves and retries never notify again
        self.service.save_answer(questionnaire.id, questions[4].id, 'Changed my mind')
        self.service.save_answer(questionnaire.id, questions[0].id, 'Another edit')
        self.assertEqual(len(self.completion_messages()), 1)
        self.assertEqual(self.service.get(questionnaire.id).completed_at, completed_at)
        self.assertEqual(self.completion_messages()[0]['to'], '5559876543')

    def test_blank_answer_is_not_counted(self):
        """Test whitespace answers do not count toward progress"""
        questionnaire, _ = self.send()

        progress = self.service.save_answer(questionnaire.id, questionnaire.questions[0].id, '   ')

        self.assertEqual(progress['completed'], 0)
        self.assertEqual(progress['status'], STATUS_PENDING)

    def test_failed_completion_text_can_retry(self):
        """Test a failed completion text releases the guard for the next save"""
        questionnaire, _ = self.send()
        self.sms.fail = True
        for question in questionnaire.questions:
            progress = self.service.save_answer(questionnaire.id, question.id, 'Answer')
        self.assertEqual(len(progress['warnings']), 1)
        self.assertIsNone(self.service.get(questionnaire.id).completion_notified_at)

        self.sms.fail = False
        progress = self.service.save_answer(questionnaire.id, questionnaire.questions[0].id, 'Answer again')
        self.assertEqual(progress['warnings'], [])
        self.assertIsNotNone(self.service.get(questionnaire.id).completion_notified_at)

        self.service.save_answer(questionnaire.id, questionnaire.questions[1].id, 'One more')
        # one failed attempt plus exactly one successful one
        self.assertEqual(len(self.completion_messages()), 2)

    def test_non_text_answer_is_rejected(self):
        """Test a non-text answer is refused and progress still works"""
        questionnaire, _ = self.send()
        first, second = questionnaire.questions[0], questionnaire.questions[1]

        with self.assertRaises(ValidationError):
            self.service.save_answer(questionnaire.id, first.id, 42)

        progress = self.service.save_answer(questionnaire.id, second.id, 'Answer')
        self.assertEqual(progress['completed'], 1)
        self.assertEqual(progress['status'], STATUS_IN_PROGRESS)

    def test_unknown_question_answer(self):
        """Test answering a question that is not in the questionnaire"""
        questionnaire, _ = self.send()

        with self.assertRaises(NotFoundError):
            self.service.save_answer(questionnaire.id, 'not-a-question', 'Answer')

    def test_update_keeps_answers(self):
        """Test pushing edited questions keeps existing answers"""
        questionnaire, _ = self.send()
        first = questionnaire.questions[0]
        self.service.save_answer(questionnaire.id, first.id, 'Jane Smith')

        self.workflow.compiler.edit(CASE_ID, first.id, 'What is your full legal name?')
        updated = self.workflow.update_questionnaire(CASE_ID)

        self.assertEqual(updated.questions[0].question, 'What is your full legal name?')
        self.assertEqual(updated.completed_questions, 1)
        response = self.service.get_responses(questionnaire.id)[0]
        self.assertEqual(response.question_text, 'What is your full legal name?')
        self.assertEqual(response.response_text, 'Jane Smith')

    def test_reminder_counts_remaining(self):
        """Test reminders report the number of unanswered questions"""
        questionnaire, _ = self.send()
        self.service.save_answer(questionnaire.id, questionnaire.questions[0].id, 'Answer')

        result = self.service.send_reminder(CASE_ID)

        self.assertTrue(result['sent'])
        self.assertEqual(result['remaining'], 4)
        self.assertEqual(self.sms.of_type('reminder')[0]['context']['remaining_questions'], 4)

    def test_reminder_after_completion_is_rejected(self):
        """Test no reminder is sent for a completed questionnaire"""
        self.send()
        answer_all(self.workflow)

        with self.assertRaises(ValidationError):
            self.service.send_reminder(CASE_ID)

    def test_poll_tolerates_missing_questionnaire(self):
        """Test polling before anything was sent"""
        self.assertEqual(self.service.poll(None)['status'], None)
        self.assertEqual(self.service.poll('missing')['total'], 0)

    def test_collect_answers_in_question_order(self):
        """Test collected answers follow the questionnaire order"""
        questionnaire, _ = self.send()
        answer_all(self.workflow)

        answers = self.service.collect_answers(questionnaire.id)

        self.assertEqual([a.question_id for a in answers], [q.id for q in questionnaire.questions])
        self.assertEqual(answers[0].response, 'Answer to State your full name.')


if __name__ == '__main__':
    unittest.main()
