"""
Tests for workflow stage transitions, resumption, drafts and the questionnaire watcher
"""
import shutil
import tempfile
import time
import unittest

from fakes import (
    CASE_ID, CLIENT_ID, LAWYER_ID, FakeClaude, RecordingSms, answer_all, api_error,
    drive_to_question_review, make_workflow, upload
)
from models import Stage
from services.errors import GenerationError, NotFoundError, ValidationError


def wait_for(predicate, timeout=3.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


class TestStageTransitions(unittest.TestCase):
    """Test cases for guarded forward and free backward moves"""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.claude = FakeClaude()
        self.sms = RecordingSms()
        self.workflow = make_workflow(self.tmpdir, claude=self.claude, sms=self.sms)

    def tearDown(self):
        self.workflow.shutdown()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_open_new_case(self):
        """Test a new case starts at upload with the detected case type filled in"""
        state = self.workflow.open(CASE_ID, LAWYER_ID)

        self.assertEqual(state.stage, Stage.UPLOAD)
        self.assertEqual(state.detected_case_type, 'Personal Injury')
        self.assertEqual(state.case_type, 'Personal Injury')
        self.assertEqual(state.user_id, LAWYER_ID)

    def test_open_unknown_case(self):
        """Test opening a case that does not exist"""
        with self.assertRaises(NotFoundError):
            self.workflow.open('no-such-case')

    def test_upload_guard(self):
        """Test the upload stage needs at least one document"""
        self.workflow.open(CASE_ID, LAWYER_ID)

        with self.assertRaises(ValidationError):
            self.workflow.advance(CASE_ID)

        upload(self.workflow)
        state, warnings = self.workflow.advance(CASE_ID)
        self.assertEqual(state.stage, Stage.CASE_INFO)
        self.assertEqual(warnings, [])

    def test_case_info_guard(self):
        """Test case info needs a case type when none can be detected"""
        self.workflow.states.repository.update('cases', {'case_type': None}, {'id': CASE_ID})
        state = self.workflow.open(CASE_ID, LAWYER_ID)
        self.assertIsNone(state.case_type)
        upload(self.workflow)
        self.workflow.advance(CASE_ID)

        with self.assertRaises(ValidationError):
            self.workflow.advance(CASE_ID)

        self.workflow.save_draft(CASE_ID, case_type='Auto Accident')
        state, _ = self.workflow.advance(CASE_ID)
        self.assertEqual(state.stage, Stage.CLIENT_SELECT)
        self.assertEqual(state.case_type, 'Auto Accident')

    def test_detected_case_type_passes_case_info(self):
        """Test a case type read from the case row is enough to continue"""
        self.workflow.open(CASE_ID, LAWYER_ID)
        upload(self.workflow)
        self.workflow.advance(CASE_ID)

        state, _ = self.workflow.advance(CASE_ID)
        self.assertEqual(state.stage, Stage.CLIENT_SELECT)
        self.assertEqual(state.case_type, 'Personal Injury')

    def test_client_select_compiles_questions(self):
        """Test leaving client selection compiles the questions"""
        drive_to_question_review(self.workflow)

        state = self.workflow.get_state(CASE_ID)
        self.assertEqual(state.stage, Stage.QUESTION_REVIEW)
        self.assertEqual(len(state.client_questions), 2)
        self.assertEqual(state.selected_client_id, CLIENT_ID)

    def test_compile_failure_blocks_advance(self):
        """Test a failed compile keeps the case at client selection"""
        self.claude.simplify_all_fail = True

        with self.assertRaises(GenerationError):
            drive_to_question_review(self.workflow)
        self.assertEqual(self.workflow.get_state(CASE_ID).stage, Stage.CLIENT_SELECT)

    def test_select_unknown_client(self):
        """Test selecting a client that does not exist"""
        self.workflow.open(CASE_ID, LAWYER_ID)

        with self.assertRaises(NotFoundError):
            self.workflow.select_client(CASE_ID, 'nobody')

    def test_question_review_needs_sent_questionnaire(self):
        """Test the review stage is left only by sending"""
        drive_to_question_review(self.workflow)

        with self.assertRaises(ValidationError):
            self.workflow.advance(CASE_ID)

        self.workflow.send_questionnaire(CASE_ID)
        self.assertEqual(self.workflow.get_state(CASE_ID).stage, Stage.AWAITING_CLIENT)

    def test_switching_client_needs_a_new_questionnaire(self):
        """Test another client's answered questionnaire does not carry over"""
        self.workflow.states.repository.insert('clients', [{
            'id': 'client-2', 'first_name': 'John', 'last_name': 'Roe', 'phone': '5550001111'
        }])
        drive_to_question_review(self.workflow)
        questionnaire, _ = self.workflow.send_questionnaire(CASE_ID)
        answer_all(self.workflow)
        self.assertEqual(self.workflow.advance(CASE_ID)[0].stage, Stage.STRATEGY_REVIEW)
        for _ in range(3):
            self.workflow.go_back(CASE_ID)
        self.assertEqual(self.workflow.get_state(CASE_ID).stage, Stage.CLIENT_SELECT)

        state = self.workflow.select_client(CASE_ID, 'client-2')
        self.assertIsNone(state.questionnaire_id)
        self.assertFalse(state.has_client_responded)
        self.assertEqual(state.client_responses, [])

        state, _ = self.workflow.advance(CASE_ID)
        self.assertEqual(state.stage, Stage.QUESTION_REVIEW)
        with self.assertRaises(ValidationError):
            self.workflow.advance(CASE_ID)

        sent, _ = self.workflow.send_questionnaire(CASE_ID)
        self.assertNotEqual(sent.id, questionnaire.id)
        self.assertEqual(sent.client_id, 'client-2')
        with self.assertRaises(ValidationError):
            self.workflow.advance(CASE_ID)

        # Going back to the first client resumes its questionnaire
        self.workflow.go_back(CASE_ID)
        self.workflow.go_back(CASE_ID)
        state = self.workflow.select_client(CASE_ID, CLIENT_ID)
        self.assertEqual(state.questionnaire_id, questionnaire.id)

    def test_awaiting_client_guard(self):
        """Test the case waits until the client has answered everything"""
        drive_to_question_review(self.workflow)
        self.workflow.send_questionnaire(CASE_ID)

        with self.assertRaises(ValidationError):
            self.workflow.advance(CASE_ID)

        answer_all(self.workflow)
        state, warnings = self.workflow.advance(CASE_ID)
        self.assertEqual(state.stage, Stage.STRATEGY_REVIEW)
        self.assertTrue(state.has_client_responded)
        self.assertEqual(len(state.client_responses), 2)
        self.assertEqual(warnings, [])

    def test_narrative_failure_still_enters_strategy(self):
        """Test failed narrative generation is a warning, not a blocked move"""
        drive_to_question_review(self.workflow)
        self.workflow.send_questionnaire(CASE_ID)
        answer_all(self.workflow)
        self.claude.narrative_error = api_error()

        state, warnings = self.workflow.advance(CASE_ID)

        self.assertEqual(state.stage, Stage.STRATEGY_REVIEW)
        self.assertEqual(state.case_narratives, [])
        self.assertEqual(len(warnings), 1)

    def test_final_stage(self):
        """Test strategy review moves to generate, which is final"""
        drive_to_question_review(self.workflow)
        self.workflow.send_questionnaire(CASE_ID)
        answer_all(self.workflow)
        self.workflow.advance(CASE_ID)

        state, _ = self.workflow.advance(CASE_ID)
        self.assertEqual(state.stage, Stage.GENERATE)
        with self.assertRaises(ValidationError):
            self.workflow.advance(CASE_ID)

    def test_go_back_keeps_data(self):
        """Test stepping back never deletes anything"""
        drive_to_question_review(self.workflow)
        questions = self.workflow.get_state(CASE_ID).client_questions

        state = self.workflow.go_back(CASE_ID)
        self.assertEqual(state.stage, Stage.CLIENT_SELECT)
        self.assertEqual(state.client_questions, questions)

        self.workflow.go_back(CASE_ID)
        self.workflow.go_back(CASE_ID)
        state = self.workflow.go_back(CASE_ID)
        self.assertEqual(state.stage, Stage.UPLOAD)
        self.assertEqual(state.client_questions, questions)

        # Coming forward again reuses the compiled questions
        self.workflow.advance(CASE_ID)
        self.workflow.advance(CASE_ID)
        self.workflow.advance(CASE_ID)
        self.assertEqual(self.claude.calls['simplify'], 1)

    def test_state_survives_new_workflow(self):
        """Test state is persisted in the shared store"""
        drive_to_question_review(self.workflow)
        self.workflow.shutdown()

        other = make_workflow(self.tmpdir, claude=self.claude, repository=self.workflow.states.repository)
        try:
            state = other.open(CASE_ID)
            self.assertEqual(state.stage, Stage.QUESTION_REVIEW)
            self.assertEqual(len(state.client_questions), 2)
        finally:
            other.shutdown()


class TestResumption(unittest.TestCase):
    """Test cases for resuming a case whose questionnaire was already sent"""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.workflow = make_workflow(self.tmpdir)

    def tearDown(self):
        self.workflow.shutdown()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_open_resumes_at_awaiting_client(self):
        """Test a sent questionnaire jumps an earlier stage to awaiting client"""
        drive_to_question_review(self.workflow)
        questionnaire, _ = self.workflow.send_questionnaire(CASE_ID)
        self.workflow.go_back(CASE_ID)
        self.workflow.go_back(CASE_ID)
        self.assertEqual(self.workflow.get_state(CASE_ID).stage, Stage.CLIENT_SELECT)

        state = self.workflow.open(CASE_ID)

        self.assertEqual(state.stage, Stage.AWAITING_CLIENT)
        self.assertEqual(state.questionnaire_id, questionnaire.id)
        self.assertTrue(self.workflow.is_watching(CASE_ID))

    def test_question_review_is_not_skipped(self):
        """Test a case already reviewing questions stays there"""
        drive_to_question_review(self.workflow)
        self.workflow.questionnaires.send(CASE_ID)

        state = self.workflow.open(CASE_ID)

        self.assertEqual(state.stage, Stage.QUESTION_REVIEW)
        self.assertIsNotNone(state.questionnaire_id)


class TestDrafts(unittest.TestCase):
    """Test cases for debounced draft writes"""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def stored(self, workflow):
        return workflow.states.get(CASE_ID)

    def test_only_latest_value_is_written(self):
        """Test rapid edits collapse into one write of the latest value"""
        workflow = make_workflow(self.tmpdir, draft_delay=60)
        try:
            workflow.open(CASE_ID, LAWYER_ID)
            workflow.save_draft(CASE_ID, narration_notes='Client')
            workflow.save_draft(CASE_ID, narration_notes='Client was rear-ended')

            self.assertEqual(self.stored(workflow).narration_notes, '')
            self.assertEqual(workflow.get_state(CASE_ID).narration_notes, 'Client was rear-ended')

            workflow.flush_drafts(CASE_ID)
            self.assertEqual(self.stored(workflow).narration_notes, 'Client was rear-ended')
        finally:
            workflow.shutdown()

    def test_draft_written_after_pause(self):
        """Test a draft is persisted once edits stop"""
        workflow = make_workflow(self.tmpdir, draft_delay=0.05)
        try:
            workflow.open(CASE_ID, LAWYER_ID)
            workflow.save_draft(CASE_ID, case_type='Premises Liability')

            self.assertTrue(wait_for(lambda: self.stored(workflow).case_type == 'Premises Liability'))
        finally:
            workflow.shutdown()

    def test_close_drops_pending_draft(self):
        """Test closing the case discards unsaved drafts"""
        workflow = make_workflow(self.tmpdir, draft_delay=0.2)
        try:
            workflow.open(CASE_ID, LAWYER_ID)
            workflow.save_draft(CASE_ID, narration_notes='Never saved')
            workflow.close(CASE_ID)

            time.sleep(0.4)
            self.assertEqual(self.stored(workflow).narration_notes, '')
        finally:
            workflow.shutdown()

    def test_unknown_draft_field(self):
        """Test only draft fields can be saved this way"""
        workflow = make_workflow(self.tmpdir)
        try:
            with self.assertRaises(ValidationError):
                workflow.save_draft(CASE_ID, stage=7)
        finally:
            workflow.shutdown()


class TestQuestionnaireWatcher(unittest.TestCase):
    """Test cases for the background completion poller"""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.workflow = make_workflow(self.tmpdir, poll_interval=0.05)

    def tearDown(self):
        self.workflow.shutdown()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_watcher_records_completion(self):
        """Test the poller picks up completion and stops"""
        drive_to_question_review(self.workflow)
        self.workflow.send_questionnaire(CASE_ID)
        self.assertTrue(self.workflow.is_watching(CASE_ID))

        answer_all(self.workflow)

        self.assertTrue(wait_for(lambda: self.workflow.get_state(CASE_ID).has_client_responded))
        self.assertTrue(wait_for(lambda: not self.workflow.is_watching(CASE_ID)))
        self.assertEqual(len(self.workflow.get_state(CASE_ID).client_responses), 2)

    def test_close_stops_watcher(self):
        """Test closing the case cancels polling"""
        drive_to_question_review(self.workflow)
        self.workflow.send_questionnaire(CASE_ID)

        self.workflow.close(CASE_ID)

        self.assertFalse(self.workflow.is_watching(CASE_ID))

    def test_going_back_stops_watcher(self):
        """Test leaving awaiting client cancels polling"""
        drive_to_question_review(self.workflow)
        self.workflow.send_questionnaire(CASE_ID)

        self.workflow.go_back(CASE_ID)

        self.assertFalse(self.workflow.is_watching(CASE_ID))


if __name__ == '__main__':
    unittest.main()
