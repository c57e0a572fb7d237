"""
Tests for the worker submission pipeline.
"""
import threading
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from conftest import NOW


def make_pipeline(store, scorer, clock, **kwargs):
    from taskhived.submission import SubmissionPipeline
    kwargs.setdefault('mode', 'sync')
    return SubmissionPipeline(store, scorer, clock=clock, **kwargs)


class TestSubmitDecision:
    """AI outcome to task status."""

    def test_passing_score_completes_task(self, store, scorer, clock, worker, make_task):
        """AI passes the work: completed, payment still needs admin approval."""
        from taskhived.models import PaymentStatus, TaskStatus

        task = make_task(payment=Decimal('15.00'))
        outcome = make_pipeline(store, scorer, clock).submit(worker, task['taskId'], 'All boxes drawn')

        stored = store.tasks[task['taskId']]
        assert outcome.status == TaskStatus.COMPLETED
        assert stored['status'] == TaskStatus.COMPLETED
        assert stored['paymentStatus'] == PaymentStatus.NONE
        assert stored['requiresHumanReview'] is False
        assert stored['completedAt'] == NOW.isoformat()
        assert stored['score'] == Decimal('4')
        assert stored['submissionText'] == 'All boxes drawn'
        assert stored['version'] == 2
        assert store.transactions == {}

    def test_ai_timeout_routes_to_human_review(self, store, scorer, clock, worker, make_task, timeout_error):
        from taskhived.models import TaskStatus
        from taskhived.policy import FALLBACK_SUMMARY

        task = make_task()
        scorer.error = timeout_error
        outcome = make_pipeline(store, scorer, clock).submit(worker, task['taskId'], 'done')

        stored = store.tasks[task['taskId']]
        assert outcome.status == TaskStatus.UNDER_REVIEW
        assert stored['status'] == TaskStatus.UNDER_REVIEW
        assert stored['requiresHumanReview'] is True
        assert stored['completedAt'] is None
        assert stored['score'] is None
        assert stored['aiSummary'] == FALLBACK_SUMMARY

    def test_failing_score_goes_to_review(self, store, scorer, clock, worker, make_task):
        from taskhived.models import TaskStatus
        from taskhived.scoring import ScoreResult

        task = make_task()
        scorer.result = ScoreResult(Decimal('1.5'), False, 'Only half the images labelled')
        outcome = make_pipeline(store, scorer, clock).submit(worker, task['taskId'], 'partial')

        assert outcome.status == TaskStatus.UNDER_REVIEW
        assert outcome.summary == 'Only half the images labelled'
        assert store.tasks[task['taskId']]['requiresHumanReview'] is True

    def test_malformed_ai_output_routes_to_review(self, store, clock, worker, make_task):
        """A non-JSON completion is treated like an outage."""
        from taskhived.models import TaskStatus
        from taskhived.scoring import OpenAIScorer

        openai_client = MagicMock()
        openai_client.chat.completions.create.return_value.choices = [
            MagicMock(message=MagicMock(content='Looks great to me!'))
        ]
        task = make_task()
        outcome = make_pipeline(store, OpenAIScorer(client=openai_client), clock).submit(
            worker, task['taskId'], 'done'
        )

        assert outcome.status == TaskStatus.UNDER_REVIEW
        assert store.tasks[task['taskId']]['requiresHumanReview'] is True

    def test_time_taken_in_minutes(self, store, scorer, clock, worker, make_task):
        task = make_task(createdAt='2024-06-01T11:30:00Z')
        make_pipeline(store, scorer, clock).submit(worker, task['taskId'], 'done')

        assert store.tasks[task['taskId']]['timeTaken'] == 30
        assert scorer.calls[0][3] == 30

    def test_created_in_future_clamps_to_zero(self, store, scorer, clock, worker, make_task):
        """Clock skew must not produce a negative duration."""
        future = (NOW + timedelta(minutes=5)).isoformat()
        task = make_task(createdAt=future)
        make_pipeline(store, scorer, clock).submit(worker, task['taskId'], 'done')

        assert store.tasks[task['taskId']]['timeTaken'] == 0

    def test_resubmit_from_under_review(self, store, scorer, clock, worker, make_task):
        from taskhived.models import TaskStatus

        task = make_task(status=TaskStatus.UNDER_REVIEW, requiresHumanReview=True, version=3)
        outcome = make_pipeline(store, scorer, clock).submit(worker, task['taskId'], 'fixed it')

        assert outcome.status == TaskStatus.COMPLETED
        assert store.tasks[task['taskId']]['requiresHumanReview'] is False


class TestSubmitGuards:
    """Preconditions and duplicate protection."""

    def test_missing_task(self, store, scorer, clock, worker):
        from taskhived.errors import TaskNotFound

        with pytest.raises(TaskNotFound):
            make_pipeline(store, scorer, clock).submit(worker, 'nope', 'done')

    def test_other_worker_rejected(self, store, scorer, clock, make_task):
        from taskhived.auth import Identity
        from taskhived.errors import NotAssignedWorker
        from taskhived.models import TaskStatus

        task = make_task()
        intruder = Identity('worker-2', None, ('worker',))
        with pytest.raises(NotAssignedWorker):
            make_pipeline(store, scorer, clock).submit(intruder, task['taskId'], 'mine now')

        assert store.tasks[task['taskId']]['status'] == TaskStatus.ASSIGNED
        assert scorer.calls == []

    def test_open_task_cannot_be_submitted(self, store, scorer, clock, worker, make_task):
        from taskhived.errors import InvalidTransition
        from taskhived.models import TaskStatus

        task = make_task(status=TaskStatus.OPEN)
        with pytest.raises(InvalidTransition):
            make_pipeline(store, scorer, clock).submit(worker, task['taskId'], 'done')

    @pytest.mark.parametrize('status', ['submitted', 'completed', 'verified', 'rejected'])
    def test_already_submitted_statuses(self, store, scorer, clock, worker, make_task, status):
        from taskhived.errors import AlreadySubmitted

        task = make_task(status=status)
        with pytest.raises(AlreadySubmitted):
            make_pipeline(store, scorer, clock).submit(worker, task['taskId'], 'again')
        assert scorer.calls == []

    def test_second_submit_rejected(self, store, scorer, clock, worker, make_task):
        from taskhived.errors import AlreadySubmitted

        task = make_task()
        pipeline = make_pipeline(store, scorer, clock)
        pipeline.submit(worker, task['taskId'], 'first')

        with pytest.raises(AlreadySubmitted):
            pipeline.submit(worker, task['taskId'], 'second')

        assert len(scorer.calls) == 1
        assert store.tasks[task['taskId']]['submissionText'] == 'first'

    def test_concurrent_submits_score_once(self, store, scorer, clock, worker, make_task):
        """Two simultaneous submits: one is scored, the other sees AlreadySubmitted."""
        from taskhived.errors import AlreadySubmitted

        task = make_task()
        pipeline = make_pipeline(store, scorer, clock)
        barrier = threading.Barrier(2)
        results = []

        def submit(text):
            barrier.wait()
            try:
                results.append(pipeline.submit(worker, task['taskId'], text))
            except AlreadySubmitted as e:
                results.append(e)

        threads = [threading.Thread(target=submit, args=(t,)) for t in ('a', 'b')]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        errors = [r for r in results if isinstance(r, AlreadySubmitted)]
        assert len(results) == 2
        assert len(errors) == 1
        assert len(scorer.calls) == 1

    def test_failed_decision_write_can_be_retried(self, store, scorer, clock, worker, make_task):
        """The claim is released when the decision cannot be saved."""
        from taskhived.errors import PersistenceFailure
        from taskhived.models import TaskStatus

        task = make_task()
        real_update = store.update_task
        failures = []

        def update_task(task_id, expected_version, changes, expected_statuses=None):
            if changes.get('status') == TaskStatus.COMPLETED and not failures:
                failures.append(task_id)
                raise PersistenceFailure('Failed to update task')
            return real_update(task_id, expected_version, changes, expected_statuses=expected_statuses)

        pipeline = make_pipeline(store, scorer, clock)
        with patch.object(store, 'update_task', side_effect=update_task):
            with pytest.raises(PersistenceFailure):
                pipeline.submit(worker, task['taskId'], 'first try')

            assert store.tasks[task['taskId']]['status'] == TaskStatus.ASSIGNED

            outcome = pipeline.submit(worker, task['taskId'], 'second try')

        assert outcome.status == TaskStatus.COMPLETED
        assert store.tasks[task['taskId']]['submissionText'] == 'second try'
        assert len(scorer.calls) == 2

    def test_unreleased_claim_is_left_for_sweep(self, store, scorer, clock, worker, make_task):
        from taskhived.errors import PersistenceFailure
        from taskhived.models import TaskStatus

        task = make_task()
        real_update = store.update_task

        def update_task(task_id, expected_version, changes, expected_statuses=None):
            if changes.get('status') != TaskStatus.SUBMITTED:
                raise PersistenceFailure('Failed to update task')
            return real_update(task_id, expected_version, changes, expected_statuses=expected_statuses)

        with patch.object(store, 'update_task', side_effect=update_task):
            with pytest.raises(PersistenceFailure):
                make_pipeline(store, scorer, clock).submit(worker, task['taskId'], 'done')

        assert store.tasks[task['taskId']]['status'] == TaskStatus.SUBMITTED


class TestAttachments:
    """Best-effort file upload."""

    def test_upload_failure_does_not_block_submission(self, store, scorer, clock, worker, make_task):
        from taskhived.models import TaskStatus

        attachments = MagicMock()
        attachments.store.return_value = None
        task = make_task()
        outcome = make_pipeline(store, scorer, clock, attachments=attachments).submit(
            worker, task['taskId'], 'done', {'name': 'a.png', 'content': 'bad'}
        )

        assert outcome.status == TaskStatus.COMPLETED
        assert store.tasks[task['taskId']]['filePath'] is None
        assert scorer.calls[0][4] is False

    def test_stored_file_path_recorded(self, store, scorer, clock, worker, make_task):
        attachments = MagicMock()
        attachments.store.return_value = 'task-submissions/task-1-1717243200000-a.png'
        task = make_task()
        make_pipeline(store, scorer, clock, attachments=attachments).submit(
            worker, task['taskId'], 'done', {'name': 'a.png', 'content': 'aGk='}
        )

        assert store.tasks[task['taskId']]['filePath'] == 'task-submissions/task-1-1717243200000-a.png'
        assert scorer.calls[0][4] is True
        attachments.store.assert_called_once_with(task['taskId'], {'name': 'a.png', 'content': 'aGk='}, NOW)


class TestQueuedMode:
    """Hand-off to the scoring worker."""

    def test_submit_enqueues_and_returns_submitted(self, store, scorer, clock, worker, make_task):
        from taskhived.models import TaskStatus

        send = MagicMock(return_value=True)
        task = make_task()
        pipeline = make_pipeline(store, scorer, clock, mode='queued', queue_url='https://queue', send=send)
        outcome = pipeline.submit(worker, task['taskId'], 'done')

        assert outcome.status == TaskStatus.SUBMITTED
        assert scorer.calls == []
        send.assert_called_once_with('https://queue', {'taskId': task['taskId'], 'version': 1, 'filePath': None})

    def test_scoring_worker_decides_once(self, store, scorer, clock, worker, make_task):
        from taskhived.models import TaskStatus

        task = make_task()
        pipeline = make_pipeline(store, scorer, clock, mode='queued', queue_url='q', send=MagicMock(return_value=True))
        pipeline.submit(worker, task['taskId'], 'done')

        outcome = pipeline.score_claimed(task['taskId'], expected_version=1)
        assert outcome.status == TaskStatus.COMPLETED

        # Redelivery is a no-op
        assert pipeline.score_claimed(task['taskId'], expected_version=1) is None
        assert len(scorer.calls) == 1

    def test_stale_version_skipped(self, store, scorer, clock, make_task):
        from taskhived.models import TaskStatus

        task = make_task(status=TaskStatus.SUBMITTED, version=4)
        pipeline = make_pipeline(store, scorer, clock)

        assert pipeline.score_claimed(task['taskId'], expected_version=2) is None
        assert store.tasks[task['taskId']]['status'] == TaskStatus.SUBMITTED

    def test_enqueue_failure_scores_inline(self, store, scorer, clock, worker, make_task):
        from taskhived.models import TaskStatus

        task = make_task()
        pipeline = make_pipeline(store, scorer, clock, mode='queued', queue_url='q', send=MagicMock(return_value=False))
        outcome = pipeline.submit(worker, task['taskId'], 'done')

        assert outcome.status == TaskStatus.COMPLETED
        assert len(scorer.calls) == 1


class TestSweepStale:
    """Submissions stuck in flight."""

    def test_stale_submission_routed_to_review(self, store, scorer, clock, make_task):
        from taskhived.models import TaskStatus
        from taskhived.policy import FALLBACK_SUMMARY

        stale = make_task(status=TaskStatus.SUBMITTED, submittedAt=(NOW - timedelta(minutes=30)).isoformat())
        fresh = make_task(status=TaskStatus.SUBMITTED, submittedAt=(NOW - timedelta(minutes=2)).isoformat())

        result = make_pipeline(store, scorer, clock).sweep_stale()

        assert result == {'checked': 1, 'swept': 1}
        assert store.tasks[stale['taskId']]['status'] == TaskStatus.UNDER_REVIEW
        assert store.tasks[stale['taskId']]['aiSummary'] == FALLBACK_SUMMARY
        assert store.tasks[fresh['taskId']]['status'] == TaskStatus.SUBMITTED
