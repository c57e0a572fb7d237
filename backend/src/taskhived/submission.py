"""
Task submission pipeline.

    assigned/under_review ──claim──> submitted ──score+decide──> completed | under_review

The claim is a version-conditioned write that doubles as the per-task
in-flight marker: a duplicate request loses the condition and gets
AlreadySubmitted instead of triggering a second AI call. The decision is
persisted in one conditioned update from ``submitted``; if that write fails
the claim is released so the worker can submit again.
"""
from collections import namedtuple
from datetime import timedelta
from typing import Any, Dict, Optional

from .config import config
from .errors import (
    AIServiceUnavailable,
    AlreadySubmitted,
    ConcurrentModification,
    InvalidTransition,
    NotAssignedWorker,
    PersistenceFailure,
    TaskNotFound,
)
from .logging import log_transition, logger
from .models import DECIDED_STATUSES, SUBMITTABLE_STATUSES, TaskStatus
from .policy import compute_time_taken, decide_submission, fail_safe_result
from .sqs import send_message
from .utils import isoformat, parse_timestamp, utc_now

SubmissionOutcome = namedtuple('SubmissionOutcome', ['status', 'task', 'message', 'score', 'summary'])

MESSAGES = {
    TaskStatus.COMPLETED: 'Task completed successfully!',
    TaskStatus.UNDER_REVIEW: 'Submission under manual review.',
    TaskStatus.SUBMITTED: 'Submission received and queued for validation.',
}

MODE_SYNC = 'sync'
MODE_QUEUED = 'queued'


class SubmissionPipeline:
    """Runs worker submissions through claim, scoring and decision."""

    def __init__(
        self,
        store,
        scorer,
        attachments=None,
        clock=utc_now,
        mode: str = None,
        queue_url: str = None,
        send=send_message
    ):
        self.store = store
        self.scorer = scorer
        self.attachments = attachments
        self.clock = clock
        self.mode = mode or config.SUBMISSION_MODE
        self.queue_url = queue_url if queue_url is not None else config.SCORING_QUEUE_URL
        self.send = send

    def submit(
        self,
        identity,
        task_id: str,
        comment: Optional[str],
        attachment: Optional[Dict[str, Any]] = None
    ) -> SubmissionOutcome:
        """
        Submit work for a task on behalf of its assigned worker.

        Raises:
            TaskNotFound, NotAssignedWorker, AlreadySubmitted, InvalidTransition,
            ConcurrentModification, PersistenceFailure
        """
        task = self.store.get_task(task_id)
        if not task:
            raise TaskNotFound()

        if task.get('workerId') != identity.user_id:
            raise NotAssignedWorker()

        self._ensure_submittable(task)

        now = self.clock()
        time_taken = self._time_taken(task, now)
        claimed = self._claim(task, comment, time_taken, now)
        log_transition(task_id, task.get('status'), TaskStatus.SUBMITTED, identity.user_id, timeTaken=time_taken)

        file_path = None
        if attachment and self.attachments is not None:
            file_path = self.attachments.store(task_id, attachment, now)

        if self.mode == MODE_QUEUED:
            sent = self.send(self.queue_url, {
                'taskId': task_id,
                'version': claimed['version'],
                'filePath': file_path,
            })
            if sent:
                return SubmissionOutcome(
                    TaskStatus.SUBMITTED, claimed, MESSAGES[TaskStatus.SUBMITTED], None, None
                )
            logger.warning(f"Could not enqueue scoring for task {task_id}, scoring inline")

        try:
            return self._score_and_persist(claimed, file_path)
        except PersistenceFailure:
            self._release_claim(claimed, task.get('status'))
            raise

    def score_claimed(
        self,
        task_id: str,
        expected_version=None,
        file_path: Optional[str] = None
    ) -> Optional[SubmissionOutcome]:
        """
        Score a claimed submission (scoring worker entry point).

        Returns None without writing if the task is no longer in flight or
        has moved past ``expected_version``; redelivered messages are no-ops.
        """
        task = self.store.get_task(task_id)
        if not task:
            logger.warning(f"Task {task_id} not found for scoring")
            return None

        if task.get('status') != TaskStatus.SUBMITTED:
            logger.info(f"Task {task_id} is {task.get('status')}, skipping duplicate scoring")
            return None

        if expected_version is not None and task.get('version') != expected_version:
            logger.info(f"Task {task_id} at version {task.get('version')}, expected {expected_version}; skipping")
            return None

        return self._score_and_persist(task, file_path)

    def sweep_stale(self, now=None) -> Dict[str, int]:
        """
        Route submissions stuck in flight past STALE_SUBMISSION_MINUTES to
        human review with the fail-safe outcome.
        """
        now = now or self.clock()
        cutoff = now - timedelta(minutes=config.STALE_SUBMISSION_MINUTES)
        stale = self.store.list_tasks_by_status(TaskStatus.SUBMITTED, submitted_before=isoformat(cutoff))
        logger.info(f"Found {len(stale)} submissions in flight since before {isoformat(cutoff)}")

        swept = 0
        for task in stale:
            changes = decide_submission(fail_safe_result(), now)
            changes['filePath'] = task.get('filePath')
            try:
                self.store.update_task(
                    task['taskId'], task['version'], changes,
                    expected_statuses=[TaskStatus.SUBMITTED]
                )
            except ConcurrentModification:
                logger.info(f"Task {task['taskId']} finished scoring during sweep")
                continue
            except PersistenceFailure as e:
                logger.error(f"Error sweeping task {task['taskId']}: {e}")
                continue
            logger.warning(f"Task {task['taskId']} routed to human review after stalled scoring")
            swept += 1

        return {'checked': len(stale), 'swept': swept}

    # =========================================================================
    # Steps
    # =========================================================================

    def _ensure_submittable(self, task: Dict[str, Any]) -> None:
        status = task.get('status')
        if status == TaskStatus.SUBMITTED or status in DECIDED_STATUSES:
            raise AlreadySubmitted()
        if status not in SUBMITTABLE_STATUSES:
            raise InvalidTransition(f"Cannot submit a task in status '{status}'")

    def _time_taken(self, task: Dict[str, Any], now) -> int:
        created_at = task.get('createdAt')
        if not created_at:
            return 0
        try:
            return compute_time_taken(parse_timestamp(created_at), now)
        except ValueError:
            logger.warning(f"Task {task.get('taskId')} has unparseable createdAt {created_at!r}")
            return 0

    def _claim(self, task: Dict[str, Any], comment: Optional[str], time_taken: int, now) -> Dict[str, Any]:
        task_id = task['taskId']
        try:
            return self.store.update_task(
                task_id,
                task.get('version', 0),
                {
                    'status': TaskStatus.SUBMITTED,
                    'submittedAt': isoformat(now),
                    'submissionText': comment or None,
                    'timeTaken': time_taken,
                },
                expected_statuses=SUBMITTABLE_STATUSES
            )
        except ConcurrentModification:
            current = self.store.get_task(task_id) or {}
            if current.get('status') == TaskStatus.SUBMITTED or current.get('status') in DECIDED_STATUSES:
                logger.info(f"Duplicate submission for task {task_id} rejected")
                raise AlreadySubmitted()
            raise

    def _release_claim(self, claimed: Dict[str, Any], prior_status: str) -> None:
        """Put a claimed task back to its prior status so the worker can retry."""
        task_id = claimed['taskId']
        try:
            self.store.update_task(
                task_id, claimed['version'], {'status': prior_status},
                expected_statuses=[TaskStatus.SUBMITTED]
            )
        except ConcurrentModification:
            logger.info(f"Task {task_id} moved on before its claim was released")
            return
        except PersistenceFailure as e:
            logger.error(f"Could not release claim on task {task_id}: {e}; left for the stale sweep")
            return
        log_transition(task_id, TaskStatus.SUBMITTED, prior_status, reason='decision not saved')

    def _score(self, task: Dict[str, Any], file_path: Optional[str]):
        try:
            return self.scorer.score(
                task.get('title', ''),
                task.get('description', ''),
                task.get('submissionText'),
                int(task.get('timeTaken') or 0),
                has_attachment=bool(file_path)
            )
        except AIServiceUnavailable as e:
            logger.warning(f"AI validation failed for task {task.get('taskId')}: {e}; flagging for human review")
            return fail_safe_result()

    def _score_and_persist(self, task: Dict[str, Any], file_path: Optional[str]) -> SubmissionOutcome:
        result = self._score(task, file_path)
        changes = decide_submission(result, self.clock())
        changes.update({
            'filePath': file_path,
            'submittedAt': task.get('submittedAt'),
            'submissionText': task.get('submissionText'),
            'timeTaken': task.get('timeTaken'),
        })

        updated = self.store.update_task(
            task['taskId'], task['version'], changes,
            expected_statuses=[TaskStatus.SUBMITTED]
        )
        status = updated['status']
        log_transition(task['taskId'], TaskStatus.SUBMITTED, status, score=result.score)
        return SubmissionOutcome(status, updated, MESSAGES[status], result.score, result.summary)
