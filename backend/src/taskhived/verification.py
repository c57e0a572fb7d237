"""
Verification decisions on submitted tasks.

An admin approves or rejects a completed/under_review task, or triggers a
secondary AI re-score whose verdict goes through the same approve/reject
paths. Approval only authorizes payment (paymentStatus=pending); funds move
in the ledger step.
"""
from collections import namedtuple
from typing import Any, Dict, Optional

from .auth import require_admin
from .badges import refresh_badge_level
from .errors import AIServiceUnavailable, InvalidTransition, PayoutDestinationMissing, TaskNotFound
from .logging import log_transition, logger
from .models import REVIEWABLE_STATUSES, PaymentStatus, TaskStatus
from .policy import rescore_verdict
from .utils import isoformat, utc_now

RescoreOutcome = namedtuple('RescoreOutcome', ['verdict', 'task', 'score', 'comment'])

AI_RESCORE_REVIEWER = 'ai-rescore'


def has_payout_destination(profile: Optional[Dict[str, Any]]) -> bool:
    """A worker can be paid once a wallet address or payout method is on file."""
    if not profile:
        return False
    return bool(profile.get('walletAddress') or profile.get('payoutMethod'))


class VerificationService:
    """Admin approval, rejection and AI re-score of submitted tasks."""

    def __init__(self, store, scorer=None, clock=utc_now):
        self.store = store
        self.scorer = scorer
        self.clock = clock

    def approve(self, identity, task_id: str) -> Dict[str, Any]:
        """
        Mark a task verified and its payment pending.

        Raises:
            Forbidden, TaskNotFound, InvalidTransition, PayoutDestinationMissing,
            ConcurrentModification, PersistenceFailure
        """
        require_admin(identity)
        task = self._load_reviewable(task_id)
        return self._approve(task, reviewer=identity.user_id)

    def reject(self, identity, task_id: str) -> Dict[str, Any]:
        """Mark a task rejected. Terminal; no ledger entry is ever created for it."""
        require_admin(identity)
        task = self._load_reviewable(task_id)
        return self._reject(task, reviewer=identity.user_id)

    def rescore(self, identity, task_id: str) -> RescoreOutcome:
        """
        Run the secondary AI evaluation on a task awaiting a decision.

        A verdict at or above the threshold approves the task (with the same
        payout destination check), anything lower rejects it. If the scorer
        fails the status is left alone and the task is flagged for a human.
        """
        require_admin(identity)
        task = self._load_reviewable(task_id)

        try:
            review = self.scorer.review(
                task.get('title', ''),
                task.get('description', ''),
                task.get('submissionText')
            )
        except AIServiceUnavailable as e:
            logger.warning(f"Re-score failed for task {task_id}: {e}")
            updated = self.store.update_task(
                task_id, task['version'], {'requiresHumanReview': True},
                expected_statuses=REVIEWABLE_STATUSES
            )
            return RescoreOutcome(None, updated, None, None)

        verdict = rescore_verdict(review.score)
        logger.info(f"Task {task_id} re-scored {review.score}: {verdict}")

        extra = {
            'reviewScore': review.score,
            'reviewComment': review.comment,
            'reviewedByAi': True,
        }
        if verdict == TaskStatus.VERIFIED:
            try:
                updated = self._approve(task, reviewer=AI_RESCORE_REVIEWER, extra=extra)
            except PayoutDestinationMissing:
                # Keep the score for the admin who has to finish the approval
                self.store.update_task(
                    task_id, task['version'], dict(extra, requiresHumanReview=True),
                    expected_statuses=REVIEWABLE_STATUSES
                )
                raise
        else:
            updated = self._reject(task, reviewer=AI_RESCORE_REVIEWER, extra=extra)
        return RescoreOutcome(verdict, updated, review.score, review.comment)

    # =========================================================================
    # Transitions
    # =========================================================================

    def _load_reviewable(self, task_id: str) -> Dict[str, Any]:
        task = self.store.get_task(task_id)
        if not task:
            raise TaskNotFound()
        if task.get('status') not in REVIEWABLE_STATUSES:
            raise InvalidTransition(
                f"Task is '{task.get('status')}'; only completed or under_review tasks can be decided"
            )
        return task

    def _approve(self, task: Dict[str, Any], reviewer: str, extra: Dict[str, Any] = None) -> Dict[str, Any]:
        task_id = task['taskId']
        worker_id = task.get('workerId')
        profile = self.store.get_profile(worker_id) if worker_id else None
        if not has_payout_destination(profile):
            logger.warning(f"Approval of task {task_id} blocked: worker {worker_id} has no payout destination")
            raise PayoutDestinationMissing()

        changes = {
            'status': TaskStatus.VERIFIED,
            'paymentStatus': PaymentStatus.PENDING,
            'verifiedAt': isoformat(self.clock()),
            'reviewedBy': reviewer,
            'requiresHumanReview': False,
            # Approving work the AI did not pass is a human override
            'humanOverride': task.get('status') != TaskStatus.COMPLETED,
        }
        changes.update(extra or {})

        updated = self.store.update_task(
            task_id, task['version'], changes,
            expected_statuses=REVIEWABLE_STATUSES
        )
        log_transition(task_id, task.get('status'), TaskStatus.VERIFIED, reviewer, paymentStatus=PaymentStatus.PENDING)

        refresh_badge_level(self.store, worker_id, previous_count=int(profile.get('verifiedTaskCount') or 0))
        return updated

    def _reject(self, task: Dict[str, Any], reviewer: str, extra: Dict[str, Any] = None) -> Dict[str, Any]:
        task_id = task['taskId']
        changes = {
            'status': TaskStatus.REJECTED,
            'paymentStatus': PaymentStatus.REJECTED,
            'rejectedAt': isoformat(self.clock()),
            'reviewedBy': reviewer,
            'requiresHumanReview': False,
        }
        changes.update(extra or {})

        updated = self.store.update_task(
            task_id, task['version'], changes,
            expected_statuses=REVIEWABLE_STATUSES
        )
        log_transition(task_id, task.get('status'), TaskStatus.REJECTED, reviewer)
        return updated
