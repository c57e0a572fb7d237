"""
Decision policy for task verification.

Submission pass/fail and the admin-triggered re-score are separate checks:
the first decides completed vs. under_review at submission time, the second
decides verified vs. rejected against RESCORE_VERIFY_THRESHOLD.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict

from .config import config
from .models import TaskStatus
from .scoring import ScoreResult
from .utils import isoformat

FALLBACK_SUMMARY = 'AI validation service unavailable, flagging for human review'


def compute_time_taken(created_at: datetime, now: datetime) -> int:
    """
    Whole minutes between task creation and submission.
    Clock skew can put ``created_at`` in the future; that counts as 0.
    """
    seconds = (now - created_at).total_seconds()
    return max(int(seconds // 60), 0)


def fail_safe_result() -> ScoreResult:
    """Outcome used whenever the scorer fails: never passes, always reviewed."""
    return ScoreResult(None, False, FALLBACK_SUMMARY)


def decide_submission(result: ScoreResult, now: datetime) -> Dict[str, Any]:
    """
    Map a scoring result to the task fields written at submission time.

    passed → completed (awaiting admin approval)
    otherwise → under_review with requiresHumanReview
    """
    if result.passed:
        return {
            'status': TaskStatus.COMPLETED,
            'completedAt': isoformat(now),
            'requiresHumanReview': False,
            'score': result.score,
            'aiSummary': result.summary,
        }
    return {
        'status': TaskStatus.UNDER_REVIEW,
        'completedAt': None,
        'requiresHumanReview': True,
        'score': result.score,
        'aiSummary': result.summary,
    }


def rescore_verdict(score: Decimal, threshold: Decimal = None) -> str:
    """Secondary re-score: at or above the threshold verifies, below rejects."""
    if threshold is None:
        threshold = config.RESCORE_VERIFY_THRESHOLD
    return TaskStatus.VERIFIED if score >= threshold else TaskStatus.REJECTED
