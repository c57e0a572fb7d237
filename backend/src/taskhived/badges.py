"""
Badges module - Worker badge levels derived from verified task counts.
"""
from .errors import PersistenceFailure
from .logging import logger
from .models import BadgeLevel, TaskStatus


# Minimum verified tasks for each level, highest first
BADGE_THRESHOLDS = (
    (BadgeLevel.EXPERT, 50),
    (BadgeLevel.ADVANCED, 20),
    (BadgeLevel.INTERMEDIATE, 5),
    (BadgeLevel.BEGINNER, 0),
)

NEXT_LEVEL = {
    BadgeLevel.BEGINNER: (BadgeLevel.INTERMEDIATE, 5),
    BadgeLevel.INTERMEDIATE: (BadgeLevel.ADVANCED, 20),
    BadgeLevel.ADVANCED: (BadgeLevel.EXPERT, 50),
}


def calculate_badge_level(verified_count: int) -> str:
    """
    Calculate a worker's badge from the number of verified tasks.

    Rules:
    - EXPERT: 50+ verified tasks
    - ADVANCED: 20+
    - INTERMEDIATE: 5+
    - BEGINNER: default
    """
    for level, minimum in BADGE_THRESHOLDS:
        if verified_count >= minimum:
            return level
    return BadgeLevel.BEGINNER


def badge_progress(verified_count: int) -> dict:
    """
    Get progress information toward the next badge.

    Returns:
        Dict with current_level, next_level, required, remaining, progress_pct
    """
    level = calculate_badge_level(verified_count)
    if level not in NEXT_LEVEL:
        return {
            'current_level': level,
            'next_level': None,
            'required': None,
            'remaining': 0,
            'progress_pct': 100
        }

    next_level, required = NEXT_LEVEL[level]
    return {
        'current_level': level,
        'next_level': next_level,
        'required': required,
        'remaining': required - verified_count,
        'progress_pct': round(min(verified_count / required, 1.0) * 100, 1)
    }


def refresh_badge_level(store, worker_id: str, previous_count: int = None) -> str:
    """
    Recount a worker's verified tasks and store the derived badge.
    The badge is a projection; a failed refresh is logged and retried on the next verification.

    The count comes from an eventually consistent index that can miss the
    task just verified, so when ``previous_count`` (the stored count before
    this approval) is given the new count is at least one above it.
    """
    try:
        verified_count = store.count_worker_tasks(worker_id, TaskStatus.VERIFIED)
        if previous_count is not None:
            verified_count = max(verified_count, previous_count + 1)
        level = calculate_badge_level(verified_count)
        store.update_profile(worker_id, {'badgeLevel': level, 'verifiedTaskCount': verified_count})
    except PersistenceFailure as e:
        logger.warning(f"Could not refresh badge for worker {worker_id}: {e}")
        return None
    logger.info(f"Worker {worker_id} badge: {level} ({verified_count} verified)")
    return level
