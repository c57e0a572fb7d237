"""
Data models and status constants for the TaskHived backend.
Based on the task lifecycle: Open → Assigned → Submitted → Completed/UnderReview → Verified/Rejected → Paid
"""


class TaskStatus:
    """Task lifecycle statuses."""
    OPEN = 'open'
    ASSIGNED = 'assigned'
    SUBMITTED = 'submitted'  # Internal: submission claimed, scoring in flight
    COMPLETED = 'completed'  # AI passed, awaiting admin approval
    UNDER_REVIEW = 'under_review'
    VERIFIED = 'verified'
    REJECTED = 'rejected'


class PaymentStatus:
    """Task payment statuses."""
    NONE = 'none'
    PENDING = 'pending'
    PROCESSING = 'processing'
    PAID = 'paid'
    REJECTED = 'rejected'


class TransactionType:
    """Ledger entry types."""
    DEPOSIT = 'deposit'
    PAYMENT = 'payment'
    WITHDRAWAL = 'withdrawal'


class TransactionStatus:
    """Ledger entry statuses."""
    PENDING = 'pending'
    COMPLETED = 'completed'
    FAILED = 'failed'


class UserRole:
    """Account roles, mirrored by the Cognito groups."""
    WORKER = 'worker'
    CLIENT = 'client'
    ADMIN = 'admin'


class KycStatus:
    """Identity verification statuses."""
    NONE = 'none'
    PENDING_VERIFICATION = 'pending_verification'
    VERIFIED = 'verified'
    DECLINED = 'declined'


class BadgeLevel:
    """Worker badge levels, derived from the verified task count."""
    BEGINNER = 'beginner'
    INTERMEDIATE = 'intermediate'
    ADVANCED = 'advanced'
    EXPERT = 'expert'


# A worker may (re)submit from these statuses
SUBMITTABLE_STATUSES = (TaskStatus.ASSIGNED, TaskStatus.UNDER_REVIEW)

# Submission already decided; a new submission is rejected
DECIDED_STATUSES = (TaskStatus.COMPLETED, TaskStatus.VERIFIED, TaskStatus.REJECTED)

# Statuses an admin (or the re-score pass) may decide on
REVIEWABLE_STATUSES = (TaskStatus.COMPLETED, TaskStatus.UNDER_REVIEW)
