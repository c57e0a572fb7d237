"""
Exception taxonomy for the verification and payout pipeline.

Each error carries the HTTP status and the stable error code that API
handlers return, so handlers only need ``format_response(e.status_code, ...)``.
"""


class TaskHivedError(Exception):
    """Base class for all domain errors."""
    status_code = 500
    code = 'InternalError'

    def __init__(self, message: str = None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__

    def to_dict(self) -> dict:
        return {'error': self.code, 'message': self.message}


class InvalidRequest(TaskHivedError):
    """Request body or parameters are invalid."""
    status_code = 400
    code = 'InvalidRequest'


class Unauthorized(TaskHivedError):
    """Request is not authenticated."""
    status_code = 401
    code = 'Unauthorized'


class Forbidden(TaskHivedError):
    """Caller is not allowed to perform this operation."""
    status_code = 403
    code = 'Forbidden'


class NotAssignedWorker(Forbidden):
    """You are not assigned to this task."""
    code = 'NotAssignedWorker'


class TaskNotFound(TaskHivedError):
    """Task not found."""
    status_code = 404
    code = 'TaskNotFound'


class InvalidTransition(TaskHivedError):
    """Operation is not allowed from the task's current status."""
    status_code = 409
    code = 'InvalidTransition'


class AlreadySubmitted(TaskHivedError):
    """Task already submitted."""
    status_code = 409
    code = 'AlreadySubmitted'


class ConcurrentModification(TaskHivedError):
    """Task was modified concurrently; retry the operation."""
    status_code = 409
    code = 'ConcurrentModification'


class AlreadyPaid(TaskHivedError):
    """Task payment has already been recorded."""
    status_code = 409
    code = 'AlreadyPaid'


class DuplicateTransaction(TaskHivedError):
    """Ledger entry with this id already exists."""
    status_code = 409
    code = 'DuplicateTransaction'


class PayoutDestinationMissing(TaskHivedError):
    """Worker has no wallet address or payout method configured."""
    status_code = 422
    code = 'PayoutDestinationMissing'


class InsufficientFunds(TaskHivedError):
    """Available balance is lower than the requested amount."""
    status_code = 402
    code = 'InsufficientFunds'


class AIServiceUnavailable(TaskHivedError):
    """AI validation service unavailable."""
    status_code = 503
    code = 'AIServiceUnavailable'


class PersistenceFailure(TaskHivedError):
    """Failed to persist changes; nothing was committed."""
    status_code = 500
    code = 'PersistenceFailure'
