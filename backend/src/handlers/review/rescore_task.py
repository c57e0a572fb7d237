"""
Re-score Task Handler.
POST /admin/tasks/{taskId}/rescore
"""
from taskhived.auth import get_identity
from taskhived.dynamo import DynamoStore
from taskhived.errors import InvalidRequest, TaskHivedError
from taskhived.logging import log_event, logger
from taskhived.scoring import get_scorer
from taskhived.utils import error_response, format_response, get_path_param
from taskhived.verification import VerificationService

store = DynamoStore()


def handler(event, context):
    """
    Run the secondary AI evaluation and apply its verdict.
    When the AI is unavailable the task stays put, flagged for a human.
    """
    log_event(event)
    try:
        identity = get_identity(event)
        task_id = get_path_param(event, 'taskId')
        if not task_id:
            raise InvalidRequest('Missing taskId')

        outcome = VerificationService(store, scorer=get_scorer()).rescore(identity, task_id)
        if outcome.verdict is None:
            message = 'AI re-score unavailable; task flagged for human review'
        else:
            message = f'Task {outcome.verdict} by AI re-score'

        return format_response(200, {
            'message': message,
            'verdict': outcome.verdict,
            'score': outcome.score,
            'comment': outcome.comment,
            'task': outcome.task,
        })

    except TaskHivedError as e:
        return error_response(e)
    except Exception as e:
        logger.exception(f"Error re-scoring task: {e}")
        return format_response(500, {'error': 'InternalError', 'message': 'Internal Server Error'})
