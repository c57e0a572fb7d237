"""
Reject Task Handler.
POST /admin/tasks/{taskId}/reject
"""
from taskhived.auth import get_identity
from taskhived.dynamo import DynamoStore
from taskhived.errors import InvalidRequest, TaskHivedError
from taskhived.logging import log_event, logger
from taskhived.utils import error_response, format_response, get_path_param
from taskhived.verification import VerificationService

store = DynamoStore()


def handler(event, context):
    log_event(event)
    try:
        identity = get_identity(event)
        task_id = get_path_param(event, 'taskId')
        if not task_id:
            raise InvalidRequest('Missing taskId')

        task = VerificationService(store).reject(identity, task_id)
        return format_response(200, {'message': 'Task rejected', 'task': task})

    except TaskHivedError as e:
        return error_response(e)
    except Exception as e:
        logger.exception(f"Error rejecting task: {e}")
        return format_response(500, {'error': 'InternalError', 'message': 'Internal Server Error'})
