"""
Assign Task Handler.
POST /worker/tasks/{taskId}/assign
"""
from taskhived.auth import get_identity, require_worker
from taskhived.dynamo import DynamoStore
from taskhived.errors import ConcurrentModification, InvalidRequest, InvalidTransition, TaskHivedError, TaskNotFound
from taskhived.logging import log_event, logger
from taskhived.models import TaskStatus
from taskhived.utils import error_response, format_response, get_path_param, isoformat, utc_now

store = DynamoStore()


def handler(event, context):
    """
    Handler for a worker claiming an open task.
    Two workers racing for the same task: the version check lets exactly one win.
    """
    log_event(event)
    try:
        identity = get_identity(event)
        require_worker(identity)

        task_id = get_path_param(event, 'taskId')
        if not task_id:
            raise InvalidRequest('Missing taskId')

        task = store.get_task(task_id)
        if not task:
            raise TaskNotFound()
        if task.get('status') != TaskStatus.OPEN:
            raise InvalidTransition('Task is no longer available or already assigned.')
        if task.get('clientId') == identity.user_id:
            raise InvalidTransition('You cannot work on your own task.')

        try:
            updated = store.update_task(
                task_id,
                task['version'],
                {
                    'status': TaskStatus.ASSIGNED,
                    'workerId': identity.user_id,
                    'assignedAt': isoformat(utc_now()),
                },
                expected_statuses=[TaskStatus.OPEN]
            )
        except ConcurrentModification:
            raise InvalidTransition('Task is no longer available or already assigned.')

        logger.info(f"Task {task_id} assigned to worker {identity.user_id}")
        return format_response(200, {'message': 'Task assigned successfully', 'task': updated})

    except TaskHivedError as e:
        return error_response(e)
    except Exception as e:
        logger.exception(f"Error assigning task: {e}")
        return format_response(500, {'error': 'InternalError', 'message': 'Internal Server Error'})
