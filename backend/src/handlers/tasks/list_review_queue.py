"""
List Review Queue Handler.
GET /admin/tasks/review
"""
from taskhived.attachments import S3AttachmentStore
from taskhived.auth import get_identity, require_admin
from taskhived.dynamo import DynamoStore
from taskhived.errors import TaskHivedError
from taskhived.logging import log_event, logger
from taskhived.models import REVIEWABLE_STATUSES
from taskhived.utils import error_response, format_response, get_query_param

store = DynamoStore()
attachments = S3AttachmentStore()


def handler(event, context):
    """
    GET /admin/tasks/review?status=under_review

    Lists tasks awaiting an admin decision, oldest submission first, with a
    presigned download link for any attachment.
    """
    log_event(event)
    try:
        identity = get_identity(event)
        require_admin(identity)

        status = get_query_param(event, 'status')
        statuses = [status] if status in REVIEWABLE_STATUSES else list(REVIEWABLE_STATUSES)

        tasks = []
        for s in statuses:
            tasks.extend(store.list_tasks_by_status(s))
        tasks.sort(key=lambda t: t.get('submittedAt') or '')

        for task in tasks:
            if task.get('filePath'):
                task['fileUrl'] = attachments.generate_presigned_url(task['filePath'])

        logger.info(f"Review queue: {len(tasks)} tasks")
        return format_response(200, {'tasks': tasks, 'count': len(tasks)})

    except TaskHivedError as e:
        return error_response(e)
    except Exception as e:
        logger.exception(f"Error listing review queue: {e}")
        return format_response(500, {'error': 'InternalError', 'message': 'Internal Server Error'})
