"""
Submit Task Handler.
POST /worker/tasks/{taskId}/submit
"""
from taskhived.attachments import S3AttachmentStore
from taskhived.auth import get_identity
from taskhived.dynamo import DynamoStore
from taskhived.errors import InvalidRequest, TaskHivedError
from taskhived.logging import log_event, logger
from taskhived.scoring import get_scorer
from taskhived.submission import SubmissionPipeline
from taskhived.utils import error_response, format_response, get_path_param, parse_body

store = DynamoStore()
attachments = S3AttachmentStore()


def handler(event, context):
    """
    Handler for submitting work for a task.
    Body: { "comment": "...", "attachment": { "name": "...", "content": "<base64>", "contentType": "..." } }

    The worker always gets the same confirmation shape; whether the AI passed
    the work only changes the message.
    """
    log_event(event)
    try:
        identity = get_identity(event)

        task_id = get_path_param(event, 'taskId')
        if not task_id:
            raise InvalidRequest('Missing taskId')

        body = parse_body(event)
        attachment = body.get('attachment')
        if attachment is not None and not isinstance(attachment, dict):
            raise InvalidRequest('Invalid attachment')

        pipeline = SubmissionPipeline(store, get_scorer(), attachments=attachments)
        outcome = pipeline.submit(identity, task_id, body.get('comment'), attachment)

        return format_response(200, worker_view(outcome))

    except TaskHivedError as e:
        return error_response(e)
    except Exception as e:
        logger.exception(f"Error submitting task: {e}")
        return format_response(500, {'error': 'InternalError', 'message': 'Internal Server Error'})


def worker_view(outcome) -> dict:
    """Confirmation returned to the worker; review flags and scores stay admin-only."""
    return {
        'submitted': True,
        'taskId': outcome.task.get('taskId'),
        'submittedAt': outcome.task.get('submittedAt'),
        'message': outcome.message,
    }
