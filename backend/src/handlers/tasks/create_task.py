"""
Create Task Handler.
POST /client/tasks
"""
import uuid

from taskhived.auth import get_identity, require_client
from taskhived.dynamo import DynamoStore
from taskhived.errors import InvalidRequest, TaskHivedError
from taskhived.logging import log_event, logger
from taskhived.models import PaymentStatus, TaskStatus
from taskhived.utils import error_response, format_response, isoformat, parse_body, to_amount, utc_now

store = DynamoStore()


def handler(event, context):
    """
    POST /client/tasks
    Body: { "title": "...", "description": "...", "payment": 5.00 }
    """
    log_event(event)
    try:
        identity = get_identity(event)
        require_client(identity)

        body = parse_body(event)
        title = (body.get('title') or '').strip()
        description = (body.get('description') or '').strip()
        if not title:
            raise InvalidRequest('Missing title')

        payment = to_amount(body.get('payment'))
        if payment <= 0:
            raise InvalidRequest('Payment must be positive')

        task = store.create_task(build_task(identity.user_id, title, description, payment))
        logger.info(f"Client {identity.user_id} created task {task['taskId']} paying {payment}")
        return format_response(201, {'message': 'Task created', 'task': task})

    except TaskHivedError as e:
        return error_response(e)
    except Exception as e:
        logger.exception(f"Error creating task: {e}")
        return format_response(500, {'error': 'InternalError', 'message': 'Internal Server Error'})


def build_task(client_id: str, title: str, description: str, payment) -> dict:
    return {
        'taskId': str(uuid.uuid4()),
        'title': title,
        'description': description,
        'payment': payment,
        'clientId': client_id,
        'status': TaskStatus.OPEN,
        'paymentStatus': PaymentStatus.NONE,
        'createdAt': isoformat(utc_now()),
        'requiresHumanReview': False,
        'version': 0,
    }
