"""
Pay Worker Handler.
POST /admin/tasks/{taskId}/pay, or triggered by the DynamoDB Stream on the
Tasks table when a task becomes verified with a pending payment.
"""
from boto3.dynamodb.types import TypeDeserializer

from taskhived.auth import get_identity, require_admin
from taskhived.dynamo import DynamoStore
from taskhived.errors import AlreadyPaid, InvalidRequest, PersistenceFailure, TaskHivedError
from taskhived.ledger import Ledger
from taskhived.logging import log_event, logger
from taskhived.models import PaymentStatus, TaskStatus
from taskhived.utils import error_response, format_response, get_path_param

store = DynamoStore()

_deserializer = TypeDeserializer()


def handler(event, context):
    if 'Records' in event:
        return handle_stream(event)
    return handle_api(event)


def handle_api(event):
    log_event(event)
    try:
        identity = get_identity(event)
        require_admin(identity)

        task_id = get_path_param(event, 'taskId')
        if not task_id:
            raise InvalidRequest('Missing taskId')

        transaction = Ledger(store).pay_worker(task_id)
        return format_response(200, {'message': 'Payment completed', 'transaction': transaction})

    except TaskHivedError as e:
        return error_response(e)
    except Exception as e:
        logger.exception(f"Error paying worker: {e}")
        return format_response(500, {'error': 'InternalError', 'message': 'Internal Server Error'})


def handle_stream(event):
    """
    Listens for MODIFY events where a task moves into verified/pending.
    Other updates to the same task are ignored, and a replayed record ends in AlreadyPaid.
    Persistence failures fail the batch so the stream retries it.
    """
    ledger = Ledger(store)
    processed = 0

    for record in event['Records']:
        if record.get('eventName') != 'MODIFY':
            continue

        task_id = payable_task_id(record)
        if not task_id:
            continue

        try:
            ledger.pay_worker(task_id)
            processed += 1
        except AlreadyPaid:
            logger.info(f"Task {task_id} already paid, skipping")
        except PersistenceFailure:
            logger.error(f"Payment for task {task_id} failed to persist, retrying batch")
            raise
        except TaskHivedError as e:
            logger.error(f"Payment for task {task_id} not made: {e.code}: {e.message}")

    return {'processed': processed}


def _image(record, name: str) -> dict:
    image = record.get('dynamodb', {}).get(name) or {}
    return {k: _deserializer.deserialize(v) for k, v in image.items()}


def payable_task_id(record):
    """Return the taskId if this change is the transition into verified/pending."""
    new_image = _image(record, 'NewImage')
    old_image = _image(record, 'OldImage')

    def payable(image):
        return (
            image.get('status') == TaskStatus.VERIFIED
            and image.get('paymentStatus') == PaymentStatus.PENDING
        )

    if payable(new_image) and not payable(old_image):
        return new_image.get('taskId')
    return None
