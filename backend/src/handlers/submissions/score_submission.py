"""
Score Submission Handler.
Triggered by SQS (scoring queue) when submissions run in queued mode.
"""
import json

from taskhived.dynamo import DynamoStore
from taskhived.errors import ConcurrentModification, PersistenceFailure
from taskhived.logging import logger
from taskhived.scoring import get_scorer
from taskhived.submission import SubmissionPipeline

store = DynamoStore()


def handler(event, context):
    """
    Each record body: { "taskId": "...", "version": 1, "filePath": "..." }

    Records for tasks no longer in flight are skipped, so redelivery is safe.
    Persistence failures are reported back for retry.
    """
    pipeline = SubmissionPipeline(store, get_scorer())
    failures = []
    scored = 0

    for record in event.get('Records', []):
        message_id = record.get('messageId')
        try:
            message = json.loads(record['body'])
        except (KeyError, TypeError, json.JSONDecodeError) as e:
            logger.error(f"Dropping malformed scoring message {message_id}: {e}")
            continue

        task_id = message.get('taskId')
        if not task_id:
            logger.error(f"Scoring message {message_id} has no taskId")
            continue

        try:
            outcome = pipeline.score_claimed(task_id, message.get('version'), message.get('filePath'))
        except ConcurrentModification:
            logger.info(f"Task {task_id} was decided elsewhere while scoring")
            continue
        except PersistenceFailure as e:
            logger.error(f"Failed to persist scoring for task {task_id}: {e}")
            failures.append({'itemIdentifier': message_id})
            continue

        if outcome:
            scored += 1

    logger.info(f"Scored {scored} submissions, {len(failures)} to retry")
    return {'batchItemFailures': failures}
