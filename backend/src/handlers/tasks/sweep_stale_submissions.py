"""
Sweep Stale Submissions Handler.
Triggered by EventBridge on a schedule; submissions stuck in scoring are
routed to human review.
"""
from taskhived.dynamo import DynamoStore
from taskhived.logging import logger
from taskhived.scoring import get_scorer
from taskhived.submission import SubmissionPipeline

store = DynamoStore()


def handler(event, context):
    logger.info("Running stale submission sweep...")
    pipeline = SubmissionPipeline(store, get_scorer())
    result = pipeline.sweep_stale()
    logger.info(f"Sweep complete: {result['swept']} of {result['checked']} routed to review")
    return result
