"""
SQS utility functions for message operations.
"""
import json
from typing import Any, Dict

import boto3

from .config import config
from .logging import logger
from .utils import DecimalEncoder

_sqs_client = None


def get_sqs_client():
    global _sqs_client
    if _sqs_client is None:
        _sqs_client = boto3.client('sqs', region_name=config.AWS_REGION)
    return _sqs_client


def send_message(queue_url: str, message_body: Dict[str, Any], client=None) -> bool:
    """
    Send a single message to SQS queue.

    Args:
        queue_url: SQS queue URL
        message_body: Message body as dict (will be JSON serialized)
        client: Optional SQS client, defaults to the shared one

    Returns:
        True if sent successfully, False otherwise
    """
    if not queue_url:
        logger.warning("No queue URL configured, message not sent")
        return False

    try:
        (client or get_sqs_client()).send_message(
            QueueUrl=queue_url,
            MessageBody=json.dumps(message_body, cls=DecimalEncoder)
        )
        logger.info(f"Message sent to {queue_url}")
        return True
    except Exception as e:
        logger.error(f"Error sending message to SQS: {e}")
        return False
